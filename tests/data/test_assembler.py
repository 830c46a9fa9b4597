# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for the multi-threaded batch assembler: batch shape, coverage of a
bounded pass, partial tail batches, error policies, back-pressure and close.
"""

import threading
import time
from collections import Counter
from pathlib import Path

import pytest
import torch

from vistra.data.assembler import BatchAssembler
from vistra.data.exceptions import PipelineTypeError, TransformError
from vistra.data.source import ImageFolderSource, InMemorySource, Sample
from vistra.data.transforms import ImageCropper, ImageNormalizer, LabeledImage, Lambda, PathToImage


def _to_image(sample: Sample) -> LabeledImage:
    """Encode the sample's integer content as a constant 1x2x2 image."""
    return LabeledImage(
        image=torch.full((1, 2, 2), float(sample.content)),
        label=sample.label,
        sample_id=sample.sample_id,
    )


def _fail_on(bad: set[int]):
    def stage(sample: Sample) -> LabeledImage:
        if sample.content in bad:
            raise TransformError("bad sample", sample_id=sample.sample_id, stage="fail_on")
        return _to_image(sample)

    return Lambda(stage, input_type=Sample, output_type=LabeledImage, name="fail_on")


_TO_IMAGE = Lambda(_to_image, input_type=Sample, output_type=LabeledImage, name="to_image")


def _source(n: int, looped: bool) -> InMemorySource:
    return InMemorySource([Sample(content=i, label=i % 4) for i in range(n)], looped=looped)


def _contents(batch) -> list[int]:
    return [int(v) for v in batch.images[:, 0, 0, 0].tolist()]


class TestBatchShape:
    def test_full_batches_from_looped_source(self) -> None:
        """Every batch from a looped source is full, with aligned labels."""
        assembler = BatchAssembler(_source(10, looped=True), _TO_IMAGE, batch_size=4, parallelism=3)
        with assembler.open() as stream:
            for _ in range(5):
                batch = next(stream)
                assert batch.images.shape == (4, 1, 2, 2)
                assert batch.labels.dtype == torch.int64
                assert not batch.is_partial
                for content, label in zip(_contents(batch), batch.labels.tolist()):
                    assert label == content % 4

    def test_batches_do_not_alias(self) -> None:
        """A published batch is not overwritten by the next one."""
        assembler = BatchAssembler(_source(8, looped=False), _TO_IMAGE, batch_size=4)
        with assembler.open() as stream:
            first = next(stream)
            snapshot = first.images.clone()
            next(stream)
        assert torch.equal(first.images, snapshot)


class TestBoundedPass:
    @pytest.mark.parametrize("parallelism", [1, 2, 4])
    def test_every_sample_exactly_once(self, parallelism: int) -> None:
        """A bounded pass emits each sample exactly once, with a partial tail."""
        assembler = BatchAssembler(
            _source(10, looped=False), _TO_IMAGE, batch_size=4, parallelism=parallelism
        )
        with assembler.open() as stream:
            batches = list(stream)

        assert [b.size for b in batches] == [4, 4, 2]
        assert [b.is_partial for b in batches] == [False, False, True]
        seen = Counter(c for b in batches for c in _contents(b))
        assert seen == Counter(range(10))

    def test_exact_multiple_has_no_partial(self) -> None:
        """When the pass divides evenly there is no tail batch."""
        assembler = BatchAssembler(_source(8, looped=False), _TO_IMAGE, batch_size=4, parallelism=2)
        with assembler.open() as stream:
            batches = list(stream)
        assert [b.size for b in batches] == [4, 4]

    def test_drop_last(self) -> None:
        """drop_last discards the partial tail."""
        assembler = BatchAssembler(
            _source(10, looped=False), _TO_IMAGE, batch_size=4, drop_last=True
        )
        with assembler.open() as stream:
            assert [b.size for b in stream] == [4, 4]

    def test_reopen_after_reset(self) -> None:
        """A bounded source can be reset and streamed again."""
        source = _source(5, looped=False)
        assembler = BatchAssembler(source, _TO_IMAGE, batch_size=2)
        with assembler.open() as stream:
            first = sorted(c for b in stream for c in _contents(b))
        source.reset()
        with assembler.open() as stream:
            second = sorted(c for b in stream for c in _contents(b))
        assert first == second == list(range(5))

    def test_pass_index_tracks_looped_wrap(self) -> None:
        """Batches carry the pass their newest sample came from."""
        assembler = BatchAssembler(_source(4, looped=True), _TO_IMAGE, batch_size=4)
        with assembler.open() as stream:
            assert next(stream).pass_index == 0
            assert next(stream).pass_index == 1


class TestErrorPolicy:
    def test_abort_reraises_from_consumer(self) -> None:
        """Under abort, the first TransformError surfaces from next()."""
        assembler = BatchAssembler(
            _source(12, looped=False), _fail_on({5}), batch_size=4, parallelism=2
        )
        with assembler.open() as stream:
            with pytest.raises(TransformError) as excinfo:
                list(stream)
        assert excinfo.value.sample_id == "5"

    def test_skip_drops_sample_without_holes(self) -> None:
        """Under skip, failing samples are counted and batches stay dense."""
        assembler = BatchAssembler(
            _source(10, looped=False), _fail_on({1, 7}), batch_size=4, on_error="skip"
        )
        with assembler.open() as stream:
            batches = list(stream)
            assert stream.skipped == 2
        contents = sorted(c for b in batches for c in _contents(b))
        assert contents == [0, 2, 3, 4, 5, 6, 8, 9]
        assert [b.size for b in batches] == [4, 4]

    def test_skip_aborts_when_a_whole_pass_fails(self) -> None:
        """A looped source where nothing survives preprocessing must not spin forever."""
        assembler = BatchAssembler(
            _source(4, looped=True), _fail_on({0, 1, 2, 3}), batch_size=2, parallelism=2, on_error="skip"
        )
        outcome: list[BaseException] = []

        def consume() -> None:
            try:
                next(stream)
            except TransformError as err:
                outcome.append(err)

        with assembler.open() as stream:
            consumer = threading.Thread(target=consume, daemon=True)
            consumer.start()
            consumer.join(timeout=5)
            assert not consumer.is_alive()
            assert stream.skipped < 20
        assert len(outcome) == 1
        assert "full pass" in str(outcome[0])

    def test_shape_mismatch_is_transform_error(self) -> None:
        """Images of different shapes can't share a batch."""

        def ragged(sample: Sample) -> LabeledImage:
            size = 2 if sample.content % 2 == 0 else 3
            return LabeledImage(torch.zeros(1, size, size), sample.label, sample.sample_id)

        stage = Lambda(ragged, input_type=Sample, output_type=LabeledImage)
        assembler = BatchAssembler(_source(4, looped=False), stage, batch_size=4)
        with assembler.open() as stream:
            with pytest.raises(TransformError):
                list(stream)

    def test_unexpected_error_propagates(self) -> None:
        """Non-transform exceptions abort regardless of policy."""

        def boom(sample: Sample) -> LabeledImage:
            raise RuntimeError("worker crashed")

        stage = Lambda(boom, input_type=Sample, output_type=LabeledImage)
        assembler = BatchAssembler(_source(4, looped=True), stage, batch_size=2, on_error="skip")
        with assembler.open() as stream:
            with pytest.raises(RuntimeError, match="worker crashed"):
                next(stream)


class TestValidation:
    def test_rejects_bad_sizes(self) -> None:
        """Sizes and parallelism must be positive."""
        for kwargs in ({"batch_size": 0}, {"batch_size": 2, "parallelism": 0}, {"batch_size": 2, "buffer": 0}):
            with pytest.raises(ValueError):
                BatchAssembler(_source(2, looped=True), _TO_IMAGE, **kwargs)

    def test_rejects_unknown_policy(self) -> None:
        """Only abort and skip are valid policies."""
        with pytest.raises(ValueError):
            BatchAssembler(_source(2, looped=True), _TO_IMAGE, batch_size=2, on_error="retry")

    def test_rejects_pipeline_not_taking_samples(self) -> None:
        """The pipeline must start from Sample."""
        with pytest.raises(PipelineTypeError):
            BatchAssembler(_source(2, looped=True), ImageCropper(2, 2), batch_size=2)


class TestFlowControl:
    def test_buffer_bounds_pending_batches(self) -> None:
        """Workers stop claiming once `buffer` batches wait unconsumed."""
        assembler = BatchAssembler(
            _source(100, looped=True), _TO_IMAGE, batch_size=2, parallelism=2, buffer=2
        )
        stream = assembler.open()
        try:
            time.sleep(0.3)
            assert stream.pending() <= 2
            # queued batches plus one blocked publish per worker
            assert stream.claimed <= 2 * 2 + 2 * 2
        finally:
            stream.close()

    def test_close_stops_claims_and_joins_workers(self) -> None:
        """After close(), no worker is alive and no further sample is claimed."""
        assembler = BatchAssembler(_source(50, looped=True), _TO_IMAGE, batch_size=2, parallelism=3)
        stream = assembler.open()
        next(stream)
        stream.close()
        claimed = stream.claimed
        time.sleep(0.1)
        assert stream.claimed == claimed
        assert not any(
            t.name.startswith("vistra-worker") and t.is_alive() for t in threading.enumerate()
        )
        with pytest.raises(StopIteration):
            next(stream)


class TestImagePipeline:
    def test_real_images_end_to_end(self, image_folder: Path) -> None:
        """Decode, crop and normalize a real folder into NCHW float batches."""
        source = ImageFolderSource(image_folder / "val", looped=False, shuffle=False)
        pipeline = (
            PathToImage(short_edge=36)
            + ImageCropper(32, 32, random=False)
            + ImageNormalizer([0.485, 0.456, 0.406], [0.229, 0.224, 0.225])
        )
        assembler = BatchAssembler(source, pipeline, batch_size=4, parallelism=2)
        with assembler.open() as stream:
            batches = list(stream)

        assert [b.size for b in batches] == [4, 2]
        assert batches[0].images.shape == (4, 3, 32, 32)
        assert sorted(l for b in batches for l in b.labels.tolist()) == [0, 0, 1, 1, 2, 2]
