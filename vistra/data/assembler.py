# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Multi-threaded batch assembly.

Turns a (possibly endless) stream of raw Samples into fixed-size tensor
batches using a pool of worker threads:

  1. claim  : a worker takes the next Sample through SharedSource, the single
               mutex-guarded path onto the DataSource
  2. apply  : the worker runs the transformer pipeline with its own
               torch.Generator (seed + worker index)
  3. store  : under the batch lock the worker reserves the next free slot of
               the batch being filled and copies image and label into it
  4. publish: whoever fills the last slot pushes the batch onto a bounded
               queue and the next batch starts empty

Suspend points:
  - workers wait on the claim lock and on a full output queue
  - the consumer waits on an empty output queue

Within a batch, slot order is completion order, not claim order. A batch is
an unordered multiset of `batch_size` samples. Batches themselves come out in
queue insertion order.

Bounded passes end when SharedSource sees EXHAUSTED. The last worker to leave
flushes whatever is in the half-filled batch as a partial batch (flagged
`is_partial`) and then enqueues the end-of-stream marker.

Error policy for TransformError:
  abort (default): the first failure stops every worker, and the consumer
                    re-raises it from next()
  skip           : the sample is logged and counted, and no slot is used
                   (a full pass of consecutive failures aborts the stream)
"""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Literal, Optional

import torch

from vistra.data.exceptions import PipelineTypeError, TransformError
from vistra.data.source import EXHAUSTED, DataSource, Sample
from vistra.data.transforms import LabeledImage, Transformer
from vistra.logging.logger import get_logger

logger: logging.Logger = get_logger(__name__)

ErrorPolicy = Literal["abort", "skip"]

_END = object()
_POLL_SECONDS = 0.05


@dataclass(frozen=True)
class Batch:
    """
    One optimization step's worth of preprocessed samples.

    Attributes:
        images: Float tensor (n, channels, height, width).
        labels: int64 tensor (n,), aligned with images along dim 0.
        is_partial: True only for the short tail batch of a bounded pass.
        pass_index: Highest source pass any member came from (0-based).
    """

    images: torch.Tensor
    labels: torch.Tensor
    is_partial: bool = False
    pass_index: int = 0

    @property
    def size(self) -> int:
        return int(self.labels.shape[0])

    def __len__(self) -> int:
        return self.size


class SharedSource:
    """
    The one mutex-guarded claim path over a DataSource.

    Workers never touch the DataSource directly. Once a bounded source has
    signalled EXHAUSTED, every later claim gets None, so the end-of-pass
    signal is consumed exactly once no matter how many workers race for it.
    """

    def __init__(self, source: DataSource) -> None:
        self._source = source
        self._lock = threading.Lock()
        self._drained = False
        self.claimed = 0

    def claim(self) -> Optional[tuple[Sample, int]]:
        """Return (sample, pass_index), or None once the pass is drained."""
        with self._lock:
            if self._drained:
                return None
            item = self._source.claim()
            if item is EXHAUSTED:
                self._drained = True
                return None
            self.claimed += 1
            return item, self._source.pass_index

    @property
    def drained(self) -> bool:
        return self._drained


class BatchAssembler:
    """
    Configuration for turning a DataSource into batches.

    The assembler itself holds no threads. Each `open()` starts a fresh
    BatchStream with its own worker pool, so a bounded validation source can
    be reset and streamed again as often as needed.

    Args:
        source: Where samples come from.
        transformer: Pipeline from Sample to LabeledImage.
        batch_size: Slots per batch.
        parallelism: Number of worker threads.
        buffer: Maximum number of finished batches waiting in the queue.
        on_error: "abort" or "skip" for TransformError.
        seed: Base seed for per-worker generators.
        drop_last: Discard the partial tail batch of a bounded pass instead
                   of emitting it.

    Raises:
        ValueError: Non-positive sizes or an unknown error policy.
        PipelineTypeError: Transformer doesn't take Samples or doesn't produce LabeledImages.
    """

    def __init__(
        self,
        source: DataSource,
        transformer: Transformer,
        batch_size: int,
        parallelism: int = 1,
        buffer: int = 4,
        on_error: ErrorPolicy = "abort",
        seed: int = 0,
        drop_last: bool = False,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if parallelism < 1:
            raise ValueError(f"parallelism must be >= 1, got {parallelism}")
        if buffer < 1:
            raise ValueError(f"buffer must be >= 1, got {buffer}")
        if on_error not in ("abort", "skip"):
            raise ValueError(f"on_error must be 'abort' or 'skip', got {on_error!r}")
        if not issubclass(Sample, transformer.input_type):
            raise PipelineTypeError(
                f"{transformer!r} does not accept Sample input "
                f"(expects {transformer.input_type.__name__})"
            )
        if transformer.output_type is not object and not issubclass(
            transformer.output_type, LabeledImage
        ):
            raise PipelineTypeError(
                f"{transformer!r} must produce LabeledImage, "
                f"produces {transformer.output_type.__name__}"
            )

        self.source = source
        self.transformer = transformer
        self.batch_size = batch_size
        self.parallelism = parallelism
        self.buffer = buffer
        self.on_error = on_error
        self.seed = seed
        self.drop_last = drop_last

    def open(self) -> "BatchStream":
        """Start workers and return the running stream."""
        return BatchStream(self)


class BatchStream:
    """
    A running assembler: W worker threads feeding a bounded queue.

    Iterate it to receive batches, and close it (or use it as a context
    manager) to stop the workers. After close(), no new samples are claimed.
    Transforms already in flight run to completion and their results are
    dropped.

    Attributes:
        skipped: Samples dropped under the skip policy.
        batches_emitted: Batches handed to the consumer so far.
    """

    def __init__(self, assembler: BatchAssembler) -> None:
        self._cfg = assembler
        self._shared = SharedSource(assembler.source)
        self._queue: queue.Queue[object] = queue.Queue(maxsize=assembler.buffer)
        self._stop = threading.Event()
        self._batch_lock = threading.Lock()

        self._images: Optional[torch.Tensor] = None
        self._labels = torch.empty(assembler.batch_size, dtype=torch.long)
        self._filled = 0
        self._pass_index = 0

        self._active_workers = assembler.parallelism
        self._failure: Optional[Exception] = None
        self._done = False
        self.skipped = 0
        self.batches_emitted = 0
        self._consecutive_skips = 0

        self._workers = [
            threading.Thread(
                target=self._work,
                args=(index,),
                name=f"vistra-worker-{index}",
                daemon=True,
            )
            for index in range(assembler.parallelism)
        ]
        for worker in self._workers:
            worker.start()

        logger.debug(
            "Batch stream opened",
            extra={
                "workers": assembler.parallelism,
                "batch_size": assembler.batch_size,
                "buffer": assembler.buffer,
                "looped": assembler.source.looped,
            },
        )

    # ── worker side ──

    def _work(self, index: int) -> None:
        generator = torch.Generator()
        generator.manual_seed(self._cfg.seed + index)
        try:
            while not self._stop.is_set():
                claimed = self._shared.claim()
                if claimed is None:
                    break
                sample, pass_index = claimed
                try:
                    result = self._cfg.transformer.apply(sample, generator)
                    self._store(result, pass_index)
                except TransformError as err:
                    if self._cfg.on_error != "skip":
                        raise
                    with self._batch_lock:
                        self.skipped += 1
                        self._consecutive_skips += 1
                        starved = self._consecutive_skips >= self._cfg.source.total()
                    logger.warning(
                        "Skipping sample that failed preprocessing",
                        extra={"sample_id": err.sample_id, "stage": err.stage, "error": str(err)},
                    )
                    if starved:
                        raise TransformError(
                            f"every sample in a full pass failed preprocessing "
                            f"({self._consecutive_skips} skipped in a row)",
                            stage="BatchAssembler",
                        ) from err
        except Exception as err:
            self._fail(err)
        finally:
            self._worker_exit()

    def _store(self, result: LabeledImage, pass_index: int) -> None:
        image = result.image
        batch_size = self._cfg.batch_size
        with self._batch_lock:
            if self._images is None:
                self._images = torch.empty((batch_size, *image.shape), dtype=image.dtype)
            elif tuple(image.shape) != tuple(self._images.shape[1:]):
                raise TransformError(
                    f"tensor shape {tuple(image.shape)} does not match batch shape "
                    f"{tuple(self._images.shape[1:])}",
                    sample_id=result.sample_id,
                    stage="BatchAssembler",
                )

            slot = self._filled
            self._images[slot].copy_(image)
            self._labels[slot] = int(result.label)
            self._filled += 1
            self._consecutive_skips = 0
            self._pass_index = max(self._pass_index, pass_index)

            if self._filled < batch_size:
                return

            batch = Batch(
                images=self._images,
                labels=self._labels,
                is_partial=False,
                pass_index=self._pass_index,
            )
            self._images = None
            self._labels = torch.empty(batch_size, dtype=torch.long)
            self._filled = 0

        self._put(batch)

    def _put(self, item: object) -> bool:
        """Blocking put that gives up once the stream is stopped."""
        while not self._stop.is_set():
            try:
                self._queue.put(item, timeout=_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def _fail(self, err: Exception) -> None:
        with self._batch_lock:
            first = self._failure is None
            if first:
                self._failure = err
        self._stop.set()
        if first:
            logger.error(
                "Batch assembly aborted",
                extra={"error": str(err), "error_type": type(err).__name__},
            )

    def _worker_exit(self) -> None:
        tail: Optional[Batch] = None
        with self._batch_lock:
            self._active_workers -= 1
            if self._active_workers > 0:
                return
            if self._filled > 0 and self._images is not None and not self._cfg.drop_last:
                count = self._filled
                tail = Batch(
                    images=self._images[:count].clone(),
                    labels=self._labels[:count].clone(),
                    is_partial=True,
                    pass_index=self._pass_index,
                )
            self._filled = 0
            self._images = None

        if self._stop.is_set():
            return
        if tail is not None:
            self._put(tail)
        self._put(_END)

    # ── consumer side ──

    def __iter__(self) -> "BatchStream":
        return self

    def __next__(self) -> Batch:
        while True:
            if self._failure is not None:
                self._done = True
                raise self._failure
            if self._done:
                raise StopIteration
            try:
                item = self._queue.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                if self._stop.is_set() and self._failure is None:
                    self._done = True
                continue

            if item is _END:
                self._done = True
                logger.debug(
                    "Batch stream finished",
                    extra={
                        "batches": self.batches_emitted,
                        "claimed": self._shared.claimed,
                        "skipped": self.skipped,
                    },
                )
                raise StopIteration

            self.batches_emitted += 1
            return item  # type: ignore[return-value]

    def pending(self) -> int:
        """Finished batches currently waiting in the queue."""
        return self._queue.qsize()

    @property
    def claimed(self) -> int:
        """Samples claimed from the source so far."""
        return self._shared.claimed

    def close(self) -> None:
        """Stop claiming, let in-flight transforms finish, and join the workers."""
        self._stop.set()
        for worker in self._workers:
            worker.join()
        self._done = True

    def __enter__(self) -> "BatchStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
