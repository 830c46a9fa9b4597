# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Composable sample transformers.

A Transformer maps one value to another (Sample -> LabeledImage ->
LabeledImage ...) and declares the types it consumes and produces. Stages are
chained with `+` (or `.then()`), which checks those types once at composition
time rather than on every call. The resulting Pipeline is itself a
Transformer, and nested pipelines are flattened, so `(a + b) + c` and
`a + (b + c)` are the same stage list.

Stages hold no state that changes with training progress. Randomized stages
draw from the `torch.Generator` passed into `apply`. The batch assembler
gives every worker thread its own generator, so workers never share a random
stream and never produce correlated crops.

Standard image stages:
  PathToImage    -> decode + resize the short edge (Pillow)
  ImageCropper   -> random or centre crop to a fixed size
  ImageNormalizer -> per-channel (x - mean) / std
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Sequence

import numpy as np
import torch
from PIL import Image, UnidentifiedImageError

from vistra.data.exceptions import PipelineTypeError, TransformError
from vistra.data.source import Sample


@dataclass(frozen=True)
class LabeledImage:
    """
    A decoded image travelling through the pipeline.

    Attributes:
        image: Float tensor of shape (channels, height, width), RGB order.
        label: 0-based class index carried over from the Sample.
        sample_id: Identity of the originating Sample.
    """

    image: torch.Tensor
    label: int
    sample_id: str


class Transformer(ABC):
    """
    One pipeline stage.

    Subclasses set `input_type` / `output_type` and implement `apply`.
    `object` as input_type accepts anything.
    """

    input_type: type = object
    output_type: type = object

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def apply(self, value: Any, generator: Optional[torch.Generator] = None) -> Any:
        """Transform one value. Malformed input raises TransformError."""

    def __call__(self, value: Any, generator: Optional[torch.Generator] = None) -> Any:
        return self.apply(value, generator)

    def stages(self) -> list["Transformer"]:
        return [self]

    def then(self, other: "Transformer") -> "Pipeline":
        """Append `other` after this stage."""
        return Pipeline([*self.stages(), *other.stages()])

    def __add__(self, other: "Transformer") -> "Pipeline":
        if not isinstance(other, Transformer):
            return NotImplemented
        return self.then(other)

    def __repr__(self) -> str:
        return f"{self.name}({self.input_type.__name__} -> {self.output_type.__name__})"


class Pipeline(Transformer):
    """
    An ordered list of stages applied left to right.

    Raises:
        PipelineTypeError: If a stage's output type isn't accepted by the next stage.
        ValueError: If no stages are given.
    """

    def __init__(self, stages: Sequence[Transformer]) -> None:
        flat: list[Transformer] = []
        for stage in stages:
            flat.extend(stage.stages())
        if not flat:
            raise ValueError("a pipeline needs at least one stage")

        for upstream, downstream in zip(flat, flat[1:]):
            if not issubclass(upstream.output_type, downstream.input_type):
                raise PipelineTypeError(
                    f"{upstream.name} produces {upstream.output_type.__name__} but "
                    f"{downstream.name} expects {downstream.input_type.__name__}"
                )

        self._stages = flat
        self.input_type = flat[0].input_type
        self.output_type = flat[-1].output_type

    def stages(self) -> list[Transformer]:
        return list(self._stages)

    def apply(self, value: Any, generator: Optional[torch.Generator] = None) -> Any:
        for stage in self._stages:
            value = stage.apply(value, generator)
        return value

    def __len__(self) -> int:
        return len(self._stages)

    def __repr__(self) -> str:
        return " + ".join(stage.name for stage in self._stages)


class Lambda(Transformer):
    """Wrap a plain function as a stage with explicit input/output types."""

    def __init__(
        self,
        fn: Callable[[Any], Any],
        input_type: type = object,
        output_type: type = object,
        name: Optional[str] = None,
    ) -> None:
        self._fn = fn
        self.input_type = input_type
        self.output_type = output_type
        self._name = name or getattr(fn, "__name__", "Lambda")

    @property
    def name(self) -> str:
        return self._name

    def apply(self, value: Any, generator: Optional[torch.Generator] = None) -> Any:
        return self._fn(value)


class PathToImage(Transformer):
    """
    Decode an image file into a float tensor with a canonical short edge.

    The image is converted to RGB, resized so that min(height, width) equals
    `short_edge` (aspect ratio kept, bilinear), and scaled to [0, 1].

    Raises:
        TransformError: File missing, unreadable, or not an image.
    """

    input_type = Sample
    output_type = LabeledImage

    def __init__(self, short_edge: int = 256) -> None:
        if short_edge < 1:
            raise ValueError(f"short_edge must be >= 1, got {short_edge}")
        self.short_edge = short_edge

    def apply(self, value: Sample, generator: Optional[torch.Generator] = None) -> LabeledImage:
        try:
            with Image.open(value.content) as img:
                rgb = img.convert("RGB")
        except (OSError, UnidentifiedImageError, ValueError, Image.DecompressionBombError) as err:
            raise TransformError(
                f"cannot decode image: {err}", sample_id=value.sample_id, stage=self.name
            ) from err

        width, height = rgb.size
        scale = self.short_edge / min(width, height)
        new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
        if new_size != rgb.size:
            rgb = rgb.resize(new_size, Image.Resampling.BILINEAR)

        arr = np.asarray(rgb, dtype=np.uint8)
        tensor = torch.from_numpy(arr.copy()).permute(2, 0, 1).float() / 255.0
        return LabeledImage(image=tensor, label=value.label, sample_id=value.sample_id)


class ImageCropper(Transformer):
    """
    Crop a fixed width x height window.

    With random=True the offset is drawn from the worker's generator.
    Otherwise the crop is centred, which is what validation uses.

    Raises:
        TransformError: Image smaller than the crop window.
    """

    input_type = LabeledImage
    output_type = LabeledImage

    def __init__(self, width: int, height: int, random: bool = True) -> None:
        if width < 1 or height < 1:
            raise ValueError(f"crop size must be positive, got {width}x{height}")
        self.width = width
        self.height = height
        self.random = random

    def _offset(self, span: int, generator: Optional[torch.Generator]) -> int:
        if span == 0:
            return 0
        if self.random:
            return int(torch.randint(0, span + 1, (1,), generator=generator).item())
        return span // 2

    def apply(self, value: LabeledImage, generator: Optional[torch.Generator] = None) -> LabeledImage:
        _, img_h, img_w = value.image.shape
        if img_h < self.height or img_w < self.width:
            raise TransformError(
                f"image {img_w}x{img_h} is smaller than crop {self.width}x{self.height}",
                sample_id=value.sample_id,
                stage=self.name,
            )

        top = self._offset(img_h - self.height, generator)
        left = self._offset(img_w - self.width, generator)
        cropped = value.image[:, top : top + self.height, left : left + self.width]
        return replace(value, image=cropped.contiguous())


class ImageNormalizer(Transformer):
    """
    Per-channel normalization: (x - mean[c]) / std[c].

    mean and std are given in canonical RGB order.

    Raises:
        TransformError: Channel count doesn't match len(mean).
    """

    input_type = LabeledImage
    output_type = LabeledImage

    def __init__(self, mean: Sequence[float], std: Sequence[float]) -> None:
        if len(mean) != len(std):
            raise ValueError("mean and std must have the same number of channels")
        if any(s <= 0 for s in std):
            raise ValueError("std values must all be positive")
        self._mean = torch.tensor(list(mean), dtype=torch.float32).view(-1, 1, 1)
        self._std = torch.tensor(list(std), dtype=torch.float32).view(-1, 1, 1)

    def apply(self, value: LabeledImage, generator: Optional[torch.Generator] = None) -> LabeledImage:
        channels = value.image.shape[0]
        if channels != self._mean.shape[0]:
            raise TransformError(
                f"expected {self._mean.shape[0]} channels, got {channels}",
                sample_id=value.sample_id,
                stage=self.name,
            )
        return replace(value, image=(value.image - self._mean) / self._std)
