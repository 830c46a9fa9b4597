# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Lazy, restartable sample sources.

A DataSource owns an ordered (optionally seeded-shuffled) enumeration of
Samples and hands them out one at a time. It never opens the underlying
files; a Sample only carries a handle that the decode stage resolves later.

Two modes:
  - looped:  `next()` never runs dry. When the cursor reaches the end it
             wraps around and `passes_completed` goes up by one. Unless
             `reshuffle_each_pass` is set, every pass repeats the same order,
             so any window of k*N consecutive claims contains each sample
             exactly k times.
  - bounded: `next_or_done()` returns EXHAUSTED exactly once at the end of
             a pass. Reading again before `reset()` is a contract violation.

Sources are not thread-safe on their own. The batch assembler funnels every
claim through a single lock (see `SharedSource` in the assembler module).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence, Union

import torch

from vistra.data.exceptions import DataSourceError, EmptyCorpusError
from vistra.logging.logger import get_logger

logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class Sample:
    """
    One labeled item from the corpus.

    Attributes:
        content: Lazy handle to the raw content, e.g. a Path. Never decoded here.
        label: 0-based class index.
        sample_id: Stable identity used in error messages and logs.
                   Defaults to str(content).
    """

    content: Any
    label: int
    sample_id: str = field(default="")

    def __post_init__(self) -> None:
        if not self.sample_id:
            object.__setattr__(self, "sample_id", str(self.content))


class _Exhausted:
    """End-of-pass marker type. Use the EXHAUSTED singleton."""

    _instance: Optional["_Exhausted"] = None

    def __new__(cls) -> "_Exhausted":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "EXHAUSTED"

    def __bool__(self) -> bool:
        return False


EXHAUSTED = _Exhausted()

SampleOrDone = Union[Sample, _Exhausted]


class DataSource(ABC):
    """
    Base class for sample sources.

    Subclasses only provide `_load_samples()`. Ordering, looping, pass
    accounting and reset are shared.

    Args:
        looped: Cycle forever (training) or stop after one pass (validation).
        shuffle: Draw the visiting order from a seeded permutation.
        seed: Seed for the order permutation.
        reshuffle_each_pass: Draw a new permutation every time a looped
                             source wraps, or a bounded one is reset.

    Raises:
        EmptyCorpusError: If the backing enumeration has no samples.
    """

    def __init__(
        self,
        looped: bool,
        shuffle: bool = True,
        seed: int = 42,
        reshuffle_each_pass: bool = False,
    ) -> None:
        self.looped = looped
        self.shuffle = shuffle
        self.seed = seed
        self.reshuffle_each_pass = reshuffle_each_pass
        self.passes_completed = 0

        self._samples: list[Sample] = list(self._load_samples())
        if not self._samples:
            raise EmptyCorpusError(f"{type(self).__name__} has no samples to enumerate")

        self._generator = torch.Generator()
        self._generator.manual_seed(seed)
        self._order: list[int] = self._draw_order()
        self._cursor = 0
        self._exhausted = False

        logger.debug(
            "Data source ready",
            extra={
                "source": type(self).__name__,
                "samples": len(self._samples),
                "looped": looped,
                "shuffle": shuffle,
            },
        )

    @abstractmethod
    def _load_samples(self) -> Iterable[Sample]:
        """Enumerate the backing corpus. Called once, at construction."""

    def _draw_order(self) -> list[int]:
        n = len(self._samples)
        if not self.shuffle:
            return list(range(n))
        return torch.randperm(n, generator=self._generator).tolist()

    def total(self) -> int:
        """Number of distinct samples in one pass."""
        return len(self._samples)

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def pass_index(self) -> int:
        """0-based index of the pass the most recently returned sample belongs to."""
        return self.passes_completed

    def next(self) -> Sample:
        """
        Return the next sample of a looped source, wrapping at the end.

        Raises:
            DataSourceError: If the source is bounded.
        """
        if not self.looped:
            raise DataSourceError("next() is only valid on a looped source; use next_or_done()")

        if self._cursor >= len(self._order):
            self.passes_completed += 1
            self._cursor = 0
            if self.reshuffle_each_pass:
                self._order = self._draw_order()
            logger.debug(
                "Looped source wrapped",
                extra={"source": type(self).__name__, "passes_completed": self.passes_completed},
            )

        sample = self._samples[self._order[self._cursor]]
        self._cursor += 1
        return sample

    def next_or_done(self) -> SampleOrDone:
        """
        Return the next sample of a bounded source, or EXHAUSTED once the pass ends.

        Raises:
            DataSourceError: If the source is looped, or if the pass already
                             signalled EXHAUSTED and reset() was not called.
        """
        if self.looped:
            raise DataSourceError("next_or_done() is only valid on a bounded source; use next()")
        if self._exhausted:
            raise DataSourceError("pass already exhausted; call reset() to start a new one")

        if self._cursor >= len(self._order):
            self._exhausted = True
            self.passes_completed += 1
            return EXHAUSTED

        sample = self._samples[self._order[self._cursor]]
        self._cursor += 1
        return sample

    def claim(self) -> SampleOrDone:
        """Mode-agnostic read: `next()` for looped sources, `next_or_done()` otherwise."""
        if self.looped:
            return self.next()
        return self.next_or_done()

    def reset(self) -> None:
        """Rewind to the start of a fresh pass."""
        if self.reshuffle_each_pass and (self._cursor > 0 or self._exhausted):
            self._order = self._draw_order()
        self._cursor = 0
        self._exhausted = False

    @property
    def exhausted(self) -> bool:
        return self._exhausted


class InMemorySource(DataSource):
    """
    A source over an explicit sequence of Samples.

    Handy for tests and for corpora that are already indexed elsewhere.
    """

    def __init__(
        self,
        samples: Sequence[Sample],
        looped: bool,
        shuffle: bool = False,
        seed: int = 42,
        reshuffle_each_pass: bool = False,
    ) -> None:
        self._initial = list(samples)
        super().__init__(
            looped=looped,
            shuffle=shuffle,
            seed=seed,
            reshuffle_each_pass=reshuffle_each_pass,
        )

    def _load_samples(self) -> Iterable[Sample]:
        return self._initial


class ImageFolderSource(DataSource):
    """
    An ImageNet-style directory tree: `root/<class_name>/<image file>`.

    Class names are sorted and mapped to 0-based labels, files inside each
    class are sorted by name, and only suffixes in `extensions` are picked
    up. Paths are collected but never opened.

    Args:
        root: Split directory (e.g. `<folder>/train`).
        looped: See DataSource.
        extensions: Case-insensitive suffixes to include.
        shuffle, seed, reshuffle_each_pass: See DataSource.

    Raises:
        EmptyCorpusError: Missing root, no class directories, or no images.
    """

    def __init__(
        self,
        root: Path,
        looped: bool,
        extensions: Sequence[str] = (".jpeg", ".jpg", ".png", ".bmp"),
        shuffle: bool = True,
        seed: int = 42,
        reshuffle_each_pass: bool = False,
    ) -> None:
        self.root = Path(root)
        self.extensions = {ext.lower() for ext in extensions}
        self.classes: list[str] = []
        super().__init__(
            looped=looped,
            shuffle=shuffle,
            seed=seed,
            reshuffle_each_pass=reshuffle_each_pass,
        )
        logger.info(
            "Image folder indexed",
            extra={
                "root": str(self.root),
                "classes": len(self.classes),
                "samples": self.total(),
                "looped": looped,
            },
        )

    def _load_samples(self) -> Iterable[Sample]:
        if not self.root.is_dir():
            raise EmptyCorpusError(f"Image folder not found: {self.root}")

        self.classes = sorted(d.name for d in self.root.iterdir() if d.is_dir())
        if not self.classes:
            raise EmptyCorpusError(f"No class directories under {self.root}")

        samples: list[Sample] = []
        for label, class_name in enumerate(self.classes):
            class_dir = self.root / class_name
            for path in sorted(class_dir.iterdir()):
                if path.is_file() and path.suffix.lower() in self.extensions:
                    samples.append(
                        Sample(
                            content=path,
                            label=label,
                            sample_id=f"{class_name}/{path.name}",
                        )
                    )
        return samples
