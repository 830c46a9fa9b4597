# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Training and validation metrics for vistra.

Two halves:
  - ValidationMethod: pluggable accumulators run during a validation pass
    (update per batch, result at the end). Several can be registered at once,
    e.g. Top1Accuracy and Top5Accuracy.
  - MetricsTracker: per-step training metrics (loss, lr, throughput),
    emitted as structured JSON through the standard logger.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import torch

from vistra.logging.logger import get_logger

logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    """Accumulated `correct / count`. Results from several batches can be added together."""

    correct: int = 0
    count: int = 0

    @property
    def score(self) -> float:
        return self.correct / self.count if self.count > 0 else 0.0

    def __add__(self, other: "ValidationResult") -> "ValidationResult":
        return ValidationResult(self.correct + other.correct, self.count + other.count)

    def __str__(self) -> str:
        return f"{self.score:.4f} ({self.correct}/{self.count})"


class ValidationMethod(ABC):
    """Accumulates one score over a validation pass."""

    name: str = "validation"

    @abstractmethod
    def update(self, output: torch.Tensor, labels: torch.Tensor) -> None:
        ...

    @abstractmethod
    def result(self) -> ValidationResult:
        ...

    @abstractmethod
    def reset(self) -> None:
        ...


class TopKAccuracy(ValidationMethod):
    """
    Fraction of samples whose true label is among the k highest-scored outputs.

    If the model has fewer than k classes, k is clamped to the class count.
    """

    def __init__(self, k: int) -> None:
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        self.k = k
        self.name = f"top{k}_accuracy"
        self._result = ValidationResult()

    def update(self, output: torch.Tensor, labels: torch.Tensor) -> None:
        if output.dim() == 1:
            output = output.unsqueeze(0)
        if output.shape[0] != labels.shape[0]:
            raise ValueError(
                f"output has {output.shape[0]} rows but there are {labels.shape[0]} labels"
            )
        k = min(self.k, output.shape[-1])
        top = output.topk(k, dim=-1).indices
        hits = (top == labels.view(-1, 1).to(top.device)).any(dim=-1)
        self._result = self._result + ValidationResult(int(hits.sum().item()), int(labels.shape[0]))

    def result(self) -> ValidationResult:
        return self._result

    def reset(self) -> None:
        self._result = ValidationResult()

    def __repr__(self) -> str:
        return f"TopKAccuracy(k={self.k})"


class Top1Accuracy(TopKAccuracy):
    def __init__(self) -> None:
        super().__init__(1)


class Top5Accuracy(TopKAccuracy):
    def __init__(self) -> None:
        super().__init__(5)


@dataclass
class StepMetrics:
    """Metrics collected for a single training iteration."""

    iteration: int = 0
    epoch: int = 1
    loss: float = 0.0
    learning_rate: float = 0.0
    samples_per_sec: float = 0.0
    data_wait_sec: float = 0.0


@dataclass
class MetricsTracker:
    """
    Times each iteration and logs step metrics every `log_interval` iterations.

    The time spent waiting for the next batch is tracked separately from the
    whole step, which shows whether preprocessing or optimization is the
    bottleneck.

    Args:
        log_interval: Log metrics every N iterations.
    """

    log_interval: int = 10
    _step_start_time: float = field(default=0.0, init=False)
    _data_ready_time: float = field(default=0.0, init=False)
    _step_samples: int = field(default=0, init=False)

    def begin_step(self) -> None:
        """Mark the point where the optimizer starts waiting for a batch."""
        self._step_start_time = time.monotonic()
        self._data_ready_time = self._step_start_time

    def batch_ready(self, samples: int) -> None:
        """Mark the point where the batch arrived."""
        self._data_ready_time = time.monotonic()
        self._step_samples = samples

    def end_step(
        self,
        iteration: int,
        epoch: int,
        loss: float,
        learning_rate: float,
    ) -> StepMetrics:
        """
        Finalize metrics for this iteration and log them at the configured interval.

        Returns:
            StepMetrics for this iteration.
        """
        now = time.monotonic()
        elapsed = now - self._step_start_time
        metrics = StepMetrics(
            iteration=iteration,
            epoch=epoch,
            loss=loss,
            learning_rate=learning_rate,
            samples_per_sec=self._step_samples / elapsed if elapsed > 0 else 0.0,
            data_wait_sec=self._data_ready_time - self._step_start_time,
        )

        if iteration % self.log_interval == 0:
            self._log_metrics(metrics)

        return metrics

    def _log_metrics(self, metrics: StepMetrics) -> None:
        logger.info(
            "Training step",
            extra={
                "iteration": metrics.iteration,
                "epoch": metrics.epoch,
                "loss": round(metrics.loss, 6),
                "lr": metrics.learning_rate,
                "samples_per_sec": round(metrics.samples_per_sec, 1),
                "data_wait_sec": round(metrics.data_wait_sec, 4),
            },
        )
