# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Local optimizer: the single-process training control loop.

One control thread owns the model and the TrainingState. Preprocessing
happens on the batch assembler's worker threads, which never touch model
parameters. Each iteration, while RUNNING:

  1. Pull the next batch (blocks while the queue is empty)
  2. Forward pass and loss via the criterion
  3. Backward pass to get parameter gradients
  4. Ask the schedule for this iteration's rate and apply the update rule
  5. Advance the iteration (and the epoch when a new source pass began)
  6. endWhen fired       -> TERMINATED: close the training stream so no new
                            samples are claimed
  7. testTrigger fired   -> VALIDATION: full bounded pass in eval mode
  8. cacheTrigger fired  -> CHECKPOINT: write model and state to the cache dir

Validation and checkpoint phases always run to completion once entered,
including on the terminal iteration. A failed checkpoint is logged and
recorded, and training carries on. Every other failure ends the loop with an
error that names its phase.
"""

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import torch
import torch.nn as nn

from vistra.data.assembler import Batch, BatchAssembler, BatchStream
from vistra.logging.logger import get_logger
from vistra.training.checkpoint.core import save_checkpoint
from vistra.training.exceptions import (
    CheckpointWriteError,
    ModelDivergenceError,
    TrainingError,
    TrainingPhase,
    TrainingStepError,
    ValidationPhaseError,
)
from vistra.training.metrics.core import MetricsTracker, ValidationMethod, ValidationResult
from vistra.training.optimizer.core import OptimMethod
from vistra.training.scheduler.core import LearningRateSchedule
from vistra.training.triggers import Trigger

logger: logging.Logger = get_logger(__name__)

Criterion = Callable[[torch.Tensor, torch.Tensor], torch.Tensor]


@dataclass
class TrainingState:
    """
    Mutable training progress, owned by the optimizer's control thread.

    `epoch` starts at 1 and advances when the first sample of a new source
    pass shows up. `epoch_boundary` is True only for the iteration where that
    happened. `optim_state` is the update rule's private map (momentum
    buffers live there).
    """

    iteration: int = 0
    epoch: int = 1
    learning_rate: float = 0.0
    loss: Optional[float] = None
    epoch_boundary: bool = False
    optim_state: dict[str, Any] = field(default_factory=dict)
    best_score: Optional[float] = None
    best_iteration: Optional[int] = None

    def to_dict(self, optim_snapshot: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        return {
            "iteration": self.iteration,
            "epoch": self.epoch,
            "learning_rate": self.learning_rate,
            "loss": self.loss,
            "best_score": self.best_score,
            "best_iteration": self.best_iteration,
            "optim_state": optim_snapshot if optim_snapshot is not None else {},
        }


@dataclass(frozen=True)
class ValidationRecord:
    """Scores from one validation pass, keyed by ValidationMethod.name."""

    iteration: int
    scores: dict[str, ValidationResult]


@dataclass
class TrainingResult:
    """Outcome of `LocalOptimizer.optimize()`."""

    iteration: int = 0
    epoch: int = 1
    final_loss: Optional[float] = None
    validation_history: list[ValidationRecord] = field(default_factory=list)
    checkpoints: list[Path] = field(default_factory=list)
    checkpoint_failures: list[CheckpointWriteError] = field(default_factory=list)

    @property
    def final_validation(self) -> Optional[dict[str, ValidationResult]]:
        """Scores from the last validation pass, if one ran."""
        if not self.validation_history:
            return None
        return self.validation_history[-1].scores


class LocalOptimizer:
    """
    Drives training on one machine.

    Args:
        model: The network. Only this object's control thread mutates it.
        train_data: Assembler over the training source (normally looped).
        criterion: `criterion(output, labels) -> scalar loss tensor`.
        optim_method: Update rule, e.g. SGD.
        schedule: Learning-rate schedule queried every iteration.
        end_when: Terminal trigger.
        validation_data: Assembler over a bounded validation source.
        device: Where the model and batches live (CPU by default).
        log_interval: Log step metrics every N iterations.
    """

    def __init__(
        self,
        model: nn.Module,
        train_data: BatchAssembler,
        criterion: Criterion,
        optim_method: OptimMethod,
        schedule: LearningRateSchedule,
        end_when: Trigger,
        validation_data: Optional[BatchAssembler] = None,
        device: Optional[torch.device] = None,
        log_interval: int = 10,
    ) -> None:
        self.model = model
        self.train_data = train_data
        self.criterion = criterion
        self.optim_method = optim_method
        self.schedule = schedule
        self.end_when = end_when
        self.validation_data = validation_data
        self.device = device if device is not None else torch.device("cpu")

        self.state = TrainingState(learning_rate=schedule.rate(0))
        self.phase = TrainingPhase.RUNNING

        self._validation_trigger: Optional[Trigger] = None
        self._validation_methods: list[ValidationMethod] = []
        self._cache_dir: Optional[Path] = None
        self._cache_trigger: Optional[Trigger] = None
        self._metrics = MetricsTracker(log_interval=log_interval)
        self._stream: Optional[BatchStream] = None
        self._epoch_offset = 0

    # ── configuration ──

    def set_cache(self, path: Path, trigger: Trigger) -> "LocalOptimizer":
        """Write a checkpoint into `path` whenever `trigger` fires."""
        self._cache_dir = Path(path)
        self._cache_trigger = trigger
        return self

    def set_validation_trigger(self, trigger: Trigger) -> "LocalOptimizer":
        """Run a validation pass whenever `trigger` fires."""
        self._validation_trigger = trigger
        return self

    def add_validation(self, method: ValidationMethod) -> "LocalOptimizer":
        """Register a metric to accumulate during validation."""
        self._validation_methods.append(method)
        return self

    def load_state_dict(self, state: dict[str, Any]) -> None:
        """Continue from a saved TrainingState snapshot (see checkpoint.load_checkpoint)."""
        self.state = TrainingState(
            iteration=int(state.get("iteration", 0)),
            epoch=int(state.get("epoch", 1)),
            learning_rate=float(state.get("learning_rate", self.schedule.rate(0))),
            loss=state.get("loss"),
            optim_state=dict(state.get("optim_state", {})),
            best_score=state.get("best_score"),
            best_iteration=state.get("best_iteration"),
        )
        self._epoch_offset = self.state.epoch - 1

    def state_dict(self) -> dict[str, Any]:
        return self.state.to_dict(self.optim_method.state_dict(self.state.optim_state))

    def _check_setup(self) -> None:
        if self._validation_trigger is None:
            return
        if self.validation_data is None:
            raise ValueError("a validation trigger is set but no validation data was given")
        if self.validation_data.source.looped:
            raise ValueError("validation data must come from a bounded source")
        if not self._validation_methods:
            raise ValueError("a validation trigger is set but no validation method was added")

    # ── control loop ──

    def optimize(self) -> TrainingResult:
        """
        Run the control loop until `end_when` fires.

        Returns:
            TrainingResult with counters, validation history and checkpoints.

        Raises:
            TrainingStepError: Batch assembly, forward, backward or update failed.
            ModelDivergenceError: Loss became NaN or infinite.
            ValidationPhaseError: The validation pass failed.
        """
        self._check_setup()
        self.model.to(self.device)
        self.model.train()
        result = TrainingResult()

        logger.info(
            "Training started",
            extra={
                "iteration": self.state.iteration,
                "epoch": self.state.epoch,
                "end_when": repr(self.end_when),
                "validation_trigger": repr(self._validation_trigger),
                "cache_trigger": repr(self._cache_trigger),
                "batch_size": self.train_data.batch_size,
                "parallelism": self.train_data.parallelism,
            },
        )

        self.phase = TrainingPhase.RUNNING
        if self.end_when(self.state):
            self.phase = TrainingPhase.TERMINATED

        try:
            while self.phase is not TrainingPhase.TERMINATED:
                self._train_step()

                if self.end_when(self.state):
                    self.phase = TrainingPhase.TERMINATED
                    self._close_stream()
                    logger.info(
                        "End condition reached",
                        extra={"iteration": self.state.iteration, "epoch": self.state.epoch},
                    )

                if self._validation_trigger is not None and self._validation_trigger(self.state):
                    self._run_validation_phase(result)

                if self._cache_trigger is not None and self._cache_trigger(self.state):
                    self._run_checkpoint_phase(result)
        finally:
            self._close_stream()

        result.iteration = self.state.iteration
        result.epoch = self.state.epoch
        result.final_loss = self.state.loss

        logger.info(
            "Training complete",
            extra={
                "iteration": result.iteration,
                "epoch": result.epoch,
                "final_loss": result.final_loss,
                "checkpoints": len(result.checkpoints),
                "checkpoint_failures": len(result.checkpoint_failures),
                "final_validation": {
                    name: score.score for name, score in (result.final_validation or {}).items()
                },
            },
        )
        return result

    def _close_stream(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def _next_batch(self) -> Batch:
        if self._stream is None:
            self._stream = self.train_data.open()
        try:
            return next(self._stream)
        except StopIteration:
            pass

        # A bounded training source ran dry: start the next pass.
        source = self.train_data.source
        if source.looped:
            raise TrainingStepError(
                "training stream ended on a looped source", iteration=self.state.iteration + 1
            )
        self._close_stream()
        source.reset()
        self._stream = self.train_data.open()
        try:
            return next(self._stream)
        except StopIteration:
            raise TrainingStepError(
                "training source produced no batch in a full pass",
                iteration=self.state.iteration + 1,
            ) from None

    def _train_step(self) -> None:
        next_iteration = self.state.iteration + 1
        self._metrics.begin_step()

        try:
            batch = self._next_batch()
            self._metrics.batch_ready(batch.size)

            images = batch.images.to(self.device)
            labels = batch.labels.to(self.device)

            self.model.zero_grad(set_to_none=True)
            output = self.model(images)
            loss = self.criterion(output, labels)
            loss_value = float(loss.item())
            if not math.isfinite(loss_value):
                raise ModelDivergenceError(f"loss became {loss_value}", iteration=next_iteration)

            loss.backward()

            learning_rate = self.schedule.rate(self.state.iteration)
            parameters = [p for p in self.model.parameters() if p.requires_grad]
            gradients = [p.grad if p.grad is not None else torch.zeros_like(p) for p in parameters]
            self.optim_method.update(parameters, gradients, self.state.optim_state, learning_rate)
        except TrainingError:
            raise
        except Exception as err:
            raise TrainingStepError(f"training step failed: {err}", iteration=next_iteration) from err

        new_epoch = self._epoch_offset + batch.pass_index + 1
        self.state.epoch_boundary = new_epoch > self.state.epoch
        if self.state.epoch_boundary:
            self.state.epoch = new_epoch
            logger.info("Epoch started", extra={"epoch": new_epoch, "iteration": next_iteration})

        self.state.iteration = next_iteration
        self.state.learning_rate = learning_rate
        self.state.loss = loss_value

        self._metrics.end_step(
            iteration=self.state.iteration,
            epoch=self.state.epoch,
            loss=loss_value,
            learning_rate=learning_rate,
        )

    # ── validation ──

    def validate(self) -> dict[str, ValidationResult]:
        """
        Run every registered metric over one fresh pass of the validation source.

        The model is switched to eval mode and gradients are disabled, so
        neither parameters nor the training state change. Train mode is
        restored afterwards.
        """
        if self.validation_data is None:
            raise ValueError("no validation data configured")

        for method in self._validation_methods:
            method.reset()

        self.validation_data.source.reset()
        was_training = self.model.training
        self.model.eval()
        samples = 0
        try:
            with torch.no_grad(), self.validation_data.open() as stream:
                for batch in stream:
                    output = self.model(batch.images.to(self.device))
                    labels = batch.labels.to(output.device)
                    for method in self._validation_methods:
                        method.update(output, labels)
                    samples += batch.size
        finally:
            self.model.train(was_training)

        scores = {method.name: method.result() for method in self._validation_methods}
        logger.info(
            "Validation finished",
            extra={
                "iteration": self.state.iteration,
                "samples": samples,
                **{name: round(score.score, 6) for name, score in scores.items()},
            },
        )
        return scores

    def _run_validation_phase(self, result: TrainingResult) -> None:
        resume_phase = self.phase
        self.phase = TrainingPhase.VALIDATION
        try:
            scores = self.validate()
        except Exception as err:
            raise ValidationPhaseError(
                f"validation failed: {err}", iteration=self.state.iteration
            ) from err

        result.validation_history.append(ValidationRecord(self.state.iteration, scores))

        primary = self._validation_methods[0].name
        score = scores[primary].score
        if self.state.best_score is None or score > self.state.best_score:
            self.state.best_score = score
            self.state.best_iteration = self.state.iteration
            logger.info(
                "New best validation score",
                extra={"metric": primary, "score": score, "iteration": self.state.iteration},
            )
        self.phase = resume_phase

    # ── checkpoint ──

    def _run_checkpoint_phase(self, result: TrainingResult) -> None:
        if self._cache_dir is None:
            raise RuntimeError("checkpoint requested before set_cache()")
        resume_phase = self.phase
        self.phase = TrainingPhase.CHECKPOINT
        try:
            path = save_checkpoint(
                self.model, self.state_dict(), self._cache_dir, self.state.iteration
            )
            result.checkpoints.append(path)
        except CheckpointWriteError as err:
            logger.error(
                "Checkpoint failed, training continues without it",
                extra={"iteration": self.state.iteration, "error": str(err)},
            )
            result.checkpoint_failures.append(err)
        finally:
            self.phase = resume_phase
