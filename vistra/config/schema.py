# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Type-safe configuration schemas for vistra.

Every config section gets its own frozen pydantic model. Frozen means once
you create it, you cannot mutate it. The only mutable record during a run is
the optimizer's TrainingState, never the config.

The models use pydantic v2's ConfigDict with:
  - frozen=True: immutability after construction
  - extra="forbid": unknown fields cause immediate failure
  - validate_default=True: even defaults get type-checked

A YAML file usually holds `global:` plus `data:` and `train:`. Sections not
present stay None, and the commands check they have what they need.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

_FROZEN = ConfigDict(frozen=True, extra="forbid", validate_default=True)

TriggerKind = Literal["several_iteration", "max_iteration", "every_epoch", "max_epoch"]
ScheduleKind = Literal["constant", "step", "poly"]


class GlobalConfig(BaseModel):
    """
    Cross-cutting settings that apply to the entire process: reproducibility
    (seed), observability (log_level, log_file) and project identity.
    """

    model_config = _FROZEN

    config_version: str = Field(
        description="Schema version for compatibility tracking, e.g. '1.0.0'"
    )
    project_name: str = Field(default="vistra", description="Human-readable run identifier")
    seed: int = Field(
        default=42,
        ge=0,
        description="Global random seed propagated to sources, workers and torch",
    )
    log_level: str = Field(
        default="INFO",
        description="One of DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional path for file-based log output",
    )


class DataConfig(BaseModel):
    """
    Where the corpus lives and how it is streamed into batches.

    The folder holds one subdirectory per split, each laid out as
    `<split>/<class_name>/<image file>`.
    """

    model_config = _FROZEN

    folder: str = Field(default="./", description="Root of the image corpus")
    train_directory: str = Field(default="train", description="Training split, relative to folder")
    validation_directory: str = Field(
        default="val", description="Validation split, relative to folder"
    )
    parallelism: int = Field(
        default=1,
        ge=1,
        le=256,
        description="Number of preprocessing worker threads",
    )
    buffer: int = Field(
        default=4,
        ge=1,
        description="Maximum number of finished batches waiting for the optimizer",
    )
    short_edge: int = Field(
        default=256,
        ge=1,
        description="Decoded images are resized so their short edge has this length",
    )
    mean: tuple[float, float, float] = Field(
        default=(0.485, 0.456, 0.406),
        description="Per-channel mean in RGB order",
    )
    std: tuple[float, float, float] = Field(
        default=(0.229, 0.224, 0.225),
        description="Per-channel standard deviation in RGB order",
    )
    extensions: list[str] = Field(
        default_factory=lambda: [".jpeg", ".jpg", ".png", ".bmp"],
        description="Case-insensitive image file suffixes picked up from class folders",
    )
    shuffle: bool = Field(default=True, description="Shuffle sample order with the global seed")
    reshuffle_each_pass: bool = Field(
        default=False,
        description="Draw a fresh order every time the looped training source wraps",
    )
    on_transform_error: Literal["abort", "skip"] = Field(
        default="abort",
        description="What the batch assembler does with a sample that fails to preprocess",
    )

    @model_validator(mode="after")
    def _check_std(self) -> "DataConfig":
        if any(value <= 0.0 for value in self.std):
            raise ValueError("std values must all be positive")
        return self


class TriggerConfig(BaseModel):
    """A trigger spelled out in config, e.g. `{kind: several_iteration, n: 1000}`."""

    model_config = _FROZEN

    kind: TriggerKind = Field(description="Which predicate to evaluate")
    n: Optional[int] = Field(
        default=None,
        ge=1,
        description="Period or threshold; required for every kind except every_epoch",
    )

    @model_validator(mode="after")
    def _check_n(self) -> "TriggerConfig":
        if self.kind != "every_epoch" and self.n is None:
            raise ValueError(f"trigger kind '{self.kind}' requires n")
        return self


class ScheduleConfig(BaseModel):
    """
    Learning-rate schedule. The base rate comes from TrainConfig.learning_rate.

      constant: base / (1 + iteration * decay)
      step:     base * gamma ** (iteration // step_size)
      poly:     base * (1 - iteration / max_iteration) ** power
    """

    model_config = _FROZEN

    kind: ScheduleKind = Field(default="constant")
    decay: float = Field(default=0.0, ge=0.0, description="Decay for the constant schedule")
    step_size: Optional[int] = Field(default=None, ge=1, description="Iterations per step")
    gamma: float = Field(default=0.1, gt=0.0, description="Multiplier applied at each step")
    power: float = Field(default=0.5, gt=0.0, description="Exponent of the polynomial decay")
    max_iteration: Optional[int] = Field(
        default=None, ge=1, description="Iteration at which poly decay reaches zero"
    )

    @model_validator(mode="after")
    def _check_kind_fields(self) -> "ScheduleConfig":
        if self.kind == "step" and self.step_size is None:
            raise ValueError("step schedule requires step_size")
        if self.kind == "poly" and self.max_iteration is None:
            raise ValueError("poly schedule requires max_iteration")
        return self


class TrainConfig(BaseModel):
    """Network choice, optimization hyperparameters and the three control triggers."""

    model_config = _FROZEN

    config_version: str = Field(description="Schema version")
    net: str = Field(default="alexnet", description="Registered network name")
    num_classes: int = Field(default=1000, ge=2, description="Number of output classes")
    image_size: int = Field(default=227, ge=1, description="Square crop fed to the network")
    batch_size: int = Field(default=256, ge=1, description="Samples per optimization step")
    learning_rate: float = Field(default=0.01, gt=0.0, description="Base learning rate")
    momentum: float = Field(default=0.9, ge=0.0, lt=1.0)
    dampening: float = Field(default=0.0, ge=0.0, le=1.0)
    nesterov: bool = Field(default=False)
    weight_decay: float = Field(default=0.0005, ge=0.0)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    test_trigger: Optional[TriggerConfig] = Field(
        default=None, description="When to run validation; None disables it"
    )
    cache_trigger: Optional[TriggerConfig] = Field(
        default=None, description="When to write a checkpoint; None disables it"
    )
    end_when: TriggerConfig = Field(description="Terminal condition for the control loop")
    cache_directory: Optional[str] = Field(
        default=None, description="Where checkpoints are written"
    )
    log_interval: int = Field(default=10, ge=1, description="Log step metrics every N iterations")

    @model_validator(mode="after")
    def _check_consistency(self) -> "TrainConfig":
        if self.nesterov and (self.momentum <= 0.0 or self.dampening != 0.0):
            raise ValueError("nesterov momentum requires momentum > 0 and dampening == 0")
        if self.cache_trigger is not None and self.cache_directory is None:
            raise ValueError("cache_trigger is set but cache_directory is not")
        return self


class VistraConfig(BaseModel):
    """
    Top-level config container.

    `global` is a Python keyword, so the section is exposed as `global_config`
    and read from YAML through its alias.
    """

    model_config = ConfigDict(
        frozen=True, extra="forbid", validate_default=True, populate_by_name=True
    )

    global_config: GlobalConfig = Field(alias="global")
    data: Optional[DataConfig] = Field(default=None)
    train: Optional[TrainConfig] = Field(default=None)
