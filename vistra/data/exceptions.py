# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Exceptions raised by the data pipeline.

EmptyCorpusError is fatal and only ever raised while a source is being
constructed. TransformError is per-sample: the batch assembler either logs and
skips it or stops the whole pipeline, depending on its error policy.
"""

from typing import Optional


class DataError(Exception):
    """Base for all data pipeline errors."""


class EmptyCorpusError(DataError):
    """Raised when a data source has nothing to enumerate."""


class DataSourceError(DataError):
    """Raised when a source is driven outside its contract (wrong mode, read past a pass)."""


class TransformError(DataError):
    """
    A pipeline stage could not process one sample.

    Attributes:
        sample_id: Identity of the offending sample (usually its path).
        stage: Name of the stage that failed.
    """

    def __init__(self, message: str, sample_id: Optional[str] = None, stage: Optional[str] = None) -> None:
        self.sample_id = sample_id
        self.stage = stage
        prefix = f"[{stage}] " if stage else ""
        suffix = f" (sample: {sample_id})" if sample_id is not None else ""
        super().__init__(f"{prefix}{message}{suffix}")


class PipelineTypeError(DataError, TypeError):
    """Raised at composition time when two stages' types don't line up."""
