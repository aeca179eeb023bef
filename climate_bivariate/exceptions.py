"""
Error taxonomy for the bivariate climate pipeline.

Every error raised here is fatal to a pipeline run. Missing cells inside a
grid are not errors; they are carried as no-data values.
"""

from typing import Any, Optional, Sequence


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class InputValidationError(PipelineError, ValueError):
    """Invalid input: bad resolution, degenerate boundary, invalid dim, etc."""


class EmptyTimeSeriesError(InputValidationError):
    """A time-indexed stack without any timestamp."""


class GeoreferenceMismatchError(PipelineError):
    """Grids that must share georeferencing do not."""

    def __init__(self, message: str, descriptors: Optional[Sequence[Any]] = None):
        self.descriptors = list(descriptors or [])
        if self.descriptors:
            details = "; ".join(repr(d) for d in self.descriptors)
            message = f"{message} ({details})"
        super().__init__(message)


class NoClassifiableDataError(PipelineError):
    """No cell has a finite value for both classification variables."""
