"""
Bivariate Climate Classification

Reduces gridded temperature and precipitation time series to long-run
summaries, harmonizes them against an administrative boundary and assigns
each cell a bivariate class for a single-legend choropleth map.
"""

__version__ = "1.0.0"

from .config import BivariateConfig
from .exceptions import (
    EmptyTimeSeriesError,
    GeoreferenceMismatchError,
    InputValidationError,
    NoClassifiableDataError,
    PipelineError,
)
from .grid import GeoReference, RasterGrid, sample_points
from .temporal import TimeIndexedStack, reduce_stack, reduce_paired_stacks
from .periods import ClimatePeriod
from .harmonize import harmonize_grid, resample_grid
from .stacker import MultiBandGrid, reproject_bands, stack_variables, to_cell_records
from .classifier import (
    ClassBreakpoints,
    ClassificationResult,
    classify_records,
    decode_label,
    encode_label,
)
from .pipeline import BivariatePipeline

__all__ = [
    "BivariateConfig",
    "BivariatePipeline",
    "ClassBreakpoints",
    "ClassificationResult",
    "ClimatePeriod",
    "EmptyTimeSeriesError",
    "GeoReference",
    "GeoreferenceMismatchError",
    "InputValidationError",
    "MultiBandGrid",
    "NoClassifiableDataError",
    "PipelineError",
    "RasterGrid",
    "TimeIndexedStack",
    "classify_records",
    "decode_label",
    "encode_label",
    "harmonize_grid",
    "reduce_paired_stacks",
    "reduce_stack",
    "reproject_bands",
    "resample_grid",
    "sample_points",
    "stack_variables",
    "to_cell_records",
]
