"""
Core bivariate pipeline logic.

This module contains the BivariatePipeline class that orchestrates the
reduction, harmonization, stacking and classification workflow.
"""

import logging
from datetime import datetime
from typing import Any, Optional, Tuple

import dask

from .classifier import ClassificationResult, classify_records
from .config import BivariateConfig
from .grid import RasterGrid
from .harmonize import harmonize_grid
from .periods import select_period
from .stacker import reproject_bands, stack_variables, to_cell_records
from .temporal import TimeIndexedStack, convert_units, reduce_variable
from .utils import log_grid_quality, log_memory_usage

logger = logging.getLogger(__name__)


class BivariatePipeline:
    """Main pipeline class: climate time series in, classified cell table out."""

    def __init__(self, config: Optional[BivariateConfig] = None):
        """
        Initialize the pipeline.

        Args:
            config: BivariateConfig instance with processing parameters
        """
        self.config = config if config is not None else BivariateConfig()
        self.config.validate()

    def prepare_variable(self, stacks: Any, variable: str, boundary: Any,
                         boundary_crs: Any = None) -> RasterGrid:
        """
        Reduce and harmonize the time series of one variable.

        Args:
            stacks: TimeIndexedStack, or a pair of stacks for composite
                measures such as daily maximum / minimum temperature
            variable: Name of the summary variable
            boundary: Boundary geometry, GeoSeries or GeoDataFrame
            boundary_crs: CRS of a plain boundary geometry

        Returns:
            Harmonized summary grid
        """
        if isinstance(stacks, TimeIndexedStack):
            stacks = [stacks]
        stacks = list(stacks)

        period = self.config.period
        if period is not None:
            stacks = [select_period(stack, period) for stack in stacks]

        summary = reduce_variable(stacks, variable)
        if self.config.convert_units:
            summary = convert_units(summary)
        log_grid_quality(summary)

        return harmonize_grid(summary, self.config.target_cell_size, boundary, boundary_crs)

    def reduce_and_harmonize(self, x_stacks: Any, y_stacks: Any, boundary: Any,
                             boundary_crs: Any = None) -> Tuple[RasterGrid, RasterGrid]:
        """Prepare both variables as independent dask tasks."""
        tasks = [
            dask.delayed(self.prepare_variable)(x_stacks, self.config.x_variable,
                                                boundary, boundary_crs),
            dask.delayed(self.prepare_variable)(y_stacks, self.config.y_variable,
                                                boundary, boundary_crs),
        ]
        x_grid, y_grid = dask.compute(*tasks, scheduler=self.config.scheduler)
        log_memory_usage("after harmonization")
        return x_grid, y_grid

    def run(self, x_stacks: Any, y_stacks: Any, boundary: Any,
            boundary_crs: Any = None) -> ClassificationResult:
        """
        Execute the full workflow.

        Args:
            x_stacks: Time series of the first variable (a stack or a pair)
            y_stacks: Time series of the second variable (a stack or a pair)
            boundary: Boundary geometry, GeoSeries or GeoDataFrame
            boundary_crs: CRS of a plain boundary geometry

        Returns:
            ClassificationResult with the classified cell table and breakpoints
        """
        start_time = datetime.now()
        logger.info(f"Starting bivariate classification at {start_time}")
        logger.info(f"Variables: {self.config.x_variable} x {self.config.y_variable}, "
                    f"dim={self.config.dim}, style={self.config.style}")
        log_memory_usage("startup")

        x_grid, y_grid = self.reduce_and_harmonize(x_stacks, y_stacks, boundary, boundary_crs)

        bands = stack_variables(x_grid, y_grid, self.config.x_variable, self.config.y_variable)
        bands = reproject_bands(bands, self.config.target_crs, self.config.reproject_cell_size)
        log_memory_usage("after reprojection")

        records = to_cell_records(bands)
        result = classify_records(records, self.config.x_variable, self.config.y_variable,
                                  dim=self.config.dim, style=self.config.style)

        logger.info(f"{self.config.x_variable} breaks: {result.x_breaks.values}")
        logger.info(f"{self.config.y_variable} breaks: {result.y_breaks.values}")
        logger.info(f"Processing complete! Total runtime: {datetime.now() - start_time}")
        return result
