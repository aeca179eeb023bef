"""
Climate period definition and selection.

A climate period is the span of years a long-run summary is computed over
(e.g. the 1991-2020 normal period).
"""

import logging
from dataclasses import dataclass

from .exceptions import InputValidationError
from .temporal import TimeIndexedStack

logger = logging.getLogger(__name__)

# Minimum years for a meaningful climate normal (2/3 of a 30-year window)
MIN_YEARS_REQUIRED = 20


@dataclass
class ClimatePeriod:
    """Data class representing a climate period."""
    start_year: int
    end_year: int
    period_name: str = ""

    def __post_init__(self):
        if self.end_year < self.start_year:
            raise InputValidationError(
                f"Period end {self.end_year} is before start {self.start_year}"
            )
        if not self.period_name:
            self.period_name = f"climate_{self.start_year}_{self.end_year}"

    @property
    def length(self) -> int:
        """Get the length of the period in years."""
        return self.end_year - self.start_year + 1

    @property
    def start(self) -> str:
        return f"{self.start_year}-01-01"

    @property
    def end(self) -> str:
        return f"{self.end_year}-12-31T23:59:59"

    def __str__(self) -> str:
        return f"{self.period_name} ({self.start_year}-{self.end_year})"


def select_period(stack: TimeIndexedStack, period: ClimatePeriod,
                  min_years_required: int = MIN_YEARS_REQUIRED) -> TimeIndexedStack:
    """
    Restrict a time series to a climate period.

    Args:
        stack: Time series to subset
        period: Climate period to keep
        min_years_required: Years below which a warning is logged

    Returns:
        Subset time series

    Raises:
        EmptyTimeSeriesError: If no timestamp falls within the period
    """
    subset = stack.select(period.start, period.end)
    years = subset.timestamps.year.nunique()
    logger.info(f"Selected {len(subset)} layers of '{stack.variable}' for {period} "
                f"covering {years} years")
    if years < min_years_required:
        logger.warning(f"Only {years} years of '{stack.variable}' in {period}; "
                       f"a climate normal needs at least {min_years_required}")
    return subset
