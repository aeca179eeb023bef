"""
Temporal reduction of climate time series.

Collapses a time-indexed stack of grids into one long-run summary grid.
Composite measures (daily maximum / minimum temperature) are reduced in two
explicit passes: first the per-month mean of the pair, then the mean over
all months. Each pass keeps its own no-data semantics.
"""

import calendar
import logging
from typing import Any, List, Optional, Sequence

import cftime
import numpy as np
import pandas as pd
import xarray as xr

from .exceptions import EmptyTimeSeriesError, GeoreferenceMismatchError, InputValidationError
from .grid import GeoReference, RasterGrid

logger = logging.getLogger(__name__)

KELVIN_OFFSET = 273.15
SECONDS_PER_DAY = 86400

TEMPERATURE_UNITS_K = {'K', 'kelvin', 'Kelvin'}
PRECIPITATION_FLUX_UNITS = {'kg m-2 s-1', 'kg m^-2 s^-1', 'kg/m2/s'}


def _cftime_to_timestamp(t: cftime.datetime) -> pd.Timestamp:
    # Days missing from the standard calendar (e.g. 30 February) fall on the month's last day
    day = min(t.day, calendar.monthrange(t.year, t.month)[1])
    return pd.Timestamp(year=t.year, month=t.month, day=day,
                        hour=t.hour, minute=t.minute, second=t.second)


def to_timestamps(timestamps: Sequence[Any]) -> pd.DatetimeIndex:
    """
    Normalize timestamps to a pandas DatetimeIndex.

    Accepts numpy and pandas datetimes, date strings and cftime dates from
    non-standard model calendars (noleap, 360_day, ...). cftime dates keep
    their year, month, day and time of day.
    """
    values = list(timestamps)
    if values and isinstance(values[0], cftime.datetime):
        values = [_cftime_to_timestamp(t) for t in values]
    return pd.DatetimeIndex(pd.to_datetime(values))


class TimeIndexedStack:
    """Ordered, timestamped grids of one variable sharing georeferencing."""

    def __init__(self, variable: str, timestamps: Sequence[Any], layers: Sequence[RasterGrid],
                 units: Optional[str] = None):
        if len(layers) == 0 or len(timestamps) == 0:
            raise EmptyTimeSeriesError(f"No timestamps in time series for '{variable}'")
        if len(timestamps) != len(layers):
            raise InputValidationError(
                f"'{variable}' has {len(timestamps)} timestamps but {len(layers)} layers"
            )

        georef = layers[0].georef
        mismatched = [layer.georef for layer in layers[1:] if not layer.georef.matches(georef)]
        if mismatched:
            raise GeoreferenceMismatchError(
                f"Layers of '{variable}' do not share georeferencing",
                [georef.describe()] + [g.describe() for g in mismatched[:3]]
            )

        times = to_timestamps(timestamps)
        order = np.argsort(times.values, kind='stable')

        self.variable = variable
        self.units = units if units is not None else layers[0].units
        self.georef = georef
        self.timestamps = times[order]
        self.layers = tuple(layers[i] for i in order)

    def __len__(self) -> int:
        return len(self.layers)

    def __repr__(self) -> str:
        return (f"TimeIndexedStack('{self.variable}', {len(self)} layers, "
                f"{self.timestamps[0]:%Y-%m} to {self.timestamps[-1]:%Y-%m})")

    def to_dataarray(self) -> xr.DataArray:
        """Stack the layers into a (time, y, x) DataArray."""
        return xr.DataArray(
            np.stack([layer.values for layer in self.layers]),
            coords={'time': self.timestamps.values,
                    'y': self.georef.y_centers(),
                    'x': self.georef.x_centers()},
            dims=('time', 'y', 'x'),
            name=self.variable,
        )

    def select(self, start: Any = None, end: Any = None) -> "TimeIndexedStack":
        """Subset to timestamps within [start, end] (inclusive)."""
        keep = np.ones(len(self), dtype=bool)
        if start is not None:
            keep &= self.timestamps >= pd.Timestamp(start)
        if end is not None:
            keep &= self.timestamps <= pd.Timestamp(end)
        return TimeIndexedStack(self.variable,
                                self.timestamps[keep],
                                [layer for layer, k in zip(self.layers, keep) if k],
                                units=self.units)

    @classmethod
    def from_dataarray(cls, da: xr.DataArray, crs: Any = None, variable: Optional[str] = None,
                       nodata: Optional[float] = None) -> "TimeIndexedStack":
        """
        Build a stack from a (time, lat, lon) or (time, y, x) DataArray.

        Args:
            da: Time-indexed DataArray
            crs: CRS of the spatial coordinates (defaults to ``da.attrs['crs']``)
            variable: Variable name (defaults to ``da.name``)
            nodata: Optional sentinel value marking missing cells

        Returns:
            TimeIndexedStack with one layer per timestamp
        """
        if 'time' not in da.dims:
            raise InputValidationError(f"No time dimension in {da.name}: {da.dims}")
        variable = variable or da.name
        if crs is None:
            crs = da.attrs.get('crs')
        units = da.attrs.get('units')

        layers = []
        for i in range(da.sizes['time']):
            layer = RasterGrid.from_dataarray(da.isel(time=i, drop=True), crs=crs, nodata=nodata)
            layers.append(RasterGrid(layer.values, layer.georef, name=variable, units=units))
        return cls(variable, da['time'].values, layers, units=units)


def _stack_from_array(variable: str, timestamps: Sequence[Any], values: np.ndarray,
                      georef: GeoReference, units: Optional[str]) -> TimeIndexedStack:
    layers = [RasterGrid(values[i], georef, name=variable, units=units)
              for i in range(values.shape[0])]
    return TimeIndexedStack(variable, timestamps, layers, units=units)


def monthly_means(stack: TimeIndexedStack) -> TimeIndexedStack:
    """
    Collapse sub-monthly layers to one mean layer per calendar month.

    Stacks that already hold at most one layer per month are returned
    unchanged. Within a month, no-data layers are skipped per cell.

    Args:
        stack: Input time series

    Returns:
        Monthly time series stamped at the first day of each month
    """
    months = stack.timestamps.to_period('M').to_timestamp()
    if not months.duplicated().any():
        return stack

    logger.debug(f"Aggregating {len(stack)} layers of '{stack.variable}' to "
                 f"{months.nunique()} monthly means")
    da = stack.to_dataarray().assign_coords(month=('time', months))
    monthly = da.groupby('month').mean('time', skipna=True)
    return _stack_from_array(stack.variable, monthly['month'].values,
                             monthly.transpose('month', 'y', 'x').values,
                             stack.georef, stack.units)


def pair_mean(stack_a: TimeIndexedStack, stack_b: TimeIndexedStack,
              variable: Optional[str] = None) -> TimeIndexedStack:
    """
    First reduction pass for composite measures: per-month mean of a pair.

    A cell missing in either input month is no-data in the output month.

    Args:
        stack_a: First series (e.g. daily maximum temperature)
        stack_b: Second series (e.g. daily minimum temperature)
        variable: Name of the composite variable

    Returns:
        Monthly series of the pairwise mean
    """
    variable = variable or f"{stack_a.variable}_{stack_b.variable}_mean"
    if not stack_a.georef.matches(stack_b.georef):
        raise GeoreferenceMismatchError(
            f"Cannot pair '{stack_a.variable}' with '{stack_b.variable}'",
            [stack_a.georef.describe(), stack_b.georef.describe()]
        )
    if stack_a.units and stack_b.units and stack_a.units != stack_b.units:
        raise InputValidationError(
            f"Cannot pair '{stack_a.variable}' ({stack_a.units}) with "
            f"'{stack_b.variable}' ({stack_b.units})"
        )

    monthly_a = monthly_means(stack_a)
    monthly_b = monthly_means(stack_b)
    periods_a = monthly_a.timestamps.to_period('M')
    periods_b = monthly_b.timestamps.to_period('M')
    if not periods_a.equals(periods_b):
        missing = periods_a.symmetric_difference(periods_b)
        raise InputValidationError(
            f"'{stack_a.variable}' and '{stack_b.variable}' cover different months: "
            f"{[str(p) for p in missing[:5]]}"
        )

    values = np.stack([(a.values + b.values) / 2.0
                       for a, b in zip(monthly_a.layers, monthly_b.layers)])
    logger.debug(f"Paired '{stack_a.variable}' and '{stack_b.variable}' into "
                 f"{len(monthly_a)} monthly layers of '{variable}'")
    return _stack_from_array(variable, monthly_a.timestamps, values,
                             monthly_a.georef, monthly_a.units)


def reduce_stack(stack: TimeIndexedStack) -> RasterGrid:
    """
    Per-cell mean over all months, ignoring no-data months.

    A cell with no observation in any month stays no-data.

    Args:
        stack: Time series of one variable

    Returns:
        Long-run summary grid with the stack's georeferencing
    """
    monthly = monthly_means(stack)
    da = monthly.to_dataarray()
    summary = da.mean(dim='time', skipna=True)

    empty_cells = int((da.notnull().sum(dim='time') == 0).sum())
    logger.info(f"Reduced '{stack.variable}' over {len(monthly)} months "
                f"({monthly.timestamps[0]:%Y-%m} to {monthly.timestamps[-1]:%Y-%m})")
    if empty_cells:
        logger.debug(f"{empty_cells} cells of '{stack.variable}' have no observation in any month")

    return RasterGrid(summary.values, monthly.georef, name=stack.variable, units=monthly.units)


def reduce_paired_stacks(stack_a: TimeIndexedStack, stack_b: TimeIndexedStack,
                         variable: Optional[str] = None) -> RasterGrid:
    """Mean of monthly means of a composite pair, as two explicit passes."""
    return reduce_stack(pair_mean(stack_a, stack_b, variable))


def reduce_variable(stacks: Any, variable: Optional[str] = None) -> RasterGrid:
    """
    Reduce either a single stack or a (first, second) pair of stacks.

    Args:
        stacks: TimeIndexedStack or a sequence of one or two stacks
        variable: Name for the summary grid

    Returns:
        Summary grid
    """
    if isinstance(stacks, TimeIndexedStack):
        stacks = [stacks]
    stacks: List[TimeIndexedStack] = list(stacks)
    if len(stacks) == 1:
        grid = reduce_stack(stacks[0])
        return grid.with_values(grid.values, name=variable) if variable else grid
    if len(stacks) == 2:
        return reduce_paired_stacks(stacks[0], stacks[1], variable)
    raise InputValidationError(f"Expected one stack or a pair of stacks, got {len(stacks)}")


def convert_units(grid: RasterGrid) -> RasterGrid:
    """
    Convert model-native units to reporting units.

    Kelvin becomes degrees Celsius and precipitation flux
    (kg m-2 s-1) becomes mm/day. Other units are returned unchanged.
    """
    if grid.units in TEMPERATURE_UNITS_K:
        logger.debug(f"Converting '{grid.name}' from Kelvin to degC")
        return grid.with_values(grid.values - KELVIN_OFFSET, units='degC')
    if grid.units in PRECIPITATION_FLUX_UNITS:
        logger.debug(f"Converting '{grid.name}' from {grid.units} to mm/day")
        return grid.with_values(grid.values * SECONDS_PER_DAY, units='mm/day')
    return grid
