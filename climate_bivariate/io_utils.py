"""
I/O Utilities Module

Adapters between the pipeline core and its collaborators: turning gridded
climate data (xarray Datasets / NetCDF files) into time-indexed stacks, and
writing the classified cell table for the map composer.
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Tuple

import numpy as np
import xarray as xr
import yaml

from .classifier import ClassificationResult, class_counts
from .exceptions import EmptyTimeSeriesError, InputValidationError
from .periods import ClimatePeriod
from .temporal import TimeIndexedStack
from .utils import ensure_directory_exists

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_CRS = 'EPSG:4326'


def convert_longitudes_to_standard(ds: xr.Dataset) -> xr.Dataset:
    """
    Convert longitudes from 0-360 format to standard -180 to 180 format.

    Args:
        ds: Dataset with longitude coordinates in 0-360 format

    Returns:
        Dataset with longitude coordinates in -180 to 180 format
    """
    if 'lon' not in ds.coords:
        logger.warning("'lon' coordinate not found, skipping longitude conversion")
        return ds

    lon_values = ds.lon.values
    new_lon_values = np.where(lon_values > 180, lon_values - 360, lon_values)
    return ds.assign_coords(lon=new_lon_values).sortby('lon')


def stacks_from_dataset(ds: xr.Dataset, variables: Iterable[str], crs: Any = None,
                        nodata: Optional[float] = None) -> Dict[str, TimeIndexedStack]:
    """
    Split a multi-variable climate cube into one stack per variable.

    Args:
        ds: Dataset with a ``time`` dimension and ``lat``/``lon`` or ``y``/``x``
        variables: Data variables to extract
        crs: CRS of the spatial coordinates (defaults to ``ds.attrs['crs']``,
            then to geographic WGS84)
        nodata: Optional sentinel value marking missing cells

    Returns:
        Dictionary of variable name to TimeIndexedStack
    """
    variables = list(variables)
    missing = [v for v in variables if v not in ds.data_vars]
    if missing:
        raise InputValidationError(
            f"Variables {missing} not found. Available variables: {list(ds.data_vars)}"
        )
    if crs is None:
        crs = ds.attrs.get('crs', DEFAULT_SOURCE_CRS)

    if 'lon' in ds.coords and float(ds.lon.max()) > 180:
        logger.info("Converting longitudes from 0-360 to -180 to 180 format...")
        ds = convert_longitudes_to_standard(ds)

    stacks = {}
    for var_name in variables:
        stacks[var_name] = TimeIndexedStack.from_dataarray(ds[var_name], crs=crs,
                                                           variable=var_name, nodata=nodata)
        logger.info(f"Loaded {stacks[var_name]}")
    return stacks


def load_climate_stacks(file_path: str, variables: Iterable[str], crs: Any = None,
                        period: Optional[ClimatePeriod] = None,
                        nodata: Optional[float] = None) -> Dict[str, TimeIndexedStack]:
    """
    Load time-indexed stacks from a NetCDF file.

    Args:
        file_path: Path to the NetCDF file
        variables: Data variables to load
        crs: CRS of the spatial coordinates
        period: Optional climate period to restrict the time axis to
        nodata: Optional sentinel value marking missing cells

    Returns:
        Dictionary of variable name to TimeIndexedStack
    """
    variables = list(variables)
    logger.info(f"Opening climate data {file_path}")
    with xr.open_dataset(file_path) as ds:
        missing = [v for v in variables if v not in ds.data_vars]
        if missing:
            raise InputValidationError(
                f"Variables {missing} not found in {os.path.basename(file_path)}. "
                f"Available variables: {list(ds.data_vars)}"
            )
        subset = ds[variables]
        if period is not None:
            # Year bounds hold in any calendar
            years = subset['time'].dt.year
            subset = subset.isel(time=((years >= period.start_year) & (years <= period.end_year)).values)
            if subset.sizes.get('time', 0) == 0:
                raise EmptyTimeSeriesError(f"No data in {os.path.basename(file_path)} for {period}")
        subset = subset.load()
        subset.attrs.update(ds.attrs)

    return stacks_from_dataset(subset, variables, crs=crs, nodata=nodata)


def save_classification(result: ClassificationResult, output_dir: str,
                        name: str = 'bivariate') -> Tuple[str, str]:
    """
    Write the classified cell table and its breakpoints.

    The CSV holds one row per classified cell (``x``, ``y``, both variable
    values and ``class_label``) in row-major order. The YAML file records
    the breakpoints and per-class counts.

    Args:
        result: Classification result
        output_dir: Output directory (created if needed)
        name: File name prefix

    Returns:
        Tuple of (table path, breakpoints path)
    """
    ensure_directory_exists(output_dir)
    table_path = os.path.join(output_dir, f'{name}_classes.csv')
    breaks_path = os.path.join(output_dir, f'{name}_breaks.yaml')

    result.table.to_csv(table_path, index=False)

    summary = {
        'created': datetime.now().isoformat(),
        'dim': result.dim,
        'x': result.x_breaks.to_dict(),
        'y': result.y_breaks.to_dict(),
        'class_counts': {label: int(n) for label, n in class_counts(result).items()},
    }
    with open(breaks_path, 'w') as f:
        yaml.safe_dump(summary, f, default_flow_style=False, sort_keys=False)

    logger.info(f"Saved {len(result.table)} classified cells to {table_path}")
    logger.info(f"Saved breakpoints to {breaks_path}")
    return table_path, breaks_path
