"""
Variable stacking, reprojection and flattening.

Combines the two harmonized variable grids into one multi-band grid,
reprojects all bands jointly to the map CRS and flattens the result into
a table of cell records where both variables are observed.
"""

import logging
import math
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
import xarray as xr
from rasterio.warp import calculate_default_transform, transform_bounds
from rasterio.warp import transform as warp_transform

from .exceptions import GeoreferenceMismatchError, InputValidationError
from .grid import GeoReference, RasterGrid, sample_points, to_crs

logger = logging.getLogger(__name__)

COORDINATE_COLUMNS = ('x', 'y')
# Points added along each edge when projecting an extent
DENSIFY_POINTS = 21


class MultiBandGrid:
    """Named bands sharing one georeferencing descriptor."""

    def __init__(self, bands: Mapping[str, RasterGrid]):
        if not bands:
            raise InputValidationError("A multi-band grid needs at least one band")
        items = list(bands.items())
        first_name, first = items[0]
        mismatched = [(name, grid) for name, grid in items[1:]
                      if not grid.georef.matches(first.georef)]
        if mismatched:
            raise GeoreferenceMismatchError(
                "Bands do not share georeferencing",
                [{'band': first_name, **first.georef.describe()}]
                + [{'band': name, **grid.georef.describe()} for name, grid in mismatched]
            )
        self._bands: Dict[str, RasterGrid] = dict(items)
        self.georef = first.georef

    @property
    def crs(self):
        return self.georef.crs

    @property
    def band_names(self) -> Tuple[str, ...]:
        return tuple(self._bands)

    def __getitem__(self, name: str) -> RasterGrid:
        return self._bands[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._bands)

    def __len__(self) -> int:
        return len(self._bands)

    def items(self):
        return self._bands.items()

    def to_dataset(self) -> xr.Dataset:
        """Convert to an xarray Dataset with one data variable per band."""
        ds = xr.Dataset({name: grid.to_dataarray() for name, grid in self._bands.items()})
        ds.attrs['crs'] = self.crs.to_string()
        return ds

    def __repr__(self) -> str:
        return f"MultiBandGrid(bands={list(self._bands)}, shape={self.georef.shape})"


def stack_variables(x_grid: RasterGrid, y_grid: RasterGrid,
                    x_name: Optional[str] = None, y_name: Optional[str] = None) -> MultiBandGrid:
    """
    Combine the two classification variables into one multi-band grid.

    Args:
        x_grid: Harmonized grid of the first variable
        y_grid: Harmonized grid of the second variable
        x_name: Band name of the first variable (defaults to its grid name)
        y_name: Band name of the second variable (defaults to its grid name)

    Returns:
        Two-band grid
    """
    x_name = x_name or x_grid.name
    y_name = y_name or y_grid.name
    if not x_name or not y_name:
        raise InputValidationError("Both bands need a name")
    if x_name == y_name:
        raise InputValidationError(f"Band names must be unique, got '{x_name}' twice")
    reserved = {x_name, y_name} & set(COORDINATE_COLUMNS)
    if reserved:
        raise InputValidationError(f"Band names {sorted(reserved)} are reserved for coordinates")
    return MultiBandGrid({x_name: x_grid, y_name: y_grid})


def destination_georeference(georef: GeoReference, dst_crs: Any,
                             cell_size: Optional[float] = None) -> GeoReference:
    """
    Compute the grid covering a source grid's extent in another CRS.

    Args:
        georef: Source georeferencing
        dst_crs: Target CRS
        cell_size: Target cell size in target CRS units (estimated if None)

    Returns:
        Destination georeferencing with square cells
    """
    dst = to_crs(dst_crs)
    if cell_size is not None and (not np.isfinite(cell_size) or cell_size <= 0):
        raise InputValidationError(f"Target cell size must be positive, got {cell_size}")

    rows, cols = georef.shape
    dst_west, dst_south, dst_east, dst_north = transform_bounds(
        georef.crs, dst, *georef.bounds, densify_pts=DENSIFY_POINTS
    )
    if cell_size is None:
        transform, _, _ = calculate_default_transform(
            georef.crs, dst, cols, rows, *georef.bounds
        )
        size = abs(transform.a)
    else:
        size = float(cell_size)

    # Whole cells from the north-west corner, covering the full extent
    dst_cols = max(1, math.ceil((dst_east - dst_west) / size - 1e-6))
    dst_rows = max(1, math.ceil((dst_north - dst_south) / size - 1e-6))
    return GeoReference.from_origin(dst_west, dst_north, size, (dst_rows, dst_cols), dst)


def _source_points(src: GeoReference, dst: GeoReference) -> Tuple[np.ndarray, np.ndarray]:
    """Destination cell centres expressed in the source CRS."""
    xs, ys = np.meshgrid(dst.x_centers(), dst.y_centers())
    src_xs, src_ys = warp_transform(dst.crs, src.crs, xs.ravel(), ys.ravel())
    return (np.asarray(src_xs, dtype=float).reshape(dst.shape),
            np.asarray(src_ys, dtype=float).reshape(dst.shape))


def _needs_reprojection(georef: GeoReference, dst_crs: Any, cell_size: Optional[float]) -> bool:
    if to_crs(dst_crs) != georef.crs:
        return True
    return cell_size is not None and not np.isclose(cell_size, georef.cell_size)


def reproject_bands(bands: MultiBandGrid, dst_crs: Any,
                    cell_size: Optional[float] = None) -> MultiBandGrid:
    """
    Reproject every band onto one destination grid in the target CRS.

    Each destination cell centre is transformed back to the source CRS once
    and every band is bilinearly sampled there, with the same no-data rules
    as resampling.

    Args:
        bands: Multi-band grid to reproject
        dst_crs: Target CRS
        cell_size: Target cell size in target CRS units (estimated if None)

    Returns:
        Reprojected multi-band grid
    """
    if not _needs_reprojection(bands.georef, dst_crs, cell_size):
        logger.debug(f"Bands already in {bands.crs}, skipping reprojection")
        return bands

    dst_georef = destination_georeference(bands.georef, dst_crs, cell_size)
    src_xs, src_ys = _source_points(bands.georef, dst_georef)
    logger.info(f"Reprojecting {len(bands)} bands from {bands.crs} to {dst_georef.crs} "
                f"({bands.georef.shape} -> {dst_georef.shape} cells)")

    return MultiBandGrid({
        name: grid.with_values(sample_points(grid, src_xs, src_ys), georef=dst_georef)
        for name, grid in bands.items()
    })


def reproject_grid(grid: RasterGrid, dst_crs: Any, cell_size: Optional[float] = None) -> RasterGrid:
    """Reproject a single grid (see :func:`reproject_bands`)."""
    name = grid.name or 'band'
    return reproject_bands(MultiBandGrid({name: grid}), dst_crs, cell_size)[name]


def to_cell_records(bands: MultiBandGrid) -> pd.DataFrame:
    """
    Flatten a multi-band grid to one record per cell observed in every band.

    Args:
        bands: Multi-band grid

    Returns:
        DataFrame with ``x``, ``y`` (cell centres) and one column per band,
        in row-major order
    """
    reserved = set(bands.band_names) & set(COORDINATE_COLUMNS)
    if reserved:
        raise InputValidationError(f"Band names {sorted(reserved)} are reserved for coordinates")

    xs, ys = np.meshgrid(bands.georef.x_centers(), bands.georef.y_centers())
    data = {'x': xs.ravel(), 'y': ys.ravel()}
    complete = np.ones(xs.size, dtype=bool)
    for name, grid in bands.items():
        values = grid.values.ravel()
        data[name] = values
        complete &= np.isfinite(values)

    records = pd.DataFrame(data)[complete].reset_index(drop=True)
    logger.info(f"Flattened {xs.size} cells to {len(records)} records "
                f"({xs.size - len(records)} dropped with a missing band)")
    return records
