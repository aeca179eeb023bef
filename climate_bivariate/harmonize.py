"""
Grid harmonization.

Resamples a summary grid to a common cell size with bilinear interpolation,
masks it to a boundary polygon and crops it to the polygon's bounding box.
Both variables of a map go through the same configuration so their grids
line up cell for cell.
"""

import logging
import math
from typing import Any

import numpy as np
from rasterio.features import geometry_mask
from rasterio.windows import Window
from rasterio.windows import transform as window_transform
from shapely.geometry.base import BaseGeometry

from .boundaries import boundary_geometry, validate_boundary
from .exceptions import InputValidationError
from .grid import GeoReference, RasterGrid, sample_points

logger = logging.getLogger(__name__)

# Tolerance (in cells) when fitting an extent to a whole number of cells
EXTENT_TOLERANCE = 1e-6


def validate_cell_size(cell_size: float) -> float:
    try:
        cell_size = float(cell_size)
    except (TypeError, ValueError) as e:
        raise InputValidationError(f"Target cell size must be a number, got {cell_size!r}") from e
    if not np.isfinite(cell_size) or cell_size <= 0:
        raise InputValidationError(f"Target cell size must be positive, got {cell_size}")
    return cell_size


def resample_grid(grid: RasterGrid, cell_size: float) -> RasterGrid:
    """
    Resample a grid to a new cell size with bilinear interpolation.

    The destination grid is anchored at the source's north-west corner and
    covers the source extent. Destination cells whose interpolation window
    holds any no-data source cell are no-data.

    Args:
        grid: Source grid
        cell_size: Target cell size in the source CRS units

    Returns:
        Resampled grid
    """
    cell_size = validate_cell_size(cell_size)
    west, south, east, north = grid.bounds
    cols = max(1, math.ceil((east - west) / cell_size - EXTENT_TOLERANCE))
    rows = max(1, math.ceil((north - south) / cell_size - EXTENT_TOLERANCE))

    georef = GeoReference.from_origin(west, north, cell_size, (rows, cols), grid.crs)
    xs, ys = np.meshgrid(georef.x_centers(), georef.y_centers())
    values = sample_points(grid, xs, ys)

    logger.debug(f"Resampled '{grid.name}' from {grid.shape} at {grid.cell_size} "
                 f"to {georef.shape} at {cell_size}")
    return grid.with_values(values, georef=georef)


def _as_geometry(grid: RasterGrid, boundary: Any, boundary_crs: Any = None) -> BaseGeometry:
    if isinstance(boundary, BaseGeometry) and boundary_crs is None:
        validate_boundary(boundary)
        return boundary
    return boundary_geometry(boundary, grid.crs, boundary_crs)


def mask_to_boundary(grid: RasterGrid, boundary: Any, boundary_crs: Any = None) -> RasterGrid:
    """
    Set cells whose centre falls outside the boundary to no-data.

    Args:
        grid: Grid to mask
        boundary: Polygon geometry, GeoSeries or GeoDataFrame
        boundary_crs: CRS of a plain geometry if it differs from the grid's

    Returns:
        Masked grid with unchanged georeferencing
    """
    geometry = _as_geometry(grid, boundary, boundary_crs)
    inside = geometry_mask([geometry], out_shape=grid.shape, transform=grid.transform,
                           invert=True)
    values = np.where(inside, grid.values, np.nan)

    logger.debug(f"Masked '{grid.name}': {int(inside.sum())} of {inside.size} cells inside boundary")
    return grid.with_values(values)


def crop_to_boundary(grid: RasterGrid, boundary: Any, padding: int = 1,
                     boundary_crs: Any = None) -> RasterGrid:
    """
    Tighten a grid's extent to a boundary's bounding box plus padding cells.

    Args:
        grid: Grid to crop
        boundary: Polygon geometry, GeoSeries or GeoDataFrame
        padding: Number of cells kept around the bounding box
        boundary_crs: CRS of a plain geometry if it differs from the grid's

    Returns:
        Cropped grid

    Raises:
        InputValidationError: If the boundary does not overlap the grid
    """
    geometry = _as_geometry(grid, boundary, boundary_crs)
    minx, miny, maxx, maxy = geometry.bounds
    west, north = grid.georef.origin
    size = grid.cell_size
    rows, cols = grid.shape

    col_start = math.floor((minx - west) / size)
    col_stop = math.ceil((maxx - west) / size)
    row_start = math.floor((north - maxy) / size)
    row_stop = math.ceil((north - miny) / size)

    if col_stop <= 0 or col_start >= cols or row_stop <= 0 or row_start >= rows:
        raise InputValidationError(
            f"Boundary {tuple(round(b, 6) for b in geometry.bounds)} does not overlap "
            f"grid extent {grid.bounds}"
        )

    col_start = max(0, col_start - padding)
    col_stop = min(cols, col_stop + padding)
    row_start = max(0, row_start - padding)
    row_stop = min(rows, row_stop + padding)

    window = Window(col_start, row_start, col_stop - col_start, row_stop - row_start)
    georef = GeoReference(window_transform(window, grid.transform),
                          (row_stop - row_start, col_stop - col_start), grid.crs)
    values = grid.values[row_start:row_stop, col_start:col_stop]

    logger.debug(f"Cropped '{grid.name}' from {grid.shape} to {georef.shape}")
    return grid.with_values(values, georef=georef)


def harmonize_grid(grid: RasterGrid, cell_size: float, boundary: Any,
                   boundary_crs: Any = None, padding: int = 1) -> RasterGrid:
    """
    Resample, mask and crop a summary grid to a boundary.

    Args:
        grid: Summary grid of one variable
        cell_size: Target cell size in the grid's CRS units
        boundary: Polygon geometry, GeoSeries or GeoDataFrame
        boundary_crs: CRS of a plain geometry if it differs from the grid's
        padding: Cells kept around the boundary's bounding box

    Returns:
        Harmonized grid
    """
    cell_size = validate_cell_size(cell_size)
    geometry = _as_geometry(grid, boundary, boundary_crs)

    resampled = resample_grid(grid, cell_size)
    masked = mask_to_boundary(resampled, geometry)
    harmonized = crop_to_boundary(masked, geometry, padding=padding)

    valid = int(harmonized.valid_mask().sum())
    logger.info(f"Harmonized '{grid.name}' to {harmonized.shape} cells at {cell_size} "
                f"({valid} with data)")
    return harmonized
