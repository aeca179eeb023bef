"""
Administrative boundary handling.

Loads boundary polygons (country, state, county, ...) with geopandas,
selects a named region at a given administrative level and dissolves it
into a single geometry in the CRS of the grid it will mask.
"""

import logging
import os
from typing import Any, Optional

import geopandas as gpd
from rasterio.warp import transform_geom
from shapely.geometry import mapping, shape
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from .exceptions import InputValidationError
from .grid import to_crs

logger = logging.getLogger(__name__)


def load_boundaries(boundaries_path: str) -> gpd.GeoDataFrame:
    """
    Load boundary polygons from file.

    Args:
        boundaries_path: Path to a Shapefile, GeoJSON, GeoPackage or GeoParquet file

    Returns:
        GeoDataFrame of boundaries
    """
    logger.info(f"Loading boundaries from {boundaries_path}")

    file_ext = os.path.splitext(boundaries_path)[1].lower()
    if file_ext == '.parquet':
        boundaries = gpd.read_parquet(boundaries_path)
    else:
        boundaries = gpd.read_file(boundaries_path)

    logger.info(f"Loaded {len(boundaries)} boundaries, CRS: {boundaries.crs}")
    if boundaries.crs is None:
        logger.warning(f"No CRS defined for {boundaries_path}")
    return boundaries


def select_boundary(boundaries: gpd.GeoDataFrame, column: str, value: Any) -> gpd.GeoDataFrame:
    """
    Select the boundaries of one named region.

    Args:
        boundaries: All boundaries at one administrative level
        column: Attribute column holding region names or codes
        value: Region name or code to select

    Returns:
        GeoDataFrame with the matching rows
    """
    if column not in boundaries.columns:
        raise InputValidationError(
            f"Column '{column}' not found. Available columns: {list(boundaries.columns)}"
        )
    selected = boundaries[boundaries[column] == value]
    if selected.empty:
        sample = sorted(map(str, boundaries[column].unique()))[:10]
        raise InputValidationError(
            f"No boundary with {column} == {value!r}. Sample of values: {sample}"
        )
    logger.info(f"Selected {len(selected)} boundary polygon(s) with {column} == {value!r}")
    return selected


def boundary_geometry(boundary: Any, crs: Any, boundary_crs: Any = None) -> BaseGeometry:
    """
    Dissolve a boundary into one geometry in the given CRS.

    Args:
        boundary: shapely geometry, GeoSeries or GeoDataFrame
        crs: Target CRS (the grid's CRS)
        boundary_crs: CRS of a plain shapely geometry, or of a GeoDataFrame
            without CRS metadata. Geometries without any CRS are assumed to
            be in the target CRS.

    Returns:
        Single (multi)polygon in the target CRS

    Raises:
        InputValidationError: If the boundary is empty or has zero area
    """
    target = to_crs(crs)

    if isinstance(boundary, (gpd.GeoDataFrame, gpd.GeoSeries)):
        geoms = boundary.geometry if isinstance(boundary, gpd.GeoDataFrame) else boundary
        if geoms.crs is None:
            geoms = geoms.set_crs(to_crs(boundary_crs or target).to_wkt())
        if to_crs(geoms.crs) != target:
            logger.debug(f"Reprojecting boundary from {geoms.crs} to {target}")
            geoms = geoms.to_crs(target.to_wkt())
        geometry = unary_union(list(geoms))
    elif isinstance(boundary, BaseGeometry):
        geometry = boundary
        if boundary_crs is not None and to_crs(boundary_crs) != target:
            logger.debug(f"Reprojecting boundary from {boundary_crs} to {target}")
            geometry = shape(transform_geom(to_crs(boundary_crs), target, mapping(geometry)))
    else:
        raise InputValidationError(f"Unsupported boundary type: {type(boundary).__name__}")

    validate_boundary(geometry)
    return geometry


def validate_boundary(geometry: Optional[BaseGeometry]) -> None:
    """Reject empty and zero-area boundaries."""
    if geometry is None or geometry.is_empty:
        raise InputValidationError("Boundary polygon is empty")
    if not geometry.area > 0:
        raise InputValidationError(
            f"Boundary polygon has zero area ({geometry.geom_type})"
        )
