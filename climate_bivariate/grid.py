"""
Raster grid data model.

Every grid value carries an explicit georeferencing descriptor (affine
transform, shape and CRS). No coordinate reference system state is held
anywhere else, so every transform function receives and returns it
explicitly.

The module also provides the bilinear "sample grid at arbitrary point"
primitive shared by resampling and reprojection.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np
import xarray as xr
from affine import Affine
from rasterio.crs import CRS
from rasterio.errors import CRSError
from rasterio.transform import from_origin

from .exceptions import InputValidationError

logger = logging.getLogger(__name__)

# Absolute tolerance (in cell units) when comparing transforms
TRANSFORM_TOLERANCE = 1e-9


def to_crs(crs: Any) -> CRS:
    """
    Normalize any CRS-like input to a rasterio CRS.

    Args:
        crs: rasterio CRS, pyproj CRS, "EPSG:xxxx" string, WKT or PROJ string

    Returns:
        rasterio CRS instance
    """
    if isinstance(crs, CRS):
        return crs
    if crs is None:
        raise InputValidationError("A coordinate reference system is required")
    try:
        return CRS.from_user_input(crs)
    except (CRSError, TypeError, ValueError) as e:
        raise InputValidationError(f"Invalid coordinate reference system {crs!r}: {e}") from e


@dataclass(frozen=True)
class GeoReference:
    """Georeferencing descriptor: north-up affine transform, grid shape and CRS."""
    transform: Affine
    shape: Tuple[int, int]
    crs: CRS

    def __post_init__(self):
        rows, cols = self.shape
        if rows < 1 or cols < 1:
            raise InputValidationError(f"Grid shape must be positive, got {self.shape}")
        t = self.transform
        if t.b != 0 or t.d != 0:
            raise InputValidationError("Rotated grids are not supported")
        if t.a <= 0 or t.e >= 0:
            raise InputValidationError("Grid transform must be north-up with positive cell size")
        if not np.isclose(t.a, -t.e, rtol=1e-9, atol=0):
            raise InputValidationError(
                f"Cell size must be uniform in both axes, got {t.a} x {-t.e}"
            )

    @classmethod
    def from_origin(cls, west: float, north: float, cell_size: float,
                    shape: Tuple[int, int], crs: Any) -> "GeoReference":
        """Build a descriptor from the north-west corner and cell size."""
        if not np.isfinite(cell_size) or cell_size <= 0:
            raise InputValidationError(f"Cell size must be positive, got {cell_size}")
        transform = from_origin(west, north, cell_size, cell_size)
        return cls(transform, (int(shape[0]), int(shape[1])), to_crs(crs))

    @property
    def cell_size(self) -> float:
        return self.transform.a

    @property
    def origin(self) -> Tuple[float, float]:
        """North-west corner (west, north)."""
        return self.transform.c, self.transform.f

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """Extent as (west, south, east, north)."""
        rows, cols = self.shape
        west, north = self.origin
        return (west, north - rows * self.cell_size,
                west + cols * self.cell_size, north)

    def x_centers(self) -> np.ndarray:
        west = self.transform.c
        return west + (np.arange(self.shape[1]) + 0.5) * self.cell_size

    def y_centers(self) -> np.ndarray:
        north = self.transform.f
        return north - (np.arange(self.shape[0]) + 0.5) * self.cell_size

    def matches(self, other: "GeoReference") -> bool:
        """Check whether two descriptors address the same cells."""
        if self.shape != other.shape or self.crs != other.crs:
            return False
        atol = TRANSFORM_TOLERANCE * max(1.0, abs(self.cell_size))
        return bool(np.allclose(tuple(self.transform)[:6], tuple(other.transform)[:6],
                                rtol=0, atol=atol))

    def describe(self) -> Dict[str, Any]:
        """Plain description used in error messages."""
        return {
            'crs': self.crs.to_string(),
            'shape': self.shape,
            'cell_size': self.cell_size,
            'bounds': tuple(round(b, 9) for b in self.bounds),
        }


class RasterGrid:
    """
    A 2-D grid of floating-point values plus its georeferencing.

    No-data cells are held as NaN. When a sentinel ``nodata`` value is
    declared, cells equal to it are converted to NaN on construction and
    restored by :meth:`filled`. The value array is read-only.
    """

    def __init__(self,
                 values: Any,
                 georef: GeoReference,
                 nodata: Optional[float] = None,
                 name: Optional[str] = None,
                 units: Optional[str] = None):
        array = np.array(values, dtype=float)
        if array.ndim != 2:
            raise InputValidationError(f"Grid values must be 2-D, got {array.ndim} dimensions")
        if array.shape != georef.shape:
            raise InputValidationError(
                f"Values shape {array.shape} does not match georeference shape {georef.shape}"
            )
        if nodata is not None and not np.isnan(nodata):
            array[array == nodata] = np.nan
        array.setflags(write=False)

        self._values = array
        self.georef = georef
        self.nodata = nodata
        self.name = name
        self.units = units

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def shape(self) -> Tuple[int, int]:
        return self.georef.shape

    @property
    def crs(self) -> CRS:
        return self.georef.crs

    @property
    def transform(self) -> Affine:
        return self.georef.transform

    @property
    def cell_size(self) -> float:
        return self.georef.cell_size

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return self.georef.bounds

    def valid_mask(self) -> np.ndarray:
        return np.isfinite(self._values)

    def filled(self, fill_value: Optional[float] = None) -> np.ndarray:
        """Return a writable copy with no-data replaced by a sentinel."""
        if fill_value is None:
            fill_value = self.nodata if self.nodata is not None else np.nan
        out = self._values.copy()
        out[~np.isfinite(out)] = fill_value
        return out

    def with_values(self, values: Any, georef: Optional[GeoReference] = None,
                    name: Optional[str] = None, units: Optional[str] = None) -> "RasterGrid":
        """Derive a new grid, keeping metadata unless overridden."""
        return RasterGrid(values,
                          georef if georef is not None else self.georef,
                          nodata=self.nodata,
                          name=name if name is not None else self.name,
                          units=units if units is not None else self.units)

    def sample_points(self, xs: Any, ys: Any) -> np.ndarray:
        return sample_points(self, xs, ys)

    def to_dataarray(self) -> xr.DataArray:
        """Convert to an xarray DataArray with ``y``/``x`` cell-centre coordinates."""
        attrs = {'crs': self.crs.to_string(), 'cell_size': self.cell_size}
        if self.units:
            attrs['units'] = self.units
        return xr.DataArray(
            self._values.copy(),
            coords={'y': self.georef.y_centers(), 'x': self.georef.x_centers()},
            dims=('y', 'x'),
            name=self.name,
            attrs=attrs,
        )

    @classmethod
    def from_dataarray(cls, da: xr.DataArray, crs: Any = None, nodata: Optional[float] = None,
                       cell_size: Optional[float] = None) -> "RasterGrid":
        """
        Build a grid from a 2-D DataArray with regularly spaced coordinates.

        Args:
            da: DataArray with ``lat``/``lon`` or ``y``/``x`` dimensions
            crs: CRS of the coordinates (defaults to ``da.attrs['crs']``)
            nodata: Optional sentinel value marking missing cells
            cell_size: Cell size, required only for single-cell axes

        Returns:
            RasterGrid in north-up orientation
        """
        lon_name = 'lon' if 'lon' in da.dims else 'x'
        lat_name = 'lat' if 'lat' in da.dims else 'y'
        if da.ndim != 2 or lon_name not in da.dims or lat_name not in da.dims:
            raise InputValidationError(
                f"Expected a 2-D array with {lat_name}/{lon_name} dimensions, got {da.dims}"
            )
        da = da.transpose(lat_name, lon_name)

        xs = da[lon_name].values.astype(float)
        ys = da[lat_name].values.astype(float)
        if xs.size > 1 and xs[1] < xs[0]:
            da = da.isel({lon_name: slice(None, None, -1)})
            xs = xs[::-1]
        if ys.size > 1 and ys[1] > ys[0]:
            # South-up input, flip to north-up
            da = da.isel({lat_name: slice(None, None, -1)})
            ys = ys[::-1]

        size = _regular_spacing(xs, ys, cell_size)
        if crs is None:
            crs = da.attrs.get('crs')
        georef = GeoReference.from_origin(xs[0] - size / 2, ys[0] + size / 2, size,
                                          (ys.size, xs.size), crs)
        if nodata is None:
            nodata = da.attrs.get('_FillValue')
        return cls(da.values, georef, nodata=nodata, name=da.name,
                   units=da.attrs.get('units'))

    def __repr__(self) -> str:
        return (f"RasterGrid(name={self.name!r}, shape={self.shape}, "
                f"cell_size={self.cell_size}, crs='{self.crs.to_string()}')")


def _regular_spacing(xs: np.ndarray, ys: np.ndarray, cell_size: Optional[float]) -> float:
    """Infer the uniform square cell size of a pair of coordinate axes."""
    steps = []
    for axis in (xs, ys):
        if axis.size > 1:
            diffs = np.abs(np.diff(axis))
            if not np.allclose(diffs, diffs[0], rtol=1e-6, atol=0):
                raise InputValidationError("Grid coordinates are not regularly spaced")
            steps.append(float(diffs[0]))
    if not steps:
        if cell_size is None:
            raise InputValidationError("cell_size is required for a single-cell grid")
        return float(cell_size)
    if len(steps) == 2 and not np.isclose(steps[0], steps[1], rtol=1e-6, atol=0):
        raise InputValidationError(
            f"Cell size must be uniform in both axes, got {steps[0]} x {steps[1]}"
        )
    return steps[0]


def sample_points(grid: RasterGrid, xs: Any, ys: Any) -> np.ndarray:
    """
    Bilinearly sample a grid at arbitrary points in the grid's CRS.

    The four cell centres surrounding each point are weighted by distance.
    Points outside the grid extent, and points whose contributing
    (non-zero weight) neighbours include any no-data cell, yield NaN.
    Between the outermost cell centres and the grid edge the edge values
    are held constant.

    Args:
        grid: Source grid
        xs: x coordinates (any shape)
        ys: y coordinates (same shape as xs)

    Returns:
        Array of sampled values with the shape of xs
    """
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    if xs.shape != ys.shape:
        raise InputValidationError(f"Coordinate shapes differ: {xs.shape} vs {ys.shape}")

    rows, cols = grid.shape
    values = grid.values
    inverse = ~grid.transform
    col_pos, row_pos = inverse * (xs, ys)
    col_pos = np.asarray(col_pos, dtype=float)
    row_pos = np.asarray(row_pos, dtype=float)

    inside = (np.isfinite(col_pos) & np.isfinite(row_pos)
              & (col_pos >= 0) & (col_pos <= cols)
              & (row_pos >= 0) & (row_pos <= rows))

    # Position in cell-centre index space, held at the outermost centres
    c = np.clip(np.where(inside, col_pos, 0.5) - 0.5, 0, cols - 1)
    r = np.clip(np.where(inside, row_pos, 0.5) - 0.5, 0, rows - 1)

    c0 = np.clip(np.floor(c).astype(int), 0, max(cols - 2, 0))
    r0 = np.clip(np.floor(r).astype(int), 0, max(rows - 2, 0))
    c1 = np.minimum(c0 + 1, cols - 1)
    r1 = np.minimum(r0 + 1, rows - 1)
    fc = np.where(c1 > c0, c - c0, 0.0)
    fr = np.where(r1 > r0, r - r0, 0.0)

    neighbours = (
        (values[r0, c0], (1 - fr) * (1 - fc)),
        (values[r0, c1], (1 - fr) * fc),
        (values[r1, c0], fr * (1 - fc)),
        (values[r1, c1], fr * fc),
    )

    result = np.zeros(xs.shape, dtype=float)
    missing = ~inside
    for value, weight in neighbours:
        contributes = weight > 0
        missing |= contributes & ~np.isfinite(value)
        result += np.where(contributes & np.isfinite(value), value * weight, 0.0)

    result[missing] = np.nan
    return result
