#!/usr/bin/env python3
"""
Tests for variable stacking, joint reprojection and cell record flattening.
"""

import sys
from pathlib import Path

import numpy as np
import pytest
from rasterio.warp import transform_bounds

# Add the current directory to Python path
sys.path.insert(0, str(Path(__file__).parent))

from climate_bivariate.exceptions import GeoreferenceMismatchError, InputValidationError
from climate_bivariate.grid import GeoReference, RasterGrid, to_crs
from climate_bivariate.stacker import (
    MultiBandGrid,
    destination_georeference,
    reproject_bands,
    reproject_grid,
    stack_variables,
    to_cell_records,
)


def create_mock_grid(values, cell_size=1.0, west=0.0, north=None, crs='EPSG:4326', name=None):
    values = np.asarray(values, dtype=float)
    if north is None:
        north = values.shape[0] * cell_size
    georef = GeoReference.from_origin(west, north, cell_size, values.shape, crs)
    return RasterGrid(values, georef, name=name)


def test_stack_two_variables():
    tas = create_mock_grid([[1.0, 2.0], [3.0, 4.0]], name='tas')
    pr = create_mock_grid([[5.0, 6.0], [7.0, 8.0]], name='pr')
    bands = stack_variables(tas, pr, 'temperature', 'precipitation')

    assert bands.band_names == ('temperature', 'precipitation')
    assert len(bands) == 2
    assert bands['precipitation'] is pr
    assert bands.georef.matches(tas.georef)

    ds = bands.to_dataset()
    assert set(ds.data_vars) == {'temperature', 'precipitation'}


def test_band_names_default_to_grid_names():
    bands = stack_variables(create_mock_grid([[1.0]], name='tas'),
                            create_mock_grid([[2.0]], name='pr'))
    assert bands.band_names == ('tas', 'pr')


@pytest.mark.parametrize('names', [('t', 't'), ('x', 'pr'), ('tas', 'y'), (None, 'pr')])
def test_invalid_band_names(names):
    a = create_mock_grid([[1.0]])
    b = create_mock_grid([[2.0]])
    with pytest.raises(InputValidationError):
        stack_variables(a, b, *names)


def test_mismatched_bands_report_both_descriptors():
    a = create_mock_grid([[1.0, 2.0]])
    b = create_mock_grid([[1.0, 2.0]], cell_size=0.5)
    with pytest.raises(GeoreferenceMismatchError) as excinfo:
        stack_variables(a, b, 'temperature', 'precipitation')

    descriptors = excinfo.value.descriptors
    assert [d['band'] for d in descriptors] == ['temperature', 'precipitation']
    assert descriptors[1]['cell_size'] == 0.5


def test_empty_multiband_grid_rejected():
    with pytest.raises(InputValidationError):
        MultiBandGrid({})


def test_cell_records_drop_partially_observed_cells():
    """A cell missing in either band is left out; order is row-major."""
    tas = create_mock_grid([[1.0, np.nan], [3.0, 4.0]])
    pr = create_mock_grid([[5.0, 6.0], [np.nan, 8.0]])
    records = to_cell_records(stack_variables(tas, pr, 'temperature', 'precipitation'))

    assert list(records.columns) == ['x', 'y', 'temperature', 'precipitation']
    assert len(records) == 2
    assert records[['x', 'y']].values.tolist() == [[0.5, 1.5], [1.5, 0.5]]
    assert records['temperature'].tolist() == [1.0, 4.0]
    assert records['precipitation'].tolist() == [5.0, 8.0]


def test_same_crs_reprojection_is_identity():
    bands = stack_variables(create_mock_grid([[1.0]]), create_mock_grid([[2.0]]), 'a', 'b')
    assert reproject_bands(bands, 'EPSG:4326') is bands
    assert reproject_bands(bands, 'EPSG:4326', cell_size=1.0) is bands


def test_reprojection_to_web_mercator():
    tas = create_mock_grid(np.full((4, 4), 5.0))
    pr = create_mock_grid(np.full((4, 4), 9.0))
    bands = stack_variables(tas, pr, 'temperature', 'precipitation')
    projected = reproject_bands(bands, 'EPSG:3857')

    assert projected.crs == to_crs('EPSG:3857')
    assert projected['temperature'].georef.matches(projected['precipitation'].georef)

    # Destination covers 0-4 degrees in both directions
    west, south, east, north = projected.georef.bounds
    assert west == pytest.approx(0.0, abs=1.0)
    assert north == pytest.approx(445640.11, rel=1e-3)
    assert south <= 1.0
    assert east >= 445277.0

    for name, value in (('temperature', 5.0), ('precipitation', 9.0)):
        values = projected[name].values
        assert np.isfinite(values).sum() > 0
        np.testing.assert_allclose(values[np.isfinite(values)], value)

    # No-data cells coincide across bands
    np.testing.assert_array_equal(projected['temperature'].valid_mask(),
                                  projected['precipitation'].valid_mask())


@pytest.mark.parametrize('cell_size', [None, 50000.0, 70001.0])
def test_destination_covers_source_extent(cell_size):
    """The reprojected grid reaches every edge of the projected source extent."""
    georef = GeoReference.from_origin(0.0, 4.0, 1.0, (4, 4), 'EPSG:4326')
    dst = destination_georeference(georef, 'EPSG:3857', cell_size=cell_size)
    west, south, east, north = transform_bounds('EPSG:4326', 'EPSG:3857', *georef.bounds,
                                                densify_pts=21)

    tolerance = 1e-6 * dst.cell_size
    assert dst.bounds[0] == pytest.approx(west)
    assert dst.bounds[3] == pytest.approx(north)
    assert dst.bounds[1] <= south + tolerance
    assert dst.bounds[2] >= east - tolerance
    if cell_size is not None:
        assert dst.cell_size == cell_size


def test_reprojection_with_cell_size():
    grid = create_mock_grid(np.arange(16).reshape(4, 4), name='tas')
    projected = reproject_grid(grid, 'EPSG:3857', cell_size=50000.0)

    assert projected.cell_size == 50000.0
    assert projected.shape[0] >= 8 and projected.shape[1] >= 8
    assert projected.name == 'tas'


def test_destination_georeference_rejects_bad_cell_size():
    georef = GeoReference.from_origin(0.0, 4.0, 1.0, (4, 4), 'EPSG:4326')
    with pytest.raises(InputValidationError):
        destination_georeference(georef, 'EPSG:3857', cell_size=-10.0)
