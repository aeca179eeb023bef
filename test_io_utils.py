#!/usr/bin/env python3
"""
Tests for climate data loading, boundary files and classification output.
"""

import logging
import sys
from pathlib import Path

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
import xarray as xr
import yaml
from shapely.geometry import box

# Add the current directory to Python path
sys.path.insert(0, str(Path(__file__).parent))

from classify_climate_data import main, parse_arguments
from climate_bivariate.boundaries import load_boundaries
from climate_bivariate.classifier import classify_records
from climate_bivariate.exceptions import EmptyTimeSeriesError, InputValidationError
from climate_bivariate.io_utils import load_climate_stacks, save_classification, stacks_from_dataset
from climate_bivariate.periods import ClimatePeriod
from climate_bivariate.utils import grid_quality


def create_mock_dataset(n_months=24, lon=(10.5, 11.5, 12.5), lat=(46.5, 45.5, 44.5)):
    """Create a monthly climate cube with temperature and precipitation."""
    time = pd.date_range('2000-01-01', periods=n_months, freq='MS')
    rng = np.random.default_rng(0)
    shape = (n_months, len(lat), len(lon))
    base = np.arange(len(lat) * len(lon), dtype=float).reshape(len(lat), len(lon))

    return xr.Dataset(
        {
            'tasmax': (('time', 'lat', 'lon'), 285.0 + base + rng.normal(0, 0.1, shape),
                       {'units': 'K'}),
            'tasmin': (('time', 'lat', 'lon'), 275.0 + base + rng.normal(0, 0.1, shape),
                       {'units': 'K'}),
            'pr': (('time', 'lat', 'lon'), (10.0 - base[::-1]) / 86400.0 + np.zeros(shape),
                   {'units': 'kg m-2 s-1'}),
        },
        coords={'time': time, 'lat': list(lat), 'lon': list(lon)},
    )


@pytest.fixture
def restore_logging():
    """Keep handlers installed by the command-line entry point out of other tests."""
    root_logger = logging.getLogger()
    handlers = root_logger.handlers[:]
    level = root_logger.level
    yield
    for handler in root_logger.handlers[:]:
        if handler not in handlers:
            root_logger.removeHandler(handler)
    for handler in handlers:
        if handler not in root_logger.handlers:
            root_logger.addHandler(handler)
    root_logger.setLevel(level)


class TestClimateData:
    """Test conversion of climate cubes into time-indexed stacks."""

    def test_stacks_from_dataset(self):
        stacks = stacks_from_dataset(create_mock_dataset(), ['tasmax', 'pr'])

        assert set(stacks) == {'tasmax', 'pr'}
        assert len(stacks['tasmax']) == 24
        assert stacks['tasmax'].units == 'K'
        assert stacks['pr'].georef.bounds == pytest.approx((10.0, 44.0, 13.0, 47.0))
        assert stacks['pr'].georef.crs.to_epsg() == 4326

    def test_longitudes_converted_to_standard(self):
        ds = create_mock_dataset(n_months=2, lon=(250.5, 251.5, 252.5))
        stacks = stacks_from_dataset(ds, ['pr'])
        assert stacks['pr'].georef.bounds[0] == pytest.approx(-110.0)

    def test_missing_variable(self):
        with pytest.raises(InputValidationError):
            stacks_from_dataset(create_mock_dataset(n_months=2), ['tas'])

    def test_load_period_from_netcdf(self, tmp_path):
        path = tmp_path / 'climate.nc'
        create_mock_dataset().to_netcdf(path)

        stacks = load_climate_stacks(str(path), ['tasmin', 'pr'], period=ClimatePeriod(2001, 2001))
        assert len(stacks['tasmin']) == 12
        assert stacks['tasmin'].timestamps[0] == pd.Timestamp('2001-01-01')

        with pytest.raises(EmptyTimeSeriesError):
            load_climate_stacks(str(path), ['pr'], period=ClimatePeriod(1950, 1960))
        with pytest.raises(InputValidationError):
            load_climate_stacks(str(path), ['huss'])

    def test_noleap_calendar(self, tmp_path):
        """Model output on a no-leap calendar loads like standard-calendar data."""
        time = xr.date_range('2001-01-01', periods=24, freq='MS', calendar='noleap',
                             use_cftime=True)
        ds = create_mock_dataset().assign_coords(time=time)

        stacks = stacks_from_dataset(ds, ['tasmax', 'pr'])
        assert len(stacks['tasmax']) == 24
        assert stacks['tasmax'].timestamps[0] == pd.Timestamp('2001-01-01')
        assert stacks['pr'].timestamps[-1] == pd.Timestamp('2002-12-01')

        path = tmp_path / 'noleap.nc'
        ds.to_netcdf(path)
        loaded = load_climate_stacks(str(path), ['pr'], period=ClimatePeriod(2002, 2002))
        assert len(loaded['pr']) == 12
        assert loaded['pr'].timestamps[0] == pd.Timestamp('2002-01-01')

    def test_dataset_crs_attribute_used(self):
        ds = create_mock_dataset(n_months=2)
        ds.attrs['crs'] = 'EPSG:32633'
        stacks = stacks_from_dataset(ds, ['pr'])
        assert stacks['pr'].georef.crs.to_epsg() == 32633

        stacks = stacks_from_dataset(ds, ['pr'], crs='EPSG:4326')
        assert stacks['pr'].georef.crs.to_epsg() == 4326


def test_boundaries_file_round_trip(tmp_path):
    path = tmp_path / 'regions.geojson'
    regions = gpd.GeoDataFrame({'NAME': ['west', 'east']},
                               geometry=[box(10, 44, 11.5, 47), box(11.5, 44, 13, 47)],
                               crs='EPSG:4326')
    regions.to_file(path, driver='GeoJSON')

    loaded = load_boundaries(str(path))
    assert len(loaded) == 2
    assert loaded.crs.to_epsg() == 4326


def test_save_classification(tmp_path):
    records = pd.DataFrame({
        'x': [0.5, 1.5, 2.5, 3.5],
        'y': [0.5, 0.5, 0.5, 0.5],
        'temperature': [1.0, 2.0, 3.0, 4.0],
        'precipitation': [4.0, 3.0, 2.0, 1.0],
    })
    result = classify_records(records, 'temperature', 'precipitation', dim=2)
    table_path, breaks_path = save_classification(result, str(tmp_path / 'out'), 'test')

    table = pd.read_csv(table_path)
    assert list(table.columns) == ['x', 'y', 'temperature', 'precipitation', 'class_label']
    assert table['class_label'].tolist() == ['1-2', '1-2', '2-1', '2-1']

    with open(breaks_path) as f:
        summary = yaml.safe_load(f)
    assert summary['dim'] == 2
    assert summary['x']['breaks'] == [2.5]
    assert summary['class_counts'] == {'1-1': 0, '1-2': 2, '2-1': 2, '2-2': 0}


def test_grid_quality_flags_missing_cells():
    stacks = stacks_from_dataset(create_mock_dataset(n_months=1), ['pr'])
    grid = stacks['pr'].layers[0]
    quality = grid_quality(grid.with_values(np.where(grid.values > 0.00005, np.nan, grid.values)))
    assert quality['cells'] == 9
    assert quality['missing_percent'] > 50.0
    assert any('no-data' in w for w in quality['warnings'])


class TestCommandLine:
    """Test the classify_climate_data.py entry point."""

    def test_main(self, tmp_path, restore_logging):
        climate_path = tmp_path / 'climate.nc'
        create_mock_dataset().to_netcdf(climate_path)
        boundaries_path = tmp_path / 'regions.geojson'
        gpd.GeoDataFrame({'NAME': ['all']}, geometry=[box(9, 43, 14, 48)],
                         crs='EPSG:4326').to_file(boundaries_path, driver='GeoJSON')
        output_dir = tmp_path / 'out'

        exit_code = main([
            '--climate-data', str(climate_path),
            '--boundaries', str(boundaries_path),
            '--region-column', 'NAME', '--region', 'all',
            '--target-crs', 'EPSG:4326',
            '--cell-size', '1.0',
            '--dim', '3',
            '--output-dir', str(output_dir),
            '--name', 'alps',
        ])

        assert exit_code == 0
        table = pd.read_csv(output_dir / 'alps_classes.csv')
        assert len(table) == 9
        assert table['temperature'].between(0.0, 30.0).all()
        assert (output_dir / 'alps_breaks.yaml').exists()

    def test_main_reports_missing_variable(self, tmp_path, restore_logging):
        climate_path = tmp_path / 'climate.nc'
        create_mock_dataset(n_months=2).to_netcdf(climate_path)
        boundaries_path = tmp_path / 'regions.geojson'
        gpd.GeoDataFrame({'NAME': ['all']}, geometry=[box(9, 43, 14, 48)],
                         crs='EPSG:4326').to_file(boundaries_path, driver='GeoJSON')

        exit_code = main([
            '--climate-data', str(climate_path),
            '--boundaries', str(boundaries_path),
            '--precip-var', 'prsn',
            '--output-dir', str(tmp_path / 'out'),
        ])
        assert exit_code == 1

    def test_source_crs_defaults_to_file(self):
        args = parse_arguments(['--climate-data', 'cube.nc', '--boundaries', 'regions.gpkg'])
        assert args.source_crs is None
        assert args.temperature_vars == 'tasmax,tasmin'
