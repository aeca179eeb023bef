#!/usr/bin/env python3
"""
Main script for bivariate climate classification.

Reads a gridded climate cube (NetCDF) and a boundary file, runs the
classification pipeline and writes the classified cell table for mapping.
"""

import argparse
import logging
import sys
from pathlib import Path

# Add the current directory to Python path to import local module
sys.path.insert(0, str(Path(__file__).parent))

from climate_bivariate import BivariateConfig, BivariatePipeline, PipelineError
from climate_bivariate.boundaries import load_boundaries, select_boundary
from climate_bivariate.io_utils import load_climate_stacks, save_classification
from climate_bivariate.logging_utils import log_configuration, setup_logging

logger = logging.getLogger(__name__)


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Classify gridded temperature and precipitation normals into bivariate classes',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --climate-data cube.nc --boundaries states.gpkg
  %(prog)s --climate-data cube.nc --boundaries states.gpkg --region-column NAME --region Colorado
  %(prog)s --climate-data cube.nc --boundaries states.gpkg --temperature-vars tas --dim 3
        """
    )
    parser.add_argument('--config', type=str,
                        help='Path to YAML configuration file')
    parser.add_argument('--climate-data', type=str, required=True,
                        help='NetCDF file with monthly (or daily) climate variables')
    parser.add_argument('--boundaries', type=str, required=True,
                        help='Boundary file (Shapefile, GeoJSON, GeoPackage, GeoParquet)')
    parser.add_argument('--region-column', type=str,
                        help='Boundary attribute column used to select a region')
    parser.add_argument('--region', type=str,
                        help='Region name or code to select')
    parser.add_argument('--temperature-vars', type=str, default='tasmax,tasmin',
                        help='Temperature variable, or a comma-separated max,min pair '
                             '(default: tasmax,tasmin)')
    parser.add_argument('--precip-var', type=str, default='pr',
                        help='Precipitation variable (default: pr)')
    parser.add_argument('--source-crs', type=str,
                        help='CRS of the climate data coordinates (default: the file\'s crs '
                             'attribute, else EPSG:4326)')
    parser.add_argument('--target-crs', type=str,
                        help='CRS of the output cell table')
    parser.add_argument('--cell-size', type=float,
                        help='Harmonized cell size in source CRS units')
    parser.add_argument('--dim', type=int,
                        help='Number of classes per variable')
    parser.add_argument('--style', type=str, choices=['quantile', 'equal'],
                        help='Breakpoint style')
    parser.add_argument('--start-year', type=int,
                        help='First year of the climate period')
    parser.add_argument('--end-year', type=int,
                        help='Last year of the climate period')
    parser.add_argument('--output-dir', type=str,
                        help='Output directory for the classified table')
    parser.add_argument('--name', type=str, default='bivariate',
                        help='Output file name prefix (default: bivariate)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    return parser.parse_args(argv)


def config_overrides(args) -> dict:
    """Collect configuration overrides given on the command line."""
    overrides = {
        'target_crs': args.target_crs,
        'target_cell_size': args.cell_size,
        'dim': args.dim,
        'style': args.style,
        'period_start': args.start_year,
        'period_end': args.end_year,
        'output_dir': args.output_dir,
    }
    return {key: value for key, value in overrides.items() if value is not None}


def main(argv=None):
    """Main entry point for the classification script."""
    args = parse_arguments(argv)

    try:
        config = BivariateConfig(args.config, config_overrides(args))
        setup_logging(config, verbose=args.verbose)
        log_configuration(config)
        pipeline = BivariatePipeline(config)

        temperature_vars = [v.strip() for v in args.temperature_vars.split(',') if v.strip()]
        if len(temperature_vars) not in (1, 2):
            logger.error(f"Expected one or two temperature variables, got {temperature_vars}")
            return 1

        stacks = load_climate_stacks(args.climate_data, temperature_vars + [args.precip_var],
                                     crs=args.source_crs, period=config.period)
        temperature = [stacks[v] for v in temperature_vars]

        boundaries = load_boundaries(args.boundaries)
        if args.region_column and args.region:
            boundaries = select_boundary(boundaries, args.region_column, args.region)

        result = pipeline.run(temperature, stacks[args.precip_var], boundaries)
        save_classification(result, config.output_dir, args.name)

    except PipelineError as e:
        logger.error(f"Error: {e}")
        logger.debug("Traceback:", exc_info=True)
        return 1
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
