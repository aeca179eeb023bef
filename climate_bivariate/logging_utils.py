"""
Logging Utilities Module

Logging configuration for the pipeline and its command-line entry point.
"""

import logging
import sys
from typing import Any, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(config: Optional[Any] = None, verbose: bool = False) -> None:
    """
    Set up logging configuration based on config and command line options.

    Args:
        config: BivariateConfig (log_level and log_file are used if present)
        verbose: Enable verbose logging
    """
    if verbose:
        log_level = logging.DEBUG
    else:
        level_name = getattr(config, 'log_level', 'INFO') or 'INFO'
        log_level = getattr(logging, str(level_name).upper(), logging.INFO)

    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_file = getattr(config, 'log_file', None)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Reduce noise from some libraries
    logging.getLogger('dask').setLevel(logging.WARNING)
    logging.getLogger('rasterio').setLevel(logging.WARNING)
    logging.getLogger('fiona').setLevel(logging.WARNING)
    logging.getLogger('pyogrio').setLevel(logging.WARNING)


def log_configuration(config: Any) -> None:
    """Log the settings a run uses, one per line."""
    logger = logging.getLogger('climate_bivariate')
    logger.info("Configuration:")
    for key, value in config.to_dict().items():
        logger.info(f"  {key}: {value}")
