"""
Utility functions for the bivariate climate pipeline.

Memory monitoring, grid quality summaries and small filesystem helpers.
"""

import logging
from pathlib import Path
from typing import Any, Dict

import numpy as np
import psutil

logger = logging.getLogger(__name__)

# Share of no-data cells above which a grid is reported
MISSING_WARNING_PERCENT = 50.0


def log_memory_usage(stage: str = "") -> None:
    """
    Log current memory usage.

    Args:
        stage: Description of current processing stage
    """
    try:
        process = psutil.Process()
        memory_mb = process.memory_info().rss / 1024**2
        system_memory = psutil.virtual_memory()
        available_gb = system_memory.available / 1024**3

        stage_text = f" {stage}" if stage else ""
        logger.debug(f"Memory usage{stage_text}: {memory_mb:.1f} MB, "
                     f"{available_gb:.1f} GB available")
    except psutil.Error as e:
        logger.warning(f"Could not get memory usage: {e}")


def grid_quality(grid) -> Dict[str, Any]:
    """
    Summarize a grid's values and no-data share.

    Args:
        grid: RasterGrid to summarize

    Returns:
        Dictionary with min, max, mean, missing_percent and warnings
    """
    values = grid.values
    finite = values[np.isfinite(values)]
    results = {
        'name': grid.name,
        'cells': int(values.size),
        'missing_percent': float(100.0 * (values.size - finite.size) / values.size),
        'warnings': [],
    }

    if finite.size == 0:
        results.update({'min': None, 'max': None, 'mean': None})
        results['warnings'].append("All cells are no-data")
        return results

    results.update({
        'min': float(finite.min()),
        'max': float(finite.max()),
        'mean': float(finite.mean()),
    })
    if results['missing_percent'] > MISSING_WARNING_PERCENT:
        results['warnings'].append(f"High share of no-data cells: {results['missing_percent']:.1f}%")
    if results['min'] == results['max']:
        results['warnings'].append("Grid contains only constant values")
    return results


def log_grid_quality(grid) -> Dict[str, Any]:
    """Log a grid quality summary and return it."""
    quality = grid_quality(grid)
    if quality['mean'] is not None:
        logger.info(f"'{quality['name']}': {quality['cells']} cells, "
                    f"range {quality['min']:.3f} to {quality['max']:.3f}, "
                    f"mean {quality['mean']:.3f}, {quality['missing_percent']:.1f}% no-data")
    for warning in quality['warnings']:
        logger.warning(f"'{quality['name']}': {warning}")
    return quality


def ensure_directory_exists(path: str) -> None:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists
    """
    Path(path).mkdir(parents=True, exist_ok=True)
