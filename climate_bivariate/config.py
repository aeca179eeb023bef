"""
Configuration module for the bivariate climate pipeline.

Settings are layered: built-in defaults, then a YAML configuration file,
then BIVARIATE_* environment variables, then explicit overrides.
"""

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml

from .classifier import DEFAULT_DIM, STYLES, validate_dim
from .exceptions import InputValidationError
from .grid import to_crs
from .periods import ClimatePeriod

logger = logging.getLogger(__name__)

ENV_PREFIX = 'BIVARIATE_'
SCHEDULERS = ('threads', 'synchronous', 'processes')

DEFAULTS: Dict[str, Any] = {
    'target_cell_size': 0.25,          # source CRS units (degrees for WGS84 data)
    'target_crs': 'EPSG:3857',
    'reproject_cell_size': None,       # target CRS units, estimated when None
    'dim': DEFAULT_DIM,
    'style': 'quantile',
    'x_variable': 'temperature',
    'y_variable': 'precipitation',
    'scheduler': 'threads',
    'convert_units': True,
    'period_start': None,
    'period_end': None,
    'output_dir': 'output/bivariate',
    'log_level': 'INFO',
    'log_file': None,
}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def _to_int(value: Any) -> int:
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValueError(f"expected an integer, got {value!r}")
    return int(value)


def _optional(cast: Callable[[Any], Any]) -> Callable[[Any], Any]:
    def convert(value):
        if value is None or (isinstance(value, str) and value.strip().lower() in ('', 'none', 'null')):
            return None
        return cast(value)
    return convert


CASTS: Dict[str, Callable[[Any], Any]] = {
    'target_cell_size': float,
    'target_crs': str,
    'reproject_cell_size': _optional(float),
    'dim': _to_int,
    'style': str,
    'x_variable': str,
    'y_variable': str,
    'scheduler': str,
    'convert_units': _to_bool,
    'period_start': _optional(_to_int),
    'period_end': _optional(_to_int),
    'output_dir': str,
    'log_level': str,
    'log_file': _optional(str),
}


class BivariateConfig:
    """Configuration class for the bivariate classification pipeline."""

    def __init__(self, config_file: Optional[str] = None, config_dict: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration with defaults, YAML file, and optional overrides.

        Args:
            config_file: Path to YAML configuration file (defaults to 'config.yaml'
                in the project root)
            config_dict: Optional dictionary to override settings
        """
        self.project_root = Path(__file__).parent.parent

        yaml_config = self._load_yaml_config(config_file)
        self._set_configuration(yaml_config)

        if config_dict:
            for key, value in config_dict.items():
                if key not in DEFAULTS:
                    raise InputValidationError(f"Unknown configuration key '{key}'")
                self._set_value(key, value)

    def _load_yaml_config(self, config_file: Optional[str] = None) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if config_file is None:
            config_path = self.project_root / 'config.yaml'
        else:
            config_path = Path(config_file)
            if not config_path.exists():
                raise InputValidationError(f"Configuration file not found: {config_path}")

        if not config_path.exists():
            logger.debug(f"No YAML config file found at {config_path}, using defaults")
            return {}

        with open(config_path, 'r') as f:
            try:
                yaml_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise InputValidationError(f"Could not parse {config_path}: {e}") from e

        if not isinstance(yaml_config, dict):
            raise InputValidationError(f"Configuration in {config_path} must be a mapping")
        unknown = set(yaml_config) - set(DEFAULTS)
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys in {config_path}: {sorted(unknown)}")
        logger.info(f"Loaded configuration from {config_path}")
        return yaml_config

    def _set_configuration(self, yaml_config: Dict[str, Any]) -> None:
        """Set configuration values from YAML config and environment variables."""
        for key, default in DEFAULTS.items():
            value = os.getenv(ENV_PREFIX + key.upper(), yaml_config.get(key, default))
            self._set_value(key, value)

    def _set_value(self, key: str, value: Any) -> None:
        try:
            setattr(self, key, CASTS[key](value))
        except (TypeError, ValueError) as e:
            raise InputValidationError(f"Invalid value for '{key}': {value!r}") from e

    @property
    def period(self) -> Optional[ClimatePeriod]:
        """Climate period to restrict inputs to, if configured."""
        if self.period_start is None and self.period_end is None:
            return None
        if self.period_start is None or self.period_end is None:
            raise InputValidationError("Both period_start and period_end must be set")
        return ClimatePeriod(self.period_start, self.period_end)

    def validate(self) -> bool:
        """
        Validate configuration settings.

        Raises:
            InputValidationError: Listing every invalid setting
        """
        errors = []

        if not self.target_cell_size > 0:
            errors.append(f"target_cell_size must be positive, got {self.target_cell_size}")
        if self.reproject_cell_size is not None and not self.reproject_cell_size > 0:
            errors.append(f"reproject_cell_size must be positive, got {self.reproject_cell_size}")
        try:
            validate_dim(self.dim)
        except InputValidationError as e:
            errors.append(str(e))
        if self.style not in STYLES:
            errors.append(f"Invalid style: {self.style}. Valid options: {list(STYLES)}")
        if self.scheduler not in SCHEDULERS:
            errors.append(f"Invalid scheduler: {self.scheduler}. Valid options: {list(SCHEDULERS)}")
        if self.x_variable == self.y_variable:
            errors.append(f"x_variable and y_variable must differ, both are '{self.x_variable}'")
        try:
            to_crs(self.target_crs)
        except InputValidationError as e:
            errors.append(str(e))
        try:
            self.period
        except InputValidationError as e:
            errors.append(str(e))

        for error in errors:
            logger.error(f"Configuration error: {error}")
        if errors:
            raise InputValidationError("; ".join(errors))
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {key: getattr(self, key) for key in DEFAULTS}

    def save_config(self, output_file: Optional[str] = None) -> None:
        """Save current configuration to YAML file."""
        if output_file is None:
            output_file = self.project_root / 'config.yaml'

        with open(output_file, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, indent=2)

        logger.info(f"Configuration saved to {output_file}")

    def __repr__(self) -> str:
        return (f"BivariateConfig(dim={self.dim}, style='{self.style}', "
                f"cell_size={self.target_cell_size}, crs='{self.target_crs}')")
