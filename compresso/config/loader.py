import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from compresso.config.models import AppConfig
from compresso.domain.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("conf/compresso.yaml")


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Loads the YAML config, falling back to defaults when the file is absent.

    Raises:
        ConfigError: the file exists but is not valid YAML or fails validation.
    """
    config_file = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if not config_file.exists():
        logger.debug(f"Config file {config_file} not found, using defaults")
        return AppConfig()

    try:
        with open(config_file, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config file {config_file}: {e}", path=config_file) from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_file} must contain a mapping", path=config_file)

    try:
        return AppConfig(**data)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid config file {config_file}: {e}", path=config_file) from e
