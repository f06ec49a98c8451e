"""YAML loader for pihole.yml."""
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from bodhilab.core.logger import get_logger
from bodhilab.models.config import ConfigValidationError
from bodhilab.models.pihole import PiholeConfig

logger = get_logger(__name__)


class PiholeConfigLoader:
    """Loads and validates a Pi-hole configuration file."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path) if config_path else None
        self.raw_config = None

    def load(self) -> PiholeConfig:
        """Load the file, or return built-in defaults when no path is set.

        Raises:
            FileNotFoundError: If an explicit path does not exist
            ConfigValidationError: If the YAML is malformed or fails validation
        """
        if self.config_path is None:
            logger.debug("No pihole.yml found, using built-in defaults")
            return PiholeConfig()

        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path) as f:
                self.raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Invalid YAML: {e}", self.config_path) from e

        # Handle empty config file
        if not self.raw_config:
            return PiholeConfig()

        if not isinstance(self.raw_config, dict):
            raise ConfigValidationError("Top level must be a mapping", self.config_path)

        try:
            config = PiholeConfig.model_validate(self.raw_config)
        except ValidationError as e:
            raise ConfigValidationError(str(e), self.config_path) from e

        logger.info(f"Loaded Pi-hole configuration from {self.config_path}")
        return config


def load_pihole_config(config_path: Optional[str] = None) -> PiholeConfig:
    return PiholeConfigLoader(config_path).load()
