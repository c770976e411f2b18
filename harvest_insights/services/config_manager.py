import os
from pathlib import Path
from string import Template
from typing import Any, Dict, Optional

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from harvest_insights.models.config import AppConfig
from harvest_insights.utils.exceptions import ConfigValidationError

logger = structlog.get_logger()

DEFAULT_CONFIG_PATH = "config/harvest_insights.yaml"


class ConfigManager:
    """Loads and validates the application configuration.

    The YAML file may reference environment variables as ${VAR}; a .env file
    in the working directory is loaded first. Without a config file the
    connection settings come from HARVEST_ACCESS_TOKEN and HARVEST_ACCOUNT_ID
    and every other section keeps its defaults.
    """

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        self.config_path = Path(config_path)
        self.env_loaded = False
        self._config: Optional[AppConfig] = None

    def load_config(self) -> AppConfig:
        """Load and validate configuration"""
        if self._config:
            return self._config

        if not self.env_loaded:
            load_dotenv()
            self.env_loaded = True

        if self.config_path.exists():
            config_data = self._read_yaml()
        else:
            logger.info("config_file_missing", path=str(self.config_path))
            config_data = {}

        config_data.setdefault("harvest", {})
        harvest = config_data["harvest"]
        if harvest is None:
            harvest = config_data["harvest"] = {}
        harvest.setdefault("access_token", os.environ.get("HARVEST_ACCESS_TOKEN", ""))
        harvest.setdefault("account_id", os.environ.get("HARVEST_ACCOUNT_ID", ""))

        try:
            self._config = AppConfig(**config_data)
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid configuration: {e}")

        logger.info(
            "config_loaded",
            path=str(self.config_path),
            cache_enabled=self._config.cache.enabled,
        )
        return self._config

    def _read_yaml(self) -> Dict[str, Any]:
        try:
            with open(self.config_path) as f:
                raw_content = f.read()
        except OSError as e:
            raise ConfigValidationError(f"Failed to read config file: {e}")

        try:
            substituted = Template(raw_content).safe_substitute(os.environ)
            config_data = yaml.safe_load(substituted)
        except yaml.YAMLError as e:
            raise ConfigValidationError(
                f"Failed to parse YAML or substitute variables: {e}"
            )

        if config_data is None:
            return {}
        if not isinstance(config_data, dict):
            raise ConfigValidationError("Configuration root must be a mapping")
        return config_data
