"""
Configuration loading and management.

Locates the flowsrc config file, applies environment overrides and validates
the result into a SyncConfig.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

from pydantic import ValidationError

from core.errors import ConfigurationError
from core.models.config import SyncConfig, GlobalSettings
from .defaults import DEFAULT_SOURCE_DIRNAME, ENV_VAR_MAPPING, STRING_CONFIG_KEYS, get_default_config

logger = logging.getLogger(__name__)


class ConfigurationLoader:
    """Load and validate flowsrc configuration files"""

    def __init__(self, global_settings: Optional[GlobalSettings] = None):
        self.global_settings = global_settings or GlobalSettings()

    def find_config_file(self, search_dir: Optional[Path] = None) -> Optional[Path]:
        """Look for the default config file in ``search_dir`` (the working directory by default)"""
        search_dir = Path(search_dir) if search_dir else Path.cwd()
        candidate = search_dir / self.global_settings.config_file_name
        return candidate if candidate.is_file() else None

    def load(self, config_path: Optional[Union[str, Path]] = None) -> SyncConfig:
        """
        Load and validate a config file.

        Args:
            config_path: Path to the config file. When omitted the default
                file name is looked up in the working directory.

        Returns:
            Validated SyncConfig

        Raises:
            ConfigurationError: No file, not a file, invalid JSON or invalid values
        """
        if config_path is None:
            config_path = self.find_config_file()
            if config_path is None:
                raise ConfigurationError(
                    f"Please provide the path to the config file, or create "
                    f"{self.global_settings.config_file_name} in the current directory"
                )

        config_path = Path(config_path).expanduser().resolve()

        if not config_path.exists():
            raise ConfigurationError(f"The provided config file does not exist: '{config_path}'")
        if not config_path.is_file():
            raise ConfigurationError(f"The provided config file is not a file: '{config_path}'")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"The provided config file is not valid JSON: '{config_path}': {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"The provided config file must contain a JSON object: '{config_path}'")

        # Apply environment variable overrides
        data = self._apply_env_overrides(data)

        config_dir = config_path.parent
        data['config_dir'] = config_dir
        data['source_path'] = self._resolve_source_path(data.get('source_path'), config_dir)

        try:
            config = SyncConfig(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in '{config_path}': {e}") from e

        logger.info(f"Config loaded: {config_path}")
        return config

    def _resolve_source_path(self, source_path: Optional[Any], config_dir: Path) -> Path:
        """Relative source paths are taken relative to the config file"""
        if not source_path:
            return config_dir / DEFAULT_SOURCE_DIRNAME

        path = Path(str(source_path)).expanduser()
        if not path.is_absolute():
            path = config_dir / path
        return path.resolve()

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration"""
        for env_var, config_key in ENV_VAR_MAPPING.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                if config_key in STRING_CONFIG_KEYS:
                    config_data[config_key] = env_value
                else:
                    config_data[config_key] = self._convert_env_value(env_value)
                logger.debug(f"Config '{config_key}' overridden by {env_var}")

        return config_data

    def _convert_env_value(self, value: str) -> Any:
        """Convert environment variable string to appropriate type"""
        # Boolean conversion
        if value.lower() in ('true', 'yes', 'on'):
            return True
        elif value.lower() in ('false', 'no', 'off'):
            return False

        # Numeric conversion
        try:
            if '.' in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        # Return as string
        return value

    def write_default(
        self,
        config_path: Union[str, Path],
        node_red_url: Optional[str] = None,
        overwrite: bool = False
    ) -> Path:
        """
        Write a starter config file.

        Raises:
            ConfigurationError: The file exists and ``overwrite`` is False, or
                it could not be written
        """
        config_path = Path(config_path).expanduser().resolve()
        if config_path.exists() and not overwrite:
            raise ConfigurationError(f"Config file already exists: '{config_path}'")

        config_data = get_default_config(node_red_url) if node_red_url else get_default_config()

        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, 'w', encoding='utf-8') as f:
                json.dump(config_data, f, indent=2, ensure_ascii=False)
        except OSError as e:
            raise ConfigurationError(f"Failed to write config file '{config_path}': {e}") from e

        logger.info(f"Saved configuration to {config_path}")
        return config_path
