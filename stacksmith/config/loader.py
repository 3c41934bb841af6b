"""
Configuration loader for Stacksmith.

Handles loading from multiple sources with proper priority:
CLI Args > Environment Variables (and .env) > Config File > Defaults
"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from ..exceptions import ConfigurationError
from .models import StacksmithConfig


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources.

    Priority order (highest to lowest):
    1. CLI arguments (passed directly to merge_cli_args)
    2. Environment variables (STACKSMITH_*), including a local .env file
    3. Configuration file
    4. Default values
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".config" / "stacksmith"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
    ENV_PREFIX = "STACKSMITH_"
    # Read by timeout_config, not part of the model
    RESERVED_ENV_PREFIXES = ("STACKSMITH_TIMEOUT_", "STACKSMITH_CONFIG_PATH")

    def __init__(self, config_path: Optional[Path] = None, use_dotenv: bool = True):
        """
        Initialize configuration loader.

        Args:
            config_path: Path to configuration file. If None, uses default location.
            use_dotenv: Load a .env file from the working directory first.
        """
        if use_dotenv:
            load_dotenv(override=False)
        self.config_path = config_path or self._get_config_path_from_env()

    @classmethod
    def _get_config_path_from_env(cls) -> Path:
        """Get configuration path from environment variable or default."""
        env_path = os.environ.get("STACKSMITH_CONFIG_PATH")
        if env_path:
            return Path(env_path).expanduser()
        return cls.DEFAULT_CONFIG_FILE

    def load(self) -> StacksmithConfig:
        """
        Load configuration from all sources and merge.

        Returns:
            Validated StacksmithConfig object

        Raises:
            ConfigurationError: If configuration is invalid
        """
        config_dict: dict[str, Any] = {}

        if self.config_path.exists():
            file_config = self._load_file(self.config_path)
            config_dict = self._deep_merge(config_dict, file_config)

        env_config = self._load_from_env()
        config_dict = self._deep_merge(config_dict, env_config)

        return self._validate(config_dict)

    def _validate(self, config_dict: dict[str, Any]) -> StacksmithConfig:
        try:
            return StacksmithConfig.model_validate(config_dict)
        except ValidationError as e:
            raise ConfigurationError(
                f"Configuration validation failed: {e}",
                context={"config_path": str(self.config_path)},
                cause=e,
            ) from e

    def _load_file(self, path: Path) -> dict[str, Any]:
        """
        Load configuration from YAML file.

        Raises:
            ConfigurationError: If file cannot be read or parsed
        """
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}", cause=e) from e
        except OSError as e:
            raise ConfigurationError(
                f"Cannot read config file {path}: {e}", cause=e
            ) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Config file {path} must contain a mapping at the top level"
            )
        return data

    def _load_from_env(self) -> dict[str, Any]:
        """
        Load configuration from environment variables.

        Environment variable format:
        - STACKSMITH_DEPLOYMENT__POLL_INTERVAL_SECONDS
        - STACKSMITH_VERIFICATION__STRICT
        - STACKSMITH_LOGGING__LEVEL

        Double underscore (__) separates nested keys.
        """
        config: dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(self.ENV_PREFIX):
                continue
            if key.startswith(self.RESERVED_ENV_PREFIXES):
                continue

            config_key = key[len(self.ENV_PREFIX) :].lower()
            parts = config_key.split("__")

            current = config
            for part in parts[:-1]:
                current = current.setdefault(part, {})
                if not isinstance(current, dict):
                    raise ConfigurationError(
                        f"Environment variable {key} conflicts with another setting",
                        config_key=config_key,
                    )

            current[parts[-1]] = self._convert_env_value(value)

        return config

    def _convert_env_value(self, value: str) -> Any:
        """
        Convert environment variable string to appropriate type.

        Returns:
            Converted value (bool, int, float, or str)
        """
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value

    def _deep_merge(
        self, base: dict[str, Any], update: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Deep merge two dictionaries.

        Returns:
            Merged dictionary (base is not modified)
        """
        result = base.copy()

        for key, value in update.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def merge_cli_args(
        self,
        config: StacksmithConfig,
        cli_args: dict[str, Any],
    ) -> StacksmithConfig:
        """
        Merge CLI arguments into configuration.

        CLI arguments have highest priority and override all other sources.

        Args:
            config: Base configuration
            cli_args: CLI arguments to merge (non-None values only)

        Returns:
            New StacksmithConfig with CLI args applied
        """
        filtered_args = self._filter_none_values(cli_args)

        if not filtered_args:
            return config

        config_dict = config.model_dump()
        config_dict = self._deep_merge(config_dict, filtered_args)

        return self._validate(config_dict)

    def _filter_none_values(self, data: dict[str, Any]) -> dict[str, Any]:
        """Recursively filter out None values from a dictionary."""
        result = {}
        for key, value in data.items():
            if value is None:
                continue
            elif isinstance(value, dict):
                filtered = self._filter_none_values(value)
                if filtered:
                    result[key] = filtered
            else:
                result[key] = value
        return result


def load_config(
    config_path: Optional[Path] = None,
    cli_args: Optional[dict[str, Any]] = None,
    use_dotenv: bool = True,
) -> StacksmithConfig:
    """
    Load configuration from every source.

    Args:
        config_path: Optional explicit configuration file
        cli_args: Optional nested dict of CLI overrides

    Returns:
        Validated StacksmithConfig
    """
    loader = ConfigLoader(config_path, use_dotenv=use_dotenv)
    config = loader.load()
    if cli_args:
        config = loader.merge_cli_args(config, cli_args)
    return config
