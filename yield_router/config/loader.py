"""
Configuration Loader.

Loads and merges YAML configuration files with environment variable
substitution and validation.
"""

import os
import re
from copy import deepcopy
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from .exceptions import (
    ConfigFileNotFoundError,
    ConfigParseError,
    ConfigValidationError,
)
from .models import AppConfig

# Pattern to match environment variables: ${VAR} or ${VAR:default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")


class ConfigLoader:
    """
    Configuration loader with YAML support and environment variable substitution.

    Example:
        >>> loader = ConfigLoader()
        >>> config = loader.load("config/router.yaml", env="production")
        >>> print(config.router.allocation_window_seconds)
    """

    def __init__(self, env_file: Optional[str | Path] = None):
        """
        Initialize ConfigLoader.

        Args:
            env_file: Optional path to .env file. If not provided,
                     will look for .env next to the config file.
        """
        self._env_file = Path(env_file) if env_file else None
        self._loaded_env = False

    def load(
        self,
        path: str | Path,
        env: Optional[str] = None,
    ) -> AppConfig:
        """
        Load configuration from YAML file with optional environment overlay.

        Loading flow:
        1. Load .env file (if exists)
        2. Load base config
        3. Load ``<stem>.<env><suffix>`` (if env specified and file exists)
        4. Deep merge configurations
        5. Substitute environment variables
        6. Validate with Pydantic

        Raises:
            ConfigFileNotFoundError: If base config file not found
            ConfigParseError: If YAML parsing fails
            ConfigValidationError: If Pydantic validation fails
        """
        path = Path(path)

        self._load_env_file(path.parent)

        base_config = self.load_yaml(path)

        if env:
            env_config_path = path.parent / f"{path.stem}.{env}{path.suffix}"
            if env_config_path.exists():
                env_config = self.load_yaml(env_config_path)
                base_config = self.merge_configs(base_config, env_config)

        final_config = self.substitute_env_vars(base_config)

        try:
            return AppConfig(**final_config)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']} ({err['type']})"
                for err in e.errors()
            ]
            raise ConfigValidationError(errors) from e

    def load_yaml(self, path: str | Path) -> dict[str, Any]:
        """
        Load a YAML configuration file.

        Raises:
            ConfigFileNotFoundError: If file not found
            ConfigParseError: If YAML parsing fails or the document is not a mapping
        """
        path = Path(path)

        if not path.exists():
            raise ConfigFileNotFoundError(str(path))

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigParseError(str(path), str(e)) from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigParseError(str(path), "top-level document must be a mapping")
        return data

    def merge_configs(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Deep merge two configuration dictionaries.

        Override values take precedence. Nested dictionaries are merged recursively.

        Example:
            >>> base = {"a": {"b": 1, "c": 2}, "d": 3}
            >>> override = {"a": {"b": 10}, "e": 4}
            >>> merged = loader.merge_configs(base, override)
            >>> # Result: {"a": {"b": 10, "c": 2}, "d": 3, "e": 4}
        """
        result = deepcopy(base)

        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self.merge_configs(result[key], value)
            else:
                result[key] = deepcopy(value)

        return result

    def substitute_env_vars(self, data: Any) -> Any:
        """Substitute ${VAR} and ${VAR:default} in configuration data."""
        if isinstance(data, dict):
            return {k: self.substitute_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [self.substitute_env_vars(item) for item in data]
        elif isinstance(data, str):
            return self._substitute_string(data)
        else:
            return data

    def _substitute_string(self, value: str) -> Any:
        # A whole-string reference keeps the converted type of the value
        full_match = ENV_VAR_PATTERN.fullmatch(value)
        if full_match:
            var_name, default = full_match.groups()
            env_value = os.environ.get(var_name, default)

            if env_value is None:
                return value

            return self._convert_value(env_value)

        def replace_match(match: re.Match) -> str:
            var_name, default = match.groups()
            return os.environ.get(var_name, default if default is not None else match.group(0))

        return ENV_VAR_PATTERN.sub(replace_match, value)

    def _convert_value(self, value: str) -> Any:
        """
        Convert string value to appropriate Python type.

        Numbers stay strings when they carry a fraction so that Decimal
        fields receive the exact text.
        """
        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        return value

    def _load_env_file(self, config_dir: Path) -> None:
        """Load .env file if not already loaded."""
        if self._loaded_env:
            return

        if self._env_file and self._env_file.exists():
            load_dotenv(self._env_file)
            self._loaded_env = True
            return

        for candidate in (config_dir / ".env", config_dir.parent / ".env", Path.cwd() / ".env"):
            if candidate.exists():
                load_dotenv(candidate)
                self._loaded_env = True
                return


def load_config(
    path: str | Path,
    env: Optional[str] = None,
    env_file: Optional[str | Path] = None,
) -> AppConfig:
    """
    Load configuration from YAML file.

    Convenience function that creates a ConfigLoader and loads configuration.
    """
    loader = ConfigLoader(env_file=env_file)
    return loader.load(path, env=env)
