"""
Configuration management for the Render Proxy.

This module provides a singleton `ConfigurationManager` class to load and access
configuration settings from YAML files. It supports environment-specific
configurations (e.g., development, production) and a small set of process
environment overrides that deployments rely on.

Key Features:
- Loads settings from YAML files based on APP_ENV environment variable.
- Defaults to 'development' environment if APP_ENV is not set.
- Applies CACHE_SIZE, CHROME_BIN, HEADFUL, DEBUG and PORT overrides on top of YAML.
- Provides a global `config_manager` instance for easy access.
- Supports dot notation for accessing nested keys (e.g., "cache.max_size").
"""
import os
import yaml
from typing import Any, Dict, Optional

# CONFIG_DIR: Path to the directory containing configuration YAML files
# (render_proxy/config, one level up from 'core').
CONFIG_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "config")

# DEFAULT_ENV: The default environment to use if APP_ENV is not set.
DEFAULT_ENV = "development"

# Environment variable -> (dotted config key, converter)
ENV_OVERRIDES = {
    "CACHE_SIZE": ("cache.max_size", int),
    "CHROME_BIN": ("browser.executable_path", str),
    "HEADFUL": ("browser.headless", lambda value: False),
    "DEBUG": ("browser.debug", lambda value: True),
    "PORT": ("server.port", int),
}


class ConfigError(Exception):
    """Base class for all configuration-related errors."""
    pass


class ConfigFileNotFoundError(ConfigError):
    """Raised when a specific configuration file (e.g., development.yaml) cannot be found."""
    pass


class InvalidYamlError(ConfigError):
    """Raised when a configuration file contains invalid YAML syntax or is not a dictionary."""
    pass


class ConfigurationManager:
    """
    Manages loading and accessing configuration settings from YAML files.

    This class is implemented as a singleton. The first time an instance is created,
    it loads the configuration. Subsequent instantiations return the existing instance.
    """
    CONFIG_DIR: str = CONFIG_DIR
    _instance: Optional['ConfigurationManager'] = None
    _config: Dict[str, Any] = {}
    _current_env: str = ""

    def __new__(cls) -> 'ConfigurationManager':
        if cls._instance is None:
            cls._instance = super(ConfigurationManager, cls).__new__(cls)
            cls._instance.load_config()
        return cls._instance

    def load_config(self, env: Optional[str] = None) -> None:
        """
        Loads configuration from a YAML file corresponding to the specified environment,
        then applies process environment overrides.

        The environment is determined in the following order of precedence:
        1. The `env` parameter passed to this method.
        2. The `APP_ENV` environment variable.
        3. `DEFAULT_ENV` (if neither of the above is set).

        Args:
            env (Optional[str]): The specific environment name (e.g., "production") to load.

        Raises:
            ConfigFileNotFoundError: If the YAML file for the target environment is not found.
            InvalidYamlError: If the YAML file is malformed or not a dictionary.
        """
        self._current_env = env or os.getenv("APP_ENV", DEFAULT_ENV)
        config_file_path = os.path.join(self.CONFIG_DIR, f"{self._current_env}.yaml")

        try:
            with open(config_file_path, "r") as f:
                self._config = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigFileNotFoundError(
                f"Configuration file not found for environment '{self._current_env}' at '{config_file_path}'. "
                f"Ensure '{self._current_env}.yaml' exists in the '{self.CONFIG_DIR}' directory."
            )
        except yaml.YAMLError as e:
            raise InvalidYamlError(
                f"Error parsing YAML in configuration file '{config_file_path}': {e}"
            )
        if not isinstance(self._config, dict):
            raise InvalidYamlError(
                f"Configuration file '{config_file_path}' does not contain a valid YAML dictionary."
            )

        self._apply_env_overrides()

    def _apply_env_overrides(self) -> None:
        for env_name, (key, convert) in ENV_OVERRIDES.items():
            raw_value = os.getenv(env_name)
            if not raw_value:
                continue
            try:
                self.set(key, convert(raw_value))
            except ValueError:
                raise InvalidYamlError(
                    f"Environment variable {env_name}={raw_value!r} cannot be applied to '{key}'."
                )
        if os.getenv("DEBUG"):
            self.set("logging.level", "DEBUG")

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        """
        Retrieves a configuration value for the given key.

        Supports accessing nested values using dot notation (e.g., "cache.ttl_seconds").
        If the key is not found, returns the provided default value.
        """
        keys = key.split(".")
        value = self._config
        try:
            for k_part in keys:
                if isinstance(value, dict):
                    value = value[k_part]
                else:
                    return default
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Sets a value at a dotted key, creating intermediate sections as needed."""
        parts = key.split(".")
        section = self._config
        for part in parts[:-1]:
            if not isinstance(section.get(part), dict):
                section[part] = {}
            section = section[part]
        section[parts[-1]] = value

    def reload_config(self, env: Optional[str] = None) -> None:
        """
        Reloads the configuration, potentially for a different environment.

        Args:
            env (Optional[str]): The environment to reload. If None, reloads the
                                 currently active environment.
        """
        from render_proxy.core.logger import get_logger

        old_env = self._current_env
        self.load_config(env or old_env)
        get_logger(__name__).info(
            f"Configuration reloaded. Previous environment: '{old_env}', current: '{self._current_env}'."
        )

    @property
    def current_environment(self) -> str:
        """Name of the currently loaded configuration environment."""
        return self._current_env


# Global instance of ConfigurationManager to be used by other modules.
config_manager = ConfigurationManager()


def get_config(key: str, default: Optional[Any] = None) -> Any:
    """
    A convenience function to access configuration values via the global `config_manager`.
    """
    return config_manager.get(key, default)
