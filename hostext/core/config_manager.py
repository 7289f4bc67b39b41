from __future__ import annotations

import json
import logging
import os
import pathlib
import tempfile
from copy import deepcopy
from typing import Any, Callable, Dict, List, Optional, Set, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from hostext.core.base import HostextManager
from hostext.utils.exceptions import ConfigurationError, ManagerInitializationError


class ConfigSchema(BaseModel):
    """Schema for validating configuration data.

    This model defines the expected structure and default values for the
    plugin manager configuration.
    """
    host: Dict[str, Any] = Field(
        default_factory=lambda: {
            'home': '.',
            'version': '5.0.0',
        },
        description='Host installation settings',
    )
    plugins: Dict[str, Any] = Field(
        default_factory=lambda: {
            'update_urls': [],
            'truststore': None,
            'unattended': False,
            'rebuild': True,
            'rebuild_command': None,
        },
        description='Plugin installer settings',
    )
    network: Dict[str, Any] = Field(
        default_factory=lambda: {
            'timeout': 30.0,
            'retries': 3,
        },
        description='Catalog and download transport settings',
    )
    logging: Dict[str, Any] = Field(
        default_factory=lambda: {
            'level': 'INFO',
            'format': 'text',
            'file': {
                'enabled': False,
                'path': 'logs/hostext.log',
                'rotation': '10 MB',
                'retention': '5 days',
            },
            'console': {
                'enabled': True,
                'level': 'INFO',
            },
        },
        description='Logging settings',
    )

    @model_validator(mode='after')
    def validate_network(self) -> 'ConfigSchema':
        """Validate transport settings."""
        retries = self.network.get('retries')
        if not isinstance(retries, int) or isinstance(retries, bool) or retries < 1:
            raise ValueError('network.retries must be a positive integer.')
        timeout = self.network.get('timeout')
        if not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0:
            raise ValueError('network.timeout must be a positive number.')
        return self

    @model_validator(mode='after')
    def validate_update_urls(self) -> 'ConfigSchema':
        """Accept a single URL string or a whitespace separated list."""
        urls = self.plugins.get('update_urls')
        if isinstance(urls, str):
            self.plugins['update_urls'] = urls.split()
        elif urls is None:
            self.plugins['update_urls'] = []
        elif not isinstance(urls, list):
            raise ValueError('plugins.update_urls must be a list of URLs.')
        return self


class ConfigManager(HostextManager):
    """Configuration manager for the plugin tooling.

    Loads defaults from :class:`ConfigSchema`, merges a YAML or JSON file on
    top and finally applies environment variables carrying the configured
    prefix (``HOSTEXT_PLUGINS_UNATTENDED=true`` sets ``plugins.unattended``).

    Attributes:
        _config_path: Path to the configuration file
        _env_prefix: Prefix for environment variables
        _config: The loaded configuration
        _loaded_from_file: Whether configuration was loaded from a file
        _env_vars_applied: Set of applied environment variables
        _listeners: Dictionary of config change listeners
    """

    def __init__(
            self,
            config_path: Optional[Union[str, pathlib.Path]] = None,
            env_prefix: str = 'HOSTEXT_'
    ) -> None:
        """Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
            env_prefix: Prefix for environment variables
        """
        super().__init__(name='config_manager')
        self._config_path = pathlib.Path(config_path) if config_path else pathlib.Path('hostext.yaml')
        self._env_prefix = env_prefix
        self._config: Dict[str, Any] = {}
        self._loaded_from_file = False
        self._env_vars_applied: Set[str] = set()
        self._listeners: Dict[str, List[Callable[[str, Any], None]]] = {}
        self._logger = logging.getLogger('config_manager')

    def initialize(self) -> None:
        """Initialize the configuration manager.

        Loads configuration from default schema, file, and environment variables.

        Raises:
            ManagerInitializationError: If initialization fails
        """
        try:
            self._config = ConfigSchema().model_dump()
            self._load_from_file()
            self._apply_env_vars()
            self._validate_config()

            self._initialized = True
            self._healthy = True
        except Exception as e:
            raise ManagerInitializationError(
                f'Failed to initialize ConfigManager: {str(e)}',
                manager_name=self.name
            ) from e

    def _load_from_file(self) -> None:
        """Load configuration from a file.

        Raises:
            ConfigurationError: If the file cannot be parsed
        """
        if not self._config_path.exists():
            return

        try:
            with open(self._config_path, 'r', encoding='utf-8') as f:
                content = f.read()

            if self._config_path.suffix.lower() in ('.yaml', '.yml'):
                file_config = yaml.safe_load(content)
            elif self._config_path.suffix.lower() == '.json':
                file_config = json.loads(content)
            else:
                raise ConfigurationError(
                    f'Unsupported config file format: {self._config_path.suffix}',
                    config_key='config_path'
                )

            if file_config:
                self._merge_config(file_config)
                self._loaded_from_file = True
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f'Error parsing config file {self._config_path}: {str(e)}',
                config_key='config_path'
            ) from e

    def _apply_env_vars(self) -> None:
        """Override configuration values with environment variables.

        The first underscore after the prefix separates the section from the
        key, so ``HOSTEXT_PLUGINS_REBUILD_COMMAND`` maps to
        ``plugins.rebuild_command``.
        """
        for env_name, env_value in os.environ.items():
            if not env_name.startswith(self._env_prefix):
                continue

            remainder = env_name[len(self._env_prefix):].lower()
            section, _, key = remainder.partition('_')
            if not key:
                continue
            if section in self._config and isinstance(self._config[section], dict):
                path = [section, key]
                existing = self._config[section]
                if key not in existing and '_' in key:
                    head, _, tail = key.partition('_')
                    if isinstance(existing.get(head), dict):
                        path = [section, head, tail]
            else:
                path = [section, key]

            self._set_nested_value(self._config, path, self._parse_env_value(env_value))
            self._env_vars_applied.add(env_name)

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        """Parse environment variable values into appropriate types.

        Args:
            value: The string value from the environment

        Returns:
            The parsed value (bool, int, float, or string)
        """
        if value.lower() in ('true', 'yes', 'on'):
            return True
        if value.lower() in ('false', 'no', 'off'):
            return False

        try:
            if value.isdigit() or (value.startswith('-') and value[1:].isdigit()):
                return int(value)
            return float(value)
        except ValueError:
            return value

    def _set_nested_value(self, config: Dict[str, Any], path: List[str], value: Any) -> None:
        if not path:
            return

        if len(path) == 1:
            config[path[0]] = value
            return

        key = path[0]
        if key not in config or not isinstance(config[key], dict):
            config[key] = {}

        self._set_nested_value(config[key], path[1:], value)

    def _validate_config(self) -> None:
        """Validate the configuration against the schema.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        try:
            self._config = ConfigSchema(**self._config).model_dump()
        except ValidationError as e:
            errors = e.errors()
            error_details = ', '.join((
                f"{'.'.join((str(loc) for loc in error['loc']))}: {error['msg']}"
                for error in errors
            ))
            raise ConfigurationError(
                f'Invalid configuration: {error_details}',
                details={'validation_errors': errors}
            ) from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key.

        Args:
            key: The configuration key (dot-separated for nested values)
            default: Default value if the key doesn't exist

        Returns:
            The configuration value or default

        Raises:
            ConfigurationError: If the manager isn't initialized
        """
        if not self._initialized:
            raise ConfigurationError(
                'Cannot access configuration before initialization',
                config_key=key
            )

        result: Any = self._config
        try:
            for part in key.split('.'):
                result = result[part]
            return result
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value by key.

        The value is validated and listeners are notified. Values set at
        runtime are not written back to the configuration file.

        Args:
            key: The configuration key (dot-separated for nested values)
            value: The value to set

        Raises:
            ConfigurationError: If the manager isn't initialized or the value is invalid
        """
        if not self._initialized:
            raise ConfigurationError(
                'Cannot modify configuration before initialization',
                config_key=key
            )

        new_config = deepcopy(self._config)
        self._set_nested_value(new_config, key.split('.'), value)

        try:
            self._config = ConfigSchema(**new_config).model_dump()
        except ValidationError as e:
            raise ConfigurationError(
                f'Invalid configuration value for {key}: {str(e)}',
                config_key=key,
                details={'validation_errors': e.errors()}
            ) from e
        self._notify_listeners(key, value)

    def save(self, path: Optional[Union[str, pathlib.Path]] = None) -> None:
        """Write the current configuration to disk atomically.

        Args:
            path: Target file, defaulting to the file the manager was created with

        Raises:
            ConfigurationError: If the format is unsupported or the write fails
        """
        config_path = pathlib.Path(path) if path else self._config_path
        suffix = config_path.suffix.lower()
        if suffix not in ('.yaml', '.yml', '.json'):
            raise ConfigurationError(
                f'Unsupported config file format: {config_path.suffix}',
                config_key='config_path'
            )

        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                    mode='w', delete=False, dir=config_path.parent, suffix='.tmp', encoding='utf-8'
            ) as tmp:
                if suffix == '.json':
                    json.dump(self._config, tmp, indent=2)
                else:
                    yaml.safe_dump(self._config, tmp, default_flow_style=False)
            os.replace(tmp.name, str(config_path))
        except OSError as e:
            raise ConfigurationError(
                f'Error saving configuration to {config_path}: {str(e)}',
                config_key='config_path'
            ) from e

    def _merge_config(
            self,
            from_config: Dict[str, Any],
            to_config: Optional[Dict[str, Any]] = None
    ) -> None:
        """Merge a configuration dictionary into another.

        Args:
            from_config: The source configuration
            to_config: The target configuration (defaults to self._config)
        """
        if to_config is None:
            to_config = self._config

        for key, value in from_config.items():
            if key in to_config and isinstance(to_config[key], dict) and isinstance(value, dict):
                self._merge_config(value, to_config[key])
            elif value not in [None, '', {}]:
                to_config[key] = value

    def register_listener(self, key: str, callback: Callable[[str, Any], None]) -> None:
        """Register a listener for configuration changes.

        Args:
            key: The configuration key to listen for
            callback: Function called with ``(key, value)`` when the key changes
        """
        if key not in self._listeners:
            self._listeners[key] = []
        if callback not in self._listeners[key]:
            self._listeners[key].append(callback)

    def unregister_listener(self, key: str, callback: Callable[[str, Any], None]) -> None:
        if key in self._listeners and callback in self._listeners[key]:
            self._listeners[key].remove(callback)
            if not self._listeners[key]:
                del self._listeners[key]

    def _notify_listeners(self, key: str, value: Any) -> None:
        for listener_key, callbacks in list(self._listeners.items()):
            if listener_key == key or key.startswith(f'{listener_key}.'):
                for callback in callbacks:
                    try:
                        callback(key, value)
                    except Exception as e:
                        self._logger.error(f'Error in config listener for {key}: {str(e)}')

    def shutdown(self) -> None:
        """Shut down the configuration manager."""
        self._listeners.clear()
        self._initialized = False
        self._healthy = False

    def status(self) -> Dict[str, Any]:
        """Get the status of the configuration manager.

        Returns:
            Dictionary with status information
        """
        status = super().status()
        status.update({
            'config_file': str(self._config_path) if self._loaded_from_file else None,
            'loaded_from_file': self._loaded_from_file,
            'env_vars_applied': len(self._env_vars_applied),
            'registered_listeners': sum(len(callbacks) for callbacks in self._listeners.values())
        })
        return status
