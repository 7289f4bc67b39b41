from __future__ import annotations

import atexit
import logging
import logging.handlers
import os
import pathlib
import sys
from typing import Any, Dict, List, Optional, Union

import structlog
from pythonjsonlogger import jsonlogger

from hostext.core.base import HostextManager
from hostext.utils.exceptions import ManagerInitializationError, ManagerShutdownError


class LoggingManager(HostextManager):
    """Configures process-wide logging for the plugin tooling.

    Installs a console handler and an optional rotating file handler on the
    root logger. With ``format: json`` records are rendered by
    ``python-json-logger`` and structlog is wired to the standard library so
    that :meth:`get_logger` hands out structured loggers.
    """

    LOG_LEVELS = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    def __init__(self, config_manager: Any) -> None:
        """Initialize the Logging Manager.

        Args:
            config_manager: The Configuration Manager to use for logging settings.
        """
        super().__init__(name="logging_manager")
        self._config_manager = config_manager
        self._root_logger: Optional[logging.Logger] = None
        self._file_handler: Optional[logging.Handler] = None
        self._console_handler: Optional[logging.Handler] = None
        self._log_directory: Optional[pathlib.Path] = None
        self._enable_structlog = False
        self._handlers: List[logging.Handler] = []

    def initialize(self) -> None:
        """Set up handlers from the ``logging`` configuration section.

        Raises:
            ManagerInitializationError: If initialization fails.
        """
        try:
            logging_config = self._config_manager.get("logging", {})
            log_level = self._level(logging_config.get("level", "INFO"))
            log_format = logging_config.get("format", "text").lower()
            file_config = logging_config.get("file", {})
            console_config = logging_config.get("console", {})

            self._root_logger = logging.getLogger()
            self._root_logger.setLevel(log_level)
            for handler in list(self._root_logger.handlers):
                self._root_logger.removeHandler(handler)

            if log_format == "json":
                self._enable_structlog = True
                formatter = self._create_json_formatter()
            else:
                formatter = logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                )

            if console_config.get("enabled", True):
                # Console output goes to stderr so stdout stays free for command results
                self._console_handler = logging.StreamHandler(sys.stderr)
                self._console_handler.setLevel(self._level(console_config.get("level", "INFO")))
                self._console_handler.setFormatter(formatter)
                self._root_logger.addHandler(self._console_handler)
                self._handlers.append(self._console_handler)

            if file_config.get("enabled", False):
                file_path = pathlib.Path(file_config.get("path", "logs/hostext.log"))
                self._log_directory = file_path.parent
                os.makedirs(self._log_directory, exist_ok=True)

                self._file_handler = logging.handlers.RotatingFileHandler(
                    file_path,
                    maxBytes=self._parse_rotation(file_config.get("rotation", "10 MB")),
                    backupCount=self._parse_retention(file_config.get("retention", "5 days")),
                    encoding="utf-8",
                )
                self._file_handler.setLevel(log_level)
                self._file_handler.setFormatter(formatter)
                self._root_logger.addHandler(self._file_handler)
                self._handlers.append(self._file_handler)

            if self._enable_structlog:
                self._configure_structlog()

            register = getattr(self._config_manager, "register_listener", None)
            if register is not None:
                register("logging", self._on_config_changed)

            atexit.register(self.shutdown)

            self._root_logger.debug(
                "Logging Manager initialized",
                extra={"manager": "LoggingManager", "event": "initialization"},
            )

            self._initialized = True
            self._healthy = True

        except Exception as e:
            raise ManagerInitializationError(
                f"Failed to initialize LoggingManager: {str(e)}",
                manager_name=self.name,
            ) from e

    def _level(self, name: Any) -> int:
        if not isinstance(name, str):
            return logging.INFO
        return self.LOG_LEVELS.get(name.lower(), logging.INFO)

    @staticmethod
    def _parse_rotation(rotation: Any) -> int:
        """Parse a size such as ``"10 MB"`` into bytes."""
        if isinstance(rotation, int):
            return rotation
        if isinstance(rotation, str) and "MB" in rotation:
            return int(rotation.split()[0]) * 1024 * 1024
        return 10 * 1024 * 1024

    @staticmethod
    def _parse_retention(retention: Any) -> int:
        """Parse ``"5 days"`` into a backup file count."""
        if isinstance(retention, int):
            return retention
        if isinstance(retention, str) and "day" in retention:
            return int(retention.split()[0])
        return 5

    def _create_json_formatter(self) -> logging.Formatter:
        return jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
            json_ensure_ascii=False,
        )

    def _configure_structlog(self) -> None:
        """Configure structlog to route through the standard library handlers."""
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.stdlib.render_to_log_kwargs,
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def get_logger(self, name: str) -> Union[logging.Logger, Any]:
        """Get a logger for a specific component.

        Args:
            name: The name of the component requesting a logger.

        Returns:
            A structlog logger when JSON output is enabled, otherwise a
            standard library logger.
        """
        if self._initialized and self._enable_structlog:
            return structlog.get_logger(name)
        return logging.getLogger(name)

    def _on_config_changed(self, key: str, value: Any) -> None:
        """Apply level changes made through the configuration manager."""
        if not self._root_logger:
            return

        if key == "logging.level":
            level = self._level(value)
            self._root_logger.setLevel(level)
            if self._file_handler:
                self._file_handler.setLevel(level)
        elif key == "logging.console.level" and self._console_handler:
            self._console_handler.setLevel(self._level(value))
        elif key == "logging.file.level" and self._file_handler:
            self._file_handler.setLevel(self._level(value))

    def shutdown(self) -> None:
        """Close all handlers installed by this manager.

        Raises:
            ManagerShutdownError: If shutdown fails.
        """
        if not self._initialized:
            return

        try:
            for handler in self._handlers:
                if self._root_logger:
                    self._root_logger.removeHandler(handler)
                try:
                    handler.flush()
                    handler.close()
                except (OSError, ValueError):
                    pass
            self._handlers.clear()

            unregister = getattr(self._config_manager, "unregister_listener", None)
            if unregister is not None:
                unregister("logging", self._on_config_changed)

            atexit.unregister(self.shutdown)

            self._initialized = False
            self._healthy = False

        except Exception as e:
            raise ManagerShutdownError(
                f"Failed to shut down LoggingManager: {str(e)}",
                manager_name=self.name,
            ) from e

    def status(self) -> Dict[str, Any]:
        status = super().status()
        if self._initialized:
            status.update(
                {
                    "log_directory": str(self._log_directory) if self._log_directory else None,
                    "handlers": {
                        "console": self._console_handler is not None,
                        "file": self._file_handler is not None,
                    },
                    "structured_logging": self._enable_structlog,
                }
            )
        return status
