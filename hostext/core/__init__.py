"""Core package containing the configuration and logging managers."""

from hostext.core.base import HostextManager
from hostext.core.config_manager import ConfigManager, ConfigSchema
from hostext.core.logging_manager import LoggingManager
