from __future__ import annotations

from typing import Any, Dict, Optional


class HostextError(Exception):
    """Base exception for all hostext errors."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            **kwargs: Additional error information
        """
        self.message = message
        details = dict(kwargs.pop("details", None) or {})
        details.update({k: v for k, v in kwargs.items() if v is not None})
        self.details: Dict[str, Any] = details
        super().__init__(message)

    def __str__(self) -> str:
        """String representation."""
        return f"{self.message}"


class ManagerError(HostextError):
    """Base exception for manager-related errors."""

    def __init__(self, message: str, manager_name: Optional[str] = None, **kwargs: Any) -> None:
        """
        Initialize manager error.

        Args:
            message: Error message
            manager_name: Name of the affected manager
            **kwargs: Additional error information
        """
        super().__init__(message, manager_name=manager_name, **kwargs)
        self.manager_name = manager_name

    def __str__(self) -> str:
        """String representation."""
        if self.manager_name:
            return f"{self.message} (Manager: {self.manager_name})"
        return super().__str__()


class ManagerInitializationError(ManagerError):
    """Exception raised when a manager fails to initialize."""

    pass


class ManagerShutdownError(ManagerError):
    """Exception raised when a manager fails to shut down cleanly."""

    pass


class ConfigurationError(HostextError):
    """Exception raised for configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize a ConfigurationError.

        Args:
            message: A descriptive error message.
            config_key: The configuration key that caused the error.
            **kwargs: Additional keyword arguments stored in ``details``.
        """
        super().__init__(message, config_key=config_key, **kwargs)
        self.config_key = config_key


class MalformedVersionError(HostextError):
    """Exception raised when a version string cannot be parsed."""

    def __init__(self, message: str, version: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, version=version, **kwargs)
        self.version = version


class TrustStoreError(HostextError):
    """Exception raised for keyring decode, persistence or stream failures."""

    def __init__(
            self,
            message: str,
            plugin_id: Optional[str] = None,
            path: Optional[str] = None,
            **kwargs: Any
    ) -> None:
        """Initialize a TrustStoreError.

        Args:
            message: A descriptive error message.
            plugin_id: The plugin whose keyring was involved.
            path: The keyring or payload path involved.
            **kwargs: Additional keyword arguments stored in ``details``.
        """
        super().__init__(message, plugin_id=plugin_id, path=path, **kwargs)
        self.plugin_id = plugin_id
        self.path = path


class TrustStoreInitError(TrustStoreError):
    """Exception raised when a keyring cannot be created or loaded."""

    pass


class CatalogUnavailableError(HostextError):
    """Exception raised when no candidate URL yields a complete version catalog."""

    def __init__(self, message: str, plugin_id: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, plugin_id=plugin_id, **kwargs)
        self.plugin_id = plugin_id


class ModuleError(HostextError):
    """Exception raised when a module cannot be enabled or disabled."""

    def __init__(self, message: str, module_id: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, module_id=module_id, **kwargs)
        self.module_id = module_id


class PluginInstallError(HostextError):
    """Base exception for errors raised while installing or removing a plugin."""

    def __init__(
            self,
            message: str,
            plugin_id: Optional[str] = None,
            version: Optional[str] = None,
            path: Optional[str] = None,
            **kwargs: Any
    ) -> None:
        """Initialize a PluginInstallError.

        Args:
            message: A descriptive error message.
            plugin_id: The plugin being installed or removed.
            version: The plugin version involved, if known.
            path: The file or directory involved, if any.
            **kwargs: Additional keyword arguments stored in ``details``.
        """
        super().__init__(message, plugin_id=plugin_id, version=version, path=path, **kwargs)
        self.plugin_id = plugin_id
        self.version = version
        self.path = path

    def __str__(self) -> str:
        """String representation."""
        if self.plugin_id:
            return f"{self.message} (Plugin: {self.plugin_id})"
        return super().__str__()


class DistributionNotFoundError(PluginInstallError):
    """Exception raised when an archive or its detached signature is missing."""

    pass


class CorruptArchiveError(PluginInstallError):
    """Exception raised when a distribution cannot be unpacked or identified."""

    pass


class SignatureInvalidError(PluginInstallError):
    """Exception raised when a distribution signature cannot be verified."""

    pass


class DescriptorNotFoundError(PluginInstallError):
    """Exception raised when no plugin descriptor claims the expected id."""

    pass


class VersionMismatchError(PluginInstallError):
    """Exception raised when the host version is outside the plugin's window."""

    pass


class MissingRequiredModuleError(PluginInstallError):
    """Exception raised when a module the plugin requires is not enabled."""

    def __init__(self, message: str, module_id: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, module_id=module_id, **kwargs)
        self.module_id = module_id


class WouldOverwriteError(PluginInstallError):
    """Exception raised when a payload file would replace an existing file."""

    pass


class IOFailureError(PluginInstallError):
    """Exception raised when a filesystem or network operation fails."""

    pass


class SigningError(HostextError):
    """Exception raised when a signing key cannot be generated, loaded or used."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, path=path, **kwargs)
        self.path = path
