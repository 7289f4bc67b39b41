"""Utility functions and classes for hostext."""

from hostext.utils.exceptions import (
    CatalogUnavailableError,
    ConfigurationError,
    CorruptArchiveError,
    DescriptorNotFoundError,
    DistributionNotFoundError,
    HostextError,
    IOFailureError,
    MalformedVersionError,
    ManagerError,
    ManagerInitializationError,
    ManagerShutdownError,
    MissingRequiredModuleError,
    ModuleError,
    PluginInstallError,
    SignatureInvalidError,
    SigningError,
    TrustStoreError,
    TrustStoreInitError,
    VersionMismatchError,
    WouldOverwriteError,
)
