"""Plugin lifecycle management for hostext.

This package installs, updates and removes signed plugin distributions in a
deployed host installation and keeps enough records to undo a failed run.

Modules:
    version: Plugin and host version numbers
    signing: Trust keyrings, signatures and the publisher-side signer
    repository: Version catalogs and the client that fetches them
    manifest: Plugin descriptors shipped inside distributions
    modules: Optional capabilities plugins can enable in the host
    package: Distribution archives
    contents: Records of the files each installed plugin placed
    transaction: Rollback ledger for one install or uninstall run
    installer: The plugin installer
    cli: The ``hostext-plugin`` command line
"""

from __future__ import annotations

from hostext.plugin_system.version import PluginVersion
from hostext.plugin_system.signing import DistributionSigner, Signature, TrustStore, TrustedKey
from hostext.plugin_system.repository import CatalogClient, SupportLevel, VersionCatalog, best_version
from hostext.plugin_system.manifest import DescriptorIndex, PluginDescription
from hostext.plugin_system.modules import Module, ModuleContext, PluginModule
from hostext.plugin_system.package import PackageFormat, PluginDistribution
from hostext.plugin_system.contents import ContentManifest
from hostext.plugin_system.transaction import InstallTransaction
from hostext.plugin_system.installer import InstallerState, PluginInstaller

__all__ = [
    "PluginVersion",
    "DistributionSigner",
    "Signature",
    "TrustStore",
    "TrustedKey",
    "CatalogClient",
    "SupportLevel",
    "VersionCatalog",
    "best_version",
    "DescriptorIndex",
    "PluginDescription",
    "Module",
    "ModuleContext",
    "PluginModule",
    "PackageFormat",
    "PluginDistribution",
    "ContentManifest",
    "InstallTransaction",
    "InstallerState",
    "PluginInstaller",
]
