"""Plugin installation and management.

This module installs, updates and removes plugin distributions in a host
installation. An install runs through

    idle -> unpacked -> identified -> verified -> transacting -> committed

and ends in ``rolled_back`` instead when anything fails once files start
moving. Only one installer may work on a host at a time; nothing here
takes a lock.
"""

from __future__ import annotations

import enum
import logging
import os
import shlex
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

from hostext.plugin_system.contents import LIVE_TREE, ContentManifest, list_installed
from hostext.plugin_system.manifest import DescriptorIndex, PluginDescription
from hostext.plugin_system.modules import Module, ModuleContext, PluginModule, modules_of
from hostext.plugin_system.package import PluginDistribution
from hostext.plugin_system.repository import CatalogClient, VersionCatalog
from hostext.plugin_system.signing import SIGNATURE_SUFFIX, Signature, TrustStore
from hostext.plugin_system.transaction import InstallTransaction, TransactionState
from hostext.plugin_system.version import ZERO, PluginVersion
from hostext.utils.exceptions import (
    CatalogUnavailableError,
    DescriptorNotFoundError,
    DistributionNotFoundError,
    HostextError,
    IOFailureError,
    MissingRequiredModuleError,
    ModuleError,
    PluginInstallError,
    SignatureInvalidError,
    TrustStoreError,
    VersionMismatchError,
    WouldOverwriteError,
)
from hostext.utils.fileops import (
    copy_with_logging,
    delete_tree,
    detect_duplicates,
    rename_to_tree,
    schedule_delete_on_exit,
)

DEFAULT_ARCHIVE_SUFFIX = ".tar.gz"


class InstallerState(str, enum.Enum):
    IDLE = "idle"
    UNPACKED = "unpacked"
    IDENTIFIED = "identified"
    VERIFIED = "verified"
    TRANSACTING = "transacting"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class CommandRepackager:
    """Rebuilds the host's deployable artifact by running a command in its home.

    With no command configured the rebuild is skipped and logged.
    """

    def __init__(
            self,
            command: Optional[Union[str, Sequence[str]]],
            home: Union[str, Path],
            logger: Optional[logging.Logger] = None
    ) -> None:
        self.command = command
        self.home = Path(home)
        self._logger = logger or logging.getLogger("repackager")

    def __call__(self) -> None:
        """Run the rebuild command.

        Raises:
            IOFailureError: If the command cannot be started or fails
        """
        if not self.command:
            self._logger.info("No rebuild command configured, skipping repackaging")
            return

        args = shlex.split(self.command) if isinstance(self.command, str) else list(self.command)
        self._logger.info(f"Repackaging with: {' '.join(args)}", extra={"path": str(self.home)})
        try:
            subprocess.run(args, cwd=self.home, check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise IOFailureError(f"Repackaging failed: {e}", path=str(self.home)) from e


@dataclass
class AvailablePlugin:
    """A listed plugin and what the catalog offers for this host.

    Attributes:
        plugin_id: Plugin identifier
        installed_version: Installed version, if any
        best_version: Best install or update candidate, if any
        catalog: The plugin's catalog
    """

    plugin_id: str
    installed_version: Optional[PluginVersion]
    best_version: Optional[PluginVersion]
    catalog: VersionCatalog

    def describe(self) -> str:
        if self.installed_version is None:
            if self.best_version is None:
                return "No version available for this host"
            return f"Version {self.best_version} available for install"
        if self.best_version is None:
            return f"Version {self.installed_version} installed, no update available"
        return f"Version {self.installed_version} installed, update to {self.best_version} available"


def _reject_keys(description: str) -> bool:
    return False


class PluginInstaller:
    """Installs and removes plugins in one host installation.

    Attributes:
        home: Host installation root
        host_version: Version of the host application
        live_tree: Directory plugin payloads are copied into
    """

    def __init__(
            self,
            home: Union[str, Path],
            host_version: Union[str, PluginVersion],
            accept_key: Optional[Callable[[str], bool]] = None,
            truststore: Optional[Union[str, Path]] = None,
            update_urls: Optional[Sequence[str]] = None,
            listing_urls: Optional[Sequence[str]] = None,
            repackager: Optional[Callable[[], None]] = None,
            host_modules: Optional[Dict[str, Module]] = None,
            catalog_client: Optional[CatalogClient] = None,
            network_timeout: float = 30.0,
            network_retries: int = 3,
            logger: Optional[logging.Logger] = None
    ) -> None:
        """Initialize the plugin installer.

        Args:
            home: Host installation root
            host_version: Version of the host application
            accept_key: Decides whether a key offered by a distribution is
                trusted; keys are refused when omitted
            truststore: Keyring file to use instead of the per-plugin default
            update_urls: Catalog URLs overriding the ones plugins declare
            listing_urls: URLs of the listing of all published plugins
            repackager: Called after every successful install or uninstall
            host_modules: Modules the host itself provides
            catalog_client: Client for catalogs and downloads; one is created
                and closed with the installer if omitted
            network_timeout: Request timeout for an owned client
            network_retries: Attempts per request for an owned client
            logger: Logger to use
        """
        self.home = Path(home)
        self.host_version = (
            host_version if isinstance(host_version, PluginVersion) else PluginVersion.parse(str(host_version))
        )
        self.live_tree = self.home / LIVE_TREE
        self._logger = logger or logging.getLogger("plugin_installer")
        self._accept_key = accept_key or _reject_keys
        self._truststore = Path(truststore) if truststore else None
        self._update_urls = list(update_urls) if update_urls else []
        self._listing_urls = list(listing_urls) if listing_urls else []
        self._repackager = repackager or CommandRepackager(None, self.home, self._logger)
        self._host_modules: Dict[str, Module] = dict(host_modules or {})
        self._owns_client = catalog_client is None
        self._catalog_client = catalog_client or CatalogClient(
            timeout=network_timeout, retries=network_retries, logger=self._logger
        )

        self._state = InstallerState.IDLE
        self._work_root: Optional[Path] = None
        self._distributions: List[PluginDistribution] = []
        self._candidate_indexes: List[DescriptorIndex] = []
        self._installed_index: Optional[DescriptorIndex] = None
        self._context = ModuleContext(home=self.home, logger=self._logger)

    @property
    def state(self) -> InstallerState:
        return self._state

    @property
    def module_context(self) -> ModuleContext:
        return self._context

    @property
    def installed_index(self) -> DescriptorIndex:
        if self._installed_index is None:
            self._installed_index = DescriptorIndex(self.live_tree, logger=self._logger)
        return self._installed_index

    def _scratch_dir(self, prefix: str) -> Path:
        if self._work_root is None or not self._work_root.exists():
            self._work_root = Path(tempfile.mkdtemp(prefix="hostext-"))
        return Path(tempfile.mkdtemp(prefix=prefix, dir=self._work_root))

    def _log_failure(self, error: HostextError) -> None:
        self._logger.error(str(error), extra={k: str(v) for k, v in error.details.items() if k != "urls"})

    # Install

    def install_plugin(
            self,
            base: Union[str, Path],
            file_name: str,
            plugin_id: Optional[str] = None,
            check_version: bool = True,
            rebuild: bool = True
    ) -> PluginDescription:
        """Install a distribution found in a local directory.

        Args:
            base: Directory holding the archive and its ``.asc`` signature
            file_name: Archive file name
            plugin_id: Expected plugin id; wins over the id the archive declares
            check_version: Require the host to be inside the version's window
            rebuild: Repackage the host afterwards

        Returns:
            Descriptor of the installed plugin

        Raises:
            PluginInstallError: Or a subclass, when the install fails
            TrustStoreError: If the keyring cannot be used
            CatalogUnavailableError: If the version check finds no catalog
            ModuleError: If a module cannot be enabled
        """
        self._state = InstallerState.IDLE
        try:
            archive = Path(base) / file_name
            signature_file = archive.with_name(archive.name + SIGNATURE_SUFFIX)
            if not archive.is_file():
                raise DistributionNotFoundError(f"Distribution {archive} not found", plugin_id=plugin_id, path=str(archive))
            if not signature_file.is_file():
                raise DistributionNotFoundError(
                    f"Signature {signature_file} not found", plugin_id=plugin_id, path=str(signature_file)
                )
            if len(file_name) <= 7:
                self._logger.warning(f"Improbably small file name {file_name}", extra={"path": str(archive)})

            distribution = PluginDistribution.unpack(archive, self._scratch_dir("unpack-"), logger=self._logger)
            self._distributions.append(distribution)
            self._state = InstallerState.UNPACKED

            plugin_id = self._identify(distribution, plugin_id)
            self._state = InstallerState.IDENTIFIED

            self._check_signature(plugin_id, archive, signature_file, distribution)
            self._state = InstallerState.VERIFIED

            description = self._find_description(plugin_id, distribution)
            if check_version:
                self._check_version(description)

            self._install_files(description, distribution)
        except HostextError as e:
            self._log_failure(e)
            raise

        self._logger.info(
            f"Installed plugin {description.plugin_id} version {description.version}",
            extra={"plugin_id": description.plugin_id, "version": description.version},
        )
        if rebuild:
            self._repackager()
        return description

    def _identify(self, distribution: PluginDistribution, plugin_id: Optional[str]) -> str:
        declared = distribution.read_plugin_id()
        if plugin_id and plugin_id != declared:
            self._logger.error(
                f"Distribution declares plugin {declared} but {plugin_id} was requested, using {plugin_id}",
                extra={"plugin_id": plugin_id},
            )
            return plugin_id
        return declared

    def _trust_store(self, plugin_id: str) -> TrustStore:
        store = TrustStore(plugin_id, home=self.home, explicit_store=self._truststore, logger=self._logger)
        store.initialize()
        return store

    def _check_signature(
            self,
            plugin_id: str,
            archive: Path,
            signature_file: Path,
            distribution: PluginDistribution
    ) -> None:
        store = self._trust_store(plugin_id)
        try:
            with open(signature_file, "rb") as f:
                signature = TrustStore.signature_of(f)
        except (OSError, TrustStoreError) as e:
            raise SignatureInvalidError(
                f"Could not read signature {signature_file.name}: {e}", plugin_id=plugin_id, path=str(signature_file)
            ) from e

        if not store.contains(signature):
            self._import_key(store, signature, distribution)
        if not store.contains(signature):
            raise SignatureInvalidError(
                f"No trusted key {signature} for {archive.name}", plugin_id=plugin_id, path=str(archive)
            )

        with open(archive, "rb") as f:
            verified = store.check_signature(f, signature)
        if not verified:
            raise SignatureInvalidError(
                f"Signature check failed for {archive.name}", plugin_id=plugin_id, path=str(archive)
            )
        self._logger.debug(f"Signature {signature} verified for {archive.name}", extra={"plugin_id": plugin_id})

    def _import_key(self, store: TrustStore, signature: Signature, distribution: PluginDistribution) -> None:
        keys_file = distribution.keys_file
        if not keys_file.is_file():
            self._logger.warning(
                f"Key {signature} is not trusted and the distribution carries no keys",
                extra={"plugin_id": store.plugin_id},
            )
            return
        self._logger.info(
            f"Key {signature} is not trusted, offering key from the distribution",
            extra={"plugin_id": store.plugin_id},
        )
        with open(keys_file, "rb") as f:
            store.import_key_from_stream(signature, f, self._accept_key)

    def _find_description(self, plugin_id: str, distribution: PluginDistribution) -> PluginDescription:
        index = DescriptorIndex(distribution.webapp_dir, logger=self._logger)
        self._candidate_indexes.append(index)
        description = index.get(plugin_id)
        if description is None:
            raise DescriptorNotFoundError(
                f"No plugin descriptor for {plugin_id} in {distribution.archive.name}",
                plugin_id=plugin_id,
                path=str(distribution.archive),
            )
        return description

    def _urls_for(self, description: Optional[PluginDescription]) -> List[str]:
        if self._update_urls:
            return list(self._update_urls)
        if description is not None and description.update_urls:
            return list(description.update_urls)
        return list(self._listing_urls)

    def fetch_catalog(self, plugin_id: str, description: Optional[PluginDescription] = None) -> VersionCatalog:
        """Catalog for a plugin from the configured or declared update URLs.

        Raises:
            CatalogUnavailableError: If no URL yields a complete catalog
        """
        description = description or self.get_installed_plugin(plugin_id)
        urls = self._urls_for(description)
        if not urls:
            raise CatalogUnavailableError(f"No update URLs known for {plugin_id}", plugin_id=plugin_id)
        return self._catalog_client.fetch(plugin_id, urls)

    def _check_version(self, description: PluginDescription) -> None:
        catalog = self.fetch_catalog(description.plugin_id, description)
        version = description.plugin_version
        if version not in catalog:
            raise VersionMismatchError(
                f"Version {version} is not listed in the catalog",
                plugin_id=description.plugin_id,
                version=str(version),
            )
        if not catalog.is_supported_with(version, self.host_version):
            info = catalog.get(version)
            raise VersionMismatchError(
                f"Version {version} supports host versions {info.min_supported} up to "
                f"(not including) {info.max_supported}, this host is {self.host_version}",
                plugin_id=description.plugin_id,
                version=str(version),
            )

    def _module_registry(self, exclude_plugin: Optional[str] = None) -> Dict[str, Module]:
        registry: Dict[str, Module] = dict(self._host_modules)
        for description in self.installed_index:
            if description.plugin_id == exclude_plugin:
                continue
            registry.update(modules_of(description, self.live_tree))
        return registry

    def _check_required_modules(self, description: PluginDescription, distribution: PluginDistribution) -> None:
        registry = self._module_registry(exclude_plugin=description.plugin_id)
        registry.update(modules_of(description, distribution.webapp_dir))
        for module_id in description.required_modules:
            module = registry.get(module_id)
            if module is None or not module.is_enabled(self._context):
                raise MissingRequiredModuleError(
                    f"Required module {module_id} is not enabled",
                    plugin_id=description.plugin_id,
                    version=description.version,
                    module_id=module_id,
                )

    def _install_files(self, description: PluginDescription, distribution: PluginDistribution) -> None:
        plugin_id = description.plugin_id
        contents = ContentManifest(self.home, plugin_id, logger=self._logger)
        rollback_dir = self._scratch_dir("rollback-")
        old_description = self.installed_index.get(plugin_id)

        self._state = InstallerState.TRANSACTING
        transaction = InstallTransaction(plugin_id, logger=self._logger)
        try:
            with transaction:
                previously_enabled: Set[str] = set()
                if old_description is not None:
                    old_modules = modules_of(old_description, self.live_tree)
                    previously_enabled = {
                        module_id for module_id, module in old_modules.items()
                        if module.is_enabled(self._context)
                    }

                old_version, old_paths = contents.load()
                if old_paths:
                    self._logger.info(
                        f"Moving aside {len(old_paths)} file(s) of {plugin_id} {old_version}",
                        extra={"plugin_id": plugin_id, "version": old_version},
                    )
                    renames = []
                    try:
                        rename_to_tree(self.home, rollback_dir, [self.home / p for p in old_paths], renames)
                    except OSError as e:
                        raise IOFailureError(
                            f"Could not move aside files of {plugin_id}: {e}", plugin_id=plugin_id
                        ) from e
                    finally:
                        for original, moved_to in renames:
                            transaction.record_rename(original, moved_to)

                self._check_required_modules(description, distribution)

                clashes = detect_duplicates(distribution.webapp_dir, self.live_tree)
                if clashes:
                    raise WouldOverwriteError(
                        f"Installing would overwrite {len(clashes)} existing file(s), first {clashes[0]}",
                        plugin_id=plugin_id,
                        version=description.version,
                        path=str(clashes[0]),
                    )

                copied: List[Path] = []
                try:
                    copy_with_logging(distribution.webapp_dir, self.live_tree, copied)
                except OSError as e:
                    raise IOFailureError(
                        f"Could not copy payload of {plugin_id}: {e}", plugin_id=plugin_id, version=description.version
                    ) from e
                finally:
                    transaction.record_copies(copied)

                new_modules = modules_of(description, self.live_tree)
                to_enable = list(description.enable_on_install)
                to_enable.extend(
                    module_id for module_id in sorted(previously_enabled)
                    if module_id in new_modules and module_id not in to_enable
                )
                for module_id in to_enable:
                    module = new_modules[module_id]
                    if not module.is_enabled(self._context):
                        module.enable(self._context)
                        transaction.record_enable(module, self._context)

                contents.save(description.version, copied)
                transaction.commit()
        finally:
            self.installed_index.refresh()
            if transaction.state == TransactionState.COMMITTED:
                self._state = InstallerState.COMMITTED
            else:
                self._state = InstallerState.ROLLED_BACK

    def install_plugin_from_url(
            self,
            base_url: str,
            file_name: str,
            plugin_id: Optional[str] = None,
            check_version: bool = True,
            rebuild: bool = True
    ) -> PluginDescription:
        """Download a distribution and its signature, then install it.

        Raises:
            IOFailureError: If either file cannot be downloaded
        """
        download_dir = self._scratch_dir("download-")
        try:
            self._catalog_client.download(base_url, file_name, download_dir)
            self._catalog_client.download(base_url, file_name + SIGNATURE_SUFFIX, download_dir)
        except IOFailureError as e:
            self._log_failure(e)
            raise
        return self.install_plugin(download_dir, file_name, plugin_id, check_version, rebuild)

    def install_by_id(self, plugin_id: str, rebuild: bool = True) -> PluginDescription:
        """Install the best published version of a plugin that is not installed.

        Raises:
            PluginInstallError: If the plugin is already installed
            CatalogUnavailableError: If the listing has no entry for it
            VersionMismatchError: If no version suits this host
        """
        installed = self.get_installed_version(plugin_id)
        if installed is not None:
            raise PluginInstallError(
                f"Plugin {plugin_id} is already installed at version {installed}, use update",
                plugin_id=plugin_id,
                version=str(installed),
            )

        catalog = self._listing_catalog(plugin_id)
        best = catalog.best_version(ZERO, self.host_version)
        if best is None:
            raise VersionMismatchError(
                f"No version of {plugin_id} is available for host {self.host_version}", plugin_id=plugin_id
            )
        download = catalog.download_info(best)
        self._logger.info(f"Installing {plugin_id} version {best}", extra={"plugin_id": plugin_id, "version": str(best)})
        return self.install_plugin_from_url(
            download.url, download.base_name + DEFAULT_ARCHIVE_SUFFIX, plugin_id=plugin_id, rebuild=rebuild
        )

    def _listing_catalog(self, plugin_id: str) -> VersionCatalog:
        urls = self._update_urls or self._listing_urls
        if not urls:
            raise CatalogUnavailableError("No plugin listing URLs configured", plugin_id=plugin_id)
        catalogs = self._catalog_client.fetch_listing(urls)
        catalog = catalogs.get(plugin_id)
        if catalog is None:
            raise CatalogUnavailableError(f"Plugin {plugin_id} is not listed", plugin_id=plugin_id)
        return catalog

    def update_plugin(
            self,
            plugin_id: str,
            version: Optional[Union[str, PluginVersion]] = None,
            rebuild: bool = True
    ) -> Optional[PluginDescription]:
        """Update an installed plugin.

        Args:
            plugin_id: Plugin to update
            version: Exact version to install; the best newer version if omitted
            rebuild: Repackage the host afterwards

        Returns:
            Descriptor of the new version, or None when no update is available

        Raises:
            PluginInstallError: If the plugin is not installed
            VersionMismatchError: If an explicit version is not in the catalog
            DistributionNotFoundError: If the version has no download
        """
        installed = self.get_installed_version(plugin_id)
        if installed is None:
            raise PluginInstallError(f"Plugin {plugin_id} is not installed", plugin_id=plugin_id)

        catalog = self.fetch_catalog(plugin_id)
        if version is None:
            target = catalog.best_version(installed, self.host_version)
            if target is None:
                self._logger.info(
                    f"No update available for {plugin_id} {installed}",
                    extra={"plugin_id": plugin_id, "version": str(installed)},
                )
                return None
        else:
            target = version if isinstance(version, PluginVersion) else PluginVersion.parse(version)
            if target not in catalog:
                raise VersionMismatchError(
                    f"Version {target} of {plugin_id} is not in the catalog", plugin_id=plugin_id, version=str(target)
                )
            if target == installed:
                self._logger.warning(
                    f"Version {target} of {plugin_id} is already installed, reinstalling",
                    extra={"plugin_id": plugin_id},
                )

        download = catalog.download_info(target)
        if download is None:
            raise DistributionNotFoundError(
                f"No download available for {plugin_id} {target}", plugin_id=plugin_id, version=str(target)
            )
        self._logger.info(
            f"Updating {plugin_id} from {installed} to {target}", extra={"plugin_id": plugin_id, "version": str(target)}
        )
        return self.install_plugin_from_url(
            download.url, download.base_name + DEFAULT_ARCHIVE_SUFFIX, plugin_id=plugin_id, rebuild=rebuild
        )

    # Uninstall

    def uninstall(self, plugin_id: str, rebuild: bool = True) -> bool:
        """Remove an installed plugin.

        Returns:
            False if the plugin had no content manifest and nothing was done

        Raises:
            ModuleError: If a module cannot be disabled
            IOFailureError: If the manifest cannot be read or removed
        """
        contents = ContentManifest(self.home, plugin_id, logger=self._logger)
        if not contents.exists():
            self._logger.info(f"Plugin {plugin_id} is not installed, nothing to remove", extra={"plugin_id": plugin_id})
            return False

        try:
            version, paths = contents.load()
            description = self.installed_index.get(plugin_id)
            with InstallTransaction(plugin_id, logger=self._logger) as transaction:
                if description is not None:
                    modules = modules_of(description, self.live_tree)
                    for module_id in description.disable_on_removal:
                        module = modules[module_id]
                        if module.is_enabled(self._context):
                            self._disable_recorded(module, transaction)

                for relative in paths:
                    self._delete_best_effort(self.home / relative, plugin_id)
                contents.delete()
                transaction.commit()
        except HostextError as e:
            self._log_failure(e)
            raise
        finally:
            self.installed_index.refresh()

        self._prune_empty_dirs()
        self._logger.info(
            f"Removed plugin {plugin_id} version {version}", extra={"plugin_id": plugin_id, "version": version}
        )
        if rebuild:
            self._repackager()
        return True

    def _disable_recorded(self, module: PluginModule, transaction: InstallTransaction) -> None:
        """Disable a module so that rolling back restores its resources as they were.

        Earlier ``.save`` copies, which the disable would replace, are moved
        into a rollback area first.
        """
        stashed: List[Tuple[Path, Path]] = []
        try:
            rename_to_tree(self.home, self._scratch_dir("rollback-"), module.saved_copies(self._context), stashed)
        except OSError as e:
            raise IOFailureError(
                f"Could not set aside saved files of module {module.id}: {e}", plugin_id=module.plugin_id
            ) from e
        finally:
            for original, moved_to in stashed:
                transaction.record_rename(original, moved_to)

        moved: List[Tuple[Path, Path]] = []
        try:
            module.disable(self._context, False, moved)
        finally:
            transaction.record_disable(module, self._context, moved)

    def _delete_best_effort(self, path: Path, plugin_id: str) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            self._logger.debug(f"{path} already gone", extra={"plugin_id": plugin_id})
        except OSError as e:
            self._logger.warning(
                f"Could not delete {path}, deferring: {e}", extra={"plugin_id": plugin_id, "path": str(path)}
            )
            schedule_delete_on_exit(path)

    def _prune_empty_dirs(self) -> None:
        if not self.live_tree.is_dir():
            return
        for root, dirs, files in os.walk(self.live_tree, topdown=False):
            path = Path(root)
            if path == self.live_tree or files:
                continue
            try:
                path.rmdir()
            except OSError:
                pass

    # Queries

    def get_installed_plugins(self) -> List[PluginDescription]:
        return list(self.installed_index)

    def get_installed_plugin(self, plugin_id: str) -> Optional[PluginDescription]:
        return self.installed_index.get(plugin_id)

    def get_installed_plugin_ids(self) -> List[str]:
        return sorted(set(self.installed_index.plugin_ids()) | set(list_installed(self.home)))

    def get_version_from_contents(self, plugin_id: str) -> Optional[PluginVersion]:
        version = ContentManifest(self.home, plugin_id, logger=self._logger).version()
        return PluginVersion.parse(version) if version else None

    def get_installed_version(self, plugin_id: str) -> Optional[PluginVersion]:
        """Installed version from the content manifest, else the descriptor."""
        version = self.get_version_from_contents(plugin_id)
        if version is not None:
            return version
        description = self.get_installed_plugin(plugin_id)
        return description.plugin_version if description else None

    def get_installed_contents(self, plugin_id: str) -> List[Path]:
        return ContentManifest(self.home, plugin_id, logger=self._logger).absolute_paths()

    def get_license(self, plugin_id: str) -> Optional[str]:
        """License text of an installed plugin, or None if it declares none.

        Raises:
            DescriptorNotFoundError: If the plugin is not installed
            IOFailureError: If the declared license file cannot be read
        """
        description = self.get_installed_plugin(plugin_id)
        if description is None:
            raise DescriptorNotFoundError(f"Plugin {plugin_id} is not installed", plugin_id=plugin_id)
        if not description.license_file:
            return None
        path = self.live_tree / description.license_file
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise IOFailureError(f"Could not read license {path}: {e}", plugin_id=plugin_id, path=str(path)) from e

    def available_plugins(self) -> List[AvailablePlugin]:
        """Every listed plugin with its install or update candidate for this host.

        Raises:
            CatalogUnavailableError: If no listing can be loaded
        """
        urls = self._update_urls or self._listing_urls
        if not urls:
            raise CatalogUnavailableError("No plugin listing URLs configured")
        results = []
        for plugin_id, catalog in sorted(self._catalog_client.fetch_listing(urls).items()):
            installed = self.get_installed_version(plugin_id)
            best = catalog.best_version(installed or ZERO, self.host_version)
            results.append(AvailablePlugin(plugin_id, installed, best, catalog))
        return results

    # Modules

    def list_modules(self) -> Dict[str, Module]:
        return self._module_registry()

    def _module(self, module_id: str) -> Module:
        module = self._module_registry().get(module_id)
        if module is None:
            raise ModuleError(f"Unknown module {module_id}", module_id=module_id)
        return module

    def enable_module(self, module_id: str) -> None:
        module = self._module(module_id)
        if module.is_enabled(self._context):
            self._logger.info(f"Module {module_id} is already enabled", extra={"module_id": module_id})
            return
        module.enable(self._context)

    def disable_module(self, module_id: str, clean: bool = False) -> None:
        module = self._module(module_id)
        if not module.is_enabled(self._context):
            self._logger.info(f"Module {module_id} is already disabled", extra={"module_id": module_id})
            return
        module.disable(self._context, clean)

    # Lifecycle

    def close(self) -> None:
        """Release descriptor indexes and delete scratch directories."""
        for index in self._candidate_indexes:
            index.close()
        self._candidate_indexes.clear()
        if self._installed_index is not None:
            self._installed_index.close()
        for distribution in self._distributions:
            distribution.cleanup()
        self._distributions.clear()
        if self._work_root is not None:
            delete_tree(self._work_root)
            self._work_root = None
        if self._owns_client:
            self._catalog_client.close()

    def __enter__(self) -> PluginInstaller:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
