"""Plugin version catalogs and the client that fetches them.

A catalog is published as a flat property file. For a plugin ``acme`` it
looks like::

    acme.versions = 1.0.0 1.1.0
    acme.maxIdPVersion.1.0.0 = 5.0.0
    acme.minIdPVersion.1.0.0 = 4.1.0
    acme.supportLevel.1.0.0 = OutOfDate
    acme.downloadURL.%{version} = https://example.org/acme/%{version}
    acme.baseName.%{version} = acme-dist-%{version}

Per-version keys win over ``%{version}`` templated keys, and every
``%{version}`` in a templated value is replaced with the version.
"""

from __future__ import annotations

import enum
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from hostext.plugin_system.version import PluginVersion
from hostext.utils import properties
from hostext.utils.exceptions import CatalogUnavailableError, IOFailureError, MalformedVersionError

VERSIONS_SUFFIX = ".versions"
MAX_VERSION_INTERFIX = ".maxIdPVersion."
MIN_VERSION_INTERFIX = ".minIdPVersion."
SUPPORT_LEVEL_INTERFIX = ".supportLevel."
DOWNLOAD_URL_INTERFIX = ".downloadURL."
BASE_NAME_INTERFIX = ".baseName."

# Older catalogs spell the window keys this way
LEGACY_INTERFIXES = {
    MAX_VERSION_INTERFIX: ".idpVersionMax.",
    MIN_VERSION_INTERFIX: ".idpVersionMin.",
}

VERSION_PATTERN = "%{version}"
TEMPLATE_SUFFIXES = (VERSION_PATTERN, "VERSION")

SUPPORTED_SCHEMES = ("file", "http", "https")


class SupportLevel(str, enum.Enum):
    """Publisher's statement about a released plugin version."""

    CURRENT = "Current"
    OUT_OF_DATE = "OutOfDate"
    UNSUPPORTED = "Unsupported"
    SECADV = "Secadv"
    WITHDRAWN = "Withdrawn"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional[SupportLevel]:
        if value is None:
            return None
        for level in cls:
            if level.value.lower() == value.strip().lower():
                return level
        return None


@dataclass(frozen=True)
class VersionInfo:
    """Compatibility window and support level of one published version.

    A host version ``h`` is supported iff ``min_supported <= h < max_supported``.
    """

    max_supported: PluginVersion
    min_supported: PluginVersion
    support_level: SupportLevel = SupportLevel.UNKNOWN

    def is_supported(self, host_version: PluginVersion) -> bool:
        return self.min_supported <= host_version < self.max_supported


@dataclass(frozen=True)
class DownloadInfo:
    """Where a published version can be downloaded from.

    Attributes:
        url: Directory URL, always ending in ``/``
        base_name: Archive name without suffix
    """

    url: str
    base_name: str

    def archive_url(self, suffix: str = ".tar.gz") -> str:
        return f"{self.url}{self.base_name}{suffix}"


def _lookup(
        props: Dict[str, str],
        plugin_id: str,
        interfix: str,
        version: str
) -> Optional[str]:
    interfixes = [interfix]
    if interfix in LEGACY_INTERFIXES:
        interfixes.append(LEGACY_INTERFIXES[interfix])

    for candidate in interfixes:
        value = props.get(f"{plugin_id}{candidate}{version}")
        if value is not None:
            return value.strip()

    for candidate in interfixes:
        for suffix in TEMPLATE_SUFFIXES:
            value = props.get(f"{plugin_id}{candidate}{suffix}")
            if value is not None:
                return value.strip().replace(VERSION_PATTERN, version)
    return None


class VersionCatalog:
    """The published versions of one plugin, as read from a single manifest.

    Catalogs are built by :meth:`from_properties` and are not modified
    afterwards.
    """

    def __init__(
            self,
            plugin_id: str,
            versions: Dict[PluginVersion, VersionInfo],
            downloads: Dict[PluginVersion, DownloadInfo],
            complete: bool = True,
            source: Optional[str] = None,
            logger: Optional[logging.Logger] = None
    ) -> None:
        self.plugin_id = plugin_id
        self._versions = dict(versions)
        self._downloads = dict(downloads)
        self.complete = complete
        self.source = source
        self._logger = logger or logging.getLogger("version_catalog")

    @classmethod
    def from_properties(
            cls,
            plugin_id: str,
            props: Dict[str, str],
            source: Optional[str] = None,
            logger: Optional[logging.Logger] = None
    ) -> VersionCatalog:
        """Build the catalog for ``plugin_id`` from a parsed manifest.

        Missing or malformed data never raises: the affected version is left
        out and the catalog is flagged incomplete when a declared version
        lacks its required window keys.

        Args:
            plugin_id: Plugin to read
            props: Parsed property manifest
            source: Where the manifest came from, for logging
            logger: Logger to use

        Returns:
            The catalog
        """
        logger = logger or logging.getLogger("version_catalog")
        versions: Dict[PluginVersion, VersionInfo] = {}
        downloads: Dict[PluginVersion, DownloadInfo] = {}
        log_extra = {"plugin_id": plugin_id, "source": source}

        declared = props.get(plugin_id + VERSIONS_SUFFIX)
        if declared is None:
            logger.debug(f"No versions declared for {plugin_id} in {source}", extra=log_extra)
            return cls(plugin_id, versions, downloads, complete=False, source=source, logger=logger)

        complete = True
        for text in declared.split():
            try:
                version = PluginVersion.parse(text)
            except MalformedVersionError:
                logger.warning(f"Ignoring malformed version '{text}' of {plugin_id}", extra=log_extra)
                complete = False
                continue

            if version in versions:
                logger.warning(f"Duplicate version {version} of {plugin_id}", extra=log_extra)
                continue

            max_text = _lookup(props, plugin_id, MAX_VERSION_INTERFIX, text)
            min_text = _lookup(props, plugin_id, MIN_VERSION_INTERFIX, text)
            if max_text is None or min_text is None:
                logger.warning(
                    f"Version {version} of {plugin_id} has no supported host range",
                    extra=log_extra,
                )
                complete = False
                continue

            try:
                max_supported = PluginVersion.parse(max_text)
                min_supported = PluginVersion.parse(min_text)
            except MalformedVersionError as e:
                logger.warning(
                    f"Version {version} of {plugin_id} has a malformed host range: {e}",
                    extra=log_extra,
                )
                complete = False
                continue

            level_text = _lookup(props, plugin_id, SUPPORT_LEVEL_INTERFIX, text)
            support_level = SupportLevel.parse(level_text)
            if support_level is None:
                logger.info(
                    f"Version {version} of {plugin_id} has missing or invalid support level "
                    f"'{level_text}', treating as {SupportLevel.UNKNOWN.value}",
                    extra=log_extra,
                )
                support_level = SupportLevel.UNKNOWN

            versions[version] = VersionInfo(max_supported, min_supported, support_level)

            url = _lookup(props, plugin_id, DOWNLOAD_URL_INTERFIX, text)
            base_name = _lookup(props, plugin_id, BASE_NAME_INTERFIX, text)
            if url and base_name:
                if not url.endswith("/"):
                    url = url + "/"
                downloads[version] = DownloadInfo(url=url, base_name=base_name)
            else:
                logger.debug(f"No download information present for {plugin_id} {version}", extra=log_extra)

        return cls(plugin_id, versions, downloads, complete=complete, source=source, logger=logger)

    @property
    def versions(self) -> List[PluginVersion]:
        return sorted(self._versions)

    def __contains__(self, version: object) -> bool:
        return version in self._versions

    def __len__(self) -> int:
        return len(self._versions)

    def get(self, version: PluginVersion) -> Optional[VersionInfo]:
        return self._versions.get(version)

    def download_info(self, version: PluginVersion) -> Optional[DownloadInfo]:
        return self._downloads.get(version)

    def is_supported_with(self, version: PluginVersion, host_version: PluginVersion) -> bool:
        """Whether ``version`` of the plugin runs on ``host_version``."""
        info = self._versions.get(version)
        if info is None:
            self._logger.warning(
                f"Version {version} of {self.plugin_id} is not in the catalog",
                extra={"plugin_id": self.plugin_id, "version": str(version)},
            )
            return False
        return info.is_supported(host_version)

    def best_version(
            self,
            floor: PluginVersion,
            host_version: PluginVersion
    ) -> Optional[PluginVersion]:
        """Highest installable version newer than ``floor``.

        Candidates are scanned from the newest down; the first that is
        ``Current``, supports ``host_version`` and has download information
        wins.

        Returns:
            The version, or None when nothing newer qualifies
        """
        for version in sorted(self._versions, reverse=True):
            if version <= floor:
                break
            info = self._versions[version]
            extra = {"plugin_id": self.plugin_id, "version": str(version)}
            if info.support_level != SupportLevel.CURRENT:
                self._logger.debug(f"Skipping {version}: support level {info.support_level.value}", extra=extra)
                continue
            if not info.is_supported(host_version):
                self._logger.debug(f"Skipping {version}: does not support host {host_version}", extra=extra)
                continue
            if version not in self._downloads:
                self._logger.debug(f"Skipping {version}: no download available", extra=extra)
                continue
            return version
        return None


def best_version(
        floor: PluginVersion,
        host_version: PluginVersion,
        catalog: VersionCatalog
) -> Optional[PluginVersion]:
    return catalog.best_version(floor, host_version)


class CatalogClient:
    """Reads catalogs and distributions from ``file:`` and ``http(s):`` URLs.

    Transient transport failures are retried with exponential backoff;
    HTTP error statuses are not.
    """

    def __init__(
            self,
            client: Optional[httpx.Client] = None,
            timeout: float = 30.0,
            retries: int = 3,
            backoff: float = 1.0,
            logger: Optional[logging.Logger] = None
    ) -> None:
        """Initialize the client.

        Args:
            client: HTTP client to use; one is created (and owned) if omitted
            timeout: Request timeout in seconds for an owned client
            retries: Attempts per request for transport failures
            backoff: Multiplier for the exponential wait between attempts
            logger: Logger to use
        """
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._retries = max(1, retries)
        self._backoff = backoff
        self._logger = logger or logging.getLogger("catalog_client")

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> CatalogClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception_type(httpx.TransportError),
            stop=stop_after_attempt(self._retries),
            wait=wait_exponential(multiplier=self._backoff, min=0, max=10),
            reraise=True,
        )

    @staticmethod
    def _scheme(url: str) -> str:
        return urlparse(url).scheme.lower()

    @staticmethod
    def _file_path(url: str) -> Path:
        return Path(url2pathname(urlparse(url).path))

    def read_url(self, url: str) -> bytes:
        """Fetch the body behind a URL.

        Raises:
            ValueError: If the scheme is not supported
            OSError: If a ``file:`` URL cannot be read
            httpx.HTTPError: If an HTTP request ultimately fails
        """
        scheme = self._scheme(url)
        if scheme == "file":
            return self._file_path(url).read_bytes()
        if scheme not in ("http", "https"):
            raise ValueError(f"Unsupported URL scheme '{scheme}' in {url}")

        for attempt in self._retrying():
            with attempt:
                response = self._client.get(url)
                response.raise_for_status()
        return response.content

    def _read_properties(self, url: str) -> Optional[Dict[str, str]]:
        if self._scheme(url) not in SUPPORTED_SCHEMES:
            self._logger.warning(f"Only file and http(s) URLs are supported, skipping {url}", extra={"url": url})
            return None
        try:
            return properties.loads(self.read_url(url).decode("utf-8"))
        except (OSError, httpx.HTTPError, UnicodeDecodeError) as e:
            self._logger.warning(f"Could not load {url}: {e}", extra={"url": url})
            return None

    def load_properties(self, urls: Iterable[str]) -> Optional[Tuple[str, Dict[str, str]]]:
        """First readable property file among ``urls``.

        Returns:
            ``(url, properties)`` or None if none could be read
        """
        for url in urls:
            props = self._read_properties(url)
            if props is not None:
                return url, props
        return None

    def fetch(self, plugin_id: str, urls: Sequence[str]) -> VersionCatalog:
        """Fetch the catalog of one plugin.

        URLs are tried in order; the first whose manifest describes every
        declared version completely wins.

        Raises:
            CatalogUnavailableError: If no URL yields a complete catalog
        """
        for url in urls:
            props = self._read_properties(url)
            if props is None:
                continue
            catalog = VersionCatalog.from_properties(plugin_id, props, source=url)
            if catalog.complete:
                self._logger.debug(
                    f"Using catalog for {plugin_id} from {url}",
                    extra={"plugin_id": plugin_id, "url": url},
                )
                return catalog
            self._logger.warning(
                f"Catalog for {plugin_id} at {url} is incomplete",
                extra={"plugin_id": plugin_id, "url": url},
            )

        raise CatalogUnavailableError(
            f"No available servers found for {plugin_id}",
            plugin_id=plugin_id,
            urls=list(urls),
        )

    def fetch_listing(self, urls: Sequence[str]) -> Dict[str, VersionCatalog]:
        """Catalogs of every plugin declared in the first readable listing.

        Plugins whose entries are incomplete are left out.
        """
        loaded = self.load_properties(urls)
        if loaded is None:
            raise CatalogUnavailableError("No plugin listing could be loaded", urls=list(urls))
        url, props = loaded

        catalogs: Dict[str, VersionCatalog] = {}
        for key in props:
            if not key.endswith(VERSIONS_SUFFIX):
                continue
            plugin_id = key[:-len(VERSIONS_SUFFIX)]
            catalog = VersionCatalog.from_properties(plugin_id, props, source=url)
            if catalog.complete:
                catalogs[plugin_id] = catalog
            else:
                self._logger.warning(f"Ignoring incomplete listing entry for {plugin_id}", extra={"plugin_id": plugin_id})
        return catalogs

    def download(self, base_url: str, file_name: str, dest_dir: Union[str, Path]) -> Path:
        """Copy ``<base_url><file_name>`` into ``dest_dir``.

        Raises:
            IOFailureError: If the file cannot be fetched or written
        """
        if not base_url.endswith("/"):
            base_url = base_url + "/"
        url = base_url + file_name
        dest = Path(dest_dir) / file_name
        dest.parent.mkdir(parents=True, exist_ok=True)
        scheme = self._scheme(url)
        self._logger.info(f"Downloading {url}", extra={"url": url})

        try:
            if scheme == "file":
                shutil.copyfile(self._file_path(url), dest)
            elif scheme in ("http", "https"):
                for attempt in self._retrying():
                    with attempt:
                        with self._client.stream("GET", url) as response:
                            response.raise_for_status()
                            with open(dest, "wb") as f:
                                for chunk in response.iter_bytes():
                                    f.write(chunk)
            else:
                raise IOFailureError(f"Unsupported URL scheme '{scheme}'", path=url)
        except (OSError, httpx.HTTPError) as e:
            raise IOFailureError(f"Could not download {url}: {e}", path=url) from e
        return dest
