"""Unit tests for version catalogs and the catalog client."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List

import httpx
import pytest

from hostext.plugin_system.repository import (
    CatalogClient,
    SupportLevel,
    VersionCatalog,
    best_version,
)
from hostext.plugin_system.version import ZERO, PluginVersion
from hostext.utils import properties
from hostext.utils.exceptions import CatalogUnavailableError, IOFailureError

V = PluginVersion.parse


def _catalog(props: Dict[str, str], plugin_id: str = "acme") -> VersionCatalog:
    return VersionCatalog.from_properties(plugin_id, props)


@pytest.fixture
def window_props() -> Dict[str, str]:
    return {
        "acme.versions": "1.0.0",
        "acme.minIdPVersion.1.0.0": "3.0.0",
        "acme.maxIdPVersion.1.0.0": "5.0.0",
        "acme.supportLevel.1.0.0": "Current",
    }


def test_window_semantics(window_props: Dict[str, str]) -> None:
    """Test that the minimum is inclusive and the maximum exclusive."""
    catalog = _catalog(window_props)

    assert catalog.complete
    assert catalog.is_supported_with(V("1.0.0"), V("4.9.9"))
    assert catalog.is_supported_with(V("1.0.0"), V("3.0.0"))
    assert not catalog.is_supported_with(V("1.0.0"), V("5.0.0"))
    assert not catalog.is_supported_with(V("1.0.0"), V("2.9.9"))


def test_unknown_version_is_unsupported(window_props: Dict[str, str]) -> None:
    assert not _catalog(window_props).is_supported_with(V("9.9.9"), V("4.0.0"))


def test_missing_versions_key_is_incomplete() -> None:
    catalog = _catalog({"other.versions": "1.0.0"})

    assert not catalog.complete
    assert len(catalog) == 0


def test_missing_window_is_incomplete(window_props: Dict[str, str]) -> None:
    """Test that a declared version without a host range marks the catalog incomplete."""
    window_props["acme.versions"] = "1.0.0 2.0.0"
    window_props["acme.maxIdPVersion.2.0.0"] = "6.0.0"

    catalog = _catalog(window_props)

    assert not catalog.complete
    assert catalog.versions == [V("1.0.0")]


def test_legacy_window_keys() -> None:
    catalog = _catalog({
        "acme.versions": "1.0.0",
        "acme.idpVersionMin.1.0.0": "3.0.0",
        "acme.idpVersionMax.1.0.0": "5.0.0",
    })

    assert catalog.complete
    assert catalog.get(V("1.0.0")).min_supported == V("3.0.0")


def test_template_keys() -> None:
    """Test that the %{version} template supplies per-version values."""
    catalog = _catalog({
        "acme.versions": "1.0.0 1.1.0",
        "acme.minIdPVersion.%{version}": "3.0.0",
        "acme.maxIdPVersion.%{version}": "5.0.0",
        "acme.maxIdPVersion.1.1.0": "6.0.0",
        "acme.supportLevel.%{version}": "Current",
        "acme.downloadURL.%{version}": "https://plugins.example.org/acme/%{version}",
        "acme.baseName.%{version}": "acme-%{version}",
    })

    assert catalog.complete
    assert catalog.get(V("1.1.0")).max_supported == V("6.0.0")
    assert catalog.get(V("1.0.0")).max_supported == V("5.0.0")
    download = catalog.download_info(V("1.1.0"))
    assert download.url == "https://plugins.example.org/acme/1.1.0/"
    assert download.base_name == "acme-1.1.0"
    assert download.archive_url() == "https://plugins.example.org/acme/1.1.0/acme-1.1.0.tar.gz"


def test_invalid_support_level_becomes_unknown(window_props: Dict[str, str]) -> None:
    window_props["acme.supportLevel.1.0.0"] = "Bogus"
    assert _catalog(window_props).get(V("1.0.0")).support_level == SupportLevel.UNKNOWN


def test_support_level_parse_is_case_insensitive() -> None:
    assert SupportLevel.parse("secadv") == SupportLevel.SECADV
    assert SupportLevel.parse("OutOfDate") == SupportLevel.OUT_OF_DATE
    assert SupportLevel.parse(None) is None


def _release_props(releases: List[tuple]) -> Dict[str, str]:
    props = {"acme.versions": " ".join(r[0] for r in releases)}
    for version, level, download in releases:
        props[f"acme.minIdPVersion.{version}"] = "3.0.0"
        props[f"acme.maxIdPVersion.{version}"] = "5.0.0"
        props[f"acme.supportLevel.{version}"] = level
        if download:
            props[f"acme.downloadURL.{version}"] = "https://plugins.example.org/acme"
            props[f"acme.baseName.{version}"] = f"acme-{version}"
    return props


def test_best_version_skips_secadv() -> None:
    """Test that a newer Secadv release is passed over for an older Current one."""
    catalog = _catalog(_release_props([
        ("1.0.0", "Current", True),
        ("1.1.0", "Current", True),
        ("1.2.0", "Secadv", True),
    ]))

    assert catalog.best_version(ZERO, V("4.0.0")) == V("1.1.0")
    assert best_version(ZERO, V("4.0.0"), catalog) == V("1.1.0")


def test_best_version_requires_download() -> None:
    catalog = _catalog(_release_props([("1.0.0", "Current", True), ("1.1.0", "Current", False)]))

    assert catalog.best_version(ZERO, V("4.0.0")) == V("1.0.0")


def test_best_version_never_at_or_below_floor() -> None:
    catalog = _catalog(_release_props([("1.0.0", "Current", True), ("1.1.0", "Current", True)]))

    assert catalog.best_version(V("1.1.0"), V("4.0.0")) is None
    assert catalog.best_version(V("1.0.0"), V("4.0.0")) == V("1.1.0")
    assert catalog.best_version(V("2.0.0"), V("4.0.0")) is None


def test_best_version_respects_host_window() -> None:
    catalog = _catalog(_release_props([("1.0.0", "Current", True)]))
    assert catalog.best_version(ZERO, V("5.0.0")) is None


def _write(path: Path, props: Dict[str, str]) -> str:
    properties.dump_file(props, path)
    return path.as_uri()


def test_fetch_first_complete_catalog_wins(tmp_path: Path, window_props: Dict[str, str]) -> None:
    """Test that unreadable and incomplete sources are skipped in order."""
    incomplete = _write(tmp_path / "incomplete.properties", {"acme.versions": "1.0.0"})
    complete = _write(tmp_path / "complete.properties", window_props)
    missing = (tmp_path / "missing.properties").as_uri()

    with CatalogClient() as client:
        catalog = client.fetch("acme", ["ftp://example.org/x", missing, incomplete, complete])

    assert catalog.complete
    assert catalog.source == complete


def test_fetch_nothing_available(tmp_path: Path) -> None:
    with CatalogClient() as client:
        with pytest.raises(CatalogUnavailableError, match="No available servers found for acme"):
            client.fetch("acme", [(tmp_path / "missing.properties").as_uri()])


def test_fetch_over_http(window_props: Dict[str, str]) -> None:
    """Test fetching through an HTTP transport."""
    body = properties.dumps(window_props).encode("utf-8")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/plugins.properties":
            return httpx.Response(200, content=body)
        return httpx.Response(404)

    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    client = CatalogClient(client=http_client)

    catalog = client.fetch("acme", [
        "https://plugins.example.org/missing.properties",
        "https://plugins.example.org/plugins.properties",
    ])

    assert catalog.source == "https://plugins.example.org/plugins.properties"
    assert V("1.0.0") in catalog
    http_client.close()


def test_transport_errors_are_retried(window_props: Dict[str, str]) -> None:
    body = properties.dumps(window_props).encode("utf-8")
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, content=body)

    client = CatalogClient(client=httpx.Client(transport=httpx.MockTransport(handler)), retries=3, backoff=0)

    assert client.fetch("acme", ["https://plugins.example.org/plugins.properties"]).complete
    assert len(attempts) == 3


def test_fetch_listing(tmp_path: Path, window_props: Dict[str, str]) -> None:
    """Test that a listing yields a catalog per complete plugin entry."""
    props = dict(window_props)
    props["broken.versions"] = "1.0.0"
    url = _write(tmp_path / "listing.properties", props)

    with CatalogClient() as client:
        catalogs = client.fetch_listing([url])

    assert list(catalogs) == ["acme"]


def test_fetch_listing_unavailable(tmp_path: Path) -> None:
    with CatalogClient() as client:
        with pytest.raises(CatalogUnavailableError):
            client.fetch_listing([(tmp_path / "none.properties").as_uri()])


def test_download_file_url(tmp_path: Path) -> None:
    published = tmp_path / "published"
    published.mkdir()
    (published / "acme-1.0.0.tar.gz").write_bytes(b"archive")

    with CatalogClient() as client:
        path = client.download(published.as_uri(), "acme-1.0.0.tar.gz", tmp_path / "downloads")

    assert path.read_bytes() == b"archive"


def test_download_http(tmp_path: Path) -> None:
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(200, content=b"archive bytes")

    client = CatalogClient(client=httpx.Client(transport=httpx.MockTransport(handler)))
    path = client.download("https://plugins.example.org/acme", "acme.tar.gz", tmp_path)

    assert requested == ["https://plugins.example.org/acme/acme.tar.gz"]
    assert path == tmp_path / "acme.tar.gz"
    assert path.read_bytes() == b"archive bytes"


def test_download_failure(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    client = CatalogClient(client=httpx.Client(transport=httpx.MockTransport(handler)))
    with pytest.raises(IOFailureError):
        client.download("https://plugins.example.org/acme/", "acme.tar.gz", tmp_path)
