"""Pytest configuration and fixtures for hostext tests."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional
from unittest.mock import MagicMock

import pytest
import yaml

from hostext.core.config_manager import ConfigManager
from hostext.plugin_system.installer import PluginInstaller
from hostext.plugin_system.modules import ModuleContext
from hostext.plugin_system.package import PluginDistribution
from hostext.plugin_system.signing import DistributionSigner, SigningKey
from hostext.utils import properties

HOST_VERSION = "2.0.0"
PLUGIN_ID = "acme-widget"

DEFAULT_FILES = {
    "acme/widget.js": "console.log('acme widget');\n",
    "acme/widget.css": ".widget { color: red; }\n",
}


class StaticModule:
    """Host module whose state is fixed by the test."""

    def __init__(self, module_id: str, enabled: bool = True) -> None:
        self._id = module_id
        self.enabled = enabled
        self.calls: List[str] = []

    @property
    def id(self) -> str:
        return self._id

    def is_enabled(self, context: ModuleContext) -> bool:
        return self.enabled

    def enable(self, context: ModuleContext) -> None:
        self.calls.append("enable")
        self.enabled = True

    def disable(self, context: ModuleContext, from_installer: bool) -> None:
        self.calls.append(f"disable:{from_installer}")
        self.enabled = False


class CatalogWriter:
    """Builds a version catalog property file entry by entry."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.props: Dict[str, str] = {}

    @property
    def url(self) -> str:
        return self.path.as_uri()

    def add(
            self,
            plugin_id: str,
            version: str,
            min_host: str = "1.0.0",
            max_host: str = "3.0.0",
            level: Optional[str] = "Current",
            download_url: Optional[str] = None,
            base_name: Optional[str] = None
    ) -> CatalogWriter:
        versions = self.props.get(f"{plugin_id}.versions", "").split()
        versions.append(version)
        self.props[f"{plugin_id}.versions"] = " ".join(versions)
        self.props[f"{plugin_id}.minIdPVersion.{version}"] = min_host
        self.props[f"{plugin_id}.maxIdPVersion.{version}"] = max_host
        if level is not None:
            self.props[f"{plugin_id}.supportLevel.{version}"] = level
        if download_url is not None:
            self.props[f"{plugin_id}.downloadURL.{version}"] = download_url
            self.props[f"{plugin_id}.baseName.{version}"] = base_name or f"{plugin_id}-{version}"
        properties.dump_file(self.props, self.path)
        return self


@pytest.fixture
def temp_config_file() -> Generator[str, None, None]:
    """Create a temporary configuration file for testing."""
    test_config = {
        "host": {"home": "/opt/host", "version": "4.1.0"},
        "plugins": {"update_urls": ["https://plugins.example.org/plugins.properties"]},
        "logging": {
            "level": "DEBUG",
            "file": {"enabled": False},
            "console": {"enabled": True, "level": "DEBUG"},
        },
    }

    with tempfile.NamedTemporaryFile(suffix=".yaml", delete=False, mode="w") as tmp:
        yaml.dump(test_config, tmp)
        tmp_path = tmp.name

    yield tmp_path

    try:
        Path(tmp_path).unlink()
    except OSError:
        pass


@pytest.fixture
def config_manager(temp_config_file: str) -> Generator[ConfigManager, None, None]:
    """Create a ConfigManager instance for testing."""
    manager = ConfigManager(config_path=temp_config_file)
    manager.initialize()
    yield manager
    manager.shutdown()


@pytest.fixture
def host_home(tmp_path: Path) -> Path:
    """An empty host installation."""
    home = tmp_path / "host"
    (home / "dist" / "plugin-webapp").mkdir(parents=True)
    return home


@pytest.fixture
def live_tree(host_home: Path) -> Path:
    return host_home / "dist" / "plugin-webapp"


@pytest.fixture(scope="session")
def signing_key() -> SigningKey:
    return DistributionSigner.generate_key(["Acme Plugins <plugins@acme.example>"])


@pytest.fixture
def signer(signing_key: SigningKey) -> DistributionSigner:
    return DistributionSigner(signing_key)


@pytest.fixture
def dist_dir(tmp_path: Path) -> Path:
    """Directory distributions are published to."""
    path = tmp_path / "published"
    path.mkdir()
    return path


@pytest.fixture
def build_distribution(tmp_path: Path, dist_dir: Path, signer: DistributionSigner) -> Callable[..., Path]:
    """Return a function that builds and signs a plugin distribution.

    The archive is written to ``dist_dir`` as ``<plugin_id>-<version><suffix>``
    with its ``.asc`` signature beside it.
    """

    def _build(
            plugin_id: str = PLUGIN_ID,
            version: str = "2.1.0",
            files: Optional[Dict[str, str]] = None,
            descriptor: Optional[Dict[str, Any]] = None,
            bootstrap_id: Optional[str] = None,
            descriptor_id: Optional[str] = None,
            suffix: str = ".tar.gz",
            include_keys: bool = True,
            key_signer: Optional[DistributionSigner] = None,
            sign: bool = True
    ) -> Path:
        staging = Path(tempfile.mkdtemp(dir=tmp_path, prefix="staging-"))
        source = staging / f"{plugin_id}-{version}"
        bootstrap = source / "bootstrap"
        webapp = source / "webapp"
        bootstrap.mkdir(parents=True)
        webapp.mkdir()

        properties.dump_file({"plugin.id": bootstrap_id or plugin_id}, bootstrap / "plugin.properties")
        if include_keys:
            (bootstrap / "keys.txt").write_text(signer.export_public_keys(), encoding="utf-8")

        for relative, content in (DEFAULT_FILES if files is None else files).items():
            target = webapp / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

        described = descriptor_id or plugin_id
        data = {"plugin_id": described, "version": version, "description": f"{described} plugin"}
        data.update(descriptor or {})
        descriptor_path = webapp / "plugin-descriptors" / f"{described}.json"
        descriptor_path.parent.mkdir(parents=True, exist_ok=True)
        descriptor_path.write_text(json.dumps(data), encoding="utf-8")

        archive = PluginDistribution.create(source, dist_dir / f"{plugin_id}-{version}{suffix}")
        if sign:
            (key_signer or signer).sign_file(archive)
        return archive

    return _build


@pytest.fixture
def catalog(tmp_path: Path) -> CatalogWriter:
    return CatalogWriter(tmp_path / "catalog" / "plugins.properties")


@pytest.fixture
def static_module() -> type:
    """The :class:`StaticModule` class, for building host modules."""
    return StaticModule


@pytest.fixture
def repackager() -> MagicMock:
    return MagicMock()


@pytest.fixture
def installer(host_home: Path, catalog: CatalogWriter, repackager: MagicMock) -> Generator[PluginInstaller, None, None]:
    """Installer that accepts every offered key and consults ``catalog``."""
    plugin_installer = PluginInstaller(
        host_home,
        HOST_VERSION,
        accept_key=lambda description: True,
        update_urls=[catalog.url],
        repackager=repackager,
    )
    yield plugin_installer
    plugin_installer.close()
