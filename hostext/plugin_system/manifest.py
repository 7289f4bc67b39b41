"""Plugin self-descriptions and the indexes that discover them.

Every plugin ships one JSON descriptor under ``plugin-descriptors/`` in its
payload. Two independent indexes are used during an install: one over the
live tree (what is installed) and one over the unpacked candidate
distribution (what is about to be installed). Each is closed explicitly
when the installer finishes with it.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

import pydantic
from pydantic import Field, field_validator, model_validator

from hostext.plugin_system.version import PluginVersion
from hostext.utils.exceptions import MalformedVersionError

DESCRIPTOR_DIR = "plugin-descriptors"

_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]*$")


class ModuleResource(pydantic.BaseModel):
    """A file a module places into the host when enabled.

    Attributes:
        source: Path relative to the plugin payload root
        destination: Path relative to the host home
        replace: Replace a locally changed destination (keeping a ``.save``
            copy) instead of writing the new content beside it as ``.new``
    """

    source: str
    destination: str
    replace: bool = False

    @field_validator('source', 'destination')
    @classmethod
    def validate_relative(cls, v: str) -> str:
        path = Path(v)
        if path.is_absolute() or '..' in path.parts:
            raise ValueError(f"Resource paths must be relative and stay inside their root: {v}")
        return v


class ModuleDefinition(pydantic.BaseModel):
    id: str
    name: Optional[str] = None
    resources: List[ModuleResource] = Field(default_factory=list)

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not _ID_PATTERN.match(v):
            raise ValueError(f"Invalid module id: {v}")
        return v


class PluginDescription(pydantic.BaseModel):
    """What a plugin declares about itself.

    Attributes:
        plugin_id: Unique plugin identifier
        version: Plugin version string
        description: One line summary
        license_file: License text path relative to the payload root
        update_urls: Catalog URLs to consult for this plugin
        required_modules: Modules that must be enabled before installing
        enable_on_install: Modules enabled automatically on install
        disable_on_removal: Modules disabled automatically on uninstall
        modules: Modules owned by this plugin
    """

    plugin_id: str
    version: str
    description: Optional[str] = None
    license_file: Optional[str] = None
    update_urls: List[str] = Field(default_factory=list)
    required_modules: List[str] = Field(default_factory=list)
    enable_on_install: List[str] = Field(default_factory=list)
    disable_on_removal: List[str] = Field(default_factory=list)
    modules: List[ModuleDefinition] = Field(default_factory=list)

    @field_validator('plugin_id')
    @classmethod
    def validate_plugin_id(cls, v: str) -> str:
        if not _ID_PATTERN.match(v):
            raise ValueError(f"Invalid plugin id: {v}")
        return v

    @field_validator('version')
    @classmethod
    def validate_version(cls, v: str) -> str:
        try:
            PluginVersion.parse(v)
        except MalformedVersionError as e:
            raise ValueError(str(e)) from e
        return v

    @model_validator(mode='after')
    def validate_module_references(self) -> 'PluginDescription':
        owned = {module.id for module in self.modules}
        for module_id in self.enable_on_install + self.disable_on_removal:
            if module_id not in owned:
                raise ValueError(f"Module {module_id} is not owned by plugin {self.plugin_id}")
        return self

    @property
    def plugin_version(self) -> PluginVersion:
        return PluginVersion.parse(self.version)

    @classmethod
    def load(cls, path: Union[str, Path]) -> PluginDescription:
        """Load a descriptor from a JSON file.

        Raises:
            OSError: If the file cannot be read
            ValueError: If the content is not a valid descriptor
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: Union[str, Path]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.model_dump(exclude_none=True), f, indent=2)


class DescriptorIndex:
    """Lookup table of plugin descriptors found under one payload root.

    The table is built lazily on first use and released by :meth:`close`;
    a closed index can be reopened by using it again.
    """

    def __init__(self, root: Union[str, Path], logger: Optional[logging.Logger] = None) -> None:
        self.root = Path(root)
        self._logger = logger or logging.getLogger("descriptor_index")
        self._descriptors: Optional[Dict[str, PluginDescription]] = None
        self._paths: Dict[str, Path] = {}

    @property
    def descriptor_dir(self) -> Path:
        return self.root / DESCRIPTOR_DIR

    def _scan(self) -> Dict[str, PluginDescription]:
        descriptors: Dict[str, PluginDescription] = {}
        self._paths = {}
        if not self.descriptor_dir.is_dir():
            return descriptors

        for path in sorted(self.descriptor_dir.glob("*.json")):
            try:
                description = PluginDescription.load(path)
            except (OSError, ValueError) as e:
                self._logger.warning(f"Ignoring unreadable plugin descriptor {path}: {e}", extra={"path": str(path)})
                continue
            if description.plugin_id in descriptors:
                self._logger.error(
                    f"Plugin {description.plugin_id} is described by both "
                    f"{self._paths[description.plugin_id]} and {path}",
                    extra={"plugin_id": description.plugin_id},
                )
                continue
            descriptors[description.plugin_id] = description
            self._paths[description.plugin_id] = path
        return descriptors

    def _table(self) -> Dict[str, PluginDescription]:
        if self._descriptors is None:
            self._descriptors = self._scan()
        return self._descriptors

    def refresh(self) -> None:
        self._descriptors = None

    def get(self, plugin_id: str) -> Optional[PluginDescription]:
        return self._table().get(plugin_id)

    def path_of(self, plugin_id: str) -> Optional[Path]:
        self._table()
        return self._paths.get(plugin_id)

    def plugin_ids(self) -> List[str]:
        return sorted(self._table())

    def __iter__(self) -> Iterator[PluginDescription]:
        table = self._table()
        return iter([table[plugin_id] for plugin_id in sorted(table)])

    def __len__(self) -> int:
        return len(self._table())

    def close(self) -> None:
        self._descriptors = None
        self._paths = {}

    def __enter__(self) -> DescriptorIndex:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
