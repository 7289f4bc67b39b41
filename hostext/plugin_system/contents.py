"""Per-plugin record of the files an installed version placed in the host.

Stored as ``<home>/dist/plugin-contents/<plugin_id>.properties``::

    idp.plugin.version=2.1.0
    idp.plugin.relativePaths=true
    idp.plugin.file.1=dist/plugin-webapp/plugin-descriptors/acme.json
    idp.plugin.file.2=...

Old manifests lack ``idp.plugin.relativePaths`` and hold absolute paths,
possibly under a host root the installation has since been moved from.
"""

from __future__ import annotations

import logging
from pathlib import Path, PurePath
from typing import Iterable, List, Optional, Tuple, Union

from hostext.utils import properties
from hostext.utils.exceptions import IOFailureError

CONTENTS_DIR = Path("dist") / "plugin-contents"
LIVE_TREE = Path("dist") / "plugin-webapp"

VERSION_PROPERTY = "idp.plugin.version"
RELATIVE_PATHS_PROPERTY = "idp.plugin.relativePaths"
FILE_PROPERTY_PREFIX = "idp.plugin.file."


class ContentManifest:
    """Reads and writes the content manifest of one plugin."""

    def __init__(
            self,
            home: Union[str, Path],
            plugin_id: str,
            logger: Optional[logging.Logger] = None
    ) -> None:
        self.home = Path(home)
        self.plugin_id = plugin_id
        self.path = self.home / CONTENTS_DIR / f"{plugin_id}.properties"
        self._logger = logger or logging.getLogger("content_manifest")

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, version: str, paths: Iterable[Union[str, Path]]) -> None:
        """Record ``version`` and the installed paths.

        Args:
            version: Version that placed the files
            paths: Absolute paths under the home, or paths relative to it

        Raises:
            IOFailureError: If a path lies outside the home or the file
                cannot be written
        """
        props = {
            VERSION_PROPERTY: str(version),
            RELATIVE_PATHS_PROPERTY: "true",
        }
        for count, path in enumerate(paths, start=1):
            props[f"{FILE_PROPERTY_PREFIX}{count}"] = self._relative(Path(path)).as_posix()

        try:
            properties.dump_file(props, self.path, comment=f"Contents of plugin {self.plugin_id}")
        except OSError as e:
            raise IOFailureError(
                f"Could not write content manifest {self.path}: {e}",
                plugin_id=self.plugin_id,
                version=str(version),
                path=str(self.path),
            ) from e

    def _relative(self, path: Path) -> Path:
        if not path.is_absolute():
            return path
        try:
            return path.relative_to(self.home)
        except ValueError as e:
            raise IOFailureError(
                f"{path} is not inside {self.home}",
                plugin_id=self.plugin_id,
                path=str(path),
            ) from e

    def load(self) -> Tuple[Optional[str], List[Path]]:
        """Read the manifest.

        Returns:
            ``(version, relative_paths)``; ``(None, [])`` when the plugin has
            no manifest, which means it is not installed

        Raises:
            IOFailureError: If the file exists but cannot be read
        """
        if not self.path.exists():
            return None, []

        try:
            props = properties.load_file(self.path)
        except OSError as e:
            raise IOFailureError(
                f"Could not read content manifest {self.path}: {e}",
                plugin_id=self.plugin_id,
                path=str(self.path),
            ) from e

        version = props.get(VERSION_PROPERTY)
        relative_flag = props.get(RELATIVE_PATHS_PROPERTY, "false").strip().lower() == "true"

        entries = []
        for key, value in props.items():
            if not key.startswith(FILE_PROPERTY_PREFIX):
                continue
            suffix = key[len(FILE_PROPERTY_PREFIX):]
            if not suffix.isdigit():
                continue
            entries.append((int(suffix), value))
        entries.sort()

        paths: List[Path] = []
        for _index, value in entries:
            resolved = self._resolve(value, relative_flag)
            if resolved is not None:
                paths.append(resolved)
        return version, paths

    def absolute_paths(self) -> List[Path]:
        _version, paths = self.load()
        return [self.home / path for path in paths]

    def version(self) -> Optional[str]:
        return self.load()[0]

    def _resolve(self, value: str, relative_flag: bool) -> Optional[Path]:
        path = Path(value)
        if not path.is_absolute():
            if not relative_flag:
                self._logger.debug(
                    f"Relative entry {value} in legacy manifest for {self.plugin_id}",
                    extra={"plugin_id": self.plugin_id},
                )
            return path

        if relative_flag:
            self._logger.warning(
                f"Absolute entry {value} in relative manifest for {self.plugin_id}, treating as legacy",
                extra={"plugin_id": self.plugin_id, "path": value},
            )

        try:
            return path.relative_to(self.home)
        except ValueError:
            pass

        rerooted = relocate_legacy_path(path)
        if rerooted is None:
            self._logger.warning(
                f"Cannot place legacy entry {value} for {self.plugin_id} under {self.home}, ignoring",
                extra={"plugin_id": self.plugin_id, "path": value},
            )
            return None

        self._logger.debug(
            f"Legacy entry {value} for {self.plugin_id} mapped to {rerooted}",
            extra={"plugin_id": self.plugin_id, "path": value},
        )
        return rerooted

    def delete(self) -> bool:
        """Remove the manifest file.

        Returns:
            True if a file was removed

        Raises:
            IOFailureError: If the file exists but cannot be removed
        """
        if not self.path.exists():
            return False
        try:
            self.path.unlink()
        except OSError as e:
            raise IOFailureError(
                f"Could not delete content manifest {self.path}: {e}",
                plugin_id=self.plugin_id,
                path=str(self.path),
            ) from e
        return True


def relocate_legacy_path(path: PurePath) -> Optional[Path]:
    """Home-relative form of an absolute path recorded under another root.

    The previous root is taken to be everything before the last
    ``dist/plugin-webapp`` pair of components.

    Returns:
        The path from ``dist`` on, or None if the pair does not occur
    """
    parts = path.parts
    marker = LIVE_TREE.parts
    for index in range(len(parts) - len(marker), -1, -1):
        if tuple(parts[index:index + len(marker)]) == marker:
            return Path(*parts[index:])
    return None


def list_installed(home: Union[str, Path]) -> List[str]:
    """Plugin ids that have a content manifest under ``home``."""
    contents_dir = Path(home) / CONTENTS_DIR
    if not contents_dir.is_dir():
        return []
    return sorted(path.stem for path in contents_dir.glob("*.properties"))
