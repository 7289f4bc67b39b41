"""Plugin distribution archives.

A distribution is a ``.tar.gz`` or ``.zip`` archive holding exactly one
top-level directory laid out as::

    <top>/bootstrap/plugin.properties   declares plugin.id
    <top>/bootstrap/keys.txt            armored keys the publisher signs with
    <top>/webapp/...                    payload copied into the live tree
"""

from __future__ import annotations

import enum
import logging
import os
import tarfile
import tempfile
import zipfile
from pathlib import Path
from typing import Optional, Union

from hostext.utils import properties
from hostext.utils.exceptions import CorruptArchiveError
from hostext.utils.fileops import delete_tree

BOOTSTRAP_PROPERTIES = Path("bootstrap") / "plugin.properties"
KEYS_FILE = Path("bootstrap") / "keys.txt"
WEBAPP_DIR = "webapp"
PLUGIN_ID_PROPERTY = "plugin.id"


class PackageFormat(str, enum.Enum):
    """Archive formats a distribution can come in."""

    ZIP = "zip"
    TAR_GZ = "tar.gz"

    @classmethod
    def from_file_name(cls, file_name: str, logger: Optional[logging.Logger] = None) -> PackageFormat:
        """Select the format by suffix; unknown suffixes are read as ``tar.gz``."""
        logger = logger or logging.getLogger("plugin_package")
        lower = file_name.lower()
        if lower.endswith(".zip"):
            return cls.ZIP
        if lower.endswith(".tar.gz") or lower.endswith(".tgz"):
            return cls.TAR_GZ
        logger.warning(f"Unrecognized archive suffix on {file_name}, assuming tar.gz", extra={"path": file_name})
        return cls.TAR_GZ


def _inside(root: Path, member: str) -> bool:
    target = (root / member).resolve()
    root = root.resolve()
    return target == root or root in target.parents


class PluginDistribution:
    """An unpacked plugin distribution in a scratch directory.

    Attributes:
        archive: Archive the distribution was unpacked from
        work_dir: Scratch directory holding the unpacked tree
        root: The single top-level directory of the archive
    """

    def __init__(
            self,
            archive: Path,
            work_dir: Path,
            root: Path,
            logger: Optional[logging.Logger] = None
    ) -> None:
        self.archive = archive
        self.work_dir = work_dir
        self.root = root
        self._logger = logger or logging.getLogger("plugin_package")

    @classmethod
    def unpack(
            cls,
            archive: Union[str, Path],
            work_dir: Optional[Union[str, Path]] = None,
            logger: Optional[logging.Logger] = None
    ) -> PluginDistribution:
        """Unpack an archive into a fresh scratch directory.

        Args:
            archive: Archive to unpack
            work_dir: Empty directory to unpack into; a temporary one if omitted
            logger: Logger to use

        Returns:
            The unpacked distribution

        Raises:
            CorruptArchiveError: If the archive cannot be read, escapes its
                directory or does not hold exactly one top-level directory
        """
        logger = logger or logging.getLogger("plugin_package")
        archive = Path(archive)
        if work_dir is None:
            work_dir = Path(tempfile.mkdtemp(prefix="hostext-unpack-"))
        else:
            work_dir = Path(work_dir)
            work_dir.mkdir(parents=True, exist_ok=True)

        package_format = PackageFormat.from_file_name(archive.name, logger)
        logger.debug(f"Unpacking {archive} ({package_format.value}) into {work_dir}", extra={"path": str(archive)})

        try:
            if package_format == PackageFormat.ZIP:
                cls._extract_zip(archive, work_dir)
            else:
                cls._extract_tar(archive, work_dir)
        except (OSError, tarfile.TarError, zipfile.BadZipFile) as e:
            delete_tree(work_dir)
            raise CorruptArchiveError(f"Could not unpack {archive}: {e}", path=str(archive)) from e
        except CorruptArchiveError:
            delete_tree(work_dir)
            raise

        entries = list(work_dir.iterdir())
        if len(entries) != 1 or not entries[0].is_dir():
            delete_tree(work_dir)
            raise CorruptArchiveError(
                f"{archive} must contain exactly one top level directory, found {len(entries)} entries",
                path=str(archive),
            )

        return cls(archive, work_dir, entries[0], logger)

    @staticmethod
    def _extract_zip(archive: Path, work_dir: Path) -> None:
        with zipfile.ZipFile(archive, "r") as zf:
            for name in zf.namelist():
                if not _inside(work_dir, name):
                    raise CorruptArchiveError(f"Entry {name} escapes the unpack directory", path=str(archive))
            zf.extractall(work_dir)

    @staticmethod
    def _extract_tar(archive: Path, work_dir: Path) -> None:
        with tarfile.open(archive, "r:gz") as tf:
            for member in tf.getmembers():
                if not _inside(work_dir, member.name):
                    raise CorruptArchiveError(f"Entry {member.name} escapes the unpack directory", path=str(archive))
                if member.issym() or member.islnk():
                    raise CorruptArchiveError(f"Entry {member.name} is a link", path=str(archive))
            if hasattr(tarfile, "data_filter"):
                tf.extractall(work_dir, filter="data")
            else:
                tf.extractall(work_dir)

    @property
    def webapp_dir(self) -> Path:
        return self.root / WEBAPP_DIR

    @property
    def keys_file(self) -> Path:
        return self.root / KEYS_FILE

    @property
    def bootstrap_file(self) -> Path:
        return self.root / BOOTSTRAP_PROPERTIES

    def read_plugin_id(self) -> str:
        """The id the distribution declares in its bootstrap properties.

        Raises:
            CorruptArchiveError: If the file or the property is missing
        """
        try:
            props = properties.load_file(self.bootstrap_file)
        except OSError as e:
            raise CorruptArchiveError(
                f"Could not read {BOOTSTRAP_PROPERTIES.as_posix()} from {self.archive.name}: {e}",
                path=str(self.bootstrap_file),
            ) from e

        plugin_id = props.get(PLUGIN_ID_PROPERTY, "").strip()
        if not plugin_id:
            raise CorruptArchiveError(
                f"No {PLUGIN_ID_PROPERTY} in {BOOTSTRAP_PROPERTIES.as_posix()} of {self.archive.name}",
                path=str(self.bootstrap_file),
            )
        return plugin_id

    def cleanup(self) -> None:
        delete_tree(self.work_dir)

    @staticmethod
    def create(
            source_dir: Union[str, Path],
            output_path: Union[str, Path],
            package_format: Optional[PackageFormat] = None
    ) -> Path:
        """Archive ``source_dir`` as the single top-level directory.

        Args:
            source_dir: Directory holding ``bootstrap/`` and ``webapp/``
            output_path: Archive to write
            package_format: Format to write, chosen by suffix if omitted

        Returns:
            The archive path
        """
        source_dir = Path(source_dir)
        output_path = Path(output_path)
        package_format = package_format or PackageFormat.from_file_name(output_path.name)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        top = source_dir.name

        if package_format == PackageFormat.ZIP:
            with zipfile.ZipFile(output_path, "w", zipfile.ZIP_DEFLATED) as zf:
                for root, _dirs, files in os.walk(source_dir):
                    for name in sorted(files):
                        path = Path(root) / name
                        zf.write(path, (Path(top) / path.relative_to(source_dir)).as_posix())
        else:
            with tarfile.open(output_path, "w:gz") as tf:
                tf.add(source_dir, arcname=top)
        return output_path

    def __enter__(self) -> PluginDistribution:
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()
