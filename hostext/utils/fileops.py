"""Filesystem helpers used by the plugin installer and its rollback ledger."""

from __future__ import annotations

import atexit
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import List, Optional, Set, Tuple, Union

_logger = logging.getLogger("fileops")

_pending_deletes: Set[Path] = set()
_atexit_registered = False


def _delete_pending() -> None:
    for path in sorted(_pending_deletes, key=lambda p: len(p.parts), reverse=True):
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path, ignore_errors=True)
            elif path.exists():
                path.unlink()
        except OSError as e:
            _logger.warning(f"Deferred deletion of {path} failed: {e}")
    _pending_deletes.clear()


def schedule_delete_on_exit(path: Union[str, Path]) -> None:
    """Delete a path when the interpreter exits.

    Used for files that cannot be removed immediately, for instance because
    another process still holds them open.
    """
    global _atexit_registered
    _pending_deletes.add(Path(path))
    if not _atexit_registered:
        atexit.register(_delete_pending)
        _atexit_registered = True


def pending_deletes() -> List[Path]:
    return sorted(_pending_deletes)


def delete_tree(directory: Optional[Union[str, Path]]) -> bool:
    """Delete a directory tree, deferring whatever cannot be removed now.

    Args:
        directory: Directory to delete; ``None`` or a missing path is ignored

    Returns:
        True if everything was removed immediately
    """
    if directory is None:
        return True
    directory = Path(directory)
    if not directory.exists():
        return True

    failures: List[Path] = []

    def _on_error(func, path, exc) -> None:
        failures.append(Path(path))

    if sys.version_info >= (3, 12):
        shutil.rmtree(directory, onexc=_on_error)
    else:
        shutil.rmtree(directory, onerror=_on_error)
    if failures:
        for failed in failures:
            _logger.debug(f"Could not delete {failed}, deferring")
            schedule_delete_on_exit(failed)
        schedule_delete_on_exit(directory)
        return False
    return True


def detect_duplicates(from_dir: Union[str, Path], to_dir: Union[str, Path]) -> List[Path]:
    """Find files under ``from_dir`` whose counterpart exists under ``to_dir``.

    Args:
        from_dir: Tree about to be copied
        to_dir: Destination tree

    Returns:
        Destination paths that would be overwritten
    """
    from_dir = Path(from_dir)
    to_dir = Path(to_dir)
    clashes: List[Path] = []
    if not from_dir.is_dir():
        return clashes

    for root, _dirs, files in os.walk(from_dir):
        relative = Path(root).relative_to(from_dir)
        for name in files:
            target = to_dir / relative / name
            if target.exists():
                _logger.warning(f"Existing file {target} would be overwritten")
                clashes.append(target)
    return clashes


def copy_with_logging(
        from_dir: Union[str, Path],
        to_dir: Union[str, Path],
        copied: List[Path]
) -> None:
    """Copy a tree file by file, appending every created file to ``copied``.

    The list is updated as files land, so a caller that catches the error
    still knows which files need removing.

    Raises:
        OSError: If a directory cannot be created or a file cannot be copied
    """
    from_dir = Path(from_dir)
    to_dir = Path(to_dir)
    for root, dirs, files in os.walk(from_dir):
        dirs.sort()
        relative = Path(root).relative_to(from_dir)
        target_dir = to_dir / relative
        target_dir.mkdir(parents=True, exist_ok=True)
        for name in sorted(files):
            target = target_dir / name
            _logger.debug(f"Copying {Path(root) / name} to {target}")
            shutil.copy2(Path(root) / name, target)
            copied.append(target)


def rename_to_tree(
        from_dir: Union[str, Path],
        to_dir: Union[str, Path],
        files: List[Path],
        renames: List[Tuple[Path, Path]]
) -> None:
    """Move files out of one tree into the same relative place in another.

    Args:
        from_dir: Root the files currently live under
        to_dir: Root to move them into
        files: Absolute paths under ``from_dir``; missing ones are skipped
        renames: Receives a ``(original, moved_to)`` pair per moved file

    Raises:
        OSError: If a file cannot be moved
    """
    from_dir = Path(from_dir)
    to_dir = Path(to_dir)
    for path in files:
        if not path.exists():
            _logger.debug(f"{path} already absent, not moving")
            continue
        target = to_dir / path.relative_to(from_dir)
        target.parent.mkdir(parents=True, exist_ok=True)
        _logger.debug(f"Moving {path} to {target}")
        shutil.move(str(path), str(target))
        renames.append((path, target))
