"""Reader and writer for flat ``key=value`` property files.

Version catalogs, distribution bootstrap files and content manifests all use
the classic ``.properties`` syntax: ``#`` and ``!`` comments, ``=``, ``:`` or
whitespace separators, backslash line continuation and backslash escapes.
"""

from __future__ import annotations

import io
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, TextIO, Tuple, Union

_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}
_SEPARATORS = "=:"


def _logical_lines(lines: Iterable[str]) -> Iterator[str]:
    """Join physical lines ending in an unescaped backslash."""
    pending: Optional[str] = None
    for raw in lines:
        line = raw.rstrip("\r\n")
        if pending is not None:
            line = pending + line.lstrip(" \t\f")
            pending = None
        elif not line.strip() or line.lstrip(" \t\f")[:1] in ("#", "!"):
            continue

        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1:
            pending = line[:-1]
            continue
        yield line.lstrip(" \t\f")

    if pending is not None:
        yield pending.lstrip(" \t\f")


def _unescape(text: str) -> str:
    out: List[str] = []
    i = 0
    while i < len(text):
        char = text[i]
        if char != "\\" or i + 1 >= len(text):
            out.append(char)
            i += 1
            continue
        nxt = text[i + 1]
        if nxt == "u" and i + 6 <= len(text):
            try:
                out.append(chr(int(text[i + 2:i + 6], 16)))
                i += 6
                continue
            except ValueError:
                pass
        out.append(_ESCAPES.get(nxt, nxt))
        i += 2
    return "".join(out)


def _split(line: str) -> Tuple[str, str]:
    i = 0
    while i < len(line):
        char = line[i]
        if char == "\\":
            i += 2
            continue
        if char in _SEPARATORS or char in " \t\f":
            break
        i += 1

    key = line[:i]
    rest = line[i:].lstrip(" \t\f")
    if rest[:1] in (_SEPARATORS[0], _SEPARATORS[1]):
        rest = rest[1:].lstrip(" \t\f")
    return _unescape(key), _unescape(rest)


def loads(text: str) -> Dict[str, str]:
    """Parse property text into an ordered dictionary.

    Later duplicates override earlier ones.
    """
    result: Dict[str, str] = {}
    for line in _logical_lines(io.StringIO(text)):
        key, value = _split(line)
        result[key] = value
    return result


def load(stream: TextIO) -> Dict[str, str]:
    return loads(stream.read())


def load_file(path: Union[str, Path]) -> Dict[str, str]:
    """Read a property file from disk.

    Args:
        path: File to read

    Returns:
        Dictionary of keys to values

    Raises:
        OSError: If the file cannot be read
    """
    with open(path, "r", encoding="utf-8") as f:
        return load(f)


def _escape(text: str, is_key: bool) -> str:
    out: List[str] = []
    for index, char in enumerate(text):
        if char == "\\":
            out.append("\\\\")
        elif char == "\n":
            out.append("\\n")
        elif char == "\r":
            out.append("\\r")
        elif char == "\t":
            out.append("\\t")
        elif char == "\f":
            out.append("\\f")
        elif char in "=:#!" and is_key:
            out.append("\\" + char)
        elif char == " " and (is_key or index == 0):
            out.append("\\ ")
        else:
            out.append(char)
    return "".join(out)


def dumps(properties: Mapping[str, str], comment: Optional[str] = None) -> str:
    """Render a mapping as property text, preserving key order."""
    lines: List[str] = []
    if comment:
        for comment_line in comment.splitlines():
            lines.append(f"# {comment_line}")
    for key, value in properties.items():
        lines.append(f"{_escape(key, True)}={_escape(str(value), False)}")
    return "\n".join(lines) + "\n"


def dump_file(
        properties: Mapping[str, str],
        path: Union[str, Path],
        comment: Optional[str] = None
) -> None:
    """Write a mapping to a property file, creating parent directories.

    The content goes to a temporary file beside ``path`` that then replaces
    it, so a failed write leaves any previous file untouched.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = tempfile.NamedTemporaryFile(mode="w", encoding="utf-8", delete=False, dir=path.parent, suffix=".tmp")
    try:
        with tmp:
            tmp.write(dumps(properties, comment))
        os.replace(tmp.name, path)
    except OSError:
        if os.path.exists(tmp.name):
            os.unlink(tmp.name)
        raise
