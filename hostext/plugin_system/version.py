"""Comparable three-part versions for plugins and the host application."""

from __future__ import annotations

import functools
import logging
import re
from dataclasses import dataclass
from typing import List

from hostext.utils.exceptions import MalformedVersionError

_logger = logging.getLogger("plugin_version")

_DELIMITERS = re.compile(r"[.+\-]")


@functools.total_ordering
@dataclass(frozen=True)
class PluginVersion:
    """A ``major.minor.patch`` triple ordered field by field.

    Attributes:
        major: Major component
        minor: Minor component
        patch: Patch component
    """

    major: int = 0
    minor: int = 0
    patch: int = 0

    def __post_init__(self) -> None:
        if self.major < 0 or self.minor < 0 or self.patch < 0:
            raise MalformedVersionError(
                f"Version components must not be negative: {self.major}.{self.minor}.{self.patch}"
            )

    @classmethod
    def parse(cls, text: str) -> PluginVersion:
        """Parse a ``.``, ``+`` or ``-`` delimited version string.

        Up to three leading integer components are used. Missing components
        default to zero, as does any component after the first that is not an
        integer (the numeric prefix ends there).

        Args:
            text: Version string such as ``"4.1.0"`` or ``"5-SNAPSHOT"``

        Returns:
            The parsed version

        Raises:
            MalformedVersionError: If the first component is not an integer
        """
        parts = _DELIMITERS.split(text.strip()) if text is not None else [""]
        components: List[int] = []
        for part in parts[:3]:
            if not (part.isascii() and part.isdigit()):
                break
            components.append(int(part))

        if not components:
            raise MalformedVersionError(f"Malformed version '{text}'", version=text)

        while len(components) < 3:
            components.append(0)

        version = cls(*components)
        if version.is_improbable():
            _logger.warning(f"Improbable version {version} parsed from '{text}'")
        return version

    def is_improbable(self) -> bool:
        return self.major == 0 and self.minor == 0 and self.patch == 0

    def as_tuple(self) -> tuple:
        return (self.major, self.minor, self.patch)

    def compare(self, other: PluginVersion) -> int:
        """Return -1, 0 or 1 as this version is lower, equal or higher."""
        mine = self.as_tuple()
        theirs = other.as_tuple()
        return (mine > theirs) - (mine < theirs)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, PluginVersion):
            return NotImplemented
        return self.as_tuple() < other.as_tuple()

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


ZERO = PluginVersion(0, 0, 0)
