"""Unit tests for plugin versions."""

from __future__ import annotations

import logging

import pytest

from hostext.plugin_system.version import ZERO, PluginVersion
from hostext.utils.exceptions import MalformedVersionError


@pytest.mark.parametrize(
    "text, expected",
    [
        ("4.1.0", (4, 1, 0)),
        ("4", (4, 0, 0)),
        ("4.2", (4, 2, 0)),
        ("5-SNAPSHOT", (5, 0, 0)),
        ("3.1.2+build7", (3, 1, 2)),
        ("1.2.3.4", (1, 2, 3)),
        ("2.x.9", (2, 0, 0)),
        (" 1.0.1 ", (1, 0, 1)),
    ],
)
def test_parse(text: str, expected: tuple) -> None:
    """Test parsing of the supported version spellings."""
    assert PluginVersion.parse(text).as_tuple() == expected


@pytest.mark.parametrize("text", ["", "abc", "v1.0", "-1.0.0", "١.0.0"])
def test_parse_malformed(text: str) -> None:
    """Test that a non-numeric first component is rejected."""
    with pytest.raises(MalformedVersionError):
        PluginVersion.parse(text)


def test_negative_components_rejected() -> None:
    with pytest.raises(MalformedVersionError):
        PluginVersion(1, -1, 0)


def test_improbable_version_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    """Test that 0.0.0 parses but is reported as improbable."""
    with caplog.at_level(logging.WARNING, logger="plugin_version"):
        version = PluginVersion.parse("0.0.0")

    assert version == ZERO
    assert version.is_improbable()
    assert "Improbable version" in caplog.text


def test_ordering() -> None:
    """Test that versions order field by field."""
    versions = [PluginVersion.parse(v) for v in ["2.0.0", "1.10.0", "1.9.9", "1.9.10", "10.0.0"]]

    assert [str(v) for v in sorted(versions)] == ["1.9.9", "1.9.10", "1.10.0", "2.0.0", "10.0.0"]
    assert PluginVersion(1, 2, 3) < PluginVersion(1, 3, 0)
    assert PluginVersion(2, 0, 0) >= PluginVersion(1, 99, 99)
    assert PluginVersion.parse("4.1") == PluginVersion(4, 1, 0)


def test_compare() -> None:
    assert PluginVersion(1, 0, 0).compare(PluginVersion(1, 0, 1)) == -1
    assert PluginVersion(1, 0, 1).compare(PluginVersion(1, 0, 0)) == 1
    assert PluginVersion(3, 2, 1).compare(PluginVersion.parse("3.2.1")) == 0


def test_hashable_and_str() -> None:
    """Test use as a dictionary key and the canonical string form."""
    table = {PluginVersion.parse("4.1"): "a"}

    assert table[PluginVersion(4, 1, 0)] == "a"
    assert str(PluginVersion.parse("7")) == "7.0.0"


def test_comparison_with_other_types() -> None:
    assert PluginVersion(1, 0, 0) != "1.0.0"
    with pytest.raises(TypeError):
        PluginVersion(1, 0, 0) < "2.0.0"
