"""
Version identifiers for decision records.

Versions are "MAJOR.MINOR" strings. A content edit bumps MINOR; a status
change bumps MAJOR and resets MINOR. Every bump is paired with exactly one
VersionSnapshot, so a record's `version` always equals its newest snapshot's.
"""

from __future__ import annotations

from app.adrhub.constants import INITIAL_VERSION


def _parse_part(raw: str | None, default: int) -> int:
    raw = (raw or "").strip()
    if not raw.isdigit():
        return default
    return int(raw)


def parse_version(current: str | None) -> tuple[int, int]:
    """
    Split "MAJOR.MINOR" into integers.

    A missing or non-numeric MINOR reads as 0; a missing or non-numeric MAJOR
    reads as 1 (the initial major).
    """
    major_raw, _, minor_raw = (current or "").partition(".")
    return _parse_part(major_raw, 1), _parse_part(minor_raw, 0)


def format_version(major: int, minor: int) -> str:
    return f"{major}.{minor}"


def initial_version() -> str:
    return INITIAL_VERSION


def next_version_for_edit(current: str | None) -> str:
    """'1.3' -> '1.4'"""
    major, minor = parse_version(current)
    return format_version(major, minor + 1)


def next_version_for_status_change(current: str | None) -> str:
    """'1.4' -> '2.0'"""
    major, _minor = parse_version(current)
    return format_version(major + 1, 0)
