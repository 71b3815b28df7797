"""Runtime version metadata for MineRelay.

This module is import-safe and exposes authoritative version identifiers for
other runtime modules without executing side effects on import.
"""

from __future__ import annotations

PROJECT_NAME = "MineRelay"
VERSION = "v0.3.0"
BUILD = "2026.10"
LICENSE = "MIT"

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "BUILD",
    "LICENSE",
    "as_string",
]


def as_string() -> str:
    """Return a concise version string."""

    return f"{PROJECT_NAME} {VERSION} (Build {BUILD})"
