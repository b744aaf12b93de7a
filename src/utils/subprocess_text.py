"""Decode helpers for subprocess output."""

from __future__ import annotations

from typing import Any


def to_text(value: Any) -> str:
    """Return captured subprocess output as text.

    TimeoutExpired carries bytes even when the process ran in text mode.
    """
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
