"""Helpers for building structured log payloads."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_current_timestamp() -> str:
    """Return the current local time as ``YYYY-MM-DD HH:MM:SS``."""
    return datetime.now().strftime(TIMESTAMP_FORMAT)


def create_log_info(additional_data: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Return a copy of ``additional_data`` with a ``timestamp`` entry added.

    Raises TypeError when ``additional_data`` is not a mapping.
    """
    if additional_data is None:
        info: dict[str, Any] = {}
    elif isinstance(additional_data, Mapping):
        info = dict(additional_data)
    else:
        raise TypeError(
            f"log info must be a mapping, not {type(additional_data).__name__}"
        )
    info["timestamp"] = get_current_timestamp()
    return info