"""Key-casing translation between application objects and storage rows.

Application objects use camelCase keys (``channelId``); storage rows use
snake_case columns (``channel_id``). Both functions are flat: nested values
are copied as-is.
"""

import re
from collections.abc import Mapping
from typing import Any

_UPPER = re.compile(r"[A-Z]")
_UNDERSCORE_LOWER = re.compile(r"_([a-z])")


def to_storage_key(key: str) -> str:
    return _UPPER.sub(lambda m: f"_{m.group().lower()}", key)


def from_storage_key(key: str) -> str:
    return _UNDERSCORE_LOWER.sub(lambda m: m.group(1).upper(), key)


def to_storage_fields(obj: Mapping[str, Any]) -> dict[str, Any]:
    """Convert camelCase keys to snake_case column names."""
    return {to_storage_key(key): value for key, value in obj.items()}


def from_storage_fields(row: Mapping[str, Any]) -> dict[str, Any]:
    """Convert snake_case column names to camelCase keys."""
    return {from_storage_key(key): value for key, value in row.items()}
