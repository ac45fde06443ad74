# app/utils/json_parser.py
"""
Helpers for reading loosely-typed IREX JSON payloads.
IREX sends the same attribute under several names (channel.id vs channel_id),
so lookups go through a fallback chain.
"""

import json
import math
from typing import Optional, Any


def safe_parse_json(raw_body: bytes) -> Optional[Any]:
    """Parse JSON bytes safely. Returns None on error."""
    try:
        return json.loads(raw_body.decode("utf-8", errors="replace"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def get_nested(data: dict, *keys: str, default: Any = None) -> Any:
    """Safely navigate nested dict keys. Returns default if any key is missing."""
    current = data
    for key in keys:
        if not isinstance(current, dict):
            return default
        current = current.get(key, default)
        if current is default:
            return default
    return current


def first_present(data: dict, *paths, default: Any = None) -> Any:
    """
    Return the first value that is not None/"" along a list of key paths.
    Each path is a key or a tuple of nested keys, e.g. ("channel", "id"), "channel_id".
    """
    for path in paths:
        keys = path if isinstance(path, tuple) else (path,)
        value = get_nested(data, *keys)
        if value is not None and value != "":
            return value
    return default


def to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None
