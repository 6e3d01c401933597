"""
Defensive accessors for SharePoint JSON payloads.

REST responses are loosely typed property bags: numbers arrive as strings
with thousands separators, booleans as "1"/"0", collections either as a bare
array, ``{"value": [...]}`` or the verbose ``{"d": {"results": [...]}}``.
These helpers never raise for absent or mismatched fields; they return the
supplied default instead.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional


def get_str(data: Any, key: str, default: str = "") -> str:
    if not isinstance(data, dict):
        return default
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return str(value)
    return default


def get_int(data: Any, key: str, default: int = 0) -> int:
    if not isinstance(data, dict):
        return default
    return to_int(data.get(key), default)


def to_int(value: Any, default: int = 0) -> int:
    """Coerce ``"1,234"``, ``"12 345"``, ``12.0`` or ``12`` to an int."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        cleaned = value.replace(",", "").replace(" ", "").replace(" ", "").strip()
        if not cleaned:
            return default
        try:
            return int(cleaned)
        except ValueError:
            try:
                return int(float(cleaned))
            except ValueError:
                return default
    return default


def get_bool(data: Any, key: str, default: bool = False) -> bool:
    if not isinstance(data, dict):
        return default
    value = data.get(key)
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no", ""):
            return False
    return default


def parse_datetime(value: Any) -> Optional[datetime]:
    """ISO 8601 (with or without ``Z``) or RFC 1123; naive values are UTC."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_datetime(data: Any, *keys: str) -> Optional[datetime]:
    """First key that holds a parseable timestamp wins."""
    if not isinstance(data, dict):
        return None
    for key in keys:
        parsed = parse_datetime(data.get(key))
        if parsed is not None:
            return parsed
    return None


def get_dict(data: Any, key: str) -> dict:
    if not isinstance(data, dict):
        return {}
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def get_collection(data: Any, key: Optional[str] = None) -> list:
    """
    Unwrap a collection from any of the shapes SharePoint returns.

    With ``key`` the named property is unwrapped first; the property itself
    may then be a list or a ``{"results": [...]}`` envelope.
    """
    if key is not None:
        if not isinstance(data, dict):
            return []
        data = data.get(key)
    if isinstance(data, list):
        return data
    if not isinstance(data, dict):
        return []
    if isinstance(data.get("value"), list):
        return data["value"]
    if isinstance(data.get("results"), list):
        return data["results"]
    inner = data.get("d")
    if isinstance(inner, dict) and isinstance(inner.get("results"), list):
        return inner["results"]
    return []


def unwrap_verbose(data: Any) -> dict:
    """Return ``data["d"]`` for verbose OData payloads, else the payload itself."""
    if isinstance(data, dict) and isinstance(data.get("d"), dict):
        return data["d"]
    return data if isinstance(data, dict) else {}
