"""Normalization of raw provider values.

Provider payloads use many spellings of "nothing": ``null``, blank strings,
error fragments left behind by a failed JSON parse, ``[]`` and ``{}``. All of
them collapse to ``None`` before any field is interpreted.
"""

from collections.abc import Mapping
from typing import Any

# Substrings that mark a string as a leftover JSON parse error
MALFORMED_JSON_MARKERS = (
    "Expecting value",
    "Unexpected token",
    "Unterminated string",
    "Extra data",
)


def is_malformed_json_fragment(value: str) -> bool:
    """Check whether a string is an error message rather than data."""
    return any(marker in value for marker in MALFORMED_JSON_MARKERS)


def sanitize_external_value(value: Any) -> Any:
    """Collapse empty or malformed provider values to ``None``.

    Args:
        value: Raw value from a provider record

    Returns:
        The value (strings stripped) or None when it carries no data
    """
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text or text.lower() in ("null", "undefined"):
            return None
        if is_malformed_json_fragment(text):
            return None
        return text
    if isinstance(value, (list, tuple)) and len(value) == 0:
        return None
    if isinstance(value, Mapping) and len(value) == 0:
        return None
    return value


def sanitize_external_record(record: Mapping[str, Any]) -> dict[str, Any]:
    """Sanitize every top-level value of a provider record."""
    return {key: sanitize_external_value(value) for key, value in record.items()}
