"""Sanitizers for client-supplied tracking fields."""
from __future__ import annotations

from typing import Any, Optional

REFERRER_MAX_LEN = 2048
PATH_MAX_LEN = 512
USER_AGENT_MAX_LEN = 512
IP_MAX_LEN = 128
SOURCE_HINT_MAX_LEN = 64

EVENT_DATA_MAX_KEYS = 20
EVENT_DATA_KEY_MAX_LEN = 80
EVENT_DATA_STRING_MAX_LEN = 1024


def clean_text(value: Any, *, max_len: int) -> Optional[str]:
    """Trimmed, length-capped string, or None for non-strings and blanks."""
    if not isinstance(value, str):
        return None
    text_value = value.strip()
    if not text_value:
        return None
    return text_value[:max_len]


def clean_event_data(value: Any) -> dict[str, Any]:
    if not isinstance(value, dict):
        return {}
    cleaned: dict[str, Any] = {}
    for key, raw in value.items():
        key_text = clean_text(str(key), max_len=EVENT_DATA_KEY_MAX_LEN)
        if not key_text:
            continue
        if isinstance(raw, str):
            cleaned[key_text] = raw[:EVENT_DATA_STRING_MAX_LEN]
        elif isinstance(raw, (int, float, bool)) or raw is None:
            cleaned[key_text] = raw
        elif isinstance(raw, (list, dict)):
            cleaned[key_text] = raw
        else:
            cleaned[key_text] = str(raw)
        if len(cleaned) >= EVENT_DATA_MAX_KEYS:
            break
    return cleaned


def payload_number(event_data: dict[str, Any], key: str) -> float:
    """Numeric payload field; anything unparseable counts as 0."""
    raw = event_data.get(key) if isinstance(event_data, dict) else None
    if isinstance(raw, bool) or raw is None:
        return 0.0
    try:
        number = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if number != number or number in (float("inf"), float("-inf")):
        return 0.0
    return number
