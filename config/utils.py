"""Helpers for reading configuration values that may arrive as env-substituted strings."""
from __future__ import annotations

from typing import Any, Dict, Optional

_TRUE = {'1', 'true', 'yes', 'on'}
_FALSE = {'0', 'false', 'no', 'off'}


def get_config_section(source: Any, section: str) -> Dict:
    """Return a plain dict section from Config, SectionProxy or dict objects."""
    if source is None:
        return {}

    getter = getattr(source, 'get', None)
    if callable(getter):
        candidate = getter(section, {})
        to_dict = getattr(candidate, 'to_dict', None)
        if callable(to_dict):
            candidate = to_dict()
        if isinstance(candidate, dict):
            return candidate

    return {}


def as_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, str) and not value.strip():
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def as_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    number = as_float(value)
    if number is None:
        return default
    return int(number)


def as_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    return default
