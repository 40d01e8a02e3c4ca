"""
Lenient value coercion for data produced by language models and third-party APIs.

Each helper returns None (or an empty value) for input it cannot make sense of,
so one odd field never sinks a whole record.
"""
import enum
from typing import Any, List, Optional


def normalize_choice(value: Any, enum_cls: type[enum.Enum], squash_hyphens: bool = False) -> Optional[enum.Enum]:
    """Map loose output ("Slow Burn", "SLOW_BURN") onto an enum member, or None."""
    if value is None or isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        return None
    candidate = value.strip().lower().replace("_", "-").replace(" ", "-")
    if squash_hyphens:
        candidate = candidate.replace("-", "")
    try:
        return enum_cls(candidate)
    except ValueError:
        return None


def as_str_list(value: Any) -> Optional[List[str]]:
    """A bare string becomes a one-item list; None stays None."""
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set)):
        return None
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def as_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def as_optional_str(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None
