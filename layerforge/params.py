"""
Parameter coercion helpers shared by shape rules and templates.

Editor parameters arrive as JSON scalars, so numbers are often strings and
booleans may be "true"/"false".
"""

from typing import Any, Dict

from layerforge.errors import ShapeParseError

_FALSY_STRINGS = {"", "false", "False"}


def is_truthy(value: Any) -> bool:
    """Missing, None, "", 0, 0.0, False, "false" and "False" are falsy."""
    if value is None:
        return False
    if isinstance(value, str):
        return value not in _FALSY_STRINGS
    return bool(value)


def number_or_default(params: Dict[str, Any], key: str, default: int) -> int:
    """Read an integer parameter, falling back when it is missing, zero or garbage."""
    value = params.get(key)
    if isinstance(value, bool):
        return default
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return number or default


def positive_int(params: Dict[str, Any], key: str) -> int:
    value = params.get(key)
    if isinstance(value, bool):
        raise ShapeParseError(f"'{key}' must be a positive integer, got {value!r}")
    try:
        number = float(value)
        whole = number == int(number)
    except (TypeError, ValueError, OverflowError):
        raise ShapeParseError(f"'{key}' must be a positive integer, got {value!r}")
    if not whole or number <= 0:
        raise ShapeParseError(f"'{key}' must be a positive integer, got {value!r}")
    return int(number)


def format_value(value: Any) -> str:
    """Render a parameter as Python source text."""
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, float) and value.is_integer() and abs(value) >= 1:
        return str(int(value))
    return str(value)


def compare_text(value: Any) -> str:
    """Text used by template comparisons; booleans compare as "true"/"false"."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
