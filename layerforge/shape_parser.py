"""
Shape and tuple parsing.

Shapes travel through the editor as tuple strings such as "(28, 28, 1)" or
"(784,)". Kernel sizes, strides and scale factors use the same notation or a
bare number that stands for every axis.
"""

import math
import re
from typing import Any, List, Sequence, Tuple

from layerforge.errors import ShapeParseError

Shape = List[int]

_DIM = re.compile(r"^\d+$")


def parse_shape(text: Any) -> Shape:
    """Parse "(n1, n2, ...)" into a list of non-negative ints.

    Accepts the empty tuple "()" and the single element form "(n,)".
    """
    if not isinstance(text, str):
        raise ShapeParseError(f"Shape must be a string like \"(28, 28, 1)\", got {text!r}")

    cleaned = text.strip()
    if not (cleaned.startswith("(") and cleaned.endswith(")")):
        raise ShapeParseError(
            f"Invalid shape format: {text}. Expected format like \"(784,)\" or \"(28, 28, 1)\""
        )

    content = cleaned[1:-1].strip()
    if not content:
        return []

    parts = [p.strip() for p in content.split(",")]
    # "(784,)" leaves one empty trailing part
    if len(parts) > 1 and parts[-1] == "":
        parts = parts[:-1]

    dims = []
    for part in parts:
        if not _DIM.match(part):
            raise ShapeParseError(f"Invalid dimension {part!r} in shape {text}")
        dims.append(int(part))
    return dims


def format_shape(shape: Sequence[int]) -> str:
    if len(shape) == 0:
        return "()"
    if len(shape) == 1:
        return f"({shape[0]},)"
    return "(" + ", ".join(str(d) for d in shape) + ")"


def is_valid_shape_string(text: Any) -> bool:
    try:
        parse_shape(text)
    except ShapeParseError:
        return False
    return True


def parse_tuple_or_number(value: Any, length: int = 2, minimum: int = 1) -> Tuple[int, ...]:
    """Parse a per-axis parameter: 3, "3", "(3,3)", "(3, 3)" or [3, 3].

    A single number is repeated for every axis. Values must be at least
    `minimum` (positive by default).
    """
    if isinstance(value, bool):
        raise ShapeParseError(f"Expected a number or a {length}-tuple, got {value!r}")

    if isinstance(value, (int, float)):
        dims = [value]
    elif isinstance(value, (list, tuple)):
        dims = list(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ShapeParseError("Expected a number or a tuple, got an empty string")
        if text.startswith("("):
            dims = parse_shape(text)
        elif _DIM.match(text):
            dims = [int(text)]
        else:
            raise ShapeParseError(f"Expected a number or a {length}-tuple, got {value!r}")
    else:
        raise ShapeParseError(f"Expected a number or a {length}-tuple, got {value!r}")

    if len(dims) == 1:
        dims = dims * length
    if len(dims) != length:
        raise ShapeParseError(f"Expected {length} values, got {len(dims)} in {value!r}")

    kind = "positive" if minimum > 0 else "non-negative"
    result = []
    for d in dims:
        if isinstance(d, bool) or not isinstance(d, (int, float)) or not math.isfinite(d):
            raise ShapeParseError(f"Expected {kind} integers, got {value!r}")
        if int(d) != d or d < minimum:
            raise ShapeParseError(f"Expected {kind} integers, got {value!r}")
        result.append(int(d))
    return tuple(result)


_PAIRS = re.compile(r"^\(\s*\(\s*(\d+)\s*,\s*(\d+)\s*\)\s*,\s*\(\s*(\d+)\s*,\s*(\d+)\s*\)\s*,?\s*\)$")


def parse_pairs(value: Any) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """Parse 2D padding or cropping amounts into ((top, bottom), (left, right)).

    Accepts a number (every side), "(rows, cols)" (symmetric per axis) or
    "((top, bottom), (left, right))". Zero is allowed.
    """
    if isinstance(value, str):
        match = _PAIRS.match(value.strip())
        if match:
            top, bottom, left, right = (int(g) for g in match.groups())
            return (top, bottom), (left, right)
    elif isinstance(value, (list, tuple)) and len(value) == 2 and all(
            isinstance(v, (list, tuple)) for v in value):
        top, bottom = parse_tuple_or_number(value[0], minimum=0)
        left, right = parse_tuple_or_number(value[1], minimum=0)
        return (top, bottom), (left, right)

    rows, cols = parse_tuple_or_number(value, minimum=0)
    return (rows, rows), (cols, cols)
