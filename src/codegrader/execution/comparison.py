"""Input serialization and tolerant output comparison."""

from __future__ import annotations

import json
from typing import Any


def serialize_input(value: Any) -> str | None:
    """Convert a test input into the text written to standard input.

    Strings pass through unchanged, None means no input at all and anything
    else is JSON-encoded.
    """

    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value)


def parse_actual_output(raw_output: str) -> Any:
    """Return the value a program's output is judged by.

    Trailing whitespace is trimmed. Output that looks structured (starts with
    ``{`` or ``[``) is decoded as JSON; when decoding fails the trimmed text is
    returned instead.
    """

    text = raw_output.rstrip()
    if text.startswith(("{", "[")):
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text


def outputs_match(raw_output: str, expected: Any) -> tuple[bool, Any]:
    """Judge program output against an expected value.

    Args:
        raw_output: Captured standard output.
        expected: Expected value, either text or a JSON-compatible structure.

    Returns:
        Tuple of (passed, actual value used in the comparison).
    """

    actual = parse_actual_output(raw_output)
    return structurally_equal(actual, expected), actual


def structurally_equal(left: Any, right: Any) -> bool:
    """Deep equality with JSON semantics.

    Mapping key order is irrelevant, lists and tuples are interchangeable and
    booleans never equal numbers (``True`` is not ``1``).
    """

    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if isinstance(left, dict) and isinstance(right, dict):
        if left.keys() != right.keys():
            return False
        return all(structurally_equal(left[key], right[key]) for key in left)
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        if len(left) != len(right):
            return False
        return all(structurally_equal(a, b) for a, b in zip(left, right))
    if type(left) is not type(right):
        return False
    return bool(left == right)
