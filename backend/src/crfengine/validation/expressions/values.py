"""Value coercion shared by the expression evaluator, the built-in functions
and the rule evaluator.

Form data arrives mostly as strings, so a string that parses as a finite
number is treated as a number wherever a comparison or numeric test needs one.
"""

import math
from decimal import Decimal
from typing import Any


def to_number(value: Any) -> float | None:
    """Return the numeric reading of ``value``, or None if it has none.

    Booleans are not numbers here; ``ISNUMBER(TRUE)`` is false. Neither are
    values beyond float range, such as a 400-digit integer or ``"1e400"``.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            number = float(value)
        except OverflowError:
            return None
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def is_blank(value: Any) -> bool:
    """None, an empty or whitespace-only string, or an empty collection."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def to_text(value: Any) -> str:
    """Text form of a value as a spreadsheet would display it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def to_bool(value: Any) -> bool:
    """Truthiness used by logical operators and functions."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("false", "no", "0", ""):
            return False
        return True
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def result_to_valid(result: Any) -> bool:
    """Read an expression result as a pass/fail verdict.

    Booleans are taken as-is, numbers pass when non-zero, the strings
    "true"/"yes" and "false"/"no" are read as such, and any other non-null
    result passes.
    """
    if isinstance(result, bool):
        return result
    if isinstance(result, (int, float, Decimal)):
        return result != 0
    if isinstance(result, str):
        lowered = result.strip().lower()
        if lowered in ("true", "yes"):
            return True
        if lowered in ("false", "no"):
            return False
    return result is not None
