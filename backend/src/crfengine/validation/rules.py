"""Evaluation of a single validation rule against a single value.

``test_rule_directly`` is pure: no I/O, no caller data mutated. It backs the
orchestrator and the "test this rule" preview used by rule authors.

Dispatch is a table keyed by RuleType. Every member must have a handler;
importing this module fails otherwise, so a new rule kind cannot be added
without deciding how it is evaluated.
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable

from crfengine.validation.expressions import evaluate_condition, evaluate_formula
from crfengine.validation.expressions.values import to_number
from crfengine.validation.matching import resolve_field_value
from crfengine.validation.types import RuleCheck, RuleType, ValidationRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FormatType:
    """A named format a rule author picks instead of writing a regex."""

    key: str
    label: str
    pattern: str
    example: str


FORMAT_TYPES: dict[str, FormatType] = {
    f.key: f
    for f in [
        FormatType("email", "Email address", r"^[^\s@]+@[^\s@]+\.[^\s@]+$", "name@example.com"),
        FormatType("letters_only", "Letters only", r"^[A-Za-z\s]+$", "Smith"),
        FormatType("numbers_only", "Numbers only", r"^\d+$", "12345"),
        FormatType("alphanumeric", "Letters and numbers", r"^[A-Za-z0-9]+$", "AB123"),
        FormatType("date_iso", "Date (YYYY-MM-DD)", r"^\d{4}-\d{2}-\d{2}$", "2024-01-31"),
        FormatType("phone", "Phone number", r"^\+?[\d\s\-().]{7,20}$", "+1 555-123-4567"),
    ]
}

CUSTOM_REGEX = "custom_regex"

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_GROUPED_NUMBER = re.compile(r"^\d[\d,.]*$")


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def is_multi_value(value: Any) -> bool:
    """Checkbox / multi-select answers: lists, or comma separated option codes.

    ``"1,234.56"`` and ``"2024-01-01, 10:00"`` are single values.
    """
    if isinstance(value, (list, tuple)):
        return True
    return (
        isinstance(value, str)
        and "," in value
        and not _GROUPED_NUMBER.match(value)
        and not _ISO_DATE.match(value)
    )


def _parse_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not _ISO_DATE.match(value):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def compare_values(left: Any, right: Any, operator: str) -> bool | None:
    """Compare two field values with a consistency operator.

    ISO dates compare as dates and numeric strings as numbers. Ordering
    against a missing value is false. Returns None for an unknown operator.
    """
    left_date, right_date = _parse_date(left), _parse_date(right)
    if left_date is not None and right_date is not None:
        left, right = left_date, right_date
    else:
        left_num, right_num = to_number(left), to_number(right)
        if left_num is not None and right_num is not None:
            left, right = left_num, right_num

    if operator in ("==", "==="):
        return left == right
    if operator in ("!=", "!=="):
        return left != right
    if operator not in (">", ">=", "<", "<="):
        return None

    if left is None or right is None:
        return False
    try:
        if operator == ">":
            return left > right
        if operator == ">=":
            return left >= right
        if operator == "<":
            return left < right
        return left <= right
    except TypeError:
        return False


# -----------------------------------------------------------------------------
# Handlers
# -----------------------------------------------------------------------------

Handler = Callable[[ValidationRule, Any, Mapping[str, Any]], RuleCheck]


def _check_required(rule: ValidationRule, value: Any, context: Mapping[str, Any]) -> RuleCheck:
    # 0, False and [] are answers; only a missing value or "" is not
    if _is_empty(value):
        return RuleCheck.failed(f"{rule.field_path} is required")
    return RuleCheck.passed()


def _check_range(rule: ValidationRule, value: Any, context: Mapping[str, Any]) -> RuleCheck:
    if _is_empty(value):
        return RuleCheck.skipped("empty value")
    if is_multi_value(value):
        return RuleCheck.skipped("multi-value field")

    if isinstance(value, str) and _ISO_DATE.match(value):
        value_date = _parse_date(value)
        if value_date is None:
            return RuleCheck.failed(f"{value!r} is not a valid date")
        min_date, max_date = _parse_date(rule.min_value), _parse_date(rule.max_value)
        if min_date is not None and value_date < min_date:
            return RuleCheck.failed(f"{value} is before {rule.min_value}")
        if max_date is not None and value_date > max_date:
            return RuleCheck.failed(f"{value} is after {rule.max_value}")
        return RuleCheck.passed()

    number = to_number(value)
    if number is None:
        return RuleCheck.failed(f"{value!r} is not a number")

    minimum, maximum = to_number(rule.min_value), to_number(rule.max_value)
    if minimum is not None and number < minimum:
        return RuleCheck.failed(f"{number:g} is below {minimum:g}")
    if maximum is not None and number > maximum:
        return RuleCheck.failed(f"{number:g} is above {maximum:g}")
    return RuleCheck.passed()


def resolve_pattern(rule: ValidationRule) -> str | None:
    """A known format type overrides the stored pattern."""
    if rule.format_type and rule.format_type != CUSTOM_REGEX:
        format_type = FORMAT_TYPES.get(rule.format_type)
        if format_type is not None:
            return format_type.pattern
    return rule.pattern


def _check_format(rule: ValidationRule, value: Any, context: Mapping[str, Any]) -> RuleCheck:
    pattern = resolve_pattern(rule)
    if not pattern:
        return RuleCheck.skipped("no pattern configured")
    if _is_empty(value):
        return RuleCheck.skipped("empty value")
    if is_multi_value(value):
        return RuleCheck.skipped("multi-value field")

    if pattern.startswith("="):
        return evaluate_formula(pattern, value, context, rule.id)

    try:
        regex = re.compile(pattern)
    except re.error as e:
        logger.warning(
            "Rule %s has an invalid pattern %r, treating as valid: %s", rule.id, pattern, e
        )
        return RuleCheck.fail_open(f"invalid pattern: {e}")

    text = str(value).lower() if isinstance(value, bool) else str(value)
    if regex.search(text):
        return RuleCheck.passed()
    return RuleCheck.failed(f"{text!r} does not match {pattern!r}")


def _check_consistency(rule: ValidationRule, value: Any, context: Mapping[str, Any]) -> RuleCheck:
    if _is_empty(value):
        return RuleCheck.skipped("empty value")

    operator = rule.operator or "=="
    _, other = resolve_field_value(context, rule.compare_field_path or "")
    result = compare_values(value, other, operator)
    if result is None:
        logger.warning("Rule %s has an unknown operator %r, treating as valid", rule.id, operator)
        return RuleCheck.fail_open(f"unknown operator {operator!r}")
    return RuleCheck.verdict(
        result, f"{value!r} {operator} {rule.compare_field_path}={other!r} is false"
    )


def _check_formula(rule: ValidationRule, value: Any, context: Mapping[str, Any]) -> RuleCheck:
    expression = rule.pattern or rule.custom_expression
    if not expression:
        return RuleCheck.skipped("no expression configured")
    return evaluate_formula(expression, value, context, rule.id)


def _check_business_logic(rule: ValidationRule, value: Any, context: Mapping[str, Any]) -> RuleCheck:
    if not rule.custom_expression:
        return RuleCheck.skipped("no expression configured")
    return evaluate_condition(rule.custom_expression, value, context, rule.id)


def _check_cross_form(rule: ValidationRule, value: Any, context: Mapping[str, Any]) -> RuleCheck:
    if not rule.custom_expression:
        return RuleCheck.skipped("no expression configured")
    return evaluate_formula(rule.custom_expression, value, context, rule.id)


def _not_evaluated(rule: ValidationRule, value: Any, context: Mapping[str, Any]) -> RuleCheck:
    return RuleCheck.not_evaluated(f"{rule.rule_type} rules are dispatched elsewhere")


_HANDLERS: dict[RuleType, Handler] = {
    RuleType.REQUIRED: _check_required,
    RuleType.RANGE: _check_range,
    RuleType.FORMAT: _check_format,
    RuleType.CONSISTENCY: _check_consistency,
    RuleType.FORMULA: _check_formula,
    RuleType.BUSINESS_LOGIC: _check_business_logic,
    RuleType.CROSS_FORM: _check_cross_form,
    RuleType.NOTIFICATION: _not_evaluated,
    RuleType.CALCULATION: _not_evaluated,
}

_unhandled = set(RuleType) - set(_HANDLERS)
if _unhandled:
    raise RuntimeError(
        "No rule handler for: " + ", ".join(sorted(t.value for t in _unhandled))
    )


def test_rule_directly(
    rule: ValidationRule,
    value: Any,
    context: Mapping[str, Any] | None = None,
) -> RuleCheck:
    """Evaluate one rule against one value.

    Args:
        rule: The rule to apply
        value: The value under test
        context: The other fields of the form, for cross-field references

    Returns:
        RuleCheck; ``valid`` is False only for a definite failure
    """
    kind = rule.kind
    if kind is None:
        logger.warning(
            "Rule %s has unknown type %r, treating as valid", rule.id, rule.rule_type
        )
        return RuleCheck.fail_open(f"unknown rule type {rule.rule_type!r}")
    return _HANDLERS[kind](rule, value, context or {})


# Not a test function, despite the name
test_rule_directly.__test__ = False  # type: ignore[attr-defined]
