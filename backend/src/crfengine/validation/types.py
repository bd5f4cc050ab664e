"""Core types for the crfengine validation system.

This module defines the rule model and the results exchanged between the
rule evaluator, the rule repository and the validation orchestrator:
- ValidationRule: one configured check against one field of a form
- RuleCheck: the verdict of evaluating one rule against one value
- Violation / ValidationOutcome: aggregated results for a form payload
- OperationResult: the result of a rule CRUD operation
"""

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any


class Severity(Enum):
    """Validation result severity.

    ERROR: Blocks the save operation (hard edit)
    WARNING: Allows save but may open a query (soft edit)
    """

    ERROR = "error"
    WARNING = "warning"

    @classmethod
    def parse(cls, value: "str | Severity | None") -> "Severity":
        if isinstance(value, Severity):
            return value
        if value and str(value).lower() == "warning":
            return cls.WARNING
        return cls.ERROR


class RuleType(Enum):
    """Kinds of validation rule.

    NOTIFICATION and CALCULATION come from native rule actions; they are
    recorded so rule listings are complete but never evaluated here.
    """

    REQUIRED = "required"
    RANGE = "range"
    FORMAT = "format"
    CONSISTENCY = "consistency"
    FORMULA = "formula"
    BUSINESS_LOGIC = "business_logic"
    CROSS_FORM = "cross_form"
    NOTIFICATION = "notification"
    CALCULATION = "calculation"

    @classmethod
    def parse(cls, value: str | None) -> "RuleType | None":
        """Return the member for a stored rule type, or None if unknown."""
        if not value:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class CheckOutcome(Enum):
    """How a single rule check reached its verdict."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"            # not applicable to this value (empty, multi-value)
    FAIL_OPEN = "fail_open"        # broken configuration, treated as passing
    NOT_EVALUATED = "not_evaluated"  # recorded rule kind this engine never runs


@dataclass(frozen=True)
class RuleCheck:
    """Verdict of one rule (or one expression) against one value.

    ``valid`` is what callers branch on; ``outcome`` and ``detail`` say why.
    """

    valid: bool
    outcome: CheckOutcome
    detail: str = ""

    @classmethod
    def passed(cls) -> "RuleCheck":
        return cls(True, CheckOutcome.PASSED)

    @classmethod
    def failed(cls, detail: str = "") -> "RuleCheck":
        return cls(False, CheckOutcome.FAILED, detail)

    @classmethod
    def verdict(cls, valid: bool, detail: str = "") -> "RuleCheck":
        return cls.passed() if valid else cls.failed(detail)

    @classmethod
    def skipped(cls, detail: str) -> "RuleCheck":
        return cls(True, CheckOutcome.SKIPPED, detail)

    @classmethod
    def fail_open(cls, detail: str) -> "RuleCheck":
        return cls(True, CheckOutcome.FAIL_OPEN, detail)

    @classmethod
    def not_evaluated(cls, detail: str) -> "RuleCheck":
        return cls(True, CheckOutcome.NOT_EVALUATED, detail)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"valid": self.valid, "outcome": self.outcome.value}
        if self.detail:
            result["detail"] = self.detail
        return result


# camelCase record keys accepted alongside the snake_case attribute names
_RECORD_KEYS = {
    "formId": "form_id",
    "crfId": "form_id",
    "ruleType": "rule_type",
    "fieldPath": "field_path",
    "errorMessage": "error_message",
    "warningMessage": "warning_message",
    "minValue": "min_value",
    "maxValue": "max_value",
    "formatType": "format_type",
    "compareFieldPath": "compare_field_path",
    "customExpression": "custom_expression",
    "itemId": "item_id",
}


@dataclass(frozen=True)
class ValidationRule:
    """A configured validation rule for one field of a form.

    Attributes:
        id: Rule id (native rules use ids offset into a reserved range)
        form_id: Owning form definition
        name: Short name shown to rule authors
        rule_type: Stored rule type; see ``kind`` for the parsed member
        field_path: Target field, dotted (``demographics.age``) or bare
        severity: ERROR or WARNING
        error_message: Message for a failing check
        warning_message: Message for a failing warning-severity check
        min_value / max_value: Inclusive range bounds (numbers or ISO dates)
        pattern: Regular expression, or a formula starting with ``=``
        format_type: Semantic format key that overrides ``pattern``
        operator / compare_field_path: Consistency comparison
        custom_expression: Formula or boolean expression
        active: Inactive rules are loaded but never evaluated
        item_id: Item the rule belongs to, used for metadata propagation
    """

    id: int | None
    form_id: int | None
    name: str
    rule_type: str
    field_path: str
    severity: Severity = Severity.ERROR
    description: str = ""
    error_message: str = ""
    warning_message: str | None = None
    min_value: float | str | None = None
    max_value: float | str | None = None
    pattern: str | None = None
    format_type: str | None = None
    operator: str | None = None
    compare_field_path: str | None = None
    custom_expression: str | None = None
    active: bool = True
    item_id: int | None = None

    @property
    def kind(self) -> RuleType | None:
        return RuleType.parse(self.rule_type)

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.field_path, self.rule_type)

    def message_for(self, severity: Severity) -> str:
        """Message for a failing check; warnings fall back to the error message."""
        if severity == Severity.WARNING and self.warning_message:
            return self.warning_message
        return self.error_message or f"{self.name or self.field_path} is invalid"

    def with_changes(self, **changes: Any) -> "ValidationRule":
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ValidationRule":
        """Create a ValidationRule from a record with snake_case or camelCase keys.

        When both spellings of a key are present the later one wins.
        """
        values: dict[str, Any] = {}
        names = {f.name for f in fields(cls)}
        for key, value in data.items():
            name = _RECORD_KEYS.get(key, key)
            if name in names:
                values[name] = value

        for bound in ("min_value", "max_value"):
            values[bound] = _coerce_bound(values.get(bound))

        return cls(
            id=_optional_int(values.get("id")),
            form_id=_optional_int(values.get("form_id")),
            name=values.get("name") or "",
            rule_type=str(values.get("rule_type") or "").strip().lower(),
            field_path=values.get("field_path") or "",
            severity=Severity.parse(values.get("severity")),
            description=values.get("description") or "",
            error_message=values.get("error_message") or "",
            warning_message=values.get("warning_message") or None,
            min_value=values["min_value"],
            max_value=values["max_value"],
            pattern=values.get("pattern") or None,
            format_type=values.get("format_type") or None,
            operator=values.get("operator") or None,
            compare_field_path=values.get("compare_field_path") or None,
            custom_expression=values.get("custom_expression") or None,
            active=values.get("active") is not False,
            item_id=_optional_int(values.get("item_id")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "formId": self.form_id,
            "name": self.name,
            "description": self.description,
            "ruleType": self.rule_type,
            "fieldPath": self.field_path,
            "severity": self.severity.value,
            "errorMessage": self.error_message,
            "warningMessage": self.warning_message,
            "minValue": self.min_value,
            "maxValue": self.max_value,
            "pattern": self.pattern,
            "formatType": self.format_type,
            "operator": self.operator,
            "compareFieldPath": self.compare_field_path,
            "customExpression": self.custom_expression,
            "active": self.active,
            "itemId": self.item_id,
        }


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _coerce_bound(value: Any) -> float | str | None:
    """Numeric bounds become floats; ISO date bounds stay strings."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return str(value)


@dataclass(frozen=True)
class Violation:
    """A failing rule in a validation pass."""

    field_path: str
    rule_id: int | None
    message: str
    severity: Severity

    def to_dict(self) -> dict[str, Any]:
        return {
            "fieldPath": self.field_path,
            "ruleId": self.rule_id,
            "message": self.message,
            "severity": self.severity.value,
        }


@dataclass
class ValidationOutcome:
    """Result of validating a form payload or a single changed field.

    Attributes:
        valid: True if no errors (warnings don't affect this)
        errors: ERROR severity violations, in rule order
        warnings: WARNING severity violations, in rule order
        queries_created: Number of queries actually opened for violations
    """

    valid: bool
    errors: list[Violation] = field(default_factory=list)
    warnings: list[Violation] = field(default_factory=list)
    queries_created: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "queriesCreated": self.queries_created,
        }


@dataclass(frozen=True)
class OperationResult:
    """Result of a rule create/update/delete/toggle."""

    success: bool
    message: str
    rule_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.rule_id is not None:
            result["ruleId"] = self.rule_id
        return result
