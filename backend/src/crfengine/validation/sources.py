"""Rule sources and the precedence merge between them.

A form's rules come from three independent places, queried in this order:

1. custom: rules authored for the engine (``validation_rules``)
2. item_metadata: regex / required flags on item definitions
3. native: the host system's rule / rule_action tables

``merge_rule_sources`` is the one place precedence is decided: rules are keyed
by ``(field_path, rule_type)`` and the first source to claim a key wins.
"""

from collections.abc import Iterable
from enum import Enum
from typing import Any, Callable, Protocol

from crfengine.validation.expressions.parser import FORMULA_PREFIX
from crfengine.validation.types import RuleType, Severity, ValidationRule

# Synthetic id ranges keep merged rules distinct from custom rule ids.
# Native ids must stay below ITEM_METADATA_RULE_ID_OFFSET - NATIVE_RULE_ID_OFFSET.
NATIVE_RULE_ID_OFFSET = 100000
ITEM_METADATA_RULE_ID_OFFSET = 1000000000

NATIVE_ACTION_RULE_TYPES: dict[str, RuleType] = {
    "DISCREPANCY_NRS": RuleType.BUSINESS_LOGIC,
    "DISCREPANCY_RS": RuleType.BUSINESS_LOGIC,
    "EMAIL": RuleType.NOTIFICATION,
    "HIDE": RuleType.CONSISTENCY,
    "SHOW": RuleType.CONSISTENCY,
    "INSERT": RuleType.CALCULATION,
    "RANDOMIZATION": RuleType.BUSINESS_LOGIC,
    "STRATIFICATION_FACTOR": RuleType.CALCULATION,
}

# Non-resolvable discrepancies are soft edits
_WARNING_ACTIONS = {"DISCREPANCY_NRS"}


class RuleSource(Enum):
    """Where a rule came from. Listed in precedence order."""

    CUSTOM = "custom"
    ITEM_METADATA = "item_metadata"
    NATIVE = "native"


RuleLoader = Callable[[int], list[ValidationRule]]


class RuleSourceStore(Protocol):
    """What a persistence layer provides to feed the rule repository."""

    def load_custom_rules(self, form_id: int) -> list[ValidationRule]:
        ...

    def load_item_metadata_rules(self, form_id: int) -> list[ValidationRule]:
        ...

    def load_native_rules(self, form_id: int) -> list[ValidationRule]:
        ...


def store_sources(store: RuleSourceStore) -> list[tuple[RuleSource, RuleLoader]]:
    """The three sources of a store, in precedence order."""
    return [
        (RuleSource.CUSTOM, store.load_custom_rules),
        (RuleSource.ITEM_METADATA, store.load_item_metadata_rules),
        (RuleSource.NATIVE, store.load_native_rules),
    ]


def merge_rule_sources(
    loaded: Iterable[tuple[RuleSource, list[ValidationRule]]],
) -> list[ValidationRule]:
    """Merge per-source rule lists, first writer wins per (field_path, rule_type).

    Sources must be given in precedence order. The losing rule is dropped, so
    one field never gets two messages for the same kind of check from two
    configuration systems. Order of the result follows the input.
    """
    merged: list[ValidationRule] = []
    seen: set[tuple[str, str]] = set()
    for _source, rules in loaded:
        for rule in rules:
            if rule.dedup_key in seen:
                continue
            seen.add(rule.dedup_key)
            merged.append(rule)
    return merged


def native_rule_type(action_type: str | None) -> RuleType:
    """Map a native rule action to the rule kind it behaves as."""
    return NATIVE_ACTION_RULE_TYPES.get((action_type or "").upper(), RuleType.BUSINESS_LOGIC)


def native_rule_from_row(row: dict[str, Any]) -> ValidationRule:
    """Build a rule from a joined native rule / expression / action row."""
    action_type = (row.get("action_type") or "").upper()
    warning = action_type in _WARNING_ACTIONS
    message = row.get("action_message") or "Validation failed"
    return ValidationRule(
        id=int(row["id"]) + NATIVE_RULE_ID_OFFSET,
        form_id=row.get("form_id"),
        name=row.get("name") or "Native rule",
        description=row.get("description") or "",
        rule_type=native_rule_type(action_type).value,
        field_path=row.get("target") or "",
        severity=Severity.WARNING if warning else Severity.ERROR,
        error_message=message,
        warning_message=message if warning else None,
        custom_expression=row.get("expression"),
        active=row.get("enabled") is None or bool(row["enabled"]),
        item_id=row.get("item_id"),
    )


def item_metadata_rules_from_row(row: dict[str, Any]) -> list[ValidationRule]:
    """Rules implied by one item's metadata.

    A ``regexp`` starting with ``=FORMULA:`` is a formula rule, any other
    ``regexp`` a format rule; a required flag adds a required rule.
    """
    rules: list[ValidationRule] = []
    item_id = row.get("item_id")
    rule_id = item_metadata_rule_id(item_id)
    field_path = row.get("name") or ""
    regexp = row.get("regexp")

    if regexp:
        is_formula = regexp.upper().startswith(FORMULA_PREFIX)
        rules.append(
            ValidationRule(
                id=rule_id,
                form_id=row.get("form_id"),
                name=field_path,
                description=row.get("description") or "",
                rule_type=(RuleType.FORMULA if is_formula else RuleType.FORMAT).value,
                field_path=field_path,
                error_message=row.get("regexp_error_msg") or "Invalid format",
                pattern=regexp[len(FORMULA_PREFIX):] if is_formula else regexp,
                item_id=item_id,
            )
        )

    if row.get("required"):
        rules.append(
            ValidationRule(
                id=rule_id,
                form_id=row.get("form_id"),
                name=field_path,
                description=row.get("description") or "",
                rule_type=RuleType.REQUIRED.value,
                field_path=field_path,
                error_message=f"{field_path} is required",
                item_id=item_id,
            )
        )

    return rules


def item_metadata_rule_id(item_id: int | None) -> int | None:
    """Synthetic id of the rules an item's metadata implies."""
    if item_id is None:
        return None
    return int(item_id) + ITEM_METADATA_RULE_ID_OFFSET


def rule_source_for_id(rule_id: int) -> RuleSource:
    """Which source a merged rule id belongs to."""
    if rule_id >= ITEM_METADATA_RULE_ID_OFFSET:
        return RuleSource.ITEM_METADATA
    if rule_id >= NATIVE_RULE_ID_OFFSET:
        return RuleSource.NATIVE
    return RuleSource.CUSTOM
