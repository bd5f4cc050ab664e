"""Validation orchestration for crfengine.

This module provides the service that runs a form's rules against submitted
data:
1. ValidationOrchestrator: loads rules, matches them to fields, evaluates
   them and splits failures into errors and warnings
2. QueryService: the collaborator asked to open a query for a violation
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from crfengine.validation.matching import field_matches, resolve_field_value
from crfengine.validation.repository import RuleRepository
from crfengine.validation.rules import test_rule_directly
from crfengine.validation.types import (
    RuleType,
    Severity,
    ValidationOutcome,
    ValidationRule,
    Violation,
)

logger = logging.getLogger(__name__)


class QueryService(Protocol):
    """Protocol for the query / discrepancy-note collaborator."""

    def open_query(
        self,
        form_instance_id: int,
        field_path: str,
        message: str,
        severity: str,
        rule_id: int | None = None,
    ) -> int | None:
        """Open a query against a field value.

        Returns:
            The query id, or None if no query was opened
        """
        ...


class ValidationOrchestrator:
    """Runs all applicable rules for a form and aggregates the results.

    Example:
        orchestrator = ValidationOrchestrator(repository, query_service)
        outcome = orchestrator.validate_form_data(42, {"age": "17"})
        if not outcome.valid:
            ...
    """

    def __init__(
        self,
        repository: RuleRepository,
        query_service: QueryService | None = None,
    ):
        self.repository = repository
        self.query_service = query_service

    def validate_form_data(
        self,
        form_id: int,
        data: Mapping[str, Any],
        create_queries: bool = False,
        form_instance_id: int | None = None,
        known_item_ids: Iterable[int] | None = None,
    ) -> ValidationOutcome:
        """Validate a whole form payload.

        Rules whose field is not in the payload are skipped (partial saves),
        except required rules for items listed in ``known_item_ids``: those
        fields belong to the form but were not submitted, so they are checked
        as empty.

        Args:
            form_id: Form definition whose rules apply
            data: Submitted values, flat or nested
            create_queries: Open a query for every violation
            form_instance_id: Form instance the queries are raised against
            known_item_ids: Items of the form, for missing required fields

        Returns:
            ValidationOutcome with errors and warnings in rule order
        """
        known = set(known_item_ids or ())
        checked: list[tuple[ValidationRule, Any]] = []

        for rule in self._active_rules(form_id):
            found, value = resolve_field_value(data, rule.field_path)
            if not found:
                if rule.kind == RuleType.REQUIRED and rule.item_id in known:
                    value = None
                else:
                    continue
            checked.append((rule, value))

        return self._run(checked, data, create_queries, form_instance_id)

    def validate_field_change(
        self,
        form_id: int,
        field_path: str,
        value: Any,
        full_context: Mapping[str, Any] | None = None,
        create_queries: bool = False,
        form_instance_id: int | None = None,
    ) -> ValidationOutcome:
        """Validate one changed field, using the rest of the form for references."""
        context = dict(full_context or {})
        context[field_path] = value

        checked = [
            (rule, value)
            for rule in self._active_rules(form_id)
            if field_matches(rule.field_path, field_path)
        ]
        return self._run(checked, context, create_queries, form_instance_id)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _active_rules(self, form_id: int) -> list[ValidationRule]:
        return [rule for rule in self.repository.get_rules_for_form(form_id) if rule.active]

    def _run(
        self,
        checked: list[tuple[ValidationRule, Any]],
        context: Mapping[str, Any],
        create_queries: bool,
        form_instance_id: int | None,
    ) -> ValidationOutcome:
        errors: list[Violation] = []
        warnings: list[Violation] = []

        for rule, value in checked:
            check = test_rule_directly(rule, value, context)
            if check.valid:
                continue

            violation = Violation(
                field_path=rule.field_path,
                rule_id=rule.id,
                message=rule.message_for(rule.severity),
                severity=rule.severity,
            )
            if rule.severity == Severity.WARNING:
                warnings.append(violation)
            else:
                errors.append(violation)

        outcome = ValidationOutcome(valid=not errors, errors=errors, warnings=warnings)

        if create_queries and (errors or warnings):
            outcome.queries_created = self._open_queries(errors + warnings, form_instance_id)

        return outcome

    def _open_queries(self, violations: list[Violation], form_instance_id: int | None) -> int:
        if self.query_service is None:
            logger.warning("Query creation requested but no query service is configured")
            return 0
        if form_instance_id is None:
            logger.warning("Query creation requested without a form instance id")
            return 0

        created = 0
        for violation in violations:
            try:
                query_id = self.query_service.open_query(
                    form_instance_id,
                    violation.field_path,
                    violation.message,
                    violation.severity.value,
                    rule_id=violation.rule_id,
                )
            except Exception:
                logger.exception(
                    "Opening query for %s on form instance %s failed",
                    violation.field_path, form_instance_id,
                )
                continue
            if query_id is not None:
                created += 1
        return created
