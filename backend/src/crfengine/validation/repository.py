"""Rule repository: loads, merges, caches and edits a form's rules."""

import logging
from typing import Any, Protocol

from crfengine.errors import CrfEngineError, PersistenceError
from crfengine.validation.sources import (
    RuleLoader,
    RuleSource,
    merge_rule_sources,
    rule_source_for_id,
)
from crfengine.validation.types import OperationResult, RuleType, ValidationRule

logger = logging.getLogger(__name__)


class RuleStore(Protocol):
    """Writes for custom rules. Implementations raise PersistenceError."""

    def get_rule(self, rule_id: int) -> ValidationRule | None:
        ...

    def insert_rule(self, rule: ValidationRule, actor_id: int | None) -> int:
        ...

    def update_rule(self, rule: ValidationRule, actor_id: int | None) -> None:
        ...

    def delete_rule(self, rule_id: int) -> None:
        ...

    def set_rule_active(self, rule_id: int, active: bool, actor_id: int | None) -> None:
        ...

    def rule_in_use(self, rule_id: int) -> bool:
        """Whether history (e.g. discrepancy notes) references the rule."""
        ...

    def propagate_to_item_metadata(self, rule: ValidationRule) -> None:
        ...


class RuleRepository:
    """Rules for a form, merged across sources.

    Example:
        repo = RuleRepository(store_sources(store), store)
        rules = repo.get_rules_for_form(42)
        repo.create_rule({"formId": 42, "ruleType": "required", "fieldPath": "age"})
    """

    def __init__(
        self,
        sources: list[tuple[RuleSource, RuleLoader]],
        store: RuleStore | None = None,
        cache_enabled: bool = True,
    ):
        self._sources = sources
        self._store = store
        self._cache_enabled = cache_enabled
        self._cache: dict[int, list[ValidationRule]] = {}

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_rules_for_form(self, form_id: int, refresh: bool = False) -> list[ValidationRule]:
        """All rules for a form, deduplicated by (field_path, rule_type).

        A source that fails is logged and skipped; the others still count.
        """
        if self._cache_enabled and not refresh and form_id in self._cache:
            return list(self._cache[form_id])

        loaded: list[tuple[RuleSource, list[ValidationRule]]] = []
        for source, loader in self._sources:
            try:
                loaded.append((source, loader(form_id)))
            except CrfEngineError as e:
                logger.warning(
                    "Rule source %s unavailable for form %s: %s", source.value, form_id, e
                )
            except Exception:
                # Loaders may be arbitrary collaborators
                logger.exception(
                    "Rule source %s failed unexpectedly for form %s", source.value, form_id
                )

        rules = merge_rule_sources(loaded)
        if self._cache_enabled:
            self._cache[form_id] = rules
        return list(rules)

    get_rules_for_crf = get_rules_for_form

    def get_rule(self, rule_id: int) -> ValidationRule | None:
        if self._store is None:
            return None
        return self._store.get_rule(rule_id)

    def invalidate(self, form_id: int | None = None) -> None:
        """Drop cached rules for one form, or for all forms."""
        if form_id is None:
            self._cache.clear()
        else:
            self._cache.pop(form_id, None)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create_rule(
        self, data: dict[str, Any] | ValidationRule, actor_id: int | None = None
    ) -> OperationResult:
        rule = data if isinstance(data, ValidationRule) else ValidationRule.from_dict(data)
        problem = _rule_problem(rule)
        if problem:
            return OperationResult(False, problem)
        if self._store is None:
            return OperationResult(False, "No rule store configured")

        logger.info("Creating %s rule for form %s field %s", rule.rule_type, rule.form_id, rule.field_path)
        try:
            rule_id = self._store.insert_rule(rule.with_changes(id=None), actor_id)
            if rule.item_id is not None and _propagates(rule):
                self._store.propagate_to_item_metadata(rule)
        except PersistenceError as e:
            logger.error("Create rule failed for form %s: %s", rule.form_id, e)
            return OperationResult(False, str(e))
        finally:
            self.invalidate(rule.form_id)

        return OperationResult(True, "Rule created", rule_id)

    def update_rule(
        self, rule_id: int, changes: dict[str, Any], actor_id: int | None = None
    ) -> OperationResult:
        existing, failure = self._editable(rule_id)
        if failure:
            return failure

        merged = existing.to_dict()
        merged.update(changes)
        merged["id"] = rule_id
        updated = ValidationRule.from_dict(merged)
        problem = _rule_problem(updated)
        if problem:
            return OperationResult(False, problem, rule_id)

        logger.info("Updating rule %s", rule_id)
        try:
            self._store.update_rule(updated, actor_id)
        except PersistenceError as e:
            logger.error("Update rule %s failed: %s", rule_id, e)
            return OperationResult(False, str(e), rule_id)
        finally:
            self.invalidate(existing.form_id)
            self.invalidate(updated.form_id)

        return OperationResult(True, "Rule updated", rule_id)

    def delete_rule(self, rule_id: int, actor_id: int | None = None) -> OperationResult:
        """Delete a rule, or retire it when history still references it."""
        existing, failure = self._editable(rule_id)
        if failure:
            return failure

        try:
            if self._store.rule_in_use(rule_id):
                logger.info("Rule %s is referenced by history, deactivating instead", rule_id)
                self._store.set_rule_active(rule_id, False, actor_id)
                return OperationResult(True, "Rule is referenced by history and was deactivated", rule_id)
            logger.info("Deleting rule %s", rule_id)
            self._store.delete_rule(rule_id)
        except PersistenceError as e:
            logger.error("Delete rule %s failed: %s", rule_id, e)
            return OperationResult(False, str(e), rule_id)
        finally:
            self.invalidate(existing.form_id)

        return OperationResult(True, "Rule deleted", rule_id)

    def toggle_rule(self, rule_id: int, active: bool, actor_id: int | None = None) -> OperationResult:
        existing, failure = self._editable(rule_id)
        if failure:
            return failure

        try:
            self._store.set_rule_active(rule_id, active, actor_id)
        except PersistenceError as e:
            logger.error("Toggle rule %s failed: %s", rule_id, e)
            return OperationResult(False, str(e), rule_id)
        finally:
            self.invalidate(existing.form_id)

        return OperationResult(True, "Rule activated" if active else "Rule deactivated", rule_id)

    def _editable(self, rule_id: int) -> tuple[ValidationRule | None, OperationResult | None]:
        source = rule_source_for_id(rule_id)
        if source == RuleSource.NATIVE:
            return None, OperationResult(False, "Native rules are read-only", rule_id)
        if source == RuleSource.ITEM_METADATA:
            return None, OperationResult(
                False, "Item metadata rules are edited on the item definition", rule_id
            )
        if self._store is None:
            return None, OperationResult(False, "No rule store configured", rule_id)
        try:
            existing = self._store.get_rule(rule_id)
        except PersistenceError as e:
            logger.error("Reading rule %s failed: %s", rule_id, e)
            return None, OperationResult(False, str(e), rule_id)
        if existing is None:
            return None, OperationResult(False, f"Rule {rule_id} not found", rule_id)
        return existing, None


def _rule_problem(rule: ValidationRule) -> str | None:
    if rule.form_id is None:
        return "formId is required"
    if not rule.rule_type:
        return "ruleType is required"
    if not rule.field_path:
        return "fieldPath is required"
    return None


def _propagates(rule: ValidationRule) -> bool:
    kind = rule.kind
    return kind == RuleType.REQUIRED or (kind == RuleType.FORMAT and bool(rule.pattern))
