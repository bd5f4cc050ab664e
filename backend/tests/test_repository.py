"""Tests for the rule repository: source merging, caching and CRUD."""

import logging

import pytest

from crfengine.errors import PersistenceError, RuleSourceError
from crfengine.validation.repository import RuleRepository
from crfengine.validation.sources import (
    ITEM_METADATA_RULE_ID_OFFSET,
    NATIVE_RULE_ID_OFFSET,
    RuleSource,
    store_sources,
)
from crfengine.validation.types import RuleType, ValidationRule


def rule(rule_id, field_path, rule_type, **kwargs):
    return ValidationRule(
        id=rule_id, form_id=1, name="", field_path=field_path, rule_type=rule_type, **kwargs
    )


class CountingLoader:
    def __init__(self, rules=None, error=None):
        self.rules = rules or []
        self.error = error
        self.calls = 0

    def __call__(self, form_id):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.rules)


# =============================================================================
# Reads
# =============================================================================


class TestGetRulesForForm:
    def test_custom_beats_native(self):
        custom = rule(1, "age", "format", pattern="^custom$")
        native = rule(NATIVE_RULE_ID_OFFSET + 1, "age", "format", pattern="^native$")
        repo = RuleRepository([
            (RuleSource.CUSTOM, CountingLoader([custom])),
            (RuleSource.ITEM_METADATA, CountingLoader()),
            (RuleSource.NATIVE, CountingLoader([native])),
        ])
        rules = repo.get_rules_for_form(1)
        assert len(rules) == 1
        assert rules[0].pattern == "^custom$"

    def test_failing_source_is_skipped(self, caplog):
        custom = rule(1, "age", "required")
        repo = RuleRepository([
            (RuleSource.CUSTOM, CountingLoader([custom])),
            (RuleSource.NATIVE, CountingLoader(error=RuleSourceError("native", "no such table: rule"))),
        ])
        with caplog.at_level(logging.WARNING):
            rules = repo.get_rules_for_form(1)
        assert rules == [custom]
        assert "native" in caplog.text

    def test_unexpected_source_error_is_skipped(self, caplog):
        custom = rule(1, "age", "required")
        repo = RuleRepository([
            (RuleSource.CUSTOM, CountingLoader([custom])),
            (RuleSource.NATIVE, CountingLoader(error=ConnectionError("native collaborator down"))),
        ])
        with caplog.at_level(logging.ERROR):
            rules = repo.get_rules_for_form(1)
        assert rules == [custom]
        assert "native" in caplog.text
        assert "ConnectionError" in caplog.text

    def test_all_sources_failing_yields_no_rules(self):
        repo = RuleRepository([
            (RuleSource.CUSTOM, CountingLoader(error=RuleSourceError("custom", "down"))),
        ])
        assert repo.get_rules_for_form(1) == []

    def test_results_are_cached(self):
        loader = CountingLoader([rule(1, "age", "required")])
        repo = RuleRepository([(RuleSource.CUSTOM, loader)])
        repo.get_rules_for_form(1)
        repo.get_rules_for_form(1)
        assert loader.calls == 1

    def test_refresh_bypasses_cache(self):
        loader = CountingLoader([rule(1, "age", "required")])
        repo = RuleRepository([(RuleSource.CUSTOM, loader)])
        repo.get_rules_for_form(1)
        repo.get_rules_for_form(1, refresh=True)
        assert loader.calls == 2

    def test_cache_can_be_disabled(self):
        loader = CountingLoader([rule(1, "age", "required")])
        repo = RuleRepository([(RuleSource.CUSTOM, loader)], cache_enabled=False)
        repo.get_rules_for_form(1)
        repo.get_rules_for_form(1)
        assert loader.calls == 2

    def test_invalidate(self):
        loader = CountingLoader([rule(1, "age", "required")])
        repo = RuleRepository([(RuleSource.CUSTOM, loader)])
        repo.get_rules_for_form(1)
        repo.invalidate(1)
        repo.get_rules_for_form(1)
        assert loader.calls == 2

    def test_returned_list_is_a_copy(self):
        repo = RuleRepository([(RuleSource.CUSTOM, CountingLoader([rule(1, "age", "required")]))])
        repo.get_rules_for_form(1).clear()
        assert len(repo.get_rules_for_form(1)) == 1

    def test_crf_alias(self):
        repo = RuleRepository([(RuleSource.CUSTOM, CountingLoader([rule(1, "age", "required")]))])
        assert repo.get_rules_for_crf(1) == repo.get_rules_for_form(1)


# =============================================================================
# Store-backed reads
# =============================================================================


class TestSqlSources:
    def test_three_sources_merge(self, rule_store, native_tables):
        rule_store.insert_rule(rule(None, "age", "format", pattern="^custom$"), actor_id=1)
        rule_store.upsert_item(10, 1, "age", regexp="^item$", required=True)
        native_tables(1, 1, "age", "AND({value}>1)", "DISCREPANCY_RS", "native says no")
        native_tables(2, 1, "weight", "{value}>0", "DISCREPANCY_NRS", "check weight")

        repo = RuleRepository(store_sources(rule_store), rule_store)
        rules = repo.get_rules_for_form(1)

        by_key = {(r.field_path, r.rule_type): r for r in rules}
        assert by_key[("age", "format")].pattern == "^custom$"
        assert ("age", "required") in by_key
        assert by_key[("age", "business_logic")].id == NATIVE_RULE_ID_OFFSET + 1
        weight = by_key[("weight", "business_logic")]
        assert weight.severity.value == "warning"
        assert weight.warning_message == "check weight"
        assert len(rules) == 4

    def test_missing_native_tables_are_tolerated(self, rule_store):
        rule_store.insert_rule(rule(None, "age", "required"), actor_id=None)
        repo = RuleRepository(store_sources(rule_store), rule_store)
        rules = repo.get_rules_for_form(1)
        assert [r.rule_type for r in rules] == ["required"]

    def test_native_source_raises_rule_source_error(self, rule_store):
        with pytest.raises(RuleSourceError, match="native"):
            rule_store.load_native_rules(1)

    def test_item_rules_do_not_share_custom_ids(self, rule_store):
        custom_id = rule_store.insert_rule(rule(None, "weight", "required"), actor_id=None)
        rule_store.upsert_item(custom_id, 1, "age", regexp="^\\d+$", required=True)
        repo = RuleRepository(store_sources(rule_store), rule_store)
        ids = {(r.field_path, r.rule_type): r.id for r in repo.get_rules_for_form(1)}
        assert ids[("weight", "required")] == custom_id
        assert ids[("age", "format")] == ITEM_METADATA_RULE_ID_OFFSET + custom_id
        assert ids[("age", "required")] == ITEM_METADATA_RULE_ID_OFFSET + custom_id

    def test_disabled_native_rules_load_inactive(self, rule_store, native_tables):
        native_tables(1, 1, "age", "{value}>1", "DISCREPANCY_RS", "on")
        native_tables(2, 1, "weight", "{value}>0", "DISCREPANCY_RS", "off", enabled=False)
        active = {r.field_path: r.active for r in rule_store.load_native_rules(1)}
        assert active == {"age": True, "weight": False}

    def test_item_formula_prefix(self, rule_store):
        rule_store.upsert_item(11, 1, "age", regexp="=FORMULA:AND({value}>=18,{value}<=120)")
        rules = rule_store.load_item_metadata_rules(1)
        assert rules[0].kind == RuleType.FORMULA


# =============================================================================
# Writes
# =============================================================================


@pytest.fixture
def repo(rule_store):
    return RuleRepository(store_sources(rule_store), rule_store)


class TestCreateRule:
    def test_create_from_camel_case_record(self, repo):
        result = repo.create_rule(
            {"formId": 1, "ruleType": "range", "fieldPath": "age", "minValue": 0, "maxValue": 100},
            actor_id=3,
        )
        assert result.success
        stored = repo.get_rule(result.rule_id)
        assert stored.min_value == 0.0
        assert stored.max_value == 100.0

    def test_create_invalidates_cache(self, repo):
        assert repo.get_rules_for_form(1) == []
        repo.create_rule({"formId": 1, "ruleType": "required", "fieldPath": "age"})
        assert len(repo.get_rules_for_form(1)) == 1

    @pytest.mark.parametrize(
        "record,message",
        [
            ({"ruleType": "required", "fieldPath": "age"}, "formId"),
            ({"formId": 1, "fieldPath": "age"}, "ruleType"),
            ({"formId": 1, "ruleType": "required"}, "fieldPath"),
        ],
    )
    def test_missing_fields_are_rejected(self, repo, record, message):
        result = repo.create_rule(record)
        assert not result.success
        assert message in result.message

    def test_date_bounds_round_trip(self, repo):
        result = repo.create_rule(
            {"formId": 1, "ruleType": "range", "fieldPath": "visit_date", "minValue": "2024-01-01"}
        )
        assert repo.get_rule(result.rule_id).min_value == "2024-01-01"

    def test_format_rule_propagates_to_item(self, repo, rule_store):
        rule_store.upsert_item(10, 1, "initials")
        repo.create_rule(
            {"formId": 1, "ruleType": "format", "fieldPath": "initials", "pattern": "^[A-Z]{2}$",
             "errorMessage": "Two capitals", "itemId": 10}
        )
        item = rule_store.get_item(10)
        assert item["regexp"] == "^[A-Z]{2}$"
        assert item["regexp_error_msg"] == "Two capitals"

    def test_required_rule_propagates_to_item(self, repo, rule_store):
        rule_store.upsert_item(10, 1, "initials")
        repo.create_rule({"formId": 1, "ruleType": "required", "fieldPath": "initials", "itemId": 10})
        assert rule_store.get_item(10)["required"] is True

    def test_range_rule_does_not_propagate(self, repo, rule_store):
        rule_store.upsert_item(10, 1, "age")
        repo.create_rule({"formId": 1, "ruleType": "range", "fieldPath": "age", "maxValue": 9, "itemId": 10})
        item = rule_store.get_item(10)
        assert item["regexp"] is None
        assert item["required"] is False

    def test_persistence_error_is_reported(self, repo, rule_store, monkeypatch):
        def fail(rule, actor_id):
            raise PersistenceError("disk full")

        monkeypatch.setattr(rule_store, "insert_rule", fail)
        result = repo.create_rule({"formId": 1, "ruleType": "required", "fieldPath": "age"})
        assert not result.success
        assert result.message == "disk full"

    def test_no_store(self):
        repo = RuleRepository([])
        result = repo.create_rule({"formId": 1, "ruleType": "required", "fieldPath": "age"})
        assert not result.success


class TestUpdateRule:
    def test_partial_update_keeps_other_fields(self, repo):
        created = repo.create_rule(
            {"formId": 1, "ruleType": "range", "fieldPath": "age", "minValue": 0, "maxValue": 100,
             "errorMessage": "Out of range"}
        )
        result = repo.update_rule(created.rule_id, {"maxValue": 120})
        assert result.success
        updated = repo.get_rule(created.rule_id)
        assert updated.max_value == 120.0
        assert updated.min_value == 0.0
        assert updated.error_message == "Out of range"

    def test_update_invalidates_cache(self, repo):
        created = repo.create_rule({"formId": 1, "ruleType": "format", "fieldPath": "a", "pattern": "^x$"})
        repo.get_rules_for_form(1)
        repo.update_rule(created.rule_id, {"pattern": "^y$"})
        assert repo.get_rules_for_form(1)[0].pattern == "^y$"

    def test_update_can_clear_required_field(self, repo):
        created = repo.create_rule({"formId": 1, "ruleType": "required", "fieldPath": "a"})
        result = repo.update_rule(created.rule_id, {"fieldPath": ""})
        assert not result.success

    def test_missing_rule(self, repo):
        result = repo.update_rule(999, {"pattern": "x"})
        assert not result.success
        assert "not found" in result.message

    def test_native_rules_are_read_only(self, repo):
        result = repo.update_rule(NATIVE_RULE_ID_OFFSET + 1, {"pattern": "x"})
        assert not result.success
        assert "read-only" in result.message


class TestDeleteAndToggle:
    def test_delete(self, repo):
        created = repo.create_rule({"formId": 1, "ruleType": "required", "fieldPath": "a"})
        result = repo.delete_rule(created.rule_id)
        assert result.success
        assert repo.get_rule(created.rule_id) is None
        assert repo.get_rules_for_form(1) == []

    def test_referenced_rule_is_deactivated(self, repo, note_store):
        created = repo.create_rule({"formId": 1, "ruleType": "required", "fieldPath": "a"})
        note_store.open_query(5, "a", "a is required", "error", rule_id=created.rule_id)
        result = repo.delete_rule(created.rule_id)
        assert result.success
        assert "deactivated" in result.message
        assert repo.get_rule(created.rule_id).active is False

    def test_toggle(self, repo):
        created = repo.create_rule({"formId": 1, "ruleType": "required", "fieldPath": "a"})
        repo.get_rules_for_form(1)
        assert repo.toggle_rule(created.rule_id, False).success
        assert repo.get_rules_for_form(1)[0].active is False
        assert repo.toggle_rule(created.rule_id, True).message == "Rule activated"

    def test_native_rules_cannot_be_deleted(self, repo):
        assert not repo.delete_rule(NATIVE_RULE_ID_OFFSET + 7).success
        assert not repo.toggle_rule(NATIVE_RULE_ID_OFFSET + 7, False).success

    def test_item_metadata_rules_cannot_be_edited(self, repo, rule_store):
        created = repo.create_rule({"formId": 1, "ruleType": "required", "fieldPath": "a"})
        rule_store.upsert_item(created.rule_id, 1, "b", required=True)
        item_rule_id = ITEM_METADATA_RULE_ID_OFFSET + created.rule_id

        for result in (
            repo.delete_rule(item_rule_id),
            repo.toggle_rule(item_rule_id, False),
            repo.update_rule(item_rule_id, {"errorMessage": "x"}),
        ):
            assert not result.success
            assert "item definition" in result.message
        assert repo.get_rule(created.rule_id).active is True
