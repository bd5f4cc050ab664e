"""Tests for rule sources, native rule mapping and the precedence merge."""

from crfengine.validation.sources import (
    ITEM_METADATA_RULE_ID_OFFSET,
    NATIVE_RULE_ID_OFFSET,
    RuleSource,
    item_metadata_rules_from_row,
    merge_rule_sources,
    native_rule_from_row,
    native_rule_type,
    rule_source_for_id,
)
from crfengine.validation.types import RuleType, Severity, ValidationRule


def rule(rule_id, field_path, rule_type, **kwargs):
    return ValidationRule(
        id=rule_id, form_id=1, name="", field_path=field_path, rule_type=rule_type, **kwargs
    )


class TestMergeRuleSources:
    def test_first_source_wins(self):
        custom = rule(1, "age", "format", pattern="^custom$")
        native = rule(NATIVE_RULE_ID_OFFSET + 1, "age", "format", pattern="^native$")
        merged = merge_rule_sources([(RuleSource.CUSTOM, [custom]), (RuleSource.NATIVE, [native])])
        assert merged == [custom]

    def test_different_kinds_on_one_field_are_kept(self):
        required = rule(1, "age", "required")
        range_rule = rule(2, "age", "range", max_value=10.0)
        merged = merge_rule_sources([(RuleSource.CUSTOM, [required]), (RuleSource.NATIVE, [range_rule])])
        assert merged == [required, range_rule]

    def test_duplicates_within_a_source_keep_the_first(self):
        first = rule(1, "age", "required")
        second = rule(2, "age", "required")
        assert merge_rule_sources([(RuleSource.CUSTOM, [first, second])]) == [first]

    def test_order_follows_input(self):
        a, b, c = rule(1, "a", "required"), rule(2, "b", "required"), rule(3, "c", "required")
        merged = merge_rule_sources([(RuleSource.CUSTOM, [b]), (RuleSource.ITEM_METADATA, [a, c])])
        assert [r.id for r in merged] == [2, 1, 3]


class TestNativeRules:
    def test_action_type_mapping(self):
        assert native_rule_type("DISCREPANCY_RS") == RuleType.BUSINESS_LOGIC
        assert native_rule_type("email") == RuleType.NOTIFICATION
        assert native_rule_type("HIDE") == RuleType.CONSISTENCY
        assert native_rule_type("SHOW") == RuleType.CONSISTENCY
        assert native_rule_type("INSERT") == RuleType.CALCULATION
        assert native_rule_type("RANDOMIZATION") == RuleType.BUSINESS_LOGIC
        assert native_rule_type("STRATIFICATION_FACTOR") == RuleType.CALCULATION
        assert native_rule_type(None) == RuleType.BUSINESS_LOGIC

    def test_id_is_offset(self):
        native = native_rule_from_row({"id": 5, "target": "age", "action_type": "DISCREPANCY_RS"})
        assert native.id == NATIVE_RULE_ID_OFFSET + 5
        assert native.severity == Severity.ERROR
        assert native.field_path == "age"

    def test_non_resolvable_discrepancy_is_a_warning(self):
        native = native_rule_from_row(
            {"id": 5, "target": "age", "action_type": "DISCREPANCY_NRS", "action_message": "Check age"}
        )
        assert native.severity == Severity.WARNING
        assert native.message_for(Severity.WARNING) == "Check age"


class TestItemMetadataRules:
    def test_regexp_becomes_format_rule(self):
        rules = item_metadata_rules_from_row(
            {"item_id": 9, "form_id": 1, "name": "initials", "regexp": "^[A-Z]{2,3}$"}
        )
        assert len(rules) == 1
        assert rules[0].kind == RuleType.FORMAT
        assert rules[0].pattern == "^[A-Z]{2,3}$"
        assert rules[0].item_id == 9
        assert rules[0].id == ITEM_METADATA_RULE_ID_OFFSET + 9

    def test_formula_prefix_becomes_formula_rule(self):
        rules = item_metadata_rules_from_row(
            {"item_id": 9, "name": "age", "regexp": "=FORMULA:AND({value}>=18,{value}<=120)"}
        )
        assert rules[0].kind == RuleType.FORMULA
        assert rules[0].pattern == "AND({value}>=18,{value}<=120)"

    def test_required_flag(self):
        rules = item_metadata_rules_from_row({"item_id": 9, "name": "age", "required": True})
        assert [r.kind for r in rules] == [RuleType.REQUIRED]


class TestRowMapping:
    def test_ids_map_back_to_their_source(self):
        assert rule_source_for_id(5) == RuleSource.CUSTOM
        assert rule_source_for_id(NATIVE_RULE_ID_OFFSET + 5) == RuleSource.NATIVE
        assert rule_source_for_id(ITEM_METADATA_RULE_ID_OFFSET + 5) == RuleSource.ITEM_METADATA

    def test_disabled_native_rule_is_inactive(self):
        for enabled, active in ((0, False), (False, False), (1, True), (None, True)):
            native = native_rule_from_row({"id": 1, "target": "age", "enabled": enabled})
            assert native.active is active
