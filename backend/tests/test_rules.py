"""Tests for single-rule evaluation (test_rule_directly)."""

import logging

import pytest

from crfengine.validation.rules import FORMAT_TYPES, compare_values, is_multi_value, test_rule_directly
from crfengine.validation.types import CheckOutcome, RuleType, ValidationRule


def make_rule(rule_type, **kwargs):
    kwargs.setdefault("field_path", "field")
    return ValidationRule(id=1, form_id=1, name="test rule", rule_type=rule_type, **kwargs)


class TestRequired:
    @pytest.mark.parametrize("value", [0, False, [], "x", " ", 0.0])
    def test_present_values_pass(self, value):
        assert test_rule_directly(make_rule("required"), value).valid

    @pytest.mark.parametrize("value", [None, ""])
    def test_missing_values_fail(self, value):
        check = test_rule_directly(make_rule("required"), value)
        assert not check.valid
        assert check.outcome == CheckOutcome.FAILED


class TestRange:
    @pytest.fixture
    def rule(self):
        return make_rule("range", min_value=0, max_value=100)

    @pytest.mark.parametrize("value", [-1, 101, "100.5"])
    def test_outside_fails(self, rule, value):
        assert not test_rule_directly(rule, value).valid

    @pytest.mark.parametrize("value", [0, 100, "50", 0.5])
    def test_inside_passes(self, rule, value):
        assert test_rule_directly(rule, value).valid

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_is_skipped(self, rule, value):
        check = test_rule_directly(rule, value)
        assert check.valid
        assert check.outcome == CheckOutcome.SKIPPED

    def test_non_numeric_fails(self, rule):
        assert not test_rule_directly(rule, "abc").valid

    def test_single_bound(self):
        rule = make_rule("range", min_value=18)
        assert test_rule_directly(rule, 1000).valid
        assert not test_rule_directly(rule, 17).valid

    def test_multi_value_is_skipped(self, rule):
        assert test_rule_directly(rule, ["150", "2"]).outcome == CheckOutcome.SKIPPED
        assert test_rule_directly(rule, "150, 2").outcome == CheckOutcome.SKIPPED

    def test_grouped_number_is_single_value(self, rule):
        assert not test_rule_directly(rule, "1,500").valid

    @pytest.mark.parametrize("value", [10**400, -(10**400), "1e400"])
    def test_beyond_float_range_fails(self, rule, value):
        check = test_rule_directly(rule, value)
        assert check.outcome == CheckOutcome.FAILED
        assert "not a number" in check.detail

    def test_date_range(self):
        rule = make_rule("range", min_value="2024-01-01", max_value="2024-12-31")
        assert test_rule_directly(rule, "2024-06-15").valid
        assert test_rule_directly(rule, "2024-12-31").valid
        assert not test_rule_directly(rule, "2025-01-01").valid
        assert not test_rule_directly(rule, "2023-12-31").valid

    def test_invalid_date_fails(self):
        rule = make_rule("range", min_value="2024-01-01")
        assert not test_rule_directly(rule, "2024-02-30").valid


class TestFormat:
    EMAIL = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

    def test_email(self):
        rule = make_rule("format", pattern=self.EMAIL)
        assert test_rule_directly(rule, "test@example.com").valid
        assert not test_rule_directly(rule, "not-an-email").valid

    @pytest.mark.parametrize("value", ["anything", "", "test@example.com", 42])
    def test_broken_pattern_fails_open(self, value, caplog):
        rule = make_rule("format", pattern="[invalid(")
        with caplog.at_level(logging.WARNING):
            check = test_rule_directly(rule, value)
        assert check.valid

    def test_broken_pattern_is_named_outcome(self, caplog):
        rule = make_rule("format", pattern="[invalid(")
        with caplog.at_level(logging.WARNING):
            check = test_rule_directly(rule, "x")
        assert check.outcome == CheckOutcome.FAIL_OPEN
        assert "invalid pattern" in caplog.text

    def test_empty_value_is_skipped(self):
        rule = make_rule("format", pattern=r"^\d+$")
        assert test_rule_directly(rule, "").outcome == CheckOutcome.SKIPPED

    def test_no_pattern_is_skipped(self):
        assert test_rule_directly(make_rule("format"), "x").outcome == CheckOutcome.SKIPPED

    def test_format_type_overrides_pattern(self):
        rule = make_rule("format", pattern=r"^x$", format_type="numbers_only")
        assert test_rule_directly(rule, "12345").valid
        assert not test_rule_directly(rule, "x").valid

    def test_custom_regex_format_type_uses_pattern(self):
        rule = make_rule("format", pattern=r"^x$", format_type="custom_regex")
        assert test_rule_directly(rule, "x").valid

    @pytest.mark.parametrize("key", sorted(FORMAT_TYPES))
    def test_format_type_examples_match(self, key):
        rule = make_rule("format", format_type=key)
        assert test_rule_directly(rule, FORMAT_TYPES[key].example).valid

    def test_formula_in_pattern(self):
        rule = make_rule("format", pattern="=AND({value}>=18,{value}<=120)")
        assert test_rule_directly(rule, 25).valid
        assert not test_rule_directly(rule, 17).valid

    def test_formula_prefix_in_pattern(self):
        rule = make_rule("format", pattern="=FORMULA:LEN({value})<=3")
        assert test_rule_directly(rule, "abc").valid
        assert not test_rule_directly(rule, "abcd").valid

    def test_non_string_values_are_stringified(self):
        rule = make_rule("format", pattern=r"^\d{3}$")
        assert test_rule_directly(rule, 123).valid
        rule = make_rule("format", pattern=r"^true$")
        assert test_rule_directly(rule, True).valid

    def test_multi_value_is_skipped(self):
        rule = make_rule("format", pattern=r"^\d$")
        assert test_rule_directly(rule, "1, 2, 3").outcome == CheckOutcome.SKIPPED


class TestConsistency:
    @pytest.fixture
    def rule(self):
        return make_rule(
            "consistency", field_path="systolic", operator=">", compare_field_path="diastolic"
        )

    def test_greater_passes(self, rule):
        assert test_rule_directly(rule, 120, {"systolic": 120, "diastolic": 80}).valid

    @pytest.mark.parametrize("systolic,diastolic", [(80, 120), (80, 80)])
    def test_not_greater_fails(self, rule, systolic, diastolic):
        context = {"systolic": systolic, "diastolic": diastolic}
        assert not test_rule_directly(rule, systolic, context).valid

    def test_numeric_strings(self, rule):
        assert test_rule_directly(rule, "120", {"diastolic": "80"}).valid
        assert not test_rule_directly(rule, "9", {"diastolic": "80"}).valid

    def test_missing_compare_field_does_not_raise(self, rule):
        check = test_rule_directly(rule, 120, {})
        assert not check.valid

    def test_missing_compare_field_with_not_equal(self):
        rule = make_rule("consistency", operator="!=", compare_field_path="other")
        assert test_rule_directly(rule, 5, {}).valid

    def test_dates(self):
        rule = make_rule("consistency", operator=">=", compare_field_path="start")
        assert test_rule_directly(rule, "2024-03-01", {"start": "2024-02-28"}).valid
        assert not test_rule_directly(rule, "2024-02-01", {"start": "2024-02-28"}).valid

    def test_nested_compare_field(self):
        rule = make_rule("consistency", operator="==", compare_field_path="visit.arm")
        assert test_rule_directly(rule, "A", {"visit": {"arm": "A"}}).valid

    def test_unknown_operator_fails_open(self):
        rule = make_rule("consistency", operator="~=", compare_field_path="other")
        check = test_rule_directly(rule, 1, {"other": 2})
        assert check.outcome == CheckOutcome.FAIL_OPEN


class TestExpressionRules:
    def test_formula_age_range(self):
        rule = make_rule("formula", custom_expression="=AND({value}>=18,{value}<=120)")
        assert test_rule_directly(rule, 25).valid
        assert not test_rule_directly(rule, 17).valid
        assert not test_rule_directly(rule, 121).valid

    def test_formula_prefers_pattern(self):
        rule = make_rule("formula", pattern="={value}>0", custom_expression="={value}<0")
        assert test_rule_directly(rule, 5).valid

    def test_formula_without_expression_is_vacuous(self):
        assert test_rule_directly(make_rule("formula"), 5).valid

    def test_formula_sees_empty_value(self):
        rule = make_rule("formula", custom_expression="=NOT(ISBLANK({value}))")
        assert not test_rule_directly(rule, "").valid

    def test_business_logic_ignores_pattern(self):
        rule = make_rule("business_logic", pattern="={value}<0")
        assert test_rule_directly(rule, 5).outcome == CheckOutcome.SKIPPED

    def test_business_logic_script(self):
        rule = make_rule("business_logic", custom_expression="value > data.minimum")
        assert test_rule_directly(rule, 5, {"minimum": 3}).valid
        assert not test_rule_directly(rule, 2, {"minimum": 3}).valid

    def test_business_logic_formula(self):
        rule = make_rule("business_logic", custom_expression='=IF({arm}="B", {value}<10, TRUE)')
        assert not test_rule_directly(rule, 12, {"arm": "B"}).valid

    def test_business_logic_with_list_value(self):
        rule = make_rule("business_logic", custom_expression="value in data")
        assert not test_rule_directly(rule, ["a"], {"a": 1}).valid

    def test_deeply_nested_formula_fails_open(self):
        rule = make_rule("formula", pattern="=" + "(" * 400 + "1" + ")" * 400)
        check = test_rule_directly(rule, 5)
        assert check.valid
        assert check.outcome == CheckOutcome.FAIL_OPEN
        assert test_rule_directly(rule, 12, {"arm": "A"}).valid

    def test_cross_form(self):
        rule = make_rule("cross_form", custom_expression="={value}<={screening_weight}*1.1")
        assert test_rule_directly(rule, 70, {"screening_weight": 70}).valid
        assert not test_rule_directly(rule, 90, {"screening_weight": 70}).valid

    def test_broken_expression_fails_open(self):
        rule = make_rule("formula", custom_expression="=AND({value}>=18")
        check = test_rule_directly(rule, 1)
        assert check.valid
        assert check.outcome == CheckOutcome.FAIL_OPEN


class TestDispatch:
    def test_unknown_rule_type_fails_open(self, caplog):
        with caplog.at_level(logging.WARNING):
            check = test_rule_directly(make_rule("lab_reference"), "anything")
        assert check.valid
        assert check.outcome == CheckOutcome.FAIL_OPEN
        assert "lab_reference" in caplog.text

    @pytest.mark.parametrize("rule_type", ["notification", "calculation"])
    def test_recorded_native_kinds_are_not_evaluated(self, rule_type):
        check = test_rule_directly(make_rule(rule_type, custom_expression="={value}>1"), 0)
        assert check.valid
        assert check.outcome == CheckOutcome.NOT_EVALUATED

    def test_every_rule_type_has_a_handler(self):
        for rule_type in RuleType:
            test_rule_directly(make_rule(rule_type.value), "x")

    def test_caller_context_is_not_mutated(self):
        context = {"diastolic": 80}
        rule = make_rule("consistency", operator=">", compare_field_path="diastolic")
        test_rule_directly(rule, 120, context)
        assert context == {"diastolic": 80}


class TestHelpers:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (["a", "b"], True),
            ("A,B", True),
            ("1,2", False),
            ("1,234.56", False),
            ("2024-01-01, 10:00", False),
            ("single", False),
            (5, False),
        ],
    )
    def test_is_multi_value(self, value, expected):
        assert is_multi_value(value) is expected

    def test_compare_values(self):
        assert compare_values("10", "9", ">") is True
        assert compare_values(None, 5, ">") is False
        assert compare_values(None, None, "==") is True
        assert compare_values(1, 2, "<>") is None
