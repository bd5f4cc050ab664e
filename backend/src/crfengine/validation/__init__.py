"""crfengine validation system.

This module provides rule-driven validation of clinical form data:
- Rule model: ValidationRule with a RuleType and a Severity
- Rule evaluation: test_rule_directly, backed by the formula languages
- Rule repository: custom, item-metadata and native sources merged per form
- Orchestration: ValidationOrchestrator splits failures into errors and warnings

Usage:
    from crfengine.validation import (
        RuleRepository,
        ValidationOrchestrator,
        store_sources,
    )

    repository = RuleRepository(store_sources(store), store)
    outcome = ValidationOrchestrator(repository).validate_form_data(42, data)
"""

from crfengine.validation.matching import field_matches, resolve_field_value
from crfengine.validation.repository import RuleRepository, RuleStore
from crfengine.validation.rules import FORMAT_TYPES, FormatType, test_rule_directly
from crfengine.validation.services import QueryService, ValidationOrchestrator
from crfengine.validation.sources import (
    ITEM_METADATA_RULE_ID_OFFSET,
    NATIVE_RULE_ID_OFFSET,
    RuleSource,
    merge_rule_sources,
    native_rule_type,
    store_sources,
)
from crfengine.validation.types import (
    CheckOutcome,
    OperationResult,
    RuleCheck,
    RuleType,
    Severity,
    ValidationOutcome,
    ValidationRule,
    Violation,
)

__all__ = [
    # Matching
    "field_matches",
    "resolve_field_value",
    # Repository
    "RuleRepository",
    "RuleStore",
    # Rules
    "FORMAT_TYPES",
    "FormatType",
    "test_rule_directly",
    # Services
    "QueryService",
    "ValidationOrchestrator",
    # Sources
    "ITEM_METADATA_RULE_ID_OFFSET",
    "NATIVE_RULE_ID_OFFSET",
    "RuleSource",
    "merge_rule_sources",
    "native_rule_type",
    "store_sources",
    # Types
    "CheckOutcome",
    "OperationResult",
    "RuleCheck",
    "RuleType",
    "Severity",
    "ValidationOutcome",
    "ValidationRule",
    "Violation",
]
