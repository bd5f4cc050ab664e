"""
validation/rulefile.py: YAML rule files for crfengine.

A rule file lists rule records for one form:

    formId: 42
    rules:
      - ruleType: range
        fieldPath: vitals.systolic
        minValue: 60
        maxValue: 250
        errorMessage: Systolic pressure out of range

Files are checked against ``schemas/rules.schema.json`` (JSON Schema draft
2020-12) and then for things a schema cannot express: unknown rule types,
regexes that do not compile and formulas that do not parse. Those produce
warnings, since the engine would treat the rule as passing anyway.

Usage:
    from crfengine.validation.rulefile import read_rule_file, validate_rule_file

    issues = validate_rule_file(Path("rules/vitals.yaml"))
    form_id, rules = read_rule_file(Path("rules/vitals.yaml"))
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError

from crfengine.errors import FormulaError, RuleFileError
from crfengine.validation.expressions import looks_like_formula, parse
from crfengine.validation.expressions.lexer import Dialect
from crfengine.validation.types import RuleType, ValidationRule

logger = logging.getLogger(__name__)

_SCHEMA_PATH = Path(__file__).parent / "schemas" / "rules.schema.json"


@dataclass
class RuleFileIssue:
    """A single finding for a rule file."""

    file: Path
    message: str
    path: str = ""          # location within the document, e.g. "rules[2]/minValue"
    severity: str = "error" # "error" | "warning"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        return f"[{self.severity.upper()}] {self.file}{loc}: {self.message}"


def _load_schema() -> dict[str, Any]:
    with _SCHEMA_PATH.open() as fh:
        return json.load(fh)


def _json_path(error: ValidationError) -> str:
    parts = []
    for p in error.absolute_path:
        if isinstance(p, int):
            parts.append(f"[{p}]")
        else:
            parts.append(str(p))
    return "/".join(parts).replace("/[", "[")


def _load_document(path: Path) -> tuple[Any, list[RuleFileIssue]]:
    try:
        with path.open() as fh:
            raw = yaml.safe_load(fh)
    except OSError as exc:
        return None, [RuleFileIssue(file=path, message=f"Cannot read file: {exc}")]
    except yaml.YAMLError as exc:
        return None, [RuleFileIssue(file=path, message=f"YAML parse error: {exc}")]

    if raw is None:
        return None, [
            RuleFileIssue(file=path, message="File is empty or contains only whitespace")
        ]
    return raw, []


def _semantic_issues(path: Path, index: int, record: dict[str, Any]) -> list[RuleFileIssue]:
    issues: list[RuleFileIssue] = []
    location = f"rules[{index}]"

    if RuleType.parse(record.get("ruleType")) is None:
        issues.append(
            RuleFileIssue(
                file=path,
                message=f"Unknown ruleType {record.get('ruleType')!r}; the rule will never fail",
                path=f"{location}/ruleType",
                severity="warning",
            )
        )

    pattern = record.get("pattern")
    if pattern and not pattern.startswith("="):
        try:
            re.compile(pattern)
        except re.error as exc:
            issues.append(
                RuleFileIssue(
                    file=path,
                    message=f"Pattern does not compile ({exc}); the rule will never fail",
                    path=f"{location}/pattern",
                    severity="warning",
                )
            )

    for key in ("pattern", "customExpression"):
        expression = record.get(key)
        if not expression:
            continue
        if key == "pattern" and not expression.startswith("="):
            continue
        dialect = Dialect.FORMULA
        if key == "customExpression" and not looks_like_formula(expression):
            dialect = Dialect.SCRIPT
        try:
            parse(expression, dialect)
        except FormulaError as exc:
            issues.append(
                RuleFileIssue(
                    file=path,
                    message=f"Expression does not parse ({exc}); the rule will never fail",
                    path=f"{location}/{key}",
                    severity="warning",
                )
            )

    return issues


def validate_rule_file(path: Path) -> list[RuleFileIssue]:
    """
    Validate a rule file against the schema and check its expressions.

    Returns:
        A list of :class:`RuleFileIssue` objects (empty on success).
    """
    doc, issues = _load_document(path)
    if issues:
        return issues

    validator = Draft202012Validator(_load_schema())
    for error in sorted(validator.iter_errors(doc), key=lambda e: list(e.path)):
        issues.append(RuleFileIssue(file=path, message=error.message, path=_json_path(error)))

    if issues:
        return issues

    for index, record in enumerate(doc["rules"]):
        issues.extend(_semantic_issues(path, index, record))

    return issues


def read_rule_file(
    path: Path, form_id: int | None = None
) -> tuple[int | None, list[ValidationRule]]:
    """
    Load the rules of a file, after validating it.

    Args:
        path:    The YAML or JSON rule file.
        form_id: Form the rules belong to; overrides the file's ``formId``.

    Returns:
        ``(form_id, rules)``

    Raises:
        RuleFileError: If the file has any error-severity issue.
    """
    issues = validate_rule_file(path)
    errors = [issue for issue in issues if issue.severity == "error"]
    if errors:
        raise RuleFileError(f"{path} has {len(errors)} error(s)", errors)
    for issue in issues:
        logger.warning("%s", issue)

    with path.open() as fh:
        doc = yaml.safe_load(fh)

    resolved_form_id = form_id if form_id is not None else doc.get("formId")
    rules = [
        ValidationRule.from_dict({**record, "formId": resolved_form_id})
        for record in doc["rules"]
    ]
    return resolved_form_id, rules
