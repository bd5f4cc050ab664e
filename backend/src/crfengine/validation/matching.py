"""Field path resolution between rule declarations and submitted payloads.

Rules name their target as ``demographics.age`` or ``age``; payloads arrive
flat, nested, or with different capitalisation. Resolution tries exactly
three strategies in order and the first one that finds the field wins:

1. exact: walk the dotted path through nested mappings, or use the path as a
   literal key
2. case-insensitive: a payload key equal to the full path ignoring case
3. suffix: the last dotted segment of the path, exact then ignoring case
"""

from collections.abc import Mapping
from typing import Any

_MISSING = object()


def _walk(data: Mapping[str, Any], path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _find_key_ignoring_case(data: Mapping[str, Any], key: str) -> Any:
    lowered = key.lower()
    for candidate, value in data.items():
        if isinstance(candidate, str) and candidate.lower() == lowered:
            return value
    return _MISSING


def _last_segment(path: str) -> str:
    return path.rsplit(".", 1)[-1]


def resolve_field_value(data: Mapping[str, Any], field_path: str) -> tuple[bool, Any]:
    """Find the value a rule for ``field_path`` should check.

    Returns ``(found, value)``. ``found`` distinguishes a field submitted as
    None from a field that is not in the payload at all.
    """
    if not field_path:
        return False, None

    # 1. exact
    if field_path in data:
        return True, data[field_path]
    value = _walk(data, field_path)
    if value is not _MISSING:
        return True, value

    # 2. case-insensitive
    value = _find_key_ignoring_case(data, field_path)
    if value is not _MISSING:
        return True, value

    # 3. suffix
    suffix = _last_segment(field_path)
    if suffix != field_path:
        if suffix in data:
            return True, data[suffix]
        value = _find_key_ignoring_case(data, suffix)
        if value is not _MISSING:
            return True, value

    return False, None


def field_matches(rule_path: str, changed_path: str) -> bool:
    """Whether a rule declared for ``rule_path`` applies to ``changed_path``."""
    if not rule_path or not changed_path:
        return False
    if rule_path == changed_path:
        return True
    if rule_path.lower() == changed_path.lower():
        return True
    rule_suffix = _last_segment(rule_path)
    changed_suffix = _last_segment(changed_path)
    if rule_suffix == changed_suffix:
        return True
    return rule_suffix.lower() == changed_suffix.lower()
