from __future__ import annotations

import pytest

from remediation_core.execution.builtin import QUERY_METRICS_SCHEMA, RESTART_INSTANCES_SCHEMA
from remediation_core.utils.jsonschema import check_schema, validate_payload


def test_validate_payload_valid() -> None:
    assert validate_payload(QUERY_METRICS_SCHEMA, {"query": "up", "timeRangeMinutes": 60}) == []


def test_missing_required_names_the_field() -> None:
    issues = validate_payload(QUERY_METRICS_SCHEMA, {"query": "up"})
    assert len(issues) == 1
    assert issues[0].constraint == "missing_required"
    assert issues[0].field == "timeRangeMinutes"
    assert "timeRangeMinutes" in (issues[0].hint or "")


def test_additional_property_names_the_field() -> None:
    issues = validate_payload(
        QUERY_METRICS_SCHEMA, {"query": "up", "timeRangeMinutes": 5, "shell": "rm -rf /"}
    )
    assert [(i.constraint, i.field) for i in issues] == [("additional_property", "shell")]


def test_type_and_range_constraints() -> None:
    issues = validate_payload(QUERY_METRICS_SCHEMA, {"query": "up", "timeRangeMinutes": "60"})
    assert issues[0].constraint == "invalid_type"
    assert issues[0].field == "timeRangeMinutes"

    issues = validate_payload(QUERY_METRICS_SCHEMA, {"query": "up", "timeRangeMinutes": 0})
    assert issues[0].constraint == "minimum_violation"
    assert issues[0].hint == "Provide a value >= 1."


def test_pattern_in_array_items_uses_dotted_path() -> None:
    issues = validate_payload(RESTART_INSTANCES_SCHEMA, {"instanceIds": ["i-0abc1234", "web-1"]})
    assert len(issues) == 1
    assert issues[0].constraint == "pattern_mismatch"
    assert issues[0].field == "instanceIds.1"


def test_mixed_path_types_sort_without_error() -> None:
    issues = validate_payload(
        RESTART_INSTANCES_SCHEMA,
        {"instanceIds": ["bad", "bad", 3], "region": "nowhere"},
    )
    constraints = {issue.constraint for issue in issues}
    assert {"pattern_mismatch", "duplicate_items", "invalid_type"} <= constraints


def test_enum_hint() -> None:
    schema = {"type": "object", "properties": {"mode": {"enum": ["soft", "hard"]}}}
    issues = validate_payload(schema, {"mode": "medium"})
    assert issues[0].constraint == "enum_violation"
    assert issues[0].hint == "Use one of: soft, hard"


def test_check_schema_rejects_invalid_schema() -> None:
    check_schema(QUERY_METRICS_SCHEMA)
    with pytest.raises(ValueError, match="Invalid tool schema"):
        check_schema({"type": "object", "properties": {"a": {"type": 12}}})
