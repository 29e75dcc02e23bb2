"""Tool-call validation against the registered parameter schemas."""

from __future__ import annotations

from dataclasses import dataclass

from remediation_core.domain.models import Plan, ToolCall
from remediation_core.errors import SchemaError, SchemaViolation, UnknownTool
from remediation_core.utils.jsonschema import validate_payload
from remediation_core.validation.registry import RegistrySnapshot, ToolRegistry


@dataclass(frozen=True)
class ValidationOutcome:
    tool: str
    allowlist_version: int


def _as_snapshot(registry: ToolRegistry | RegistrySnapshot) -> RegistrySnapshot:
    if isinstance(registry, ToolRegistry):
        return registry.snapshot()
    return registry


def validate(
    tool_call: ToolCall, registry: ToolRegistry | RegistrySnapshot
) -> ValidationOutcome:
    """Check *tool_call* against the allowlist and its params schema.

    Pure: nothing outside the registry snapshot is consulted.

    Raises:
        UnknownTool: the tool is not in the allowlist.
        SchemaViolation: params do not conform; ``field``/``constraint`` name the
            first offending field and ``details["violations"]`` lists all of them.
    """
    snapshot = _as_snapshot(registry)
    spec = snapshot.get(tool_call.name)
    if spec is None:
        raise UnknownTool(tool_call.name, allowlist_version=snapshot.version)

    if not isinstance(tool_call.params, dict):
        raise SchemaViolation(
            tool_call.name,
            None,
            "invalid_type",
            "params must be an object",
            allowlist_version=snapshot.version,
        )

    issues = validate_payload(dict(spec.params_schema), tool_call.params)
    if issues:
        first = issues[0]
        raise SchemaViolation(
            tool_call.name,
            first.field,
            first.constraint,
            first.message,
            violations=[
                {
                    "field": issue.field,
                    "constraint": issue.constraint,
                    "message": issue.message,
                    "hint": issue.hint,
                }
                for issue in issues
            ],
            allowlist_version=snapshot.version,
        )

    return ValidationOutcome(tool=tool_call.name, allowlist_version=snapshot.version)


def validate_plan(
    plan: Plan, registry: ToolRegistry | RegistrySnapshot
) -> tuple[int, list[SchemaError]]:
    """Validate every call of *plan* against one snapshot.

    Returns the allowlist version used and the errors found (empty when valid).
    """
    snapshot = _as_snapshot(registry)
    errors: list[SchemaError] = []
    if not plan.tool_calls:
        errors.append(
            SchemaViolation(
                "<plan>",
                "tool_calls",
                "min_items_violation",
                "plan contains no tool calls",
                allowlist_version=snapshot.version,
            )
        )
    for call in plan.tool_calls:
        try:
            validate(call, snapshot)
        except SchemaError as exc:
            errors.append(exc)
    return snapshot.version, errors
