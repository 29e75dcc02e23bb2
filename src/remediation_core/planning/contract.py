"""Plan contract: the JSON shape a reasoning model must return."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from remediation_core.domain.models import Plan, RiskLevel, ToolCall
from remediation_core.errors import ModelError, SchemaError


class ToolCallPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    reason: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)
    rollback: str | None = None
    verification: str | None = None

    @field_validator("reason")
    @classmethod
    def _reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("reason must be human-readable text")
        return v.strip()


class PlanPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str = Field(min_length=1)
    risk_level: RiskLevel
    tool_calls: list[ToolCallPayload]


def parse_plan(
    raw: str | bytes | dict[str, Any],
    *,
    model_version: str | None = None,
    version: int = 1,
) -> Plan:
    """Turn untrusted model output into a ``Plan``; ``ModelError`` when malformed."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ModelError(f"Model output is not JSON: {exc.msg}") from exc
    if not isinstance(raw, dict):
        raise ModelError(f"Model output must be a JSON object, got {type(raw).__name__}")
    try:
        payload = PlanPayload.model_validate(raw)
    except ValidationError as exc:
        raise ModelError(
            "Model output does not match the plan contract",
            details={"errors": [err["msg"] for err in exc.errors()][:10]},
        ) from exc
    return Plan(
        summary=payload.summary,
        risk_level=payload.risk_level,
        tool_calls=tuple(
            ToolCall(
                name=call.name,
                reason=call.reason,
                params=call.params,
                rollback=call.rollback,
                verification=call.verification,
            )
            for call in payload.tool_calls
        ),
        model_version=model_version,
        version=version,
    )


def build_nudge(errors: list[SchemaError], allowed_tools: list[str]) -> str:
    """Corrective instruction appended to the next reasoning prompt."""
    lines = ["The previous plan was rejected by validation:"]
    for err in errors:
        details = err.details
        violations = details.get("violations") or []
        if violations:
            for item in violations:
                lines.append(
                    f"- tool '{details.get('tool')}': {item.get('constraint')} on "
                    f"'{item.get('field')}' ({item.get('message')})"
                )
        else:
            lines.append(f"- {err.message}")
    lines.append(
        "Use only these tools: " + (", ".join(allowed_tools) if allowed_tools else "(none)")
    )
    lines.append("Params must match each tool's schema exactly, with no extra fields.")
    return "\n".join(lines)
