"""Policy configuration models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


def _ensure_list(v: Any) -> list:
    """Convert None to empty list, pass through lists."""
    if v is None:
        return []
    return v


class ToolPolicy(BaseModel):
    description: str = Field(default="")
    params_schema: dict[str, Any] | None = Field(default=None, alias="schema")
    change_producing: bool = Field(default=False)

    model_config = {"populate_by_name": True}

    @field_validator("params_schema")
    @classmethod
    def _validate_schema(cls, v: dict[str, Any] | None) -> dict[str, Any] | None:
        if v is not None and v.get("type", "object") != "object":
            raise ValueError("tool schema must describe an object")
        return v


class BlastRadius(BaseModel):
    max_affected_resources: int = Field(default=5, ge=0, le=10_000)


class ApprovalPolicy(BaseModel):
    ttl_seconds: int = Field(default=3600, ge=1, le=7 * 86400)


class PolicyConfig(BaseModel):
    version: int = Field(default=1)
    tools: dict[str, ToolPolicy] = Field(default_factory=dict)
    approvers: list[str] = Field(default_factory=list)
    operators: list[str] = Field(default_factory=list)
    blast_radius: BlastRadius = Field(default_factory=BlastRadius)
    destructive_actions: list[str] = Field(default_factory=lambda: ["delete", "replace"])
    approval: ApprovalPolicy = Field(default_factory=ApprovalPolicy)

    @field_validator("approvers", "operators", "destructive_actions", mode="before")
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)

    @field_validator("tools", mode="before")
    @classmethod
    def _validate_tools(cls, v: Any) -> dict:
        if v is None:
            return {}
        return v

    @classmethod
    def from_yaml(cls, data: dict[str, object]) -> "PolicyConfig":
        return cls.model_validate(data)
