"""Domain objects for the remediation loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ContextQuality(str, Enum):
    FULL = "full"
    DEGRADED = "degraded"


class TransactionState(str, Enum):
    RECEIVED = "Received"
    ENRICHING = "Enriching"
    REASONING = "Reasoning"
    AWAITING_APPROVAL = "AwaitingApproval"
    APPROVED = "Approved"
    EXECUTING = "Executing"
    COMPLETED = "Completed"
    REJECTED = "Rejected"
    TIMED_OUT = "TimedOut"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        TransactionState.COMPLETED,
        TransactionState.REJECTED,
        TransactionState.TIMED_OUT,
        TransactionState.FAILED,
    }
)


class Decision(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Alert:
    alert_id: str
    resource_id: str | None
    severity: Severity
    message: str
    fired_at: str
    labels: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "resource_id": self.resource_id,
            "severity": self.severity.value,
            "message": self.message,
            "fired_at": self.fired_at,
            "labels": dict(sorted(self.labels.items())),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Alert":
        return cls(
            alert_id=str(data["alert_id"]),
            resource_id=data.get("resource_id"),
            severity=Severity(data["severity"]),
            message=str(data["message"]),
            fired_at=str(data["fired_at"]),
            labels=data.get("labels") or {},
        )


@dataclass(frozen=True)
class ToolCall:
    name: str
    reason: str
    params: dict[str, Any] = field(default_factory=dict)
    rollback: str | None = None
    verification: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "reason": self.reason, "params": self.params}
        if self.rollback:
            data["rollback"] = self.rollback
        if self.verification:
            data["verification"] = self.verification
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ToolCall":
        return cls(
            name=str(data["name"]),
            reason=str(data.get("reason", "")),
            params=dict(data.get("params") or {}),
            rollback=data.get("rollback"),
            verification=data.get("verification"),
        )


@dataclass(frozen=True)
class Plan:
    summary: str
    risk_level: RiskLevel
    tool_calls: tuple[ToolCall, ...]
    model_version: str | None = None
    version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "risk_level": self.risk_level.value,
            "tool_calls": [call.to_dict() for call in self.tool_calls],
            "model_version": self.model_version,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Plan":
        return cls(
            summary=str(data["summary"]),
            risk_level=RiskLevel(data["risk_level"]),
            tool_calls=tuple(ToolCall.from_dict(item) for item in data.get("tool_calls", [])),
            model_version=data.get("model_version"),
            version=int(data.get("version", 1)),
        )


@dataclass
class Transaction:
    transaction_id: str
    alert_id: str
    resource_id: str | None
    state: TransactionState
    started_at: str
    revision: int = 0
    plan: Plan | None = None
    plan_id: str | None = None
    approved_by: str | None = None
    completed_at: str | None = None
    status_detail: str | None = None
    context_quality: ContextQuality | None = None
    merged_alert_ids: list[str] = field(default_factory=list)
    logs_uri: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


@dataclass
class ApprovalRequest:
    request_id: str
    transaction_id: str
    plan_id: str
    issued_at: str
    expires_at: str
    decision: Decision = Decision.PENDING
    decided_by: str | None = None
    decision_at: str | None = None
    authorize_destructive: bool = False

    @property
    def is_pending(self) -> bool:
        return self.decision == Decision.PENDING


@dataclass(frozen=True)
class EnrichedContext:
    alert: Alert
    runbook_snippets: tuple[str, ...] = ()
    live_metrics: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    context_quality: ContextQuality = ContextQuality.FULL
    notes: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert": self.alert.to_dict(),
            "runbook_snippets": list(self.runbook_snippets),
            "live_metrics": dict(self.live_metrics),
            "context_quality": self.context_quality.value,
            "notes": list(self.notes),
        }


@dataclass(frozen=True)
class ProposedEffect:
    proposed_effect: str
    destructive: bool = False
    affected_count: int = 0


@dataclass(frozen=True)
class ApplyResult:
    status: str
    logs: tuple[str, ...] = ()
    output: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class ExecutionResult:
    tool: str
    status: str
    idempotency_key: str
    logs: tuple[str, ...] = ()
    effect: ProposedEffect | None = None
    replayed: bool = False
    output: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "status": self.status,
            "idempotency_key": self.idempotency_key,
            "logs": list(self.logs),
            "effect": (
                {
                    "proposed_effect": self.effect.proposed_effect,
                    "destructive": self.effect.destructive,
                    "affected_count": self.effect.affected_count,
                }
                if self.effect
                else None
            ),
            "replayed": self.replayed,
            "output": dict(self.output),
        }


@dataclass(frozen=True)
class AuditRecord:
    record_id: str
    transaction_id: str
    sequence: int
    kind: str
    payload: dict[str, Any]
    created_at: str
    prev_hash: str
    record_hash: str
    allowlist_version: int | None = None
