from __future__ import annotations

from collections.abc import Mapping
from types import SimpleNamespace
from typing import Any

import pytest

from remediation_core.approval.gateway import ApprovalGateway
from remediation_core.audit.artifacts import ArtifactStore
from remediation_core.audit.trail import AuditTrail
from remediation_core.correlation.manager import CorrelationManager
from remediation_core.domain.models import (
    Alert,
    ApplyResult,
    ContextQuality,
    EnrichedContext,
    Plan,
    ProposedEffect,
    RiskLevel,
    Severity,
    ToolCall,
)
from remediation_core.enrichment.base import degraded_context
from remediation_core.execution.adapters import AdapterRegistry
from remediation_core.execution.builtin import BUILTIN_SCHEMAS
from remediation_core.execution.executor import ToolExecutor
from remediation_core.orchestration.orchestrator import Orchestrator
from remediation_core.policy.models import PolicyConfig
from remediation_core.store.db import SqliteStore
from remediation_core.validation.registry import ToolRegistry

POLICY_DATA: dict[str, Any] = {
    "version": 1,
    "tools": {
        "query_metrics": {"description": "metrics query", "change_producing": False},
        "restart_instances": {"description": "reboot", "change_producing": True},
        "terraform_apply": {"description": "terraform", "change_producing": True},
    },
    "approvers": ["alice@example.com", "bob@example.com"],
    "operators": ["sre-admin@example.com"],
    "blast_radius": {"max_affected_resources": 5},
    "approval": {"ttl_seconds": 3600},
}


def make_alert(
    alert_id: str = "a1",
    resource_id: str | None = "v-1",
    message: str = "missed proposal",
) -> Alert:
    return Alert(
        alert_id=alert_id,
        resource_id=resource_id,
        severity=Severity.CRITICAL,
        message=message,
        fired_at="2026-01-01T00:00:00.000000+00:00",
    )


def make_plan(*calls: ToolCall, summary: str = "check uptime") -> Plan:
    return Plan(summary=summary, risk_level=RiskLevel.LOW, tool_calls=tuple(calls))


def uptime_call() -> ToolCall:
    return ToolCall(
        name="query_metrics",
        reason="confirm whether the validator is still missing proposals",
        params={"query": "uptime", "timeRangeMinutes": 60},
    )


class ScriptedPlanner:
    """Returns (or raises) the scripted responses in order; the last one repeats."""

    def __init__(self, *responses: Plan | Exception) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def propose(
        self,
        context: EnrichedContext,
        tool_schemas: dict[str, dict[str, Any]],
        nudge: str | None = None,
    ) -> Plan:
        self.calls.append({"context": context, "tools": sorted(tool_schemas), "nudge": nudge})
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


class StaticEnricher:
    def __init__(self, quality: ContextQuality = ContextQuality.DEGRADED) -> None:
        self.quality = quality
        self.calls = 0

    async def enrich(self, alert: Alert) -> EnrichedContext:
        self.calls += 1
        if self.quality == ContextQuality.DEGRADED:
            return degraded_context(alert, "no historical data")
        return EnrichedContext(
            alert=alert,
            runbook_snippets=("restart the validator sidecar",),
            live_metrics={"uptime": 0.92},
        )


class RecordingAdapter:
    def __init__(
        self,
        status: str = "success",
        effect: ProposedEffect | None = None,
        error: Exception | None = None,
    ) -> None:
        self.status = status
        self.effect = effect
        self.error = error
        self.applied: list[dict[str, Any]] = []
        self.planned: list[dict[str, Any]] = []

    async def apply(self, params: Mapping[str, Any]) -> ApplyResult:
        self.applied.append(dict(params))
        if self.error is not None:
            raise self.error
        return ApplyResult(status=self.status, logs=(f"applied {sorted(params)}",))

    async def plan(self, params: Mapping[str, Any]) -> ProposedEffect:
        self.planned.append(dict(params))
        return self.effect or ProposedEffect(proposed_effect="no change", affected_count=1)


class RecordingEscalator:
    def __init__(self) -> None:
        self.pages: list[tuple[str, str | None]] = []

    async def page(self, transaction, error) -> None:
        self.pages.append((transaction.transaction_id, transaction.status_detail))


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture
def store(tmp_path):
    sqlite_store = SqliteStore(str(tmp_path / "remediation.sqlite"))
    yield sqlite_store
    sqlite_store.close()


@pytest.fixture
def audit(store) -> AuditTrail:
    return AuditTrail(store)


@pytest.fixture
def policy() -> PolicyConfig:
    return PolicyConfig.model_validate(POLICY_DATA)


@pytest.fixture
def registry(policy) -> ToolRegistry:
    return ToolRegistry.from_policy(policy, BUILTIN_SCHEMAS)


@pytest.fixture
def gateway(store, policy) -> ApprovalGateway:
    return ApprovalGateway(store, policy.approvers, ttl_seconds=policy.approval.ttl_seconds)


@pytest.fixture
def build(store, audit, registry, gateway, policy, tmp_path):
    """Factory assembling an orchestrator around fakes; returns a namespace."""

    def _build(
        planner: ScriptedPlanner | None = None,
        enricher: StaticEnricher | None = None,
        adapters: dict[str, RecordingAdapter] | None = None,
        **orchestrator_kwargs: Any,
    ) -> SimpleNamespace:
        planner = planner or ScriptedPlanner(make_plan(uptime_call()))
        enricher = enricher or StaticEnricher()
        fakes = adapters if adapters is not None else {"query_metrics": RecordingAdapter()}
        adapter_registry = AdapterRegistry()
        for name, adapter in fakes.items():
            adapter_registry.register(name, adapter)
        executor = ToolExecutor(
            registry,
            adapter_registry,
            store,
            audit,
            max_affected_resources=policy.blast_radius.max_affected_resources,
            timeout_seconds=5,
        )
        escalator = RecordingEscalator()
        options: dict[str, Any] = {
            "max_model_attempts": 3,
            "max_plan_regenerations": 1,
            "sleep": _no_sleep,
        }
        options.update(orchestrator_kwargs)
        orchestrator = Orchestrator(
            store=store,
            audit=audit,
            correlation=CorrelationManager(store, coalesce_window_seconds=3600),
            registry=registry,
            enricher=enricher,
            planner=planner,
            gateway=gateway,
            executor=executor,
            escalator=escalator,
            artifacts=ArtifactStore(str(tmp_path / "artifacts")),
            operators=policy.operators,
            **options,
        )
        return SimpleNamespace(
            orchestrator=orchestrator,
            planner=planner,
            enricher=enricher,
            adapters=fakes,
            executor=executor,
            escalator=escalator,
            store=store,
            audit=audit,
            gateway=gateway,
            registry=registry,
        )

    return _build
