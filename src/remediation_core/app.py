"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from remediation_core.approval.gateway import ApprovalGateway
from remediation_core.audit.artifacts import ArtifactStore
from remediation_core.audit.trail import AuditTrail
from remediation_core.config import Settings, load_settings
from remediation_core.correlation.manager import CorrelationManager
from remediation_core.enrichment.http import HttpContextEnricher
from remediation_core.execution.adapters import AdapterRegistry
from remediation_core.execution.builtin import (
    BUILTIN_SCHEMAS,
    InstanceRestartAdapter,
    MetricsQueryAdapter,
    TerraformAdapter,
)
from remediation_core.execution.executor import ToolExecutor
from remediation_core.notify.escalation import Escalator, LoggingEscalator, WebhookEscalator
from remediation_core.orchestration.orchestrator import Orchestrator
from remediation_core.orchestration.watchdog import ApprovalWatchdog
from remediation_core.planning.http import HttpPlanGenerator
from remediation_core.policy.loader import load_policy
from remediation_core.policy.models import PolicyConfig
from remediation_core.store.db import SqliteStore
from remediation_core.validation.registry import ToolRegistry


@dataclass
class AppContext:
    """Application-wide dependency container.

    Initialized once at startup and cached for the lifetime of the process.
    """

    settings: Settings
    policy: PolicyConfig
    store: SqliteStore
    artifacts: ArtifactStore
    audit: AuditTrail
    registry: ToolRegistry
    adapters: AdapterRegistry
    gateway: ApprovalGateway
    orchestrator: Orchestrator
    watchdog: ApprovalWatchdog


def build_adapters(settings: Settings, policy: PolicyConfig) -> AdapterRegistry:
    adapters = AdapterRegistry()
    adapters.register(
        "query_metrics",
        MetricsQueryAdapter(
            settings.execution.metrics_query_url,
            timeout_seconds=float(settings.execution.adapter_timeout_seconds),
        ),
    )
    adapters.register(
        "restart_instances", InstanceRestartAdapter(region=settings.execution.aws_region)
    )
    adapters.register(
        "terraform_apply",
        TerraformAdapter(
            binary=settings.execution.terraform_binary,
            destructive_actions=policy.destructive_actions,
            timeout_seconds=settings.execution.adapter_timeout_seconds,
        ),
    )
    return adapters


def build_escalator(settings: Settings) -> Escalator:
    if settings.notify.page_webhook_url:
        return WebhookEscalator(
            settings.notify.page_webhook_url, timeout_seconds=settings.notify.timeout_seconds
        )
    return LoggingEscalator()


def build_app_context(settings: Settings) -> AppContext:
    policy = load_policy(settings.policy.path)

    store = SqliteStore(settings.storage.sqlite_path, wal=settings.storage.sqlite_wal)
    artifacts = ArtifactStore(settings.storage.artifact_path)
    audit = AuditTrail(store)
    registry = ToolRegistry.from_policy(policy, BUILTIN_SCHEMAS)
    adapters = build_adapters(settings, policy)
    gateway = ApprovalGateway(store, policy.approvers, ttl_seconds=policy.approval.ttl_seconds)
    executor = ToolExecutor(
        registry,
        adapters,
        store,
        audit,
        max_affected_resources=policy.blast_radius.max_affected_resources,
        timeout_seconds=settings.execution.adapter_timeout_seconds,
        max_output_characters=settings.execution.max_output_characters,
    )
    orchestrator = Orchestrator(
        store=store,
        audit=audit,
        correlation=CorrelationManager(store, settings.correlation.coalesce_window_seconds),
        registry=registry,
        enricher=HttpContextEnricher(
            settings.enrichment.runbook_endpoint,
            settings.enrichment.metrics_endpoint,
            timeout_seconds=settings.enrichment.timeout_seconds,
        ),
        planner=HttpPlanGenerator(
            settings.reasoning.model_endpoint,
            timeout_seconds=settings.reasoning.model_timeout_seconds,
        ),
        gateway=gateway,
        executor=executor,
        escalator=build_escalator(settings),
        artifacts=artifacts,
        operators=policy.operators,
        max_model_attempts=settings.reasoning.max_model_attempts,
        max_plan_regenerations=settings.reasoning.max_plan_regenerations,
        backoff_base_seconds=settings.reasoning.backoff_base_seconds,
        backoff_max_seconds=settings.reasoning.backoff_max_seconds,
    )
    watchdog = ApprovalWatchdog(
        orchestrator,
        audit,
        interval_seconds=settings.approval.watchdog_interval_seconds,
        retention_days=settings.storage.audit_retention_days,
    )
    return AppContext(
        settings=settings,
        policy=policy,
        store=store,
        artifacts=artifacts,
        audit=audit,
        registry=registry,
        adapters=adapters,
        gateway=gateway,
        orchestrator=orchestrator,
        watchdog=watchdog,
    )


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Get or create the process-wide application context."""
    return build_app_context(load_settings())
