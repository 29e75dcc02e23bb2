"""Context Enricher contract."""

from __future__ import annotations

from typing import Protocol

from remediation_core.domain.models import Alert, ContextQuality, EnrichedContext

GENERIC_RUNBOOK = (
    "No resource-specific runbook is available. Confirm the alert is still firing, "
    "inspect recent metrics for the affected component, prefer read-only diagnostics "
    "and escalate before making changes."
)


class ContextEnricher(Protocol):
    async def enrich(self, alert: Alert) -> EnrichedContext: ...


def degraded_context(alert: Alert, *notes: str) -> EnrichedContext:
    """Fallback context used whenever correlation data is unavailable."""
    return EnrichedContext(
        alert=alert,
        runbook_snippets=(GENERIC_RUNBOOK,),
        context_quality=ContextQuality.DEGRADED,
        notes=tuple(notes),
    )
