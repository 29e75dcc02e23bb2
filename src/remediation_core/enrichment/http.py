"""Context enrichment over HTTP collaborators (runbook search and live metrics)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from remediation_core.correlation.context import current_correlation
from remediation_core.domain.models import Alert, ContextQuality, EnrichedContext
from remediation_core.enrichment.base import GENERIC_RUNBOOK, degraded_context

logger = logging.getLogger(__name__)


class HttpContextEnricher:
    """Assembles runbook snippets and live metrics for an alert.

    A missing resource id or any collaborator failure yields a degraded
    context; this class never raises into the control loop.
    """

    def __init__(
        self,
        runbook_endpoint: str | None,
        metrics_endpoint: str | None,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._runbook_endpoint = runbook_endpoint
        self._metrics_endpoint = metrics_endpoint
        self._timeout = timeout_seconds
        self._transport = transport

    async def enrich(self, alert: Alert) -> EnrichedContext:
        if not alert.resource_id:
            logger.info("Alert %s has no resource id; using degraded context", alert.alert_id)
            return degraded_context(alert, "missing resource_id")

        notes: list[str] = []
        snippets: list[str] = []
        metrics: dict[str, Any] = {}
        headers = current_correlation().as_headers()

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            if self._runbook_endpoint:
                try:
                    resp = await client.get(
                        self._runbook_endpoint,
                        params={"q": alert.message, "resource_id": alert.resource_id},
                        headers=headers,
                    )
                    resp.raise_for_status()
                    snippets = [str(item) for item in _field(resp, "snippets", list)]
                except (httpx.HTTPError, ValueError) as exc:
                    logger.warning("Runbook lookup failed: %s", exc)
                    notes.append("runbook lookup failed")
            else:
                notes.append("runbook search not configured")

            if self._metrics_endpoint:
                try:
                    resp = await client.get(
                        self._metrics_endpoint,
                        params={"resource_id": alert.resource_id},
                        headers=headers,
                    )
                    resp.raise_for_status()
                    metrics = dict(_field(resp, "metrics", dict))
                except (httpx.HTTPError, ValueError) as exc:
                    logger.warning("Live metrics lookup failed: %s", exc)
                    notes.append("live metrics lookup failed")
            else:
                notes.append("live metrics not configured")

        if not snippets and not metrics:
            return degraded_context(alert, *notes, "no historical data")

        quality = ContextQuality.FULL if not notes else ContextQuality.DEGRADED
        return EnrichedContext(
            alert=alert,
            runbook_snippets=tuple(snippets) if snippets else (GENERIC_RUNBOOK,),
            live_metrics=metrics,
            context_quality=quality,
            notes=tuple(notes),
        )


def _field(resp: httpx.Response, name: str, kind: type) -> Any:
    """Read *name* from a JSON object body; ValueError on any other shape."""
    body = resp.json()
    if not isinstance(body, dict):
        raise ValueError(f"expected a JSON object, got {type(body).__name__}")
    value = body.get(name, kind())
    if not isinstance(value, kind):
        raise ValueError(f"'{name}' must be a {kind.__name__}")
    return value
