from __future__ import annotations

import httpx
import pytest

from conftest import make_alert

from remediation_core.domain.models import ContextQuality
from remediation_core.enrichment.base import GENERIC_RUNBOOK, degraded_context
from remediation_core.enrichment.http import HttpContextEnricher

RUNBOOKS = "http://runbooks.local/search"
METRICS = "http://metrics.local/live"


def _transport(runbook_status: int = 200, metrics_status: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "runbooks.local":
            if runbook_status != 200:
                return httpx.Response(runbook_status)
            return httpx.Response(200, json={"snippets": ["restart the sidecar"]})
        if metrics_status != 200:
            return httpx.Response(metrics_status)
        return httpx.Response(200, json={"metrics": {"uptime": 0.91}})

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_full_context() -> None:
    enricher = HttpContextEnricher(RUNBOOKS, METRICS, transport=_transport())
    context = await enricher.enrich(make_alert())
    assert context.context_quality == ContextQuality.FULL
    assert context.runbook_snippets == ("restart the sidecar",)
    assert context.live_metrics == {"uptime": 0.91}
    assert context.notes == ()


@pytest.mark.asyncio
async def test_missing_resource_id_degrades_without_calls() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no collaborator call expected")

    enricher = HttpContextEnricher(RUNBOOKS, METRICS, transport=httpx.MockTransport(handler))
    context = await enricher.enrich(make_alert(resource_id=None))
    assert context.context_quality == ContextQuality.DEGRADED
    assert context.runbook_snippets == (GENERIC_RUNBOOK,)
    assert context.notes == ("missing resource_id",)


@pytest.mark.asyncio
async def test_one_collaborator_down_is_degraded() -> None:
    enricher = HttpContextEnricher(RUNBOOKS, METRICS, transport=_transport(metrics_status=503))
    context = await enricher.enrich(make_alert())
    assert context.context_quality == ContextQuality.DEGRADED
    assert context.runbook_snippets == ("restart the sidecar",)
    assert context.notes == ("live metrics lookup failed",)


@pytest.mark.asyncio
async def test_all_collaborators_down_uses_generic_runbook() -> None:
    enricher = HttpContextEnricher(
        RUNBOOKS, METRICS, transport=_transport(runbook_status=500, metrics_status=500)
    )
    context = await enricher.enrich(make_alert())
    assert context.context_quality == ContextQuality.DEGRADED
    assert context.runbook_snippets == (GENERIC_RUNBOOK,)
    assert "no historical data" in context.notes


@pytest.mark.asyncio
async def test_unconfigured_collaborators() -> None:
    context = await HttpContextEnricher(None, None).enrich(make_alert())
    assert context.context_quality == ContextQuality.DEGRADED
    assert context.notes == (
        "runbook search not configured",
        "live metrics not configured",
        "no historical data",
    )


def test_degraded_context_serializes() -> None:
    data = degraded_context(make_alert(), "note").to_dict()
    assert data["context_quality"] == "degraded"
    assert data["alert"]["resource_id"] == "v-1"
    assert data["notes"] == ["note"]


@pytest.mark.asyncio
async def test_non_object_bodies_degrade() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "runbooks.local":
            return httpx.Response(200, json=["restart the sidecar"])
        return httpx.Response(200, json={"metrics": [0.91]})

    enricher = HttpContextEnricher(RUNBOOKS, METRICS, transport=httpx.MockTransport(handler))
    context = await enricher.enrich(make_alert())

    assert context.context_quality == ContextQuality.DEGRADED
    assert context.runbook_snippets == (GENERIC_RUNBOOK,)
    assert "runbook lookup failed" in context.notes
    assert "live metrics lookup failed" in context.notes
