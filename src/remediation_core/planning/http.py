"""Plan generation through an HTTP reasoning-model endpoint."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from remediation_core.correlation.context import current_correlation
from remediation_core.domain.models import EnrichedContext, Plan
from remediation_core.errors import ModelError
from remediation_core.planning.contract import parse_plan

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = frozenset({408, 425, 429, 500, 502, 503, 504})


class HttpPlanGenerator:
    """POSTs context and tool schemas; expects ``{"model": ..., "plan": {...}}`` back."""

    def __init__(
        self,
        endpoint: str | None,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._timeout = timeout_seconds
        self._transport = transport

    async def propose(
        self,
        context: EnrichedContext,
        tool_schemas: dict[str, dict[str, Any]],
        nudge: str | None = None,
    ) -> Plan:
        if not self._endpoint:
            raise ModelError("Reasoning model endpoint is not configured", retryable=False)

        request_body: dict[str, Any] = {
            "context": context.to_dict(),
            "tools": tool_schemas,
            "response_format": "remediation_plan.v1",
        }
        if nudge:
            request_body["nudge"] = nudge

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                resp = await client.post(
                    self._endpoint,
                    json=request_body,
                    headers=current_correlation().as_headers(),
                )
            except httpx.TimeoutException as exc:
                raise ModelError("Reasoning model timed out") from exc
            except httpx.HTTPError as exc:
                raise ModelError(f"Reasoning model unreachable: {exc}") from exc

        if resp.status_code >= 400:
            raise ModelError(
                f"Reasoning model returned HTTP {resp.status_code}",
                retryable=resp.status_code in _RETRYABLE_STATUS,
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise ModelError("Reasoning model response is not JSON") from exc
        if not isinstance(body, dict):
            raise ModelError("Reasoning model response must be an object")

        plan_raw = body.get("plan", body)
        model_version = body.get("model")
        logger.info("Plan received from model %s", model_version or "unknown")
        return parse_plan(plan_raw, model_version=str(model_version) if model_version else None)
