"""Operator paging for transactions that end in Failed."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from remediation_core.domain.models import Transaction

logger = logging.getLogger(__name__)


class Escalator(Protocol):
    async def page(self, transaction: Transaction, error: dict[str, Any] | None) -> None: ...


def _page_body(transaction: Transaction, error: dict[str, Any] | None) -> dict[str, Any]:
    return {
        "transaction_id": transaction.transaction_id,
        "alert_id": transaction.alert_id,
        "resource_id": transaction.resource_id,
        "state": transaction.state.value,
        "status_detail": transaction.status_detail,
        "plan_id": transaction.plan_id,
        "error": error,
    }


class LoggingEscalator:
    """Fallback when no paging webhook is configured."""

    async def page(self, transaction: Transaction, error: dict[str, Any] | None) -> None:
        logger.error(
            "PAGE operator: transaction %s failed (%s)",
            transaction.transaction_id,
            transaction.status_detail,
        )


class WebhookEscalator:
    def __init__(
        self,
        url: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout_seconds
        self._transport = transport

    async def page(self, transaction: Transaction, error: dict[str, Any] | None) -> None:
        """POST the page; delivery failures are logged, the page is also logged locally."""
        logger.error(
            "PAGE operator: transaction %s failed (%s)",
            transaction.transaction_id,
            transaction.status_detail,
        )
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                resp = await client.post(self._url, json=_page_body(transaction, error))
                resp.raise_for_status()
            except httpx.HTTPError as exc:
                logger.warning(
                    "Page delivery failed for %s: %s", transaction.transaction_id, exc
                )
