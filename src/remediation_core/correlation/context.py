"""Context-local correlation identifiers.

Every log line and outbound collaborator call carries the ``alert_id``,
``transaction_id`` and ``plan_id`` of the control flow that produced it. The
orchestrator binds them once per transaction step; asyncio tasks inherit the
context they were created in.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, replace


@dataclass(frozen=True)
class CorrelationIds:
    alert_id: str | None = None
    transaction_id: str | None = None
    plan_id: str | None = None

    def as_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.alert_id:
            headers["X-Alert-Id"] = self.alert_id
        if self.transaction_id:
            headers["X-Transaction-Id"] = self.transaction_id
        if self.plan_id:
            headers["X-Plan-Id"] = self.plan_id
        return headers


_correlation_var: ContextVar[CorrelationIds] = ContextVar(
    "remediation_correlation", default=CorrelationIds()
)


def current_correlation() -> CorrelationIds:
    return _correlation_var.get()


@contextmanager
def bind_correlation(
    *,
    alert_id: str | None = None,
    transaction_id: str | None = None,
    plan_id: str | None = None,
) -> Iterator[CorrelationIds]:
    """Overlay the given identifiers on the current context for the block."""
    base = _correlation_var.get()
    updates = {
        key: value
        for key, value in (
            ("alert_id", alert_id),
            ("transaction_id", transaction_id),
            ("plan_id", plan_id),
        )
        if value is not None
    }
    ids = replace(base, **updates)
    token = _correlation_var.set(ids)
    try:
        yield ids
    finally:
        _correlation_var.reset(token)


class CorrelationFilter(logging.Filter):
    """Attach correlation ids to every record so formatters can print them."""

    def filter(self, record: logging.LogRecord) -> bool:
        ids = _correlation_var.get()
        record.alert_id = ids.alert_id or "-"
        record.transaction_id = ids.transaction_id or "-"
        record.plan_id = ids.plan_id or "-"
        return True
