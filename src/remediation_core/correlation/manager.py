"""Transaction ids, plan ids and resource coalescing."""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import timedelta
from typing import Any
from uuid import uuid4

from remediation_core.domain.models import Alert, ToolCall, Transaction
from remediation_core.store.db import SqliteStore
from remediation_core.utils.hashing import sha256_text
from remediation_core.utils.serialization import canonical_json
from remediation_core.utils.time import to_iso, utc_now

_WHITESPACE_RE = re.compile(r"\s+")


def _normalize_value(value: Any) -> Any:
    if isinstance(value, str):
        return _WHITESPACE_RE.sub(" ", value).strip()
    if isinstance(value, dict):
        return {str(key): _normalize_value(val) for key, val in sorted(value.items())}
    if isinstance(value, (list, tuple)):
        return [_normalize_value(item) for item in value]
    return value


def normalize_tool_calls(tool_calls: Iterable[ToolCall]) -> list[dict[str, Any]]:
    """Canonical form of a tool-call sequence.

    Calls are sorted by name and then by their canonical params, params keys are
    sorted and string values have whitespace collapsed. ``reason`` and the
    rollback/verification notes are prose and not part of the identity.
    """
    normalized = [
        {"name": call.name.strip(), "params": _normalize_value(call.params)}
        for call in tool_calls
    ]
    normalized.sort(key=lambda item: (item["name"], canonical_json(item["params"])))
    return normalized


def compute_plan_id(tool_calls: Iterable[ToolCall]) -> str:
    return "plan-" + sha256_text(canonical_json(normalize_tool_calls(tool_calls)))[:32]


def new_transaction_id() -> str:
    return f"tx-{uuid4().hex}"


class CorrelationManager:
    def __init__(self, store: SqliteStore, coalesce_window_seconds: int = 3600) -> None:
        self._store = store
        self._window = coalesce_window_seconds

    new_transaction_id = staticmethod(new_transaction_id)
    compute_plan_id = staticmethod(compute_plan_id)

    def find_active(
        self, resource_id: str | None, window_seconds: int | None = None
    ) -> Transaction | None:
        """Non-terminal transaction for *resource_id* started inside the trailing window."""
        if not resource_id:
            return None
        window = self._window if window_seconds is None else window_seconds
        since = to_iso(utc_now() - timedelta(seconds=window))
        return self._store.find_active_for_resource(resource_id, since)

    def open_transaction(self, tx: Transaction, alert: Alert) -> str:
        """Create *tx* unless its resource is already held.

        Returns the id of the transaction that owns the resource afterwards.
        """
        return self._store.create_transaction(tx, alert, to_iso(utc_now()))

    def claim_resource(self, resource_id: str, transaction_id: str) -> str:
        """Atomically claim the resource for an existing transaction; returns the owner id."""
        return self._store.claim_resource(resource_id, transaction_id, to_iso(utc_now()))
