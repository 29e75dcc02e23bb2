from __future__ import annotations

import logging

from conftest import make_alert

from remediation_core.correlation.context import (
    CorrelationFilter,
    bind_correlation,
    current_correlation,
)
from remediation_core.correlation.manager import (
    CorrelationManager,
    compute_plan_id,
    new_transaction_id,
    normalize_tool_calls,
)
from remediation_core.domain.models import ToolCall, Transaction, TransactionState
from remediation_core.utils.time import utc_now_iso


def _restart(ids: list[str], reason: str = "validator stuck") -> ToolCall:
    return ToolCall(name="restart_instances", reason=reason, params={"instanceIds": ids})


def _query(text: str) -> ToolCall:
    return ToolCall(
        name="query_metrics", reason="check", params={"timeRangeMinutes": 60, "query": text}
    )


def test_plan_id_ignores_whitespace_key_order_and_call_order() -> None:
    first = compute_plan_id([_query("up   {job='validator'}"), _restart(["i-0abc1234"])])
    second = compute_plan_id(
        [
            _restart(["i-0abc1234"], reason="different wording"),
            ToolCall(
                name="query_metrics",
                reason="other",
                params={"query": "  up {job='validator'} ", "timeRangeMinutes": 60},
            ),
        ]
    )
    assert first == second
    assert first.startswith("plan-")


def test_plan_id_changes_with_params() -> None:
    assert compute_plan_id([_restart(["i-0abc1234"])]) != compute_plan_id(
        [_restart(["i-0abc5678"])]
    )


def test_normalize_tool_calls_drops_prose() -> None:
    normalized = normalize_tool_calls([_restart(["i-0abc1234"])])
    assert normalized == [{"name": "restart_instances", "params": {"instanceIds": ["i-0abc1234"]}}]


def test_new_transaction_ids_are_unique() -> None:
    assert new_transaction_id() != new_transaction_id()


def test_bind_correlation_overlays_and_restores() -> None:
    assert current_correlation().transaction_id is None
    with bind_correlation(alert_id="a1", transaction_id="tx-1"):
        with bind_correlation(plan_id="plan-x") as ids:
            assert ids.alert_id == "a1"
            assert ids.plan_id == "plan-x"
            assert ids.as_headers() == {
                "X-Alert-Id": "a1",
                "X-Transaction-Id": "tx-1",
                "X-Plan-Id": "plan-x",
            }
        assert current_correlation().plan_id is None
    assert current_correlation().as_headers() == {}


def test_correlation_filter_sets_record_fields() -> None:
    record = logging.LogRecord("t", logging.INFO, __file__, 1, "msg", None, None)
    with bind_correlation(transaction_id="tx-9"):
        assert CorrelationFilter().filter(record) is True
    assert record.transaction_id == "tx-9"
    assert record.alert_id == "-"


def _open(manager: CorrelationManager, alert_id: str, resource_id: str | None) -> str:
    tx = Transaction(
        transaction_id=new_transaction_id(),
        alert_id=alert_id,
        resource_id=resource_id,
        state=TransactionState.RECEIVED,
        started_at=utc_now_iso(),
    )
    return manager.open_transaction(tx, make_alert(alert_id, resource_id))


def test_find_active_within_window(store) -> None:
    manager = CorrelationManager(store, coalesce_window_seconds=3600)
    owner = _open(manager, "a1", "v-1")
    assert manager.find_active("v-1").transaction_id == owner
    assert manager.find_active("v-2") is None
    assert manager.find_active(None) is None


def test_find_active_outside_window(store) -> None:
    manager = CorrelationManager(store, coalesce_window_seconds=3600)
    _open(manager, "a1", "v-1")
    assert manager.find_active("v-1", window_seconds=-60) is None


def test_open_transaction_returns_existing_owner(store) -> None:
    manager = CorrelationManager(store)
    first = _open(manager, "a1", "v-1")
    second = _open(manager, "a2", "v-1")
    assert second == first
    assert len(store.list_transactions()) == 1


def test_open_transaction_without_resource_never_coalesces(store) -> None:
    manager = CorrelationManager(store)
    assert _open(manager, "a1", None) != _open(manager, "a2", None)
    assert len(store.list_transactions()) == 2
