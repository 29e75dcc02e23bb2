from dataclasses import replace

from conftest import make_alert, make_plan, uptime_call

from remediation_core.domain.models import (
    ApprovalRequest,
    Decision,
    Transaction,
    TransactionState,
)
from remediation_core.store.models import ExecutionRecord


def _tx(tx_id="tx-1", resource_id="v-1", state=TransactionState.RECEIVED, revision=0):
    return Transaction(
        transaction_id=tx_id,
        alert_id="a1",
        resource_id=resource_id,
        state=state,
        started_at="2026-01-01T00:00:00.000000+00:00",
        revision=revision,
    )


def _create(store, tx):
    return store.create_transaction(tx, make_alert(resource_id=tx.resource_id), tx.started_at)


def test_create_and_load_transaction(store):
    assert _create(store, _tx()) == "tx-1"
    loaded = store.get_transaction("tx-1")
    assert loaded.state == TransactionState.RECEIVED
    assert loaded.revision == 0
    assert store.get_alert("tx-1").message == "missed proposal"
    assert store.resource_owner("v-1") == "tx-1"
    assert [row["state"] for row in store.list_revisions("tx-1")] == ["Received"]


def test_upsert_transition_round_trips_plan(store):
    _create(store, _tx())
    tx = store.get_transaction("tx-1")
    plan = make_plan(uptime_call())
    moved = replace(
        tx, state=TransactionState.AWAITING_APPROVAL, revision=1, plan=plan, plan_id="plan-1"
    )
    assert store.upsert_transition(moved, "2026-01-01T00:00:01.000000+00:00")
    loaded = store.get_transaction("tx-1")
    assert loaded.plan == plan
    assert loaded.plan_id == "plan-1"


def test_upsert_transition_is_idempotent(store):
    _create(store, _tx())
    moved = _tx(state=TransactionState.ENRICHING, revision=1)
    assert store.upsert_transition(moved, "t1")
    # Replaying the same (state, revision) is accepted and writes nothing new.
    assert store.upsert_transition(moved, "t2")
    assert len(store.list_revisions("tx-1")) == 2
    assert store.list_revisions("tx-1")[1]["recorded_at"] == "t1"


def test_upsert_transition_rejects_conflicting_writer(store):
    _create(store, _tx())
    assert store.upsert_transition(_tx(state=TransactionState.ENRICHING, revision=1), "t1")
    assert not store.upsert_transition(_tx(state=TransactionState.FAILED, revision=1), "t2")
    assert store.get_transaction("tx-1").state == TransactionState.ENRICHING


def test_upsert_transition_rejects_stale_revision(store):
    _create(store, _tx())
    store.upsert_transition(_tx(state=TransactionState.ENRICHING, revision=1), "t1")
    store.upsert_transition(_tx(state=TransactionState.REASONING, revision=2), "t2")
    # Revision 1 with a different state than recorded.
    assert not store.upsert_transition(_tx(state=TransactionState.FAILED, revision=1), "t3")
    assert store.get_transaction("tx-1").revision == 2


def test_resource_claim_blocks_second_transaction(store):
    assert _create(store, _tx("tx-1")) == "tx-1"
    assert _create(store, _tx("tx-2")) == "tx-1"
    assert store.get_transaction("tx-2") is None


def test_terminal_transition_releases_claim(store):
    _create(store, _tx("tx-1"))
    store.upsert_transition(_tx("tx-1", state=TransactionState.FAILED, revision=1), "t1")
    assert store.resource_owner("v-1") is None
    assert _create(store, _tx("tx-2")) == "tx-2"
    assert store.resource_owner("v-1") == "tx-2"


def test_claim_resource_for_existing_transaction(store):
    _create(store, _tx("tx-1"))
    store.upsert_transition(_tx("tx-1", state=TransactionState.FAILED, revision=1), "t1")
    _create(store, _tx("tx-2"))
    # tx-2 holds the resource, so re-claiming it for tx-1 reports the holder.
    assert store.claim_resource("v-1", "tx-1", "t2") == "tx-2"
    store.upsert_transition(_tx("tx-2", state=TransactionState.COMPLETED, revision=1), "t3")
    assert store.claim_resource("v-1", "tx-1", "t4") == "tx-1"


def test_find_active_and_merge(store):
    _create(store, _tx())
    found = store.find_active_for_resource("v-1", "2025-12-31T00:00:00.000000+00:00")
    assert found.transaction_id == "tx-1"
    store.append_merged_alert("tx-1", "a2")
    store.append_merged_alert("tx-1", "a2")
    assert store.get_transaction("tx-1").merged_alert_ids == ["a2"]
    assert store.find_active_for_resource("v-1", "2026-02-01T00:00:00.000000+00:00") is None


def test_list_transactions_by_state(store):
    _create(store, _tx("tx-1", resource_id=None))
    _create(store, _tx("tx-2", resource_id=None))
    store.upsert_transition(
        _tx("tx-2", resource_id=None, state=TransactionState.COMPLETED, revision=1), "t1"
    )
    assert sorted(tx.transaction_id for tx in store.list_transactions()) == ["tx-1", "tx-2"]
    active = store.list_transactions([TransactionState.RECEIVED])
    assert [tx.transaction_id for tx in active] == ["tx-1"]
    assert store.list_transactions([]) == []


def _approval(request_id, expires_at="2026-01-01T01:00:00.000000+00:00"):
    return ApprovalRequest(
        request_id=request_id,
        transaction_id="tx-1",
        plan_id="plan-1",
        issued_at="2026-01-01T00:00:00.000000+00:00",
        expires_at=expires_at,
    )


def test_single_pending_approval_per_transaction(store):
    _create(store, _tx())
    first = store.insert_approval(_approval("apr-1"))
    second = store.insert_approval(_approval("apr-2"))
    assert second.request_id == first.request_id == "apr-1"


def test_decide_approval_only_once(store):
    _create(store, _tx())
    store.insert_approval(_approval("apr-1"))
    assert store.decide_approval("apr-1", Decision.APPROVED, "alice@example.com", "t1", True)
    assert not store.decide_approval("apr-1", Decision.REJECTED, "bob@example.com", "t2")
    decided = store.get_approval("apr-1")
    assert decided.decision == Decision.APPROVED
    assert decided.decided_by == "alice@example.com"
    assert decided.authorize_destructive is True
    assert store.get_pending_approval("tx-1") is None


def test_list_overdue_approvals(store):
    _create(store, _tx())
    store.insert_approval(_approval("apr-1", expires_at="2026-01-01T00:10:00.000000+00:00"))
    assert store.list_overdue_approvals("2026-01-01T00:09:59.000000+00:00") == []
    overdue = store.list_overdue_approvals("2026-01-01T00:10:00.000000+00:00")
    assert [req.request_id for req in overdue] == ["apr-1"]


def _execution(key="idem-1", status="started"):
    return ExecutionRecord(
        idempotency_key=key,
        transaction_id="tx-1",
        step=0,
        tool="query_metrics",
        status=status,
        result_json=None,
        started_at="t0",
        completed_at=None,
    )


def test_execution_claim_complete_and_reset(store):
    _create(store, _tx())
    assert store.claim_execution(_execution())
    assert not store.claim_execution(_execution())

    store.complete_execution("idem-1", "failed", '{"error": "boom"}', "t1")
    assert store.get_execution("idem-1").status == "failed"

    store.reset_execution("idem-1")
    assert store.get_execution("idem-1") is None


def test_reset_execution_keeps_succeeded_rows(store):
    _create(store, _tx())
    store.claim_execution(_execution())
    store.complete_execution("idem-1", "succeeded", "{}", "t1")
    store.reset_execution("idem-1")
    assert store.get_execution("idem-1").status == "succeeded"
    assert [rec.idempotency_key for rec in store.list_executions("tx-1")] == ["idem-1"]


def test_store_survives_reopen(tmp_path):
    from remediation_core.store.db import SqliteStore

    path = str(tmp_path / "durable.sqlite")
    first = SqliteStore(path)
    _create(first, _tx())
    first.upsert_transition(_tx(state=TransactionState.ENRICHING, revision=1), "t1")
    first.close()

    second = SqliteStore(path)
    try:
        assert second.get_transaction("tx-1").state == TransactionState.ENRICHING
        assert second.resource_owner("v-1") == "tx-1"
    finally:
        second.close()
