"""Durable remediation state machine.

Each transaction moves ``Received -> Enriching -> Reasoning -> AwaitingApproval
-> Approved -> Executing -> Completed``; ``Rejected``, ``TimedOut`` and
``Failed`` are the other terminal states. Every transition is persisted with a
bumped revision before the next side effect runs, so a restarted process picks
up from the last durable state. The approval wait holds nothing in memory.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import Any

from remediation_core.approval.gateway import ApprovalGateway
from remediation_core.audit.artifacts import ArtifactStore
from remediation_core.audit.trail import AuditTrail
from remediation_core.correlation.context import bind_correlation
from remediation_core.correlation.manager import CorrelationManager, compute_plan_id
from remediation_core.domain.alerts import parse_alert
from remediation_core.domain.models import (
    TERMINAL_STATES,
    Alert,
    ApprovalRequest,
    ContextQuality,
    Decision,
    EnrichedContext,
    Transaction,
    TransactionState,
)
from remediation_core.enrichment.base import ContextEnricher, degraded_context
from remediation_core.errors import (
    ApprovalExpired,
    EnrichmentDegraded,
    InvalidTransition,
    RemediationError,
    TransactionNotFound,
    Unauthorized,
)
from remediation_core.execution.executor import ExecutionContext, ToolExecutor
from remediation_core.notify.escalation import Escalator, LoggingEscalator
from remediation_core.orchestration.retry import retry_async
from remediation_core.orchestration.states import check_transition
from remediation_core.planning.base import PlanGenerator
from remediation_core.planning.contract import build_nudge
from remediation_core.store.db import SqliteStore
from remediation_core.utils.masking import redact_sensitive_fields, sanitize_log_value
from remediation_core.utils.time import utc_now_iso
from remediation_core.validation.registry import ToolRegistry
from remediation_core.validation.validator import validate_plan

logger = logging.getLogger(__name__)

S = TransactionState

UNRESOLVABLE_PLAN = "unresolvable plan"


@dataclass(frozen=True)
class IntakeResult:
    transaction: Transaction
    coalesced: bool


@dataclass(frozen=True)
class DecisionResult:
    status: str
    transaction: Transaction


class Orchestrator:
    def __init__(
        self,
        *,
        store: SqliteStore,
        audit: AuditTrail,
        correlation: CorrelationManager,
        registry: ToolRegistry,
        enricher: ContextEnricher,
        planner: PlanGenerator,
        gateway: ApprovalGateway,
        executor: ToolExecutor,
        escalator: Escalator | None = None,
        artifacts: ArtifactStore | None = None,
        operators: Iterable[str] = (),
        max_model_attempts: int = 3,
        max_plan_regenerations: int = 1,
        backoff_base_seconds: float = 0.5,
        backoff_max_seconds: float = 20.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._audit = audit
        self._correlation = correlation
        self._registry = registry
        self._enricher = enricher
        self._planner = planner
        self._gateway = gateway
        self._executor = executor
        self._escalator = escalator or LoggingEscalator()
        self._artifacts = artifacts
        self._operators = frozenset(operators)
        self._max_model_attempts = max_model_attempts
        self._max_plan_regenerations = max_plan_regenerations
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds
        self._sleep = sleep
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, transaction_id: str) -> Transaction:
        tx = self._store.get_transaction(transaction_id)
        if tx is None:
            raise TransactionNotFound(f"Transaction not found: {transaction_id}")
        return tx

    def is_operator(self, actor: str | None) -> bool:
        return bool(actor) and actor in self._operators

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def intake(self, alert: Alert | Mapping[str, Any]) -> IntakeResult:
        """Open a transaction for *alert*, or coalesce it into the active one.

        Raises:
            InvalidAlert: the payload is missing required fields.
        """
        if not isinstance(alert, Alert):
            alert = parse_alert(alert)

        with bind_correlation(alert_id=alert.alert_id):
            active = self._correlation.find_active(alert.resource_id)
            if active is not None:
                return self._merge(active, alert)

            tx = Transaction(
                transaction_id=self._correlation.new_transaction_id(),
                alert_id=alert.alert_id,
                resource_id=alert.resource_id,
                state=S.RECEIVED,
                started_at=utc_now_iso(),
            )
            owner = self._correlation.open_transaction(tx, alert)
            if owner != tx.transaction_id:
                # Lost the resource claim: either a concurrent intake or an
                # active transaction older than the coalescing window.
                return self._merge(self.get(owner), alert)

            with bind_correlation(transaction_id=tx.transaction_id):
                self._audit.record(
                    tx.transaction_id,
                    "alert_received",
                    {"alert": alert.to_dict(), "state": tx.state.value, "revision": 0},
                )
                safe_id = sanitize_log_value(alert.alert_id)
                if alert.resource_id is None:
                    logger.warning("Alert %s has no resource id", safe_id)
                logger.info("Opened transaction for alert %s", safe_id)
            return IntakeResult(tx, coalesced=False)

    def _merge(self, active: Transaction, alert: Alert) -> IntakeResult:
        self._store.append_merged_alert(active.transaction_id, alert.alert_id)
        with bind_correlation(transaction_id=active.transaction_id, plan_id=active.plan_id):
            self._audit.record(
                active.transaction_id,
                "alert_coalesced",
                {
                    "merged_alert_id": alert.alert_id,
                    "severity": alert.severity.value,
                    "message": alert.message,
                    "state": active.state.value,
                },
            )
            logger.info(
                "Alert %s coalesced into %s (%s)",
                sanitize_log_value(alert.alert_id),
                active.transaction_id,
                active.state.value,
            )
        return IntakeResult(self.get(active.transaction_id), coalesced=True)

    # ------------------------------------------------------------------
    # Driving the loop
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _locked(self, transaction_id: str) -> AsyncIterator[None]:
        """Serialize work on one transaction; the lock is dropped once it is terminal."""
        lock = self._locks.get(transaction_id)
        if lock is None:
            lock = self._locks[transaction_id] = asyncio.Lock()
        try:
            async with lock:
                yield
        finally:
            tx = self._store.get_transaction(transaction_id)
            if (tx is None or tx.is_terminal) and self._locks.get(transaction_id) is lock:
                del self._locks[transaction_id]

    async def advance(self, transaction_id: str) -> Transaction:
        """Run the loop from the last durable state to a pause or a terminal state."""
        async with self._locked(transaction_id):
            tx = self.get(transaction_id)
            alert = self._store.get_alert(transaction_id)
            with bind_correlation(
                alert_id=tx.alert_id, transaction_id=transaction_id, plan_id=tx.plan_id
            ):
                try:
                    tx = await self._run(tx, alert)
                except InvalidTransition as exc:
                    logger.warning("Stopped advancing %s: %s", transaction_id, exc.message)
                    tx = self.get(transaction_id)
                except Exception as exc:
                    logger.exception("Internal error while advancing %s", transaction_id)
                    tx = self.get(transaction_id)
                    if not tx.is_terminal:
                        error = RemediationError(f"Internal error: {exc}")
                        self._audit.record_error(transaction_id, error, kind="internal_error")
                        tx = await self._fail(tx, f"internal error: {exc}", error)
            return tx

    async def _run(self, tx: Transaction, alert: Alert | None) -> Transaction:
        if alert is None:
            raise TransactionNotFound(f"Alert missing for transaction {tx.transaction_id}")
        context: EnrichedContext | None = None
        while not tx.is_terminal:
            with bind_correlation(plan_id=tx.plan_id):
                if tx.state == S.RECEIVED:
                    tx = self._transition(tx, S.ENRICHING)
                elif tx.state == S.ENRICHING:
                    context = await self._enrich(tx, alert)
                    tx = self._transition(
                        tx, S.REASONING, context_quality=context.context_quality
                    )
                elif tx.state == S.REASONING:
                    if context is None:
                        # Resumed after a restart; enrichment is read-only, run it again.
                        context = await self._enrich(tx, alert)
                    tx = await self._reason(tx, context)
                elif tx.state == S.AWAITING_APPROVAL:
                    request = self._current_request(tx)
                    if request is None:
                        self._request_approval(tx)
                        return tx
                    if request.is_pending:
                        return tx
                    tx = self._apply_decision(tx, request)
                elif tx.state == S.APPROVED:
                    tx = self._transition(tx, S.EXECUTING)
                elif tx.state == S.EXECUTING:
                    tx = await self._execute(tx)
                else:
                    raise InvalidTransition(f"No handler for state {tx.state.value}")
        return tx

    def _transition(
        self,
        tx: Transaction,
        target: TransactionState,
        *,
        redrive: bool = False,
        **changes: Any,
    ) -> Transaction:
        """Persist *tx* in *target* at the next revision; nothing else runs until it lands."""
        check_transition(tx.state, target, redrive=redrive)
        if target in TERMINAL_STATES:
            changes.setdefault("completed_at", utc_now_iso())
        updated = replace(tx, state=target, revision=tx.revision + 1, **changes)
        if not self._store.upsert_transition(updated, utc_now_iso()):
            raise InvalidTransition(
                f"Transaction {tx.transaction_id} changed concurrently",
                details={"revision": updated.revision, "to": target.value},
            )
        self._audit.record(
            tx.transaction_id,
            "state_changed",
            {
                "from": tx.state.value,
                "to": target.value,
                "revision": updated.revision,
                "status_detail": updated.status_detail,
            },
        )
        logger.info("%s -> %s (rev %d)", tx.state.value, target.value, updated.revision)
        return updated

    async def _fail(
        self, tx: Transaction, detail: str, error: RemediationError | None
    ) -> Transaction:
        tx = self._transition(tx, S.FAILED, status_detail=detail)
        record = error.to_record() if error is not None else None
        try:
            await self._escalator.page(tx, record)
        except Exception:
            logger.exception("Escalation failed for %s", tx.transaction_id)
        else:
            self._audit.record(tx.transaction_id, "escalated", {"status_detail": detail})
        return tx

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _enrich(self, tx: Transaction, alert: Alert) -> EnrichedContext:
        try:
            context = await self._enricher.enrich(alert)
        except Exception as exc:
            logger.warning("Enricher raised, continuing with degraded context: %s", exc)
            context = degraded_context(alert, f"enricher error: {exc}")

        if context.context_quality == ContextQuality.DEGRADED:
            degraded = EnrichmentDegraded(
                "Context enrichment degraded", details={"notes": list(context.notes)}
            )
            self._audit.record_error(tx.transaction_id, degraded, kind="enrichment_degraded")
        else:
            self._audit.record(
                tx.transaction_id,
                "context_enriched",
                {
                    "runbook_snippets": len(context.runbook_snippets),
                    "metrics": sorted(context.live_metrics),
                },
            )
        return context

    async def _reason(self, tx: Transaction, context: EnrichedContext) -> Transaction:
        tx_id = tx.transaction_id
        nudge: str | None = None
        regenerations = 0

        def on_retry(attempt: int, exc: RemediationError) -> None:
            self._audit.record_error(tx_id, exc, kind="model_retry", attempt=attempt)

        while True:
            snapshot = self._registry.snapshot()
            schemas = snapshot.schemas()

            async def propose():
                return await self._planner.propose(context, schemas, nudge)

            try:
                plan = await retry_async(
                    propose,
                    max_attempts=self._max_model_attempts,
                    base_seconds=self._backoff_base,
                    max_seconds=self._backoff_max,
                    on_retry=on_retry,
                    sleep=self._sleep,
                )
            except RemediationError as exc:
                self._audit.record_error(tx_id, exc, kind="model_failed")
                return await self._fail(tx, f"model error: {exc.message}", exc)

            plan = replace(plan, version=regenerations + 1)
            plan_id = compute_plan_id(plan.tool_calls)
            version, errors = validate_plan(plan, snapshot)

            with bind_correlation(plan_id=plan_id):
                self._audit.record(
                    tx_id,
                    "plan_proposed",
                    {"plan": redact_sensitive_fields(plan.to_dict()), "plan_version": plan.version},
                    allowlist_version=version,
                )
                if not errors:
                    self._audit.record(
                        tx_id,
                        "plan_validated",
                        {"tools": [call.name for call in plan.tool_calls]},
                        allowlist_version=version,
                    )
                    return self._transition(
                        tx, S.AWAITING_APPROVAL, plan=plan, plan_id=plan_id
                    )
                for error in errors:
                    self._audit.record_error(
                        tx_id, error, kind="plan_rejected", allowlist_version=version
                    )

            if regenerations >= self._max_plan_regenerations:
                logger.warning("Plan still invalid after %d regeneration(s)", regenerations)
                return await self._fail(tx, UNRESOLVABLE_PLAN, errors[0])

            regenerations += 1
            nudge = build_nudge(errors, snapshot.names())
            self._audit.record(
                tx_id,
                "plan_nudge",
                {"regeneration": regenerations, "nudge": nudge},
                allowlist_version=version,
            )

    def _current_request(self, tx: Transaction) -> ApprovalRequest | None:
        """The approval request issued for the current AwaitingApproval stay, if any."""
        request = self._store.latest_approval(tx.transaction_id)
        if request is None or request.plan_id != tx.plan_id:
            return None
        entered = [
            row["recorded_at"]
            for row in self._store.list_revisions(tx.transaction_id)
            if row["state"] == S.AWAITING_APPROVAL.value
        ]
        # A request from before a redrive belongs to an earlier stay.
        if entered and request.issued_at < entered[-1]:
            return None
        return request

    def _request_approval(self, tx: Transaction) -> ApprovalRequest:
        request = self._gateway.request(tx.transaction_id, tx.plan_id or "")
        self._audit.record(
            tx.transaction_id,
            "approval_requested",
            {
                "request_id": request.request_id,
                "expires_at": request.expires_at,
                "summary": tx.plan.summary if tx.plan else None,
                "risk_level": tx.plan.risk_level.value if tx.plan else None,
            },
        )
        return request

    def _apply_decision(self, tx: Transaction, request: ApprovalRequest) -> Transaction:
        if request.decision == Decision.APPROVED:
            return self._transition(tx, S.APPROVED, approved_by=request.decided_by)
        if request.decision == Decision.REJECTED:
            return self._transition(
                tx, S.REJECTED, status_detail=f"rejected by {request.decided_by}"
            )
        if request.decision == Decision.EXPIRED:
            self._audit.record(
                tx.transaction_id,
                "approval_expired",
                {"request_id": request.request_id, "expires_at": request.expires_at},
            )
            return self._transition(
                tx,
                S.TIMED_OUT,
                status_detail=f"approval expired at {request.expires_at}",
            )
        return tx

    async def _execute(self, tx: Transaction) -> Transaction:
        plan = tx.plan
        if plan is None:
            return await self._fail(tx, "no plan to execute", None)

        request = self._store.latest_approval(tx.transaction_id)
        authorize_destructive = bool(
            request is not None
            and request.decision == Decision.APPROVED
            and request.authorize_destructive
        )
        completed: list[str] = []
        results: list[dict[str, Any]] = []
        for step, call in enumerate(plan.tool_calls):
            context = ExecutionContext(
                transaction_id=tx.transaction_id,
                step=step,
                plan_id=tx.plan_id,
                authorize_destructive=authorize_destructive,
            )
            try:
                result = await self._executor.execute(call, context)
            except RemediationError as exc:
                done = ", ".join(completed) if completed else "none"
                detail = (
                    f"{exc.code} at step {step} ({call.name}): {exc.message}; "
                    f"completed steps: {done}"
                )
                self._audit.record_error(
                    tx.transaction_id,
                    exc,
                    kind="execution_failed",
                    step=step,
                    completed_steps=list(completed),
                )
                return await self._fail(tx, detail, exc)
            completed.append(f"{step}:{call.name}")
            results.append(result.to_dict())

        logs_uri = self._write_logs(tx, results)
        return self._transition(
            tx,
            S.COMPLETED,
            status_detail=f"completed {len(completed)} step(s)",
            logs_uri=logs_uri,
        )

    def _write_logs(self, tx: Transaction, results: list[dict[str, Any]]) -> str | None:
        if self._artifacts is None:
            return None
        artifact = self._artifacts.write_json(
            "execution-logs",
            redact_sensitive_fields(
                {
                    "transaction_id": tx.transaction_id,
                    "plan_id": tx.plan_id,
                    "results": results,
                }
            ),
            prefix=tx.transaction_id,
        )
        self._store.add_artifact(artifact)
        return artifact.location

    # ------------------------------------------------------------------
    # External events
    # ------------------------------------------------------------------

    async def handle_decision(
        self,
        transaction_id: str,
        actor: str,
        decision: Decision,
        *,
        authorize_destructive: bool = False,
        resume: bool = True,
    ) -> DecisionResult:
        """Apply an approval callback.

        Only the first decision per request is recorded; replays return
        ``already_decided`` and leave the transaction alone. With *resume* the
        loop continues into execution before returning.

        Raises:
            Unauthorized: *actor* is not an allowlisted approver.
            ApprovalExpired: the decision arrived after the deadline; the
                transaction has been moved to TimedOut.
            TransactionNotFound: unknown transaction or no approval request.
        """
        tx = self.get(transaction_id)
        with bind_correlation(
            alert_id=tx.alert_id, transaction_id=transaction_id, plan_id=tx.plan_id
        ):
            try:
                outcome = self._gateway.decide_for_transaction(
                    transaction_id,
                    actor,
                    decision,
                    authorize_destructive=authorize_destructive,
                )
            except Unauthorized as exc:
                self._audit.record_error(transaction_id, exc, kind="decision_rejected")
                raise
            except ApprovalExpired as exc:
                self._audit.record_error(transaction_id, exc, kind="decision_rejected")
                await self._settle(transaction_id)
                raise

            request = outcome.request
            self._audit.record(
                transaction_id,
                "approval_decided" if outcome.recorded else "approval_replayed",
                {
                    "request_id": request.request_id,
                    "actor": actor,
                    "requested_decision": decision.value,
                    "recorded_decision": request.decision.value,
                    "authorize_destructive": request.authorize_destructive,
                },
            )
            if not outcome.recorded:
                return DecisionResult(outcome.status, self.get(transaction_id))

        tx = await self._settle(transaction_id)
        if resume and not tx.is_terminal:
            tx = await self.advance(transaction_id)
        return DecisionResult(outcome.status, tx)

    async def _settle(self, transaction_id: str) -> Transaction:
        """Move an AwaitingApproval transaction according to its recorded decision."""
        async with self._locked(transaction_id):
            tx = self.get(transaction_id)
            if tx.state != S.AWAITING_APPROVAL:
                return tx
            request = self._current_request(tx)
            if request is None or request.is_pending:
                return tx
            with bind_correlation(
                alert_id=tx.alert_id, transaction_id=transaction_id, plan_id=tx.plan_id
            ):
                try:
                    tx = self._apply_decision(tx, request)
                except InvalidTransition as exc:
                    logger.warning("Decision not applied to %s: %s", transaction_id, exc.message)
                    tx = self.get(transaction_id)
            return tx

    async def expire_overdue(self) -> list[str]:
        """Watchdog tick: time out transactions whose approval deadline passed.

        Safe to run concurrently; each request expires once and each
        transaction reaches TimedOut once.
        """
        timed_out: list[str] = []
        for request in self._gateway.overdue():
            if not self._gateway.expire(request.request_id):
                continue
            tx = await self._settle(request.transaction_id)
            if tx.state == S.TIMED_OUT:
                timed_out.append(tx.transaction_id)
        return timed_out

    async def cancel(self, transaction_id: str, actor: str, reason: str = "") -> Transaction:
        """Operator cancel of a non-terminal transaction.

        Raises:
            Unauthorized: *actor* is not an allowlisted operator.
            InvalidTransition: the transaction is already terminal.
        """
        if not self.is_operator(actor):
            raise Unauthorized(f"Actor '{actor}' is not an allowlisted operator")
        async with self._locked(transaction_id):
            tx = self.get(transaction_id)
            with bind_correlation(
                alert_id=tx.alert_id, transaction_id=transaction_id, plan_id=tx.plan_id
            ):
                check_transition(tx.state, S.FAILED)
                pending = self._store.get_pending_approval(transaction_id)
                if pending is not None:
                    self._gateway.expire(pending.request_id)
                self._audit.record(
                    transaction_id,
                    "cancelled",
                    {"actor": actor, "reason": reason, "state": tx.state.value},
                )
                detail = f"cancelled by {actor}" + (f": {reason}" if reason else "")
                tx = self._transition(tx, S.FAILED, status_detail=detail)
            return tx

    async def redrive(self, transaction_id: str, actor: str) -> Transaction:
        """Operator re-drive of a Failed or TimedOut transaction back to Received.

        Steps that already succeeded replay from their recorded results when the
        new plan repeats them with the same params; failed or unfinished steps
        are cleared.

        Raises:
            Unauthorized: *actor* is not an allowlisted operator.
            InvalidTransition: not redrivable, or its resource is held elsewhere.
        """
        if not self.is_operator(actor):
            raise Unauthorized(f"Actor '{actor}' is not an allowlisted operator")
        async with self._locked(transaction_id):
            tx = self.get(transaction_id)
            with bind_correlation(alert_id=tx.alert_id, transaction_id=transaction_id):
                check_transition(tx.state, S.RECEIVED, redrive=True)
                if tx.resource_id:
                    owner = self._correlation.claim_resource(tx.resource_id, transaction_id)
                    if owner != transaction_id:
                        raise InvalidTransition(
                            f"Resource {tx.resource_id} is held by {owner}",
                            details={"resource_id": tx.resource_id, "owner": owner},
                        )
                for record in self._store.list_executions(transaction_id):
                    if record.status != "succeeded":
                        self._store.reset_execution(record.idempotency_key)
                self._audit.record(
                    transaction_id,
                    "redriven",
                    {
                        "actor": actor,
                        "previous_state": tx.state.value,
                        "previous_detail": tx.status_detail,
                    },
                )
                return self._transition(
                    tx,
                    S.RECEIVED,
                    redrive=True,
                    status_detail=f"redriven by {actor}",
                    completed_at=None,
                    approved_by=None,
                )

    async def resume_all(self) -> list[Transaction]:
        """Re-hydrate every non-terminal transaction after a restart."""
        active = [state for state in S if not state.is_terminal]
        pending = [tx.transaction_id for tx in self._store.list_transactions(active)]
        if pending:
            logger.info("Resuming %d transaction(s)", len(pending))
        return [await self.advance(transaction_id) for transaction_id in pending]
