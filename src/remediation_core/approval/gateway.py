"""Human approval handshake: issue, decide once, expire."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from uuid import uuid4

from remediation_core.domain.models import ApprovalRequest, Decision
from remediation_core.errors import ApprovalExpired, TransactionNotFound, Unauthorized
from remediation_core.store.db import SqliteStore
from remediation_core.utils.time import iso_after, parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

RECORDED = "recorded"
ALREADY_DECIDED = "already_decided"


@dataclass(frozen=True)
class DecisionOutcome:
    status: str
    request: ApprovalRequest

    @property
    def recorded(self) -> bool:
        return self.status == RECORDED


class ApprovalGateway:
    """Per-request state machine ``pending -> approved | rejected | expired``.

    The first transition is final. Every transition is a conditional update on
    ``decision = 'pending'`` so concurrent callers cannot both win.
    """

    def __init__(
        self,
        store: SqliteStore,
        approvers: Iterable[str],
        ttl_seconds: int = 3600,
    ) -> None:
        self._store = store
        self._approvers = frozenset(approvers)
        self._ttl_seconds = ttl_seconds

    @property
    def approvers(self) -> frozenset[str]:
        return self._approvers

    def is_approver(self, actor: str | None) -> bool:
        return bool(actor) and actor in self._approvers

    def request(
        self,
        transaction_id: str,
        plan_id: str,
        *,
        authorize_destructive: bool = False,
    ) -> ApprovalRequest:
        """Issue a request, or return the transaction's pending one."""
        existing = self._store.get_pending_approval(transaction_id)
        if existing is not None:
            return existing
        now = utc_now()
        candidate = ApprovalRequest(
            request_id=f"apr-{uuid4().hex}",
            transaction_id=transaction_id,
            plan_id=plan_id,
            issued_at=to_iso(now),
            expires_at=iso_after(self._ttl_seconds, now),
            authorize_destructive=authorize_destructive,
        )
        issued = self._store.insert_approval(candidate)
        if issued.request_id == candidate.request_id:
            logger.info(
                "Approval %s issued for %s (plan %s), expires %s",
                issued.request_id,
                transaction_id,
                plan_id,
                issued.expires_at,
            )
        return issued

    def decide(
        self,
        request_id: str,
        actor: str,
        decision: Decision,
        *,
        authorize_destructive: bool = False,
    ) -> DecisionOutcome:
        """Record *actor*'s decision.

        ``authorize_destructive`` links an explicit authorization for destructive
        changes to an approval; it is ignored for rejections.

        Raises:
            Unauthorized: *actor* is not an allowlisted approver.
            ApprovalExpired: the deadline passed before the decision arrived.
            TransactionNotFound: unknown request id.
        """
        if decision not in (Decision.APPROVED, Decision.REJECTED):
            raise ValueError(f"Unsupported decision: {decision}")
        if not self.is_approver(actor):
            raise Unauthorized(
                f"Actor '{actor}' is not an allowlisted approver",
                details={"actor": actor, "request_id": request_id},
            )

        current = self._store.get_approval(request_id)
        if current is None:
            raise TransactionNotFound(f"Approval request not found: {request_id}")
        if not current.is_pending:
            logger.info("Approval %s already %s; ignoring", request_id, current.decision.value)
            return DecisionOutcome(ALREADY_DECIDED, current)

        now = utc_now()
        if parse_iso(current.expires_at) <= now:
            self.expire(request_id)
            refreshed = self._store.get_approval(request_id) or current
            if refreshed.decision == Decision.EXPIRED:
                raise ApprovalExpired(
                    f"Approval request {request_id} expired at {current.expires_at}",
                    details={"request_id": request_id, "transaction_id": current.transaction_id},
                )
            return DecisionOutcome(ALREADY_DECIDED, refreshed)

        won = self._store.decide_approval(
            request_id,
            decision,
            actor,
            to_iso(now),
            authorize_destructive=authorize_destructive and decision == Decision.APPROVED,
        )
        latest = self._store.get_approval(request_id) or current
        if not won:
            return DecisionOutcome(ALREADY_DECIDED, latest)
        logger.info("Approval %s %s by %s", request_id, decision.value, actor)
        return DecisionOutcome(RECORDED, latest)

    def decide_for_transaction(
        self,
        transaction_id: str,
        actor: str,
        decision: Decision,
        *,
        authorize_destructive: bool = False,
    ) -> DecisionOutcome:
        request = self._store.latest_approval(transaction_id)
        if request is None:
            raise TransactionNotFound(
                f"No approval request for transaction {transaction_id}"
            )
        return self.decide(
            request.request_id, actor, decision, authorize_destructive=authorize_destructive
        )

    def expire(self, request_id: str) -> bool:
        """``pending -> expired``; True only for the caller that made the transition."""
        won = self._store.decide_approval(request_id, Decision.EXPIRED, None, to_iso(utc_now()))
        if won:
            logger.info("Approval %s expired", request_id)
        return won

    def overdue(self) -> list[ApprovalRequest]:
        return self._store.list_overdue_approvals(to_iso(utc_now()))

    def get(self, request_id: str) -> ApprovalRequest | None:
        return self._store.get_approval(request_id)
