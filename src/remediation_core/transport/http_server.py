"""Starlette HTTP server: alert intake, approval callbacks, transaction operations."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Any

from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from remediation_core.app import AppContext, get_app_context
from remediation_core.approval.gateway import ALREADY_DECIDED
from remediation_core.approval.signing import SIGNATURE_HEADER, TIMESTAMP_HEADER, verify_signature
from remediation_core.domain.models import Decision, Transaction
from remediation_core.errors import (
    ApprovalExpired,
    InvalidAlert,
    InvalidTransition,
    RemediationError,
    SignatureInvalid,
    TransactionNotFound,
    Unauthorized,
)
from remediation_core.utils.masking import sanitize_log_value

logger = logging.getLogger(__name__)

# Audit chain for signed callbacks that name no known transaction.
UNMATCHED_CALLBACKS = "unmatched-callbacks"

_STATUS_BY_ERROR: tuple[tuple[type[RemediationError], int], ...] = (
    (InvalidAlert, 422),
    (SignatureInvalid, 401),
    (Unauthorized, 403),
    (TransactionNotFound, 404),
    (ApprovalExpired, 409),
    (InvalidTransition, 409),
)


def _error_response(exc: RemediationError) -> JSONResponse:
    status = 500
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status = code
            break
    return JSONResponse({"error": exc.to_record()}, status_code=status)


def transaction_view(tx: Transaction) -> dict[str, Any]:
    return {
        "transaction_id": tx.transaction_id,
        "alert_id": tx.alert_id,
        "resource_id": tx.resource_id,
        "state": tx.state.value,
        "revision": tx.revision,
        "plan": tx.plan.to_dict() if tx.plan else None,
        "plan_id": tx.plan_id,
        "approved_by": tx.approved_by,
        "started_at": tx.started_at,
        "completed_at": tx.completed_at,
        "status_detail": tx.status_detail,
        "context_quality": tx.context_quality.value if tx.context_quality else None,
        "merged_alert_ids": list(tx.merged_alert_ids),
        "logs_uri": tx.logs_uri,
    }


async def _json_body(request: Request) -> Any:
    raw = await request.body()
    try:
        return json.loads(raw or b"{}")
    except ValueError as exc:
        raise InvalidAlert(f"Request body is not valid JSON: {exc}") from exc


def _require_operator_token(request: Request, expected: str | None) -> None:
    header = request.headers.get("authorization", "")
    if not expected or not header.lower().startswith("bearer "):
        raise Unauthorized("Operator bearer token required")
    if not secrets.compare_digest(header[7:].strip(), expected):
        raise Unauthorized("Invalid operator token")


def create_http_app(context: AppContext | None = None) -> Starlette:
    """Create the HTTP application around *context* (the cached one by default)."""
    ctx = context or get_app_context()
    settings = ctx.settings
    orchestrator = ctx.orchestrator

    async def alerts_handler(request: Request) -> Response:
        try:
            payload = await _json_body(request)
            result = orchestrator.intake(payload)
        except RemediationError as exc:
            return _error_response(exc)
        tx = result.transaction
        background = None
        if not result.coalesced:
            background = BackgroundTask(orchestrator.advance, tx.transaction_id)
        return JSONResponse(
            {
                "transaction_id": tx.transaction_id,
                "coalesced": result.coalesced,
                "state": tx.state.value,
            },
            status_code=202,
            background=background,
        )

    async def approval_callback_handler(request: Request) -> Response:
        raw = await request.body()
        try:
            verify_signature(
                settings.approval.callback_secret,
                raw,
                request.headers.get(SIGNATURE_HEADER),
                request.headers.get(TIMESTAMP_HEADER),
                tolerance_seconds=settings.approval.signature_tolerance_seconds,
            )
        except SignatureInvalid as exc:
            _record_rejected_callback(ctx, raw, exc)
            return _error_response(exc)

        try:
            body = json.loads(raw or b"{}")
            transaction_id = str(body["transaction_id"])
            actor = str(body["actor_id"])
            decision = Decision(str(body["decision"]).lower())
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            return JSONResponse(
                {"error": {"code": "InvalidCallback", "message": "Malformed callback body"}},
                status_code=422,
            )
        if decision not in (Decision.APPROVED, Decision.REJECTED):
            return JSONResponse(
                {"error": {"code": "InvalidCallback", "message": "Unsupported decision"}},
                status_code=422,
            )

        try:
            result = await orchestrator.handle_decision(
                transaction_id,
                actor,
                decision,
                authorize_destructive=bool(body.get("authorize_destructive", False)),
                resume=False,
            )
        except RemediationError as exc:
            return _error_response(exc)

        if result.status == ALREADY_DECIDED:
            return JSONResponse({"status": ALREADY_DECIDED, "transaction_id": transaction_id})
        background = None
        if not result.transaction.is_terminal:
            background = BackgroundTask(orchestrator.advance, transaction_id)
        return JSONResponse(
            {
                "status": result.status,
                "transaction_id": transaction_id,
                "state": result.transaction.state.value,
            },
            background=background,
        )

    async def transaction_handler(request: Request) -> Response:
        try:
            tx = orchestrator.get(request.path_params["transaction_id"])
        except RemediationError as exc:
            return _error_response(exc)
        return JSONResponse(transaction_view(tx))

    async def audit_handler(request: Request) -> Response:
        transaction_id = request.path_params["transaction_id"]
        try:
            orchestrator.get(transaction_id)
        except RemediationError as exc:
            return _error_response(exc)
        records = ctx.audit.history(transaction_id)
        return JSONResponse(
            {
                "transaction_id": transaction_id,
                "chain_valid": ctx.audit.verify_chain(transaction_id),
                "records": [
                    {
                        "sequence": record.sequence,
                        "kind": record.kind,
                        "payload": record.payload,
                        "allowlist_version": record.allowlist_version,
                        "created_at": record.created_at,
                        "record_hash": record.record_hash,
                    }
                    for record in records
                ],
            }
        )

    async def cancel_handler(request: Request) -> Response:
        try:
            _require_operator_token(request, settings.approval.operator_token)
            body = await _json_body(request)
            tx = await orchestrator.cancel(
                request.path_params["transaction_id"],
                str(body.get("actor", "")),
                str(body.get("reason", "")),
            )
        except RemediationError as exc:
            return _error_response(exc)
        return JSONResponse(transaction_view(tx))

    async def redrive_handler(request: Request) -> Response:
        transaction_id = request.path_params["transaction_id"]
        try:
            _require_operator_token(request, settings.approval.operator_token)
            body = await _json_body(request)
            tx = await orchestrator.redrive(transaction_id, str(body.get("actor", "")))
        except RemediationError as exc:
            return _error_response(exc)
        return JSONResponse(
            transaction_view(tx),
            status_code=202,
            background=BackgroundTask(orchestrator.advance, transaction_id),
        )

    async def health_handler(request: Request) -> Response:
        return JSONResponse({"status": "healthy", "allowlist_version": ctx.registry.version})

    routes = [
        Route("/alerts", endpoint=alerts_handler, methods=["POST"]),
        Route("/approvals/callback", endpoint=approval_callback_handler, methods=["POST"]),
        Route("/transactions/{transaction_id}", endpoint=transaction_handler, methods=["GET"]),
        Route(
            "/transactions/{transaction_id}/audit", endpoint=audit_handler, methods=["GET"]
        ),
        Route(
            "/transactions/{transaction_id}/cancel", endpoint=cancel_handler, methods=["POST"]
        ),
        Route(
            "/transactions/{transaction_id}/redrive",
            endpoint=redrive_handler,
            methods=["POST"],
        ),
        Route("/health", endpoint=health_handler, methods=["GET"]),
    ]

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Starting remediation HTTP server...")
        resume_task = None
        if settings.server.resume_on_startup:
            resume_task = asyncio.create_task(orchestrator.resume_all())
        ctx.watchdog.start()
        logger.info("Remediation HTTP server started")
        try:
            yield
        finally:
            logger.info("Stopping remediation HTTP server...")
            await ctx.watchdog.stop()
            if resume_task is not None and not resume_task.done():
                resume_task.cancel()

    return Starlette(routes=routes, lifespan=lifespan)


def _record_rejected_callback(ctx: AppContext, raw: bytes, exc: SignatureInvalid) -> None:
    claimed: str | None = None
    try:
        body = json.loads(raw or b"{}")
        if isinstance(body, dict) and body.get("transaction_id"):
            claimed = str(body["transaction_id"])
    except ValueError:
        claimed = None
    chain = claimed if claimed and ctx.store.get_transaction(claimed) else UNMATCHED_CALLBACKS
    logger.warning(
        "Approval callback rejected (%s); claimed transaction %s",
        exc.message,
        sanitize_log_value(claimed or "-"),
    )
    ctx.audit.record(
        chain,
        "callback_rejected",
        {"error": exc.to_record(), "claimed_transaction_id": claimed},
    )
