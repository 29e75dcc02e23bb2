"""Guarded tool execution."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass

from remediation_core.audit.trail import AuditTrail
from remediation_core.domain.models import ExecutionResult, ProposedEffect, ToolCall
from remediation_core.errors import (
    DestructiveChangeBlocked,
    ExecutionError,
    RemediationError,
    UnknownTool,
)
from remediation_core.execution.adapters import AdapterRegistry
from remediation_core.execution.idempotency import idempotency_key, params_digest
from remediation_core.store.db import SqliteStore
from remediation_core.store.models import ExecutionRecord
from remediation_core.utils.masking import redact_sensitive_fields
from remediation_core.utils.serialization import dumps
from remediation_core.utils.time import utc_now_iso
from remediation_core.validation.registry import ToolRegistry
from remediation_core.validation.validator import validate

logger = logging.getLogger(__name__)

_SUCCESS = "success"


@dataclass(frozen=True)
class ExecutionContext:
    transaction_id: str
    step: int
    plan_id: str | None = None
    authorize_destructive: bool = False


class ToolExecutor:
    def __init__(
        self,
        registry: ToolRegistry,
        adapters: AdapterRegistry,
        store: SqliteStore,
        audit: AuditTrail,
        *,
        max_affected_resources: int = 5,
        timeout_seconds: float = 300.0,
        max_output_characters: int = 20_000,
    ) -> None:
        self._registry = registry
        self._adapters = adapters
        self._store = store
        self._audit = audit
        self._max_affected = max_affected_resources
        self._timeout = timeout_seconds
        self._max_output = max_output_characters

    async def execute(self, tool_call: ToolCall, context: ExecutionContext) -> ExecutionResult:
        """Run one tool call behind validation, blast-radius and idempotency guards.

        Raises:
            UnknownTool / SchemaViolation: the call no longer passes validation.
            DestructiveChangeBlocked: preview shows a destructive change without
                linked authorization, or more affected resources than allowed.
            ExecutionError: the adapter failed or reported a non-success status.
        """
        tx_id = context.transaction_id
        snapshot = self._registry.snapshot()
        outcome = validate(tool_call, snapshot)
        digest = params_digest(tool_call.params)
        key = idempotency_key(tx_id, tool_call.name, context.step, tool_call.params)
        masked_params = redact_sensitive_fields(tool_call.params)

        previous = self._store.get_execution(key)
        if previous is not None and previous.params_hash and previous.params_hash != digest:
            raise ExecutionError(
                f"Step {context.step} ({tool_call.name}) was recorded for different params",
                details={"idempotency_key": key, "step": context.step},
            )
        if previous is not None and previous.status == "succeeded" and previous.result_json:
            logger.info("Step %d (%s) already applied; replaying result", context.step, key)
            result = _result_from_json(previous.result_json, replayed=True)
            self._audit.record(
                tx_id,
                "execution_replayed",
                {"step": context.step, "tool": tool_call.name, "idempotency_key": key},
                allowlist_version=outcome.allowlist_version,
            )
            return result
        if previous is not None and previous.status == "started":
            # A crash between claim and completion: the adapter may or may not have run.
            raise ExecutionError(
                f"Step {context.step} ({tool_call.name}) has an unfinished earlier attempt",
                details={"idempotency_key": key, "step": context.step},
            )
        if previous is not None:
            raise ExecutionError(
                f"Step {context.step} ({tool_call.name}) previously failed",
                details={"idempotency_key": key, "step": context.step},
            )

        capability = self._adapters.get(tool_call.name)
        if capability is None:
            raise UnknownTool(tool_call.name, allowlist_version=outcome.allowlist_version)

        spec = snapshot.get(tool_call.name)
        effect: ProposedEffect | None = None
        if capability.plan is not None:
            try:
                effect = await self._with_timeout(
                    capability.plan(tool_call.params), tool_call.name
                )
            except RemediationError:
                raise
            except Exception as exc:
                raise ExecutionError(
                    f"Adapter {tool_call.name} preview raised: {exc}",
                    details={"step": context.step, "tool": tool_call.name},
                ) from exc
            self._audit.record(
                tx_id,
                "execution_preview",
                {
                    "step": context.step,
                    "tool": tool_call.name,
                    "params": masked_params,
                    "effect": effect.proposed_effect,
                    "destructive": effect.destructive,
                    "affected_count": effect.affected_count,
                },
                allowlist_version=outcome.allowlist_version,
            )
            self._check_blast_radius(tool_call, effect, context)
        elif spec is not None and spec.change_producing:
            logger.warning("Change-producing tool %s has no preview", tool_call.name)

        claimed = self._store.claim_execution(
            ExecutionRecord(
                idempotency_key=key,
                transaction_id=tx_id,
                step=context.step,
                tool=tool_call.name,
                status="started",
                result_json=None,
                started_at=utc_now_iso(),
                completed_at=None,
                params_hash=digest,
            )
        )
        if not claimed:
            raise ExecutionError(
                f"Step {context.step} ({tool_call.name}) is already being executed",
                details={"idempotency_key": key},
            )

        self._audit.record(
            tx_id,
            "execution_started",
            {
                "step": context.step,
                "tool": tool_call.name,
                "params": masked_params,
                "idempotency_key": key,
            },
            allowlist_version=outcome.allowlist_version,
        )

        try:
            applied = await self._with_timeout(capability.apply(tool_call.params), tool_call.name)
        except ExecutionError as exc:
            self._finish(key, "failed", {"error": exc.to_record()})
            raise
        except Exception as exc:
            self._finish(key, "failed", {"error": str(exc)})
            raise ExecutionError(
                f"Adapter {tool_call.name} raised: {exc}",
                details={"step": context.step, "idempotency_key": key},
            ) from exc

        result = ExecutionResult(
            tool=tool_call.name,
            status=applied.status,
            idempotency_key=key,
            logs=tuple(applied.logs),
            effect=effect,
            output=applied.output,
        )
        result_payload = redact_sensitive_fields(result.to_dict())
        if applied.status != _SUCCESS:
            self._finish(key, "failed", result_payload)
            raise ExecutionError(
                f"Adapter {tool_call.name} reported status '{applied.status}'",
                details={"step": context.step, "logs": list(applied.logs)[-20:]},
            )

        self._finish(key, "succeeded", result_payload)
        self._audit.record(
            tx_id,
            "execution_succeeded",
            {
                "step": context.step,
                "tool": tool_call.name,
                "result": _truncate(result_payload, self._max_output),
            },
            allowlist_version=outcome.allowlist_version,
        )
        return result

    def _check_blast_radius(
        self, tool_call: ToolCall, effect: ProposedEffect, context: ExecutionContext
    ) -> None:
        if effect.destructive and not context.authorize_destructive:
            raise DestructiveChangeBlocked(
                f"{tool_call.name} proposes a destructive change without linked authorization",
                details={"effect": effect.proposed_effect, "step": context.step},
            )
        if effect.affected_count > self._max_affected:
            raise DestructiveChangeBlocked(
                f"{tool_call.name} would affect {effect.affected_count} resources "
                f"(limit {self._max_affected})",
                details={
                    "affected_count": effect.affected_count,
                    "max_affected_resources": self._max_affected,
                    "step": context.step,
                },
            )

    async def _with_timeout(self, awaitable, tool_name: str):
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise ExecutionError(
                f"Adapter {tool_name} timed out after {self._timeout}s"
            ) from exc

    def _finish(self, key: str, status: str, payload: object) -> None:
        self._store.complete_execution(key, status, dumps(payload), utc_now_iso())


def _truncate(payload: object, limit: int) -> object:
    text = dumps(payload)
    if len(text) <= limit:
        return payload
    return {"truncated": True, "preview": text[:limit]}


def _result_from_json(text: str, *, replayed: bool) -> ExecutionResult:
    data = json.loads(text)
    effect_data = data.get("effect")
    effect = ProposedEffect(**effect_data) if effect_data else None
    return ExecutionResult(
        tool=data["tool"],
        status=data["status"],
        idempotency_key=data["idempotency_key"],
        logs=tuple(data.get("logs", [])),
        effect=effect,
        replayed=replayed,
        output=data.get("output") or {},
    )
