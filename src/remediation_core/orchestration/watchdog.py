"""Periodic approval-expiry and audit-retention sweep."""

from __future__ import annotations

import asyncio
import logging

from remediation_core.audit.trail import AuditTrail
from remediation_core.orchestration.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


class ApprovalWatchdog:
    def __init__(
        self,
        orchestrator: Orchestrator,
        audit: AuditTrail,
        *,
        interval_seconds: float = 30.0,
        retention_days: int = 365,
    ) -> None:
        self._orchestrator = orchestrator
        self._audit = audit
        self._interval = interval_seconds
        self._retention_days = retention_days
        self._task: asyncio.Task[None] | None = None

    async def tick(self) -> list[str]:
        """One sweep; returns the transactions moved to TimedOut."""
        timed_out = await self._orchestrator.expire_overdue()
        if timed_out:
            logger.info("Watchdog timed out %d transaction(s)", len(timed_out))
        await asyncio.to_thread(self._audit.purge_expired, self._retention_days)
        return timed_out

    async def _loop(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Watchdog sweep failed")
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
