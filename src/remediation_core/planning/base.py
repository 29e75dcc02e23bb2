"""Plan Generator contract."""

from __future__ import annotations

from typing import Any, Protocol

from remediation_core.domain.models import EnrichedContext, Plan


class PlanGenerator(Protocol):
    async def propose(
        self,
        context: EnrichedContext,
        tool_schemas: dict[str, dict[str, Any]],
        nudge: str | None = None,
    ) -> Plan:
        """Return a structured plan; raise ``ModelError`` on timeout or bad output."""
        ...
