"""Tool adapter contract and capability registry.

An adapter is looked up by tool name. ``apply`` is required; adapters that can
preview their effect also expose ``plan`` and the executor calls it first.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from remediation_core.domain.models import ApplyResult, ProposedEffect

PlanFn = Callable[[Mapping[str, Any]], Awaitable[ProposedEffect]]
ApplyFn = Callable[[Mapping[str, Any]], Awaitable[ApplyResult]]


@runtime_checkable
class ToolAdapter(Protocol):
    async def apply(self, params: Mapping[str, Any]) -> ApplyResult: ...


@runtime_checkable
class PreviewingToolAdapter(ToolAdapter, Protocol):
    async def plan(self, params: Mapping[str, Any]) -> ProposedEffect: ...


@dataclass(frozen=True)
class Capability:
    name: str
    apply: ApplyFn
    plan: PlanFn | None = None

    @property
    def supports_preview(self) -> bool:
        return self.plan is not None


class AdapterRegistry:
    def __init__(self) -> None:
        self._capabilities: dict[str, Capability] = {}

    def register(self, name: str, adapter: ToolAdapter) -> Capability:
        plan = adapter.plan if isinstance(adapter, PreviewingToolAdapter) else None
        capability = Capability(name=name, apply=adapter.apply, plan=plan)
        self._capabilities[name] = capability
        return capability

    def get(self, name: str) -> Capability | None:
        return self._capabilities.get(name)

    def names(self) -> list[str]:
        return sorted(self._capabilities)
