"""Tool allowlist and parameter-schema registry.

The registry is read-mostly. Updates build a complete new snapshot and swap
it in under a lock, so readers always see one consistent allowlist version.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from remediation_core.policy.models import PolicyConfig
from remediation_core.utils.jsonschema import check_schema


@dataclass(frozen=True)
class ToolSpec:
    name: str
    params_schema: Mapping[str, Any]
    change_producing: bool = False
    description: str = ""


@dataclass(frozen=True)
class RegistrySnapshot:
    version: int
    tools: Mapping[str, ToolSpec] = field(default_factory=lambda: MappingProxyType({}))

    def get(self, name: str) -> ToolSpec | None:
        return self.tools.get(name)

    def names(self) -> list[str]:
        return sorted(self.tools)

    def schemas(self) -> dict[str, dict[str, Any]]:
        """Tool schemas in the shape handed to the Plan Generator."""
        return {
            name: {
                "description": spec.description,
                "change_producing": spec.change_producing,
                "schema": dict(spec.params_schema),
            }
            for name, spec in sorted(self.tools.items())
        }


class ToolRegistry:
    def __init__(self, tools: list[ToolSpec] | None = None) -> None:
        self._lock = threading.Lock()
        self._snapshot = RegistrySnapshot(version=0)
        if tools is not None:
            self.swap(tools)

    @classmethod
    def from_policy(
        cls,
        policy: PolicyConfig,
        default_schemas: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> "ToolRegistry":
        return cls(tools_from_policy(policy, default_schemas))

    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    @property
    def version(self) -> int:
        return self._snapshot.version

    def swap(self, tools: list[ToolSpec]) -> RegistrySnapshot:
        """Replace the whole allowlist atomically and bump the version."""
        for spec in tools:
            check_schema(dict(spec.params_schema))
        mapping = MappingProxyType({spec.name: spec for spec in tools})
        with self._lock:
            snapshot = RegistrySnapshot(version=self._snapshot.version + 1, tools=mapping)
            self._snapshot = snapshot
        return snapshot


def tools_from_policy(
    policy: PolicyConfig,
    default_schemas: Mapping[str, Mapping[str, Any]] | None = None,
) -> list[ToolSpec]:
    """Allowlisted tools from the policy file.

    A tool without an inline ``schema`` takes its entry from *default_schemas*
    (the built-in adapters' schemas).
    """
    defaults = default_schemas or {}
    specs: list[ToolSpec] = []
    for name, tool in policy.tools.items():
        schema = tool.params_schema if tool.params_schema is not None else defaults.get(name)
        if schema is None:
            raise ValueError(f"Tool '{name}' has no parameter schema")
        specs.append(
            ToolSpec(
                name=name,
                params_schema=MappingProxyType(dict(schema)),
                change_producing=tool.change_producing,
                description=tool.description,
            )
        )
    return specs
