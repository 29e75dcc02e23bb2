"""Idempotency keys for tool execution."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from remediation_core.utils.hashing import sha256_text
from remediation_core.utils.serialization import canonical_json


def params_digest(params: Mapping[str, Any]) -> str:
    """Digest of the canonical JSON form of a tool call's params."""
    return sha256_text(canonical_json(dict(params)))


def idempotency_key(
    transaction_id: str, tool_name: str, step: int, params: Mapping[str, Any]
) -> str:
    """Stable key for one call at one step of one transaction.

    The step index keeps two identical calls in one plan distinct; a
    crash-and-retry of the same call maps to the same key. A call with
    different params at the same step gets a new key, so a re-approved plan
    never replays an older result.
    """
    digest = params_digest(params)
    return "idem-" + sha256_text(f"{transaction_id}:{tool_name}:{step}:{digest}")[:40]
