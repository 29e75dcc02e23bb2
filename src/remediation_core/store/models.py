"""Row records that are not part of the domain model."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ExecutionRecord:
    idempotency_key: str
    transaction_id: str
    step: int
    tool: str
    status: str
    result_json: str | None
    started_at: str
    completed_at: str | None
    params_hash: str = ""


@dataclass
class ArtifactRecord:
    artifact_id: str
    kind: str
    location: str
    checksum: str
    created_at: str
    transaction_id: str | None = None
