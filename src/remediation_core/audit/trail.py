"""Append-only, hash-chained audit trail.

Each transaction owns one chain. A record's hash covers the previous record's
hash, its sequence number and its body, so editing or deleting a record in the
middle of a chain is detected by ``verify_chain``. The store keeps the head of
each chain, which catches records removed from the end.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any
from uuid import uuid4

from remediation_core.correlation.context import current_correlation
from remediation_core.domain.models import AuditRecord
from remediation_core.errors import RemediationError
from remediation_core.store.db import SqliteStore, audit_body
from remediation_core.utils.hashing import sha256_text
from remediation_core.utils.masking import redact_sensitive_fields
from remediation_core.utils.serialization import canonical_json
from remediation_core.utils.time import to_iso, utc_now, utc_now_iso

logger = logging.getLogger(__name__)


def _chain_hash(prev_hash: str, sequence: int, body: str) -> str:
    return sha256_text(f"{prev_hash}|{sequence}|{body}")


class AuditTrail:
    def __init__(self, store: SqliteStore) -> None:
        self._store = store

    def record(
        self,
        transaction_id: str,
        kind: str,
        payload: dict[str, Any] | None = None,
        *,
        allowlist_version: int | None = None,
    ) -> AuditRecord:
        ids = current_correlation()
        body: dict[str, Any] = dict(payload or {})
        body.setdefault("alert_id", ids.alert_id)
        body.setdefault("plan_id", ids.plan_id)
        masked = redact_sensitive_fields(body)
        record = self._store.append_audit(
            record_id=uuid4().hex,
            transaction_id=transaction_id,
            kind=kind,
            payload=canonical_json(masked),
            allowlist_version=allowlist_version,
            created_at=utc_now_iso(),
            chain=_chain_hash,
        )
        logger.debug("audit %s #%d %s", transaction_id, record.sequence, kind)
        return record

    def record_error(
        self,
        transaction_id: str,
        error: RemediationError,
        *,
        kind: str = "error",
        allowlist_version: int | None = None,
        **extra: Any,
    ) -> AuditRecord:
        payload = {"error": error.to_record(), **extra}
        return self.record(
            transaction_id, kind, payload, allowlist_version=allowlist_version
        )

    def history(self, transaction_id: str) -> list[AuditRecord]:
        return self._store.list_audit(transaction_id)

    def verify_chain(self, transaction_id: str) -> bool:
        """Recompute the chain; False when any record was altered or removed."""
        prev_hash = ""
        expected_sequence = 1
        for row in self._store.raw_audit_rows(transaction_id):
            if int(row["sequence"]) != expected_sequence or row["prev_hash"] != prev_hash:
                logger.warning(
                    "Audit chain broken for %s at sequence %s", transaction_id, row["sequence"]
                )
                return False
            recomputed = _chain_hash(prev_hash, expected_sequence, audit_body(row))
            if recomputed != row["record_hash"]:
                logger.warning(
                    "Audit record hash mismatch for %s at sequence %s",
                    transaction_id,
                    row["sequence"],
                )
                return False
            prev_hash = row["record_hash"]
            expected_sequence += 1
        head = self._store.audit_head(transaction_id)
        last = (expected_sequence - 1, prev_hash) if expected_sequence > 1 else None
        if head != last:
            logger.warning("Audit chain for %s ends before its recorded head", transaction_id)
            return False
        return True

    def purge_expired(self, retention_days: int) -> int:
        cutoff = to_iso(utc_now() - timedelta(days=retention_days))
        deleted = self._store.purge_audit_before(cutoff)
        if deleted:
            logger.info("Purged %d audit records older than %s", deleted, cutoff)
        return deleted
