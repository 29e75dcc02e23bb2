"""SQLite access layer for transactions, approvals, executions and audit records."""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Mapping, Sequence

from remediation_core.domain.models import (
    Alert,
    ApprovalRequest,
    AuditRecord,
    ContextQuality,
    Decision,
    Plan,
    Transaction,
    TransactionState,
    TERMINAL_STATES,
)
from remediation_core.store.models import ArtifactRecord, ExecutionRecord
from remediation_core.utils.serialization import dumps

_SqlValue = str | bytes | int | float | None
_SqlParams = Sequence[_SqlValue] | Mapping[str, _SqlValue]

_TERMINAL_VALUES = tuple(state.value for state in TERMINAL_STATES)


class SqliteStore:
    def __init__(self, path: str, wal: bool = True) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        if wal:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS transactions (
                transaction_id TEXT PRIMARY KEY,
                alert_id TEXT NOT NULL,
                resource_id TEXT,
                state TEXT NOT NULL,
                revision INTEGER NOT NULL,
                alert_json TEXT NOT NULL,
                plan_json TEXT,
                plan_id TEXT,
                approved_by TEXT,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                status_detail TEXT,
                context_quality TEXT,
                merged_alert_ids TEXT NOT NULL DEFAULT '[]',
                logs_uri TEXT,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS transaction_revisions (
                transaction_id TEXT NOT NULL,
                state TEXT NOT NULL,
                revision INTEGER NOT NULL,
                status_detail TEXT,
                recorded_at TEXT NOT NULL,
                PRIMARY KEY (transaction_id, state, revision),
                FOREIGN KEY(transaction_id) REFERENCES transactions(transaction_id)
            );

            CREATE TABLE IF NOT EXISTS active_resources (
                resource_id TEXT PRIMARY KEY,
                transaction_id TEXT NOT NULL,
                claimed_at TEXT NOT NULL,
                FOREIGN KEY(transaction_id) REFERENCES transactions(transaction_id)
            );

            CREATE TABLE IF NOT EXISTS approvals (
                request_id TEXT PRIMARY KEY,
                transaction_id TEXT NOT NULL,
                plan_id TEXT NOT NULL,
                issued_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                decision TEXT NOT NULL,
                decided_by TEXT,
                decision_at TEXT,
                authorize_destructive INTEGER NOT NULL DEFAULT 0,
                FOREIGN KEY(transaction_id) REFERENCES transactions(transaction_id)
            );

            CREATE TABLE IF NOT EXISTS executions (
                idempotency_key TEXT PRIMARY KEY,
                transaction_id TEXT NOT NULL,
                step INTEGER NOT NULL,
                tool TEXT NOT NULL,
                status TEXT NOT NULL,
                result_json TEXT,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                params_hash TEXT NOT NULL DEFAULT '',
                FOREIGN KEY(transaction_id) REFERENCES transactions(transaction_id)
            );

            CREATE TABLE IF NOT EXISTS audit_records (
                record_id TEXT PRIMARY KEY,
                transaction_id TEXT NOT NULL,
                sequence INTEGER NOT NULL,
                kind TEXT NOT NULL,
                payload TEXT NOT NULL,
                allowlist_version INTEGER,
                created_at TEXT NOT NULL,
                prev_hash TEXT NOT NULL,
                record_hash TEXT NOT NULL,
                UNIQUE (transaction_id, sequence)
            );

            CREATE TABLE IF NOT EXISTS audit_heads (
                transaction_id TEXT PRIMARY KEY,
                sequence INTEGER NOT NULL,
                record_hash TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS audit_artifacts (
                artifact_id TEXT PRIMARY KEY,
                transaction_id TEXT,
                kind TEXT NOT NULL,
                location TEXT NOT NULL,
                checksum TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_tx_state ON transactions(state);
            CREATE INDEX IF NOT EXISTS idx_tx_resource_started
                ON transactions(resource_id, started_at);
            CREATE UNIQUE INDEX IF NOT EXISTS idx_approval_one_pending
                ON approvals(transaction_id) WHERE decision = 'pending';
            CREATE INDEX IF NOT EXISTS idx_approval_decision_expires
                ON approvals(decision, expires_at);
            CREATE INDEX IF NOT EXISTS idx_audit_tx ON audit_records(transaction_id);
            CREATE INDEX IF NOT EXISTS idx_audit_created ON audit_records(created_at);
            CREATE INDEX IF NOT EXISTS idx_exec_tx ON executions(transaction_id);
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    def execute(self, query: str, params: _SqlParams) -> None:
        with self._lock:
            self._conn.execute(query, params)
            self._conn.commit()

    def fetch_one(self, query: str, params: _SqlParams) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchone()

    def fetch_all(self, query: str, params: _SqlParams) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchall()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def create_transaction(self, tx: Transaction, alert: Alert, updated_at: str) -> str:
        """Insert *tx* and claim its resource in one database transaction.

        Returns ``tx.transaction_id`` when the row was created. When another
        non-terminal transaction already holds the resource nothing is inserted
        and the holder's id is returned instead.
        """
        with self._lock:
            if tx.resource_id:
                owner = self._claim_owner_locked(tx.resource_id)
                if owner is not None and owner != tx.transaction_id:
                    self._conn.commit()
                    return owner
            self._conn.execute(
                """
                INSERT INTO transactions (
                    transaction_id, alert_id, resource_id, state, revision, alert_json,
                    plan_json, plan_id, approved_by, started_at, completed_at,
                    status_detail, context_quality, merged_alert_ids, logs_uri, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    tx.transaction_id,
                    tx.alert_id,
                    tx.resource_id,
                    tx.state.value,
                    tx.revision,
                    dumps(alert.to_dict()),
                    dumps(tx.plan.to_dict()) if tx.plan else None,
                    tx.plan_id,
                    tx.approved_by,
                    tx.started_at,
                    tx.completed_at,
                    tx.status_detail,
                    tx.context_quality.value if tx.context_quality else None,
                    json.dumps(tx.merged_alert_ids),
                    tx.logs_uri,
                    updated_at,
                ),
            )
            self._conn.execute(
                """
                INSERT OR IGNORE INTO transaction_revisions (
                    transaction_id, state, revision, status_detail, recorded_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (tx.transaction_id, tx.state.value, tx.revision, tx.status_detail, updated_at),
            )
            if tx.resource_id:
                self._conn.execute(
                    "INSERT OR IGNORE INTO active_resources "
                    "(resource_id, transaction_id, claimed_at) VALUES (?, ?, ?)",
                    (tx.resource_id, tx.transaction_id, updated_at),
                )
            self._conn.commit()
            return tx.transaction_id

    def upsert_transition(self, tx: Transaction, recorded_at: str) -> bool:
        """Persist *tx* at its ``revision``; idempotent on (id, state, revision).

        Returns True when the row now reflects this transition, either because
        this call wrote it or because an identical earlier attempt did. Returns
        False when another writer already recorded a different state at this
        revision or a newer one.
        """
        with self._lock:
            existing = self._conn.execute(
                "SELECT state FROM transaction_revisions "
                "WHERE transaction_id = ? AND revision = ?",
                (tx.transaction_id, tx.revision),
            ).fetchone()
            if existing is not None:
                return existing["state"] == tx.state.value

            cursor = self._conn.execute(
                """
                UPDATE transactions
                SET state = ?, revision = ?, plan_json = ?, plan_id = ?, approved_by = ?,
                    completed_at = ?, status_detail = ?, context_quality = ?,
                    merged_alert_ids = ?, logs_uri = ?, updated_at = ?
                WHERE transaction_id = ? AND revision < ?
                """,
                (
                    tx.state.value,
                    tx.revision,
                    dumps(tx.plan.to_dict()) if tx.plan else None,
                    tx.plan_id,
                    tx.approved_by,
                    tx.completed_at,
                    tx.status_detail,
                    tx.context_quality.value if tx.context_quality else None,
                    json.dumps(tx.merged_alert_ids),
                    tx.logs_uri,
                    recorded_at,
                    tx.transaction_id,
                    tx.revision,
                ),
            )
            if cursor.rowcount != 1:
                self._conn.rollback()
                return False
            self._conn.execute(
                """
                INSERT OR IGNORE INTO transaction_revisions (
                    transaction_id, state, revision, status_detail, recorded_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (tx.transaction_id, tx.state.value, tx.revision, tx.status_detail, recorded_at),
            )
            if tx.state in TERMINAL_STATES and tx.resource_id:
                self._conn.execute(
                    "DELETE FROM active_resources WHERE resource_id = ? AND transaction_id = ?",
                    (tx.resource_id, tx.transaction_id),
                )
            self._conn.commit()
            return True

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        row = self.fetch_one(
            "SELECT * FROM transactions WHERE transaction_id = ?", (transaction_id,)
        )
        if row is None:
            return None
        return _row_to_transaction(row)

    def get_alert(self, transaction_id: str) -> Alert | None:
        row = self.fetch_one(
            "SELECT alert_json FROM transactions WHERE transaction_id = ?", (transaction_id,)
        )
        if row is None:
            return None
        return Alert.from_dict(json.loads(row["alert_json"]))

    def list_transactions(
        self, states: Iterable[TransactionState] | None = None
    ) -> list[Transaction]:
        if states is None:
            rows = self.fetch_all("SELECT * FROM transactions ORDER BY started_at", ())
        else:
            values = [state.value for state in states]
            if not values:
                return []
            placeholders = ",".join("?" for _ in values)
            rows = self.fetch_all(
                f"SELECT * FROM transactions WHERE state IN ({placeholders}) "
                "ORDER BY started_at",
                values,
            )
        return [_row_to_transaction(row) for row in rows]

    def list_revisions(self, transaction_id: str) -> list[sqlite3.Row]:
        return self.fetch_all(
            "SELECT * FROM transaction_revisions WHERE transaction_id = ? ORDER BY revision",
            (transaction_id,),
        )

    def find_active_for_resource(self, resource_id: str, since: str) -> Transaction | None:
        placeholders = ",".join("?" for _ in _TERMINAL_VALUES)
        row = self.fetch_one(
            f"""
            SELECT * FROM transactions
            WHERE resource_id = ? AND started_at >= ? AND state NOT IN ({placeholders})
            ORDER BY started_at DESC LIMIT 1
            """,
            (resource_id, since, *_TERMINAL_VALUES),
        )
        if row is None:
            return None
        return _row_to_transaction(row)

    def append_merged_alert(self, transaction_id: str, alert_id: str) -> None:
        with self._lock:
            row = self._conn.execute(
                "SELECT merged_alert_ids FROM transactions WHERE transaction_id = ?",
                (transaction_id,),
            ).fetchone()
            if row is None:
                return
            merged = json.loads(row["merged_alert_ids"])
            if alert_id not in merged:
                merged.append(alert_id)
            self._conn.execute(
                "UPDATE transactions SET merged_alert_ids = ? WHERE transaction_id = ?",
                (json.dumps(merged), transaction_id),
            )
            self._conn.commit()

    # ------------------------------------------------------------------
    # Resource claims (coalescing)
    # ------------------------------------------------------------------

    def _claim_owner_locked(self, resource_id: str) -> str | None:
        # Claims held by terminal transactions are stale; drop them first.
        placeholders = ",".join("?" for _ in _TERMINAL_VALUES)
        self._conn.execute(
            f"""
            DELETE FROM active_resources
            WHERE resource_id = ? AND transaction_id IN (
                SELECT transaction_id FROM transactions WHERE state IN ({placeholders})
            )
            """,
            (resource_id, *_TERMINAL_VALUES),
        )
        row = self._conn.execute(
            "SELECT transaction_id FROM active_resources WHERE resource_id = ?",
            (resource_id,),
        ).fetchone()
        return None if row is None else str(row["transaction_id"])

    def claim_resource(self, resource_id: str, transaction_id: str, claimed_at: str) -> str:
        """Claim *resource_id* for an existing transaction.

        Returns the id of the transaction that owns the claim afterwards: the
        caller's own id when it won, the existing owner's id otherwise.
        """
        with self._lock:
            owner = self._claim_owner_locked(resource_id)
            if owner is None:
                self._conn.execute(
                    "INSERT INTO active_resources (resource_id, transaction_id, claimed_at) "
                    "VALUES (?, ?, ?)",
                    (resource_id, transaction_id, claimed_at),
                )
                owner = transaction_id
            self._conn.commit()
            return owner

    def resource_owner(self, resource_id: str) -> str | None:
        row = self.fetch_one(
            "SELECT transaction_id FROM active_resources WHERE resource_id = ?", (resource_id,)
        )
        return None if row is None else str(row["transaction_id"])

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    def insert_approval(self, request: ApprovalRequest) -> ApprovalRequest:
        """Insert a pending request, or return the transaction's existing pending one."""
        with self._lock:
            try:
                self._conn.execute(
                    """
                    INSERT INTO approvals (
                        request_id, transaction_id, plan_id, issued_at, expires_at,
                        decision, decided_by, decision_at, authorize_destructive
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        request.request_id,
                        request.transaction_id,
                        request.plan_id,
                        request.issued_at,
                        request.expires_at,
                        request.decision.value,
                        request.decided_by,
                        request.decision_at,
                        int(request.authorize_destructive),
                    ),
                )
                self._conn.commit()
                return request
            except sqlite3.IntegrityError:
                self._conn.rollback()
                row = self._conn.execute(
                    "SELECT * FROM approvals WHERE transaction_id = ? AND decision = 'pending'",
                    (request.transaction_id,),
                ).fetchone()
                if row is None:
                    raise
                return _row_to_approval(row)

    def get_approval(self, request_id: str) -> ApprovalRequest | None:
        row = self.fetch_one("SELECT * FROM approvals WHERE request_id = ?", (request_id,))
        return None if row is None else _row_to_approval(row)

    def get_pending_approval(self, transaction_id: str) -> ApprovalRequest | None:
        row = self.fetch_one(
            "SELECT * FROM approvals WHERE transaction_id = ? AND decision = 'pending'",
            (transaction_id,),
        )
        return None if row is None else _row_to_approval(row)

    def latest_approval(self, transaction_id: str) -> ApprovalRequest | None:
        row = self.fetch_one(
            "SELECT * FROM approvals WHERE transaction_id = ? "
            "ORDER BY issued_at DESC, rowid DESC LIMIT 1",
            (transaction_id,),
        )
        return None if row is None else _row_to_approval(row)

    def decide_approval(
        self,
        request_id: str,
        decision: Decision,
        decided_by: str | None,
        decision_at: str,
        authorize_destructive: bool = False,
    ) -> bool:
        """Record the first decision; True only for the caller that performed it."""
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE approvals
                SET decision = ?, decided_by = ?, decision_at = ?,
                    authorize_destructive = MAX(authorize_destructive, ?)
                WHERE request_id = ? AND decision = 'pending'
                """,
                (
                    decision.value,
                    decided_by,
                    decision_at,
                    int(authorize_destructive),
                    request_id,
                ),
            )
            self._conn.commit()
            return cursor.rowcount == 1

    def list_overdue_approvals(self, now: str) -> list[ApprovalRequest]:
        rows = self.fetch_all(
            "SELECT * FROM approvals WHERE decision = 'pending' AND expires_at <= ? "
            "ORDER BY expires_at",
            (now,),
        )
        return [_row_to_approval(row) for row in rows]

    # ------------------------------------------------------------------
    # Executions (idempotency)
    # ------------------------------------------------------------------

    def get_execution(self, idempotency_key: str) -> ExecutionRecord | None:
        row = self.fetch_one(
            "SELECT * FROM executions WHERE idempotency_key = ?", (idempotency_key,)
        )
        return None if row is None else ExecutionRecord(**dict(row))

    def claim_execution(self, record: ExecutionRecord) -> bool:
        """Insert a ``started`` execution row; False when the key already exists."""
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT OR IGNORE INTO executions (
                    idempotency_key, transaction_id, step, tool, status,
                    result_json, started_at, completed_at, params_hash
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.idempotency_key,
                    record.transaction_id,
                    record.step,
                    record.tool,
                    record.status,
                    record.result_json,
                    record.started_at,
                    record.completed_at,
                    record.params_hash,
                ),
            )
            self._conn.commit()
            return cursor.rowcount == 1

    def complete_execution(
        self, idempotency_key: str, status: str, result_json: str, completed_at: str
    ) -> None:
        self.execute(
            """
            UPDATE executions SET status = ?, result_json = ?, completed_at = ?
            WHERE idempotency_key = ?
            """,
            (status, result_json, completed_at, idempotency_key),
        )

    def reset_execution(self, idempotency_key: str) -> None:
        """Drop a non-succeeded execution so an audited re-drive can retry it."""
        self.execute(
            "DELETE FROM executions WHERE idempotency_key = ? AND status != 'succeeded'",
            (idempotency_key,),
        )

    def list_executions(self, transaction_id: str) -> list[ExecutionRecord]:
        rows = self.fetch_all(
            "SELECT * FROM executions WHERE transaction_id = ? ORDER BY step",
            (transaction_id,),
        )
        return [ExecutionRecord(**dict(row)) for row in rows]

    # ------------------------------------------------------------------
    # Audit records
    # ------------------------------------------------------------------

    def append_audit(
        self,
        *,
        record_id: str,
        transaction_id: str,
        kind: str,
        payload: str,
        allowlist_version: int | None,
        created_at: str,
        chain: Callable[[str, int, str], str],
    ) -> AuditRecord:
        """Append one audit record at the next sequence number.

        ``chain(prev_hash, sequence, body)`` computes the record hash; it runs
        under the store lock so sequence numbers and the hash chain never fork.
        """
        with self._lock:
            last = self._conn.execute(
                "SELECT sequence, record_hash FROM audit_records WHERE transaction_id = ? "
                "ORDER BY sequence DESC LIMIT 1",
                (transaction_id,),
            ).fetchone()
            sequence = 1 if last is None else int(last["sequence"]) + 1
            prev_hash = "" if last is None else str(last["record_hash"])
            body = _audit_body(kind, payload, allowlist_version, created_at)
            record_hash = chain(prev_hash, sequence, body)
            self._conn.execute(
                """
                INSERT INTO audit_records (
                    record_id, transaction_id, sequence, kind, payload,
                    allowlist_version, created_at, prev_hash, record_hash
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record_id,
                    transaction_id,
                    sequence,
                    kind,
                    payload,
                    allowlist_version,
                    created_at,
                    prev_hash,
                    record_hash,
                ),
            )
            self._conn.execute(
                """
                INSERT INTO audit_heads (transaction_id, sequence, record_hash)
                VALUES (?, ?, ?)
                ON CONFLICT(transaction_id) DO UPDATE SET
                    sequence = excluded.sequence, record_hash = excluded.record_hash
                """,
                (transaction_id, sequence, record_hash),
            )
            self._conn.commit()
        return AuditRecord(
            record_id=record_id,
            transaction_id=transaction_id,
            sequence=sequence,
            kind=kind,
            payload=json.loads(payload),
            created_at=created_at,
            prev_hash=prev_hash,
            record_hash=record_hash,
            allowlist_version=allowlist_version,
        )

    def list_audit(self, transaction_id: str) -> list[AuditRecord]:
        rows = self.fetch_all(
            "SELECT * FROM audit_records WHERE transaction_id = ? ORDER BY sequence",
            (transaction_id,),
        )
        return [_row_to_audit(row) for row in rows]

    def raw_audit_rows(self, transaction_id: str) -> list[sqlite3.Row]:
        return self.fetch_all(
            "SELECT * FROM audit_records WHERE transaction_id = ? ORDER BY sequence",
            (transaction_id,),
        )

    def audit_head(self, transaction_id: str) -> tuple[int, str] | None:
        """Sequence and hash of the last record appended to a chain."""
        row = self.fetch_one(
            "SELECT sequence, record_hash FROM audit_heads WHERE transaction_id = ?",
            (transaction_id,),
        )
        return None if row is None else (int(row["sequence"]), str(row["record_hash"]))

    def purge_audit_before(self, cutoff: str) -> int:
        """Delete audit records of terminal transactions completed before *cutoff*.

        Retention removes whole chains only, so a kept chain always verifies.
        """
        placeholders = ",".join("?" for _ in _TERMINAL_VALUES)
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT transaction_id FROM transactions
                WHERE state IN ({placeholders}) AND completed_at IS NOT NULL
                    AND completed_at < ?
                """,
                (*_TERMINAL_VALUES, cutoff),
            ).fetchall()
            if not rows:
                return 0
            expired = [row["transaction_id"] for row in rows]
            marks = ",".join("?" for _ in expired)
            cursor = self._conn.execute(
                f"DELETE FROM audit_records WHERE transaction_id IN ({marks})", expired
            )
            self._conn.execute(
                f"DELETE FROM audit_artifacts WHERE transaction_id IN ({marks})", expired
            )
            self._conn.execute(
                f"DELETE FROM audit_heads WHERE transaction_id IN ({marks})", expired
            )
            self._conn.commit()
            return cursor.rowcount

    def add_artifact(self, artifact: ArtifactRecord) -> None:
        self.execute(
            """
            INSERT INTO audit_artifacts (
                artifact_id, transaction_id, kind, location, checksum, created_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                artifact.artifact_id,
                artifact.transaction_id,
                artifact.kind,
                artifact.location,
                artifact.checksum,
                artifact.created_at,
            ),
        )


def _audit_body(
    kind: str, payload: str, allowlist_version: int | None, created_at: str
) -> str:
    version = "" if allowlist_version is None else str(allowlist_version)
    return "|".join((kind, payload, version, created_at))


def audit_body(row: sqlite3.Row) -> str:
    """Rebuild the hashed body of a stored audit row."""
    return _audit_body(row["kind"], row["payload"], row["allowlist_version"], row["created_at"])


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    plan_json = row["plan_json"]
    quality = row["context_quality"]
    return Transaction(
        transaction_id=row["transaction_id"],
        alert_id=row["alert_id"],
        resource_id=row["resource_id"],
        state=TransactionState(row["state"]),
        started_at=row["started_at"],
        revision=int(row["revision"]),
        plan=Plan.from_dict(json.loads(plan_json)) if plan_json else None,
        plan_id=row["plan_id"],
        approved_by=row["approved_by"],
        completed_at=row["completed_at"],
        status_detail=row["status_detail"],
        context_quality=ContextQuality(quality) if quality else None,
        merged_alert_ids=list(json.loads(row["merged_alert_ids"] or "[]")),
        logs_uri=row["logs_uri"],
    )


def _row_to_approval(row: sqlite3.Row) -> ApprovalRequest:
    return ApprovalRequest(
        request_id=row["request_id"],
        transaction_id=row["transaction_id"],
        plan_id=row["plan_id"],
        issued_at=row["issued_at"],
        expires_at=row["expires_at"],
        decision=Decision(row["decision"]),
        decided_by=row["decided_by"],
        decision_at=row["decision_at"],
        authorize_destructive=bool(row["authorize_destructive"]),
    )


def _row_to_audit(row: sqlite3.Row) -> AuditRecord:
    return AuditRecord(
        record_id=row["record_id"],
        transaction_id=row["transaction_id"],
        sequence=int(row["sequence"]),
        kind=row["kind"],
        payload=json.loads(row["payload"]),
        created_at=row["created_at"],
        prev_hash=row["prev_hash"],
        record_hash=row["record_hash"],
        allowlist_version=row["allowlist_version"],
    )
