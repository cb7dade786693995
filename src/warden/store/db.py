"""
SQLite storage for Warden.

WardenDB implements both store interfaces on one SQLite file: raw policy
documents and per-tenant audit chains.

Design Principles:
    - Append-only audit: rows are inserted, never updated, except for
      legal soft-marks which rewrite details and leave the hash alone
    - Integrity: UNIQUE(tenant_id, sequence) rejects a second writer that
      raced for the same sequence
    - Snapshots: every read is a single statement returning fresh models
    - Self-contained: a single .db file holds policies and audit history

Tables:
    - policies: Raw documents keyed by document key, indexed by scope
    - audit_events: Hash-chained events, one chain per tenant
    - schema_version: Applied schema versions
"""

import json
import sqlite3
import threading
from collections.abc import Generator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from warden.audit.events import (
    AuditEvent,
    AuditQuery,
    AuditQueryResult,
    SortOrder,
    compute_hash,
)
from warden.errors import (
    StorageConnectionError,
    StorageIntegrityError,
    StorageReadError,
    StorageWriteError,
)
from warden.schema import PolicyDocument, Scope
from warden.store.base import (
    GLOBAL_TARGET,
    AuditStore,
    PolicyStore,
    as_raw_document,
    document_key,
    document_scope,
    document_target,
    raw_field,
)

logger = structlog.get_logger()

# Schema version for migrations
SCHEMA_VERSION = 1

# SQL for creating tables
CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Policies table: raw documents, migrated on read
CREATE TABLE IF NOT EXISTS policies (
    policy_id TEXT PRIMARY KEY,
    scope TEXT NOT NULL,
    scope_target TEXT NOT NULL,
    name TEXT NOT NULL,
    version TEXT,
    parent_policy_id TEXT,
    document_json TEXT NOT NULL,
    document_hash TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Audit events table: one hash chain per tenant
CREATE TABLE IF NOT EXISTS audit_events (
    tenant_id TEXT NOT NULL,
    sequence INTEGER NOT NULL,
    event_id TEXT NOT NULL UNIQUE,
    event_type TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    outcome TEXT NOT NULL,
    actor_type TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    resource_type TEXT,
    resource_id TEXT,
    high_risk INTEGER NOT NULL DEFAULT 0,
    previous_hash TEXT,
    hash TEXT NOT NULL,
    event_json TEXT NOT NULL,
    marked_at TEXT,
    UNIQUE (tenant_id, sequence)
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_policies_scope ON policies(scope, scope_target);
CREATE INDEX IF NOT EXISTS idx_audit_events_type ON audit_events(tenant_id, event_type);
CREATE INDEX IF NOT EXISTS idx_audit_events_actor ON audit_events(tenant_id, actor_id);
CREATE INDEX IF NOT EXISTS idx_audit_events_time ON audit_events(tenant_id, timestamp);
"""


def now_iso() -> str:
    """Get current UTC time in ISO format."""
    return datetime.now(UTC).isoformat()


class WardenDB(PolicyStore, AuditStore):
    """
    SQLite database for Warden storage.

    Usage:
        db = WardenDB("warden.db")
        db.put_policy(raw_document)
        db.append_audit_event("acme", event)
        db.close()

    Or use as context manager:
        with WardenDB("warden.db") as db:
            ...

    The connection is shared across threads; a process-local lock
    serializes statements on it.
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file (":memory:" for an
                     in-process database). Created if it doesn't exist.
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._connect()
        self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
        except sqlite3.Error as e:
            raise StorageConnectionError(
                db_path=str(self.db_path),
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

    def _init_schema(self) -> None:
        """Initialize database schema if needed."""
        try:
            with self._lock:
                cursor = self._conn.executescript(CREATE_TABLES_SQL)
                cursor.close()

                cursor = self._conn.execute(
                    "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
                )
                row = cursor.fetchone()
                if row is None:
                    self._conn.execute(
                        "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                        (SCHEMA_VERSION, now_iso()),
                    )
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="init_schema",
                underlying_error=str(e),
            ) from e

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """Context manager for database transactions."""
        with self._lock:
            try:
                yield
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "WardenDB":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Policy Operations
    # =========================================================================

    def put_policy(self, document: Mapping[str, Any] | PolicyDocument) -> str:
        """
        Insert or replace a policy document.

        Args:
            document: Raw mapping or model

        Returns:
            The document key
        """
        raw = as_raw_document(document)
        key = document_key(raw)
        document_json = json.dumps(raw, sort_keys=True, default=str)
        timestamp = now_iso()
        version = raw.get("version")

        try:
            with self.transaction():
                self._conn.execute(
                    """
                    INSERT INTO policies (
                        policy_id, scope, scope_target, name, version,
                        parent_policy_id, document_json, document_hash,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(policy_id) DO UPDATE SET
                        scope = excluded.scope,
                        scope_target = excluded.scope_target,
                        name = excluded.name,
                        version = excluded.version,
                        parent_policy_id = excluded.parent_policy_id,
                        document_json = excluded.document_json,
                        document_hash = excluded.document_hash,
                        updated_at = excluded.updated_at
                    """,
                    (
                        key,
                        document_scope(raw),
                        document_target(raw),
                        str(raw.get("name", "")),
                        None if version is None else str(version),
                        raw_field(raw, "parentPolicyId"),
                        document_json,
                        compute_hash(document_json),
                        timestamp,
                        timestamp,
                    ),
                )
            return key
        except sqlite3.Error as e:
            logger.error("storage_error", operation="put_policy", error=str(e))
            raise StorageWriteError(
                operation="put_policy",
                underlying_error=str(e),
            ) from e

    def get_policy(self, policy_id: str) -> dict[str, Any] | None:
        """Get a raw policy document by key."""
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT document_json FROM policies WHERE policy_id = ?",
                    (policy_id,),
                ).fetchone()
        except sqlite3.Error as e:
            logger.error("storage_error", operation="get_policy", error=str(e))
            raise StorageReadError(
                operation="get_policy",
                underlying_error=str(e),
            ) from e
        if row is None:
            return None
        return json.loads(row["document_json"])

    def get_policies_for_scope(self, scope: Scope | str, target: str | None) -> list[dict[str, Any]]:
        """Get raw documents bound to a scope target, oldest first."""
        scope_value = scope.value if isinstance(scope, Scope) else scope
        try:
            with self._lock:
                rows = self._conn.execute(
                    """
                    SELECT document_json FROM policies
                    WHERE scope = ? AND scope_target = ?
                    ORDER BY rowid
                    """,
                    (scope_value, target or GLOBAL_TARGET),
                ).fetchall()
        except sqlite3.Error as e:
            logger.error("storage_error", operation="get_policies_for_scope", error=str(e))
            raise StorageReadError(
                operation="get_policies_for_scope",
                underlying_error=str(e),
            ) from e
        return [json.loads(row["document_json"]) for row in rows]

    def list_policy_ids(self) -> list[str]:
        """Keys of all stored documents, oldest first."""
        try:
            with self._lock:
                rows = self._conn.execute("SELECT policy_id FROM policies ORDER BY rowid").fetchall()
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="list_policy_ids",
                underlying_error=str(e),
            ) from e
        return [row["policy_id"] for row in rows]

    # =========================================================================
    # Audit Operations
    # =========================================================================

    def append_audit_event(self, tenant_id: str, event: AuditEvent) -> None:
        """
        Append an event to a tenant chain.

        Raises:
            StorageIntegrityError: If (tenant_id, sequence) already exists
            StorageWriteError: On any other database failure
        """
        try:
            with self.transaction():
                self._conn.execute(
                    """
                    INSERT INTO audit_events (
                        tenant_id, sequence, event_id, event_type, timestamp,
                        outcome, actor_type, actor_id, resource_type, resource_id,
                        high_risk, previous_hash, hash, event_json
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        tenant_id,
                        event.sequence,
                        event.event_id,
                        event.event_type,
                        event.timestamp.isoformat(),
                        event.outcome.value,
                        event.actor.type.value,
                        event.actor.id,
                        event.resource.type if event.resource else None,
                        event.resource.id if event.resource else None,
                        int(event.high_risk),
                        event.previous_hash,
                        event.hash,
                        event.model_dump_json(by_alias=True),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise StorageIntegrityError(
                operation="append_audit_event",
                message=f"Sequence {event.sequence} already exists for tenant {tenant_id}: {e}",
            ) from e
        except sqlite3.Error as e:
            logger.error("storage_error", operation="append_audit_event", error=str(e))
            raise StorageWriteError(
                operation="append_audit_event",
                underlying_error=str(e),
            ) from e

    def get_audit_events(
        self,
        tenant_id: str,
        start: int | None = None,
        end: int | None = None,
    ) -> list[AuditEvent]:
        """Get a tenant's events with start <= sequence <= end."""
        query = "SELECT event_json FROM audit_events WHERE tenant_id = ?"
        params: list[Any] = [tenant_id]
        if start is not None:
            query += " AND sequence >= ?"
            params.append(start)
        if end is not None:
            query += " AND sequence <= ?"
            params.append(end)
        query += " ORDER BY sequence"

        try:
            with self._lock:
                rows = self._conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            logger.error("storage_error", operation="get_audit_events", error=str(e))
            raise StorageReadError(
                operation="get_audit_events",
                underlying_error=str(e),
            ) from e
        return [AuditEvent.model_validate_json(row["event_json"]) for row in rows]

    def get_latest_audit_event(self, tenant_id: str) -> AuditEvent | None:
        """Get the head of a tenant chain."""
        try:
            with self._lock:
                row = self._conn.execute(
                    """
                    SELECT event_json FROM audit_events
                    WHERE tenant_id = ?
                    ORDER BY sequence DESC LIMIT 1
                    """,
                    (tenant_id,),
                ).fetchone()
        except sqlite3.Error as e:
            logger.error("storage_error", operation="get_latest_audit_event", error=str(e))
            raise StorageReadError(
                operation="get_latest_audit_event",
                underlying_error=str(e),
            ) from e
        if row is None:
            return None
        return AuditEvent.model_validate_json(row["event_json"])

    def query_audit_events(self, tenant_id: str, query: AuditQuery) -> AuditQueryResult:
        """Search a tenant's events; filters and pagination run in SQL."""
        where, params = _audit_filter(tenant_id, query)
        direction = "DESC" if query.sort_order == SortOrder.DESC else "ASC"
        try:
            with self._lock:
                total = self._conn.execute(
                    f"SELECT COUNT(*) FROM audit_events WHERE {where}", params
                ).fetchone()[0]
                rows = self._conn.execute(
                    f"""
                    SELECT event_json FROM audit_events WHERE {where}
                    ORDER BY sequence {direction} LIMIT ? OFFSET ?
                    """,
                    [*params, -1 if query.limit is None else query.limit, query.offset],
                ).fetchall()
        except sqlite3.Error as e:
            logger.error("storage_error", operation="query_audit_events", error=str(e))
            raise StorageReadError(
                operation="query_audit_events",
                underlying_error=str(e),
            ) from e

        events = [AuditEvent.model_validate_json(row["event_json"]) for row in rows]
        return AuditQueryResult(
            events=events,
            total_count=total,
            has_more=query.offset + len(events) < total,
        )

    def count_audit_events(self, tenant_id: str, query: AuditQuery | None = None) -> int:
        """Count a tenant's events matching the query filters."""
        where, params = _audit_filter(tenant_id, query or AuditQuery())
        try:
            with self._lock:
                return self._conn.execute(
                    f"SELECT COUNT(*) FROM audit_events WHERE {where}", params
                ).fetchone()[0]
        except sqlite3.Error as e:
            logger.error("storage_error", operation="count_audit_events", error=str(e))
            raise StorageReadError(
                operation="count_audit_events",
                underlying_error=str(e),
            ) from e

    def mark_audit_event(self, tenant_id: str, sequence: int, details: dict[str, Any]) -> bool:
        """Rewrite the details of one stored event, keeping its hash."""
        try:
            with self.transaction():
                row = self._conn.execute(
                    "SELECT event_json FROM audit_events WHERE tenant_id = ? AND sequence = ?",
                    (tenant_id, sequence),
                ).fetchone()
                if row is None:
                    return False
                event = AuditEvent.model_validate_json(row["event_json"])
                marked = event.model_copy(update={"details": dict(details)})
                self._conn.execute(
                    """
                    UPDATE audit_events SET event_json = ?, marked_at = ?
                    WHERE tenant_id = ? AND sequence = ?
                    """,
                    (marked.model_dump_json(by_alias=True), now_iso(), tenant_id, sequence),
                )
            return True
        except sqlite3.Error as e:
            logger.error("storage_error", operation="mark_audit_event", error=str(e))
            raise StorageWriteError(
                operation="mark_audit_event",
                underlying_error=str(e),
            ) from e

    def list_tenants(self) -> list[str]:
        """Tenants with at least one audit event."""
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT DISTINCT tenant_id FROM audit_events ORDER BY tenant_id"
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="list_tenants",
                underlying_error=str(e),
            ) from e
        return [row["tenant_id"] for row in rows]


def _audit_filter(tenant_id: str, query: AuditQuery) -> tuple[str, list[Any]]:
    """WHERE clause and parameters for a query's filters."""
    clauses = ["tenant_id = ?"]
    params: list[Any] = [tenant_id]
    columns = (
        ("actor_id", query.actor_id),
        ("actor_type", query.actor_type.value if query.actor_type else None),
        ("event_type", query.event_type),
        ("resource_type", query.resource_type),
        ("resource_id", query.resource_id),
        ("outcome", query.outcome.value if query.outcome else None),
    )
    for column, value in columns:
        if value is not None:
            clauses.append(f"{column} = ?")
            params.append(value)

    # Timestamps are stored as UTC isoformat strings, which sort chronologically
    if query.start_time is not None:
        clauses.append("timestamp >= ?")
        params.append(query.start_time.isoformat())
    if query.end_time is not None:
        clauses.append("timestamp <= ?")
        params.append(query.end_time.isoformat())
    if query.start_sequence is not None:
        clauses.append("sequence >= ?")
        params.append(query.start_sequence)
    if query.end_sequence is not None:
        clauses.append("sequence <= ?")
        params.append(query.end_sequence)
    if query.high_risk_only:
        clauses.append("high_risk = 1")
    return " AND ".join(clauses), params
