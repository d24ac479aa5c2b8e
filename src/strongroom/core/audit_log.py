# Core Module - Credential Access Audit Log
#
# Append-only ledger of every security-relevant vault action.
#
# Storage:
#   - `audit_log` table in the vault SQLite file, keyed by a strictly
#     increasing AUTOINCREMENT id, indexed on timestamp and action
#   - Entries are write-once; the retention sweep is the only delete path
#     and removes whole rows in bounded batches
#
# Guarantees:
#   - append() never fails silently: storage errors raise AuditUnavailable
#     so the triggering action aborts instead of running unaudited
#   - append() can join the caller's open transaction (conn=...) so a
#     mutation and its audit entry commit or roll back together
#   - Timestamps never go backwards relative to id order
#   - query() pages newest-first by id cursor, stable under concurrent appends
#
# Every entry is also mirrored to the structured security log (structlog JSON).
# Entries carry metadata only; secret values never reach this module.

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import structlog

from .db import session
from .exceptions import AuditUnavailable

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

_structlog_configured = False


def configure_security_logging() -> None:
    """Configure the structlog JSON pipeline used for the security mirror."""
    global _structlog_configured
    if _structlog_configured:
        return

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _structlog_configured = True


class AuditAction(str, Enum):
    """Closed set of audited actions."""
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    VERIFY_SUCCESS = "verify_success"
    VERIFY_FAILURE = "verify_failure"
    LIST = "list"
    EXPORT_ATTEMPT = "export_attempt"
    ACCESS_GRANT = "access_grant"
    ACCESS_REVOKE = "access_revoke"
    SETTINGS_UPDATE = "settings_update"


class AuditOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


def _format_timestamp(value: datetime) -> str:
    # Fixed-width UTC text so lexical order matches chronological order
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ── Data Model ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class AuditEntry:
    """One immutable audit record."""
    id: int
    timestamp: datetime
    actor: str
    action: AuditAction
    target_id: Optional[str]
    outcome: AuditOutcome
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "actor": self.actor,
            "action": self.action.value,
            "target_id": self.target_id,
            "outcome": self.outcome.value,
            "detail": dict(self.detail),
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AuditEntry":
        return cls(
            id=row["id"],
            timestamp=_parse_timestamp(row["timestamp"]),
            actor=row["actor"],
            action=AuditAction(row["action"]),
            target_id=row["target_id"],
            outcome=AuditOutcome(row["outcome"]),
            detail=json.loads(row["detail"]) if row["detail"] else {},
        )


@dataclass
class AuditFilter:
    """Optional query constraints; unset fields match everything."""
    action: Optional[AuditAction] = None
    actor: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    outcome: Optional[AuditOutcome] = None

    def to_sql(self) -> Tuple[List[str], List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if self.action is not None:
            clauses.append("action = ?")
            params.append(AuditAction(self.action).value)
        if self.actor:
            clauses.append("actor = ?")
            params.append(self.actor)
        if self.since is not None:
            clauses.append("timestamp >= ?")
            params.append(_format_timestamp(self.since))
        if self.until is not None:
            clauses.append("timestamp <= ?")
            params.append(_format_timestamp(self.until))
        if self.outcome is not None:
            clauses.append("outcome = ?")
            params.append(AuditOutcome(self.outcome).value)
        return clauses, params


@dataclass
class AuditPage:
    """A page of entries, newest first. ``next_cursor`` is None on the last page."""
    entries: List[AuditEntry]
    next_cursor: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "next_cursor": self.next_cursor,
        }


# ── Audit Log ────────────────────────────────────────────────────────


class AuditLog:
    """SQLite-backed, append-only audit trail.

    Usage::

        audit = AuditLog(db_path)
        audit.append("alice", AuditAction.VIEW, target_id=cred_id)
        page = audit.query(AuditFilter(action=AuditAction.VIEW), limit=20)
        older = audit.query(cursor=page.next_cursor)
        audit.cleanup(retention_days=90)
    """

    DEFAULT_PAGE_SIZE = 50
    MAX_PAGE_SIZE = 500
    CLEANUP_BATCH_SIZE = 500

    def __init__(
        self,
        db_path: Union[str, Path],
        clock: Optional[Callable[[], datetime]] = None,
        batch_size: Optional[int] = None,
    ):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock or _utc_now
        self._batch_size = batch_size or self.CLEANUP_BATCH_SIZE

        configure_security_logging()
        self._security_log = structlog.get_logger("strongroom.audit")
        self._init_database()

    def _init_database(self):
        """Create the audit table and indexes if they don't exist."""
        with session(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    actor TEXT NOT NULL,
                    action TEXT NOT NULL,
                    target_id TEXT,
                    outcome TEXT NOT NULL DEFAULT 'success',
                    detail TEXT NOT NULL DEFAULT '{}'
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_log(action)"
            )

    def now(self) -> datetime:
        return self._clock()

    # ── Append ───────────────────────────────────────────────────────

    def append(
        self,
        actor: str,
        action: AuditAction,
        *,
        target_id: Optional[str] = None,
        outcome: AuditOutcome = AuditOutcome.SUCCESS,
        detail: Optional[Dict[str, Any]] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> AuditEntry:
        """Write one entry. Raises AuditUnavailable if it cannot be stored.

        When ``conn`` is given the insert runs inside the caller's open
        transaction; the caller is expected to hold the write lock.
        """
        action = AuditAction(action)
        outcome = AuditOutcome(outcome)
        detail = dict(detail or {})

        try:
            if conn is not None:
                entry = self._insert(conn, actor, action, target_id, outcome, detail)
            else:
                with session(self.db_path, immediate=True) as own_conn:
                    entry = self._insert(own_conn, actor, action, target_id, outcome, detail)
        except (sqlite3.Error, TypeError, ValueError) as exc:
            logger.error("Audit append failed for action %s: %s", action.value, exc)
            raise AuditUnavailable() from exc

        self._security_log.info(
            "security_event",
            audit_id=entry.id,
            actor=entry.actor,
            action=entry.action.value,
            target_id=entry.target_id,
            outcome=entry.outcome.value,
            detail=entry.detail,
        )
        return entry

    def _insert(
        self,
        conn: sqlite3.Connection,
        actor: str,
        action: AuditAction,
        target_id: Optional[str],
        outcome: AuditOutcome,
        detail: Dict[str, Any],
    ) -> AuditEntry:
        timestamp = self.now()
        # Clamp to the newest stored entry so timestamps follow id order
        row = conn.execute(
            "SELECT timestamp FROM audit_log ORDER BY id DESC LIMIT 1"
        ).fetchone()
        if row is not None:
            previous = _parse_timestamp(row[0])
            if previous > timestamp:
                timestamp = previous

        detail_json = json.dumps(detail, sort_keys=True)
        cursor = conn.execute(
            "INSERT INTO audit_log (timestamp, actor, action, target_id, outcome, detail) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                _format_timestamp(timestamp),
                actor,
                action.value,
                target_id,
                outcome.value,
                detail_json,
            ),
        )
        return AuditEntry(
            id=cursor.lastrowid,
            timestamp=timestamp,
            actor=actor,
            action=action,
            target_id=target_id,
            outcome=outcome,
            detail=detail,
        )

    # ── Query ────────────────────────────────────────────────────────

    def query(
        self,
        filters: Optional[AuditFilter] = None,
        *,
        cursor: Optional[int] = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> AuditPage:
        """Return entries newest first, strictly older than ``cursor`` if given."""
        filters = filters or AuditFilter()
        limit = max(1, min(int(limit), self.MAX_PAGE_SIZE))

        clauses, params = filters.to_sql()
        if cursor is not None:
            clauses.append("id < ?")
            params.append(int(cursor))

        sql = "SELECT * FROM audit_log"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit + 1)

        try:
            with session(self.db_path) as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            logger.error("Audit query failed: %s", exc)
            raise AuditUnavailable() from exc

        entries = [AuditEntry.from_row(r) for r in rows[:limit]]
        next_cursor = entries[-1].id if len(rows) > limit else None
        return AuditPage(entries=entries, next_cursor=next_cursor)

    # ── Retention ────────────────────────────────────────────────────

    def cleanup(self, retention_days: int) -> int:
        """Delete entries older than ``retention_days``. 0 keeps everything.

        Deletes in batches, one short transaction each, so concurrent
        appends and queries are never starved. Returns the number removed.
        """
        retention_days = int(retention_days)
        if retention_days < 0:
            raise ValueError("retention_days must be >= 0")
        if retention_days == 0:
            return 0

        cutoff = _format_timestamp(self.now() - timedelta(days=retention_days))
        removed = 0
        try:
            while True:
                with session(self.db_path, immediate=True) as conn:
                    deleted = conn.execute(
                        "DELETE FROM audit_log WHERE id IN ("
                        "  SELECT id FROM audit_log WHERE timestamp < ? "
                        "  ORDER BY id LIMIT ?"
                        ")",
                        (cutoff, self._batch_size),
                    ).rowcount
                removed += deleted
                if deleted < self._batch_size:
                    break
        except sqlite3.Error as exc:
            logger.error("Audit retention sweep failed after %d deletions: %s", removed, exc)
            raise AuditUnavailable() from exc

        if removed:
            logger.info(
                "Audit retention sweep removed %d entries older than %d days",
                removed,
                retention_days,
            )
        return removed

    # ── Statistics ───────────────────────────────────────────────────

    def stats(self) -> Dict[str, Any]:
        """Return entry count and the oldest/newest timestamps."""
        with session(self.db_path) as conn:
            row = conn.execute(
                "SELECT COUNT(*), MIN(timestamp), MAX(timestamp) FROM audit_log"
            ).fetchone()
        return {
            "total_entries": row[0],
            "oldest": row[1],
            "newest": row[2],
        }
