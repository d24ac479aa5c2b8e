# Vault Module - Credential Store
#
# SQLite table of credentials with AES-256-GCM encrypted secret payloads.
#
# Every entry point checks the access gate first. create/update/delete/reveal
# each write exactly one audit entry: on success inside the same transaction
# as the mutation (or, for reveal, before plaintext is returned), on failure
# with the error kind in detail.error. If the audit write fails the action
# fails with AuditUnavailable.
#
# Plaintext leaves this module only through reveal(). label, url and notes
# are stored in the clear; notes are not for secrets.

import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from ..core.audit_log import AuditAction, AuditLog, AuditOutcome
from ..core.db import session
from ..core.exceptions import (
    AuditUnavailable,
    CryptoUnavailable,
    NotFound,
    TamperDetected,
    ValidationError,
    VaultError,
)
from ..core.identity import Identity
from .access_gate import AccessGate
from .encryption import Ciphertext, EncryptionService
from .payloads import (
    CredentialType,
    associated_data,
    decode_payload,
    encode_payload,
    parse_payload,
    payload_to_dict,
)

logger = logging.getLogger(__name__)

MAX_LABEL_LENGTH = 200
UPDATABLE_FIELDS = ("label", "url", "notes", "type", "payload")
_KNOWN_TYPES = frozenset(t.value for t in CredentialType)


@dataclass(frozen=True)
class CredentialSummary:
    """Everything about a credential except its secret content."""
    id: str
    label: str
    type: str
    url: Optional[str]
    notes: Optional[str]
    created_by: str
    created_at: str
    updated_at: str
    version: int
    corrupt: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "type": self.type,
            "url": self.url,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "version": self.version,
            "corrupt": self.corrupt,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "CredentialSummary":
        known = row["type"] in _KNOWN_TYPES
        return cls(
            id=row["id"],
            label=row["label"],
            type=row["type"],
            url=row["url"],
            notes=row["notes"],
            created_by=row["created_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            version=row["version"],
            corrupt=not known,
        )


def _clean_label(label: Any) -> str:
    if not isinstance(label, str) or not label.strip():
        raise ValidationError("Label is required")
    label = label.strip()
    if len(label) > MAX_LABEL_LENGTH:
        raise ValidationError(f"Label must be at most {MAX_LABEL_LENGTH} characters")
    return label


def _clean_optional(name: str, value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Field {name!r} must be a string")
    value = value.strip()
    return value or None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CredentialStore:
    """
    Encrypted credential records behind the access gate.

    Args:
        db_path: Path to the vault database file.
        encryption: Shared EncryptionService.
        gate: AccessGate consulted before every operation.
        audit_log: Destination for the per-call audit entry.
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        encryption: EncryptionService,
        gate: AccessGate,
        audit_log: AuditLog,
    ):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._encryption = encryption
        self._gate = gate
        self._audit = audit_log

        # id -> [lock, holders]; dropped when the last holder leaves
        self._id_locks: Dict[str, list] = {}
        self._id_locks_guard = threading.Lock()
        self._init_database()

    def _init_database(self):
        with session(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS credentials (
                    id TEXT PRIMARY KEY,
                    label TEXT NOT NULL,
                    type TEXT NOT NULL,
                    encrypted_payload BLOB NOT NULL,
                    key_id TEXT NOT NULL,
                    url TEXT,
                    notes TEXT,
                    created_by TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_credentials_label ON credentials(label)"
            )

    # ── Helpers ──────────────────────────────────────────────────────

    @contextmanager
    def _id_lock(self, cred_id: str) -> Iterator[None]:
        with self._id_locks_guard:
            entry = self._id_locks.setdefault(cred_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._id_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._id_locks[cred_id]

    @contextmanager
    def _audited(
        self, actor: Identity, action: AuditAction, target_id: Optional[str] = None
    ) -> Iterator[None]:
        """Record a failure entry if the wrapped operation raises."""
        try:
            yield
        except AuditUnavailable:
            raise
        except Exception as exc:
            kind = exc.kind if isinstance(exc, VaultError) else "internal_error"
            self._audit.append(
                actor.username,
                action,
                target_id=target_id,
                outcome=AuditOutcome.FAILURE,
                detail={"error": kind},
            )
            raise

    def _require_encryption(self) -> None:
        if not self._encryption.is_available():
            raise CryptoUnavailable()

    @staticmethod
    def _fetch(conn: sqlite3.Connection, cred_id: str) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM credentials WHERE id = ?", (cred_id,)).fetchone()
        if row is None:
            raise NotFound()
        return row

    # ── Create ───────────────────────────────────────────────────────

    def create(
        self,
        actor: Identity,
        label: str,
        type: Union[CredentialType, str],
        payload: Dict[str, Any],
        url: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CredentialSummary:
        """Validate, encrypt and store a new credential."""
        with self._audited(actor, AuditAction.CREATE):
            self._gate.require_authorized(actor)
            label = _clean_label(label)
            cred_type = CredentialType.parse(type)
            parsed = parse_payload(cred_type, payload)
            url = _clean_optional("url", url)
            notes = _clean_optional("notes", notes)
            self._require_encryption()

            cred_id = str(uuid.uuid4())
            sealed = self._encryption.encrypt(
                encode_payload(parsed), associated_data(cred_id, cred_type)
            )
            now = _now()

            with session(self.db_path, immediate=True) as conn:
                conn.execute(
                    """INSERT INTO credentials
                       (id, label, type, encrypted_payload, key_id, url, notes,
                        created_by, created_at, updated_at, version)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)""",
                    (
                        cred_id, label, cred_type.value, sealed.to_blob(), sealed.key_id,
                        url, notes, actor.username, now, now,
                    ),
                )
                self._audit.append(
                    actor.username,
                    AuditAction.CREATE,
                    target_id=cred_id,
                    detail={"label": label, "type": cred_type.value},
                    conn=conn,
                )
                row = self._fetch(conn, cred_id)

        logger.info("Credential %s created by %s", cred_id, actor.username)
        return CredentialSummary.from_row(row)

    # ── Update ───────────────────────────────────────────────────────

    def update(self, actor: Identity, cred_id: str, **changes: Any) -> CredentialSummary:
        """Partially update label, url, notes, type or payload.

        A new payload is re-encrypted; changing type requires one.
        """
        with self._audited(actor, AuditAction.UPDATE, cred_id):
            self._gate.require_authorized(actor)
            self._require_encryption()

            unknown = set(changes) - set(UPDATABLE_FIELDS)
            if unknown:
                raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

            with self._id_lock(cred_id), session(self.db_path, immediate=True) as conn:
                row = self._fetch(conn, cred_id)
                columns: Dict[str, Any] = {}
                changed: List[str] = []

                if "label" in changes:
                    label = _clean_label(changes["label"])
                    if label != row["label"]:
                        columns["label"] = label
                        changed.append("label")
                for name in ("url", "notes"):
                    if name in changes:
                        value = _clean_optional(name, changes[name])
                        if value != row[name]:
                            columns[name] = value
                            changed.append(name)

                new_type = row["type"]
                if changes.get("type") is not None:
                    new_type = CredentialType.parse(changes["type"]).value
                    if new_type != row["type"] and changes.get("payload") is None:
                        raise ValidationError("Changing the type requires a new payload")

                if changes.get("payload") is not None:
                    cred_type = CredentialType.parse(new_type)
                    parsed = parse_payload(cred_type, changes["payload"])
                    sealed = self._encryption.encrypt(
                        encode_payload(parsed), associated_data(cred_id, cred_type)
                    )
                    columns["encrypted_payload"] = sealed.to_blob()
                    columns["key_id"] = sealed.key_id
                    changed.append("payload")
                    if new_type != row["type"]:
                        columns["type"] = new_type
                        changed.append("type")

                if columns:
                    assignments = ", ".join(f"{name} = ?" for name in columns)
                    conn.execute(
                        f"UPDATE credentials SET {assignments}, updated_at = ?, "
                        "version = version + 1 WHERE id = ?",
                        (*columns.values(), _now(), cred_id),
                    )
                self._audit.append(
                    actor.username,
                    AuditAction.UPDATE,
                    target_id=cred_id,
                    detail={"changed": sorted(changed)},
                    conn=conn,
                )
                row = self._fetch(conn, cred_id)

        logger.info("Credential %s updated by %s", cred_id, actor.username)
        return CredentialSummary.from_row(row)

    # ── Delete ───────────────────────────────────────────────────────

    def delete(self, actor: Identity, cred_id: str) -> None:
        with self._audited(actor, AuditAction.DELETE, cred_id):
            self._gate.require_authorized(actor)
            with self._id_lock(cred_id), session(self.db_path, immediate=True) as conn:
                row = self._fetch(conn, cred_id)
                conn.execute("DELETE FROM credentials WHERE id = ?", (cred_id,))
                self._audit.append(
                    actor.username,
                    AuditAction.DELETE,
                    target_id=cred_id,
                    detail={"label": row["label"], "type": row["type"]},
                    conn=conn,
                )
        logger.info("Credential %s deleted by %s", cred_id, actor.username)

    # ── Read (no secret content) ─────────────────────────────────────

    def list(self, actor: Identity) -> List[CredentialSummary]:
        """All credentials, no secret content, sorted by label."""
        self._gate.require_authorized(actor)
        with session(self.db_path) as conn:
            rows = conn.execute(
                "SELECT id, label, type, url, notes, created_by, created_at, "
                "updated_at, version FROM credentials ORDER BY label COLLATE NOCASE, id"
            ).fetchall()
        return [CredentialSummary.from_row(r) for r in rows]

    def get_summary(self, actor: Identity, cred_id: str) -> CredentialSummary:
        self._gate.require_authorized(actor)
        with session(self.db_path) as conn:
            row = self._fetch(conn, cred_id)
        return CredentialSummary.from_row(row)

    # ── Reveal ───────────────────────────────────────────────────────

    def reveal(self, actor: Identity, cred_id: str) -> Dict[str, str]:
        """Decrypt and return the secret payload.

        Requires the capability and, when enabled, a step-up session.
        The view entry is stored before any plaintext is returned.
        """
        with self._audited(actor, AuditAction.VIEW, cred_id):
            self._gate.require_authorized(actor)
            self._gate.require_step_up(actor)
            self._require_encryption()

            with session(self.db_path) as conn:
                row = self._fetch(conn, cred_id)

            if row["type"] not in _KNOWN_TYPES:
                logger.error("Credential %s has unrecognized type %r", cred_id, row["type"])
                raise TamperDetected("Stored credential is corrupt")
            cred_type = CredentialType(row["type"])

            sealed = Ciphertext.from_blob(row["encrypted_payload"], row["key_id"])
            try:
                plaintext = self._encryption.decrypt(sealed, associated_data(cred_id, cred_type))
            except TamperDetected:
                logger.error("Integrity check failed for credential %s", cred_id)
                raise
            payload = payload_to_dict(decode_payload(cred_type, plaintext))

            self._audit.append(
                actor.username,
                AuditAction.VIEW,
                target_id=cred_id,
                detail={"type": cred_type.value},
            )
        return payload
