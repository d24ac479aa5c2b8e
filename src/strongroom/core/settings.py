# Core Module - Vault Settings
#
# Two operator-controlled flags read by the access gate and the retention job:
#
#   require_password_verification  step-up re-authentication before reveal
#   audit_log_retention_days       0 keeps the audit trail forever, max 365
#
# Stored as key/value rows in the `settings` table of the vault database.
# Missing keys fall back to the defaults below; malformed stored values are
# logged and replaced by the default rather than blocking start-up.

import logging
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from .audit_log import AuditAction, AuditLog
from .db import session
from .exceptions import ValidationError

logger = logging.getLogger(__name__)

MAX_RETENTION_DAYS = 365
DEFAULT_RETENTION_DAYS = 90


@dataclass(frozen=True)
class VaultSettings:
    require_password_verification: bool = False
    audit_log_retention_days: int = DEFAULT_RETENTION_DAYS

    def __post_init__(self):
        if not isinstance(self.require_password_verification, bool):
            raise ValidationError("require_password_verification must be a boolean")
        days = self.audit_log_retention_days
        if isinstance(days, bool) or not isinstance(days, int):
            raise ValidationError("audit_log_retention_days must be an integer")
        if not 0 <= days <= MAX_RETENTION_DAYS:
            raise ValidationError(
                f"audit_log_retention_days must be between 0 and {MAX_RETENTION_DAYS}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_FIELD_NAMES = tuple(f.name for f in fields(VaultSettings))


def _encode(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def _decode(name: str, raw: str) -> Any:
    if name == "require_password_verification":
        return raw == "1"
    return int(raw)


class SettingsStore:
    """SQLite-backed store for :class:`VaultSettings`.

    Args:
        db_path: Path to the vault database file.
        audit_log: When given, updates are audited as ``settings_update``
            in the same transaction as the write.
    """

    def __init__(self, db_path: Union[str, Path], audit_log: Optional[AuditLog] = None):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._audit = audit_log
        self._init_database()

    def _init_database(self):
        with session(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

    def load(self) -> VaultSettings:
        """Return the current settings, defaults filled in."""
        with session(self.db_path) as conn:
            rows = conn.execute("SELECT key, value FROM settings").fetchall()

        defaults = VaultSettings()
        values: Dict[str, Any] = {}
        for row in rows:
            name = row["key"]
            if name not in _FIELD_NAMES:
                continue
            try:
                values[name] = _decode(name, row["value"])
            except ValueError:
                logger.warning("Ignoring malformed stored setting %s=%r", name, row["value"])

        try:
            return VaultSettings(**values)
        except ValidationError as exc:
            logger.warning("Stored settings invalid (%s); using defaults", exc.message)
            return defaults

    def update(self, actor: str = "system", **changes: Any) -> Tuple[VaultSettings, Dict[str, Any]]:
        """Apply a partial update and return ``(settings, changed)``.

        ``changed`` maps each field whose value actually changed to its new
        value. Unknown fields and out-of-range values raise ValidationError.
        """
        unknown = set(changes) - set(_FIELD_NAMES)
        if unknown:
            raise ValidationError(f"Unknown setting(s): {', '.join(sorted(unknown))}")

        current = self.load()
        merged = {**current.to_dict(), **changes}
        updated = VaultSettings(**merged)

        changed = {
            name: getattr(updated, name)
            for name in _FIELD_NAMES
            if getattr(updated, name) != getattr(current, name)
        }
        if not changed:
            return updated, changed

        now = datetime.now(timezone.utc).isoformat()
        with session(self.db_path, immediate=True) as conn:
            for name, value in changed.items():
                conn.execute(
                    """INSERT INTO settings (key, value, updated_at)
                       VALUES (?, ?, ?)
                       ON CONFLICT(key) DO UPDATE SET
                           value = excluded.value,
                           updated_at = excluded.updated_at""",
                    (name, _encode(value), now),
                )
            if self._audit is not None:
                self._audit.append(
                    actor,
                    AuditAction.SETTINGS_UPDATE,
                    detail={"changed": changed},
                    conn=conn,
                )

        logger.info("Settings updated by %s: %s", actor, ", ".join(sorted(changed)))
        return updated, changed
