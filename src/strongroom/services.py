# Service container
#
# Every component is built once by build_services() and handed to the API
# through app.state. Tests build their own container against tmp_path.

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import AppConfig
from .core.audit_log import AuditAction, AuditLog
from .core.exceptions import Forbidden
from .core.identity import CREDENTIALS_CAPABILITY, Identity, LocalDirectory
from .core.retention import RetentionScheduler
from .core.settings import SettingsStore, VaultSettings
from .vault.access_gate import AccessGate
from .vault.credential_store import CredentialStore
from .vault.encryption import EncryptionService

logger = logging.getLogger(__name__)

ENCRYPTION_WARNING = (
    "Encryption is unavailable: credentials cannot be created, updated or "
    "revealed until a valid master key is configured."
)


@dataclass
class VaultServices:
    config: AppConfig
    audit_log: AuditLog
    settings: SettingsStore
    encryption: EncryptionService
    directory: LocalDirectory
    gate: AccessGate
    credentials: CredentialStore
    retention: RetentionScheduler

    # ── Lifecycle ────────────────────────────────────────────────────

    def start(self) -> None:
        if not self.encryption.is_available():
            logger.error(ENCRYPTION_WARNING)
        self.retention.start()

    def stop(self) -> None:
        self.retention.stop()

    # ── Settings ─────────────────────────────────────────────────────

    def effective_settings(self) -> Dict[str, Any]:
        data = self.settings.load().to_dict()
        available = self.encryption.is_available()
        data["encryption_available"] = available
        data["warning"] = None if available else ENCRYPTION_WARNING
        return data

    def update_settings(self, actor: Identity, **changes: Any) -> VaultSettings:
        """Administrators only; audited as settings_update."""
        if not actor.is_admin:
            raise Forbidden()
        updated, _ = self.settings.update(actor.username, **changes)
        return updated

    # ── Access management ────────────────────────────────────────────

    def list_access(self, actor: Identity) -> List[Dict[str, Any]]:
        if not actor.is_admin:
            raise Forbidden()
        return [user.to_dict() for user in self.directory.list_users()]

    def set_credentials_access(self, actor: Identity, user_id: str, allowed: bool) -> Dict[str, Any]:
        """Grant or revoke the credentials capability for a non-admin user.

        The audit entry is written before the grant changes, so a failed
        audit write leaves access as it was.
        """
        if not actor.is_admin:
            raise Forbidden()
        user = self.directory.get_user(user_id)
        if user.is_admin:
            # Administrators always hold the capability
            return user.to_dict()

        holds = CREDENTIALS_CAPABILITY in user.capabilities
        if holds != allowed:
            self.audit_log.append(
                actor.username,
                AuditAction.ACCESS_GRANT if allowed else AuditAction.ACCESS_REVOKE,
                target_id=user.user_id,
                detail={"username": user.username, "capability": CREDENTIALS_CAPABILITY},
            )
            if allowed:
                self.directory.grant(user.user_id)
            else:
                self.directory.revoke(user.user_id)
            logger.info(
                "%s %s credentials access for %s",
                actor.username,
                "granted" if allowed else "revoked",
                user.username,
            )
        return user.to_dict()

    # ── Login sessions ───────────────────────────────────────────────

    def logout(self, token: str) -> Optional[Identity]:
        identity = self.directory.logout(token)
        if identity is not None:
            self.gate.end_session(identity)
        return identity


def build_services(
    config: AppConfig,
    directory: Optional[LocalDirectory] = None,
    encryption: Optional[EncryptionService] = None,
) -> VaultServices:
    """Wire every component against the configured database and key."""
    config.data_dir.mkdir(parents=True, exist_ok=True)
    db_path = config.db_path

    audit_log = AuditLog(db_path)
    settings = SettingsStore(db_path, audit_log=audit_log)
    if encryption is None:
        encryption = EncryptionService.from_config(
            config.master_key, config.resolved_key_file, key_id=config.key_id
        )
    if directory is None:
        directory = LocalDirectory(idle_timeout=config.session_idle_timeout)
    if config.admin_user and config.admin_password:
        directory.add_user(config.admin_user, config.admin_password, is_admin=True)
    elif not directory.list_users():
        logger.warning("No administrator configured; set STRONGROOM_ADMIN_USER/PASSWORD")

    gate = AccessGate(
        policy=directory,
        identity_provider=directory,
        settings=settings,
        audit_log=audit_log,
        step_up_ttl=config.step_up_ttl,
    )
    credentials = CredentialStore(db_path, encryption, gate, audit_log)
    retention = RetentionScheduler(audit_log, settings, schedule_hour=config.cleanup_hour)

    return VaultServices(
        config=config,
        audit_log=audit_log,
        settings=settings,
        encryption=encryption,
        directory=directory,
        gate=gate,
        credentials=credentials,
        retention=retention,
    )
