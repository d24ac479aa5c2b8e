# Vault Module - Access Control Gate
#
# Two checks stand between a caller and decrypted credential content:
#
#   1. Capability: the authorization policy must grant
#      "view_vault_credentials" (administrators always qualify)
#   2. Step-up: when require_password_verification is on, the caller's
#      interactive session must hold an unexpired StepUpSession, created by
#      re-entering their password via verify_step_up()
#
# Step-up state is per (user, login session), memory only, never persisted.
# Unverified -> Verified(expires_at) -> (expiry | logout) -> Unverified.
# Expiry is checked lazily on lookup.

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from ..core.audit_log import AuditAction, AuditLog, AuditOutcome
from ..core.exceptions import AuthFailed, Forbidden
from ..core.identity import (
    CREDENTIALS_CAPABILITY,
    AuthorizationPolicy,
    Identity,
    IdentityProvider,
)
from ..core.settings import SettingsStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepUpSession:
    identity: Identity
    verified_at: datetime
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_dict(self) -> Dict:
        return {
            "user_id": self.identity.user_id,
            "verified_at": self.verified_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


def _session_key(actor: Identity) -> Tuple[str, Optional[str]]:
    return actor.user_id, actor.session_id


class AccessGate:
    """Capability and step-up checks for every credential operation.

    Args:
        policy: Answers capability questions for an identity.
        identity_provider: Verifies a re-entered password.
        settings: Source of ``require_password_verification``.
        audit_log: Receives verify_success / verify_failure entries.
        step_up_ttl: Seconds a verification stays valid. None keeps it for
            the rest of the login session.
    """

    def __init__(
        self,
        policy: AuthorizationPolicy,
        identity_provider: IdentityProvider,
        settings: SettingsStore,
        audit_log: AuditLog,
        step_up_ttl: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._policy = policy
        self._identity = identity_provider
        self._settings = settings
        self._audit = audit_log
        self._ttl = timedelta(seconds=step_up_ttl) if step_up_ttl else None
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._sessions: Dict[Tuple[str, Optional[str]], StepUpSession] = {}
        self._lock = threading.Lock()

    # ── Capability ───────────────────────────────────────────────────

    def has_credentials_capability(self, actor: Optional[Identity]) -> bool:
        if actor is None:
            return False
        return bool(self._policy.actor_has_capability(actor, CREDENTIALS_CAPABILITY))

    def require_authorized(self, actor: Optional[Identity]) -> None:
        if not self.has_credentials_capability(actor):
            raise Forbidden()

    # ── Step-up ──────────────────────────────────────────────────────

    def verify_step_up(self, actor: Identity, supplied_secret: Any) -> StepUpSession:
        """Re-check the caller's password and open a step-up session.

        Writes exactly one audit entry: verify_success, or verify_failure
        carrying the error kind. There is no lockout counter.
        """
        if not self.has_credentials_capability(actor):
            self._audit.append(
                actor.username,
                AuditAction.VERIFY_FAILURE,
                outcome=AuditOutcome.FAILURE,
                detail={"error": Forbidden.kind},
            )
            raise Forbidden()

        secret = supplied_secret if isinstance(supplied_secret, str) else ""
        try:
            verified = bool(self._identity.verify_actor_password(actor, secret))
        except Exception:
            logger.exception("Identity provider error during step-up for %s", actor.username)
            verified = False

        if not verified:
            self._audit.append(
                actor.username,
                AuditAction.VERIFY_FAILURE,
                outcome=AuditOutcome.FAILURE,
                detail={"error": AuthFailed.kind},
            )
            logger.warning("Step-up verification failed for %s", actor.username)
            raise AuthFailed()

        now = self._clock()
        session = StepUpSession(
            identity=actor,
            verified_at=now,
            expires_at=now + self._ttl if self._ttl else None,
        )
        # Audit first: a session must never exist without its entry
        self._audit.append(actor.username, AuditAction.VERIFY_SUCCESS)
        with self._lock:
            self._sessions[_session_key(actor)] = session
        return session

    def current_session(self, actor: Identity) -> Optional[StepUpSession]:
        """Return the caller's unexpired step-up session, dropping an expired one."""
        key = _session_key(actor)
        with self._lock:
            session = self._sessions.get(key)
            if session is not None and session.is_expired(self._clock()):
                del self._sessions[key]
                session = None
        return session

    def require_step_up(self, actor: Identity) -> None:
        if not self._settings.load().require_password_verification:
            return
        if self.current_session(actor) is None:
            raise Forbidden("Password verification required")

    def end_session(self, actor: Identity) -> None:
        with self._lock:
            self._sessions.pop(_session_key(actor), None)
