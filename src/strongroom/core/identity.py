# Core Module - Identity, Capability Policy and Local User Directory
#
# The vault consumes two narrow interfaces from the host's user directory:
#
#   IdentityProvider.verify_actor_password(identity, secret) -> bool
#   AuthorizationPolicy.actor_has_capability(identity, capability) -> bool
#
# LocalDirectory is the in-process implementation used by the server:
# PBKDF2-SHA256 password hashes, random session tokens, and per-user
# capability grants. Administrators always hold every capability.
# Login tokens lapse after a period without use (idle_timeout).
# Nothing here is persisted; users are seeded from configuration at start-up.

import logging
import os
import secrets
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Protocol, Set, Tuple, runtime_checkable

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import AuthFailed, NotFound, ValidationError

logger = logging.getLogger(__name__)

CREDENTIALS_CAPABILITY = "view_vault_credentials"


@dataclass(frozen=True)
class Identity:
    """The authenticated caller of one request.

    ``session_id`` names the interactive login session; step-up state is
    scoped to it so a fresh login starts unverified.
    """
    user_id: str
    username: str
    is_admin: bool = False
    session_id: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "is_admin": self.is_admin,
        }


@runtime_checkable
class IdentityProvider(Protocol):
    def verify_actor_password(self, identity: Identity, secret: str) -> bool:
        ...


@runtime_checkable
class AuthorizationPolicy(Protocol):
    def actor_has_capability(self, identity: Identity, capability: str) -> bool:
        ...


# ── Local Directory ──────────────────────────────────────────────────


@dataclass
class DirectoryUser:
    user_id: str
    username: str
    password_salt: bytes
    password_hash: bytes
    is_admin: bool = False
    capabilities: Set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict:
        if self.is_admin:
            access = "always"
        elif CREDENTIALS_CAPABILITY in self.capabilities:
            access = "granted"
        else:
            access = "none"
        return {
            "user_id": self.user_id,
            "username": self.username,
            "is_admin": self.is_admin,
            "credentials_access": access,
        }


class LocalDirectory:
    """In-memory user directory implementing both consumed interfaces.

    Args:
        iterations: PBKDF2 iteration count. Tests pass a small value.
        idle_timeout: Seconds a login token survives without use. None
            keeps tokens until logout.
    """

    PBKDF2_ITERATIONS = 600_000
    SALT_LENGTH = 16

    def __init__(
        self,
        iterations: Optional[int] = None,
        idle_timeout: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._iterations = iterations or self.PBKDF2_ITERATIONS
        self._idle_timeout = timedelta(seconds=idle_timeout) if idle_timeout else None
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._users: Dict[str, DirectoryUser] = {}
        self._by_name: Dict[str, str] = {}
        # token -> [user_id, session_id, last_seen]
        self._sessions: Dict[str, list] = {}
        self._lock = threading.Lock()

    def _derive(self, salt: bytes) -> PBKDF2HMAC:
        return PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self._iterations,
        )

    # ── Users ────────────────────────────────────────────────────────

    def add_user(self, username: str, password: str, is_admin: bool = False) -> DirectoryUser:
        username = (username or "").strip()
        if not username:
            raise ValidationError("Username is required")
        if not password:
            raise ValidationError("Password is required")

        salt = os.urandom(self.SALT_LENGTH)
        digest = self._derive(salt).derive(password.encode("utf-8"))
        user = DirectoryUser(
            user_id=str(uuid.uuid4()),
            username=username,
            password_salt=salt,
            password_hash=digest,
            is_admin=is_admin,
        )
        with self._lock:
            if username in self._by_name:
                raise ValidationError(f"User {username!r} already exists")
            self._users[user.user_id] = user
            self._by_name[username] = user.user_id
        logger.info("Added %s user %s", "admin" if is_admin else "standard", username)
        return user

    def get_user(self, user_id: str) -> DirectoryUser:
        with self._lock:
            user = self._users.get(user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def list_users(self) -> List[DirectoryUser]:
        with self._lock:
            return sorted(self._users.values(), key=lambda u: u.username)

    def identity_for(self, user_id: str, session_id: Optional[str] = None) -> Identity:
        user = self.get_user(user_id)
        return Identity(
            user_id=user.user_id,
            username=user.username,
            is_admin=user.is_admin,
            session_id=session_id,
        )

    # ── IdentityProvider ─────────────────────────────────────────────

    def _check_password(self, user: DirectoryUser, password: str) -> bool:
        try:
            self._derive(user.password_salt).verify(
                password.encode("utf-8"), user.password_hash
            )
        except InvalidKey:
            return False
        return True

    def verify_actor_password(self, identity: Identity, secret: str) -> bool:
        with self._lock:
            user = self._users.get(identity.user_id)
        if user is None or not secret:
            return False
        return self._check_password(user, secret)

    # ── AuthorizationPolicy ──────────────────────────────────────────

    def actor_has_capability(self, identity: Identity, capability: str) -> bool:
        with self._lock:
            user = self._users.get(identity.user_id)
            if user is None:
                return False
            return user.is_admin or capability in user.capabilities

    def grant(self, user_id: str, capability: str = CREDENTIALS_CAPABILITY) -> bool:
        """Grant a capability. Returns False if the user already held it."""
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise NotFound("User not found")
            if capability in user.capabilities:
                return False
            user.capabilities.add(capability)
            return True

    def revoke(self, user_id: str, capability: str = CREDENTIALS_CAPABILITY) -> bool:
        """Revoke a capability. Returns False if the user did not hold it."""
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise NotFound("User not found")
            if capability not in user.capabilities:
                return False
            user.capabilities.discard(capability)
            return True

    # ── Login sessions ───────────────────────────────────────────────

    def login(self, username: str, password: str) -> Tuple[str, Identity]:
        """Authenticate and issue a session token."""
        with self._lock:
            user_id = self._by_name.get((username or "").strip())
            user = self._users.get(user_id) if user_id else None
        if user is None or not password or not self._check_password(user, password):
            logger.warning("Failed login for %s", username)
            raise AuthFailed("Invalid username or password")

        token = secrets.token_urlsafe(32)
        session_id = uuid.uuid4().hex
        with self._lock:
            self._sessions[token] = [user.user_id, session_id, self._clock()]
        logger.info("User %s logged in", user.username)
        return token, self.identity_for(user.user_id, session_id)

    def resolve(self, token: Optional[str]) -> Optional[Identity]:
        """Return the identity behind a session token, or None."""
        if not token:
            return None
        now = self._clock()
        with self._lock:
            match = None
            for known, entry in self._sessions.items():
                if secrets.compare_digest(known, token):
                    match = known
                    break
            if match is None:
                return None
            entry = self._sessions[match]
            if self._idle_timeout is not None and now - entry[2] >= self._idle_timeout:
                del self._sessions[match]
                logger.info("Login session expired after inactivity")
                return None
            entry[2] = now
            user = self._users.get(entry[0])
        if user is None:
            return None
        return Identity(
            user_id=user.user_id,
            username=user.username,
            is_admin=user.is_admin,
            session_id=entry[1],
        )

    def logout(self, token: str) -> Optional[Identity]:
        """Invalidate a session token. Returns the identity it belonged to."""
        identity = self.resolve(token)
        if identity is not None:
            with self._lock:
                self._sessions.pop(token, None)
        return identity
