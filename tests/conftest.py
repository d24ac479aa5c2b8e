"""
Shared pytest fixtures for the Strongroom test suite.

Every fixture builds fresh components against ``tmp_path``; nothing touches
a real data directory or the process environment.
  - FakeDirectory   -> in-memory identity provider + authorization policy
  - vault_db        -> one SQLite file shared by store, audit log, settings
  - api_client      -> TestClient around a fully wired VaultServices
"""

import base64
from typing import Dict, Optional, Set

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from strongroom.config import AppConfig
from strongroom.core.audit_log import AuditLog
from strongroom.core.identity import Identity, LocalDirectory
from strongroom.core.settings import SettingsStore
from strongroom.vault.access_gate import AccessGate
from strongroom.vault.credential_store import CredentialStore
from strongroom.vault.encryption import EncryptionService

ADMIN_PASSWORD = "admin-pass-123"
USER_PASSWORD = "user-pass-456"


class FakeDirectory:
    """In-memory stand-in for the host user directory."""

    def __init__(self):
        self.passwords: Dict[str, str] = {}
        self.admins: Set[str] = set()
        self.grants: Dict[str, Set[str]] = {}
        self.fail_verification_with: Optional[Exception] = None
        self.verify_calls = 0

    def add(self, user_id: str, password: str, is_admin: bool = False,
            session_id: str = "s1") -> Identity:
        self.passwords[user_id] = password
        if is_admin:
            self.admins.add(user_id)
        return Identity(user_id=user_id, username=user_id, is_admin=is_admin,
                        session_id=session_id)

    def grant(self, user_id: str, capability: str) -> None:
        self.grants.setdefault(user_id, set()).add(capability)

    def verify_actor_password(self, identity: Identity, secret: str) -> bool:
        self.verify_calls += 1
        if self.fail_verification_with is not None:
            raise self.fail_verification_with
        return self.passwords.get(identity.user_id) == secret

    def actor_has_capability(self, identity: Identity, capability: str) -> bool:
        if identity.user_id in self.admins:
            return True
        return capability in self.grants.get(identity.user_id, set())


# ── Component fixtures ──────────────────────────────────────────────


@pytest.fixture
def master_key():
    return AESGCM.generate_key(bit_length=256)


@pytest.fixture
def encryption(master_key):
    return EncryptionService(master_key)


@pytest.fixture
def vault_db(tmp_path):
    return tmp_path / "vault.db"


@pytest.fixture
def audit_log(vault_db):
    return AuditLog(vault_db)


@pytest.fixture
def settings(vault_db, audit_log):
    return SettingsStore(vault_db, audit_log=audit_log)


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def admin(directory):
    return directory.add("alice", ADMIN_PASSWORD, is_admin=True)


@pytest.fixture
def outsider(directory):
    """A user without the credentials capability."""
    return directory.add("mallory", USER_PASSWORD)


@pytest.fixture
def gate(directory, settings, audit_log):
    return AccessGate(
        policy=directory,
        identity_provider=directory,
        settings=settings,
        audit_log=audit_log,
    )


@pytest.fixture
def store(vault_db, encryption, gate, audit_log):
    return CredentialStore(vault_db, encryption, gate, audit_log)


@pytest.fixture
def entries(audit_log):
    """Callable returning every audit entry, oldest first."""
    def _entries():
        page = audit_log.query(limit=AuditLog.MAX_PAGE_SIZE)
        return list(reversed(page.entries))
    return _entries


# ── API fixtures ─────────────────────────────────────────────────────


@pytest.fixture
def app_config(tmp_path, master_key):
    return AppConfig(
        data_dir=tmp_path / "data",
        master_key=base64.b64encode(master_key).decode("ascii"),
        admin_user="admin",
        admin_password=ADMIN_PASSWORD,
    )


@pytest.fixture
def services(app_config):
    from strongroom.services import build_services

    return build_services(app_config, directory=LocalDirectory(iterations=1_000))


@pytest.fixture
def api_client(services):
    from fastapi.testclient import TestClient

    from strongroom.api.main import create_app

    return TestClient(create_app(services, run_scheduler=False))


@pytest.fixture
def login(api_client):
    """Callable logging a user in and returning auth headers."""
    def _login(username="admin", password=ADMIN_PASSWORD) -> Dict[str, str]:
        resp = api_client.post("/api/session/login", json={"username": username, "password": password})
        assert resp.status_code == 200, resp.text
        return {"X-Session-Token": resp.json()["token"]}
    return _login
