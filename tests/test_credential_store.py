# Tests for the Credential Store
#
# Coverage:
#   - create / update / delete / list / get_summary / reveal
#   - No secret material in summaries or at rest
#   - Exactly one audit entry per create/update/delete/reveal, success or failure
#   - Audit-or-abort: a failed audit write rolls the mutation back
#   - Degraded mode, tamper and corruption handling
#   - Concurrent updates bump version once each

import threading

import pytest

from strongroom.core.audit_log import AuditAction, AuditOutcome
from strongroom.core.db import session
from strongroom.core.exceptions import (
    AuditUnavailable,
    CryptoUnavailable,
    Forbidden,
    NotFound,
    TamperDetected,
    ValidationError,
)
from strongroom.core.identity import CREDENTIALS_CAPABILITY
from strongroom.vault.credential_store import CredentialStore
from strongroom.vault.encryption import EncryptionService


@pytest.fixture
def cred(store, admin):
    return store.create(
        admin,
        label="Payroll DB",
        type="username_password",
        payload={"username": "svc", "password": "p@ss"},
        url="https://db.internal",
        notes="rotated quarterly",
    )


def _break_audit(vault_db):
    with session(vault_db) as conn:
        conn.execute("DROP TABLE audit_log")


class TestCreate:
    def test_returns_summary_without_secret(self, cred):
        data = cred.to_dict()
        assert data["label"] == "Payroll DB"
        assert data["type"] == "username_password"
        assert data["version"] == 1
        assert data["corrupt"] is False
        assert "p@ss" not in str(data)
        assert "payload" not in data

    def test_secret_not_stored_in_clear(self, cred, vault_db):
        with session(vault_db) as conn:
            row = conn.execute("SELECT * FROM credentials WHERE id = ?", (cred.id,)).fetchone()
        assert b"p@ss" not in row["encrypted_payload"]
        assert row["key_id"] == "primary"
        assert row["notes"] == "rotated quarterly"

    def test_audited(self, cred, entries):
        (entry,) = entries()
        assert entry.action is AuditAction.CREATE
        assert entry.target_id == cred.id
        assert entry.actor == "alice"
        assert "p@ss" not in str(entry.to_dict())

    def test_invalid_payload(self, store, admin, entries):
        with pytest.raises(ValidationError):
            store.create(admin, label="x", type="api_key", payload={"secret": "s"})
        (entry,) = entries()
        assert entry.outcome is AuditOutcome.FAILURE
        assert entry.detail == {"error": "validation_error"}
        assert store.list(admin) == []

    def test_unknown_type(self, store, admin):
        with pytest.raises(ValidationError):
            store.create(admin, label="x", type="credit_card", payload={"number": "1"})

    def test_label_required(self, store, admin):
        with pytest.raises(ValidationError):
            store.create(admin, label="  ", type="secure_note", payload={"content": "c"})

    def test_forbidden(self, store, outsider, entries):
        with pytest.raises(Forbidden):
            store.create(outsider, label="x", type="secure_note", payload={"content": "c"})
        (entry,) = entries()
        assert entry.action is AuditAction.CREATE
        assert entry.detail == {"error": "forbidden"}

    def test_crypto_unavailable(self, vault_db, gate, audit_log, admin, entries):
        degraded = CredentialStore(vault_db, EncryptionService(None), gate, audit_log)
        with pytest.raises(CryptoUnavailable):
            degraded.create(admin, label="x", type="secure_note", payload={"content": "c"})
        assert entries()[-1].detail == {"error": "crypto_unavailable"}

    def test_audit_failure_aborts(self, store, admin, vault_db):
        _break_audit(vault_db)
        with pytest.raises(AuditUnavailable):
            store.create(admin, label="x", type="secure_note", payload={"content": "c"})
        with session(vault_db) as conn:
            assert conn.execute("SELECT COUNT(*) FROM credentials").fetchone()[0] == 0


class TestReveal:
    def test_returns_payload(self, store, admin, cred):
        assert store.reveal(admin, cred.id) == {"username": "svc", "password": "p@ss"}

    def test_audited(self, store, admin, cred, entries):
        store.reveal(admin, cred.id)
        entry = entries()[-1]
        assert entry.action is AuditAction.VIEW
        assert entry.outcome is AuditOutcome.SUCCESS
        assert entry.target_id == cred.id

    def test_forbidden_for_outsider(self, store, outsider, cred, entries):
        with pytest.raises(Forbidden):
            store.reveal(outsider, cred.id)
        entry = entries()[-1]
        assert entry.action is AuditAction.VIEW
        assert entry.actor == "mallory"
        assert entry.outcome is AuditOutcome.FAILURE

    def test_granted_user_can_reveal(self, store, directory, outsider, cred):
        directory.grant(outsider.user_id, CREDENTIALS_CAPABILITY)
        assert store.reveal(outsider, cred.id)["username"] == "svc"

    def test_step_up_required(self, store, gate, settings, admin, cred):
        settings.update("alice", require_password_verification=True)
        with pytest.raises(Forbidden):
            store.reveal(admin, cred.id)
        gate.verify_step_up(admin, "admin-pass-123")
        assert store.reveal(admin, cred.id)["password"] == "p@ss"

    def test_not_found(self, store, admin, entries):
        with pytest.raises(NotFound):
            store.reveal(admin, "missing")
        assert entries()[-1].detail == {"error": "not_found"}

    def test_tampered_ciphertext(self, store, admin, cred, vault_db, entries):
        with session(vault_db) as conn:
            blob = bytearray(conn.execute(
                "SELECT encrypted_payload FROM credentials WHERE id = ?", (cred.id,)
            ).fetchone()[0])
            blob[20] ^= 0x01
            conn.execute(
                "UPDATE credentials SET encrypted_payload = ? WHERE id = ?", (bytes(blob), cred.id)
            )
        with pytest.raises(TamperDetected):
            store.reveal(admin, cred.id)
        assert entries()[-1].detail == {"error": "tamper_detected"}

    def test_swapped_ciphertext_detected(self, store, admin, cred, vault_db):
        other = store.create(admin, label="Other", type="username_password",
                             payload={"username": "u", "password": "other"})
        with session(vault_db) as conn:
            conn.execute(
                "UPDATE credentials SET encrypted_payload = "
                "(SELECT encrypted_payload FROM credentials WHERE id = ?) WHERE id = ?",
                (other.id, cred.id),
            )
        with pytest.raises(TamperDetected):
            store.reveal(admin, cred.id)

    @pytest.mark.parametrize("cred_type, payload", [
        ("username_password", {"username": "svc"}),
        ("api_key", {"api_key": "k-1"}),
        ("ssh_key", {"private_key": "-----BEGIN KEY-----"}),
        ("secure_note", {"content": "door code"}),
    ])
    def test_known_types_not_corrupt(self, store, admin, cred_type, payload):
        created = store.create(admin, label=cred_type, type=cred_type, payload=payload)
        assert created.corrupt is False
        revealed = store.reveal(admin, created.id)
        assert {k: v for k, v in revealed.items() if v} == payload

    def test_unrecognized_type_is_corrupt(self, store, admin, cred, vault_db):
        with session(vault_db) as conn:
            conn.execute("UPDATE credentials SET type = 'punch_card' WHERE id = ?", (cred.id,))
        assert store.get_summary(admin, cred.id).corrupt is True
        with pytest.raises(TamperDetected):
            store.reveal(admin, cred.id)

    def test_crypto_unavailable(self, vault_db, gate, audit_log, admin, cred):
        degraded = CredentialStore(vault_db, EncryptionService(None), gate, audit_log)
        with pytest.raises(CryptoUnavailable):
            degraded.reveal(admin, cred.id)

    def test_audit_failure_withholds_plaintext(self, store, admin, cred, vault_db):
        _break_audit(vault_db)
        with pytest.raises(AuditUnavailable):
            store.reveal(admin, cred.id)


class TestUpdate:
    def test_metadata_update(self, store, admin, cred, entries):
        updated = store.update(admin, cred.id, label="Payroll DB (prod)", url=None)
        assert updated.label == "Payroll DB (prod)"
        assert updated.url is None
        assert updated.version == 2
        entry = entries()[-1]
        assert entry.action is AuditAction.UPDATE
        assert entry.detail == {"changed": ["label", "url"]}

    def test_payload_reencrypted(self, store, admin, cred, entries):
        store.update(admin, cred.id, payload={"username": "svc", "password": "n3w"})
        assert store.reveal(admin, cred.id)["password"] == "n3w"
        update_entry = entries()[-2]
        assert update_entry.detail == {"changed": ["payload"]}
        assert "n3w" not in str(update_entry.to_dict())

    def test_type_change_requires_payload(self, store, admin, cred):
        with pytest.raises(ValidationError):
            store.update(admin, cred.id, type="api_key")
        assert store.get_summary(admin, cred.id).type == "username_password"

    def test_type_change_with_payload(self, store, admin, cred):
        updated = store.update(admin, cred.id, type="api_key", payload={"api_key": "k-1"})
        assert updated.type == "api_key"
        assert store.reveal(admin, cred.id) == {"api_key": "k-1", "secret": ""}

    def test_unknown_field(self, store, admin, cred):
        with pytest.raises(ValidationError):
            store.update(admin, cred.id, created_by="mallory")

    def test_not_found(self, store, admin, entries):
        with pytest.raises(NotFound):
            store.update(admin, "missing", label="x")
        entry = entries()[-1]
        assert entry.target_id == "missing"
        assert entry.detail == {"error": "not_found"}

    def test_noop_update_still_audited(self, store, admin, cred, entries):
        updated = store.update(admin, cred.id, label="Payroll DB")
        assert updated.version == 1
        assert entries()[-1].detail == {"changed": []}

    def test_audit_failure_rolls_back(self, store, admin, cred, vault_db):
        _break_audit(vault_db)
        with pytest.raises(AuditUnavailable):
            store.update(admin, cred.id, label="renamed")
        with session(vault_db) as conn:
            row = conn.execute("SELECT label, version FROM credentials").fetchone()
        assert (row["label"], row["version"]) == ("Payroll DB", 1)

    def test_concurrent_updates_serialized(self, store, admin, cred):
        errors = []

        def worker(n):
            try:
                store.update(admin, cred.id, notes=f"note {n}")
            except Exception as exc:  # surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []
        assert store.get_summary(admin, cred.id).version == 9
        assert store._id_locks == {}


class TestDelete:
    def test_delete(self, store, admin, cred, entries):
        store.delete(admin, cred.id)
        with pytest.raises(NotFound):
            store.get_summary(admin, cred.id)
        entry = entries()[-1]
        assert entry.action is AuditAction.DELETE
        assert entry.target_id == cred.id

    def test_delete_missing(self, store, admin, entries):
        with pytest.raises(NotFound):
            store.delete(admin, "missing")
        assert entries()[-1].outcome is AuditOutcome.FAILURE

    def test_delete_works_when_crypto_unavailable(self, vault_db, gate, audit_log, admin, cred):
        degraded = CredentialStore(vault_db, EncryptionService(None), gate, audit_log)
        degraded.delete(admin, cred.id)
        assert degraded.list(admin) == []

    def test_forbidden(self, store, outsider, cred):
        with pytest.raises(Forbidden):
            store.delete(outsider, cred.id)

    def test_no_lock_kept_for_deleted_ids(self, store, admin, cred):
        store.update(admin, cred.id, notes="before delete")
        store.delete(admin, cred.id)
        with pytest.raises(NotFound):
            store.delete(admin, cred.id)
        assert store._id_locks == {}


class TestList:
    def test_sorted_without_secrets(self, store, admin):
        store.create(admin, label="beta", type="api_key", payload={"api_key": "k"})
        store.create(admin, label="Alpha", type="secure_note", payload={"content": "c"})
        summaries = store.list(admin)
        assert [s.label for s in summaries] == ["Alpha", "beta"]
        assert all("payload" not in s.to_dict() for s in summaries)

    def test_list_not_audited(self, store, admin, cred, entries):
        before = len(entries())
        store.list(admin)
        store.get_summary(admin, cred.id)
        assert len(entries()) == before

    def test_list_forbidden(self, store, outsider):
        with pytest.raises(Forbidden):
            store.list(outsider)

    def test_list_when_crypto_unavailable(self, vault_db, gate, audit_log, admin, cred):
        degraded = CredentialStore(vault_db, EncryptionService(None), gate, audit_log)
        assert [s.id for s in degraded.list(admin)] == [cred.id]
