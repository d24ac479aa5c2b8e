"""Tests for VaultSettings and its SQLite store.

Covers:
  - Defaults and bounds (retention 0-365)
  - Partial update, persistence, changed-field reporting
  - settings_update audit entry written with the change
  - Malformed stored values fall back to defaults
"""

import pytest

from strongroom.core.audit_log import AuditAction
from strongroom.core.db import session
from strongroom.core.exceptions import ValidationError
from strongroom.core.settings import SettingsStore, VaultSettings


class TestVaultSettings:
    def test_defaults(self):
        s = VaultSettings()
        assert s.require_password_verification is False
        assert s.audit_log_retention_days == 90

    @pytest.mark.parametrize("days", [0, 1, 365])
    def test_retention_bounds_accepted(self, days):
        assert VaultSettings(audit_log_retention_days=days).audit_log_retention_days == days

    @pytest.mark.parametrize("days", [-1, 366, "30", 1.5, True])
    def test_retention_bounds_rejected(self, days):
        with pytest.raises(ValidationError):
            VaultSettings(audit_log_retention_days=days)

    def test_flag_must_be_bool(self):
        with pytest.raises(ValidationError):
            VaultSettings(require_password_verification="yes")


class TestSettingsStore:
    def test_load_defaults_when_empty(self, settings):
        assert settings.load() == VaultSettings()

    def test_update_persists(self, settings, vault_db):
        updated, changed = settings.update("alice", require_password_verification=True)
        assert updated.require_password_verification is True
        assert changed == {"require_password_verification": True}
        assert SettingsStore(vault_db).load().require_password_verification is True

    def test_partial_update_keeps_other_fields(self, settings):
        settings.update("alice", audit_log_retention_days=30)
        settings.update("alice", require_password_verification=True)
        loaded = settings.load()
        assert loaded.audit_log_retention_days == 30
        assert loaded.require_password_verification is True

    def test_update_audited(self, settings, entries):
        settings.update("alice", audit_log_retention_days=0)
        (entry,) = entries()
        assert entry.action is AuditAction.SETTINGS_UPDATE
        assert entry.actor == "alice"
        assert entry.detail == {"changed": {"audit_log_retention_days": 0}}

    def test_noop_update_not_audited(self, settings, entries):
        _, changed = settings.update("alice", audit_log_retention_days=90)
        assert changed == {}
        assert entries() == []

    def test_invalid_update_rejected_and_not_stored(self, settings, entries):
        with pytest.raises(ValidationError):
            settings.update("alice", audit_log_retention_days=1000)
        assert settings.load().audit_log_retention_days == 90
        assert entries() == []

    def test_unknown_setting_rejected(self, settings):
        with pytest.raises(ValidationError):
            settings.update("alice", theme="dark")

    def test_malformed_stored_value_uses_default(self, settings, vault_db):
        with session(vault_db) as conn:
            conn.execute(
                "INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
                ("audit_log_retention_days", "ninety", "2026-01-01"),
            )
        assert settings.load().audit_log_retention_days == 90

    def test_out_of_range_stored_value_uses_defaults(self, settings, vault_db):
        with session(vault_db) as conn:
            conn.execute(
                "INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
                ("audit_log_retention_days", "9999", "2026-01-01"),
            )
        assert settings.load() == VaultSettings()
