# Core infrastructure: storage helper, exceptions, audit trail, settings,
# identity interfaces and the retention scheduler.

from .audit_log import (
    AuditAction,
    AuditEntry,
    AuditFilter,
    AuditLog,
    AuditOutcome,
    AuditPage,
)
from .exceptions import (
    AuditUnavailable,
    AuthFailed,
    CryptoUnavailable,
    Forbidden,
    NotFound,
    TamperDetected,
    ValidationError,
    VaultError,
)
from .identity import (
    CREDENTIALS_CAPABILITY,
    AuthorizationPolicy,
    Identity,
    IdentityProvider,
    LocalDirectory,
)
from .settings import SettingsStore, VaultSettings

__all__ = [
    "AuditAction",
    "AuditEntry",
    "AuditFilter",
    "AuditLog",
    "AuditOutcome",
    "AuditPage",
    "AuditUnavailable",
    "AuthFailed",
    "AuthorizationPolicy",
    "CREDENTIALS_CAPABILITY",
    "CryptoUnavailable",
    "Forbidden",
    "Identity",
    "IdentityProvider",
    "LocalDirectory",
    "NotFound",
    "SettingsStore",
    "TamperDetected",
    "ValidationError",
    "VaultError",
    "VaultSettings",
]
