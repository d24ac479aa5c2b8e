"""
Vault Exception Classes

Every failure the vault reports to a caller is one of these. Each carries a
stable ``kind`` used in audit entries and API error bodies, and a message
that is safe to show to an operator.
"""


class VaultError(Exception):
    """Base exception for vault operations"""

    kind = "vault_error"
    default_message = "Vault operation failed"

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class CryptoUnavailable(VaultError):
    """Raised when the encryption primitive or key material is missing"""

    kind = "crypto_unavailable"
    default_message = "Encryption unavailable - contact administrator"


class TamperDetected(VaultError):
    """Raised when authenticated decryption fails or a record is corrupt"""

    kind = "tamper_detected"
    default_message = "Stored credential failed integrity check"


class ValidationError(VaultError):
    """Raised when a credential payload does not match its type"""

    kind = "validation_error"
    default_message = "Invalid credential data"


class Forbidden(VaultError):
    """Raised when the caller lacks the capability or a step-up session"""

    kind = "forbidden"
    default_message = "You do not have permission to perform this action"


class AuthFailed(VaultError):
    """Raised when step-up password verification fails"""

    kind = "auth_failed"
    default_message = "Password incorrect"


class NotFound(VaultError):
    """Raised when a credential id is unknown"""

    kind = "not_found"
    default_message = "Credential not found"


class AuditUnavailable(VaultError):
    """Raised when the audit trail cannot be written; the action is aborted"""

    kind = "audit_unavailable"
    default_message = "Audit log unavailable - action aborted"
