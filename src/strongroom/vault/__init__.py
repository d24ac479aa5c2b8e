# Vault Module
# Encrypted credential storage behind a capability + step-up access gate.
#
# Security:
# - AES-256-GCM per-credential encryption, bound to record id and type
# - Plaintext only through CredentialStore.reveal()
# - Every credential operation audited, success or failure

from .access_gate import AccessGate, StepUpSession
from .credential_store import CredentialStore, CredentialSummary
from .encryption import Ciphertext, EncryptionService, load_master_key
from .payloads import CredentialType, parse_payload

__all__ = [
    "AccessGate",
    "Ciphertext",
    "CredentialStore",
    "CredentialSummary",
    "CredentialType",
    "EncryptionService",
    "StepUpSession",
    "load_master_key",
    "parse_payload",
]
