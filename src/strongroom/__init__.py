# Strongroom - encrypted credential vault
#
# Credentials are encrypted at rest (AES-256-GCM), gated by a capability
# check plus optional step-up re-authentication, and every access is
# recorded in an append-only, retention-pruned audit trail.

__version__ = "0.1.0"
__author__ = "Strongroom Team"
__description__ = "Encrypted credential vault with access control and audit trail"
