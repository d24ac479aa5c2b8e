# Vault Module - Encryption Service
#
# AES-256-GCM authenticated encryption for credential payloads.
#
#   - One 256-bit key per process, loaded once at start-up from
#     STRONGROOM_MASTER_KEY (base64) or a key file created with mode 0600
#   - Fresh 96-bit random nonce per encryption
#   - Stored blob layout: nonce (12) || ciphertext || tag (16), plus key_id
#   - Associated data binds a blob to the record it belongs to
#
# Missing or unusable key material puts the service in degraded mode:
# is_available() is False and every encrypt/decrypt fails closed with
# CryptoUnavailable. Key bytes are never logged.

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..core.exceptions import CryptoUnavailable, TamperDetected

logger = logging.getLogger(__name__)

KEY_LENGTH = 32  # 256 bits for AES-256
NONCE_LENGTH = 12  # 96-bit nonce for GCM
TAG_LENGTH = 16
DEFAULT_KEY_ID = "primary"

_SELF_TEST_PROBE = b"strongroom-self-test"


@dataclass(frozen=True)
class Ciphertext:
    """An encrypted payload and the id of the key that produced it."""
    nonce: bytes
    tag: bytes
    data: bytes
    key_id: str = DEFAULT_KEY_ID

    def to_blob(self) -> bytes:
        return self.nonce + self.data + self.tag

    @classmethod
    def from_blob(cls, blob: bytes, key_id: str = DEFAULT_KEY_ID) -> "Ciphertext":
        """Split a stored blob. Truncated blobs raise TamperDetected."""
        if not isinstance(blob, (bytes, bytearray)) or len(blob) < NONCE_LENGTH + TAG_LENGTH:
            raise TamperDetected()
        blob = bytes(blob)
        return cls(
            nonce=blob[:NONCE_LENGTH],
            tag=blob[-TAG_LENGTH:],
            data=blob[NONCE_LENGTH:-TAG_LENGTH],
            key_id=key_id,
        )


def load_master_key(
    encoded_key: Optional[str] = None,
    key_file: Optional[Union[str, Path]] = None,
) -> Optional[bytes]:
    """Resolve the process key, or None if no usable key material exists.

    An explicit base64 key wins. Otherwise the key file is read, and created
    with a freshly generated key (mode 0600) when it does not exist yet.
    """
    if encoded_key:
        try:
            key = base64.b64decode(encoded_key.strip(), validate=True)
        except (binascii.Error, ValueError):
            logger.error("STRONGROOM_MASTER_KEY is not valid base64")
            return None
        if len(key) != KEY_LENGTH:
            logger.error("STRONGROOM_MASTER_KEY must decode to %d bytes", KEY_LENGTH)
            return None
        return key

    if key_file is None:
        logger.error("No master key configured")
        return None

    path = Path(key_file)
    try:
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w") as fh:
                fh.write(base64.b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii"))
            logger.info("Generated new master key file at %s", path)
        key = base64.b64decode(path.read_text().strip(), validate=True)
    except (OSError, binascii.Error, ValueError) as exc:
        logger.error("Could not load master key file %s: %s", path, type(exc).__name__)
        return None

    if len(key) != KEY_LENGTH:
        logger.error("Master key file %s does not hold a %d-byte key", path, KEY_LENGTH)
        return None
    return key


class EncryptionService:
    """
    Encrypts and decrypts credential payloads with AES-256-GCM.

    Construct with the process key (or None for degraded mode). The
    constructor runs a self-test round trip; a failing primitive leaves the
    service unavailable rather than raising.
    """

    def __init__(self, key: Optional[bytes], key_id: str = DEFAULT_KEY_ID):
        self.key_id = key_id
        self._aesgcm: Optional[AESGCM] = None

        if key is None:
            logger.error("Encryption unavailable: no master key loaded")
            return
        if len(key) != KEY_LENGTH:
            logger.error("Encryption unavailable: master key has wrong length")
            return

        try:
            aesgcm = AESGCM(key)
            nonce = os.urandom(NONCE_LENGTH)
            sealed = aesgcm.encrypt(nonce, _SELF_TEST_PROBE, b"self-test")
            if aesgcm.decrypt(nonce, sealed, b"self-test") != _SELF_TEST_PROBE:
                raise ValueError("self-test round trip mismatch")
        except (InvalidTag, ValueError) as exc:
            logger.error("Encryption self-test failed: %s", exc)
            return

        self._aesgcm = aesgcm

    @classmethod
    def from_config(
        cls,
        encoded_key: Optional[str],
        key_file: Optional[Union[str, Path]],
        key_id: str = DEFAULT_KEY_ID,
    ) -> "EncryptionService":
        return cls(load_master_key(encoded_key, key_file), key_id=key_id)

    def is_available(self) -> bool:
        return self._aesgcm is not None

    def _require(self) -> AESGCM:
        if self._aesgcm is None:
            raise CryptoUnavailable()
        return self._aesgcm

    def encrypt(self, plaintext: bytes, associated_data: Optional[bytes] = None) -> Ciphertext:
        """Encrypt plaintext under a fresh random nonce."""
        aesgcm = self._require()
        nonce = os.urandom(NONCE_LENGTH)
        try:
            sealed = aesgcm.encrypt(nonce, plaintext, associated_data)
        except (OverflowError, TypeError, ValueError) as exc:
            logger.error("Encryption failed: %s", type(exc).__name__)
            raise CryptoUnavailable() from exc
        return Ciphertext(
            nonce=nonce,
            tag=sealed[-TAG_LENGTH:],
            data=sealed[:-TAG_LENGTH],
            key_id=self.key_id,
        )

    def decrypt(self, ciphertext: Ciphertext, associated_data: Optional[bytes] = None) -> bytes:
        """Verify the tag and return plaintext.

        Raises:
            TamperDetected: if data, nonce, tag or associated data were altered
        """
        aesgcm = self._require()
        if len(ciphertext.nonce) != NONCE_LENGTH or len(ciphertext.tag) != TAG_LENGTH:
            raise TamperDetected()
        try:
            return aesgcm.decrypt(
                ciphertext.nonce, ciphertext.data + ciphertext.tag, associated_data
            )
        except InvalidTag as exc:
            raise TamperDetected() from exc
