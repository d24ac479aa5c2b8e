# Vault Module - Credential Payload Kinds
#
# Secret content is a tagged union: one dataclass per credential type.
# parse_payload() is the single validation point; it runs before anything
# touches the cipher, and rejects unknown fields and non-string values.

import json
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Dict, Mapping, Type, Union

from ..core.exceptions import TamperDetected, ValidationError


class CredentialType(str, Enum):
    USERNAME_PASSWORD = "username_password"
    API_KEY = "api_key"
    SSH_KEY = "ssh_key"
    SECURE_NOTE = "secure_note"

    @classmethod
    def parse(cls, value: Any) -> "CredentialType":
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown credential type: {value!r}") from None


@dataclass(frozen=True)
class UsernamePasswordPayload:
    username: str = ""
    password: str = ""

    def validate(self) -> None:
        if not self.username and not self.password:
            raise ValidationError("Username or password is required")


@dataclass(frozen=True)
class ApiKeyPayload:
    api_key: str = ""
    secret: str = ""

    def validate(self) -> None:
        if not self.api_key:
            raise ValidationError("API key is required")


@dataclass(frozen=True)
class SshKeyPayload:
    private_key: str = ""
    passphrase: str = ""
    public_key: str = ""

    def validate(self) -> None:
        if not self.private_key:
            raise ValidationError("Private key is required")


@dataclass(frozen=True)
class SecureNotePayload:
    content: str = ""

    def validate(self) -> None:
        if not self.content:
            raise ValidationError("Note content is required")


Payload = Union[UsernamePasswordPayload, ApiKeyPayload, SshKeyPayload, SecureNotePayload]

PAYLOAD_TYPES: Dict[CredentialType, Type] = {
    CredentialType.USERNAME_PASSWORD: UsernamePasswordPayload,
    CredentialType.API_KEY: ApiKeyPayload,
    CredentialType.SSH_KEY: SshKeyPayload,
    CredentialType.SECURE_NOTE: SecureNotePayload,
}


def parse_payload(cred_type: Union[CredentialType, str], data: Mapping[str, Any]) -> Payload:
    """Build and validate the payload dataclass for ``cred_type``."""
    cred_type = CredentialType.parse(cred_type)
    if not isinstance(data, Mapping):
        raise ValidationError("Payload must be an object")

    payload_cls = PAYLOAD_TYPES[cred_type]
    allowed = {f.name for f in fields(payload_cls)}
    unknown = set(data) - allowed
    if unknown:
        raise ValidationError(
            f"Unknown field(s) for {cred_type.value}: {', '.join(sorted(unknown))}"
        )

    values = {}
    for name, value in data.items():
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValidationError(f"Field {name!r} must be a string")
        values[name] = value

    payload = payload_cls(**values)
    payload.validate()
    return payload


def payload_to_dict(payload: Payload) -> Dict[str, str]:
    return asdict(payload)


def encode_payload(payload: Payload) -> bytes:
    return json.dumps(asdict(payload), sort_keys=True).encode("utf-8")


def decode_payload(cred_type: CredentialType, plaintext: bytes) -> Payload:
    """Rebuild a payload from decrypted bytes.

    Plaintext that passed authentication but does not parse means the record
    was written wrongly; it is reported as corrupt, not as a user error.
    """
    try:
        data = json.loads(plaintext.decode("utf-8"))
        return parse_payload(cred_type, data)
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
        raise TamperDetected("Stored credential is corrupt") from exc


def associated_data(credential_id: str, cred_type: Union[CredentialType, str]) -> bytes:
    """Bind a ciphertext to its record: id and type."""
    type_value = cred_type.value if isinstance(cred_type, CredentialType) else str(cred_type)
    return f"{credential_id}|{type_value}".encode("utf-8")
