# Credential API - endpoints for the encrypted credential vault
#
# - List / summary: capability holders, never secret content
# - Create / update / delete: capability holders, audited
# - Reveal: capability + step-up session when required, audited
# - Verify password: opens the caller's step-up session
#
# Domain errors propagate to the VaultError handler in api.main.

from typing import Any

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from ..core.identity import Identity
from ..services import VaultServices
from .security import current_actor, get_services

router = APIRouter(prefix="/api/credentials", tags=["credentials"])


# Request Models
# Field rules live in the credential store and the access gate, so rejected
# values still get their audit entry.
class CreateCredentialRequest(BaseModel):
    label: Any = None
    type: Any = None
    payload: Any = None
    url: Any = None
    notes: Any = None


class UpdateCredentialRequest(BaseModel):
    label: Any = None
    type: Any = None
    payload: Any = None
    url: Any = None
    notes: Any = None


class VerifyPasswordRequest(BaseModel):
    password: Any = None


# Endpoints

@router.get("")
def list_credentials(
    actor: Identity = Depends(current_actor),
    services: VaultServices = Depends(get_services),
):
    """List credentials without secret content."""
    summaries = services.credentials.list(actor)
    return {"credentials": [s.to_dict() for s in summaries], "total": len(summaries)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_credential(
    request: CreateCredentialRequest,
    actor: Identity = Depends(current_actor),
    services: VaultServices = Depends(get_services),
):
    summary = services.credentials.create(
        actor,
        label=request.label,
        type=request.type,
        payload=request.payload,
        url=request.url,
        notes=request.notes,
    )
    return summary.to_dict()


@router.post("/verify-password")
def verify_password(
    request: VerifyPasswordRequest,
    actor: Identity = Depends(current_actor),
    services: VaultServices = Depends(get_services),
):
    """
    Re-enter the account password to unlock reveal for this login session.

    Returns 401 with a generic message on a wrong password.
    """
    step_up = services.gate.verify_step_up(actor, request.password)
    return {"verified": True, "session": step_up.to_dict()}


@router.get("/{cred_id}")
def get_credential_summary(
    cred_id: str,
    actor: Identity = Depends(current_actor),
    services: VaultServices = Depends(get_services),
):
    return services.credentials.get_summary(actor, cred_id).to_dict()


@router.patch("/{cred_id}")
def update_credential(
    cred_id: str,
    request: UpdateCredentialRequest,
    actor: Identity = Depends(current_actor),
    services: VaultServices = Depends(get_services),
):
    """Partial update; only fields present in the body are applied."""
    changes = request.model_dump(exclude_unset=True)
    return services.credentials.update(actor, cred_id, **changes).to_dict()


@router.delete("/{cred_id}")
def delete_credential(
    cred_id: str,
    actor: Identity = Depends(current_actor),
    services: VaultServices = Depends(get_services),
):
    services.credentials.delete(actor, cred_id)
    return {"success": True, "id": cred_id}


@router.post("/{cred_id}/reveal")
def reveal_credential(
    cred_id: str,
    response: Response,
    actor: Identity = Depends(current_actor),
    services: VaultServices = Depends(get_services),
):
    """
    Return the decrypted secret payload.

    Security: the response must not be cached by the client.
    """
    payload = services.credentials.reveal(actor, cred_id)
    response.headers["Cache-Control"] = "no-store"
    return {"id": cred_id, "payload": payload}
