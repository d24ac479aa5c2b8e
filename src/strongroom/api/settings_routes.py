# Settings API - vault settings and credentials access management
#
# GET  /api/settings                  effective settings + encryption status
# PUT  /api/settings                  update (administrators)
# GET  /api/settings/access           users and their credentials access
# PUT  /api/settings/access/{user_id} grant or revoke (administrators)

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..core.identity import Identity
from ..services import VaultServices
from .security import current_actor, get_services

router = APIRouter(prefix="/api/settings", tags=["settings"])


class UpdateSettingsRequest(BaseModel):
    require_password_verification: Optional[bool] = None
    audit_log_retention_days: Optional[int] = None


class AccessRequest(BaseModel):
    allowed: bool


@router.get("")
def get_effective_settings(
    actor: Identity = Depends(current_actor),
    services: VaultServices = Depends(get_services),
):
    """Current settings, with a persistent warning when encryption is down."""
    return services.effective_settings()


@router.put("")
def update_settings(
    request: UpdateSettingsRequest,
    actor: Identity = Depends(current_actor),
    services: VaultServices = Depends(get_services),
):
    changes = request.model_dump(exclude_none=True)
    services.update_settings(actor, **changes)
    return services.effective_settings()


@router.get("/access")
def list_access(
    actor: Identity = Depends(current_actor),
    services: VaultServices = Depends(get_services),
):
    return {"users": services.list_access(actor)}


@router.put("/access/{user_id}")
def set_access(
    user_id: str,
    request: AccessRequest,
    actor: Identity = Depends(current_actor),
    services: VaultServices = Depends(get_services),
):
    return services.set_credentials_access(actor, user_id, request.allowed)
