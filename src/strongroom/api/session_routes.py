# Session API - login and logout against the local user directory
#
# Login returns the token to send as X-Session-Token. Logout invalidates it
# and drops any step-up verification held by that session.

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..services import VaultServices
from .security import get_services, verify_session_token

router = APIRouter(prefix="/api/session", tags=["session"])


class LoginRequest(BaseModel):
    username: str
    password: str


@router.post("/login")
def login(request: LoginRequest, services: VaultServices = Depends(get_services)):
    token, identity = services.directory.login(request.username, request.password)
    return {"token": token, "user": identity.to_dict()}


@router.post("/logout")
def logout(
    token: str = Depends(verify_session_token),
    services: VaultServices = Depends(get_services),
):
    identity = services.logout(token)
    return {"success": identity is not None}
