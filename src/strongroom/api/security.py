# API Security - Session-token authentication
#
# Every protected route resolves its caller from the X-Session-Token header.
# Tokens are issued by POST /api/session/login and map to an Identity in the
# user directory. A missing or unknown token is a 401 before any vault code
# runs.

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from ..core.identity import Identity
from ..services import VaultServices


def get_services(request: Request) -> VaultServices:
    """FastAPI dependency returning the service container on app.state."""
    return request.app.state.services


async def verify_session_token(x_session_token: Optional[str] = Header(None)) -> str:
    """
    FastAPI dependency requiring the X-Session-Token header.

    Raises:
        HTTPException: 401 if the header is missing
    """
    if not x_session_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Session-Token header",
        )
    return x_session_token


async def current_actor(
    token: str = Depends(verify_session_token),
    services: VaultServices = Depends(get_services),
) -> Identity:
    """
    FastAPI dependency resolving the calling identity.

    Raises:
        HTTPException: 401 if the token does not belong to a live session
    """
    identity = services.directory.resolve(token)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token",
        )
    return identity
