# Strongroom API - FastAPI application
#
# create_app() wires the routers to a VaultServices container stored on
# app.state. The lifespan starts the retention scheduler and stops it on
# shutdown. Every VaultError is rendered by one handler as
# {"error": kind, "detail": message}; internal detail never leaves the process.

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional, Type

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import AppConfig
from ..core.exceptions import (
    AuditUnavailable,
    AuthFailed,
    CryptoUnavailable,
    Forbidden,
    NotFound,
    TamperDetected,
    ValidationError,
    VaultError,
)
from ..services import VaultServices, build_services
from .audit_routes import router as audit_router
from .credential_routes import router as credential_router
from .session_routes import router as session_router
from .settings_routes import router as settings_router

logger = logging.getLogger(__name__)

ERROR_STATUS: Dict[Type[VaultError], int] = {
    CryptoUnavailable: 503,
    TamperDetected: 500,
    ValidationError: 422,
    Forbidden: 403,
    AuthFailed: 401,
    NotFound: 404,
    AuditUnavailable: 503,
}

_allowed_origins = [
    "http://localhost:3000", "http://127.0.0.1:3000",
    "http://localhost:8000", "http://127.0.0.1:8000",
]


def status_for(exc: VaultError) -> int:
    for exc_type, code in ERROR_STATUS.items():
        if isinstance(exc, exc_type):
            return code
    return 500


async def vault_error_handler(request: Request, exc: VaultError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.kind)
    return JSONResponse(
        status_code=code,
        content={"error": exc.kind, "detail": exc.message},
    )


def create_app(services: VaultServices, run_scheduler: bool = True) -> FastAPI:
    """Build the API around an already wired service container."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if run_scheduler:
            services.start()
        logger.info("Strongroom API started (encryption available: %s)",
                    services.encryption.is_available())
        yield
        if run_scheduler:
            services.stop()
        logger.info("Strongroom API stopped")

    app = FastAPI(
        title="Strongroom API",
        description="Encrypted credential vault with access control and audit trail",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(VaultError, vault_error_handler)

    app.include_router(session_router)
    app.include_router(credential_router)
    app.include_router(audit_router)
    app.include_router(settings_router)

    @app.get("/api/health")
    async def health():
        return {
            "status": "ok",
            "encryption_available": services.encryption.is_available(),
            "retention": services.retention.stats(),
        }

    return app


def start_api_server(config: Optional[AppConfig] = None):
    """
    Build services from configuration and serve the API with uvicorn.

    Binds to localhost unless STRONGROOM_HOST says otherwise.
    """
    config = config or AppConfig.from_env()
    app = create_app(build_services(config))
    uvicorn.run(app, host=config.host, port=config.port, log_level="info")
