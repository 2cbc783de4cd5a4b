"""FastAPI application factory."""

from typing import Optional, Sequence

import structlog
from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from handshake import __version__
from handshake.api.routes import get_client_address, router
from handshake.config import Settings, get_settings
from handshake.models.results import VerificationErrorCode
from handshake.orchestrator import create_app_components
from handshake.verification import (
    CodeIssuanceService,
    ServiceUnavailableError,
    VerificationService,
)

logger = structlog.get_logger(__name__)

VERIFY_PATH = "/api/verify"


def verify_body_error(errors: Sequence[dict]) -> VerificationErrorCode:
    """
    Taxonomy answer for a verify body that failed validation.

    Fields are judged in the order the service checks them: a bad code or
    an unreadable body is NOT_FOUND, then the name, then the phone.
    """
    fields = set()
    for err in errors:
        loc = err.get("loc", ())
        fields.add(loc[1] if len(loc) > 1 and loc[0] == "body" else None)
    if fields <= {"name", "phone"}:
        if "name" in fields:
            return VerificationErrorCode.NAME_MISMATCH
        return VerificationErrorCode.PHONE_MISMATCH
    return VerificationErrorCode.NOT_FOUND


def _unavailable_response(exc: ServiceUnavailableError) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={
            "success": False,
            "error": "unavailable",
            "error_message": str(exc),
        },
    )


def create_app(
    issuance_service: CodeIssuanceService,
    verification_service: VerificationService,
    debug: bool = False,
    trusted_proxies: Sequence[str] = (),
) -> FastAPI:
    app = FastAPI(title="Loan Handshake", version=__version__, debug=debug)
    app.state.issuance_service = issuance_service
    app.state.verification_service = verification_service
    app.state.trusted_proxies = frozenset(trusted_proxies)

    @app.exception_handler(ServiceUnavailableError)
    async def service_unavailable(request: Request, exc: ServiceUnavailableError):
        logger.error("service_unavailable", operation=exc.operation, path=request.url.path)
        return _unavailable_response(exc)

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        if request.url.path != VERIFY_PATH:
            return await request_validation_exception_handler(request, exc)

        error = verify_body_error(exc.errors())
        logger.info("verify_body_rejected", reason=error.value)
        try:
            result = await request.app.state.verification_service.reject_input(
                error,
                client_address=get_client_address(request),
            )
        except ServiceUnavailableError as e:
            logger.error("service_unavailable", operation=e.operation, path=request.url.path)
            return _unavailable_response(e)
        return JSONResponse(status_code=200, content=result.to_response())

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    app.include_router(router)
    return app


def create_default_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the production app from environment settings."""
    settings = settings or get_settings()
    issuance, verification, _ = create_app_components(settings)
    return create_app(
        issuance,
        verification,
        debug=settings.app.debug_mode,
        trusted_proxies=settings.app.trusted_proxies,
    )
