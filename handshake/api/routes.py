"""
HTTP routes for the handshake.

The counterparty-facing verify endpoint is public; the code is the only
secret. Taxonomy outcomes are returned with HTTP 200 so the page can render
its own copy for each; only store outages change the status code. A verify
body that fails validation is answered in the same shape, see
api.app.verify_body_error.
"""

from typing import Optional
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field

from handshake.models.results import VerificationErrorCode
from handshake.verification import CodeIssuanceService, VerificationService

router = APIRouter(tags=["Handshake"])

ISSUE_STATUS_CODES = {
    VerificationErrorCode.NOT_FOUND: 404,
    VerificationErrorCode.FORBIDDEN: 403,
    VerificationErrorCode.ALREADY_VERIFIED: 409,
    VerificationErrorCode.NOT_VERIFIABLE: 409,
}


class VerifyRequest(BaseModel):
    code: str = Field(..., max_length=12)
    name: str = Field(..., max_length=200)
    phone: str = Field(default="", max_length=30)


def get_issuance_service(request: Request) -> CodeIssuanceService:
    return request.app.state.issuance_service


def get_verification_service(request: Request) -> VerificationService:
    return request.app.state.verification_service


def get_client_address(request: Request) -> str:
    """
    Address the rate limiter keys on.

    When the connecting peer is a trusted proxy, the rightmost
    X-Forwarded-For hop that is not itself trusted is the client.
    """
    peer = request.client.host if request.client else "unknown"
    trusted = request.app.state.trusted_proxies
    if peer not in trusted:
        return peer
    hops = [
        hop.strip()
        for hop in request.headers.get("x-forwarded-for", "").split(",")
        if hop.strip()
    ]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return hops[0] if hops else peer


def _error_body(error: VerificationErrorCode, message: Optional[str]) -> dict:
    return {"success": False, "error": error.value, "error_message": message}


@router.post("/api/verify")
async def verify_loan(
    body: VerifyRequest,
    request: Request,
    service: VerificationService = Depends(get_verification_service),
):
    result = await service.verify(
        code=body.code,
        asserted_name=body.name,
        asserted_phone=body.phone,
        client_address=get_client_address(request),
    )
    return result.to_response()


@router.get("/v/{code}")
async def short_link(code: str):
    return RedirectResponse(url=f"/verify?code={quote(code)}", status_code=307)


@router.post("/api/loans/{loan_id}/verification-code")
async def issue_code(
    loan_id: UUID,
    x_user_id: UUID = Header(...),
    service: CodeIssuanceService = Depends(get_issuance_service),
):
    result = await service.issue(loan_id, x_user_id)
    if not result.success:
        return JSONResponse(
            status_code=ISSUE_STATUS_CODES.get(result.error, 400),
            content=_error_body(result.error, result.error_message),
        )
    return {
        "success": True,
        "code": result.code,
        "share_message": result.share_message,
        "verify_url": result.verify_url,
        "expires_at": result.expires_at.isoformat(),
    }


@router.get("/api/loans/{loan_id}/verification")
async def verification_details(
    loan_id: UUID,
    x_user_id: UUID = Header(...),
    service: CodeIssuanceService = Depends(get_issuance_service),
):
    details, error = await service.get_verification_details(loan_id, x_user_id)
    if error is not None:
        return JSONResponse(
            status_code=ISSUE_STATUS_CODES.get(error, 400),
            content=_error_body(error, None),
        )
    return details.model_dump(mode="json")
