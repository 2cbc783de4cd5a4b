"""
Result Models for the Loan Handshake

Every expected outcome of issuance and verification is a value, not an
exception. The web page and the mobile app render these directly.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from handshake.models.loan import (
    HandshakeConfirmation,
    LoanRecord,
    LoanType,
    VerificationStatus,
)


class VerificationErrorCode(str, Enum):
    """
    Error taxonomy shared by issuance and verification.

    ALREADY_HAS_ACTIVE_LOAN_STATE is an alias of ALREADY_VERIFIED: issuing
    for a confirmed loan and verifying a consumed code are the same fact.
    """
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_VERIFIED = "already_verified"
    ALREADY_HAS_ACTIVE_LOAN_STATE = "already_verified"
    NAME_MISMATCH = "name_mismatch"
    PHONE_MISMATCH = "phone_mismatch"
    RATE_LIMITED = "rate_limited"
    FORBIDDEN = "forbidden"
    NOT_VERIFIABLE = "not_verifiable"


ERROR_MESSAGES: dict[VerificationErrorCode, str] = {
    VerificationErrorCode.NOT_FOUND: (
        "This code is invalid or has expired. "
        "Please ask the person who shared it to send a fresh code."
    ),
    VerificationErrorCode.EXPIRED: (
        "This code is invalid or has expired. "
        "Please ask the person who shared it to send a fresh code."
    ),
    VerificationErrorCode.ALREADY_VERIFIED: (
        "This loan has already been confirmed. Nothing more to do."
    ),
    VerificationErrorCode.NAME_MISMATCH: (
        "The name does not match our records. "
        "Please check the spelling and try again."
    ),
    VerificationErrorCode.PHONE_MISMATCH: (
        "The phone number does not match our records. "
        "Please check the number and try again."
    ),
    VerificationErrorCode.RATE_LIMITED: (
        "Too many attempts. Please wait a while before trying again."
    ),
    VerificationErrorCode.FORBIDDEN: (
        "Only the person who recorded this loan, or a member of its family "
        "workspace, can request verification."
    ),
    VerificationErrorCode.NOT_VERIFIABLE: (
        "Historical loans are kept for bookkeeping and cannot be verified."
    ),
}

ISSUE_ERROR_MESSAGES: dict[VerificationErrorCode, str] = {
    **ERROR_MESSAGES,
    VerificationErrorCode.NOT_FOUND: "Loan not found",
    VerificationErrorCode.ALREADY_VERIFIED: "Loan is already verified",
}


class ConsumeStatus(str, Enum):
    """Outcome of the store's atomic consume-and-confirm."""
    CONSUMED = "consumed"
    ALREADY_CONSUMED = "already_consumed"
    NOT_FOUND_OR_EXPIRED = "not_found_or_expired"


class ConsumeResult(BaseModel):
    status: ConsumeStatus
    confirmation: Optional[HandshakeConfirmation] = None
    loan: Optional[LoanRecord] = None


class IssueResult(BaseModel):
    """
    Result of asking for a verification code.

    On success, share_message is the only thing that leaves the system;
    how it travels (SMS, WhatsApp, a phone call) is up to the recorder.
    """

    success: bool
    loan_id: UUID
    code: Optional[str] = None
    share_message: Optional[str] = None
    verify_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    superseded_previous: bool = False

    error: Optional[VerificationErrorCode] = None
    error_message: Optional[str] = None

    @classmethod
    def failure(cls, loan_id: UUID, error: VerificationErrorCode) -> 'IssueResult':
        return cls(
            success=False,
            loan_id=loan_id,
            error=error,
            error_message=ISSUE_ERROR_MESSAGES[error],
        )


class VerificationResult(BaseModel):
    """
    Result of a counterparty verification attempt.

    Loan details are only populated on success. A second visitor holding a
    consumed code learns that the loan is confirmed and nothing else.
    """

    success: bool
    loan_type: Optional[LoanType] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    loan_date: Optional[date] = None
    recorder_name: Optional[str] = None
    confirmed_at: Optional[datetime] = None

    error: Optional[VerificationErrorCode] = None
    error_message: Optional[str] = None

    @classmethod
    def failure(cls, error: VerificationErrorCode) -> 'VerificationResult':
        # Expired and not-found codes read the same to the caller
        if error == VerificationErrorCode.EXPIRED:
            error = VerificationErrorCode.NOT_FOUND
        return cls(
            success=False,
            error=error,
            error_message=ERROR_MESSAGES[error],
        )

    @property
    def should_retry(self) -> bool:
        """Mismatches leave the code valid; the counterparty may have mistyped."""
        return self.error in (
            VerificationErrorCode.NAME_MISMATCH,
            VerificationErrorCode.PHONE_MISMATCH,
        )

    def to_response(self) -> dict[str, Any]:
        """Shape returned to the verification web page."""
        if not self.success:
            return {
                "success": False,
                "error": self.error.value if self.error else None,
                "error_message": self.error_message,
            }
        return {
            "success": True,
            "loan_type": self.loan_type.value,
            "amount": str(self.amount),
            "currency": self.currency,
            "loan_date": self.loan_date.isoformat(),
            "recorder_name": self.recorder_name,
            "confirmed_at": self.confirmed_at.isoformat(),
        }


class VerificationDetails(BaseModel):
    """What the recorder sees on the loan detail screen."""

    loan_id: UUID
    verification_status: VerificationStatus
    verification_sent_at: Optional[datetime] = None

    active_code: Optional[str] = Field(
        default=None,
        description="Current unused code, for re-sharing"
    )
    code_expires_at: Optional[datetime] = None

    verified_by_name: Optional[str] = None
    verified_by_phone: Optional[str] = None
    verified_at: Optional[datetime] = None
