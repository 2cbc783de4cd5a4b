"""
Core Data Models for the Loan Handshake

These models define the strict schemas for the entities the protocol
touches. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging

DESIGN DECISION: Counterparty identity on a LoanRecord is what the recorder
asserted. Verification never rewrites it; the counterparty's own submission
is kept on the VerificationCode and the HandshakeConfirmation instead.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def utc_now() -> datetime:
    """Server clock. All protocol timestamps come from here."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class LoanType(str, Enum):
    """Direction of the loan from the recorder's point of view."""
    GIVEN = "given"  # recorder lent money
    TAKEN = "taken"  # recorder borrowed money


class VerificationStatus(str, Enum):
    """
    Handshake state of a loan.

    CRITICAL: Only the Verification Service moves a loan to VERIFIED.
    """
    PENDING = "pending"
    VERIFIED = "verified"
    HISTORICAL = "historical"  # bookkeeping only, never verified


class CodeState(str, Enum):
    """
    Lifecycle of a verification code.

    UNUSED is the only state a code can leave. CONSUMED and SUPERSEDED
    are terminal.
    """
    UNUSED = "unused"
    CONSUMED = "consumed"
    SUPERSEDED = "superseded"


# =============================================================================
# LOAN
# =============================================================================

class LoanRecord(BaseModel):
    """
    A loan as recorded by one party.

    The recorder is `created_by`. Members of `workspace_id` share access.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique loan ID"
    )
    workspace_id: Optional[UUID] = Field(
        default=None,
        description="Family workspace the loan belongs to"
    )
    created_by: UUID = Field(
        ...,
        description="User who recorded the loan"
    )

    loan_type: LoanType
    principal_amount: Annotated[
        Decimal,
        Field(gt=0, decimal_places=2, description="Principal amount (required)")
    ]
    currency: str = Field(
        default="INR",
        min_length=3,
        max_length=3,
        description="ISO 4217 currency code"
    )
    loan_date: date

    # Recorder-asserted counterparty identity
    counterparty_name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Counterparty name as typed by the recorder"
    )
    counterparty_phone: Optional[str] = Field(
        default=None,
        max_length=30,
        description="Counterparty phone as typed by the recorder"
    )

    purpose: Optional[str] = Field(
        default=None,
        max_length=500
    )
    notes: Optional[str] = Field(
        default=None,
        max_length=1000
    )

    is_historical: bool = Field(
        default=False,
        description="Recorded for bookkeeping only; not eligible for verification"
    )
    verification_status: VerificationStatus = VerificationStatus.PENDING
    verification_sent_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now)

    @field_validator('currency')
    @classmethod
    def uppercase_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator('counterparty_phone')
    @classmethod
    def blank_phone_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @model_validator(mode='after')
    def historical_is_never_pending(self) -> 'LoanRecord':
        if self.is_historical and self.verification_status == VerificationStatus.PENDING:
            self.verification_status = VerificationStatus.HISTORICAL
        return self

    @property
    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED


# =============================================================================
# HANDSHAKE
# =============================================================================

class VerificationCode(BaseModel):
    """
    A single-use code tying a counterparty's confirmation to one loan.

    The consumer snapshot is set exactly once, when the code is consumed.
    """

    code: str = Field(
        ...,
        pattern=r"^\d+$",
        description="Numeric code shared with the counterparty"
    )
    loan_id: UUID
    issued_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    state: CodeState = CodeState.UNUSED

    consumed_by_name: Optional[str] = None
    consumed_by_phone: Optional[str] = None
    consumed_at: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_timestamps(self) -> 'VerificationCode':
        if self.expires_at <= self.issued_at:
            raise ValueError("Code must expire after it is issued")
        if self.state == CodeState.CONSUMED and self.consumed_at is None:
            raise ValueError("Consumed code must carry a consumption timestamp")
        return self


class HandshakeConfirmation(BaseModel):
    """
    Proof that the counterparty confirmed the loan.

    Exists if and only if one code for the loan was consumed.
    """

    id: UUID = Field(default_factory=uuid4)
    loan_id: UUID
    code: str
    confirmed_by_name: str
    confirmed_by_phone: Optional[str] = None
    confirmed_at: datetime


class RecorderProfile(BaseModel):
    """Display identity of a user who records loans."""

    user_id: UUID
    full_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or "Unknown"
