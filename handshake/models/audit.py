"""
Audit Models for the Loan Handshake

Every issuance and every verification attempt is logged for audit purposes.
This provides:
1. Traceability of who confirmed what, and when
2. Evidence when a code is being guessed
3. Debugging information when the record store misbehaves

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
Phone numbers are masked before they enter an event.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from handshake.models.loan import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Issuance
    CODE_ISSUED = "code_issued"
    CODE_SUPERSEDED = "code_superseded"
    ISSUANCE_REJECTED = "issuance_rejected"

    # Verification
    VERIFICATION_SUCCEEDED = "verification_succeeded"
    VERIFICATION_FAILED = "verification_failed"
    RATE_LIMITED = "rate_limited"

    # System events
    STORE_ERROR = "store_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def mask_phone(phone: Optional[str]) -> Optional[str]:
    """Keep only the last four digits of a phone number."""
    if not phone:
        return phone
    digits = "".join(ch for ch in phone if ch.isdigit())
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]


class AuditEvent(BaseModel):
    """
    One entry in the handshake audit trail.

    entity_type/entity_id point at the loan the event concerns, when there
    is one. Rate-limit and store events carry no entity.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'loan', 'code')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """JSON-safe view of the event, for structlog."""
        return self.model_dump(mode="json")


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.code_issued(loan_id, user_id, expires_at)
        event = AuditEventBuilder.verification_failed(loan_id, "name_mismatch")
    """

    @staticmethod
    def code_issued(
        loan_id: UUID,
        requested_by: UUID,
        expires_at: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        # The code itself is a secret and stays out of the log
        return AuditEvent(
            event_type=AuditEventType.CODE_ISSUED,
            entity_type="loan",
            entity_id=loan_id,
            correlation_id=correlation_id,
            description="Verification code issued",
            details={
                "requested_by": str(requested_by),
                "expires_at": expires_at.isoformat(),
            },
            is_user_action=True,
        )

    @staticmethod
    def code_superseded(
        loan_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CODE_SUPERSEDED,
            entity_type="loan",
            entity_id=loan_id,
            correlation_id=correlation_id,
            description="Previous unused verification code superseded",
        )

    @staticmethod
    def issuance_rejected(
        loan_id: UUID,
        requested_by: UUID,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ISSUANCE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="loan",
            entity_id=loan_id,
            correlation_id=correlation_id,
            description=f"Verification code not issued: {reason}",
            details={"requested_by": str(requested_by)},
            error_code=reason,
            is_user_action=True,
        )

    @staticmethod
    def verification_succeeded(
        loan_id: UUID,
        confirmed_by_name: str,
        confirmed_by_phone: Optional[str],
        client_address: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VERIFICATION_SUCCEEDED,
            entity_type="loan",
            entity_id=loan_id,
            correlation_id=correlation_id,
            description=f"Loan confirmed by {confirmed_by_name}",
            details={
                "confirmed_by_name": confirmed_by_name,
                "confirmed_by_phone": mask_phone(confirmed_by_phone),
                "client_address": client_address,
            },
            is_user_action=True,
        )

    @staticmethod
    def verification_failed(
        loan_id: Optional[UUID],
        reason: str,
        client_address: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VERIFICATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="loan" if loan_id else None,
            entity_id=loan_id,
            correlation_id=correlation_id,
            description=f"Verification failed: {reason}",
            details={"client_address": client_address},
            error_code=reason,
            is_user_action=True,
        )

    @staticmethod
    def rate_limited(
        client_address: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RATE_LIMITED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description="Verification attempt rejected by rate limit",
            details={"client_address": client_address},
            error_code="rate_limited",
        )

    @staticmethod
    def store_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_ERROR,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"Record store error during {operation}",
            details={"operation": operation},
            error_message=error_message,
        )
