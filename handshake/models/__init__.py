"""
Data Models Package

This package contains all Pydantic models used by the handshake protocol.
"""

from handshake.models.loan import (
    CodeState,
    HandshakeConfirmation,
    LoanRecord,
    LoanType,
    RecorderProfile,
    VerificationCode,
    VerificationStatus,
    utc_now,
)
from handshake.models.results import (
    ConsumeResult,
    ConsumeStatus,
    ERROR_MESSAGES,
    IssueResult,
    VerificationDetails,
    VerificationErrorCode,
    VerificationResult,
)
from handshake.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    mask_phone,
)

__all__ = [
    # Loan models
    "CodeState",
    "HandshakeConfirmation",
    "LoanRecord",
    "LoanType",
    "RecorderProfile",
    "VerificationCode",
    "VerificationStatus",
    "utc_now",
    # Results
    "ConsumeResult",
    "ConsumeStatus",
    "ERROR_MESSAGES",
    "IssueResult",
    "VerificationDetails",
    "VerificationErrorCode",
    "VerificationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    "mask_phone",
]
