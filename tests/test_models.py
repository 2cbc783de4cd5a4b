"""
Tests for the Loan Handshake

Test strategy:
1. Unit tests for models and matching rules
2. Service tests against the in-memory store with a frozen clock
3. SQL store tests against in-memory SQLite
4. HTTP contract tests through FastAPI's TestClient
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from handshake.models.loan import (
    CodeState,
    LoanRecord,
    LoanType,
    RecorderProfile,
    VerificationCode,
    VerificationStatus,
)
from handshake.models.results import (
    IssueResult,
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

NOW = datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)


def make_loan(**overrides) -> LoanRecord:
    fields = dict(
        created_by=uuid4(),
        loan_type=LoanType.GIVEN,
        principal_amount=Decimal("5000.00"),
        loan_date=date(2026, 1, 10),
        counterparty_name="Ravi Kumar",
        counterparty_phone="9876543210",
    )
    fields.update(overrides)
    return LoanRecord(**fields)


class TestLoanRecord:
    """Tests for the LoanRecord model."""

    def test_loan_creation(self):
        loan = make_loan()
        assert loan.verification_status == VerificationStatus.PENDING
        assert loan.currency == "INR"
        assert loan.is_verified is False

    def test_strips_whitespace(self):
        loan = make_loan(counterparty_name="  Ravi Kumar  ")
        assert loan.counterparty_name == "Ravi Kumar"

    def test_rejects_non_positive_amount(self):
        with pytest.raises(ValueError):
            make_loan(principal_amount=Decimal("0"))

    def test_rejects_empty_counterparty_name(self):
        with pytest.raises(ValueError):
            make_loan(counterparty_name="   ")

    def test_blank_phone_becomes_none(self):
        loan = make_loan(counterparty_phone="  ")
        assert loan.counterparty_phone is None

    def test_currency_uppercased(self):
        assert make_loan(currency="usd").currency == "USD"

    def test_historical_loan_is_not_pending(self):
        loan = make_loan(is_historical=True)
        assert loan.verification_status == VerificationStatus.HISTORICAL


class TestVerificationCode:
    """Tests for the VerificationCode model."""

    def test_code_creation(self):
        code = VerificationCode(
            code="482917",
            loan_id=uuid4(),
            issued_at=NOW,
            expires_at=NOW + timedelta(days=7),
        )
        assert code.state == CodeState.UNUSED
        assert code.consumed_at is None

    def test_code_must_be_numeric(self):
        with pytest.raises(ValueError):
            VerificationCode(
                code="48A917",
                loan_id=uuid4(),
                issued_at=NOW,
                expires_at=NOW + timedelta(days=7),
            )

    def test_expiry_must_follow_issue(self):
        with pytest.raises(ValueError, match="expire after it is issued"):
            VerificationCode(
                code="482917",
                loan_id=uuid4(),
                issued_at=NOW,
                expires_at=NOW,
            )

    def test_consumed_code_needs_timestamp(self):
        with pytest.raises(ValueError, match="consumption timestamp"):
            VerificationCode(
                code="482917",
                loan_id=uuid4(),
                issued_at=NOW,
                expires_at=NOW + timedelta(days=7),
                state=CodeState.CONSUMED,
            )


class TestResults:
    """Tests for result models."""

    def test_already_has_active_loan_state_is_alias(self):
        assert (
            VerificationErrorCode.ALREADY_HAS_ACTIVE_LOAN_STATE
            is VerificationErrorCode.ALREADY_VERIFIED
        )

    def test_expired_reads_as_not_found(self):
        result = VerificationResult.failure(VerificationErrorCode.EXPIRED)
        assert result.error == VerificationErrorCode.NOT_FOUND
        assert "fresh code" in result.error_message

    def test_mismatch_invites_retry(self):
        assert VerificationResult.failure(VerificationErrorCode.NAME_MISMATCH).should_retry
        assert VerificationResult.failure(VerificationErrorCode.PHONE_MISMATCH).should_retry
        assert not VerificationResult.failure(VerificationErrorCode.NOT_FOUND).should_retry

    def test_failure_response_shape(self):
        response = VerificationResult.failure(VerificationErrorCode.PHONE_MISMATCH).to_response()
        assert response == {
            "success": False,
            "error": "phone_mismatch",
            "error_message": response["error_message"],
        }
        assert response["error_message"]

    def test_success_response_shape(self):
        result = VerificationResult(
            success=True,
            loan_type=LoanType.GIVEN,
            amount=Decimal("5000.00"),
            currency="INR",
            loan_date=date(2026, 1, 10),
            recorder_name="Asha Sharma",
            confirmed_at=NOW,
        )
        response = result.to_response()
        assert response["success"] is True
        assert response["loan_type"] == "given"
        assert response["amount"] == "5000.00"
        assert response["loan_date"] == "2026-01-10"
        assert response["recorder_name"] == "Asha Sharma"
        assert response["confirmed_at"] == NOW.isoformat()

    def test_issue_failure_message(self):
        result = IssueResult.failure(uuid4(), VerificationErrorCode.ALREADY_VERIFIED)
        assert result.success is False
        assert result.error_message == "Loan is already verified"


class TestRecorderProfile:

    def test_display_name_fallbacks(self):
        user_id = uuid4()
        assert RecorderProfile(user_id=user_id, full_name="Asha").display_name == "Asha"
        assert RecorderProfile(user_id=user_id, email="a@x.in").display_name == "a@x.in"
        assert RecorderProfile(user_id=user_id).display_name == "Unknown"


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        event = AuditEvent(
            event_type=AuditEventType.CODE_ISSUED,
            description="Code issued",
        )
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        event = AuditEvent(
            event_type=AuditEventType.VERIFICATION_FAILED,
            description="Verification failed",
            details={"client_address": "10.0.0.1"},
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "verification_failed"
        assert log_dict["details"]["client_address"] == "10.0.0.1"

    def test_mask_phone(self):
        assert mask_phone("+91 98765 43210") == "********3210"
        assert mask_phone("123") == "***"
        assert mask_phone(None) is None

    def test_builder_masks_confirming_phone(self):
        event = AuditEventBuilder.verification_succeeded(
            loan_id=uuid4(),
            confirmed_by_name="Ravi Kumar",
            confirmed_by_phone="98765 43210",
            client_address="10.0.0.1",
        )
        assert event.details["confirmed_by_phone"] == "******3210"
        assert event.is_user_action is True

    def test_builder_code_issued_keeps_code_out(self):
        loan_id = uuid4()
        event = AuditEventBuilder.code_issued(
            loan_id=loan_id,
            requested_by=uuid4(),
            expires_at=NOW,
        )
        assert event.entity_id == loan_id
        assert "code" not in event.details


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
