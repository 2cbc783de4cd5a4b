"""Tests for the HTTP surface."""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from handshake.api import create_app
from handshake.api.app import verify_body_error
from handshake.models.loan import LoanRecord, LoanType, RecorderProfile
from handshake.models.results import VerificationErrorCode
from handshake.services.storage import InMemoryRecordStore, StoreUnavailableError
from handshake.verification import CodeIssuanceService, VerificationService


class UnreachableStore(InMemoryRecordStore):

    async def resolve_code(self, code):
        raise StoreUnavailableError("connection refused")


class AttemptsTableDownStore(InMemoryRecordStore):

    async def register_attempt(self, key, now, window_start, limit):
        raise StoreUnavailableError("connection refused")


def build_client(store, settings, audit_logger, clock, **app_options) -> TestClient:
    app = create_app(
        CodeIssuanceService(store=store, settings=settings, audit_logger=audit_logger, clock=clock),
        VerificationService(store=store, settings=settings, audit_logger=audit_logger, clock=clock),
        **app_options,
    )
    return TestClient(app)


def seed_loan(store, recorder_id, **overrides) -> LoanRecord:
    fields = dict(
        created_by=recorder_id,
        loan_type=LoanType.GIVEN,
        principal_amount=Decimal("5000.00"),
        loan_date=date(2026, 1, 10),
        counterparty_name="Ravi Kumar",
        counterparty_phone="9876543210",
    )
    fields.update(overrides)
    asyncio.run(store.save_recorder_profile(
        RecorderProfile(user_id=recorder_id, full_name="Asha Sharma")
    ))
    return asyncio.run(store.save_loan(LoanRecord(**fields)))


@pytest.fixture
def client(store, settings, audit_logger, clock):
    return build_client(store, settings, audit_logger, clock)


@pytest.fixture
def api_loan(store, recorder_id):
    return seed_loan(store, recorder_id)


class TestIssueEndpoint:
    """POST /api/loans/{loan_id}/verification-code"""

    def test_issue_code(self, client, api_loan, recorder_id, fixed_code):
        fixed_code("482917")
        response = client.post(
            f"/api/loans/{api_loan.id}/verification-code",
            headers={"X-User-Id": str(recorder_id)},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["code"] == "482917"
        assert body["verify_url"] == "https://familyknows.in/v/482917"
        assert "Amount: ₹5000.00" in body["share_message"]
        assert body["expires_at"].startswith("2026-01-22T10:00:00")

    def test_unknown_loan_is_404(self, client, recorder_id):
        response = client.post(
            f"/api/loans/{uuid4()}/verification-code",
            headers={"X-User-Id": str(recorder_id)},
        )
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_stranger_is_403(self, client, api_loan):
        response = client.post(
            f"/api/loans/{api_loan.id}/verification-code",
            headers={"X-User-Id": str(uuid4())},
        )
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_historical_is_409(self, client, store, recorder_id):
        old = seed_loan(store, recorder_id, is_historical=True)
        response = client.post(
            f"/api/loans/{old.id}/verification-code",
            headers={"X-User-Id": str(recorder_id)},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "not_verifiable"

    def test_missing_user_header(self, client, api_loan):
        response = client.post(f"/api/loans/{api_loan.id}/verification-code")
        assert response.status_code == 422


class TestVerifyEndpoint:
    """POST /api/verify"""

    def test_full_handshake(self, client, api_loan, recorder_id, fixed_code):
        fixed_code("482917")
        client.post(
            f"/api/loans/{api_loan.id}/verification-code",
            headers={"X-User-Id": str(recorder_id)},
        )

        response = client.post("/api/verify", json={
            "code": "482917",
            "name": "ravi kumar",
            "phone": "+91 98765 43210",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["loan_type"] == "given"
        assert body["amount"] == "5000.00"
        assert body["currency"] == "INR"
        assert body["loan_date"] == "2026-01-10"
        assert body["recorder_name"] == "Asha Sharma"

        again = client.post("/api/verify", json={
            "code": "482917",
            "name": "Ravi Kumar",
            "phone": "9876543210",
        }).json()
        assert again == {
            "success": False,
            "error": "already_verified",
            "error_message": "This loan has already been confirmed. Nothing more to do.",
        }

        repeat_issue = client.post(
            f"/api/loans/{api_loan.id}/verification-code",
            headers={"X-User-Id": str(recorder_id)},
        )
        assert repeat_issue.status_code == 409
        assert repeat_issue.json()["error"] == "already_verified"

    def test_mismatch_is_200_with_error(self, client, api_loan, recorder_id, fixed_code):
        fixed_code("482917")
        client.post(
            f"/api/loans/{api_loan.id}/verification-code",
            headers={"X-User-Id": str(recorder_id)},
        )

        response = client.post("/api/verify", json={
            "code": "482917",
            "name": "Ravi Kumar",
            "phone": "1111111111",
        })

        assert response.status_code == 200
        assert response.json()["error"] == "phone_mismatch"

    def test_phone_is_optional_in_body(self, client):
        response = client.post("/api/verify", json={"code": "000000", "name": "Ravi"})
        assert response.status_code == 200
        assert response.json()["error"] == "not_found"

    def test_rate_limited_by_client_address(self, client):
        for _ in range(5):
            client.post("/api/verify", json={"code": "000000", "name": "x"})

        response = client.post("/api/verify", json={"code": "000000", "name": "x"})
        assert response.json()["error"] == "rate_limited"

    def test_store_outage_is_503(self, settings, audit_logger, clock):
        client = build_client(UnreachableStore(), settings, audit_logger, clock)

        response = client.post("/api/verify", json={
            "code": "482917",
            "name": "Ravi Kumar",
            "phone": "9876543210",
        })

        assert response.status_code == 503
        assert response.json()["error"] == "unavailable"


class TestVerifyBodyValidation:
    """Bodies the schema rejects still get the verify answer shape."""

    def test_oversized_name_is_name_mismatch(self, client):
        response = client.post("/api/verify", json={
            "code": "482917",
            "name": "R" * 201,
            "phone": "9876543210",
        })

        assert response.status_code == 200
        body = response.json()
        assert set(body) == {"success", "error", "error_message"}
        assert body["success"] is False
        assert body["error"] == "name_mismatch"

    def test_oversized_phone_is_phone_mismatch(self, client):
        response = client.post("/api/verify", json={
            "code": "482917",
            "name": "Ravi Kumar",
            "phone": "9" * 31,
        })
        assert response.status_code == 200
        assert response.json()["error"] == "phone_mismatch"

    def test_long_code_is_not_found(self, client):
        response = client.post("/api/verify", json={
            "code": "4" * 13,
            "name": "R" * 201,
        })
        assert response.status_code == 200
        assert response.json()["error"] == "not_found"

    def test_empty_body_is_not_found(self, client):
        response = client.post("/api/verify", json={})
        assert response.status_code == 200
        assert response.json()["error"] == "not_found"

    def test_oversized_bodies_count_against_rate_limit(self, client, api_loan, recorder_id, fixed_code):
        fixed_code("482917")
        client.post(
            f"/api/loans/{api_loan.id}/verification-code",
            headers={"X-User-Id": str(recorder_id)},
        )
        for _ in range(5):
            client.post("/api/verify", json={"code": "482917", "name": "R" * 201})

        oversized = client.post("/api/verify", json={"code": "482917", "name": "R" * 201})
        assert oversized.json()["error"] == "rate_limited"

        correct = client.post("/api/verify", json={
            "code": "482917",
            "name": "Ravi Kumar",
            "phone": "9876543210",
        })
        assert correct.json()["error"] == "rate_limited"

    def test_rejection_is_audited(self, client, audit_storage):
        client.post("/api/verify", json={"code": "482917", "name": "R" * 201})

        events = asyncio.run(audit_storage.get_recent_events())
        assert events[0].error_code == "name_mismatch"
        assert events[0].details["client_address"] == "testclient"

    def test_store_outage_is_503(self, settings, audit_logger, clock):
        client = build_client(AttemptsTableDownStore(), settings, audit_logger, clock)

        response = client.post("/api/verify", json={"code": "482917", "name": "R" * 201})

        assert response.status_code == 503
        assert response.json()["error"] == "unavailable"

    def test_recorder_endpoints_keep_422(self, client):
        response = client.post("/api/loans/not-a-uuid/verification-code")
        assert response.status_code == 422
        assert "detail" in response.json()


class TestVerifyBodyError:

    def test_code_error_wins(self):
        errors = [
            {"loc": ("body", "name"), "type": "string_too_long"},
            {"loc": ("body", "code"), "type": "string_too_long"},
        ]
        assert verify_body_error(errors) == VerificationErrorCode.NOT_FOUND

    def test_name_before_phone(self):
        errors = [
            {"loc": ("body", "phone"), "type": "string_too_long"},
            {"loc": ("body", "name"), "type": "missing"},
        ]
        assert verify_body_error(errors) == VerificationErrorCode.NAME_MISMATCH

    def test_unreadable_json(self):
        errors = [{"loc": ("body", 1), "type": "json_invalid"}]
        assert verify_body_error(errors) == VerificationErrorCode.NOT_FOUND


class TestClientAddress:
    """Which address the verify rate limit is keyed on."""

    def test_forwarded_for_ignored_from_untrusted_peer(self, client):
        for i in range(5):
            client.post(
                "/api/verify",
                json={"code": "000000", "name": "x"},
                headers={"X-Forwarded-For": f"198.51.100.{i}"},
            )

        response = client.post(
            "/api/verify",
            json={"code": "000000", "name": "x"},
            headers={"X-Forwarded-For": "198.51.100.99"},
        )
        assert response.json()["error"] == "rate_limited"

    def test_trusted_proxy_separates_clients(self, store, settings, audit_logger, clock):
        client = build_client(store, settings, audit_logger, clock, trusted_proxies=["testclient"])
        for _ in range(5):
            client.post(
                "/api/verify",
                json={"code": "000000", "name": "x"},
                headers={"X-Forwarded-For": "198.51.100.7"},
            )

        blocked = client.post(
            "/api/verify",
            json={"code": "000000", "name": "x"},
            headers={"X-Forwarded-For": "198.51.100.7"},
        )
        other = client.post(
            "/api/verify",
            json={"code": "000000", "name": "x"},
            headers={"X-Forwarded-For": "198.51.100.8"},
        )

        assert blocked.json()["error"] == "rate_limited"
        assert other.json()["error"] == "not_found"

    def test_spoofed_leading_hops_are_ignored(self, store, settings, audit_logger, clock):
        client = build_client(store, settings, audit_logger, clock, trusted_proxies=["testclient"])
        for i in range(5):
            client.post(
                "/api/verify",
                json={"code": "000000", "name": "x"},
                headers={"X-Forwarded-For": f"10.9.9.{i}, 198.51.100.7"},
            )

        response = client.post(
            "/api/verify",
            json={"code": "000000", "name": "x"},
            headers={"X-Forwarded-For": "10.9.9.99, 198.51.100.7"},
        )
        assert response.json()["error"] == "rate_limited"


class TestShortLink:

    def test_redirects_to_verify_page(self, client):
        response = client.get("/v/482917", follow_redirects=False)

        assert response.status_code == 307
        assert response.headers["location"] == "/verify?code=482917"


class TestDetailsEndpoint:
    """GET /api/loans/{loan_id}/verification"""

    def test_pending_with_active_code(self, client, api_loan, recorder_id, fixed_code):
        fixed_code("482917")
        client.post(
            f"/api/loans/{api_loan.id}/verification-code",
            headers={"X-User-Id": str(recorder_id)},
        )

        response = client.get(
            f"/api/loans/{api_loan.id}/verification",
            headers={"X-User-Id": str(recorder_id)},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["verification_status"] == "pending"
        assert body["active_code"] == "482917"
        assert body["verified_by_name"] is None

    def test_stranger_is_403(self, client, api_loan):
        response = client.get(
            f"/api/loans/{api_loan.id}/verification",
            headers={"X-User-Id": str(uuid4())},
        )
        assert response.status_code == 403


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
