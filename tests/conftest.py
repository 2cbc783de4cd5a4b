"""
Shared fixtures.

Everything runs against the in-memory store with a frozen clock; the SQL
store has its own fixtures in test_sql_store.py.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio

from handshake.audit import AuditLogger
from handshake.config import HandshakeSettings
from handshake.models.loan import LoanRecord, LoanType, RecorderProfile
from handshake.services.storage import InMemoryAuditStorage, InMemoryRecordStore
from handshake.verification import CodeIssuanceService, VerificationService


class FrozenClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings():
    return HandshakeSettings(_env_file=None)


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def recorder_id():
    return uuid4()


@pytest_asyncio.fixture
async def loan(store, recorder_id):
    """Asha lent Ravi Kumar ₹5000."""
    await store.save_recorder_profile(
        RecorderProfile(user_id=recorder_id, full_name="Asha Sharma")
    )
    record = LoanRecord(
        created_by=recorder_id,
        loan_type=LoanType.GIVEN,
        principal_amount=Decimal("5000.00"),
        loan_date=date(2026, 1, 10),
        counterparty_name="Ravi Kumar",
        counterparty_phone="9876543210",
        purpose="School fees",
    )
    return await store.save_loan(record)


@pytest.fixture
def issuance(store, settings, audit_logger, clock):
    return CodeIssuanceService(
        store=store,
        settings=settings,
        audit_logger=audit_logger,
        clock=clock,
    )


@pytest.fixture
def verifier(store, settings, audit_logger, clock):
    return VerificationService(
        store=store,
        settings=settings,
        audit_logger=audit_logger,
        clock=clock,
    )


@pytest.fixture
def fixed_code(monkeypatch):
    """Make the next issued codes come from a given sequence."""
    def _apply(*codes: str):
        pending = list(codes)
        monkeypatch.setattr(
            "handshake.verification.issuance.generate_code",
            lambda length: pending.pop(0),
        )
    return _apply
