"""
In-Memory Storage Implementation

Used for tests and local demos. It honours the same atomicity contract as
the SQL store: every mutation that must be atomic runs under one
asyncio.Lock, so the compare-and-set on a code's state cannot interleave
with another request inside the same event loop.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Optional
from uuid import UUID

from handshake.models.loan import (
    CodeState,
    HandshakeConfirmation,
    LoanRecord,
    RecorderProfile,
    VerificationCode,
    VerificationStatus,
)
from handshake.models.results import ConsumeResult, ConsumeStatus
from handshake.models.audit import AuditEvent
from handshake.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LoanAlreadyVerifiedError,
    NotFoundError,
    RecordStoreInterface,
)


class InMemoryRecordStore(RecordStoreInterface):
    """Dict-backed record store."""

    def __init__(self):
        self._loans: dict[UUID, LoanRecord] = {}
        self._profiles: dict[UUID, RecorderProfile] = {}
        self._members: set[tuple[UUID, UUID]] = set()
        self._codes: list[VerificationCode] = []
        self._confirmations: list[HandshakeConfirmation] = []
        self._attempts: dict[str, list[datetime]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def save_loan(self, loan: LoanRecord) -> LoanRecord:
        self._loans[loan.id] = loan.model_copy(deep=True)
        return loan

    async def get_loan(self, loan_id: UUID) -> Optional[LoanRecord]:
        loan = self._loans.get(loan_id)
        return loan.model_copy(deep=True) if loan else None

    async def save_recorder_profile(self, profile: RecorderProfile) -> None:
        self._profiles[profile.user_id] = profile

    async def get_recorder_name(self, user_id: UUID) -> str:
        profile = self._profiles.get(user_id)
        return profile.display_name if profile else "Unknown"

    async def add_workspace_member(self, workspace_id: UUID, user_id: UUID) -> None:
        self._members.add((workspace_id, user_id))

    async def is_workspace_member(self, workspace_id: UUID, user_id: UUID) -> bool:
        return (workspace_id, user_id) in self._members

    async def create_code(self, code: VerificationCode) -> bool:
        async with self._lock:
            loan = self._loans.get(code.loan_id)
            if loan is not None and loan.verification_status == VerificationStatus.VERIFIED:
                raise LoanAlreadyVerifiedError(f"Loan already verified: {code.loan_id}")

            for existing in self._codes:
                if (
                    existing.code == code.code
                    and existing.state == CodeState.UNUSED
                    and existing.expires_at > code.issued_at
                ):
                    raise DuplicateError(f"Code already active: {code.code}")

            superseded = False
            for existing in self._codes:
                if existing.loan_id == code.loan_id and existing.state == CodeState.UNUSED:
                    existing.state = CodeState.SUPERSEDED
                    superseded = True

            self._codes.append(code.model_copy(deep=True))
            return superseded

    async def mark_verification_sent(self, loan_id: UUID, sent_at: datetime) -> None:
        loan = self._loans.get(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan not found: {loan_id}")
        loan.verification_sent_at = sent_at

    def _latest(self, code: str) -> Optional[VerificationCode]:
        candidates = [
            c for c in self._codes
            if c.code == code and c.state != CodeState.SUPERSEDED
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda c: c.issued_at)

    async def resolve_code(self, code: str) -> Optional[VerificationCode]:
        found = self._latest(code)
        return found.model_copy(deep=True) if found else None

    async def get_active_code(self, loan_id: UUID, now: datetime) -> Optional[VerificationCode]:
        for c in self._codes:
            if c.loan_id == loan_id and c.state == CodeState.UNUSED and c.expires_at > now:
                return c.model_copy(deep=True)
        return None

    async def get_confirmation(self, loan_id: UUID) -> Optional[HandshakeConfirmation]:
        return next((c for c in self._confirmations if c.loan_id == loan_id), None)

    async def atomically_consume_and_confirm(
        self,
        code: str,
        asserted_name: str,
        asserted_phone: Optional[str],
        now: datetime,
    ) -> ConsumeResult:
        async with self._lock:
            live = next(
                (
                    c for c in self._codes
                    if c.code == code
                    and c.state == CodeState.UNUSED
                    and c.expires_at > now
                ),
                None,
            )
            if live is None:
                latest = self._latest(code)
                if latest is not None and latest.state == CodeState.CONSUMED:
                    return ConsumeResult(status=ConsumeStatus.ALREADY_CONSUMED)
                return ConsumeResult(status=ConsumeStatus.NOT_FOUND_OR_EXPIRED)

            loan = self._loans.get(live.loan_id)
            if loan is None:
                return ConsumeResult(status=ConsumeStatus.NOT_FOUND_OR_EXPIRED)
            if loan.verification_status == VerificationStatus.VERIFIED:
                return ConsumeResult(status=ConsumeStatus.ALREADY_CONSUMED)

            confirmation = HandshakeConfirmation(
                loan_id=loan.id,
                code=code,
                confirmed_by_name=asserted_name,
                confirmed_by_phone=asserted_phone,
                confirmed_at=now,
            )

            live.state = CodeState.CONSUMED
            live.consumed_by_name = asserted_name
            live.consumed_by_phone = asserted_phone
            live.consumed_at = now
            self._confirmations.append(confirmation)
            loan.verification_status = VerificationStatus.VERIFIED
            loan.verified_at = now

            return ConsumeResult(
                status=ConsumeStatus.CONSUMED,
                confirmation=confirmation,
                loan=loan.model_copy(deep=True),
            )

    async def register_attempt(
        self,
        key: str,
        now: datetime,
        window_start: datetime,
        limit: int,
    ) -> bool:
        async with self._lock:
            recent = [t for t in self._attempts[key] if t > window_start]
            if len(recent) >= limit:
                self._attempts[key] = recent
                return False
            recent.append(now)
            self._attempts[key] = recent
            return True

    def count_confirmations(self, loan_id: UUID) -> int:
        return sum(1 for c in self._confirmations if c.loan_id == loan_id)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
