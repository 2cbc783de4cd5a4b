"""
Abstract Record Store Interface

DESIGN DECISION: The services only see the record store through this
interface. This allows us to:
1. Run against PostgreSQL/SQLite through SQLAlchemy in production
2. Use in-memory storage for testing
3. Keep the protocol decoupled from any database driver

The one operation that carries the protocol's safety is
atomically_consume_and_confirm: whatever the backend, it must flip the code
from UNUSED to CONSUMED with a conditional write, and create the
confirmation in the same atomic unit.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from handshake.models.loan import (
    HandshakeConfirmation,
    LoanRecord,
    RecorderProfile,
    VerificationCode,
)
from handshake.models.results import ConsumeResult
from handshake.models.audit import AuditEvent


class RecordStoreInterface(ABC):
    """
    Abstract interface for loan and handshake storage.

    Any storage implementation must implement these methods.
    """

    # ----- loans and people -----

    @abstractmethod
    async def save_loan(self, loan: LoanRecord) -> LoanRecord:
        """
        Insert or replace a loan record.

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_loan(self, loan_id: UUID) -> Optional[LoanRecord]:
        """
        Retrieve a loan by its ID.

        Returns:
            The loan if found, None otherwise
        """
        pass

    @abstractmethod
    async def save_recorder_profile(self, profile: RecorderProfile) -> None:
        pass

    @abstractmethod
    async def get_recorder_name(self, user_id: UUID) -> str:
        """
        Display name of a recorder.

        Returns:
            Full name, else email, else "Unknown"
        """
        pass

    @abstractmethod
    async def add_workspace_member(self, workspace_id: UUID, user_id: UUID) -> None:
        pass

    @abstractmethod
    async def is_workspace_member(self, workspace_id: UUID, user_id: UUID) -> bool:
        pass

    # ----- codes -----

    @abstractmethod
    async def create_code(self, code: VerificationCode) -> bool:
        """
        Persist a new UNUSED code for its loan.

        Any other UNUSED code for the same loan is moved to SUPERSEDED in the
        same atomic step.

        Args:
            code: The freshly generated code

        Returns:
            True if a previous unused code was superseded

        Raises:
            LoanAlreadyVerifiedError: If the loan is already VERIFIED; checked
                in the same atomic step as the write
            DuplicateError: If the code string collides with another
                unused, unexpired code
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def mark_verification_sent(self, loan_id: UUID, sent_at: datetime) -> None:
        pass

    @abstractmethod
    async def resolve_code(self, code: str) -> Optional[VerificationCode]:
        """
        Look up the code that currently answers to this string.

        Superseded codes never resolve. A code string is only reissued once
        its previous holder is no longer live, so when the same string has
        been used more than once the most recently issued row answers.

        Returns:
            The code in whatever state it is in, or None
        """
        pass

    @abstractmethod
    async def get_active_code(self, loan_id: UUID, now: datetime) -> Optional[VerificationCode]:
        """The loan's UNUSED code if it has not expired at `now`."""
        pass

    @abstractmethod
    async def get_confirmation(self, loan_id: UUID) -> Optional[HandshakeConfirmation]:
        pass

    @abstractmethod
    async def atomically_consume_and_confirm(
        self,
        code: str,
        asserted_name: str,
        asserted_phone: Optional[str],
        now: datetime,
    ) -> ConsumeResult:
        """
        Consume a code and confirm its loan as one atomic unit.

        Only a code that is still UNUSED and whose expires_at is after
        `now` is consumed. Exactly one of any number of concurrent callers
        gets CONSUMED; the others get ALREADY_CONSUMED. A loan that is
        already VERIFIED, through any code, also yields ALREADY_CONSUMED and
        nothing is written.

        Returns:
            ConsumeResult with the confirmation and the updated loan on
            success
        """
        pass

    # ----- rate limiting -----

    @abstractmethod
    async def register_attempt(
        self,
        key: str,
        now: datetime,
        window_start: datetime,
        limit: int,
    ) -> bool:
        """
        Record one attempt for `key` if fewer than `limit` attempts happened
        since `window_start`.

        Returns:
            True if the attempt was allowed and recorded
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity, in chronological order.
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StoreUnavailableError(StorageError):
    """Could not reach the storage backend."""
    pass


class LoanAlreadyVerifiedError(StorageError):
    """The loan was confirmed before a new code for it could be written."""
    pass
