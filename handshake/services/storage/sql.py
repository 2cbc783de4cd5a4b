"""
SQLAlchemy Storage Implementation

DESIGN DECISION: A relational database is the production backend because
the protocol needs two things a spreadsheet cannot give us:
1. A conditional UPDATE whose row count tells us whether we won the race
2. A transaction spanning code, confirmation and loan

Works against PostgreSQL in production and SQLite for local runs and tests.
Timestamps are written in UTC; SQLite hands them back naive, so every read
re-attaches the UTC zone.

Sessions are synchronous. Each store method wraps its session work in a
closure and hands it to asyncio.to_thread.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar
from uuid import UUID

import structlog
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    create_engine,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from handshake.config import DatabaseSettings
from handshake.models.loan import (
    CodeState,
    HandshakeConfirmation,
    LoanRecord,
    LoanType,
    RecorderProfile,
    VerificationCode,
    VerificationStatus,
)
from handshake.models.results import ConsumeResult, ConsumeStatus
from handshake.models.audit import AuditEvent, AuditEventType, AuditSeverity
from handshake.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LoanAlreadyVerifiedError,
    NotFoundError,
    RecordStoreInterface,
    StorageError,
    StoreUnavailableError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Base = declarative_base()


class LoanRow(Base):
    __tablename__ = "loans"
    id = Column(String(36), primary_key=True)
    workspace_id = Column(String(36), index=True, nullable=True)
    created_by = Column(String(36), nullable=False, index=True)
    loan_type = Column(String(10), nullable=False)
    principal_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    loan_date = Column(Date, nullable=False)
    counterparty_name = Column(String(200), nullable=False)
    counterparty_phone = Column(String(30), nullable=True)
    purpose = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    is_historical = Column(Boolean, nullable=False, default=False)
    verification_status = Column(String(20), nullable=False, default=VerificationStatus.PENDING.value)
    verification_sent_at = Column(DateTime(timezone=True), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class RecorderProfileRow(Base):
    __tablename__ = "recorder_profiles"
    user_id = Column(String(36), primary_key=True)
    full_name = Column(String(200), nullable=True)
    email = Column(String(254), nullable=True)


class WorkspaceMemberRow(Base):
    __tablename__ = "workspace_members"
    workspace_id = Column(String(36), primary_key=True)
    user_id = Column(String(36), primary_key=True)


class VerificationCodeRow(Base):
    __tablename__ = "verification_codes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(10), nullable=False, index=True)
    loan_id = Column(String(36), nullable=False, index=True)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    state = Column(String(12), nullable=False, default=CodeState.UNUSED.value)
    consumed_by_name = Column(String(200), nullable=True)
    consumed_by_phone = Column(String(30), nullable=True)
    consumed_at = Column(DateTime(timezone=True), nullable=True)


class HandshakeConfirmationRow(Base):
    __tablename__ = "handshake_confirmations"
    id = Column(String(36), primary_key=True)
    # One confirmation per loan, enforced by the database as well
    loan_id = Column(String(36), nullable=False, unique=True)
    code = Column(String(10), nullable=False)
    confirmed_by_name = Column(String(200), nullable=False)
    confirmed_by_phone = Column(String(30), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=False)


class RateLimitAttemptRow(Base):
    __tablename__ = "rate_limit_attempts"
    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(100), nullable=False, index=True)
    attempted_at = Column(DateTime(timezone=True), nullable=False)


class RateLimitBucketRow(Base):
    __tablename__ = "rate_limit_buckets"
    # One row per key, locked while that key's attempts are counted
    key = Column(String(100), primary_key=True)


class AuditEventRow(Base):
    __tablename__ = "audit_events"
    event_id = Column(String(36), primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    event_type = Column(String(40), nullable=False)
    severity = Column(String(10), nullable=False)
    entity_type = Column(String(20), nullable=True)
    entity_id = Column(String(36), nullable=True, index=True)
    correlation_id = Column(String(36), nullable=True)
    description = Column(String(500), nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    error_code = Column(String(40), nullable=True)
    error_message = Column(Text, nullable=True)
    is_user_action = Column(Boolean, nullable=False, default=False)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _uuid(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value else None


def create_engine_from_settings(settings: DatabaseSettings) -> Engine:
    """Build an engine; in-memory SQLite gets a single shared connection."""
    if settings.url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in settings.url or settings.url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(settings.url, echo=settings.echo, **kwargs)
    return create_engine(settings.url, echo=settings.echo, pool_pre_ping=True)


_read_retry = retry(
    retry=retry_if_exception_type(StoreUnavailableError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class SQLDatabase:
    """
    Owns the engine and session factory.

    Handles schema creation and provides retry logic for connecting.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_factory = sessionmaker(
            bind=engine,
            autoflush=False,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> "SQLDatabase":
        return cls(create_engine_from_settings(settings))

    @retry(
        retry=retry_if_exception_type(StoreUnavailableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> None:
        """Create tables if missing."""
        try:
            Base.metadata.create_all(self.engine)
        except OperationalError as e:
            raise StoreUnavailableError(f"Failed to connect to database: {e}") from e


def _translate(operation: str, error: SQLAlchemyError) -> StorageError:
    logger.error("store_operation_failed", operation=operation, error=str(error))
    if isinstance(error, OperationalError):
        return StoreUnavailableError(f"Database unavailable during {operation}: {error}")
    return StorageError(f"Failed to {operation}: {error}")


async def _run(operation: str, work: Callable[[], T]) -> T:
    """Run blocking session work on a worker thread."""
    try:
        return await asyncio.to_thread(work)
    except SQLAlchemyError as e:
        raise _translate(operation, e) from e


class _LoanAlreadyConfirmed(Exception):
    """Raised inside a consume transaction to roll it back."""


def bucket_lock_statement(key: str):
    """Row lock that serializes rate-limit bookkeeping for one key."""
    return (
        select(RateLimitBucketRow.key)
        .where(RateLimitBucketRow.key == key)
        .with_for_update()
    )


class SQLRecordStore(RecordStoreInterface):
    """
    Relational implementation of the record store.

    Rows map one-to-one onto the pydantic models; conversions live in the
    _row_to_* helpers. Session work is synchronous and runs on a worker
    thread so the event loop is never blocked on the database.
    """

    def __init__(self, database: SQLDatabase):
        self._db = database

    # ----- conversions -----

    def _row_to_loan(self, row: LoanRow) -> LoanRecord:
        return LoanRecord(
            id=UUID(row.id),
            workspace_id=UUID(row.workspace_id) if row.workspace_id else None,
            created_by=UUID(row.created_by),
            loan_type=LoanType(row.loan_type),
            principal_amount=row.principal_amount,
            currency=row.currency,
            loan_date=row.loan_date,
            counterparty_name=row.counterparty_name,
            counterparty_phone=row.counterparty_phone,
            purpose=row.purpose,
            notes=row.notes,
            is_historical=row.is_historical,
            verification_status=VerificationStatus(row.verification_status),
            verification_sent_at=_aware(row.verification_sent_at),
            verified_at=_aware(row.verified_at),
            created_at=_aware(row.created_at),
        )

    def _row_to_code(self, row: VerificationCodeRow) -> VerificationCode:
        return VerificationCode(
            code=row.code,
            loan_id=UUID(row.loan_id),
            issued_at=_aware(row.issued_at),
            expires_at=_aware(row.expires_at),
            state=CodeState(row.state),
            consumed_by_name=row.consumed_by_name,
            consumed_by_phone=row.consumed_by_phone,
            consumed_at=_aware(row.consumed_at),
        )

    def _row_to_confirmation(self, row: HandshakeConfirmationRow) -> HandshakeConfirmation:
        return HandshakeConfirmation(
            id=UUID(row.id),
            loan_id=UUID(row.loan_id),
            code=row.code,
            confirmed_by_name=row.confirmed_by_name,
            confirmed_by_phone=row.confirmed_by_phone,
            confirmed_at=_aware(row.confirmed_at),
        )

    # ----- loans and people -----

    async def save_loan(self, loan: LoanRecord) -> LoanRecord:
        def work() -> LoanRecord:
            with self._db.session_factory.begin() as session:
                session.merge(LoanRow(
                    id=str(loan.id),
                    workspace_id=_uuid(loan.workspace_id),
                    created_by=str(loan.created_by),
                    loan_type=loan.loan_type.value,
                    principal_amount=loan.principal_amount,
                    currency=loan.currency,
                    loan_date=loan.loan_date,
                    counterparty_name=loan.counterparty_name,
                    counterparty_phone=loan.counterparty_phone,
                    purpose=loan.purpose,
                    notes=loan.notes,
                    is_historical=loan.is_historical,
                    verification_status=loan.verification_status.value,
                    verification_sent_at=loan.verification_sent_at,
                    verified_at=loan.verified_at,
                    created_at=loan.created_at,
                ))
            return loan

        return await _run("save loan", work)

    @_read_retry
    async def get_loan(self, loan_id: UUID) -> Optional[LoanRecord]:
        def work() -> Optional[LoanRecord]:
            with self._db.session_factory() as session:
                row = session.get(LoanRow, str(loan_id))
                return self._row_to_loan(row) if row else None

        return await _run("get loan", work)

    async def save_recorder_profile(self, profile: RecorderProfile) -> None:
        def work() -> None:
            with self._db.session_factory.begin() as session:
                session.merge(RecorderProfileRow(
                    user_id=str(profile.user_id),
                    full_name=profile.full_name,
                    email=profile.email,
                ))

        await _run("save recorder profile", work)

    @_read_retry
    async def get_recorder_name(self, user_id: UUID) -> str:
        def work() -> str:
            with self._db.session_factory() as session:
                row = session.get(RecorderProfileRow, str(user_id))
                if row is None:
                    return "Unknown"
                return RecorderProfile(
                    user_id=user_id,
                    full_name=row.full_name,
                    email=row.email,
                ).display_name

        return await _run("get recorder name", work)

    async def add_workspace_member(self, workspace_id: UUID, user_id: UUID) -> None:
        def work() -> None:
            with self._db.session_factory.begin() as session:
                session.merge(WorkspaceMemberRow(
                    workspace_id=str(workspace_id),
                    user_id=str(user_id),
                ))

        await _run("add workspace member", work)

    @_read_retry
    async def is_workspace_member(self, workspace_id: UUID, user_id: UUID) -> bool:
        def work() -> bool:
            with self._db.session_factory() as session:
                row = session.get(WorkspaceMemberRow, (str(workspace_id), str(user_id)))
                return row is not None

        return await _run("check workspace membership", work)

    # ----- codes -----

    def _create_code(self, code: VerificationCode) -> bool:
        with self._db.session_factory.begin() as session:
            # Locks the loan row on PostgreSQL; a concurrent consume
            # updates the same row, so the two cannot interleave.
            status = session.execute(
                select(LoanRow.verification_status)
                .where(LoanRow.id == str(code.loan_id))
                .with_for_update()
            ).scalar_one_or_none()
            if status == VerificationStatus.VERIFIED.value:
                raise LoanAlreadyVerifiedError(f"Loan already verified: {code.loan_id}")

            collision = session.execute(
                select(VerificationCodeRow.id).where(
                    VerificationCodeRow.code == code.code,
                    VerificationCodeRow.state == CodeState.UNUSED.value,
                    VerificationCodeRow.expires_at > code.issued_at,
                )
            ).first()
            if collision is not None:
                raise DuplicateError(f"Code already active: {code.code}")

            superseded = session.execute(
                update(VerificationCodeRow)
                .where(
                    VerificationCodeRow.loan_id == str(code.loan_id),
                    VerificationCodeRow.state == CodeState.UNUSED.value,
                )
                .values(state=CodeState.SUPERSEDED.value)
            ).rowcount

            session.add(VerificationCodeRow(
                code=code.code,
                loan_id=str(code.loan_id),
                issued_at=code.issued_at,
                expires_at=code.expires_at,
                state=CodeState.UNUSED.value,
            ))
        return superseded > 0

    async def create_code(self, code: VerificationCode) -> bool:
        return await _run("create code", lambda: self._create_code(code))

    async def mark_verification_sent(self, loan_id: UUID, sent_at: datetime) -> None:
        def work() -> int:
            with self._db.session_factory.begin() as session:
                return session.execute(
                    update(LoanRow)
                    .where(LoanRow.id == str(loan_id))
                    .values(verification_sent_at=sent_at)
                ).rowcount

        if not await _run("mark verification sent", work):
            raise NotFoundError(f"Loan not found: {loan_id}")

    def _latest_code_row(self, session, code: str) -> Optional[VerificationCodeRow]:
        return session.execute(
            select(VerificationCodeRow)
            .where(
                VerificationCodeRow.code == code,
                VerificationCodeRow.state != CodeState.SUPERSEDED.value,
            )
            .order_by(VerificationCodeRow.issued_at.desc(), VerificationCodeRow.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    @_read_retry
    async def resolve_code(self, code: str) -> Optional[VerificationCode]:
        def work() -> Optional[VerificationCode]:
            with self._db.session_factory() as session:
                row = self._latest_code_row(session, code)
                return self._row_to_code(row) if row else None

        return await _run("resolve code", work)

    @_read_retry
    async def get_active_code(self, loan_id: UUID, now: datetime) -> Optional[VerificationCode]:
        def work() -> Optional[VerificationCode]:
            with self._db.session_factory() as session:
                row = session.execute(
                    select(VerificationCodeRow).where(
                        VerificationCodeRow.loan_id == str(loan_id),
                        VerificationCodeRow.state == CodeState.UNUSED.value,
                        VerificationCodeRow.expires_at > now,
                    )
                ).scalars().first()
                return self._row_to_code(row) if row else None

        return await _run("get active code", work)

    @_read_retry
    async def get_confirmation(self, loan_id: UUID) -> Optional[HandshakeConfirmation]:
        def work() -> Optional[HandshakeConfirmation]:
            with self._db.session_factory() as session:
                row = session.execute(
                    select(HandshakeConfirmationRow).where(
                        HandshakeConfirmationRow.loan_id == str(loan_id)
                    )
                ).scalar_one_or_none()
                return self._row_to_confirmation(row) if row else None

        return await _run("get confirmation", work)

    def _claim_code(
        self,
        session,
        code_id: int,
        asserted_name: str,
        asserted_phone: Optional[str],
        now: datetime,
    ) -> bool:
        """
        Compare-and-set the code from UNUSED to CONSUMED.

        The state predicate is what makes this safe: a request that
        committed in between leaves no row to update, so rowcount is 0.
        """
        return session.execute(
            update(VerificationCodeRow)
            .where(
                VerificationCodeRow.id == code_id,
                VerificationCodeRow.state == CodeState.UNUSED.value,
            )
            .values(
                state=CodeState.CONSUMED.value,
                consumed_by_name=asserted_name,
                consumed_by_phone=asserted_phone,
                consumed_at=now,
            )
        ).rowcount == 1

    def _consume(
        self,
        code: str,
        asserted_name: str,
        asserted_phone: Optional[str],
        now: datetime,
    ) -> ConsumeResult:
        try:
            with self._db.session_factory.begin() as session:
                candidate = session.execute(
                    select(VerificationCodeRow.id, VerificationCodeRow.loan_id).where(
                        VerificationCodeRow.code == code,
                        VerificationCodeRow.state == CodeState.UNUSED.value,
                        VerificationCodeRow.expires_at > now,
                    )
                ).first()

                won = candidate is not None and self._claim_code(
                    session, candidate.id, asserted_name, asserted_phone, now
                )
                if not won:
                    latest = self._latest_code_row(session, code)
                    if latest is not None and latest.state == CodeState.CONSUMED.value:
                        return ConsumeResult(status=ConsumeStatus.ALREADY_CONSUMED)
                    return ConsumeResult(status=ConsumeStatus.NOT_FOUND_OR_EXPIRED)

                confirmed = session.execute(
                    update(LoanRow)
                    .where(
                        LoanRow.id == candidate.loan_id,
                        LoanRow.verification_status != VerificationStatus.VERIFIED.value,
                    )
                    .values(
                        verification_status=VerificationStatus.VERIFIED.value,
                        verified_at=now,
                    )
                ).rowcount
                if confirmed != 1:
                    raise _LoanAlreadyConfirmed(candidate.loan_id)

                confirmation = HandshakeConfirmation(
                    loan_id=UUID(candidate.loan_id),
                    code=code,
                    confirmed_by_name=asserted_name,
                    confirmed_by_phone=asserted_phone,
                    confirmed_at=now,
                )
                session.add(HandshakeConfirmationRow(
                    id=str(confirmation.id),
                    loan_id=candidate.loan_id,
                    code=code,
                    confirmed_by_name=asserted_name,
                    confirmed_by_phone=asserted_phone,
                    confirmed_at=now,
                ))
                session.flush()
                loan_row = session.get(LoanRow, candidate.loan_id, populate_existing=True)
                loan = self._row_to_loan(loan_row)
        except _LoanAlreadyConfirmed:
            return ConsumeResult(status=ConsumeStatus.ALREADY_CONSUMED)

        return ConsumeResult(
            status=ConsumeStatus.CONSUMED,
            confirmation=confirmation,
            loan=loan,
        )

    async def atomically_consume_and_confirm(
        self,
        code: str,
        asserted_name: str,
        asserted_phone: Optional[str],
        now: datetime,
    ) -> ConsumeResult:
        return await _run(
            "consume code",
            lambda: self._consume(code, asserted_name, asserted_phone, now),
        )

    # ----- rate limiting -----

    def _ensure_bucket(self, session, key: str) -> None:
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql_insert(RateLimitBucketRow).values(key=key)
        elif dialect == "sqlite":
            stmt = sqlite_insert(RateLimitBucketRow).values(key=key)
        else:
            if session.get(RateLimitBucketRow, key) is None:
                session.add(RateLimitBucketRow(key=key))
                session.flush()
            return
        session.execute(stmt.on_conflict_do_nothing(index_elements=["key"]))

    def _register_attempt(
        self,
        key: str,
        now: datetime,
        window_start: datetime,
        limit: int,
    ) -> bool:
        with self._db.session_factory.begin() as session:
            self._ensure_bucket(session, key)
            # Concurrent attempts for the same key queue here until the
            # holder commits, so the count below cannot go stale.
            session.execute(bucket_lock_statement(key))

            session.execute(
                delete(RateLimitAttemptRow).where(
                    RateLimitAttemptRow.key == key,
                    RateLimitAttemptRow.attempted_at <= window_start,
                )
            )
            count = session.execute(
                select(func.count(RateLimitAttemptRow.id)).where(
                    RateLimitAttemptRow.key == key,
                    RateLimitAttemptRow.attempted_at > window_start,
                )
            ).scalar_one()
            if count >= limit:
                return False
            session.add(RateLimitAttemptRow(key=key, attempted_at=now))
            return True

    async def register_attempt(
        self,
        key: str,
        now: datetime,
        window_start: datetime,
        limit: int,
    ) -> bool:
        return await _run(
            "register attempt",
            lambda: self._register_attempt(key, now, window_start, limit),
        )


class SQLAuditStorage(AuditStorageInterface):
    """
    Relational implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, database: SQLDatabase):
        self._db = database

    def _row_to_event(self, row: AuditEventRow) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row.event_id),
            timestamp=_aware(row.timestamp),
            event_type=AuditEventType(row.event_type),
            severity=AuditSeverity(row.severity),
            entity_type=row.entity_type,
            entity_id=UUID(row.entity_id) if row.entity_id else None,
            correlation_id=UUID(row.correlation_id) if row.correlation_id else None,
            description=row.description,
            details=row.details or {},
            error_code=row.error_code,
            error_message=row.error_message,
            is_user_action=row.is_user_action,
        )

    async def append_event(self, event: AuditEvent) -> bool:
        def work() -> bool:
            with self._db.session_factory.begin() as session:
                session.add(AuditEventRow(
                    event_id=str(event.event_id),
                    timestamp=event.timestamp,
                    event_type=event.event_type.value,
                    severity=event.severity.value,
                    entity_type=event.entity_type,
                    entity_id=_uuid(event.entity_id),
                    correlation_id=_uuid(event.correlation_id),
                    description=event.description,
                    details=event.details,
                    error_code=event.error_code,
                    error_message=event.error_message,
                    is_user_action=event.is_user_action,
                ))
            return True

        return await _run("append audit event", work)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        def work() -> list[AuditEvent]:
            with self._db.session_factory() as session:
                rows = session.execute(
                    select(AuditEventRow)
                    .where(
                        AuditEventRow.entity_type == entity_type,
                        AuditEventRow.entity_id == str(entity_id),
                    )
                    .order_by(AuditEventRow.timestamp)
                ).scalars().all()
                return [self._row_to_event(row) for row in rows]

        return await _run("get audit events", work)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        def work() -> list[AuditEvent]:
            with self._db.session_factory() as session:
                rows = session.execute(
                    select(AuditEventRow)
                    .order_by(AuditEventRow.timestamp.desc())
                    .limit(limit)
                ).scalars().all()
                return [self._row_to_event(row) for row in rows]

        return await _run("get audit events", work)
