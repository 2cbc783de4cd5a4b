"""
Verification Service

The counterparty opens the shared link, types the code, their name and
their phone number, and this service decides whether that confirms the
loan.

CRITICAL BOUNDARIES:
1. Inputs are untrusted; they are normalized here, never on the client
2. Mismatches persist nothing, so the code stays usable for a retry
3. The confirmation is written by one conditional, atomic store call;
   two racing requests cannot both succeed
4. A consumed code answers "already verified" and discloses nothing else
"""

from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

import structlog

from handshake.audit import AuditLogger, create_correlation_id
from handshake.config import HandshakeSettings, get_settings
from handshake.models.loan import CodeState, utc_now
from handshake.models.results import (
    ConsumeStatus,
    VerificationErrorCode,
    VerificationResult,
)
from handshake.services.storage import RecordStoreInterface, StorageError
from handshake.verification.codes import is_well_formed
from handshake.verification.errors import ServiceUnavailableError
from handshake.verification.matching import names_match, phones_match
from handshake.verification.policy import RateLimiter, is_expired

logger = structlog.get_logger(__name__)


class VerificationService:
    """Validates codes and records the counterparty's confirmation."""

    def __init__(
        self,
        store: RecordStoreInterface,
        settings: Optional[HandshakeSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Callable = utc_now,
    ):
        self._store = store
        self._settings = settings or get_settings().handshake
        self._audit_logger = audit_logger
        self._rate_limiter = rate_limiter or RateLimiter(store, self._settings)
        self._clock = clock

    async def verify(
        self,
        code: str,
        asserted_name: str,
        asserted_phone: Optional[str],
        client_address: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> VerificationResult:
        """
        Attempt to confirm a loan.

        Args:
            code: Code exactly as typed
            asserted_name: Name as typed by the counterparty
            asserted_phone: Phone as typed by the counterparty
            client_address: Originating network address, for rate limiting.
                           None bypasses the limiter (in-process callers).

        Returns:
            VerificationResult - success, or one taxonomy error

        Raises:
            ServiceUnavailableError: If the record store fails
        """
        correlation_id = correlation_id or create_correlation_id()
        try:
            return await self._verify(
                code, asserted_name, asserted_phone, client_address, correlation_id
            )
        except StorageError as e:
            raise await self._unavailable(e, correlation_id) from e

    async def reject_input(
        self,
        error: VerificationErrorCode,
        client_address: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> VerificationResult:
        """
        Answer a verify request whose fields could not be read at all.

        The attempt still counts against the caller's rate limit, so
        oversized or malformed bodies are no way around it.
        """
        correlation_id = correlation_id or create_correlation_id()
        try:
            limited = await self._check_rate_limit(client_address, self._clock(), correlation_id)
            if limited is not None:
                return limited
            return await self._fail(error, None, client_address, correlation_id)
        except StorageError as e:
            raise await self._unavailable(e, correlation_id) from e

    async def _unavailable(self, error: StorageError, correlation_id: UUID) -> ServiceUnavailableError:
        if self._audit_logger:
            await self._audit_logger.log_store_error(
                operation="verify",
                error_message=str(error),
                correlation_id=correlation_id,
            )
        return ServiceUnavailableError("verify", "Verification is temporarily unavailable, please retry")

    async def _check_rate_limit(
        self,
        client_address: Optional[str],
        now: datetime,
        correlation_id: UUID,
    ) -> Optional[VerificationResult]:
        if await self._rate_limiter.allow(client_address, now):
            return None
        if self._audit_logger:
            await self._audit_logger.log_rate_limited(
                client_address=client_address,
                correlation_id=correlation_id,
            )
        return VerificationResult.failure(VerificationErrorCode.RATE_LIMITED)

    async def _fail(
        self,
        error: VerificationErrorCode,
        loan_id: Optional[UUID],
        client_address: Optional[str],
        correlation_id: UUID,
    ) -> VerificationResult:
        logger.info(
            "verification_failed",
            reason=error.value,
            loan_id=str(loan_id) if loan_id else None,
        )
        if self._audit_logger:
            await self._audit_logger.log_verification_failed(
                loan_id=loan_id,
                reason=error.value,
                client_address=client_address,
                correlation_id=correlation_id,
            )
        return VerificationResult.failure(error)

    async def _verify(
        self,
        code: str,
        asserted_name: str,
        asserted_phone: Optional[str],
        client_address: Optional[str],
        correlation_id: UUID,
    ) -> VerificationResult:
        now = self._clock()

        limited = await self._check_rate_limit(client_address, now, correlation_id)
        if limited is not None:
            return limited

        code = (code or "").strip()
        if not is_well_formed(code, self._settings.code_length):
            return await self._fail(
                VerificationErrorCode.NOT_FOUND, None, client_address, correlation_id
            )

        record = await self._store.resolve_code(code)
        if record is None or record.state == CodeState.SUPERSEDED:
            return await self._fail(
                VerificationErrorCode.NOT_FOUND, None, client_address, correlation_id
            )
        if record.state == CodeState.CONSUMED:
            return await self._fail(
                VerificationErrorCode.ALREADY_VERIFIED, record.loan_id, client_address, correlation_id
            )
        if is_expired(record.expires_at, now):
            return await self._fail(
                VerificationErrorCode.EXPIRED, record.loan_id, client_address, correlation_id
            )

        loan = await self._store.get_loan(record.loan_id)
        if loan is None:
            return await self._fail(
                VerificationErrorCode.NOT_FOUND, record.loan_id, client_address, correlation_id
            )

        if not names_match(asserted_name, loan.counterparty_name):
            return await self._fail(
                VerificationErrorCode.NAME_MISMATCH, loan.id, client_address, correlation_id
            )
        if not phones_match(asserted_phone, loan.counterparty_phone, self._settings.phone_digits):
            return await self._fail(
                VerificationErrorCode.PHONE_MISMATCH, loan.id, client_address, correlation_id
            )

        outcome = await self._store.atomically_consume_and_confirm(
            code=code,
            asserted_name=asserted_name,
            asserted_phone=asserted_phone or None,
            now=now,
        )
        if outcome.status == ConsumeStatus.ALREADY_CONSUMED:
            return await self._fail(
                VerificationErrorCode.ALREADY_VERIFIED, loan.id, client_address, correlation_id
            )
        if outcome.status == ConsumeStatus.NOT_FOUND_OR_EXPIRED:
            return await self._fail(
                VerificationErrorCode.NOT_FOUND, loan.id, client_address, correlation_id
            )

        confirmed = outcome.loan or loan
        recorder_name = await self._store.get_recorder_name(confirmed.created_by)

        if self._audit_logger:
            await self._audit_logger.log_verification_succeeded(
                loan_id=confirmed.id,
                confirmed_by_name=asserted_name,
                confirmed_by_phone=asserted_phone,
                client_address=client_address,
                correlation_id=correlation_id,
            )

        return VerificationResult(
            success=True,
            loan_type=confirmed.loan_type,
            amount=confirmed.principal_amount,
            currency=confirmed.currency,
            loan_date=confirmed.loan_date,
            recorder_name=recorder_name,
            confirmed_at=outcome.confirmation.confirmed_at,
        )
