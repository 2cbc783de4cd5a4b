"""
Code Issuance Service

Given a recorded loan, produce a single-use verification code and the
message the recorder forwards to the counterparty.

Flow:
1. Load the loan and check the requester may act on it
2. Refuse loans that are historical or already verified
3. Draw a code that no live code is using
4. Persist it, superseding any earlier unused code for the loan
5. Build the share message

The service holds no state between requests; the record store does.
"""

from typing import Callable, Optional
from uuid import UUID

import structlog

from handshake.audit import AuditLogger, create_correlation_id
from handshake.config import HandshakeSettings, get_settings
from handshake.models.loan import (
    LoanRecord,
    VerificationCode,
    VerificationStatus,
    utc_now,
)
from handshake.models.results import (
    IssueResult,
    VerificationDetails,
    VerificationErrorCode,
)
from handshake.services.storage import (
    DuplicateError,
    LoanAlreadyVerifiedError,
    RecordStoreInterface,
    StorageError,
)
from handshake.verification.codes import build_share_message, generate_code, verify_url
from handshake.verification.errors import CodeGenerationError, ServiceUnavailableError

logger = structlog.get_logger(__name__)


class CodeIssuanceService:
    """
    Issues verification codes for loans.

    IMPORTANT BOUNDARIES:
    1. Only the recorder or a member of the loan's workspace may issue
    2. A new code always replaces the loan's previous unused code
    3. The code itself is never written to logs
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        settings: Optional[HandshakeSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable = utc_now,
    ):
        self._store = store
        self._settings = settings or get_settings().handshake
        self._audit_logger = audit_logger
        self._clock = clock

    async def _can_manage(self, loan: LoanRecord, user_id: UUID) -> bool:
        if loan.created_by == user_id:
            return True
        if loan.workspace_id is None:
            return False
        return await self._store.is_workspace_member(loan.workspace_id, user_id)

    async def _check_loan(
        self,
        loan_id: UUID,
        user_id: UUID,
    ) -> tuple[Optional[LoanRecord], Optional[VerificationErrorCode]]:
        loan = await self._store.get_loan(loan_id)
        if loan is None:
            return None, VerificationErrorCode.NOT_FOUND
        if not await self._can_manage(loan, user_id):
            return loan, VerificationErrorCode.FORBIDDEN
        return loan, None

    async def _reject(
        self,
        loan_id: UUID,
        user_id: UUID,
        error: VerificationErrorCode,
        correlation_id: UUID,
    ) -> IssueResult:
        if self._audit_logger:
            await self._audit_logger.log_issuance_rejected(
                loan_id=loan_id,
                requested_by=user_id,
                reason=error.value,
                correlation_id=correlation_id,
            )
        return IssueResult.failure(loan_id, error)

    async def issue(
        self,
        loan_id: UUID,
        requesting_user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> IssueResult:
        """
        Issue a fresh code for a loan.

        Returns:
            IssueResult; on failure its error is NOT_FOUND, FORBIDDEN,
            NOT_VERIFIABLE or ALREADY_VERIFIED

        Raises:
            ServiceUnavailableError: If the record store fails
        """
        correlation_id = correlation_id or create_correlation_id()
        try:
            return await self._issue(loan_id, requesting_user_id, correlation_id)
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_store_error(
                    operation="issue",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise ServiceUnavailableError("issue", "Could not issue a verification code, please retry") from e

    async def _issue(
        self,
        loan_id: UUID,
        user_id: UUID,
        correlation_id: UUID,
    ) -> IssueResult:
        loan, error = await self._check_loan(loan_id, user_id)
        if error is None:
            if loan.is_historical or loan.verification_status == VerificationStatus.HISTORICAL:
                error = VerificationErrorCode.NOT_VERIFIABLE
            elif loan.is_verified:
                error = VerificationErrorCode.ALREADY_VERIFIED
        if error is not None:
            return await self._reject(loan_id, user_id, error, correlation_id)

        now = self._clock()
        expires_at = now + self._settings.code_ttl

        for attempt in range(1, self._settings.max_code_generation_attempts + 1):
            candidate = VerificationCode(
                code=generate_code(self._settings.code_length),
                loan_id=loan.id,
                issued_at=now,
                expires_at=expires_at,
            )
            try:
                superseded = await self._store.create_code(candidate)
                break
            except DuplicateError:
                logger.debug("code_collision", loan_id=str(loan.id), attempt=attempt)
            except LoanAlreadyVerifiedError:
                # Confirmed between the status check above and this write
                return await self._reject(
                    loan_id, user_id, VerificationErrorCode.ALREADY_VERIFIED, correlation_id
                )
        else:
            raise CodeGenerationError(
                "issue",
                f"No free code after {self._settings.max_code_generation_attempts} attempts",
            )

        await self._store.mark_verification_sent(loan.id, now)

        if self._audit_logger:
            if superseded:
                await self._audit_logger.log_code_superseded(
                    loan_id=loan.id,
                    correlation_id=correlation_id,
                )
            await self._audit_logger.log_code_issued(
                loan_id=loan.id,
                requested_by=user_id,
                expires_at=expires_at,
                correlation_id=correlation_id,
            )

        return IssueResult(
            success=True,
            loan_id=loan.id,
            code=candidate.code,
            share_message=build_share_message(loan, candidate.code, self._settings),
            verify_url=verify_url(candidate.code, self._settings),
            expires_at=expires_at,
            superseded_previous=superseded,
        )

    async def get_verification_details(
        self,
        loan_id: UUID,
        requesting_user_id: UUID,
    ) -> tuple[Optional[VerificationDetails], Optional[VerificationErrorCode]]:
        """
        Verification state of a loan, for the recorder's loan screen.

        Returns:
            (details, error) - exactly one of them is set
        """
        try:
            loan, error = await self._check_loan(loan_id, requesting_user_id)
            if error is not None:
                return None, error

            active = await self._store.get_active_code(loan.id, self._clock())
            confirmation = await self._store.get_confirmation(loan.id)
        except StorageError as e:
            raise ServiceUnavailableError("details", "Could not load verification details, please retry") from e

        return VerificationDetails(
            loan_id=loan.id,
            verification_status=loan.verification_status,
            verification_sent_at=loan.verification_sent_at,
            active_code=active.code if active else None,
            code_expires_at=active.expires_at if active else None,
            verified_by_name=confirmation.confirmed_by_name if confirmation else None,
            verified_by_phone=confirmation.confirmed_by_phone if confirmation else None,
            verified_at=confirmation.confirmed_at if confirmation else None,
        ), None
