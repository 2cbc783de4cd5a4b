"""
Audit Logger

DESIGN DECISION: Every issuance and every verification attempt is logged.
This provides:
1. A record of who confirmed which loan and from where
2. Visibility into code-guessing attempts
3. Debugging capability when the store fails

The audit logger:
- Always writes a structured local log line
- Persists to audit storage when one is configured
- Does not fail the request if persisting the audit event fails
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from handshake.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from handshake.services.storage import AuditStorageInterface, StorageError


def configure_logging(level: str = "INFO") -> None:
    """Configure stdlib logging and structlog for JSON output."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Writes audit events to the local structured log and, when configured,
    to audit storage.
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger("handshake.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Record one event.

        Returns False only when audit storage rejected the write; the
        request that produced the event carries on either way.
        """
        emit = {
            AuditSeverity.DEBUG: self._logger.debug,
            AuditSeverity.INFO: self._logger.info,
            AuditSeverity.WARNING: self._logger.warning,
        }.get(event.severity, self._logger.error)
        emit("audit_event", **event.to_log_dict())

        if self._storage is None:
            return True
        try:
            return await self._storage.append_event(event)
        except StorageError as e:
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    async def log_code_issued(
        self,
        loan_id: UUID,
        requested_by: UUID,
        expires_at: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.code_issued(
            loan_id=loan_id,
            requested_by=requested_by,
            expires_at=expires_at,
            correlation_id=correlation_id,
        ))

    async def log_code_superseded(
        self,
        loan_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.code_superseded(
            loan_id=loan_id,
            correlation_id=correlation_id,
        ))

    async def log_issuance_rejected(
        self,
        loan_id: UUID,
        requested_by: UUID,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.issuance_rejected(
            loan_id=loan_id,
            requested_by=requested_by,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_verification_succeeded(
        self,
        loan_id: UUID,
        confirmed_by_name: str,
        confirmed_by_phone: Optional[str],
        client_address: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.verification_succeeded(
            loan_id=loan_id,
            confirmed_by_name=confirmed_by_name,
            confirmed_by_phone=confirmed_by_phone,
            client_address=client_address,
            correlation_id=correlation_id,
        ))

    async def log_verification_failed(
        self,
        loan_id: Optional[UUID],
        reason: str,
        client_address: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.verification_failed(
            loan_id=loan_id,
            reason=reason,
            client_address=client_address,
            correlation_id=correlation_id,
        ))

    async def log_rate_limited(
        self,
        client_address: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.rate_limited(
            client_address=client_address,
            correlation_id=correlation_id,
        ))

    async def log_store_error(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a record store failure."""
        await self.log(AuditEventBuilder.store_error(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a request and pass it through every step.
    """
    return uuid4()
