"""
Component wiring for the Loan Handshake service.

DESIGN DECISION: The record store is created once here and injected into
both services. Nothing else constructs a database client, so no feature can
reach around the store interface.
"""

from typing import Optional

import structlog

from handshake.audit import AuditLogger, configure_logging
from handshake.config import Settings, get_settings
from handshake.services.storage import (
    InMemoryAuditStorage,
    InMemoryRecordStore,
    RecordStoreInterface,
    SQLAuditStorage,
    SQLDatabase,
    SQLRecordStore,
)
from handshake.verification import (
    CodeIssuanceService,
    RateLimiter,
    VerificationService,
)

logger = structlog.get_logger(__name__)


def create_app_components(
    settings: Optional[Settings] = None,
    use_database: bool = True,
) -> tuple[CodeIssuanceService, VerificationService, RecordStoreInterface]:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use; defaults to the cached environment settings.
        use_database: Whether to use the SQL database. Set to False to run
                    on the in-memory store (tests, demos).

    Returns:
        (issuance_service, verification_service, record_store)
    """
    settings = settings or get_settings()
    configure_logging(settings.app.log_level)
    policy = settings.handshake

    if use_database:
        database = SQLDatabase.from_settings(settings.database)
        database.connect()
        store = SQLRecordStore(database)
        audit_logger = AuditLogger(SQLAuditStorage(database))
        logger.info("record_store_ready", backend="sql")
    else:
        store = InMemoryRecordStore()
        audit_logger = AuditLogger(InMemoryAuditStorage())
        logger.info("record_store_ready", backend="memory")

    issuance_service = CodeIssuanceService(
        store=store,
        settings=policy,
        audit_logger=audit_logger,
    )
    verification_service = VerificationService(
        store=store,
        settings=policy,
        audit_logger=audit_logger,
        rate_limiter=RateLimiter(store, policy),
    )

    return issuance_service, verification_service, store
