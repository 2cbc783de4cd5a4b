"""
Storage Services Package

Provides abstract interfaces and concrete implementations for the record
store. SQLAlchemy backs production; the in-memory store backs tests.
"""

from handshake.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LoanAlreadyVerifiedError,
    NotFoundError,
    RecordStoreInterface,
    StorageError,
    StoreUnavailableError,
)
from handshake.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryRecordStore,
)
from handshake.services.storage.sql import (
    SQLAuditStorage,
    SQLDatabase,
    SQLRecordStore,
    create_engine_from_settings,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "RecordStoreInterface",
    # Exceptions
    "DuplicateError",
    "LoanAlreadyVerifiedError",
    "NotFoundError",
    "StorageError",
    "StoreUnavailableError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryRecordStore",
    # SQLAlchemy implementation
    "SQLAuditStorage",
    "SQLDatabase",
    "SQLRecordStore",
    "create_engine_from_settings",
]
