"""Services package."""

from handshake.services.storage import (
    AuditStorageInterface,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryRecordStore,
    NotFoundError,
    RecordStoreInterface,
    SQLAuditStorage,
    SQLDatabase,
    SQLRecordStore,
    StorageError,
    StoreUnavailableError,
)

__all__ = [
    "AuditStorageInterface",
    "DuplicateError",
    "InMemoryAuditStorage",
    "InMemoryRecordStore",
    "NotFoundError",
    "RecordStoreInterface",
    "SQLAuditStorage",
    "SQLDatabase",
    "SQLRecordStore",
    "StorageError",
    "StoreUnavailableError",
]
