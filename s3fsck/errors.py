"""Error types for the lock fsck tool"""

from __future__ import annotations


class FsckError(Exception):
    """Base error for all fsck errors."""


class ConfigError(FsckError):
    """Raised for a malformed bucket argument or configuration value."""


class ConsistencyError(FsckError):
    """Raised when lock state contradicts the locking protocol's invariants."""


class UnknownOperationKindError(ConsistencyError):
    """Raised when a lock record path names neither a delete nor a rename."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Unknown operation type: {path}")


class LockRecordFormatError(FsckError):
    """Raised when a lock record payload cannot be decoded."""

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"Malformed lock record {path}: {detail}")


class StorageBackendError(FsckError):
    """Raised when an object store call fails."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage backend error during {operation}: {detail}")
