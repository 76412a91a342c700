"""Custom exceptions for fault_ledger."""

from __future__ import annotations

from typing import Any


class FaultLedgerError(Exception):
    """Base exception for all fault_ledger errors."""

    pass


class ConfigurationError(FaultLedgerError):
    """Raised when configuration is invalid or missing."""

    pass


class StoreNotFoundError(FaultLedgerError):
    """Raised when the requested error store is not registered."""

    pass


class InvalidCaptureError(FaultLedgerError, ValueError):
    """Raised when capture is requested without an exception to capture."""

    pass


class StorageError(FaultLedgerError):
    """Raised when an error store cannot complete an operation."""

    def __init__(
        self,
        message: str,
        *,
        store: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.store = store
        self.operation = operation

    def as_dict(self) -> dict[str, Any]:
        """Return a serializable representation of the failure for logging/tests."""

        return {
            "message": str(self),
            "error_type": self.__class__.__name__,
            "store": self.store,
            "operation": self.operation,
        }


class StorageUnavailableError(StorageError):
    """Raised when the backing storage cannot be reached."""

    pass


class StorageWriteError(StorageError):
    """Raised when the backing storage rejects a write."""

    pass
