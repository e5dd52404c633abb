"""
Core domain package.

This package contains the music metadata store: the on-disk schema, the
connection/transaction lifecycle and the `Song` domain model. It is free of
UI and networking concerns.

Consumers should usually import from the specific module they need
(e.g. `musicstore.core.music_db`).
"""

from __future__ import annotations

from typing import Any

__all__: list[str] = [
    "MusicDatabaseError",
    "DatabaseOpenError",
    "SchemaVersionError",
    "TransactionError",
]


class MusicDatabaseError(RuntimeError):
    """Base error for music database operations."""


class DatabaseOpenError(MusicDatabaseError):
    """Raised when the database file cannot be created, opened or validated."""


class SchemaVersionError(DatabaseOpenError):
    """Raised when the stored schema version is missing, corrupt or unsupported."""


class TransactionError(MusicDatabaseError):
    """Raised by the transaction context manager when BEGIN or COMMIT fails."""

    def __init__(self, message: str, fault: Any = None) -> None:
        super().__init__(message)
        self.fault = fault
