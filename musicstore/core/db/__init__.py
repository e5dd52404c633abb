"""
Internal DB subpackage for the music store.

This package splits the store into focused units (schema catalog and
versioning, connection lifecycle, query execution, transactions and library
queries) while keeping `MusicDatabase` as the single public interface.

External code should import `MusicDatabase` from `musicstore.core.music_db`.
"""

from __future__ import annotations

# Execution results
from .executor import ErrorKind, QueryExecutor, ResultSet, ResultStatus, StoreFault, WriteResult

# Schema / versioning
from .schema import SCHEMA_VERSION, check_version, create_schema, migrate

__all__ = [
    # executor
    "ErrorKind",
    "QueryExecutor",
    "ResultSet",
    "ResultStatus",
    "StoreFault",
    "WriteResult",
    # schema
    "SCHEMA_VERSION",
    "check_version",
    "create_schema",
    "migrate",
]
