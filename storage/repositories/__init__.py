"""
Repository Layer Package.

============================================================
ARCHITECTURE PRINCIPLES
============================================================
1. All database access goes through repository classes
2. Session Injection: Sessions are injected, not created internally
3. Exception Handling: All DB errors wrapped in repository exceptions

============================================================
USAGE
============================================================

    from storage.database import create_database_engine, create_session_factory
    from storage.repositories import StateSnapshotRepository

    session = create_session_factory(create_database_engine(database_url))()
    repository = StateSnapshotRepository(session)
    snapshot = repository.load("ethereum:erc20:0xabc")

============================================================
"""

from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import (
    ConnectionError,
    CorruptSnapshotError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
    RepositoryException,
    TransactionError,
)
from storage.repositories.state_snapshot import (
    LoadedSnapshot,
    StateSnapshotRepository,
    flatten_ledger,
    unflatten_ledger,
)

__all__ = [
    "BaseRepository",
    "ConnectionError",
    "CorruptSnapshotError",
    "DuplicateRecordError",
    "IntegrityError",
    "QueryError",
    "RepositoryException",
    "TransactionError",
    "LoadedSnapshot",
    "StateSnapshotRepository",
    "flatten_ledger",
    "unflatten_ledger",
]
