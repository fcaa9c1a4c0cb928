"""
State Snapshot Repository.

============================================================
PURPOSE
============================================================
Persists and restores the resumable state of a protocol
instance: ledger, flush cursor and last processed height.

============================================================
SERIALIZATION
============================================================
The nested in-memory ledger is flattened at this boundary:

    {"asset_id:user_id": {"balance": "<decimal string>",
                          "updated_at_ts": <int>,
                          "updated_at_height": <int>}}

The composite key is split on the LAST ":" so asset ids that
themselves contain ":" (chain-qualified ids) round-trip.

============================================================
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from balance_engine.ledger import ActiveBalanceLedger
from balance_engine.models import FlushCursor
from storage.models.state_snapshot import ProtocolStateSnapshot
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import CorruptSnapshotError


SNAPSHOT_FORMAT_VERSION = 1


# =========================================================
# FLATTEN / UNFLATTEN
# =========================================================

def make_pair_key(asset_id: str, user_id: str) -> str:
    return f"{asset_id}:{user_id}"


def split_pair_key(key: str) -> tuple:
    """Split "asset_id:user_id" on the last separator."""
    asset_id, sep, user_id = key.rpartition(":")
    if not sep or not asset_id or not user_id:
        raise ValueError(f"Malformed pair key {key!r}")
    return asset_id, user_id


def flatten_ledger(ledger: ActiveBalanceLedger) -> Dict[str, Dict[str, Any]]:
    return {
        make_pair_key(asset_id, user_id): {
            "balance": str(entry.balance),
            "updated_at_ts": entry.updated_at_ts,
            "updated_at_height": entry.updated_at_height,
        }
        for asset_id, user_id, entry in ledger.items()
    }


def unflatten_ledger(flat: Dict[str, Dict[str, Any]]) -> ActiveBalanceLedger:
    """
    Rebuild a ledger from its flattened form.

    Raises:
        ValueError: On malformed keys or entries
    """
    ledger = ActiveBalanceLedger()
    for key, entry in flat.items():
        asset_id, user_id = split_pair_key(key)
        try:
            ledger.set(
                asset_id,
                user_id,
                int(entry["balance"]),
                int(entry["updated_at_ts"]),
                int(entry["updated_at_height"]),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed entry for {key!r}: {e}") from e
    return ledger


@dataclass
class LoadedSnapshot:
    """State restored from the store."""
    ledger: ActiveBalanceLedger
    cursor: FlushCursor
    last_height: Optional[int]


# =========================================================
# REPOSITORY
# =========================================================

class StateSnapshotRepository(BaseRepository[ProtocolStateSnapshot]):
    """One snapshot row per protocol_key, overwritten on every save."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, ProtocolStateSnapshot, "StateSnapshotRepository")

    def save(
        self,
        protocol_key: str,
        ledger: ActiveBalanceLedger,
        cursor: FlushCursor,
        last_height: Optional[int],
    ) -> None:
        """
        Upsert the snapshot of protocol_key and commit.

        Raises:
            RepositoryException: On any database failure
        """
        payload = {
            "version": SNAPSHOT_FORMAT_VERSION,
            "balances": flatten_ledger(ledger),
        }

        try:
            row = self._session.get(ProtocolStateSnapshot, protocol_key)
            if row is None:
                row = ProtocolStateSnapshot(protocol_key=protocol_key)
                self._session.add(row)
            row.state = payload
            row.last_interpolated_ts = cursor.last_interpolated_ts
            row.last_height = last_height
            row.pair_count = len(ledger)
            self._session.flush()
        except SQLAlchemyError as e:
            self._session.rollback()
            self._handle_db_error(e, "save", {"protocol_key": protocol_key})
            raise

        self._commit()
        self._logger.debug(
            f"Saved snapshot {protocol_key}: pairs={len(ledger)} "
            f"cursor={cursor.last_interpolated_ts} height={last_height}"
        )

    def load(self, protocol_key: str) -> Optional[LoadedSnapshot]:
        """
        Load the snapshot of protocol_key.

        Returns:
            LoadedSnapshot, or None if nothing was saved yet

        Raises:
            CorruptSnapshotError: If the stored payload cannot be decoded
            RepositoryException: On database failure
        """
        row = self._get(protocol_key)
        if row is None:
            return None

        state = row.state or {}
        try:
            ledger = unflatten_ledger(state.get("balances", {}))
        except (ValueError, AttributeError) as e:
            raise CorruptSnapshotError(self._repository_name, protocol_key, str(e)) from e

        self._logger.info(
            f"Loaded snapshot {protocol_key}: pairs={len(ledger)} "
            f"cursor={row.last_interpolated_ts} height={row.last_height}"
        )
        return LoadedSnapshot(
            ledger=ledger,
            cursor=FlushCursor(last_interpolated_ts=row.last_interpolated_ts),
            last_height=row.last_height,
        )

    def delete(self, protocol_key: str) -> bool:
        """Remove a snapshot. Returns False if none existed."""
        row = self._get(protocol_key)
        if row is None:
            return False
        try:
            self._session.delete(row)
        except SQLAlchemyError as e:
            self._session.rollback()
            self._handle_db_error(e, "delete", {"protocol_key": protocol_key})
            raise
        self._commit()
        self._logger.info(f"Deleted snapshot {protocol_key}")
        return True

    def list_keys(self) -> List[str]:
        stmt = select(ProtocolStateSnapshot.protocol_key).order_by(
            ProtocolStateSnapshot.protocol_key
        )
        return self._execute_query(stmt)
