"""
Balance Engine - Active Balance Ledger.

============================================================
RESPONSIBILITY
============================================================
Holds the current balance of every (asset, user) pair seen.

- Two-level mapping asset_id -> user_id -> ActiveBalance
- Entries are created lazily and never deleted
- No I/O, single writer (the block processor task)

============================================================
"""

from typing import Dict, Iterator, List, Optional, Tuple

from .models import ActiveBalance


class ActiveBalanceLedger:
    """In-memory ledger of active balances."""

    def __init__(self) -> None:
        self._balances: Dict[str, Dict[str, ActiveBalance]] = {}

    def get(self, asset_id: str, user_id: str) -> Optional[ActiveBalance]:
        users = self._balances.get(asset_id)
        if users is None:
            return None
        return users.get(user_id)

    def set(
        self,
        asset_id: str,
        user_id: str,
        balance: int,
        ts: int,
        height: int,
    ) -> ActiveBalance:
        """
        Store the balance of a pair.

        Raises:
            ValueError: on a negative balance or a timestamp older than
                the stored one. Callers clamp before writing.
        """
        if balance < 0:
            raise ValueError(
                f"Negative balance {balance} for {asset_id}:{user_id}"
            )

        current = self.get(asset_id, user_id)
        if current is not None and ts < current.updated_at_ts:
            raise ValueError(
                f"Timestamp {ts} older than {current.updated_at_ts} "
                f"for {asset_id}:{user_id}"
            )

        entry = ActiveBalance(
            balance=balance,
            updated_at_ts=ts,
            updated_at_height=height,
        )
        self._balances.setdefault(asset_id, {})[user_id] = entry
        return entry

    def users_of(self, asset_id: str) -> List[str]:
        return list(self._balances.get(asset_id, {}))

    def assets(self) -> List[str]:
        return list(self._balances)

    def items(self) -> Iterator[Tuple[str, str, ActiveBalance]]:
        """Iterate (asset_id, user_id, entry) over a copy of the keys."""
        for asset_id, users in list(self._balances.items()):
            for user_id, entry in list(users.items()):
                yield asset_id, user_id, entry

    def __len__(self) -> int:
        return sum(len(users) for users in self._balances.values())

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        asset_id, user_id = key
        return self.get(asset_id, user_id) is not None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ActiveBalanceLedger):
            return NotImplemented
        return self._balances == other._balances

    def __repr__(self) -> str:
        return f"ActiveBalanceLedger(assets={len(self._balances)}, pairs={len(self)})"
