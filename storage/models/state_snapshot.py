"""
Protocol State Snapshot Model.

============================================================
PURPOSE
============================================================
One row per protocol instance holding everything needed to
resume windowing after a restart:

- balances: flattened ledger {"asset_id:user_id": entry}
- last_interpolated_ts: flush cursor
- last_height: last fully processed block

============================================================
"""

from typing import Any, Dict, Optional

from sqlalchemy import JSON, BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, TimestampMixin


class ProtocolStateSnapshot(Base, TimestampMixin):
    """Persisted state of one protocol instance."""

    __tablename__ = "protocol_state_snapshots"

    protocol_key: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        comment="Namespace of the protocol instance (chain:protocol:contract)"
    )

    state: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="Serialized ledger"
    )

    last_interpolated_ts: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Flush cursor (Unix ms)"
    )

    last_height: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Last processed block height/slot"
    )

    pair_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of (asset, user) pairs in the ledger"
    )

    def __repr__(self) -> str:
        return (
            f"<ProtocolStateSnapshot(protocol_key={self.protocol_key}, "
            f"last_height={self.last_height}, pairs={self.pair_count})>"
        )
