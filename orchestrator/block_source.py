"""
Orchestrator - Block Sources.

============================================================
RESPONSIBILITY
============================================================
Delivers finalized, already-decoded blocks to the processor in
ascending batches.

- BlockSource: interface the runtime consumes
- JsonlBlockSource: one normalized block per line, for replays
  and local runs

Line format:
    {"height": 100, "timestamp_ms": 1700000000000,
     "balance_deltas": [{"asset_id": "...", "amount": "1000",
                         "from_user": "0x..", "to_user": "0x..",
                         "tx_hash": "0x..", "log_index": 3}],
     "actions": [{"key": "swap", "user_id": "0x..", ...}]}

============================================================
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, List, Optional, Union

from balance_engine.models import Block
from core.exceptions import BlockSourceError


logger = logging.getLogger(__name__)


class BlockSource(ABC):
    """Upstream provider of ordered block batches."""

    @abstractmethod
    def batches(self, start_height: Optional[int] = None) -> AsyncIterator[List[Block]]:
        """
        Yield batches of blocks with height >= start_height.

        Raises:
            BlockSourceError: If the upstream cannot be read
        """
        pass


class JsonlBlockSource(BlockSource):
    """Reads blocks from a JSON-lines file."""

    def __init__(self, path: Union[str, Path], batch_size: int = 100) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._path = Path(path)
        self._batch_size = batch_size

    @property
    def path(self) -> Path:
        return self._path

    async def batches(self, start_height: Optional[int] = None) -> AsyncIterator[List[Block]]:
        try:
            f = open(self._path, "r", encoding="utf-8")
        except OSError as e:
            raise BlockSourceError(
                f"Cannot open block file: {e}",
                source=str(self._path),
                cause=e,
            ) from e

        skipped = 0
        with f:
            batch: List[Block] = []
            for line_no, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                block = self._parse_line(line, line_no)
                if start_height is not None and block.height < start_height:
                    skipped += 1
                    continue
                batch.append(block)
                if len(batch) >= self._batch_size:
                    yield batch
                    batch = []
            if batch:
                yield batch

        if skipped:
            logger.info(f"Skipped {skipped} already-processed blocks in {self._path}")

    def _parse_line(self, line: str, line_no: int) -> Block:
        try:
            return Block.from_dict(json.loads(line))
        except (ValueError, KeyError, TypeError) as e:
            raise BlockSourceError(
                f"Unreadable block: {e}",
                source=str(self._path),
                line=line_no,
                cause=e,
            ) from e
