"""In-process signal store used for dry runs."""

from __future__ import annotations

from collections import deque
from collections.abc import Sequence

from src.core.logging import get_logger
from src.models.signal import SignalRow

log = get_logger(__name__)


class MemorySignalStore:
    """Keeps the most recent persisted rows in memory.

    Batches are appended whole, so the all-or-nothing contract holds.
    """

    def __init__(self, max_rows: int = 10_000) -> None:
        self._rows: deque[SignalRow] = deque(maxlen=max_rows)

    @property
    def rows(self) -> list[SignalRow]:
        return list(self._rows)

    async def insert_signals(self, rows: Sequence[SignalRow]) -> None:
        self._rows.extend(rows)
        log.debug("memory_store.inserted", count=len(rows), total=len(self._rows))

    async def get_recent_signals(self, symbol: str, limit: int = 100) -> list[SignalRow]:
        matching = [r for r in reversed(self._rows) if r.symbol == symbol]
        return matching[:limit]
