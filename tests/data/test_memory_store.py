"""Tests for MemorySignalStore."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from src.data.memory_store import MemorySignalStore
from src.interfaces import SignalStore
from src.models.signal import Direction, SignalRow


def _row(symbol: str, tau: int) -> SignalRow:
    return SignalRow(
        timestamp=datetime(2024, 1, 1, tzinfo=UTC),
        symbol=symbol,
        spot_price_at_signal=100.0,
        spot_move_direction=Direction.UP,
        spot_move_magnitude=0.01,
        oracle_price_at_signal=99.0,
        predicted_direction=Direction.UP,
        predicted_tau_ms=tau,
        correlation_at_tau=0.8,
    )


class TestMemorySignalStore:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(MemorySignalStore(), SignalStore)

    @pytest.mark.asyncio()
    async def test_insert_and_query(self) -> None:
        store = MemorySignalStore()
        await store.insert_signals([_row("btc", 250), _row("eth", 500)])
        await store.insert_signals([_row("btc", 1000)])
        assert len(store.rows) == 3
        recent = await store.get_recent_signals("btc")
        assert [r.predicted_tau_ms for r in recent] == [1000, 250]

    @pytest.mark.asyncio()
    async def test_limit(self) -> None:
        store = MemorySignalStore()
        await store.insert_signals([_row("sol", t) for t in range(5)])
        recent = await store.get_recent_signals("sol", limit=2)
        assert [r.predicted_tau_ms for r in recent] == [4, 3]

    @pytest.mark.asyncio()
    async def test_bounded(self) -> None:
        store = MemorySignalStore(max_rows=3)
        await store.insert_signals([_row("xrp", t) for t in range(5)])
        assert [r.predicted_tau_ms for r in store.rows] == [2, 3, 4]
