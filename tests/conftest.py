"""Shared test fixtures."""

from __future__ import annotations

import random
from collections.abc import Sequence
from pathlib import Path  # noqa: TCH003

import pytest

from src.config.loader import ConfigLoader
from src.config.settings import LagTrackerConfig
from src.interfaces import TickCallback, Unsubscribe
from src.models.signal import SignalRow
from src.models.tick import Feed, Tick


class FakeTickSource:
    """In-memory tick source that lets tests push ticks to subscribers."""

    def __init__(self) -> None:
        self.callbacks: dict[str, list[TickCallback]] = {}
        self.unsubscribed: list[str] = []

    def subscribe(self, symbol: str, callback: TickCallback) -> Unsubscribe:
        self.callbacks.setdefault(symbol, []).append(callback)

        def unsubscribe() -> None:
            self.callbacks[symbol].remove(callback)
            self.unsubscribed.append(symbol)

        return unsubscribe

    def emit(self, tick: Tick) -> None:
        for callback in list(self.callbacks.get(tick.symbol, [])):
            callback(tick)


class RecordingStore:
    """Signal store that records batches and can be told to fail."""

    def __init__(self) -> None:
        self.batches: list[list[SignalRow]] = []
        self.fail = False

    @property
    def rows(self) -> list[SignalRow]:
        return [row for batch in self.batches for row in batch]

    async def insert_signals(self, rows: Sequence[SignalRow]) -> None:
        if self.fail:
            msg = "database unavailable"
            raise ConnectionError(msg)
        self.batches.append(list(rows))


class ManualClock:
    """Injectable millisecond clock."""

    def __init__(self, now_ms: int = 1_700_000_000_000) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


def lagged_walk(
    n: int,
    *,
    start_ms: int,
    step_ms: int = 50,
    lag_ms: int = 1000,
    seed: int = 7,
    base: float = 100.0,
) -> tuple[list[tuple[float, int]], list[tuple[float, int]]]:
    """Random-walk spot series and an oracle series replaying it ``lag_ms`` later.

    Returns (spot, oracle) as lists of (price, timestamp).
    """
    rng = random.Random(seed)
    price = base
    spot: list[tuple[float, int]] = []
    for i in range(n):
        price += rng.gauss(0.0, 0.5)
        spot.append((price, start_ms + i * step_ms))
    oracle = [(p, ts + lag_ms) for p, ts in spot]
    return spot, oracle


@pytest.fixture()
def config_dir(tmp_path: Path) -> Path:
    """Create a temp config directory with default.toml."""
    config = tmp_path / "config"
    config.mkdir()

    default_toml = config / "default.toml"
    default_toml.write_text(
        """\
[lag_tracker]
buffer_max_age_ms = 60000
buffer_max_size = 2000
cleanup_interval = 50
tau_values = [0, 250, 500, 1000, 2000, 3000, 5000]
timestamp_tolerance_ms = 100
min_sample_size = 10
min_move_magnitude = 0.001
min_correlation = 0.5
significance_threshold = 0.05
stability_window_size = 10
stability_threshold = 250000.0
move_lookback_ms = 5000
stale_threshold_ms = 2000
flush_interval_ms = 1000
shutdown_flush_timeout_s = 5.0

[rtds]
url = "wss://ws-live-data.polymarket.com"
reconnect_interval_ms = 1000
max_reconnect_interval_ms = 30000
max_message_size_bytes = 65536

[persistence]
min_pool = 1
max_pool = 4
create_tables = true

[runner]
status_interval_seconds = 30.0
"""
    )
    return config


@pytest.fixture()
def config_loader(config_dir: Path) -> ConfigLoader:
    """ConfigLoader with test config."""
    loader = ConfigLoader(config_dir=config_dir, env="test")
    loader.load()
    return loader


@pytest.fixture()
def tracker_config() -> LagTrackerConfig:
    """Defaults with the background flush disabled."""
    return LagTrackerConfig(flush_interval_ms=0)


@pytest.fixture()
def tick_source() -> FakeTickSource:
    return FakeTickSource()


@pytest.fixture()
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def make_tick():
    def _make(symbol: str, price: float, timestamp: int, feed: Feed = Feed.SPOT) -> Tick:
        return Tick(symbol=symbol, price=price, timestamp=timestamp, feed=feed)

    return _make


@pytest.fixture()
def walk():
    return lagged_walk
