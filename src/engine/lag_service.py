"""Lag tracker service: lifecycle, tick wiring, persistence and the query API.

One instance is constructed by the process entry point and handed to
every consumer. State machine: uninitialized -> initialized ->
uninitialized, idempotent both ways.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from src.config.settings import LagTrackerConfig
from src.core.logging import child_logger
from src.engine.errors import LagTrackerError, LagTrackerErrorCode
from src.engine.lag_tracker import LagTracker
from src.models.signal import SignalRow
from src.models.tick import SUPPORTED_SYMBOLS

if TYPE_CHECKING:
    from src.interfaces import SignalStore, TickSource, Unsubscribe
    from src.models.lag import AccuracyStats, LagAnalysisResult, LagSignalReading, StabilityReport
    from src.models.signal import Direction
    from src.models.tick import Tick


def _empty_flush_stats() -> dict[str, Any]:
    return {
        "signals_logged": 0,
        "batches_inserted": 0,
        "insert_errors": 0,
        "last_flush_at": None,
    }


class LagTrackerService:
    """Process-wide lag tracker: owns the tracker, tick subscriptions and flush task."""

    def __init__(
        self,
        tick_source: TickSource,
        store: SignalStore,
        symbols: Sequence[str] = SUPPORTED_SYMBOLS,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._tick_source = tick_source
        self._store = store
        self._symbols = tuple(symbols)
        self._clock = clock
        self._log = child_logger(__name__, module="lag-tracker")

        self._initialized = False
        self._config: LagTrackerConfig | None = None
        self._tracker: LagTracker | None = None
        self._unsubscribers: list[Unsubscribe] = []
        self._flush_task: asyncio.Task[None] | None = None
        self._flush_lock = asyncio.Lock()
        self._stats = _empty_flush_stats()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def symbols(self) -> tuple[str, ...]:
        return self._symbols

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self, config: LagTrackerConfig | dict[str, Any] | None = None) -> None:
        """Build the tracker, subscribe to ticks and start the flush loop.

        A second call while initialized is a no-op.
        """
        if self._initialized:
            return

        self._log.info("module_init_start", symbols=list(self._symbols))

        if isinstance(config, LagTrackerConfig):
            effective = config
        else:
            effective = LagTrackerConfig.from_mapping(config)
        self._config = effective
        self._tracker = LagTracker(effective, self._symbols, clock=self._clock)

        try:
            for symbol in self._symbols:
                self._unsubscribers.append(self._tick_source.subscribe(symbol, self._on_tick))
        except Exception:
            self._log.exception("module_init_subscribe_failed", symbol=symbol)
            self._unsubscribe_all()
            self._config = None
            self._tracker = None
            raise

        if effective.flush_interval_ms > 0:
            self._flush_task = asyncio.create_task(
                self._flush_loop(effective.flush_interval_ms / 1000.0),
                name="lag-tracker-flush",
            )

        self._initialized = True
        self._log.info(
            "lag_tracker_initialized",
            config={
                "buffer_max_age_ms": effective.buffer_max_age_ms,
                "buffer_max_size": effective.buffer_max_size,
                "tau_values": effective.tau_values,
                "min_correlation": effective.min_correlation,
                "significance_threshold": effective.significance_threshold,
            },
        )

    async def shutdown(self) -> None:
        """Stop flushing, unsubscribe, flush once more and reset.

        Safe to call repeatedly or before init. Completes even when the
        final flush fails or times out.
        """
        self._log.info("module_shutdown_start")

        if self._flush_task is not None:
            self._flush_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._flush_task
            self._flush_task = None

        self._unsubscribe_all()

        if self._tracker is not None:
            timeout = self._config.shutdown_flush_timeout_s if self._config else 5.0
            try:
                await asyncio.wait_for(self.flush(), timeout=timeout)
            except TimeoutError:
                self._log.error("final_flush_timeout", timeout_s=timeout)
            except Exception:
                self._log.exception("final_flush_failed")
            self._tracker = None

        self._initialized = False
        self._config = None
        self._stats = _empty_flush_stats()
        self._log.info("module_shutdown_complete")

    def _unsubscribe_all(self) -> None:
        for unsubscribe in self._unsubscribers:
            try:
                unsubscribe()
            except Exception:
                self._log.debug("unsubscribe_failed", exc_info=True)
        self._unsubscribers = []

    def _on_tick(self, tick: Tick) -> None:
        tracker = self._tracker
        if tracker is None:
            return
        try:
            tracker.handle_tick(tick)
        except Exception:
            # A bad tick must never tear down the subscription.
            self._log.exception(
                "tick_handler_error",
                symbol=getattr(tick, "symbol", None),
                feed=getattr(tick, "feed", None),
            )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _flush_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            try:
                await self.flush()
            except Exception:
                self._log.exception("interval_flush_failed")

    async def flush(self) -> int:
        """Persist every scored pending signal in one batch.

        On failure nothing is cleared: the batch is retried next cycle.

        Returns:
            Number of signals persisted.
        """
        async with self._flush_lock:
            tracker = self._tracker
            if tracker is None:
                return 0

            ready = [s for s in tracker.get_pending_signals() if s.has_outcome]
            if not ready:
                return 0

            rows = [SignalRow.from_signal(s) for s in ready]
            started = time.monotonic()
            try:
                await self._store.insert_signals(rows)
            except Exception as exc:
                self._stats["insert_errors"] += 1
                self._log.error(
                    "persistence_failed",
                    error_code=LagTrackerErrorCode.PERSISTENCE_ERROR.value,
                    error=str(exc),
                    signal_count=len(ready),
                )
                return 0

            tracker.clear_persisted_signals([s.id for s in ready])
            self._stats["signals_logged"] += len(ready)
            self._stats["batches_inserted"] += 1
            self._stats["last_flush_at"] = datetime.now(UTC).isoformat()
            self._log.info(
                "buffer_flushed",
                signal_count=len(ready),
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )
            return len(ready)

    # ------------------------------------------------------------------
    # Query API
    # ------------------------------------------------------------------

    def _require_tracker(self) -> LagTracker:
        if not self._initialized or self._tracker is None:
            raise LagTrackerError(
                LagTrackerErrorCode.NOT_INITIALIZED,
                "Lag tracker not initialized. Call init() first.",
            )
        return self._tracker

    def _require_symbol(self, symbol: str) -> None:
        if symbol not in self._symbols:
            raise LagTrackerError(
                LagTrackerErrorCode.INVALID_SYMBOL,
                f"Invalid symbol: {symbol}. Supported: {', '.join(self._symbols)}",
                {"symbol": symbol},
            )

    def analyze(self, symbol: str, window_ms: int | None = None) -> LagAnalysisResult | None:
        tracker = self._require_tracker()
        self._require_symbol(symbol)
        return tracker.analyze(symbol, window_ms)

    def get_lag_signal(self, symbol: str) -> LagSignalReading:
        tracker = self._require_tracker()
        self._require_symbol(symbol)
        return tracker.get_lag_signal(symbol)

    def get_stability(self, symbol: str) -> StabilityReport:
        tracker = self._require_tracker()
        self._require_symbol(symbol)
        return tracker.get_stability(symbol)

    def create_signal(self, symbol: str, **params: Any) -> int:
        tracker = self._require_tracker()
        self._require_symbol(symbol)
        return tracker.create_signal(symbol, **params)

    def capture_signal(self, symbol: str, window_id: str | None = None) -> int | None:
        """Turn the current lag reading into a pending signal, if there is one."""
        tracker = self._require_tracker()
        self._require_symbol(symbol)
        reading = tracker.get_lag_signal(symbol)
        if not reading.has_signal:
            return None
        return tracker.create_signal(symbol, window_id=window_id, **reading.signal_fields())

    def record_outcome(
        self,
        signal_id: int,
        outcome_direction: Direction | str,
        pnl: float | None = None,
    ) -> bool:
        return self._require_tracker().record_outcome(signal_id, outcome_direction, pnl)

    def get_accuracy_stats(self) -> AccuracyStats:
        return self._require_tracker().get_accuracy_stats()

    def get_state(self) -> dict[str, Any]:
        """Operational snapshot; an all-empty shape when not initialized."""
        if not self._initialized or self._tracker is None or self._config is None:
            return {
                "initialized": False,
                "buffers": {},
                "analysis": {},
                "stability": {},
                "signals": {
                    "pending_count": 0,
                    "total_generated": 0,
                    "total_outcomes": 0,
                    "total_correct": 0,
                    "signals_dropped": 0,
                },
                "module_stats": _empty_flush_stats(),
                "config": None,
            }

        tracker_state = self._tracker.get_state()
        return {
            "initialized": True,
            **tracker_state,
            "module_stats": dict(self._stats),
            "config": self._config.model_dump(),
        }
