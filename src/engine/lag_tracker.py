"""Lag tracker: per-instrument price buffers, lag analysis and the signal lifecycle.

Owns one spot buffer, one oracle buffer and a rolling tau* history per
instrument, plus the pending-signal collection. Callers only ever get
copies of this state.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict, deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from src.config.settings import LagTrackerConfig
from src.core.logging import get_logger
from src.engine.correlation import FLOAT_EPSILON, find_optimal_lag, p_value, population_variance
from src.engine.price_buffer import PriceBuffer
from src.models.lag import (
    NO_SIGNAL,
    AccuracyStats,
    LagAnalysisResult,
    LagSignalReading,
    StabilityReport,
)
from src.models.signal import Direction, LagSignal
from src.models.tick import Feed, PricePoint, Tick

logger = get_logger(__name__)

MAX_PENDING_SIGNALS = 1000


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


def _window(points: list[PricePoint], window_ms: int) -> list[PricePoint]:
    """Points within window_ms of the newest point, arrival order kept."""
    if not points:
        return points
    newest = max(p.timestamp for p in points)
    cutoff = newest - window_ms
    return [p for p in points if p.timestamp >= cutoff]


@dataclass
class _InstrumentState:
    spot: PriceBuffer
    oracle: PriceBuffer
    tau_history: deque[int]
    lock: threading.Lock = field(default_factory=threading.Lock)
    last_analysis: LagAnalysisResult | None = None
    analyzed_at: datetime | None = None


class LagTracker:
    """Tracks the lag between a spot feed and an oracle feed per instrument.

    Thread-safe: each instrument's buffers are guarded by their own lock
    and the pending signals by another, so ingestion on one instrument
    never waits on another.
    """

    def __init__(
        self,
        config: LagTrackerConfig,
        symbols: Sequence[str],
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._config = config
        self._symbols = tuple(symbols)
        self._clock = clock or _wall_clock_ms
        self._instruments: dict[str, _InstrumentState] = {
            symbol: _InstrumentState(
                spot=self._new_buffer(),
                oracle=self._new_buffer(),
                tau_history=deque(maxlen=config.stability_window_size),
            )
            for symbol in self._symbols
        }

        self._signals_lock = threading.Lock()
        self._signals: OrderedDict[int, LagSignal] = OrderedDict()
        self._next_signal_id = 0
        self._total_generated = 0
        self._total_outcomes = 0
        self._total_correct = 0
        self._signals_dropped = 0

    def _new_buffer(self) -> PriceBuffer:
        return PriceBuffer(
            max_age_ms=self._config.buffer_max_age_ms,
            max_size=self._config.buffer_max_size,
            cleanup_interval=self._config.cleanup_interval,
        )

    @property
    def symbols(self) -> tuple[str, ...]:
        return self._symbols

    @property
    def signals_dropped(self) -> int:
        return self._signals_dropped

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def handle_tick(self, tick: Tick) -> bool:
        """Route a tick to the spot or oracle buffer by its feed."""
        if tick.feed == Feed.SPOT:
            return self.handle_spot_tick(tick)
        if tick.feed == Feed.ORACLE:
            return self.handle_oracle_tick(tick)
        logger.debug("unknown_feed", symbol=tick.symbol, feed=tick.feed)
        return False

    def handle_spot_tick(self, tick: Tick) -> bool:
        return self._ingest(tick, Feed.SPOT)

    def handle_oracle_tick(self, tick: Tick) -> bool:
        return self._ingest(tick, Feed.ORACLE)

    def _ingest(self, tick: Tick, feed: Feed) -> bool:
        state = self._instruments.get(tick.symbol)
        if state is None:
            logger.debug("unknown_symbol_tick", symbol=tick.symbol, feed=feed.value)
            return False

        buffer = state.spot if feed is Feed.SPOT else state.oracle
        with state.lock:
            added = buffer.add(tick.price, tick.timestamp)
        if not added:
            logger.debug(
                "invalid_tick",
                symbol=tick.symbol,
                feed=feed.value,
                price=tick.price,
                timestamp=tick.timestamp,
            )
        return added

    def _snapshot(self, state: _InstrumentState) -> tuple[list[PricePoint], list[PricePoint]]:
        with state.lock:
            return state.spot.get_all(), state.oracle.get_all()

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(self, symbol: str, window_ms: int | None = None) -> LagAnalysisResult | None:
        """Find tau* for an instrument and record it in the stability history.

        Both feeds are restricted to points within ``window_ms`` (default:
        the buffer max age) of their newest point before correlating.

        Returns:
            The analysis, or None when there is not enough overlapping data.
        """
        state = self._instruments.get(symbol)
        if state is None:
            return None

        spot, oracle = self._snapshot(state)
        span = window_ms if window_ms is not None and window_ms > 0 else self._config.buffer_max_age_ms
        optimal = find_optimal_lag(
            _window(spot, span),
            _window(oracle, span),
            self._config.tau_values,
            tolerance_ms=self._config.timestamp_tolerance_ms,
            min_samples=self._config.min_sample_size,
        )
        if optimal is None:
            return None

        pval = p_value(optimal.correlation, optimal.sample_size)
        result = LagAnalysisResult(
            tau_star_ms=optimal.tau_star_ms,
            correlation=optimal.correlation,
            sample_size=optimal.sample_size,
            p_value=pval,
            significant=pval < self._config.significance_threshold,
        )

        with state.lock:
            state.tau_history.append(result.tau_star_ms)
            state.last_analysis = result
            state.analyzed_at = datetime.now(UTC)

        logger.info(
            "lag_analysis_complete",
            symbol=symbol,
            tau_star_ms=result.tau_star_ms,
            correlation=round(result.correlation, 4),
            p_value=result.p_value,
            significant=result.significant,
            sample_size=result.sample_size,
        )
        return result

    def get_lag_signal(self, symbol: str) -> LagSignalReading:
        """Derive a trading signal from the last analysis and the recent spot move.

        A signal requires: a relative spot move over ``move_lookback_ms``
        larger than ``min_move_magnitude``; an oracle that has not updated
        for longer than ``stale_threshold_ms``; and a significant last
        analysis whose |correlation| exceeds ``min_correlation``.
        """
        state = self._instruments.get(symbol)
        if state is None:
            return NO_SIGNAL

        now = self._clock()
        with state.lock:
            recent = state.spot.get_range(now - self._config.move_lookback_ms, now)
            latest_oracle = state.oracle.latest()
            analysis = state.last_analysis

        if len(recent) < 2 or latest_oracle is None or analysis is None:
            return NO_SIGNAL

        spot_start = recent[0].price
        spot_end = recent[-1].price
        if spot_start < FLOAT_EPSILON:
            return NO_SIGNAL
        move = (spot_end - spot_start) / spot_start
        if abs(move) <= self._config.min_move_magnitude:
            return NO_SIGNAL

        oracle_age = now - latest_oracle.timestamp
        if oracle_age <= self._config.stale_threshold_ms:
            return NO_SIGNAL

        if not analysis.significant or abs(analysis.correlation) <= self._config.min_correlation:
            return NO_SIGNAL

        return LagSignalReading(
            has_signal=True,
            direction=Direction.from_move(move),
            tau_ms=analysis.tau_star_ms,
            correlation=analysis.correlation,
            confidence=self._confidence(move, analysis.correlation),
            spot_price=spot_end,
            oracle_price=latest_oracle.price,
            spot_move_magnitude=move,
        )

    def _confidence(self, move: float, correlation: float) -> float:
        # Full weight once the move is twice the trigger threshold.
        threshold = self._config.min_move_magnitude
        move_factor = 1.0 if threshold <= 0 else min(1.0, abs(move) / (2.0 * threshold))
        return max(0.0, min(1.0, abs(correlation) * move_factor))

    def get_stability(self, symbol: str) -> StabilityReport:
        """tau* history and variance; empty history counts as stable."""
        state = self._instruments.get(symbol)
        if state is None:
            return StabilityReport(stable=True)
        with state.lock:
            history = list(state.tau_history)
        if not history:
            return StabilityReport(stable=True)
        variance = population_variance(history)
        return StabilityReport(
            stable=variance < self._config.stability_threshold,
            tau_history=history,
            variance=variance,
        )

    def last_analysis(self, symbol: str) -> LagAnalysisResult | None:
        state = self._instruments.get(symbol)
        if state is None:
            return None
        with state.lock:
            return state.last_analysis

    # ------------------------------------------------------------------
    # Signal lifecycle
    # ------------------------------------------------------------------

    def create_signal(
        self,
        symbol: str,
        *,
        direction: Direction | str,
        tau_ms: int,
        correlation: float,
        confidence: float,
        spot_price: float,
        oracle_price: float,
        spot_move_magnitude: float,
        window_id: str | None = None,
    ) -> int:
        """Register a new pending signal and return its id.

        At capacity the oldest pending signal is evicted first; creation
        itself never fails.
        """
        with self._signals_lock:
            if len(self._signals) >= MAX_PENDING_SIGNALS:
                dropped_id, _ = self._signals.popitem(last=False)
                self._signals_dropped += 1
                logger.warning(
                    "signal_dropped_memory_limit",
                    dropped_id=dropped_id,
                    limit=MAX_PENDING_SIGNALS,
                )

            self._next_signal_id += 1
            signal = LagSignal(
                id=self._next_signal_id,
                symbol=symbol,
                direction=Direction(direction),
                tau_ms=tau_ms,
                correlation=correlation,
                confidence=confidence,
                spot_price=spot_price,
                oracle_price=oracle_price,
                spot_move_magnitude=spot_move_magnitude,
                window_id=window_id,
            )
            self._signals[signal.id] = signal
            self._total_generated += 1

        logger.info(
            "lag_signal_generated",
            signal_id=signal.id,
            symbol=symbol,
            direction=signal.direction.value,
            tau_ms=tau_ms,
            correlation=round(correlation, 4),
            spot_price=spot_price,
            oracle_price=oracle_price,
            move_magnitude=spot_move_magnitude,
        )
        return signal.id

    def record_outcome(
        self,
        signal_id: int,
        outcome_direction: Direction | str,
        pnl: float | None = None,
    ) -> bool:
        """Score a pending signal once.

        Unknown ids and already-scored signals are logged and ignored.

        Returns:
            True if the outcome was recorded.
        """
        with self._signals_lock:
            signal = self._signals.get(signal_id)
            if signal is None:
                logger.warning("signal_not_found", signal_id=signal_id)
                return False
            if signal.has_outcome:
                logger.warning("signal_outcome_already_recorded", signal_id=signal_id)
                return False
            outcome = Direction(outcome_direction)

            correct = signal.direction is outcome
            signal.outcome_direction = outcome
            signal.prediction_correct = correct
            signal.pnl = pnl
            self._total_outcomes += 1
            if correct:
                self._total_correct += 1

        logger.info(
            "lag_signal_outcome",
            signal_id=signal_id,
            predicted=signal.direction.value,
            actual=outcome.value,
            correct=correct,
            pnl=pnl,
        )
        return True

    def get_accuracy_stats(self) -> AccuracyStats:
        with self._signals_lock:
            total = self._total_outcomes
            correct = self._total_correct
        return AccuracyStats(
            total_signals=total,
            total_correct=correct,
            accuracy=correct / total if total > 0 else 0.0,
        )

    def get_pending_signals(self) -> list[LagSignal]:
        """Copies of every pending signal, scored or not, oldest first."""
        with self._signals_lock:
            return [s.model_copy() for s in self._signals.values()]

    def clear_persisted_signals(self, signal_ids: Sequence[int]) -> None:
        with self._signals_lock:
            for signal_id in signal_ids:
                self._signals.pop(signal_id, None)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def get_state(self) -> dict[str, Any]:
        now = self._clock()
        buffers: dict[str, Any] = {}
        analysis: dict[str, Any] = {}
        stability: dict[str, Any] = {}

        for symbol, state in self._instruments.items():
            with state.lock:
                oldest = state.spot.oldest_timestamp()
                newest = state.spot.newest_timestamp()
                buffers[symbol] = {
                    "spot_count": len(state.spot),
                    "oracle_count": len(state.oracle),
                    "oldest_ms": now - oldest if oldest is not None else None,
                    "newest_ms": now - newest if newest is not None else None,
                }
                last = state.last_analysis
                analyzed_at = state.analyzed_at
            analysis[symbol] = (
                {
                    "tau_star_ms": last.tau_star_ms,
                    "correlation": last.correlation,
                    "sample_size": last.sample_size,
                    "p_value": last.p_value,
                    "significant": last.significant,
                    "analyzed_at": analyzed_at.isoformat() if analyzed_at else None,
                }
                if last is not None
                else None
            )
            report = self.get_stability(symbol)
            stability[symbol] = {
                "stable": report.stable,
                "tau_history": report.tau_history,
                "variance": report.variance,
                "samples": report.samples,
            }

        with self._signals_lock:
            signals = {
                "pending_count": len(self._signals),
                "total_generated": self._total_generated,
                "total_outcomes": self._total_outcomes,
                "total_correct": self._total_correct,
                "signals_dropped": self._signals_dropped,
            }

        return {
            "buffers": buffers,
            "analysis": analysis,
            "stability": stability,
            "signals": signals,
        }
