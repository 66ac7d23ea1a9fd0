"""Lag analysis result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.models.signal import Direction  # noqa: TCH001


@dataclass(frozen=True)
class LagAnalysisResult:
    """Outcome of one optimal-lag search for an instrument."""

    tau_star_ms: int
    correlation: float
    sample_size: int
    p_value: float
    significant: bool


@dataclass(frozen=True)
class StabilityReport:
    """Rolling tau* history and its variance."""

    stable: bool
    tau_history: list[int] = field(default_factory=list)
    variance: float = 0.0

    @property
    def samples(self) -> int:
        return len(self.tau_history)


@dataclass(frozen=True)
class LagSignalReading:
    """Trading-relevant view of the current lag condition.

    When ``has_signal`` is False the remaining fields are None.
    """

    has_signal: bool
    direction: Direction | None = None
    tau_ms: int | None = None
    correlation: float | None = None
    confidence: float | None = None
    spot_price: float | None = None
    oracle_price: float | None = None
    spot_move_magnitude: float | None = None

    def signal_fields(self) -> dict[str, Any]:
        """Keyword arguments for ``LagTracker.create_signal``."""
        if not self.has_signal:
            msg = "reading carries no signal"
            raise ValueError(msg)
        return {
            "direction": self.direction,
            "tau_ms": self.tau_ms,
            "correlation": self.correlation,
            "confidence": self.confidence,
            "spot_price": self.spot_price,
            "oracle_price": self.oracle_price,
            "spot_move_magnitude": self.spot_move_magnitude,
        }


NO_SIGNAL = LagSignalReading(has_signal=False)


@dataclass(frozen=True)
class AccuracyStats:
    """Running accuracy over signals whose outcome has been recorded."""

    total_signals: int = 0
    total_correct: int = 0
    accuracy: float = 0.0
