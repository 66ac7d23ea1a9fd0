"""Lag signal models."""

from __future__ import annotations

from datetime import UTC, datetime  # noqa: TCH003
from enum import Enum

from pydantic import BaseModel, Field


class Direction(str, Enum):
    UP = "up"
    DOWN = "down"

    @classmethod
    def from_move(cls, move: float) -> Direction:
        return cls.UP if move > 0 else cls.DOWN


class LagSignal(BaseModel):
    """A discrete claim that spot has moved ahead of the oracle.

    Outcome fields stay None until ``LagTracker.record_outcome`` fills them
    exactly once; the signal then becomes ready for persistence.
    """

    id: int
    symbol: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    direction: Direction
    tau_ms: int
    correlation: float
    confidence: float
    spot_price: float
    oracle_price: float
    spot_move_magnitude: float
    window_id: str | None = None
    outcome_direction: Direction | None = None
    prediction_correct: bool | None = None
    pnl: float | None = None

    @property
    def has_outcome(self) -> bool:
        return self.outcome_direction is not None


class SignalRow(BaseModel):
    """Flat persistence row for one scored lag signal."""

    timestamp: datetime
    symbol: str
    spot_price_at_signal: float
    spot_move_direction: Direction
    spot_move_magnitude: float
    oracle_price_at_signal: float
    predicted_direction: Direction
    predicted_tau_ms: int
    correlation_at_tau: float
    window_id: str | None = None
    outcome_direction: Direction | None = None
    prediction_correct: bool | None = None
    pnl: float | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_signal(cls, signal: LagSignal) -> SignalRow:
        return cls(
            timestamp=signal.timestamp,
            symbol=signal.symbol,
            spot_price_at_signal=signal.spot_price,
            spot_move_direction=Direction.from_move(signal.spot_move_magnitude),
            spot_move_magnitude=signal.spot_move_magnitude,
            oracle_price_at_signal=signal.oracle_price,
            predicted_direction=signal.direction,
            predicted_tau_ms=signal.tau_ms,
            correlation_at_tau=signal.correlation,
            window_id=signal.window_id,
            outcome_direction=signal.outcome_direction,
            prediction_correct=signal.prediction_correct,
            pnl=signal.pnl,
        )

    def as_params(self) -> tuple[object, ...]:
        """Positional parameters in INSERT column order."""
        return (
            self.timestamp,
            self.symbol,
            self.spot_price_at_signal,
            self.spot_move_direction.value,
            self.spot_move_magnitude,
            self.oracle_price_at_signal,
            self.predicted_direction.value,
            self.predicted_tau_ms,
            self.correlation_at_tau,
            self.window_id,
            self.outcome_direction.value if self.outcome_direction is not None else None,
            self.prediction_correct,
            self.pnl,
        )
