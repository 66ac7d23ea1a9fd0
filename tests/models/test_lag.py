"""Tests for lag analysis result types."""

from __future__ import annotations

import pytest

from src.models.lag import NO_SIGNAL, AccuracyStats, LagSignalReading, StabilityReport
from src.models.signal import Direction


class TestLagSignalReading:
    def test_no_signal_fields_are_none(self) -> None:
        assert NO_SIGNAL.has_signal is False
        assert NO_SIGNAL.direction is None
        assert NO_SIGNAL.confidence is None

    def test_signal_fields(self) -> None:
        reading = LagSignalReading(
            has_signal=True,
            direction=Direction.DOWN,
            tau_ms=500,
            correlation=0.8,
            confidence=0.6,
            spot_price=99.0,
            oracle_price=100.0,
            spot_move_magnitude=-0.01,
        )
        fields = reading.signal_fields()
        assert fields["direction"] is Direction.DOWN
        assert fields["tau_ms"] == 500
        assert set(fields) == {
            "direction",
            "tau_ms",
            "correlation",
            "confidence",
            "spot_price",
            "oracle_price",
            "spot_move_magnitude",
        }

    def test_signal_fields_without_signal_raises(self) -> None:
        with pytest.raises(ValueError, match="no signal"):
            NO_SIGNAL.signal_fields()


class TestStabilityReport:
    def test_empty_defaults(self) -> None:
        report = StabilityReport(stable=True)
        assert report.tau_history == []
        assert report.variance == 0.0
        assert report.samples == 0

    def test_samples_counts_history(self) -> None:
        assert StabilityReport(stable=False, tau_history=[0, 5000], variance=6.25e6).samples == 2


class TestAccuracyStats:
    def test_defaults(self) -> None:
        stats = AccuracyStats()
        assert (stats.total_signals, stats.total_correct, stats.accuracy) == (0, 0, 0.0)
