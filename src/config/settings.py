"""Typed lag tracker settings with defaults."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_TAU_VALUES: tuple[int, ...] = (0, 250, 500, 1000, 2000, 3000, 5000)


class LagTrackerConfig(BaseModel):
    """Effective lag tracker configuration.

    Any subset of fields may be supplied; the rest fall back to defaults.
    Unknown keys are rejected.
    """

    buffer_max_age_ms: int = Field(default=60_000, gt=0)
    buffer_max_size: int = Field(default=2_000, gt=0)
    cleanup_interval: int = Field(default=50, gt=0)
    tau_values: list[int] = Field(default_factory=lambda: list(DEFAULT_TAU_VALUES))
    timestamp_tolerance_ms: int = Field(default=100, ge=0)
    min_sample_size: int = Field(default=10, ge=3)
    min_move_magnitude: float = Field(default=0.001, ge=0)
    min_correlation: float = Field(default=0.5, ge=0, le=1)
    significance_threshold: float = Field(default=0.05, gt=0, lt=1)
    stability_window_size: int = Field(default=10, gt=0)
    # Variance of tau* in ms^2 (500 ms standard deviation).
    stability_threshold: float = Field(default=250_000.0, ge=0)
    move_lookback_ms: int = Field(default=5_000, gt=0)
    stale_threshold_ms: int = Field(default=2_000, ge=0)
    flush_interval_ms: int = Field(default=1_000, ge=0)
    shutdown_flush_timeout_s: float = Field(default=5.0, gt=0)

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("tau_values")
    @classmethod
    def _non_empty_unique(cls, value: list[int]) -> list[int]:
        if not value:
            msg = "tau_values must not be empty"
            raise ValueError(msg)
        return sorted(set(value))

    @classmethod
    def from_mapping(cls, overrides: dict[str, Any] | None = None) -> LagTrackerConfig:
        """Merge a (possibly partial) mapping over the defaults."""
        return cls.model_validate(dict(overrides or {}))
