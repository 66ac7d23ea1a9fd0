"""Tests for config validation."""

from __future__ import annotations

from pathlib import Path  # noqa: TCH003

import pytest

from src.config.loader import ConfigError, ConfigLoader


def _loader_with(config_dir: Path, old: str, new: str) -> ConfigLoader:
    toml = config_dir / "default.toml"
    toml.write_text(toml.read_text().replace(old, new))
    loader = ConfigLoader(config_dir=config_dir)
    loader.load()
    return loader


class TestConfigValidation:
    def test_valid_config_passes(self, config_dir: Path) -> None:
        loader = ConfigLoader(config_dir=config_dir)
        loader.load()
        loader.validate_ranges()  # Should not raise

    def test_buffer_max_size_zero(self, config_dir: Path) -> None:
        loader = _loader_with(config_dir, "buffer_max_size = 2000", "buffer_max_size = 0")
        with pytest.raises(ConfigError, match="buffer_max_size"):
            loader.validate_ranges()

    def test_min_sample_size_too_small(self, config_dir: Path) -> None:
        loader = _loader_with(config_dir, "min_sample_size = 10", "min_sample_size = 2")
        with pytest.raises(ConfigError, match="min_sample_size"):
            loader.validate_ranges()

    @pytest.mark.parametrize("value", ["0", "1", "1.5"])
    def test_significance_out_of_range(self, config_dir: Path, value: str) -> None:
        loader = _loader_with(
            config_dir, "significance_threshold = 0.05", f"significance_threshold = {value}",
        )
        with pytest.raises(ConfigError, match="significance_threshold"):
            loader.validate_ranges()

    def test_min_correlation_over_one(self, config_dir: Path) -> None:
        loader = _loader_with(config_dir, "min_correlation = 0.5", "min_correlation = 1.2")
        with pytest.raises(ConfigError, match="min_correlation"):
            loader.validate_ranges()

    def test_negative_min_move(self, config_dir: Path) -> None:
        loader = _loader_with(config_dir, "min_move_magnitude = 0.001", "min_move_magnitude = -0.1")
        with pytest.raises(ConfigError, match="min_move_magnitude"):
            loader.validate_ranges()

    def test_empty_tau_values(self, config_dir: Path) -> None:
        loader = _loader_with(
            config_dir, "tau_values = [0, 250, 500, 1000, 2000, 3000, 5000]", "tau_values = []",
        )
        with pytest.raises(ConfigError, match="tau_values"):
            loader.validate_ranges()

    def test_negative_flush_interval(self, config_dir: Path) -> None:
        loader = _loader_with(config_dir, "flush_interval_ms = 1000", "flush_interval_ms = -1")
        with pytest.raises(ConfigError, match="flush_interval_ms"):
            loader.validate_ranges()

    def test_zero_flush_interval_allowed(self, config_dir: Path) -> None:
        loader = _loader_with(config_dir, "flush_interval_ms = 1000", "flush_interval_ms = 0")
        loader.validate_ranges()

    def test_non_websocket_url(self, config_dir: Path) -> None:
        loader = _loader_with(
            config_dir,
            'url = "wss://ws-live-data.polymarket.com"',
            'url = "https://ws-live-data.polymarket.com"',
        )
        with pytest.raises(ConfigError, match="rtds.url"):
            loader.validate_ranges()

    def test_multiple_errors_reported_together(self, config_dir: Path) -> None:
        loader = _loader_with(config_dir, "min_correlation = 0.5", "min_correlation = 2.0")
        toml = config_dir / "default.toml"
        toml.write_text(toml.read_text().replace("min_sample_size = 10", "min_sample_size = 1"))
        loader.load()
        with pytest.raises(ConfigError) as exc_info:
            loader.validate_ranges()
        assert "min_correlation" in str(exc_info.value)
        assert "min_sample_size" in str(exc_info.value)
