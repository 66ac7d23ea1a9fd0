"""TOML config loader with environment variable overrides."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any


class ConfigError(Exception):
    """Raised when config loading or validation fails."""


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base, returning a new dict."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _apply_env_overrides(config: dict[str, Any], prefix: str = "LAGTRACK") -> dict[str, Any]:
    """Apply environment variable overrides.

    Env var naming: LAGTRACK__section__key=value (double underscore separator).
    Nested keys: LAGTRACK__lag_tracker__min_correlation=0.6
    """
    result = dict(config)
    env_prefix = f"{prefix}__"

    for env_key, env_value in os.environ.items():
        if not env_key.startswith(env_prefix):
            continue

        parts = env_key[len(env_prefix) :].lower().split("__")
        target = result
        for part in parts[:-1]:
            if part not in target:
                target[part] = {}
            if isinstance(target[part], dict):
                target[part] = dict(target[part])
                target = target[part]
            else:
                break
        else:
            final_key = parts[-1]
            target[final_key] = _coerce_value(env_value)

    return result


def _coerce_value(value: str) -> Any:
    """Coerce string env var value to appropriate Python type.

    Numeric conversion is attempted BEFORE boolean to avoid "0"/"1"
    being interpreted as False/True when they should be integers.
    Comma-separated integers become a list (e.g. tau_values).
    """
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    if "," in value:
        try:
            return [int(part) for part in value.split(",") if part.strip()]
        except ValueError:
            pass
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    return value


class ConfigLoader:
    """Load and merge TOML config files with env var overrides."""

    def __init__(
        self,
        config_dir: str | Path = "config",
        env: str | None = None,
    ) -> None:
        self._config_dir = Path(config_dir)
        self._env = env or os.environ.get("LAGTRACK_ENV", "development")
        self._config: dict[str, Any] = {}

    @property
    def env(self) -> str:
        return self._env

    def load(self) -> dict[str, Any]:
        """Load config: default.toml → {env}.toml → env vars."""
        default_path = self._config_dir / "default.toml"
        if not default_path.exists():
            msg = f"Default config not found: {default_path}"
            raise ConfigError(msg)

        self._config = self._load_toml(default_path)

        env_path = self._config_dir / f"{self._env}.toml"
        if env_path.exists():
            env_config = self._load_toml(env_path)
            self._config = _deep_merge(self._config, env_config)

        self._config = _apply_env_overrides(self._config)
        return self._config

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """Get a config value using dotted notation: 'lag_tracker.min_correlation'."""
        if not self._config:
            self.load()

        parts = dotted_key.split(".")
        current: Any = self._config
        for part in parts:
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def section(self, name: str) -> dict[str, Any]:
        """Return a copy of a top-level section, or an empty dict."""
        value = self.get(name, {})
        return dict(value) if isinstance(value, dict) else {}

    def require(self, dotted_key: str) -> Any:
        """Get a config value, raising ConfigError if missing."""
        value = self.get(dotted_key)
        if value is None:
            msg = f"Required config key missing: {dotted_key}"
            raise ConfigError(msg)
        return value

    def validate_keys(self, required_keys: list[str]) -> None:
        """Validate that all required keys exist."""
        missing = [k for k in required_keys if self.get(k) is None]
        if missing:
            msg = f"Missing required config keys: {', '.join(missing)}"
            raise ConfigError(msg)

    def validate_ranges(self) -> None:
        """Validate config value ranges for the lag tracker and its feeds.

        Raises:
            ConfigError: If any parameter is out of valid range.
        """
        if not self._config:
            self.load()

        errors: list[str] = []

        for key in (
            "lag_tracker.buffer_max_age_ms",
            "lag_tracker.buffer_max_size",
            "lag_tracker.cleanup_interval",
            "lag_tracker.stability_window_size",
            "lag_tracker.timestamp_tolerance_ms",
        ):
            value = self.get(key)
            if value is not None and value <= 0:
                errors.append(f"{key} must be > 0, got {value}")

        min_samples = self.get("lag_tracker.min_sample_size")
        if min_samples is not None and min_samples < 3:
            errors.append(f"lag_tracker.min_sample_size must be >= 3, got {min_samples}")

        significance = self.get("lag_tracker.significance_threshold")
        if significance is not None and not (0 < significance < 1):
            errors.append(
                f"lag_tracker.significance_threshold must be in (0, 1), got {significance}"
            )

        min_corr = self.get("lag_tracker.min_correlation")
        if min_corr is not None and not (0 <= min_corr <= 1):
            errors.append(f"lag_tracker.min_correlation must be in [0, 1], got {min_corr}")

        min_move = self.get("lag_tracker.min_move_magnitude")
        if min_move is not None and min_move < 0:
            errors.append(f"lag_tracker.min_move_magnitude must be >= 0, got {min_move}")

        taus = self.get("lag_tracker.tau_values")
        if taus is not None and (not isinstance(taus, list) or not taus):
            errors.append("lag_tracker.tau_values must be a non-empty list")

        flush_interval = self.get("lag_tracker.flush_interval_ms")
        if flush_interval is not None and flush_interval < 0:
            errors.append(f"lag_tracker.flush_interval_ms must be >= 0, got {flush_interval}")

        url = self.get("rtds.url")
        if url is not None and not str(url).startswith(("ws://", "wss://")):
            errors.append(f"rtds.url must be a ws:// or wss:// URL, got {url}")

        if errors:
            msg = "Config validation failed:\n  " + "\n  ".join(errors)
            raise ConfigError(msg)

    @property
    def config(self) -> dict[str, Any]:
        if not self._config:
            self.load()
        return self._config

    @staticmethod
    def _load_toml(path: Path) -> dict[str, Any]:
        with open(path, "rb") as f:
            return tomllib.load(f)
