"""Bounded price buffer holding time- and size-limited samples for one feed."""

from __future__ import annotations

import math
from collections import deque

from src.models.tick import PricePoint


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


class PriceBuffer:
    """Arrival-ordered (price, timestamp) samples for one feed of one instrument.

    Size is enforced on every add (oldest dropped first). Age is enforced
    every ``cleanup_interval`` successful adds relative to the timestamp of
    the point just added, so stale points can linger for a bounded number
    of additions. Not thread-safe; the owning tracker serializes access.
    """

    def __init__(
        self,
        max_age_ms: int = 60_000,
        max_size: int = 2_000,
        cleanup_interval: int = 50,
    ) -> None:
        self._max_age_ms = max_age_ms
        self._max_size = max_size
        self._cleanup_interval = cleanup_interval
        self._points: deque[PricePoint] = deque(maxlen=max_size)
        self._adds_since_cleanup = 0

    def __len__(self) -> int:
        return len(self._points)

    @property
    def max_age_ms(self) -> int:
        return self._max_age_ms

    @property
    def max_size(self) -> int:
        return self._max_size

    def add(self, price: float, timestamp: float) -> bool:
        """Append a sample.

        Returns:
            False (and leaves the buffer untouched) when the price is not a
            positive finite number or the timestamp is not a finite,
            non-negative number.
        """
        if not _is_number(price) or not math.isfinite(price) or price <= 0:
            return False
        if not _is_number(timestamp) or not math.isfinite(timestamp) or timestamp < 0:
            return False

        ts = int(timestamp)
        self._points.append(PricePoint(price=float(price), timestamp=ts))

        self._adds_since_cleanup += 1
        if self._adds_since_cleanup >= self._cleanup_interval:
            self._evict_older_than(ts - self._max_age_ms)
            self._adds_since_cleanup = 0
        return True

    def _evict_older_than(self, cutoff: int) -> None:
        # Single forward pass; survivors keep arrival order.
        self._points = deque(
            (p for p in self._points if p.timestamp >= cutoff),
            maxlen=self._max_size,
        )

    def get_all(self) -> list[PricePoint]:
        return list(self._points)

    def get_range(self, from_ts: int, to_ts: int) -> list[PricePoint]:
        """Points with from_ts <= timestamp <= to_ts, in arrival order."""
        return [p for p in self._points if from_ts <= p.timestamp <= to_ts]

    def find_closest(self, target_ts: int, tolerance_ms: int) -> PricePoint | None:
        """Nearest point by absolute timestamp distance, or None beyond tolerance.

        Earliest-arrived point wins on equal distance.
        """
        best: PricePoint | None = None
        best_diff = math.inf
        for point in self._points:
            diff = abs(point.timestamp - target_ts)
            if diff < best_diff:
                best, best_diff = point, diff
        if best is None or best_diff > tolerance_ms:
            return None
        return best

    def latest(self) -> PricePoint | None:
        return self._points[-1] if self._points else None

    def oldest_timestamp(self) -> int | None:
        return min((p.timestamp for p in self._points), default=None)

    def newest_timestamp(self) -> int | None:
        return max((p.timestamp for p in self._points), default=None)

    def clear(self) -> None:
        self._points.clear()
        self._adds_since_cleanup = 0
