"""Correlation engine for lagged cross-correlation and its significance.

Pure functions over PricePoint sequences. Series A is the leading feed
(spot) and series B the lagging feed (oracle): a positive tau pairs each
A sample at time t with the B sample nearest to t + tau.
"""

from __future__ import annotations

import math
from bisect import bisect_left
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from src.engine.price_buffer import PriceBuffer
from src.models.tick import PricePoint

# Minimum matched pairs before a correlation is reported.
MIN_SAMPLE_SIZE = 10
FLOAT_EPSILON = 1e-10
TIMESTAMP_TOLERANCE_MS = 100

# Abramowitz & Stegun 7.1.26
_A1 = 0.254829592
_A2 = -0.284496736
_A3 = 1.421413741
_A4 = -1.453152027
_A5 = 1.061405429
_P = 0.3275911


@dataclass(frozen=True)
class CorrelationResult:
    correlation: float
    sample_size: int


@dataclass(frozen=True)
class OptimalLag:
    tau_star_ms: int
    correlation: float
    sample_size: int


def _erf(x: float) -> float:
    sign = -1.0 if x < 0 else 1.0
    ax = abs(x)
    t = 1.0 / (1.0 + _P * ax)
    poly = ((((_A5 * t + _A4) * t + _A3) * t + _A2) * t + _A1) * t
    return sign * (1.0 - poly * math.exp(-ax * ax))


def normal_cdf(x: float) -> float:
    """Standard normal CDF, clamped to exactly 0/1 beyond |x| > 8."""
    if x == 0:
        return 0.5
    if x > 8:
        return 1.0
    if x < -8:
        return 0.0
    value = 0.5 * (1.0 + _erf(x / math.sqrt(2.0)))
    return min(1.0, max(0.0, value))


def p_value(correlation: float, sample_size: int) -> float:
    """Two-tailed p-value for H0: correlation == 0.

    Uses t = r * sqrt(n - 2) / sqrt(1 - r^2) against the normal
    approximation. Fewer than 3 samples is undecidable (1.0); |r| at or
    numerically indistinguishable from 1 is certain (0.0).
    """
    if sample_size < 3 or not math.isfinite(correlation):
        return 1.0

    r2 = correlation * correlation
    if r2 >= 1.0 - FLOAT_EPSILON:
        return 0.0

    t = abs(correlation) * math.sqrt(sample_size - 2) / math.sqrt(1.0 - r2)
    p = 2.0 * (1.0 - normal_cdf(t))
    return min(1.0, max(0.0, p))


def _pearson(xs: Sequence[float], ys: Sequence[float]) -> float | None:
    """Pearson r, or None when either side has zero variance."""
    if min(xs) == max(xs) or min(ys) == max(ys):
        return None

    n = len(xs)
    mean_x = math.fsum(xs) / n
    mean_y = math.fsum(ys) / n
    sxx = math.fsum((x - mean_x) ** 2 for x in xs)
    syy = math.fsum((y - mean_y) ** 2 for y in ys)
    sxy = math.fsum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys, strict=True))

    denom = math.sqrt(sxx * syy)
    if denom == 0 or not math.isfinite(denom):
        return None
    return max(-1.0, min(1.0, sxy / denom))


def _sort_by_time(points: Iterable[PricePoint]) -> tuple[list[PricePoint], list[int]]:
    ordered = sorted(points, key=lambda p: p.timestamp)
    return ordered, [p.timestamp for p in ordered]


def _correlate_sorted(
    series_a: Sequence[PricePoint],
    sorted_b: Sequence[PricePoint],
    b_times: Sequence[int],
    tau_ms: int,
    tolerance_ms: int,
    min_samples: int,
) -> CorrelationResult | None:
    xs: list[float] = []
    ys: list[float] = []
    if not sorted_b:
        return None

    for a in series_a:
        target = a.timestamp + tau_ms
        idx = bisect_left(b_times, target)
        best: PricePoint | None = None
        best_diff = tolerance_ms + 1
        # Candidates are the neighbours on either side of the insertion point.
        for j in (idx - 1, idx):
            if 0 <= j < len(sorted_b):
                diff = abs(b_times[j] - target)
                if diff < best_diff:
                    best, best_diff = sorted_b[j], diff
        if best is not None and best_diff <= tolerance_ms:
            xs.append(a.price)
            ys.append(best.price)

    if len(xs) < max(min_samples, 3):
        return None

    r = _pearson(xs, ys)
    if r is None:
        return None
    return CorrelationResult(correlation=r, sample_size=len(xs))


def cross_correlation(
    series_a: Sequence[PricePoint],
    series_b: Sequence[PricePoint],
    tau_ms: int,
    tolerance_ms: int = TIMESTAMP_TOLERANCE_MS,
    min_samples: int = MIN_SAMPLE_SIZE,
) -> CorrelationResult | None:
    """Pearson correlation of A(t) against B(t + tau_ms).

    Each A sample is paired with the B sample closest to t + tau_ms when
    that sample lies within tolerance_ms. Returns None with fewer than
    ``min_samples`` pairs or when either paired series is constant.
    """
    sorted_b, b_times = _sort_by_time(series_b)
    return _correlate_sorted(series_a, sorted_b, b_times, tau_ms, tolerance_ms, min_samples)


def _as_points(source: PriceBuffer | Sequence[PricePoint]) -> list[PricePoint]:
    if isinstance(source, PriceBuffer):
        return source.get_all()
    return list(source)


def find_optimal_lag(
    buffer_a: PriceBuffer | Sequence[PricePoint],
    buffer_b: PriceBuffer | Sequence[PricePoint],
    candidate_taus: Iterable[int],
    tolerance_ms: int = TIMESTAMP_TOLERANCE_MS,
    min_samples: int = MIN_SAMPLE_SIZE,
) -> OptimalLag | None:
    """Candidate tau with the greatest |correlation|.

    Ties (within FLOAT_EPSILON) go to the smaller |tau|. Returns None when
    no candidate yields a result.
    """
    series_a = _as_points(buffer_a)
    series_b = _as_points(buffer_b)
    if len(series_a) < min_samples or len(series_b) < min_samples:
        return None

    sorted_b, b_times = _sort_by_time(series_b)

    best: OptimalLag | None = None
    for tau in candidate_taus:
        result = _correlate_sorted(series_a, sorted_b, b_times, tau, tolerance_ms, min_samples)
        if result is None:
            continue
        strength = abs(result.correlation)
        if best is not None:
            best_strength = abs(best.correlation)
            if strength < best_strength - FLOAT_EPSILON:
                continue
            if strength <= best_strength + FLOAT_EPSILON and abs(tau) >= abs(best.tau_star_ms):
                continue
        best = OptimalLag(
            tau_star_ms=tau,
            correlation=result.correlation,
            sample_size=result.sample_size,
        )
    return best


def population_variance(values: Sequence[float]) -> float:
    """Population variance; 0.0 for an empty sequence."""
    if not values:
        return 0.0
    mean = math.fsum(values) / len(values)
    return math.fsum((v - mean) ** 2 for v in values) / len(values)
