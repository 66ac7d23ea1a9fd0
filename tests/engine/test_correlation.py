"""Tests for the correlation engine."""

from __future__ import annotations

import random

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from src.engine.correlation import (
    cross_correlation,
    find_optimal_lag,
    normal_cdf,
    p_value,
    population_variance,
)
from src.engine.price_buffer import PriceBuffer
from src.models.tick import PricePoint


def _points(prices: list[float], start_ms: int = 0, step_ms: int = 50) -> list[PricePoint]:
    return [PricePoint(price=p, timestamp=start_ms + i * step_ms) for i, p in enumerate(prices)]


def _random_walk(n: int, seed: int = 11) -> list[float]:
    rng = random.Random(seed)
    price = 100.0
    out = []
    for _ in range(n):
        price += rng.gauss(0.0, 0.5)
        out.append(price)
    return out


class TestNormalCdf:
    def test_zero_is_exactly_half(self) -> None:
        assert normal_cdf(0.0) == 0.5

    def test_known_quantile(self) -> None:
        assert normal_cdf(1.96) == pytest.approx(0.975, abs=1e-4)
        assert normal_cdf(-1.96) == pytest.approx(0.025, abs=1e-4)

    def test_clamped_tails(self) -> None:
        assert normal_cdf(9.0) == 1.0
        assert normal_cdf(-9.0) == 0.0

    @given(x=st.floats(min_value=-10, max_value=10, allow_nan=False))
    @settings(max_examples=100)
    def test_bounded_and_symmetric(self, x: float) -> None:
        value = normal_cdf(x)
        assert 0.0 <= value <= 1.0
        assert value + normal_cdf(-x) == pytest.approx(1.0, abs=1e-6)


class TestPValue:
    def test_too_few_samples(self) -> None:
        assert p_value(0.99, 2) == 1.0

    def test_perfect_correlation(self) -> None:
        assert p_value(1.0, 50) == 0.0
        assert p_value(-1.0, 50) == 0.0

    def test_zero_correlation(self) -> None:
        assert p_value(0.0, 50) == pytest.approx(1.0)

    def test_moderate_correlation(self) -> None:
        # t = 0.5 * sqrt(10) / sqrt(0.75) ~= 1.826
        assert p_value(0.5, 12) == pytest.approx(0.0679, abs=2e-3)

    def test_sign_does_not_matter(self) -> None:
        assert p_value(-0.6, 30) == pytest.approx(p_value(0.6, 30))

    def test_more_samples_lower_p(self) -> None:
        assert p_value(0.4, 100) < p_value(0.4, 20)

    @given(
        r=st.floats(min_value=0.0, max_value=0.99, allow_nan=False),
        n=st.integers(min_value=3, max_value=500),
    )
    @settings(max_examples=100)
    def test_bounded_symmetric_monotone(self, r: float, n: int) -> None:
        p = p_value(r, n)
        assert 0.0 <= p <= 1.0
        assert p_value(-r, n) == p
        assert p_value(r, n + 10) <= p + 1e-12


class TestCrossCorrelation:
    def test_identical_series(self) -> None:
        series = _points(_random_walk(40))
        result = cross_correlation(series, series, 0)
        assert result is not None
        assert result.correlation == pytest.approx(1.0)
        assert result.sample_size == 40

    def test_inverted_series(self) -> None:
        prices = _random_walk(40)
        a = _points(prices)
        b = _points([200.0 - p for p in prices])
        result = cross_correlation(a, b, 0)
        assert result is not None
        assert result.correlation == pytest.approx(-1.0)

    def test_positive_tau_pairs_with_later_b(self) -> None:
        prices = _random_walk(60)
        a = _points(prices, start_ms=0)
        b = _points(prices, start_ms=500)
        result = cross_correlation(a, b, 500)
        assert result is not None
        assert result.correlation == pytest.approx(1.0)
        assert result.sample_size == 60
        unshifted = cross_correlation(a, b, 0)
        assert unshifted is not None
        assert unshifted.sample_size == 52

    def test_unordered_b_series(self) -> None:
        prices = _random_walk(30)
        a = _points(prices)
        b = list(reversed(_points(prices)))
        result = cross_correlation(a, b, 0)
        assert result is not None
        assert result.correlation == pytest.approx(1.0)

    def test_pairs_outside_tolerance_dropped(self) -> None:
        prices = _random_walk(30)
        a = _points(prices, step_ms=1_000)
        b = _points(prices, start_ms=150, step_ms=1_000)
        assert cross_correlation(a, b, 0, tolerance_ms=100) is None
        result = cross_correlation(a, b, 0, tolerance_ms=200)
        assert result is not None
        assert result.sample_size == 30

    def test_below_min_samples(self) -> None:
        series = _points(_random_walk(9))
        assert cross_correlation(series, series, 0) is None
        assert cross_correlation(series, series, 0, min_samples=5) is not None

    def test_constant_series(self) -> None:
        a = _points([100.0] * 20)
        b = _points(_random_walk(20))
        assert cross_correlation(a, b, 0) is None
        assert cross_correlation(b, a, 0) is None

    def test_empty_b(self) -> None:
        assert cross_correlation(_points(_random_walk(20)), [], 0) is None

    @given(
        xs=st.lists(st.floats(min_value=1, max_value=1000, allow_nan=False), min_size=10, max_size=60),
        seed=st.integers(min_value=0, max_value=10_000),
    )
    @settings(max_examples=50)
    def test_correlation_bounded(self, xs: list[float], seed: int) -> None:
        rng = random.Random(seed)
        ys = [rng.uniform(1, 1000) for _ in xs]
        result = cross_correlation(_points(xs), _points(ys), 0)
        if result is not None:
            assert -1.0 <= result.correlation <= 1.0
            assert result.sample_size == len(xs)


class TestFindOptimalLag:
    TAUS = [0, 250, 500, 1000, 2000, 3000]

    def test_recovers_injected_lag(self) -> None:
        prices = _random_walk(300)
        spot = _points(prices, start_ms=0)
        oracle = _points(prices, start_ms=1_000)
        result = find_optimal_lag(spot, oracle, self.TAUS)
        assert result is not None
        assert result.tau_star_ms == 1_000
        assert result.correlation == pytest.approx(1.0)

    def test_accepts_price_buffers(self) -> None:
        prices = _random_walk(200)
        spot, oracle = PriceBuffer(), PriceBuffer()
        for p in _points(prices, start_ms=0):
            spot.add(p.price, p.timestamp)
        for p in _points(prices, start_ms=500):
            oracle.add(p.price, p.timestamp)
        result = find_optimal_lag(spot, oracle, self.TAUS)
        assert result is not None
        assert result.tau_star_ms == 500

    def test_tie_prefers_smallest_absolute_tau(self) -> None:
        # Price equal to timestamp: every candidate pairs perfectly.
        a = [PricePoint(price=float(ts), timestamp=ts) for ts in range(1_000, 6_000, 50)]
        b = [PricePoint(price=float(ts) + 1.0, timestamp=ts) for ts in range(0, 8_000, 50)]
        result = find_optimal_lag(a, b, [1_000, 500, -250])
        assert result is not None
        assert result.tau_star_ms == -250

    def test_insufficient_data(self) -> None:
        short = _points(_random_walk(5))
        long = _points(_random_walk(100))
        assert find_optimal_lag(short, long, self.TAUS) is None
        assert find_optimal_lag(long, short, self.TAUS) is None

    def test_no_overlap_returns_none(self) -> None:
        a = _points(_random_walk(50), start_ms=0)
        b = _points(_random_walk(50), start_ms=1_000_000)
        assert find_optimal_lag(a, b, self.TAUS) is None

    def test_strongest_negative_correlation_wins(self) -> None:
        prices = _random_walk(300)
        spot = _points(prices, start_ms=0)
        oracle = _points([300.0 - p for p in prices], start_ms=2_000)
        result = find_optimal_lag(spot, oracle, self.TAUS)
        assert result is not None
        assert result.tau_star_ms == 2_000
        assert result.correlation == pytest.approx(-1.0)


class TestPopulationVariance:
    def test_empty(self) -> None:
        assert population_variance([]) == 0.0

    def test_constant(self) -> None:
        assert population_variance([500, 500, 500]) == 0.0

    def test_known_value(self) -> None:
        assert population_variance([0, 1000]) == pytest.approx(250_000.0)
