"""
test_filters.py - Tests for the filter pipeline

Gate order and short-circuiting, regime, volatility, news/session windows
and spread.
"""

from datetime import datetime, time, timezone

import pytest

from core.config import FilterConfig, NewsWindow
from strategies.base import TradeSide
from strategies.features import FeatureSet
from strategies.filters import (
    FilterPipeline,
    MarketContext,
    active_news_window,
    in_time_window,
    week_of_month,
)
from strategies.regime_detector import MarketRegime, RegimeDetector


# Tuesday, outside every blackout
QUIET = datetime(2024, 3, 12, 10, 0, tzinfo=timezone.utc)


def context(now=QUIET, adx=30.0, volatility_ratio=1.0, spread_points=10.0):
    features = FeatureSet(symbol="EURUSD", adx=adx, volatility_ratio=volatility_ratio)
    return MarketContext(symbol="EURUSD", features=features, spread_points=spread_points, now=now)


class CountingGate:
    """Gate double recording how often it ran."""

    def __init__(self, reason=None):
        self.reason = reason
        self.calls = 0

    def __call__(self, ctx, strength, side):
        self.calls += 1
        return self.reason


class TestPipelineOrdering:
    """Fixed order, first failure stops evaluation."""

    def test_default_gate_order(self):
        names = [name for name, _ in FilterPipeline().gates]
        assert names == ['regime', 'volatility', 'time', 'spread']

    def test_disabled_gate_is_skipped(self):
        pipeline = FilterPipeline(FilterConfig(time_enabled=False))
        assert [name for name, _ in pipeline.gates] == ['regime', 'volatility', 'spread']

    def test_short_circuit(self):
        first, second, third = CountingGate(), CountingGate("nope"), CountingGate()
        pipeline = FilterPipeline(gates=[('a', first), ('b', second), ('c', third)])

        result = pipeline.evaluate(context(), 0.5, TradeSide.BUY)

        assert result.passed is False
        assert result.failed_gate == 'b'
        assert result.reason == "nope"
        assert result.evaluated == ['a', 'b']
        assert (first.calls, second.calls, third.calls) == (1, 1, 0)

    def test_all_pass(self):
        gates = [CountingGate(), CountingGate()]
        pipeline = FilterPipeline(gates=[('a', gates[0]), ('b', gates[1])])

        assert pipeline.passes_all(context(), 0.5, TradeSide.SELL) is True
        assert [g.calls for g in gates] == [1, 1]

    def test_quiet_market_passes_default_gates(self):
        result = FilterPipeline().evaluate(context(), 0.5, TradeSide.BUY)
        assert result.passed is True
        assert result.failed_gate is None
        assert bool(result) is True


class TestRegimeGate:
    """Choppy markets demand stronger signals."""

    @pytest.mark.parametrize("adx,strength", [
        (35, 1.0), (28, 0.7), (22, 0.5), (12, 0.2), (0, 0.0), (None, 0.0),
    ])
    def test_regime_strength_bands(self, adx, strength):
        assert RegimeDetector().strength(adx) == strength

    def test_classification(self):
        detector = RegimeDetector()
        assert detector.classify(35).regime == MarketRegime.STRONG_TREND
        assert detector.classify(28).regime == MarketRegime.TRENDING
        assert detector.classify(22).regime == MarketRegime.WEAK_TREND
        assert detector.classify(12).is_choppy

    def test_choppy_rejects_moderate_signal(self):
        result = FilterPipeline().evaluate(context(adx=12.0), 0.5, TradeSide.BUY)
        assert result.failed_gate == 'regime'

    def test_choppy_accepts_strong_signal(self):
        assert FilterPipeline().passes_all(context(adx=12.0), 0.75, TradeSide.BUY)

    def test_missing_adx_counts_as_choppy(self):
        assert FilterPipeline().evaluate(context(adx=0.0), 0.69, TradeSide.BUY).failed_gate == 'regime'

    def test_trending_accepts_moderate_signal(self):
        assert FilterPipeline().passes_all(context(adx=26.0), 0.3, TradeSide.SELL)


class TestVolatilityGate:

    def test_extreme_volatility_rejected(self):
        result = FilterPipeline().evaluate(context(volatility_ratio=2.5), 0.5, TradeSide.BUY)
        assert result.failed_gate == 'volatility'

    def test_limit_is_inclusive(self):
        assert FilterPipeline().passes_all(context(volatility_ratio=2.0), 0.5, TradeSide.BUY)

    def test_unknown_ratio_passes(self):
        assert FilterPipeline().passes_all(context(volatility_ratio=0.0), 0.5, TradeSide.BUY)


class TestTimeGate:
    """News blackouts and the low-liquidity session (UTC)."""

    @pytest.mark.parametrize("now", [
        datetime(2024, 3, 1, 13, 0, tzinfo=timezone.utc),    # first Friday, employment report
        datetime(2024, 3, 6, 18, 0, tzinfo=timezone.utc),    # Wednesday rate decision
        datetime(2024, 3, 13, 12, 30, tzinfo=timezone.utc),  # second Wednesday, inflation report
        datetime(2024, 3, 12, 22, 0, tzinfo=timezone.utc),   # low liquidity
        datetime(2024, 3, 13, 0, 30, tzinfo=timezone.utc),   # low liquidity after midnight
        datetime(2024, 3, 12, 21, 0, tzinfo=timezone.utc),   # session start is inclusive
    ])
    def test_blocked(self, now):
        result = FilterPipeline().evaluate(context(now=now), 0.5, TradeSide.BUY)
        assert result.failed_gate == 'time'

    @pytest.mark.parametrize("now", [
        datetime(2024, 3, 8, 13, 0, tzinfo=timezone.utc),    # second Friday
        datetime(2024, 3, 6, 12, 30, tzinfo=timezone.utc),   # first Wednesday, no inflation report
        datetime(2024, 3, 13, 1, 0, tzinfo=timezone.utc),    # session end is exclusive
        datetime(2024, 3, 12, 20, 59, tzinfo=timezone.utc),
    ])
    def test_allowed(self, now):
        assert FilterPipeline().passes_all(context(now=now), 0.5, TradeSide.BUY)

    def test_news_window_name(self):
        window = active_news_window(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc), FilterConfig().news_windows)
        assert window is not None
        assert window.name == "employment_report"

    def test_custom_windows(self):
        config = FilterConfig(news_windows=(NewsWindow("custom", 1, time(9, 30), time(10, 30)),))
        result = FilterPipeline(config).evaluate(context(), 0.5, TradeSide.BUY)
        assert result.failed_gate == 'time'
        assert "custom" in result.reason

    def test_window_helpers(self):
        assert in_time_window(time(23, 0), time(21, 0), time(1, 0))
        assert not in_time_window(time(12, 0), time(21, 0), time(1, 0))
        assert in_time_window(time(12, 0), time(9, 0), time(17, 0))
        assert week_of_month(1) == 1
        assert week_of_month(7) == 1
        assert week_of_month(8) == 2
        assert week_of_month(31) == 5


class TestSpreadGate:

    def test_wide_spread_rejected(self):
        result = FilterPipeline().evaluate(context(spread_points=25.0), 0.5, TradeSide.BUY)
        assert result.failed_gate == 'spread'

    def test_limit_is_inclusive(self):
        assert FilterPipeline().passes_all(context(spread_points=20.0), 0.5, TradeSide.BUY)

    def test_gate_order_decides_reported_failure(self):
        result = FilterPipeline().evaluate(
            context(adx=10.0, volatility_ratio=3.0, spread_points=50.0), 0.5, TradeSide.BUY
        )
        assert result.failed_gate == 'regime'
        assert result.evaluated == ['regime']
