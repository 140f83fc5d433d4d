"""
test_position_sizing.py - Tests for Kelly position sizing and the
pre-trade capital check
"""

import itertools

import pytest

from core.config import RiskProfile, SizingConfig
from execution.gateway import AccountSnapshot, InstrumentSpec
from risk.performance import EMPTY_STATS, PerformanceStats, StaticPerformanceStats
from risk.position_sizing import (
    CappedBy,
    RiskSizer,
    floor_to_step,
    kelly_fraction,
    volatility_adjustment,
)


SPEC = InstrumentSpec(symbol="EURUSD")
GOOD_STATS = PerformanceStats(win_rate=0.6, avg_win=200.0, avg_loss=-100.0, trades=120)


def account(balance=10000.0, equity=None, free_margin=None):
    equity = balance if equity is None else equity
    return AccountSnapshot(balance=balance, equity=equity, free_margin=equity if free_margin is None else free_margin)


class TestKellyFraction:
    """Fractional Kelly with floor and cap."""

    def test_no_losses_recorded_uses_floor(self):
        assert kelly_fraction(PerformanceStats(0.7, 100.0, 0.0)) == 0.01

    def test_no_wins_uses_floor(self):
        assert kelly_fraction(PerformanceStats(0.0, 100.0, 50.0)) == 0.01

    def test_empty_history(self):
        assert kelly_fraction(EMPTY_STATS) == 0.01

    def test_negative_edge_uses_floor(self):
        assert kelly_fraction(PerformanceStats(0.3, 100.0, 100.0)) == 0.01

    def test_capped(self):
        assert kelly_fraction(GOOD_STATS) == 0.05

    def test_within_bounds(self):
        assert kelly_fraction(PerformanceStats(0.55, 100.0, 100.0)) == pytest.approx(0.025)

    @pytest.mark.parametrize("p,win,loss", list(itertools.product([0.0, 0.3, 0.5, 0.7, 1.0], [0.0, 50.0, 300.0], [0.0, -80.0])))
    def test_always_bounded(self, p, win, loss):
        assert 0.01 <= kelly_fraction(PerformanceStats(p, win, loss)) <= 0.05


class TestVolatilityAdjustment:

    @pytest.mark.parametrize("ratio,expected", [
        (0.0, 1.0), (-1.0, 1.0), (0.5, 1.2), (1.0, 1.0), (1.25, 0.8), (4.0, 0.5),
    ])
    def test_inverse_and_clamped(self, ratio, expected):
        assert volatility_adjustment(ratio) == pytest.approx(expected)


class TestRiskSizer:
    """Lot computation and its bounds."""

    def test_raw_risk_scenario(self):
        sizer = RiskSizer()
        raw = sizer.raw_risk_amount(10000.0, 0.6, 0.8, GOOD_STATS, volatility_ratio=1.0)
        assert raw == pytest.approx(100.0 * 0.05 * 1.0 * 0.8 * 0.9)
        assert raw == pytest.approx(3.6)

    def test_moderate_history_scenario(self):
        # f = (0.65 * 1.7 - 0.35) / 1.7 = 0.444, quarter Kelly 0.111, capped at 0.05
        stats = PerformanceStats(0.65, 85.0, 50.0)
        assert kelly_fraction(stats) == 0.05

        sizer = RiskSizer()
        raw = sizer.raw_risk_amount(10000.0, 0.6, 0.8, stats, volatility_ratio=1.0)
        assert raw == pytest.approx(100.0 * 0.05 * volatility_adjustment(1.0) * 0.8 * 0.9)

        # 5 pips at 1.0 per tick: 50.0 per lot
        decision = sizer.size("EURUSD", 0.6, 0.8, account(10000.0), SPEC, stats, 0.0005, 1.0)
        assert decision.approved is True
        assert decision.kelly_fraction == 0.05
        assert decision.raw_risk_amount == pytest.approx(3.6)
        assert decision.raw_lots == pytest.approx(3.6 / 50.0)
        assert decision.lots == pytest.approx(0.07)
        assert decision.capped_by == CappedBy.VOLUME_STEP

    def test_size_floors_to_volume_step(self):
        decision = RiskSizer().size("EURUSD", 0.6, 0.8, account(100000.0), SPEC, GOOD_STATS, 0.0007, 1.0)

        assert decision.approved is True
        assert decision.raw_risk_amount == pytest.approx(36.0)
        assert decision.raw_lots == pytest.approx(36.0 / 70.0)
        assert decision.lots == pytest.approx(0.51)
        assert decision.capped_by == CappedBy.VOLUME_STEP
        assert decision.kelly_fraction == 0.05

    def test_min_lot_clamp(self):
        decision = RiskSizer().size("EURUSD", 0.6, 0.8, account(1000.0), SPEC, GOOD_STATS, 0.002, 1.0)
        assert decision.approved is True
        assert decision.lots == pytest.approx(0.01)
        assert decision.capped_by == CappedBy.MIN_LOT

    def test_max_lot_clamp(self):
        spec = InstrumentSpec(symbol="EURUSD", max_lot=1.0)
        decision = RiskSizer().size("EURUSD", 1.0, 1.0, account(10_000_000.0), spec, GOOD_STATS, 0.001, 1.0)
        assert decision.lots == pytest.approx(1.0)
        assert decision.capped_by == CappedBy.MAX_LOT

    def test_max_risk_percent_cap(self):
        sizer = RiskSizer(RiskProfile(risk_percent=100.0))
        decision = sizer.size("EURUSD", 1.0, 1.0, account(10000.0), SPEC, GOOD_STATS, 0.001, 0.5)

        assert decision.approved is True
        assert decision.volatility_adjustment == pytest.approx(1.2)
        assert decision.lots == pytest.approx(5.0)
        assert decision.capped_by == CappedBy.MAX_RISK_PERCENT
        assert decision.risk_amount <= 500.0 + 1e-6

    def test_min_lot_above_risk_cap_is_rejected(self):
        decision = RiskSizer().size("EURUSD", 0.6, 0.8, account(1000.0), SPEC, GOOD_STATS, 0.06, 1.0)
        assert decision.approved is False
        assert decision.lots == 0.0
        assert "minimum lot" in decision.rejection_reason

    @pytest.mark.parametrize("confidence,balance,stop", [
        (0.0, 10000.0, 0.001),
        (0.8, 0.0, 0.001),
        (0.8, 10000.0, 0.0),
        (0.8, 10000.0, -0.001),
        (0.8, 10000.0, float('nan')),
    ])
    def test_degenerate_inputs_rejected(self, confidence, balance, stop):
        decision = RiskSizer().size("EURUSD", 0.6, confidence, account(balance), SPEC, GOOD_STATS, stop, 1.0)
        assert decision.approved is False
        assert decision.lots == 0.0
        assert decision.rejection_reason

    @pytest.mark.parametrize("strength,confidence,balance,stop", list(itertools.product(
        [0.1, 0.5, 1.0], [0.3, 0.9], [500.0, 25000.0, 5_000_000.0], [0.0003, 0.004]
    )))
    def test_approved_lots_respect_instrument_constraints(self, strength, confidence, balance, stop):
        spec = InstrumentSpec(symbol="EURUSD", min_lot=0.01, max_lot=50.0, volume_step=0.01)
        decision = RiskSizer().size("EURUSD", strength, confidence, account(balance), spec, GOOD_STATS, stop, 1.0)

        if decision.approved:
            assert spec.min_lot - 1e-9 <= decision.lots <= spec.max_lot + 1e-9
            steps = decision.lots / spec.volume_step
            assert abs(steps - round(steps)) < 1e-6
            assert decision.risk_amount <= balance * 0.05 + 1e-6
        else:
            assert decision.lots == 0.0

    def test_invalid_kelly_bounds(self):
        with pytest.raises(ValueError):
            RiskSizer(config=SizingConfig(kelly_min=0.1, kelly_max=0.05))

    def test_floor_to_step(self):
        assert floor_to_step(0.72, 0.01) == pytest.approx(0.72)
        assert floor_to_step(0.729, 0.01) == pytest.approx(0.72)
        assert floor_to_step(1.26, 0.1) == pytest.approx(1.2)


class TestShouldTakeTrade:
    """Capital-at-risk checks before submission."""

    def test_equity_below_daily_loss_floor(self):
        snapshot = account(balance=10000.0, equity=9600.0)
        assert RiskSizer().should_take_trade("EURUSD", 0.1, snapshot, 100.0) is False

    def test_drawdown_limit(self):
        sizer = RiskSizer(RiskProfile(max_daily_loss_percent=20.0, max_drawdown_percent=10.0))
        snapshot = account(balance=10000.0, equity=9000.0)
        allowed, reason = sizer.check_trade("EURUSD", 0.1, snapshot, 100.0)
        assert allowed is False
        assert "drawdown" in reason

    def test_margin_usage(self):
        snapshot = account(balance=10000.0, equity=10000.0, free_margin=1000.0)
        sizer = RiskSizer()
        assert sizer.should_take_trade("EURUSD", 0.5, snapshot, 1100.0) is False
        assert sizer.should_take_trade("EURUSD", 0.4, snapshot, 1100.0) is True

    def test_healthy_account(self):
        assert RiskSizer().should_take_trade("EURUSD", 0.1, account(), 1100.0) is True


class TestPerformanceStats:

    def test_symbol_and_fallback(self):
        provider = StaticPerformanceStats({
            'EURUSD': {'win_rate': 0.6, 'avg_win': 200, 'avg_loss': -100},
            '*': GOOD_STATS,
        })
        assert provider.get_stats('EURUSD').payoff_ratio == pytest.approx(2.0)
        assert provider.get_stats('USDJPY') is GOOD_STATS

    def test_no_history(self):
        assert StaticPerformanceStats().get_stats('EURUSD') is EMPTY_STATS
