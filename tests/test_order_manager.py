"""
test_order_manager.py - Tests for order submission and the gateway-side
spread guard
"""

import pytest

from core.config import ExecutionConfig
from execution.gateway import ExecutionResult, InstrumentSpec, OrderStatus, Quote, TradeIntent
from execution.order_manager import OrderManager
from execution.paper_gateway import PaperExecutionGateway, PaperMarketData
from strategies.base import TradeSide


SPEC = InstrumentSpec(symbol="EURUSD")
INTENT = TradeIntent(
    symbol="EURUSD", side=TradeSide.BUY, size=0.1, confidence=0.8,
    entry_price=1.10008, stop_loss=1.09928, take_profit=1.10160, owner_tag=7
)


class RecordingGateway(PaperExecutionGateway):
    """Paper gateway that remembers the deviation it was given."""

    def __init__(self):
        super().__init__(PaperMarketData())
        self.deviations = []

    def place_order(self, intent, deviation_points=0):
        self.deviations.append(deviation_points)
        return super().place_order(intent, deviation_points)


@pytest.fixture
def gateway():
    return RecordingGateway()


class TestSpreadGuard:
    """Spread in pips checked before anything is sent."""

    def test_wide_spread_blocks_order(self, gateway):
        manager = OrderManager(gateway)
        result = manager.submit(INTENT, Quote("EURUSD", 1.10000, 1.10025), SPEC)

        assert result.success is False
        assert result.status == OrderStatus.REJECTED
        assert "spread" in result.error_message
        assert gateway.orders == []
        assert manager.get_stats().spread_blocked == 1
        assert manager.get_stats().submitted == 0

    def test_spread_below_limit_is_sent(self, gateway):
        manager = OrderManager(gateway)
        result = manager.submit(INTENT, Quote("EURUSD", 1.10000, 1.10019), SPEC)
        assert result.success is True

    def test_custom_limit(self, gateway):
        manager = OrderManager(gateway, ExecutionConfig(max_spread_pips=0.5))
        result = manager.submit(INTENT, Quote("EURUSD", 1.10000, 1.10010), SPEC)
        assert result.success is False

    def test_pip_size(self):
        assert SPEC.pip_size == pytest.approx(0.0001)
        assert InstrumentSpec(symbol="USDJPY", point=0.001, digits=3, tick_size=0.001).pip_size == pytest.approx(0.01)
        assert InstrumentSpec(symbol="XAUUSD", point=0.01, digits=2, tick_size=0.01).pip_size == pytest.approx(0.01)


class TestSubmission:
    """Single attempt, result reported back."""

    def test_fill(self, gateway):
        manager = OrderManager(gateway)
        result = manager.submit(INTENT, Quote("EURUSD", 1.10000, 1.10010), SPEC)

        assert result.success is True
        assert result.ticket
        assert result.fill_price == pytest.approx(1.10008)
        assert gateway.deviations == [10]
        assert manager.get_stats().to_dict() == {'submitted': 1, 'filled': 1, 'rejected': 0, 'spread_blocked': 0}

    def test_rejection_is_not_retried(self, gateway):
        manager = OrderManager(gateway)
        gateway.reject_next("no money")

        result = manager.submit(INTENT, Quote("EURUSD", 1.10000, 1.10010), SPEC)

        assert result.success is False
        assert result.error_message == "no money"
        assert len(gateway.orders) == 1
        assert manager.get_stats().rejected == 1

    def test_result_helpers(self):
        assert ExecutionResult.rejected("x", reason=1).metadata == {'reason': 1}
        assert ExecutionResult.filled(1.1).ticket.startswith("pos_")
