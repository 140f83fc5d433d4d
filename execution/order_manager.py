"""
order_manager.py - Order Submission

Submits fully resolved trade intents to the execution gateway. Applies the
gateway-side spread guard (in pips) before sending, independently of the
spread gate in the filter pipeline (in points). Does not make strategy
decisions and never retries: a rejected order is reported back and the
caller may try again on a later cycle.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.config import ExecutionConfig
from execution.gateway import ExecutionGateway, ExecutionResult, InstrumentSpec, Quote, TradeIntent


logger = logging.getLogger(__name__)


@dataclass
class OrderManagerStats:
    """Submission counters."""
    submitted: int = 0
    filled: int = 0
    rejected: int = 0
    spread_blocked: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'submitted': self.submitted,
            'filled': self.filled,
            'rejected': self.rejected,
            'spread_blocked': self.spread_blocked
        }


class OrderManager:
    """
    Single-attempt order submission with a spread guard.

    Args:
        gateway: Execution gateway
        config: Spread limit and allowed price deviation
    """

    def __init__(self, gateway: ExecutionGateway, config: Optional[ExecutionConfig] = None):
        self.gateway = gateway
        self.config = config or ExecutionConfig()
        self._stats = OrderManagerStats()
        self._lock = threading.Lock()

        logger.info(
            f"OrderManager initialized: max_spread={self.config.max_spread_pips:.1f} pips, "
            f"deviation={self.config.deviation_points} points"
        )

    def submit(self, intent: TradeIntent, quote: Quote, spec: InstrumentSpec) -> ExecutionResult:
        """
        Submit an intent unless the spread is too wide.

        Args:
            intent: Order to place
            quote: Quote the intent was priced from
            spec: Instrument properties

        Returns:
            ExecutionResult from the gateway, or a local rejection
        """
        spread_pips = quote.spread_pips(spec)
        if spread_pips > self.config.max_spread_pips:
            with self._lock:
                self._stats.spread_blocked += 1
            message = f"spread {spread_pips:.1f} pips > {self.config.max_spread_pips:.1f}"
            logger.warning(f"{intent.symbol}: order not sent: {message}")
            return ExecutionResult.rejected(message, spread_pips=spread_pips)

        with self._lock:
            self._stats.submitted += 1

        result = self.gateway.place_order(intent, self.config.deviation_points)

        with self._lock:
            if result.success:
                self._stats.filled += 1
            else:
                self._stats.rejected += 1

        if result.success:
            logger.info(
                f"{intent.symbol}: {intent.side} {intent.size} lots filled at {result.fill_price} "
                f"(SL={intent.stop_loss}, TP={intent.take_profit}, ticket={result.ticket})"
            )
        else:
            logger.error(f"{intent.symbol}: ExecutionRejected: {result.error_message}")

        return result

    def get_stats(self) -> OrderManagerStats:
        with self._lock:
            return OrderManagerStats(**self._stats.to_dict())
