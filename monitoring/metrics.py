"""
metrics.py - Decision metrics for the trading engine.

Responsibilities:
- Count cycle outcomes by status and by skip reason, per symbol.
- Count order submissions, fills, rejections and stop modifications.
- Track realised PnL and win/loss counts of closed trades.
- Thread-safe; records what the engine reports and decides nothing.
"""

from __future__ import annotations

import threading
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass
class ClosedTradeTotals:
    """Realised results of closed trades."""
    trades: int = 0
    wins: int = 0
    losses: int = 0
    realized_pnl: float = 0.0

    @property
    def win_rate(self) -> Optional[float]:
        if self.trades == 0:
            return None
        return self.wins / self.trades

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trades': self.trades,
            'wins': self.wins,
            'losses': self.losses,
            'realized_pnl': self.realized_pnl,
            'win_rate': self.win_rate,
        }


@dataclass
class SymbolCounters:
    cycles: int = 0
    statuses: Counter = field(default_factory=Counter)
    skip_reasons: Counter = field(default_factory=Counter)


class DecisionMetrics:
    """
    Thread-safe counters of engine decisions.

    Key methods:
      - record_outcome(symbol, status, reason)
      - record_order(symbol, filled)
      - record_stop_update(symbol, reason)
      - record_closed_trade(symbol, pnl)
      - snapshot() -> dict
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._symbols: Dict[str, SymbolCounters] = defaultdict(SymbolCounters)
        self._orders: Counter = Counter()
        self._stop_updates: Counter = Counter()
        self._closed = ClosedTradeTotals()
        self._started_at = datetime.now(timezone.utc)

    def record_outcome(self, symbol: str, status: str, reason: Optional[str] = None) -> None:
        with self._lock:
            counters = self._symbols[symbol]
            counters.cycles += 1
            counters.statuses[status] += 1
            if reason:
                counters.skip_reasons[reason] += 1

    def record_order(self, symbol: str, filled: bool) -> None:
        with self._lock:
            self._orders['submitted'] += 1
            self._orders['filled' if filled else 'rejected'] += 1

    def record_stop_update(self, symbol: str, reason: str) -> None:
        with self._lock:
            self._stop_updates[reason] += 1

    def record_closed_trade(self, symbol: str, pnl: float) -> None:
        with self._lock:
            self._closed.trades += 1
            self._closed.realized_pnl += float(pnl)
            if pnl > 0:
                self._closed.wins += 1
            elif pnl < 0:
                self._closed.losses += 1

    def skip_count(self, reason: str, symbol: Optional[str] = None) -> int:
        """Number of skips for reason, for one symbol or all of them."""
        with self._lock:
            if symbol is not None:
                return self._symbols[symbol].skip_reasons[reason] if symbol in self._symbols else 0
            return sum(c.skip_reasons[reason] for c in self._symbols.values())

    def snapshot(self) -> Dict[str, Any]:
        """Point-in-time copy of all counters."""
        with self._lock:
            statuses: Counter = Counter()
            reasons: Counter = Counter()
            per_symbol = {}
            for symbol, counters in self._symbols.items():
                statuses.update(counters.statuses)
                reasons.update(counters.skip_reasons)
                per_symbol[symbol] = {
                    'cycles': counters.cycles,
                    'statuses': dict(counters.statuses),
                    'skip_reasons': dict(counters.skip_reasons),
                }

            return {
                'since': self._started_at.isoformat(),
                'cycles': sum(c.cycles for c in self._symbols.values()),
                'statuses': dict(statuses),
                'skip_reasons': dict(reasons),
                'orders': {
                    'submitted': self._orders['submitted'],
                    'filled': self._orders['filled'],
                    'rejected': self._orders['rejected'],
                },
                'stop_updates': dict(self._stop_updates),
                'closed_trades': self._closed.to_dict(),
                'symbols': per_symbol,
            }

    def reset(self) -> None:
        with self._lock:
            self._symbols.clear()
            self._orders.clear()
            self._stop_updates.clear()
            self._closed = ClosedTradeTotals()
            self._started_at = datetime.now(timezone.utc)
