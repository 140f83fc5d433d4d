"""
performance.py - Historical Performance Statistics

Read-only aggregates (win rate, average win, average loss) used by the
Kelly sizing. They are produced from trade history by another component;
the decision engine only consumes them.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PerformanceStats:
    """
    Attributes:
        win_rate: Fraction of winning trades (0.0 to 1.0)
        avg_win: Average profit of winning trades (account currency)
        avg_loss: Average loss of losing trades; sign is ignored
        trades: Number of trades the aggregates are based on
    """
    win_rate: float
    avg_win: float
    avg_loss: float
    trades: int = 0

    @property
    def payoff_ratio(self) -> float:
        """avg_win / |avg_loss|, 0 when there is no loss reference."""
        if self.avg_loss == 0:
            return 0.0
        return self.avg_win / abs(self.avg_loss)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'PerformanceStats':
        return cls(
            win_rate=float(data.get('win_rate', 0.0)),
            avg_win=float(data.get('avg_win', 0.0)),
            avg_loss=float(data.get('avg_loss', 0.0)),
            trades=int(data.get('trades', 0))
        )


# No history: Kelly falls back to its conservative floor
EMPTY_STATS = PerformanceStats(win_rate=0.0, avg_win=0.0, avg_loss=0.0)


class PerformanceStatsProvider(ABC):
    """Historical performance collaborator."""

    @abstractmethod
    def get_stats(self, symbol: str) -> PerformanceStats:
        """Aggregates for symbol; EMPTY_STATS when there is no history."""


class StaticPerformanceStats(PerformanceStatsProvider):
    """
    Fixed aggregates supplied at startup, per symbol with an optional
    '*' fallback entry.
    """

    def __init__(self, stats: Optional[Mapping[str, Any]] = None):
        self._stats: Dict[str, PerformanceStats] = {}
        for symbol, values in (stats or {}).items():
            self._stats[symbol] = values if isinstance(values, PerformanceStats) else PerformanceStats.from_dict(values)

    def get_stats(self, symbol: str) -> PerformanceStats:
        stats = self._stats.get(symbol) or self._stats.get('*')
        if stats is None:
            logger.debug(f"{symbol}: no performance history, using empty stats")
            return EMPTY_STATS
        return stats
