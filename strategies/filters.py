"""
filters.py - Pre-trade Filter Pipeline

A fixed sequence of independent pass/fail gates applied to the fused signal
before any capital is committed:

    1. regime      choppy markets demand a strong signal
    2. volatility  reject when recent volatility spikes above baseline
    3. time        reject inside news blackouts and the low-liquidity session
    4. spread      reject when the spread is too wide

The order is fixed for reproducibility. The pipeline stops at the first
failing gate; later gates are not evaluated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from core.config import FilterConfig, NewsWindow
from strategies.base import TradeSide
from strategies.features import FeatureSet
from strategies.regime_detector import RegimeDetector


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketContext:
    """
    Snapshot the gates evaluate against.

    Attributes:
        symbol: Instrument identifier
        features: FeatureSet of the current cycle
        spread_points: Current spread in instrument points
        now: Decision time (UTC)
    """
    symbol: str
    features: FeatureSet
    spread_points: float
    now: datetime


@dataclass
class FilterResult:
    """Outcome of a pipeline run."""
    passed: bool
    failed_gate: Optional[str] = None
    reason: Optional[str] = None
    evaluated: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.passed

    def to_dict(self) -> Dict[str, Any]:
        return {
            'passed': self.passed,
            'failed_gate': self.failed_gate,
            'reason': self.reason,
            'evaluated': list(self.evaluated)
        }


# A gate returns None when it passes, or a rejection reason
Gate = Callable[[MarketContext, float, Optional[TradeSide]], Optional[str]]


def in_time_window(moment: time, start: time, end: time) -> bool:
    """Whether moment lies in [start, end); windows with end <= start wrap midnight."""
    if start <= end:
        return start <= moment < end
    return moment >= start or moment < end


def week_of_month(day: int) -> int:
    """1 for days 1-7, 2 for 8-14, ..."""
    return (day - 1) // 7 + 1


def active_news_window(now: datetime, windows: Sequence[NewsWindow]) -> Optional[NewsWindow]:
    """Return the news window covering now (UTC), if any."""
    now = now.astimezone(timezone.utc) if now.tzinfo else now
    for window in windows:
        if now.weekday() != window.weekday:
            continue
        if window.week_of_month is not None and week_of_month(now.day) != window.week_of_month:
            continue
        if in_time_window(now.time(), window.start, window.end):
            return window
    return None


class FilterPipeline:
    """
    Ordered gate sequence with per-gate toggles.

    Args:
        config: Filter configuration (toggles and thresholds)
        regime_detector: Classifier used by the regime gate
        gates: Optional explicit (name, gate) sequence replacing the
            configured one
    """

    def __init__(
        self,
        config: Optional[FilterConfig] = None,
        regime_detector: Optional[RegimeDetector] = None,
        gates: Optional[Sequence[Tuple[str, Gate]]] = None
    ):
        self.config = config or FilterConfig()
        self.regime_detector = regime_detector or RegimeDetector(self.config.choppy_threshold)

        if gates is not None:
            self.gates: List[Tuple[str, Gate]] = list(gates)
        else:
            self.gates = self._configured_gates()

        logger.info(f"FilterPipeline initialized with gates: {[name for name, _ in self.gates]}")

    def _configured_gates(self) -> List[Tuple[str, Gate]]:
        candidates = [
            ('regime', self.config.regime_enabled, self.regime_gate),
            ('volatility', self.config.volatility_enabled, self.volatility_gate),
            ('time', self.config.time_enabled, self.time_gate),
            ('spread', self.config.spread_enabled, self.spread_gate),
        ]
        return [(name, gate) for name, enabled, gate in candidates if enabled]

    def evaluate(
        self,
        context: MarketContext,
        signal_strength: float,
        direction: Optional[TradeSide] = None
    ) -> FilterResult:
        """
        Run the gates in order, stopping at the first failure.

        Args:
            context: Market snapshot for the instrument
            signal_strength: |composite direction|
            direction: Intended trade side

        Returns:
            FilterResult naming the failing gate, if any
        """
        result = FilterResult(passed=True)
        for name, gate in self.gates:
            result.evaluated.append(name)
            reason = gate(context, signal_strength, direction)
            if reason is not None:
                result.passed = False
                result.failed_gate = name
                result.reason = reason
                logger.info(f"{context.symbol}: {direction} blocked by {name} gate: {reason}")
                return result
        return result

    def passes_all(
        self,
        context: MarketContext,
        signal_strength: float,
        direction: Optional[TradeSide] = None
    ) -> bool:
        return self.evaluate(context, signal_strength, direction).passed

    # Gates

    def regime_gate(self, context: MarketContext, signal_strength: float, direction: Optional[TradeSide]) -> Optional[str]:
        reading = self.regime_detector.classify(context.features.adx)
        if reading.is_choppy and signal_strength < self.config.choppy_min_signal:
            return (f"choppy regime (strength {reading.strength:.2f}) needs signal >= "
                    f"{self.config.choppy_min_signal:.2f}, got {signal_strength:.2f}")
        return None

    def volatility_gate(self, context: MarketContext, signal_strength: float, direction: Optional[TradeSide]) -> Optional[str]:
        ratio = context.features.volatility_ratio
        if ratio > self.config.max_volatility_ratio:
            return f"volatility ratio {ratio:.2f} > {self.config.max_volatility_ratio:.2f}"
        return None

    def time_gate(self, context: MarketContext, signal_strength: float, direction: Optional[TradeSide]) -> Optional[str]:
        now = context.now.astimezone(timezone.utc) if context.now.tzinfo else context.now

        window = active_news_window(now, self.config.news_windows)
        if window is not None:
            return f"news blackout: {window.name}"

        if in_time_window(now.time(), self.config.low_liquidity_start, self.config.low_liquidity_end):
            return "low-liquidity session"
        return None

    def spread_gate(self, context: MarketContext, signal_strength: float, direction: Optional[TradeSide]) -> Optional[str]:
        if context.spread_points > self.config.max_spread_points:
            return f"spread {context.spread_points:.1f} points > {self.config.max_spread_points:.1f}"
        return None
