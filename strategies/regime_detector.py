"""
regime_detector.py - Market Regime Classification

Stateless and deterministic regime classification from a directional
strength index (ADX). Produces a regime strength in [0, 1] and a label;
the regime gate of the filter pipeline demands stronger signals when the
market is choppy.

No machine learning, no future data leakage, fully explainable.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


class MarketRegime(Enum):
    """Market regime classifications."""
    STRONG_TREND = "strong_trend"
    TRENDING = "trending"
    WEAK_TREND = "weak_trend"
    CHOPPY = "choppy"

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class RegimeReading:
    """Regime label plus the strength it was derived from."""
    regime: MarketRegime
    strength: float
    adx: Optional[float]

    @property
    def is_choppy(self) -> bool:
        return self.regime == MarketRegime.CHOPPY

    def to_dict(self) -> Dict[str, Any]:
        return {'regime': self.regime.value, 'strength': self.strength, 'adx': self.adx}


class RegimeDetector:
    """
    Threshold-band regime classifier.

    ADX > 30 -> 1.0, > 25 -> 0.7, > 20 -> 0.5, otherwise 0.2. A missing
    reading (warm-up) gives 0.0. Strength below choppy_threshold is choppy.
    """

    BANDS = ((30.0, 1.0), (25.0, 0.7), (20.0, 0.5))
    FLOOR_STRENGTH = 0.2

    def __init__(self, choppy_threshold: float = 0.3):
        if not 0.0 <= choppy_threshold <= 1.0:
            raise ValueError(f"choppy_threshold must be between 0 and 1, got {choppy_threshold}")
        self.choppy_threshold = choppy_threshold

    def strength(self, adx: Optional[float]) -> float:
        """Regime strength in [0, 1]."""
        if adx is None or not math.isfinite(adx) or adx <= 0:
            return 0.0
        for threshold, value in self.BANDS:
            if adx > threshold:
                return value
        return self.FLOOR_STRENGTH

    def classify(self, adx: Optional[float]) -> RegimeReading:
        """
        Classify the regime from an ADX reading.

        Args:
            adx: Average directional index, or None/0 when unavailable

        Returns:
            RegimeReading
        """
        strength = self.strength(adx)

        if strength < self.choppy_threshold:
            regime = MarketRegime.CHOPPY
        elif strength >= 1.0:
            regime = MarketRegime.STRONG_TREND
        elif strength >= 0.7:
            regime = MarketRegime.TRENDING
        else:
            regime = MarketRegime.WEAK_TREND

        return RegimeReading(regime=regime, strength=strength, adx=adx)

    def __repr__(self) -> str:
        return f"RegimeDetector(choppy_threshold={self.choppy_threshold})"
