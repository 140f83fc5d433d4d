"""
signal_generator.py - Internal Signal Generator

Combines feature extractor outputs into a bounded directional score and an
independent confidence score. Deterministic: identical bar windows yield
identical signals.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Tuple

import pandas as pd

from strategies.base import Signal, SignalSource, clamp
from strategies.features import FeatureSet, extract_features


logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.5
VOLUME_DELTA_WEIGHT = 0.2
TREND_STRENGTH_WEIGHT = 0.15
MOMENTUM_BONUS = 0.15
MOMENTUM_BONUS_THRESHOLD = 0.6


def combine_direction(features: FeatureSet) -> float:
    """
    Unweighted mean over the directional features that fired.

    A feature that stayed at 0 counts neither in the sum nor in the count.
    Returns 0 when nothing fired.
    """
    fired = [value for value in features.directional_contributions().values() if value != 0.0]
    if not fired:
        return 0.0
    return clamp(sum(fired) / len(fired), -1.0, 1.0)


def compute_confidence(features: FeatureSet) -> float:
    """
    Confidence from order flow, trend strength and momentum extremity.

    0.5 base, up to +0.2 from |volume delta|, up to +0.15 from trend
    strength, +0.15 when |momentum| exceeds 0.6.
    """
    confidence = BASE_CONFIDENCE
    confidence += VOLUME_DELTA_WEIGHT * min(abs(features.volume_delta), 1.0)
    confidence += TREND_STRENGTH_WEIGHT * clamp(features.trend_strength, 0.0, 1.0)
    if abs(features.momentum) > MOMENTUM_BONUS_THRESHOLD:
        confidence += MOMENTUM_BONUS
    return clamp(confidence, 0.0, 1.0)


class SignalGenerator:
    """
    Stateless internal signal generator.

    Produces a Signal(INTERNAL) from a bar window; the FeatureSet it was
    derived from is returned alongside for the filters and the lifecycle
    manager.
    """

    def evaluate(
        self,
        symbol: str,
        bars: pd.DataFrame,
        timestamp: Optional[datetime] = None
    ) -> Tuple[Signal, FeatureSet]:
        """
        Extract features and build the internal signal.

        Args:
            symbol: Instrument identifier
            bars: Oldest-first OHLCV window
            timestamp: Evaluation time

        Returns:
            Tuple of (internal signal, feature set)
        """
        features = extract_features(symbol, bars)
        signal = self.from_features(features, timestamp)

        logger.debug(
            f"{symbol}: internal direction={signal.direction:+.3f} "
            f"confidence={signal.confidence:.3f} contributions={features.directional_contributions()}"
        )
        return signal, features

    def generate_signal(self, symbol: str, bars: pd.DataFrame, timestamp: Optional[datetime] = None) -> Signal:
        """Internal signal for a bar window."""
        return self.evaluate(symbol, bars, timestamp)[0]

    @staticmethod
    def from_features(features: FeatureSet, timestamp: Optional[datetime] = None) -> Signal:
        return Signal(
            direction=combine_direction(features),
            confidence=compute_confidence(features),
            source=SignalSource.INTERNAL,
            symbol=features.symbol,
            timestamp=timestamp,
            metadata=features.directional_contributions()
        )
