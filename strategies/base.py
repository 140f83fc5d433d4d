"""
base.py - Signal Types

Defines the signal contract shared by the signal generator, the external
signal adapter, the fuser and the filters. Signals only describe conviction;
they never execute or size trades.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp value into [lower, upper]."""
    return max(lower, min(upper, value))


class SignalSource(Enum):
    """Origin of a directional score."""
    INTERNAL = "internal"
    EXTERNAL = "external"

    def __str__(self):
        return self.value


class TradeSide(Enum):
    """Direction of an order or position."""
    BUY = "BUY"
    SELL = "SELL"

    def __str__(self):
        return self.value

    @property
    def sign(self) -> int:
        """+1 for BUY, -1 for SELL."""
        return 1 if self is TradeSide.BUY else -1

    @classmethod
    def from_direction(cls, direction: float) -> Optional['TradeSide']:
        """Map a signed score to a side (None when flat)."""
        if direction > 0:
            return cls.BUY
        if direction < 0:
            return cls.SELL
        return None


@dataclass(frozen=True)
class Signal:
    """
    Directional score with an independent confidence.

    Attributes:
        direction: Conviction in [-1, 1]; positive is bullish
        confidence: Reliability estimate in [0, 1]
        source: Internal generator or external model
        symbol: Instrument the signal is for
        timestamp: Time the signal was produced
        metadata: Contributing values, for logging only

    Both values are clamped on construction so a Signal is always in range.
    """
    direction: float
    confidence: float
    source: SignalSource = SignalSource.INTERNAL
    symbol: Optional[str] = None
    timestamp: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        object.__setattr__(self, 'direction', clamp(float(self.direction), -1.0, 1.0))
        object.__setattr__(self, 'confidence', clamp(float(self.confidence), 0.0, 1.0))
        if self.timestamp is None:
            object.__setattr__(self, 'timestamp', datetime.now(timezone.utc))

    @property
    def strength(self) -> float:
        """Absolute conviction, ignoring direction."""
        return abs(self.direction)

    @property
    def side(self) -> Optional[TradeSide]:
        return TradeSide.from_direction(self.direction)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'direction': self.direction,
            'confidence': self.confidence,
            'source': self.source.value,
            'symbol': self.symbol,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'metadata': self.metadata
        }

    def __repr__(self) -> str:
        return (f"Signal(source={self.source.value}, direction={self.direction:+.3f}, "
                f"confidence={self.confidence:.3f})")


@dataclass(frozen=True)
class CompositeSignal:
    """
    Result of fusing one internal and, optionally, one external signal.

    Attributes:
        direction: Composite direction in [-1, 1]
        confidence: Composite confidence in [0, 1]
        internal: Internal signal that went in
        external: External signal that went in (admitted or not)
        fused: True only when the external signal actually contributed
    """
    direction: float
    confidence: float
    internal: Signal
    external: Optional[Signal] = None
    fused: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'direction', clamp(float(self.direction), -1.0, 1.0))
        object.__setattr__(self, 'confidence', clamp(float(self.confidence), 0.0, 1.0))

    @property
    def strength(self) -> float:
        return abs(self.direction)

    @property
    def side(self) -> Optional[TradeSide]:
        return TradeSide.from_direction(self.direction)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'direction': self.direction,
            'confidence': self.confidence,
            'fused': self.fused,
            'internal': self.internal.to_dict(),
            'external': self.external.to_dict() if self.external else None
        }
