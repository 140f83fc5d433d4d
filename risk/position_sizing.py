"""
position_sizing.py - Position Size Calculator

Converts a fused signal, account capital and historical win/loss statistics
into a bounded lot size using fractional Kelly, adjusted for volatility,
signal strength and confidence. Also holds the pre-trade capital check.
Does not generate trading signals - only determines sizing for existing
signals.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from core.config import RiskProfile, SizingConfig
from execution.gateway import AccountSnapshot, InstrumentSpec
from risk.performance import PerformanceStats


logger = logging.getLogger(__name__)

# Tolerance for float comparisons against volume steps and risk caps
_EPSILON = 1e-9


class CappedBy(Enum):
    """Which bound, if any, clamped the raw lot computation."""
    NONE = "none"
    MIN_LOT = "min_lot"
    MAX_LOT = "max_lot"
    MAX_RISK_PERCENT = "max_risk_percent"
    VOLUME_STEP = "volume_step"

    def __str__(self):
        return self.value


@dataclass
class PositionSizeDecision:
    """
    Result of position sizing calculation.

    Attributes:
        approved: Whether a trade of `lots` may be placed
        lots: Final size; within [min_lot, max_lot] and a multiple of
            volume_step when approved, 0.0 otherwise
        capped_by: Bound that clamped the raw computation
        raw_risk_amount: Risk money before conversion to lots
        raw_lots: Lots before clamping and rounding
        kelly_fraction: Applied fractional Kelly
        volatility_adjustment: Applied volatility multiplier
        risk_amount: Money lost if the stop is hit with `lots`
        rejection_reason: Reason if the decision was rejected
    """
    approved: bool
    lots: float
    capped_by: CappedBy = CappedBy.NONE
    raw_risk_amount: float = 0.0
    raw_lots: float = 0.0
    kelly_fraction: float = 0.0
    volatility_adjustment: float = 1.0
    risk_amount: float = 0.0
    rejection_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'approved': self.approved,
            'lots': self.lots,
            'capped_by': self.capped_by.value,
            'raw_risk_amount': self.raw_risk_amount,
            'raw_lots': self.raw_lots,
            'kelly_fraction': self.kelly_fraction,
            'volatility_adjustment': self.volatility_adjustment,
            'risk_amount': self.risk_amount,
            'rejection_reason': self.rejection_reason,
            'metadata': self.metadata
        }

    def __repr__(self) -> str:
        if not self.approved:
            return f"PositionSizeDecision(approved=False, reason={self.rejection_reason})"
        return (f"PositionSizeDecision(approved=True, lots={self.lots:.2f}, "
                f"capped_by={self.capped_by.value}, risk=${self.risk_amount:.2f})")


def kelly_fraction(
    stats: PerformanceStats,
    scale: float = 0.25,
    floor: float = 0.01,
    cap: float = 0.05
) -> float:
    """
    Fractional Kelly: f = (p*b - q) / b, scaled and bounded.

    p = win rate, q = 1 - p, b = avg_win / |avg_loss|. Without a loss
    reference or a positive win rate the floor is used.
    """
    p = stats.win_rate
    if stats.avg_loss == 0 or p <= 0:
        return floor

    b = stats.avg_win / abs(stats.avg_loss)
    if b <= 0:
        return floor

    q = 1 - p
    full_kelly = (p * b - q) / b
    return max(floor, min(cap, full_kelly * scale))


def volatility_adjustment(ratio: float, lower: float = 0.5, upper: float = 1.2) -> float:
    """Inverse volatility multiplier; unknown ratio (<= 0) leaves size unchanged."""
    if ratio is None or not math.isfinite(ratio) or ratio <= 0:
        return 1.0
    return max(lower, min(upper, 1.0 / ratio))


def floor_to_step(value: float, step: float) -> float:
    """Largest multiple of step not above value."""
    steps = math.floor(value / step + _EPSILON)
    return round(steps * step, 10)


class RiskSizer:
    """
    Fractional-Kelly position sizer with capital-at-risk caps.

    Args:
        risk_profile: Account risk parameters
        config: Kelly bounds, max risk percent and margin usage
    """

    def __init__(self, risk_profile: Optional[RiskProfile] = None, config: Optional[SizingConfig] = None):
        self.risk_profile = risk_profile or RiskProfile()
        self.config = config or SizingConfig()

        if not 0 < self.config.kelly_min <= self.config.kelly_max:
            raise ValueError(
                f"kelly bounds must satisfy 0 < min <= max, got "
                f"{self.config.kelly_min}, {self.config.kelly_max}"
            )

        logger.info(
            f"RiskSizer initialized: risk={self.risk_profile.risk_percent:.2f}%, "
            f"kelly=[{self.config.kelly_min}, {self.config.kelly_max}] x{self.config.kelly_scale}, "
            f"max_risk={self.config.max_risk_percent:.1f}%"
        )

    def kelly(self, stats: PerformanceStats) -> float:
        return kelly_fraction(stats, self.config.kelly_scale, self.config.kelly_min, self.config.kelly_max)

    def raw_risk_amount(
        self,
        balance: float,
        signal_strength: float,
        confidence: float,
        stats: PerformanceStats,
        volatility_ratio: float = 0.0
    ) -> float:
        """
        Risk money before conversion to lots.

        balance * risk% * kelly * volatility adj * (0.5 + 0.5|s|) * (0.5 + 0.5c)
        """
        base_risk = balance * self.risk_profile.risk_percent / 100.0
        signal_multiplier = 0.5 + 0.5 * min(abs(signal_strength), 1.0)
        confidence_multiplier = 0.5 + 0.5 * max(0.0, min(confidence, 1.0))
        return (base_risk
                * self.kelly(stats)
                * volatility_adjustment(volatility_ratio)
                * signal_multiplier
                * confidence_multiplier)

    def size(
        self,
        symbol: str,
        signal_strength: float,
        confidence: float,
        account: AccountSnapshot,
        spec: InstrumentSpec,
        stats: PerformanceStats,
        stop_distance: float,
        volatility_ratio: float = 0.0
    ) -> PositionSizeDecision:
        """
        Calculate the lot size for a signal.

        Args:
            symbol: Instrument identifier
            signal_strength: |composite direction|
            confidence: Composite confidence
            account: Current account state
            spec: Instrument properties
            stats: Historical performance aggregates
            stop_distance: Price distance between entry and stop loss
            volatility_ratio: Recent / baseline volatility (0 = unknown)

        Returns:
            PositionSizeDecision
        """
        balance = account.balance

        if confidence <= 0:
            return self._reject(symbol, "zero confidence signal")
        if balance <= 0:
            return self._reject(symbol, f"non-positive balance {balance}")
        if not math.isfinite(stop_distance) or stop_distance <= 0:
            return self._reject(symbol, f"invalid stop distance {stop_distance}")

        kelly = self.kelly(stats)
        vol_adj = volatility_adjustment(volatility_ratio)
        raw_risk = self.raw_risk_amount(balance, signal_strength, confidence, stats, volatility_ratio)

        loss_per_lot = spec.loss_per_lot(stop_distance)
        raw_lots = raw_risk / loss_per_lot

        if raw_lots <= 0:
            return self._reject(symbol, f"computed size {raw_lots} is not positive", raw_risk=raw_risk)

        capped_by = CappedBy.NONE
        lots = raw_lots
        if lots < spec.min_lot:
            lots = spec.min_lot
            capped_by = CappedBy.MIN_LOT
        elif lots > spec.max_lot:
            lots = spec.max_lot
            capped_by = CappedBy.MAX_LOT

        stepped = floor_to_step(lots, spec.volume_step)
        if stepped < spec.min_lot - _EPSILON:
            stepped = spec.min_lot
        if capped_by == CappedBy.NONE and abs(stepped - lots) > _EPSILON:
            capped_by = CappedBy.VOLUME_STEP
        lots = stepped

        max_risk = balance * self.config.max_risk_percent / 100.0
        if lots * loss_per_lot > max_risk + _EPSILON:
            lots = floor_to_step(max_risk / loss_per_lot, spec.volume_step)
            capped_by = CappedBy.MAX_RISK_PERCENT
            if lots < spec.min_lot - _EPSILON:
                return self._reject(
                    symbol,
                    f"minimum lot {spec.min_lot} risks more than "
                    f"{self.config.max_risk_percent:.1f}% of balance",
                    raw_risk=raw_risk
                )

        decision = PositionSizeDecision(
            approved=True,
            lots=lots,
            capped_by=capped_by,
            raw_risk_amount=raw_risk,
            raw_lots=raw_lots,
            kelly_fraction=kelly,
            volatility_adjustment=vol_adj,
            risk_amount=lots * loss_per_lot,
            metadata={
                'symbol': symbol,
                'signal_strength': signal_strength,
                'confidence': confidence,
                'stop_distance': stop_distance,
                'balance': balance
            }
        )
        logger.debug(f"{symbol}: {decision}")
        return decision

    def check_trade(
        self,
        symbol: str,
        proposed_size: float,
        account: AccountSnapshot,
        margin_per_lot: float
    ) -> Tuple[bool, Optional[str]]:
        """
        Pre-trade capital check.

        Returns:
            Tuple of (allowed, rejection reason)
        """
        balance = account.balance
        if balance <= 0:
            return False, f"non-positive balance {balance}"

        equity_floor = balance * (1 - self.risk_profile.max_daily_loss_percent / 100.0)
        if account.equity < equity_floor:
            return False, f"equity {account.equity:.2f} below daily loss floor {equity_floor:.2f}"

        drawdown_pct = (balance - account.equity) / balance * 100.0
        if drawdown_pct >= self.risk_profile.max_drawdown_percent:
            return False, (f"drawdown {drawdown_pct:.2f}% >= "
                           f"{self.risk_profile.max_drawdown_percent:.2f}%")

        required_margin = proposed_size * margin_per_lot
        margin_limit = account.free_margin * self.config.max_margin_usage
        if required_margin > margin_limit:
            return False, f"required margin {required_margin:.2f} > {margin_limit:.2f} of free margin"

        return True, None

    def should_take_trade(
        self,
        symbol: str,
        proposed_size: float,
        account: AccountSnapshot,
        margin_per_lot: float
    ) -> bool:
        allowed, reason = self.check_trade(symbol, proposed_size, account, margin_per_lot)
        if not allowed:
            logger.info(f"{symbol}: trade of {proposed_size} lots refused: {reason}")
        return allowed

    def _reject(self, symbol: str, reason: str, raw_risk: float = 0.0) -> PositionSizeDecision:
        """Create a rejection result (SizingDegenerate)."""
        logger.info(f"{symbol}: SizingDegenerate: {reason}")
        return PositionSizeDecision(
            approved=False,
            lots=0.0,
            raw_risk_amount=raw_risk,
            rejection_reason=reason
        )
