"""
daily_governor.py - Daily Risk Governor

Enforces per-day trade-count, loss and drawdown ceilings that gate every new
trade. Daily counters live in an explicit DailyCounters object passed in on
each call; the governor is the only writer and serialises its updates, so
several instruments may be evaluated concurrently within one cycle without
losing increments under the trade-count cap.

Open positions are not affected by a veto - they stay under lifecycle
management.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from core.config import RiskProfile
from execution.gateway import AccountSnapshot


logger = logging.getLogger(__name__)

# Fraction of a limit at which a warning is attached to approved decisions
WARNING_LEVEL = 0.8


class VetoReason(Enum):
    """Reasons for trade veto."""
    MAX_TRADES_REACHED = "max_trades_reached"
    DAILY_LOSS_EXCEEDED = "daily_loss_exceeded"
    DRAWDOWN_EXCEEDED = "drawdown_exceeded"


@dataclass
class DailyCounters:
    """
    Per-trading-day state.

    Attributes:
        trades_today: Trades accepted since the last reset
        pnl_today: Realised PnL since the last reset
        reset_at: Instant of the last reset (UTC); defaults to the wall clock
    """
    trades_today: int = 0
    pnl_today: float = 0.0
    reset_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trades_today': self.trades_today,
            'pnl_today': self.pnl_today,
            'reset_at': self.reset_at.isoformat()
        }


@dataclass
class GovernorDecision:
    """
    Trade veto decision.

    Attributes:
        approved: Whether new trades are allowed
        veto_reason: Reason for veto if applicable
        message: Human-readable detail
        warnings: Limits being approached
    """
    approved: bool
    veto_reason: Optional[VetoReason] = None
    message: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'approved': self.approved,
            'veto_reason': self.veto_reason.value if self.veto_reason else None,
            'message': self.message,
            'warnings': self.warnings
        }

    def __repr__(self) -> str:
        if self.approved:
            return "GovernorDecision(approved=True)"
        return f"GovernorDecision(approved=False, reason={self.veto_reason.value})"


def trading_day(moment: datetime, rollover_hour: int = 0) -> date:
    """Trading day a moment belongs to; days start at rollover_hour UTC."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return (moment - timedelta(hours=rollover_hour)).date()


def is_new_trading_day(reset_at: datetime, now: datetime, rollover_hour: int = 0) -> bool:
    """
    Whether now lies in a different trading day than reset_at.

    Earlier days count as well, so replaying history behind the last reset
    starts from fresh counters.
    """
    return trading_day(now, rollover_hour) != trading_day(reset_at, rollover_hour)


class DailyRiskGovernor:
    """
    Daily trade-count, loss and drawdown gate.

    Args:
        risk_profile: Account risk parameters
        rollover_hour: UTC hour at which the trading day starts
    """

    def __init__(self, risk_profile: Optional[RiskProfile] = None, rollover_hour: int = 0):
        if not 0 <= rollover_hour <= 23:
            raise ValueError(f"rollover_hour must be 0-23, got {rollover_hour}")

        self.risk_profile = risk_profile or RiskProfile()
        self.rollover_hour = rollover_hour
        self._lock = threading.Lock()

        logger.info(
            f"DailyRiskGovernor initialized: max_trades={self.risk_profile.max_trades_per_day}, "
            f"max_daily_loss={self.risk_profile.max_daily_loss_percent:.1f}%, "
            f"max_drawdown={self.risk_profile.max_drawdown_percent:.1f}%"
        )

    def roll(self, counters: DailyCounters, now: Optional[datetime] = None) -> bool:
        """
        Reset counters when the trading day changed.

        Returns:
            True if a reset happened
        """
        now = now or datetime.now(timezone.utc)
        with self._lock:
            if not is_new_trading_day(counters.reset_at, now, self.rollover_hour):
                return False
            logger.info(
                f"New trading day: resetting counters "
                f"(trades={counters.trades_today}, pnl={counters.pnl_today:.2f})"
            )
            counters.trades_today = 0
            counters.pnl_today = 0.0
            counters.reset_at = now
            return True

    def check(self, counters: DailyCounters, account: AccountSnapshot) -> GovernorDecision:
        """
        Check whether a new trade may be opened.

        Args:
            counters: Today's counters
            account: Current account state

        Returns:
            GovernorDecision
        """
        profile = self.risk_profile

        with self._lock:
            trades = counters.trades_today
            pnl = counters.pnl_today

        if trades >= profile.max_trades_per_day:
            return self._veto(
                VetoReason.MAX_TRADES_REACHED,
                f"{trades} trades today >= limit {profile.max_trades_per_day}"
            )

        loss_limit = account.balance * profile.max_daily_loss_percent / 100.0
        if pnl <= -loss_limit:
            return self._veto(
                VetoReason.DAILY_LOSS_EXCEEDED,
                f"daily pnl {pnl:.2f} <= -{loss_limit:.2f}"
            )

        drawdown = account.drawdown_percent
        if drawdown >= profile.max_drawdown_percent:
            return self._veto(
                VetoReason.DRAWDOWN_EXCEEDED,
                f"drawdown {drawdown:.2f}% >= {profile.max_drawdown_percent:.2f}%"
            )

        warnings = []
        if profile.max_trades_per_day and trades >= profile.max_trades_per_day * WARNING_LEVEL:
            warnings.append(f"trade count {trades} approaching limit {profile.max_trades_per_day}")
        if loss_limit > 0 and -pnl >= loss_limit * WARNING_LEVEL:
            warnings.append(f"daily loss {-pnl:.2f} approaching limit {loss_limit:.2f}")
        if drawdown >= profile.max_drawdown_percent * WARNING_LEVEL:
            warnings.append(f"drawdown {drawdown:.2f}% approaching limit {profile.max_drawdown_percent:.2f}%")
        for warning in warnings:
            logger.warning(warning)

        return GovernorDecision(approved=True, warnings=warnings)

    def try_record_trade(self, counters: DailyCounters) -> bool:
        """
        Atomically claim one slot under the trade-count cap.

        Returns:
            False when the cap was already reached
        """
        with self._lock:
            if counters.trades_today >= self.risk_profile.max_trades_per_day:
                return False
            counters.trades_today += 1
            return True

    def release_trade(self, counters: DailyCounters) -> None:
        """Give back a slot claimed for an order the gateway rejected."""
        with self._lock:
            counters.trades_today = max(0, counters.trades_today - 1)

    def record_pnl(self, counters: DailyCounters, pnl: float) -> None:
        """Add realised PnL of a closed trade."""
        with self._lock:
            counters.pnl_today += pnl

    def _veto(self, reason: VetoReason, message: str) -> GovernorDecision:
        logger.warning(f"RiskLimitBreached: {reason.value}: {message}")
        return GovernorDecision(approved=False, veto_reason=reason, message=message)
