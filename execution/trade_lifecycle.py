"""
trade_lifecycle.py - Trade Lifecycle Manager

Prices entries, derives dynamic protective levels from ATR and signal
confidence, and manages open positions (breakeven promotion and trailing
stop) until they are closed by the gateway.

Per-position phases:

    NONE -> PENDING -> OPEN -> {BREAKEVEN, TRAILING} -> CLOSED

Stops only ever move in the position's favour; re-running management
without new favourable movement leaves them unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from core.config import LifecycleConfig
from core.errors import DataInsufficient
from execution.gateway import ExecutionGateway, InstrumentSpec, OpenPosition, Quote, TradeIntent
from strategies.base import TradeSide


logger = logging.getLogger(__name__)


class PositionPhase(Enum):
    """Lifecycle phase of a position."""
    NONE = "none"
    PENDING = "pending"
    OPEN = "open"
    BREAKEVEN = "breakeven"
    TRAILING = "trailing"
    CLOSED = "closed"

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class ProtectiveLevels:
    """Entry price with its initial stop loss and take profit."""
    entry_price: float
    stop_loss: float
    take_profit: float

    @property
    def stop_distance(self) -> float:
        return abs(self.entry_price - self.stop_loss)


@dataclass(frozen=True)
class StopUpdate:
    """A favourable stop move for one position."""
    ticket: str
    symbol: str
    old_stop: float
    new_stop: float
    reason: str


class TradeLifecycleManager:
    """
    Entry pricing, dynamic stops and open-position management.

    Args:
        config: Lifecycle parameters
        gateway: Execution gateway used to modify positions (optional for
            pure level computations)
    """

    def __init__(self, config: Optional[LifecycleConfig] = None, gateway: Optional[ExecutionGateway] = None):
        self.config = config or LifecycleConfig()
        self.gateway = gateway
        self._phases: Dict[str, PositionPhase] = {}
        self._symbols: Dict[str, str] = {}
        self._pending: Set[str] = set()

        logger.info(
            f"TradeLifecycleManager initialized: improvement={self.config.price_improvement}, "
            f"breakeven={self.config.breakeven_enabled}, trailing={self.config.trailing_enabled}"
        )

    # Entry pricing and protective levels

    def entry_price(self, side: TradeSide, quote: Quote, spec: InstrumentSpec) -> float:
        """Ask/bid, improved by a few points when enabled."""
        improvement = self.config.improvement_points * spec.point if self.config.price_improvement else 0.0
        if side is TradeSide.BUY:
            return spec.normalize_price(quote.ask - improvement)
        return spec.normalize_price(quote.bid + improvement)

    def stop_multiplier(self, confidence: float) -> float:
        """ATR multiple for the stop; higher confidence gives a tighter stop."""
        return max(
            self.config.base_stop_multiplier - self.config.stop_confidence_slope * confidence,
            self.config.min_stop_multiplier
        )

    def reward_ratio(self, confidence: float) -> float:
        """Reward-to-risk ratio, 1.5 to 2.0 with the default settings."""
        return self.config.base_reward_ratio + self.config.reward_confidence_slope * confidence

    def stop_loss(self, side: TradeSide, entry: float, atr: float, confidence: float) -> float:
        distance = atr * self.stop_multiplier(confidence)
        return entry - side.sign * distance

    def take_profit(self, side: TradeSide, entry: float, stop: float, confidence: float) -> float:
        risk = abs(entry - stop)
        return entry + side.sign * risk * self.reward_ratio(confidence)

    def plan_levels(
        self,
        side: TradeSide,
        quote: Quote,
        atr: float,
        confidence: float,
        spec: InstrumentSpec
    ) -> ProtectiveLevels:
        """
        Entry, stop loss and take profit for a new trade.

        Raises:
            DataInsufficient: If no ATR reading is available
        """
        if atr is None or atr <= 0:
            raise DataInsufficient(f"no ATR available for {spec.symbol}", spec.symbol)

        entry = self.entry_price(side, quote, spec)
        stop = spec.normalize_price(self.stop_loss(side, entry, atr, confidence))
        target = spec.normalize_price(self.take_profit(side, entry, stop, confidence))
        return ProtectiveLevels(entry_price=entry, stop_loss=stop, take_profit=target)

    def build_intent(
        self,
        symbol: str,
        side: TradeSide,
        size: float,
        confidence: float,
        levels: ProtectiveLevels,
        owner_tag: int = 0
    ) -> TradeIntent:
        return TradeIntent(
            symbol=symbol,
            side=side,
            size=size,
            confidence=confidence,
            entry_price=levels.entry_price,
            stop_loss=levels.stop_loss,
            take_profit=levels.take_profit,
            owner_tag=owner_tag,
            comment=f"conf={confidence:.2f}"
        )

    # Phase tracking

    def phase(self, ticket: str) -> PositionPhase:
        return self._phases.get(ticket, PositionPhase.NONE)

    def is_pending(self, symbol: str) -> bool:
        return symbol in self._pending

    def mark_pending(self, symbol: str) -> None:
        self._pending.add(symbol)

    def mark_opened(self, symbol: str, ticket: Optional[str]) -> None:
        self._pending.discard(symbol)
        if ticket:
            self._phases[ticket] = PositionPhase.OPEN
            self._symbols[ticket] = symbol

    def mark_failed(self, symbol: str) -> None:
        self._pending.discard(symbol)

    def sync(self, positions: Iterable[OpenPosition], symbol: Optional[str] = None) -> List[str]:
        """
        Reconcile phases with the gateway's open positions.

        Tickets the gateway no longer reports are marked CLOSED. When symbol
        is given, positions is taken to be the full list for that symbol
        only, and other symbols' tickets are left alone.

        Returns:
            Tickets that closed since the last sync
        """
        live = set()
        for position in positions:
            live.add(position.ticket)
            self._phases.setdefault(position.ticket, PositionPhase.OPEN)
            self._symbols[position.ticket] = position.symbol

        closed = []
        for ticket, phase in list(self._phases.items()):
            if ticket in live or phase == PositionPhase.CLOSED:
                continue
            if symbol is not None and self._symbols.get(ticket) != symbol:
                continue
            self._phases[ticket] = PositionPhase.CLOSED
            closed.append(ticket)
            logger.info(f"Position {ticket} closed")
        return closed

    # Position management

    def compute_stop_update(
        self,
        position: OpenPosition,
        quote: Quote,
        atr: float,
        spec: InstrumentSpec
    ) -> Optional[StopUpdate]:
        """
        Next stop for a position, or None when it should stay where it is.

        Breakeven promotion once profit reaches breakeven_trigger_atr x ATR;
        trailing at trailing_distance_atr x ATR once profit reaches
        trailing_start_atr x ATR. The result only ever tightens the stop.
        """
        if atr is None or atr <= 0:
            logger.debug(f"{position.symbol}: no ATR, position {position.ticket} left unchanged")
            return None

        side = position.side
        profit = position.profit_distance(quote)
        current = position.stop_loss if position.has_stop() else None

        candidate: Optional[float] = None
        reason = None

        if self.config.breakeven_enabled and profit >= self.config.breakeven_trigger_atr * atr:
            breakeven = spec.normalize_price(
                position.entry_price + side.sign * self.config.breakeven_lock_points * spec.point
            )
            if self._improves(side, current, breakeven):
                candidate, reason = breakeven, 'breakeven'

        if self.config.trailing_enabled and profit >= self.config.trailing_start_atr * atr:
            market = quote.bid if side is TradeSide.BUY else quote.ask
            trail = spec.normalize_price(market - side.sign * self.config.trailing_distance_atr * atr)
            best = candidate if candidate is not None else current
            if self._improves(side, best, trail):
                candidate, reason = trail, 'trailing'

        if candidate is None:
            return None

        min_step = self.config.min_stop_step_points * spec.point
        if current is not None and abs(candidate - current) < min_step - 1e-12:
            return None

        return StopUpdate(
            ticket=position.ticket,
            symbol=position.symbol,
            old_stop=position.stop_loss,
            new_stop=candidate,
            reason=reason
        )

    def manage_position(
        self,
        position: OpenPosition,
        quote: Quote,
        atr: float,
        spec: InstrumentSpec
    ) -> Optional[StopUpdate]:
        """
        Apply breakeven/trailing to one position through the gateway.

        Returns:
            The applied StopUpdate, or None when nothing changed or the
            gateway refused the modification
        """
        update = self.compute_stop_update(position, quote, atr, spec)
        if update is None:
            return None

        if self.gateway is None:
            raise RuntimeError("TradeLifecycleManager needs a gateway to modify positions")

        result = self.gateway.modify_position(position.ticket, update.new_stop, position.take_profit)
        if not result.success:
            logger.error(
                f"{position.symbol}: ExecutionRejected: stop move {update.old_stop} -> "
                f"{update.new_stop} on {position.ticket}: {result.error_message}"
            )
            return None

        self._phases[position.ticket] = (
            PositionPhase.TRAILING if update.reason == 'trailing' else PositionPhase.BREAKEVEN
        )
        logger.info(
            f"{position.symbol}: {update.reason} stop {update.old_stop} -> {update.new_stop} "
            f"on {position.ticket}"
        )
        return update

    @staticmethod
    def _improves(side: TradeSide, current: Optional[float], candidate: float) -> bool:
        """Whether candidate is strictly tighter than current."""
        if current is None:
            return True
        if side is TradeSide.BUY:
            return candidate > current
        return candidate < current
