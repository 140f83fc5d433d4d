"""
gateway.py - Collaborator Interfaces and Value Types

The decision engine talks to the outside world only through the narrow
interfaces defined here: market data, account state and the execution
gateway. Broker connectivity lives behind these interfaces and is not part
of this package; `execution.paper_gateway` provides in-memory versions.
"""

from __future__ import annotations

import logging
import math
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import pandas as pd

from strategies.base import TradeSide


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstrumentSpec:
    """
    Static trading properties of an instrument.

    Attributes:
        symbol: Instrument identifier
        point: Smallest price increment
        digits: Quote precision
        tick_size: Price change one tick_value refers to
        tick_value: Account-currency value of one tick for one lot
        contract_size: Units per lot
        min_lot / max_lot / volume_step: Volume constraints
    """
    symbol: str
    point: float = 0.00001
    digits: int = 5
    tick_size: float = 0.00001
    tick_value: float = 1.0
    contract_size: float = 100000.0
    min_lot: float = 0.01
    max_lot: float = 100.0
    volume_step: float = 0.01

    def __post_init__(self):
        if self.point <= 0 or self.tick_size <= 0 or self.tick_value <= 0:
            raise ValueError(f"{self.symbol}: point, tick_size and tick_value must be positive")
        if self.volume_step <= 0 or self.min_lot <= 0 or self.max_lot < self.min_lot:
            raise ValueError(f"{self.symbol}: invalid volume constraints")

    @property
    def pip_size(self) -> float:
        """One pip: ten points on 3/5-digit quotes, one point otherwise."""
        return self.point * 10 if self.digits in (3, 5) else self.point

    def normalize_price(self, price: float) -> float:
        return round(price, self.digits)

    def loss_per_lot(self, stop_distance: float) -> float:
        """Account-currency loss of one lot if price moves stop_distance."""
        return stop_distance / self.tick_size * self.tick_value


@dataclass(frozen=True)
class Quote:
    """Current top of book."""
    symbol: str
    bid: float
    ask: float
    time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def spread(self) -> float:
        return self.ask - self.bid

    def spread_points(self, spec: InstrumentSpec) -> float:
        return round(self.spread() / spec.point, 1)

    def spread_pips(self, spec: InstrumentSpec) -> float:
        return self.spread() / spec.pip_size


@dataclass(frozen=True)
class AccountSnapshot:
    """Account state at one instant."""
    balance: float
    equity: float
    free_margin: float

    @property
    def drawdown_percent(self) -> float:
        if self.balance <= 0:
            return 0.0
        return (self.balance - self.equity) / self.balance * 100.0


@dataclass(frozen=True)
class TradeIntent:
    """Fully resolved order about to be submitted."""
    symbol: str
    side: TradeSide
    size: float
    confidence: float
    entry_price: float
    stop_loss: float
    take_profit: float
    owner_tag: int = 0
    comment: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'side': self.side.value,
            'size': self.size,
            'confidence': self.confidence,
            'entry_price': self.entry_price,
            'stop_loss': self.stop_loss,
            'take_profit': self.take_profit,
            'owner_tag': self.owner_tag,
            'comment': self.comment
        }


@dataclass
class OpenPosition:
    """
    Position record owned by the execution gateway.

    The engine reads it and asks the gateway for modifications; it never
    creates or removes one itself.
    """
    ticket: str
    symbol: str
    side: TradeSide
    volume: float
    entry_price: float
    stop_loss: float
    take_profit: float
    owner_tag: int = 0
    opened_at: Optional[datetime] = None

    def profit_distance(self, quote: Quote) -> float:
        """Favourable price distance at the closing side of the book."""
        if self.side is TradeSide.BUY:
            return quote.bid - self.entry_price
        return self.entry_price - quote.ask

    def has_stop(self) -> bool:
        return self.stop_loss is not None and self.stop_loss > 0 and math.isfinite(self.stop_loss)


class OrderStatus(Enum):
    """Order status."""
    FILLED = "filled"
    REJECTED = "rejected"


@dataclass
class ExecutionResult:
    """
    Gateway answer to an order or modification.

    Attributes:
        success: Whether the gateway accepted the request
        status: Resulting order status
        ticket: Position ticket when filled
        fill_price: Average fill price
        error_message: Gateway error when rejected
    """
    success: bool
    status: OrderStatus
    ticket: Optional[str] = None
    fill_price: float = 0.0
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def rejected(cls, message: str, **metadata) -> 'ExecutionResult':
        return cls(success=False, status=OrderStatus.REJECTED, error_message=message, metadata=metadata)

    @classmethod
    def filled(cls, fill_price: float, ticket: Optional[str] = None) -> 'ExecutionResult':
        return cls(
            success=True,
            status=OrderStatus.FILLED,
            ticket=ticket or f"pos_{uuid.uuid4().hex[:8]}",
            fill_price=fill_price
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'status': self.status.value,
            'ticket': self.ticket,
            'fill_price': self.fill_price,
            'error_message': self.error_message,
            'timestamp': self.timestamp.isoformat()
        }


class MarketDataProvider(ABC):
    """Synchronous market data collaborator."""

    @abstractmethod
    def get_bars(self, symbol: str, timeframe: str, count: int) -> pd.DataFrame:
        """
        Most recent `count` bars, oldest first.

        Columns: timestamp, open, high, low, close, volume. Fewer rows than
        requested means the history is insufficient.
        """

    @abstractmethod
    def get_quote(self, symbol: str) -> Quote:
        """Current bid/ask."""

    @abstractmethod
    def get_instrument(self, symbol: str) -> InstrumentSpec:
        """Static instrument properties."""


class AccountProvider(ABC):
    """Account state collaborator."""

    @abstractmethod
    def snapshot(self) -> AccountSnapshot:
        """Balance, equity and free margin."""

    @abstractmethod
    def margin_per_lot(self, symbol: str, side: TradeSide) -> float:
        """Initial margin required for one lot of symbol."""


class ExecutionGateway(ABC):
    """Order placement and position management collaborator."""

    @abstractmethod
    def place_order(self, intent: TradeIntent, deviation_points: int = 0) -> ExecutionResult:
        """Submit a market order with protective levels."""

    @abstractmethod
    def modify_position(self, ticket: str, stop_loss: float, take_profit: float) -> ExecutionResult:
        """Change protective levels of an existing position."""

    @abstractmethod
    def open_positions(self, owner_tag: int, symbol: Optional[str] = None) -> List[OpenPosition]:
        """Open positions tagged with owner_tag, optionally for one symbol."""
