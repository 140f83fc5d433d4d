"""
paper_gateway.py - In-Memory Paper Collaborators

Paper-trading implementations of the market data, account and execution
interfaces. Bars, quotes and instrument specs are loaded by the host (or a
test); orders fill immediately at the intent's entry price, positions are
tracked per ticket and closing one realises its PnL into the balance.

Used for dry runs of the decision engine and throughout the test suite.
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pandas as pd

from data.candles import OHLCV_COLUMNS, CandleProcessor
from execution.gateway import (
    AccountProvider,
    AccountSnapshot,
    ExecutionGateway,
    ExecutionResult,
    InstrumentSpec,
    MarketDataProvider,
    OpenPosition,
    Quote,
    TradeIntent,
)
from strategies.base import TradeSide


logger = logging.getLogger(__name__)


class PaperMarketData(MarketDataProvider):
    """
    Market data served from frames and quotes loaded in memory.

    Bars are stored per (symbol, timeframe); get_bars returns the most
    recent `count` rows, oldest first.
    """

    def __init__(self):
        self._bars: Dict[tuple, pd.DataFrame] = {}
        self._quotes: Dict[str, Quote] = {}
        self._specs: Dict[str, InstrumentSpec] = {}

    def set_bars(self, symbol: str, timeframe: str, bars: pd.DataFrame) -> None:
        CandleProcessor.validate(bars)
        self._bars[(symbol, timeframe)] = CandleProcessor.clean(bars)

    def load_rows(self, symbol: str, timeframe: str, rows: List[List]) -> None:
        """Load raw [timestamp, open, high, low, close, volume] rows (epoch seconds)."""
        self._bars[(symbol, timeframe)] = CandleProcessor.from_list(rows)

    def set_quote(self, symbol: str, bid: float, ask: float, time: Optional[datetime] = None) -> Quote:
        if ask < bid:
            raise ValueError(f"{symbol}: ask {ask} below bid {bid}")
        quote = Quote(symbol=symbol, bid=bid, ask=ask, time=time or datetime.now(timezone.utc))
        self._quotes[symbol] = quote
        return quote

    def add_instrument(self, spec: InstrumentSpec) -> None:
        self._specs[spec.symbol] = spec

    def get_bars(self, symbol: str, timeframe: str, count: int) -> pd.DataFrame:
        bars = self._bars.get((symbol, timeframe))
        if bars is None:
            logger.debug(f"{symbol}: no {timeframe} bars loaded")
            return pd.DataFrame(columns=OHLCV_COLUMNS)
        return bars.tail(count).reset_index(drop=True)

    def get_quote(self, symbol: str) -> Quote:
        try:
            return self._quotes[symbol]
        except KeyError:
            raise KeyError(f"no quote loaded for {symbol}") from None

    def get_instrument(self, symbol: str) -> InstrumentSpec:
        spec = self._specs.get(symbol)
        if spec is None:
            spec = InstrumentSpec(symbol=symbol)
            self._specs[symbol] = spec
        return spec


class PaperAccount(AccountProvider):
    """
    Account with a settable balance and equity.

    Margin per lot is contract_size * price / leverage, priced from the
    market data quote.

    Args:
        market_data: Source of quotes and instrument specs
        balance: Starting balance
        leverage: Account leverage
    """

    def __init__(self, market_data: MarketDataProvider, balance: float = 10000.0, leverage: float = 100.0):
        if balance < 0:
            raise ValueError(f"balance must be non-negative, got {balance}")
        if leverage <= 0:
            raise ValueError(f"leverage must be positive, got {leverage}")

        self.market_data = market_data
        self.balance = balance
        self.equity = balance
        self.leverage = leverage
        self.used_margin = 0.0

    def snapshot(self) -> AccountSnapshot:
        return AccountSnapshot(
            balance=self.balance,
            equity=self.equity,
            free_margin=max(0.0, self.equity - self.used_margin)
        )

    def margin_per_lot(self, symbol: str, side: TradeSide) -> float:
        spec = self.market_data.get_instrument(symbol)
        quote = self.market_data.get_quote(symbol)
        price = quote.ask if side is TradeSide.BUY else quote.bid
        return spec.contract_size * price / self.leverage

    def realise(self, pnl: float) -> None:
        self.balance += pnl
        self.equity += pnl


class PaperExecutionGateway(ExecutionGateway):
    """
    Immediate-fill paper gateway.

    Args:
        market_data: Quotes and instrument specs for validation and closing
        account: Account to charge margin against and realise PnL into
    """

    def __init__(self, market_data: MarketDataProvider, account: Optional[PaperAccount] = None):
        self.market_data = market_data
        self.account = account
        self._positions: Dict[str, OpenPosition] = {}
        self._reject_next: Optional[str] = None
        self._lock = threading.Lock()

        self.orders: List[TradeIntent] = []
        self.modifications: List[tuple] = []

        logger.info("PaperExecutionGateway initialized")

    def reject_next(self, message: str = "rejected by paper gateway") -> None:
        """Make the next order or modification fail with message."""
        self._reject_next = message

    def _take_rejection(self) -> Optional[str]:
        message, self._reject_next = self._reject_next, None
        return message

    def place_order(self, intent: TradeIntent, deviation_points: int = 0) -> ExecutionResult:
        with self._lock:
            self.orders.append(intent)

            message = self._take_rejection()
            if message:
                logger.warning(f"{intent.symbol}: paper order rejected: {message}")
                return ExecutionResult.rejected(message)

            if intent.size <= 0:
                return ExecutionResult.rejected(f"invalid volume {intent.size}")

            if intent.side is TradeSide.BUY and not intent.stop_loss < intent.entry_price < intent.take_profit:
                return ExecutionResult.rejected("invalid stops for buy order")
            if intent.side is TradeSide.SELL and not intent.take_profit < intent.entry_price < intent.stop_loss:
                return ExecutionResult.rejected("invalid stops for sell order")

            ticket = f"paper_{uuid.uuid4().hex[:8]}"
            self._positions[ticket] = OpenPosition(
                ticket=ticket,
                symbol=intent.symbol,
                side=intent.side,
                volume=intent.size,
                entry_price=intent.entry_price,
                stop_loss=intent.stop_loss,
                take_profit=intent.take_profit,
                owner_tag=intent.owner_tag,
                opened_at=datetime.now(timezone.utc)
            )

            if self.account is not None:
                self.account.used_margin += intent.size * self.account.margin_per_lot(intent.symbol, intent.side)

        logger.info(f"{intent.symbol}: paper fill {intent.side} {intent.size} @ {intent.entry_price} ({ticket})")
        return ExecutionResult.filled(intent.entry_price, ticket)

    def modify_position(self, ticket: str, stop_loss: float, take_profit: float) -> ExecutionResult:
        with self._lock:
            self.modifications.append((ticket, stop_loss, take_profit))

            message = self._take_rejection()
            if message:
                return ExecutionResult.rejected(message)

            position = self._positions.get(ticket)
            if position is None:
                return ExecutionResult.rejected(f"unknown position {ticket}")

            position.stop_loss = stop_loss
            position.take_profit = take_profit

        return ExecutionResult.filled(position.entry_price, ticket)

    def open_positions(self, owner_tag: int, symbol: Optional[str] = None) -> List[OpenPosition]:
        with self._lock:
            return [
                position for position in self._positions.values()
                if position.owner_tag == owner_tag and (symbol is None or position.symbol == symbol)
            ]

    def close_position(self, ticket: str, price: Optional[float] = None) -> float:
        """
        Close a position at price (default: the closing side of the quote).

        Returns:
            Realised PnL in account currency
        """
        with self._lock:
            position = self._positions.pop(ticket, None)
        if position is None:
            raise KeyError(f"unknown position {ticket}")

        spec = self.market_data.get_instrument(position.symbol)
        if price is None:
            quote = self.market_data.get_quote(position.symbol)
            price = quote.bid if position.side is TradeSide.BUY else quote.ask

        distance = (price - position.entry_price) * position.side.sign
        pnl = distance / spec.tick_size * spec.tick_value * position.volume

        if self.account is not None:
            self.account.used_margin = max(
                0.0,
                self.account.used_margin - position.volume * self.account.margin_per_lot(position.symbol, position.side)
            )
            self.account.realise(pnl)

        logger.info(f"{position.symbol}: closed {ticket} @ {price} pnl={pnl:.2f}")
        return pnl
