"""
engine.py - Decision Engine

Orchestrates one decision cycle per instrument. This module contains ONLY
orchestration logic; signal, filter, sizing and lifecycle rules live in
their own modules.

Cycle order:
1. Day rollover of the daily counters
2. Management of open positions (runs even when entry is vetoed)
3. One-position-per-symbol check
4. Daily risk governor
5. Internal signal (features) and external signal admission
6. Signal fusion and strength/confidence thresholds
7. Filter pipeline
8. Entry price and protective levels
9. Position sizing and pre-trade capital check
10. Order submission and trade recording

Every cycle ends in a CycleOutcome. Non-trade outcomes carry a SkipReason
and are logged as structured events and counted in the metrics; no failure
escapes run_cycle.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from core.config import EngineConfig, load_config
from core.errors import (
    DataInsufficient,
    EngineError,
    ExecutionRejected,
    RiskLimitBreached,
    SizingDegenerate,
)
from execution.gateway import AccountProvider, ExecutionGateway, MarketDataProvider
from execution.order_manager import OrderManager
from execution.trade_lifecycle import StopUpdate, TradeLifecycleManager
from monitoring.logger import LoggerManager
from monitoring.metrics import DecisionMetrics
from risk.daily_governor import DailyCounters, DailyRiskGovernor
from risk.performance import PerformanceStatsProvider, StaticPerformanceStats
from risk.position_sizing import RiskSizer
from strategies.external_signal import ExternalSignalAdapter, ExternalSignalFeed, FileSignalFeed
from strategies.features import FeatureSet, atr
from strategies.filters import FilterPipeline, MarketContext
from strategies.regime_detector import RegimeDetector
from strategies.signal_fusion import SignalFuser
from strategies.signal_generator import SignalGenerator


logger = logging.getLogger(__name__)


class CycleStatus(Enum):
    TRADED = "traded"
    SKIPPED = "skipped"

    def __str__(self):
        return self.value


class SkipReason(Enum):
    """Why a cycle ended without a new trade."""
    POSITION_OPEN = "position_open"
    GOVERNOR_VETO = "governor_veto"
    INSUFFICIENT_DATA = "insufficient_data"
    ZERO_CONFIDENCE = "zero_confidence"
    NO_DIRECTION = "no_direction"
    WEAK_SIGNAL = "weak_signal"
    LOW_CONFIDENCE = "low_confidence"
    FILTERED = "filtered"
    SIZING_REJECTED = "sizing_rejected"
    CAPITAL_CHECK = "capital_check"
    EXECUTION_REJECTED = "execution_rejected"
    ERROR = "error"

    def __str__(self):
        return self.value


_ERROR_REASONS = (
    (DataInsufficient, SkipReason.INSUFFICIENT_DATA),
    (RiskLimitBreached, SkipReason.GOVERNOR_VETO),
    (SizingDegenerate, SkipReason.SIZING_REJECTED),
    (ExecutionRejected, SkipReason.EXECUTION_REJECTED),
)


def skip_reason_for(error: EngineError) -> SkipReason:
    for error_cls, reason in _ERROR_REASONS:
        if isinstance(error, error_cls):
            return reason
    return SkipReason.ERROR


@dataclass
class CycleOutcome:
    """
    Result of one decision cycle for one instrument.

    Attributes:
        symbol: Instrument identifier
        status: TRADED or SKIPPED
        reason: Skip reason when skipped
        message: Human-readable detail
        details: Structured values behind the decision
        timestamp: Decision time
    """
    symbol: str
    status: CycleStatus
    reason: Optional[SkipReason] = None
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def traded(self) -> bool:
        return self.status == CycleStatus.TRADED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'status': self.status.value,
            'reason': self.reason.value if self.reason else None,
            'message': self.message,
            'details': self.details,
            'timestamp': self.timestamp.isoformat()
        }

    def __repr__(self) -> str:
        if self.traded:
            return f"CycleOutcome({self.symbol}, traded)"
        return f"CycleOutcome({self.symbol}, skipped: {self.reason.value})"


class DecisionEngine:
    """
    Per-instrument decision cycle over the collaborator interfaces.

    Args:
        config: Engine configuration
        market_data: Bars, quotes and instrument specs
        account: Account state
        gateway: Order placement and position management
        performance: Historical performance statistics (defaults to the
            static figures in config.performance)
        signal_feed: External signal source (defaults to a FileSignalFeed
            when external signals are enabled)
        events: Structured event logger
        metrics: Decision counters
        counters: Daily counters to start from
    """

    def __init__(
        self,
        config: EngineConfig,
        market_data: MarketDataProvider,
        account: AccountProvider,
        gateway: ExecutionGateway,
        performance: Optional[PerformanceStatsProvider] = None,
        signal_feed: Optional[ExternalSignalFeed] = None,
        events: Optional[LoggerManager] = None,
        metrics: Optional[DecisionMetrics] = None,
        counters: Optional[DailyCounters] = None
    ):
        self.config = config
        self.market_data = market_data
        self.account = account
        self.gateway = gateway
        if performance is None:
            performance = StaticPerformanceStats(config.performance)
            logger.warning(
                f"No performance statistics provider: Kelly sizing uses configured figures for "
                f"{sorted(config.performance)} and the minimum fraction for every other symbol"
            )
        self.performance = performance
        self.events = events or LoggerManager()
        self.metrics = metrics or DecisionMetrics()
        self.counters = counters or DailyCounters()

        self.generator = SignalGenerator()
        self.external_adapter: Optional[ExternalSignalAdapter] = None
        ext = config.external_signal
        if ext.enabled:
            feed = signal_feed or FileSignalFeed(ext.directory, ext.filename_template)
            self.external_adapter = ExternalSignalAdapter(feed, ext.max_age_seconds, ext.min_confidence)

        self.fuser = SignalFuser(config.fusion.external_threshold)
        self.filters = FilterPipeline(config.filters, RegimeDetector(config.filters.choppy_threshold))
        self.sizer = RiskSizer(config.risk, config.sizing)
        self.governor = DailyRiskGovernor(config.risk, config.day_rollover_hour)
        self.lifecycle = TradeLifecycleManager(config.lifecycle, gateway)
        self.order_manager = OrderManager(gateway, config.execution)

        logger.info(
            f"DecisionEngine initialized: symbols={list(config.symbols)}, owner_tag={config.owner_tag}, "
            f"external_signals={'on' if self.external_adapter else 'off'}"
        )

    # Public entry points

    def run_cycle(self, symbol: str, now: Optional[datetime] = None) -> CycleOutcome:
        """
        Run one full decision cycle for symbol.

        Args:
            symbol: Instrument identifier
            now: Decision time (defaults to current UTC time)

        Returns:
            CycleOutcome
        """
        now = now or datetime.now(timezone.utc)
        try:
            outcome = self._evaluate(symbol, now)
        except EngineError as e:
            outcome = self._skip(symbol, now, skip_reason_for(e), str(e), e.details)
        except Exception as e:
            logger.error(f"{symbol}: cycle failed: {e}", exc_info=True)
            self.events.log_error("cycle.error", str(e), {'symbol': symbol})
            outcome = self._skip(symbol, now, SkipReason.ERROR, str(e))

        self.metrics.record_outcome(symbol, outcome.status.value, outcome.reason.value if outcome.reason else None)
        self.events.log_decision(outcome.to_dict())
        return outcome

    def run_all(self, now: Optional[datetime] = None) -> Dict[str, CycleOutcome]:
        """Run one cycle for every configured symbol."""
        now = now or datetime.now(timezone.utc)
        return {symbol: self.run_cycle(symbol, now) for symbol in self.config.symbols}

    def manage_positions(self, symbol: str, now: Optional[datetime] = None) -> List[StopUpdate]:
        """
        Breakeven/trailing management for this engine's open positions.

        Returns:
            Stop updates applied this call
        """
        positions = self.gateway.open_positions(self.config.owner_tag, symbol)
        for ticket in self.lifecycle.sync(positions, symbol):
            self.events.log_event("position.closed", {'symbol': symbol, 'ticket': ticket})

        if not positions:
            return []

        try:
            quote = self.market_data.get_quote(symbol)
            spec = self.market_data.get_instrument(symbol)
            atr_value = self._stop_atr(symbol)
        except Exception as e:
            logger.error(f"{symbol}: position management skipped: {e}")
            return []

        updates = []
        for position in positions:
            update = self.lifecycle.manage_position(position, quote, atr_value, spec)
            if update is None:
                continue
            updates.append(update)
            self.metrics.record_stop_update(symbol, update.reason)
            self.events.log_event("stop.update", {
                'symbol': symbol,
                'ticket': update.ticket,
                'reason': update.reason,
                'old_stop': update.old_stop,
                'new_stop': update.new_stop
            })
        return updates

    def record_closed_pnl(self, symbol: str, pnl: float) -> None:
        """Feed the realised PnL of a closed trade into the daily counters."""
        self.governor.record_pnl(self.counters, pnl)
        self.metrics.record_closed_trade(symbol, pnl)
        self.events.log_event("trade.closed", {'symbol': symbol, 'pnl': pnl, 'pnl_today': self.counters.pnl_today})

    # Cycle

    def _evaluate(self, symbol: str, now: datetime) -> CycleOutcome:
        self.governor.roll(self.counters, now)
        self.manage_positions(symbol, now)

        if self.lifecycle.is_pending(symbol) or self.gateway.open_positions(self.config.owner_tag, symbol):
            return self._skip(symbol, now, SkipReason.POSITION_OPEN, "position already open")

        account = self.account.snapshot()
        verdict = self.governor.check(self.counters, account)
        if not verdict.approved:
            raise RiskLimitBreached(verdict.message, symbol, verdict.to_dict())

        signal_config = self.config.signal
        bars = self.market_data.get_bars(symbol, signal_config.timeframe, signal_config.bars)
        internal, features = self.generator.evaluate(symbol, bars, now)

        external = self.external_adapter.admit(symbol, now) if self.external_adapter else None
        composite = self.fuser.fuse(internal, external)
        side = composite.side

        details: Dict[str, Any] = {
            'direction': composite.direction,
            'confidence': composite.confidence,
            'fused': composite.fused,
            'internal_direction': internal.direction,
            'external_direction': external.direction if external else None
        }

        if composite.confidence <= 0:
            return self._skip(symbol, now, SkipReason.ZERO_CONFIDENCE, "signal confidence is zero", details)
        if side is None:
            return self._skip(symbol, now, SkipReason.NO_DIRECTION, "no directional conviction", details)
        if composite.strength < signal_config.min_signal_strength:
            return self._skip(
                symbol, now, SkipReason.WEAK_SIGNAL,
                f"strength {composite.strength:.3f} < {signal_config.min_signal_strength}", details
            )
        if composite.confidence < signal_config.min_confidence:
            return self._skip(
                symbol, now, SkipReason.LOW_CONFIDENCE,
                f"confidence {composite.confidence:.3f} < {signal_config.min_confidence}", details
            )

        quote = self.market_data.get_quote(symbol)
        spec = self.market_data.get_instrument(symbol)
        context = MarketContext(symbol=symbol, features=features, spread_points=quote.spread_points(spec), now=now)
        filtered = self.filters.evaluate(context, composite.strength, side)
        if not filtered.passed:
            details['failed_gate'] = filtered.failed_gate
            return self._skip(symbol, now, SkipReason.FILTERED, filtered.reason, details)

        levels = self.lifecycle.plan_levels(side, quote, self._stop_atr(symbol, features), composite.confidence, spec)

        sizing = self.sizer.size(
            symbol,
            composite.strength,
            composite.confidence,
            account,
            spec,
            self.performance.get_stats(symbol),
            levels.stop_distance,
            features.volatility_ratio
        )
        if not sizing.approved:
            raise SizingDegenerate(sizing.rejection_reason, symbol, sizing.to_dict())
        details['lots'] = sizing.lots
        details['capped_by'] = sizing.capped_by.value

        allowed, reason = self.sizer.check_trade(
            symbol, sizing.lots, account, self.account.margin_per_lot(symbol, side)
        )
        if not allowed:
            return self._skip(symbol, now, SkipReason.CAPITAL_CHECK, reason, details)

        if not self.governor.try_record_trade(self.counters):
            raise RiskLimitBreached("daily trade cap reached", symbol, self.counters.to_dict())

        intent = self.lifecycle.build_intent(
            symbol, side, sizing.lots, composite.confidence, levels, self.config.owner_tag
        )
        self.lifecycle.mark_pending(symbol)
        try:
            result = self.order_manager.submit(intent, quote, spec)
        except Exception:
            self.governor.release_trade(self.counters)
            self.lifecycle.mark_failed(symbol)
            raise
        self.metrics.record_order(symbol, result.success)
        self.events.log_trade({**intent.to_dict(), **result.to_dict()})

        if not result.success:
            self.governor.release_trade(self.counters)
            self.lifecycle.mark_failed(symbol)
            raise ExecutionRejected(result.error_message or "order rejected", symbol, result.to_dict())

        self.lifecycle.mark_opened(symbol, result.ticket)
        details.update({
            'ticket': result.ticket,
            'side': side.value,
            'entry_price': levels.entry_price,
            'stop_loss': levels.stop_loss,
            'take_profit': levels.take_profit
        })
        return CycleOutcome(symbol=symbol, status=CycleStatus.TRADED, details=details, timestamp=now)

    def _stop_atr(self, symbol: str, features: Optional[FeatureSet] = None) -> float:
        """ATR on the stop timeframe, falling back to the signal timeframe."""
        signal_config = self.config.signal
        value = atr(self.market_data.get_bars(symbol, signal_config.atr_timeframe, signal_config.bars))
        if value > 0:
            return value

        logger.debug(f"{symbol}: no {signal_config.atr_timeframe} ATR, using {signal_config.timeframe}")
        if features is not None:
            return features.atr
        return atr(self.market_data.get_bars(symbol, signal_config.timeframe, signal_config.bars))

    def _skip(
        self,
        symbol: str,
        now: datetime,
        reason: SkipReason,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> CycleOutcome:
        logger.info(f"{symbol}: skipped ({reason.value}): {message}")
        return CycleOutcome(
            symbol=symbol,
            status=CycleStatus.SKIPPED,
            reason=reason,
            message=message,
            details=dict(details or {}),
            timestamp=now
        )


def build_engine(
    market_data: MarketDataProvider,
    account: AccountProvider,
    gateway: ExecutionGateway,
    config: Optional[EngineConfig] = None,
    **kwargs
) -> DecisionEngine:
    """
    Create an engine with its event logger configured from
    config.monitoring. Loads the configuration file when config is None.
    """
    config = config or load_config()

    events = kwargs.pop('events', None)
    if events is None:
        events = LoggerManager()
        events.configure(level=config.monitoring.log_level, log_file=config.monitoring.log_file)

    return DecisionEngine(config, market_data, account, gateway, events=events, **kwargs)
