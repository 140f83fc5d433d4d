"""
features.py - Feature Extractors

Pure functions deriving scalar indicators from a bounded window of bars for
one instrument. No hidden state: the same window always yields the same
FeatureSet.

Every extractor degrades to its neutral default (0.0) when the window is
shorter than it needs, so early history never crashes the pipeline.

Bar windows are oldest-first (last row is the most recent bar).
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from data.candles import Indicators


logger = logging.getLogger(__name__)

NEUTRAL = 0.0

RSI_PERIOD = 14
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9
BB_PERIOD = 20
BB_STD_DEV = 2.0
ADX_PERIOD = 14
ATR_PERIOD = 14
VOLUME_DELTA_PERIOD = 20
VOLATILITY_BASELINE_PERIOD = 50
TRAP_LOOKBACK = 3
TRAP_WICK_RATIO = 2.0

# Minimum window lengths per extractor
MIN_BARS_RSI = RSI_PERIOD + 1
MIN_BARS_MACD = MACD_SLOW + MACD_SIGNAL
MIN_BARS_BANDS = BB_PERIOD
MIN_BARS_ADX = 2 * ADX_PERIOD
MIN_BARS_ATR = ATR_PERIOD + 1
MIN_BARS_VOLATILITY_RATIO = VOLATILITY_BASELINE_PERIOD + 1


@dataclass(frozen=True)
class FeatureSet:
    """
    Scalar features for one instrument at one evaluation instant.

    Directional contributions (momentum, trend_confirmation, band_position,
    reversal_trap) are signed scores; the rest are inputs to confidence,
    filters and protective levels.
    """
    symbol: str
    rsi: float = NEUTRAL
    momentum: float = NEUTRAL
    trend_confirmation: float = NEUTRAL
    band_position: float = NEUTRAL
    adx: float = NEUTRAL
    trend_strength: float = NEUTRAL
    volume_delta: float = NEUTRAL
    reversal_trap: float = NEUTRAL
    atr: float = NEUTRAL
    volatility_ratio: float = NEUTRAL
    bars: int = 0

    def directional_contributions(self) -> Dict[str, float]:
        """Signed features that vote on direction."""
        return {
            'momentum': self.momentum,
            'trend_confirmation': self.trend_confirmation,
            'band_position': self.band_position,
            'reversal_trap': self.reversal_trap,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _last(series: pd.Series) -> Optional[float]:
    """Last value of a series, or None when it is missing or not finite."""
    if series is None or series.empty:
        return None
    value = series.iloc[-1]
    if value is None or not math.isfinite(float(value)):
        return None
    return float(value)


def _insufficient(name: str, bars: pd.DataFrame, required: int) -> bool:
    if len(bars) < required:
        logger.debug(f"DataInsufficient: {name} needs {required} bars, got {len(bars)}")
        return True
    return False


# Threshold maps

def momentum_from_oscillator(value: Optional[float]) -> float:
    """
    Map a [0, 100] oscillator reading to a mean-reversion momentum score.

    >70 -> -0.8, 60-70 -> -0.4, <30 -> +0.8, 30-40 -> +0.4, else 0.
    """
    if value is None or not math.isfinite(value):
        return NEUTRAL
    if value > 70:
        return -0.8
    if value > 60:
        return -0.4
    if value < 30:
        return 0.8
    if value < 40:
        return 0.4
    return NEUTRAL


def trend_confirmation_score(macd_main: Optional[float], macd_signal: Optional[float]) -> float:
    """
    Compare the MACD line with its signal line and with the zero line.

    Both agreeing gives +/-0.6; only the signal-line cross agreeing gives
    +/-0.3.
    """
    if macd_main is None or macd_signal is None:
        return NEUTRAL
    if macd_main > macd_signal and macd_main > 0:
        return 0.6
    if macd_main < macd_signal and macd_main < 0:
        return -0.6
    if macd_main > macd_signal:
        return 0.3
    if macd_main < macd_signal:
        return -0.3
    return NEUTRAL


def band_position_score(price: float, upper: Optional[float], middle: Optional[float], lower: Optional[float]) -> float:
    """
    Position of price relative to the volatility band.

    Outside the band fades the move (+/-0.8); inside, the side of the middle
    line gives a weak trend vote (+/-0.2).
    """
    if upper is None or middle is None or lower is None:
        return NEUTRAL
    if price > upper:
        return -0.8
    if price < lower:
        return 0.8
    if price > middle:
        return 0.2
    if price < middle:
        return -0.2
    return NEUTRAL


def trend_strength_score(adx: Optional[float]) -> float:
    """Map a directional-strength index to {0, 0.4, 0.7, 1.0}."""
    if adx is None or not math.isfinite(adx):
        return NEUTRAL
    if adx > 25:
        return 1.0
    if adx > 20:
        return 0.7
    if adx > 15:
        return 0.4
    return NEUTRAL


# Extractors

def rsi(bars: pd.DataFrame, period: int = RSI_PERIOD) -> float:
    """Last RSI value, neutral when the window is too short or flat."""
    if _insufficient('rsi', bars, period + 1):
        return NEUTRAL
    value = _last(Indicators.rsi(bars['close'], period))
    return NEUTRAL if value is None else value


def momentum(bars: pd.DataFrame) -> float:
    if _insufficient('momentum', bars, MIN_BARS_RSI):
        return NEUTRAL
    value = _last(Indicators.rsi(bars['close'], RSI_PERIOD))
    return momentum_from_oscillator(value)


def trend_confirmation(bars: pd.DataFrame) -> float:
    if _insufficient('trend_confirmation', bars, MIN_BARS_MACD):
        return NEUTRAL
    macd = Indicators.macd(bars['close'], MACD_FAST, MACD_SLOW, MACD_SIGNAL)
    return trend_confirmation_score(_last(macd['macd']), _last(macd['signal']))


def band_position(bars: pd.DataFrame) -> float:
    if _insufficient('band_position', bars, MIN_BARS_BANDS):
        return NEUTRAL
    bands = Indicators.bollinger_bands(bars['close'], BB_PERIOD, BB_STD_DEV)
    return band_position_score(
        float(bars['close'].iloc[-1]),
        _last(bands['bb_upper']),
        _last(bands['bb_middle']),
        _last(bands['bb_lower'])
    )


def adx(bars: pd.DataFrame, period: int = ADX_PERIOD) -> float:
    if _insufficient('adx', bars, 2 * period):
        return NEUTRAL
    value = _last(Indicators.adx(bars, period)['adx'])
    return NEUTRAL if value is None else value


def trend_strength(bars: pd.DataFrame) -> float:
    if _insufficient('trend_strength', bars, MIN_BARS_ADX):
        return NEUTRAL
    return trend_strength_score(adx(bars))


def reversal_trap(bars: pd.DataFrame, lookback: int = TRAP_LOOKBACK) -> float:
    """
    Detect a trap candle among the last `lookback` bars, newest first.

    A bullish candle with an upper wick at least twice its body, or a bearish
    candle with such a lower wick, votes against its own direction (+/-0.4).
    Zero-body candles have no direction and are skipped.
    """
    if _insufficient('reversal_trap', bars, lookback):
        return NEUTRAL

    recent = bars.tail(lookback).iloc[::-1]
    for bar in recent.itertuples(index=False):
        body = abs(bar.close - bar.open)
        if body <= 0:
            continue
        upper_wick = bar.high - max(bar.open, bar.close)
        lower_wick = min(bar.open, bar.close) - bar.low

        if bar.close > bar.open and upper_wick >= TRAP_WICK_RATIO * body:
            return -0.4
        if bar.close < bar.open and lower_wick >= TRAP_WICK_RATIO * body:
            return 0.4
    return NEUTRAL


def volume_delta(bars: pd.DataFrame, period: int = VOLUME_DELTA_PERIOD) -> float:
    """
    Order-flow proxy: signed volume share over the last `period` bars.

    Volume of up candles counts positive, of down candles negative; result
    is in [-1, 1].
    """
    if _insufficient('volume_delta', bars, period):
        return NEUTRAL
    window = bars.tail(period)
    total = float(window['volume'].sum())
    if total <= 0:
        return NEUTRAL
    signed = float((np.sign(window['close'] - window['open']) * window['volume']).sum())
    return max(-1.0, min(1.0, signed / total))


def atr(bars: pd.DataFrame, period: int = ATR_PERIOD) -> float:
    if _insufficient('atr', bars, period + 1):
        return NEUTRAL
    value = _last(Indicators.atr(bars, period))
    return NEUTRAL if value is None else value


def volatility_ratio(
    bars: pd.DataFrame,
    period: int = ATR_PERIOD,
    baseline: int = VOLATILITY_BASELINE_PERIOD
) -> float:
    """Recent mean true range over the baseline mean true range."""
    if _insufficient('volatility_ratio', bars, baseline + 1):
        return NEUTRAL
    true_range = Indicators.true_range(bars).dropna()
    average = float(true_range.tail(baseline).mean())
    if average <= 0:
        return NEUTRAL
    current = float(true_range.tail(period).mean())
    return current / average


def extract_features(symbol: str, bars: pd.DataFrame) -> FeatureSet:
    """
    Compute the full FeatureSet for one instrument.

    Args:
        symbol: Instrument identifier
        bars: Oldest-first OHLCV window

    Returns:
        FeatureSet; individual features are neutral where history is short
    """
    adx_value = adx(bars)
    rsi_value = rsi(bars)

    return FeatureSet(
        symbol=symbol,
        rsi=rsi_value,
        momentum=momentum(bars),
        trend_confirmation=trend_confirmation(bars),
        band_position=band_position(bars),
        adx=adx_value,
        trend_strength=trend_strength_score(adx_value),
        volume_delta=volume_delta(bars),
        reversal_trap=reversal_trap(bars),
        atr=atr(bars),
        volatility_ratio=volatility_ratio(bars),
        bars=len(bars)
    )
