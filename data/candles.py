"""
candles.py - OHLCV Data Transformation and Indicators

Provides utilities for turning raw bars handed over by the market data
collaborator into clean DataFrames, plus the technical indicators the
feature extractors are built on. Pure data processing with no trading
decision logic.

Bar windows are always ordered oldest-first: the last row is the most
recent bar.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np
import pandas as pd


logger = logging.getLogger(__name__)

OHLCV_COLUMNS = ['timestamp', 'open', 'high', 'low', 'close', 'volume']


class CandleProcessor:
    """
    Stateless processor for OHLCV candle data.

    Provides transformation and cleaning without any trading logic.
    """

    @staticmethod
    def from_list(
        raw_data: List[List],
        columns: Optional[List[str]] = None
    ) -> pd.DataFrame:
        """
        Convert raw OHLCV list data to DataFrame.

        Args:
            raw_data: List of lists containing OHLCV data
                     [[timestamp, open, high, low, close, volume], ...]
            columns: Column names (defaults to standard OHLCV)

        Returns:
            DataFrame with standardized columns, oldest bar first
        """
        columns = columns or OHLCV_COLUMNS

        if not raw_data:
            return pd.DataFrame(columns=columns)

        df = pd.DataFrame(raw_data, columns=columns)

        # Epoch seconds from the data collaborator
        if pd.api.types.is_numeric_dtype(df['timestamp']):
            df['timestamp'] = pd.to_datetime(df['timestamp'], unit='s', utc=True)

        for col in ['open', 'high', 'low', 'close', 'volume']:
            if col in df.columns:
                df[col] = pd.to_numeric(df[col], errors='coerce')

        return CandleProcessor.clean(df)

    @staticmethod
    def clean(df: pd.DataFrame) -> pd.DataFrame:
        """
        Clean OHLCV DataFrame.

        Sorts ascending by timestamp, drops duplicate timestamps and rows
        with nulls or inconsistent OHLC relationships.

        Args:
            df: Input DataFrame

        Returns:
            Cleaned DataFrame with a fresh RangeIndex
        """
        if df.empty:
            return df

        original_len = len(df)
        df = df.sort_values('timestamp')
        df = df.drop_duplicates(subset=['timestamp'], keep='last')
        df = df.dropna()

        valid_mask = (
            (df['high'] >= df['low']) &
            (df['high'] >= df['open']) &
            (df['high'] >= df['close']) &
            (df['low'] <= df['open']) &
            (df['low'] <= df['close'])
        )
        df = df[valid_mask]

        removed = original_len - len(df)
        if removed > 0:
            logger.debug(f"Cleaned {removed} rows from DataFrame")

        return df.reset_index(drop=True)

    @staticmethod
    def validate(df: pd.DataFrame) -> None:
        """
        Validate that a bar window has the required columns.

        Raises:
            ValueError: If the frame is not a DataFrame or misses columns
        """
        if not isinstance(df, pd.DataFrame):
            raise ValueError(f"bars must be pandas DataFrame, got {type(df)}")

        missing = [col for col in OHLCV_COLUMNS if col not in df.columns]
        if missing:
            raise ValueError(f"bars missing required columns: {missing}")


# Technical Indicators

class Indicators:
    """
    Collection of technical indicator calculations.

    All methods are static and stateless - pure mathematical transformations
    of price/volume data with no trading logic. Values that cannot be
    computed yet (warm-up) are NaN.
    """

    @staticmethod
    def sma(series: pd.Series, period: int) -> pd.Series:
        """Simple Moving Average (NaN until a full window is available)."""
        return series.rolling(window=period).mean()

    @staticmethod
    def ema(series: pd.Series, period: int) -> pd.Series:
        """Exponential Moving Average."""
        return series.ewm(span=period, adjust=False, min_periods=period).mean()

    @staticmethod
    def rsi(series: pd.Series, period: int = 14) -> pd.Series:
        """
        Relative Strength Index.

        Args:
            series: Price series
            period: RSI period (default 14)

        Returns:
            RSI series (0-100); 100 when there are no losses in the window,
            NaN when price did not move at all
        """
        delta = series.diff()
        gain = (delta.where(delta > 0, 0.0)).rolling(window=period).mean()
        loss = (-delta.where(delta < 0, 0.0)).rolling(window=period).mean()

        rs = gain / loss
        rsi = 100 - (100 / (1 + rs))
        rsi = rsi.where(~((loss == 0) & (gain > 0)), 100.0)

        return rsi

    @staticmethod
    def macd(
        series: pd.Series,
        fast: int = 12,
        slow: int = 26,
        signal: int = 9
    ) -> pd.DataFrame:
        """
        Moving Average Convergence Divergence.

        Returns:
            DataFrame with macd, signal, and histogram columns
        """
        ema_fast = Indicators.ema(series, fast)
        ema_slow = Indicators.ema(series, slow)

        macd_line = ema_fast - ema_slow
        signal_line = macd_line.ewm(span=signal, adjust=False, min_periods=signal).mean()
        histogram = macd_line - signal_line

        return pd.DataFrame({
            'macd': macd_line,
            'signal': signal_line,
            'histogram': histogram
        })

    @staticmethod
    def bollinger_bands(
        series: pd.Series,
        period: int = 20,
        std_dev: float = 2.0
    ) -> pd.DataFrame:
        """
        Bollinger Bands.

        Returns:
            DataFrame with bb_upper, bb_middle, bb_lower columns
        """
        middle = Indicators.sma(series, period)
        std = series.rolling(window=period).std(ddof=0)

        return pd.DataFrame({
            'bb_upper': middle + (std * std_dev),
            'bb_middle': middle,
            'bb_lower': middle - (std * std_dev)
        })

    @staticmethod
    def true_range(df: pd.DataFrame) -> pd.Series:
        """
        True Range. The first bar has no previous close and is NaN.
        """
        prev_close = df['close'].shift()
        high_low = df['high'] - df['low']
        high_close = np.abs(df['high'] - prev_close)
        low_close = np.abs(df['low'] - prev_close)

        true_range = pd.concat([high_low, high_close, low_close], axis=1).max(axis=1, skipna=False)
        return true_range

    @staticmethod
    def atr(df: pd.DataFrame, period: int = 14) -> pd.Series:
        """
        Average True Range (simple mean of true range).

        Args:
            df: DataFrame with high, low, close columns
            period: ATR period

        Returns:
            ATR series
        """
        return Indicators.true_range(df).rolling(window=period).mean()

    @staticmethod
    def adx(df: pd.DataFrame, period: int = 14) -> pd.DataFrame:
        """
        Average Directional Index.

        Args:
            df: DataFrame with high, low, close columns
            period: ADX period

        Returns:
            DataFrame with adx, plus_di, minus_di columns
        """
        up_move = df['high'].diff()
        down_move = -df['low'].diff()

        plus_dm = pd.Series(
            np.where((up_move > down_move) & (up_move > 0), up_move, 0.0),
            index=df.index
        )
        minus_dm = pd.Series(
            np.where((down_move > up_move) & (down_move > 0), down_move, 0.0),
            index=df.index
        )

        atr = Indicators.atr(df, period)

        plus_di = 100 * plus_dm.rolling(window=period).mean() / atr
        minus_di = 100 * minus_dm.rolling(window=period).mean() / atr

        di_sum = (plus_di + minus_di).replace(0, np.nan)
        dx = 100 * np.abs(plus_di - minus_di) / di_sum
        adx = dx.rolling(window=period).mean()

        return pd.DataFrame({
            'adx': adx,
            'plus_di': plus_di,
            'minus_di': minus_di
        })
