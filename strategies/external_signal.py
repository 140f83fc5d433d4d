"""
external_signal.py - External Model Signal Adapter

Admits a directional score produced by an independent model. The record
format is a single CSV line per instrument:

    timestamp,symbol,direction,confidence

with the timestamp in epoch seconds. Field order and the comma delimiter
are the producer's wire contract and must not change.

Absence or invalidity of a record is a normal state: the adapter logs the
reason and answers "no external signal". It never raises and never waits.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from core.errors import InvalidExternalSignal
from strategies.base import Signal, SignalSource


logger = logging.getLogger(__name__)

FIELD_DELIMITER = ','
FIELD_COUNT = 4
DEFAULT_MAX_AGE_SECONDS = 300.0
DEFAULT_MIN_CONFIDENCE = 0.1


def format_signal_record(timestamp: float, symbol: str, direction: float, confidence: float) -> str:
    """Render one record in the wire format."""
    return FIELD_DELIMITER.join([
        str(int(timestamp)),
        symbol,
        f"{direction:.6f}",
        f"{confidence:.6f}"
    ])


class ExternalSignalFeed(ABC):
    """Source of raw external signal records, keyed by symbol."""

    @abstractmethod
    def read_record(self, symbol: str) -> Optional[str]:
        """
        Return the current raw record for symbol, or None when there is none.

        Implementations may raise OSError; the adapter treats it as absence.
        """


class FileSignalFeed(ExternalSignalFeed):
    """
    One file per symbol inside a directory.

    The last non-empty line of the file is the current record.
    """

    def __init__(self, directory: str, filename_template: str = "{symbol}_signal.csv"):
        self.directory = Path(directory)
        self.filename_template = filename_template

    def path_for(self, symbol: str) -> Path:
        return self.directory / self.filename_template.format(symbol=symbol)

    def read_record(self, symbol: str) -> Optional[str]:
        path = self.path_for(symbol)
        if not path.is_file():
            return None
        with open(path, 'r', encoding='utf-8') as f:
            lines = [line.strip() for line in f if line.strip()]
        return lines[-1] if lines else None


class InMemorySignalFeed(ExternalSignalFeed):
    """Dictionary-backed feed for tests and paper runs."""

    def __init__(self, records: Optional[Dict[str, str]] = None):
        self.records: Dict[str, str] = dict(records or {})

    def publish(self, symbol: str, record: str) -> None:
        self.records[symbol] = record

    def read_record(self, symbol: str) -> Optional[str]:
        return self.records.get(symbol)


class ExternalSignalAdapter:
    """
    Validates external records and turns them into Signal(EXTERNAL).

    Rejection rules: missing record, wrong field count, unparseable field,
    symbol mismatch, age above max_age_seconds, confidence outside
    [min_confidence, 1.0], direction outside [-1, 1].
    """

    def __init__(
        self,
        feed: ExternalSignalFeed,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE
    ):
        if max_age_seconds <= 0:
            raise ValueError(f"max_age_seconds must be positive, got {max_age_seconds}")
        if not 0.0 <= min_confidence <= 1.0:
            raise ValueError(f"min_confidence must be between 0 and 1, got {min_confidence}")

        self.feed = feed
        self.max_age_seconds = max_age_seconds
        self.min_confidence = min_confidence

    def admit(self, symbol: str, now: Optional[datetime] = None) -> Optional[Signal]:
        """
        Admit the current external signal for symbol.

        Args:
            symbol: Instrument identifier
            now: Decision time (defaults to current UTC time)

        Returns:
            Signal(EXTERNAL) or None when absent or invalid
        """
        now = now or datetime.now(timezone.utc)

        try:
            raw = self.feed.read_record(symbol)
        except (OSError, ValueError) as e:
            logger.warning(f"{symbol}: external signal unreadable: {e}")
            return None

        if raw is None:
            logger.debug(f"{symbol}: no external signal record")
            return None

        try:
            return self.parse(symbol, raw, now)
        except InvalidExternalSignal as e:
            logger.info(f"{symbol}: external signal rejected: {e}", extra={'details': e.details})
            return None

    def parse(self, symbol: str, raw: str, now: datetime) -> Signal:
        """
        Parse and validate one raw record.

        Raises:
            InvalidExternalSignal: If any validation rule fails
        """
        fields = [part.strip() for part in raw.strip().split(FIELD_DELIMITER)]
        if len(fields) != FIELD_COUNT:
            raise InvalidExternalSignal(
                f"expected {FIELD_COUNT} fields, got {len(fields)}", symbol, {'record': raw}
            )

        ts_field, record_symbol, direction_field, confidence_field = fields

        try:
            timestamp = float(ts_field)
            direction = float(direction_field)
            confidence = float(confidence_field)
        except ValueError:
            raise InvalidExternalSignal("unparseable field", symbol, {'record': raw})

        if not all(math.isfinite(value) for value in (timestamp, direction, confidence)):
            raise InvalidExternalSignal("non-finite field", symbol, {'record': raw})

        if record_symbol != symbol:
            raise InvalidExternalSignal(
                f"symbol mismatch: {record_symbol}", symbol, {'record': raw}
            )

        age = now.timestamp() - timestamp
        if age > self.max_age_seconds:
            raise InvalidExternalSignal(
                f"stale signal: age {age:.0f}s > {self.max_age_seconds:.0f}s", symbol, {'age': age}
            )
        # Producer clock may run slightly ahead; anything further is bogus
        if age < -self.max_age_seconds:
            raise InvalidExternalSignal(f"signal from the future: age {age:.0f}s", symbol, {'age': age})

        if not self.min_confidence <= confidence <= 1.0:
            raise InvalidExternalSignal(
                f"confidence {confidence} outside [{self.min_confidence}, 1.0]", symbol
            )

        if not -1.0 <= direction <= 1.0:
            raise InvalidExternalSignal(f"direction {direction} outside [-1, 1]", symbol)

        return Signal(
            direction=direction,
            confidence=confidence,
            source=SignalSource.EXTERNAL,
            symbol=symbol,
            timestamp=datetime.fromtimestamp(timestamp, tz=timezone.utc),
            metadata={'age_seconds': age}
        )
