"""
test_external_signal.py - Tests for external signal admission

Validation of the wire record, freshness, ranges and the file feed.
"""

from datetime import datetime, timezone

import pytest

from core.errors import InvalidExternalSignal
from strategies.base import SignalSource
from strategies.external_signal import (
    ExternalSignalAdapter,
    FileSignalFeed,
    InMemorySignalFeed,
    format_signal_record,
)


NOW = datetime(2024, 3, 12, 10, 0, tzinfo=timezone.utc)


def adapter_with(record=None, symbol="EURUSD"):
    feed = InMemorySignalFeed()
    if record is not None:
        feed.publish(symbol, record)
    return ExternalSignalAdapter(feed)


class TestAdmission:
    """Valid records become external signals."""

    def test_fresh_record_is_admitted(self):
        record = format_signal_record(NOW.timestamp() - 30, "EURUSD", 0.65, 0.8)
        signal = adapter_with(record).admit("EURUSD", NOW)

        assert signal is not None
        assert signal.source == SignalSource.EXTERNAL
        assert signal.direction == pytest.approx(0.65)
        assert signal.confidence == pytest.approx(0.8)
        assert signal.metadata['age_seconds'] == pytest.approx(30)

    def test_whitespace_around_fields(self):
        record = f" {int(NOW.timestamp())} , EURUSD , -0.5 , 0.9 \n"
        signal = adapter_with(record).admit("EURUSD", NOW)
        assert signal is not None
        assert signal.direction == pytest.approx(-0.5)

    def test_boundary_values(self):
        record = format_signal_record(NOW.timestamp() - 300, "EURUSD", -1.0, 0.1)
        assert adapter_with(record).admit("EURUSD", NOW) is not None

    def test_publish_replaces_latest_record(self):
        feed = InMemorySignalFeed({'EURUSD': format_signal_record(NOW.timestamp(), "EURUSD", 0.5, 0.8)})
        feed.publish("EURUSD", format_signal_record(NOW.timestamp(), "EURUSD", -0.4, 0.9))

        signal = ExternalSignalAdapter(feed).admit("EURUSD", NOW)
        assert signal.direction == pytest.approx(-0.4)
        assert feed.read_record("GBPUSD") is None
        assert not hasattr(feed, 'remove')

    def test_record_format(self):
        assert format_signal_record(1710237600.7, "EURUSD", 0.5, 0.75) == "1710237600,EURUSD,0.500000,0.750000"


class TestRejection:
    """Every rejection answers 'no external signal'."""

    def test_missing_record(self):
        assert adapter_with().admit("EURUSD", NOW) is None

    def test_stale_record(self):
        record = format_signal_record(NOW.timestamp() - 400, "EURUSD", 0.5, 0.9)
        assert adapter_with(record).admit("EURUSD", NOW) is None

    def test_far_future_record(self):
        record = format_signal_record(NOW.timestamp() + 3600, "EURUSD", 0.5, 0.9)
        assert adapter_with(record).admit("EURUSD", NOW) is None

    @pytest.mark.parametrize("record", [
        "garbage",
        "1710237600,EURUSD,0.5",
        "1710237600,EURUSD,0.5,0.9,extra",
        "1710237600;EURUSD;0.5;0.9",
        "1710237600,EURUSD,up,0.9",
        "1710237600,EURUSD,nan,0.9",
        "",
    ])
    def test_malformed_record(self, record):
        assert adapter_with(record).admit("EURUSD", NOW) is None

    def test_symbol_mismatch(self):
        record = format_signal_record(NOW.timestamp(), "GBPUSD", 0.5, 0.9)
        assert adapter_with(record).admit("EURUSD", NOW) is None

    @pytest.mark.parametrize("direction,confidence", [
        (0.5, 0.05), (0.5, 1.2), (1.5, 0.9), (-1.01, 0.9),
    ])
    def test_out_of_range_values(self, direction, confidence):
        record = format_signal_record(NOW.timestamp(), "EURUSD", direction, confidence)
        assert adapter_with(record).admit("EURUSD", NOW) is None

    def test_parse_raises_with_reason(self):
        adapter = adapter_with()
        record = format_signal_record(NOW.timestamp() - 400, "EURUSD", 0.5, 0.9)
        with pytest.raises(InvalidExternalSignal, match="stale"):
            adapter.parse("EURUSD", record, NOW)

    def test_invalid_settings(self):
        with pytest.raises(ValueError):
            ExternalSignalAdapter(InMemorySignalFeed(), max_age_seconds=0)
        with pytest.raises(ValueError):
            ExternalSignalAdapter(InMemorySignalFeed(), min_confidence=1.5)


class TestFileSignalFeed:
    """One file per symbol; last non-empty line wins."""

    def test_reads_last_line(self, tmp_path):
        path = tmp_path / "EURUSD_signal.csv"
        old = format_signal_record(NOW.timestamp() - 600, "EURUSD", -0.9, 0.9)
        new = format_signal_record(NOW.timestamp() - 5, "EURUSD", 0.4, 0.85)
        path.write_text(f"{old}\n{new}\n\n", encoding="utf-8")

        adapter = ExternalSignalAdapter(FileSignalFeed(str(tmp_path)))
        signal = adapter.admit("EURUSD", NOW)

        assert signal is not None
        assert signal.direction == pytest.approx(0.4)

    def test_missing_file(self, tmp_path):
        adapter = ExternalSignalAdapter(FileSignalFeed(str(tmp_path)))
        assert adapter.admit("EURUSD", NOW) is None

    def test_empty_file(self, tmp_path):
        (tmp_path / "EURUSD_signal.csv").write_text("\n\n", encoding="utf-8")
        feed = FileSignalFeed(str(tmp_path))
        assert feed.read_record("EURUSD") is None

    def test_custom_filename_template(self, tmp_path):
        feed = FileSignalFeed(str(tmp_path), "signal_{symbol}.txt")
        assert feed.path_for("GBPUSD") == tmp_path / "signal_GBPUSD.txt"
