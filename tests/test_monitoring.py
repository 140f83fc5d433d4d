"""
test_monitoring.py - Tests for the event logger and decision metrics
"""

import logging

import pytest

from monitoring.logger import LoggerManager, scrub_secrets
from monitoring.metrics import DecisionMetrics


class TestLoggerManager:

    def test_recent_cache_newest_first(self):
        events = LoggerManager(name="test.events.recent", cache_size=3)
        for i in range(5):
            events.log_event("tick", {'i': i})

        recent = events.get_recent()
        assert [r['payload']['i'] for r in recent] == [4, 3, 2]
        assert events.get_recent(limit=1)[0]['payload']['i'] == 4

    def test_kinds(self):
        events = LoggerManager(name="test.events.kinds")
        events.log_decision({'symbol': 'EURUSD', 'status': 'skipped', 'reason': 'filtered'})
        events.log_trade({'symbol': 'EURUSD', 'side': 'BUY'})
        events.log_error("cycle.error", "boom", {'symbol': 'EURUSD'})

        assert events.get_recent(kind="decision")[0]['event'] == "decision.skipped"
        assert events.get_recent(kind="trade")[0]['payload']['side'] == "BUY"
        assert events.get_recent(kind="error")[0]['payload']['message'] == "boom"

    def test_secrets_are_redacted(self):
        events = LoggerManager(name="test.events.secrets")
        events.log_event("login", {'login': 1234, 'Password': 'x', 'server': 'demo'})

        payload = events.get_recent()[0]['payload']
        assert payload == {'login': '<REDACTED>', 'Password': '<REDACTED>', 'server': 'demo'}
        assert scrub_secrets(None) is None

    def test_configure_file_handler(self, tmp_path):
        log_file = tmp_path / "logs" / "engine.log"
        events = LoggerManager(name="test.events.file")
        events.configure(level="DEBUG", log_file=str(log_file), console=False)

        events.log_decision({'symbol': 'EURUSD', 'status': 'traded'})
        for handler in events.get_logger().handlers:
            handler.flush()

        assert events.get_logger().level == logging.DEBUG
        assert events.get_logger().propagate is False
        assert 'decision.traded {"symbol":"EURUSD","status":"traded"}' in log_file.read_text(encoding="utf-8")

    def test_configure_replaces_handlers(self):
        events = LoggerManager(name="test.events.handlers")
        events.configure(console=True)
        events.configure(console=True)
        assert len(events.get_logger().handlers) == 1


class TestDecisionMetrics:

    def test_outcomes(self):
        metrics = DecisionMetrics()
        metrics.record_outcome("EURUSD", "traded")
        metrics.record_outcome("EURUSD", "skipped", "filtered")
        metrics.record_outcome("GBPUSD", "skipped", "filtered")
        metrics.record_outcome("GBPUSD", "skipped", "weak_signal")

        snapshot = metrics.snapshot()
        assert snapshot['cycles'] == 4
        assert snapshot['statuses'] == {'traded': 1, 'skipped': 3}
        assert snapshot['skip_reasons'] == {'filtered': 2, 'weak_signal': 1}
        assert snapshot['symbols']['GBPUSD']['cycles'] == 2
        assert metrics.skip_count("filtered") == 2
        assert metrics.skip_count("filtered", "EURUSD") == 1
        assert metrics.skip_count("filtered", "USDJPY") == 0

    def test_orders_and_closed_trades(self):
        metrics = DecisionMetrics()
        metrics.record_order("EURUSD", filled=True)
        metrics.record_order("EURUSD", filled=False)
        metrics.record_stop_update("EURUSD", "trailing")
        metrics.record_closed_trade("EURUSD", 50.0)
        metrics.record_closed_trade("EURUSD", -20.0)

        snapshot = metrics.snapshot()
        assert snapshot['orders'] == {'submitted': 2, 'filled': 1, 'rejected': 1}
        assert snapshot['stop_updates'] == {'trailing': 1}
        assert snapshot['closed_trades']['trades'] == 2
        assert snapshot['closed_trades']['realized_pnl'] == pytest.approx(30.0)
        assert snapshot['closed_trades']['win_rate'] == pytest.approx(0.5)

    def test_reset(self):
        metrics = DecisionMetrics()
        metrics.record_outcome("EURUSD", "traded")
        metrics.reset()
        assert metrics.snapshot()['cycles'] == 0
