"""
Thread-safe structured event logger for the decision engine.

Responsibilities:
- Emit decision events (cycle outcomes, skips, orders, stop moves) as
  compact key/value lines on a dedicated logger.
- Configurable level and handlers (console, rotating file).
- Keep an in-memory cache of recent events so skipped decisions stay
  observable without parsing log files.

Usage:
    from monitoring.logger import LoggerManager

    events = LoggerManager()
    events.configure(level="INFO", log_file="logs/engine.log")

    events.log_decision({"symbol": "EURUSD", "status": "skipped", "reason": "filtered"})
    events.log_trade({"symbol": "EURUSD", "side": "buy", "size": 0.1, "ticket": "t1"})
"""
from __future__ import annotations

import json
import logging
import logging.handlers
import threading
import time
from collections import deque
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

# Payload keys never written to logs
_DEFAULT_SENSITIVE_KEYS = frozenset({"password", "token", "api_key", "secret", "login"})

_DEFAULT_RECENT_CACHE_SIZE = 200

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _as_kv_str(event: str, payload: Optional[Dict[str, Any]]) -> str:
    """Return a compact `event {json}` line."""
    if not payload:
        return event
    try:
        return f"{event} {json.dumps(payload, separators=(',', ':'), default=str)}"
    except (TypeError, ValueError):
        return f"{event} {payload}"


def _level(level: str | int) -> int:
    return level if isinstance(level, int) else getattr(logging, str(level).upper(), logging.INFO)


def scrub_secrets(payload: Optional[Dict[str, Any]], sensitive_keys: Optional[Iterable[str]] = None) -> Optional[Dict[str, Any]]:
    """Shallow copy of payload with sensitive keys redacted (case-insensitive)."""
    if payload is None:
        return None
    keys = {k.lower() for k in (sensitive_keys or _DEFAULT_SENSITIVE_KEYS)}
    return {k: ("<REDACTED>" if k.lower() in keys else v) for k, v in payload.items()}


class LoggerManager:
    """
    Structured event logger with a recent-event cache.

    Provides:
    - configure(level, log_file, max_bytes, backup_count, console)
    - log_event(event, payload, level)
    - log_decision(outcome_payload)
    - log_trade(trade_payload)
    - log_error(event, message, payload, exc_info)
    """

    def __init__(self, name: str = "decision_engine.events", cache_size: int = _DEFAULT_RECENT_CACHE_SIZE):
        self._name = name
        self._lock = threading.RLock()
        self._logger = logging.getLogger(self._name)
        self._recent = deque(maxlen=cache_size)

    def configure(
        self,
        level: str | int = "INFO",
        log_file: Optional[str] = None,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        console: bool = True,
    ) -> None:
        """
        Attach handlers to the event logger (replacing earlier ones).

        Args:
            level: logging level name or int
            log_file: optional path to a rotating log file
            max_bytes: rotation size in bytes
            backup_count: number of rotated files to keep
            console: enable console handler
        """
        with self._lock:
            lvl = _level(level)
            self._logger.setLevel(lvl)
            self._logger.propagate = False

            for handler in list(self._logger.handlers):
                self._logger.removeHandler(handler)
                handler.close()

            formatter = logging.Formatter(_FORMAT)
            handlers: List[logging.Handler] = []
            if console:
                handlers.append(logging.StreamHandler())
            if log_file:
                Path(log_file).parent.mkdir(parents=True, exist_ok=True)
                handlers.append(logging.handlers.RotatingFileHandler(
                    log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
                ))

            for handler in handlers:
                handler.setLevel(lvl)
                handler.setFormatter(formatter)
                self._logger.addHandler(handler)

    def _record_recent(self, kind: str, event: str, payload: Optional[Dict[str, Any]]) -> None:
        with self._lock:
            self._recent.appendleft({"ts": int(time.time()), "kind": kind, "event": event, "payload": payload})

    def get_recent(self, limit: Optional[int] = None, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most recent structured events first, optionally of one kind."""
        with self._lock:
            records = [r for r in self._recent if kind is None or r["kind"] == kind]
        return records if limit is None else records[:limit]

    def log_event(self, event: str, payload: Optional[Dict[str, Any]] = None, level: str | int = "INFO") -> None:
        """
        Log a named event with a structured payload.

        Args:
            event: short event name, e.g. "engine.start"
            payload: optional structured payload (scrubbed)
            level: log level
        """
        payload_safe = scrub_secrets(payload)
        self._logger.log(_level(level), _as_kv_str(event, payload_safe), extra={"event": event, "payload": payload_safe})
        self._record_recent("event", event, payload_safe)

    def log_decision(self, outcome: Dict[str, Any]) -> None:
        """Log one cycle outcome; skipped decisions are logged at INFO too."""
        payload_safe = scrub_secrets(outcome)
        event = f"decision.{outcome.get('status', 'unknown')}"
        self._logger.info(_as_kv_str(event, payload_safe), extra={"event": event, "payload": payload_safe})
        self._record_recent("decision", event, payload_safe)

    def log_trade(self, trade: Dict[str, Any]) -> None:
        """Log a submitted order and its gateway answer."""
        trade_safe = scrub_secrets(trade)
        self._logger.info(_as_kv_str("trade", trade_safe), extra={"event": "trade", "payload": trade_safe})
        self._record_recent("trade", "trade", trade_safe)

    def log_error(self, event: str, message: Optional[str] = None, payload: Optional[Dict[str, Any]] = None, exc_info: Any = None) -> None:
        payload_safe = scrub_secrets(payload)
        full_msg = f"{event} {message or ''}".strip()
        self._logger.error(_as_kv_str(full_msg, payload_safe), exc_info=exc_info, extra={"event": event, "payload": payload_safe})
        self._record_recent("error", event, {"message": message, "payload": payload_safe})

    def get_logger(self) -> logging.Logger:
        return self._logger
