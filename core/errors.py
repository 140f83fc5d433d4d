"""
errors.py - Decision Engine Error Taxonomy

Every failure mode of the decision pipeline degrades to "skip this instrument
this cycle". Components raise these only where the engine can catch them and
turn them into a logged skip; nothing here is allowed to terminate the
process.
"""

from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base class for decision engine errors."""

    def __init__(self, message: str, symbol: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.symbol = symbol
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            'error': self.__class__.__name__,
            'message': str(self),
            'symbol': self.symbol,
            'details': self.details
        }


class DataInsufficient(EngineError):
    """Too few bars to compute a feature or a protective level."""


class InvalidExternalSignal(EngineError):
    """External signal record is missing, malformed, stale or out of range."""


class SizingDegenerate(EngineError):
    """Computed position size is zero, negative or cannot respect the caps."""


class RiskLimitBreached(EngineError):
    """Daily loss, drawdown, trade count or margin ceiling reached."""


class ExecutionRejected(EngineError):
    """Execution gateway reported a failure."""


class ConfigError(EngineError):
    """Configuration file or values are invalid."""
