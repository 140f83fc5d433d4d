"""
Pytest configuration file.
Adds project root to Python path to allow imports from main package, and
provides synthetic market data fixtures.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Add project root to sys.path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


def build_bars(closes, half_range=0.0005, opens=None, volumes=None,
               start=datetime(2024, 3, 1, tzinfo=timezone.utc), step=timedelta(minutes=15)):
    """Oldest-first OHLCV frame around the given closes."""
    closes = np.asarray(closes, dtype=float)
    opens = closes.copy() if opens is None else np.asarray(opens, dtype=float)
    volumes = np.full(len(closes), 1000.0) if volumes is None else np.asarray(volumes, dtype=float)

    return pd.DataFrame({
        'timestamp': [start + i * step for i in range(len(closes))],
        'open': opens,
        'high': np.maximum(opens, closes) + half_range,
        'low': np.minimum(opens, closes) - half_range,
        'close': closes,
        'volume': volumes,
    })


@pytest.fixture
def bars_factory():
    return build_bars


@pytest.fixture
def random_walk_bars():
    """200 bars of a seeded random walk around 1.1000."""
    rng = np.random.default_rng(42)
    closes = 1.1 + np.cumsum(rng.normal(0, 0.0004, 200))
    opens = np.concatenate([[1.1], closes[:-1]])
    volumes = rng.uniform(500, 1500, 200)
    return build_bars(closes, half_range=0.0003, opens=opens, volumes=volumes)


@pytest.fixture
def flat_bars():
    """100 bars with constant close and a 10-point high-low range."""
    return build_bars(np.full(100, 1.1), half_range=0.0005, step=timedelta(hours=1))
