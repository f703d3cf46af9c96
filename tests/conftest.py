"""
Pytest Fixtures for Learning Loop
=================================

Shared test fixtures used across all test files.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pandas as pd
import pytest

from learning_loop.core.config import LearningConfig
from learning_loop.core.types import Direction, EnsemblePrediction, SubPrediction
from learning_loop.learning.controller import LearningController


class FakeClock:
    """Manually advanced epoch-ms clock."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


class RecordingTrainer:
    """Trainer that records calls and can be told to fail per model."""

    def __init__(self, fail_for=()):
        self.calls = []
        self.fail_for = set(fail_for)

    def train(self, model_id, dataset):
        self.calls.append((model_id, dataset))
        if model_id in self.fail_for:
            raise RuntimeError(f"{model_id} training exploded")


def make_candles(count: int, start_price: float = 100.0) -> pd.DataFrame:
    """Synthetic OHLCV candles, one per hour."""
    rows = []
    for i in range(count):
        price = start_price + i
        rows.append({
            'timestamp': 1_700_000_000_000 + i * 3_600_000,
            'open': price,
            'high': price + 1,
            'low': price - 1,
            'close': price + 0.5,
            'volume': 10.0 + i,
        })
    return pd.DataFrame(rows)


def make_ensemble(direction='UP', confidence=0.8, subs=None) -> EnsemblePrediction:
    if subs is None:
        subs = [
            SubPrediction('LSTM', Direction.coerce(direction), confidence),
            SubPrediction('XGBoost', Direction.coerce(direction), confidence),
        ]
    return EnsemblePrediction(direction=direction, confidence=confidence, sub_predictions=subs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def trainer():
    return RecordingTrainer()


@pytest.fixture
def market_data():
    return {'1h': make_candles(150), '4h': make_candles(40)}


@pytest.fixture
def controller(trainer, clock):
    config = LearningConfig(min_samples_for_update=50, window_size=100)
    return LearningController(trainer, config, clock=clock)
