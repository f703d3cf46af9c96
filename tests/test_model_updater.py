"""
Tests for ModelUpdater
======================

Tests sample gating, dataset preparation, failure recording, batch
isolation, staleness and the training timeout.
"""

import threading
from unittest.mock import MagicMock

import pandas as pd
import pytest

from learning_loop.core.config import LearningConfig
from learning_loop.core.types import Direction, PredictionRecord
from learning_loop.learning.model_updater import (
    MAX_UPDATE_HISTORY,
    ModelUpdater,
    TrainingTimeoutError,
)

from conftest import FakeClock, RecordingTrainer, make_candles


def _records(evaluated: int, pending: int = 0):
    records = []
    for i in range(evaluated + pending):
        record = PredictionRecord(
            id=f'pred_{i}',
            timestamp=i,
            symbol='BTC-USDT',
            timeframe='1h',
            current_price=100.0,
            prediction=Direction.UP,
            confidence=0.6,
        )
        if i < evaluated:
            record = record.evaluated(101.0, Direction.UP, True, 1.0, 1.0, i + 1)
        records.append(record)
    return records


class TestPrepareDataset:

    def test_trims_each_timeframe(self):
        market_data = {'1h': make_candles(150), '4h': make_candles(40)}

        dataset = ModelUpdater.prepare_dataset(market_data, 100)

        assert len(dataset['1h']) == 100
        assert len(dataset['4h']) == 40
        assert dataset['1h']['timestamp'].iloc[-1] == market_data['1h']['timestamp'].iloc[-1]
        assert len(market_data['1h']) == 150

    def test_skips_empty_timeframes_and_converts_lists(self):
        market_data = {
            '1h': [{'close': 1.0}, {'close': 2.0}, {'close': 3.0}],
            '4h': [],
            '1d': None,
            '15m': pd.DataFrame(),
        }

        dataset = ModelUpdater.prepare_dataset(market_data, 2)

        assert list(dataset.keys()) == ['1h']
        assert list(dataset['1h']['close']) == [2.0, 3.0]


class TestUpdate:

    def test_skips_with_insufficient_samples(self):
        trainer = MagicMock()
        updater = ModelUpdater(trainer, LearningConfig(min_samples_for_update=50))

        assert updater.update('LSTM', {'1h': make_candles(10)}, _records(49, pending=20)) is False
        trainer.train.assert_not_called()
        assert updater.history() == []

    def test_successful_update_records_samples(self):
        trainer = MagicMock()
        clock = FakeClock()
        updater = ModelUpdater(trainer, LearningConfig(min_samples_for_update=5, window_size=20), clock=clock)

        assert updater.update('LSTM', {'1h': make_candles(50)}, _records(8, pending=3)) is True

        model_id, dataset = trainer.train.call_args[0]
        assert model_id == 'LSTM'
        assert len(dataset['1h']) == 20

        entry = updater.history()[-1]
        assert entry.success is True
        assert entry.samples_used == 8
        assert entry.timestamp == clock.now
        assert entry.error is None

    def test_failure_recorded_and_reraised(self):
        trainer = RecordingTrainer(fail_for={'LSTM'})
        updater = ModelUpdater(trainer, LearningConfig(min_samples_for_update=1))

        with pytest.raises(RuntimeError, match="exploded"):
            updater.update('LSTM', {'1h': make_candles(5)}, _records(3))

        entry = updater.history('LSTM')[-1]
        assert entry.success is False
        assert entry.samples_used == 0
        assert "exploded" in entry.error

    def test_bad_market_data_recorded_as_failure(self):
        trainer = MagicMock()
        updater = ModelUpdater(trainer, LearningConfig(min_samples_for_update=1))

        results = updater.update_many(['LSTM'], {'1h': 5}, _records(1))

        assert results == {'LSTM': 'failed'}
        trainer.train.assert_not_called()

        history = updater.history('LSTM')
        assert len(history) == 1
        assert history[0].success is False
        assert history[0].samples_used == 0
        assert "not iterable" in history[0].error

    def test_update_many_isolates_failures(self):
        trainer = RecordingTrainer(fail_for={'LSTM'})
        updater = ModelUpdater(trainer, LearningConfig(min_samples_for_update=1))

        results = updater.update_many(['LSTM', 'XGBoost'], {'1h': make_candles(5)}, _records(3))

        assert results == {'LSTM': 'failed', 'XGBoost': 'updated'}
        assert [call[0] for call in trainer.calls] == ['LSTM', 'XGBoost']

        stats = updater.stats()
        assert stats['total_updates'] == 2
        assert stats['successful_updates'] == 1
        assert stats['failed_updates'] == 1
        assert stats['avg_samples_used'] == pytest.approx(1.5)
        assert stats['updates_by_model'] == {'LSTM': 1, 'XGBoost': 1}

    def test_update_many_reports_skips(self):
        updater = ModelUpdater(MagicMock(), LearningConfig(min_samples_for_update=10))

        results = updater.update_many(['LSTM'], {'1h': make_candles(5)}, _records(3))

        assert results == {'LSTM': 'skipped'}

    def test_history_is_capped(self):
        updater = ModelUpdater(MagicMock(), LearningConfig(min_samples_for_update=0))

        for _ in range(MAX_UPDATE_HISTORY + 20):
            updater.update('LSTM', {'1h': make_candles(3)}, [])

        assert len(updater.history()) == MAX_UPDATE_HISTORY

    def test_config_change_applies_to_next_update(self):
        trainer = MagicMock()
        updater = ModelUpdater(trainer, LearningConfig(min_samples_for_update=10))

        assert updater.update('LSTM', {'1h': make_candles(3)}, _records(5)) is False

        updater.update_config(LearningConfig(min_samples_for_update=5))

        assert updater.update('LSTM', {'1h': make_candles(3)}, _records(5)) is True


class TestTimeout:

    def test_slow_training_times_out(self):
        release = threading.Event()

        class SlowTrainer:
            def train(self, model_id, dataset):
                release.wait(5)

        updater = ModelUpdater(
            SlowTrainer(),
            LearningConfig(min_samples_for_update=0, train_timeout_seconds=0.05)
        )

        try:
            with pytest.raises(TrainingTimeoutError):
                updater.update('LSTM', {'1h': make_candles(3)}, [])
        finally:
            release.set()

        assert updater.history()[-1].success is False

    def test_fast_training_within_timeout(self):
        updater = ModelUpdater(
            MagicMock(),
            LearningConfig(min_samples_for_update=0, train_timeout_seconds=5)
        )

        assert updater.update('LSTM', {'1h': make_candles(3)}, []) is True


class TestStaleness:

    def test_below_threshold_is_stale(self):
        updater = ModelUpdater(MagicMock(), LearningConfig(performance_threshold=0.55))
        assert updater.is_stale('LSTM', 0.4) is True

    def test_never_updated_is_stale(self):
        updater = ModelUpdater(MagicMock(), LearningConfig())
        assert updater.is_stale('LSTM', 0.9) is True

    def test_recent_success_is_fresh_until_interval(self):
        clock = FakeClock()
        config = LearningConfig(min_samples_for_update=0, update_interval=1_000)
        updater = ModelUpdater(MagicMock(), config, clock=clock)
        updater.update('LSTM', {'1h': make_candles(3)}, [])

        assert updater.is_stale('LSTM', 0.9) is False
        assert updater.last_successful_update('LSTM').timestamp == clock.now

        clock.advance(1_001)
        assert updater.is_stale('LSTM', 0.9) is True

    def test_clear_history(self):
        updater = ModelUpdater(MagicMock(), LearningConfig(min_samples_for_update=0))
        updater.update('LSTM', {'1h': make_candles(3)}, [])
        updater.clear_history()

        assert updater.history() == []
        assert updater.stats()['last_update_time'] is None
