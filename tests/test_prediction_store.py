"""
Tests for PredictionStore
=========================

Tests capacity eviction, queries, statistics and JSON export/import.
"""

import json

import pytest

from learning_loop.core.types import Direction, PredictionRecord
from learning_loop.learning.prediction_store import PredictionStore


def _record(i: int, evaluated: bool = False, correct: bool = True, **overrides) -> PredictionRecord:
    data = dict(
        id=f'pred_{i}',
        timestamp=1_000 + i,
        symbol='BTC-USDT',
        timeframe='1h',
        current_price=100.0,
        prediction=Direction.UP,
        confidence=0.5,
    )
    data.update(overrides)
    record = PredictionRecord(**data)
    if evaluated:
        record = record.evaluated(
            actual_price=101.0 if correct else 99.0,
            actual_direction=Direction.UP if correct else Direction.DOWN,
            is_correct=correct,
            pnl=1.0 if correct else -1.0,
            pnl_percentage=1.0 if correct else -1.0,
            evaluated_at=2_000 + i,
        )
    return record


class TestPredictionStoreCapacity:
    """Test history bound and eviction."""

    def test_add_and_get(self):
        store = PredictionStore()
        store.add(_record(1))

        assert len(store) == 1
        assert 'pred_1' in store
        assert store.get('pred_1').symbol == 'BTC-USDT'
        assert store.get('missing') is None

    def test_evicts_oldest_over_capacity(self):
        store = PredictionStore(max_history=3)
        for i in range(5):
            store.add(_record(i))

        assert len(store) == 3
        assert 'pred_0' not in store
        assert 'pred_1' not in store
        assert 'pred_4' in store

    def test_equal_timestamps_evict_earliest_inserted(self):
        store = PredictionStore(max_history=2)
        for i in range(3):
            store.add(_record(i, timestamp=5_000))

        assert [r.id for r in store.all()] == ['pred_1', 'pred_2']

    def test_shrinking_max_history_trims(self):
        store = PredictionStore(max_history=10)
        for i in range(6):
            store.add(_record(i))

        store.max_history = 2

        assert len(store) == 2
        assert {r.id for r in store.all()} == {'pred_4', 'pred_5'}

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            PredictionStore(max_history=0)

    def test_trim_to_returns_removed_count(self):
        store = PredictionStore()
        for i in range(4):
            store.add(_record(i))

        assert store.trim_to(1) == 3
        assert store.trim_to(5) == 0


class TestPredictionStoreQueries:
    """Test lookups and filters."""

    def test_update_unknown_id_ignored(self):
        store = PredictionStore()

        assert store.update(_record(7, evaluated=True)) is False
        assert len(store) == 0

    def test_update_replaces(self):
        store = PredictionStore()
        store.add(_record(1))

        assert store.update(_record(1, evaluated=True)) is True
        assert store.get('pred_1').is_evaluated

    def test_recent_newest_first(self):
        store = PredictionStore()
        for i in range(5):
            store.add(_record(i))

        assert [r.id for r in store.recent(3)] == ['pred_4', 'pred_3', 'pred_2']
        assert store.recent(0) == []
        assert len(store.recent(50)) == 5

    def test_recent_agrees_with_eviction_on_equal_timestamps(self):
        store = PredictionStore()
        store.add(_record(1, id='first', timestamp=1_000))
        store.add(_record(2, id='second', timestamp=1_000))

        assert [r.id for r in store.recent(2)] == ['second', 'first']
        assert store.recent(1)[0].id == 'second'

        store.trim_to(1)
        assert [r.id for r in store.all()] == ['second']

    def test_filters(self):
        store = PredictionStore()
        store.add(_record(1))
        store.add(_record(2, symbol='ETH-USDT', timeframe='4h'))
        store.add(_record(3, evaluated=True))

        assert [r.id for r in store.by_symbol('ETH-USDT')] == ['pred_2']
        assert [r.id for r in store.by_timeframe('4h')] == ['pred_2']
        assert {r.id for r in store.by_time_range(1_001, 1_002)} == {'pred_1', 'pred_2'}
        assert [r.id for r in store.evaluated()] == ['pred_3']
        assert {r.id for r in store.pending()} == {'pred_1', 'pred_2'}

    def test_stats(self):
        store = PredictionStore()
        store.add(_record(1, evaluated=True, correct=True, confidence=0.9))
        store.add(_record(2, evaluated=True, correct=False, confidence=0.3))
        store.add(_record(3, confidence=0.6))

        stats = store.stats()

        assert stats['total'] == 3
        assert stats['evaluated'] == 2
        assert stats['pending'] == 1
        assert stats['correct'] == 1
        assert stats['incorrect'] == 1
        assert stats['accuracy'] == pytest.approx(0.5)
        assert stats['avg_confidence'] == pytest.approx(0.6)

    def test_stats_empty(self):
        stats = PredictionStore().stats()
        assert stats['accuracy'] == 0.0
        assert stats['avg_confidence'] == 0.0

    def test_clear(self):
        store = PredictionStore()
        store.add(_record(1))
        store.clear()
        assert len(store) == 0


class TestPredictionStoreExport:
    """Test JSON export/import."""

    def test_export_oldest_first(self):
        store = PredictionStore()
        store.add(_record(2))
        store.add(_record(1))

        assert [d['id'] for d in store.export_all()] == ['pred_1', 'pred_2']

    def test_json_round_trip(self):
        store = PredictionStore()
        store.add(_record(1))
        store.add(_record(2, evaluated=True, correct=False))

        restored = PredictionStore()
        assert restored.import_json(store.export_json()) == 2

        assert restored.get('pred_1') == store.get('pred_1')
        assert restored.get('pred_2') == store.get('pred_2')

    def test_import_upserts_by_id(self):
        store = PredictionStore()
        store.add(_record(1))

        store.import_all([_record(1, evaluated=True).to_dict()])

        assert len(store) == 1
        assert store.get('pred_1').is_evaluated

    def test_bad_import_leaves_store_unchanged(self):
        store = PredictionStore()
        store.add(_record(1))

        bad = _record(2).to_dict()
        bad['prediction'] = 'SIDEWAYS'

        with pytest.raises(ValueError):
            store.import_all([_record(3).to_dict(), bad])

        assert len(store) == 1
        assert 'pred_3' not in store

    def test_import_json_rejects_non_array(self):
        store = PredictionStore()

        with pytest.raises(ValueError):
            store.import_json(json.dumps({'id': 'x'}))
        with pytest.raises(ValueError):
            store.import_json("not json")
