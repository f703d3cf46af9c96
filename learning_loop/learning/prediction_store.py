"""
Prediction Store
================

Append-only, capacity-bounded store of prediction records keyed by id.

Key Features:
- Insert / replace / lookup by prediction id
- Pending vs evaluated views, time/symbol/timeframe filters
- Oldest-first eviction when the history cap is exceeded
- Cheap full-history summary (stats)
- JSON export/import (upsert by id)
- Thread-safe operations

Records are immutable; an evaluation replaces the stored record with its
evaluated copy via update().
"""

import json
import logging
import threading
from typing import Dict, List, Optional, Iterable, Union, Any

from learning_loop.core.types import PredictionRecord

logger = logging.getLogger(__name__)


class PredictionStore:
    """
    In-memory prediction history.

    Thread-safe: all access goes through an RLock. Queries return new lists,
    so callers may iterate them while other threads keep logging/evaluating.
    """

    def __init__(self, max_history: int = 10000):
        """
        Initialize prediction store.

        Args:
            max_history: Maximum number of records kept (oldest evicted first)
        """
        if max_history < 1:
            raise ValueError(f"max_history must be >= 1, got {max_history}")

        self._max_history = max_history
        self._records: Dict[str, PredictionRecord] = {}
        self._lock = threading.RLock()

    @property
    def max_history(self) -> int:
        return self._max_history

    @max_history.setter
    def max_history(self, value: int):
        if value < 1:
            raise ValueError(f"max_history must be >= 1, got {value}")
        with self._lock:
            self._max_history = value
            if len(self._records) > value:
                self.trim_to(value)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, prediction_id: str) -> bool:
        with self._lock:
            return prediction_id in self._records

    # =========================================================================
    # WRITES
    # =========================================================================

    def add(self, record: PredictionRecord):
        """Insert a record; evicts the oldest records if over capacity."""
        with self._lock:
            self._records[record.id] = record

            if len(self._records) > self._max_history:
                self.trim_to(self._max_history)

    def update(self, record: PredictionRecord) -> bool:
        """
        Replace an existing record.

        Returns:
            True if replaced, False if the id is unknown (record ignored)
        """
        with self._lock:
            if record.id not in self._records:
                logger.debug(f"Ignoring update for unknown prediction {record.id}")
                return False
            self._records[record.id] = record
            return True

    def trim_to(self, keep_count: int) -> int:
        """
        Keep only the keep_count most recent records (by timestamp).

        Returns:
            Number of records removed
        """
        with self._lock:
            if len(self._records) <= keep_count:
                return 0

            # Stable sort: on equal timestamps the earlier-inserted record goes first
            ordered = sorted(self._records.values(), key=lambda r: r.timestamp)
            removed = len(ordered) - max(keep_count, 0)
            kept = ordered[removed:]

            self._records = {r.id: r for r in kept}

        logger.info(f"Evicted {removed} old predictions (kept {len(kept)})")
        return removed

    def clear(self):
        """Remove every record."""
        with self._lock:
            self._records.clear()
        logger.info("Prediction history cleared")

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get(self, prediction_id: str) -> Optional[PredictionRecord]:
        with self._lock:
            return self._records.get(prediction_id)

    def all(self) -> List[PredictionRecord]:
        with self._lock:
            return list(self._records.values())

    def evaluated(self) -> List[PredictionRecord]:
        """Records with outcome fields set."""
        with self._lock:
            return [r for r in self._records.values() if r.is_evaluated]

    def pending(self) -> List[PredictionRecord]:
        """Records still awaiting an outcome."""
        with self._lock:
            return [r for r in self._records.values() if r.is_pending]

    def recent(self, n: int) -> List[PredictionRecord]:
        """The n most recent records, newest first (evaluated or not)."""
        if n <= 0:
            return []
        with self._lock:
            records = list(self._records.values())

        # Equal timestamps: latest-inserted first, as in trim_to
        ordered = sorted(reversed(records), key=lambda r: r.timestamp, reverse=True)
        return ordered[:n]

    def by_time_range(self, start: int, end: int) -> List[PredictionRecord]:
        """Records with start <= timestamp <= end (epoch ms)."""
        with self._lock:
            return [r for r in self._records.values() if start <= r.timestamp <= end]

    def by_symbol(self, symbol: str) -> List[PredictionRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.symbol == symbol]

    def by_timeframe(self, timeframe: str) -> List[PredictionRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.timeframe == timeframe]

    def stats(self) -> dict:
        """
        Summary over the full current history.

        Returns:
            {
                'total': int,
                'evaluated': int,
                'pending': int,
                'correct': int,
                'incorrect': int,
                'accuracy': float,        # correct / evaluated
                'avg_confidence': float   # over all records
            }
        """
        with self._lock:
            records = list(self._records.values())

        evaluated = [r for r in records if r.is_evaluated]
        correct = sum(1 for r in evaluated if r.is_correct)
        incorrect = len(evaluated) - correct

        return {
            'total': len(records),
            'evaluated': len(evaluated),
            'pending': len(records) - len(evaluated),
            'correct': correct,
            'incorrect': incorrect,
            'accuracy': correct / len(evaluated) if evaluated else 0.0,
            'avg_confidence': (
                sum(r.confidence for r in records) / len(records) if records else 0.0
            ),
        }

    # =========================================================================
    # EXPORT / IMPORT
    # =========================================================================

    def export_all(self) -> List[dict]:
        """All records in wire format, oldest first."""
        with self._lock:
            records = sorted(self._records.values(), key=lambda r: r.timestamp)
        return [r.to_dict() for r in records]

    def import_all(self, records: Iterable[Union[PredictionRecord, Dict[str, Any]]]) -> int:
        """
        Upsert records by id.

        All records are validated before any is stored, so a bad payload
        leaves the store unchanged.

        Returns:
            Number of records imported

        Raises:
            ValueError: If any record is malformed
        """
        parsed = [
            r if isinstance(r, PredictionRecord) else PredictionRecord.from_dict(r)
            for r in records
        ]

        with self._lock:
            for record in parsed:
                self._records[record.id] = record

            if len(self._records) > self._max_history:
                self.trim_to(self._max_history)

        logger.info(f"Imported {len(parsed)} predictions")
        return len(parsed)

    def export_json(self) -> str:
        return json.dumps(self.export_all(), indent=2)

    def import_json(self, text: str) -> int:
        """
        Import a JSON array produced by export_json().

        Raises:
            ValueError: If the text is not a JSON array of valid records
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid prediction JSON: {e}") from e

        if not isinstance(data, list):
            raise ValueError(f"Expected a JSON array of predictions, got {type(data).__name__}")

        return self.import_all(data)
