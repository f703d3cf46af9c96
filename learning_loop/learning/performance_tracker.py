"""
Performance Tracker
===================

Rolling performance measurement over scored prediction outcomes.

Keeps a global ring buffer of outcomes plus one ring buffer per model id,
and answers windowed, trend, confidence-band and best/worst-period queries.

Metrics (same formula for every query):
- accuracy = correct / total
- precision / recall: macro average over the UP and DOWN classes
  (NEUTRAL counts toward total and accuracy only)
- f1 = 2PR / (P + R)
- avg PnL, avg PnL %, win rate (pnl > 0), avg confidence
- sharpe = mean(pnl %) / population stdev(pnl %)

Every zero denominator yields 0.0.
"""

import logging
import threading
from collections import deque
from typing import Callable, Deque, Dict, Iterable, List, Optional

import numpy as np

from learning_loop.core.types import Direction, PerformanceMetrics, ScoredOutcome
from learning_loop.utils import now_ms

logger = logging.getLogger(__name__)

# Trend classification band
TREND_TOLERANCE = 0.02

# Confidence band lower bounds
HIGH_CONFIDENCE = 0.7
MEDIUM_CONFIDENCE = 0.4


def _safe_div(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def compute_metrics(outcomes: Iterable[ScoredOutcome]) -> PerformanceMetrics:
    """
    Calculate performance metrics for a set of outcomes.

    Args:
        outcomes: Scored outcomes in any order

    Returns:
        PerformanceMetrics (all zeros when empty)
    """
    outcomes = list(outcomes)
    total = len(outcomes)
    if total == 0:
        return PerformanceMetrics()

    correct = sum(1 for o in outcomes if o.is_correct)

    class_precision = []
    class_recall = []
    for cls in (Direction.UP, Direction.DOWN):
        predicted_as = sum(1 for o in outcomes if o.prediction == cls)
        actually_is = sum(1 for o in outcomes if o.actual == cls)
        true_positives = sum(1 for o in outcomes if o.prediction == cls and o.actual == cls)
        class_precision.append(_safe_div(true_positives, predicted_as))
        class_recall.append(_safe_div(true_positives, actually_is))

    precision = float(np.mean(class_precision))
    recall = float(np.mean(class_recall))
    f1 = _safe_div(2 * precision * recall, precision + recall)

    pnl = np.array([o.pnl for o in outcomes], dtype=float)
    pnl_pct = np.array([o.pnl_percentage for o in outcomes], dtype=float)
    confidence = np.array([o.confidence for o in outcomes], dtype=float)

    mean_return = float(pnl_pct.mean())
    std_return = float(pnl_pct.std())  # population (ddof=0)

    # Equal returns can leave float noise in std; treat as zero variance
    if np.isclose(std_return, 0.0, atol=1e-12):
        sharpe = 0.0
    else:
        sharpe = mean_return / std_return

    return PerformanceMetrics(
        accuracy=correct / total,
        precision=precision,
        recall=recall,
        f1_score=f1,
        total_predictions=total,
        correct_predictions=correct,
        avg_pnl=float(pnl.mean()),
        avg_pnl_percentage=mean_return,
        win_rate=int((pnl > 0).sum()) / total,
        avg_confidence=float(confidence.mean()),
        sharpe_ratio=sharpe,
    )


class PerformanceTracker:
    """
    Tracks scored outcomes globally and per model.

    Thread-safe: buffers are guarded by a lock; metric queries work on a
    snapshot copy.

    Usage:
        tracker = PerformanceTracker(max_history_size=10000)
        tracker.add_result(outcome, model_id='LSTM')
        print(f"Accuracy: {tracker.overall().accuracy:.1%}")
    """

    def __init__(
        self,
        max_history_size: int = 10000,
        clock: Optional[Callable[[], int]] = None
    ):
        """
        Initialize performance tracker.

        Args:
            max_history_size: Ring-buffer size for global and per-model history
            clock: Returns current epoch ms (defaults to wall clock)
        """
        if max_history_size < 1:
            raise ValueError(f"max_history_size must be >= 1, got {max_history_size}")

        self.max_history_size = max_history_size
        self._clock = clock or now_ms

        self._results: Deque[ScoredOutcome] = deque(maxlen=max_history_size)
        self._results_by_model: Dict[str, Deque[ScoredOutcome]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    @property
    def total_results(self) -> int:
        return len(self)

    def add_result(self, outcome: ScoredOutcome, model_id: Optional[str] = None):
        """
        Record an outcome; oldest entries fall off once the buffer is full.

        Args:
            outcome: Scored outcome
            model_id: Also record under this model's history (optional)
        """
        with self._lock:
            self._results.append(outcome)

            if model_id is not None:
                if model_id not in self._results_by_model:
                    self._results_by_model[model_id] = deque(maxlen=self.max_history_size)
                self._results_by_model[model_id].append(outcome)

    def add_model_result(self, outcome: ScoredOutcome, model_id: str):
        """Record an outcome under a model's history only (not the global one)."""
        with self._lock:
            if model_id not in self._results_by_model:
                self._results_by_model[model_id] = deque(maxlen=self.max_history_size)
            self._results_by_model[model_id].append(outcome)

    def resize(self, max_history_size: int):
        """Change the ring-buffer size, keeping the most recent outcomes."""
        if max_history_size < 1:
            raise ValueError(f"max_history_size must be >= 1, got {max_history_size}")

        with self._lock:
            self.max_history_size = max_history_size
            self._results = deque(self._results, maxlen=max_history_size)
            self._results_by_model = {
                model_id: deque(results, maxlen=max_history_size)
                for model_id, results in self._results_by_model.items()
            }

    def _snapshot(self) -> List[ScoredOutcome]:
        with self._lock:
            return list(self._results)

    def _model_snapshot(self) -> Dict[str, List[ScoredOutcome]]:
        with self._lock:
            return {model_id: list(results) for model_id, results in self._results_by_model.items()}

    def _cutoff(self, minutes: float) -> int:
        return self._clock() - int(minutes * 60_000)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def overall(self) -> PerformanceMetrics:
        """Metrics over the full global history."""
        return compute_metrics(self._snapshot())

    def by_model(self) -> Dict[str, PerformanceMetrics]:
        """Metrics per model id."""
        return {
            model_id: compute_metrics(results)
            for model_id, results in self._model_snapshot().items()
        }

    def in_window(self, minutes: float) -> PerformanceMetrics:
        """Metrics over outcomes from the last `minutes` minutes."""
        cutoff = self._cutoff(minutes)
        return compute_metrics(o for o in self._snapshot() if o.timestamp >= cutoff)

    def by_model_in_window(self, minutes: float) -> Dict[str, PerformanceMetrics]:
        """Per-model metrics over the last `minutes` minutes."""
        cutoff = self._cutoff(minutes)
        return {
            model_id: compute_metrics(o for o in results if o.timestamp >= cutoff)
            for model_id, results in self._model_snapshot().items()
        }

    def trend(self, window_size: int = 50) -> dict:
        """
        Compare accuracy of the last window_size outcomes with the window before.

        Returns:
            {
                'current': float,
                'previous': float,
                'trend': 'improving' | 'declining' | 'stable',
                'change': float
            }
            Zeroed and 'stable' when fewer than 2 * window_size outcomes exist.
        """
        results = self._snapshot()

        if window_size < 1 or len(results) < window_size * 2:
            return {'current': 0.0, 'previous': 0.0, 'trend': 'stable', 'change': 0.0}

        current = compute_metrics(results[-window_size:]).accuracy
        previous = compute_metrics(results[-window_size * 2:-window_size]).accuracy
        change = current - previous

        if change > TREND_TOLERANCE:
            trend = 'improving'
        elif change < -TREND_TOLERANCE:
            trend = 'declining'
        else:
            trend = 'stable'

        return {'current': current, 'previous': previous, 'trend': trend, 'change': change}

    def confidence_bands(self) -> dict:
        """
        Accuracy by confidence band.

        Bands: high [0.7, 1], medium [0.4, 0.7), low [0, 0.4).
        """
        results = self._snapshot()

        high = [o for o in results if o.confidence >= HIGH_CONFIDENCE]
        medium = [o for o in results if MEDIUM_CONFIDENCE <= o.confidence < HIGH_CONFIDENCE]
        low = [o for o in results if o.confidence < MEDIUM_CONFIDENCE]

        return {
            'high': {
                'threshold': HIGH_CONFIDENCE,
                'accuracy': compute_metrics(high).accuracy,
                'count': len(high),
            },
            'medium': {
                'threshold': MEDIUM_CONFIDENCE,
                'accuracy': compute_metrics(medium).accuracy,
                'count': len(medium),
            },
            'low': {
                'threshold': 0.0,
                'accuracy': compute_metrics(low).accuracy,
                'count': len(low),
            },
        }

    def best_and_worst_periods(self, period_size: int = 50) -> dict:
        """
        Slide a fixed window over the history and find the extreme accuracies.

        The best period must beat 0.0 and the worst must beat 1.0 (strictly);
        on ties the earliest window wins.

        Returns:
            {
                'best':  {'start_index', 'end_index', 'accuracy'},
                'worst': {'start_index', 'end_index', 'accuracy'}
            }
            end_index is exclusive. All zeros when fewer than period_size outcomes.
        """
        results = self._snapshot()

        if period_size < 1 or len(results) < period_size:
            empty = {'start_index': 0, 'end_index': 0, 'accuracy': 0.0}
            return {'best': dict(empty), 'worst': dict(empty)}

        # Window accuracy from a running count of correct outcomes
        correct = np.fromiter((1 if o.is_correct else 0 for o in results), dtype=np.int64)
        cumulative = np.concatenate(([0], np.cumsum(correct)))
        window_correct = cumulative[period_size:] - cumulative[:-period_size]

        best_accuracy, best_start = 0.0, 0
        worst_accuracy, worst_start = 1.0, 0

        for start, count in enumerate(window_correct):
            accuracy = int(count) / period_size
            if accuracy > best_accuracy:
                best_accuracy, best_start = accuracy, start
            if accuracy < worst_accuracy:
                worst_accuracy, worst_start = accuracy, start

        return {
            'best': {
                'start_index': best_start,
                'end_index': best_start + period_size,
                'accuracy': best_accuracy,
            },
            'worst': {
                'start_index': worst_start,
                'end_index': worst_start + period_size,
                'accuracy': worst_accuracy,
            },
        }

    def export_results(self) -> List[ScoredOutcome]:
        """Copy of the global history, oldest first."""
        return self._snapshot()

    def reset(self):
        """Clear global and per-model history."""
        with self._lock:
            self._results.clear()
            self._results_by_model.clear()
        logger.info("Performance tracker reset")
