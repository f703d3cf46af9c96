"""
Model Updater
=============

Retrains models on a recent window of market data.

Strategy:
1. Keep only evaluated predictions; skip if fewer than min_samples_for_update
2. Trim every timeframe of the market data to the last window_size candles
3. Hand the dataset to the external training capability
4. Record one history entry per attempt (success or failure)

The training capability is any object with train(model_id, dataset);
ModelTrainer documents the contract.

Thread-safe: history is guarded by a lock; training itself runs on the
caller's thread (or a worker thread when a timeout is configured).
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, Deque, Dict, Iterable, List, Mapping, Optional, Any

import pandas as pd

from learning_loop.core.config import LearningConfig
from learning_loop.core.types import PredictionRecord, UpdateHistoryEntry
from learning_loop.utils import now_ms

logger = logging.getLogger(__name__)

# Retained retraining attempts
MAX_UPDATE_HISTORY = 100


class ModelTrainer(ABC):
    """Training capability consumed by the updater."""

    @abstractmethod
    def train(self, model_id: str, dataset: Dict[str, pd.DataFrame]) -> None:
        """
        Train (or fine-tune) one model.

        Args:
            model_id: Model identifier, e.g. 'LSTM'
            dataset: Candles per timeframe, already trimmed to the window

        Raises:
            Any exception on failure
        """


class TrainingTimeoutError(Exception):
    """Raised when a training call exceeds train_timeout_seconds."""


class ModelUpdater:
    """
    Runs retraining for individual models and keeps the update history.

    Workflow (per model):
    1. Filter to evaluated predictions
    2. Check minimum sample count
    3. Build the trimmed multi-timeframe dataset
    4. Train, optionally bounded by a timeout
    5. Record an UpdateHistoryEntry
    """

    def __init__(
        self,
        trainer: Any,
        config: Optional[LearningConfig] = None,
        clock: Optional[Callable[[], int]] = None
    ):
        """
        Initialize model updater.

        Args:
            trainer: Object exposing train(model_id, dataset)
            config: Learning configuration
            clock: Returns current epoch ms (defaults to wall clock)
        """
        self.trainer = trainer
        self.config = config or LearningConfig()
        self._clock = clock or now_ms

        self._history: Deque[UpdateHistoryEntry] = deque(maxlen=MAX_UPDATE_HISTORY)
        self._history_lock = threading.Lock()

        logger.info(
            f"ModelUpdater initialized: "
            f"window_size={self.config.window_size}, "
            f"min_samples={self.config.min_samples_for_update}, "
            f"timeout={self.config.train_timeout_seconds}"
        )

    def update_config(self, config: LearningConfig):
        """Replace the configuration (takes effect on the next update)."""
        self.config = config

    # =========================================================================
    # UPDATES
    # =========================================================================

    def update(
        self,
        model_id: str,
        market_data: Mapping[str, Any],
        predictions: Iterable[PredictionRecord]
    ) -> bool:
        """
        Retrain one model.

        Args:
            model_id: Model identifier
            market_data: Candles per timeframe (DataFrame or list of candle dicts)
            predictions: Recent prediction records (pending ones are ignored)

        Returns:
            True if training ran, False if skipped for insufficient samples

        Raises:
            Whatever dataset preparation or training raised (after recording the failure),
            or TrainingTimeoutError
        """
        config = self.config
        evaluated = [p for p in predictions if p.is_evaluated]

        if len(evaluated) < config.min_samples_for_update:
            logger.info(
                f"[{model_id}] Skipping update - insufficient samples: "
                f"{len(evaluated)}/{config.min_samples_for_update}"
            )
            return False

        start_time = time.time()

        try:
            dataset = self.prepare_dataset(market_data, config.window_size)

            logger.info(
                f"[{model_id}] Starting update with {len(evaluated)} evaluated predictions, "
                f"timeframes={list(dataset.keys())}"
            )

            self._train(model_id, dataset, config.train_timeout_seconds)

        except Exception as e:
            duration = time.time() - start_time
            logger.error(f"[{model_id}] Update failed after {duration:.2f}s: {e}", exc_info=True)
            self._record(UpdateHistoryEntry(
                timestamp=self._clock(),
                model_id=model_id,
                samples_used=0,
                success=False,
                duration_seconds=duration,
                error=str(e) or type(e).__name__,
            ))
            raise

        duration = time.time() - start_time
        self._record(UpdateHistoryEntry(
            timestamp=self._clock(),
            model_id=model_id,
            samples_used=len(evaluated),
            success=True,
            duration_seconds=duration,
        ))

        logger.info(f"✓ [{model_id}] Updated in {duration:.2f}s")
        return True

    def update_many(
        self,
        model_ids: Iterable[str],
        market_data: Mapping[str, Any],
        predictions: Iterable[PredictionRecord]
    ) -> Dict[str, str]:
        """
        Retrain several models; one failure never stops the others.

        Returns:
            {model_id: 'updated' | 'skipped' | 'failed'}
        """
        predictions = list(predictions)
        results = {}

        for model_id in model_ids:
            try:
                updated = self.update(model_id, market_data, predictions)
                results[model_id] = 'updated' if updated else 'skipped'
            except Exception as e:
                # Already logged and recorded by update()
                logger.warning(f"[{model_id}] Continuing after failed update: {e}")
                results[model_id] = 'failed'

        logger.info(f"Batch update finished: {results}")
        return results

    def _train(self, model_id: str, dataset: Dict[str, pd.DataFrame], timeout: Optional[float]):
        if timeout is None:
            self.trainer.train(model_id, dataset)
            return

        # No cancellation: a timed-out call keeps running on its worker thread
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"train-{model_id}")
        try:
            future = executor.submit(self.trainer.train, model_id, dataset)
            try:
                future.result(timeout=timeout)
            except FutureTimeoutError:
                raise TrainingTimeoutError(
                    f"Training {model_id} exceeded {timeout:.1f}s"
                ) from None
        finally:
            executor.shutdown(wait=False)

    @staticmethod
    def prepare_dataset(market_data: Mapping[str, Any], window_size: int) -> Dict[str, pd.DataFrame]:
        """
        Keep the last window_size candles of every non-empty timeframe.

        Args:
            market_data: {timeframe: DataFrame or list of candle dicts}
            window_size: Candles to keep per timeframe

        Returns:
            {timeframe: DataFrame} (copies; the caller's data is untouched)
        """
        dataset = {}

        for timeframe, candles in (market_data or {}).items():
            if candles is None:
                continue

            if not isinstance(candles, pd.DataFrame):
                candles = pd.DataFrame(list(candles))

            if candles.empty:
                continue

            dataset[timeframe] = candles.tail(window_size).copy()

        return dataset

    # =========================================================================
    # HISTORY
    # =========================================================================

    def _record(self, entry: UpdateHistoryEntry):
        with self._history_lock:
            self._history.append(entry)

    def last_successful_update(self, model_id: str) -> Optional[UpdateHistoryEntry]:
        """Most recent successful update of a model, if any."""
        with self._history_lock:
            successes = [e for e in self._history if e.model_id == model_id and e.success]
        if not successes:
            return None
        return max(successes, key=lambda e: e.timestamp)

    def is_stale(self, model_id: str, current_accuracy: float) -> bool:
        """
        Check whether a model needs retraining.

        Stale if accuracy is below threshold, the model was never successfully
        updated, or the last success is older than update_interval.
        """
        if current_accuracy < self.config.performance_threshold:
            logger.info(
                f"[{model_id}] Below threshold: "
                f"{current_accuracy:.2%} < {self.config.performance_threshold:.2%}"
            )
            return True

        last = self.last_successful_update(model_id)
        if last is None:
            return True

        elapsed = self._clock() - last.timestamp
        if elapsed > self.config.update_interval:
            logger.info(f"[{model_id}] {elapsed / 3_600_000:.2f}h since last update")
            return True

        return False

    def history(self, model_id: Optional[str] = None) -> List[UpdateHistoryEntry]:
        """Update history, oldest first, optionally for one model."""
        with self._history_lock:
            entries = list(self._history)
        if model_id is not None:
            entries = [e for e in entries if e.model_id == model_id]
        return entries

    def stats(self) -> dict:
        """Get update statistics."""
        entries = self.history()
        total = len(entries)
        successful = sum(1 for e in entries if e.success)

        counts_by_model: Dict[str, int] = {}
        for entry in entries:
            counts_by_model[entry.model_id] = counts_by_model.get(entry.model_id, 0) + 1

        return {
            'total_updates': total,
            'successful_updates': successful,
            'failed_updates': total - successful,
            'avg_samples_used': (
                sum(e.samples_used for e in entries) / total if total > 0 else 0.0
            ),
            'last_update_time': entries[-1].timestamp if entries else None,
            'updates_by_model': counts_by_model,
        }

    def clear_history(self):
        with self._history_lock:
            self._history.clear()
        logger.info("Update history cleared")
