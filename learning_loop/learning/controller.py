"""
Learning Controller
===================

Main orchestrator of the online-learning loop.

Workflow:
1. log_prediction: store every ensemble forecast as a pending record
2. evaluate_prediction: score it once the real price is known
3. Push the scored outcome into the performance tracker
4. Decide whether the evidence justifies retraining
5. Retrain every configured model on a recent window (one cycle at a time)
6. Evict old predictions

Retrain decision (candle/window mode with auto-retrain enabled, in order):
1. Cycle already running -> skip (retried on the next trigger)
2. Fewer unconsumed evaluated predictions than min_samples_for_update -> skip
3. Window mode and update_interval not yet elapsed -> skip
4. Overall accuracy >= performance_threshold -> skip
5. No market data to build a dataset from -> skip
Otherwise run a retrain cycle.

Thread-safe: logging, evaluation and queries may run while a cycle is
training; the cycle works on a snapshot of the prediction history.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Union

from learning_loop.core.config import LearningConfig, TriggerMode
from learning_loop.core.types import (
    Direction,
    EnsemblePrediction,
    PredictionRecord,
    ScoredOutcome,
)
from learning_loop.learning.model_updater import ModelUpdater
from learning_loop.learning.performance_tracker import PerformanceTracker
from learning_loop.learning.prediction_store import PredictionStore
from learning_loop.utils import generate_prediction_id, now_ms, write_json

logger = logging.getLogger(__name__)

# |price change %| above which a move counts as UP/DOWN rather than NEUTRAL
DIRECTION_THRESHOLD_PCT = 0.5


def classify_move(change_percent: float) -> Direction:
    """Map a percentage price change to a direction."""
    if change_percent > DIRECTION_THRESHOLD_PCT:
        return Direction.UP
    if change_percent < -DIRECTION_THRESHOLD_PCT:
        return Direction.DOWN
    return Direction.NEUTRAL


class LearningController:
    """
    Owns the configuration and sequences store, tracker and updater.

    State: Idle / Updating. The Updating state is a non-blocking lock held
    for the duration of one retrain cycle and always released in finally.

    Usage:
        controller = LearningController(trainer, LearningConfig(model_ids=['LSTM']))
        pred_id = controller.log_prediction(ensemble, 50000.0, 'BTC-USDT', '1h')
        ...
        controller.evaluate_prediction(pred_id, 50400.0)
        controller.process_new_candle(market_data, 'BTC-USDT', '1h')
    """

    def __init__(
        self,
        trainer: Any,
        config: Optional[LearningConfig] = None,
        clock: Optional[Callable[[], int]] = None
    ):
        """
        Initialize learning controller.

        Args:
            trainer: Training capability, train(model_id, dataset)
            config: Learning configuration (defaults if None)
            clock: Returns current epoch ms (defaults to wall clock)
        """
        self.config = config or LearningConfig()
        self._clock = clock or now_ms

        self.prediction_store = PredictionStore(max_history=self.config.max_prediction_history)
        self.performance_tracker = PerformanceTracker(
            max_history_size=self.config.performance_history_size,
            clock=self._clock
        )
        self.model_updater = ModelUpdater(trainer, self.config, clock=self._clock)

        # Held while Updating
        self._update_lock = threading.Lock()
        self._last_update_timestamp = 0

        # Serializes the pending -> evaluated transition of a record
        self._evaluate_lock = threading.Lock()

        # Evaluated prediction ids already used by a completed retrain cycle
        self._consumed_ids: Set[str] = set()
        self._consumed_lock = threading.Lock()

        self._stats_lock = threading.Lock()
        self._stats = {
            'predictions_logged': 0,
            'predictions_evaluated': 0,
            'candles_processed': 0,
            'update_cycles': 0,
            'cycles_skipped_busy': 0,
        }

        logger.info(
            f"LearningController initialized: "
            f"trigger={self.config.trigger_mode.value}, "
            f"window={self.config.window_size}, "
            f"models={self.config.model_ids}"
        )

    @property
    def is_updating(self) -> bool:
        return self._update_lock.locked()

    @property
    def last_update_timestamp(self) -> int:
        return self._last_update_timestamp

    def _bump(self, key: str, amount: int = 1):
        with self._stats_lock:
            self._stats[key] += amount

    # =========================================================================
    # PREDICTIONS
    # =========================================================================

    def log_prediction(
        self,
        ensemble: Union[EnsemblePrediction, Dict[str, Any]],
        current_price: float,
        symbol: str,
        timeframe: str
    ) -> str:
        """
        Record a new forecast as a pending prediction.

        Args:
            ensemble: Ensemble forecast (or equivalent dict)
            current_price: Reference price at forecast time (> 0)
            symbol: Trading pair
            timeframe: Timeframe label, e.g. '1h'

        Returns:
            Prediction id

        Raises:
            ValueError: Invalid ensemble payload or non-positive price
        """
        if not isinstance(ensemble, EnsemblePrediction):
            ensemble = EnsemblePrediction.from_dict(ensemble)

        if current_price is None or current_price <= 0:
            raise ValueError(f"current_price must be > 0, got {current_price}")

        timestamp = self._clock()
        record = PredictionRecord(
            id=generate_prediction_id(timestamp),
            timestamp=timestamp,
            symbol=symbol,
            timeframe=timeframe,
            current_price=float(current_price),
            prediction=ensemble.direction,
            confidence=ensemble.confidence,
            model_predictions=list(ensemble.sub_predictions),
        )

        self.prediction_store.add(record)
        self._bump('predictions_logged')

        logger.info(
            f"[{symbol} @ {timeframe}] Prediction logged: {record.id} | "
            f"{record.prediction.value} ({record.confidence:.1%})"
        )

        return record.id

    def evaluate_prediction(
        self,
        prediction_id: str,
        actual_price: float,
        market_data: Optional[Mapping[str, Any]] = None
    ) -> Optional[PredictionRecord]:
        """
        Score a pending prediction against the observed price.

        An unknown id is logged and ignored. Evaluating an already evaluated
        prediction is a no-op that returns the stored record unchanged.

        Args:
            prediction_id: Id returned by log_prediction
            actual_price: Observed price
            market_data: Candles per timeframe; lets the follow-up retrain
                check run a cycle if one is warranted

        Returns:
            The evaluated record, or None if the id is unknown
        """
        with self._evaluate_lock:
            record = self.prediction_store.get(prediction_id)

            if record is None:
                logger.warning(f"Prediction {prediction_id} not found")
                return None

            if record.is_evaluated:
                logger.warning(f"Prediction {prediction_id} already evaluated, ignoring")
                return record

            price_change = actual_price - record.current_price
            change_percent = price_change / record.current_price * 100
            actual_direction = classify_move(change_percent)
            is_correct = record.prediction == actual_direction
            evaluated_at = self._clock()

            evaluated = record.evaluated(
                actual_price=float(actual_price),
                actual_direction=actual_direction,
                is_correct=is_correct,
                pnl=price_change,
                pnl_percentage=change_percent,
                evaluated_at=evaluated_at,
            )

            if not self.prediction_store.update(evaluated):
                # Evicted between get() and update()
                logger.warning(f"Prediction {prediction_id} was evicted before evaluation")
                return None

        self.performance_tracker.add_result(ScoredOutcome(
            timestamp=evaluated_at,
            is_correct=is_correct,
            pnl=price_change,
            pnl_percentage=change_percent,
            confidence=record.confidence,
            prediction=record.prediction,
            actual=actual_direction,
        ))

        # Each contributing model is scored on its own call
        for sub in record.model_predictions:
            self.performance_tracker.add_model_result(
                ScoredOutcome(
                    timestamp=evaluated_at,
                    is_correct=sub.direction == actual_direction,
                    pnl=price_change,
                    pnl_percentage=change_percent,
                    confidence=sub.confidence,
                    prediction=sub.direction,
                    actual=actual_direction,
                ),
                model_id=sub.model_id
            )

        self._bump('predictions_evaluated')

        logger.info(
            f"[{record.symbol} @ {record.timeframe}] Prediction evaluated: {prediction_id} | "
            f"{'✓ CORRECT' if is_correct else '✗ INCORRECT'} "
            f"({record.prediction.value} vs {actual_direction.value}, PnL: {change_percent:+.2f}%)"
        )

        self._check_and_update(market_data)

        return evaluated

    # =========================================================================
    # RETRAINING
    # =========================================================================

    def process_new_candle(
        self,
        market_data: Mapping[str, Any],
        symbol: str,
        timeframe: str
    ) -> bool:
        """
        Handle a new candle event.

        In candle mode with auto-retrain enabled, runs the retrain check
        immediately with the given market data.

        Returns:
            True if a retrain cycle ran
        """
        self._bump('candles_processed')
        logger.debug(f"[{symbol} @ {timeframe}] New candle")

        if self.config.trigger_mode == TriggerMode.CANDLE and self.config.enable_auto_retrain:
            return self._check_and_update(market_data)

        return False

    def force_update(
        self,
        market_data: Mapping[str, Any],
        model_id: Optional[str] = None
    ) -> Optional[Dict[str, str]]:
        """
        Run a retrain cycle now, bypassing the decision gate.

        Args:
            market_data: Candles per timeframe
            model_id: Update only this model and re-raise its failure

        Returns:
            {model_id: 'updated' | 'skipped' | 'failed'}, or None if a cycle
            was already running
        """
        logger.info(f"Forced update requested (model={model_id or 'all'})")
        return self._run_update_cycle(market_data, model_id=model_id)

    def _unconsumed_count(self) -> int:
        evaluated_ids = [r.id for r in self.prediction_store.evaluated()]
        with self._consumed_lock:
            return sum(1 for pred_id in evaluated_ids if pred_id not in self._consumed_ids)

    def _check_and_update(self, market_data: Optional[Mapping[str, Any]] = None) -> bool:
        """Retrain decision check. Returns True if a cycle ran."""
        config = self.config

        if config.trigger_mode == TriggerMode.MANUAL or not config.enable_auto_retrain:
            return False

        if self.is_updating:
            logger.info("Update already in progress, skipping check")
            self._bump('cycles_skipped_busy')
            return False

        samples = self._unconsumed_count()
        if samples < config.min_samples_for_update:
            logger.debug(f"Insufficient samples: {samples}/{config.min_samples_for_update}")
            return False

        elapsed = self._clock() - self._last_update_timestamp
        if config.trigger_mode == TriggerMode.WINDOW and elapsed < config.update_interval:
            logger.debug(f"Update interval not reached: {elapsed}/{config.update_interval} ms")
            return False

        accuracy = self.performance_tracker.overall().accuracy
        if accuracy >= config.performance_threshold:
            logger.info(
                f"Performance adequate: {accuracy:.2%} >= {config.performance_threshold:.2%}"
            )
            return False

        logger.warning(
            f"Performance below threshold: {accuracy:.2%} < {config.performance_threshold:.2%}"
        )

        if not market_data:
            logger.info("No market data available, retraining deferred")
            return False

        return self._run_update_cycle(market_data) is not None

    def _run_update_cycle(
        self,
        market_data: Mapping[str, Any],
        model_id: Optional[str] = None
    ) -> Optional[Dict[str, str]]:
        """
        One retrain cycle: Idle -> Updating -> Idle.

        Returns:
            Per-model results, or None if another cycle holds the lock
        """
        if not self._update_lock.acquire(blocking=False):
            logger.info("Update already in progress")
            self._bump('cycles_skipped_busy')
            return None

        try:
            config = self.config

            # Snapshot taken at decision time
            snapshot = self.prediction_store.recent(config.window_size)
            decided_ids = {r.id for r in self.prediction_store.evaluated()}

            logger.info(
                f"Starting update cycle with {len(snapshot)} recent predictions "
                f"({len(decided_ids)} evaluated in history)"
            )

            if model_id is not None:
                updated = self.model_updater.update(model_id, market_data, snapshot)
                results = {model_id: 'updated' if updated else 'skipped'}
            else:
                results = self.model_updater.update_many(config.model_ids, market_data, snapshot)

            self._last_update_timestamp = self._clock()
            self._bump('update_cycles')

            if 'updated' in results.values():
                with self._consumed_lock:
                    self._consumed_ids |= decided_ids

            self.prediction_store.trim_to(config.max_prediction_history)

            with self._consumed_lock:
                self._consumed_ids = {
                    pred_id for pred_id in self._consumed_ids if pred_id in self.prediction_store
                }

            logger.info(f"Update cycle complete: {results}")
            return results

        finally:
            self._update_lock.release()

    def get_stale_models(self) -> List[str]:
        """
        Configured models that need retraining.

        Uses each model's own accuracy, or overall accuracy when the model has
        no scored outcomes yet.
        """
        overall = self.performance_tracker.overall().accuracy
        by_model = self.performance_tracker.by_model()

        stale = []
        for model_id in self.config.model_ids:
            metrics = by_model.get(model_id)
            accuracy = metrics.accuracy if metrics and metrics.total_predictions > 0 else overall
            if self.model_updater.is_stale(model_id, accuracy):
                stale.append(model_id)

        return stale

    # =========================================================================
    # REPORTING
    # =========================================================================

    def get_performance_stats(self) -> dict:
        """Performance summary for dashboards and logs."""
        with self._stats_lock:
            stats = dict(self._stats)

        return {
            'overall': self.performance_tracker.overall().to_dict(),
            'by_model': {
                model_id: metrics.to_dict()
                for model_id, metrics in self.performance_tracker.by_model().items()
            },
            'trend': self.performance_tracker.trend(),
            'confidence_bands': self.performance_tracker.confidence_bands(),
            'recent_predictions': len(self.prediction_store.evaluated()),
            'total_predictions': len(self.prediction_store),
            'prediction_stats': self.prediction_store.stats(),
            'update_stats': self.model_updater.stats(),
            'last_update': self._last_update_timestamp,
            'is_updating': self.is_updating,
            'counters': stats,
        }

    def get_prediction_history(self, limit: int = 100) -> List[PredictionRecord]:
        """Most recent predictions, newest first."""
        return self.prediction_store.recent(limit)

    def export_training_data(self) -> dict:
        """Snapshot of predictions, overall performance and config."""
        return {
            'predictions': self.prediction_store.export_all(),
            'performance': self.performance_tracker.overall().to_dict(),
            'config': self.config.to_dict(),
        }

    def save_training_data(self, path: Union[str, Path]) -> Path:
        """Write export_training_data() to a JSON file."""
        path = write_json(path, self.export_training_data())
        logger.info(f"Training data saved to {path}")
        return path

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def get_config(self) -> LearningConfig:
        return self.config

    def update_config(self, partial: Optional[Dict[str, Any]] = None, **kwargs) -> LearningConfig:
        """
        Replace some configuration fields.

        Unspecified fields keep their values. The new config is pushed to the
        model updater, prediction store and tracker before returning.

        Raises:
            ValueError: Unknown field or invalid value (config unchanged)
        """
        changes = {**(partial or {}), **kwargs}
        new_config = self.config.merged(changes)

        self.config = new_config
        self.model_updater.update_config(new_config)
        self.prediction_store.max_history = new_config.max_prediction_history
        if new_config.performance_history_size != self.performance_tracker.max_history_size:
            self.performance_tracker.resize(new_config.performance_history_size)

        logger.info(f"Configuration updated: {changes}")
        return new_config

    def reset(self):
        """Clear predictions, outcomes and update bookkeeping."""
        self.prediction_store.clear()
        self.performance_tracker.reset()
        self._last_update_timestamp = 0
        with self._consumed_lock:
            self._consumed_ids.clear()
        logger.info("Learning controller reset")
