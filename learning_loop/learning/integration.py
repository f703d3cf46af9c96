"""
Trading Loop Integration
========================

Connects an ensemble predictor and the learning controller to a trading bot.

Flow per candle:
1. process_new_candle: age pending forecasts by one candle, score those that
   reached the evaluation horizon at the current price, then let the
   controller decide on retraining
2. get_prediction_for_trade: forecast, log it for learning, and turn it into
   a LONG / SHORT / NEUTRAL decision gated on confidence
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from learning_loop.core.config import IntegrationConfig
from learning_loop.core.types import Direction, EnsemblePrediction, PredictionRecord
from learning_loop.learning.controller import LearningController

logger = logging.getLogger(__name__)

_TRADE_DIRECTIONS = {
    Direction.UP: 'LONG',
    Direction.DOWN: 'SHORT',
    Direction.NEUTRAL: 'NEUTRAL',
}


class EnsemblePredictor(ABC):
    """Forecasting capability consumed by the integration."""

    @abstractmethod
    def predict(self, market_data: Mapping[str, Any]) -> EnsemblePrediction:
        """Produce an ensemble forecast from candles per timeframe."""


@dataclass
class TradeDecision:
    """What the bot should do with a forecast."""
    should_trade: bool
    direction: str                  # 'LONG', 'SHORT' or 'NEUTRAL'
    confidence: float
    prediction_id: str
    prediction: Direction
    model_predictions: List[Dict[str, Any]] = field(default_factory=list)
    timestamp: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'should_trade': self.should_trade,
            'direction': self.direction,
            'confidence': self.confidence,
            'prediction_id': self.prediction_id,
            'details': {
                'prediction': self.prediction.value,
                'model_predictions': self.model_predictions,
                'timestamp': self.timestamp,
            },
        }


class TradingLoopIntegration:
    """
    Glue between a trading bot, the ensemble predictor and the learning loop.

    Thread-safe: the pending-forecast table is guarded by a lock.
    """

    def __init__(
        self,
        predictor: Any,
        controller: LearningController,
        config: Optional[IntegrationConfig] = None
    ):
        """
        Initialize integration.

        Args:
            predictor: Object exposing predict(market_data) -> ensemble
            controller: LearningController instance
            config: Integration settings
        """
        self.predictor = predictor
        self.controller = controller
        self.config = config or IntegrationConfig()
        self.config.validate()

        # prediction_id -> candles seen since the forecast
        self._pending: Dict[str, int] = {}
        self._pending_lock = threading.Lock()

        logger.info(
            f"TradingLoopIntegration initialized: "
            f"horizon={self.config.evaluation_horizon_candles} candles, "
            f"trade_threshold={self.config.trade_confidence_threshold:.0%}"
        )

    @property
    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def get_prediction_for_trade(
        self,
        market_data: Mapping[str, Any],
        current_price: float,
        symbol: str,
        timeframe: str
    ) -> TradeDecision:
        """
        Forecast, log the forecast for learning, and derive a trade decision.

        Raises:
            Whatever the predictor raises, or ValueError for a malformed forecast
        """
        ensemble = self.predictor.predict(market_data)
        if not isinstance(ensemble, EnsemblePrediction):
            ensemble = EnsemblePrediction.from_dict(ensemble)

        prediction_id = self.controller.log_prediction(ensemble, current_price, symbol, timeframe)

        with self._pending_lock:
            self._pending[prediction_id] = 0

        should_trade = ensemble.confidence >= self.config.trade_confidence_threshold
        direction = _TRADE_DIRECTIONS[ensemble.direction]

        logger.info(
            f"[{symbol} @ {timeframe}] Forecast: {direction} | "
            f"confidence {ensemble.confidence:.2%} | trade: {'YES' if should_trade else 'NO'}"
        )

        return TradeDecision(
            should_trade=should_trade,
            direction=direction,
            confidence=ensemble.confidence,
            prediction_id=prediction_id,
            prediction=ensemble.direction,
            model_predictions=[p.to_dict() for p in ensemble.sub_predictions],
            timestamp=ensemble.timestamp,
        )

    def process_new_candle(
        self,
        market_data: Mapping[str, Any],
        current_price: float,
        symbol: str,
        timeframe: str
    ) -> List[PredictionRecord]:
        """
        Handle a closed candle.

        Errors are logged and swallowed so the trading loop keeps running.

        Returns:
            Records evaluated on this candle
        """
        evaluated = []

        try:
            with self._pending_lock:
                for prediction_id in self._pending:
                    self._pending[prediction_id] += 1

                matured = [
                    prediction_id for prediction_id, candles in self._pending.items()
                    if candles >= self.config.evaluation_horizon_candles
                ]
                for prediction_id in matured:
                    del self._pending[prediction_id]

            for prediction_id in matured:
                record = self.controller.evaluate_prediction(
                    prediction_id, current_price, market_data=market_data
                )
                if record is not None:
                    evaluated.append(record)

            self.controller.process_new_candle(market_data, symbol, timeframe)

        except Exception as e:
            logger.error(f"[{symbol} @ {timeframe}] Failed to process candle: {e}", exc_info=True)

        return evaluated

    def force_model_update(
        self,
        market_data: Mapping[str, Any],
        model_id: Optional[str] = None
    ) -> Optional[Dict[str, str]]:
        return self.controller.force_update(market_data, model_id=model_id)

    def get_performance_stats(self) -> dict:
        stats = self.controller.get_performance_stats()
        stats['pending_evaluations'] = self.pending_count
        return stats

    def get_prediction_history(self, limit: int = 100) -> List[PredictionRecord]:
        return self.controller.get_prediction_history(limit)

    def export_training_data(self) -> dict:
        return self.controller.export_training_data()

    def update_config(self, partial: Optional[Dict[str, Any]] = None, **kwargs):
        return self.controller.update_config(partial, **kwargs)

    def reset(self):
        """Reset the learning loop and forget pending forecasts."""
        self.controller.reset()
        with self._pending_lock:
            self._pending.clear()
