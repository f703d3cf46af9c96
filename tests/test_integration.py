"""
Integration Tests
=================

Tests the trading-loop integration end to end with a real controller.
"""

from unittest.mock import MagicMock

import pytest

from learning_loop.core.config import IntegrationConfig, LearningConfig
from learning_loop.core.types import Direction
from learning_loop.learning.controller import LearningController
from learning_loop.learning.integration import EnsemblePredictor, TradingLoopIntegration

from conftest import RecordingTrainer, make_ensemble


class FixedPredictor(EnsemblePredictor):
    """Returns a preset forecast and remembers what it was given."""

    def __init__(self, direction='UP', confidence=0.8):
        self.direction = direction
        self.confidence = confidence
        self.seen = []

    def predict(self, market_data):
        self.seen.append(market_data)
        return make_ensemble(self.direction, self.confidence)


@pytest.fixture
def integration(trainer, clock):
    controller = LearningController(
        trainer,
        LearningConfig(min_samples_for_update=3, window_size=20),
        clock=clock
    )
    return TradingLoopIntegration(
        FixedPredictor(),
        controller,
        IntegrationConfig(evaluation_horizon_candles=2, trade_confidence_threshold=0.6)
    )


class TestTradeDecision:

    def test_confident_up_forecast_goes_long(self, integration, market_data):
        decision = integration.get_prediction_for_trade(market_data, 100.0, 'BTC-USDT', '1h')

        assert decision.should_trade is True
        assert decision.direction == 'LONG'
        assert decision.confidence == pytest.approx(0.8)
        assert decision.prediction is Direction.UP
        assert decision.prediction_id in integration.controller.prediction_store
        assert integration.pending_count == 1
        assert integration.predictor.seen[0] is market_data

    def test_low_confidence_does_not_trade(self, integration, market_data):
        integration.predictor.confidence = 0.59

        decision = integration.get_prediction_for_trade(market_data, 100.0, 'BTC-USDT', '1h')

        assert decision.should_trade is False

    @pytest.mark.parametrize("direction,expected", [('DOWN', 'SHORT'), ('NEUTRAL', 'NEUTRAL')])
    def test_direction_mapping(self, integration, market_data, direction, expected):
        integration.predictor.direction = direction

        decision = integration.get_prediction_for_trade(market_data, 100.0, 'BTC-USDT', '1h')

        assert decision.direction == expected

    def test_dict_forecast_and_to_dict(self, integration, market_data):
        integration.predictor = MagicMock()
        integration.predictor.predict.return_value = {
            'direction': 'DOWN',
            'confidence': 0.9,
            'predictions': [{'model': 'LSTM', 'direction': 'DOWN', 'confidence': 0.9}],
        }

        decision = integration.get_prediction_for_trade(market_data, 100.0, 'BTC-USDT', '1h')
        data = decision.to_dict()

        assert data['direction'] == 'SHORT'
        assert data['details']['prediction'] == 'DOWN'
        assert data['details']['model_predictions'][0]['model_id'] == 'LSTM'


class TestCandleProcessing:

    def test_forecast_scored_after_horizon(self, integration, market_data):
        decision = integration.get_prediction_for_trade(market_data, 100.0, 'BTC-USDT', '1h')

        assert integration.process_new_candle(market_data, 100.2, 'BTC-USDT', '1h') == []

        evaluated = integration.process_new_candle(market_data, 100.6, 'BTC-USDT', '1h')

        assert [r.id for r in evaluated] == [decision.prediction_id]
        assert evaluated[0].is_correct is True
        assert evaluated[0].actual_price == 100.6
        assert integration.pending_count == 0

    def test_poor_forecasts_trigger_retrain(self, integration, trainer, market_data):
        integration.config = IntegrationConfig(evaluation_horizon_candles=1)

        for _ in range(3):
            integration.get_prediction_for_trade(market_data, 100.0, 'BTC-USDT', '1h')
            integration.process_new_candle(market_data, 99.0, 'BTC-USDT', '1h')

        assert [call[0] for call in trainer.calls] == ['LSTM', 'XGBoost']
        assert len(trainer.calls[0][1]['1h']) == 20

    def test_errors_are_swallowed(self, market_data):
        controller = MagicMock()
        controller.log_prediction.return_value = 'pred_1'
        controller.evaluate_prediction.side_effect = RuntimeError("store offline")

        integration = TradingLoopIntegration(
            FixedPredictor(), controller, IntegrationConfig(evaluation_horizon_candles=1)
        )
        integration.get_prediction_for_trade(market_data, 100.0, 'BTC-USDT', '1h')

        assert integration.process_new_candle(market_data, 101.0, 'BTC-USDT', '1h') == []
        controller.process_new_candle.assert_not_called()

    def test_candle_delegates_to_controller(self, market_data):
        controller = MagicMock()
        integration = TradingLoopIntegration(FixedPredictor(), controller)

        integration.process_new_candle(market_data, 101.0, 'BTC-USDT', '1h')

        controller.process_new_candle.assert_called_once_with(market_data, 'BTC-USDT', '1h')


class TestPassThrough:

    def test_stats_include_pending(self, integration, market_data):
        integration.get_prediction_for_trade(market_data, 100.0, 'BTC-USDT', '1h')

        stats = integration.get_performance_stats()

        assert stats['pending_evaluations'] == 1
        assert stats['total_predictions'] == 1

    def test_force_update_and_history(self, integration, trainer, market_data):
        integration.update_config(min_samples_for_update=0)

        assert integration.force_model_update(market_data, model_id='LSTM') == {'LSTM': 'updated'}
        assert integration.get_prediction_history() == []
        assert integration.export_training_data()['config']['min_samples_for_update'] == 0

    def test_reset_clears_pending(self, integration, market_data):
        integration.get_prediction_for_trade(market_data, 100.0, 'BTC-USDT', '1h')

        integration.reset()

        assert integration.pending_count == 0
        assert len(integration.controller.prediction_store) == 0

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            TradingLoopIntegration(FixedPredictor(), MagicMock(), IntegrationConfig(evaluation_horizon_candles=0))
