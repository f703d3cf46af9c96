"""
Online Learning Components
==========================

Components that close the loop between forecasts and outcomes.

Main Components:
- LearningController: Orchestrator (log, evaluate, retrain decisions)
- PredictionStore: Capacity-bounded prediction history
- PerformanceTracker: Rolling accuracy / PnL metrics, global and per model
- ModelUpdater: Retraining on a recent window with update history
- TradingLoopIntegration: Glue for a candle-driven trading bot
"""

from .prediction_store import PredictionStore
from .performance_tracker import PerformanceTracker, compute_metrics
from .model_updater import ModelUpdater, ModelTrainer, TrainingTimeoutError
from .controller import LearningController, classify_move
from .integration import TradingLoopIntegration, TradeDecision, EnsemblePredictor

__all__ = [
    # Main orchestrator
    'LearningController',
    'classify_move',

    # Core components
    'PredictionStore',
    'PerformanceTracker',
    'compute_metrics',
    'ModelUpdater',
    'ModelTrainer',
    'TrainingTimeoutError',

    # Trading bot integration
    'TradingLoopIntegration',
    'TradeDecision',
    'EnsemblePredictor',
]
