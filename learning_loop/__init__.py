"""
Learning Loop - Online Learning for Trading Forecasts
=====================================================

Tracks forecast outcomes and decides when the evidence justifies retraining.

Modules:
--------
- core: Configuration, types, logging
- learning: Prediction store, performance tracker, model updater,
  learning controller, trading-loop integration

Usage:
------
    from learning_loop import LearningController
    from learning_loop.core import Config, setup_from_config

    config = Config.load("config.yaml")
    setup_from_config(config.logging)
    controller = LearningController(trainer, config.online_learning)

Quick Start:
------------
    # Report over an exported snapshot
    python scripts/performance_report.py data/training_snapshot.json
"""

__version__ = "1.0.0"

from .core import Config, LearningConfig, TriggerMode, Direction, EnsemblePrediction, SubPrediction
from .learning import (
    LearningController,
    PredictionStore,
    PerformanceTracker,
    ModelUpdater,
    ModelTrainer,
    TradingLoopIntegration,
)

__all__ = [
    "Config",
    "LearningConfig",
    "TriggerMode",
    "Direction",
    "EnsemblePrediction",
    "SubPrediction",
    "LearningController",
    "PredictionStore",
    "PerformanceTracker",
    "ModelUpdater",
    "ModelTrainer",
    "TradingLoopIntegration",
]
