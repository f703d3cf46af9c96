"""
Core Module - Shared Components
===============================
Types, configuration and logging used across the learning loop.
"""

from .config import Config, LearningConfig, IntegrationConfig, LoggingConfig, TriggerMode
from .logger import setup_logger, setup_from_config, get_logger
from .types import (
    Direction,
    SubPrediction,
    EnsemblePrediction,
    PredictionRecord,
    ScoredOutcome,
    UpdateHistoryEntry,
    PerformanceMetrics,
)

__all__ = [
    'Config',
    'LearningConfig',
    'IntegrationConfig',
    'LoggingConfig',
    'TriggerMode',
    'setup_logger',
    'setup_from_config',
    'get_logger',
    'Direction',
    'SubPrediction',
    'EnsemblePrediction',
    'PredictionRecord',
    'ScoredOutcome',
    'UpdateHistoryEntry',
    'PerformanceMetrics',
]
