"""
Configuration Management
========================
Centralized configuration with validation and defaults.

Sections in config.yaml:
    online_learning: LearningConfig
    integration:     IntegrationConfig
    logging:         LoggingConfig
"""

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List
import yaml


class TriggerMode(Enum):
    """When the controller considers retraining."""
    CANDLE = "candle"    # On every new candle event
    WINDOW = "window"    # At most once per update_interval
    MANUAL = "manual"    # Only via force_update


@dataclass(frozen=True)
class LearningConfig:
    """
    Online-learning settings.

    Immutable per session; replaced as a whole through merged().
    """
    trigger_mode: TriggerMode = TriggerMode.CANDLE
    window_size: int = 100                  # candles per timeframe in a retrain dataset
    min_samples_for_update: int = 50        # evaluated predictions needed before retraining
    update_interval: int = 3_600_000        # ms between window-triggered retrains
    enable_auto_retrain: bool = True
    performance_threshold: float = 0.55     # retrain when accuracy falls below
    max_prediction_history: int = 10_000
    performance_history_size: int = 10_000  # ring-buffer size of scored outcomes
    train_timeout_seconds: Optional[float] = None  # None = wait for training indefinitely
    model_ids: List[str] = field(default_factory=lambda: ['LSTM', 'XGBoost'])

    def __post_init__(self):
        if not isinstance(self.trigger_mode, TriggerMode):
            try:
                object.__setattr__(self, 'trigger_mode', TriggerMode(str(self.trigger_mode).lower()))
            except ValueError:
                raise ValueError(
                    f"trigger_mode must be one of "
                    f"{[m.value for m in TriggerMode]}, got {self.trigger_mode!r}"
                ) from None
        object.__setattr__(self, 'model_ids', list(self.model_ids))
        self.validate()

    def validate(self):
        """Validate configuration values."""
        if self.window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {self.window_size}")

        if self.min_samples_for_update < 0:
            raise ValueError(f"min_samples_for_update must be >= 0, got {self.min_samples_for_update}")

        # A retrain cycle only sees the last window_size predictions
        if self.window_size < self.min_samples_for_update:
            raise ValueError(
                f"window_size ({self.window_size}) must be >= "
                f"min_samples_for_update ({self.min_samples_for_update})"
            )

        if self.update_interval < 0:
            raise ValueError(f"update_interval must be >= 0 ms, got {self.update_interval}")

        if not 0 <= self.performance_threshold <= 1:
            raise ValueError(f"performance_threshold must be 0-1, got {self.performance_threshold}")

        if self.max_prediction_history < 1:
            raise ValueError(f"max_prediction_history must be >= 1, got {self.max_prediction_history}")

        if self.performance_history_size < 1:
            raise ValueError(f"performance_history_size must be >= 1, got {self.performance_history_size}")

        if self.train_timeout_seconds is not None and self.train_timeout_seconds <= 0:
            raise ValueError(f"train_timeout_seconds must be > 0, got {self.train_timeout_seconds}")

        if len(set(self.model_ids)) != len(self.model_ids):
            raise ValueError(f"model_ids contains duplicates: {self.model_ids}")

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LearningConfig":
        """
        Create from a config.yaml section.

        Raises:
            ValueError: On unknown keys or invalid values
        """
        data = dict(data or {})
        unknown = set(data) - set(cls.field_names())
        if unknown:
            raise ValueError(f"Unknown online_learning settings: {sorted(unknown)}")
        return cls(**data)

    def merged(self, partial: Optional[Dict[str, Any]]) -> "LearningConfig":
        """
        Return a new config with the given fields replaced.

        Unspecified fields keep their current values.
        """
        partial = dict(partial or {})
        unknown = set(partial) - set(self.field_names())
        if unknown:
            raise ValueError(f"Unknown online_learning settings: {sorted(unknown)}")
        return replace(self, **partial)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            'trigger_mode': self.trigger_mode.value,
            'window_size': self.window_size,
            'min_samples_for_update': self.min_samples_for_update,
            'update_interval': self.update_interval,
            'enable_auto_retrain': self.enable_auto_retrain,
            'performance_threshold': self.performance_threshold,
            'max_prediction_history': self.max_prediction_history,
            'performance_history_size': self.performance_history_size,
            'train_timeout_seconds': self.train_timeout_seconds,
            'model_ids': list(self.model_ids),
        }


@dataclass
class IntegrationConfig:
    """Trading-loop integration settings."""
    evaluation_horizon_candles: int = 5     # candles before a forecast is scored
    trade_confidence_threshold: float = 0.6

    def validate(self):
        if self.evaluation_horizon_candles < 1:
            raise ValueError(
                f"evaluation_horizon_candles must be >= 1, got {self.evaluation_horizon_candles}"
            )
        if not 0 <= self.trade_confidence_threshold <= 1:
            raise ValueError(
                f"trade_confidence_threshold must be 0-1, got {self.trade_confidence_threshold}"
            )


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    file: Optional[str] = "data/learning_loop.log"
    max_size_mb: int = 10
    backup_count: int = 3


@dataclass
class Config:
    """
    Main configuration class.

    Loads from YAML file with sensible defaults.
    All settings are validated on load.
    """
    online_learning: LearningConfig = field(default_factory=LearningConfig)
    integration: IntegrationConfig = field(default_factory=IntegrationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    _config_path: Optional[Path] = field(default=None, repr=False)

    @classmethod
    def load(cls, config_path: str = "config.yaml") -> "Config":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to config file

        Returns:
            Config instance with loaded values
        """
        path = Path(config_path)

        if not path.exists():
            # Return defaults if no config file
            return cls()

        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        config = cls()
        config._config_path = path

        if 'online_learning' in data:
            config.online_learning = LearningConfig.from_dict(data['online_learning'])

        if 'integration' in data:
            config.integration = IntegrationConfig(**data['integration'])

        if 'logging' in data:
            config.logging = LoggingConfig(**data['logging'])

        config.validate()

        return config

    def validate(self):
        """Validate configuration values."""
        self.online_learning.validate()
        self.integration.validate()

        if self.logging.level.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"Unknown log level: {self.logging.level}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            'online_learning': self.online_learning.to_dict(),
            'integration': {
                'evaluation_horizon_candles': self.integration.evaluation_horizon_candles,
                'trade_confidence_threshold': self.integration.trade_confidence_threshold,
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
                'max_size_mb': self.logging.max_size_mb,
                'backup_count': self.logging.backup_count,
            },
        }
