"""
Type Definitions
================
Typed data structures for the online-learning loop.
Every forecast, outcome and retrain attempt flows through these types.

Timestamps are integer epoch milliseconds throughout.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, List, Dict, Any, Union


class Direction(Enum):
    """Forecast / observed price direction."""
    UP = "UP"
    DOWN = "DOWN"
    NEUTRAL = "NEUTRAL"

    @classmethod
    def coerce(cls, value: Union["Direction", str]) -> "Direction":
        """
        Convert a string or Direction into a Direction.

        Raises:
            ValueError: If the value is not one of UP, DOWN, NEUTRAL
        """
        if isinstance(value, Direction):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        raise ValueError(f"Unknown direction: {value!r} (expected UP, DOWN or NEUTRAL)")


def _check_confidence(confidence: float, what: str) -> float:
    confidence = float(confidence)
    if not 0.0 <= confidence <= 1.0:
        raise ValueError(f"{what} confidence must be 0-1, got {confidence}")
    return confidence


@dataclass(frozen=True)
class SubPrediction:
    """One model's contribution to an ensemble forecast."""
    model_id: str
    direction: Direction
    confidence: float
    predicted_price: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, 'direction', Direction.coerce(self.direction))
        object.__setattr__(
            self, 'confidence', _check_confidence(self.confidence, f"Sub-prediction '{self.model_id}'")
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'model_id': self.model_id,
            'direction': self.direction.value,
            'confidence': self.confidence,
            'predicted_price': self.predicted_price,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubPrediction":
        # 'model' is the key used by the ensemble pipeline's own payloads
        model_id = data.get('model_id', data.get('model'))
        if model_id is None:
            raise ValueError(f"Sub-prediction without model id: {data!r}")
        return cls(
            model_id=str(model_id),
            direction=data['direction'],
            confidence=data['confidence'],
            predicted_price=data.get('predicted_price'),
        )


@dataclass
class EnsemblePrediction:
    """Combined forecast produced by the external ensemble predictor."""
    direction: Direction
    confidence: float
    sub_predictions: List[SubPrediction] = field(default_factory=list)
    timestamp: Optional[int] = None

    def __post_init__(self):
        self.direction = Direction.coerce(self.direction)
        self.confidence = _check_confidence(self.confidence, "Ensemble")
        self.sub_predictions = [
            p if isinstance(p, SubPrediction) else SubPrediction.from_dict(p)
            for p in self.sub_predictions
        ]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnsemblePrediction":
        """Build from a plain dict; unknown keys are ignored."""
        subs = data.get('sub_predictions', data.get('predictions', [])) or []
        return cls(
            direction=data['direction'],
            confidence=data['confidence'],
            sub_predictions=list(subs),
            timestamp=data.get('timestamp'),
        )


_OUTCOME_FIELDS = (
    'actual_price',
    'actual_direction',
    'is_correct',
    'pnl',
    'pnl_percentage',
    'evaluated_at',
)


@dataclass(frozen=True)
class PredictionRecord:
    """
    One forecast event and (once evaluated) its outcome.

    Outcome fields are either all None (pending) or all set (evaluated).
    Records are immutable: evaluation produces a new record via evaluated().
    """

    # Identity
    id: str
    timestamp: int
    symbol: str
    timeframe: str

    # Inputs at creation
    current_price: float
    prediction: Direction
    confidence: float
    model_predictions: List[SubPrediction] = field(default_factory=list)

    # Outcome (filled exactly once by evaluation)
    actual_price: Optional[float] = None
    actual_direction: Optional[Direction] = None
    is_correct: Optional[bool] = None
    pnl: Optional[float] = None
    pnl_percentage: Optional[float] = None
    evaluated_at: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'prediction', Direction.coerce(self.prediction))
        object.__setattr__(
            self, 'confidence', _check_confidence(self.confidence, f"Prediction '{self.id}'")
        )
        object.__setattr__(self, 'model_predictions', [
            p if isinstance(p, SubPrediction) else SubPrediction.from_dict(p)
            for p in self.model_predictions
        ])
        if self.actual_direction is not None:
            object.__setattr__(self, 'actual_direction', Direction.coerce(self.actual_direction))

        set_count = sum(getattr(self, name) is not None for name in _OUTCOME_FIELDS)
        if set_count not in (0, len(_OUTCOME_FIELDS)):
            raise ValueError(
                f"Prediction '{self.id}' has partially set outcome fields "
                f"({set_count}/{len(_OUTCOME_FIELDS)})"
            )

    @property
    def is_evaluated(self) -> bool:
        return self.evaluated_at is not None

    @property
    def is_pending(self) -> bool:
        return self.evaluated_at is None

    def evaluated(
        self,
        actual_price: float,
        actual_direction: Direction,
        is_correct: bool,
        pnl: float,
        pnl_percentage: float,
        evaluated_at: int
    ) -> "PredictionRecord":
        """Return a copy of this record with every outcome field set."""
        return replace(
            self,
            actual_price=actual_price,
            actual_direction=actual_direction,
            is_correct=is_correct,
            pnl=pnl,
            pnl_percentage=pnl_percentage,
            evaluated_at=evaluated_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON wire format."""
        return {
            'id': self.id,
            'timestamp': self.timestamp,
            'symbol': self.symbol,
            'timeframe': self.timeframe,
            'current_price': self.current_price,
            'prediction': self.prediction.value,
            'confidence': self.confidence,
            'model_predictions': [p.to_dict() for p in self.model_predictions],
            'actual_price': self.actual_price,
            'actual_direction': self.actual_direction.value if self.actual_direction else None,
            'is_correct': self.is_correct,
            'pnl': self.pnl,
            'pnl_percentage': self.pnl_percentage,
            'evaluated_at': self.evaluated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PredictionRecord":
        """
        Build a record from the JSON wire format.

        Raises:
            ValueError: On missing keys, unknown directions or partial outcomes
        """
        try:
            return cls(
                id=str(data['id']),
                timestamp=int(data['timestamp']),
                symbol=data['symbol'],
                timeframe=data['timeframe'],
                current_price=float(data['current_price']),
                prediction=data['prediction'],
                confidence=data['confidence'],
                model_predictions=list(data.get('model_predictions') or []),
                actual_price=data.get('actual_price'),
                actual_direction=data.get('actual_direction'),
                is_correct=data.get('is_correct'),
                pnl=data.get('pnl'),
                pnl_percentage=data.get('pnl_percentage'),
                evaluated_at=data.get('evaluated_at'),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid prediction record {data!r}: {e}") from e


@dataclass(frozen=True)
class ScoredOutcome:
    """Result of one evaluated prediction, as seen by the performance tracker."""
    timestamp: int
    is_correct: bool
    pnl: float
    pnl_percentage: float
    confidence: float
    prediction: Direction
    actual: Direction


@dataclass(frozen=True)
class UpdateHistoryEntry:
    """One retraining attempt."""
    timestamp: int
    model_id: str
    samples_used: int
    success: bool
    duration_seconds: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'model_id': self.model_id,
            'samples_used': self.samples_used,
            'success': self.success,
            'duration_seconds': self.duration_seconds,
            'error': self.error,
        }


@dataclass
class PerformanceMetrics:
    """Accuracy, classification and PnL metrics over a set of outcomes."""
    accuracy: float = 0.0
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    total_predictions: int = 0
    correct_predictions: int = 0
    avg_pnl: float = 0.0
    avg_pnl_percentage: float = 0.0
    win_rate: float = 0.0
    avg_confidence: float = 0.0
    sharpe_ratio: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'accuracy': self.accuracy,
            'precision': self.precision,
            'recall': self.recall,
            'f1_score': self.f1_score,
            'total_predictions': self.total_predictions,
            'correct_predictions': self.correct_predictions,
            'avg_pnl': self.avg_pnl,
            'avg_pnl_percentage': self.avg_pnl_percentage,
            'win_rate': self.win_rate,
            'avg_confidence': self.avg_confidence,
            'sharpe_ratio': self.sharpe_ratio,
        }
