"""
Prediction data models.

``MethodResult`` is the output of a single prediction method (pattern matching
or trend heuristic). ``PredictionRecord`` is the fused call that gets stored and
later graded exactly once through ``ActualResult``.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..data.models import Direction


class PredictionMethod(str, Enum):
    """Individual prediction methods."""
    PATTERN_MATCHING = "pattern_matching"
    TREND_ANALYSIS = "trend_analysis"


class AlgorithmUsed(str, Enum):
    """Tag describing how the final call was produced."""
    PATTERN_TREND_CONFIRMED = "pattern_trend_confirmed"
    PATTERN_TREND_CONFLICT = "pattern_trend_conflict"
    TREND_ONLY = "trend_only"


@dataclass(frozen=True)
class MatchedOutcome:
    """One historical window matching the signature and what followed it."""
    timestamp: datetime                               # Start of the matched window
    outcome_direction: Direction


@dataclass(frozen=True)
class MethodResult:
    """Result of a single prediction method."""
    method: PredictionMethod
    direction: Direction
    confidence: int
    features: dict[str, Any] = field(default_factory=dict)
    matches: tuple[MatchedOutcome, ...] = ()


@dataclass(frozen=True)
class ActualResult:
    """Grading of a prediction against the observation that followed it."""
    direction: Direction
    correct: bool
    verified_at: datetime
    actual_close: Optional[float] = None


@dataclass(frozen=True)
class PredictionRecord:
    """One emitted directional call plus its eventual grading."""
    timestamp: datetime                               # Timestamp of the newest input observation
    trading_pair: str
    session_id: str
    direction: Direction
    confidence: int
    algorithm_used: AlgorithmUsed
    pattern_signature: str
    matched_historical_outcomes: tuple[MatchedOutcome, ...] = ()
    features: dict[str, Any] = field(default_factory=dict)
    actual_result: Optional[ActualResult] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def __post_init__(self):
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence {self.confidence} outside 0-100")

    @property
    def is_verified(self) -> bool:
        return self.actual_result is not None

    def with_id(self, prediction_id: int) -> "PredictionRecord":
        return replace(self, id=prediction_id)

    def to_dict(self) -> dict[str, Any]:
        """Plain representation for API payloads."""
        actual = None
        if self.actual_result is not None:
            actual = {
                "direction": self.actual_result.direction.value,
                "correct": self.actual_result.correct,
                "verified_at": self.actual_result.verified_at.isoformat(),
                "actual_close": self.actual_result.actual_close,
            }
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "trading_pair": self.trading_pair,
            "session_id": self.session_id,
            "direction": self.direction.value,
            "confidence": self.confidence,
            "algorithm_used": self.algorithm_used.value,
            "pattern_signature": self.pattern_signature,
            "matched_historical_outcomes": [
                {"timestamp": m.timestamp.isoformat(), "outcome_direction": m.outcome_direction.value}
                for m in self.matched_historical_outcomes
            ],
            "features": self.features,
            "actual_result": actual,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class AccuracySummary:
    """Trailing accuracy, recomputed from stored gradings on every read."""
    window: int
    verified_count: int
    correct_count: int

    @property
    def accuracy(self) -> Optional[float]:
        if self.verified_count == 0:
            return None
        return self.correct_count / self.verified_count
