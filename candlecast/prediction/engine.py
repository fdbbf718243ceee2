"""
Prediction engine coordinator.

Orchestrates one prediction:
Recent window → Pattern matching + Trend heuristic → Fusion → Prediction store
"""

from typing import Optional

from ..config.defaults import FusionParams, PatternParams, TrendParams
from ..data.models import Direction
from ..errors import InsufficientHistoryError
from ..logging.config import get_prediction_logger, log_prediction
from ..persistence.observation_store import ObservationStore
from ..persistence.prediction_store import PredictionStore
from ..utils.time import Clock, utc_now
from .models import AlgorithmUsed, MethodResult, PredictionRecord
from .pattern import PatternMatcher, pattern_signature
from .trend import TrendAnalyzer


def fuse(
    pattern: Optional[MethodResult],
    trend: MethodResult,
    params: FusionParams
) -> tuple[Direction, int, AlgorithmUsed]:
    """
    Combine both methods into the final call.

    The pattern direction always wins when there is one; the trend only moves
    its confidence. Without a pattern result the trend call is used verbatim.
    """
    if pattern is None:
        return trend.direction, trend.confidence, AlgorithmUsed.TREND_ONLY

    if pattern.direction is trend.direction:
        confidence = min(params.confidence_cap, pattern.confidence + params.agree_bonus)
        return pattern.direction, confidence, AlgorithmUsed.PATTERN_TREND_CONFIRMED

    confidence = max(params.conflict_floor, pattern.confidence - params.conflict_penalty)
    return pattern.direction, confidence, AlgorithmUsed.PATTERN_TREND_CONFLICT


class PredictionEngine:
    """Produces and stores one PredictionRecord per new observation."""

    def __init__(
        self,
        observations: ObservationStore,
        predictions: PredictionStore,
        pattern_params: Optional[PatternParams] = None,
        trend_params: Optional[TrendParams] = None,
        fusion_params: Optional[FusionParams] = None,
        clock: Clock = utc_now
    ) -> None:
        self.observations = observations
        self.predictions = predictions
        self.pattern_params = pattern_params or PatternParams()
        self.fusion_params = fusion_params or FusionParams()
        self.clock = clock
        self.logger = get_prediction_logger(__name__)

        tie_break = Direction(self.fusion_params.tie_break)
        self.matcher = PatternMatcher(self.pattern_params, tie_break)
        self.trend = TrendAnalyzer(trend_params, tie_break)

    def predict(self, session_id: str, trading_pair: str) -> PredictionRecord:
        """
        Predict the direction of the next observation for a session/pair.

        Raises:
            InsufficientHistoryError: fewer than window size + 1 observations
                exist for the pair, or the session has fewer than window size
            StorageError: reading or writing the stores failed
        """
        k = self.pattern_params.window_size

        available = self.observations.count_for_pair(trading_pair)
        if available < k + 1:
            raise InsufficientHistoryError(
                "Not enough observations to predict",
                required_count=k + 1,
                available_count=available,
                context={"session_id": session_id, "trading_pair": trading_pair},
            )

        window = self.observations.recent(session_id, trading_pair, limit=k)
        if len(window) < k:
            raise InsufficientHistoryError(
                "Not enough session observations to form a signature",
                required_count=k,
                available_count=len(window),
                context={"session_id": session_id, "trading_pair": trading_pair},
            )

        directions = [obs.direction for obs in window]
        signature = pattern_signature(directions)
        history = self.observations.history(
            trading_pair, before=window[0].timestamp, limit=self.pattern_params.history_limit
        )

        pattern = self.matcher.predict(directions, history)
        trend = self.trend.predict(directions)
        direction, confidence, algorithm = fuse(pattern, trend, self.fusion_params)

        features = {
            "last_pattern": signature,
            "up_count": trend.features["up_count"],
            "down_count": trend.features["down_count"],
            "streak": trend.features["streak"],
            "last_direction": trend.features["last_direction"],
            "trend_direction": trend.features["trend_direction"],
            "trend_prediction": trend.direction.value,
            "trend_confidence": trend.confidence,
            "pattern_prediction": pattern.direction.value if pattern else None,
            "pattern_confidence": pattern.confidence if pattern else None,
            "pattern_agreement": pattern.features["pattern_agreement"] if pattern else None,
            "total_matches": len(pattern.matches) if pattern else 0,
            "history_scanned": len(history),
        }

        record = PredictionRecord(
            timestamp=window[-1].timestamp,
            trading_pair=trading_pair,
            session_id=session_id,
            direction=direction,
            confidence=confidence,
            algorithm_used=algorithm,
            pattern_signature=signature,
            matched_historical_outcomes=pattern.matches if pattern else (),
            features=features,
            created_at=self.clock(),
        )
        stored = self.predictions.store(record)

        newest = window[-1]
        if pattern is not None and newest.id is not None:
            self.observations.attach_pattern_refs(
                newest.id, signature, [m.timestamp for m in pattern.matches]
            )

        log_prediction(self.logger, stored)
        return stored

    def recent_predictions(self, session_id: str, limit: int = 5) -> list[PredictionRecord]:
        return self.predictions.recent(session_id, limit=limit)

    def latest_prediction(self, session_id: str) -> Optional[PredictionRecord]:
        return self.predictions.latest(session_id)
