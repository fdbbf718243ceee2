"""
Prediction grading and accuracy.

A prediction is graded against the observation that directly follows its
input window for the same pair and session. Grading happens at most once;
accuracy is always recomputed from stored gradings.
"""

from typing import Any, Optional

from ..config.defaults import VerificationParams
from ..data.models import CandleObservation
from ..errors import StorageError
from ..logging.config import get_prediction_logger
from ..persistence.observation_store import ObservationStore
from ..persistence.prediction_store import PredictionStore
from ..utils.time import Clock, utc_now
from .models import AccuracySummary, ActualResult, PredictionRecord


class PredictionVerifier:
    """Grades pending predictions and reports accuracy."""

    def __init__(
        self,
        observations: ObservationStore,
        predictions: PredictionStore,
        params: Optional[VerificationParams] = None,
        clock: Clock = utc_now
    ) -> None:
        self.observations = observations
        self.predictions = predictions
        self.params = params or VerificationParams()
        self.clock = clock
        self.logger = get_prediction_logger(__name__)

    def grade(self, prediction: PredictionRecord, actual: CandleObservation) -> bool:
        """
        Grade one prediction against an observation.

        Returns True only if this call set the result. Already graded
        predictions and observations that do not follow the prediction are
        left alone.
        """
        if prediction.id is None or prediction.is_verified:
            return False
        if (actual.trading_pair != prediction.trading_pair
                or actual.session_id != prediction.session_id
                or actual.timestamp <= prediction.timestamp):
            self.logger.warning(
                "Observation does not follow prediction",
                prediction_id=prediction.id,
                observation_id=actual.id,
            )
            return False

        result = ActualResult(
            direction=actual.direction,
            correct=actual.direction is prediction.direction,
            verified_at=self.clock(),
            actual_close=actual.close,
        )
        graded = self.predictions.record_actual_result(prediction.id, result)

        if graded:
            self.logger.info(
                "Prediction verified",
                prediction_id=prediction.id,
                session_id=prediction.session_id,
                predicted=prediction.direction.value,
                actual=result.direction.value,
                correct=result.correct,
            )
        return graded

    def verify_pending(self, session_id: str, trading_pair: str) -> list[PredictionRecord]:
        """
        Grade every pending prediction whose following observation exists.

        A storage failure leaves that prediction ungraded for the next cycle.
        """
        verified = []
        for prediction in self.predictions.unverified(session_id, trading_pair):
            try:
                actual = self.observations.next_after(
                    trading_pair, session_id, prediction.timestamp
                )
                if actual is not None and self.grade(prediction, actual):
                    verified.append(self.predictions.get(prediction.id))
            except StorageError as e:
                self.logger.error(
                    "Verification failed, will retry",
                    prediction_id=prediction.id,
                    session_id=session_id,
                    error=str(e),
                )
        return verified

    def accuracy(self, session_id: str, window: Optional[int] = None) -> AccuracySummary:
        """Accuracy over the most recent ``window`` graded predictions."""
        window = window or self.params.accuracy_window
        recent = self.predictions.recent_verified(session_id, limit=window)
        correct = sum(1 for p in recent if p.actual_result.correct)
        return AccuracySummary(window=window, verified_count=len(recent), correct_count=correct)

    def accuracy_stats(self, hours: Optional[int] = None, session_id: Optional[str] = None) -> dict[str, Any]:
        hours = hours or self.params.stats_hours
        stats = self.predictions.accuracy_stats(hours=hours, session_id=session_id)
        stats["hours"] = hours
        return stats
