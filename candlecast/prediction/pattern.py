"""
Historical pattern matching.

The signature of the current window is the ordered list of its directions.
Every earlier window of the same length with exactly the same directions is a
match, and the direction of the observation right after it is that match's
outcome. The outcome tally decides the call.
"""

import math
from collections.abc import Sequence
from typing import Optional

from ..config.defaults import PatternParams
from ..data.models import CandleObservation, Direction
from .models import MatchedOutcome, MethodResult, PredictionMethod

SIGNATURE_SEPARATOR = "-"


def pattern_signature(directions: Sequence[Direction]) -> str:
    """Lookup key for a direction sequence, e.g. ``up-down-up-down-up``."""
    return SIGNATURE_SEPARATOR.join(d.value for d in directions)


def rounded_percent(part: int, total: int) -> int:
    """Percentage rounded half up."""
    return math.floor(part / total * 100 + 0.5)


def pick_winner(up_count: int, down_count: int, tie_break: Direction) -> Direction:
    if up_count > down_count:
        return Direction.UP
    if down_count > up_count:
        return Direction.DOWN
    return tie_break


class PatternMatcher:
    """Exact-match search over historical observations."""

    def __init__(self, params: Optional[PatternParams] = None, tie_break: Direction = Direction.DOWN):
        self.params = params or PatternParams()
        self.tie_break = tie_break

    def find_matches(
        self,
        signature: Sequence[Direction],
        history: Sequence[CandleObservation]
    ) -> list[MatchedOutcome]:
        """
        All exact matches in ``history`` (oldest first) that have a following
        observation, keeping only the ``max_matches`` most recent.
        """
        k = len(signature)
        directions = [obs.direction for obs in history]
        target = list(signature)

        matches = []
        for start in range(len(directions) - k):
            if directions[start:start + k] == target:
                matches.append(MatchedOutcome(
                    timestamp=history[start].timestamp,
                    outcome_direction=directions[start + k],
                ))

        return matches[-self.params.max_matches:] if self.params.max_matches else matches

    def predict(
        self,
        signature: Sequence[Direction],
        history: Sequence[CandleObservation]
    ) -> Optional[MethodResult]:
        """Tally match outcomes; None when nothing matched."""
        matches = self.find_matches(signature, history)
        if not matches:
            return None

        up_count = sum(1 for m in matches if m.outcome_direction is Direction.UP)
        down_count = len(matches) - up_count
        direction = pick_winner(up_count, down_count, self.tie_break)
        winning = up_count if direction is Direction.UP else down_count

        confidence = min(self.params.confidence_cap, rounded_percent(winning, len(matches)))

        return MethodResult(
            method=PredictionMethod.PATTERN_MATCHING,
            direction=direction,
            confidence=confidence,
            features={
                "outcome_up": up_count,
                "outcome_down": down_count,
                "pattern_agreement": f"{winning}/{len(matches)}",
                "total_matches": len(matches),
            },
            matches=tuple(matches),
        )
