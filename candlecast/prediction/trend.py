"""Trend heuristic: reversal after a long streak, otherwise follow the majority."""

from collections.abc import Sequence
from typing import Optional

from ..config.defaults import TrendParams
from ..data.models import Direction
from .models import MethodResult, PredictionMethod
from .pattern import pick_winner


def current_streak(directions: Sequence[Direction]) -> int:
    """Length of the run of identical directions ending at the last element."""
    if not directions:
        return 0
    last = directions[-1]
    streak = 0
    for direction in reversed(directions):
        if direction is not last:
            break
        streak += 1
    return streak


class TrendAnalyzer:
    """Always yields a result for a non-empty window."""

    def __init__(self, params: Optional[TrendParams] = None, tie_break: Direction = Direction.DOWN):
        self.params = params or TrendParams()
        self.tie_break = tie_break

    def predict(self, directions: Sequence[Direction]) -> MethodResult:
        if not directions:
            raise ValueError("trend analysis needs at least one observation")

        p = self.params
        up_count = sum(1 for d in directions if d is Direction.UP)
        down_count = len(directions) - up_count
        streak = current_streak(directions)
        last = directions[-1]

        if streak >= p.streak_threshold:
            direction = last.opposite()
            confidence = min(p.confidence_cap, p.reversal_base + streak * p.streak_step)
            reason = "reversal"
        else:
            direction = pick_winner(up_count, down_count, self.tie_break)
            confidence = min(
                p.confidence_cap,
                p.continuation_base + abs(up_count - down_count) * p.imbalance_step
            )
            reason = "majority"

        return MethodResult(
            method=PredictionMethod.TREND_ANALYSIS,
            direction=direction,
            confidence=confidence,
            features={
                "up_count": up_count,
                "down_count": down_count,
                "streak": streak,
                "last_direction": last.value,
                "trend_direction": "bullish" if up_count > down_count else "bearish",
                "trend_reason": reason,
            },
        )
