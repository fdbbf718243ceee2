"""
Canonical data models for candle observations.

A ``RawObservation`` is what the vision collaborator hands back: possibly
partial, possibly low confidence. A ``CandleObservation`` is the normalized,
immutable record that gets stored and fed to the prediction engine.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from ..errors import MalformedObservationError

FAILED_EXTRACTION = "failed"


class Direction(str, Enum):
    """Directional reading of one candle."""
    UP = "up"
    DOWN = "down"

    def opposite(self) -> "Direction":
        return Direction.DOWN if self is Direction.UP else Direction.UP

    @classmethod
    def from_prices(cls, open_price: float, close_price: float) -> "Direction":
        """close > open is up, everything else is down."""
        return cls.UP if close_price > open_price else cls.DOWN


@dataclass(frozen=True)
class RawObservation:
    """Reading produced by the vision collaborator for one capture."""
    timestamp: datetime
    confidence: float                                 # 0-100 extraction quality
    extraction_method: str
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: Optional[float] = None
    direction: Optional[Direction] = None
    errors: tuple[str, ...] = ()

    @property
    def is_failed(self) -> bool:
        return self.extraction_method == FAILED_EXTRACTION or self.confidence <= 0

    @classmethod
    def failed(cls, timestamp: datetime, reason: str) -> "RawObservation":
        """Explicit failed-extraction signal in place of fabricated data."""
        return cls(
            timestamp=timestamp,
            confidence=0.0,
            extraction_method=FAILED_EXTRACTION,
            errors=(reason,),
        )


@dataclass(frozen=True)
class CandleObservation:
    """Normalized OHLC reading for one instrument at one moment."""
    trading_pair: str
    timeframe_seconds: int
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    confidence: float
    session_id: str
    extraction_method: str
    extraction_errors: tuple[str, ...] = ()
    id: Optional[int] = None

    # Back-filled once a prediction used this observation as its newest input
    pattern_id: Optional[str] = None
    similar_pattern_timestamps: tuple[datetime, ...] = field(default=())

    def __post_init__(self):
        if self.high < max(self.open, self.close):
            raise MalformedObservationError(
                f"high {self.high} below max(open, close)",
                raw_data=f"o={self.open} h={self.high} l={self.low} c={self.close}",
                expected_format="high >= max(open, close)",
            )
        if self.low > min(self.open, self.close):
            raise MalformedObservationError(
                f"low {self.low} above min(open, close)",
                raw_data=f"o={self.open} h={self.high} l={self.low} c={self.close}",
                expected_format="low <= min(open, close)",
            )
        if not 0 <= self.confidence <= 100:
            raise MalformedObservationError(
                f"confidence {self.confidence} outside 0-100",
                expected_format="0 <= confidence <= 100",
            )

    @property
    def direction(self) -> Direction:
        """Always derived from open/close, never stored independently."""
        return Direction.from_prices(self.open, self.close)

    @property
    def change(self) -> float:
        return self.close - self.open

    @property
    def change_percent(self) -> float:
        if self.open == 0:
            return 0.0
        return (self.close - self.open) / self.open * 100

    @property
    def body_size(self) -> float:
        return abs(self.close - self.open)

    @property
    def upper_wick(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_wick(self) -> float:
        return min(self.open, self.close) - self.low

    def with_id(self, observation_id: int) -> "CandleObservation":
        return replace(self, id=observation_id)

    def to_dict(self) -> dict:
        """Plain representation for API payloads."""
        return {
            "id": self.id,
            "trading_pair": self.trading_pair,
            "timeframe_seconds": self.timeframe_seconds,
            "timestamp": self.timestamp.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "direction": self.direction.value,
            "change": self.change,
            "change_percent": self.change_percent,
            "confidence": self.confidence,
            "session_id": self.session_id,
            "extraction_method": self.extraction_method,
            "extraction_errors": list(self.extraction_errors),
            "pattern_id": self.pattern_id,
        }
