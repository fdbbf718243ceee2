"""
Raw observation normalization.

Converts the possibly partial reading produced by the vision collaborator into
an internally consistent ``CandleObservation``:

- Full open/close readings are kept; high/low are widened if needed so the
  OHLC invariants hold.
- A single price plus a direction signal is expanded into a synthetic candle
  whose body points the reported way.
- A direction signal alone is expanded around the previous close.
- A failed or zero-confidence reading is rejected, never padded with made-up
  prices.

The stored direction is always derived from open/close. A reported direction
that contradicts a provided open/close pair is discarded and flagged.
"""

from typing import Optional

import structlog

from ..config.defaults import NormalizationParams
from ..errors import LowQualityObservationError
from .models import CandleObservation, Direction, RawObservation

logger = structlog.get_logger(__name__)

SYNTHETIC_OHLC = "synthetic_ohlc"
LOW_CONFIDENCE = "low_confidence_extraction"
DIRECTION_CONFLICT = "direction_conflict"


class ObservationNormalizer:
    """Builds CandleObservation records from RawObservation readings."""

    def __init__(self, params: Optional[NormalizationParams] = None):
        self.params = params or NormalizationParams()
        self.logger = logger

    def normalize(
        self,
        raw: RawObservation,
        session_id: str,
        trading_pair: str,
        timeframe_seconds: int,
        reference_price: Optional[float] = None
    ) -> CandleObservation:
        """
        Normalize one raw reading.

        Args:
            raw: Reading from the vision collaborator
            session_id: Session the capture belongs to
            trading_pair: Instrument being captured
            timeframe_seconds: Candle timeframe
            reference_price: Close of the previous observation, if any

        Returns:
            Normalized observation

        Raises:
            LowQualityObservationError: reading is failed, below the minimum
                confidence or carries no usable price/direction signal
        """
        if raw.is_failed or raw.confidence < self.params.min_confidence:
            raise LowQualityObservationError(
                "Extraction failed or below minimum confidence",
                confidence=raw.confidence,
                extraction_method=raw.extraction_method,
                session_id=session_id,
                stage="normalize",
                context={"errors": list(raw.errors)},
            )

        errors = list(raw.errors)

        if raw.open is not None and raw.close is not None:
            open_price, close_price = raw.open, raw.close
            derived = Direction.from_prices(open_price, close_price)
            if raw.direction is not None and raw.direction != derived:
                self.logger.warning(
                    "Reported direction contradicts open/close, using derived direction",
                    session_id=session_id,
                    reported=raw.direction.value,
                    derived=derived.value,
                )
                errors.append(DIRECTION_CONFLICT)
        else:
            open_price, close_price = self._synthesize_body(raw, reference_price, session_id)
            errors.append(SYNTHETIC_OHLC)

        high = max(v for v in (raw.high, open_price, close_price) if v is not None)
        low = min(v for v in (raw.low, open_price, close_price) if v is not None)

        if raw.confidence < self.params.low_confidence_threshold:
            errors.append(LOW_CONFIDENCE)

        return CandleObservation(
            trading_pair=trading_pair,
            timeframe_seconds=timeframe_seconds,
            timestamp=raw.timestamp,
            open=open_price,
            high=high,
            low=low,
            close=close_price,
            confidence=min(100.0, float(raw.confidence)),
            session_id=session_id,
            extraction_method=raw.extraction_method,
            extraction_errors=tuple(errors),
        )

    def _single_price(self, raw: RawObservation) -> Optional[float]:
        if raw.close is not None:
            return raw.close
        if raw.open is not None:
            return raw.open
        if raw.high is not None and raw.low is not None:
            return (raw.high + raw.low) / 2
        return raw.high if raw.high is not None else raw.low

    def _synthesize_body(
        self,
        raw: RawObservation,
        reference_price: Optional[float],
        session_id: str
    ) -> tuple[float, float]:
        """Return (open, close) for a reading without a full open/close pair."""
        price = self._single_price(raw)
        direction = raw.direction

        if direction is None:
            if price is None or reference_price is None:
                raise LowQualityObservationError(
                    "Reading carries no direction signal",
                    confidence=raw.confidence,
                    extraction_method=raw.extraction_method,
                    session_id=session_id,
                    stage="normalize",
                )
            # Previous close to current price is the body
            return reference_price, price

        if price is None:
            price = reference_price if reference_price is not None else self.params.fallback_price

        spread = abs(price) * self.params.synthetic_spread_pct or self.params.synthetic_spread_pct
        if direction is Direction.UP:
            return price - spread, price
        return price + spread, price
