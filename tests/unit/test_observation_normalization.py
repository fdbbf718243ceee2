"""Tests for candle models and raw observation normalization."""

import random
from datetime import datetime, timezone

import pytest

from candlecast.config.defaults import NormalizationParams
from candlecast.data.models import CandleObservation, Direction, RawObservation
from candlecast.data.normalizer import (
    DIRECTION_CONFLICT,
    LOW_CONFIDENCE,
    SYNTHETIC_OHLC,
    ObservationNormalizer,
)
from candlecast.errors import LowQualityObservationError, MalformedObservationError

TS = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _generated_ohlc(seed: int):
    rng = random.Random(seed)
    open_price = round(rng.uniform(0.5, 2.0), 5)
    close_price = open_price if rng.random() < 0.1 else round(rng.uniform(0.5, 2.0), 5)
    high = max(open_price, close_price) + rng.uniform(0, 0.01)
    low = min(open_price, close_price) - rng.uniform(0, 0.01)
    return open_price, high, low, close_price


class TestCandleObservation:
    """Test CandleObservation invariants."""

    @pytest.mark.parametrize("seed", range(50))
    def test_direction_up_iff_close_above_open(self, seed):
        open_price, high, low, close_price = _generated_ohlc(seed)
        candle = CandleObservation(
            trading_pair="EUR/USD OTC", timeframe_seconds=60, timestamp=TS,
            open=open_price, high=high, low=low, close=close_price,
            confidence=80.0, session_id="s", extraction_method="test",
        )

        assert (candle.direction is Direction.UP) == (close_price > open_price)

    def test_equal_open_close_is_down(self):
        candle = CandleObservation(
            trading_pair="P", timeframe_seconds=60, timestamp=TS,
            open=1.0, high=1.0, low=1.0, close=1.0,
            confidence=80.0, session_id="s", extraction_method="test",
        )
        assert candle.direction is Direction.DOWN

    def test_high_below_body_rejected(self):
        with pytest.raises(MalformedObservationError):
            CandleObservation(
                trading_pair="P", timeframe_seconds=60, timestamp=TS,
                open=1.0, high=1.05, low=0.9, close=1.1,
                confidence=80.0, session_id="s", extraction_method="test",
            )

    def test_confidence_out_of_range_rejected(self):
        with pytest.raises(MalformedObservationError):
            CandleObservation(
                trading_pair="P", timeframe_seconds=60, timestamp=TS,
                open=1.0, high=1.1, low=0.9, close=1.05,
                confidence=120.0, session_id="s", extraction_method="test",
            )

    def test_derived_fields(self):
        candle = CandleObservation(
            trading_pair="P", timeframe_seconds=60, timestamp=TS,
            open=1.0, high=1.5, low=0.8, close=1.2,
            confidence=80.0, session_id="s", extraction_method="test",
        )
        assert candle.change == pytest.approx(0.2)
        assert candle.change_percent == pytest.approx(20.0)
        assert candle.body_size == pytest.approx(0.2)
        assert candle.upper_wick == pytest.approx(0.3)
        assert candle.lower_wick == pytest.approx(0.2)
        assert candle.to_dict()["direction"] == "up"


class TestObservationNormalizer:
    """Test raw reading normalization."""

    def setup_method(self):
        self.normalizer = ObservationNormalizer()

    def _normalize(self, raw, reference_price=None):
        return self.normalizer.normalize(
            raw, session_id="s", trading_pair="EUR/USD OTC",
            timeframe_seconds=60, reference_price=reference_price,
        )

    def test_full_reading_kept(self):
        raw = RawObservation(
            timestamp=TS, confidence=90.0, extraction_method="ocr",
            open=1.10, high=1.12, low=1.09, close=1.11,
        )
        candle = self._normalize(raw)

        assert (candle.open, candle.high, candle.low, candle.close) == (1.10, 1.12, 1.09, 1.11)
        assert candle.direction is Direction.UP
        assert candle.extraction_errors == ()

    def test_high_low_widened(self):
        raw = RawObservation(
            timestamp=TS, confidence=90.0, extraction_method="ocr",
            open=1.10, high=1.105, low=1.101, close=1.11,
        )
        candle = self._normalize(raw)

        assert candle.high == 1.11
        assert candle.low == 1.10

    def test_contradicting_direction_discarded(self):
        raw = RawObservation(
            timestamp=TS, confidence=90.0, extraction_method="color",
            open=1.10, close=1.11, direction=Direction.DOWN,
        )
        candle = self._normalize(raw)

        assert candle.direction is Direction.UP
        assert DIRECTION_CONFLICT in candle.extraction_errors

    @pytest.mark.parametrize("direction", [Direction.UP, Direction.DOWN])
    def test_single_price_with_direction(self, direction):
        raw = RawObservation(
            timestamp=TS, confidence=70.0, extraction_method="color",
            close=1.2, direction=direction,
        )
        candle = self._normalize(raw)

        assert candle.direction is direction
        assert candle.close == 1.2
        assert candle.low <= min(candle.open, candle.close)
        assert candle.high >= max(candle.open, candle.close)
        assert SYNTHETIC_OHLC in candle.extraction_errors

    def test_direction_only_uses_reference_price(self):
        raw = RawObservation(
            timestamp=TS, confidence=70.0, extraction_method="color",
            direction=Direction.DOWN,
        )
        candle = self._normalize(raw, reference_price=1.3)

        assert candle.close == 1.3
        assert candle.direction is Direction.DOWN

    def test_price_without_direction_uses_previous_close(self):
        raw = RawObservation(timestamp=TS, confidence=70.0, extraction_method="ocr", close=1.25)
        candle = self._normalize(raw, reference_price=1.20)

        assert candle.open == 1.20
        assert candle.direction is Direction.UP

    def test_price_without_direction_or_reference_rejected(self):
        raw = RawObservation(timestamp=TS, confidence=70.0, extraction_method="ocr", close=1.25)
        with pytest.raises(LowQualityObservationError):
            self._normalize(raw)

    def test_failed_reading_rejected(self):
        with pytest.raises(LowQualityObservationError) as exc_info:
            self._normalize(RawObservation.failed(TS, "chart not found"))

        assert exc_info.value.extraction_method == "failed"
        assert exc_info.value.confidence == 0.0

    def test_low_confidence_flagged(self):
        raw = RawObservation(
            timestamp=TS, confidence=30.0, extraction_method="ocr",
            open=1.1, close=1.0,
        )
        candle = self._normalize(raw)
        assert LOW_CONFIDENCE in candle.extraction_errors

    def test_min_confidence_configurable(self):
        normalizer = ObservationNormalizer(NormalizationParams(min_confidence=40.0))
        raw = RawObservation(
            timestamp=TS, confidence=30.0, extraction_method="ocr",
            open=1.1, close=1.0,
        )
        with pytest.raises(LowQualityObservationError):
            normalizer.normalize(raw, "s", "P", 60)
