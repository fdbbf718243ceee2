"""
Candle observation models and raw reading normalization.
"""
from .models import CandleObservation, Direction, RawObservation
from .normalizer import ObservationNormalizer

__all__ = ["CandleObservation", "Direction", "ObservationNormalizer", "RawObservation"]
