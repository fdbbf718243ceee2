"""
Data quality error classifications for candle observations.

These exceptions are soft: they describe an observation or history that cannot
be used right now and are handled without failing the surrounding cycle.
"""

from datetime import datetime
from typing import Optional, Dict, Any


class DataQualityError(Exception):
    """Base class for data quality issues that can be handled gracefully."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.recoverable = True


class InsufficientHistoryError(DataQualityError):
    """Not enough observations to attempt a prediction. Informational."""

    def __init__(self, message: str, required_count: Optional[int] = None,
                 available_count: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.required_count = required_count
        self.available_count = available_count


class DuplicateObservationError(DataQualityError):
    """An observation already exists inside the duplicate window."""

    def __init__(self, message: str, existing_timestamp: Optional[datetime] = None,
                 candidate_timestamp: Optional[datetime] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.existing_timestamp = existing_timestamp
        self.candidate_timestamp = candidate_timestamp


class MalformedObservationError(DataQualityError):
    """Observation values violate the OHLC invariants."""

    def __init__(self, message: str, raw_data: Optional[str] = None,
                 expected_format: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.raw_data = raw_data
        self.expected_format = expected_format


class OutOfOrderObservationError(DataQualityError):
    """Observation timestamp is older than the newest stored one for the pair."""

    def __init__(self, message: str, timestamp: Optional[datetime] = None,
                 latest_timestamp: Optional[datetime] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timestamp = timestamp
        self.latest_timestamp = latest_timestamp
