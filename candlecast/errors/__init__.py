"""
Error classification system for the capture and prediction pipeline.

This module provides a structured exception hierarchy separating soft data
quality issues, session authentication failures, per-cycle collection failures
and system-level failures such as persistence errors.
"""

from .data_quality import (
    DataQualityError,
    InsufficientHistoryError,
    DuplicateObservationError,
    MalformedObservationError,
    OutOfOrderObservationError,
)
from .session import (
    ValidationError,
    AuthenticationRequiredError,
)
from .collection import (
    CollectionError,
    LowQualityObservationError,
    CycleDeadlineExceededError,
)
from .system_failures import (
    SystemFailureError,
    StorageError,
    ConfigurationError,
    SchedulerError,
    AlreadyRunningError,
)

__all__ = [
    # Data Quality Errors
    "DataQualityError",
    "InsufficientHistoryError",
    "DuplicateObservationError",
    "MalformedObservationError",
    "OutOfOrderObservationError",
    # Session Errors
    "ValidationError",
    "AuthenticationRequiredError",
    # Collection Errors
    "CollectionError",
    "LowQualityObservationError",
    "CycleDeadlineExceededError",
    # System Failures
    "SystemFailureError",
    "StorageError",
    "ConfigurationError",
    "SchedulerError",
    "AlreadyRunningError",
]
