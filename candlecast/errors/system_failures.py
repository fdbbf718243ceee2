"""
System failure error classifications.

These exceptions represent failures of the infrastructure around the pipeline:
persistence, configuration and scheduler lifecycle misuse.
"""

from typing import Optional, Dict, Any


class SystemFailureError(Exception):
    """Base class for system-level failures."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.recoverable = False


class StorageError(SystemFailureError):
    """Document store persistence failure."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 target: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.target = target


class ConfigurationError(SystemFailureError):
    """Configuration failed validation."""

    def __init__(self, message: str, issues: Optional[list] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.issues = issues or []


class SchedulerError(SystemFailureError):
    """Capture scheduler lifecycle misuse."""

    def __init__(self, message: str, session_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.session_id = session_id


class AlreadyRunningError(SchedulerError):
    """A capture loop is already active for this scheduler."""
