"""
Collection error classifications for capture cycles.

A collection error belongs to exactly one cycle. It is logged, counted towards
the degraded threshold and retried implicitly on the next tick.
"""

from typing import Optional, Dict, Any


class CollectionError(Exception):
    """Vision collaborator failure during one capture cycle."""

    def __init__(self, message: str, session_id: Optional[str] = None,
                 stage: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.session_id = session_id
        self.stage = stage
        self.context = context or {}
        self.recoverable = True


class LowQualityObservationError(CollectionError):
    """Collaborator reported a failed or zero-confidence extraction."""

    def __init__(self, message: str, confidence: Optional[float] = None,
                 extraction_method: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.confidence = confidence
        self.extraction_method = extraction_method


class CycleDeadlineExceededError(CollectionError):
    """Cycle did not finish within the per-cycle deadline."""

    def __init__(self, message: str, deadline_seconds: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.deadline_seconds = deadline_seconds
