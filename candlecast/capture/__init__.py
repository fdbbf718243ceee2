"""
Capture scheduling.
"""
from .registry import CaptureRegistry
from .scheduler import CaptureScheduler, CycleOutcome, CycleReport, SchedulerStatus

__all__ = [
    "CaptureRegistry",
    "CaptureScheduler",
    "CycleOutcome",
    "CycleReport",
    "SchedulerStatus",
]
