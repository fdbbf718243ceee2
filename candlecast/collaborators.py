"""
Interfaces for the external collaborators the pipeline consumes.

The browser-automation driver and the chart extraction routine live outside
this package. They are reached only through these two interfaces.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from .data.models import RawObservation


@dataclass(frozen=True)
class VerificationResult:
    """Answer of the authentication verifier."""
    logged_in: bool
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> str:
        if "message" in self.details:
            return str(self.details["message"])
        return "Logged in" if self.logged_in else "Not logged in"


class AuthenticationVerifier(ABC):
    """Expensive check of whether a session is logged in on the platform."""

    @abstractmethod
    def verify(self, session_id: str) -> VerificationResult:
        """
        Check the platform login state for a session.

        May block on network or browser I/O. Failures may be raised; the
        session cache treats any exception as a failed verification.
        """
        pass


class VisionCollaborator(ABC):
    """
    Produces raw chart readings for a session.

    A collaborator owns one scoped platform resource (a browser page or tab)
    per capture loop: ``open`` acquires it, ``close`` releases it.
    """

    supports_cancellation: bool = False

    def open(self, session_id: str) -> None:
        """Acquire the scoped resource for a session."""
        pass

    @abstractmethod
    def capture_observation(self, session_id: str) -> RawObservation:
        """
        Capture one raw reading.

        Readings may be partial or low-confidence. An unusable reading is
        reported as ``RawObservation.failed(...)`` rather than invented data.
        """
        pass

    def cancel(self) -> None:
        """Abort an in-flight ``capture_observation`` call, if supported."""
        pass

    def close(self) -> None:
        """Release the scoped resource. Must be safe to call more than once."""
        pass
