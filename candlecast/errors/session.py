"""
Session authentication errors.

Raised when a session is not authenticated against the trading platform.
Recoverable only by the user logging in again, so they are surfaced directly.
"""

from typing import Optional, Dict, Any


class ValidationError(Exception):
    """Session is not authenticated."""

    def __init__(self, message: str, session_id: Optional[str] = None,
                 reason: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.session_id = session_id
        self.reason = reason
        self.context = context or {}
        self.recoverable = True
        self.requires_reauthentication = True


class AuthenticationRequiredError(ValidationError):
    """Data access refused because the session is not usable."""
