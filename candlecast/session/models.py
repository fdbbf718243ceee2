"""
Session data models.

A ``SessionRecord`` is the cached authentication state for one logical session
against the trading platform. Its validation history is append-only.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SessionStatus(str, Enum):
    """Session lifecycle states."""
    PENDING = "pending"
    ACTIVE = "active"
    INVALID = "invalid"
    EXPIRED = "expired"


class ValidationMethod(str, Enum):
    """How a validation history entry was produced."""
    CACHED = "cached"
    FRESH = "fresh"
    MANUAL = "manual"
    SYSTEM = "system"


@dataclass(frozen=True)
class ValidationEntry:
    """One validation history entry."""
    timestamp: datetime
    success: bool
    message: str
    method: ValidationMethod


@dataclass(frozen=True)
class SessionRecord:
    """Cached authentication state for one session."""
    session_id: str
    status: SessionStatus
    is_validated: bool
    last_validation_check: datetime
    last_activity: datetime
    expires_at: datetime
    validation_attempts: int = 0
    validation_history: tuple[ValidationEntry, ...] = field(default=())
    login_timestamp: Optional[datetime] = None

    def is_usable_at(self, now: datetime, revalidation_window_seconds: float) -> bool:
        """
        Cache-hit condition.

        Active, validated, not expired and validated recently enough. Any other
        record must go through the slow path.
        """
        if self.status is not SessionStatus.ACTIVE or not self.is_validated:
            return False
        if self.expires_at <= now:
            return False
        return (now - self.last_validation_check).total_seconds() < revalidation_window_seconds

    def with_updates(self, **changes: Any) -> "SessionRecord":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Plain representation without the validation history."""
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "is_validated": self.is_validated,
            "last_validation_check": self.last_validation_check.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "validation_attempts": self.validation_attempts,
            "login_timestamp": self.login_timestamp.isoformat() if self.login_timestamp else None,
        }


@dataclass(frozen=True)
class UsabilityResult:
    """Answer to "is this session currently authenticated?"."""
    usable: bool
    record: Optional[SessionRecord]
    reason: str
    cached: bool = False
