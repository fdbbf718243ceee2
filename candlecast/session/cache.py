"""
Session validation cache.

Answers "is this session currently authenticated?" from the stored
``SessionRecord`` whenever the last successful validation is recent enough,
and only falls back to the external verifier when it is not. A missing record
is never assumed valid.
"""

import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterator, Optional

from ..collaborators import AuthenticationVerifier
from ..config.defaults import SessionCacheParams
from ..logging.config import get_session_logger, log_session_validation
from ..persistence.session_store import SessionStore
from ..utils.time import Clock, utc_now
from .models import (
    SessionRecord,
    SessionStatus,
    UsabilityResult,
    ValidationEntry,
    ValidationMethod,
)

InvalidationListener = Callable[[str, str], None]


class SessionCache:
    """
    Cached session validation backed by the session store.

    Each session id has its own lock, so work on one session never waits on
    another, while two updates of the same session always serialize. A lock
    lives only while some thread holds or waits on it.
    """

    def __init__(
        self,
        store: SessionStore,
        verifier: AuthenticationVerifier,
        params: Optional[SessionCacheParams] = None,
        clock: Clock = utc_now
    ):
        self.store = store
        self.verifier = verifier
        self.params = params or SessionCacheParams()
        self.clock = clock
        self.logger = get_session_logger(__name__)

        # session_id -> [lock, holders]
        self._locks: dict[str, list] = {}
        self._locks_guard = threading.Lock()
        self._listeners: list[InvalidationListener] = []

    @property
    def rolling_ttl(self) -> timedelta:
        return timedelta(hours=self.params.rolling_ttl_hours)

    @contextmanager
    def _session_lock(self, session_id: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.get(session_id)
            if entry is None:
                entry = self._locks[session_id] = [threading.Lock(), 0]
            entry[1] += 1

        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[session_id]

    def add_invalidation_listener(self, listener: InvalidationListener) -> None:
        """Register ``listener(session_id, reason)``, called after every invalidation."""
        self._listeners.append(listener)

    def get(self, session_id: str) -> Optional[SessionRecord]:
        return self.store.get(session_id)

    def is_usable(self, session_id: str) -> UsabilityResult:
        """
        Check whether a session may be used right now.

        Fast path: an active, validated, unexpired record checked within the
        revalidation window is usable without calling the verifier; its TTL is
        extended and its activity bumped. Anything else goes to the verifier.
        """
        with self._session_lock(session_id):
            now = self.clock()
            record = self.store.get(session_id)

            if record is not None and record.is_usable_at(now, self.params.revalidation_window_seconds):
                expires_at = now + self.rolling_ttl
                if self.store.touch(session_id, now, expires_at):
                    record = record.with_updates(last_activity=now, expires_at=expires_at)
                    log_session_validation(
                        self.logger, session_id, ValidationMethod.CACHED.value,
                        True, "Cached validation still fresh"
                    )
                    return UsabilityResult(
                        usable=True, record=record,
                        reason="Cached validation still fresh", cached=True
                    )

            self.logger.debug(
                "Cache miss, verifying session",
                session_id=session_id,
                reason=self._miss_reason(record, now),
            )
            return self._validate_fresh(session_id, record, now)

    def _miss_reason(self, record: Optional[SessionRecord], now: datetime) -> str:
        if record is None:
            return "no_record"
        if record.status is not SessionStatus.ACTIVE:
            return f"status_{record.status.value}"
        if record.expires_at <= now:
            return "expired"
        return "revalidation_due"

    def _validate_fresh(
        self,
        session_id: str,
        record: Optional[SessionRecord],
        now: datetime
    ) -> UsabilityResult:
        """Slow path. Caller holds the session lock."""
        if record is None:
            record = SessionRecord(
                session_id=session_id,
                status=SessionStatus.PENDING,
                is_validated=False,
                last_validation_check=now,
                last_activity=now,
                expires_at=now + self.rolling_ttl,
            )
            self.store.save(record)
            self.logger.info("Created pending session record", session_id=session_id)

        attempts = record.validation_attempts + 1

        try:
            result = self.verifier.verify(session_id)
            logged_in = result.logged_in
            message = result.message
        except Exception as e:
            logged_in = False
            message = f"Verification error: {e}"
            self.logger.error(
                "Authentication verifier raised",
                session_id=session_id,
                error=str(e),
                error_type=type(e).__name__,
            )

        if logged_in:
            updated = record.with_updates(
                status=SessionStatus.ACTIVE,
                is_validated=True,
                last_validation_check=now,
                last_activity=now,
                expires_at=now + self.rolling_ttl,
                validation_attempts=attempts,
                login_timestamp=record.login_timestamp or now,
            )
        else:
            updated = record.with_updates(
                status=SessionStatus.INVALID,
                is_validated=False,
                last_validation_check=now,
                last_activity=now,
                validation_attempts=attempts,
            )

        entry = ValidationEntry(
            timestamp=now, success=logged_in, message=message, method=ValidationMethod.FRESH
        )
        self.store.save(updated, entry)
        updated = updated.with_updates(
            validation_history=record.validation_history + (entry,)
        )

        log_session_validation(
            self.logger, session_id, ValidationMethod.FRESH.value, logged_in, message,
            context={"validation_attempts": attempts},
        )
        return UsabilityResult(usable=logged_in, record=updated, reason=message)

    def invalidate(self, session_id: str, reason: str = "Manually invalidated") -> SessionRecord:
        """
        Force a session invalid. The next ``is_usable`` takes the slow path.

        Listeners are notified after the record is written.
        """
        with self._session_lock(session_id):
            now = self.clock()
            record = self.store.get(session_id)
            if record is None:
                record = SessionRecord(
                    session_id=session_id,
                    status=SessionStatus.INVALID,
                    is_validated=False,
                    last_validation_check=now,
                    last_activity=now,
                    expires_at=now,
                )
            else:
                record = record.with_updates(
                    status=SessionStatus.INVALID,
                    is_validated=False,
                    last_activity=now,
                )

            entry = ValidationEntry(
                timestamp=now, success=False, message=reason, method=ValidationMethod.MANUAL
            )
            self.store.save(record, entry)

        self.logger.warning("Session invalidated", session_id=session_id, reason=reason)

        for listener in list(self._listeners):
            try:
                listener(session_id, reason)
            except Exception as e:
                self.logger.error(
                    "Invalidation listener failed",
                    session_id=session_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        return record.with_updates(validation_history=record.validation_history + (entry,))

    def refresh(self, session_id: str, hours: Optional[int] = None) -> Optional[SessionRecord]:
        """
        Extend ``expires_at`` of an existing record to now + ``hours``.

        Status is left untouched, so refreshing an invalid session does not
        make it usable. Returns None when no record exists.
        """
        hours = self.params.rolling_ttl_hours if hours is None else hours
        with self._session_lock(session_id):
            now = self.clock()
            record = self.store.get(session_id)
            if record is None:
                return None

            record = record.with_updates(
                expires_at=now + timedelta(hours=hours),
                last_activity=now,
            )
            entry = ValidationEntry(
                timestamp=now,
                success=True,
                message=f"Session refreshed for {hours} hours",
                method=ValidationMethod.SYSTEM,
            )
            self.store.save(record, entry)

        self.logger.info("Session refreshed", session_id=session_id, hours=hours)
        return record.with_updates(validation_history=record.validation_history + (entry,))

    def reap_expired(self) -> int:
        """
        Delete records past ``expires_at`` or idle beyond the idle bound while
        not active. The deletion is a single store transaction, so it may run
        alongside lookups and upserts.
        """
        now = self.clock()
        idle_cutoff = now - timedelta(days=self.params.idle_bound_days)
        removed = self.store.delete_expired(now, idle_cutoff)

        if removed:
            self.logger.info("Reaped expired sessions", removed=removed)
        return removed

    def list_sessions(self, limit: int = 10) -> list[SessionRecord]:
        return self.store.list_sessions(limit)

    def stats(self) -> dict:
        return self.store.stats()
