"""Pytest configuration and shared fixtures."""

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pytest

from candlecast.collaborators import (
    AuthenticationVerifier,
    VerificationResult,
    VisionCollaborator,
)
from candlecast.data.models import CandleObservation, Direction, RawObservation
from candlecast.persistence.observation_store import ObservationStore
from candlecast.persistence.prediction_store import PredictionStore
from candlecast.persistence.session_store import SessionStore
from candlecast.session.cache import SessionCache

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
PAIR = "EUR/USD OTC"
SESSION = "session-1"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeVerifier(AuthenticationVerifier):
    """Authentication verifier with a switchable answer."""

    def __init__(self, logged_in: bool = True, error: Optional[Exception] = None):
        self.logged_in = logged_in
        self.error = error
        self.calls: list[str] = []

    def verify(self, session_id: str) -> VerificationResult:
        self.calls.append(session_id)
        if self.error is not None:
            raise self.error
        message = "User is logged in" if self.logged_in else "Login form detected"
        return VerificationResult(logged_in=self.logged_in, details={"message": message})


class ScriptedVision(VisionCollaborator):
    """Vision collaborator replaying a fixed list of readings or exceptions."""

    def __init__(self, readings=(), supports_cancellation: bool = False, delay: float = 0.0):
        self.readings = list(readings)
        self.supports_cancellation = supports_cancellation
        self.delay = delay
        self.index = 0
        self.calls = 0
        self.opened: list[str] = []
        self.closed = 0
        self.cancelled = 0
        self._cancel_event = threading.Event()

    def open(self, session_id: str) -> None:
        self.opened.append(session_id)
        self._cancel_event.clear()

    def capture_observation(self, session_id: str) -> RawObservation:
        self.calls += 1
        if self.delay:
            self._cancel_event.wait(self.delay)
        if self.index >= len(self.readings):
            raise RuntimeError("script exhausted")
        reading = self.readings[self.index]
        self.index += 1
        if isinstance(reading, Exception):
            raise reading
        return reading

    def cancel(self) -> None:
        self.cancelled += 1
        self._cancel_event.set()

    def close(self) -> None:
        self.closed += 1


def make_reading(
    timestamp: datetime,
    direction: Direction,
    price: float = 1.1,
    confidence: float = 90.0
) -> RawObservation:
    close = price + 0.001 if direction is Direction.UP else price - 0.001
    return RawObservation(
        timestamp=timestamp,
        confidence=confidence,
        extraction_method="test",
        open=price,
        high=max(price, close) + 0.0005,
        low=min(price, close) - 0.0005,
        close=close,
    )


def make_candle(
    timestamp: datetime,
    direction: Direction,
    session_id: str = SESSION,
    trading_pair: str = PAIR,
    price: float = 1.1
) -> CandleObservation:
    close = price + 0.001 if direction is Direction.UP else price - 0.001
    return CandleObservation(
        trading_pair=trading_pair,
        timeframe_seconds=60,
        timestamp=timestamp,
        open=price,
        high=max(price, close),
        low=min(price, close),
        close=close,
        confidence=90.0,
        session_id=session_id,
        extraction_method="test",
    )


def alternating(count: int, first: Direction = Direction.UP) -> list[Direction]:
    return [first if i % 2 == 0 else first.opposite() for i in range(count)]


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "candlecast_test.db")


@pytest.fixture
def observation_store(db_path, clock) -> ObservationStore:
    return ObservationStore(db_path, clock=clock)


@pytest.fixture
def prediction_store(db_path, clock) -> PredictionStore:
    return PredictionStore(db_path, clock=clock)


@pytest.fixture
def session_store(db_path) -> SessionStore:
    return SessionStore(db_path)


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def session_cache(session_store, verifier, clock) -> SessionCache:
    return SessionCache(session_store, verifier, clock=clock)


@pytest.fixture
def candles():
    """Factory storing a sequence of directions one minute apart."""
    def _store(store: ObservationStore, directions, start: datetime = BASE_TIME,
               session_id: str = SESSION, trading_pair: str = PAIR):
        stored = []
        for i, direction in enumerate(directions):
            candle = make_candle(start + timedelta(minutes=i), direction, session_id, trading_pair)
            stored.append(store.insert(candle))
        return stored
    return _store
