"""
Capture scheduler.

Runs one capture-and-predict cycle per tick for a single session:
Session check → Vision capture → Normalize → Dedup + store → Predict → Verify

Each scheduler owns one loop thread and one cycle worker. A tick that finds
the previous cycle still in flight is skipped, never queued. Every cycle has a
deadline; a cycle that misses it, or raises, counts as a failure and the loop
carries on. A cycle that misses its deadline is abandoned: the worker stops
before its next write, so the late reading is never stored.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..collaborators import VisionCollaborator
from ..config.defaults import CaptureParams
from ..data.models import CandleObservation
from ..data.normalizer import ObservationNormalizer
from ..errors import (
    AlreadyRunningError,
    CollectionError,
    CycleDeadlineExceededError,
    DuplicateObservationError,
    InsufficientHistoryError,
    MalformedObservationError,
    OutOfOrderObservationError,
    SchedulerError,
    StorageError,
)
from ..logging.config import get_capture_logger, log_cycle_outcome
from ..persistence.observation_store import ObservationStore
from ..prediction.engine import PredictionEngine
from ..prediction.models import PredictionRecord
from ..prediction.verification import PredictionVerifier
from ..session.cache import SessionCache
from ..utils.time import Clock, format_time, utc_now


class CycleOutcome(str, Enum):
    """How a capture cycle ended."""
    COMPLETED = "completed"
    SKIPPED_UNAUTHENTICATED = "skipped_unauthenticated"
    SKIPPED_BUSY = "skipped_busy"
    SKIPPED_OUT_OF_ORDER = "skipped_out_of_order"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True)
class CycleReport:
    """Result of one capture cycle."""
    session_id: str
    outcome: CycleOutcome
    started_at: datetime
    duration_ms: int = 0
    observation: Optional[CandleObservation] = None
    prediction: Optional[PredictionRecord] = None
    verified: tuple[PredictionRecord, ...] = ()
    message: Optional[str] = None
    error: Optional[BaseException] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "outcome": self.outcome.value,
            "started_at": format_time(self.started_at),
            "duration_ms": self.duration_ms,
            "observation": self.observation.to_dict() if self.observation else None,
            "prediction": self.prediction.to_dict() if self.prediction else None,
            "verified": [p.to_dict() for p in self.verified],
            "message": self.message,
        }


@dataclass(frozen=True)
class SchedulerStatus:
    """Externally visible scheduler state."""
    running: bool
    last_cycle_at: Optional[datetime]
    last_error: Optional[str]
    degraded: bool
    session_id: Optional[str] = None
    interval_ms: Optional[int] = None
    cycles_run: int = 0
    cycles_completed: int = 0
    consecutive_failures: int = 0
    skipped_ticks: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "last_cycle_at": format_time(self.last_cycle_at),
            "last_error": self.last_error,
            "degraded": self.degraded,
            "session_id": self.session_id,
            "interval_ms": self.interval_ms,
            "cycles_run": self.cycles_run,
            "cycles_completed": self.cycles_completed,
            "consecutive_failures": self.consecutive_failures,
            "skipped_ticks": self.skipped_ticks,
        }


class CaptureScheduler:
    """Interval-driven capture loop for one session at a time."""

    def __init__(
        self,
        session_cache: SessionCache,
        vision: VisionCollaborator,
        observations: ObservationStore,
        engine: PredictionEngine,
        verifier: PredictionVerifier,
        normalizer: Optional[ObservationNormalizer] = None,
        params: Optional[CaptureParams] = None,
        clock: Clock = utc_now
    ) -> None:
        self.session_cache = session_cache
        self.vision = vision
        self.observations = observations
        self.engine = engine
        self.verifier = verifier
        self.normalizer = normalizer or ObservationNormalizer()
        self.params = params or CaptureParams()
        self.clock = clock
        self.logger = get_capture_logger(__name__)

        self.session_id: Optional[str] = None
        self.trading_pair = self.params.trading_pair
        self.interval_ms: Optional[int] = None

        self._state_lock = threading.Lock()
        self._cycle_guard = threading.Lock()
        self._stop_event = threading.Event()
        self._running = False
        self._loop_thread: Optional[threading.Thread] = None
        self._cycle_thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None

        self._last_cycle_at: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._consecutive_failures = 0
        self._cycles_run = 0
        self._cycles_completed = 0
        self._skipped_ticks = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def degraded(self) -> bool:
        return self._consecutive_failures >= self.params.degraded_after_failures

    def start(
        self,
        session_id: str,
        interval_ms: Optional[int] = None,
        trading_pair: Optional[str] = None
    ) -> None:
        """
        Start the capture loop. The first cycle runs immediately, the next
        ones every ``interval_ms``.

        Raises:
            AlreadyRunningError: a loop is already active on this scheduler
            SchedulerError: the interval is not positive
        """
        interval_ms = self.params.default_interval_ms if interval_ms is None else interval_ms
        if interval_ms <= 0:
            raise SchedulerError(f"interval_ms must be positive, got {interval_ms}", session_id=session_id)

        with self._state_lock:
            if self._running:
                raise AlreadyRunningError(
                    "Capture loop already running",
                    session_id=self.session_id,
                    context={"requested_session_id": session_id},
                )

            self.vision.open(session_id)

            self.session_id = session_id
            self.interval_ms = interval_ms
            self.trading_pair = trading_pair or self.params.trading_pair
            self._consecutive_failures = 0
            self._last_error = None
            self._stop_event.clear()
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix=f"capture-cycle-{session_id}"
            )
            self._loop_thread = threading.Thread(
                target=self._loop, name=f"capture-loop-{session_id}", daemon=True
            )
            self._running = True
            self._loop_thread.start()

        self.logger.info(
            "Capture loop started",
            session_id=session_id,
            trading_pair=self.trading_pair,
            interval_ms=interval_ms,
        )

    def stop(self) -> None:
        """
        Stop the loop, wait for an in-flight cycle and release the vision
        handle. Safe to call repeatedly.
        """
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            self._stop_event.set()
            loop_thread, executor = self._loop_thread, self._executor
            self._loop_thread = self._executor = None

        current = threading.current_thread()
        from_inside = current is loop_thread or current is self._cycle_thread

        try:
            if self.vision.supports_cancellation:
                try:
                    self.vision.cancel()
                except Exception as e:
                    self.logger.warning(
                        "Vision cancellation failed",
                        session_id=self.session_id,
                        error=str(e),
                    )

            if loop_thread is not None and not from_inside:
                loop_thread.join()
            if executor is not None:
                executor.shutdown(wait=not from_inside)
        finally:
            self.vision.close()

        self.logger.info(
            "Capture loop stopped",
            session_id=self.session_id,
            cycles_run=self._cycles_run,
        )

    def status(self) -> SchedulerStatus:
        with self._state_lock:
            return SchedulerStatus(
                running=self._running,
                last_cycle_at=self._last_cycle_at,
                last_error=self._last_error,
                degraded=self.degraded,
                session_id=self.session_id,
                interval_ms=self.interval_ms,
                cycles_run=self._cycles_run,
                cycles_completed=self._cycles_completed,
                consecutive_failures=self._consecutive_failures,
                skipped_ticks=self._skipped_ticks,
            )

    def run_cycle(self, session_id: Optional[str] = None, trading_pair: Optional[str] = None) -> CycleReport:
        """
        Run one cycle synchronously in the calling thread.

        Storage failures are recorded like any failed cycle and then re-raised
        to the caller.
        """
        session_id = session_id or self.session_id
        if session_id is None:
            raise SchedulerError("No session to capture for")
        trading_pair = trading_pair or self.trading_pair

        if not self._cycle_guard.acquire(blocking=False):
            return self._skip_busy(session_id)
        try:
            report = self._execute_cycle(session_id, trading_pair)
        finally:
            self._cycle_guard.release()

        self._record(report)
        if isinstance(report.error, StorageError):
            raise report.error
        return report

    def _loop(self) -> None:
        interval = self.interval_ms / 1000.0
        while not self._stop_event.is_set():
            try:
                self._tick()
            except Exception as e:
                self.logger.error(
                    "Capture tick raised",
                    session_id=self.session_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            if self._stop_event.wait(interval):
                break

    def _tick(self) -> None:
        session_id, trading_pair = self.session_id, self.trading_pair
        if not self._cycle_guard.acquire(blocking=False):
            self._skip_busy(session_id)
            return

        executor = self._executor
        if executor is None:
            self._cycle_guard.release()
            return

        started_at = self.clock()
        abandoned = threading.Event()
        try:
            future = executor.submit(self._guarded_cycle, session_id, trading_pair, abandoned)
        except RuntimeError:
            # Executor shut down by a concurrent stop()
            self._cycle_guard.release()
            return

        deadline = self.params.cycle_deadline_seconds
        try:
            report = future.result(timeout=deadline)
        except FutureTimeoutError:
            abandoned.set()
            error = CycleDeadlineExceededError(
                f"Cycle exceeded {deadline}s deadline",
                deadline_seconds=deadline,
                session_id=session_id,
                stage="cycle",
            )
            report = CycleReport(
                session_id=session_id,
                outcome=CycleOutcome.FAILED,
                started_at=started_at,
                duration_ms=int(deadline * 1000),
                message=str(error),
                error=error,
            )
        self._record(report)

    def _guarded_cycle(
        self,
        session_id: str,
        trading_pair: str,
        abandoned: threading.Event
    ) -> CycleReport:
        """Runs on the cycle worker; releases the guard when the cycle really ends."""
        self._cycle_thread = threading.current_thread()
        try:
            report = self._execute_cycle(session_id, trading_pair, abandoned)
            if abandoned.is_set():
                self.logger.warning(
                    "Late cycle result discarded",
                    session_id=session_id,
                    outcome=report.outcome.value,
                    duration_ms=report.duration_ms,
                )
            return report
        finally:
            self._cycle_thread = None
            self._cycle_guard.release()

    def _skip_busy(self, session_id: str) -> CycleReport:
        with self._state_lock:
            self._skipped_ticks += 1
        log_cycle_outcome(self.logger, session_id, CycleOutcome.SKIPPED_BUSY.value)
        return CycleReport(
            session_id=session_id,
            outcome=CycleOutcome.SKIPPED_BUSY,
            started_at=self.clock(),
            message="Previous cycle still running",
        )

    def _execute_cycle(
        self,
        session_id: str,
        trading_pair: str,
        abandoned: Optional[threading.Event] = None
    ) -> CycleReport:
        started_at = self.clock()
        t0 = time.monotonic()

        def report(outcome: CycleOutcome, **kwargs: Any) -> CycleReport:
            return CycleReport(
                session_id=session_id,
                outcome=outcome,
                started_at=started_at,
                duration_ms=int((time.monotonic() - t0) * 1000),
                **kwargs,
            )

        try:
            usability = self.session_cache.is_usable(session_id)
            if not usability.usable:
                return report(CycleOutcome.SKIPPED_UNAUTHENTICATED, message=usability.reason)

            observation = self._capture(session_id, trading_pair)

            self._ensure_not_abandoned(abandoned, session_id, "store")
            try:
                stored = self.observations.insert(
                    observation, duplicate_window_seconds=self.params.duplicate_window_seconds
                )
            except DuplicateObservationError as e:
                return report(CycleOutcome.DUPLICATE, observation=observation, message=str(e))
            except OutOfOrderObservationError as e:
                return report(CycleOutcome.SKIPPED_OUT_OF_ORDER, observation=observation, message=str(e))

            self._ensure_not_abandoned(abandoned, session_id, "predict")
            prediction = self._maybe_predict(session_id, trading_pair)
            self._ensure_not_abandoned(abandoned, session_id, "verify")
            verified = self.verifier.verify_pending(session_id, trading_pair)

            return report(
                CycleOutcome.COMPLETED,
                observation=stored,
                prediction=prediction,
                verified=tuple(verified),
            )
        except Exception as e:
            return report(CycleOutcome.FAILED, message=str(e), error=e)

    def _ensure_not_abandoned(
        self,
        abandoned: Optional[threading.Event],
        session_id: str,
        stage: str
    ) -> None:
        if abandoned is not None and abandoned.is_set():
            raise CycleDeadlineExceededError(
                f"Cycle abandoned after deadline before {stage}",
                deadline_seconds=self.params.cycle_deadline_seconds,
                session_id=session_id,
                stage=stage,
            )

    def _capture(self, session_id: str, trading_pair: str) -> CandleObservation:
        try:
            raw = self.vision.capture_observation(session_id)
        except CollectionError:
            raise
        except Exception as e:
            raise CollectionError(
                f"Vision capture failed: {e}", session_id=session_id, stage="capture"
            ) from e

        previous = self.observations.latest(trading_pair, session_id)
        try:
            return self.normalizer.normalize(
                raw,
                session_id=session_id,
                trading_pair=trading_pair,
                timeframe_seconds=self.params.timeframe_seconds,
                reference_price=previous.close if previous else None,
            )
        except MalformedObservationError as e:
            raise CollectionError(
                f"Unusable reading: {e}", session_id=session_id, stage="normalize"
            ) from e

    def _maybe_predict(self, session_id: str, trading_pair: str) -> Optional[PredictionRecord]:
        available = self.observations.count(session_id, trading_pair)
        if available < self.params.min_history:
            self.logger.debug(
                "Not enough history to predict",
                session_id=session_id,
                available=available,
                required=self.params.min_history,
            )
            return None

        try:
            return self.engine.predict(session_id, trading_pair)
        except InsufficientHistoryError as e:
            self.logger.info(
                "Prediction skipped",
                session_id=session_id,
                reason=str(e),
                required=e.required_count,
                available=e.available_count,
            )
            return None

    def _record(self, report: CycleReport) -> None:
        with self._state_lock:
            self._last_cycle_at = report.started_at
            self._cycles_run += 1

            if report.outcome is CycleOutcome.FAILED:
                self._consecutive_failures += 1
                self._last_error = report.message
                became_degraded = (
                    self._consecutive_failures == self.params.degraded_after_failures
                )
            else:
                if report.outcome is CycleOutcome.COMPLETED:
                    self._cycles_completed += 1
                    self._consecutive_failures = 0
                became_degraded = False
            failures = self._consecutive_failures

        log_cycle_outcome(
            self.logger,
            report.session_id,
            report.outcome.value,
            duration_ms=report.duration_ms,
            error=report.error,
            context={
                "consecutive_failures": failures,
                "predicted": report.prediction is not None,
                "verified": len(report.verified),
            },
        )
        if became_degraded:
            self.logger.warning(
                "Capture loop degraded",
                session_id=report.session_id,
                consecutive_failures=failures,
            )
