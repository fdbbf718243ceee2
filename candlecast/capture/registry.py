"""Registry of capture schedulers keyed by session id."""

import threading
from dataclasses import replace
from typing import Callable, Optional

from ..collaborators import VisionCollaborator
from ..config.defaults import AppConfig, CaptureParams
from ..data.normalizer import ObservationNormalizer
from ..errors import AlreadyRunningError
from ..logging.config import get_capture_logger
from ..persistence.observation_store import ObservationStore
from ..prediction.engine import PredictionEngine
from ..prediction.verification import PredictionVerifier
from ..session.cache import SessionCache
from ..utils.time import Clock, utc_now
from .scheduler import CaptureScheduler, CycleReport, SchedulerStatus

VisionFactory = Callable[[str], VisionCollaborator]
PairConfigResolver = Callable[[str], AppConfig]


class CaptureRegistry:
    """
    Owns one CaptureScheduler per session.

    Loops for different sessions are independent. Invalidating a session in
    the cache stops its loop. A stopped loop leaves the registry together
    with its released vision handle; the next start builds a fresh one.

    When a ``config_resolver`` is given, each scheduler runs with the capture
    and normalization parameters resolved for its trading pair.
    """

    def __init__(
        self,
        session_cache: SessionCache,
        vision_factory: VisionFactory,
        observations: ObservationStore,
        engine: PredictionEngine,
        verifier: PredictionVerifier,
        normalizer: Optional[ObservationNormalizer] = None,
        params: Optional[CaptureParams] = None,
        config_resolver: Optional[PairConfigResolver] = None,
        clock: Clock = utc_now
    ) -> None:
        self.session_cache = session_cache
        self.vision_factory = vision_factory
        self.observations = observations
        self.engine = engine
        self.verifier = verifier
        self.normalizer = normalizer or ObservationNormalizer()
        self.params = params or CaptureParams()
        self.config_resolver = config_resolver
        self.clock = clock
        self.logger = get_capture_logger(__name__)

        self._schedulers: dict[str, CaptureScheduler] = {}
        self._lock = threading.Lock()

        session_cache.add_invalidation_listener(self._on_session_invalidated)

    def _create_scheduler(self, session_id: str, trading_pair: Optional[str] = None) -> CaptureScheduler:
        pair = trading_pair or self.params.trading_pair
        params, normalizer = self.params, self.normalizer
        if self.config_resolver is not None:
            pair_config = self.config_resolver(pair)
            params = pair_config.capture
            normalizer = ObservationNormalizer(pair_config.normalization)

        return CaptureScheduler(
            session_cache=self.session_cache,
            vision=self.vision_factory(session_id),
            observations=self.observations,
            engine=self.engine,
            verifier=self.verifier,
            normalizer=normalizer,
            params=replace(params, trading_pair=pair),
            clock=self.clock,
        )

    def get(self, session_id: str) -> Optional[CaptureScheduler]:
        with self._lock:
            return self._schedulers.get(session_id)

    def start(
        self,
        session_id: str,
        interval_ms: Optional[int] = None,
        trading_pair: Optional[str] = None
    ) -> SchedulerStatus:
        """
        Start capturing for a session.

        Raises:
            AlreadyRunningError: the session already has a running loop
        """
        with self._lock:
            current = self._schedulers.get(session_id)
            if current is not None and current.is_running:
                raise AlreadyRunningError(
                    "Capture already running for session", session_id=session_id
                )

            scheduler = self._create_scheduler(session_id, trading_pair)
            scheduler.start(session_id, interval_ms)
            self._schedulers[session_id] = scheduler

        return scheduler.status()

    def stop(self, session_id: str) -> bool:
        """Stop a session's loop and drop it. Returns False if it was not running."""
        with self._lock:
            scheduler = self._schedulers.pop(session_id, None)
        if scheduler is None or not scheduler.is_running:
            return False
        scheduler.stop()
        return True

    def status(self, session_id: str) -> Optional[SchedulerStatus]:
        scheduler = self.get(session_id)
        return scheduler.status() if scheduler else None

    def active_sessions(self) -> list[str]:
        with self._lock:
            return [sid for sid, s in self._schedulers.items() if s.is_running]

    def run_once(self, session_id: str, trading_pair: Optional[str] = None) -> CycleReport:
        """
        Manual capture. Runs on the session's loop when it is running for the
        same pair, otherwise on a one-off scheduler with its own vision handle,
        released after the cycle.
        """
        scheduler = self.get(session_id)
        if (scheduler is not None and scheduler.is_running
                and trading_pair in (None, scheduler.trading_pair)):
            return scheduler.run_cycle(session_id, trading_pair)

        scheduler = self._create_scheduler(session_id, trading_pair)
        scheduler.vision.open(session_id)
        try:
            return scheduler.run_cycle(session_id, trading_pair)
        finally:
            scheduler.vision.close()

    def stop_all(self) -> int:
        """Stop every running loop; returns how many were stopped."""
        stopped = 0
        for session_id in self.active_sessions():
            if self.stop(session_id):
                stopped += 1
        self.logger.info("Stopped all capture loops", stopped=stopped)
        return stopped

    def _on_session_invalidated(self, session_id: str, reason: str) -> None:
        if self.stop(session_id):
            self.logger.warning(
                "Capture stopped after session invalidation",
                session_id=session_id,
                reason=reason,
            )
