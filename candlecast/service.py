"""
In-process dashboard service.

Wires the stores, the session cache, the capture registry and the prediction
engine together and exposes the operations the dashboard calls. Every read of
observation or prediction data requires a usable session.

Configuration comes from ``ConfigLoader``: the deployment-wide settings build
the service, and each capture loop gets the overrides of its trading pair.
"""

from typing import Any, Optional

import structlog

from .capture.registry import CaptureRegistry, VisionFactory
from .collaborators import AuthenticationVerifier
from .config.defaults import AppConfig
from .config.loader import ConfigLoader
from .data.normalizer import ObservationNormalizer
from .errors import AuthenticationRequiredError
from .logging.config import configure_logging
from .persistence.observation_store import ObservationStore
from .persistence.prediction_store import PredictionStore
from .persistence.session_store import SessionStore
from .prediction.engine import PredictionEngine
from .prediction.verification import PredictionVerifier
from .session.cache import SessionCache
from .session.reaper import SessionReaper
from .utils.time import Clock, format_time, utc_now

logger = structlog.get_logger(__name__)


class DashboardService:
    """Facade over the capture and prediction pipeline."""

    def __init__(
        self,
        verifier: AuthenticationVerifier,
        vision_factory: VisionFactory,
        config: Optional[AppConfig] = None,
        config_loader: Optional[ConfigLoader] = None,
        clock: Clock = utc_now
    ) -> None:
        self.config_loader = config_loader or ConfigLoader.create()
        self.config = config or self.config_loader.load()
        self.clock = clock
        self.logger = logger

        db_path = self.config.storage.db_path
        self.observations = ObservationStore(db_path, clock=clock)
        self.predictions = PredictionStore(db_path, clock=clock)
        self.sessions = SessionStore(db_path)

        self.session_cache = SessionCache(self.sessions, verifier, self.config.session, clock=clock)
        self.reaper = SessionReaper(self.session_cache, retention_sweep=self.purge_observations)

        self.engine = PredictionEngine(
            self.observations,
            self.predictions,
            pattern_params=self.config.pattern,
            trend_params=self.config.trend,
            fusion_params=self.config.fusion,
            clock=clock,
        )
        self.verifier = PredictionVerifier(
            self.observations, self.predictions, self.config.verification, clock=clock
        )
        self.captures = CaptureRegistry(
            session_cache=self.session_cache,
            vision_factory=vision_factory,
            observations=self.observations,
            engine=self.engine,
            verifier=self.verifier,
            normalizer=ObservationNormalizer(self.config.normalization),
            params=self.config.capture,
            config_resolver=self.config_for_pair,
            clock=clock,
        )

        self.logger.info("Dashboard service initialized", db_path=db_path)

    @classmethod
    def from_config_dir(
        cls,
        verifier: AuthenticationVerifier,
        vision_factory: VisionFactory,
        config_dir: Optional[str] = None,
        overrides: Optional[dict[str, Any]] = None,
        clock: Clock = utc_now
    ) -> "DashboardService":
        """Load settings.yaml from ``config_dir``, configure logging and build the service."""
        loader = ConfigLoader.create(config_dir)
        config = loader.load(overrides=overrides)
        configure_logging(level=config.logging.level, format_json=config.logging.format_json)
        return cls(verifier, vision_factory, config=config, config_loader=loader, clock=clock)

    def config_for_pair(self, trading_pair: str) -> AppConfig:
        """Service configuration with the trading pair's overrides applied."""
        return self.config_loader.for_trading_pair(self.config, trading_pair)

    def _require_usable(self, session_id: str) -> None:
        result = self.session_cache.is_usable(session_id)
        if not result.usable:
            raise AuthenticationRequiredError(
                "Authentication required",
                session_id=session_id,
                reason=result.reason,
            )

    # Session management

    def validate_session(self, session_id: str) -> dict[str, Any]:
        result = self.session_cache.is_usable(session_id)
        return {
            "session_id": session_id,
            "valid": result.usable,
            "cached": result.cached,
            "message": result.reason,
            "session": result.record.to_dict() if result.record else None,
        }

    def invalidate_session(self, session_id: str, reason: str = "Manually invalidated") -> dict[str, Any]:
        return self.session_cache.invalidate(session_id, reason).to_dict()

    def refresh_session(self, session_id: str, hours: Optional[int] = None) -> Optional[dict[str, Any]]:
        record = self.session_cache.refresh(session_id, hours)
        return record.to_dict() if record else None

    def cleanup_sessions(self) -> int:
        return self.session_cache.reap_expired()

    def purge_observations(self) -> int:
        """Delete observations older than the configured retention."""
        return self.observations.purge_older_than(self.config.storage.retention_days)

    def session_stats(self) -> dict[str, Any]:
        stats = self.session_cache.stats()
        stats["recent_sessions"] = [r.to_dict() for r in self.session_cache.list_sessions()]
        return stats

    # Capture

    def start_capture(
        self,
        session_id: str,
        interval_ms: Optional[int] = None,
        trading_pair: Optional[str] = None
    ) -> dict[str, Any]:
        """Start the session's capture loop; refused for unauthenticated sessions."""
        self._require_usable(session_id)
        return self.captures.start(session_id, interval_ms, trading_pair).to_dict()

    def stop_capture(self, session_id: str) -> bool:
        return self.captures.stop(session_id)

    def get_status(self, session_id: str) -> dict[str, Any]:
        status = self.captures.status(session_id)
        if status is None:
            return {
                "running": False,
                "last_cycle_at": None,
                "last_error": None,
                "degraded": False,
                "session_id": session_id,
            }
        return status.to_dict()

    def manual_capture(self, session_id: str, trading_pair: Optional[str] = None) -> dict[str, Any]:
        self._require_usable(session_id)
        return self.captures.run_once(session_id, trading_pair).to_dict()

    # Data access

    def get_recent_observations(self, session_id: str, limit: int = 20) -> list[dict[str, Any]]:
        self._require_usable(session_id)
        return [obs.to_dict() for obs in self.observations.recent(session_id, limit=limit)]

    def get_latest_prediction(self, session_id: str) -> Optional[dict[str, Any]]:
        self._require_usable(session_id)
        prediction = self.engine.latest_prediction(session_id)
        return prediction.to_dict() if prediction else None

    def get_recent_predictions(self, session_id: str, limit: int = 5) -> list[dict[str, Any]]:
        self._require_usable(session_id)
        return [p.to_dict() for p in self.engine.recent_predictions(session_id, limit)]

    def get_accuracy(self, session_id: str, window: Optional[int] = None) -> dict[str, Any]:
        self._require_usable(session_id)
        summary = self.verifier.accuracy(session_id, window)
        return {
            "window": summary.window,
            "verified_count": summary.verified_count,
            "correct_count": summary.correct_count,
            "accuracy": summary.accuracy,
        }

    def get_stats(self, session_id: str) -> dict[str, Any]:
        self._require_usable(session_id)
        capture_stats = self.observations.stats(session_id)
        capture_stats["last_capture_time"] = format_time(capture_stats["last_capture_time"])
        return {
            "capture": capture_stats,
            "predictions": self.verifier.accuracy_stats(session_id=session_id),
            "status": self.get_status(session_id),
        }

    # Lifecycle

    def start_background_tasks(self) -> None:
        self.reaper.start()

    def shutdown(self) -> None:
        """Stop every capture loop and the session reaper."""
        self.captures.stop_all()
        self.reaper.stop()
        self.logger.info("Dashboard service shut down")
