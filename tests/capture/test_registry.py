"""Tests for the per-session capture registry."""

from dataclasses import replace
from datetime import timedelta

import pytest

from candlecast.capture.registry import CaptureRegistry
from candlecast.capture.scheduler import CycleOutcome
from candlecast.config.defaults import CaptureParams, get_default_config
from candlecast.data.models import Direction
from candlecast.errors import AlreadyRunningError
from candlecast.prediction.engine import PredictionEngine
from candlecast.prediction.verification import PredictionVerifier

from conftest import BASE_TIME, ScriptedVision, make_reading, wait_for


@pytest.fixture
def visions():
    return {}


@pytest.fixture
def make_registry(session_cache, observation_store, prediction_store, clock, visions):
    """Factory for registries whose vision handles never replay each other's readings."""
    built = []

    def factory(session_id):
        offset = sum(len(v) for v in visions.values()) * 1000
        vision = ScriptedVision([
            make_reading(BASE_TIME + timedelta(minutes=offset + i), Direction.UP)
            for i in range(20)
        ])
        visions.setdefault(session_id, []).append(vision)
        return vision

    def _build(**kwargs):
        registry = CaptureRegistry(
            session_cache=session_cache,
            vision_factory=factory,
            observations=observation_store,
            engine=PredictionEngine(observation_store, prediction_store, clock=clock),
            verifier=PredictionVerifier(observation_store, prediction_store, clock=clock),
            clock=clock,
            **kwargs,
        )
        built.append(registry)
        return registry

    yield _build
    for registry in built:
        registry.stop_all()


@pytest.fixture
def registry(make_registry):
    return make_registry()


class TestCaptureRegistry:
    """Independent per-session loops."""

    def test_sessions_run_independently(self, registry, visions):
        registry.start("a", interval_ms=60_000, trading_pair="PAIR-A")
        registry.start("b", interval_ms=60_000, trading_pair="PAIR-B")

        assert wait_for(lambda: registry.status("a").cycles_completed >= 1)
        assert wait_for(lambda: registry.status("b").cycles_completed >= 1)
        assert sorted(registry.active_sessions()) == ["a", "b"]

        assert registry.stop("a") is True
        assert registry.status("a") is None
        assert registry.status("b").running is True

    def test_same_session_twice_rejected(self, registry):
        registry.start("a", interval_ms=60_000)

        with pytest.raises(AlreadyRunningError):
            registry.start("a", interval_ms=60_000)

    def test_stop_unknown_session(self, registry):
        assert registry.stop("nope") is False
        assert registry.status("nope") is None

    def test_invalidation_stops_loop(self, registry, session_cache, visions):
        registry.start("a", interval_ms=60_000)
        assert wait_for(lambda: registry.status("a").cycles_completed >= 1)

        session_cache.invalidate("a", "logged out elsewhere")

        assert registry.get("a") is None
        assert registry.active_sessions() == []
        assert visions["a"][0].closed == 1

    def test_stop_all(self, registry):
        registry.start("a", interval_ms=60_000, trading_pair="PAIR-A")
        registry.start("b", interval_ms=60_000, trading_pair="PAIR-B")

        assert registry.stop_all() == 2
        assert registry.active_sessions() == []
        assert registry.get("a") is None
        assert registry.get("b") is None

    def test_run_once_without_loop_releases_vision(self, registry, visions):
        report = registry.run_once("solo")

        assert report.outcome is CycleOutcome.COMPLETED
        assert visions["solo"][0].opened == ["solo"]
        assert visions["solo"][0].closed == 1
        assert registry.get("solo") is None

    def test_run_once_after_stop_never_reuses_released_vision(self, registry, visions):
        registry.start("a", interval_ms=60_000)
        assert wait_for(lambda: registry.status("a").cycles_run >= 1)
        registry.stop("a")

        report = registry.run_once("a")

        assert report.outcome is CycleOutcome.COMPLETED
        loop_vision, manual_vision = visions["a"]
        assert loop_vision.closed == 1
        assert loop_vision.calls == 1
        assert manual_vision.opened == ["a"]
        assert manual_vision.calls == 1
        assert manual_vision.closed == 1

    def test_run_once_uses_running_loop(self, registry, visions):
        registry.start("a", interval_ms=60_000)
        assert wait_for(lambda: registry.status("a").cycles_run >= 1)

        report = registry.run_once("a")

        assert report.outcome is CycleOutcome.COMPLETED
        assert len(visions["a"]) == 1
        assert visions["a"][0].calls == 2

    def test_restart_builds_fresh_scheduler(self, registry, visions):
        registry.start("a", interval_ms=60_000)
        assert wait_for(lambda: registry.status("a").cycles_run >= 1)
        registry.stop("a")

        registry.start("a", interval_ms=60_000)
        assert wait_for(lambda: registry.status("a").cycles_run >= 1)

        assert len(visions["a"]) == 2
        assert visions["a"][0].closed == 1
        assert visions["a"][1].opened == ["a"]


class TestPairConfiguration:
    """Per trading pair capture and normalization parameters."""

    @pytest.fixture
    def resolver(self):
        base = get_default_config()

        def _resolve(trading_pair):
            if trading_pair == "BTC/USD":
                return replace(base, capture=CaptureParams(timeframe_seconds=300))
            return base
        return _resolve

    def test_manual_capture_uses_pair_timeframe(self, make_registry, resolver):
        registry = make_registry(config_resolver=resolver)

        btc = registry.run_once("a", trading_pair="BTC/USD")
        default = registry.run_once("b")

        assert btc.observation.trading_pair == "BTC/USD"
        assert btc.observation.timeframe_seconds == 300
        assert default.observation.timeframe_seconds == 60

    def test_loop_uses_pair_timeframe(self, make_registry, resolver):
        registry = make_registry(config_resolver=resolver)

        registry.start("a", interval_ms=60_000, trading_pair="BTC/USD")
        scheduler = registry.get("a")

        assert scheduler.trading_pair == "BTC/USD"
        assert scheduler.params.timeframe_seconds == 300
