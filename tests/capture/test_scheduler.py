"""Tests for the capture scheduler."""

import time
from datetime import timedelta
from unittest.mock import patch

import pytest

from candlecast.capture.scheduler import CaptureScheduler, CycleOutcome
from candlecast.config.defaults import CaptureParams
from candlecast.data.models import Direction, RawObservation
from candlecast.errors import AlreadyRunningError, SchedulerError, StorageError
from candlecast.prediction.engine import PredictionEngine
from candlecast.prediction.verification import PredictionVerifier
from candlecast.session.cache import SessionCache

from conftest import (
    BASE_TIME,
    PAIR,
    SESSION,
    FakeVerifier,
    ScriptedVision,
    alternating,
    make_reading,
    wait_for,
)


def readings_for(directions, start=BASE_TIME, step_seconds=60):
    return [
        make_reading(start + timedelta(seconds=i * step_seconds), d)
        for i, d in enumerate(directions)
    ]


@pytest.fixture
def build_scheduler(observation_store, prediction_store, session_cache, clock):
    """Factory wiring a scheduler around a scripted vision collaborator."""
    def _build(vision, cache=None, **param_overrides):
        params = CaptureParams(**param_overrides)
        return CaptureScheduler(
            session_cache=cache or session_cache,
            vision=vision,
            observations=observation_store,
            engine=PredictionEngine(observation_store, prediction_store, clock=clock),
            verifier=PredictionVerifier(observation_store, prediction_store, clock=clock),
            params=params,
            clock=clock,
        )
    return _build


class TestCaptureCycle:
    """Single cycles run synchronously."""

    def test_completed_cycle_stores_observation(self, build_scheduler, observation_store):
        scheduler = build_scheduler(ScriptedVision(readings_for([Direction.UP])))

        report = scheduler.run_cycle(SESSION)

        assert report.outcome is CycleOutcome.COMPLETED
        assert report.observation.id is not None
        assert report.prediction is None
        assert observation_store.count(SESSION, PAIR) == 1

    def test_unauthenticated_session_skipped(self, build_scheduler, session_store, clock):
        cache = SessionCache(session_store, FakeVerifier(logged_in=False), clock=clock)
        vision = ScriptedVision(readings_for([Direction.UP]))
        scheduler = build_scheduler(vision, cache=cache)

        report = scheduler.run_cycle(SESSION)

        assert report.outcome is CycleOutcome.SKIPPED_UNAUTHENTICATED
        assert vision.calls == 0
        assert scheduler.status().consecutive_failures == 0

    def test_duplicate_window(self, build_scheduler, observation_store):
        vision = ScriptedVision([
            make_reading(BASE_TIME, Direction.UP),
            make_reading(BASE_TIME + timedelta(seconds=25), Direction.DOWN),
            make_reading(BASE_TIME + timedelta(seconds=35), Direction.DOWN),
        ])
        scheduler = build_scheduler(vision)

        outcomes = [scheduler.run_cycle(SESSION).outcome for _ in range(3)]

        assert outcomes == [CycleOutcome.COMPLETED, CycleOutcome.DUPLICATE, CycleOutcome.COMPLETED]
        assert observation_store.count(SESSION) == 2

    def test_out_of_order_reading_skipped(self, build_scheduler, observation_store):
        vision = ScriptedVision([
            make_reading(BASE_TIME, Direction.UP),
            make_reading(BASE_TIME - timedelta(minutes=5), Direction.UP),
        ])
        scheduler = build_scheduler(vision)
        scheduler.run_cycle(SESSION)

        report = scheduler.run_cycle(SESSION)

        assert report.outcome is CycleOutcome.SKIPPED_OUT_OF_ORDER
        assert observation_store.count(SESSION) == 1

    def test_low_quality_reading_fails_cycle(self, build_scheduler, observation_store):
        vision = ScriptedVision([RawObservation.failed(BASE_TIME, "chart not visible")])
        scheduler = build_scheduler(vision)

        report = scheduler.run_cycle(SESSION)

        assert report.outcome is CycleOutcome.FAILED
        assert observation_store.count(SESSION) == 0

    def test_three_failures_mark_degraded(self, build_scheduler):
        vision = ScriptedVision([
            TimeoutError("page load"),
            RuntimeError("browser crashed"),
            ConnectionError("network"),
            make_reading(BASE_TIME, Direction.UP),
        ])
        scheduler = build_scheduler(vision)

        for _ in range(2):
            scheduler.run_cycle(SESSION)
        assert scheduler.status().degraded is False

        scheduler.run_cycle(SESSION)
        status = scheduler.status()
        assert status.degraded is True
        assert status.consecutive_failures == 3
        assert "network" in status.last_error

        scheduler.run_cycle(SESSION)
        assert scheduler.status().degraded is False

    def test_storage_error_propagates_from_manual_cycle(self, build_scheduler, observation_store):
        scheduler = build_scheduler(ScriptedVision(readings_for([Direction.UP])))
        error = StorageError("disk full", operation="insert", target="observations")

        with patch.object(observation_store, "insert", side_effect=error):
            with pytest.raises(StorageError):
                scheduler.run_cycle(SESSION)

        assert scheduler.status().consecutive_failures == 1

    def test_counters_distinguish_outcomes(self, build_scheduler):
        vision = ScriptedVision([
            make_reading(BASE_TIME, Direction.UP),
            make_reading(BASE_TIME + timedelta(seconds=25), Direction.UP),
            RuntimeError("browser crashed"),
        ])
        scheduler = build_scheduler(vision)

        for _ in range(3):
            scheduler.run_cycle(SESSION)

        status = scheduler.status()
        assert status.cycles_run == 3
        assert status.cycles_completed == 1
        assert status.to_dict()["cycles_completed"] == 1

    def test_run_cycle_without_session(self, build_scheduler):
        scheduler = build_scheduler(ScriptedVision())

        with pytest.raises(SchedulerError):
            scheduler.run_cycle()

    def test_prediction_after_min_history(self, build_scheduler, prediction_store):
        scheduler = build_scheduler(ScriptedVision(readings_for(alternating(10))))

        reports = [scheduler.run_cycle(SESSION) for _ in range(10)]

        assert all(r.prediction is None for r in reports[:9])
        assert reports[9].prediction is not None
        assert reports[9].prediction.timestamp == reports[9].observation.timestamp
        assert len(prediction_store.recent(SESSION, limit=10)) == 1


class TestCaptureLoop:
    """Interval loop lifecycle."""

    def test_start_runs_first_cycle_immediately(self, build_scheduler):
        vision = ScriptedVision(readings_for([Direction.UP]))
        scheduler = build_scheduler(vision)

        scheduler.start(SESSION, interval_ms=60_000)
        try:
            assert wait_for(lambda: scheduler.status().cycles_completed >= 1)
            status = scheduler.status()
            assert status.running is True
            assert status.session_id == SESSION
            assert status.interval_ms == 60_000
            assert status.last_cycle_at is not None
        finally:
            scheduler.stop()

    def test_already_running(self, build_scheduler):
        scheduler = build_scheduler(ScriptedVision(readings_for([Direction.UP])))
        scheduler.start(SESSION, interval_ms=60_000)
        try:
            with pytest.raises(AlreadyRunningError):
                scheduler.start(SESSION, interval_ms=60_000)
        finally:
            scheduler.stop()

    def test_non_positive_interval_rejected(self, build_scheduler):
        scheduler = build_scheduler(ScriptedVision())

        with pytest.raises(SchedulerError):
            scheduler.start(SESSION, interval_ms=0)
        assert scheduler.is_running is False

    def test_stop_is_idempotent_and_releases_vision(self, build_scheduler):
        vision = ScriptedVision(readings_for([Direction.UP]))
        scheduler = build_scheduler(vision)
        scheduler.start(SESSION, interval_ms=60_000)

        scheduler.stop()
        scheduler.stop()

        assert vision.opened == [SESSION]
        assert vision.closed == 1
        assert scheduler.status().running is False

    def test_failures_do_not_stop_loop(self, build_scheduler):
        vision = ScriptedVision([RuntimeError("boom")] * 50)
        scheduler = build_scheduler(vision)

        scheduler.start(SESSION, interval_ms=10)
        try:
            assert wait_for(lambda: scheduler.status().cycles_run >= 4)
            status = scheduler.status()
            assert status.running is True
            assert status.degraded is True
            assert status.cycles_completed == 0
        finally:
            scheduler.stop()

    def test_overlapping_tick_skipped(self, build_scheduler):
        vision = ScriptedVision(readings_for([Direction.UP]), delay=0.5)
        scheduler = build_scheduler(vision, cycle_deadline_seconds=0.05)

        scheduler.start(SESSION, interval_ms=10)
        try:
            assert wait_for(lambda: scheduler.status().skipped_ticks >= 1, timeout=2.0)
            assert scheduler.run_cycle(SESSION).outcome is CycleOutcome.SKIPPED_BUSY
            assert "deadline" in scheduler.status().last_error
        finally:
            scheduler.stop()

        assert vision.closed == 1

    def test_late_cycle_result_discarded(self, build_scheduler, observation_store):
        vision = ScriptedVision(readings_for([Direction.UP]), delay=0.4)
        scheduler = build_scheduler(vision, cycle_deadline_seconds=0.1)

        scheduler.start(SESSION, interval_ms=60_000)
        assert wait_for(lambda: scheduler.status().consecutive_failures == 1)
        # stop() waits for the worker to finish the abandoned cycle
        scheduler.stop()

        status = scheduler.status()
        assert "deadline" in status.last_error
        assert vision.index == 1
        assert observation_store.count(SESSION) == 0
        assert status.cycles_completed == 0

    def test_stop_cancels_in_flight_capture(self, build_scheduler):
        vision = ScriptedVision(readings_for([Direction.UP]), supports_cancellation=True, delay=5.0)
        scheduler = build_scheduler(vision)

        scheduler.start(SESSION, interval_ms=60_000)
        assert wait_for(lambda: vision.calls == 1)

        started = time.monotonic()
        scheduler.stop()

        assert time.monotonic() - started < 4.0
        assert vision.cancelled == 1
        assert vision.closed == 1

    def test_restart_after_stop(self, build_scheduler):
        vision = ScriptedVision(readings_for([Direction.UP, Direction.DOWN]))
        scheduler = build_scheduler(vision)

        scheduler.start(SESSION, interval_ms=60_000)
        assert wait_for(lambda: scheduler.status().cycles_completed >= 1)
        scheduler.stop()
        scheduler.start(SESSION, interval_ms=60_000)
        assert wait_for(lambda: scheduler.status().cycles_completed >= 2)
        scheduler.stop()

        assert vision.opened == [SESSION, SESSION]
        assert vision.closed == 2
