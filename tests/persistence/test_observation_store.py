"""Tests for the observation store."""

import os
from datetime import timedelta

import pytest

from candlecast.data.models import Direction
from candlecast.errors import (
    DuplicateObservationError,
    OutOfOrderObservationError,
    StorageError,
)
from candlecast.persistence.observation_store import ObservationStore

from conftest import BASE_TIME, PAIR, SESSION, make_candle


class TestObservationInsert:
    """Insert, duplicate window and ordering."""

    def test_insert_assigns_id(self, observation_store):
        stored = observation_store.insert(make_candle(BASE_TIME, Direction.UP))

        assert stored.id is not None
        assert observation_store.count(SESSION) == 1

    def test_duplicate_inside_window_rejected(self, observation_store):
        observation_store.insert(make_candle(BASE_TIME, Direction.UP), duplicate_window_seconds=30)

        with pytest.raises(DuplicateObservationError) as exc_info:
            observation_store.insert(
                make_candle(BASE_TIME + timedelta(seconds=25), Direction.DOWN),
                duplicate_window_seconds=30,
            )

        assert exc_info.value.existing_timestamp == BASE_TIME
        assert observation_store.count(SESSION) == 1

    def test_outside_window_accepted(self, observation_store):
        observation_store.insert(make_candle(BASE_TIME, Direction.UP), duplicate_window_seconds=30)
        observation_store.insert(
            make_candle(BASE_TIME + timedelta(seconds=35), Direction.DOWN),
            duplicate_window_seconds=30,
        )

        assert observation_store.count(SESSION) == 2

    def test_window_edge_is_duplicate(self, observation_store):
        observation_store.insert(make_candle(BASE_TIME, Direction.UP), duplicate_window_seconds=30)

        with pytest.raises(DuplicateObservationError):
            observation_store.insert(
                make_candle(BASE_TIME + timedelta(seconds=30), Direction.UP),
                duplicate_window_seconds=30,
            )

    def test_other_session_not_a_duplicate(self, observation_store):
        observation_store.insert(make_candle(BASE_TIME, Direction.UP), duplicate_window_seconds=30)
        observation_store.insert(
            make_candle(BASE_TIME + timedelta(seconds=10), Direction.UP, session_id="other"),
            duplicate_window_seconds=30,
        )

        assert observation_store.count_for_pair(PAIR) == 2

    def test_out_of_order_rejected(self, observation_store):
        observation_store.insert(make_candle(BASE_TIME, Direction.UP))

        with pytest.raises(OutOfOrderObservationError):
            observation_store.insert(make_candle(BASE_TIME - timedelta(minutes=5), Direction.UP))

    def test_find_duplicate(self, observation_store):
        observation_store.insert(make_candle(BASE_TIME, Direction.UP))

        found = observation_store.find_duplicate(PAIR, SESSION, BASE_TIME + timedelta(seconds=20), 30)
        missing = observation_store.find_duplicate(PAIR, SESSION, BASE_TIME + timedelta(seconds=40), 30)

        assert found == BASE_TIME
        assert missing is None


class TestObservationQueries:
    """Range and ordering queries."""

    def test_recent_is_chronological(self, observation_store, candles):
        candles(observation_store, [Direction.UP, Direction.DOWN, Direction.UP, Direction.UP])

        recent = observation_store.recent(SESSION, PAIR, limit=3)

        assert [o.timestamp for o in recent] == [
            BASE_TIME + timedelta(minutes=i) for i in (1, 2, 3)
        ]
        assert [o.direction for o in recent] == [Direction.DOWN, Direction.UP, Direction.UP]

    def test_history_strictly_before(self, observation_store, candles):
        candles(observation_store, [Direction.UP] * 6)

        history = observation_store.history(PAIR, before=BASE_TIME + timedelta(minutes=3))

        assert len(history) == 3
        assert history[-1].timestamp == BASE_TIME + timedelta(minutes=2)

    def test_history_limit_keeps_newest(self, observation_store, candles):
        candles(observation_store, [Direction.UP] * 6)

        history = observation_store.history(PAIR, before=BASE_TIME + timedelta(minutes=10), limit=2)

        assert [o.timestamp for o in history] == [
            BASE_TIME + timedelta(minutes=4), BASE_TIME + timedelta(minutes=5)
        ]

    def test_window_and_next_after(self, observation_store, candles):
        candles(observation_store, [Direction.UP, Direction.DOWN, Direction.UP])

        window = observation_store.window(PAIR, BASE_TIME, BASE_TIME + timedelta(minutes=1))
        following = observation_store.next_after(PAIR, SESSION, BASE_TIME)

        assert len(window) == 2
        assert following.timestamp == BASE_TIME + timedelta(minutes=1)
        assert observation_store.next_after(PAIR, SESSION, BASE_TIME + timedelta(minutes=2)) is None

    def test_latest(self, observation_store, candles):
        candles(observation_store, [Direction.UP, Direction.DOWN])

        latest = observation_store.latest(PAIR, SESSION)

        assert latest.direction is Direction.DOWN
        assert observation_store.latest("OTHER") is None


class TestObservationMaintenance:
    """Pattern references, stats and retention."""

    def test_attach_pattern_refs_once(self, observation_store):
        stored = observation_store.insert(make_candle(BASE_TIME, Direction.UP))
        refs = [BASE_TIME - timedelta(hours=1)]

        assert observation_store.attach_pattern_refs(stored.id, "up-down", refs) is True
        assert observation_store.attach_pattern_refs(stored.id, "down-up", []) is False

        reloaded = observation_store.latest(PAIR)
        assert reloaded.pattern_id == "up-down"
        assert reloaded.similar_pattern_timestamps == tuple(refs)

    def test_stats(self, observation_store, candles):
        candles(observation_store, [Direction.UP, Direction.DOWN])

        stats = observation_store.stats(SESSION)

        assert stats["total_observations"] == 2
        assert stats["average_confidence"] == 90.0
        assert stats["last_capture_time"] == BASE_TIME + timedelta(minutes=1)

    def test_purge_older_than(self, observation_store, clock):
        observation_store.insert(make_candle(BASE_TIME - timedelta(days=40), Direction.UP))
        observation_store.insert(make_candle(BASE_TIME, Direction.UP))

        deleted = observation_store.purge_older_than(30)

        assert deleted == 1
        assert observation_store.count(SESSION) == 1

    def test_unreachable_database_raises_storage_error(self, tmp_path):
        bad_path = os.path.join(str(tmp_path), "missing", "dir", "db.sqlite")

        with pytest.raises(StorageError) as exc_info:
            ObservationStore(bad_path)

        assert exc_info.value.target == "observations"
