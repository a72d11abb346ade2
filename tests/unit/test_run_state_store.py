from __future__ import annotations

import json

import pytest

from runtrack.schemas.run_state import MAX_PATH_POINTS, ActiveRunState, PathPoint, append_path_point
from runtrack.services.run_state_store import (
    DEFAULT_ACTIVE_RUN_KEY,
    RunStateStore,
    decode_active_run,
)

pytestmark = pytest.mark.anyio


def _state(**overrides) -> ActiveRunState:
    values = {
        "started_at": 1_760_000_000_000,
        "total_distance_mi": 1.25,
        "elapsed_sec": 630,
        "is_running": True,
        "last_lat": 40.79,
        "last_lng": -73.96,
        "path": [PathPoint(lat=40.78, lng=-73.96), PathPoint(lat=40.79, lng=-73.96)],
        "updated_at": 1_760_000_630_000,
    }
    values.update(overrides)
    return ActiveRunState(**values)


async def test_set_writes_camel_case_record(kv):
    store = RunStateStore(kv)

    assert await store.set(_state()) is True

    raw = json.loads(await kv.get(DEFAULT_ACTIVE_RUN_KEY))
    assert raw["schemaVersion"] == 1
    assert raw["startedAt"] == 1_760_000_000_000
    assert raw["totalDistanceMi"] == 1.25
    assert raw["elapsedSec"] == 630
    assert raw["isRunning"] is True
    assert raw["path"][0] == {"lat": 40.78, "lng": -73.96}


async def test_state_survives_a_fresh_read(kv):
    written = _state()
    await RunStateStore(kv).set(written)

    # a new store over the same storage stands in for a process restart
    restored = await RunStateStore(kv).get()

    assert restored is not None
    assert restored.total_distance_mi == written.total_distance_mi
    assert restored.elapsed_sec == written.elapsed_sec
    assert restored.path == written.path
    assert restored.is_resumable


async def test_get_returns_none_when_nothing_stored(kv):
    assert await RunStateStore(kv).get() is None


async def test_clear_removes_the_record(kv):
    store = RunStateStore(kv)
    await store.set(_state())

    assert await store.clear() is True
    assert await store.get() is None
    assert await kv.get(DEFAULT_ACTIVE_RUN_KEY) is None


async def test_storage_failures_are_swallowed(kv):
    kv.failing_keys.add(DEFAULT_ACTIVE_RUN_KEY)

    assert await RunStateStore(kv).set(_state()) is False
    assert await RunStateStore(kv).clear() is False


async def test_legacy_record_is_migrated():
    # shape written by older clients after a pause toggle: no path, no version
    legacy = json.dumps(
        {
            "startedAt": 1_760_000_000_000,
            "totalDistanceMi": 0.8,
            "elapsedSec": 300,
            "isRunning": False,
            "lastLat": 40.79,
            "lastLng": -73.96,
            "updatedAt": 1_760_000_300_000,
        }
    )

    state = decode_active_run(legacy)

    assert state is not None
    assert state.schema_version == 1
    assert state.path == []
    assert state.is_running is False
    assert state.last_point == PathPoint(lat=40.79, lng=-73.96)


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        "[1, 2, 3]",
        '"activeRunState"',
        json.dumps({"schemaVersion": 99, "startedAt": 1}),
        json.dumps({"schemaVersion": 1, "startedAt": 1, "totalDistanceMi": -2.0}),
        json.dumps({"schemaVersion": 1, "totalDistanceMi": 1.0}),
        json.dumps({"schemaVersion": "1", "startedAt": 1}),
        json.dumps({"schemaVersion": -1, "startedAt": 1, "elapsedSec": 5}),
        json.dumps({"schemaVersion": True, "startedAt": 1, "elapsedSec": 5}),
        json.dumps({"schemaVersion": 1, "startedAt": 1, "elapsedSec": 5, "lastLat": 200.0, "lastLng": 0.0}),
        json.dumps({"schemaVersion": 1, "startedAt": 1, "elapsedSec": 5, "lastLat": 0.0, "lastLng": -181.0}),
    ],
)
async def test_untrustworthy_records_read_as_absent(kv, raw):
    await kv.set(DEFAULT_ACTIVE_RUN_KEY, raw)

    assert await RunStateStore(kv).get() is None


async def test_oversized_stored_path_keeps_most_recent_points():
    path = [{"lat": 0.0, "lng": i * 0.0001} for i in range(MAX_PATH_POINTS + 25)]
    raw = json.dumps({"schemaVersion": 1, "startedAt": 1, "path": path})

    state = decode_active_run(raw)

    assert len(state.path) == MAX_PATH_POINTS
    assert state.path[0].lng == pytest.approx(25 * 0.0001)
    assert state.path[-1].lng == pytest.approx((MAX_PATH_POINTS + 24) * 0.0001)


def test_append_path_point_evicts_oldest_first():
    path: list[PathPoint] = []
    for i in range(MAX_PATH_POINTS + 3):
        path = append_path_point(path, PathPoint(lat=0.0, lng=i * 0.0001))

    assert len(path) == MAX_PATH_POINTS
    assert [p.lng for p in path[:2]] == pytest.approx([3 * 0.0001, 4 * 0.0001])
    assert path[-1].lng == pytest.approx((MAX_PATH_POINTS + 2) * 0.0001)


@pytest.mark.parametrize(
    "is_running,elapsed_sec,resumable",
    [(True, 0, True), (False, 12, True), (False, 0, False)],
)
async def test_find_resumable(kv, is_running, elapsed_sec, resumable):
    store = RunStateStore(kv)
    await store.set(_state(is_running=is_running, elapsed_sec=elapsed_sec))

    found = await store.find_resumable()

    assert (found is not None) is resumable
