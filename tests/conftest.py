from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import AsyncGenerator, Generator

import pytest
from fastapi.testclient import TestClient

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

# Keep test imports away from the developer's runtrack.db.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from runtrack.core.config import Settings
from runtrack.integrations.kv_store import InMemoryKeyValueStore, StorageError
from runtrack.integrations.location import (
    LocationSample,
    PermissionStatus,
    PushLocationProvider,
    WatchOptions,
)
from runtrack.main import create_app
from runtrack.services.run_history import RunHistoryStore
from runtrack.services.run_session import RunSessionController
from runtrack.services.run_state_store import RunStateStore

# Central Park loop start; 0.0001 deg of latitude is roughly 11 m.
BASE_LAT = 40.7812
BASE_LNG = -73.9665
START_MS = 1_760_000_000_000


class FakeClock:
    def __init__(self, start_s: float = START_MS / 1000):
        self.now = start_s

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingKeyValueStore(InMemoryKeyValueStore):
    """In-memory store whose writes to selected keys can be made to fail."""

    def __init__(self):
        super().__init__()
        self.failing_keys: set[str] = set()

    async def set(self, key: str, value: str) -> None:
        if key in self.failing_keys:
            raise StorageError(f"write to {key!r} refused")
        await super().set(key, value)

    async def remove(self, key: str) -> None:
        if key in self.failing_keys:
            raise StorageError(f"remove of {key!r} refused")
        await super().remove(key)


def make_sample(step: int, *, accuracy_m: float | None = 5.0, lat_step: float = 0.0001) -> LocationSample:
    """A sample `step` increments north of the base point, 5 s after the previous one."""
    return LocationSample(
        lat=BASE_LAT + step * lat_step,
        lng=BASE_LNG,
        accuracy_m=accuracy_m,
        timestamp_ms=START_MS + step * 5000,
    )


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv() -> FailingKeyValueStore:
    return FailingKeyValueStore()


@pytest.fixture
def provider() -> PushLocationProvider:
    return PushLocationProvider(permission=PermissionStatus.GRANTED)


def build_test_controller(kv, provider, clock, **kwargs) -> RunSessionController:
    # Long tick interval: tests drive the duration with controller.tick().
    kwargs.setdefault("tick_interval_s", 3600)
    kwargs.setdefault("watch_options", WatchOptions(min_interval_ms=0, min_distance_m=0.0))
    return RunSessionController(
        RunStateStore(kv),
        RunHistoryStore(kv),
        provider,
        clock=clock,
        **kwargs,
    )


@pytest.fixture
async def controller(kv, provider, clock) -> AsyncGenerator[RunSessionController, None]:
    ctrl = build_test_controller(kv, provider, clock)
    yield ctrl
    await ctrl.shutdown()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite+pysqlite:///:memory:",
        TICK_INTERVAL_S=3600,
        LOCATION_PERMISSION="granted",
    )


@pytest.fixture
def api_kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def api_client(test_settings, api_kv) -> Generator[TestClient, None, None]:
    app = create_app(test_settings, kv=api_kv)
    with TestClient(app) as client:
        yield client
