from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from runtrack.services.geo import haversine_km

logger = logging.getLogger(__name__)


class PermissionStatus(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    UNDETERMINED = "undetermined"


@dataclass(frozen=True)
class LocationSample:
    lat: float
    lng: float
    accuracy_m: float | None
    timestamp_ms: int


@dataclass(frozen=True)
class WatchOptions:
    # Lower bounds on sample spacing; a device may report less often than this.
    min_interval_ms: int = 2000
    min_distance_m: float = 3.0
    desired_accuracy: str = "high"


class LocationSubscription:
    """Cancellable stream of samples for one watcher.

    Iterating yields samples in arrival order. A sample counts as handled once the
    consumer asks for the next one, which is what `join()` waits on. `close()` is
    safe to call any number of times.
    """

    def __init__(self, provider: "PushLocationProvider", options: WatchOptions):
        self._provider = provider
        self.options = options
        self._queue: asyncio.Queue[LocationSample | None] = asyncio.Queue()
        self._closed = False
        self._in_flight = False
        self._last_delivered: LocationSample | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def _passes_thresholds(self, sample: LocationSample) -> bool:
        prev = self._last_delivered
        if prev is None:
            return True
        if sample.timestamp_ms - prev.timestamp_ms < self.options.min_interval_ms:
            return False
        moved_m = haversine_km(prev.lat, prev.lng, sample.lat, sample.lng) * 1000.0
        return moved_m >= self.options.min_distance_m

    def offer(self, sample: LocationSample) -> bool:
        if self._closed or not self._passes_thresholds(sample):
            return False
        self._last_delivered = sample
        self._queue.put_nowait(sample)
        return True

    async def join(self) -> None:
        await self._queue.join()

    def _ack(self) -> None:
        if self._in_flight:
            self._in_flight = False
            self._queue.task_done()

    def __aiter__(self) -> "LocationSubscription":
        return self

    async def __anext__(self) -> LocationSample:
        self._ack()
        if self._closed:
            raise StopAsyncIteration
        sample = await self._queue.get()
        if sample is None:
            raise StopAsyncIteration
        self._in_flight = True
        return sample

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._ack()
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        # Wake a consumer blocked on get(); the sentinel is not counted by join().
        self._queue.put_nowait(None)
        self._queue.task_done()
        self._provider._detach(self)


class LocationProvider(Protocol):
    def is_available(self) -> bool: ...

    async def get_permission(self) -> PermissionStatus: ...

    async def request_permission(self) -> PermissionStatus: ...

    def watch_position(self, options: WatchOptions) -> LocationSubscription: ...


class PushLocationProvider:
    """Location source fed by the device over HTTP.

    The device owns the permission prompt, so `request_permission` reports whatever
    the device last declared instead of prompting.
    """

    def __init__(
        self,
        *,
        available: bool = True,
        permission: PermissionStatus = PermissionStatus.UNDETERMINED,
    ):
        self._available = available
        self._permission = permission
        self._subscriptions: list[LocationSubscription] = []

    def is_available(self) -> bool:
        return self._available

    def set_available(self, available: bool) -> None:
        self._available = available

    async def get_permission(self) -> PermissionStatus:
        return self._permission

    async def request_permission(self) -> PermissionStatus:
        return self._permission

    def set_permission(self, status: PermissionStatus) -> None:
        if status != self._permission:
            logger.info(
                "Location permission changed",
                extra={"previous": self._permission.value, "current": status.value},
            )
        self._permission = status

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def watch_position(self, options: WatchOptions) -> LocationSubscription:
        subscription = LocationSubscription(self, options)
        self._subscriptions.append(subscription)
        return subscription

    def _detach(self, subscription: LocationSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def publish(self, sample: LocationSample) -> int:
        """Deliver a sample to every watcher and wait until each has handled it."""
        if not self._available:
            return 0
        delivered = [s for s in list(self._subscriptions) if s.offer(sample)]
        for subscription in delivered:
            await subscription.join()
        return len(delivered)
