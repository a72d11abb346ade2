from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from runtrack.integrations.location import (
    LocationProvider,
    LocationSample,
    LocationSubscription,
    WatchOptions,
)
from runtrack.schemas.run_state import PathPoint
from runtrack.services.geo import haversine_mi

logger = logging.getLogger(__name__)

DEFAULT_MAX_ACCURACY_M = 50.0
DEFAULT_MAX_STEP_MI = 0.2


@dataclass(frozen=True)
class AcceptedSample:
    sample: LocationSample
    delta_mi: float

    @property
    def point(self) -> PathPoint:
        return PathPoint(lat=self.sample.lat, lng=self.sample.lng)


def passes_accuracy(sample: LocationSample, max_accuracy_m: float = DEFAULT_MAX_ACCURACY_M) -> bool:
    # Devices that omit accuracy are trusted.
    accuracy = sample.accuracy_m if sample.accuracy_m is not None else 0.0
    return accuracy <= max_accuracy_m


def is_plausible_step(delta_mi: float, max_step_mi: float = DEFAULT_MAX_STEP_MI) -> bool:
    """A single step must move, and must not jump `max_step_mi` or more."""
    return 0 < delta_mi < max_step_mi


class LocationSampler:
    """Turns the raw position stream into accepted, distance-bearing samples.

    Every sample that passes the accuracy filter becomes the anchor for the next
    delta. Deltas are only emitted while `is_active()` is true, so samples that arrive
    during a pause move the anchor without adding distance.
    """

    def __init__(
        self,
        provider: LocationProvider,
        on_accept: Callable[[AcceptedSample], Awaitable[None]],
        *,
        is_active: Callable[[], bool],
        options: WatchOptions | None = None,
        max_accuracy_m: float = DEFAULT_MAX_ACCURACY_M,
        max_step_mi: float = DEFAULT_MAX_STEP_MI,
        advance_anchor_on_reject: bool = True,
        distance_fn: Callable[[float, float, float, float], float] = haversine_mi,
        anchor: PathPoint | None = None,
    ):
        self._provider = provider
        self._on_accept = on_accept
        self._is_active = is_active
        self.options = options or WatchOptions()
        self.max_accuracy_m = max_accuracy_m
        self.max_step_mi = max_step_mi
        self.advance_anchor_on_reject = advance_anchor_on_reject
        self._distance_fn = distance_fn
        self._anchor = anchor
        self._subscription: LocationSubscription | None = None
        self._task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self._subscription is not None

    @property
    def anchor(self) -> PathPoint | None:
        return self._anchor

    def start(self) -> None:
        if self._subscription is not None:
            return
        self._subscription = self._provider.watch_position(self.options)
        self._task = asyncio.create_task(self._consume(self._subscription))
        logger.info(
            "Location sampling started",
            extra={
                "min_interval_ms": self.options.min_interval_ms,
                "min_distance_m": self.options.min_distance_m,
            },
        )

    async def stop(self) -> None:
        subscription, task = self._subscription, self._task
        self._subscription = None
        self._task = None
        if subscription is None:
            return

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        subscription.close()
        logger.info("Location sampling stopped")

    async def _consume(self, subscription: LocationSubscription) -> None:
        async for sample in subscription:
            try:
                await self.handle(sample)
            except Exception:
                logger.exception(
                    "Location callback error",
                    extra={"timestamp_ms": sample.timestamp_ms},
                )

    async def handle(self, sample: LocationSample) -> AcceptedSample | None:
        """Run one raw sample through the filters; returns it when distance was added."""
        if not passes_accuracy(sample, self.max_accuracy_m):
            logger.debug("Dropped inaccurate sample", extra={"accuracy_m": sample.accuracy_m})
            return None

        prev = self._anchor
        point = PathPoint(lat=sample.lat, lng=sample.lng)
        accepted: AcceptedSample | None = None
        advance = True

        if prev is not None and self._is_active():
            delta_mi = self._distance_fn(prev.lat, prev.lng, sample.lat, sample.lng)
            if is_plausible_step(delta_mi, self.max_step_mi):
                accepted = AcceptedSample(sample=sample, delta_mi=delta_mi)
            elif delta_mi >= self.max_step_mi:
                logger.warning(
                    "Rejected GPS jump",
                    extra={"delta_mi": round(delta_mi, 4), "timestamp_ms": sample.timestamp_ms},
                )
                advance = self.advance_anchor_on_reject

        if advance:
            self._anchor = point
        if accepted is not None:
            await self._on_accept(accepted)
        return accepted
