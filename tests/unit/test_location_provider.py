from __future__ import annotations

import asyncio

import pytest

from runtrack.integrations.location import (
    LocationSample,
    PermissionStatus,
    PushLocationProvider,
    WatchOptions,
)

pytestmark = pytest.mark.anyio


def _sample(lat: float, t_ms: int) -> LocationSample:
    return LocationSample(lat=lat, lng=-73.9665, accuracy_m=5.0, timestamp_ms=t_ms)


async def _collect(subscription, into: list) -> None:
    async for sample in subscription:
        into.append(sample)


async def test_publish_waits_until_the_watcher_has_handled_the_sample():
    provider = PushLocationProvider(permission=PermissionStatus.GRANTED)
    subscription = provider.watch_position(WatchOptions(min_interval_ms=0, min_distance_m=0.0))
    received: list[LocationSample] = []
    task = asyncio.create_task(_collect(subscription, received))

    delivered = await provider.publish(_sample(40.0, 0))

    assert delivered == 1
    assert received == [_sample(40.0, 0)]

    subscription.close()
    await task


async def test_watch_options_are_lower_bounds_on_spacing():
    provider = PushLocationProvider()
    subscription = provider.watch_position(WatchOptions(min_interval_ms=2000, min_distance_m=3.0))

    assert subscription.offer(_sample(40.0, 0)) is True
    # too soon
    assert subscription.offer(_sample(40.001, 1000)) is False
    # late enough but about 1 m away
    assert subscription.offer(_sample(40.00001, 5000)) is False
    # late enough and about 111 m away
    assert subscription.offer(_sample(40.001, 5000)) is True

    subscription.close()


async def test_close_is_idempotent_and_detaches():
    provider = PushLocationProvider()
    subscription = provider.watch_position(WatchOptions())
    assert provider.subscriber_count == 1

    subscription.offer(_sample(40.0, 0))
    subscription.close()
    subscription.close()

    assert subscription.closed
    assert provider.subscriber_count == 0
    assert await provider.publish(_sample(40.001, 10_000)) == 0
    # pending samples were released, so nothing waits on them
    await asyncio.wait_for(subscription.join(), timeout=1)


async def test_closed_subscription_ends_iteration():
    provider = PushLocationProvider()
    subscription = provider.watch_position(WatchOptions())
    subscription.close()

    assert [s async for s in subscription] == []


async def test_unavailable_provider_delivers_nothing():
    provider = PushLocationProvider(available=False)
    subscription = provider.watch_position(WatchOptions())

    assert provider.is_available() is False
    assert await provider.publish(_sample(40.0, 0)) == 0

    subscription.close()


async def test_permission_reports_what_the_device_declared():
    provider = PushLocationProvider()
    assert await provider.request_permission() == PermissionStatus.UNDETERMINED

    provider.set_permission(PermissionStatus.DENIED)
    assert await provider.get_permission() == PermissionStatus.DENIED

    provider.set_permission(PermissionStatus.GRANTED)
    assert await provider.request_permission() == PermissionStatus.GRANTED
