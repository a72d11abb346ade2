from fastapi import APIRouter, Depends, HTTPException

from runtrack.integrations.location import LocationSample, PermissionStatus, PushLocationProvider
from runtrack.routes.deps import get_location_provider
from runtrack.schemas.run import LocationPermissionIn, LocationSampleIn

router = APIRouter(prefix="/location", tags=["location"])


@router.get("/permission")
async def get_permission(provider: PushLocationProvider = Depends(get_location_provider)):
    status = await provider.get_permission()
    return {"status": status.value, "available": provider.is_available()}


@router.put("/permission")
async def set_permission(
    payload: LocationPermissionIn,
    provider: PushLocationProvider = Depends(get_location_provider),
):
    try:
        status = PermissionStatus(payload.status)
    except ValueError:
        allowed = ", ".join(s.value for s in PermissionStatus)
        raise HTTPException(status_code=400, detail=f"status must be one of: {allowed}")

    provider.set_permission(status)
    return {"status": status.value, "available": provider.is_available()}


@router.post("/samples")
async def push_samples(
    samples: list[LocationSampleIn],
    provider: PushLocationProvider = Depends(get_location_provider),
):
    """
    Feed device positions into every active watcher, in the order given.
    """
    if not provider.is_available():
        raise HTTPException(status_code=503, detail="Location services are not available")

    delivered = 0
    for s in sorted(samples, key=lambda s: s.timestamp_ms):
        delivered += await provider.publish(
            LocationSample(
                lat=s.lat,
                lng=s.lng,
                accuracy_m=s.accuracy_m,
                timestamp_ms=s.timestamp_ms,
            )
        )
    return {"ok": True, "received": len(samples), "delivered": delivered}
