from fastapi import APIRouter, Depends, HTTPException, Query

from runtrack.core.config import Settings
from runtrack.routes.deps import get_history, get_settings
from runtrack.schemas.run import Run, StaticMapOut
from runtrack.services.geo import build_static_map_url, path_to_geojson
from runtrack.services.run_history import RunHistoryStore

router = APIRouter(prefix="/runs", tags=["history"])


async def _get_run_or_404(history: RunHistoryStore, run_id: str) -> Run:
    run = await history.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


@router.get("/", response_model=list[Run])
async def list_runs(
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    history: RunHistoryStore = Depends(get_history),
):
    """
    List finished runs, newest first.
    """
    runs = await history.get_all()
    runs = runs[offset:]
    if limit is not None:
        runs = runs[:limit]
    return runs


@router.get("/last", response_model=Run)
async def last_run(history: RunHistoryStore = Depends(get_history)):
    run = await history.last()
    if run is None:
        raise HTTPException(status_code=404, detail="No runs yet")
    return run


@router.get("/{run_id}", response_model=Run)
async def get_run(run_id: str, history: RunHistoryStore = Depends(get_history)):
    return await _get_run_or_404(history, run_id)


@router.get("/{run_id}/track")
async def get_run_track(run_id: str, history: RunHistoryStore = Depends(get_history)):
    run = await _get_run_or_404(history, run_id)
    return path_to_geojson(
        run.path,
        {
            "run_id": run.id,
            "distance_mi": run.distance,
            "duration": run.duration,
            "pace": run.pace,
            "date": run.date,
        },
    )


@router.get("/{run_id}/map", response_model=StaticMapOut)
async def get_run_map(
    run_id: str,
    width: int = Query(default=600, ge=50, le=2048),
    height: int = Query(default=200, ge=50, le=2048),
    history: RunHistoryStore = Depends(get_history),
    settings: Settings = Depends(get_settings),
):
    run = await _get_run_or_404(history, run_id)
    url = build_static_map_url(
        run.path,
        width,
        height,
        max_points=settings.STATIC_MAP_MAX_POINTS,
        base_url=settings.STATIC_MAP_BASE_URL,
    )
    return StaticMapOut(run_id=run.id, url=url, point_count=len(run.path))
