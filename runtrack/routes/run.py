from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException

from runtrack.routes.deps import get_controller
from runtrack.schemas.run import RecoveryOut, Run, RunSnapshotOut
from runtrack.services.run_session import (
    LocationPermissionError,
    LocationUnavailableError,
    NoActiveRunError,
    RunFinalizationError,
    RunPhase,
    RunSessionController,
    RunSessionError,
    RunSnapshot,
    snapshot_of,
)

router = APIRouter(prefix="/run", tags=["run"])


def _snapshot_out(snapshot: RunSnapshot) -> RunSnapshotOut:
    return RunSnapshotOut(**asdict(snapshot))


def _raise_http(exc: RunSessionError):
    if isinstance(exc, LocationPermissionError):
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    if isinstance(exc, (LocationUnavailableError, RunFinalizationError)):
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.get("", response_model=RunSnapshotOut)
async def current_run(controller: RunSessionController = Depends(get_controller)):
    try:
        return _snapshot_out(controller.snapshot())
    except NoActiveRunError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.post("/start", response_model=RunSnapshotOut)
async def start_run(controller: RunSessionController = Depends(get_controller)):
    try:
        snapshot = await controller.start_run()
    except RunSessionError as exc:
        _raise_http(exc)
    return _snapshot_out(snapshot)


@router.post("/toggle", response_model=RunSnapshotOut)
async def pause_or_resume(controller: RunSessionController = Depends(get_controller)):
    try:
        snapshot = await controller.pause_or_resume()
    except RunSessionError as exc:
        _raise_http(exc)
    return _snapshot_out(snapshot)


@router.post("/stop", response_model=Run)
async def stop_run(controller: RunSessionController = Depends(get_controller)):
    try:
        return await controller.stop_run()
    except RunSessionError as exc:
        _raise_http(exc)


@router.post("/cancel")
async def cancel_run(controller: RunSessionController = Depends(get_controller)):
    try:
        await controller.cancel_run()
    except RunSessionError as exc:
        _raise_http(exc)
    return {"ok": True}


@router.get("/recovery", response_model=RecoveryOut)
async def recovery_status(controller: RunSessionController = Depends(get_controller)):
    state = await controller.check_recovery()
    if state is None:
        return RecoveryOut(resumable=False)

    phase = RunPhase.RUNNING if state.is_running else RunPhase.PAUSED
    return RecoveryOut(resumable=True, snapshot=_snapshot_out(snapshot_of(state, phase)))


@router.post("/recovery/resume", response_model=RunSnapshotOut)
async def resume_recovered(controller: RunSessionController = Depends(get_controller)):
    try:
        snapshot = await controller.resume_recovered()
    except NoActiveRunError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except RunSessionError as exc:
        _raise_http(exc)
    return _snapshot_out(snapshot)


@router.post("/recovery/discard")
async def discard_recovered(controller: RunSessionController = Depends(get_controller)):
    try:
        discarded = await controller.discard_recovered()
    except RunSessionError as exc:
        _raise_http(exc)
    return {"ok": True, "discarded": discarded}
