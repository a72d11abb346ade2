from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from runtrack.integrations.kv_store import StorageError
from runtrack.integrations.location import (
    LocationProvider,
    LocationSample,
    PermissionStatus,
    WatchOptions,
)
from runtrack.schemas.run import Run
from runtrack.schemas.run_state import MAX_PATH_POINTS, ActiveRunState, PathPoint, append_path_point
from runtrack.services.geo import haversine_mi
from runtrack.services.location_sampler import (
    DEFAULT_MAX_ACCURACY_M,
    DEFAULT_MAX_STEP_MI,
    AcceptedSample,
    LocationSampler,
)
from runtrack.services.run_history import RunHistoryStore
from runtrack.services.run_metrics import compute_pace, format_duration
from runtrack.services.run_state_store import RunStateStore

logger = logging.getLogger(__name__)


class RunPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    FINALIZING = "finalizing"


class RunSessionError(RuntimeError):
    pass


class LocationPermissionError(RunSessionError):
    def __init__(self, status: PermissionStatus):
        super().__init__(f"Location permission is {status.value}; allow location to track your run")
        self.status = status


class LocationUnavailableError(RunSessionError):
    pass


class RunAlreadyActiveError(RunSessionError):
    pass


class NoActiveRunError(RunSessionError):
    pass


class RunFinalizationError(RunSessionError):
    pass


@dataclass
class RunSession:
    state: ActiveRunState
    phase: RunPhase
    sampler: LocationSampler
    ticker: asyncio.Task | None = None


@dataclass(frozen=True)
class RunSnapshot:
    phase: str
    started_at: int
    distance_mi: float
    elapsed_sec: int
    duration: str
    pace: str
    is_running: bool
    path_points: int
    updated_at: int | None


def snapshot_of(state: ActiveRunState, phase: RunPhase) -> RunSnapshot:
    return RunSnapshot(
        phase=phase.value,
        started_at=state.started_at,
        distance_mi=state.total_distance_mi,
        elapsed_sec=state.elapsed_sec,
        duration=format_duration(state.elapsed_sec),
        pace=compute_pace(state.elapsed_sec, state.total_distance_mi),
        is_running=state.is_running,
        path_points=len(state.path),
        updated_at=state.updated_at,
    )


class RunSessionController:
    """State machine for the run in progress.

    idle -> running <-> paused -> finalizing -> idle, or running/paused -> idle on
    cancel. The in-memory session is the single source of truth; every durable write
    snapshots it under one lock, so the ticker and the location callback never
    overwrite each other with stale reads. Writes for a session that has already
    ended are dropped.
    """

    def __init__(
        self,
        state_store: RunStateStore,
        history: RunHistoryStore,
        provider: LocationProvider,
        *,
        tick_interval_s: float = 1.0,
        watch_options: WatchOptions | None = None,
        max_accuracy_m: float = DEFAULT_MAX_ACCURACY_M,
        max_step_mi: float = DEFAULT_MAX_STEP_MI,
        advance_anchor_on_reject: bool = True,
        path_max_points: int = MAX_PATH_POINTS,
        clock: Callable[[], float] = time.time,
        distance_fn: Callable[[float, float, float, float], float] = haversine_mi,
    ):
        self.state_store = state_store
        self.history = history
        self.provider = provider
        self.tick_interval_s = tick_interval_s
        self.watch_options = watch_options or WatchOptions()
        self.max_accuracy_m = max_accuracy_m
        self.max_step_mi = max_step_mi
        self.advance_anchor_on_reject = advance_anchor_on_reject
        self.path_max_points = path_max_points
        self._clock = clock
        self._distance_fn = distance_fn
        self._session: RunSession | None = None
        self._write_lock = asyncio.Lock()

    # ---------- accessors ----------

    @property
    def phase(self) -> RunPhase:
        return self._session.phase if self._session else RunPhase.IDLE

    @property
    def state(self) -> ActiveRunState | None:
        return self._session.state if self._session else None

    @property
    def distance(self) -> float:
        return self._session.state.total_distance_mi if self._session else 0.0

    @property
    def elapsed_sec(self) -> int:
        return self._session.state.elapsed_sec if self._session else 0

    @property
    def duration(self) -> str:
        return format_duration(self.elapsed_sec)

    @property
    def pace(self) -> str:
        return compute_pace(self.elapsed_sec, self.distance)

    @property
    def is_running(self) -> bool:
        return self.phase == RunPhase.RUNNING

    @property
    def sampler(self) -> LocationSampler | None:
        return self._session.sampler if self._session else None

    def snapshot(self) -> RunSnapshot:
        session = self._require_session()
        return snapshot_of(session.state, session.phase)

    # ---------- internals ----------

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _require_session(self) -> RunSession:
        if self._session is None:
            raise NoActiveRunError("No run in progress")
        return self._session

    def _require_live_session(self) -> RunSession:
        session = self._require_session()
        if session.phase == RunPhase.FINALIZING:
            raise RunSessionError("Run is being finalized")
        return session

    async def _ensure_location_ready(self) -> None:
        if not self.provider.is_available():
            raise LocationUnavailableError("Location services are not available on this device")
        status = await self.provider.request_permission()
        if status != PermissionStatus.GRANTED:
            raise LocationPermissionError(status)

    def _build_session(self, state: ActiveRunState, phase: RunPhase) -> RunSession:
        session: RunSession

        async def on_accept(accepted: AcceptedSample) -> None:
            await self._apply_sample(session, accepted)

        sampler = LocationSampler(
            self.provider,
            on_accept,
            is_active=lambda: self._session is session and session.phase == RunPhase.RUNNING,
            options=self.watch_options,
            max_accuracy_m=self.max_accuracy_m,
            max_step_mi=self.max_step_mi,
            advance_anchor_on_reject=self.advance_anchor_on_reject,
            distance_fn=self._distance_fn,
            anchor=state.last_point,
        )
        session = RunSession(state=state, phase=phase, sampler=sampler)
        return session

    async def _write(self, session: RunSession) -> bool:
        async with self._write_lock:
            if self._session is not session:
                return False
            return await self.state_store.set(session.state)

    async def _persist(self, session: RunSession) -> bool:
        # Shielded so a cancelled ticker cannot leave a half-done write behind the lock.
        return await asyncio.shield(self._write(session))

    def _start_ticker(self, session: RunSession) -> None:
        if session.ticker is None:
            session.ticker = asyncio.create_task(self._tick_loop(session))

    async def _stop_ticker(self, session: RunSession) -> None:
        task, session.ticker = session.ticker, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _tick_loop(self, session: RunSession) -> None:
        while True:
            await asyncio.sleep(self.tick_interval_s)
            try:
                await self._tick(session)
            except Exception:
                logger.exception("Duration tick failed")

    async def _tick(self, session: RunSession) -> None:
        if self._session is not session or session.phase != RunPhase.RUNNING:
            return
        session.state = session.state.model_copy(
            update={"elapsed_sec": session.state.elapsed_sec + 1, "updated_at": self._now_ms()}
        )
        await self._persist(session)

    async def _apply_sample(self, session: RunSession, accepted: AcceptedSample) -> None:
        try:
            if self._session is not session or session.phase != RunPhase.RUNNING:
                return
            point = accepted.point
            state = session.state
            session.state = state.model_copy(
                update={
                    "total_distance_mi": state.total_distance_mi + accepted.delta_mi,
                    "path": append_path_point(state.path, point, self.path_max_points),
                    "last_lat": point.lat,
                    "last_lng": point.lng,
                    "updated_at": self._now_ms(),
                }
            )
            await self._persist(session)
        except Exception:
            logger.exception("Failed to apply location sample")

    async def _halt(self, session: RunSession) -> None:
        await self._stop_ticker(session)
        await session.sampler.stop()

    async def _find_unfinished(self) -> ActiveRunState | None:
        """The resumable stored run, unless history shows it was already finished."""
        state = await self.state_store.find_resumable()
        if state is None:
            return None
        if any(run.started_at == state.started_at for run in await self.history.get_all()):
            logger.warning(
                "Stored run is already in history; clearing it",
                extra={"started_at": state.started_at},
            )
            await self.state_store.clear()
            return None
        return state

    # ---------- operations ----------

    async def start_run(self) -> RunSnapshot:
        if self._session is not None:
            raise RunAlreadyActiveError("A run is already in progress")
        await self._ensure_location_ready()
        if self._session is not None:
            raise RunAlreadyActiveError("A run is already in progress")

        if await self._find_unfinished() is not None:
            raise RunAlreadyActiveError("An interrupted run is waiting; resume or discard it first")
        leftover = await self.state_store.get()
        if leftover is not None:
            logger.warning(
                "Replacing unfinished run with a new one",
                extra={"started_at": leftover.started_at, "elapsed_sec": leftover.elapsed_sec},
            )

        now = self._now_ms()
        state = ActiveRunState(
            started_at=now,
            total_distance_mi=0.0,
            elapsed_sec=0,
            is_running=True,
            path=[],
            updated_at=now,
        )
        session = self._build_session(state, RunPhase.RUNNING)
        self._session = session
        await self._persist(session)
        self._start_ticker(session)
        session.sampler.start()
        logger.info("Run started", extra={"started_at": now})
        return snapshot_of(session.state, session.phase)

    async def tick(self) -> None:
        """Advance the duration by one tick; what the background ticker does every interval."""
        if self._session is not None:
            await self._tick(self._session)

    async def handle_sample(self, sample: LocationSample) -> AcceptedSample | None:
        session = self._require_session()
        return await session.sampler.handle(sample)

    async def pause_or_resume(self) -> RunSnapshot:
        session = self._require_live_session()
        if session.phase == RunPhase.RUNNING:
            session.phase = RunPhase.PAUSED
            session.state = session.state.model_copy(
                update={"is_running": False, "updated_at": self._now_ms()}
            )
            await self._stop_ticker(session)
            await self._persist(session)
            logger.info("Run paused", extra={"elapsed_sec": session.state.elapsed_sec})
        else:
            session.phase = RunPhase.RUNNING
            session.state = session.state.model_copy(
                update={"is_running": True, "updated_at": self._now_ms()}
            )
            session.sampler.start()
            self._start_ticker(session)
            await self._persist(session)
            logger.info("Run resumed", extra={"elapsed_sec": session.state.elapsed_sec})
        return snapshot_of(session.state, session.phase)

    async def stop_run(self) -> Run:
        """Finish the run: save it to history, then drop the active record.

        If history cannot be written the active record stays in the store, the session
        falls back to paused, and RunFinalizationError is raised so the stop can be
        retried.
        """
        session = self._require_live_session()
        session.phase = RunPhase.FINALIZING
        await self._halt(session)

        now = self._now_ms()
        session.state = session.state.model_copy(update={"is_running": False, "updated_at": now})
        await self._persist(session)

        terminal = session.state
        run = Run(
            id=str(now),
            distance=terminal.total_distance_mi,
            duration=format_duration(terminal.elapsed_sec),
            pace=compute_pace(terminal.elapsed_sec, terminal.total_distance_mi),
            date=datetime.fromtimestamp(now / 1000, tz=timezone.utc).isoformat(),
            path=list(terminal.path),
            started_at=terminal.started_at,
        )

        try:
            await self.history.append(run)
        except StorageError as exc:
            session.phase = RunPhase.PAUSED
            logger.exception("Failed to save finished run; keeping it in progress")
            raise RunFinalizationError("Could not save the run; it is still in progress") from exc

        async with self._write_lock:
            self._session = None
            cleared = await self.state_store.clear()
        if not cleared:
            # The run is already in history; a recovery offer for it would save it twice.
            logger.error(
                "Finished run is still stored as in progress",
                extra={"run_id": run.id, "started_at": terminal.started_at},
            )

        logger.info(
            "Run finished",
            extra={"run_id": run.id, "distance_mi": round(run.distance, 3), "duration": run.duration},
        )
        return run

    async def cancel_run(self) -> None:
        session = self._require_live_session()
        await self._halt(session)
        async with self._write_lock:
            self._session = None
            await self.state_store.clear()
        logger.info("Run cancelled", extra={"elapsed_sec": session.state.elapsed_sec})

    # ---------- recovery ----------

    async def check_recovery(self) -> ActiveRunState | None:
        """The stored run a relaunched app should offer to resume, if any."""
        if self._session is not None:
            return None
        state = await self._find_unfinished()
        if state is not None:
            logger.info(
                "Found resumable run",
                extra={
                    "started_at": state.started_at,
                    "elapsed_sec": state.elapsed_sec,
                    "distance_mi": round(state.total_distance_mi, 3),
                },
            )
        return state

    async def resume_recovered(self) -> RunSnapshot:
        if self._session is not None:
            raise RunAlreadyActiveError("A run is already in progress")
        state = await self._find_unfinished()
        if state is None:
            raise NoActiveRunError("No run to recover")
        await self._ensure_location_ready()
        if self._session is not None:
            raise RunAlreadyActiveError("A run is already in progress")

        phase = RunPhase.RUNNING if state.is_running else RunPhase.PAUSED
        session = self._build_session(state, phase)
        self._session = session
        session.sampler.start()
        if phase == RunPhase.RUNNING:
            self._start_ticker(session)
        logger.info("Recovered run", extra={"phase": phase.value, "elapsed_sec": state.elapsed_sec})
        return snapshot_of(session.state, session.phase)

    async def discard_recovered(self) -> bool:
        if self._session is not None:
            raise RunAlreadyActiveError("A run is in progress; cancel it instead")
        existing = await self.state_store.get()
        await self.state_store.clear()
        return existing is not None

    async def shutdown(self) -> None:
        """Stop ticker and sampler but keep the record so the run survives a restart."""
        session = self._session
        if session is None:
            return
        await self._halt(session)
        await self._persist(session)
        self._session = None
        logger.info("Run suspended for shutdown", extra={"elapsed_sec": session.state.elapsed_sec})
