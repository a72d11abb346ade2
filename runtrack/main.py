from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from runtrack.core.config import Settings, settings as default_settings
from runtrack.core.db import build_engine, build_session_factory
from runtrack.core.logging_setup import configure_logging
from runtrack.core.observability import setup_observability
from runtrack.integrations.kv_store import KeyValueStore, SqlKeyValueStore
from runtrack.integrations.location import PermissionStatus, PushLocationProvider, WatchOptions
from runtrack.models import Base
from runtrack.routes.history import router as history_router
from runtrack.routes.location import router as location_router
from runtrack.routes.run import router as run_router
from runtrack.services.run_history import RunHistoryStore
from runtrack.services.run_session import RunSessionController
from runtrack.services.run_state_store import RunStateStore


def build_controller(
    settings: Settings,
    kv: KeyValueStore,
    provider: PushLocationProvider,
) -> RunSessionController:
    return RunSessionController(
        RunStateStore(kv, key=settings.ACTIVE_RUN_KEY),
        RunHistoryStore(kv, key=settings.RUN_HISTORY_KEY),
        provider,
        tick_interval_s=settings.TICK_INTERVAL_S,
        watch_options=WatchOptions(
            min_interval_ms=settings.LOCATION_MIN_INTERVAL_MS,
            min_distance_m=settings.LOCATION_MIN_DISTANCE_M,
            desired_accuracy=settings.LOCATION_DESIRED_ACCURACY,
        ),
        max_accuracy_m=settings.MAX_ACCURACY_M,
        max_step_mi=settings.MAX_STEP_MI,
        advance_anchor_on_reject=settings.ADVANCE_ANCHOR_ON_REJECT,
        path_max_points=settings.PATH_MAX_POINTS,
    )


def create_app(
    settings: Settings = default_settings,
    *,
    kv: KeyValueStore | None = None,
    provider: PushLocationProvider | None = None,
) -> FastAPI:
    if kv is None:
        engine = build_engine(settings.DATABASE_URL)
        Base.metadata.create_all(bind=engine)
        kv = SqlKeyValueStore(build_session_factory(engine))
    if provider is None:
        provider = PushLocationProvider(
            available=settings.LOCATION_SERVICES_ENABLED,
            permission=PermissionStatus(settings.LOCATION_PERMISSION),
        )
    controller = build_controller(settings, kv, provider)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Surface an interrupted run so the client can offer to resume it.
        await controller.check_recovery()
        yield
        await controller.shutdown()

    app = FastAPI(title="runtrack", lifespan=lifespan)
    app.state.settings = settings
    app.state.run_controller = controller
    app.state.location_provider = provider
    setup_observability(app, settings)

    app.include_router(run_router)
    app.include_router(history_router)
    app.include_router(location_router)

    @app.get("/health")
    def health():
        return {"status": "ok", "run_phase": controller.phase.value}

    return app


configure_logging(default_settings.LOG_LEVEL)

app = create_app()
