from __future__ import annotations

import logging
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from runtrack.core.config import Settings

request_logger = logging.getLogger("runtrack.request")
error_logger = logging.getLogger("runtrack.error")


def _init_sentry(settings: Settings) -> None:
    if not settings.SENTRY_DSN:
        return

    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
    except ImportError:
        error_logger.warning(
            "SENTRY_DSN configured but sentry_sdk is not installed; skipping Sentry init"
        )
        return

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[FastApiIntegration()],
    )
    request_logger.info(
        "Sentry initialized",
        extra={"sentry_traces_sample_rate": settings.SENTRY_TRACES_SAMPLE_RATE},
    )


def _run_phase(request: Request) -> str | None:
    controller = getattr(request.app.state, "run_controller", None)
    return controller.phase.value if controller is not None else None


def setup_observability(app: FastAPI, settings: Settings) -> None:
    _init_sentry(settings)

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid4())
        start = perf_counter()
        context = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else None,
        }

        try:
            response = await call_next(request)
        except Exception:
            error_logger.exception(
                "Unhandled request exception",
                extra={
                    **context,
                    "run_phase": _run_phase(request),
                    "duration_ms": round((perf_counter() - start) * 1000, 2),
                },
            )
            response = JSONResponse(
                status_code=500,
                content={"detail": "Internal server error", "request_id": request_id},
            )

        request_logger.info(
            "Request completed",
            extra={
                **context,
                "status_code": response.status_code,
                # phase after the request, so start/stop calls show their outcome
                "run_phase": _run_phase(request),
                "duration_ms": round((perf_counter() - start) * 1000, 2),
            },
        )
        response.headers["X-Request-ID"] = request_id
        return response
