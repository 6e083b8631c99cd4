from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace_escrow import db
from marketplace_escrow.config import AppInfo, get_settings
from marketplace_escrow.core.logging import get_logger, setup_logging
from marketplace_escrow.core.runtime_state import set_scheduler_active
import marketplace_escrow.models  # noqa: F401  registers the tables
from marketplace_escrow.routers import get_api_router
from marketplace_escrow.services.cron import cleanup_stale_purchases_once, release_expired_escrows_once
from marketplace_escrow.utils.errors import error_response

logger = get_logger(__name__)
scheduler: AsyncIOScheduler | None = None
ALLOWED_CREATE_ENV = {"dev", "local", "test"}


def _configure_middlewares(fastapi_app: FastAPI) -> None:
    runtime_settings = get_settings()
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime_settings.CORS_ALLOW_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-User-Id"],
    )

    if runtime_settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        fastapi_app.add_middleware(PrometheusMiddleware)
        fastapi_app.add_route("/metrics", handle_metrics)

    if runtime_settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=runtime_settings.SENTRY_DSN, traces_sample_rate=0.2)


def _warn_on_open_triggers(settings: Any) -> None:
    if settings.CRON_SECRET is None and settings.app_env.lower() not in ALLOWED_CREATE_ENV:
        logger.error(
            "CRON_SECRET is missing; job and capture endpoints will refuse every call.",
            extra={"env": settings.app_env},
        )


def _start_scheduler(settings: Any) -> AsyncIOScheduler:
    # Overlapping runs across replicas are tolerated: every release is a conditional commit.
    job_scheduler = AsyncIOScheduler()
    job_scheduler.start()
    job_scheduler.add_job(
        release_expired_escrows_once,
        "interval",
        minutes=settings.ESCROW_RELEASE_INTERVAL_MINUTES,
        id="release-expired-escrows",
        replace_existing=True,
    )
    job_scheduler.add_job(
        cleanup_stale_purchases_once,
        "interval",
        minutes=settings.STALE_PURCHASE_SWEEP_INTERVAL_MINUTES,
        id="cleanup-stale-purchases",
        replace_existing=True,
    )
    return job_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    global scheduler
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    logger.info("Application startup", extra={"env": settings.app_env})
    _warn_on_open_triggers(settings)

    db.init_engine()
    env_lower = settings.app_env.lower()
    if settings.ALLOW_DB_CREATE_ALL and env_lower in ALLOWED_CREATE_ENV:
        logger.warning(
            "Running Base.metadata.create_all() because APP_ENV=%s and ALLOW_DB_CREATE_ALL=True",
            settings.app_env,
        )
        db.create_all()
    else:
        logger.info(
            "Skipping create_all(); use Alembic migrations. APP_ENV=%s, ALLOW_DB_CREATE_ALL=%s",
            settings.app_env,
            settings.ALLOW_DB_CREATE_ALL,
        )

    set_scheduler_active(False)
    if settings.SCHEDULER_ENABLED:
        scheduler = _start_scheduler(settings)
        set_scheduler_active(True)
    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)
            scheduler = None
        set_scheduler_active(False)
        db.close_engine()
        logger.info("Application shutdown", extra={"env": settings.app_env})


app_info = AppInfo()

app = FastAPI(title=app_info.name, version=app_info.version, lifespan=lifespan)

_configure_middlewares(app)
app.include_router(get_api_router())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc)
    payload = error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred.")
    return JSONResponse(status_code=500, content=payload)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content: dict[str, Any] = detail
    else:
        content = error_response("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


__all__ = ["app"]
