from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from loguru import logger

from donorhub_api.core.settings import settings
from donorhub_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .scheduling import RewardsJobScheduler


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


def _resolve_schedule_path() -> Path:
    schedule_path = Path(settings.rewards_job_schedule_path)
    if not schedule_path.is_absolute():
        schedule_path = Path(__file__).resolve().parent.parent.parent / schedule_path
    return schedule_path


@asynccontextmanager
async def lifespan(app: FastAPI):
    schedule_path = _resolve_schedule_path()
    job_scheduler = RewardsJobScheduler(
        session_factory=_session_factory,
        config_path=schedule_path,
    )
    app.state.rewards_job_scheduler = job_scheduler

    scheduler_enabled = settings.rewards_job_scheduler_enabled
    if scheduler_enabled and settings.celery_broker_url:
        logger.info(
            "Voucher cleanup delegated to Celery",
            queue=settings.rewards_cleanup_task_queue,
        )
        scheduler_enabled = False
    elif scheduler_enabled:
        try:
            job_scheduler.start()
        except FileNotFoundError as exc:
            logger.exception("Rewards job scheduler failed to start", error=str(exc))
        else:
            logger.info("Rewards job scheduler enabled", schedule_path=str(schedule_path))
    else:
        logger.info(
            "Rewards job scheduler disabled",
            reason="rewards_job_scheduler_enabled is false",
        )

    try:
        yield
    finally:
        if scheduler_enabled and job_scheduler.is_running:
            await job_scheduler.stop()


def create_app() -> FastAPI:
    """Application factory for the DonorHub rewards API."""
    configure_logging(
        service_name="donorhub-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="DonorHub Rewards API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="donorhub-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    return app
