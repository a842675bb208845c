from __future__ import annotations

from typing import Any, Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from donorhub_api.core.settings import settings
from donorhub_api.db.session import get_session
from donorhub_api.observability.rewards import get_rewards_metrics_store


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]
    rewards: Dict[str, Any] = Field(default_factory=dict, description="In-process rewards counters")


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Readiness database check failed", error=str(exc))
        components["database"] = ComponentStatus(status="error", detail="Database unreachable")
        status = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    scheduler = getattr(request.app.state, "rewards_job_scheduler", None)
    scheduler_enabled = settings.rewards_job_scheduler_enabled and not settings.celery_broker_url
    if scheduler_enabled and scheduler is not None:
        health = scheduler.health()
        running = bool(health.get("running"))
        scheduler_status: Literal["ready", "starting", "disabled", "error"] = "ready" if running else "starting"
        detail = None if running else "Rewards scheduler not running"
        failing_jobs = [
            job["id"]
            for job in health.get("jobs", [])
            if (job.get("metrics") or {}).get("totals", {}).get("consecutive_failures", 0) > 0
        ]
        if failing_jobs:
            scheduler_status = "error"
            detail = f"Jobs failing: {', '.join(failing_jobs)}"
            status = "error"
        elif not running:
            status = "degraded" if status != "error" else status
        components["rewards_scheduler"] = ComponentStatus(status=scheduler_status, detail=detail)
    elif settings.celery_broker_url:
        components["rewards_scheduler"] = ComponentStatus(
            status="disabled",
            detail=f"Voucher cleanup runs on Celery queue {settings.rewards_cleanup_task_queue}",
        )
    else:
        components["rewards_scheduler"] = ComponentStatus(
            status="disabled",
            detail="Rewards scheduler disabled via settings",
        )

    return ReadinessPayload(
        status=status,
        components=components,
        rewards=get_rewards_metrics_store().snapshot().as_dict(),
    )
