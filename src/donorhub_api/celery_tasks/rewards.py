from __future__ import annotations

from datetime import datetime

from loguru import logger

from donorhub_api.celery_app import celery_app
from donorhub_api.core.settings import settings
from donorhub_api.tasks.voucher_cleanup import run_voucher_cleanup_sync


@celery_app.task(
    name="rewards.reclaim_expired_vouchers",
    queue=settings.rewards_cleanup_task_queue,
)
def reclaim_expired_vouchers(reference_time: str | None = None) -> dict[str, object]:
    """Execute one voucher expiry sweep via Celery."""

    moment = datetime.fromisoformat(reference_time) if reference_time else None
    summary = run_voucher_cleanup_sync(reference_time=moment)
    logger.info("Celery voucher cleanup finished", refunded_count=summary.get("refunded_count"))
    return summary
