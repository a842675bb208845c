"""Voucher expiry sweep job."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from donorhub_api.services.rewards import ExpiryReclaimer

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def run_voucher_cleanup(
    *,
    session_factory: SessionFactory,
    reference_time: datetime | None = None,
) -> Dict[str, Any]:
    """Refund past-due vouchers and purge expired rows beyond the retention window."""

    maybe_session = session_factory()
    session = maybe_session if isinstance(maybe_session, AsyncSession) else await maybe_session

    async with session as managed_session:
        reclaimer = ExpiryReclaimer(managed_session)
        summary = (await reclaimer.reclaim_expired(reference_time=reference_time)).as_dict()

    logger.bind(summary=summary).info("Voucher cleanup completed")
    return summary


__all__ = ["run_voucher_cleanup"]
