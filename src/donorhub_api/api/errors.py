"""Translate rewards service failures into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status
from loguru import logger

from donorhub_api.services.rewards import RewardsError

REWARDS_ERROR_STATUS: dict[str, int] = {
    "reward_not_found": status.HTTP_404_NOT_FOUND,
    "reward_inactive": status.HTTP_409_CONFLICT,
    "insufficient_points": status.HTTP_409_CONFLICT,
    "voucher_not_found": status.HTTP_404_NOT_FOUND,
    "already_used": status.HTTP_409_CONFLICT,
    "voucher_expired": status.HTTP_410_GONE,
    "not_owner": status.HTTP_403_FORBIDDEN,
    "already_verified": status.HTTP_409_CONFLICT,
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_state": status.HTTP_409_CONFLICT,
    "reconciliation_required": status.HTTP_409_CONFLICT,
    "concurrent_modification": status.HTTP_409_CONFLICT,
    "rollback_failed": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def to_http_exception(exc: RewardsError) -> HTTPException:
    status_code = REWARDS_ERROR_STATUS.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error("Rewards operation failed", code=exc.code, error=str(exc))
    return HTTPException(status_code=status_code, detail=exc.as_detail())


__all__ = ["REWARDS_ERROR_STATUS", "to_http_exception"]
