"""Operator endpoints: expiry sweep, cancellations, audit and program configuration."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from donorhub_api.api.dependencies.security import require_rewards_api_key
from donorhub_api.api.errors import to_http_exception
from donorhub_api.api.serializers import (
    serialize_ledger_entry,
    serialize_redemption,
    serialize_reward,
    serialize_tier,
)
from donorhub_api.db.session import get_session
from donorhub_api.schemas.rewards import (
    BalanceDiscrepancyResponse,
    LedgerEntryResponse,
    PointsAdjustmentRequest,
    ReclaimResponse,
    RedemptionCancelRequest,
    RedemptionResponse,
    RewardCreateRequest,
    RewardResponse,
    RewardUpdateRequest,
    SettingUpdateRequest,
    TierResponse,
    TierUpsertRequest,
)
from donorhub_api.services.rewards import (
    BalanceDiscrepancy,
    ExpiryReclaimer,
    PointsLedger,
    RedemptionEngine,
    RewardCatalogService,
    RewardProgramConfigService,
    RewardsError,
)


router = APIRouter(
    prefix="/rewards/admin",
    tags=["rewards-admin"],
    dependencies=[Depends(require_rewards_api_key)],
)

_REWARD_FIELD_MAP = {
    "title": "title",
    "description": "description",
    "pointsRequired": "points_required",
    "partnerName": "partner_name",
    "category": "category",
    "isActive": "is_active",
}


def _serialize_discrepancy(discrepancy: BalanceDiscrepancy) -> BalanceDiscrepancyResponse:
    return BalanceDiscrepancyResponse(
        donorId=discrepancy.donor_id,
        cachedPoints=discrepancy.cached_points,
        ledgerPoints=discrepancy.ledger_points,
        lifetimePoints=discrepancy.lifetime_points,
        difference=discrepancy.difference,
    )


@router.post("/reclaim", response_model=ReclaimResponse)
async def reclaim_expired_vouchers(
    reference_time: Optional[datetime] = Query(None, alias="referenceTime"),
    db: AsyncSession = Depends(get_session),
) -> ReclaimResponse:
    summary = await ExpiryReclaimer(db).reclaim_expired(reference_time)
    return ReclaimResponse(
        refundedCount=summary.refunded_count,
        purgedCount=summary.purged_count,
        skippedCount=summary.skipped_count,
        failures=summary.failures,
    )


@router.post("/redemptions/{redemption_id}/cancel", response_model=RedemptionResponse)
async def cancel_redemption(
    redemption_id: UUID,
    payload: RedemptionCancelRequest,
    db: AsyncSession = Depends(get_session),
) -> RedemptionResponse:
    try:
        redemption = await RedemptionEngine(db).cancel_redemption(redemption_id, reason=payload.reason)
    except RewardsError as exc:
        raise to_http_exception(exc) from exc
    return serialize_redemption(redemption)


@router.get("/audit", response_model=List[BalanceDiscrepancyResponse])
async def audit_balances(db: AsyncSession = Depends(get_session)) -> List[BalanceDiscrepancyResponse]:
    discrepancies = await PointsLedger(db).audit_balances()
    return [_serialize_discrepancy(item) for item in discrepancies]


@router.post("/audit/{donor_id}/fix", response_model=Optional[BalanceDiscrepancyResponse])
async def fix_balance_discrepancy(
    donor_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> Optional[BalanceDiscrepancyResponse]:
    try:
        fixed = await PointsLedger(db).fix_discrepancy(donor_id)
        await db.commit()
    except RewardsError as exc:
        await db.rollback()
        raise to_http_exception(exc) from exc
    return _serialize_discrepancy(fixed) if fixed else None


@router.post("/adjustments", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def adjust_points(
    payload: PointsAdjustmentRequest,
    db: AsyncSession = Depends(get_session),
) -> LedgerEntryResponse:
    try:
        posting = await PointsLedger(db).adjust_points(payload.donorId, payload.delta, payload.description)
        await db.commit()
    except ValueError as exc:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RewardsError as exc:
        await db.rollback()
        raise to_http_exception(exc) from exc
    assert posting is not None
    return serialize_ledger_entry(posting.entry)


@router.post("/catalog", response_model=RewardResponse, status_code=status.HTTP_201_CREATED)
async def create_reward(
    payload: RewardCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> RewardResponse:
    reward = await RewardCatalogService(db).create_reward(
        title=payload.title,
        description=payload.description,
        points_required=payload.pointsRequired,
        partner_name=payload.partnerName,
        category=payload.category,
        is_active=payload.isActive,
    )
    await db.commit()
    return serialize_reward(reward)


@router.patch("/catalog/{reward_id}", response_model=RewardResponse)
async def update_reward(
    reward_id: UUID,
    payload: RewardUpdateRequest,
    db: AsyncSession = Depends(get_session),
) -> RewardResponse:
    changes = {
        _REWARD_FIELD_MAP[key]: value
        for key, value in payload.model_dump(exclude_unset=True).items()
    }
    try:
        reward = await RewardCatalogService(db).update_reward(reward_id, **changes)
        await db.commit()
    except ValueError as exc:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RewardsError as exc:
        await db.rollback()
        raise to_http_exception(exc) from exc
    return serialize_reward(reward)


@router.put("/tiers/{name}", response_model=List[TierResponse])
async def upsert_tier(
    name: str,
    payload: TierUpsertRequest,
    db: AsyncSession = Depends(get_session),
) -> List[TierResponse]:
    service = RewardCatalogService(db)
    await service.upsert_tier(name, min_points=payload.minPoints, discount_percent=payload.discountPercent)
    await db.commit()
    return [serialize_tier(tier) for tier in await service.list_tiers()]


@router.delete("/tiers/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tier(name: str, db: AsyncSession = Depends(get_session)) -> Response:
    removed = await RewardCatalogService(db).delete_tier(name)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tier not found")
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/settings/{key}", response_model=dict)
async def update_setting(
    key: str,
    payload: SettingUpdateRequest,
    db: AsyncSession = Depends(get_session),
) -> dict:
    config_service = RewardProgramConfigService(db)
    try:
        await config_service.set_setting(key, payload.value)
    except ValueError as exc:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    await db.commit()
    config = await config_service.get()
    return {
        "pointsPerDonation": config.points_per_donation,
        "voucherTtlHours": int(config.voucher_ttl.total_seconds() // 3600),
        "expiredRetentionDays": config.expired_retention.days,
    }
