"""Donor-facing endpoints for points, catalog and vouchers."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from donorhub_api.api.dependencies.session import require_donor_session
from donorhub_api.api.errors import to_http_exception
from donorhub_api.api.serializers import (
    serialize_ledger_entry,
    serialize_redemption,
    serialize_reward,
    serialize_tier,
)
from donorhub_api.db.session import get_session
from donorhub_api.models.rewards import RedemptionStatus
from donorhub_api.schemas.rewards import (
    BalanceResponse,
    LedgerWindowResponse,
    RedemptionCreateRequest,
    RedemptionReceiptResponse,
    RedemptionResponse,
    RewardResponse,
    TierResponse,
    VoucherDeletionResponse,
)
from donorhub_api.services.rewards import (
    PointsLedger,
    RedemptionEngine,
    RewardCatalogService,
    RewardProgramConfigService,
    RewardsError,
)
from donorhub_api.services.rewards.clock import ensure_aware
from donorhub_api.services.rewards.ledger import decode_time_uuid_cursor, encode_time_uuid_cursor


router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.get("/catalog", response_model=List[RewardResponse])
async def list_catalog(db: AsyncSession = Depends(get_session)) -> List[RewardResponse]:
    rewards = await RewardCatalogService(db).list_active_rewards()
    return [serialize_reward(reward) for reward in rewards]


@router.get("/tiers", response_model=List[TierResponse])
async def list_tiers(db: AsyncSession = Depends(get_session)) -> List[TierResponse]:
    tiers = await RewardProgramConfigService(db).tiers()
    return [serialize_tier(tier) for tier in tiers]


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    donor_id: UUID = Depends(require_donor_session),
    db: AsyncSession = Depends(get_session),
) -> BalanceResponse:
    balance = await PointsLedger(db).get_balance(donor_id)
    return BalanceResponse(
        donorId=balance.donor_id,
        totalPoints=balance.total_points,
        lifetimePoints=balance.lifetime_points,
        tier=serialize_tier(balance.tier),
    )


@router.get("/history", response_model=LedgerWindowResponse)
async def get_history(
    limit: int = Query(50, ge=1, le=200),
    cursor: str | None = Query(None, description="Opaque cursor for pagination"),
    donor_id: UUID = Depends(require_donor_session),
    db: AsyncSession = Depends(get_session),
) -> LedgerWindowResponse:
    decoded_cursor = None
    if cursor:
        try:
            decoded_cursor = decode_time_uuid_cursor(cursor)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid ledger cursor") from exc

    entries, next_cursor = await PointsLedger(db).get_history(donor_id, limit=limit, cursor=decoded_cursor)
    return LedgerWindowResponse(
        entries=[serialize_ledger_entry(entry) for entry in entries],
        nextCursor=encode_time_uuid_cursor(ensure_aware(next_cursor[0]), next_cursor[1]) if next_cursor else None,
    )


@router.get("/redemptions", response_model=List[RedemptionResponse])
async def list_redemptions(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    donor_id: UUID = Depends(require_donor_session),
    db: AsyncSession = Depends(get_session),
) -> List[RedemptionResponse]:
    parsed_status = None
    if status_filter:
        try:
            parsed_status = RedemptionStatus(status_filter)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Unsupported redemption status: {status_filter}") from exc

    redemptions = await RedemptionEngine(db).list_redemptions(donor_id, status=parsed_status, limit=limit)
    return [serialize_redemption(redemption) for redemption in redemptions]


@router.post(
    "/redemptions",
    response_model=RedemptionReceiptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_redemption(
    payload: RedemptionCreateRequest,
    donor_id: UUID = Depends(require_donor_session),
    db: AsyncSession = Depends(get_session),
) -> RedemptionReceiptResponse:
    engine = RedemptionEngine(db)
    try:
        receipt = await engine.redeem(donor_id, payload.rewardId)
    except RewardsError as exc:
        raise to_http_exception(exc) from exc

    return RedemptionReceiptResponse(
        redemptionId=receipt.redemption_id,
        voucherCode=receipt.voucher_code,
        expiresAt=receipt.expires_at,
        pointsSpent=receipt.points_spent,
        remainingPoints=receipt.remaining_points,
        qrCodeData=receipt.qr_code_data,
        reward=serialize_reward(receipt.reward),
        expectedTier=serialize_tier(receipt.expected_tier),
    )


@router.delete("/redemptions/{redemption_id}", response_model=VoucherDeletionResponse)
async def delete_redemption(
    redemption_id: UUID,
    donor_id: UUID = Depends(require_donor_session),
    db: AsyncSession = Depends(get_session),
) -> VoucherDeletionResponse:
    try:
        deletion = await RedemptionEngine(db).delete_voucher(donor_id, redemption_id)
    except RewardsError as exc:
        raise to_http_exception(exc) from exc
    return VoucherDeletionResponse(
        redemptionId=deletion.redemption_id,
        pointsRefunded=deletion.points_refunded,
    )
