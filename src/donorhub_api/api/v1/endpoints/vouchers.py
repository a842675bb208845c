"""Merchant endpoints for previewing and verifying donor vouchers."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from donorhub_api.api.dependencies.security import require_rewards_api_key
from donorhub_api.api.errors import to_http_exception
from donorhub_api.api.serializers import (
    serialize_customer_tier,
    serialize_redemption,
    serialize_reward,
)
from donorhub_api.db.session import get_session
from donorhub_api.schemas.rewards import (
    VoucherPreviewResponse,
    VoucherVerificationResponse,
    VoucherVerifyRequest,
)
from donorhub_api.services.rewards import RewardsError, VoucherVerifier


router = APIRouter(
    prefix="/rewards/vouchers",
    tags=["vouchers"],
    dependencies=[Depends(require_rewards_api_key)],
)


@router.get("/{voucher_code}", response_model=VoucherPreviewResponse)
async def preview_voucher(
    voucher_code: str,
    db: AsyncSession = Depends(get_session),
) -> VoucherPreviewResponse:
    try:
        preview = await VoucherVerifier(db).preview_voucher(voucher_code)
    except RewardsError as exc:
        raise to_http_exception(exc) from exc

    return VoucherPreviewResponse(
        voucherCode=preview.voucher_code,
        isValid=preview.is_valid,
        status=preview.status.value,
        expiresAt=preview.expires_at,
        verifiedAt=preview.verified_at,
        verifiedByMerchantId=preview.verified_by_merchant_id,
        reward=serialize_reward(preview.reward),
        customer={"donorId": str(preview.donor_id)},
        tier=serialize_customer_tier(preview.tier),
        rewardProgramActive=preview.reward_program_active,
    )


@router.post("/{voucher_code}/verify", response_model=VoucherVerificationResponse)
async def verify_voucher(
    voucher_code: str,
    payload: VoucherVerifyRequest,
    db: AsyncSession = Depends(get_session),
) -> VoucherVerificationResponse:
    try:
        result = await VoucherVerifier(db).verify(voucher_code, payload.merchantId)
    except RewardsError as exc:
        raise to_http_exception(exc) from exc

    return VoucherVerificationResponse(
        success=True,
        redemption=serialize_redemption(result.redemption),
        reward=serialize_reward(result.reward),
        customer={"donorId": str(result.donor_id)},
        tier=serialize_customer_tier(result.tier),
        warning=result.warning,
    )
