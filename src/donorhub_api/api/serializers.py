"""Map service results onto response schemas."""

from __future__ import annotations

from donorhub_api.models.rewards import PointsLedgerEntry, Redemption, RewardCatalogItem
from donorhub_api.schemas.rewards import (
    CustomerTierResponse,
    LedgerEntryResponse,
    RedemptionResponse,
    RewardResponse,
    TierResponse,
)
from donorhub_api.services.rewards import TierBand
from donorhub_api.services.rewards.clock import ensure_aware
from donorhub_api.services.rewards.redemption import effective_status
from donorhub_api.services.rewards.verifier import CustomerTier


def serialize_reward(reward: RewardCatalogItem) -> RewardResponse:
    return RewardResponse(
        id=reward.id,
        title=reward.title,
        description=reward.description,
        pointsRequired=reward.points_required,
        partnerName=reward.partner_name,
        category=reward.category,
        isActive=bool(reward.is_active),
    )


def serialize_tier(tier: TierBand) -> TierResponse:
    return TierResponse(**tier.as_dict())


def serialize_customer_tier(tier: CustomerTier) -> CustomerTierResponse:
    return CustomerTierResponse(
        name=tier.name,
        discountPercent=tier.discount_percent,
        currentPoints=tier.current_points,
    )


def serialize_ledger_entry(entry: PointsLedgerEntry) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        id=entry.id,
        points=entry.points,
        transactionType=entry.transaction_type.value,
        description=entry.description,
        relatedDonationId=entry.related_donation_id,
        relatedRedemptionId=entry.related_redemption_id,
        createdAt=ensure_aware(entry.created_at),
    )


def serialize_redemption(redemption: Redemption) -> RedemptionResponse:
    return RedemptionResponse(
        id=redemption.id,
        rewardId=redemption.reward_id,
        rewardTitle=redemption.reward.title if redemption.reward else None,
        voucherCode=redemption.voucher_code,
        pointsSpent=redemption.points_spent,
        status=effective_status(redemption).value,
        qrCodeData=redemption.qr_code_data,
        createdAt=ensure_aware(redemption.created_at) if redemption.created_at else None,
        expiresAt=ensure_aware(redemption.expires_at),
        verifiedAt=ensure_aware(redemption.verified_at) if redemption.verified_at else None,
        verifiedByMerchantId=redemption.verified_by_merchant_id,
    )
