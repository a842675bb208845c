"""Request/response models for the rewards API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class RewardResponse(BaseModel):
    id: UUID
    title: str
    description: Optional[str]
    pointsRequired: int
    partnerName: str
    category: Optional[str]
    isActive: bool


class TierResponse(BaseModel):
    name: str
    minPoints: int
    maxPoints: Optional[int]
    discountPercent: int


class BalanceResponse(BaseModel):
    donorId: UUID
    totalPoints: int
    lifetimePoints: int
    tier: TierResponse


class LedgerEntryResponse(BaseModel):
    id: UUID
    points: int
    transactionType: str
    description: Optional[str]
    relatedDonationId: Optional[UUID]
    relatedRedemptionId: Optional[UUID]
    createdAt: datetime


class LedgerWindowResponse(BaseModel):
    entries: List[LedgerEntryResponse]
    nextCursor: Optional[str]


class RedemptionResponse(BaseModel):
    id: UUID
    rewardId: UUID
    rewardTitle: Optional[str]
    voucherCode: str
    pointsSpent: int
    status: str
    qrCodeData: Optional[str]
    createdAt: Optional[datetime]
    expiresAt: datetime
    verifiedAt: Optional[datetime]
    verifiedByMerchantId: Optional[str]


class RedemptionCreateRequest(BaseModel):
    rewardId: UUID = Field(..., description="Catalog reward to exchange points for")


class RedemptionReceiptResponse(BaseModel):
    redemptionId: UUID
    voucherCode: str
    expiresAt: datetime
    pointsSpent: int
    remainingPoints: int
    qrCodeData: str
    reward: RewardResponse
    expectedTier: TierResponse


class VoucherDeletionResponse(BaseModel):
    redemptionId: UUID
    pointsRefunded: int


class CustomerTierResponse(BaseModel):
    name: str
    discountPercent: int
    currentPoints: int


class VoucherVerifyRequest(BaseModel):
    merchantId: str = Field(..., min_length=1, description="Identifier of the verifying merchant")


class VoucherVerificationResponse(BaseModel):
    success: bool = True
    redemption: RedemptionResponse
    reward: RewardResponse
    customer: dict[str, Any]
    tier: CustomerTierResponse
    warning: Optional[str] = None


class VoucherPreviewResponse(BaseModel):
    voucherCode: str
    isValid: bool
    status: Literal["pending", "verified", "expired", "cancelled"]
    expiresAt: datetime
    verifiedAt: Optional[datetime]
    verifiedByMerchantId: Optional[str]
    reward: RewardResponse
    customer: dict[str, Any]
    tier: CustomerTierResponse
    rewardProgramActive: bool


class DonationPointsRequest(BaseModel):
    donorId: UUID
    hospitalName: Optional[str] = Field(None, description="Where the donation took place")


class DonationPointsResponse(BaseModel):
    donationId: UUID
    donorId: UUID
    applied: bool
    points: int
    totalPoints: Optional[int]


class ReclaimResponse(BaseModel):
    refundedCount: int
    purgedCount: int
    skippedCount: int
    failures: List[dict[str, Any]]


class RedemptionCancelRequest(BaseModel):
    reason: Optional[str] = None


class BalanceDiscrepancyResponse(BaseModel):
    donorId: UUID
    cachedPoints: int
    ledgerPoints: int
    lifetimePoints: int
    difference: int


class PointsAdjustmentRequest(BaseModel):
    donorId: UUID
    delta: int = Field(..., description="Signed number of points to add or remove")
    description: str = Field(..., min_length=1)


class RewardCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    pointsRequired: int = Field(..., gt=0)
    partnerName: str = Field(..., min_length=1)
    category: Optional[str] = None
    isActive: bool = True


class RewardUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    pointsRequired: Optional[int] = Field(None, gt=0)
    partnerName: Optional[str] = None
    category: Optional[str] = None
    isActive: Optional[bool] = None


class TierUpsertRequest(BaseModel):
    minPoints: int = Field(..., ge=0)
    discountPercent: int = Field(..., ge=0, le=100)


class SettingUpdateRequest(BaseModel):
    value: int = Field(..., gt=0)
