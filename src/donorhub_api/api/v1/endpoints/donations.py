"""Hooks called by the donation recorder when donations are created or deleted."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from donorhub_api.api.dependencies.security import require_rewards_api_key
from donorhub_api.api.errors import to_http_exception
from donorhub_api.db.session import get_session
from donorhub_api.schemas.rewards import DonationPointsRequest, DonationPointsResponse
from donorhub_api.services.rewards import PointsLedger, RewardsError


router = APIRouter(
    prefix="/rewards/donations",
    tags=["rewards"],
    dependencies=[Depends(require_rewards_api_key)],
)


@router.post("/{donation_id}/points", response_model=DonationPointsResponse)
async def award_donation_points(
    donation_id: UUID,
    payload: DonationPointsRequest,
    db: AsyncSession = Depends(get_session),
) -> DonationPointsResponse:
    ledger = PointsLedger(db)
    try:
        posting = await ledger.award_donation_points(
            payload.donorId,
            donation_id,
            hospital_name=payload.hospitalName,
        )
        await db.commit()
    except RewardsError as exc:
        await db.rollback()
        raise to_http_exception(exc) from exc

    return DonationPointsResponse(
        donationId=donation_id,
        donorId=payload.donorId,
        applied=posting is not None,
        points=posting.entry.points if posting else 0,
        totalPoints=posting.total_points if posting else None,
    )


@router.delete("/{donation_id}/points", response_model=DonationPointsResponse)
async def reverse_donation_points(
    donation_id: UUID,
    donor_id: UUID = Query(..., alias="donorId"),
    hospital_name: Optional[str] = Query(None, alias="hospitalName"),
    db: AsyncSession = Depends(get_session),
) -> DonationPointsResponse:
    ledger = PointsLedger(db)
    try:
        posting = await ledger.reverse_donation_points(donor_id, donation_id, hospital_name=hospital_name)
        await db.commit()
    except RewardsError as exc:
        await db.rollback()
        raise to_http_exception(exc) from exc

    return DonationPointsResponse(
        donationId=donation_id,
        donorId=donor_id,
        applied=posting is not None,
        points=posting.entry.points if posting else 0,
        totalPoints=posting.total_points if posting else None,
    )
