"""Row builders shared by the rewards tests."""

from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from donorhub_api.models.rewards import PointsTransactionType, RewardCatalogItem, TierDefinition
from donorhub_api.services.rewards import PointsLedger


async def seed_tiers(session: AsyncSession) -> None:
    session.add_all(
        [
            TierDefinition(name="Bronze", min_points=0, discount_percent=5),
            TierDefinition(name="Silver", min_points=500, discount_percent=10),
            TierDefinition(name="Gold", min_points=1000, discount_percent=15),
        ]
    )
    await session.flush()


async def seed_reward(
    session: AsyncSession,
    *,
    title: str = "Free Coffee",
    points_required: int = 100,
    is_active: bool = True,
) -> RewardCatalogItem:
    reward = RewardCatalogItem(
        title=title,
        points_required=points_required,
        partner_name="Bean There",
        category="food",
        is_active=is_active,
    )
    session.add(reward)
    await session.flush()
    return reward


async def seed_points(session: AsyncSession, points: int, donor_id: UUID | None = None) -> UUID:
    donor_id = donor_id or uuid4()
    await PointsLedger(session).credit(
        donor_id,
        points,
        PointsTransactionType.EARNED,
        description="Seed points",
        related_donation_id=uuid4(),
    )
    return donor_id
