"""Operator management of rewards, tiers and program settings."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from donorhub_api.models.rewards import RewardCatalogItem, RewardSetting, TierDefinition

from .config import RewardProgramConfigService
from .errors import RewardNotFoundError
from .tiers import TierBand, build_tier_bands

_EDITABLE_REWARD_FIELDS = ("title", "description", "points_required", "partner_name", "category", "is_active")
_REQUIRED_REWARD_FIELDS = ("title", "points_required", "partner_name", "is_active")


class RewardCatalogService:
    """CRUD over ``reward_catalog`` and ``tier_definitions``. Callers commit."""

    def __init__(self, db_session: AsyncSession, *, config_service: RewardProgramConfigService | None = None) -> None:
        self._db = db_session
        self._config = config_service or RewardProgramConfigService(db_session)

    async def list_active_rewards(self) -> list[RewardCatalogItem]:
        stmt = (
            select(RewardCatalogItem)
            .where(RewardCatalogItem.is_active.is_(True))
            .order_by(RewardCatalogItem.points_required.asc(), RewardCatalogItem.title.asc())
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def get_reward(self, reward_id: UUID) -> RewardCatalogItem:
        reward = await self._db.get(RewardCatalogItem, reward_id)
        if reward is None:
            raise RewardNotFoundError("Reward not found", rewardId=reward_id)
        return reward

    async def create_reward(
        self,
        *,
        title: str,
        points_required: int,
        partner_name: str,
        description: str | None = None,
        category: str | None = None,
        is_active: bool = True,
    ) -> RewardCatalogItem:
        if points_required <= 0:
            raise ValueError("Rewards must cost a positive number of points")
        reward = RewardCatalogItem(
            title=title,
            description=description,
            points_required=points_required,
            partner_name=partner_name,
            category=category,
            is_active=is_active,
        )
        self._db.add(reward)
        await self._db.flush()
        logger.info("Created reward", reward_id=str(reward.id), title=title, points_required=points_required)
        return reward

    async def update_reward(self, reward_id: UUID, **changes: Any) -> RewardCatalogItem:
        """Apply partial updates. Existing vouchers keep their ``points_spent`` snapshot."""

        unknown = set(changes) - set(_EDITABLE_REWARD_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported reward fields: {', '.join(sorted(unknown))}")
        cleared = sorted(key for key in _REQUIRED_REWARD_FIELDS if key in changes and changes[key] is None)
        if cleared:
            raise ValueError(f"Reward fields cannot be cleared: {', '.join(cleared)}")
        if "points_required" in changes and int(changes["points_required"]) <= 0:
            raise ValueError("Rewards must cost a positive number of points")

        reward = await self.get_reward(reward_id)
        for key, value in changes.items():
            setattr(reward, key, value)
        await self._db.flush()
        logger.info("Updated reward", reward_id=str(reward_id), fields=sorted(changes))
        return reward

    async def set_active(self, reward_id: UUID, is_active: bool) -> RewardCatalogItem:
        return await self.update_reward(reward_id, is_active=is_active)

    async def list_tiers(self) -> list[TierBand]:
        result = await self._db.execute(select(TierDefinition))
        return build_tier_bands(result.scalars().all())

    async def upsert_tier(self, name: str, *, min_points: int, discount_percent: int) -> TierDefinition:
        if min_points < 0:
            raise ValueError("Tier minimum must not be negative")
        if not 0 <= discount_percent <= 100:
            raise ValueError("Tier discount must be between 0 and 100")

        result = await self._db.execute(select(TierDefinition).where(TierDefinition.name == name))
        tier = result.scalar_one_or_none()
        if tier is None:
            tier = TierDefinition(name=name, min_points=min_points, discount_percent=discount_percent)
            self._db.add(tier)
        else:
            tier.min_points = min_points
            tier.discount_percent = discount_percent
        await self._db.flush()
        await self._config.reload()
        logger.info("Saved tier", tier=name, min_points=min_points, discount_percent=discount_percent)
        return tier

    async def delete_tier(self, name: str) -> bool:
        result = await self._db.execute(delete(TierDefinition).where(TierDefinition.name == name))
        await self._config.reload()
        removed = bool(result.rowcount)
        if removed:
            logger.info("Deleted tier", tier=name)
        return removed

    async def set_setting(self, key: str, value: int) -> RewardSetting:
        return await self._config.set_setting(key, value)


__all__ = ["RewardCatalogService"]
