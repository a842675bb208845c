"""Runtime configuration for the points program."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from donorhub_api.core.settings import Settings, settings as default_settings
from donorhub_api.models.rewards import RewardSetting, TierDefinition

from .tiers import TierBand, build_tier_bands

POINTS_PER_DONATION_KEY = "points_per_donation"
VOUCHER_TTL_HOURS_KEY = "qr_expiry_hours"
EXPIRED_RETENTION_DAYS_KEY = "expired_voucher_retention_days"

KNOWN_SETTING_KEYS = frozenset(
    {POINTS_PER_DONATION_KEY, VOUCHER_TTL_HOURS_KEY, EXPIRED_RETENTION_DAYS_KEY}
)


@dataclass(frozen=True)
class RewardProgramConfig:
    """Resolved program parameters for one unit of work."""

    points_per_donation: int
    voucher_ttl: timedelta
    expired_retention: timedelta
    tiers: list[TierBand] = field(default_factory=list)


class RewardProgramConfigService:
    """Merge environment defaults with operator overrides stored in ``reward_settings``.

    The resolved config is cached on the instance; call :meth:`reload` after
    writing settings or tiers to pick up the new values.
    """

    def __init__(self, db_session: AsyncSession, *, app_settings: Settings | None = None) -> None:
        self._db = db_session
        self._settings = app_settings or default_settings
        self._cached: RewardProgramConfig | None = None

    async def get(self) -> RewardProgramConfig:
        if self._cached is None:
            self._cached = await self._load()
        return self._cached

    async def reload(self) -> RewardProgramConfig:
        self._cached = None
        return await self.get()

    async def tiers(self) -> list[TierBand]:
        return (await self.get()).tiers

    async def set_setting(self, key: str, value: int) -> RewardSetting:
        """Persist a program setting override and invalidate the cache."""

        if key not in KNOWN_SETTING_KEYS:
            raise ValueError(f"Unsupported reward setting: {key}")
        if int(value) <= 0:
            raise ValueError("Reward settings must be positive integers")

        record = await self._db.get(RewardSetting, key)
        if record is None:
            record = RewardSetting(setting_key=key, setting_value=str(int(value)))
            self._db.add(record)
        else:
            record.setting_value = str(int(value))
        await self._db.flush()
        self._cached = None
        logger.info("Updated reward setting", setting_key=key, setting_value=int(value))
        return record

    async def _load(self) -> RewardProgramConfig:
        result = await self._db.execute(select(RewardSetting))
        overrides = {record.setting_key: record.setting_value for record in result.scalars().all()}

        tier_rows = (await self._db.execute(select(TierDefinition))).scalars().all()

        config = RewardProgramConfig(
            points_per_donation=self._resolve_int(
                overrides, POINTS_PER_DONATION_KEY, self._settings.rewards_points_per_donation
            ),
            voucher_ttl=timedelta(
                hours=self._resolve_int(overrides, VOUCHER_TTL_HOURS_KEY, self._settings.rewards_voucher_ttl_hours)
            ),
            expired_retention=timedelta(
                days=self._resolve_int(
                    overrides, EXPIRED_RETENTION_DAYS_KEY, self._settings.rewards_expired_retention_days
                )
            ),
            tiers=build_tier_bands(tier_rows),
        )
        logger.debug(
            "Loaded reward program config",
            points_per_donation=config.points_per_donation,
            voucher_ttl_seconds=int(config.voucher_ttl.total_seconds()),
            tiers=len(config.tiers),
        )
        return config

    @staticmethod
    def _resolve_int(overrides: dict[str, str], key: str, default: int) -> int:
        raw = overrides.get(key)
        if raw is None:
            return default
        try:
            value = int(str(raw).strip())
        except ValueError:
            logger.warning("Ignoring non-numeric reward setting", setting_key=key, setting_value=raw)
            return default
        if value <= 0:
            logger.warning("Ignoring non-positive reward setting", setting_key=key, setting_value=raw)
            return default
        return value


__all__ = [
    "EXPIRED_RETENTION_DAYS_KEY",
    "KNOWN_SETTING_KEYS",
    "POINTS_PER_DONATION_KEY",
    "RewardProgramConfig",
    "RewardProgramConfigService",
    "VOUCHER_TTL_HOURS_KEY",
]
