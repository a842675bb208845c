"""Merchant-side voucher verification."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from donorhub_api.core.settings import Settings, settings as default_settings
from donorhub_api.models.rewards import Redemption, RedemptionStatus, RewardCatalogItem
from donorhub_api.observability.rewards import get_rewards_metrics_store
from donorhub_api.observability.tracing import get_rewards_tracer

from .clock import ensure_aware, utcnow
from .codes import normalize_voucher_code
from .config import RewardProgramConfigService
from .errors import VoucherAlreadyUsedError, VoucherExpiredError, VoucherNotFoundError
from .ledger import PointsLedger
from .redemption import effective_status

REWARD_PROGRAM_INACTIVE_WARNING = "reward_program_inactive"


@dataclass
class CustomerTier:
    name: str
    discount_percent: int
    current_points: int


@dataclass
class VerificationResult:
    redemption: Redemption
    reward: RewardCatalogItem
    donor_id: UUID
    tier: CustomerTier
    warning: str | None = None


@dataclass
class VoucherPreview:
    """Read-only view of a voucher for the merchant confirmation screen."""

    voucher_code: str
    is_valid: bool
    status: RedemptionStatus
    expires_at: datetime
    verified_at: datetime | None
    verified_by_merchant_id: str | None
    reward: RewardCatalogItem
    donor_id: UUID
    tier: CustomerTier
    reward_program_active: bool


class VoucherVerifier:
    """Verify each voucher exactly once via a conditional ``pending -> verified`` update."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        config_service: RewardProgramConfigService | None = None,
        ledger: PointsLedger | None = None,
        app_settings: Settings | None = None,
    ) -> None:
        self._db = db_session
        self._settings = app_settings or default_settings
        self._config = config_service or RewardProgramConfigService(db_session, app_settings=self._settings)
        self._ledger = ledger or PointsLedger(db_session, config_service=self._config, app_settings=self._settings)
        self._metrics = get_rewards_metrics_store()
        self._tracer = get_rewards_tracer()

    async def verify(self, voucher_code: str, merchant_id: str, *, now: datetime | None = None) -> VerificationResult:
        code = normalize_voucher_code(voucher_code)
        moment = now or utcnow()
        with self._tracer.start_as_current_span("rewards.verify") as span:
            span.set_attribute("rewards.voucher_code", code)
            span.set_attribute("rewards.merchant_id", merchant_id)

            redemption = await self._load_by_code(code)
            if redemption is None:
                self._metrics.record_verification("not_found")
                raise VoucherNotFoundError("Invalid voucher code", voucherCode=code)
            self._reject_unverifiable(redemption)

            if moment > ensure_aware(redemption.expires_at):
                await self._mark_expired(redemption.id)
                self._metrics.record_verification("expired")
                raise VoucherExpiredError(
                    "Voucher has expired",
                    voucherCode=code,
                    expiresAt=ensure_aware(redemption.expires_at),
                )

            result = await self._db.execute(
                update(Redemption)
                .where(
                    Redemption.id == redemption.id,
                    Redemption.status == RedemptionStatus.PENDING,
                    Redemption.expires_at >= moment,
                )
                .values(
                    status=RedemptionStatus.VERIFIED,
                    verified_at=moment,
                    verified_by_merchant_id=merchant_id,
                    updated_at=moment,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self._db.rollback()
                current = await self._load_by_code(code)
                if current is None:
                    self._metrics.record_verification("not_found")
                    raise VoucherNotFoundError("Invalid voucher code", voucherCode=code)
                self._reject_unverifiable(current)
                self._metrics.record_verification("expired")
                raise VoucherExpiredError(
                    "Voucher has expired",
                    voucherCode=code,
                    expiresAt=ensure_aware(current.expires_at),
                )
            await self._db.commit()

            redemption = await self._load_by_code(code)
            assert redemption is not None
            tier = await self._customer_tier(redemption.donor_id)
            reward = redemption.reward
            warning = None if reward.is_active else REWARD_PROGRAM_INACTIVE_WARNING

        self._metrics.record_verification("verified")
        logger.info(
            "Verified voucher",
            voucher_code=code,
            redemption_id=str(redemption.id),
            merchant_id=merchant_id,
            donor_id=str(redemption.donor_id),
            tier=tier.name,
            warning=warning,
        )
        return VerificationResult(
            redemption=redemption,
            reward=reward,
            donor_id=redemption.donor_id,
            tier=tier,
            warning=warning,
        )

    async def preview_voucher(self, voucher_code: str, *, now: datetime | None = None) -> VoucherPreview:
        code = normalize_voucher_code(voucher_code)
        redemption = await self._load_by_code(code)
        if redemption is None:
            raise VoucherNotFoundError("Invalid voucher code", voucherCode=code)

        status = effective_status(redemption, now=now)
        tier = await self._customer_tier(redemption.donor_id)
        return VoucherPreview(
            voucher_code=redemption.voucher_code,
            is_valid=status == RedemptionStatus.PENDING,
            status=status,
            expires_at=ensure_aware(redemption.expires_at),
            verified_at=ensure_aware(redemption.verified_at) if redemption.verified_at else None,
            verified_by_merchant_id=redemption.verified_by_merchant_id,
            reward=redemption.reward,
            donor_id=redemption.donor_id,
            tier=tier,
            reward_program_active=bool(redemption.reward.is_active),
        )

    def _reject_unverifiable(self, redemption: Redemption) -> None:
        if redemption.status == RedemptionStatus.VERIFIED:
            self._metrics.record_verification("already_used")
            raise VoucherAlreadyUsedError(
                voucher_code=redemption.voucher_code,
                verified_at=ensure_aware(redemption.verified_at) if redemption.verified_at else None,
                merchant_id=redemption.verified_by_merchant_id,
            )
        if redemption.status in (RedemptionStatus.EXPIRED, RedemptionStatus.CANCELLED):
            self._metrics.record_verification("expired")
            raise VoucherExpiredError(
                "Voucher is no longer valid",
                voucherCode=redemption.voucher_code,
                status=redemption.status.value,
            )

    async def _mark_expired(self, redemption_id: UUID) -> None:
        # The expiry sweep refunds it later; refunded_at stays empty until then.
        result = await self._db.execute(
            update(Redemption)
            .where(Redemption.id == redemption_id, Redemption.status == RedemptionStatus.PENDING)
            .values(status=RedemptionStatus.EXPIRED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        if result.rowcount:
            logger.info("Marked voucher expired at verification", redemption_id=str(redemption_id))

    async def _customer_tier(self, donor_id: UUID) -> CustomerTier:
        balance = await self._ledger.get_balance(donor_id)
        return CustomerTier(
            name=balance.tier.name,
            discount_percent=balance.tier.discount_percent,
            current_points=balance.total_points,
        )

    async def _load_by_code(self, voucher_code: str) -> Redemption | None:
        stmt = (
            select(Redemption)
            .options(selectinload(Redemption.reward))
            .where(Redemption.voucher_code == voucher_code)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()


__all__ = [
    "CustomerTier",
    "REWARD_PROGRAM_INACTIVE_WARNING",
    "VerificationResult",
    "VoucherPreview",
    "VoucherVerifier",
]
