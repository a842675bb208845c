"""Redemption saga: exchange points for a time-boxed voucher."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from donorhub_api.core.settings import Settings, settings as default_settings
from donorhub_api.models.rewards import (
    PointsTransactionType,
    Redemption,
    RedemptionStatus,
    RewardCatalogItem,
)
from donorhub_api.observability.rewards import get_rewards_metrics_store
from donorhub_api.observability.tracing import get_rewards_tracer

from .clock import ensure_aware, utcnow
from .codes import build_qr_payload, generate_voucher_code
from .config import RewardProgramConfigService
from .errors import (
    InsufficientPointsError,
    InvalidRedemptionStateError,
    NotVoucherOwnerError,
    RedemptionNotFoundError,
    RewardInactiveError,
    RewardNotFoundError,
    RollbackFailedError,
    VoucherAlreadyVerifiedError,
)
from .ledger import PointsLedger
from .tiers import TierBand, classify


def effective_status(redemption: Redemption, *, now: datetime | None = None) -> RedemptionStatus:
    """Status as donors and merchants see it: past-due pending vouchers read as expired."""

    if redemption.status == RedemptionStatus.PENDING:
        moment = now or utcnow()
        if moment > ensure_aware(redemption.expires_at):
            return RedemptionStatus.EXPIRED
    return redemption.status


@dataclass
class RedemptionAttempt:
    """Progress of one ``redeem`` call, consulted when compensating."""

    donor_id: UUID
    reward_id: UUID
    points: int = 0
    redemption_id: UUID | None = None
    voucher_code: str | None = None
    completed_steps: list[str] = field(default_factory=list)

    def mark(self, step: str) -> None:
        self.completed_steps.append(step)

    @property
    def redemption_persisted(self) -> bool:
        return "redemption_persisted" in self.completed_steps

    @property
    def points_debited(self) -> bool:
        return "points_debited" in self.completed_steps


@dataclass
class RedemptionReceipt:
    redemption_id: UUID
    voucher_code: str
    expires_at: datetime
    points_spent: int
    remaining_points: int
    qr_code_data: str
    reward: RewardCatalogItem
    expected_tier: TierBand


@dataclass
class VoucherDeletion:
    redemption_id: UUID
    points_refunded: int


class RedemptionEngine:
    """Create, delete and cancel vouchers while keeping the ledger consistent.

    ``redeem`` commits the pending voucher before debiting points in a second
    unit of work; a failed debit deletes the voucher again.
    """

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

    async def redeem(self, donor_id: UUID, reward_id: UUID, *, now: datetime | None = None) -> RedemptionReceipt:
        attempt = RedemptionAttempt(donor_id=donor_id, reward_id=reward_id)
        with self._tracer.start_as_current_span("rewards.redeem") as span:
            span.set_attribute("rewards.donor_id", str(donor_id))
            span.set_attribute("rewards.reward_id", str(reward_id))

            reward = await self._db.get(RewardCatalogItem, reward_id)
            if reward is None:
                self._metrics.record_redemption("reward_not_found")
                raise RewardNotFoundError("Reward not found", rewardId=reward_id)
            if not reward.is_active:
                self._metrics.record_redemption("reward_inactive")
                raise RewardInactiveError("Reward is no longer available", rewardId=reward_id)

            attempt.points = int(reward.points_required)
            balance = await self._ledger.get_balance(donor_id)
            if balance.total_points < attempt.points:
                self._metrics.record_redemption("insufficient_points")
                raise InsufficientPointsError(
                    donor_id=donor_id,
                    required=attempt.points,
                    available=balance.total_points,
                )

            config = await self._config.get()
            expected_tier = classify(balance.total_points - attempt.points, config.tiers)
            issued_at = now or utcnow()
            redemption = await self._persist_pending(
                attempt,
                reward=reward,
                issued_at=issued_at,
                expires_at=issued_at + config.voucher_ttl,
            )

            try:
                posting = await self._ledger.debit(
                    donor_id,
                    attempt.points,
                    PointsTransactionType.REDEEMED,
                    description=(
                        f"Redeemed reward: {reward.title} | {expected_tier.name} tier "
                        f"({expected_tier.discount_percent}% merchant discount)"
                    ),
                    related_redemption_id=redemption.id,
                )
                await self._db.commit()
            except Exception as exc:
                await self._compensate(attempt, exc)
                raise
            attempt.mark("points_debited")

            remaining = posting.total_points if posting else balance.total_points - attempt.points
            span.set_attribute("rewards.voucher_code", redemption.voucher_code)

        self._metrics.record_redemption("succeeded")
        logger.info(
            "Redeemed reward",
            donor_id=str(donor_id),
            reward_id=str(reward_id),
            redemption_id=str(redemption.id),
            voucher_code=redemption.voucher_code,
            points=attempt.points,
            remaining_points=remaining,
        )
        return RedemptionReceipt(
            redemption_id=redemption.id,
            voucher_code=redemption.voucher_code,
            expires_at=ensure_aware(redemption.expires_at),
            points_spent=attempt.points,
            remaining_points=remaining,
            qr_code_data=redemption.qr_code_data,
            reward=reward,
            expected_tier=expected_tier,
        )

    async def delete_voucher(self, donor_id: UUID, redemption_id: UUID) -> VoucherDeletion:
        """Delete an unverified voucher, refunding its points unless they were already returned."""

        redemption = await self._load(redemption_id)
        if redemption is None:
            raise RedemptionNotFoundError("Voucher not found", redemptionId=redemption_id)
        if redemption.donor_id != donor_id:
            raise NotVoucherOwnerError("You can only delete your own vouchers", redemptionId=redemption_id)
        if redemption.status == RedemptionStatus.VERIFIED:
            raise VoucherAlreadyVerifiedError("Verified vouchers cannot be deleted", redemptionId=redemption_id)

        observed_status = redemption.status
        needs_refund = redemption.refunded_at is None
        points = int(redemption.points_spent)
        refund_guard = Redemption.refunded_at.is_(None) if needs_refund else Redemption.refunded_at.is_not(None)
        result = await self._db.execute(
            delete(Redemption)
            .where(
                Redemption.id == redemption_id,
                Redemption.donor_id == donor_id,
                Redemption.status == observed_status,
                refund_guard,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._db.rollback()
            raise RedemptionNotFoundError("Voucher not found", redemptionId=redemption_id)

        refunded = 0
        if needs_refund:
            await self._ledger.credit(
                donor_id,
                points,
                PointsTransactionType.REFUNDED,
                description="Voucher deleted - points refunded",
                related_redemption_id=redemption_id,
            )
            refunded = points
        await self._db.commit()
        self._db.expunge(redemption)

        if refunded:
            self._metrics.record_refund("deleted", refunded)
        logger.info(
            "Deleted voucher",
            donor_id=str(donor_id),
            redemption_id=str(redemption_id),
            status=observed_status.value,
            points_refunded=refunded,
        )
        return VoucherDeletion(redemption_id=redemption_id, points_refunded=refunded)

    async def cancel_redemption(self, redemption_id: UUID, *, reason: str | None = None) -> Redemption:
        """Cancel a pending voucher on behalf of an operator and refund its points once."""

        redemption = await self._load(redemption_id)
        if redemption is None:
            raise RedemptionNotFoundError("Redemption not found", redemptionId=redemption_id)
        if redemption.status != RedemptionStatus.PENDING:
            raise InvalidRedemptionStateError(
                f"Only pending vouchers can be cancelled (status: {redemption.status.value})",
                redemptionId=redemption_id,
                status=redemption.status.value,
            )

        cancelled_at = utcnow()
        result = await self._db.execute(
            update(Redemption)
            .where(
                Redemption.id == redemption_id,
                Redemption.status == RedemptionStatus.PENDING,
                Redemption.refunded_at.is_(None),
            )
            .values(status=RedemptionStatus.CANCELLED, refunded_at=cancelled_at, updated_at=cancelled_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._db.rollback()
            current = await self._load(redemption_id)
            status = current.status.value if current else "deleted"
            raise InvalidRedemptionStateError(
                f"Voucher changed state while cancelling (status: {status})",
                redemptionId=redemption_id,
                status=status,
            )

        title = redemption.reward.title if redemption.reward else "reward"
        description = f"Refund for cancelled redemption: {title}"
        if reason:
            description = f"{description} ({reason})"
        await self._ledger.credit(
            redemption.donor_id,
            int(redemption.points_spent),
            PointsTransactionType.REFUNDED,
            description=description,
            related_redemption_id=redemption_id,
        )
        await self._db.commit()

        self._metrics.record_refund("cancelled", int(redemption.points_spent))
        logger.info(
            "Cancelled redemption",
            redemption_id=str(redemption_id),
            donor_id=str(redemption.donor_id),
            reason=reason,
        )
        return await self._load(redemption_id)

    async def list_redemptions(
        self,
        donor_id: UUID,
        *,
        status: RedemptionStatus | None = None,
        limit: int = 50,
    ) -> list[Redemption]:
        """Return the donor's vouchers, most recent first."""

        stmt = (
            select(Redemption)
            .options(selectinload(Redemption.reward))
            .where(Redemption.donor_id == donor_id)
            .order_by(Redemption.created_at.desc(), Redemption.id.desc())
            .limit(max(1, min(limit, 200)))
        )
        if status is not None:
            stmt = stmt.where(Redemption.status == status)
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def _persist_pending(
        self,
        attempt: RedemptionAttempt,
        *,
        reward: RewardCatalogItem,
        issued_at: datetime,
        expires_at: datetime,
    ) -> Redemption:
        max_attempts = self._settings.rewards_voucher_code_max_attempts
        for code_attempt in range(1, max_attempts + 1):
            voucher_code = generate_voucher_code(now=issued_at)
            taken = await self._db.execute(select(Redemption.id).where(Redemption.voucher_code == voucher_code))
            if taken.first() is not None:
                logger.warning("Voucher code collision", voucher_code=voucher_code, attempt=code_attempt)
                continue

            redemption = Redemption(
                id=uuid4(),
                donor_id=attempt.donor_id,
                reward_id=reward.id,
                voucher_code=voucher_code,
                points_spent=attempt.points,
                status=RedemptionStatus.PENDING,
                qr_code_data=build_qr_payload(self._settings.frontend_url, voucher_code),
                expires_at=expires_at,
                created_at=issued_at,
                updated_at=issued_at,
            )
            self._db.add(redemption)
            try:
                await self._db.commit()
            except IntegrityError:
                await self._db.rollback()
                logger.warning("Voucher code collision on insert", voucher_code=voucher_code, attempt=code_attempt)
                continue

            attempt.redemption_id = redemption.id
            attempt.voucher_code = voucher_code
            attempt.mark("redemption_persisted")
            return redemption

        raise RuntimeError(f"Unable to allocate a unique voucher code after {max_attempts} attempts")

    async def _compensate(self, attempt: RedemptionAttempt, cause: Exception) -> None:
        await self._db.rollback()
        if not attempt.redemption_persisted or attempt.points_debited:
            return

        try:
            result = await self._db.execute(
                delete(Redemption)
                .where(
                    Redemption.id == attempt.redemption_id,
                    Redemption.status == RedemptionStatus.PENDING,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise RuntimeError("Pending voucher was no longer present for compensation")
            await self._db.commit()
        except Exception as exc:
            self._metrics.record_rollback(succeeded=False)
            logger.error(
                "Failed to roll back redemption",
                donor_id=str(attempt.donor_id),
                redemption_id=str(attempt.redemption_id),
                voucher_code=attempt.voucher_code,
                points=attempt.points,
                completed_steps=list(attempt.completed_steps),
                cause=str(cause),
                error=str(exc),
                reconciliation_required=True,
            )
            raise RollbackFailedError(
                "Redemption failed and could not be rolled back",
                redemptionId=attempt.redemption_id,
                voucherCode=attempt.voucher_code,
                reconciliationRequired=True,
            ) from exc

        attempt.mark("compensated")
        self._metrics.record_rollback(succeeded=True)
        logger.warning(
            "Rolled back redemption after failed debit",
            donor_id=str(attempt.donor_id),
            redemption_id=str(attempt.redemption_id),
            voucher_code=attempt.voucher_code,
            error=str(cause),
        )

    async def _load(self, redemption_id: UUID) -> Redemption | None:
        stmt = (
            select(Redemption)
            .options(selectinload(Redemption.reward))
            .where(Redemption.id == redemption_id)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()


__all__ = [
    "RedemptionAttempt",
    "RedemptionEngine",
    "RedemptionReceipt",
    "VoucherDeletion",
    "effective_status",
]
