"""Scheduled sweep refunding unclaimed vouchers and purging stale ones."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from donorhub_api.core.settings import Settings, settings as default_settings
from donorhub_api.models.rewards import PointsTransactionType, Redemption, RedemptionStatus
from donorhub_api.observability.rewards import get_rewards_metrics_store
from donorhub_api.observability.tracing import get_rewards_tracer

from .clock import utcnow
from .config import RewardProgramConfigService
from .ledger import PointsLedger


@dataclass
class ReclaimSummary:
    refunded_count: int = 0
    purged_count: int = 0
    skipped_count: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "refunded_count": self.refunded_count,
            "purged_count": self.purged_count,
            "skipped_count": self.skipped_count,
            "failures": list(self.failures),
        }


class ExpiryReclaimer:
    """Refund past-due vouchers one row at a time, then purge old expired rows.

    A voucher is refunded only by the sweep that stamps its ``refunded_at``, so
    re-running after a crash never refunds twice. Vouchers the verifier already
    marked expired are picked up here as well.
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

    async def reclaim_expired(self, reference_time: datetime | None = None) -> ReclaimSummary:
        horizon = reference_time or utcnow()
        summary = ReclaimSummary()

        with self._tracer.start_as_current_span("rewards.reclaim_expired") as span:
            config = await self._config.get()
            candidates = await self._db.execute(
                select(
                    Redemption.id,
                    Redemption.donor_id,
                    Redemption.points_spent,
                    Redemption.voucher_code,
                )
                .where(
                    Redemption.refunded_at.is_(None),
                    Redemption.expires_at < horizon,
                    Redemption.status.in_([RedemptionStatus.PENDING, RedemptionStatus.EXPIRED]),
                )
                .order_by(Redemption.expires_at.asc())
            )
            rows = candidates.all()
            # Release the read before per-row writes start their own transactions.
            await self._db.commit()

            for redemption_id, donor_id, points_spent, voucher_code in rows:
                try:
                    refunded = await self._refund_one(
                        redemption_id,
                        donor_id=donor_id,
                        points=int(points_spent),
                        voucher_code=voucher_code,
                        horizon=horizon,
                    )
                except Exception as exc:
                    await self._db.rollback()
                    summary.failures.append(
                        {
                            "redemption_id": str(redemption_id),
                            "voucher_code": voucher_code,
                            "error": str(exc),
                        }
                    )
                    logger.warning(
                        "Failed to reclaim expired voucher",
                        redemption_id=str(redemption_id),
                        voucher_code=voucher_code,
                        error=str(exc),
                    )
                    continue
                if refunded:
                    summary.refunded_count += 1
                else:
                    summary.skipped_count += 1

            summary.purged_count = await self._purge(horizon - config.expired_retention, summary)

            span.set_attribute("rewards.refunded_count", summary.refunded_count)
            span.set_attribute("rewards.purged_count", summary.purged_count)
            span.set_attribute("rewards.failure_count", len(summary.failures))

        self._metrics.record_sweep(
            refunded=summary.refunded_count,
            purged=summary.purged_count,
            failures=len(summary.failures),
        )
        logger.info(
            "Reclaimed expired vouchers",
            candidates=len(rows),
            refunded_count=summary.refunded_count,
            purged_count=summary.purged_count,
            skipped_count=summary.skipped_count,
            failure_count=len(summary.failures),
        )
        return summary

    async def _refund_one(
        self,
        redemption_id: UUID,
        *,
        donor_id: UUID,
        points: int,
        voucher_code: str,
        horizon: datetime,
    ) -> bool:
        flipped = await self._db.execute(
            update(Redemption)
            .where(
                Redemption.id == redemption_id,
                Redemption.refunded_at.is_(None),
                Redemption.expires_at < horizon,
                Redemption.status.in_([RedemptionStatus.PENDING, RedemptionStatus.EXPIRED]),
            )
            .values(status=RedemptionStatus.EXPIRED, refunded_at=horizon, updated_at=horizon)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            # Verified, deleted or refunded by someone else since selection.
            await self._db.rollback()
            return False

        await self._ledger.credit(
            donor_id,
            points,
            PointsTransactionType.REFUNDED,
            description=f"Voucher expired - points auto-refunded ({voucher_code})",
            related_redemption_id=redemption_id,
        )
        await self._db.commit()
        self._metrics.record_refund("expired", points)
        logger.info(
            "Refunded expired voucher",
            redemption_id=str(redemption_id),
            donor_id=str(donor_id),
            voucher_code=voucher_code,
            points=points,
        )
        return True

    async def _purge(self, cutoff: datetime, summary: ReclaimSummary) -> int:
        try:
            result = await self._db.execute(
                delete(Redemption)
                .where(
                    Redemption.status == RedemptionStatus.EXPIRED,
                    Redemption.expires_at < cutoff,
                    Redemption.refunded_at.is_not(None),
                )
                .execution_options(synchronize_session=False)
            )
            await self._db.commit()
        except Exception as exc:
            await self._db.rollback()
            summary.failures.append({"stage": "purge", "error": str(exc)})
            logger.warning("Failed to purge expired vouchers", cutoff=cutoff.isoformat(), error=str(exc))
            return 0

        purged = int(result.rowcount or 0)
        if purged:
            logger.info("Purged expired vouchers", purged=purged, cutoff=cutoff.isoformat())
        return purged


__all__ = ["ExpiryReclaimer", "ReclaimSummary"]
