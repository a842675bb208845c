"""Points ledger: append-only events with a version-checked balance projection."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime
from typing import Tuple
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from donorhub_api.core.settings import Settings, settings as default_settings
from donorhub_api.models.rewards import DonorPointsAccount, PointsLedgerEntry, PointsTransactionType
from donorhub_api.observability.rewards import get_rewards_metrics_store

from .clock import utcnow
from .config import RewardProgramConfigService
from .errors import ConcurrentModificationError, InsufficientPointsError, LedgerReconciliationError
from .tiers import TierBand, classify

_UPSERT_BY_DIALECT = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass
class PointsBalance:
    """Donor balance with the tier it currently qualifies for."""

    donor_id: UUID
    total_points: int
    lifetime_points: int
    tier: TierBand


@dataclass
class LedgerPosting:
    """Entry appended by a ledger operation and the balance it produced."""

    entry: PointsLedgerEntry
    total_points: int
    lifetime_points: int


@dataclass
class BalanceDiscrepancy:
    donor_id: UUID
    cached_points: int
    ledger_points: int
    lifetime_points: int

    @property
    def difference(self) -> int:
        return self.cached_points - self.ledger_points


@dataclass
class _AccountState:
    total_points: int
    lifetime_points: int
    version: int


class PointsLedger:
    """Record point events and keep ``donor_points`` in step with them.

    Operations flush but never commit; the caller owns the unit of work.
    Donation-linked postings roll the session back when a concurrent duplicate
    wins the unique constraint, so post them in a unit of work of their own.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        config_service: RewardProgramConfigService | None = None,
        app_settings: Settings | None = None,
    ) -> None:
        self._db = db_session
        self._settings = app_settings or default_settings
        self._config = config_service or RewardProgramConfigService(db_session, app_settings=self._settings)
        self._max_retries = max(1, self._settings.rewards_balance_max_retries)
        self._metrics = get_rewards_metrics_store()

    async def ensure_account(self, donor_id: UUID) -> None:
        """Create an empty points account unless one exists."""

        if await self._read_account(donor_id) is not None:
            return

        dialect = self._db.get_bind().dialect.name
        insert_factory = _UPSERT_BY_DIALECT.get(dialect)
        if insert_factory is not None:
            stmt = (
                insert_factory(DonorPointsAccount)
                .values(donor_id=donor_id, total_points=0, lifetime_points=0, version=0)
                .on_conflict_do_nothing(index_elements=[DonorPointsAccount.donor_id])
            )
            await self._db.execute(stmt)
        else:
            self._db.add(DonorPointsAccount(donor_id=donor_id, total_points=0, lifetime_points=0, version=0))
            await self._db.flush()
        logger.info("Created points account", donor_id=str(donor_id))

    async def credit(
        self,
        donor_id: UUID,
        points: int,
        transaction_type: PointsTransactionType,
        description: str | None = None,
        related_donation_id: UUID | None = None,
        related_redemption_id: UUID | None = None,
    ) -> LedgerPosting | None:
        """Add points. Returns ``None`` when the donation event was already recorded."""

        if points <= 0:
            raise ValueError("Credits require a positive amount")
        return await self._post(
            donor_id,
            points,
            transaction_type,
            description=description,
            related_donation_id=related_donation_id,
            related_redemption_id=related_redemption_id,
        )

    async def debit(
        self,
        donor_id: UUID,
        points: int,
        transaction_type: PointsTransactionType,
        description: str | None = None,
        related_donation_id: UUID | None = None,
        related_redemption_id: UUID | None = None,
    ) -> LedgerPosting | None:
        """Remove points, raising :class:`InsufficientPointsError` on overdraft."""

        if points <= 0:
            raise ValueError("Debits require a positive amount")
        return await self._post(
            donor_id,
            -points,
            transaction_type,
            description=description,
            related_donation_id=related_donation_id,
            related_redemption_id=related_redemption_id,
        )

    async def get_balance(self, donor_id: UUID) -> PointsBalance:
        state = await self._read_account(donor_id)
        total = state.total_points if state else 0
        lifetime = state.lifetime_points if state else 0
        tiers = await self._config.tiers()
        return PointsBalance(
            donor_id=donor_id,
            total_points=total,
            lifetime_points=lifetime,
            tier=classify(total, tiers),
        )

    async def get_history(
        self,
        donor_id: UUID,
        *,
        limit: int = 50,
        cursor: Tuple[datetime, UUID] | None = None,
    ) -> tuple[list[PointsLedgerEntry], Tuple[datetime, UUID] | None]:
        """Return ledger entries most recent first, with a cursor for the next page."""

        bounded_limit = max(1, min(limit, 200))
        stmt = (
            select(PointsLedgerEntry)
            .where(PointsLedgerEntry.donor_id == donor_id)
            .order_by(PointsLedgerEntry.created_at.desc(), PointsLedgerEntry.id.desc())
        )
        if cursor:
            cursor_time, cursor_id = cursor
            stmt = stmt.where(
                or_(
                    PointsLedgerEntry.created_at < cursor_time,
                    and_(
                        PointsLedgerEntry.created_at == cursor_time,
                        PointsLedgerEntry.id < cursor_id,
                    ),
                )
            )

        result = await self._db.execute(stmt.limit(bounded_limit + 1))
        rows = list(result.scalars().all())
        entries = rows[:bounded_limit]
        next_cursor: Tuple[datetime, UUID] | None = None
        if len(rows) > bounded_limit and entries:
            tail = entries[-1]
            next_cursor = (tail.created_at, tail.id)
        return entries, next_cursor

    async def award_donation_points(
        self,
        donor_id: UUID,
        donation_id: UUID,
        *,
        hospital_name: str | None = None,
    ) -> LedgerPosting | None:
        """Credit the configured points for a recorded donation, once per donation."""

        config = await self._config.get()
        location = f" at {hospital_name}" if hospital_name else ""
        return await self.credit(
            donor_id,
            config.points_per_donation,
            PointsTransactionType.EARNED,
            description=f"Points earned from blood donation{location}",
            related_donation_id=donation_id,
        )

    async def reverse_donation_points(
        self,
        donor_id: UUID,
        donation_id: UUID,
        *,
        hospital_name: str | None = None,
    ) -> LedgerPosting | None:
        """Deduct the points awarded for a deleted donation, once per donation.

        The deduction is an ``adjusted`` debit of the originally awarded amount
        (falling back to the configured rate when no award was recorded).
        """

        awarded = await self._db.execute(
            select(PointsLedgerEntry.points).where(
                PointsLedgerEntry.donor_id == donor_id,
                PointsLedgerEntry.related_donation_id == donation_id,
                PointsLedgerEntry.transaction_type == PointsTransactionType.EARNED,
            )
        )
        amount = awarded.scalar_one_or_none()
        if amount is None:
            amount = (await self._config.get()).points_per_donation

        location = f" at {hospital_name}" if hospital_name else ""
        return await self.debit(
            donor_id,
            int(amount),
            PointsTransactionType.ADJUSTED,
            description=f"Points deducted for deleted donation{location}",
            related_donation_id=donation_id,
        )

    async def adjust_points(self, donor_id: UUID, delta: int, description: str) -> LedgerPosting | None:
        """Record a manual ``adjusted`` credit (positive delta) or debit (negative delta)."""

        if delta == 0:
            raise ValueError("Adjustments require a non-zero amount")
        if delta > 0:
            return await self.credit(donor_id, delta, PointsTransactionType.ADJUSTED, description)
        return await self.debit(donor_id, -delta, PointsTransactionType.ADJUSTED, description)

    async def audit_balances(self) -> list[BalanceDiscrepancy]:
        """List accounts whose cached total differs from the sum of their ledger entries."""

        ledger_sums = (
            select(
                PointsLedgerEntry.donor_id.label("donor_id"),
                func.coalesce(func.sum(PointsLedgerEntry.points), 0).label("ledger_points"),
            )
            .group_by(PointsLedgerEntry.donor_id)
            .subquery()
        )
        stmt = (
            select(
                DonorPointsAccount.donor_id,
                DonorPointsAccount.total_points,
                DonorPointsAccount.lifetime_points,
                func.coalesce(ledger_sums.c.ledger_points, 0),
            )
            .outerjoin(ledger_sums, ledger_sums.c.donor_id == DonorPointsAccount.donor_id)
            .where(DonorPointsAccount.total_points != func.coalesce(ledger_sums.c.ledger_points, 0))
        )
        result = await self._db.execute(stmt)
        discrepancies = [
            BalanceDiscrepancy(
                donor_id=donor_id,
                cached_points=int(total),
                ledger_points=int(ledger_points),
                lifetime_points=int(lifetime),
            )
            for donor_id, total, lifetime, ledger_points in result.all()
        ]
        orphans = (
            select(ledger_sums.c.donor_id, ledger_sums.c.ledger_points)
            .select_from(ledger_sums)
            .outerjoin(DonorPointsAccount, DonorPointsAccount.donor_id == ledger_sums.c.donor_id)
            .where(DonorPointsAccount.donor_id.is_(None), ledger_sums.c.ledger_points != 0)
        )
        discrepancies.extend(
            BalanceDiscrepancy(donor_id=donor_id, cached_points=0, ledger_points=int(ledger_points), lifetime_points=0)
            for donor_id, ledger_points in (await self._db.execute(orphans)).all()
        )
        discrepancies.sort(key=lambda item: abs(item.difference), reverse=True)
        if discrepancies:
            logger.warning("Points audit found discrepancies", count=len(discrepancies))
        return discrepancies

    async def fix_discrepancy(self, donor_id: UUID) -> BalanceDiscrepancy | None:
        """Reset the cached balance to the ledger sum and record the correction.

        The correction entry carries zero points so the ledger sum, which is the
        source of truth, is left untouched.
        """

        ledger_points = int(
            (
                await self._db.execute(
                    select(func.coalesce(func.sum(PointsLedgerEntry.points), 0)).where(
                        PointsLedgerEntry.donor_id == donor_id
                    )
                )
            ).scalar_one()
        )
        if ledger_points < 0:
            raise LedgerReconciliationError(
                "Ledger sum is negative; manual reconciliation required",
                donorId=donor_id,
                ledgerPoints=ledger_points,
            )

        for attempt in range(1, self._max_retries + 1):
            state = await self._read_account(donor_id)
            if state is None and ledger_points:
                # Ledger entries without a balance row.
                await self.ensure_account(donor_id)
                state = await self._read_account(donor_id)
            if state is None or state.total_points == ledger_points:
                return None
            result = await self._db.execute(
                update(DonorPointsAccount)
                .where(
                    DonorPointsAccount.donor_id == donor_id,
                    DonorPointsAccount.version == state.version,
                )
                .values(
                    total_points=ledger_points,
                    lifetime_points=max(state.lifetime_points, ledger_points),
                    version=state.version + 1,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                break
            logger.warning("Stale points balance during audit fix", donor_id=str(donor_id), attempt=attempt)
        else:
            raise ConcurrentModificationError(
                "Points balance kept changing during audit correction",
                donorId=donor_id,
                attempts=self._max_retries,
            )

        self._db.add(
            PointsLedgerEntry(
                donor_id=donor_id,
                points=0,
                transaction_type=PointsTransactionType.ADJUSTED,
                description=(
                    f"Audit correction: balance mismatch fixed "
                    f"(was {state.total_points}, corrected to {ledger_points})"
                ),
                created_at=utcnow(),
            )
        )
        await self._db.flush()
        logger.info(
            "Corrected points balance",
            donor_id=str(donor_id),
            cached_points=state.total_points,
            ledger_points=ledger_points,
        )
        return BalanceDiscrepancy(
            donor_id=donor_id,
            cached_points=state.total_points,
            ledger_points=ledger_points,
            lifetime_points=max(state.lifetime_points, ledger_points),
        )

    async def _post(
        self,
        donor_id: UUID,
        delta: int,
        transaction_type: PointsTransactionType,
        *,
        description: str | None,
        related_donation_id: UUID | None,
        related_redemption_id: UUID | None,
    ) -> LedgerPosting | None:
        if related_donation_id is not None and await self._has_donation_event(
            donor_id, related_donation_id, transaction_type
        ):
            logger.info(
                "Skipped duplicate points event",
                donor_id=str(donor_id),
                donation_id=str(related_donation_id),
                transaction_type=transaction_type.value,
            )
            return None

        if delta > 0:
            await self.ensure_account(donor_id)

        for attempt in range(1, self._max_retries + 1):
            state = await self._read_account(donor_id)
            available = state.total_points if state else 0
            if delta < 0 and -delta > available:
                raise InsufficientPointsError(donor_id=donor_id, required=-delta, available=available)
            assert state is not None

            new_total = state.total_points + delta
            new_lifetime = state.lifetime_points
            if transaction_type == PointsTransactionType.EARNED:
                new_lifetime += delta
            elif delta > 0:
                new_lifetime = max(new_lifetime, new_total)

            result = await self._db.execute(
                update(DonorPointsAccount)
                .where(
                    DonorPointsAccount.donor_id == donor_id,
                    DonorPointsAccount.version == state.version,
                )
                .values(
                    total_points=new_total,
                    lifetime_points=new_lifetime,
                    version=state.version + 1,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                break
            self._metrics.record_stale_balance()
            logger.warning(
                "Stale points balance; retrying",
                donor_id=str(donor_id),
                attempt=attempt,
                expected_version=state.version,
            )
        else:
            raise ConcurrentModificationError(
                "Points balance changed concurrently",
                donorId=donor_id,
                attempts=self._max_retries,
            )

        entry = PointsLedgerEntry(
            donor_id=donor_id,
            points=delta,
            transaction_type=transaction_type,
            description=description,
            related_donation_id=related_donation_id,
            related_redemption_id=related_redemption_id,
            created_at=utcnow(),
        )
        self._db.add(entry)
        try:
            await self._db.flush()
        except IntegrityError:
            await self._db.rollback()
            logger.info(
                "Skipped duplicate points event",
                donor_id=str(donor_id),
                donation_id=str(related_donation_id) if related_donation_id else None,
                transaction_type=transaction_type.value,
                race=True,
            )
            return None

        logger.info(
            "Recorded points ledger entry",
            donor_id=str(donor_id),
            points=delta,
            transaction_type=transaction_type.value,
            total_points=new_total,
        )
        return LedgerPosting(entry=entry, total_points=new_total, lifetime_points=new_lifetime)

    async def _has_donation_event(
        self,
        donor_id: UUID,
        donation_id: UUID,
        transaction_type: PointsTransactionType,
    ) -> bool:
        stmt = select(PointsLedgerEntry.id).where(
            PointsLedgerEntry.donor_id == donor_id,
            PointsLedgerEntry.related_donation_id == donation_id,
            PointsLedgerEntry.transaction_type == transaction_type,
        )
        result = await self._db.execute(stmt.limit(1))
        return result.first() is not None

    async def _read_account(self, donor_id: UUID) -> _AccountState | None:
        # Column select bypasses the identity map so retries see committed values.
        stmt = select(
            DonorPointsAccount.total_points,
            DonorPointsAccount.lifetime_points,
            DonorPointsAccount.version,
        ).where(DonorPointsAccount.donor_id == donor_id)
        row = (await self._db.execute(stmt)).first()
        if row is None:
            return None
        return _AccountState(total_points=int(row[0]), lifetime_points=int(row[1]), version=int(row[2]))


def encode_time_uuid_cursor(timestamp: datetime, identifier: UUID) -> str:
    """Encode pagination cursor for chronological queries."""

    payload = f"{timestamp.isoformat()}|{identifier}".encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("utf-8")


def decode_time_uuid_cursor(cursor: str) -> Tuple[datetime, UUID]:
    """Decode pagination cursor into datetime and UUID parts."""

    raw = base64.urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8")
    timestamp_str, identifier_str = raw.split("|", 1)
    return datetime.fromisoformat(timestamp_str), UUID(identifier_str)


__all__ = [
    "BalanceDiscrepancy",
    "LedgerPosting",
    "PointsBalance",
    "PointsLedger",
    "decode_time_uuid_cursor",
    "encode_time_uuid_cursor",
]
