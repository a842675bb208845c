import re
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select, update

from donorhub_api.core.settings import settings
from donorhub_api.models.rewards import (
    PointsLedgerEntry,
    PointsTransactionType,
    Redemption,
    RedemptionStatus,
)
from donorhub_api.observability.rewards import get_rewards_metrics_store
from donorhub_api.services.rewards import (
    ConcurrentModificationError,
    InsufficientPointsError,
    InvalidRedemptionStateError,
    NotVoucherOwnerError,
    PointsLedger,
    RedemptionEngine,
    RedemptionNotFoundError,
    RewardInactiveError,
    RewardNotFoundError,
    RollbackFailedError,
    VoucherAlreadyVerifiedError,
)
from seeding import seed_points, seed_reward, seed_tiers

VOUCHER_CODE_PATTERN = re.compile(r"^VCH-[0-9A-Z]+-[0-9A-Z]{9}$")


class FailingDebitLedger(PointsLedger):
    async def debit(self, *args, **kwargs):
        raise RuntimeError("ledger unavailable")


class StaleVersionLedger(PointsLedger):
    """Always reads a version that a concurrent writer has already bumped."""

    async def _read_account(self, donor_id):
        state = await super()._read_account(donor_id)
        return replace(state, version=state.version - 1) if state else None


@pytest.mark.asyncio
async def test_redeem_issues_voucher_and_debits_points(session_factory) -> None:
    issued_at = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    async with session_factory() as session:
        await seed_tiers(session)
        reward = await seed_reward(session, title="Free Coffee", points_required=100)
        donor_id = await seed_points(session, 600)
        await session.commit()

        receipt = await RedemptionEngine(session).redeem(donor_id, reward.id, now=issued_at)

        assert VOUCHER_CODE_PATTERN.match(receipt.voucher_code)
        assert receipt.points_spent == 100
        assert receipt.remaining_points == 500
        assert receipt.expires_at == issued_at + timedelta(hours=24)
        assert receipt.qr_code_data.endswith(f"/verify-qr/{receipt.voucher_code}")
        assert receipt.expected_tier.name == "Silver"

        redemption = await session.get(Redemption, receipt.redemption_id)
        assert redemption.status == RedemptionStatus.PENDING
        assert redemption.points_spent == 100

        entry = (
            await session.execute(
                select(PointsLedgerEntry).where(PointsLedgerEntry.related_redemption_id == receipt.redemption_id)
            )
        ).scalar_one()
        assert entry.points == -100
        assert entry.transaction_type == PointsTransactionType.REDEEMED
        assert entry.description == "Redeemed reward: Free Coffee | Silver tier (10% merchant discount)"

    assert get_rewards_metrics_store().snapshot().redemptions["succeeded"] == 1


@pytest.mark.asyncio
async def test_redeem_rejects_missing_inactive_and_unaffordable_rewards(session_factory) -> None:
    async with session_factory() as session:
        retired = await seed_reward(session, title="Retired", is_active=False)
        pricey = await seed_reward(session, title="Spa Day", points_required=900)
        donor_id = await seed_points(session, 200)
        await session.commit()

        engine = RedemptionEngine(session)
        with pytest.raises(RewardNotFoundError):
            await engine.redeem(donor_id, uuid4())
        with pytest.raises(RewardInactiveError):
            await engine.redeem(donor_id, retired.id)
        with pytest.raises(InsufficientPointsError) as exc_info:
            await engine.redeem(donor_id, pricey.id)

        assert exc_info.value.required == 900
        assert exc_info.value.available == 200
        assert (await session.execute(select(Redemption))).scalars().all() == []
        assert (await PointsLedger(session).get_balance(donor_id)).total_points == 200


@pytest.mark.asyncio
async def test_failed_debit_removes_pending_voucher(session_factory) -> None:
    async with session_factory() as session:
        reward = await seed_reward(session)
        donor_id = await seed_points(session, 300)
        await session.commit()

        engine = RedemptionEngine(session, ledger=FailingDebitLedger(session))
        with pytest.raises(RuntimeError, match="ledger unavailable"):
            await engine.redeem(donor_id, reward.id)

        assert (await session.execute(select(Redemption))).scalars().all() == []
        assert (await PointsLedger(session).get_balance(donor_id)).total_points == 300

    assert get_rewards_metrics_store().snapshot().redemptions["rolled_back"] == 1


@pytest.mark.asyncio
async def test_unrecoverable_rollback_raises_rollback_failed(session_factory) -> None:
    async with session_factory() as session:
        reward = await seed_reward(session)
        donor_id = await seed_points(session, 300)
        await session.commit()

        class VerifyingThenFailingLedger(PointsLedger):
            async def debit(self, *args, **kwargs):
                # A merchant verifies the voucher before compensation runs.
                await session.execute(
                    update(Redemption)
                    .values(status=RedemptionStatus.VERIFIED)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
                raise RuntimeError("ledger unavailable")

        engine = RedemptionEngine(session, ledger=VerifyingThenFailingLedger(session))
        with pytest.raises(RollbackFailedError) as exc_info:
            await engine.redeem(donor_id, reward.id)

        detail = exc_info.value.as_detail()
        assert detail["code"] == "rollback_failed"
        assert detail["reconciliationRequired"] is True

    assert get_rewards_metrics_store().snapshot().redemptions["rollback_failed"] == 1


@pytest.mark.asyncio
async def test_delete_pending_voucher_refunds_points(session_factory) -> None:
    async with session_factory() as session:
        reward = await seed_reward(session, points_required=150)
        donor_id = await seed_points(session, 400)
        await session.commit()

        engine = RedemptionEngine(session)
        receipt = await engine.redeem(donor_id, reward.id)

        deletion = await engine.delete_voucher(donor_id, receipt.redemption_id)

        assert deletion.points_refunded == 150
        assert await session.get(Redemption, receipt.redemption_id) is None
        balance = await PointsLedger(session).get_balance(donor_id)
        assert balance.total_points == 400
        assert balance.lifetime_points == 400

        refund = (
            await session.execute(
                select(PointsLedgerEntry).where(PointsLedgerEntry.transaction_type == PointsTransactionType.REFUNDED)
            )
        ).scalar_one()
        assert refund.description == "Voucher deleted - points refunded"
        assert refund.points == 150

        with pytest.raises(RedemptionNotFoundError):
            await engine.delete_voucher(donor_id, receipt.redemption_id)


@pytest.mark.asyncio
async def test_delete_voucher_guards_ownership_and_verified_state(session_factory) -> None:
    async with session_factory() as session:
        reward = await seed_reward(session)
        donor_id = await seed_points(session, 300)
        await session.commit()

        engine = RedemptionEngine(session)
        receipt = await engine.redeem(donor_id, reward.id)

        with pytest.raises(NotVoucherOwnerError):
            await engine.delete_voucher(uuid4(), receipt.redemption_id)

        await session.execute(
            update(Redemption)
            .where(Redemption.id == receipt.redemption_id)
            .values(status=RedemptionStatus.VERIFIED)
        )
        await session.commit()

        with pytest.raises(VoucherAlreadyVerifiedError):
            await engine.delete_voucher(donor_id, receipt.redemption_id)


@pytest.mark.asyncio
async def test_delete_already_refunded_voucher_does_not_refund_again(session_factory) -> None:
    async with session_factory() as session:
        reward = await seed_reward(session)
        donor_id = await seed_points(session, 300)
        await session.commit()

        engine = RedemptionEngine(session)
        receipt = await engine.redeem(donor_id, reward.id)
        await engine.cancel_redemption(receipt.redemption_id)
        assert (await PointsLedger(session).get_balance(donor_id)).total_points == 300

        deletion = await engine.delete_voucher(donor_id, receipt.redemption_id)

        assert deletion.points_refunded == 0
        assert (await PointsLedger(session).get_balance(donor_id)).total_points == 300


@pytest.mark.asyncio
async def test_cancel_redemption_refunds_once(session_factory) -> None:
    async with session_factory() as session:
        reward = await seed_reward(session, title="Movie Ticket", points_required=200)
        donor_id = await seed_points(session, 250)
        await session.commit()

        engine = RedemptionEngine(session)
        receipt = await engine.redeem(donor_id, reward.id)

        cancelled = await engine.cancel_redemption(receipt.redemption_id, reason="partner closed")

        assert cancelled.status == RedemptionStatus.CANCELLED
        assert cancelled.refunded_at is not None
        assert (await PointsLedger(session).get_balance(donor_id)).total_points == 250

        refund = (
            await session.execute(
                select(PointsLedgerEntry).where(PointsLedgerEntry.transaction_type == PointsTransactionType.REFUNDED)
            )
        ).scalar_one()
        assert refund.description == "Refund for cancelled redemption: Movie Ticket (partner closed)"

        with pytest.raises(InvalidRedemptionStateError):
            await engine.cancel_redemption(receipt.redemption_id)
        with pytest.raises(RedemptionNotFoundError):
            await engine.cancel_redemption(uuid4())


@pytest.mark.asyncio
async def test_list_redemptions_filters_by_status(session_factory) -> None:
    async with session_factory() as session:
        coffee = await seed_reward(session, title="Coffee", points_required=50)
        donor_id = await seed_points(session, 500)
        await session.commit()

        engine = RedemptionEngine(session)
        first = await engine.redeem(donor_id, coffee.id)
        await engine.redeem(donor_id, coffee.id)
        await engine.cancel_redemption(first.redemption_id)

        everything = await engine.list_redemptions(donor_id)
        pending = await engine.list_redemptions(donor_id, status=RedemptionStatus.PENDING)

        assert len(everything) == 2
        assert all(item.reward.title == "Coffee" for item in everything)
        assert len(pending) == 1
        assert pending[0].id != first.redemption_id
        assert await engine.list_redemptions(uuid4()) == []


@pytest.mark.asyncio
async def test_redeem_compensates_when_balance_retries_run_out(session_factory) -> None:
    async with session_factory() as session:
        reward = await seed_reward(session, points_required=100)
        donor_id = await seed_points(session, 250)
        await session.commit()

        engine = RedemptionEngine(session, ledger=StaleVersionLedger(session))
        with pytest.raises(ConcurrentModificationError) as excinfo:
            await engine.redeem(donor_id, reward.id)

        assert excinfo.value.context["attempts"] == settings.rewards_balance_max_retries
        remaining = (await session.execute(select(Redemption).where(Redemption.donor_id == donor_id))).scalars().all()
        assert remaining == []
        assert (await PointsLedger(session).get_balance(donor_id)).total_points == 250

    snapshot = get_rewards_metrics_store().snapshot()
    assert snapshot.ledger["stale_reads"] == settings.rewards_balance_max_retries
    assert snapshot.redemptions["rolled_back"] == 1
    assert "succeeded" not in snapshot.redemptions
