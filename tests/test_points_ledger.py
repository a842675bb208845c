from uuid import uuid4

import pytest
from sqlalchemy import select, update

from donorhub_api.models.rewards import DonorPointsAccount, PointsLedgerEntry, PointsTransactionType
from donorhub_api.services.rewards import InsufficientPointsError, LedgerReconciliationError, PointsLedger
from donorhub_api.services.rewards.config import POINTS_PER_DONATION_KEY, RewardProgramConfigService
from seeding import seed_tiers


@pytest.mark.asyncio
async def test_credit_and_debit_keep_projection_in_step(session_factory) -> None:
    donor_id = uuid4()
    async with session_factory() as session:
        ledger = PointsLedger(session)

        earned = await ledger.credit(donor_id, 300, PointsTransactionType.EARNED, "Donation")
        spent = await ledger.debit(donor_id, 120, PointsTransactionType.REDEEMED, "Coffee")
        await session.commit()

        assert earned is not None and earned.total_points == 300
        assert spent is not None and spent.total_points == 180
        assert spent.entry.points == -120

        balance = await ledger.get_balance(donor_id)
        assert balance.total_points == 180
        assert balance.lifetime_points == 300

        account = await session.get(DonorPointsAccount, donor_id)
        assert account.version == 2


@pytest.mark.asyncio
async def test_debit_beyond_balance_is_rejected_without_side_effects(session_factory) -> None:
    donor_id = uuid4()
    async with session_factory() as session:
        ledger = PointsLedger(session)
        await ledger.credit(donor_id, 50, PointsTransactionType.EARNED, "Donation")
        await session.commit()

        with pytest.raises(InsufficientPointsError) as exc_info:
            await ledger.debit(donor_id, 80, PointsTransactionType.REDEEMED, "Too expensive")

        assert exc_info.value.required == 80
        assert exc_info.value.available == 50
        assert exc_info.value.as_detail()["code"] == "insufficient_points"

        entries = (await session.execute(select(PointsLedgerEntry))).scalars().all()
        assert len(entries) == 1
        assert (await ledger.get_balance(donor_id)).total_points == 50


@pytest.mark.asyncio
async def test_debit_for_unknown_donor_reports_zero_available(session_factory) -> None:
    async with session_factory() as session:
        with pytest.raises(InsufficientPointsError) as exc_info:
            await PointsLedger(session).debit(uuid4(), 10, PointsTransactionType.REDEEMED)
        assert exc_info.value.available == 0


@pytest.mark.asyncio
async def test_non_positive_amounts_are_rejected(session_factory) -> None:
    async with session_factory() as session:
        ledger = PointsLedger(session)
        with pytest.raises(ValueError):
            await ledger.credit(uuid4(), 0, PointsTransactionType.EARNED)
        with pytest.raises(ValueError):
            await ledger.debit(uuid4(), -5, PointsTransactionType.REDEEMED)
        with pytest.raises(ValueError):
            await ledger.adjust_points(uuid4(), 0, "Nothing")


@pytest.mark.asyncio
async def test_refund_credit_does_not_inflate_lifetime(session_factory) -> None:
    donor_id = uuid4()
    async with session_factory() as session:
        ledger = PointsLedger(session)
        await ledger.credit(donor_id, 200, PointsTransactionType.EARNED, "Donation")
        await ledger.debit(donor_id, 150, PointsTransactionType.REDEEMED, "Voucher")
        refund = await ledger.credit(donor_id, 150, PointsTransactionType.REFUNDED, "Voucher deleted")
        await session.commit()

        assert refund.total_points == 200
        assert refund.lifetime_points == 200

        bonus = await ledger.adjust_points(donor_id, 100, "Goodwill bonus")
        await session.commit()
        assert bonus.total_points == 300
        assert bonus.lifetime_points == 300


@pytest.mark.asyncio
async def test_donation_points_are_awarded_once(session_factory) -> None:
    donor_id = uuid4()
    donation_id = uuid4()
    async with session_factory() as session:
        ledger = PointsLedger(session)

        first = await ledger.award_donation_points(donor_id, donation_id, hospital_name="City Hospital")
        await session.commit()
        second = await ledger.award_donation_points(donor_id, donation_id, hospital_name="City Hospital")
        await session.commit()

        assert first is not None
        assert first.entry.points == 100
        assert first.entry.description == "Points earned from blood donation at City Hospital"
        assert second is None

        balance = await ledger.get_balance(donor_id)
        assert balance.total_points == 100
        assert balance.lifetime_points == 100


@pytest.mark.asyncio
async def test_donation_award_uses_configured_rate(session_factory) -> None:
    donor_id = uuid4()
    async with session_factory() as session:
        config_service = RewardProgramConfigService(session)
        await config_service.set_setting(POINTS_PER_DONATION_KEY, 250)
        await session.commit()

        posting = await PointsLedger(session, config_service=config_service).award_donation_points(donor_id, uuid4())
        await session.commit()

        assert posting.entry.points == 250


@pytest.mark.asyncio
async def test_deleted_donation_reverses_awarded_points_once(session_factory) -> None:
    donor_id = uuid4()
    donation_id = uuid4()
    async with session_factory() as session:
        ledger = PointsLedger(session)
        await ledger.award_donation_points(donor_id, donation_id)
        await ledger.credit(donor_id, 40, PointsTransactionType.EARNED, "Other donation", related_donation_id=uuid4())
        await session.commit()

        reversal = await ledger.reverse_donation_points(donor_id, donation_id, hospital_name="City Hospital")
        await session.commit()
        repeat = await ledger.reverse_donation_points(donor_id, donation_id)
        await session.commit()

        assert reversal is not None
        assert reversal.entry.points == -100
        assert reversal.entry.transaction_type == PointsTransactionType.ADJUSTED
        assert reversal.entry.description == "Points deducted for deleted donation at City Hospital"
        assert repeat is None

        balance = await ledger.get_balance(donor_id)
        assert balance.total_points == 40
        assert balance.lifetime_points == 140


@pytest.mark.asyncio
async def test_balance_reports_tier(session_factory) -> None:
    donor_id = uuid4()
    async with session_factory() as session:
        await seed_tiers(session)
        ledger = PointsLedger(session)
        await ledger.credit(donor_id, 650, PointsTransactionType.EARNED, "Donations")
        await session.commit()

        balance = await ledger.get_balance(donor_id)
        assert balance.tier.name == "Silver"
        assert balance.tier.discount_percent == 10

        empty = await ledger.get_balance(uuid4())
        assert empty.total_points == 0
        assert empty.tier.name == "Bronze"


@pytest.mark.asyncio
async def test_history_pages_most_recent_first(session_factory) -> None:
    donor_id = uuid4()
    async with session_factory() as session:
        ledger = PointsLedger(session)
        for index in range(5):
            await ledger.credit(donor_id, 10 + index, PointsTransactionType.EARNED, f"Donation {index}")
        await session.commit()

        first_page, cursor = await ledger.get_history(donor_id, limit=3)
        assert [entry.points for entry in first_page] == [14, 13, 12]
        assert cursor is not None

        second_page, next_cursor = await ledger.get_history(donor_id, limit=3, cursor=cursor)
        assert [entry.points for entry in second_page] == [11, 10]
        assert next_cursor is None


@pytest.mark.asyncio
async def test_audit_finds_and_fixes_drift(session_factory) -> None:
    donor_id = uuid4()
    healthy_id = uuid4()
    async with session_factory() as session:
        ledger = PointsLedger(session)
        await ledger.credit(donor_id, 300, PointsTransactionType.EARNED, "Donation")
        await ledger.credit(healthy_id, 100, PointsTransactionType.EARNED, "Donation")
        await session.execute(
            update(DonorPointsAccount).where(DonorPointsAccount.donor_id == donor_id).values(total_points=50)
        )
        await session.commit()

        discrepancies = await ledger.audit_balances()
        assert [item.donor_id for item in discrepancies] == [donor_id]
        assert discrepancies[0].cached_points == 50
        assert discrepancies[0].ledger_points == 300
        assert discrepancies[0].difference == -250

        fixed = await ledger.fix_discrepancy(donor_id)
        await session.commit()
        assert fixed is not None
        assert fixed.ledger_points == 300

        assert (await ledger.get_balance(donor_id)).total_points == 300
        assert await ledger.audit_balances() == []
        assert await ledger.fix_discrepancy(donor_id) is None

        correction = (
            await session.execute(
                select(PointsLedgerEntry).where(
                    PointsLedgerEntry.donor_id == donor_id,
                    PointsLedgerEntry.points == 0,
                )
            )
        ).scalar_one()
        assert correction.transaction_type == PointsTransactionType.ADJUSTED
        assert correction.description == "Audit correction: balance mismatch fixed (was 50, corrected to 300)"


@pytest.mark.asyncio
async def test_audit_reports_ledger_entries_without_balance_row(session_factory) -> None:
    donor_id = uuid4()
    async with session_factory() as session:
        session.add(
            PointsLedgerEntry(
                donor_id=donor_id,
                points=200,
                transaction_type=PointsTransactionType.EARNED,
                description="Imported donation",
            )
        )
        await session.commit()
        ledger = PointsLedger(session)

        discrepancies = await ledger.audit_balances()
        assert [item.donor_id for item in discrepancies] == [donor_id]
        assert discrepancies[0].cached_points == 0
        assert discrepancies[0].ledger_points == 200

        fixed = await ledger.fix_discrepancy(donor_id)
        await session.commit()

        assert fixed is not None
        assert fixed.cached_points == 0
        assert fixed.ledger_points == 200
        balance = await ledger.get_balance(donor_id)
        assert balance.total_points == 200
        assert balance.lifetime_points == 200
        assert await ledger.audit_balances() == []


@pytest.mark.asyncio
async def test_fix_refuses_negative_ledger_sum(session_factory) -> None:
    donor_id = uuid4()
    async with session_factory() as session:
        ledger = PointsLedger(session)
        await ledger.credit(donor_id, 100, PointsTransactionType.EARNED, "Donation")
        session.add(
            PointsLedgerEntry(
                donor_id=donor_id,
                points=-150,
                transaction_type=PointsTransactionType.ADJUSTED,
                description="Bad manual import",
            )
        )
        await session.commit()

        with pytest.raises(LedgerReconciliationError) as excinfo:
            await ledger.fix_discrepancy(donor_id)

        assert excinfo.value.code == "reconciliation_required"
        assert excinfo.value.context["ledgerPoints"] == -50
        assert (await ledger.get_balance(donor_id)).total_points == 100
