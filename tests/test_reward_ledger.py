from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import select

from perkmatch_api.models import (
    RewardClaim,
    RewardClaimStatus,
    RewardProgramStatus,
    RewardProgress,
    RewardProgressStatus,
)
from perkmatch_api.services.rewards import (
    LedgerTransaction,
    RewardCodeExhaustedError,
    RewardCodeGenerator,
    RewardLedgerService,
)

CUSTOMER = "customer-1"


def _entry(amount_minor: int = 500, txn_id: str | None = None) -> LedgerTransaction:
    return LedgerTransaction(id=txn_id or uuid4().hex, amount_minor=amount_minor, posted_on=date(2026, 10, 1))


class _AlwaysCollidingGenerator(RewardCodeGenerator):
    async def _exists(self, code: str) -> bool:
        return True


async def _progress_rows(session, program_id):
    stmt = (
        select(RewardProgress)
        .where(RewardProgress.program_id == program_id)
        .order_by(RewardProgress.status.asc())
        .execution_options(populate_existing=True)
    )
    return list((await session.execute(stmt)).scalars().all())


async def _claims(session):
    return list((await session.execute(select(RewardClaim))).scalars().all())


@pytest.mark.asyncio
async def test_visit_program_completes_after_required_visits(session_factory, seed) -> None:
    async with session_factory() as session:
        merchant = await seed.merchant(session)
        program = await seed.visit_program(session, merchant.id, required_visits=3)
        await session.commit()

    async with session_factory() as session:
        ledger = RewardLedgerService(session)
        first = await ledger.apply(CUSTOMER, merchant.id, _entry())
        second = await ledger.apply(CUSTOMER, merchant.id, _entry())
        third = await ledger.apply(CUSTOMER, merchant.id, _entry(txn_id="txn-3"))
        await session.commit()

    assert [result.outcome for result in first.results] == ["advanced"]
    assert second.results[0].visit_count == 2
    assert third.results[0].outcome == "completed"
    assert third.claims_issued == 1
    event = third.rewards[0]
    assert event.merchant_name == "Blue Bottle Coffee"
    assert event.reward_description == "Free coffee"

    async with session_factory() as session:
        rows = await _progress_rows(session, program.id)
        claims = await _claims(session)

    active = [row for row in rows if row.status == RewardProgressStatus.ACTIVE]
    completed = [row for row in rows if row.status == RewardProgressStatus.COMPLETED]
    assert len(completed) == 1
    assert completed[0].visit_count == 3
    assert completed[0].lifetime_completions == 1
    assert completed[0].completed_at is not None
    assert completed[0].transaction_ids[-1] == "txn-3"
    assert len(active) == 1
    assert active[0].visit_count == 0
    assert active[0].transaction_ids == []
    assert active[0].lifetime_completions == 1

    assert len(claims) == 1
    assert claims[0].status == RewardClaimStatus.PENDING
    assert claims[0].progress_id == completed[0].id
    assert claims[0].code == event.claim_code
    assert claims[0].customer_id == CUSTOMER


@pytest.mark.asyncio
async def test_minimum_spend_gate(session_factory, seed) -> None:
    async with session_factory() as session:
        merchant = await seed.merchant(session)
        program = await seed.visit_program(session, merchant.id, required_visits=5, minimum_spend_minor=500)
        await session.commit()

    async with session_factory() as session:
        ledger = RewardLedgerService(session)
        below = await ledger.apply(CUSTOMER, merchant.id, _entry(amount_minor=400))
        assert below.results[0].outcome == "skipped"
        assert await _progress_rows(session, program.id) == []

        at_minimum = await ledger.apply(CUSTOMER, merchant.id, _entry(amount_minor=500))
        await session.commit()

    assert at_minimum.results[0].outcome == "advanced"
    assert at_minimum.results[0].visit_count == 1


@pytest.mark.asyncio
async def test_negative_amounts_count_by_magnitude(session_factory, seed) -> None:
    async with session_factory() as session:
        merchant = await seed.merchant(session)
        await seed.visit_program(session, merchant.id, required_visits=5, minimum_spend_minor=500)
        await seed.spend_program(session, merchant.id, threshold_minor=10000)
        await session.commit()

    assert _entry(amount_minor=-600).amount_minor == 600

    async with session_factory() as session:
        outcome = await RewardLedgerService(session).apply(CUSTOMER, merchant.id, _entry(amount_minor=-600))
        await session.commit()

    assert [result.outcome for result in outcome.results] == ["advanced", "advanced"]
    assert sorted(result.visit_count for result in outcome.results) == [0, 1]
    assert sorted(result.spend_minor for result in outcome.results) == [0, 600]


@pytest.mark.asyncio
async def test_spend_overflow_carries_into_successor(session_factory, seed) -> None:
    async with session_factory() as session:
        merchant = await seed.merchant(session)
        program = await seed.spend_program(session, merchant.id, threshold_minor=10000)
        await session.commit()

    async with session_factory() as session:
        ledger = RewardLedgerService(session)
        first = await ledger.apply(CUSTOMER, merchant.id, _entry(amount_minor=6000, txn_id="t-1"))
        second = await ledger.apply(CUSTOMER, merchant.id, _entry(amount_minor=6000, txn_id="t-2"))
        await session.commit()

    assert first.results[0].outcome == "advanced"
    assert first.results[0].spend_minor == 6000
    assert second.results[0].outcome == "completed"
    assert second.claims_issued == 1

    async with session_factory() as session:
        rows = await _progress_rows(session, program.id)

    completed = next(row for row in rows if row.status == RewardProgressStatus.COMPLETED)
    successor = next(row for row in rows if row.status == RewardProgressStatus.ACTIVE)
    assert completed.spend_minor == 12000
    assert completed.transaction_ids == ["t-1", "t-2"]
    assert successor.spend_minor == 2000
    assert successor.transaction_ids == ["t-2"]


@pytest.mark.asyncio
async def test_spend_exact_threshold_starts_empty_successor(session_factory, seed) -> None:
    async with session_factory() as session:
        merchant = await seed.merchant(session)
        program = await seed.spend_program(session, merchant.id, threshold_minor=10000)
        await session.commit()

    async with session_factory() as session:
        ledger = RewardLedgerService(session)
        await ledger.apply(CUSTOMER, merchant.id, _entry(amount_minor=4000))
        outcome = await ledger.apply(CUSTOMER, merchant.id, _entry(amount_minor=-6000))
        await session.commit()

    assert outcome.results[0].outcome == "completed"
    async with session_factory() as session:
        successor = next(
            row for row in await _progress_rows(session, program.id) if row.status == RewardProgressStatus.ACTIVE
        )
    assert successor.spend_minor == 0
    assert successor.transaction_ids == []


@pytest.mark.asyncio
async def test_every_active_program_advances_and_paused_is_ignored(session_factory, seed) -> None:
    async with session_factory() as session:
        merchant = await seed.merchant(session)
        visits = await seed.visit_program(session, merchant.id, required_visits=2)
        spend = await seed.spend_program(session, merchant.id, threshold_minor=5000)
        paused = await seed.visit_program(
            session, merchant.id, required_visits=1, status=RewardProgramStatus.PAUSED
        )
        await session.commit()

    async with session_factory() as session:
        outcome = await RewardLedgerService(session).apply(CUSTOMER, merchant.id, _entry(amount_minor=1500))
        await session.commit()

    by_program = {result.program_id: result for result in outcome.results}
    assert set(by_program) == {visits.id, spend.id}
    assert by_program[visits.id].visit_count == 1
    assert by_program[spend.id].spend_minor == 1500
    assert outcome.claims_issued == 0

    async with session_factory() as session:
        assert await _progress_rows(session, paused.id) == []


@pytest.mark.asyncio
async def test_reapplying_same_transaction_is_ignored(session_factory, seed) -> None:
    async with session_factory() as session:
        merchant = await seed.merchant(session)
        await seed.visit_program(session, merchant.id, required_visits=3)
        await session.commit()

    async with session_factory() as session:
        ledger = RewardLedgerService(session)
        await ledger.apply(CUSTOMER, merchant.id, _entry(txn_id="same"))
        repeat = await ledger.apply(CUSTOMER, merchant.id, _entry(txn_id="same"))
        await session.commit()

    assert repeat.results[0].outcome == "duplicate"
    assert repeat.results[0].visit_count == 1


@pytest.mark.asyncio
async def test_missing_merchant_only_fails_its_program(session_factory, seed) -> None:
    async with session_factory() as session:
        merchant = await seed.merchant(session)
        healthy = await seed.visit_program(session, merchant.id, required_visits=3)
        orphan = await seed.visit_program(session, uuid4(), required_visits=1)
        await session.commit()

    async with session_factory() as session:
        outcome = await RewardLedgerService(session).apply(
            CUSTOMER, merchant.id, _entry(), programs=[orphan, healthy]
        )
        await session.commit()

    by_program = {result.program_id: result for result in outcome.results}
    assert by_program[orphan.id].outcome == "failed"
    assert "not found" in (by_program[orphan.id].error or "")
    assert by_program[healthy.id].outcome == "advanced"

    async with session_factory() as session:
        assert await _progress_rows(session, orphan.id) == []
        assert len(await _progress_rows(session, healthy.id)) == 1
        assert await _claims(session) == []


@pytest.mark.asyncio
async def test_code_exhaustion_leaves_progress_untouched(session_factory, seed) -> None:
    async with session_factory() as session:
        merchant = await seed.merchant(session)
        program = await seed.visit_program(session, merchant.id, required_visits=2)
        await session.commit()

    async with session_factory() as session:
        await RewardLedgerService(session).apply(CUSTOMER, merchant.id, _entry(txn_id="t-1"))
        await session.commit()

    async with session_factory() as session:
        ledger = RewardLedgerService(session, code_generator=_AlwaysCollidingGenerator(session))
        with pytest.raises(RewardCodeExhaustedError):
            await ledger.apply(CUSTOMER, merchant.id, _entry(txn_id="t-2"))
        await session.commit()

    async with session_factory() as session:
        rows = await _progress_rows(session, program.id)
        claims = await _claims(session)

    assert len(rows) == 1
    assert rows[0].status == RewardProgressStatus.ACTIVE
    assert rows[0].visit_count == 1
    assert rows[0].transaction_ids == ["t-1"]
    assert claims == []
