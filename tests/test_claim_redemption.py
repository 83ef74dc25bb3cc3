from datetime import date

import pytest

from perkmatch_api.models import RewardClaim, RewardClaimStatus
from perkmatch_api.services.rewards import (
    ClaimRedemptionService,
    LedgerTransaction,
    RedemptionOutcome,
    RewardLedgerService,
)


async def _issue_claim(session_factory, seed, *, merchant_name: str = "Blue Bottle Coffee"):
    async with session_factory() as session:
        merchant = await seed.merchant(session, name=merchant_name)
        await seed.visit_program(session, merchant.id, required_visits=1)
        outcome = await RewardLedgerService(session).apply(
            "customer-1",
            merchant.id,
            LedgerTransaction(id="t-1", amount_minor=500, posted_on=date(2026, 10, 1)),
        )
        await session.commit()
    return merchant, outcome.rewards[0]


@pytest.mark.asyncio
async def test_preview_then_redeem_then_redeem_again(session_factory, seed, reset_matching_store) -> None:
    merchant, reward = await _issue_claim(session_factory, seed)

    async with session_factory() as session:
        service = ClaimRedemptionService(session)
        preview = await service.preview(merchant.id, reward.claim_code)
        assert preview.outcome is RedemptionOutcome.SUCCESS
        assert preview.claim.status == RewardClaimStatus.PENDING

        confirmed = await service.confirm(merchant.id, reward.claim_code, redeemer_id="owner-1")
        await session.commit()

    assert confirmed.succeeded
    assert confirmed.claim.status == RewardClaimStatus.REDEEMED
    assert confirmed.claim.redeemed_by == "owner-1"
    assert confirmed.claim.redeemed_at is not None

    async with session_factory() as session:
        service = ClaimRedemptionService(session)
        again = await service.confirm(merchant.id, reward.claim_code, redeemer_id="owner-1")
        looked_up = await service.preview(merchant.id, reward.claim_code)

    assert again.outcome is RedemptionOutcome.ALREADY_REDEEMED
    assert looked_up.outcome is RedemptionOutcome.ALREADY_REDEEMED
    assert looked_up.claim.redeemed_by == "owner-1"

    redemptions = reset_matching_store.snapshot().redemptions
    assert redemptions["confirm:success"] == 1
    assert redemptions["confirm:already_redeemed"] == 1


@pytest.mark.asyncio
async def test_preview_does_not_change_claim(session_factory, seed) -> None:
    merchant, reward = await _issue_claim(session_factory, seed)

    async with session_factory() as session:
        service = ClaimRedemptionService(session)
        for _ in range(3):
            result = await service.preview(merchant.id, reward.claim_code)
            assert result.outcome is RedemptionOutcome.SUCCESS
        await session.commit()

    async with session_factory() as session:
        claim = await session.get(RewardClaim, reward.claim_id)
    assert claim.status == RewardClaimStatus.PENDING
    assert claim.redeemed_at is None


@pytest.mark.asyncio
async def test_codes_are_matched_after_normalization(session_factory, seed) -> None:
    merchant, reward = await _issue_claim(session_factory, seed)
    presented = f" {reward.claim_code[:4].lower()}-{reward.claim_code[4:].lower()} "

    async with session_factory() as session:
        result = await ClaimRedemptionService(session).preview(merchant.id, presented)

    assert result.outcome is RedemptionOutcome.SUCCESS
    assert result.claim.id == reward.claim_id


@pytest.mark.asyncio
async def test_other_merchants_claim_is_wrong_business(session_factory, seed) -> None:
    _, reward = await _issue_claim(session_factory, seed)
    async with session_factory() as session:
        other = await seed.merchant(session, name="Tartine Bakery", owner_id="owner-2")
        await session.commit()

    async with session_factory() as session:
        service = ClaimRedemptionService(session)
        preview = await service.preview(other.id, reward.claim_code)
        confirm = await service.confirm(other.id, reward.claim_code, redeemer_id="owner-2")
        await session.commit()

    assert preview.outcome is RedemptionOutcome.WRONG_BUSINESS
    assert preview.claim is None
    assert confirm.outcome is RedemptionOutcome.WRONG_BUSINESS

    async with session_factory() as session:
        claim = await session.get(RewardClaim, reward.claim_id)
    assert claim.status == RewardClaimStatus.PENDING


@pytest.mark.asyncio
async def test_unknown_and_blank_codes_are_not_found(session_factory, seed) -> None:
    merchant, _ = await _issue_claim(session_factory, seed)

    async with session_factory() as session:
        service = ClaimRedemptionService(session)
        assert (await service.preview(merchant.id, "ZZZZ9999")).outcome is RedemptionOutcome.NOT_FOUND
        assert (await service.confirm(merchant.id, "  ", redeemer_id="owner-1")).outcome is RedemptionOutcome.NOT_FOUND


@pytest.mark.asyncio
async def test_cancelled_claim_reads_as_not_found(session_factory, seed) -> None:
    merchant, reward = await _issue_claim(session_factory, seed)

    async with session_factory() as session:
        cancelled = await ClaimRedemptionService(session).cancel(reward.claim_id)
        await session.commit()
    assert cancelled.status == RewardClaimStatus.CANCELLED
    assert cancelled.cancelled_at is not None

    async with session_factory() as session:
        service = ClaimRedemptionService(session)
        preview = await service.preview(merchant.id, reward.claim_code)
        confirm = await service.confirm(merchant.id, reward.claim_code, redeemer_id="owner-1")

    assert preview.outcome is RedemptionOutcome.NOT_FOUND
    assert preview.claim is None
    assert confirm.outcome is RedemptionOutcome.NOT_FOUND


@pytest.mark.asyncio
async def test_cancel_leaves_redeemed_claims_alone(session_factory, seed) -> None:
    merchant, reward = await _issue_claim(session_factory, seed)

    async with session_factory() as session:
        service = ClaimRedemptionService(session)
        await service.confirm(merchant.id, reward.claim_code, redeemer_id="owner-1")
        claim = await service.cancel(reward.claim_id)
        await session.commit()

    assert claim.status == RewardClaimStatus.REDEEMED
    assert claim.cancelled_at is None
