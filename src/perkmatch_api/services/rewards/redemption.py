"""Merchant-facing claim preview and redemption."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from perkmatch_api.models.rewards import RewardClaim, RewardClaimStatus
from perkmatch_api.observability.matching import get_matching_store

from .codes import normalize_reward_code


class RedemptionOutcome(str, Enum):
    NOT_FOUND = "not_found"
    WRONG_BUSINESS = "wrong_business"
    ALREADY_REDEEMED = "already_redeemed"
    SUCCESS = "success"


@dataclass(frozen=True, slots=True)
class RedemptionResult:
    outcome: RedemptionOutcome
    claim: RewardClaim | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is RedemptionOutcome.SUCCESS


class ClaimRedemptionService:
    """Resolve customer-presented codes for a merchant and redeem them.

    Routine results (unknown code, another merchant's code, already redeemed) are
    reported as outcomes rather than raised. Cancelled claims look exactly like
    unknown codes to the caller.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session
        self._store = get_matching_store()

    async def preview(self, merchant_id: UUID, code: str) -> RedemptionResult:
        claim = await self._find(code)
        result = self._classify(merchant_id, claim)
        self._store.record_redemption("preview", result.outcome.value)
        return result

    async def confirm(self, merchant_id: UUID, code: str, redeemer_id: str) -> RedemptionResult:
        claim = await self._find(code)
        result = self._classify(merchant_id, claim)
        if result.outcome is not RedemptionOutcome.SUCCESS or claim is None:
            self._store.record_redemption("confirm", result.outcome.value)
            return result

        claim_id = claim.id
        redeemed_at = datetime.now(timezone.utc)
        stmt = (
            update(RewardClaim)
            .where(RewardClaim.id == claim_id, RewardClaim.status == RewardClaimStatus.PENDING)
            .values(status=RewardClaimStatus.REDEEMED, redeemed_at=redeemed_at, redeemed_by=redeemer_id)
            .execution_options(synchronize_session=False)
        )
        updated = await self._db.execute(stmt)
        await self._db.refresh(claim)

        if updated.rowcount != 1:
            logger.info("Claim redeemed concurrently", claim_id=str(claim_id), merchant_id=str(merchant_id))
            outcome = RedemptionOutcome.ALREADY_REDEEMED
            if claim.status == RewardClaimStatus.CANCELLED:
                outcome = RedemptionOutcome.NOT_FOUND
            self._store.record_redemption("confirm", outcome.value)
            return RedemptionResult(outcome=outcome, claim=claim if outcome is not RedemptionOutcome.NOT_FOUND else None)

        logger.info(
            "Claim redeemed",
            claim_id=str(claim_id),
            merchant_id=str(merchant_id),
            customer_id=claim.customer_id,
            redeemed_by=redeemer_id,
        )
        self._store.record_redemption("confirm", RedemptionOutcome.SUCCESS.value)
        return RedemptionResult(outcome=RedemptionOutcome.SUCCESS, claim=claim)

    async def cancel(self, claim_id: UUID) -> RewardClaim | None:
        """Cancel a pending claim; terminal claims are returned unchanged."""

        claim = await self._db.get(RewardClaim, claim_id)
        if claim is None:
            return None
        if claim.status != RewardClaimStatus.PENDING:
            return claim

        claim.status = RewardClaimStatus.CANCELLED
        claim.cancelled_at = datetime.now(timezone.utc)
        await self._db.flush()
        logger.info("Claim cancelled", claim_id=str(claim_id), merchant_id=str(claim.merchant_id))
        return claim

    async def _find(self, code: str) -> RewardClaim | None:
        normalized = normalize_reward_code(code or "")
        if not normalized:
            return None
        stmt = select(RewardClaim).where(RewardClaim.code == normalized)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _classify(merchant_id: UUID, claim: RewardClaim | None) -> RedemptionResult:
        if claim is None or claim.status == RewardClaimStatus.CANCELLED:
            return RedemptionResult(outcome=RedemptionOutcome.NOT_FOUND)
        if claim.merchant_id != merchant_id:
            return RedemptionResult(outcome=RedemptionOutcome.WRONG_BUSINESS)
        if claim.status == RewardClaimStatus.REDEEMED:
            return RedemptionResult(outcome=RedemptionOutcome.ALREADY_REDEEMED, claim=claim)
        return RedemptionResult(outcome=RedemptionOutcome.SUCCESS, claim=claim)


__all__ = [
    "ClaimRedemptionService",
    "RedemptionOutcome",
    "RedemptionResult",
]
