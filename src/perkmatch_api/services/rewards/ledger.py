"""Advance reward progress ledgers for matched transactions.

Each active program of the matched merchant is applied independently inside its
own SAVEPOINT: a failure in one program never leaves partial writes behind and
never blocks the remaining programs. Completing a cycle marks the ledger row
``completed``, mints the claim and opens the successor row in the same
SAVEPOINT, so completion and claim are both-or-neither.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Literal, Optional, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from perkmatch_api.core.settings import settings
from perkmatch_api.models.merchant import (
    Merchant,
    RewardProgram,
    RewardProgramStatus,
    SpendRule,
    VisitRule,
)
from perkmatch_api.models.rewards import RewardProgress, RewardProgressStatus
from perkmatch_api.models.transaction import Transaction

from .codes import RewardCodeGenerator

ProgramOutcome = Literal["skipped", "duplicate", "advanced", "completed", "failed"]


class MerchantNotFoundError(LookupError):
    """Raised when a reward program references a merchant that no longer exists."""


class ProgressConflictError(RuntimeError):
    """Raised when concurrent writers kept invalidating the same ledger row."""


@dataclass(frozen=True, slots=True)
class LedgerTransaction:
    """Fields of a transaction the ledger needs, detached from the ORM row."""

    id: str
    amount_minor: int
    posted_on: Optional[date]

    def __post_init__(self) -> None:
        # Refunds arrive negative; rules compare and accumulate magnitudes.
        object.__setattr__(self, "amount_minor", abs(int(self.amount_minor or 0)))

    @classmethod
    def from_model(cls, transaction: Transaction) -> "LedgerTransaction":
        return cls(
            id=str(transaction.id),
            amount_minor=transaction.absolute_amount_minor,
            posted_on=transaction.posted_on,
        )


@dataclass(frozen=True, slots=True)
class RewardEarned:
    """Notification payload emitted for every minted claim."""

    customer_id: str
    merchant_id: UUID
    merchant_name: str
    program_id: UUID
    program_name: str
    reward_description: str
    claim_id: UUID
    claim_code: str


@dataclass(slots=True)
class ProgramResult:
    program_id: UUID
    outcome: ProgramOutcome
    visit_count: int = 0
    spend_minor: int = 0
    claim_code: str | None = None
    error: str | None = None


@dataclass(slots=True)
class LedgerOutcome:
    results: list[ProgramResult] = field(default_factory=list)
    rewards: list[RewardEarned] = field(default_factory=list)

    @property
    def claims_issued(self) -> int:
        return len(self.rewards)


class RewardLedgerService:
    """Apply matched transactions to per-customer reward progress."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        code_generator: RewardCodeGenerator | None = None,
        conflict_retries: int | None = None,
    ) -> None:
        self._db = db_session
        self._codes = code_generator or RewardCodeGenerator(db_session)
        self._conflict_retries = conflict_retries or settings.reward_progress_conflict_retries

    async def list_active_programs(self, merchant_id: UUID) -> list[RewardProgram]:
        stmt = (
            select(RewardProgram)
            .where(
                RewardProgram.merchant_id == merchant_id,
                RewardProgram.status == RewardProgramStatus.ACTIVE,
            )
            .order_by(RewardProgram.id.asc())
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def apply(
        self,
        customer_id: str,
        merchant_id: UUID,
        transaction: Transaction | LedgerTransaction,
        *,
        programs: Sequence[RewardProgram] | None = None,
    ) -> LedgerOutcome:
        """Advance every active program of ``merchant_id`` for one transaction.

        ``RewardCodeExhaustedError`` propagates after its program has been rolled
        back; missing merchants are logged and isolated to their program.
        """

        entry = transaction if isinstance(transaction, LedgerTransaction) else LedgerTransaction.from_model(transaction)
        if programs is None:
            programs = await self.list_active_programs(merchant_id)

        outcome = LedgerOutcome()
        for program in programs:
            program_id = program.id
            try:
                result, reward = await self._apply_with_retry(customer_id, program, entry)
            except MerchantNotFoundError as exc:
                logger.error(
                    "Reward program references a missing merchant",
                    program_id=str(program_id),
                    merchant_id=str(merchant_id),
                    transaction_id=entry.id,
                    error=str(exc),
                )
                outcome.results.append(ProgramResult(program_id=program_id, outcome="failed", error=str(exc)))
                continue

            outcome.results.append(result)
            if reward is not None:
                outcome.rewards.append(reward)
        return outcome

    async def _apply_with_retry(
        self,
        customer_id: str,
        program: RewardProgram,
        entry: LedgerTransaction,
    ) -> tuple[ProgramResult, RewardEarned | None]:
        program_id = program.id
        for attempt in range(1, self._conflict_retries + 1):
            try:
                async with self._db.begin_nested():
                    return await self._apply_program(customer_id, program, entry)
            except (StaleDataError, IntegrityError) as exc:
                logger.warning(
                    "Reward progress write conflict; retrying with fresh read",
                    customer_id=customer_id,
                    program_id=str(program_id),
                    attempt=attempt,
                    error=str(exc),
                )
        raise ProgressConflictError(
            f"Reward progress for customer {customer_id} and program {program_id} kept conflicting"
        )

    async def _apply_program(
        self,
        customer_id: str,
        program: RewardProgram,
        entry: LedgerTransaction,
    ) -> tuple[ProgramResult, RewardEarned | None]:
        merchant = await self._db.get(Merchant, program.merchant_id)
        if merchant is None:
            raise MerchantNotFoundError(f"Merchant {program.merchant_id} not found for program {program.id}")

        rule = program.rule
        progress = await self._fetch_active_progress(customer_id, program.id)
        if progress is not None and entry.id in (progress.transaction_ids or []):
            logger.info(
                "Transaction already applied to reward progress",
                transaction_id=entry.id,
                program_id=str(program.id),
            )
            return self._result(program, progress, "duplicate"), None

        if isinstance(rule, VisitRule):
            if rule.minimum_spend_minor is not None and entry.amount_minor < rule.minimum_spend_minor:
                logger.debug(
                    "Visit below minimum spend; not counted",
                    transaction_id=entry.id,
                    program_id=str(program.id),
                    amount_minor=entry.amount_minor,
                    minimum_spend_minor=rule.minimum_spend_minor,
                )
                return ProgramResult(program_id=program.id, outcome="skipped"), None

        if progress is None:
            progress = RewardProgress(
                customer_id=customer_id,
                merchant_id=program.merchant_id,
                program_id=program.id,
                visit_count=0,
                spend_minor=0,
                transaction_ids=[],
                lifetime_completions=0,
                status=RewardProgressStatus.ACTIVE,
            )
            self._db.add(progress)

        progress.transaction_ids = [*(progress.transaction_ids or []), entry.id]
        progress.last_activity_on = entry.posted_on
        if isinstance(rule, VisitRule):
            progress.visit_count = int(progress.visit_count or 0) + 1
            reached = progress.visit_count >= rule.required_visits
        elif isinstance(rule, SpendRule):
            progress.spend_minor = int(progress.spend_minor or 0) + entry.amount_minor
            reached = progress.spend_minor >= rule.threshold_minor
        else:  # pragma: no cover - RewardProgram.rule only yields the two variants
            raise TypeError(f"Unsupported reward rule {rule!r}")

        if not reached:
            await self._db.flush()
            logger.info(
                "Reward progress advanced",
                customer_id=customer_id,
                program_id=str(program.id),
                visit_count=progress.visit_count,
                spend_minor=progress.spend_minor,
            )
            return self._result(program, progress, "advanced"), None

        return await self._complete(customer_id, merchant, program, rule, progress, entry)

    async def _complete(
        self,
        customer_id: str,
        merchant: Merchant,
        program: RewardProgram,
        rule: VisitRule | SpendRule,
        progress: RewardProgress,
        entry: LedgerTransaction,
    ) -> tuple[ProgramResult, RewardEarned]:
        now = datetime.now(timezone.utc)
        lifetime_completions = int(progress.lifetime_completions or 0) + 1
        progress.status = RewardProgressStatus.COMPLETED
        progress.lifetime_completions = lifetime_completions
        progress.completed_at = now
        await self._db.flush()

        claim = await self._codes.mint_claim(progress=progress, program=program, issued_at=now)

        overflow = 0
        seeded_ids: list[str] = []
        if isinstance(rule, SpendRule):
            overflow = max(int(progress.spend_minor) - rule.threshold_minor, 0)
            if overflow > 0:
                seeded_ids = [entry.id]

        successor = RewardProgress(
            customer_id=customer_id,
            merchant_id=program.merchant_id,
            program_id=program.id,
            visit_count=0,
            spend_minor=overflow,
            transaction_ids=seeded_ids,
            lifetime_completions=lifetime_completions,
            status=RewardProgressStatus.ACTIVE,
            last_activity_on=entry.posted_on if seeded_ids else None,
        )
        self._db.add(successor)
        await self._db.flush()

        logger.info(
            "Reward cycle completed",
            customer_id=customer_id,
            program_id=str(program.id),
            merchant_id=str(merchant.id),
            claim_code=claim.code,
            visit_count=progress.visit_count,
            spend_minor=progress.spend_minor,
            overflow_minor=overflow,
        )
        result = self._result(program, progress, "completed")
        result.claim_code = claim.code
        reward = RewardEarned(
            customer_id=customer_id,
            merchant_id=merchant.id,
            merchant_name=merchant.name,
            program_id=program.id,
            program_name=program.name,
            reward_description=claim.reward_description,
            claim_id=claim.id,
            claim_code=claim.code,
        )
        return result, reward

    async def _fetch_active_progress(self, customer_id: str, program_id: UUID) -> RewardProgress | None:
        stmt = (
            select(RewardProgress)
            .where(
                RewardProgress.customer_id == customer_id,
                RewardProgress.program_id == program_id,
                RewardProgress.status == RewardProgressStatus.ACTIVE,
            )
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _result(program: RewardProgram, progress: RewardProgress, outcome: ProgramOutcome) -> ProgramResult:
        return ProgramResult(
            program_id=program.id,
            outcome=outcome,
            visit_count=int(progress.visit_count or 0),
            spend_minor=int(progress.spend_minor or 0),
        )


__all__ = [
    "LedgerOutcome",
    "LedgerTransaction",
    "MerchantNotFoundError",
    "ProgramResult",
    "ProgressConflictError",
    "RewardEarned",
    "RewardLedgerService",
]
