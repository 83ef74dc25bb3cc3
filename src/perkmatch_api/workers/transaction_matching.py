"""Batch dispatcher that resolves unresolved transactions and feeds the reward ledger."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Collection, Literal
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from perkmatch_api.core.settings import settings
from perkmatch_api.models.merchant import Merchant
from perkmatch_api.models.transaction import Transaction, TransactionStatus
from perkmatch_api.observability.matching import get_matching_store
from perkmatch_api.observability.tracing import get_tracer
from perkmatch_api.services.matching import MatchResult, load_verified_candidates, match_transaction
from perkmatch_api.services.notifications import NotificationService
from perkmatch_api.services.rewards.ledger import (
    LedgerTransaction,
    MerchantNotFoundError,
    RewardEarned,
    RewardLedgerService,
)
from perkmatch_api.services.transactions import TransactionNotFoundError

from .locks import KeyedLockRegistry, get_lock_registry, progress_key, transaction_key

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]
NotificationFactory = Callable[[AsyncSession], NotificationService]

ItemStatus = Literal["matched", "no_match", "skipped"]

_tracer = get_tracer(__name__)


@dataclass(slots=True)
class TransactionOutcome:
    transaction_id: UUID
    status: ItemStatus
    merchant_id: UUID | None = None
    score: int | None = None
    claims_issued: int = 0
    notifications_failed: int = 0


@dataclass(slots=True)
class BatchSummary:
    fetched: int = 0
    matched: int = 0
    no_match: int = 0
    skipped: int = 0
    failed: int = 0
    claims_issued: int = 0
    notifications_failed: int = 0
    has_more: bool = False

    @property
    def progressed(self) -> bool:
        return (self.matched + self.no_match + self.skipped) > 0

    @property
    def should_continue(self) -> bool:
        """A full batch that changed something means the backlog may not be empty."""

        return self.has_more and self.progressed

    def record(self, outcome: TransactionOutcome) -> None:
        if outcome.status == "matched":
            self.matched += 1
        elif outcome.status == "no_match":
            self.no_match += 1
        else:
            self.skipped += 1
        self.claims_issued += outcome.claims_issued
        self.notifications_failed += outcome.notifications_failed

    def merge(self, other: "BatchSummary") -> None:
        self.fetched += other.fetched
        self.matched += other.matched
        self.no_match += other.no_match
        self.skipped += other.skipped
        self.failed += other.failed
        self.claims_issued += other.claims_issued
        self.notifications_failed += other.notifications_failed
        self.has_more = other.has_more

    def as_dict(self) -> dict[str, int | bool]:
        return asdict(self)


def _default_notification_factory(db: AsyncSession) -> NotificationService:
    return NotificationService(db)


class TransactionMatchingWorker:
    """Drains the ``unresolved`` backlog one batch at a time.

    Items are processed sequentially. A failing item is logged, counted and left
    ``unresolved`` for a later run; it never aborts the batch. Its attempt count
    goes up so later batches pick fresh items first.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        batch_size: int | None = None,
        confidence_threshold: int | None = None,
        notification_factory: NotificationFactory | None = None,
        lock_registry: KeyedLockRegistry | None = None,
        sweep_interval_seconds: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._batch_size = batch_size or settings.matching_batch_size
        self._threshold = (
            confidence_threshold if confidence_threshold is not None else settings.matching_confidence_threshold
        )
        self._notification_factory = notification_factory or _default_notification_factory
        self._locks = lock_registry or get_lock_registry()
        self._store = get_matching_store()
        self.sweep_interval_seconds = sweep_interval_seconds or settings.matching_sweep_interval_seconds
        self._task: asyncio.Task | None = None
        self._sweep_task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._rerun_requested = False

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self, *, max_batches: int | None = None) -> None:
        """Schedule an in-process drain; triggers during a drain coalesce into one rerun."""

        if self.is_running:
            self._rerun_requested = True
            logger.debug("Transaction matching drain already running; rerun requested")
            return
        self._rerun_requested = False
        self._task = asyncio.create_task(self._drain_until_idle(max_batches))
        logger.info("Transaction matching drain scheduled", batch_size=self._batch_size)

    @property
    def is_sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def start(self) -> None:
        """Trigger a drain now and again every ``sweep_interval_seconds``."""

        if self.is_sweeping:
            return
        self._stop_event.clear()
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            "Transaction matching sweep started",
            interval_seconds=self.sweep_interval_seconds,
            batch_size=self._batch_size,
        )

    async def stop(self) -> None:
        if self._sweep_task:
            self._stop_event.set()
            await self._sweep_task
            self._sweep_task = None
        if not self._task:
            return
        self._rerun_requested = False
        if not self._task.done():
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Transaction matching worker stopped")

    async def wait_idle(self) -> None:
        if self._task is not None:
            await self._task

    async def drain(self, max_batches: int | None = None) -> BatchSummary:
        """Repeat batches while the previous one came back full.

        Items that fail are not fetched again within the same drain, so a full
        batch of failures moves on to the transactions behind it.
        """

        limit = max_batches or settings.matching_max_batches_per_drain
        total = BatchSummary()
        failed_ids: set[UUID] = set()
        batches = 0
        while batches < limit:
            summary, batch_failures = await self._run_batch(exclude=failed_ids)
            failed_ids.update(batch_failures)
            batches += 1
            total.merge(summary)
            if not (summary.should_continue or (summary.has_more and summary.failed)):
                break
        else:
            logger.warning("Transaction matching drain hit batch limit", max_batches=limit)

        logger.info("Transaction matching drain finished", batches=batches, summary=total.as_dict())
        return total

    async def run_once(self) -> BatchSummary:
        """Process one batch of unresolved transactions, newest first.

        Transactions with fewer failed attempts come first, so items that keep
        failing sink behind fresh ones across runs.
        """

        summary, _ = await self._run_batch()
        return summary

    async def _run_batch(self, exclude: Collection[UUID] = ()) -> tuple[BatchSummary, list[UUID]]:
        failed_ids: list[UUID] = []
        with _tracer.start_as_current_span("matching.run_once") as span:
            transaction_ids = await self._collect_transaction_ids(exclude)
            summary = BatchSummary(fetched=len(transaction_ids), has_more=len(transaction_ids) >= self._batch_size)
            for transaction_id in transaction_ids:
                try:
                    outcome = await self.process_transaction(transaction_id)
                except Exception as exc:
                    summary.failed += 1
                    failed_ids.append(transaction_id)
                    self._store.record_transaction("failed")
                    logger.exception(
                        "Transaction matching failed",
                        transaction_id=str(transaction_id),
                        error=str(exc),
                    )
                    await self._record_failed_attempt(transaction_id)
                    continue
                summary.record(outcome)
            span.set_attributes({f"matching.{key}": value for key, value in summary.as_dict().items()})

        self._store.record_batch(fetched=summary.fetched, has_more=summary.has_more)
        if summary.fetched:
            logger.info("Transaction matching batch processed", summary=summary.as_dict())
        return summary, failed_ids

    async def process_transaction(
        self,
        transaction_id: UUID,
        forced_merchant_id: UUID | None = None,
    ) -> TransactionOutcome:
        """Resolve one transaction and apply it to the ledger in a single unit.

        With ``forced_merchant_id`` the matcher is bypassed; ``no_match``
        transactions are accepted too.
        """

        with _tracer.start_as_current_span("matching.process_transaction") as span:
            span.set_attribute("transaction.id", str(transaction_id))
            async with self._locks.hold(transaction_key(transaction_id)):
                session = await self._ensure_session()
                async with session as db:
                    outcome, rewards = await self._process_locked(db, transaction_id, forced_merchant_id)
            span.set_attribute("matching.status", outcome.status)

        self._store.record_transaction(outcome.status)
        if rewards:
            self._store.record_claims_issued(len(rewards))
            outcome.notifications_failed = await self._dispatch_notifications(rewards)
        return outcome

    async def _process_locked(
        self,
        db: AsyncSession,
        transaction_id: UUID,
        forced_merchant_id: UUID | None,
    ) -> tuple[TransactionOutcome, list[RewardEarned]]:
        # Row lock on Postgres; a second process waits here and then sees the committed status.
        transaction = await db.get(Transaction, transaction_id, populate_existing=True, with_for_update=True)
        if transaction is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")

        allowed = {TransactionStatus.UNRESOLVED}
        if forced_merchant_id is not None:
            allowed.add(TransactionStatus.NO_MATCH)
        if transaction.status not in allowed:
            logger.info(
                "Transaction already processed; skipping",
                transaction_id=str(transaction_id),
                status=transaction.status.value,
            )
            return TransactionOutcome(transaction_id=transaction_id, status="skipped"), []

        customer_id = transaction.customer_id
        entry = LedgerTransaction.from_model(transaction)

        if forced_merchant_id is not None:
            if await db.get(Merchant, forced_merchant_id) is None:
                raise MerchantNotFoundError(f"Merchant {forced_merchant_id} not found")
            result = MatchResult(merchant_id=forced_merchant_id, score=0)
            logger.info(
                "Merchant assignment forced",
                transaction_id=str(transaction_id),
                merchant_id=str(forced_merchant_id),
            )
        else:
            candidates = await load_verified_candidates(db)
            result = match_transaction(
                transaction.merchant_name,
                transaction.categories,
                candidates,
                threshold=self._threshold,
            )

        now = datetime.now(timezone.utc)
        if not result.matched:
            claimed = await self._write_resolution(
                db,
                transaction_id,
                allowed,
                status=TransactionStatus.NO_MATCH,
                merchant_id=None,
                match_score=result.score,
                resolved_at=now,
            )
            if not claimed:
                await db.rollback()
                return self._resolved_elsewhere(transaction_id), []
            await db.commit()
            logger.info(
                "Transaction has no merchant match",
                transaction_id=str(transaction_id),
                best_score=result.score,
            )
            return TransactionOutcome(transaction_id=transaction_id, status="no_match", score=result.score), []

        merchant_id = result.merchant_id
        ledger = RewardLedgerService(db)
        programs = await ledger.list_active_programs(merchant_id)
        keys = [progress_key(customer_id, program.id) for program in programs]
        async with self._locks.hold(*keys):
            ledger_outcome = await ledger.apply(customer_id, merchant_id, entry, programs=programs)
            claimed = await self._write_resolution(
                db,
                transaction_id,
                allowed,
                status=TransactionStatus.RESOLVED,
                merchant_id=merchant_id,
                match_score=None if forced_merchant_id is not None else result.score,
                resolved_at=now,
            )
            if not claimed:
                await db.rollback()
                return self._resolved_elsewhere(transaction_id), []
            await db.commit()

        logger.info(
            "Transaction matched",
            transaction_id=str(transaction_id),
            merchant_id=str(merchant_id),
            score=result.score,
            forced=forced_merchant_id is not None,
            programs=len(programs),
            claims_issued=ledger_outcome.claims_issued,
        )
        outcome = TransactionOutcome(
            transaction_id=transaction_id,
            status="matched",
            merchant_id=merchant_id,
            score=result.score,
            claims_issued=ledger_outcome.claims_issued,
        )
        return outcome, ledger_outcome.rewards

    @staticmethod
    async def _write_resolution(
        db: AsyncSession,
        transaction_id: UUID,
        allowed: Collection[TransactionStatus],
        *,
        status: TransactionStatus,
        merchant_id: UUID | None,
        match_score: int | None,
        resolved_at: datetime,
    ) -> bool:
        """Compare-and-set the resolution; False when another writer got there first."""

        stmt = (
            update(Transaction)
            .where(Transaction.id == transaction_id, Transaction.status.in_(list(allowed)))
            .values(status=status, merchant_id=merchant_id, match_score=match_score, resolved_at=resolved_at)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    def _resolved_elsewhere(transaction_id: UUID) -> TransactionOutcome:
        logger.warning(
            "Transaction resolved by a concurrent run; discarding ledger writes",
            transaction_id=str(transaction_id),
        )
        return TransactionOutcome(transaction_id=transaction_id, status="skipped")

    async def _record_failed_attempt(self, transaction_id: UUID) -> None:
        try:
            session = await self._ensure_session()
            async with session as db:
                await db.execute(
                    update(Transaction)
                    .where(
                        Transaction.id == transaction_id,
                        Transaction.status == TransactionStatus.UNRESOLVED,
                    )
                    .values(
                        match_attempts=Transaction.match_attempts + 1,
                        last_attempted_at=datetime.now(timezone.utc),
                    )
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
        except Exception as exc:
            logger.warning(
                "Failed matching attempt could not be recorded",
                transaction_id=str(transaction_id),
                error=str(exc),
            )

    async def _dispatch_notifications(self, rewards: list[RewardEarned]) -> int:
        failures = 0
        try:
            session = await self._ensure_session()
            async with session as db:
                service = self._notification_factory(db)
                for event in rewards:
                    try:
                        await service.send_reward_earned(event)
                    except Exception as exc:
                        failures += 1
                        self._store.record_notification_failure()
                        logger.warning(
                            "Reward notification dispatch failed",
                            customer_id=event.customer_id,
                            claim_id=str(event.claim_id),
                            error=str(exc),
                        )
                await db.commit()
        except Exception as exc:
            failures = len(rewards)
            self._store.record_notification_failure()
            logger.warning("Reward notifications could not be recorded", count=len(rewards), error=str(exc))
        return failures

    async def _drain_until_idle(self, max_batches: int | None) -> None:
        while True:
            try:
                await self.drain(max_batches)
            except Exception as exc:  # pragma: no cover - logged for operators
                logger.exception("Transaction matching drain failed", error=str(exc))
            if not self._rerun_requested:
                return
            self._rerun_requested = False

    async def _sweep_loop(self) -> None:
        while not self._stop_event.is_set():
            self.trigger()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.sweep_interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _collect_transaction_ids(self, exclude: Collection[UUID] = ()) -> list[UUID]:
        session = await self._ensure_session()
        async with session as db:
            stmt = (
                select(Transaction.id)
                .where(Transaction.status == TransactionStatus.UNRESOLVED)
                .order_by(
                    Transaction.match_attempts.asc(),
                    Transaction.posted_on.desc(),
                    Transaction.created_at.desc(),
                )
                .limit(self._batch_size)
            )
            if exclude:
                stmt = stmt.where(Transaction.id.notin_(list(exclude)))
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


__all__ = ["BatchSummary", "TransactionMatchingWorker", "TransactionOutcome"]
