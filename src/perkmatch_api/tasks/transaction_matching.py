"""CLI + helpers for the transaction matching drain.

External schedulers (Celery, cron, the bank-sync webhook) call into these
helpers so they can trigger the same batch logic without importing FastAPI.
The session factory stays injectable for tests and queue runners.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Any, Awaitable, Callable, TypeVar
from uuid import UUID

from loguru import logger

from perkmatch_api.core.settings import settings
from perkmatch_api.db.session import async_session, engine
from perkmatch_api.services.transactions import TransactionOverrideService
from perkmatch_api.workers.transaction_matching import (
    BatchSummary,
    NotificationFactory,
    SessionFactory,
    TransactionMatchingWorker,
    TransactionOutcome,
)

T = TypeVar("T")


def _default_session_factory():
    return async_session()


def _build_worker(
    session_factory: SessionFactory | None,
    *,
    batch_size: int | None = None,
    notification_factory: NotificationFactory | None = None,
) -> TransactionMatchingWorker:
    return TransactionMatchingWorker(
        session_factory or _default_session_factory,
        batch_size=batch_size or settings.matching_batch_size,
        confidence_threshold=settings.matching_confidence_threshold,
        notification_factory=notification_factory,
    )


async def run_matching_batch(
    *,
    batch_size: int | None = None,
    session_factory: SessionFactory | None = None,
    notification_factory: NotificationFactory | None = None,
) -> BatchSummary:
    """Process one batch; callers decide whether to continue from ``should_continue``."""

    worker = _build_worker(session_factory, batch_size=batch_size, notification_factory=notification_factory)
    return await worker.run_once()


async def drain_backlog(
    *,
    max_batches: int | None = None,
    batch_size: int | None = None,
    session_factory: SessionFactory | None = None,
    notification_factory: NotificationFactory | None = None,
) -> BatchSummary:
    """Loop batches in-process until the backlog is drained or ``max_batches`` is hit."""

    worker = _build_worker(session_factory, batch_size=batch_size, notification_factory=notification_factory)
    return await worker.drain(max_batches)


async def reset_transaction(
    transaction_id: UUID,
    *,
    session_factory: SessionFactory | None = None,
) -> dict[str, Any]:
    factory = session_factory or _default_session_factory
    async with factory() as db:  # type: ignore[union-attr]
        transaction = await TransactionOverrideService(db).reset(transaction_id)
        status = transaction.status.value
        await db.commit()
    return {"transactionId": str(transaction_id), "status": status}


async def force_match_transaction(
    transaction_id: UUID,
    merchant_id: UUID,
    *,
    session_factory: SessionFactory | None = None,
    notification_factory: NotificationFactory | None = None,
) -> TransactionOutcome:
    worker = _build_worker(session_factory, notification_factory=notification_factory)
    return await worker.process_transaction(transaction_id, forced_merchant_id=merchant_id)


async def _with_engine_disposal(coro: Awaitable[T]) -> T:
    # Pooled connections are bound to the loop that asyncio.run tears down.
    try:
        return await coro
    finally:
        await engine.dispose()


def run_matching_batch_sync(*, batch_size: int | None = None) -> BatchSummary:
    """Synchronous helper so Celery/cron jobs can reuse the async worker."""

    return asyncio.run(_with_engine_disposal(run_matching_batch(batch_size=batch_size)))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Transaction matching utilities.")
    sub = parser.add_subparsers(dest="command", required=True)

    drain = sub.add_parser("drain", help="Resolve unresolved transactions until the backlog is empty.")
    drain.add_argument("--max-batches", type=int, default=None, help="Upper bound on batches in this run.")

    reset = sub.add_parser("reset", help="Move a no-match transaction back to unresolved.")
    reset.add_argument("--transaction-id", required=True, help="UUID of the transaction row.")

    force = sub.add_parser("force-match", help="Assign a merchant to a transaction, bypassing the matcher.")
    force.add_argument("--transaction-id", required=True, help="UUID of the transaction row.")
    force.add_argument("--merchant-id", required=True, help="UUID of the merchant to assign.")

    return parser


async def _async_main(args: argparse.Namespace) -> None:
    if args.command == "drain":
        summary = await drain_backlog(max_batches=args.max_batches)
        logger.info("Drain complete", summary=summary.as_dict())
    elif args.command == "reset":
        result = await reset_transaction(UUID(args.transaction_id))
        logger.info("Transaction reset", **result)
    elif args.command == "force-match":
        outcome = await force_match_transaction(UUID(args.transaction_id), UUID(args.merchant_id))
        logger.info(
            "Transaction force-matched",
            transaction_id=str(outcome.transaction_id),
            status=outcome.status,
            claims_issued=outcome.claims_issued,
        )
    else:  # pragma: no cover - argparse guards this.
        raise ValueError(f"Unsupported command {args.command}")


def cli() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    asyncio.run(_with_engine_disposal(_async_main(args)))


if __name__ == "__main__":  # pragma: no cover
    cli()


__all__ = [
    "drain_backlog",
    "force_match_transaction",
    "reset_transaction",
    "run_matching_batch",
    "run_matching_batch_sync",
]
