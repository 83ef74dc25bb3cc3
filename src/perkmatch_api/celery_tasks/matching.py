from __future__ import annotations

from loguru import logger

from perkmatch_api.celery_app import celery_app
from perkmatch_api.core.settings import settings
from perkmatch_api.tasks.transaction_matching import run_matching_batch_sync


@celery_app.task(
    name="matching.process_new_transactions",
    queue=settings.matching_task_queue,
)
def process_new_transactions(batch_size: int | None = None) -> dict[str, object]:
    """Process one batch and re-enqueue itself while the backlog may be non-empty."""

    if not settings.matching_worker_enabled:
        logger.info("Transaction matching disabled; skipping Celery task.")
        return {"fetched": 0, "skipped": True}

    summary = run_matching_batch_sync(batch_size=batch_size)
    continued = summary.should_continue
    if continued:
        process_new_transactions.apply_async(kwargs={"batch_size": batch_size})
        logger.info("Transaction matching continuation enqueued", fetched=summary.fetched)
    return {**summary.as_dict(), "continued": continued}


def enqueue_matching_run() -> str:
    """Queue the first batch of a drain; returns the Celery task id."""

    result = process_new_transactions.apply_async()
    return str(result.id)


__all__ = ["enqueue_matching_run", "process_new_transactions"]
