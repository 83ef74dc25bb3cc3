"""Access to the in-process matching worker and drain scheduling."""

from __future__ import annotations

from typing import Any

from fastapi import Request
from loguru import logger

from perkmatch_api.core.settings import settings
from perkmatch_api.db.session import async_session
from perkmatch_api.workers.transaction_matching import TransactionMatchingWorker


def _session_factory():
    return async_session()


def get_matching_worker(request: Request) -> TransactionMatchingWorker:
    worker = getattr(request.app.state, "matching_worker", None)
    if worker is None:
        worker = TransactionMatchingWorker(_session_factory)
        request.app.state.matching_worker = worker
    return worker


def schedule_matching_drain(request: Request, *, trigger: str) -> dict[str, Any]:
    """Start a drain via Celery when a broker is configured, otherwise in-process."""

    if not settings.matching_worker_enabled:
        logger.info("Transaction matching disabled; trigger ignored", trigger=trigger)
        return {"mode": "disabled", "taskId": None}

    if settings.celery_broker_url:
        from perkmatch_api.celery_tasks.matching import enqueue_matching_run

        task_id = enqueue_matching_run()
        logger.info("Transaction matching enqueued", trigger=trigger, task_id=task_id)
        return {"mode": "celery", "taskId": task_id}

    get_matching_worker(request).trigger()
    logger.info("Transaction matching drain triggered in-process", trigger=trigger)
    return {"mode": "in_process", "taskId": None}
