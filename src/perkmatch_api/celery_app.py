"""Celery application for the out-of-process matching drain."""

from __future__ import annotations

from celery import Celery

from perkmatch_api.core.settings import settings


def _resolve_backend_url() -> str:
    return settings.celery_result_backend or settings.redis_url


def _resolve_broker_url() -> str:
    return settings.celery_broker_url or settings.redis_url


celery_app = Celery(
    "perkmatch_api",
    broker=_resolve_broker_url(),
    backend=_resolve_backend_url(),
)

celery_app.conf.update(
    task_default_queue=settings.celery_default_queue,
    task_acks_late=True,
    timezone="UTC",
    broker_connection_retry_on_startup=True,
)

# Backstop for failed items and backlogs that arrive without a webhook.
celery_app.conf.beat_schedule = {
    "matching-sweep": {
        "task": "matching.process_new_transactions",
        "schedule": float(settings.matching_sweep_interval_seconds),
        "options": {"queue": settings.matching_task_queue},
    },
}

celery_app.autodiscover_tasks(["perkmatch_api.celery_tasks"])

__all__ = ["celery_app"]
