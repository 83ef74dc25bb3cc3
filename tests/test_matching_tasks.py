from __future__ import annotations

from datetime import date

import pytest

from perkmatch_api.celery_app import celery_app
from perkmatch_api.celery_tasks import matching as tasks
from perkmatch_api.core.settings import settings
from perkmatch_api.models import Transaction, TransactionStatus
from perkmatch_api.services.notifications import InMemoryPushBackend, NotificationService
from perkmatch_api.tasks import transaction_matching as helpers
from perkmatch_api.workers import BatchSummary


def test_matching_task_skips_when_disabled(monkeypatch):
    monkeypatch.setattr(settings, "matching_worker_enabled", False)
    result = tasks.process_new_transactions()
    assert result["skipped"] is True
    assert result["fetched"] == 0


def test_full_batch_re_enqueues_itself(monkeypatch):
    monkeypatch.setattr(settings, "matching_worker_enabled", True)
    enqueued = []

    def fake_run(batch_size=None):
        return BatchSummary(fetched=25, matched=25, has_more=True)

    monkeypatch.setattr(tasks, "run_matching_batch_sync", fake_run)
    monkeypatch.setattr(tasks.process_new_transactions, "apply_async", lambda **kwargs: enqueued.append(kwargs))

    result = tasks.process_new_transactions(batch_size=25)

    assert result["continued"] is True
    assert result["matched"] == 25
    assert enqueued == [{"kwargs": {"batch_size": 25}}]


def test_stalled_full_batch_does_not_re_enqueue(monkeypatch):
    monkeypatch.setattr(settings, "matching_worker_enabled", True)
    enqueued = []

    def fake_run(batch_size=None):
        return BatchSummary(fetched=25, failed=25, has_more=True)

    monkeypatch.setattr(tasks, "run_matching_batch_sync", fake_run)
    monkeypatch.setattr(tasks.process_new_transactions, "apply_async", lambda **kwargs: enqueued.append(kwargs))

    result = tasks.process_new_transactions(batch_size=25)

    assert result["continued"] is False
    assert enqueued == []


def test_beat_schedule_sweeps_backlog_on_interval():
    entry = celery_app.conf.beat_schedule["matching-sweep"]

    assert entry["task"] == tasks.process_new_transactions.name
    assert entry["schedule"] == float(settings.matching_sweep_interval_seconds)
    assert entry["options"]["queue"] == settings.matching_task_queue


def test_cli_parser_commands():
    parser = helpers._build_parser()

    drain = parser.parse_args(["drain", "--max-batches", "3"])
    force = parser.parse_args(["force-match", "--transaction-id", "t", "--merchant-id", "m"])

    assert drain.command == "drain"
    assert drain.max_batches == 3
    assert force.command == "force-match"
    assert force.merchant_id == "m"
    with pytest.raises(SystemExit):
        parser.parse_args([])


@pytest.mark.asyncio
async def test_drain_backlog_and_force_match_helpers(session_factory, seed):
    async with session_factory() as session:
        merchant = await seed.merchant(session, name="Sightglass")
        await seed.visit_program(session, merchant.id, required_visits=1)
        matched = await seed.transaction(session, merchant_name="Sightglass", posted_on=date(2026, 10, 2))
        stray = await seed.transaction(session, merchant_name="SQ *SGC", categories=(), posted_on=date(2026, 10, 1))
        await session.commit()

    backend = InMemoryPushBackend()

    def notifications(db):
        return NotificationService(db, backend, push_enabled=True)

    summary = await helpers.drain_backlog(
        batch_size=1,
        session_factory=session_factory,
        notification_factory=notifications,
    )
    assert summary.fetched == 2
    assert summary.matched == 1
    assert summary.no_match == 1

    reset = await helpers.reset_transaction(stray.id, session_factory=session_factory)
    assert reset == {"transactionId": str(stray.id), "status": "unresolved"}

    outcome = await helpers.force_match_transaction(
        stray.id,
        merchant.id,
        session_factory=session_factory,
        notification_factory=notifications,
    )
    assert outcome.status == "matched"
    assert outcome.claims_issued == 1
    assert len(backend.sent_messages) == 2

    async with session_factory() as session:
        assert (await session.get(Transaction, matched.id)).status == TransactionStatus.RESOLVED
        assert (await session.get(Transaction, stray.id)).status == TransactionStatus.RESOLVED
