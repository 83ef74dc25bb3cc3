"""Idempotent ingestion of bank feed transactions keyed by external id."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Sequence

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from perkmatch_api.models.transaction import Transaction, TransactionStatus


@dataclass(frozen=True, slots=True)
class FeedRecord:
    external_id: str
    customer_id: str
    amount_minor: int
    posted_on: date
    merchant_name: str | None = None
    categories: Sequence[str] = field(default_factory=tuple)
    currency: str = "USD"


@dataclass(frozen=True, slots=True)
class IngestResult:
    transaction: Transaction
    created: bool


class TransactionFeedService:
    """Upsert transactions delivered by the feed producer."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_by_external_id(self, external_id: str) -> Transaction | None:
        stmt = select(Transaction).where(Transaction.external_id == external_id)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def ingest(self, record: FeedRecord) -> IngestResult:
        """Insert ``record`` unless its external id is already known.

        Re-deliveries return the stored row untouched.
        """

        existing = await self.get_by_external_id(record.external_id)
        if existing is not None:
            logger.debug("Duplicate feed delivery ignored", external_id=record.external_id)
            return IngestResult(transaction=existing, created=False)

        transaction = Transaction(
            external_id=record.external_id,
            customer_id=record.customer_id,
            amount_minor=int(record.amount_minor),
            currency=(record.currency or "USD").upper(),
            merchant_name=record.merchant_name,
            categories=list(record.categories or ()),
            posted_on=record.posted_on,
            status=TransactionStatus.UNRESOLVED,
        )
        try:
            async with self._db.begin_nested():
                self._db.add(transaction)
                await self._db.flush()
        except IntegrityError:
            existing = await self.get_by_external_id(record.external_id)
            if existing is None:
                raise
            logger.info("Concurrent feed delivery resolved to existing row", external_id=record.external_id)
            return IngestResult(transaction=existing, created=False)

        logger.info(
            "Transaction ingested",
            external_id=record.external_id,
            customer_id=record.customer_id,
            amount_minor=transaction.amount_minor,
        )
        return IngestResult(transaction=transaction, created=True)

    async def ingest_many(self, records: Sequence[FeedRecord]) -> list[IngestResult]:
        return [await self.ingest(record) for record in records]

    async def apply_modification(self, record: FeedRecord) -> Transaction | None:
        """Apply a feed "modified" delivery to the stored transaction.

        Resolution state and merchant assignment are left alone. Reward progress
        is not reconciled: a resolved transaction keeps whatever it already
        contributed to the ledger, and only the stored row changes.
        """

        transaction = await self.get_by_external_id(record.external_id)
        if transaction is None:
            logger.warning("Modification for unknown transaction", external_id=record.external_id)
            return None

        transaction.amount_minor = int(record.amount_minor)
        transaction.posted_on = record.posted_on
        transaction.merchant_name = record.merchant_name
        transaction.categories = list(record.categories or ())
        transaction.currency = (record.currency or transaction.currency or "USD").upper()
        await self._db.flush()
        if transaction.status == TransactionStatus.RESOLVED:
            logger.warning(
                "Resolved transaction modified; reward progress not reconciled",
                external_id=record.external_id,
                merchant_id=str(transaction.merchant_id),
            )
        logger.info("Transaction modified by feed", external_id=record.external_id)
        return transaction


__all__ = ["FeedRecord", "IngestResult", "TransactionFeedService"]
