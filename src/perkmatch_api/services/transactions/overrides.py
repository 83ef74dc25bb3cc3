"""Support overrides on transaction resolution state."""

from __future__ import annotations

from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from perkmatch_api.models.transaction import Transaction, TransactionStatus


class TransactionNotFoundError(LookupError):
    """Raised when an override targets an unknown transaction."""


class TransactionStateError(ValueError):
    """Raised when an override is not allowed from the current resolution state."""


class TransactionOverrideService:
    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get(self, transaction_id: UUID) -> Transaction:
        transaction = await self._db.get(Transaction, transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    async def reset(self, transaction_id: UUID) -> Transaction:
        """Move a ``no_match`` transaction back to ``unresolved``.

        Resolved transactions already fed the ledger and cannot be reset.
        """

        transaction = await self.get(transaction_id)
        if transaction.status == TransactionStatus.UNRESOLVED:
            return transaction
        if transaction.status == TransactionStatus.RESOLVED:
            raise TransactionStateError(f"Transaction {transaction_id} is already resolved")

        transaction.status = TransactionStatus.UNRESOLVED
        transaction.merchant_id = None
        transaction.match_score = None
        transaction.resolved_at = None
        await self._db.flush()
        logger.info("Transaction reset for rematching", transaction_id=str(transaction_id))
        return transaction


__all__ = ["TransactionNotFoundError", "TransactionOverrideService", "TransactionStateError"]
