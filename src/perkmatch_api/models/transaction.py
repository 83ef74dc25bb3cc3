"""Card transactions delivered by the bank feed."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Column,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from perkmatch_api.db.base import Base


class TransactionStatus(str, Enum):
    """Resolution state of a transaction against the merchant directory."""

    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"
    NO_MATCH = "no_match"


class Transaction(Base):
    """Immutable external fact with a mutable resolution state."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_status_posted_on", "status", "posted_on"),
        Index("ix_transactions_customer_posted_on", "customer_id", "posted_on"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    external_id = Column(String, nullable=False, unique=True)
    customer_id = Column(String, nullable=False)
    amount_minor = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    merchant_name = Column(String, nullable=True)
    categories = Column(JSON, nullable=False, default=list)
    posted_on = Column(Date, nullable=False)
    status = Column(
        SqlEnum(TransactionStatus, name="transaction_status"),
        nullable=False,
        default=TransactionStatus.UNRESOLVED,
    )
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id", ondelete="SET NULL"), nullable=True)
    match_score = Column(Integer, nullable=True)
    match_attempts = Column(Integer, nullable=False, default=0, server_default="0")
    last_attempted_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    merchant = relationship("Merchant")

    @property
    def absolute_amount_minor(self) -> int:
        return abs(int(self.amount_minor or 0))


__all__ = ["Transaction", "TransactionStatus"]
