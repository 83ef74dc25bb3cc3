"""Reward progress ledger and redeemable claims."""

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
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from perkmatch_api.db.base import Base


class RewardProgressStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class RewardProgress(Base):
    """In-flight accrual state for one (customer, program) pair.

    At most one ``active`` row exists per pair. The partial unique index and the
    optimistic ``version`` column reject concurrent writers that bypassed the
    in-process key locks; the ledger retries those with a fresh read.
    """

    __tablename__ = "reward_progress"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(String, nullable=False)
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False)
    program_id = Column(
        UUID(as_uuid=True),
        ForeignKey("reward_programs.id", ondelete="CASCADE"),
        nullable=False,
    )
    visit_count = Column(Integer, nullable=False, default=0)
    spend_minor = Column(BigInteger, nullable=False, default=0)
    transaction_ids = Column(JSON, nullable=False, default=list)
    lifetime_completions = Column(Integer, nullable=False, default=0)
    status = Column(
        SqlEnum(RewardProgressStatus, name="reward_progress_status"),
        nullable=False,
        default=RewardProgressStatus.ACTIVE,
    )
    last_activity_on = Column(Date, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index(
            "uq_reward_progress_active_customer_program",
            "customer_id",
            "program_id",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_reward_progress_customer", "customer_id"),
    )
    __mapper_args__ = {"version_id_col": version}

    program = relationship("RewardProgram")
    claim = relationship("RewardClaim", back_populates="progress", uselist=False)


class RewardClaimStatus(str, Enum):
    """Claim lifecycle; redeemed and cancelled are terminal."""

    PENDING = "pending"
    REDEEMED = "redeemed"
    CANCELLED = "cancelled"


class RewardClaim(Base):
    """Redeemable voucher minted when a progress cycle completes."""

    __tablename__ = "reward_claims"
    __table_args__ = (
        Index("ix_reward_claims_merchant_status", "merchant_id", "status"),
        Index("ix_reward_claims_customer_status", "customer_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    code = Column(String, nullable=False, unique=True)
    customer_id = Column(String, nullable=False)
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False)
    program_id = Column(
        UUID(as_uuid=True),
        ForeignKey("reward_programs.id", ondelete="CASCADE"),
        nullable=False,
    )
    progress_id = Column(
        UUID(as_uuid=True),
        ForeignKey("reward_progress.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    program_name = Column(String, nullable=False)
    reward_description = Column(String, nullable=False)
    status = Column(
        SqlEnum(RewardClaimStatus, name="reward_claim_status"),
        nullable=False,
        default=RewardClaimStatus.PENDING,
    )
    issued_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    redeemed_by = Column(String, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    progress = relationship("RewardProgress", back_populates="claim")
    merchant = relationship("Merchant")


__all__ = [
    "RewardClaim",
    "RewardClaimStatus",
    "RewardProgress",
    "RewardProgressStatus",
]
