"""Merchant directory and reward program models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from perkmatch_api.db.base import Base


class MerchantStatus(str, Enum):
    """Verification states; only verified merchants are matching candidates."""

    VERIFIED = "verified"
    UNVERIFIED = "unverified"


class Merchant(Base):
    """Participating business owned by the business-management subsystem."""

    __tablename__ = "merchants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    owner_id = Column(String, nullable=False, index=True)
    status = Column(
        SqlEnum(MerchantStatus, name="merchant_status"),
        nullable=False,
        default=MerchantStatus.UNVERIFIED,
        index=True,
    )
    category_codes = Column(JSON, nullable=False, default=list)
    statement_descriptors = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    programs = relationship("RewardProgram", back_populates="merchant", cascade="all, delete-orphan")


class RewardProgramType(str, Enum):
    VISIT = "visit"
    SPEND = "spend"


class RewardProgramStatus(str, Enum):
    """Only active programs accrue further progress."""

    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


@dataclass(frozen=True, slots=True)
class VisitRule:
    required_visits: int
    minimum_spend_minor: Optional[int]
    reward_description: str


@dataclass(frozen=True, slots=True)
class SpendRule:
    threshold_minor: int
    reward_description: str


RewardRule = Union[VisitRule, SpendRule]


class RewardProgram(Base):
    """Rule set owned by a merchant; exactly one rule shape is populated."""

    __tablename__ = "reward_programs"
    __table_args__ = (
        CheckConstraint(
            "(program_type = 'VISIT' AND required_visits > 0 AND spend_threshold_minor IS NULL)"
            " OR (program_type = 'SPEND' AND spend_threshold_minor > 0"
            " AND required_visits IS NULL AND minimum_spend_minor IS NULL)",
            name="ck_reward_programs_rule_shape",
        ),
        CheckConstraint(
            "minimum_spend_minor IS NULL OR minimum_spend_minor >= 0",
            name="ck_reward_programs_minimum_spend",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    merchant_id = Column(
        UUID(as_uuid=True),
        ForeignKey("merchants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    program_type = Column(SqlEnum(RewardProgramType, name="reward_program_type"), nullable=False)
    required_visits = Column(Integer, nullable=True)
    minimum_spend_minor = Column(Integer, nullable=True)
    spend_threshold_minor = Column(Integer, nullable=True)
    reward_description = Column(String, nullable=False)
    status = Column(
        SqlEnum(RewardProgramStatus, name="reward_program_status"),
        nullable=False,
        default=RewardProgramStatus.ACTIVE,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    merchant = relationship("Merchant", back_populates="programs")

    @property
    def rule(self) -> RewardRule:
        """Return the populated rule shape as a tagged variant."""

        if self.program_type == RewardProgramType.VISIT:
            if not self.required_visits or self.spend_threshold_minor is not None:
                raise ValueError(f"Reward program {self.id} has an invalid visit rule")
            return VisitRule(
                required_visits=int(self.required_visits),
                minimum_spend_minor=(
                    int(self.minimum_spend_minor) if self.minimum_spend_minor is not None else None
                ),
                reward_description=self.reward_description,
            )
        if self.program_type == RewardProgramType.SPEND:
            if not self.spend_threshold_minor or self.required_visits is not None:
                raise ValueError(f"Reward program {self.id} has an invalid spend rule")
            return SpendRule(
                threshold_minor=int(self.spend_threshold_minor),
                reward_description=self.reward_description,
            )
        raise ValueError(f"Unsupported reward program type: {self.program_type!r}")


__all__ = [
    "Merchant",
    "MerchantStatus",
    "RewardProgram",
    "RewardProgramStatus",
    "RewardProgramType",
    "RewardRule",
    "SpendRule",
    "VisitRule",
]
