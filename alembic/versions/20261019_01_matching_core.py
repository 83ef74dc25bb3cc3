"""Merchant directory, transactions, reward ledger, claims and notifications.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


merchant_status = sa.Enum("VERIFIED", "UNVERIFIED", name="merchant_status")
program_type = sa.Enum("VISIT", "SPEND", name="reward_program_type")
program_status = sa.Enum("ACTIVE", "PAUSED", "ARCHIVED", name="reward_program_status")
transaction_status = sa.Enum("UNRESOLVED", "RESOLVED", "NO_MATCH", name="transaction_status")
progress_status = sa.Enum("ACTIVE", "COMPLETED", name="reward_progress_status")
claim_status = sa.Enum("PENDING", "REDEEMED", "CANCELLED", name="reward_claim_status")
notification_channel = sa.Enum("PUSH", "EMAIL", name="notification_channel_enum")
notification_status = sa.Enum("PENDING", "SENT", "FAILED", name="notification_status_enum")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "merchants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("status", merchant_status, nullable=False),
        sa.Column("category_codes", sa.JSON(), nullable=False),
        sa.Column("statement_descriptors", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_merchants_owner_id", "merchants", ["owner_id"])
    op.create_index("ix_merchants_status", "merchants", ["status"])

    op.create_table(
        "reward_programs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("merchant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("program_type", program_type, nullable=False),
        sa.Column("required_visits", sa.Integer(), nullable=True),
        sa.Column("minimum_spend_minor", sa.Integer(), nullable=True),
        sa.Column("spend_threshold_minor", sa.Integer(), nullable=True),
        sa.Column("reward_description", sa.String(), nullable=False),
        sa.Column("status", program_status, nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["merchant_id"], ["merchants.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "(program_type = 'VISIT' AND required_visits > 0 AND spend_threshold_minor IS NULL)"
            " OR (program_type = 'SPEND' AND spend_threshold_minor > 0"
            " AND required_visits IS NULL AND minimum_spend_minor IS NULL)",
            name="ck_reward_programs_rule_shape",
        ),
        sa.CheckConstraint(
            "minimum_spend_minor IS NULL OR minimum_spend_minor >= 0",
            name="ck_reward_programs_minimum_spend",
        ),
    )
    op.create_index("ix_reward_programs_merchant_id", "reward_programs", ["merchant_id"])

    op.create_table(
        "transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("external_id", sa.String(), nullable=False, unique=True),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("amount_minor", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("merchant_name", sa.String(), nullable=True),
        sa.Column("categories", sa.JSON(), nullable=False),
        sa.Column("posted_on", sa.Date(), nullable=False),
        sa.Column("status", transaction_status, nullable=False),
        sa.Column("merchant_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("match_score", sa.Integer(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["merchant_id"], ["merchants.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_transactions_status_posted_on", "transactions", ["status", "posted_on"])
    op.create_index("ix_transactions_customer_posted_on", "transactions", ["customer_id", "posted_on"])

    op.create_table(
        "reward_progress",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("merchant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("program_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("visit_count", sa.Integer(), nullable=False),
        sa.Column("spend_minor", sa.BigInteger(), nullable=False),
        sa.Column("transaction_ids", sa.JSON(), nullable=False),
        sa.Column("lifetime_completions", sa.Integer(), nullable=False),
        sa.Column("status", progress_status, nullable=False),
        sa.Column("last_activity_on", sa.Date(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["merchant_id"], ["merchants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["program_id"], ["reward_programs.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "uq_reward_progress_active_customer_program",
        "reward_progress",
        ["customer_id", "program_id"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
        sqlite_where=sa.text("status = 'ACTIVE'"),
    )
    op.create_index("ix_reward_progress_customer", "reward_progress", ["customer_id"])

    op.create_table(
        "reward_claims",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(), nullable=False, unique=True),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("merchant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("program_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("progress_id", postgresql.UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("program_name", sa.String(), nullable=False),
        sa.Column("reward_description", sa.String(), nullable=False),
        sa.Column("status", claim_status, nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_by", sa.String(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["merchant_id"], ["merchants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["program_id"], ["reward_programs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["progress_id"], ["reward_progress.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_reward_claims_merchant_status", "reward_claims", ["merchant_id", "status"])
    op.create_index("ix_reward_claims_customer_status", "reward_claims", ["customer_id", "status"])

    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("channel", notification_channel, nullable=False),
        sa.Column("status", notification_status, nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notifications_customer_id", "notifications", ["customer_id"])


def downgrade() -> None:
    op.drop_index("ix_notifications_customer_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_reward_claims_customer_status", table_name="reward_claims")
    op.drop_index("ix_reward_claims_merchant_status", table_name="reward_claims")
    op.drop_table("reward_claims")
    op.drop_index("ix_reward_progress_customer", table_name="reward_progress")
    op.drop_index("uq_reward_progress_active_customer_program", table_name="reward_progress")
    op.drop_table("reward_progress")
    op.drop_index("ix_transactions_customer_posted_on", table_name="transactions")
    op.drop_index("ix_transactions_status_posted_on", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_reward_programs_merchant_id", table_name="reward_programs")
    op.drop_table("reward_programs")
    op.drop_index("ix_merchants_status", table_name="merchants")
    op.drop_index("ix_merchants_owner_id", table_name="merchants")
    op.drop_table("merchants")

    bind = op.get_bind()
    for enum in (
        notification_status,
        notification_channel,
        claim_status,
        progress_status,
        transaction_status,
        program_status,
        program_type,
        merchant_status,
    ):
        enum.drop(bind, checkfirst=True)
