"""Points ledger, reward catalog and voucher tables.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


points_transaction_type = sa.Enum(
    "earned",
    "redeemed",
    "refunded",
    "adjusted",
    "expired",
    name="points_transaction_type",
)
redemption_status = sa.Enum(
    "pending",
    "verified",
    "expired",
    "cancelled",
    name="redemption_status",
)


def upgrade() -> None:
    op.create_table(
        "donor_points",
        sa.Column("donor_id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("total_points >= 0", name="ck_donor_points_total_non_negative"),
        sa.CheckConstraint("total_points <= lifetime_points", name="ck_donor_points_total_within_lifetime"),
    )

    op.create_table(
        "points_transactions",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("donor_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("transaction_type", points_transaction_type, nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("related_donation_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("related_redemption_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint(
            "donor_id",
            "related_donation_id",
            "transaction_type",
            name="uq_points_transactions_donation_event",
        ),
    )
    op.create_index("ix_points_transactions_donor_created", "points_transactions", ["donor_id", "created_at"])
    op.create_index(
        "ix_points_transactions_related_redemption_id",
        "points_transactions",
        ["related_redemption_id"],
    )

    op.create_table(
        "reward_catalog",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("points_required", sa.Integer(), nullable=False),
        sa.Column("partner_name", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("points_required > 0", name="ck_reward_catalog_points_positive"),
    )

    op.create_table(
        "redemption_history",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("donor_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("reward_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("voucher_code", sa.String(), nullable=False),
        sa.Column("points_spent", sa.Integer(), nullable=False),
        sa.Column("status", redemption_status, nullable=False, server_default="pending"),
        sa.Column("qr_code_data", sa.String(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_by_merchant_id", sa.String(), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["reward_id"], ["reward_catalog.id"]),
    )
    op.create_index("ix_redemption_history_voucher_code", "redemption_history", ["voucher_code"], unique=True)
    op.create_index("ix_redemption_history_donor_id", "redemption_history", ["donor_id"])
    op.create_index("ix_redemption_history_status_expires", "redemption_history", ["status", "expires_at"])

    op.create_table(
        "tier_definitions",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("min_points", sa.Integer(), nullable=False),
        sa.Column("discount_percent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "reward_settings",
        sa.Column("setting_key", sa.String(), primary_key=True),
        sa.Column("setting_value", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.bulk_insert(
        sa.table(
            "reward_settings",
            sa.column("setting_key", sa.String()),
            sa.column("setting_value", sa.String()),
            sa.column("description", sa.Text()),
        ),
        [
            {"setting_key": "points_per_donation", "setting_value": "100", "description": "Points credited per recorded donation"},
            {"setting_key": "qr_expiry_hours", "setting_value": "24", "description": "Hours a voucher stays valid"},
            {
                "setting_key": "expired_voucher_retention_days",
                "setting_value": "7",
                "description": "Days expired vouchers are kept before purge",
            },
        ],
    )


def downgrade() -> None:
    op.drop_table("reward_settings")
    op.drop_table("tier_definitions")
    op.drop_index("ix_redemption_history_status_expires", table_name="redemption_history")
    op.drop_index("ix_redemption_history_donor_id", table_name="redemption_history")
    op.drop_index("ix_redemption_history_voucher_code", table_name="redemption_history")
    op.drop_table("redemption_history")
    op.drop_table("reward_catalog")
    op.drop_index("ix_points_transactions_related_redemption_id", table_name="points_transactions")
    op.drop_index("ix_points_transactions_donor_created", table_name="points_transactions")
    op.drop_table("points_transactions")
    op.drop_table("donor_points")
    redemption_status.drop(op.get_bind(), checkfirst=True)
    points_transaction_type.drop(op.get_bind(), checkfirst=True)
