"""Points ledger, reward catalog and voucher models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from donorhub_api.db.base import Base


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class PointsTransactionType(str, Enum):
    """Kinds of point-affecting events recorded in the ledger."""

    EARNED = "earned"
    REDEEMED = "redeemed"
    REFUNDED = "refunded"
    ADJUSTED = "adjusted"
    EXPIRED = "expired"


class RedemptionStatus(str, Enum):
    """Voucher lifecycle states."""

    PENDING = "pending"
    VERIFIED = "verified"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class DonorPointsAccount(Base):
    """Cached balance projection of a donor's ledger."""

    __tablename__ = "donor_points"
    __table_args__ = (
        CheckConstraint("total_points >= 0", name="ck_donor_points_total_non_negative"),
        CheckConstraint("total_points <= lifetime_points", name="ck_donor_points_total_within_lifetime"),
    )

    donor_id = Column(UUID(as_uuid=True), primary_key=True)
    total_points = Column(Integer, nullable=False, default=0, server_default="0")
    lifetime_points = Column(Integer, nullable=False, default=0, server_default="0")
    version = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class PointsLedgerEntry(Base):
    """Append-only record of a single balance change."""

    __tablename__ = "points_transactions"
    __table_args__ = (
        UniqueConstraint(
            "donor_id",
            "related_donation_id",
            "transaction_type",
            name="uq_points_transactions_donation_event",
        ),
        Index("ix_points_transactions_donor_created", "donor_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    donor_id = Column(UUID(as_uuid=True), nullable=False)
    points = Column(Integer, nullable=False)
    transaction_type = Column(
        SqlEnum(PointsTransactionType, name="points_transaction_type", values_callable=_enum_values),
        nullable=False,
    )
    description = Column(String, nullable=True)
    related_donation_id = Column(UUID(as_uuid=True), nullable=True)
    related_redemption_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class RewardCatalogItem(Base):
    """Partner reward that donors can exchange points for."""

    __tablename__ = "reward_catalog"
    __table_args__ = (
        CheckConstraint("points_required > 0", name="ck_reward_catalog_points_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    points_required = Column(Integer, nullable=False)
    partner_name = Column(String, nullable=False)
    category = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    redemptions = relationship("Redemption", back_populates="reward")


class Redemption(Base):
    """Time-boxed voucher exchanging points for a catalog reward."""

    __tablename__ = "redemption_history"
    __table_args__ = (
        Index("ix_redemption_history_status_expires", "status", "expires_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    donor_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    reward_id = Column(UUID(as_uuid=True), ForeignKey("reward_catalog.id"), nullable=False)
    voucher_code = Column(String, nullable=False, unique=True, index=True)
    points_spent = Column(Integer, nullable=False)
    status = Column(
        SqlEnum(RedemptionStatus, name="redemption_status", values_callable=_enum_values),
        nullable=False,
        default=RedemptionStatus.PENDING,
        server_default=RedemptionStatus.PENDING.value,
    )
    qr_code_data = Column(String, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verified_by_merchant_id = Column(String, nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    reward = relationship("RewardCatalogItem", back_populates="redemptions")


class TierDefinition(Base):
    """Discount bracket keyed by a minimum point balance."""

    __tablename__ = "tier_definitions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False, unique=True)
    min_points = Column(Integer, nullable=False)
    discount_percent = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class RewardSetting(Base):
    """Operator-editable program setting (points per donation, voucher TTL, retention)."""

    __tablename__ = "reward_settings"

    setting_key = Column(String, primary_key=True)
    setting_value = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
