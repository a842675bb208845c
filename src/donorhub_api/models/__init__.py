"""SQLAlchemy models package."""

from .rewards import (  # noqa: F401
    DonorPointsAccount,
    PointsLedgerEntry,
    PointsTransactionType,
    Redemption,
    RedemptionStatus,
    RewardCatalogItem,
    RewardSetting,
    TierDefinition,
)
