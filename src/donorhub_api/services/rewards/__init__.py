"""Points ledger, voucher redemption and expiry services."""

from .catalog import RewardCatalogService
from .config import RewardProgramConfig, RewardProgramConfigService
from .errors import (
    ConcurrentModificationError,
    InsufficientPointsError,
    InvalidRedemptionStateError,
    LedgerReconciliationError,
    NotVoucherOwnerError,
    RedemptionNotFoundError,
    RewardInactiveError,
    RewardNotFoundError,
    RewardsError,
    RollbackFailedError,
    VoucherAlreadyUsedError,
    VoucherAlreadyVerifiedError,
    VoucherExpiredError,
    VoucherNotFoundError,
)
from .ledger import BalanceDiscrepancy, LedgerPosting, PointsBalance, PointsLedger
from .reclaimer import ExpiryReclaimer, ReclaimSummary
from .redemption import RedemptionAttempt, RedemptionEngine, RedemptionReceipt, VoucherDeletion
from .tiers import DEFAULT_TIER, TierBand, classify
from .verifier import VerificationResult, VoucherPreview, VoucherVerifier

__all__ = [
    "BalanceDiscrepancy",
    "ConcurrentModificationError",
    "DEFAULT_TIER",
    "ExpiryReclaimer",
    "InsufficientPointsError",
    "InvalidRedemptionStateError",
    "LedgerReconciliationError",
    "LedgerPosting",
    "NotVoucherOwnerError",
    "PointsBalance",
    "PointsLedger",
    "ReclaimSummary",
    "RedemptionAttempt",
    "RedemptionEngine",
    "RedemptionNotFoundError",
    "RedemptionReceipt",
    "RewardCatalogService",
    "RewardInactiveError",
    "RewardNotFoundError",
    "RewardProgramConfig",
    "RewardProgramConfigService",
    "RewardsError",
    "RollbackFailedError",
    "TierBand",
    "VerificationResult",
    "VoucherAlreadyUsedError",
    "VoucherAlreadyVerifiedError",
    "VoucherDeletion",
    "VoucherExpiredError",
    "VoucherNotFoundError",
    "VoucherPreview",
    "VoucherVerifier",
    "classify",
]
