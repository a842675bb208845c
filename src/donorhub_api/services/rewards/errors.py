"""Typed failures raised by the points and voucher services."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID


class RewardsError(RuntimeError):
    """Base exception for points ledger and voucher failures."""

    code = "rewards_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context

    def as_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"code": self.code, "message": str(self)}
        for key, value in self.context.items():
            if isinstance(value, datetime):
                detail[key] = value.isoformat()
            elif isinstance(value, UUID):
                detail[key] = str(value)
            else:
                detail[key] = value
        return detail


class RewardNotFoundError(RewardsError):
    code = "reward_not_found"


class RewardInactiveError(RewardsError):
    code = "reward_inactive"


class InsufficientPointsError(RewardsError):
    """Raised when a debit exceeds the spendable balance."""

    code = "insufficient_points"

    def __init__(self, *, donor_id: UUID, required: int, available: int) -> None:
        super().__init__(
            f"Donor needs {required} points but only has {available}",
            donorId=donor_id,
            requiredPoints=required,
            availablePoints=available,
        )
        self.required = required
        self.available = available


class VoucherNotFoundError(RewardsError):
    code = "voucher_not_found"


class VoucherAlreadyUsedError(RewardsError):
    """Raised when a voucher has already been verified by a merchant."""

    code = "already_used"

    def __init__(self, *, voucher_code: str, verified_at: datetime | None, merchant_id: str | None) -> None:
        super().__init__(
            "Voucher has already been redeemed",
            voucherCode=voucher_code,
            verifiedAt=verified_at,
            verifiedByMerchantId=merchant_id,
        )
        self.verified_at = verified_at
        self.merchant_id = merchant_id


class VoucherExpiredError(RewardsError):
    code = "voucher_expired"


class NotVoucherOwnerError(RewardsError):
    code = "not_owner"


class VoucherAlreadyVerifiedError(RewardsError):
    code = "already_verified"


class RedemptionNotFoundError(RewardsError):
    code = "not_found"


class InvalidRedemptionStateError(RewardsError):
    code = "invalid_state"


class ConcurrentModificationError(RewardsError):
    """Raised when the optimistic balance check keeps observing stale reads."""

    code = "concurrent_modification"


class LedgerReconciliationError(RewardsError):
    """The ledger itself is inconsistent and cannot be auto-corrected."""

    code = "reconciliation_required"


class RollbackFailedError(RewardsError):
    """Compensation for a failed redemption could not be applied.

    State may be inconsistent and needs manual reconciliation; callers must not retry.
    """

    code = "rollback_failed"


__all__ = [
    "ConcurrentModificationError",
    "InsufficientPointsError",
    "InvalidRedemptionStateError",
    "LedgerReconciliationError",
    "NotVoucherOwnerError",
    "RedemptionNotFoundError",
    "RewardInactiveError",
    "RewardNotFoundError",
    "RewardsError",
    "RollbackFailedError",
    "VoucherAlreadyUsedError",
    "VoucherAlreadyVerifiedError",
    "VoucherExpiredError",
    "VoucherNotFoundError",
]
