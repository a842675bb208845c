from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class RewardsSnapshot:
    redemptions: Dict[str, int]
    verifications: Dict[str, int]
    refunds: Dict[str, int]
    ledger: Dict[str, int]
    sweeps: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "redemptions": dict(self.redemptions),
            "verifications": dict(self.verifications),
            "refunds": dict(self.refunds),
            "ledger": dict(self.ledger),
            "sweeps": dict(self.sweeps),
        }


class RewardsMetricsStore:
    """Collect points and voucher telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._redemptions: Dict[str, int] = defaultdict(int)
        self._verifications: Dict[str, int] = defaultdict(int)
        self._refunds: Dict[str, int] = defaultdict(int)
        self._ledger: Dict[str, int] = defaultdict(int)
        self._sweeps: Dict[str, int] = defaultdict(int)

    def record_redemption(self, outcome: str) -> None:
        with self._lock:
            self._redemptions[outcome] += 1

    def record_rollback(self, *, succeeded: bool) -> None:
        with self._lock:
            key = "rolled_back" if succeeded else "rollback_failed"
            self._redemptions[key] += 1

    def record_verification(self, outcome: str) -> None:
        with self._lock:
            self._verifications[outcome] += 1

    def record_refund(self, reason: str, points: int) -> None:
        with self._lock:
            self._refunds[reason] += 1
            self._refunds["points_total"] += points

    def record_stale_balance(self) -> None:
        with self._lock:
            self._ledger["stale_reads"] += 1

    def record_sweep(self, *, refunded: int, purged: int, failures: int) -> None:
        with self._lock:
            self._sweeps["runs"] += 1
            self._sweeps["refunded"] += refunded
            self._sweeps["purged"] += purged
            self._sweeps["failures"] += failures

    def snapshot(self) -> RewardsSnapshot:
        with self._lock:
            return RewardsSnapshot(
                redemptions=dict(self._redemptions),
                verifications=dict(self._verifications),
                refunds=dict(self._refunds),
                ledger=dict(self._ledger),
                sweeps=dict(self._sweeps),
            )

    def reset(self) -> None:
        with self._lock:
            self._redemptions.clear()
            self._verifications.clear()
            self._refunds.clear()
            self._ledger.clear()
            self._sweeps.clear()


_STORE = RewardsMetricsStore()


def get_rewards_metrics_store() -> RewardsMetricsStore:
    return _STORE


__all__ = ["RewardsMetricsStore", "RewardsSnapshot", "get_rewards_metrics_store"]
