"""Run the voucher expiry sweep once.

Intended usage: schedule via cron on hosts where neither the in-process
scheduler nor Celery beat is running, or trigger manually after an outage.

Example:
    python tooling/scripts/run_voucher_cleanup.py --reference-time 2026-10-20T00:00:00+00:00
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refund expired vouchers and purge stale ones once")
    parser.add_argument(
        "--reference-time",
        type=datetime.fromisoformat,
        default=None,
        help="ISO-8601 timestamp treated as the current time for this sweep.",
    )
    return parser.parse_args()


async def _run(reference_time: datetime | None) -> dict[str, object]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from donorhub_api.db.session import async_session  # type: ignore import-position
    from donorhub_api.jobs.rewards.voucher_cleanup import run_voucher_cleanup  # type: ignore import-position

    return await run_voucher_cleanup(session_factory=async_session, reference_time=reference_time)


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.reference_time))
    failures = summary.get("failures") or []
    logger.success(
        "Voucher cleanup run completed",
        refunded_count=summary.get("refunded_count", 0),
        purged_count=summary.get("purged_count", 0),
        failures=len(failures),
    )
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
