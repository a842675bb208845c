"""Run the voucher expiry sweep outside the API process.

Celery workers and cron scripts call :func:`run_voucher_cleanup_sync`; the
module also doubles as a small CLI::

    python -m donorhub_api.tasks.voucher_cleanup --reference-time 2026-10-20T12:00:00+00:00
"""

from __future__ import annotations

import argparse
import asyncio
from datetime import datetime
from typing import Any

from loguru import logger

from donorhub_api.db.session import async_session
from donorhub_api.jobs.rewards.voucher_cleanup import SessionFactory, run_voucher_cleanup


def _default_session_factory() -> Any:
    return async_session()


def run_voucher_cleanup_sync(
    *,
    reference_time: datetime | None = None,
    session_factory: SessionFactory | None = None,
) -> dict[str, Any]:
    """Synchronous helper so Celery/cron jobs can reuse the async sweep."""

    return asyncio.run(
        run_voucher_cleanup(
            session_factory=session_factory or _default_session_factory,
            reference_time=reference_time,
        )
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Refund expired vouchers and purge stale ones.")
    parser.add_argument(
        "--reference-time",
        type=datetime.fromisoformat,
        default=None,
        help="ISO-8601 timestamp treated as 'now' for the sweep.",
    )
    return parser


def cli() -> None:
    args = _build_parser().parse_args()
    summary = run_voucher_cleanup_sync(reference_time=args.reference_time)
    logger.success(
        "Voucher cleanup run completed",
        refunded_count=summary["refunded_count"],
        purged_count=summary["purged_count"],
        failures=len(summary["failures"]),
    )


if __name__ == "__main__":  # pragma: no cover
    cli()


__all__ = ["run_voucher_cleanup_sync"]
