"""Rewards job exports."""

from .voucher_cleanup import run_voucher_cleanup  # noqa: F401

__all__ = ["run_voucher_cleanup"]
