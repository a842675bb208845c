"""Celery task modules for DonorHub."""

# Import submodules so Celery autodiscovery registers tasks.
from . import rewards as _rewards  # noqa: F401

__all__ = ["_rewards"]
