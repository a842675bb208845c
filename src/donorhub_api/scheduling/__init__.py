"""Scheduling utilities for recurring rewards automation."""

from .config import JobDefinition, load_job_definitions
from .runner import RewardsJobScheduler

__all__ = ["JobDefinition", "RewardsJobScheduler", "load_job_definitions"]
