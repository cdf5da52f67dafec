"""Autobot job catalog."""

from autobot.jobs.catalog import JOB_BUILDERS

__all__ = ["JOB_BUILDERS"]
