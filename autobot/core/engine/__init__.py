"""Scheduling engine — job definitions, runners and the registry."""

from autobot.core.engine.registry import SchedulerRegistry
from autobot.core.engine.runner import EngineRunner, compute_delay
from autobot.core.engine.types import EngineInvocation, Frequency, JobDefinition

__all__ = [
    "EngineInvocation",
    "EngineRunner",
    "Frequency",
    "JobDefinition",
    "SchedulerRegistry",
    "compute_delay",
]
