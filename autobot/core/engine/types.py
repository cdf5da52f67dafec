"""Job definition types."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator


class Frequency(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


FREQUENCY_SECONDS: dict[Frequency, float] = {
    Frequency.MINUTE: 60,
    Frequency.HOUR: 60 * 60,
    Frequency.DAY: 24 * 60 * 60,
    Frequency.WEEK: 7 * 24 * 60 * 60,
    Frequency.MONTH: 30 * 24 * 60 * 60,
}


class JobDefinition(BaseModel):
    """One scheduled job, immutable once registered.

    Exactly one schedule is honored: ``cron`` when set, else ``frequency``.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str
    run: Callable[[], Awaitable[object]]
    cron: str | None = None
    frequency: Frequency | None = None

    @model_validator(mode="after")
    def _require_schedule(self) -> JobDefinition:
        if not self.cron and self.frequency is None:
            raise ValueError(f"Job {self.id} has no schedule (cron or frequency)")
        return self

    @property
    def is_cron(self) -> bool:
        return bool(self.cron)

    @property
    def label(self) -> str:
        """Schedule label used in log lines."""
        if self.cron:
            return self.cron
        return self.frequency.value

    @property
    def period_s(self) -> float | None:
        if self.is_cron:
            return None
        return FREQUENCY_SECONDS[self.frequency]


class EngineInvocation(BaseModel):
    """One execution attempt of a job (not persisted)."""

    job_id: str
    started_at: datetime
    elapsed_s: float = 0.0
    success: bool = True
    error: str | None = None
