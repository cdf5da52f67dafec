"""Error taxonomy shared by the engine, pollers and adapters."""

from __future__ import annotations


class AutobotError(Exception):
    """Base class for all autobot errors."""


class TransientIOError(AutobotError):
    """Connection, timeout or network failure. Retried on the next pass."""


class ValidationError(AutobotError):
    """Malformed destination address, rule or document."""


class DepositAlreadyExists(AutobotError):
    """The bridge already knows this deposit. Treated as a successful submit."""


class FatalStartupError(AutobotError):
    """Required credentials or settings are missing; the job cannot start."""
