"""FastAPI dependency injection — pull singletons from app.state."""

from __future__ import annotations

from fastapi import Request

from autobot.core.config.schema import Config
from autobot.core.engine.registry import SchedulerRegistry
from autobot.store import DocumentStore


def get_config(request: Request) -> Config:
    """Get Config singleton from app state."""
    return request.app.state.config


def get_store(request: Request) -> DocumentStore:
    """Get DocumentStore singleton from app state."""
    return request.app.state.store


def get_registry(request: Request) -> SchedulerRegistry | None:
    """Get the SchedulerRegistry (None when the engine runs in another process)."""
    return getattr(request.app.state, "registry", None)
