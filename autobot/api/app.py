"""FastAPI application factory."""

from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from autobot import __version__
from autobot.api.routes import router
from autobot.core.config.loader import load_config
from autobot.core.engine.registry import SchedulerRegistry
from autobot.core.log import setup_logging
from autobot.jobs import JOB_BUILDERS
from autobot.store import DocumentStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: Config → DocumentStore → SchedulerRegistry. Shutdown: stop runners."""
    config = load_config()
    setup_logging(config)
    store = DocumentStore(str(config.db_path))

    registry: SchedulerRegistry | None = None
    if app.state.run_engine:
        registry = SchedulerRegistry()
        registry.load(JOB_BUILDERS, config, store)
        registry.start()

    app.state.config = config
    app.state.store = store
    app.state.registry = registry

    logger.info(f"Autobot API started, plugins: {', '.join(config.enabled_plugins)}")
    yield

    if registry is not None:
        await registry.stop()
    logger.info("Autobot API shutting down")


def create_app(run_engine: bool | None = None) -> FastAPI:
    """Create the FastAPI application.

    ``run_engine`` defaults to the AUTOBOT_RUN_ENGINE env var (on unless "0").
    """
    if run_engine is None:
        run_engine = os.environ.get("AUTOBOT_RUN_ENGINE", "1") != "0"

    app = FastAPI(
        title="Autobot API",
        description="Scheduled polling automation jobs",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.run_engine = run_engine
    app.include_router(router)
    return app


app = create_app()
