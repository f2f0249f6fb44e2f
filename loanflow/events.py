import asyncio
import logging
from contextlib import suppress

from fastapi import FastAPI

from loanflow.core.settings import settings
from loanflow.db.init_db import init_db
from loanflow.db.session import AsyncSessionLocal, dispose_engine
from loanflow.services.reminders import run_sweep
from loanflow.services.workflow_context import build_workflow_context
from loanflow.utils.redis_client import close_redis_client

logger = logging.getLogger(__name__)


async def _periodic_sweep(interval_seconds: int) -> None:
    ctx = build_workflow_context(actor="scheduler")
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            async with AsyncSessionLocal() as session:
                await run_sweep(session, ctx)
        except Exception:
            logger.exception("Scheduled sweep failed", extra={"operation": "sweep"})


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup")
        await init_db()
        if settings.sweep_interval_seconds > 0:
            app.state.sweep_task = asyncio.create_task(_periodic_sweep(settings.sweep_interval_seconds))
            logger.info("Periodic sweep enabled every %ss", settings.sweep_interval_seconds)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        task = getattr(app.state, "sweep_task", None)
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        await close_redis_client()
        await dispose_engine()
