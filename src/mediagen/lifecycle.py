"""Lifecycle helpers wiring background polling for FastAPI startup."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Resume persisted polls on startup and stop the poller pool on shutdown."""
    generation_service = app.state.generation_service
    resumed = await generation_service.resume_in_flight()
    logger.info("lifecycle.startup", extra={"resumed_polls": resumed})
    try:
        yield
    finally:
        await app.state.poller_pool.shutdown()
        logger.info("lifecycle.shutdown")


__all__ = ["lifespan"]
