"""FastAPI application entry point.

Run with ``uvicorn src.mediagen.main:create_app --factory``.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from .config import AppConfig, load_config
from .dependencies import include_routers
from .lifecycle import lifespan
from .logging import configure_logging


def create_app(config: AppConfig | None = None, **overrides: Any) -> FastAPI:
    """Build FastAPI instance with configured dependencies.

    ``overrides`` are forwarded to :func:`include_routers` (catalog,
    validator, object_store, adapter_factory).
    """
    configure_logging()
    cfg = config or load_config()
    app = FastAPI(title="mediagen", lifespan=lifespan)
    include_routers(app, cfg, **overrides)
    return app
