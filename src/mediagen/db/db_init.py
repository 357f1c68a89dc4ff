"""Database initialization helpers."""

from __future__ import annotations

from sqlalchemy.engine import Engine

from .db_models import Base


def init_db(engine: Engine) -> None:
    """Create generation tables when they are missing."""
    Base.metadata.create_all(engine)
