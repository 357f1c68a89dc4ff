"""Domain level exceptions and helpers for repository layers."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, TypeVar

from sqlalchemy import exc as sa_exc

T = TypeVar("T")

__all__ = [
    "AppError",
    "RepositoryError",
    "NotFoundError",
    "InvalidTransitionError",
    "IntegrityConstraintViolation",
    "DatabaseOperationError",
    "ensure_found",
    "handle_sqlalchemy_errors",
]


class AppError(Exception):
    """Base class for application specific errors."""


class RepositoryError(AppError):
    """Base class for persistence layer failures."""


class NotFoundError(RepositoryError):
    """Raised when a record could not be located."""


class InvalidTransitionError(RepositoryError):
    """Raised when a status change is not allowed from the current state."""


class IntegrityConstraintViolation(RepositoryError):
    """Raised when a database constraint is violated."""


class DatabaseOperationError(RepositoryError):
    """Raised for unexpected database errors."""


@dataclass(slots=True)
class _EntityContext:
    """Internal helper describing the entity for error messages."""

    entity: str | None = None

    def format(self, message: str) -> str:
        if self.entity:
            return f"{self.entity}: {message}"
        return message


def ensure_found(record: T | None, *, entity: str, identifier: str) -> T:
    """Return ``record`` or raise :class:`NotFoundError` naming the missing entity."""

    if record is None:
        raise NotFoundError(f"{entity} '{identifier}' not found")
    return record


def _translate_sqlalchemy_error(exc: Exception, *, context: _EntityContext) -> RepositoryError:
    if isinstance(exc, sa_exc.IntegrityError):
        return IntegrityConstraintViolation(context.format("integrity constraint violated"))
    if isinstance(exc, sa_exc.DBAPIError):
        return DatabaseOperationError(context.format("database operation failed"))
    return RepositoryError(context.format(str(exc)))


@contextmanager
def handle_sqlalchemy_errors(*, entity: str | None = None) -> Iterator[None]:
    """Translate SQLAlchemy errors into domain specific ones."""

    context = _EntityContext(entity)
    try:
        yield
    except (sa_exc.IntegrityError, sa_exc.DBAPIError) as exc:
        raise _translate_sqlalchemy_error(exc, context=context) from exc
