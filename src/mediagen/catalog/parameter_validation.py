"""Per-model parameter validation."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..generation.generation_errors import ValidationError


class ParameterValidator(Protocol):
    def validate_parameters(self, model_slug: str, raw: Any) -> dict[str, Any]:
        """Return validated parameters or raise :class:`ValidationError`."""


class SchemaParameterValidator:
    """Validate parameters with a pydantic schema registered per model slug.

    Models without a registered schema accept any JSON object with string
    keys; the provider adapter decides what it understands.
    """

    def __init__(self, schemas: Mapping[str, type[BaseModel]] | None = None) -> None:
        self._schemas = dict(schemas or {})

    def register(self, model_slug: str, schema: type[BaseModel]) -> None:
        self._schemas[model_slug] = schema

    def validate_parameters(self, model_slug: str, raw: Any) -> dict[str, Any]:
        if raw is None:
            raw = {}
        if not isinstance(raw, Mapping) or not all(isinstance(key, str) for key in raw):
            raise ValidationError(
                "parameters must be a JSON object",
                details=[{"loc": ["parameters"], "msg": "expected an object with string keys"}],
            )
        schema = self._schemas.get(model_slug)
        if schema is None:
            return dict(raw)
        try:
            validated = schema.model_validate(dict(raw))
        except PydanticValidationError as exc:
            details = [
                {"loc": list(error["loc"]), "msg": error["msg"]}
                for error in exc.errors()
            ]
            raise ValidationError(f"Invalid parameters for model '{model_slug}'", details=details) from exc
        return validated.model_dump(exclude_none=True)
