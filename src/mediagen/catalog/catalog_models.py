"""Catalog entities as seen by the orchestration core."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProviderEntry(BaseModel):
    """Connection and storage policy of one generation provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    slug: str
    name: str = ""
    is_active: bool = True
    api_key: str | None = None
    api_endpoint: str | None = None
    upload_to_storage: bool = False
    storage_prefix: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class ModelEntry(BaseModel):
    """A generation model and the adapter that speaks its provider's API."""

    model_config = ConfigDict(frozen=True)

    id: str
    slug: str
    name: str = ""
    provider_id: str
    adapter_name: str
    output_type: str = "image"
    is_active: bool = True
    default_outputs: int = Field(default=1, ge=1)


class CatalogDocument(BaseModel):
    providers: list[ProviderEntry] = Field(default_factory=list)
    models: list[ModelEntry] = Field(default_factory=list)


@dataclass(slots=True, frozen=True)
class ResolvedModel:
    """Model joined with its provider, as returned by ``resolve_model``."""

    model: ModelEntry
    provider: ProviderEntry

    @property
    def is_active(self) -> bool:
        return self.model.is_active

    @property
    def provider_is_active(self) -> bool:
        return self.provider.is_active
