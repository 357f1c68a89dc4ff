"""Model catalog lookup."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from pathlib import Path
from typing import Protocol

from .catalog_models import CatalogDocument, ModelEntry, ProviderEntry, ResolvedModel

logger = logging.getLogger(__name__)


class ModelCatalog(Protocol):
    """Contract of the catalog collaborator used by the generation core."""

    def resolve_model(self, model_id_or_slug: str) -> ResolvedModel | None:
        """Return the model with its provider or ``None`` when unknown."""

    def increment_usage(self, model_id: str) -> None:
        """Bump the usage counter of ``model_id``."""


class FileModelCatalog:
    """Read-only catalog loaded from a JSON document.

    Usage counters are kept in memory; the catalog service owning the real
    counters is outside of this process.
    """

    def __init__(self, document: CatalogDocument) -> None:
        self._providers: dict[str, ProviderEntry] = {p.id: p for p in document.providers}
        self._models_by_id: dict[str, ModelEntry] = {}
        self._models_by_slug: dict[str, ModelEntry] = {}
        for model in document.models:
            if model.provider_id not in self._providers:
                raise ValueError(
                    f"Model '{model.slug}' references unknown provider '{model.provider_id}'"
                )
            self._models_by_id[model.id] = model
            self._models_by_slug[model.slug] = model
        self._usage: Counter[str] = Counter()
        self._lock = threading.Lock()

    @classmethod
    def from_path(cls, path: Path) -> "FileModelCatalog":
        if not path.exists():
            logger.warning("catalog.file.missing", extra={"path": str(path)})
            return cls(CatalogDocument())
        document = CatalogDocument.model_validate_json(path.read_text(encoding="utf-8"))
        logger.info(
            "catalog.file.loaded",
            extra={"path": str(path), "models": len(document.models)},
        )
        return cls(document)

    def resolve_model(self, model_id_or_slug: str) -> ResolvedModel | None:
        model = self._models_by_id.get(model_id_or_slug) or self._models_by_slug.get(model_id_or_slug)
        if model is None:
            return None
        return ResolvedModel(model=model, provider=self._providers[model.provider_id])

    def increment_usage(self, model_id: str) -> None:
        if model_id not in self._models_by_id:
            raise KeyError(f"Model '{model_id}' not found")
        with self._lock:
            self._usage[model_id] += 1

    def usage_count(self, model_id: str) -> int:
        return self._usage[model_id]
