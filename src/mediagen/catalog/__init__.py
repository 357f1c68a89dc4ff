"""Adapters onto the external model catalog and parameter validation."""

from .catalog_models import CatalogDocument, ModelEntry, ProviderEntry, ResolvedModel
from .catalog_service import FileModelCatalog, ModelCatalog
from .parameter_validation import ParameterValidator, SchemaParameterValidator

__all__ = [
    "CatalogDocument",
    "FileModelCatalog",
    "ModelCatalog",
    "ModelEntry",
    "ParameterValidator",
    "ProviderEntry",
    "ResolvedModel",
    "SchemaParameterValidator",
]
