"""Factory for provider adapters."""

from __future__ import annotations

from collections.abc import Mapping

from ..catalog.catalog_models import ResolvedModel
from ..generation.generation_errors import UnknownAdapterError
from .adapters_base import AdapterConfig, ProviderAdapter, ProviderConnection
from .adapters_kie import KieImageAdapter
from .adapters_openai import OpenAIImageAdapter
from .adapters_replicate import ReplicatePredictionAdapter

ADAPTER_REGISTRY: Mapping[str, type[ProviderAdapter]] = {
    "openai-image": OpenAIImageAdapter,
    "replicate-prediction": ReplicatePredictionAdapter,
    "kie-image": KieImageAdapter,
}


def available_adapters(registry: Mapping[str, type[ProviderAdapter]] | None = None) -> list[str]:
    return sorted(ADAPTER_REGISTRY if registry is None else registry)


def create_adapter(
    config: AdapterConfig,
    *,
    registry: Mapping[str, type[ProviderAdapter]] | None = None,
) -> ProviderAdapter:
    """Instantiate the adapter registered under ``config.adapter_name``."""
    adapters = ADAPTER_REGISTRY if registry is None else registry
    adapter_cls = adapters.get(config.adapter_name)
    if adapter_cls is None:
        raise UnknownAdapterError(config.adapter_name, adapters.keys())
    return adapter_cls(config=config)


def adapter_config_for(resolved: ResolvedModel) -> AdapterConfig:
    """Build the adapter configuration of a catalog model."""
    provider = resolved.provider
    return AdapterConfig(
        adapter_name=resolved.model.adapter_name,
        model_slug=resolved.model.slug,
        output_type=resolved.model.output_type,
        provider=ProviderConnection(
            slug=provider.slug,
            api_key=provider.api_key,
            api_endpoint=provider.api_endpoint,
            extra=dict(provider.extra),
        ),
    )
