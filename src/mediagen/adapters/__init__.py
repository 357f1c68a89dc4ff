"""Provider adapters and their registry."""

from .adapters_base import (
    AdapterConfig,
    DispatchError,
    DispatchInProgress,
    DispatchResult,
    DispatchSuccess,
    GenerationRequest,
    ProviderAdapter,
    ProviderConnection,
)
from .adapters_factory import ADAPTER_REGISTRY, adapter_config_for, available_adapters, create_adapter
from .adapters_kie import KieImageAdapter
from .adapters_openai import OpenAIImageAdapter
from .adapters_replicate import ReplicatePredictionAdapter

__all__ = [
    "ADAPTER_REGISTRY",
    "AdapterConfig",
    "DispatchError",
    "DispatchInProgress",
    "DispatchResult",
    "DispatchSuccess",
    "GenerationRequest",
    "KieImageAdapter",
    "OpenAIImageAdapter",
    "ProviderAdapter",
    "ProviderConnection",
    "ReplicatePredictionAdapter",
    "adapter_config_for",
    "available_adapters",
    "create_adapter",
]
