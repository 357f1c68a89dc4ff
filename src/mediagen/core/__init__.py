"""Core infrastructure: environment-driven settings."""

from .config import GenerationSettings

__all__ = ["GenerationSettings"]
