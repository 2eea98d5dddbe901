"""Providers package - imports all adapters to trigger registration."""
from pdfchat.providers.registry import (
    GenerationResult,
    ModelProvider,
    ProviderRegistry,
    get_provider,
    get_provider_registry,
    register_provider,
)
from pdfchat.providers import gemini, huggingface, ollama

__all__ = [
    "GenerationResult",
    "ModelProvider",
    "ProviderRegistry",
    "get_provider",
    "get_provider_registry",
    "register_provider",
]
