"""Provider registry for hosted model backends.

Each backend implements the ``ModelProvider`` capability (embed + generate)
and registers itself under a string key. Callers pick a backend by key;
unknown keys fail instead of silently falling back to a default.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import structlog

from pdfchat.errors import UnknownProviderError

logger = structlog.get_logger()


@dataclass
class GenerationResult:
    """Text returned by a generative model."""
    text: str
    model: str
    provider: str
    usage: Dict[str, Any] = field(default_factory=dict)
    response_time_ms: Optional[int] = None


class ModelProvider(ABC):
    """Capability interface for a hosted model family."""

    name: str = ""
    default_chat_model: str = ""
    default_embedding_model: str = ""

    @abstractmethod
    async def embed(self, texts: List[str], model: Optional[str] = None) -> List[List[float]]:
        """Embed ``texts`` in order.

        Raises:
            EmbeddingProviderError: ``text_index`` is relative to ``texts``
        """

    @abstractmethod
    async def generate(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> GenerationResult:
        """Run a chat completion over role/content messages.

        Raises:
            GenerationProviderError: On auth, quota or transport failure
        """


ProviderFactory = Callable[[], ModelProvider]


class ProviderRegistry:
    """Registry of provider factories keyed by name."""

    def __init__(self):
        self._factories: Dict[str, ProviderFactory] = {}
        self._instances: Dict[str, ModelProvider] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        """Register a provider factory."""
        self._factories[name] = factory
        self._instances.pop(name, None)
        logger.info("provider_registered", provider=name)

    def get(self, name: str) -> ModelProvider:
        """Get a provider instance by name, creating it on first use."""
        if name not in self._factories:
            logger.error("provider_not_found", provider=name, available=self.names())
            raise UnknownProviderError(name, self.names())

        if name not in self._instances:
            self._instances[name] = self._factories[name]()
        return self._instances[name]

    def names(self) -> List[str]:
        return sorted(self._factories)


# Global registry instance
_registry = ProviderRegistry()


def get_provider_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry


def register_provider(name: str, factory: ProviderFactory) -> None:
    """Register a provider in the global registry."""
    _registry.register(name, factory)


def get_provider(name: str) -> ModelProvider:
    """Look up a provider in the global registry."""
    return _registry.get(name)
