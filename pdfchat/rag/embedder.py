"""Embedding generation on top of a provider adapter.

Handles:
- Batching of texts per provider call
- Error attribution to the offending text
- Runtime embedding dimension detection
"""
from typing import List, Optional
import structlog

from pdfchat import config
from pdfchat.errors import EmbeddingProviderError
from pdfchat.providers import ModelProvider, get_provider

logger = structlog.get_logger()


class Embedder:
    """Maps text to fixed-length vectors through a hosted embedding model."""

    def __init__(
        self,
        provider: Optional[ModelProvider] = None,
        model: Optional[str] = None,
        batch_size: Optional[int] = None,
    ):
        """Initialize the embedder.

        Args:
            provider: Provider adapter (default: config.EMBEDDING_PROVIDER)
            model: Embedding model name (default: the provider's default)
            batch_size: Number of texts per provider call
        """
        self.provider = provider or get_provider(config.EMBEDDING_PROVIDER)
        self.model = model or self.provider.default_embedding_model
        self.batch_size = batch_size or config.EMBEDDING_BATCH_SIZE
        self.dimension: Optional[int] = None

    @property
    def provider_name(self) -> str:
        return self.provider.name

    async def embed(self, text: str) -> List[float]:
        """Embed a single text."""
        return (await self.embed_many([text]))[0]

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        """Embed texts, preserving order.

        Raises:
            EmbeddingProviderError: ``text_index`` points into ``texts``
        """
        if not texts:
            return []

        embeddings: List[List[float]] = []

        for batch_start in range(0, len(texts), self.batch_size):
            batch = texts[batch_start : batch_start + self.batch_size]

            try:
                batch_embeddings = await self.provider.embed(batch, model=self.model)
            except EmbeddingProviderError as e:
                text_index = batch_start + (e.text_index or 0)
                logger.error(
                    "embedding_generation_failed",
                    provider=self.provider_name,
                    model=self.model,
                    text_index=text_index,
                    text_preview=texts[text_index][:100],
                    error=e.message,
                )
                raise EmbeddingProviderError(
                    e.message, text_index=text_index, details=e.details
                ) from e

            for offset, embedding in enumerate(batch_embeddings):
                self._check_dimension(embedding, batch_start + offset)
            embeddings.extend(batch_embeddings)

            logger.debug(
                "embeddings_batch_generated",
                batch_size=len(batch),
                total_so_far=len(embeddings),
            )

        return embeddings

    def _check_dimension(self, embedding: List[float], text_index: int) -> None:
        if self.dimension is None:
            self.dimension = len(embedding)
            logger.info(
                "embedding_dimension_detected",
                dimension=self.dimension,
                model=self.model,
            )
        elif len(embedding) != self.dimension:
            raise EmbeddingProviderError(
                f"Embedding dimension mismatch: expected {self.dimension}, "
                f"got {len(embedding)}",
                text_index=text_index,
            )
