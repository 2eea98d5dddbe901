"""Retriever for semantic search over a document index.

Handles:
- Query embedding generation
- FAISS vector search
- Result formatting

The question is embedded with whatever model the embedder is configured
with. A different model family than the one used at build time is not
detected unless the dimensions differ.
"""
from dataclasses import dataclass
from typing import List, Optional
import structlog

from pdfchat import config
from pdfchat.rag.embedder import Embedder
from pdfchat.rag.store_faiss import FAISSVectorIndex

logger = structlog.get_logger()


@dataclass
class RetrievalResult:
    """A single retrieved chunk with its similarity score."""

    content: str
    score: float
    chunk_index: int
    page_number: int

    @property
    def source(self) -> str:
        """Get a formatted source string for display."""
        return f"page {self.page_number}, chunk {self.chunk_index}"


class Retriever:
    """Semantic retriever for the RAG pipeline."""

    def __init__(self, embedder: Optional[Embedder] = None, top_k: int = None):
        """Initialize the retriever.

        Args:
            embedder: Embedder for questions (should match the index's model)
            top_k: Number of results to retrieve (default from config)
        """
        self.embedder = embedder or Embedder()
        self.top_k = top_k if top_k is not None else config.RETRIEVAL_TOP_K

    async def retrieve(
        self,
        index: FAISSVectorIndex,
        question: str,
        top_k: Optional[int] = None,
    ) -> List[RetrievalResult]:
        """Retrieve the chunks most similar to a question.

        Args:
            index: Loaded document index
            question: User question text
            top_k: Number of results to return (overrides default)

        Returns:
            At most ``top_k`` results, best first; fewer if the index is smaller
        """
        if not question or not question.strip():
            logger.warning("empty_query_provided")
            return []

        top_k = top_k if top_k is not None else self.top_k

        if index.ntotal == 0 or top_k <= 0:
            logger.warning("empty_index_no_results", top_k=top_k)
            return []

        query_embedding = await self.embedder.embed(question)
        hits = index.search(query_embedding, top_k)

        results = [
            RetrievalResult(
                content=hit.content,
                score=hit.score,
                chunk_index=hit.chunk_index,
                page_number=hit.page_number,
            )
            for hit in hits
        ]

        logger.info(
            "retrieval_completed",
            query_length=len(question),
            top_k=top_k,
            results_returned=len(results),
            top_score=results[0].score if results else None,
        )

        return results

    async def retrieve_passages(
        self,
        index: FAISSVectorIndex,
        question: str,
        top_k: Optional[int] = None,
    ) -> List[str]:
        """Retrieve passage texts only, best first."""
        results = await self.retrieve(index, question, top_k=top_k)
        return [result.content for result in results]
