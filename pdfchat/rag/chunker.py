"""Text chunking with overlap for the RAG pipeline.

Implements character-based chunking to avoid tokenizer dependencies.
Chunk starts advance by a fixed stride of ``chunk_size - chunk_overlap``;
chunk ends snap back to a natural boundary, but never before the next
chunk's start, so the whole text stays covered.
"""
from bisect import bisect_right
from dataclasses import dataclass
from typing import List, Optional, Sequence
import structlog

from pdfchat import config

logger = structlog.get_logger()

PAGE_SEPARATOR = "\n"

# Boundaries in order of preference
PARAGRAPH_BREAKS = ["\n\n"]
SENTENCE_BREAKS = [". ", "! ", "? ", ".\n", "!\n", "?\n"]
LINE_BREAKS = ["\n"]
WORD_BREAKS = [" ", "\t"]


@dataclass
class TextChunk:
    """Represents a chunk of text with position information."""

    content: str
    char_start: int
    char_end: int
    chunk_index: int
    page_number: int = 1


class TextChunker:
    """Character-based text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)
        """
        self.chunk_size = chunk_size if chunk_size is not None else config.CHUNK_SIZE
        self.chunk_overlap = (
            chunk_overlap if chunk_overlap is not None else config.CHUNK_OVERLAP
        )

        # Validate parameters
        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0:
            raise ValueError(f"Overlap must not be negative, got {self.chunk_overlap}")
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    @property
    def stride(self) -> int:
        return self.chunk_size - self.chunk_overlap

    def split(self, pages: Sequence[str]) -> List[TextChunk]:
        """Chunk the pages of a document as one continuous text.

        Pages are joined with a newline; each chunk records the page its
        first character belongs to. Pages without any text yield no chunks.
        """
        text = PAGE_SEPARATOR.join(pages)
        if not text.strip():
            return []

        # Offset at which each page starts in the joined text
        page_starts = []
        offset = 0
        for page in pages:
            page_starts.append(offset)
            offset += len(page) + len(PAGE_SEPARATOR)

        chunks = self.chunk_text(text)
        for chunk in chunks:
            chunk.page_number = bisect_right(page_starts, chunk.char_start) if page_starts else 1

        return chunks

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Args:
            text: Text to chunk

        Returns:
            List of TextChunk objects
        """
        if not text:
            return []

        text_length = len(text)

        # Handle text shorter than chunk size
        if text_length <= self.chunk_size:
            return [
                TextChunk(
                    content=text,
                    char_start=0,
                    char_end=text_length,
                    chunk_index=0,
                )
            ]

        chunks = []
        start = 0

        while True:
            end = start + self.chunk_size

            if end >= text_length:
                chunks.append(
                    TextChunk(
                        content=text[start:],
                        char_start=start,
                        char_end=text_length,
                        chunk_index=len(chunks),
                    )
                )
                break

            end = self._adjust_chunk_boundary(text, start, end)

            chunks.append(
                TextChunk(
                    content=text[start:end],
                    char_start=start,
                    char_end=end,
                    chunk_index=len(chunks),
                )
            )

            start += self.stride

        logger.debug(
            "text_chunked",
            text_length=text_length,
            chunk_count=len(chunks),
            avg_chunk_size=sum(len(c.content) for c in chunks) // len(chunks),
        )

        return chunks

    def _adjust_chunk_boundary(self, text: str, start: int, end: int) -> int:
        """Move a chunk end back to a natural boundary inside the overlap zone.

        Args:
            text: Full text being chunked
            start: Start of the current chunk
            end: Nominal (hard-cut) end of the current chunk

        Returns:
            Adjusted end position, never below ``start + stride``
        """
        min_end = start + self.stride

        for breaks in (PARAGRAPH_BREAKS, SENTENCE_BREAKS, LINE_BREAKS, WORD_BREAKS):
            best = -1
            for break_str in breaks:
                # The break must finish inside [min_end, end]
                pos = text.rfind(break_str, start, end)
                if pos != -1 and pos + len(break_str) >= min_end:
                    best = max(best, pos + len(break_str))
            if best != -1:
                return best

        # If no good break point found, hard cut
        return end

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of TextChunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        chunk_sizes = [len(c.content) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }
