"""FAISS vector index for per-document semantic search.

Handles:
- Index construction from chunk embeddings (cosine similarity)
- Ranked search with stable tie-breaking
- Atomic persistence of index + chunk texts
- Loading from any of the tolerated on-disk layouts
"""
import asyncio
import json
import os
import shutil
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
import numpy as np
import faiss
import structlog

from pdfchat.errors import (
    EmptyDocumentError,
    IndexDimensionError,
    IndexNotFoundError,
    StorageError,
    ValidationError,
)
from pdfchat.rag.chunker import TextChunk
from pdfchat.rag.embedder import Embedder

logger = structlog.get_logger()

INDEX_FILENAME = "index.faiss"
CHUNKS_FILENAME = "chunks.json"
INDEX_SUFFIX = ".faiss"
CHUNKS_SIDECAR_SUFFIX = ".chunks.json"

PathLike = Union[str, Path]


@dataclass
class SearchHit:
    """A chunk returned by a similarity search."""

    content: str
    score: float
    chunk_index: int
    page_number: int


def _normalize(vectors: np.ndarray) -> np.ndarray:
    """L2-normalise rows so inner product equals cosine similarity."""
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return np.ascontiguousarray(vectors / norms, dtype=np.float32)


def derive_index_location(source_path: PathLike) -> Path:
    """Index location for a source file: its path without the .pdf extension."""
    source_path = Path(source_path)
    if source_path.suffix.lower() == ".pdf":
        return source_path.with_suffix("")
    return source_path


def find_index_location(base: PathLike) -> Optional[Path]:
    """Probe the tolerated index layouts around ``base``.

    Checks ``base``, ``base.faiss`` and ``base/index.faiss`` in that order.

    Returns:
        The first existing path, or None
    """
    base = Path(base)
    candidates = [
        base,
        base.with_name(base.name + INDEX_SUFFIX),
        base / INDEX_FILENAME,
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _artifact_paths(location: Path) -> Tuple[Path, Path]:
    """Resolve (index file, chunks file) for a location."""
    if location.is_dir():
        return location / INDEX_FILENAME, location / CHUNKS_FILENAME
    if location.name == INDEX_FILENAME:
        return location, location.parent / CHUNKS_FILENAME

    stem = location.with_suffix("") if location.suffix == INDEX_SUFFIX else location
    return location, stem.with_name(stem.name + CHUNKS_SIDECAR_SUFFIX)


def _read_payload(chunks_path: Path) -> Dict[str, Any]:
    try:
        with open(chunks_path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, ValueError) as e:
        raise IndexNotFoundError(f"Invalid index metadata at {chunks_path}: {e}") from e

    if not isinstance(payload, dict) or "chunks" not in payload:
        raise IndexNotFoundError(f"Invalid index metadata at {chunks_path}")
    return payload


def index_exists(location: PathLike) -> bool:
    """True if both index artifacts exist at ``location``."""
    location = Path(location)
    if not location.exists():
        return False
    index_path, chunks_path = _artifact_paths(location)
    return index_path.is_file() and chunks_path.is_file()


def read_index_metadata(location: PathLike) -> Dict[str, Any]:
    """Read stored build metadata without loading the FAISS structure.

    Raises:
        IndexNotFoundError: If nothing valid is at ``location``
    """
    location = Path(location)
    if not index_exists(location):
        raise IndexNotFoundError(f"Index not found: {location}")
    _, chunks_path = _artifact_paths(location)
    return _read_payload(chunks_path).get("metadata", {})


def remove_index(location: PathLike) -> None:
    """Delete an index artifact in whichever layout it was written."""
    location = Path(location)
    if location.is_dir():
        shutil.rmtree(location, ignore_errors=True)
    elif location.exists():
        _, chunks_path = _artifact_paths(location)
        location.unlink(missing_ok=True)
        chunks_path.unlink(missing_ok=True)
    logger.info("index_removed", location=str(location))


class FAISSVectorIndex:
    """Exact inner-product FAISS index over normalised chunk embeddings."""

    def __init__(
        self,
        index: faiss.Index,
        chunks: List[TextChunk],
        metadata: Optional[Dict[str, Any]] = None,
    ):
        if index.ntotal != len(chunks):
            raise ValueError(
                f"Index holds {index.ntotal} vectors but {len(chunks)} chunks were given"
            )
        self.index = index
        self.chunks = chunks
        self.metadata: Dict[str, Any] = metadata or {}

    @property
    def dimension(self) -> int:
        return self.index.d

    @property
    def ntotal(self) -> int:
        return self.index.ntotal

    @classmethod
    async def build(
        cls,
        chunks: List[TextChunk],
        embedder: Embedder,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "FAISSVectorIndex":
        """Embed all chunks (order preserved) and build the index.

        Raises:
            EmptyDocumentError: If there are no chunks
            EmbeddingProviderError: If embedding fails
        """
        if not chunks:
            raise EmptyDocumentError("Document produced no text chunks to index")

        embeddings = await embedder.embed_many([chunk.content for chunk in chunks])
        vectors = _normalize(np.array(embeddings, dtype=np.float32))

        # IndexFlatIP: exact search, fine for per-document corpus sizes
        index = faiss.IndexFlatIP(vectors.shape[1])
        index.add(vectors)

        build_metadata = {
            "embedding_provider": embedder.provider_name,
            "embedding_model": embedder.model,
            "embedding_dimension": int(vectors.shape[1]),
            "index_type": "IndexFlatIP",
            "metric": "cosine",
            "vector_count": int(index.ntotal),
        }
        build_metadata.update(metadata or {})

        logger.info(
            "faiss_index_built",
            dimension=build_metadata["embedding_dimension"],
            vector_count=index.ntotal,
        )

        return cls(index, list(chunks), build_metadata)

    def search(self, query_vector: List[float], k: int) -> List[SearchHit]:
        """Return up to ``k`` chunks by descending cosine similarity.

        Ties are broken by original chunk order.

        Raises:
            ValidationError: If the query dimension does not match the index
        """
        if k <= 0 or self.ntotal == 0:
            return []

        query = np.array([query_vector], dtype=np.float32)
        if query.shape[1] != self.dimension:
            raise ValidationError(
                f"Query dimension mismatch: expected {self.dimension}, "
                f"got {query.shape[1]}"
            )

        # Score every vector so ties at the k-th position resolve by chunk order
        scores, ids = self.index.search(_normalize(query), self.ntotal)
        ranked = sorted(
            ((float(score), int(vector_id)) for score, vector_id in zip(scores[0], ids[0])
             if vector_id >= 0),
            key=lambda pair: (-pair[0], pair[1]),
        )

        hits = []
        for score, vector_id in ranked[:k]:
            chunk = self.chunks[vector_id]
            hits.append(
                SearchHit(
                    content=chunk.content,
                    score=score,
                    chunk_index=chunk.chunk_index,
                    page_number=chunk.page_number,
                )
            )

        logger.debug("vector_search_completed", top_k=k, results_found=len(hits))

        return hits

    async def save(self, location: PathLike) -> Path:
        """Persist index and chunk texts as a directory at ``location``.

        The artifact is written to a temporary sibling directory and swapped
        into place, replacing any previous artifact.

        Raises:
            StorageError: If the write fails
        """
        location = Path(location)
        await asyncio.to_thread(self._write, location)

        logger.info(
            "faiss_index_saved",
            location=str(location),
            vector_count=self.ntotal,
        )
        return location

    def _write(self, location: Path) -> None:
        tmp_dir = location.parent / f".{location.name}.tmp-{uuid.uuid4().hex[:8]}"
        try:
            location.parent.mkdir(parents=True, exist_ok=True)
            tmp_dir.mkdir()

            faiss.write_index(self.index, str(tmp_dir / INDEX_FILENAME))

            payload = {
                "metadata": self.metadata,
                "chunks": [asdict(chunk) for chunk in self.chunks],
            }
            with open(tmp_dir / CHUNKS_FILENAME, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())

            self._swap_into_place(tmp_dir, location)

        except (OSError, RuntimeError) as e:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            logger.error("faiss_index_save_failed", location=str(location), error=str(e))
            raise StorageError(f"Failed to save index at {location}: {e}") from e

    @staticmethod
    def _swap_into_place(tmp_dir: Path, location: Path) -> None:
        if not location.exists():
            os.replace(tmp_dir, location)
            return

        backup = location.parent / f".{location.name}.old-{uuid.uuid4().hex[:8]}"
        os.replace(location, backup)
        try:
            os.replace(tmp_dir, location)
        except OSError:
            os.replace(backup, location)
            raise

        if backup.is_dir():
            shutil.rmtree(backup, ignore_errors=True)
        else:
            backup.unlink(missing_ok=True)

    @classmethod
    async def load(
        cls, location: PathLike, embedder: Optional[Embedder] = None
    ) -> "FAISSVectorIndex":
        """Reconstruct an index from disk.

        The embedder is only used to check dimensionality; it is never called.

        Raises:
            IndexNotFoundError: If nothing valid is at ``location``
            IndexDimensionError: If the embedder's known dimension differs
        """
        location = Path(location)
        loaded = await asyncio.to_thread(cls._read, location)

        stored_dim = loaded.dimension
        if embedder is not None and embedder.dimension is not None:
            if embedder.dimension != stored_dim:
                raise IndexDimensionError(
                    f"Dimension mismatch: index at {location} was built with "
                    f"{loaded.metadata.get('embedding_model')} (dim={stored_dim}), "
                    f"but the current embedder has dim={embedder.dimension}. "
                    "Please re-upload the document."
                )

        if embedder is not None and loaded.metadata.get("embedding_model") not in (
            None,
            embedder.model,
        ):
            logger.warning(
                "embedding_model_differs_from_index",
                index_model=loaded.metadata.get("embedding_model"),
                embedder_model=embedder.model,
            )

        logger.info(
            "faiss_index_loaded",
            location=str(location),
            dimension=stored_dim,
            vector_count=loaded.ntotal,
        )
        return loaded

    @classmethod
    def _read(cls, location: Path) -> "FAISSVectorIndex":
        if not index_exists(location):
            raise IndexNotFoundError(f"Index not found: {location}")

        index_path, chunks_path = _artifact_paths(location)
        payload = _read_payload(chunks_path)

        try:
            index = faiss.read_index(str(index_path))
            chunks = [TextChunk(**chunk) for chunk in payload["chunks"]]
        except (RuntimeError, TypeError) as e:
            raise IndexNotFoundError(f"Invalid index at {location}: {e}") from e

        if index.ntotal != len(chunks):
            raise IndexNotFoundError(
                f"Invalid index at {location}: {index.ntotal} vectors "
                f"for {len(chunks)} chunks"
            )

        return cls(index, chunks, payload.get("metadata", {}))
