"""Ingest pipeline for indexing uploaded PDFs.

Orchestrates:
- Upload persistence
- PDF text extraction
- Text chunking
- Embedding generation and FAISS index build
- Index persistence and document registration
"""
import asyncio
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
import structlog

from pdfchat import config
from pdfchat.errors import StorageError, ValidationError
from pdfchat.rag.chunker import TextChunker
from pdfchat.rag.documents import (
    Document,
    DocumentRegistry,
    get_document_registry,
    new_document_id,
    utc_now_iso,
)
from pdfchat.rag.embedder import Embedder
from pdfchat.rag.pdf_parser import PdfTextExtractor
from pdfchat.rag.store_faiss import (
    FAISSVectorIndex,
    derive_index_location,
    find_index_location,
    remove_index,
)

logger = structlog.get_logger()

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str) -> str:
    """Reduce an uploaded filename to a safe basename ending in .pdf."""
    name = _UNSAFE_FILENAME_CHARS.sub("_", Path(filename or "document.pdf").name).strip("._")
    if not name:
        name = "document"
    if not name.lower().endswith(".pdf"):
        name = f"{name}.pdf"
    return name


@dataclass
class IngestResult:
    """Outcome of a successful ingestion."""

    document: Document
    page_count: int
    chunk_count: int


class IngestPipeline:
    """Pipeline for ingesting a PDF into a persisted per-document index."""

    def __init__(
        self,
        upload_dir: Path = None,
        registry: Optional[DocumentRegistry] = None,
        embedder: Optional[Embedder] = None,
        extractor: Optional[PdfTextExtractor] = None,
        chunk_size: int = None,
        chunk_overlap: int = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            upload_dir: Directory for uploaded PDFs and indexes (default from config)
            registry: Document registry (default: process-wide registry)
            embedder: Embedder used to build indexes
            extractor: PDF text extractor
            chunk_size: Chunk size in characters (default from config)
            chunk_overlap: Chunk overlap in characters (default from config)
        """
        self.upload_dir = Path(upload_dir or config.UPLOAD_DIR)
        self.registry = registry or get_document_registry()
        self.embedder = embedder or Embedder()
        self.extractor = extractor or PdfTextExtractor()
        self.chunker = TextChunker(chunk_size=chunk_size, chunk_overlap=chunk_overlap)

        logger.info(
            "ingest_pipeline_initialized",
            upload_dir=str(self.upload_dir),
            embedding_provider=self.embedder.provider_name,
            embedding_model=self.embedder.model,
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
        )

    def _store_upload(self, data: bytes, filename: str, document_id: str) -> Path:
        """Write uploaded bytes to ``<document-id>-<name>.pdf`` in the upload dir."""
        path = self.upload_dir / f"{document_id}-{safe_filename(filename)}"
        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "xb") as f:
                f.write(data)
        except FileExistsError as e:
            raise StorageError(f"Upload already exists: {path.name}") from e
        except OSError as e:
            path.unlink(missing_ok=True)
            raise StorageError(f"Failed to store upload {filename}: {e}") from e
        return path

    async def ingest(
        self,
        source: Union[bytes, Path, str],
        filename: Optional[str] = None,
    ) -> IngestResult:
        """Ingest a PDF given as raw bytes or as a path on disk.

        Steps run strictly in order; a failure at any step (or cancellation)
        leaves no registered document and no index artifact behind.

        Raises:
            ValidationError: If no content was provided
            ParseError: If the PDF cannot be read
            EmptyDocumentError: If the PDF has no extractable text
            EmbeddingProviderError: If embedding fails
            StorageError: If the upload, index or registry cannot be written
        """
        written_upload: Optional[Path] = None
        index_location: Optional[Path] = None
        registering = False

        try:
            document_id = new_document_id()

            # Persist or locate the source PDF
            if isinstance(source, (bytes, bytearray)):
                if not source:
                    raise ValidationError("No PDF file uploaded")
                source_path = await asyncio.to_thread(
                    self._store_upload, bytes(source), filename or "document.pdf", document_id
                )
                written_upload = source_path
            else:
                source_path = Path(source)

            log = logger.bind(source_path=str(source_path))
            log.info("ingesting_pdf")

            # Extract
            pages = await asyncio.to_thread(self.extractor.extract_file, source_path)
            page_count = len(pages)

            # Chunk
            chunks = self.chunker.split(pages)
            log.info("pdf_chunked", page_count=page_count, **self.chunker.get_chunk_stats(chunks))

            # Build (raises EmptyDocumentError before any embedding call)
            index = await FAISSVectorIndex.build(
                chunks,
                self.embedder,
                metadata={
                    "page_count": page_count,
                    "chunk_size": self.chunker.chunk_size,
                    "chunk_overlap": self.chunker.chunk_overlap,
                    "source_filename": source_path.name,
                },
            )

            # Save
            index_location = derive_index_location(source_path)
            # Never overwrite an index another document may still own
            if find_index_location(index_location) is not None:
                index_location = index_location.with_name(f"{index_location.name}-{document_id}")
            await index.save(index_location)

            document = Document(
                id=document_id,
                source_path=str(source_path),
                index_path=str(index_location),
                filename=source_path.name,
                uploaded_at=utc_now_iso(),
                page_count=page_count,
            )

            # Register; shielded so a timeout cannot leave a half-written entry
            registering = True
            await asyncio.shield(self.registry.register(document))

        except (Exception, asyncio.CancelledError) as e:
            # A cancelled registration keeps running under the shield
            if not (registering and isinstance(e, asyncio.CancelledError)):
                await asyncio.to_thread(self._cleanup, index_location, written_upload)
            logger.error(
                "pdf_ingestion_failed",
                filename=filename or (
                    "<upload>" if isinstance(source, (bytes, bytearray)) else str(source)
                ),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        logger.info(
            "pdf_ingested",
            document_id=document.id,
            page_count=page_count,
            chunk_count=len(chunks),
        )

        return IngestResult(document=document, page_count=page_count, chunk_count=len(chunks))

    @staticmethod
    def _cleanup(index_location: Optional[Path], written_upload: Optional[Path]) -> None:
        if index_location is not None and index_location.exists():
            remove_index(index_location)
        if written_upload is not None:
            written_upload.unlink(missing_ok=True)


_pipeline_instance: Optional[IngestPipeline] = None


def get_ingest_pipeline() -> IngestPipeline:
    """Get or create the process-wide ingest pipeline."""
    global _pipeline_instance
    if _pipeline_instance is None:
        _pipeline_instance = IngestPipeline()
    return _pipeline_instance
