"""Error taxonomy shared by the pipeline and the HTTP boundary.

Every error carries the HTTP status the boundary should answer with, a
human-readable message and optional structured details that are merged into
the JSON error body.
"""
from typing import Any, Dict, List, Optional


class PdfChatError(Exception):
    """Base class for all classified errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PdfChatError):
    """Missing or malformed request input."""

    status_code = 400


class UnknownProviderError(ValidationError):
    """A provider key that is not registered."""

    def __init__(self, name: str, available: List[str]):
        super().__init__(
            f"Unsupported provider: {name}",
            details={"availableProviders": available},
        )
        self.name = name
        self.available = available


class NotFoundError(PdfChatError):
    status_code = 404


class DocumentNotFoundError(NotFoundError):
    """Unknown document id, with the ids that are currently known."""

    def __init__(self, document_id: str, known_ids: List[str]):
        super().__init__(
            f"PDF not found for ID: {document_id}",
            details={"availablePdfs": known_ids},
        )
        self.document_id = document_id
        self.known_ids = known_ids


class IndexNotFoundError(NotFoundError):
    """Nothing valid at an index location."""


class ProviderError(PdfChatError):
    """Embedding or generation backend failure."""

    status_code = 502


class EmbeddingProviderError(ProviderError):
    def __init__(
        self,
        message: str,
        text_index: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        if text_index is not None:
            details["textIndex"] = text_index
        super().__init__(message, details=details)
        self.text_index = text_index


class GenerationProviderError(ProviderError):
    pass


class ProviderTimeoutError(ProviderError):
    status_code = 504


class ParseError(PdfChatError):
    """The uploaded bytes are not a readable PDF."""

    status_code = 422


class EmptyDocumentError(PdfChatError):
    """A document produced no chunks to index."""

    status_code = 422


class StorageError(PdfChatError):
    """Disk read/write failure for uploads, indexes or the registry."""

    status_code = 500


class IndexDimensionError(StorageError):
    """A stored index does not match the embedder's dimension."""
