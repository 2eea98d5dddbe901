"""Document registry: durable mapping from document id to its artifacts.

The mapping is a JSON file under the upload directory:

    {documentId: {filePath, indexPath, filename, uploadedAt, pageCount}}

It is rewritten in full on every registration (temp file + rename) and all
read-modify-write cycles go through one asyncio lock.
"""
import asyncio
import json
import os
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
import structlog

from pdfchat import config
from pdfchat.errors import IndexNotFoundError, StorageError
from pdfchat.rag.store_faiss import (
    derive_index_location,
    find_index_location,
    index_exists,
    read_index_metadata,
)

logger = structlog.get_logger()


def new_document_id() -> str:
    """Millisecond timestamp plus a random suffix."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Document:
    """A successfully ingested PDF."""

    id: str
    source_path: str
    index_path: str
    filename: str
    uploaded_at: str
    page_count: int = 0

    def to_record(self) -> Dict[str, Any]:
        return {
            "filePath": self.source_path,
            "indexPath": self.index_path,
            "filename": self.filename,
            "uploadedAt": self.uploaded_at,
            "pageCount": self.page_count,
        }

    @classmethod
    def from_record(cls, document_id: str, record: Dict[str, Any]) -> "Document":
        return cls(
            id=document_id,
            source_path=record.get("filePath", ""),
            index_path=record.get("indexPath", ""),
            filename=record.get("filename", ""),
            uploaded_at=record.get("uploadedAt", ""),
            page_count=int(record.get("pageCount") or 0),
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "uploadedAt": self.uploaded_at,
            "pageCount": self.page_count,
        }


class DocumentRegistry:
    """Durable id -> Document mapping with scan-based recovery."""

    def __init__(self, upload_dir: Path = None, mapping_file: Path = None):
        """Initialize the registry.

        Args:
            upload_dir: Directory holding uploaded PDFs and their indexes
            mapping_file: JSON mapping file (default: <upload_dir>/pdf_metadata.json)
        """
        self.upload_dir = Path(upload_dir or config.UPLOAD_DIR)
        self.mapping_file = Path(mapping_file or self.upload_dir / config.METADATA_FILENAME)
        self._lock = asyncio.Lock()

    def _read_mapping(self) -> Dict[str, Dict[str, Any]]:
        if not self.mapping_file.exists():
            return {}

        try:
            with open(self.mapping_file, "r", encoding="utf-8") as f:
                mapping = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("registry_read_failed", path=str(self.mapping_file), error=str(e))
            raise StorageError(f"Failed to load document registry: {e}") from e

        if not isinstance(mapping, dict):
            raise StorageError(f"Document registry is malformed: {self.mapping_file}")
        return mapping

    def _write_mapping(self, mapping: Dict[str, Dict[str, Any]]) -> None:
        tmp_path = self.mapping_file.with_name(
            f".{self.mapping_file.name}.{secrets.token_hex(4)}.tmp"
        )
        try:
            self.mapping_file.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(mapping, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.mapping_file)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            logger.error("registry_write_failed", path=str(self.mapping_file), error=str(e))
            raise StorageError(f"Failed to save document registry: {e}") from e

    def _register_sync(self, document: Document) -> None:
        mapping = self._read_mapping()
        mapping[document.id] = document.to_record()
        self._write_mapping(mapping)

    async def register(self, document: Document) -> None:
        """Insert or replace a document record.

        Raises:
            StorageError: If the mapping file cannot be read or written
        """
        async with self._lock:
            await asyncio.to_thread(self._register_sync, document)

        logger.info("document_registered", document_id=document.id, filename=document.filename)

    async def _snapshot(self) -> Dict[str, Dict[str, Any]]:
        async with self._lock:
            return await asyncio.to_thread(self._read_mapping)

    async def get(self, document_id: str) -> Optional[Document]:
        mapping = await self._snapshot()
        record = mapping.get(document_id)
        found = record is not None
        logger.debug("document_lookup", document_id=document_id, found=found)
        return Document.from_record(document_id, record) if found else None

    async def list(self) -> List[Document]:
        mapping = await self._snapshot()
        return [Document.from_record(doc_id, record) for doc_id, record in mapping.items()]

    async def known_ids(self) -> List[str]:
        return list(await self._snapshot())

    async def recover_by_scan(self, candidate_id: str) -> Optional[Document]:
        """Best-effort reconstruction of a lost registry entry.

        Looks for PDFs in the upload directory that no entry references and
        that have a valid index at their derived location. Exactly one such
        PDF is adopted under ``candidate_id``; none or several yield None.
        """
        mapping = await self._snapshot()
        candidates = await asyncio.to_thread(self._scan_candidates, mapping)

        if len(candidates) != 1:
            logger.warning(
                "registry_recovery_failed",
                document_id=candidate_id,
                candidate_count=len(candidates),
                candidates=[str(pdf) for pdf, _ in candidates],
            )
            return None

        pdf_path, index_location = candidates[0]

        try:
            metadata = await asyncio.to_thread(read_index_metadata, index_location)
        except IndexNotFoundError:
            logger.warning("registry_recovery_index_invalid", index=str(index_location))
            return None

        mtime = pdf_path.stat().st_mtime
        document = Document(
            id=candidate_id,
            source_path=str(pdf_path),
            index_path=str(index_location),
            filename=pdf_path.name,
            uploaded_at=datetime.fromtimestamp(mtime, timezone.utc).isoformat(),
            page_count=int(metadata.get("page_count") or 0),
        )
        await self.register(document)

        logger.info(
            "registry_entry_recovered",
            document_id=candidate_id,
            source_path=str(pdf_path),
        )
        return document

    def _scan_candidates(self, mapping: Dict[str, Dict[str, Any]]):
        if not self.upload_dir.is_dir():
            return []

        referenced = {
            str(Path(record.get("filePath", "")).resolve())
            for record in mapping.values()
            if record.get("filePath")
        }

        pdfs = sorted(
            (p for p in self.upload_dir.iterdir() if p.is_file() and p.suffix.lower() == ".pdf"),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )

        candidates = []
        for pdf_path in pdfs:
            if str(pdf_path.resolve()) in referenced:
                continue
            location = find_index_location(derive_index_location(pdf_path))
            if location is not None and index_exists(location):
                candidates.append((pdf_path, location))
        return candidates


_registry_instance: Optional[DocumentRegistry] = None


def get_document_registry() -> DocumentRegistry:
    """Get the process-wide registry (one lock guards the mapping file)."""
    global _registry_instance
    if _registry_instance is None:
        _registry_instance = DocumentRegistry()
    return _registry_instance
