"""PDF text extraction for the ingestion pipeline.

Handles:
- PDF header validation
- Page-by-page text extraction with pypdf
- Encrypted documents with an empty user password
"""
from io import BytesIO
from pathlib import Path
from typing import List
import structlog
from pypdf import PdfReader

from pdfchat.errors import ParseError, StorageError

logger = structlog.get_logger()

PDF_MAGIC = b"%PDF-"


class PdfTextExtractor:
    """Turns PDF bytes into ordered page texts."""

    def extract(self, data: bytes) -> List[str]:
        """Extract the text of every page.

        Args:
            data: Raw PDF bytes

        Returns:
            One string per page, in page order (empty for image-only pages)

        Raises:
            ParseError: If the bytes are not a readable PDF
        """
        if not data:
            raise ParseError("PDF is empty")

        # Some writers emit a few junk bytes before the header
        if PDF_MAGIC not in data[:1024]:
            raise ParseError("File is not a PDF (missing %PDF- header)")

        try:
            reader = PdfReader(BytesIO(data))

            if reader.is_encrypted:
                if not reader.decrypt(""):
                    raise ParseError("PDF is encrypted and cannot be read")

            pages = [page.extract_text() or "" for page in reader.pages]

        except ParseError:
            raise
        except Exception as e:
            logger.error("pdf_parse_failed", error=str(e), error_type=type(e).__name__)
            raise ParseError(f"Failed to extract content from PDF: {e}") from e

        logger.info(
            "pdf_text_extracted",
            page_count=len(pages),
            char_count=sum(len(p) for p in pages),
        )

        return pages

    def extract_file(self, file_path: Path) -> List[str]:
        """Read a PDF from disk and extract its pages.

        Raises:
            StorageError: If the file cannot be read
            ParseError: If the file is not a readable PDF
        """
        try:
            data = Path(file_path).read_bytes()
        except OSError as e:
            raise StorageError(f"File not found or unreadable: {file_path}") from e

        return self.extract(data)
