#!/usr/bin/env python
"""Ingest PDFs from the command line and optionally ask a question.

Usage:
    python scripts/ingest_pdf.py report.pdf                       # Index one PDF
    python scripts/ingest_pdf.py a.pdf b.pdf --verbose            # Index several
    python scripts/ingest_pdf.py report.pdf -q "What is the total?"
"""
import argparse
import asyncio
import sys
from pathlib import Path
from datetime import datetime

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from pdfchat import config
from pdfchat.errors import PdfChatError
from pdfchat.rag.answer import DocumentQA
from pdfchat.rag.documents import DocumentRegistry
from pdfchat.rag.ingest import IngestPipeline
import structlog

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, file_path: Path, ok: bool):
        mark = "✓" if ok else "✗"
        print(f"  [{current}/{total}] {mark} {file_path.name}")

    def finish(self, stats: dict):
        elapsed = (datetime.now() - self.start_time).total_seconds()

        print(f"\n{'=' * 60}")
        print("  Ingestion Complete!")
        print(f"{'=' * 60}\n")
        print(f"  📄 PDFs indexed:    {stats['files_processed']}")
        print(f"  ❌ PDFs failed:     {stats['files_failed']}")
        print(f"  📑 Pages read:      {stats['pages']}")
        print(f"  📝 Chunks indexed:  {stats['chunks']}")
        print(f"  ⏱️  Time elapsed:    {elapsed:.1f}s\n")

        for document_id, filename in stats["documents"]:
            print(f"  {document_id}  {filename}")
        print()


async def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Index PDFs for question answering",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/ingest_pdf.py report.pdf
  python scripts/ingest_pdf.py report.pdf -q "Summarise section 2"
        """,
    )
    parser.add_argument("pdfs", nargs="+", type=Path, help="PDF files to ingest")
    parser.add_argument(
        "--question",
        "-q",
        default=None,
        help="Ask a question against the last ingested PDF",
    )
    parser.add_argument(
        "--upload-dir",
        type=Path,
        default=None,
        help=f"Upload directory (default: {config.UPLOAD_DIR})",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show error details for failed files",
    )

    args = parser.parse_args()
    progress = ProgressReporter(verbose=args.verbose)

    print("\n📋 Configuration:")
    print(f"   Upload directory:   {args.upload_dir or config.UPLOAD_DIR}")
    print(f"   Embedding provider: {config.EMBEDDING_PROVIDER}")
    print(f"   Chat provider:      {config.CHAT_PROVIDER}")
    print(f"   Chunk size:         {config.CHUNK_SIZE} chars")
    print(f"   Chunk overlap:      {config.CHUNK_OVERLAP} chars")

    stats = {"files_processed": 0, "files_failed": 0, "pages": 0, "chunks": 0, "documents": []}

    try:
        registry = DocumentRegistry(upload_dir=args.upload_dir)
        pipeline = IngestPipeline(upload_dir=args.upload_dir, registry=registry)
        progress.start(f"Ingesting {len(args.pdfs)} PDF(s)")

        for i, pdf_path in enumerate(args.pdfs, start=1):
            try:
                data = pdf_path.read_bytes()
                result = await pipeline.ingest(data, filename=pdf_path.name)
            except (OSError, PdfChatError) as e:
                stats["files_failed"] += 1
                progress.update(i, len(args.pdfs), pdf_path, ok=False)
                if args.verbose:
                    print(f"      {type(e).__name__}: {e}")
                continue

            stats["files_processed"] += 1
            stats["pages"] += result.page_count
            stats["chunks"] += result.chunk_count
            stats["documents"].append((result.document.id, pdf_path.name))
            progress.update(i, len(args.pdfs), pdf_path, ok=True)

        progress.finish(stats)

        if args.question and stats["documents"]:
            document_id = stats["documents"][-1][0]
            qa = DocumentQA(registry=registry)
            answer = await qa.ask(document_id, args.question)
            print(f"❓ {args.question}\n")
            print(f"💬 {answer.answer.text}\n")

        if stats["files_failed"] > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\n⚠️  Ingestion cancelled by user.\n")
        sys.exit(1)

    except PdfChatError as e:
        print(f"\n❌ Error: {e.message}\n")
        logger.error("ingest_script_failed", error=e.message, error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
