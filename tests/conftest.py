"""Pytest configuration and fixtures shared by the test suite."""
import re
from typing import Dict, List, Optional

import pytest

from pdfchat.errors import EmbeddingProviderError, GenerationProviderError
from pdfchat.providers import GenerationResult, ModelProvider
from pdfchat.rag.documents import DocumentRegistry
from pdfchat.rag.embedder import Embedder
from pdfchat.rag.ingest import IngestPipeline


VOCABULARY = ["page", "content", "1", "2", "3"]
_TOKEN = re.compile(r"[a-z0-9]+")
FILLER = "lorem " * 400


class FakeProvider(ModelProvider):
    """Deterministic provider: bag-of-words embeddings and canned answers."""

    name = "fake"
    default_chat_model = "fake-chat"
    default_embedding_model = "fake-embed"

    def __init__(
        self,
        vocabulary: Optional[List[str]] = None,
        answer: str = "This is the answer.",
        fail_embedding_at: Optional[int] = None,
        fail_generation: bool = False,
    ):
        self.vocabulary = vocabulary or VOCABULARY
        self.answer = answer
        self.fail_embedding_at = fail_embedding_at
        self.fail_generation = fail_generation
        self.embedded_texts: List[str] = []
        self.generate_calls: List[Dict] = []

    def vector(self, text: str) -> List[float]:
        tokens = _TOKEN.findall(text.lower())
        return [float(tokens.count(word)) for word in self.vocabulary]

    async def embed(self, texts, model=None):
        vectors = []
        for i, text in enumerate(texts):
            if self.fail_embedding_at == len(self.embedded_texts):
                raise EmbeddingProviderError("quota exceeded", text_index=i)
            self.embedded_texts.append(text)
            vectors.append(self.vector(text))
        return vectors

    async def generate(self, messages, model=None, temperature=None, max_tokens=None):
        self.generate_calls.append(
            {
                "messages": messages,
                "model": model,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if self.fail_generation:
            raise GenerationProviderError("model overloaded")
        return GenerationResult(
            text=self.answer,
            model=model or self.default_chat_model,
            provider=self.name,
        )


class StaticExtractor:
    """Stands in for the PDF parser, returning fixed page texts."""

    def __init__(self, pages: List[str]):
        self.pages = pages
        self.calls = 0

    def extract_file(self, file_path):
        self.calls += 1
        return list(self.pages)


def make_page(length: int, marker: str = "", offset: int = 0) -> str:
    """Filler text of exactly ``length`` chars with ``marker`` at ``offset``."""
    return FILLER[:offset] + marker + FILLER[: length - offset - len(marker)]


def build_pdf(pages: List[str]) -> bytes:
    """Write a minimal PDF with one line of Helvetica text per page."""
    page_ids = [4 + 2 * i for i in range(len(pages))]
    kids = " ".join(f"{page_id} 0 R" for page_id in page_ids)

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {len(pages)} >>".encode(),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for page_id, text in zip(page_ids, pages):
        objects.append(
            (
                f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 3 0 R >> >> /Contents {page_id + 1} 0 R >>"
            ).encode()
        )
        escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        stream = f"BT /F1 12 Tf 72 720 Td ({escaped}) Tj ET".encode()
        objects.append(
            f"<< /Length {len(stream)} >>\nstream\n".encode() + stream + b"\nendstream"
        )

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"

    xref_offset = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\n"
        f"startxref\n{xref_offset}\n%%EOF\n"
    ).encode()
    return bytes(out)


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def embedder(fake_provider):
    return Embedder(provider=fake_provider, batch_size=2)


@pytest.fixture
def upload_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def registry(upload_dir):
    return DocumentRegistry(upload_dir=upload_dir)


@pytest.fixture
def three_pages():
    """Pages of 700, 900 and 798 chars (2400 joined) with a marker on each."""
    return [
        make_page(700, "page 1 content ", 0),
        make_page(900, "page 2 content ", 150),
        make_page(798, "page 3 content ", 300),
    ]


@pytest.fixture
def make_pipeline(upload_dir, registry, embedder):
    """Factory for pipelines over fixed page texts, or real PDFs when pages is None."""

    def _make(pages: Optional[List[str]] = None, **kwargs) -> IngestPipeline:
        options = {
            "upload_dir": upload_dir,
            "registry": registry,
            "embedder": embedder,
            "chunk_size": 1000,
            "chunk_overlap": 200,
        }
        if pages is not None:
            options["extractor"] = StaticExtractor(pages)
        options.update(kwargs)
        return IngestPipeline(**options)

    return _make
