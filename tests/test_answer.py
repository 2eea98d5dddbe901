"""Tests for retrieval, answer composition and the document question flow."""
import json
import shutil
from pathlib import Path

import pytest

from pdfchat.errors import (
    DocumentNotFoundError,
    GenerationProviderError,
    IndexNotFoundError,
    UnknownProviderError,
)
from pdfchat.rag.answer import AnswerComposer, DocumentQA, build_prompt
from pdfchat.rag.chunker import TextChunk
from pdfchat.rag.retriever import Retriever
from pdfchat.rag.store_faiss import FAISSVectorIndex

from conftest import FakeProvider


@pytest.fixture
def composer(embedder, fake_provider):
    return AnswerComposer(retriever=Retriever(embedder, top_k=2), provider=fake_provider)


@pytest.fixture
def qa(registry, composer):
    return DocumentQA(registry=registry, composer=composer)


def test_build_prompt_layout():
    prompt = build_prompt("What is it?", ["first passage", "second passage"])

    assert prompt == (
        "Answer the following question based on the provided context:\n\n"
        "Question: What is it?\n\n"
        "Context: first passage\n\nsecond passage"
    )


@pytest.mark.asyncio
async def test_retriever_skips_blank_questions(embedder, fake_provider):
    index = await FAISSVectorIndex.build(
        [TextChunk("page 1", 0, 6, 0, page_number=1)], embedder
    )
    fake_provider.embedded_texts.clear()

    assert await Retriever(embedder).retrieve(index, "   ") == []
    assert fake_provider.embedded_texts == []


@pytest.mark.asyncio
async def test_retriever_results_carry_source(embedder):
    index = await FAISSVectorIndex.build(
        [TextChunk("page 1", 0, 6, 0, page_number=1), TextChunk("content 3", 7, 16, 1, page_number=3)],
        embedder,
    )

    (best,) = await Retriever(embedder, top_k=1).retrieve(index, "content 3")

    assert best.content == "content 3"
    assert best.source == "page 3, chunk 1"


@pytest.mark.asyncio
async def test_retriever_zero_k_returns_nothing(embedder, fake_provider):
    index = await FAISSVectorIndex.build(
        [TextChunk("page 1", 0, 6, 0, page_number=1), TextChunk("content 3", 7, 16, 1, page_number=3)],
        embedder,
    )
    fake_provider.embedded_texts.clear()

    assert await Retriever(embedder).retrieve(index, "page content", top_k=0) == []
    assert await Retriever(embedder, top_k=0).retrieve(index, "page content") == []
    assert fake_provider.embedded_texts == []


@pytest.mark.asyncio
async def test_answer_grounds_prompt_on_passages(embedder, composer, fake_provider):
    index = await FAISSVectorIndex.build(
        [
            TextChunk("page 1 content", 0, 14, 0),
            TextChunk("page 2 content", 15, 29, 1),
            TextChunk("unrelated", 30, 39, 2),
        ],
        embedder,
    )

    answer = await composer.answer(index, "page 2 content", temperature=0.1)

    assert answer.text == "This is the answer."
    assert answer.passages == ["page 2 content", "page 1 content"]
    (call,) = fake_provider.generate_calls
    assert call["temperature"] == 0.1
    assert call["messages"] == [
        {"role": "user", "content": build_prompt("page 2 content", answer.passages)}
    ]


@pytest.mark.asyncio
async def test_answer_without_passages_still_calls_model(embedder, composer, fake_provider):
    index = await FAISSVectorIndex.build([TextChunk("page 1", 0, 6, 0)], embedder)

    answer = await composer.answer(index, "")

    assert answer.passages == []
    assert answer.text == "This is the answer."
    content = fake_provider.generate_calls[0]["messages"][0]["content"]
    assert content.endswith("Context: ")


@pytest.mark.asyncio
async def test_generation_failure_propagates(embedder):
    composer = AnswerComposer(
        retriever=Retriever(embedder), provider=FakeProvider(fail_generation=True)
    )
    index = await FAISSVectorIndex.build([TextChunk("page 1", 0, 6, 0)], embedder)

    with pytest.raises(GenerationProviderError):
        await composer.answer(index, "page")


@pytest.mark.asyncio
async def test_ask_registered_document(make_pipeline, three_pages, qa, fake_provider):
    result = await make_pipeline(three_pages).ingest(b"%PDF-1.4", filename="report.pdf")

    qa_result = await qa.ask(result.document.id, "page 2 content")

    assert qa_result.document == result.document
    assert qa_result.answer.text == "This is the answer."
    prompt = fake_provider.generate_calls[-1]["messages"][0]["content"]
    assert "page 2 content" in prompt.split("Context: ", 1)[1]


@pytest.mark.asyncio
async def test_unknown_document_lists_known_ids(make_pipeline, three_pages, qa):
    result = await make_pipeline(three_pages).ingest(b"%PDF-1.4", filename="report.pdf")

    with pytest.raises(DocumentNotFoundError) as excinfo:
        await qa.ask("does-not-exist", "anything")

    assert excinfo.value.status_code == 404
    assert excinfo.value.known_ids == [result.document.id]
    assert excinfo.value.details == {"availablePdfs": [result.document.id]}


@pytest.mark.asyncio
async def test_lost_registry_entry_is_recovered(make_pipeline, three_pages, qa, upload_dir, registry):
    result = await make_pipeline(three_pages).ingest(b"%PDF-1.4", filename="report.pdf")
    (upload_dir / "pdf_metadata.json").unlink()

    qa_result = await qa.ask(result.document.id, "page 2 content")

    assert qa_result.document.source_path == result.document.source_path
    assert qa_result.document.page_count == 3
    assert await registry.known_ids() == [result.document.id]


@pytest.mark.asyncio
async def test_missing_index_is_reported(make_pipeline, three_pages, qa):
    result = await make_pipeline(three_pages).ingest(b"%PDF-1.4", filename="report.pdf")
    shutil.rmtree(Path(result.document.index_path))

    with pytest.raises(IndexNotFoundError):
        await qa.ask(result.document.id, "page 2 content")


def _edit_mapping(upload_dir, edit):
    mapping_file = upload_dir / "pdf_metadata.json"
    mapping = json.loads(mapping_file.read_text(encoding="utf-8"))
    edit(mapping)
    mapping_file.write_text(json.dumps(mapping), encoding="utf-8")


@pytest.mark.asyncio
async def test_stale_index_path_falls_back_to_derived_location(make_pipeline, three_pages, qa, upload_dir):
    result = await make_pipeline(three_pages).ingest(b"%PDF-1.4", filename="report.pdf")
    _edit_mapping(
        upload_dir,
        lambda m: m[result.document.id].update(indexPath=str(upload_dir / "moved" / "report")),
    )

    qa_result = await qa.ask(result.document.id, "page 2 content")

    assert qa_result.answer.text == "This is the answer."


@pytest.mark.asyncio
async def test_stale_entry_is_recovered_from_orphan_upload(make_pipeline, three_pages, qa, upload_dir, registry):
    pipeline = make_pipeline(three_pages)
    stale = (await pipeline.ingest(b"%PDF-1.4 a", filename="a.pdf")).document
    orphan = (await pipeline.ingest(b"%PDF-1.4 b", filename="b.pdf")).document

    Path(stale.source_path).unlink()
    shutil.rmtree(Path(stale.index_path))
    _edit_mapping(upload_dir, lambda m: m.pop(orphan.id))

    qa_result = await qa.ask(stale.id, "page 2 content")

    assert qa_result.document.id == stale.id
    assert qa_result.document.source_path == orphan.source_path
    assert (await registry.get(stale.id)).source_path == orphan.source_path


@pytest.mark.asyncio
async def test_unknown_provider_key(make_pipeline, three_pages, qa):
    result = await make_pipeline(three_pages).ingest(b"%PDF-1.4", filename="report.pdf")

    with pytest.raises(UnknownProviderError) as excinfo:
        await qa.ask(result.document.id, "page 2 content", provider="nonexistent")

    assert "ollama" in excinfo.value.available
