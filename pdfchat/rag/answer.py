"""Answer composition and the document question flow.

``AnswerComposer`` grounds a generative model on retrieved passages.
``DocumentQA`` resolves a document id to its index and answers against it.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import structlog

from pdfchat import config
from pdfchat.errors import DocumentNotFoundError, IndexNotFoundError
from pdfchat.providers import ModelProvider, get_provider
from pdfchat.rag.documents import Document, DocumentRegistry, get_document_registry
from pdfchat.rag.retriever import Retriever
from pdfchat.rag.store_faiss import FAISSVectorIndex, derive_index_location, find_index_location

logger = structlog.get_logger()

PROMPT_TEMPLATE = """Answer the following question based on the provided context:

Question: {question}

Context: {context}"""


def build_prompt(question: str, passages: List[str]) -> str:
    return PROMPT_TEMPLATE.format(question=question, context="\n\n".join(passages))


@dataclass
class Answer:
    """A generated answer and the passages it was grounded on."""

    text: str
    passages: List[str]
    model: str
    provider: str
    usage: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QAResult:
    answer: Answer
    question: str
    document: Document


class AnswerComposer:
    """Retrieval-then-generation over one document index."""

    def __init__(
        self,
        retriever: Optional[Retriever] = None,
        provider: Optional[ModelProvider] = None,
        default_model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        self.retriever = retriever or Retriever()
        self.provider = provider or get_provider(config.CHAT_PROVIDER)
        self.default_model = default_model
        self.temperature = temperature if temperature is not None else config.DEFAULT_TEMPERATURE
        self.max_tokens = max_tokens or config.MAX_OUTPUT_TOKENS

    async def answer(
        self,
        index: FAISSVectorIndex,
        question: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        provider: Optional[ModelProvider] = None,
    ) -> Answer:
        """Answer a question from the passages retrieved out of ``index``.

        With no retrieved passages the model is still called, with an empty
        context.

        Raises:
            EmbeddingProviderError: If the question cannot be embedded
            GenerationProviderError: If generation fails
        """
        provider = provider or self.provider
        passages = await self.retriever.retrieve_passages(index, question)

        if not passages:
            logger.warning("answering_without_context", question_preview=question[:100])

        prompt = build_prompt(question, passages)
        result = await provider.generate(
            [{"role": "user", "content": prompt}],
            model=model or self.default_model,
            temperature=temperature if temperature is not None else self.temperature,
            max_tokens=max_tokens or self.max_tokens,
        )

        logger.info(
            "answer_generated",
            provider=result.provider,
            model=result.model,
            passages=len(passages),
            answer_length=len(result.text),
        )

        return Answer(
            text=result.text,
            passages=passages,
            model=result.model,
            provider=result.provider,
            usage=result.usage,
        )


class DocumentQA:
    """Question answering against a registered document."""

    def __init__(
        self,
        registry: Optional[DocumentRegistry] = None,
        composer: Optional[AnswerComposer] = None,
    ):
        self.registry = registry or get_document_registry()
        self.composer = composer or AnswerComposer()

    async def resolve_document(self, document_id: str) -> Document:
        """Look up a document, falling back to the upload-directory scan.

        Raises:
            DocumentNotFoundError: With the currently known ids
        """
        document = await self.registry.get(document_id)
        if document is not None:
            return document

        logger.warning("document_not_registered_attempting_recovery", document_id=document_id)
        document = await self.registry.recover_by_scan(document_id)
        if document is not None:
            return document

        raise DocumentNotFoundError(document_id, await self.registry.known_ids())

    @staticmethod
    def _locate_index(document: Document) -> Optional[Path]:
        location = find_index_location(Path(document.index_path))
        if location is None:
            location = find_index_location(derive_index_location(document.source_path))
        return location

    async def load_index(self, document: Document) -> Tuple[Document, FAISSVectorIndex]:
        """Load a document's index, probing the tolerated layouts.

        Looks at the recorded index path, then at the location derived from
        the source PDF. If neither holds an index the entry is stale, and the
        upload-directory scan gets one chance to rebuild it.

        Returns:
            The (possibly recovered) document and its loaded index

        Raises:
            IndexNotFoundError: If no valid index can be found
        """
        location = self._locate_index(document)
        if location is None:
            logger.warning("index_missing_attempting_recovery", document_id=document.id)
            recovered = await self.registry.recover_by_scan(document.id)
            if recovered is not None:
                document = recovered
                location = self._locate_index(recovered)

        if location is None:
            raise IndexNotFoundError(f"Index not found for PDF ID: {document.id}")

        return document, await FAISSVectorIndex.load(location, self.composer.retriever.embedder)

    async def ask(
        self,
        document_id: str,
        question: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        provider: Optional[str] = None,
    ) -> QAResult:
        """Answer ``question`` from the document registered as ``document_id``."""
        logger.info("answering_question", document_id=document_id, question_length=len(question))

        document = await self.resolve_document(document_id)
        document, index = await self.load_index(document)

        answer = await self.composer.answer(
            index,
            question,
            model=model,
            temperature=temperature,
            provider=get_provider(provider) if provider else None,
        )

        return QAResult(answer=answer, question=question, document=document)


_qa_instance: Optional[DocumentQA] = None


def get_document_qa() -> DocumentQA:
    """Get or create the process-wide question-answering service."""
    global _qa_instance
    if _qa_instance is None:
        _qa_instance = DocumentQA()
    return _qa_instance
