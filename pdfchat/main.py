"""Main Quart application for the PDF question answering backend."""
import asyncio
import logging
import os
import traceback
from contextlib import asynccontextmanager
from typing import Optional, Type, TypeVar

import pydantic
import structlog
from quart import Quart, jsonify, request
from werkzeug.exceptions import HTTPException

from pdfchat import config
from pdfchat.chat import ChatService
from pdfchat.errors import PdfChatError, ProviderTimeoutError, ValidationError
from pdfchat.providers import get_provider_registry
from pdfchat.rag.answer import DocumentQA, get_document_qa
from pdfchat.rag.documents import DocumentRegistry, get_document_registry
from pdfchat.rag.ingest import IngestPipeline, get_ingest_pipeline
from pdfchat.schemas import AskRequest, ChatRequest, ScenarioRequest


def configure_logging() -> None:
    """Configure structured logging."""
    logging.basicConfig(level=config.LOG_LEVEL, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


configure_logging()

logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)

# Headroom for multipart framing on top of the file itself
_MULTIPART_OVERHEAD = 64 * 1024


def _parse(model: Type[ModelT], data) -> ModelT:
    """Validate a JSON body against a request model."""
    if data is None:
        raise ValidationError("Request body must be JSON")
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Invalid request body",
            details={
                "errors": e.errors(include_url=False, include_context=False, include_input=False)
            },
        ) from e


def _error_body(error: BaseException, message: str, details: Optional[dict] = None) -> dict:
    body = {"success": False, "message": message}
    body.update(details or {})
    if config.APP_ENV != "production":
        body["errorType"] = type(error).__name__
        body["stack"] = "".join(traceback.format_exception(error))
    return body


@asynccontextmanager
async def _request_timeout(operation: str):
    """Abort the awaited work after REQUEST_TIMEOUT seconds."""
    try:
        async with asyncio.timeout(config.REQUEST_TIMEOUT):
            yield
    except asyncio.TimeoutError as e:
        logger.error("request_timeout", operation=operation, timeout=config.REQUEST_TIMEOUT)
        raise ProviderTimeoutError(
            f"{operation} timed out after {config.REQUEST_TIMEOUT:.0f}s"
        ) from e


def create_app(
    registry: Optional[DocumentRegistry] = None,
    pipeline: Optional[IngestPipeline] = None,
    qa: Optional[DocumentQA] = None,
    chat_service: Optional[ChatService] = None,
) -> Quart:
    """Build the application; services default to the process-wide instances."""
    app = Quart(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_BYTES + _MULTIPART_OVERHEAD

    def get_registry() -> DocumentRegistry:
        return registry or get_document_registry()

    def get_pipeline() -> IngestPipeline:
        return pipeline or get_ingest_pipeline()

    def get_qa() -> DocumentQA:
        return qa or get_document_qa()

    def get_chat() -> ChatService:
        return chat_service or ChatService()

    @app.route("/api/pdf/upload", methods=["POST"])
    async def upload_pdf():
        """Upload a PDF (multipart field ``pdfFile``) and index it.

        Returns JSON:
        {
            "success": true,
            "pdfId": "document id",
            "filename": "stored filename",
            "pageCount": 3,
            "chunkCount": 7
        }
        """
        files = await request.files
        upload = files.get("pdfFile")

        if upload is None or not upload.filename:
            raise ValidationError("No PDF file uploaded")

        if upload.mimetype not in config.ALLOWED_CONTENT_TYPES:
            raise ValidationError("Only PDF files are allowed")

        data = upload.read()
        if len(data) > config.MAX_UPLOAD_BYTES:
            raise ValidationError(
                f"PDF exceeds the {config.MAX_UPLOAD_BYTES // (1024 * 1024)}MB limit"
            )

        logger.info("pdf_upload_received", filename=upload.filename, size=len(data))

        async with _request_timeout("PDF processing"):
            result = await get_pipeline().ingest(data, filename=upload.filename)

        return jsonify({
            "success": True,
            "message": "PDF uploaded and processed successfully",
            "pdfId": result.document.id,
            "filename": result.document.filename,
            "pageCount": result.page_count,
            "chunkCount": result.chunk_count,
        })

    @app.route("/api/pdf/ask", methods=["POST"])
    async def ask_question():
        """Answer a question about an uploaded PDF.

        Expects JSON body:
        {
            "pdfId": "document id",
            "question": "natural-language question",
            "model": "optional model name",
            "temperature": 0.7,  // optional
            "provider": "optional provider key"
        }
        """
        body = _parse(AskRequest, await request.get_json(silent=True))

        async with _request_timeout("Question answering"):
            result = await get_qa().ask(
                body.pdf_id,
                body.question,
                model=body.model,
                temperature=body.temperature,
                provider=body.provider,
            )

        return jsonify({
            "success": True,
            "message": "Question answered successfully",
            "question": result.question,
            "answer": result.answer.text,
            "pdfInfo": {
                "filename": result.document.filename,
                "uploadedAt": result.document.uploaded_at,
                "pageCount": result.document.page_count,
            },
        })

    @app.route("/api/pdf/list", methods=["GET"])
    async def list_pdfs():
        """List all registered PDFs."""
        documents = await get_registry().list()
        return jsonify({
            "success": True,
            "message": "Retrieved processed PDFs",
            "pdfs": [document.summary() for document in documents],
        })

    @app.route("/api/chat", methods=["POST"])
    async def chat():
        """Generic chat completion over a chosen provider.

        Expects JSON body:
        {
            "userPrompt": "user message text",
            "provider": "ollama | gemini | huggingface",  // optional
            "model": "optional model name",
            "systemPrompt": "optional system prompt",
            "temperature": 0.7,  // optional
            "chatHistory": [{"role": "user", "content": "..."}]  // optional
        }
        """
        body = _parse(ChatRequest, await request.get_json(silent=True))

        async with _request_timeout("Chat"):
            result = await get_chat().chat(
                body.user_prompt,
                provider=body.provider,
                model=body.model,
                system_prompt=body.system_prompt,
                temperature=body.temperature,
                chat_history=body.history(),
            )

        return jsonify({
            "success": True,
            "message": "AI response generated successfully",
            "response": result.text,
            "provider": result.provider,
            "model": result.model,
        })

    @app.route("/api/chat/scenario", methods=["POST"])
    async def chat_scenario():
        """Chat with a named scenario preset (coding, writing, analysis)."""
        body = _parse(ScenarioRequest, await request.get_json(silent=True))
        context = body.context

        async with _request_timeout("Chat"):
            result = await get_chat().specialized_response(
                body.scenario,
                context.user_prompt,
                provider=context.provider,
                model=context.model,
                system_prompt=context.system_prompt,
                temperature=context.temperature,
                chat_history=context.history(),
            )

        return jsonify({
            "success": True,
            "message": "Specialized response generated successfully",
            "scenario": body.scenario,
            "response": result.text,
            "provider": result.provider,
            "model": result.model,
        })

    @app.route("/health/ready")
    async def health_ready():
        """Readiness probe - upload directory and provider configuration."""
        checks = {"status": "healthy", "upload_dir": False, "providers": False}

        upload_dir = get_registry().upload_dir
        try:
            upload_dir.mkdir(parents=True, exist_ok=True)
            checks["upload_dir"] = os.access(upload_dir, os.W_OK)
        except OSError as e:
            logger.error("health_check_upload_dir_failed", error=str(e))

        available = get_provider_registry().names()
        checks["providers"] = (
            config.CHAT_PROVIDER in available and config.EMBEDDING_PROVIDER in available
        )

        if not (checks["upload_dir"] and checks["providers"]):
            checks["status"] = "unhealthy"

        status_code = 200 if checks["status"] == "healthy" else 503
        return jsonify(checks), status_code

    @app.route("/health/live")
    async def health_live():
        """Liveness probe - check if app is running."""
        return jsonify({"status": "alive"}), 200

    @app.errorhandler(PdfChatError)
    async def handle_pdfchat_error(error: PdfChatError):
        """Render classified errors with their status code."""
        log = logger.error if error.status_code >= 500 else logger.warning
        log(
            "request_failed",
            path=request.path,
            error=error.message,
            error_type=type(error).__name__,
            status_code=error.status_code,
        )
        return jsonify(_error_body(error, error.message, error.details)), error.status_code

    @app.errorhandler(HTTPException)
    async def handle_http_exception(error: HTTPException):
        """Render framework errors (404, 405, 413...) in the same JSON shape."""
        return jsonify({"success": False, "message": error.description}), error.code

    @app.errorhandler(Exception)
    async def handle_unexpected_error(error: Exception):
        """Handle anything unclassified as an internal error."""
        logger.exception("internal_server_error", path=request.path, error=str(error))
        return jsonify(_error_body(error, "Internal server error")), 500

    return app


app = create_app()


if __name__ == "__main__":
    # For development - use `hypercorn pdfchat.main:app` in production
    app.run(host="0.0.0.0", port=3000, debug=config.APP_ENV != "production")
