"""Ollama provider: local models over the Ollama HTTP API."""
import time
from typing import Dict, List, Optional
import httpx
import structlog

from pdfchat import config
from pdfchat.errors import EmbeddingProviderError, GenerationProviderError
from pdfchat.providers.registry import GenerationResult, ModelProvider, register_provider

logger = structlog.get_logger()


class OllamaProvider(ModelProvider):
    """Async client for interacting with the Ollama API."""

    name = "ollama"

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url or config.OLLAMA_BASE_URL
        self.timeout = timeout or config.PROVIDER_TIMEOUT
        self.transport = transport
        self.default_chat_model = config.OLLAMA_CHAT_MODEL
        self.default_embedding_model = config.OLLAMA_EMBEDDING_MODEL

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def generate(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> GenerationResult:
        """Send a non-streaming chat completion request to Ollama."""
        model = model or self.default_chat_model

        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
        }

        options = {}
        if temperature is not None:
            options["temperature"] = temperature
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        if options:
            payload["options"] = options

        started = time.monotonic()
        try:
            async with self._client() as client:
                logger.info(
                    "ollama_chat_request",
                    model=model,
                    message_count=len(messages),
                )

                response = await client.post(f"{self.base_url}/api/chat", json=payload)
                response.raise_for_status()
                data = response.json()

        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise GenerationProviderError(f"Ollama is unreachable at {self.base_url}") from e
        except httpx.HTTPError as e:
            logger.error(
                "ollama_http_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise GenerationProviderError(f"Ollama chat request failed: {e}") from e
        except ValueError as e:
            logger.error("ollama_invalid_response", error=str(e))
            raise GenerationProviderError(f"Ollama returned a non-JSON response: {e}") from e

        content = data.get("message", {}).get("content", "")

        logger.info("ollama_chat_response", model=model, response_length=len(content))

        return GenerationResult(
            text=content,
            model=model,
            provider=self.name,
            usage={
                "promptTokens": data.get("prompt_eval_count"),
                "completionTokens": data.get("eval_count"),
            },
            response_time_ms=int((time.monotonic() - started) * 1000),
        )

    async def embed(self, texts: List[str], model: Optional[str] = None) -> List[List[float]]:
        """Generate embeddings, one request per text (the endpoint is not batched)."""
        model = model or self.default_embedding_model
        embeddings = []

        async with self._client() as client:
            for i, text in enumerate(texts):
                try:
                    response = await client.post(
                        f"{self.base_url}/api/embeddings",
                        json={"model": model, "prompt": text},
                    )
                    response.raise_for_status()
                except httpx.HTTPError as e:
                    logger.error("ollama_embedding_error", error=str(e), text_index=i)
                    raise EmbeddingProviderError(
                        f"Ollama embedding request failed: {e}", text_index=i
                    ) from e

                try:
                    embedding = response.json().get("embedding", [])
                except ValueError as e:
                    raise EmbeddingProviderError(
                        f"Ollama returned a non-JSON response: {e}", text_index=i
                    ) from e
                if not embedding:
                    raise EmbeddingProviderError(
                        "Empty embedding returned from Ollama", text_index=i
                    )
                embeddings.append(embedding)

        logger.debug(
            "ollama_embedding_response",
            model=model,
            count=len(embeddings),
            dimension=len(embeddings[0]) if embeddings else None,
        )

        return embeddings

    async def list_models(self) -> List[str]:
        """List all available Ollama models."""
        async with httpx.AsyncClient(timeout=5.0, transport=self.transport) as client:
            response = await client.get(f"{self.base_url}/api/tags")
            response.raise_for_status()
            data = response.json()
            return [m["name"] for m in data.get("models", [])]


register_provider(OllamaProvider.name, OllamaProvider)
