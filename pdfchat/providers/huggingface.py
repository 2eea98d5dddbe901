"""Hugging Face Inference API provider."""
import time
from typing import Any, Dict, List, Optional
import httpx
import structlog

from pdfchat import config
from pdfchat.errors import EmbeddingProviderError, GenerationProviderError, ProviderError
from pdfchat.providers.registry import GenerationResult, ModelProvider, register_provider

logger = structlog.get_logger()


def format_prompt(messages: List[Dict[str, str]]) -> str:
    """Flatten role/content messages into a plain text-generation prompt."""
    lines = []
    for message in messages:
        role = message.get("role", "user")
        if role == "system":
            lines.append(message["content"])
        elif role in ("assistant", "ai", "model"):
            lines.append(f"Assistant: {message['content']}")
        else:
            lines.append(f"User: {message['content']}")
    lines.append("Assistant:")
    return "\n\n".join(lines)


class HuggingFaceProvider(ModelProvider):
    """Text generation and feature extraction through hosted inference."""

    name = "huggingface"

    def __init__(
        self,
        api_key: str = None,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or config.HUGGINGFACE_API_KEY
        self.base_url = base_url or config.HUGGINGFACE_BASE_URL
        self.timeout = timeout or config.PROVIDER_TIMEOUT
        self.transport = transport
        self.default_chat_model = config.HUGGINGFACE_CHAT_MODEL
        self.default_embedding_model = config.HUGGINGFACE_EMBEDDING_MODEL

    async def _post(self, path: str, payload: Dict[str, Any]) -> Any:
        if not self.api_key:
            raise ProviderError("HUGGINGFACE_API_KEY is not set in environment variables")

        headers = {"Authorization": f"Bearer {self.api_key}"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(f"{self.base_url}/{path}", json=payload, headers=headers)
            response.raise_for_status()

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Hugging Face returned a non-JSON response: {e}") from e

    async def generate(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> GenerationResult:
        model = model or self.default_chat_model

        parameters: Dict[str, Any] = {"return_full_text": False}
        if temperature is not None:
            parameters["temperature"] = temperature
        if max_tokens is not None:
            parameters["max_new_tokens"] = max_tokens

        logger.info("huggingface_generate_request", model=model, message_count=len(messages))

        started = time.monotonic()
        try:
            data = await self._post(
                f"models/{model}",
                {"inputs": format_prompt(messages), "parameters": parameters},
            )
        except ProviderError as e:
            raise GenerationProviderError(e.message) from e
        except httpx.HTTPError as e:
            logger.error("huggingface_generate_error", model=model, error=str(e))
            raise GenerationProviderError(f"Hugging Face generation request failed: {e}") from e

        if isinstance(data, list) and data:
            text = data[0].get("generated_text", "")
        elif isinstance(data, dict):
            text = data.get("generated_text", "")
        else:
            raise GenerationProviderError("Unexpected response from Hugging Face inference")

        return GenerationResult(
            text=text.strip(),
            model=model,
            provider=self.name,
            response_time_ms=int((time.monotonic() - started) * 1000),
        )

    async def embed(self, texts: List[str], model: Optional[str] = None) -> List[List[float]]:
        if not texts:
            return []

        model = model or self.default_embedding_model
        try:
            data = await self._post(
                f"pipeline/feature-extraction/{model}",
                {"inputs": texts, "options": {"wait_for_model": True}},
            )
        except ProviderError as e:
            raise EmbeddingProviderError(e.message, text_index=0) from e
        except httpx.HTTPError as e:
            logger.error("huggingface_embedding_error", model=model, error=str(e))
            raise EmbeddingProviderError(
                f"Hugging Face embedding request failed: {e}", text_index=0
            ) from e

        if not isinstance(data, list) or len(data) != len(texts):
            raise EmbeddingProviderError(
                "Unexpected feature-extraction response from Hugging Face", text_index=0
            )
        for i, embedding in enumerate(data):
            if not embedding:
                raise EmbeddingProviderError(
                    "Empty embedding returned from Hugging Face", text_index=i
                )

        return data


register_provider(HuggingFaceProvider.name, HuggingFaceProvider)
