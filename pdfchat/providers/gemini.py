"""Google Gemini provider over the Generative Language REST API."""
import time
from typing import Any, Dict, List, Optional
import httpx
import structlog

from pdfchat import config
from pdfchat.errors import EmbeddingProviderError, GenerationProviderError, ProviderError
from pdfchat.providers.registry import GenerationResult, ModelProvider, register_provider

logger = structlog.get_logger()

# Gemini calls the assistant role "model"
_ROLE_MAP = {"user": "user", "human": "user", "assistant": "model", "ai": "model", "model": "model"}


class GeminiProvider(ModelProvider):
    """Async client for Gemini chat and embedding models."""

    name = "gemini"

    def __init__(
        self,
        api_key: str = None,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or config.GOOGLE_GENAI_API_KEY
        self.base_url = base_url or config.GEMINI_BASE_URL
        self.timeout = timeout or config.PROVIDER_TIMEOUT
        self.transport = transport
        self.default_chat_model = config.GEMINI_CHAT_MODEL
        self.default_embedding_model = config.GEMINI_EMBEDDING_MODEL

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ProviderError("GOOGLE_GENAI_API_KEY is not set in environment variables")
        return {"x-goog-api-key": self.api_key}

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = self._headers()
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(f"{self.base_url}/{path}", json=payload, headers=headers)
            response.raise_for_status()

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"Gemini returned a non-JSON response: {e}") from e
        if not isinstance(data, dict):
            raise ProviderError("Gemini returned an unexpected response body")
        return data

    @staticmethod
    def _to_contents(messages: List[Dict[str, str]]):
        """Split role/content messages into a system instruction and Gemini contents."""
        system_parts = []
        contents = []
        for message in messages:
            role = message.get("role", "user")
            if role == "system":
                system_parts.append({"text": message["content"]})
                continue
            contents.append(
                {"role": _ROLE_MAP.get(role, "user"), "parts": [{"text": message["content"]}]}
            )
        return system_parts, contents

    async def generate(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> GenerationResult:
        model = model or self.default_chat_model
        system_parts, contents = self._to_contents(messages)

        payload: Dict[str, Any] = {"contents": contents}
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}

        generation_config = {}
        if temperature is not None:
            generation_config["temperature"] = temperature
        if max_tokens is not None:
            generation_config["maxOutputTokens"] = max_tokens
        if generation_config:
            payload["generationConfig"] = generation_config

        logger.info("gemini_generate_request", model=model, message_count=len(messages))

        started = time.monotonic()
        try:
            data = await self._post(f"models/{model}:generateContent", payload)
        except ProviderError as e:
            raise GenerationProviderError(e.message) from e
        except httpx.HTTPError as e:
            logger.error("gemini_generate_error", model=model, error=str(e))
            raise GenerationProviderError(f"Gemini generation request failed: {e}") from e

        candidates = data.get("candidates") or []
        if not candidates:
            raise GenerationProviderError(
                "Gemini returned no candidates",
                details={"promptFeedback": data.get("promptFeedback")},
            )
        parts = candidates[0].get("content", {}).get("parts", [])
        text = "".join(part.get("text", "") for part in parts)

        usage = data.get("usageMetadata", {})
        logger.info("gemini_generate_response", model=model, response_length=len(text))

        return GenerationResult(
            text=text,
            model=model,
            provider=self.name,
            usage={
                "promptTokens": usage.get("promptTokenCount"),
                "completionTokens": usage.get("candidatesTokenCount"),
                "totalTokens": usage.get("totalTokenCount"),
            },
            response_time_ms=int((time.monotonic() - started) * 1000),
        )

    async def embed(self, texts: List[str], model: Optional[str] = None) -> List[List[float]]:
        """Embed a batch of texts with a single batchEmbedContents call."""
        if not texts:
            return []

        model = model or self.default_embedding_model
        payload = {
            "requests": [
                {"model": f"models/{model}", "content": {"parts": [{"text": text}]}}
                for text in texts
            ]
        }

        try:
            data = await self._post(f"models/{model}:batchEmbedContents", payload)
        except ProviderError as e:
            raise EmbeddingProviderError(e.message, text_index=0) from e
        except httpx.HTTPError as e:
            logger.error("gemini_embedding_error", model=model, error=str(e))
            raise EmbeddingProviderError(
                f"Gemini embedding request failed: {e}", text_index=0
            ) from e

        embeddings = [item.get("values", []) for item in data.get("embeddings", [])]
        if len(embeddings) != len(texts):
            raise EmbeddingProviderError(
                f"Gemini returned {len(embeddings)} embeddings for {len(texts)} texts",
                text_index=min(len(embeddings), len(texts) - 1),
            )
        for i, embedding in enumerate(embeddings):
            if not embedding:
                raise EmbeddingProviderError("Empty embedding returned from Gemini", text_index=i)

        return embeddings


register_provider(GeminiProvider.name, GeminiProvider)
