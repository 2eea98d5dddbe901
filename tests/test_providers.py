"""Tests for provider adapters against mocked HTTP transports."""
import json

import httpx
import pytest

from pdfchat.errors import (
    EmbeddingProviderError,
    GenerationProviderError,
    UnknownProviderError,
)
from pdfchat.providers import ProviderRegistry, get_provider_registry
from pdfchat.providers.gemini import GeminiProvider
from pdfchat.providers.huggingface import HuggingFaceProvider, format_prompt
from pdfchat.providers.ollama import OllamaProvider

from conftest import FakeProvider


def _transport(handler, seen):
    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.MockTransport(record)


def _html_transport():
    return _transport(lambda r: httpx.Response(200, text="<html>Bad Gateway</html>"), [])


class TestOllamaProvider:
    @pytest.mark.asyncio
    async def test_generate(self):
        seen = []
        transport = _transport(
            lambda r: httpx.Response(
                200,
                json={"message": {"content": "Hi there"}, "prompt_eval_count": 5, "eval_count": 3},
            ),
            seen,
        )
        provider = OllamaProvider(base_url="http://ollama.test", transport=transport)

        result = await provider.generate(
            [{"role": "user", "content": "Hello"}], model="llama3", temperature=0.3, max_tokens=50
        )

        assert result.text == "Hi there"
        assert result.provider == "ollama"
        assert result.usage == {"promptTokens": 5, "completionTokens": 3}
        body = json.loads(seen[0].content)
        assert seen[0].url.path == "/api/chat"
        assert body["model"] == "llama3"
        assert body["stream"] is False
        assert body["options"] == {"temperature": 0.3, "num_predict": 50}

    @pytest.mark.asyncio
    async def test_generate_http_error(self):
        transport = _transport(lambda r: httpx.Response(500, json={"error": "boom"}), [])
        provider = OllamaProvider(base_url="http://ollama.test", transport=transport)

        with pytest.raises(GenerationProviderError):
            await provider.generate([{"role": "user", "content": "Hello"}])

    @pytest.mark.asyncio
    async def test_embed_one_request_per_text(self):
        seen = []

        def handler(request):
            prompt = json.loads(request.content)["prompt"]
            return httpx.Response(200, json={"embedding": [float(len(prompt)), 1.0]})

        provider = OllamaProvider(base_url="http://ollama.test", transport=_transport(handler, seen))

        vectors = await provider.embed(["a", "bbb"], model="nomic")

        assert vectors == [[1.0, 1.0], [3.0, 1.0]]
        assert [json.loads(r.content)["model"] for r in seen] == ["nomic", "nomic"]

    @pytest.mark.asyncio
    async def test_embed_failure_names_text(self):
        def handler(request):
            if json.loads(request.content)["prompt"] == "bad":
                return httpx.Response(200, json={"embedding": []})
            return httpx.Response(200, json={"embedding": [1.0]})

        provider = OllamaProvider(base_url="http://ollama.test", transport=_transport(handler, []))

        with pytest.raises(EmbeddingProviderError) as excinfo:
            await provider.embed(["ok", "bad", "ok"])

        assert excinfo.value.text_index == 1

    @pytest.mark.asyncio
    async def test_non_json_responses(self):
        provider = OllamaProvider(base_url="http://ollama.test", transport=_html_transport())

        with pytest.raises(GenerationProviderError):
            await provider.generate([{"role": "user", "content": "Hello"}])
        with pytest.raises(EmbeddingProviderError) as excinfo:
            await provider.embed(["a"])

        assert excinfo.value.text_index == 0

    @pytest.mark.asyncio
    async def test_list_models(self):
        transport = _transport(
            lambda r: httpx.Response(200, json={"models": [{"name": "llama3"}, {"name": "nomic"}]}),
            [],
        )
        provider = OllamaProvider(base_url="http://ollama.test", transport=transport)

        assert await provider.list_models() == ["llama3", "nomic"]


class TestGeminiProvider:
    @pytest.mark.asyncio
    async def test_generate_maps_roles_and_system_prompt(self):
        seen = []
        transport = _transport(
            lambda r: httpx.Response(
                200,
                json={
                    "candidates": [{"content": {"parts": [{"text": "Gem"}, {"text": "ini"}]}}],
                    "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 2, "totalTokenCount": 6},
                },
            ),
            seen,
        )
        provider = GeminiProvider(api_key="k", base_url="http://gemini.test/v1beta", transport=transport)

        result = await provider.generate(
            [
                {"role": "system", "content": "Be brief."},
                {"role": "user", "content": "Hi"},
                {"role": "assistant", "content": "Hello"},
                {"role": "user", "content": "Again"},
            ],
            model="gemini-pro",
            temperature=0.5,
        )

        assert result.text == "Gemini"
        assert result.usage["totalTokens"] == 6
        request = seen[0]
        assert request.url.path == "/v1beta/models/gemini-pro:generateContent"
        assert request.headers["x-goog-api-key"] == "k"
        body = json.loads(request.content)
        assert body["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
        assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
        assert body["generationConfig"] == {"temperature": 0.5}

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        provider = GeminiProvider(api_key="", transport=_transport(lambda r: httpx.Response(200), []))
        provider.api_key = None

        with pytest.raises(GenerationProviderError):
            await provider.generate([{"role": "user", "content": "Hi"}])

    @pytest.mark.asyncio
    async def test_no_candidates(self):
        transport = _transport(
            lambda r: httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}}), []
        )
        provider = GeminiProvider(api_key="k", base_url="http://gemini.test", transport=transport)

        with pytest.raises(GenerationProviderError) as excinfo:
            await provider.generate([{"role": "user", "content": "Hi"}])

        assert excinfo.value.details["promptFeedback"] == {"blockReason": "SAFETY"}

    @pytest.mark.asyncio
    async def test_batch_embed(self):
        seen = []
        transport = _transport(
            lambda r: httpx.Response(
                200, json={"embeddings": [{"values": [0.1, 0.2]}, {"values": [0.3, 0.4]}]}
            ),
            seen,
        )
        provider = GeminiProvider(api_key="k", base_url="http://gemini.test", transport=transport)

        vectors = await provider.embed(["one", "two"], model="embedding-001")

        assert vectors == [[0.1, 0.2], [0.3, 0.4]]
        assert seen[0].url.path == "/models/embedding-001:batchEmbedContents"
        assert len(json.loads(seen[0].content)["requests"]) == 2

    @pytest.mark.asyncio
    async def test_embed_http_error(self):
        transport = _transport(lambda r: httpx.Response(429, json={"error": "quota"}), [])
        provider = GeminiProvider(api_key="k", base_url="http://gemini.test", transport=transport)

        with pytest.raises(EmbeddingProviderError):
            await provider.embed(["one"])

    @pytest.mark.asyncio
    async def test_non_json_responses(self):
        provider = GeminiProvider(api_key="k", base_url="http://gemini.test", transport=_html_transport())

        with pytest.raises(GenerationProviderError) as excinfo:
            await provider.generate([{"role": "user", "content": "Hi"}])
        assert excinfo.value.status_code == 502

        with pytest.raises(EmbeddingProviderError) as excinfo:
            await provider.embed(["one"])
        assert excinfo.value.text_index == 0


class TestHuggingFaceProvider:
    def test_format_prompt(self):
        prompt = format_prompt(
            [
                {"role": "system", "content": "Be kind."},
                {"role": "user", "content": "Hi"},
                {"role": "assistant", "content": "Hello"},
            ]
        )

        assert prompt == "Be kind.\n\nUser: Hi\n\nAssistant: Hello\n\nAssistant:"

    @pytest.mark.asyncio
    async def test_generate(self):
        seen = []
        transport = _transport(
            lambda r: httpx.Response(200, json=[{"generated_text": "  An answer. "}]), seen
        )
        provider = HuggingFaceProvider(api_key="hf", base_url="http://hf.test", transport=transport)

        result = await provider.generate(
            [{"role": "user", "content": "Q"}], model="org/model", max_tokens=20
        )

        assert result.text == "An answer."
        assert seen[0].url.path == "/models/org/model"
        assert seen[0].headers["authorization"] == "Bearer hf"
        assert json.loads(seen[0].content)["parameters"] == {
            "return_full_text": False,
            "max_new_tokens": 20,
        }

    @pytest.mark.asyncio
    async def test_embed(self):
        transport = _transport(lambda r: httpx.Response(200, json=[[1.0, 0.0], [0.0, 1.0]]), [])
        provider = HuggingFaceProvider(api_key="hf", base_url="http://hf.test", transport=transport)

        assert await provider.embed(["a", "b"]) == [[1.0, 0.0], [0.0, 1.0]]

    @pytest.mark.asyncio
    async def test_embed_unexpected_shape(self):
        transport = _transport(lambda r: httpx.Response(200, json={"error": "loading"}), [])
        provider = HuggingFaceProvider(api_key="hf", base_url="http://hf.test", transport=transport)

        with pytest.raises(EmbeddingProviderError):
            await provider.embed(["a"])

    @pytest.mark.asyncio
    async def test_non_json_responses(self):
        provider = HuggingFaceProvider(api_key="hf", base_url="http://hf.test", transport=_html_transport())

        with pytest.raises(GenerationProviderError):
            await provider.generate([{"role": "user", "content": "Q"}])
        with pytest.raises(EmbeddingProviderError):
            await provider.embed(["a"])


class TestProviderRegistry:
    def test_builtin_providers_registered(self):
        assert {"gemini", "huggingface", "ollama"} <= set(get_provider_registry().names())

    def test_unknown_provider(self):
        registry = ProviderRegistry()
        registry.register("fake", FakeProvider)

        with pytest.raises(UnknownProviderError) as excinfo:
            registry.get("missing")

        assert excinfo.value.details == {"availableProviders": ["fake"]}

    def test_instances_are_created_once(self):
        registry = ProviderRegistry()
        registry.register("fake", FakeProvider)

        assert registry.get("fake") is registry.get("fake")
