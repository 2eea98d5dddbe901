"""Generic chat over the registered model providers.

Also provides "scenarios": named presets (system prompt, default provider,
model and temperature) for specialised responses.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional
import structlog

from pdfchat import config
from pdfchat.errors import ValidationError
from pdfchat.providers import GenerationResult, ProviderRegistry, get_provider_registry

logger = structlog.get_logger()


@dataclass(frozen=True)
class Scenario:
    """Preset for a specialised response."""
    system_prompt: str
    default_provider: Optional[str] = None
    default_model: Optional[str] = None
    temperature: float = 0.7


SCENARIOS: Dict[str, Scenario] = {
    "coding": Scenario(
        system_prompt="You are an expert programming assistant. Provide clear, concise code solutions.",
        temperature=0.2,
    ),
    "writing": Scenario(
        system_prompt="You are a professional writing assistant. Help create high-quality, coherent text.",
        temperature=0.9,
    ),
    "analysis": Scenario(
        system_prompt="You are a detailed analytical assistant. Provide in-depth, structured insights.",
        temperature=0.4,
    ),
}


class ChatService:
    """Dispatches chat requests to a provider chosen by key."""

    def __init__(self, providers: Optional[ProviderRegistry] = None):
        self.providers = providers or get_provider_registry()

    async def chat(
        self,
        user_prompt: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        chat_history: Optional[List[Dict[str, str]]] = None,
        max_tokens: Optional[int] = None,
    ) -> GenerationResult:
        """Send one user turn, with optional prior history, to a provider.

        Raises:
            ValidationError: If the prompt is empty
            UnknownProviderError: If ``provider`` is not registered
            GenerationProviderError: If the provider call fails
        """
        if not user_prompt or not user_prompt.strip():
            raise ValidationError("User prompt is required")

        provider_name = provider or config.CHAT_PROVIDER
        backend = self.providers.get(provider_name)

        messages = [{"role": "system", "content": system_prompt or config.DEFAULT_SYSTEM_PROMPT}]
        messages.extend(chat_history or [])
        messages.append({"role": "user", "content": user_prompt})

        logger.info(
            "chat_request",
            provider=provider_name,
            model=model,
            history_length=len(chat_history or []),
        )

        return await backend.generate(
            messages,
            model=model,
            temperature=temperature if temperature is not None else config.DEFAULT_TEMPERATURE,
            max_tokens=max_tokens or config.MAX_OUTPUT_TOKENS,
        )

    async def specialized_response(
        self,
        scenario: str,
        user_prompt: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        chat_history: Optional[List[Dict[str, str]]] = None,
    ) -> GenerationResult:
        """Chat using a named scenario's presets; explicit arguments win.

        Raises:
            ValidationError: If the scenario is unknown
        """
        preset = SCENARIOS.get(scenario)
        if preset is None:
            raise ValidationError(
                f'Unsupported scenario: "{scenario}"',
                details={"availableScenarios": sorted(SCENARIOS)},
            )

        return await self.chat(
            user_prompt,
            provider=provider or preset.default_provider,
            model=model or preset.default_model,
            system_prompt=system_prompt or preset.system_prompt,
            temperature=temperature if temperature is not None else preset.temperature,
            chat_history=chat_history,
        )
