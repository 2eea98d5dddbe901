"""Request body models for the HTTP API."""
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class AskRequest(_Request):
    pdf_id: str = Field(alias="pdfId", min_length=1)
    question: str = Field(min_length=1, max_length=4000)
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    provider: Optional[str] = None

    @field_validator("pdf_id", mode="before")
    @classmethod
    def coerce_numeric_id(cls, value):
        # Older clients send the time-based id as a number
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class ChatMessage(_Request):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(_Request):
    user_prompt: str = Field(alias="userPrompt", min_length=1)
    provider: Optional[str] = None
    model: Optional[str] = None
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    chat_history: List[ChatMessage] = Field(default_factory=list, alias="chatHistory")

    def history(self) -> List[dict]:
        return [message.model_dump() for message in self.chat_history]


class ScenarioRequest(_Request):
    scenario: str = Field(min_length=1)
    context: ChatRequest
