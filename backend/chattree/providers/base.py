"""Abstract LLM provider interface and shared data types."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from pydantic import BaseModel, Field

from chattree.generation.prompt import AssembledPrompt
from chattree.models import GenerationParameters


class GenerationRequest(BaseModel):
    """Everything a provider needs to make an API call."""

    model: str
    prompt: AssembledPrompt
    parameters: GenerationParameters = Field(default_factory=GenerationParameters)


class GenerationResult(BaseModel):
    """Full response from a provider after generation completes."""

    content: str
    model: str
    finish_reason: str | None = None
    usage: dict[str, int] | None = None
    latency_ms: int | None = None


class StreamChunk(BaseModel):
    """A single delta in a streaming response."""

    type: str  # "text_delta", "message_stop"
    text: str = ""
    is_final: bool = False
    result: GenerationResult | None = None


class ToolCallRequest(BaseModel):
    """A tool invocation the backend asked for."""

    name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    call_id: str | None = None


# Finish reasons that mean the backend cut the answer off rather than finishing it
TRUNCATED_FINISH_REASONS = frozenset({"length", "max_tokens"})


class LLMProvider(ABC):
    """Abstract interface for LLM providers.

    ``generate_stream`` must stop issuing work when its iterator is closed:
    consumers cancel a generation by closing the stream.
    """

    suggested_models: list[str] = []

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g., 'anthropic')."""
        ...

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Send a non-streaming generation request. Returns the full result."""
        ...

    @abstractmethod
    def generate_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamChunk]:
        """Send a streaming generation request. Yields chunks."""
        ...

    async def request_tool_calls(
        self,
        request: GenerationRequest,
        tools: list[dict[str, Any]],
    ) -> list[ToolCallRequest]:
        """Ask the backend which tools it wants to call. Backends without tool use return []."""
        return []
