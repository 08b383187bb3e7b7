"""Shared test helpers: builders, fake backends and an event collector."""

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from chattree.generation.service import GenerationRun
from chattree.models import (
    Conversation,
    GenerationEvent,
    GenerationParameters,
    Message,
    MessageRole,
    ModelConfig,
    WebSearchSource,
)
from chattree.providers.base import (
    GenerationRequest,
    GenerationResult,
    LLMProvider,
    StreamChunk,
    ToolCallRequest,
)
from chattree.trees.tree import append_child
from chattree.websearch.base import SearchBackend, SearchBackendError


def make_message(role: MessageRole = "user", content: str = "Hello", **overrides: Any) -> Message:
    return Message(role=role, content=content, **overrides)


def make_model_config(**overrides: Any) -> ModelConfig:
    """Zephyr-style framing tokens; the provider is the fake one."""
    values: dict[str, Any] = {
        "id": "test-model",
        "name": "Test Model",
        "provider": "fake",
        "preprompt": "",
        "user_message_token": "<|user|>\n",
        "user_message_end_token": "</s>\n",
        "assistant_message_token": "<|assistant|>\n",
        "assistant_message_end_token": "</s>\n",
        "preprompt_token": "<|system|>\n",
        "parameters": GenerationParameters(max_new_tokens=64),
    }
    values.update(overrides)
    return ModelConfig(**values)


def make_linear_conversation(
    turns: list[tuple[MessageRole, str]] | None = None,
    *,
    preprompt: str | None = "You are helpful.",
    model: str = "test-model",
) -> Conversation:
    """A conversation holding a system root followed by ``turns`` in a straight line."""
    conv = Conversation(model=model, preprompt=preprompt)
    append_child(conv, Message(role="system", content=preprompt or ""))
    for role, content in turns if turns is not None else [("user", "Hi"), ("assistant", "Hello!")]:
        append_child(conv, Message(role=role, content=content))
    return conv


def make_source(index: int = 1) -> WebSearchSource:
    return WebSearchSource(
        title=f"Result {index}",
        link=f"https://example.com/{index}",
        snippet=f"Snippet number {index}",
    )


class FakeProvider(LLMProvider):
    """Streams canned tokens. ``generate`` answers from a queue of canned replies.

    ``gate`` (when set) holds the stream after the first token until it is
    released, so tests can act mid-generation. ``generate_gate`` does the same
    for ``generate``.
    """

    def __init__(
        self,
        tokens: list[str] | None = None,
        *,
        finish_reason: str | None = "stop",
        replies: list[str] | None = None,
        default_reply: str = "Fake reply",
        tool_calls: list[ToolCallRequest] | None = None,
        stream_error: Exception | None = None,
        generate_error: Exception | None = None,
        generate_gate: asyncio.Event | None = None,
        tool_error: Exception | None = None,
        gate: asyncio.Event | None = None,
        provider_name: str = "fake",
    ) -> None:
        self.tokens = ["Hello", " world"] if tokens is None else tokens
        self.finish_reason = finish_reason
        self.replies = list(replies or [])
        self.default_reply = default_reply
        self.tool_calls = tool_calls or []
        self.stream_error = stream_error
        self.generate_error = generate_error
        self.generate_gate = generate_gate
        self.tool_error = tool_error
        self.gate = gate
        self.provider_name = provider_name
        self.requests: list[GenerationRequest] = []
        self.stream_requests: list[GenerationRequest] = []
        self.stream_closed = False

    @property
    def name(self) -> str:
        return self.provider_name

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        if self.generate_gate is not None:
            await self.generate_gate.wait()
        if self.generate_error is not None:
            raise self.generate_error
        content = self.replies.pop(0) if self.replies else self.default_reply
        return GenerationResult(content=content, model=request.model, finish_reason="stop")

    async def generate_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamChunk]:
        self.stream_requests.append(request)
        try:
            for index, token in enumerate(self.tokens):
                if index == 1 and self.gate is not None:
                    await self.gate.wait()
                yield StreamChunk(type="text_delta", text=token)
            if self.stream_error is not None:
                raise self.stream_error
            yield StreamChunk(
                type="message_stop",
                is_final=True,
                result=GenerationResult(
                    content="".join(self.tokens),
                    model=request.model,
                    finish_reason=self.finish_reason,
                ),
            )
        finally:
            self.stream_closed = True

    async def request_tool_calls(
        self, request: GenerationRequest, tools: list[dict[str, Any]]
    ) -> list[ToolCallRequest]:
        if self.tool_error is not None:
            raise self.tool_error
        return list(self.tool_calls)


class FakeSearchBackend(SearchBackend):
    """Returns ``responses`` in order, one list per search; [] once exhausted."""

    def __init__(
        self,
        responses: list[list[WebSearchSource]] | None = None,
        *,
        error: Exception | None = None,
        delay: float | None = None,
    ) -> None:
        self.responses = list(responses or [])
        self.error = error
        self.delay = delay
        self.queries: list[str] = []

    @property
    def name(self) -> str:
        return "fake-search"

    async def search(self, query: str, *, limit: int = 5) -> list[WebSearchSource]:
        self.queries.append(query)
        if self.delay is not None:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)[:limit] if self.responses else []


def failing_search_backend(message: str = "backend down") -> FakeSearchBackend:
    return FakeSearchBackend(error=SearchBackendError(message))


async def collect_events(run: GenerationRun) -> list[GenerationEvent]:
    return [event async for event in run]
