"""Anthropic (Claude) LLM provider implementation."""

import time
from collections.abc import AsyncIterator
from typing import Any

from anthropic import AsyncAnthropic

from chattree.providers.base import (
    GenerationRequest,
    GenerationResult,
    LLMProvider,
    StreamChunk,
    ToolCallRequest,
)


class AnthropicProvider(LLMProvider):
    """LLM provider backed by Anthropic's Messages API.

    Uses the chat shape of the assembled prompt. A trailing assistant turn
    (continue) is sent as a prefill, which the API extends in place.
    """

    suggested_models = [
        "claude-sonnet-4-5-20250929",
        "claude-haiku-4-5-20251001",
        "claude-opus-4-6",
    ]

    def __init__(self, client: AsyncAnthropic) -> None:
        self._client = client

    @property
    def name(self) -> str:
        return "anthropic"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        params = self._build_params(request)
        start = time.monotonic()
        response = await self._client.messages.create(**params)
        latency_ms = int((time.monotonic() - start) * 1000)

        return GenerationResult(
            content=self._extract_text(response),
            model=response.model,
            finish_reason=response.stop_reason,
            usage={
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
            latency_ms=latency_ms,
        )

    async def generate_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamChunk]:
        params = self._build_params(request)
        start = time.monotonic()
        accumulated_text = ""
        input_tokens = 0
        output_tokens = 0
        stop_reason: str | None = None
        model = request.model

        stream = await self._client.messages.create(**params, stream=True)
        try:
            async for event in stream:
                if event.type == "message_start":
                    model = event.message.model
                    input_tokens = event.message.usage.input_tokens
                elif event.type == "content_block_delta":
                    text = getattr(event.delta, "text", None)
                    if text is not None:
                        accumulated_text += text
                        yield StreamChunk(type="text_delta", text=text)
                elif event.type == "message_delta":
                    stop_reason = event.delta.stop_reason
                    output_tokens = event.usage.output_tokens
        finally:
            # Closing releases the HTTP connection when the consumer cancels
            await stream.close()

        latency_ms = int((time.monotonic() - start) * 1000)
        yield StreamChunk(
            type="message_stop",
            is_final=True,
            result=GenerationResult(
                content=accumulated_text,
                model=model,
                finish_reason=stop_reason,
                usage={"input_tokens": input_tokens, "output_tokens": output_tokens},
                latency_ms=latency_ms,
            ),
        )

    async def request_tool_calls(
        self,
        request: GenerationRequest,
        tools: list[dict[str, Any]],
    ) -> list[ToolCallRequest]:
        if not tools:
            return []
        params = self._build_params(request)
        params["tools"] = [
            {
                "name": t["name"],
                "description": t.get("description", ""),
                "input_schema": t.get("input_schema", {"type": "object", "properties": {}}),
            }
            for t in tools
        ]
        response = await self._client.messages.create(**params)
        return [
            ToolCallRequest(name=block.name, parameters=dict(block.input), call_id=block.id)
            for block in response.content
            if block.type == "tool_use"
        ]

    @staticmethod
    def _build_params(request: GenerationRequest) -> dict[str, Any]:
        """Build kwargs dict for client.messages.create()."""
        p = request.parameters
        params: dict[str, Any] = {
            "model": request.model,
            "max_tokens": p.max_new_tokens,
            "messages": [
                {"role": t["role"], "content": t["content"]} for t in request.prompt.turns
            ],
        }
        if request.prompt.system is not None:
            params["system"] = request.prompt.system
        if p.temperature is not None:
            params["temperature"] = p.temperature
        if p.top_p is not None:
            params["top_p"] = p.top_p
        if p.top_k is not None:
            params["top_k"] = p.top_k
        if p.stop:
            params["stop_sequences"] = p.stop
        return params

    @staticmethod
    def _extract_text(response: Any) -> str:
        """Extract text content from Anthropic Message response."""
        parts = []
        for block in response.content:
            if block.type == "text":
                parts.append(block.text)
        return "".join(parts)
