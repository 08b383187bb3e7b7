"""Shared base class for OpenAI-compatible text-completion providers.

Sends the framed text prompt to the completions endpoint, which is what
self-hosted inference servers (TGI, vLLM, llama.cpp) expose for models that
rely on explicit chat-template tokens. OpenAIProvider is a thin subclass that
only differs in client configuration.
"""

import time
from collections.abc import AsyncIterator
from typing import Any

from openai import AsyncOpenAI

from chattree.providers.base import (
    GenerationRequest,
    GenerationResult,
    LLMProvider,
    StreamChunk,
)


class OpenAICompatibleProvider(LLMProvider):
    """Base provider for any API that speaks the OpenAI completions protocol."""

    def __init__(self, client: AsyncOpenAI) -> None:
        self._client = client

    @property
    def name(self) -> str:
        return "openai-compatible"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        params = self._build_params(request)
        start = time.monotonic()
        response = await self._client.completions.create(**params)
        latency_ms = int((time.monotonic() - start) * 1000)

        choice = response.choices[0]
        usage = None
        if response.usage is not None:
            usage = {
                "input_tokens": response.usage.prompt_tokens,
                "output_tokens": response.usage.completion_tokens,
            }
        return GenerationResult(
            content=self._strip_stop(choice.text or "", request.parameters.stop),
            model=response.model,
            finish_reason=choice.finish_reason,
            usage=usage,
            latency_ms=latency_ms,
        )

    async def generate_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamChunk]:
        params = self._build_params(request)
        params["stream"] = True

        start = time.monotonic()
        accumulated_text = ""
        finish_reason: str | None = None
        model = request.model

        stream = await self._client.completions.create(**params)
        try:
            async for chunk in stream:
                if chunk.model:
                    model = chunk.model
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.text:
                    accumulated_text += choice.text
                    yield StreamChunk(type="text_delta", text=choice.text)
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        finally:
            await stream.close()

        latency_ms = int((time.monotonic() - start) * 1000)
        yield StreamChunk(
            type="message_stop",
            is_final=True,
            result=GenerationResult(
                content=accumulated_text,
                model=model,
                finish_reason=finish_reason,
                latency_ms=latency_ms,
            ),
        )

    @staticmethod
    def _build_params(request: GenerationRequest) -> dict[str, Any]:
        """Build kwargs dict for client.completions.create()."""
        p = request.parameters
        params: dict[str, Any] = {
            "model": request.model,
            "prompt": request.prompt.text,
            "max_tokens": p.max_new_tokens,
        }
        if p.temperature is not None:
            params["temperature"] = p.temperature
        if p.top_p is not None:
            params["top_p"] = p.top_p
        # top_k is ignored, the completions API doesn't support it
        if p.stop:
            params["stop"] = p.stop
        if p.repetition_penalty is not None:
            params["frequency_penalty"] = p.repetition_penalty
        return params

    @staticmethod
    def _strip_stop(text: str, stop: list[str]) -> str:
        """Trim a trailing stop sequence some servers echo back."""
        text = text.rstrip()
        for sequence in stop:
            if sequence and text.endswith(sequence):
                text = text[: -len(sequence)].rstrip()
        return text
