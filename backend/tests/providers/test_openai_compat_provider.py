"""Contract tests for the OpenAI-compatible completions providers."""

from unittest.mock import AsyncMock, MagicMock

from chattree.generation.prompt import assemble
from chattree.models import GenerationParameters, Message
from chattree.providers.base import GenerationRequest
from chattree.providers.openai import OpenAIProvider
from chattree.providers.openai_compat import OpenAICompatibleProvider
from tests.fixtures import make_model_config


def _make_request(parameters: GenerationParameters | None = None) -> GenerationRequest:
    return GenerationRequest(
        model="HuggingFaceH4/zephyr-7b-beta",
        prompt=assemble(
            [Message(role="system", content="Be helpful."), Message(role="user", content="Hi")],
            make_model_config(),
        ),
        parameters=parameters or GenerationParameters(max_new_tokens=128, stop=["</s>"]),
    )


def _make_completion(text: str = "Hello!", finish_reason: str = "stop") -> MagicMock:
    choice = MagicMock()
    choice.text = text
    choice.finish_reason = finish_reason
    response = MagicMock()
    response.choices = [choice]
    response.model = "zephyr"
    response.usage.prompt_tokens = 12
    response.usage.completion_tokens = 3
    return response


def _make_chunk(text: str, finish_reason: str | None = None) -> MagicMock:
    choice = MagicMock()
    choice.text = text
    choice.finish_reason = finish_reason
    chunk = MagicMock()
    chunk.model = "zephyr"
    chunk.choices = [choice]
    return chunk


class MockStream:
    def __init__(self, items: list) -> None:
        self._items = items
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self._items:
            yield item

    async def close(self) -> None:
        self.closed = True


def _make_client(result) -> AsyncMock:
    client = AsyncMock()
    client.completions.create = AsyncMock(return_value=result)
    return client


class TestOpenAICompatibleGenerate:
    async def test_sends_framed_text_prompt(self):
        client = _make_client(_make_completion())
        await OpenAICompatibleProvider(client).generate(_make_request())
        kwargs = client.completions.create.call_args.kwargs
        assert kwargs["prompt"].startswith("<|system|>\nBe helpful.</s><|user|>\nHi")
        assert kwargs["prompt"].endswith("<|assistant|>\n")
        assert kwargs["max_tokens"] == 128
        assert kwargs["stop"] == ["</s>"]

    async def test_strips_echoed_stop_sequence(self):
        client = _make_client(_make_completion("Hello!</s>"))
        result = await OpenAICompatibleProvider(client).generate(_make_request())
        assert result.content == "Hello!"
        assert result.usage == {"input_tokens": 12, "output_tokens": 3}

    async def test_maps_sampling_parameters(self):
        client = _make_client(_make_completion())
        await OpenAICompatibleProvider(client).generate(
            _make_request(GenerationParameters(temperature=0.2, top_p=0.9, top_k=50))
        )
        kwargs = client.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0.2
        assert kwargs["top_p"] == 0.9
        assert "top_k" not in kwargs
        assert "stop" not in kwargs


class TestOpenAICompatibleStream:
    async def test_streams_and_reports_finish_reason(self):
        stream = MockStream([_make_chunk("Hel"), _make_chunk("lo", finish_reason="length")])
        client = _make_client(stream)

        chunks = [c async for c in OpenAICompatibleProvider(client).generate_stream(_make_request())]

        assert [c.text for c in chunks if not c.is_final] == ["Hel", "lo"]
        assert chunks[-1].result.content == "Hello"
        assert chunks[-1].result.finish_reason == "length"
        assert client.completions.create.call_args.kwargs["stream"] is True
        assert stream.closed

    async def test_skips_chunks_without_choices(self):
        empty = MagicMock()
        empty.model = "zephyr"
        empty.choices = []
        client = _make_client(MockStream([empty, _make_chunk("ok", finish_reason="stop")]))
        chunks = [c async for c in OpenAICompatibleProvider(client).generate_stream(_make_request())]
        assert [c.text for c in chunks if not c.is_final] == ["ok"]

    async def test_closing_early_closes_stream(self):
        stream = MockStream([_make_chunk("a"), _make_chunk("b")])
        chunks = OpenAICompatibleProvider(_make_client(stream)).generate_stream(_make_request())
        await chunks.__anext__()
        await chunks.aclose()
        assert stream.closed


class TestOpenAIProvider:
    async def test_name_and_injected_client(self):
        client = _make_client(_make_completion("Hi"))
        provider = OpenAIProvider(client=client)
        assert provider.name == "openai"
        assert (await provider.generate(_make_request())).content == "Hi"

    async def test_compat_name(self):
        assert OpenAICompatibleProvider(_make_client(None)).name == "openai-compatible"
