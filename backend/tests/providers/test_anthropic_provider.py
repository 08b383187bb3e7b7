"""Contract tests for AnthropicProvider with mocked AsyncAnthropic client."""

from unittest.mock import AsyncMock, MagicMock

from chattree.generation.prompt import assemble
from chattree.models import GenerationParameters, Message
from chattree.providers.anthropic import AnthropicProvider
from chattree.providers.base import GenerationRequest
from tests.fixtures import make_model_config


def _make_mock_message(
    content_text: str = "Hello!",
    model: str = "claude-sonnet-4-5-20250929",
    stop_reason: str = "end_turn",
    input_tokens: int = 10,
    output_tokens: int = 5,
) -> MagicMock:
    """Create a mock Anthropic Message response."""
    text_block = MagicMock()
    text_block.type = "text"
    text_block.text = content_text

    message = MagicMock()
    message.content = [text_block]
    message.model = model
    message.stop_reason = stop_reason
    message.usage.input_tokens = input_tokens
    message.usage.output_tokens = output_tokens
    return message


def _make_request(
    messages: list[Message] | None = None,
    parameters: GenerationParameters | None = None,
    is_continue: bool = False,
) -> GenerationRequest:
    messages = messages or [
        Message(role="system", content="Be helpful."),
        Message(role="user", content="Hello"),
    ]
    return GenerationRequest(
        model="claude-sonnet-4-5-20250929",
        prompt=assemble(messages, make_model_config(), is_continue=is_continue),
        parameters=parameters or GenerationParameters(temperature=0.7, max_new_tokens=1024),
    )


def _make_mock_client(message: MagicMock | None = None) -> AsyncMock:
    client = AsyncMock()
    client.messages.create = AsyncMock(return_value=message or _make_mock_message())
    return client


class TestAnthropicGenerate:
    async def test_name(self):
        assert AnthropicProvider(_make_mock_client()).name == "anthropic"

    async def test_returns_content_and_usage(self):
        provider = AnthropicProvider(
            _make_mock_client(_make_mock_message("Hi there!", input_tokens=25, output_tokens=10))
        )
        result = await provider.generate(_make_request())
        assert result.content == "Hi there!"
        assert result.usage == {"input_tokens": 25, "output_tokens": 10}
        assert result.finish_reason == "end_turn"
        assert result.latency_ms is not None

    async def test_sends_chat_shape(self):
        client = _make_mock_client()
        await AnthropicProvider(client).generate(_make_request())
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "Be helpful."
        assert kwargs["messages"] == [{"role": "user", "content": "Hello"}]
        assert kwargs["max_tokens"] == 1024
        assert kwargs["temperature"] == 0.7

    async def test_omits_unset_parameters(self):
        client = _make_mock_client()
        await AnthropicProvider(client).generate(
            _make_request(
                [Message(role="system", content=""), Message(role="user", content="Hi")],
                GenerationParameters(),
            )
        )
        kwargs = client.messages.create.call_args.kwargs
        assert "system" not in kwargs
        assert "temperature" not in kwargs
        assert "top_k" not in kwargs
        assert "stop_sequences" not in kwargs

    async def test_passes_sampling_controls(self):
        client = _make_mock_client()
        await AnthropicProvider(client).generate(
            _make_request(parameters=GenerationParameters(top_p=0.9, top_k=40, stop=["END"]))
        )
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["top_p"] == 0.9
        assert kwargs["top_k"] == 40
        assert kwargs["stop_sequences"] == ["END"]

    async def test_continue_sends_prefill(self):
        client = _make_mock_client()
        request = _make_request(
            [
                Message(role="system", content=""),
                Message(role="user", content="Tell a story"),
                Message(role="assistant", content="Once upon"),
            ],
            is_continue=True,
        )
        await AnthropicProvider(client).generate(request)
        messages = client.messages.create.call_args.kwargs["messages"]
        assert messages[-1] == {"role": "assistant", "content": "Once upon"}


class TestAnthropicGenerateStream:
    async def test_yields_text_deltas_and_final(self):
        stream = MockStream(_make_mock_stream_events(["Hello", " world!"]))
        client = AsyncMock()
        client.messages.create = AsyncMock(return_value=stream)

        chunks = [c async for c in AnthropicProvider(client).generate_stream(_make_request())]

        assert [c.text for c in chunks if c.type == "text_delta"] == ["Hello", " world!"]
        final = chunks[-1]
        assert final.is_final
        assert final.result.content == "Hello world!"
        assert final.result.finish_reason == "end_turn"
        assert final.result.usage == {"input_tokens": 10, "output_tokens": 5}
        assert stream.closed

    async def test_closing_early_closes_stream(self):
        stream = MockStream(_make_mock_stream_events(["a", "b", "c"]))
        client = AsyncMock()
        client.messages.create = AsyncMock(return_value=stream)

        chunks = AnthropicProvider(client).generate_stream(_make_request())
        await chunks.__anext__()
        await chunks.aclose()
        assert stream.closed


class TestAnthropicToolCalls:
    async def test_extracts_tool_use_blocks(self):
        tool_block = MagicMock()
        tool_block.type = "tool_use"
        tool_block.name = "calculator"
        tool_block.input = {"expression": "1+1"}
        tool_block.id = "toolu_1"
        message = _make_mock_message()
        message.content = [message.content[0], tool_block]
        client = _make_mock_client(message)

        calls = await AnthropicProvider(client).request_tool_calls(
            _make_request(),
            [{"name": "calculator", "description": "math", "input_schema": {"type": "object"}}],
        )

        assert len(calls) == 1
        assert calls[0].name == "calculator"
        assert calls[0].parameters == {"expression": "1+1"}
        assert calls[0].call_id == "toolu_1"
        assert client.messages.create.call_args.kwargs["tools"][0]["name"] == "calculator"

    async def test_no_tools_no_request(self):
        client = _make_mock_client()
        assert await AnthropicProvider(client).request_tool_calls(_make_request(), []) == []
        client.messages.create.assert_not_called()


# -- Helpers for streaming mocks --


class MockStream:
    """Async-iterable stand-in for the SDK stream, recording close()."""

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


def _make_mock_stream_events(
    texts: list[str],
    model: str = "claude-sonnet-4-5-20250929",
    input_tokens: int = 10,
    output_tokens: int = 5,
) -> list[MagicMock]:
    """Create a sequence of mock RawMessageStreamEvent objects."""
    events = []

    msg_start = MagicMock()
    msg_start.type = "message_start"
    msg_start.message.model = model
    msg_start.message.usage.input_tokens = input_tokens
    events.append(msg_start)

    for text in texts:
        delta = MagicMock()
        delta.type = "content_block_delta"
        delta.delta.text = text
        events.append(delta)

    msg_delta = MagicMock()
    msg_delta.type = "message_delta"
    msg_delta.delta.stop_reason = "end_turn"
    msg_delta.usage.output_tokens = output_tokens
    events.append(msg_delta)

    return events
