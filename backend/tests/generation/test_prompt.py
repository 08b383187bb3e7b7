"""Tests for prompt assembly: framing, preprompt priority, context, continue, truncation."""

from chattree.generation.prompt import assemble
from chattree.models import GenerationParameters, Message
from tests.fixtures import make_model_config

SYSTEM = "<|system|>\nBe helpful.</s>"


def _chain(*turns: tuple[str, str], system: str = "Be helpful.") -> list[Message]:
    return [Message(role="system", content=system)] + [
        Message(role=role, content=content) for role, content in turns
    ]


class TestFraming:
    def test_zephyr_style_text(self):
        prompt = assemble(
            _chain(("user", "hi"), ("assistant", "hello"), ("user", "how?")),
            make_model_config(),
        )
        assert prompt.text == (
            SYSTEM
            + "<|user|>\nhi</s>\n"
            + "<|assistant|>\nhello</s>\n"
            + "<|user|>\nhow?</s>\n"
            + "<|assistant|>\n"
        )

    def test_end_marker_not_doubled(self):
        prompt = assemble(
            _chain(("user", "hi"), ("assistant", "hello</s>\n"), ("user", "again")),
            make_model_config(),
        )
        assert "hello</s>\n</s>\n" not in prompt.text
        assert "<|assistant|>\nhello</s>\n<|user|>" in prompt.text

    def test_falls_back_to_message_end_token(self):
        config = make_model_config(user_message_end_token="", assistant_message_end_token="")
        prompt = assemble(_chain(("user", "hi")), config)
        assert prompt.text.endswith("<|user|>\nhi</s><|assistant|>\n")

    def test_system_message_never_a_turn(self):
        prompt = assemble(_chain(("user", "hi")), make_model_config())
        assert [t["role"] for t in prompt.turns] == ["user"]
        assert prompt.system == "Be helpful."

    def test_no_preamble_without_preprompt(self):
        prompt = assemble(_chain(("user", "hi"), system=""), make_model_config())
        assert prompt.preamble == ""
        assert prompt.text.startswith("<|user|>")
        assert prompt.system is None


class TestPreprompt:
    def test_system_message_wins(self):
        prompt = assemble(
            _chain(("user", "hi"), system="From the tree"),
            make_model_config(preprompt="From the model"),
            preprompt="From the conversation",
        )
        assert prompt.system == "From the tree"

    def test_conversation_preprompt_when_root_empty(self):
        prompt = assemble(
            _chain(("user", "hi"), system=""),
            make_model_config(preprompt="From the model"),
            preprompt="From the conversation",
        )
        assert prompt.system == "From the conversation"

    def test_model_preprompt_last(self):
        prompt = assemble(
            _chain(("user", "hi"), system=""),
            make_model_config(preprompt="From the model"),
        )
        assert prompt.preamble == "<|system|>\nFrom the model</s>"


class TestContext:
    def test_context_between_preamble_and_turns(self):
        prompt = assemble(
            _chain(("user", "hi")),
            make_model_config(),
            context=["- snippet one", "- snippet two"],
        )
        assert prompt.text.startswith(
            SYSTEM + "<|context|>\n- snippet one\n- snippet two\n<|user|>\nhi"
        )
        assert prompt.preamble == SYSTEM + "<|context|>\n- snippet one\n- snippet two\n"

    def test_context_joins_system_for_chat_backends(self):
        prompt = assemble(_chain(("user", "hi")), make_model_config(), context=["- a"])
        assert prompt.system == "Be helpful.\n\n- a"


class TestContinue:
    def test_last_assistant_left_open(self):
        prompt = assemble(
            _chain(("user", "hi"), ("assistant", "Once upon")),
            make_model_config(),
            is_continue=True,
        )
        assert prompt.text.endswith("<|assistant|>\nOnce upon")
        assert prompt.turns[-1] == {"role": "assistant", "content": "Once upon"}

    def test_trailing_end_marker_stripped(self):
        prompt = assemble(
            _chain(("user", "hi"), ("assistant", "Once upon</s>\n")),
            make_model_config(),
            is_continue=True,
        )
        assert prompt.text.endswith("<|assistant|>\nOnce upon")

    def test_continue_without_assistant_adds_cue(self):
        prompt = assemble(_chain(("user", "hi")), make_model_config(), is_continue=True)
        assert prompt.text.endswith("<|assistant|>\n")


class TestTruncation:
    def test_keeps_last_words_of_turns(self):
        config = make_model_config(parameters=GenerationParameters(truncate=3))
        prompt = assemble(_chain(("user", "one two three four")), config)
        assert prompt.text == SYSTEM + "two three four</s>\n<|assistant|>\n"

    def test_preamble_and_context_never_truncated(self):
        config = make_model_config(parameters=GenerationParameters(truncate=1))
        prompt = assemble(
            _chain(("user", "a b c d e f")),
            config,
            context=["- long context with many words in it"],
        )
        assert prompt.text.startswith(prompt.preamble)
        assert "- long context with many words in it" in prompt.text

    def test_truncated_text_is_suffix(self):
        config = make_model_config(parameters=GenerationParameters(truncate=4))
        full = assemble(_chain(("user", "w " * 20), ("assistant", "x y z")), make_model_config())
        cut = assemble(_chain(("user", "w " * 20), ("assistant", "x y z")), config)
        assert full.text.endswith(cut.text[len(cut.preamble):])

    def test_zero_means_no_truncation(self):
        config = make_model_config(parameters=GenerationParameters(truncate=0))
        prompt = assemble(_chain(("user", "one two three")), config)
        assert "one two three" in prompt.text

    def test_chat_turns_drop_oldest_whole_turns(self):
        config = make_model_config(parameters=GenerationParameters(truncate=5))
        prompt = assemble(
            _chain(("user", "x" * 40), ("assistant", "y" * 8), ("user", "z" * 8)),
            config,
        )
        assert [t["content"] for t in prompt.turns] == ["y" * 8, "z" * 8]

    def test_last_turn_always_kept(self):
        config = make_model_config(parameters=GenerationParameters(truncate=1))
        prompt = assemble(_chain(("user", "x" * 400)), config)
        assert len(prompt.turns) == 1


class TestDeterminism:
    def test_same_input_assembles_identically(self):
        config = make_model_config(parameters=GenerationParameters(truncate=6))
        chain = _chain(
            ("user", "tell me about the weather in Paris today"),
            ("assistant", "It is sunny"),
            ("user", "and tomorrow?"),
        )
        context = ["- rain expected", "- 14 degrees"]

        first = assemble(chain, config, preprompt="Be brief.", context=context)
        second = assemble(chain, config, preprompt="Be brief.", context=context)

        assert first.text == second.text
        assert first.turns == second.turns
        assert first.system == second.system
