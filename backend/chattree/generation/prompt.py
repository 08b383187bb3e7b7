"""Prompt assembly: turn a linear message chain into backend input.

Produces both shapes a backend may want: a single framed text prompt for
text-completion endpoints, and a system string plus turn list for chat
endpoints. Pure bookkeeping, no model calls.

Framing example (zephyr-style tokens)::

    <|system|>\\nBe helpful.</s><|user|>\\nhi</s><|assistant|>\\nhello</s><|assistant|>\\n
"""

from collections.abc import Sequence

from pydantic import BaseModel, Field

from chattree.models import Message, ModelConfig


class AssembledPrompt(BaseModel):
    """Backend-ready prompt in both text and chat shapes."""

    text: str
    preamble: str  # leading segment of ``text`` that truncation never touches
    system: str | None = None
    turns: list[dict[str, str]] = Field(default_factory=list)


def assemble(
    messages: Sequence[Message],
    model_config: ModelConfig,
    *,
    preprompt: str | None = None,
    context: Sequence[str] | None = None,
    is_continue: bool = False,
) -> AssembledPrompt:
    """Assemble ``messages`` (root first) for ``model_config``.

    ``preprompt`` is used when the chain has no leading system message.
    ``context`` blocks (web results, tool output) sit between the preamble and
    the turns. With ``is_continue`` the last assistant turn is left open so the
    model extends it instead of starting a new turn.
    """
    resolved_preprompt = _resolve_preprompt(messages, preprompt, model_config)
    turn_messages = [m for m in messages if m.role in ("user", "assistant")]

    preamble = ""
    if resolved_preprompt:
        preamble = model_config.preprompt_token + resolved_preprompt
        if model_config.preprompt_token and model_config.message_end_token:
            preamble = _with_end(preamble, model_config.message_end_token)
    context_text = ""
    if context:
        context_text = model_config.context_token + "\n" + "\n".join(context) + "\n"

    leave_open = (
        is_continue and bool(turn_messages) and turn_messages[-1].role == "assistant"
    )
    framed: list[str] = []
    turns: list[dict[str, str]] = []
    for index, message in enumerate(turn_messages):
        is_open = leave_open and index == len(turn_messages) - 1
        framed.append(_frame(message, model_config, is_open=is_open))
        content = _open_content(message, model_config) if is_open else message.content
        turns.append({"role": message.role, "content": content})
    turn_text = "".join(framed)
    if not leave_open:
        turn_text += model_config.assistant_message_token

    truncate = model_config.parameters.truncate
    if truncate:
        turn_text = _keep_last_words(turn_text, truncate)
        turns = _drop_oldest_turns(turns, truncate)

    system_parts = [p for p in (resolved_preprompt, "\n".join(context or [])) if p]
    return AssembledPrompt(
        text=preamble + context_text + turn_text,
        preamble=preamble + context_text,
        system="\n\n".join(system_parts) or None,
        turns=turns,
    )


def _resolve_preprompt(
    messages: Sequence[Message], preprompt: str | None, model_config: ModelConfig
) -> str:
    if messages and messages[0].role == "system" and messages[0].content:
        return messages[0].content
    if preprompt:
        return preprompt
    return model_config.preprompt


def _end_token(role: str, model_config: ModelConfig) -> str:
    if role == "user" and model_config.user_message_end_token:
        return model_config.user_message_end_token
    if role == "assistant" and model_config.assistant_message_end_token:
        return model_config.assistant_message_end_token
    return model_config.message_end_token


def _with_end(content: str, end: str) -> str:
    """Append ``end`` unless ``content`` already ends with it."""
    if not end or content.endswith(end):
        return content
    return content + end


def _open_content(message: Message, model_config: ModelConfig) -> str:
    end = _end_token(message.role, model_config)
    if end and message.content.endswith(end):
        return message.content[: -len(end)]
    return message.content


def _frame(message: Message, model_config: ModelConfig, *, is_open: bool) -> str:
    start = (
        model_config.user_message_token
        if message.role == "user"
        else model_config.assistant_message_token
    )
    if is_open:
        return start + _open_content(message, model_config)
    return start + _with_end(message.content, _end_token(message.role, model_config))


def _keep_last_words(text: str, budget: int) -> str:
    # split/join on single spaces so the result is an exact suffix of ``text``
    words = text.split(" ")
    if len(words) <= budget:
        return text
    return " ".join(words[-budget:])


def _count_tokens(text: str) -> int:
    return len(text) // 4


def _drop_oldest_turns(turns: list[dict[str, str]], budget: int) -> list[dict[str, str]]:
    """Drop whole turns from the front until the rest fits. Never drops the last turn."""
    total = sum(_count_tokens(t["content"]) for t in turns)
    while total > budget and len(turns) > 1:
        total -= _count_tokens(turns[0]["content"])
        turns = turns[1:]
    return turns
