"""Conversation title generation."""

from collections.abc import Sequence

from chattree.generation.prompt import assemble
from chattree.models import Message, ModelConfig
from chattree.providers.base import GenerationRequest, LLMProvider

DEFAULT_TITLE = "New Chat"
TITLE_MAX_LENGTH = 100


async def generate_title(
    messages: Sequence[Message],
    provider: LLMProvider,
    model_config: ModelConfig,
) -> str | None:
    """Summarize the first user message in a few words. None if there is nothing to title."""
    first = next((m for m in messages if m.role == "user" and m.content), None)
    if first is None:
        return None

    prompt = assemble(
        [
            Message(
                role="user",
                content=(
                    "Please summarize the following message as a single sentence of "
                    "less than 5 words:\n" + first.content
                ),
            )
        ],
        model_config,
        preprompt="You write short conversation titles. Answer with the title only.",
    )
    parameters = model_config.parameters.model_copy(
        update={"max_new_tokens": 20, "truncate": None}
    )
    result = await provider.generate(
        GenerationRequest(model=model_config.id, prompt=prompt, parameters=parameters)
    )
    title = result.content.strip().strip('"').strip()
    return title[:TITLE_MAX_LENGTH] or None
