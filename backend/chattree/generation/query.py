"""Web search query generation.

A small generation call of its own: a few-shot conversation teaching the
backend to answer with one concise search query, followed by the user's
previous questions, the current question and any queries already tried in
this run so it does not repeat them.
"""

from collections.abc import Sequence
from datetime import UTC, date, datetime, timedelta

from chattree.generation.prompt import assemble
from chattree.models import Message, ModelConfig
from chattree.providers.base import GenerationRequest, LLMProvider

QUERY_MAX_NEW_TOKENS = 30


def _format_date(day: date) -> str:
    return f"{day:%B} {day.day}, {day.year}"


def _few_shot(today: date) -> list[Message]:
    yesterday = _format_date(today - timedelta(days=1))
    pairs = [
        (
            "Previous Questions:\n- Who is the president of France?\n\n"
            "Current Question: What about Mexico?\n\n"
            "Previously generated queries:\n- President list of Mexico\n",
            "President of Mexico",
        ),
        (
            "Previous questions: \n- When is the next formula 1 grand prix?\n\n"
            "Current Question: Where is it being hosted?",
            "location of next formula 1 grand prix",
        ),
        (
            "Current Question: What type of printhead does the Epson F2270 DTG printer use?",
            "Epson F2270 DTG printer printhead",
        ),
        ("What were the news yesterday?", f"news {yesterday}"),
        (
            "Current Question: My dog has been bitten, what should the gums look like so "
            "that he is healthy and when does he need an infusion?\n\n"
            "Previously generated queries:\n- What healthy gums look like in dogs\n"
            "- What unhealthy gums look like in dogs\n",
            "dog, gums, indications of necessary infusion",
        ),
        (
            "Current Question: Who is Elon Musk ?\n\n"
            "Previously generated queries:\n- Elon Musk biography\n- Who is Elon Musk\n",
            "Elon Musk",
        ),
    ]
    shots: list[Message] = []
    for question, answer in pairs:
        shots.append(Message(role="user", content=question))
        shots.append(Message(role="assistant", content=answer))
    return shots


def build_query_messages(
    messages: Sequence[Message],
    previous_queries: Sequence[str] = (),
    *,
    today: date | None = None,
) -> list[Message]:
    """Few-shot examples plus the final question built from ``messages``."""
    today = today or datetime.now(UTC).date()
    user_messages = [m for m in messages if m.role == "user"]
    if not user_messages:
        raise ValueError("Cannot build a search query without a user message")
    previous_questions = user_messages[:-1]
    current = user_messages[-1]

    content = ""
    if previous_questions:
        content += "Previous questions: \n" + "\n".join(
            f"- {m.content}" for m in previous_questions
        )
    content += "\n\nCurrent Question: " + current.content + "\n"
    if previous_queries:
        content += "Previously generated queries:\n" + "\n".join(
            f"- {q}" for q in previous_queries
        )
    return [*_few_shot(today), Message(role="user", content=content)]


def query_preprompt(today: date) -> str:
    return (
        "You are tasked with generating precise and effective web search queries to "
        "answer the user's question. Provide a concise and specific query for Google "
        "search that will yield the most relevant and up-to-date results. Include key "
        "terms and related phrases, and avoid unnecessary words. Answer with only the "
        "query. Avoid duplicates, make the prompts as diverse as you can. You are not "
        f"allowed to repeat queries. Today is {_format_date(today)}"
    )


async def generate_query(
    messages: Sequence[Message],
    provider: LLMProvider,
    model_config: ModelConfig,
    *,
    previous_queries: Sequence[str] = (),
    today: date | None = None,
) -> str:
    """Ask the backend for one search query answering the last user question."""
    today = today or datetime.now(UTC).date()
    prompt = assemble(
        build_query_messages(messages, previous_queries, today=today),
        model_config,
        preprompt=query_preprompt(today),
    )
    parameters = model_config.parameters.model_copy(
        update={"max_new_tokens": QUERY_MAX_NEW_TOKENS}
    )
    result = await provider.generate(
        GenerationRequest(model=model_config.id, prompt=prompt, parameters=parameters)
    )
    return result.content.strip()
