"""OpenAI LLM provider: thin subclass of OpenAICompatibleProvider."""

from openai import AsyncOpenAI

from chattree.providers.openai_compat import OpenAICompatibleProvider


class OpenAIProvider(OpenAICompatibleProvider):
    """LLM provider backed by OpenAI's (or a self-hosted server's) Completions API."""

    suggested_models = [
        "gpt-3.5-turbo-instruct",
        "davinci-002",
    ]

    def __init__(
        self,
        *,
        client: AsyncOpenAI | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
    ) -> None:
        if client is not None:
            super().__init__(client)
        else:
            super().__init__(AsyncOpenAI(api_key=api_key, base_url=base_url))

    @property
    def name(self) -> str:
        return "openai"
