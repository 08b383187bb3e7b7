"""Generation steps.

Each step reads the shared GenerationContext, may add to it (retrieved web
context, tool results) and yields events. Only TextGenerationStep produces
the answer; the others are optional and skipped per request.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from uuid import uuid4

from chattree.files.store import FileStore
from chattree.generation.prompt import AssembledPrompt, assemble
from chattree.generation.query import generate_query
from chattree.models import (
    Conversation,
    FileUpdate,
    FinalAnswerUpdate,
    GenerationEvent,
    Message,
    MessageWebSearch,
    ModelConfig,
    StatusUpdate,
    StreamUpdate,
    ToolMessageUpdate,
    ToolParametersUpdate,
    WebSearchErrorUpdate,
    WebSearchFinalAnswerUpdate,
    WebSearchMessageUpdate,
    WebSearchSource,
    WebSearchSourcesUpdate,
)
from chattree.providers.base import (
    TRUNCATED_FINISH_REASONS,
    GenerationRequest,
    LLMProvider,
)
from chattree.tools.registry import ToolRegistry
from chattree.websearch.base import SearchBackend, SearchBackendError

logger = logging.getLogger(__name__)


@dataclass
class GenerationContext:
    """Mutable state shared by the steps of one run."""

    conversation: Conversation
    messages: list[Message]
    model_config: ModelConfig
    provider: LLMProvider
    is_continue: bool = False
    web_search: bool = False
    tools_preference: dict[str, bool] = field(default_factory=dict)
    context_blocks: list[str] = field(default_factory=list)

    def prompt(self) -> AssembledPrompt:
        return assemble(
            self.messages,
            self.model_config,
            preprompt=self.conversation.preprompt,
            context=self.context_blocks,
            is_continue=self.is_continue,
        )

    def request(self) -> GenerationRequest:
        return GenerationRequest(
            model=self.model_config.id,
            prompt=self.prompt(),
            parameters=self.model_config.parameters,
        )


class GenerationStep(ABC):
    name: str

    def should_run(self, ctx: GenerationContext) -> bool:
        return True

    @abstractmethod
    def run(self, ctx: GenerationContext) -> AsyncIterator[GenerationEvent]:
        ...


class WebSearchStep(GenerationStep):
    """Search the web for the last user question and add the snippets as context.

    Search failures are reported as web search error events; the run carries
    on without extra context.
    """

    name = "web_search"

    def __init__(
        self,
        backend: SearchBackend,
        *,
        max_query_attempts: int = 3,
        result_count: int = 5,
        timeout: float = 10.0,
    ) -> None:
        self._backend = backend
        self._max_query_attempts = max_query_attempts
        self._result_count = result_count
        self._timeout = timeout

    def should_run(self, ctx: GenerationContext) -> bool:
        return ctx.web_search and any(m.role == "user" for m in ctx.messages)

    async def run(self, ctx: GenerationContext) -> AsyncIterator[GenerationEvent]:
        question = next(m.content for m in reversed(ctx.messages) if m.role == "user")
        tried: list[str] = []
        sources: list[WebSearchSource] = []

        yield WebSearchMessageUpdate(message="Generating search query")
        for _ in range(self._max_query_attempts):
            try:
                query = await generate_query(
                    ctx.messages, ctx.provider, ctx.model_config, previous_queries=tried
                )
            except Exception as e:
                logger.warning("Search query generation failed: %s", e)
                yield WebSearchErrorUpdate(
                    message="Failed to generate a search query", args=[str(e)]
                )
                break

            if not query or query.lower() in {q.lower() for q in tried}:
                logger.debug("Discarding empty or repeated search query %r", query)
                continue
            tried.append(query)

            yield WebSearchMessageUpdate(message="Searching the web", args=[query])
            try:
                results = await asyncio.wait_for(
                    self._backend.search(query, limit=self._result_count),
                    timeout=self._timeout,
                )
            except (SearchBackendError, TimeoutError) as e:
                logger.warning("Web search via %s failed: %s", self._backend.name, e)
                yield WebSearchErrorUpdate(
                    message="Web search failed", args=[str(e) or "timed out"]
                )
                break

            if results:
                sources = results
                break
            yield WebSearchMessageUpdate(message="No results found", args=[query])

        web_search = MessageWebSearch(prompt=question, searches=tried, sources=sources)
        if sources:
            web_search.context = "\n".join(f"- {s.snippet}" for s in sources if s.snippet)
            if web_search.context:
                ctx.context_blocks.append(web_search.context)
            yield WebSearchSourcesUpdate(
                message=f"Found {len(sources)} sources", sources=sources
            )
        yield WebSearchFinalAnswerUpdate(web_search=web_search)


class ToolStep(GenerationStep):
    """Let the backend call the enabled tools and feed their output back as context.

    The parameters and message events of one invocation share a uuid.
    """

    name = "tools"

    def __init__(self, registry: ToolRegistry, file_store: FileStore | None = None) -> None:
        self._registry = registry
        self._file_store = file_store

    def should_run(self, ctx: GenerationContext) -> bool:
        return (
            ctx.model_config.tools
            and not ctx.is_continue
            and bool(self._registry.enabled(ctx.tools_preference))
        )

    async def run(self, ctx: GenerationContext) -> AsyncIterator[GenerationEvent]:
        enabled = {t.name: t for t in self._registry.enabled(ctx.tools_preference)}
        try:
            calls = await ctx.provider.request_tool_calls(
                ctx.request(), [t.spec() for t in enabled.values()]
            )
        except Exception as e:
            logger.warning("Tool selection via %s failed: %s", ctx.provider.name, e)
            yield StatusUpdate(status="error", message=f"Tool selection failed: {e}")
            return

        for call in calls:
            call_uuid = str(uuid4())
            yield ToolParametersUpdate(
                uuid=call_uuid, name=call.name, parameters=call.parameters
            )
            tool = enabled.get(call.name)
            if tool is None:
                yield ToolMessageUpdate(
                    uuid=call_uuid, name=call.name, message=f"Unknown tool: {call.name}"
                )
                continue

            try:
                result = await tool.call(call.parameters)
            except Exception as e:
                logger.warning("Tool %s failed: %s", call.name, e)
                yield ToolMessageUpdate(
                    uuid=call_uuid, name=call.name, message=f"Tool {call.name} failed: {e}"
                )
                continue

            if self._file_store is not None:
                for blob in result.files:
                    yield FileUpdate(sha=await self._file_store.store(blob))
            ctx.context_blocks.append(
                f"Result of {call.name}({json.dumps(call.parameters)}):\n{result.output}"
            )
            yield ToolMessageUpdate(
                uuid=call_uuid,
                name=call.name,
                message=result.output,
                display=result.display,
            )


class TextGenerationStep(GenerationStep):
    """Stream the answer. Always the last step."""

    name = "text_generation"

    async def run(self, ctx: GenerationContext) -> AsyncIterator[GenerationEvent]:
        text = ""
        finished = False
        finish_reason: str | None = None

        async with aclosing(ctx.provider.generate_stream(ctx.request())) as stream:
            async for chunk in stream:
                if chunk.is_final:
                    finished = True
                    if chunk.result is not None:
                        finish_reason = chunk.result.finish_reason
                    break
                if chunk.text:
                    text += chunk.text
                    yield StreamUpdate(token=chunk.text)

        yield FinalAnswerUpdate(
            text=text,
            interrupted=not finished or finish_reason in TRUNCATED_FINISH_REASONS,
        )
