"""Generation orchestration: runs the steps for one target message.

A run is a producer task feeding a bounded channel and a consumer-facing
async iterator draining it. Events change the target message as they are
handed to the consumer, so the message always reflects exactly what the
caller has seen. Closing the iterator (or calling ``cancel``) stops the run.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import assert_never

from chattree.conversations.store import ConversationStore, StorageError
from chattree.files.store import FileStore
from chattree.generation.steps import (
    GenerationContext,
    GenerationStep,
    TextGenerationStep,
    ToolStep,
    WebSearchStep,
)
from chattree.generation.title import generate_title
from chattree.models import (
    Conversation,
    FileUpdate,
    FinalAnswerUpdate,
    GenerationEvent,
    Message,
    ModelConfig,
    StatusUpdate,
    StreamUpdate,
    TitleUpdate,
    ToolMessageUpdate,
    ToolParametersUpdate,
    WebSearchErrorUpdate,
    WebSearchFinalAnswerUpdate,
    WebSearchMessageUpdate,
    WebSearchSourcesUpdate,
)
from chattree.providers.base import LLMProvider
from chattree.tools.registry import ToolRegistry
from chattree.trees.path import EmptyContextError
from chattree.trees.tree import InvalidOperationError, get_message
from chattree.websearch.base import SearchBackend

logger = logging.getLogger(__name__)

NO_OUTPUT_MESSAGE = "No output was generated. Something went wrong."

_DONE = object()


class RunState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class GenerationOptions:
    is_continue: bool = False
    web_search: bool = False
    tools_preference: dict[str, bool] = field(default_factory=dict)
    generate_title: bool = False


class GenerationService:
    """Builds the step pipeline and starts runs. One run per target message at a time."""

    def __init__(
        self,
        *,
        store: ConversationStore | None = None,
        search_backend: SearchBackend | None = None,
        tool_registry: ToolRegistry | None = None,
        file_store: FileStore | None = None,
        max_query_attempts: int = 3,
        search_results: int = 5,
        search_timeout: float = 10.0,
        title_timeout: float = 5.0,
        channel_size: int = 64,
    ) -> None:
        self._store = store
        self._search_backend = search_backend
        self._tool_registry = tool_registry
        self._file_store = file_store
        self._max_query_attempts = max_query_attempts
        self._search_results = search_results
        self._search_timeout = search_timeout
        self._title_timeout = title_timeout
        self._channel_size = channel_size
        self._runs: dict[tuple[str, str], GenerationRun] = {}

    def build_steps(self) -> list[GenerationStep]:
        steps: list[GenerationStep] = []
        if self._search_backend is not None:
            steps.append(
                WebSearchStep(
                    self._search_backend,
                    max_query_attempts=self._max_query_attempts,
                    result_count=self._search_results,
                    timeout=self._search_timeout,
                )
            )
        if self._tool_registry is not None:
            steps.append(ToolStep(self._tool_registry, self._file_store))
        steps.append(TextGenerationStep())
        return steps

    def is_active(self, conversation_id: str, message_id: str) -> bool:
        return (conversation_id, message_id) in self._runs

    def has_active_runs(self, conversation_id: str) -> bool:
        return any(conv_id == conversation_id for conv_id, _ in self._runs)

    async def cancel_runs(self, conversation_id: str) -> None:
        """Cancel every active run writing into ``conversation_id``."""
        runs = [run for (conv_id, _), run in self._runs.items() if conv_id == conversation_id]
        for run in runs:
            await run.cancel()

    def run_generation(
        self,
        conversation: Conversation,
        target_id: str,
        context: list[Message],
        options: GenerationOptions,
        *,
        model_config: ModelConfig,
        provider: LLMProvider,
    ) -> "GenerationRun":
        """Prepare a run writing into ``target_id``. Iterate the result to start it."""
        target = get_message(conversation, target_id)
        if not context:
            raise EmptyContextError(target_id)
        key = (conversation.id, target_id)
        if key in self._runs:
            raise InvalidOperationError(f"Message is already being generated: {target_id}")

        ctx = GenerationContext(
            conversation=conversation,
            messages=list(context),
            model_config=model_config,
            provider=provider,
            is_continue=options.is_continue,
            web_search=options.web_search,
            tools_preference=dict(options.tools_preference),
        )
        run = GenerationRun(
            ctx,
            target,
            self.build_steps(),
            generate_title=options.generate_title,
            store=self._store,
            title_timeout=self._title_timeout,
            channel_size=self._channel_size,
            on_done=lambda: self._runs.pop(key, None),
        )
        self._runs[key] = run
        return run


class GenerationRun:
    """A single generation: Idle -> Running -> Completed | Cancelled | Failed."""

    def __init__(
        self,
        ctx: GenerationContext,
        target: Message,
        steps: list[GenerationStep],
        *,
        generate_title: bool = False,
        store: ConversationStore | None = None,
        title_timeout: float = 5.0,
        channel_size: int = 64,
        on_done: Callable[[], object] | None = None,
    ) -> None:
        self.state = RunState.IDLE
        self.step_index: int | None = None
        self._ctx = ctx
        self._target = target
        self._steps = steps
        self._generate_title = generate_title
        self._store = store
        self._title_timeout = title_timeout
        self._on_done = on_done
        self._channel: asyncio.Queue = asyncio.Queue(maxsize=channel_size)
        self._producer: asyncio.Task | None = None
        self._title_task: asyncio.Task | None = None
        self._initial_content = target.content
        self._outcome = RunState.FAILED
        self._errored = False
        # Set once the run has been flushed, by completion or by cancel()
        self._done_streaming = False

    @property
    def target_id(self) -> str:
        return self._target.id

    def __aiter__(self) -> AsyncIterator[GenerationEvent]:
        return self.events()

    async def events(self) -> AsyncIterator[GenerationEvent]:
        """Start the run and yield its events in production order.

        A run cancelled before it was started yields nothing.
        """
        if self._producer is not None:
            raise RuntimeError("A generation run can only be consumed once")
        if self._done_streaming:
            return
        self.state = RunState.RUNNING
        self._producer = asyncio.create_task(self._produce())
        try:
            while True:
                item = await self._channel.get()
                if item is _DONE:
                    break
                error = await self._apply(item)
                yield item
                if error is not None:
                    yield error
            if not self._done_streaming:
                error = await self._finish()
                if error is not None:
                    yield error
        finally:
            if not self._done_streaming:
                await self.cancel()

    async def cancel(self) -> None:
        """Stop the run, keep what was delivered and mark the message interrupted.

        A no-op once the run has finished or been cancelled.
        """
        if self._done_streaming:
            return
        self._done_streaming = True

        tasks = [t for t in (self._title_task, self._producer) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        # Undelivered events are dropped; unblock a consumer waiting on the channel
        while not self._channel.empty():
            self._channel.get_nowait()
        self._channel.put_nowait(_DONE)

        self._target.interrupted = True
        self._target.updated_at = datetime.now(UTC)
        self.state = RunState.CANCELLED
        logger.info("Generation for message %s cancelled", self._target.id)
        await self._checkpoint()
        self._release()

    # -- producer side --

    async def _send(self, event: GenerationEvent) -> None:
        await self._channel.put(event)

    async def _produce(self) -> None:
        ctx = self._ctx
        final: FinalAnswerUpdate | None = None
        if self._generate_title:
            self._title_task = asyncio.create_task(self._title())

        try:
            await self._send(StatusUpdate(status="started"))
            for index, step in enumerate(self._steps):
                if not step.should_run(ctx):
                    logger.debug("Skipping step %s", step.name)
                    continue
                self.step_index = index
                logger.debug("Running step %s for message %s", step.name, self._target.id)
                async with aclosing(step.run(ctx)) as events:
                    async for event in events:
                        if isinstance(event, FinalAnswerUpdate):
                            final = event
                        else:
                            await self._send(event)

            if final is not None and final.text:
                await self._send(final)
                self._outcome = RunState.COMPLETED
            else:
                await self._send(StatusUpdate(status="error", message=NO_OUTPUT_MESSAGE))
            await self._settle_title()
        except Exception as e:
            logger.exception("Generation for message %s failed", self._target.id)
            self._errored = True
            if self._title_task is not None:
                self._title_task.cancel()
            await self._send(StatusUpdate(status="error", message=str(e) or type(e).__name__))

        await self._channel.put(_DONE)

    async def _title(self) -> None:
        """Best effort: failures are logged and otherwise ignored."""
        try:
            title = await generate_title(
                self._ctx.messages, self._ctx.provider, self._ctx.model_config
            )
        except Exception:
            logger.debug("Title generation failed", exc_info=True)
            return
        if title:
            await self._send(TitleUpdate(title=title))

    async def _settle_title(self) -> None:
        """Give a pending title ``title_timeout`` seconds after the answer, then drop it."""
        task = self._title_task
        if task is None or task.done():
            return
        done, _ = await asyncio.wait({task}, timeout=self._title_timeout)
        if not done:
            logger.debug("Title for message %s not ready, dropping it", self._target.id)
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    # -- consumer side: the only writer of the target message --

    async def _apply(self, event: GenerationEvent) -> StatusUpdate | None:
        message = self._target
        match event:
            case StreamUpdate(token=token):
                message.content += token
            case FinalAnswerUpdate(text=text, interrupted=interrupted):
                message.content = self._initial_content + text
                message.interrupted = interrupted
            case FileUpdate(sha=sha):
                message.files.append(sha)
            case WebSearchFinalAnswerUpdate(web_search=web_search):
                message.web_search = web_search
            case TitleUpdate(title=title):
                self._ctx.conversation.title = title
            case (
                StatusUpdate()
                | ToolParametersUpdate()
                | ToolMessageUpdate()
                | WebSearchMessageUpdate()
                | WebSearchErrorUpdate()
                | WebSearchSourcesUpdate()
            ):
                pass
            case _:
                assert_never(event)

        if not isinstance(event, StreamUpdate):
            message.updates.append(event)
        message.updated_at = datetime.now(UTC)

        if isinstance(event, TitleUpdate):
            return await self._checkpoint()
        return None

    async def _finish(self) -> StatusUpdate | None:
        self._done_streaming = True
        if self._producer is not None:
            await self._producer
        if self._errored:
            self._target.interrupted = True
        self.state = self._outcome
        error = await self._checkpoint()
        self._release()
        return error

    async def _checkpoint(self) -> StatusUpdate | None:
        if self._store is None:
            return None
        conversation = self._ctx.conversation
        conversation.updated_at = datetime.now(UTC)
        try:
            await self._store.save(conversation)
        except StorageError as e:
            logger.error("Failed to save conversation %s: %s", conversation.id, e)
            status = StatusUpdate(status="error", message=f"Failed to save conversation: {e}")
            self._target.updates.append(status)
            return status
        return None

    def _release(self) -> None:
        if self._on_done is not None:
            self._on_done()
            self._on_done = None
