"""Conversation service: CRUD plus turning a request into a generation run.

Operations on one conversation are serialized by a per-conversation lock.
While a run is active every request works on the same in-memory instance the
run writes into, so branches added concurrently end up in the same document.
"""

import asyncio
import base64
import binascii
import logging

from chattree.config import Settings
from chattree.conversations.schemas import (
    ConversationSummary,
    CreateConversationRequest,
    GenerateRequest,
    ModelSummary,
)
from chattree.conversations.store import ConversationStore
from chattree.files.store import FileStore, file_reference
from chattree.generation.service import GenerationOptions, GenerationRun, GenerationService
from chattree.generation.title import DEFAULT_TITLE, generate_title
from chattree.models import Conversation, Message, ModelConfig
from chattree.providers.base import LLMProvider
from chattree.providers.registry import ProviderNotFoundError, ProviderRegistry
from chattree.trees.legacy import convert_legacy_conversation, is_legacy
from chattree.trees.planner import plan_continue, plan_new_message, plan_retry
from chattree.trees.tree import InvalidOperationError, linearize, validate_tree

logger = logging.getLogger(__name__)


class ConversationService:
    def __init__(
        self,
        store: ConversationStore,
        generation: GenerationService,
        providers: ProviderRegistry,
        model_configs: dict[str, ModelConfig],
        *,
        file_store: FileStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._generation = generation
        self._providers = providers
        self._model_configs = model_configs
        self._file_store = file_store
        self._settings = settings or Settings()
        # Conversations with a run in flight; requests must see the instance being written
        self._live: dict[str, Conversation] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # -- Models --

    def list_models(self) -> list[ModelSummary]:
        available = set(self._providers.names())
        return [
            ModelSummary(
                id=config.id,
                name=config.display_name,
                provider=config.provider,
                tools=config.tools,
                available=config.provider in available,
            )
            for config in self._model_configs.values()
        ]

    def _resolve_model(self, model_id: str) -> tuple[ModelConfig, LLMProvider]:
        config = self._model_configs.get(model_id)
        if config is None:
            raise ModelNotAvailableError(model_id)
        try:
            provider = self._providers.get(config.provider)
        except ProviderNotFoundError as e:
            raise ModelNotAvailableError(model_id) from e
        return config, provider

    # -- CRUD --

    async def create_conversation(self, request: CreateConversationRequest) -> Conversation:
        model_id = request.model or self._settings.default_model
        if model_id is None:
            model_id = next(iter(self._model_configs), None)
        if model_id is None or model_id not in self._model_configs:
            raise ModelNotAvailableError(model_id or "")

        conversation = Conversation(
            model=model_id,
            preprompt=request.preprompt,
            title=request.title or DEFAULT_TITLE,
        )
        await self._store.save(conversation)
        logger.info("Created conversation %s with model %s", conversation.id, model_id)
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation:
        async with self._lock(conversation_id):
            return await self._load(conversation_id)

    async def list_conversations(self) -> list[ConversationSummary]:
        rows = await self._store.list_summaries()
        return [
            ConversationSummary(
                id=row["conversation_id"],
                title=row["title"],
                model=row["model"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    async def update_title(self, conversation_id: str, title: str) -> Conversation:
        async with self._lock(conversation_id):
            conversation = await self._load(conversation_id)
            conversation.title = title
            await self._store.save(conversation)
            return conversation

    async def delete_conversation(self, conversation_id: str) -> None:
        """Cancel the conversation's runs, then delete it. No run saves afterwards."""
        async with self._lock(conversation_id):
            await self._generation.cancel_runs(conversation_id)
            self._live.pop(conversation_id, None)
            if not await self._store.delete(conversation_id):
                raise ConversationNotFoundError(conversation_id)
        self._locks.pop(conversation_id, None)
        logger.info("Deleted conversation %s", conversation_id)

    async def get_path(self, conversation_id: str, message_id: str) -> list[Message]:
        async with self._lock(conversation_id):
            conversation = await self._load(conversation_id)
        return linearize(conversation, message_id)

    # -- Generation --

    async def start_generation(
        self, conversation_id: str, request: GenerateRequest
    ) -> GenerationRun:
        """Plan the tree edits for ``request``, save them and return the run to stream.

        All checks happen before the tree is touched, and uploaded files are
        only written once the edit is known to be valid.
        """
        async with self._lock(conversation_id):
            conversation = await self._load(conversation_id)
            self._live[conversation.id] = conversation
            model_config, provider = self._resolve_model(conversation.model)
            self._check_limits(conversation, request)
            if request.is_continue and request.id is not None:
                if self._generation.is_active(conversation.id, request.id):
                    raise InvalidOperationError(
                        f"Message is already being generated: {request.id}"
                    )

            first_exchange = conversation.title == DEFAULT_TITLE and not any(
                m.role == "user" for m in conversation.messages
            )
            blobs = self._decode_files(request.files)
            files = [file_reference(blob) for blob in blobs]

            if request.is_continue:
                if request.id is None:
                    raise InvalidOperationError("A message id is required to continue")
                plan = plan_continue(conversation, request.id)
            elif request.is_retry:
                if request.id is None:
                    raise InvalidOperationError("A message id is required to retry")
                plan = plan_retry(
                    conversation, request.id, new_prompt=request.inputs, files=files
                )
            else:
                if not request.inputs:
                    raise InvalidOperationError("A prompt is required for a new message")
                plan = plan_new_message(
                    conversation, request.inputs, parent_id=request.id, files=files
                )

            if self._file_store is not None:
                for blob in blobs:
                    await self._file_store.store(blob)
            await self._store.save(conversation)
            options = GenerationOptions(
                is_continue=plan.is_continue,
                web_search=request.web_search,
                tools_preference=request.tools,
                generate_title=first_exchange,
            )
            run = self._generation.run_generation(
                conversation,
                plan.target_id,
                plan.context,
                options,
                model_config=model_config,
                provider=provider,
            )
        logger.info(
            "Starting generation for message %s in conversation %s",
            plan.target_id,
            conversation.id,
        )
        return run

    async def summarize(self, conversation_id: str) -> str:
        """Generate and save a short title from the first user message."""
        async with self._lock(conversation_id):
            conversation = await self._load(conversation_id)
            model_config, provider = self._resolve_model(conversation.model)
            title = await generate_title(conversation.messages, provider, model_config)
            if title:
                conversation.title = title
                await self._store.save(conversation)
            return conversation.title

    # -- Helpers --

    def _lock(self, conversation_id: str) -> asyncio.Lock:
        return self._locks.setdefault(conversation_id, asyncio.Lock())

    async def _load(self, conversation_id: str) -> Conversation:
        """Caller holds the conversation lock."""
        live = self._live.get(conversation_id)
        if live is not None:
            if self._generation.has_active_runs(conversation_id):
                return live
            del self._live[conversation_id]

        conversation = await self._store.load(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        if is_legacy(conversation):
            logger.info("Converting legacy conversation %s", conversation_id)
            conversation = convert_legacy_conversation(conversation)
            await self._store.save(conversation)
            return conversation
        validate_tree(conversation)
        return conversation

    def _check_limits(self, conversation: Conversation, request: GenerateRequest) -> None:
        limit = self._settings.messages_per_conversation
        if limit is not None and len(conversation.messages) > limit:
            raise ConversationLimitError(
                f"Conversation {conversation.id} has reached the limit of {limit} messages"
            )
        max_length = self._settings.message_max_length
        if max_length is not None and request.inputs and len(request.inputs) > max_length:
            raise MessageTooLongError(
                f"Message is longer than the maximum of {max_length} characters"
            )

    def _decode_files(self, encoded: list[str]) -> list[bytes]:
        if not encoded:
            return []
        if self._file_store is None:
            raise InvalidOperationError("File uploads are not enabled")
        blobs = []
        for item in encoded:
            try:
                blobs.append(base64.b64decode(item, validate=True))
            except binascii.Error as e:
                raise InvalidOperationError(f"Invalid base64 file: {e}") from e
        return blobs


class ConversationNotFoundError(Exception):
    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class ModelNotAvailableError(Exception):
    def __init__(self, model_id: str) -> None:
        self.model_id = model_id
        super().__init__(f"Model not available anymore: {model_id}")


class ConversationLimitError(Exception):
    pass


class MessageTooLongError(Exception):
    pass
