"""chattree FastAPI application entry point."""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from anthropic import AsyncAnthropic
from dotenv import load_dotenv
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from openai import AsyncOpenAI

from chattree.config import load_model_configs, load_settings
from chattree.conversations.router import get_conversation_service
from chattree.conversations.router import router as conversations_router
from chattree.conversations.schemas import ModelSummary
from chattree.conversations.service import ConversationService
from chattree.conversations.store import ConversationStore
from chattree.db.connection import Database
from chattree.files.store import LocalFileStore
from chattree.generation.service import GenerationService
from chattree.providers.anthropic import AnthropicProvider
from chattree.providers.openai import OpenAIProvider
from chattree.providers.openai_compat import OpenAICompatibleProvider
from chattree.providers.registry import ProviderRegistry
from chattree.tools.builtin import CalculatorTool, FetchUrlTool
from chattree.tools.registry import ToolRegistry
from chattree.websearch.serper import SerperSearchBackend

logger = logging.getLogger(__name__)


def build_providers() -> ProviderRegistry:
    """Register a provider for every backend with credentials in the environment."""
    providers = ProviderRegistry()
    if os.environ.get("ANTHROPIC_API_KEY"):
        providers.register(AnthropicProvider(AsyncAnthropic()))
    if os.environ.get("OPENAI_API_KEY"):
        providers.register(OpenAIProvider(api_key=os.environ["OPENAI_API_KEY"]))
    if os.environ.get("OPENAI_COMPAT_BASE_URL"):
        providers.register(
            OpenAICompatibleProvider(
                AsyncOpenAI(
                    base_url=os.environ["OPENAI_COMPAT_BASE_URL"],
                    api_key=os.environ.get("OPENAI_COMPAT_API_KEY", "none"),
                )
            )
        )
    return providers


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage database lifecycle and service wiring."""
    load_dotenv(Path(__file__).resolve().parent.parent / ".env")
    settings = load_settings()

    db = await Database.connect(settings.database_path)
    store = ConversationStore(db)
    providers = build_providers()
    logger.info("Providers available: %s", ", ".join(providers.names()) or "(none)")

    search_backend = None
    if os.environ.get("SERPER_API_KEY"):
        search_backend = SerperSearchBackend(
            os.environ["SERPER_API_KEY"], timeout=settings.search_timeout_s
        )

    http_client = httpx.AsyncClient(timeout=10.0)
    tools = ToolRegistry([CalculatorTool(), FetchUrlTool(http_client)])
    file_store = LocalFileStore(settings.files_dir)

    generation = GenerationService(
        store=store,
        search_backend=search_backend,
        tool_registry=tools,
        file_store=file_store,
        max_query_attempts=settings.max_query_attempts,
        search_results=settings.search_results,
        search_timeout=settings.search_timeout_s,
        title_timeout=settings.title_timeout_s,
        channel_size=settings.channel_size,
    )
    service = ConversationService(
        store,
        generation,
        providers,
        load_model_configs(settings.models_path),
        file_store=file_store,
        settings=settings,
    )
    app.dependency_overrides[get_conversation_service] = lambda: service

    app.state.db = db
    yield

    if search_backend is not None:
        await search_backend.close()
    await http_client.aclose()
    providers.clear()
    await db.close()


app = FastAPI(
    title="chattree",
    description="Branching chat conversations with streamed, cancellable generation",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=load_settings().cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(conversations_router)


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "version": "0.1.0"}


@app.get("/api/models")
async def models(
    service: ConversationService = Depends(get_conversation_service),
) -> list[ModelSummary]:
    return service.list_models()
