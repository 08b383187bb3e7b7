"""Shared pytest fixtures for chattree tests."""

import pytest
from httpx import ASGITransport, AsyncClient

from chattree.config import Settings
from chattree.conversations.router import get_conversation_service
from chattree.conversations.service import ConversationService
from chattree.conversations.store import ConversationStore
from chattree.db.connection import Database
from chattree.files.store import LocalFileStore
from chattree.generation.service import GenerationService
from chattree.main import app
from chattree.providers.registry import ProviderRegistry
from chattree.tools.builtin import CalculatorTool
from chattree.tools.registry import ToolRegistry
from tests.fixtures import FakeProvider, FakeSearchBackend, make_model_config, make_source


@pytest.fixture
async def db():
    """In-memory database for tests."""
    database = await Database.connect(":memory:")
    yield database
    await database.close()


@pytest.fixture
async def store(db):
    return ConversationStore(db)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def search_backend():
    return FakeSearchBackend([[make_source(1), make_source(2)]])


@pytest.fixture
def file_store(tmp_path):
    return LocalFileStore(tmp_path / "files")


@pytest.fixture
def settings():
    return Settings(default_model="test-model")


@pytest.fixture
async def conversation_service(store, provider, search_backend, file_store, settings):
    providers = ProviderRegistry()
    providers.register(provider)
    generation = GenerationService(
        store=store,
        search_backend=search_backend,
        tool_registry=ToolRegistry([CalculatorTool()]),
        file_store=file_store,
    )
    return ConversationService(
        store,
        generation,
        providers,
        {
            "test-model": make_model_config(),
            "tool-model": make_model_config(id="tool-model", tools=True),
        },
        file_store=file_store,
        settings=settings,
    )


@pytest.fixture
async def client(conversation_service):
    """Async test client with the conversation service wired into the app."""
    app.dependency_overrides[get_conversation_service] = lambda: conversation_service
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    app.dependency_overrides.clear()
