"""Shared test fixtures and configuration."""

from __future__ import annotations

from collections.abc import Callable

import pytest
import pytest_asyncio

from chat_orchestrator.ai.client import GenerationClient
from chat_orchestrator.ai.handler import ChatHandler
from chat_orchestrator.ai.tool_runner import GenerationOrchestrator
from chat_orchestrator.ai.tools.filesystem import SandboxFileSystem
from chat_orchestrator.ai.tools.reference import ReferenceLibrary
from chat_orchestrator.ai.tools.registry import ToolRegistry
from chat_orchestrator.config import AIConfig
from chat_orchestrator.core.session import SessionResolver
from chat_orchestrator.storage.cache import MemoryCacheBackend, ResponseCache
from chat_orchestrator.storage.database import Database
from chat_orchestrator.storage.session_repo import SqliteSessionStore
from tests.helpers import REFERENCE_TEXT


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(str(tmp_path / "test.db"))
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def store(database):
    return SqliteSessionStore(database)


@pytest.fixture
def resolver(store):
    return SessionResolver(store)


@pytest.fixture
def ai_config():
    return AIConfig(
        system_prompt="You are a test assistant.",
        max_steps=3,
        generation_timeout=5,
        tool_timeout=2,
        stream_buffer=4,
    )


@pytest.fixture
def reference_file(tmp_path):
    path = tmp_path / "reference.txt"
    path.write_text(REFERENCE_TEXT, encoding="utf-8")
    return path


@pytest.fixture
def sandbox(tmp_path):
    return SandboxFileSystem(tmp_path / "sandbox")


@pytest.fixture
def tool_registry(sandbox, reference_file):
    return ToolRegistry(sandbox, ReferenceLibrary(reference_file))


@pytest.fixture
def memory_cache():
    return ResponseCache(MemoryCacheBackend())


@pytest.fixture
def build_chat(resolver, tool_registry, ai_config, memory_cache) -> Callable:
    """Factory for (handler, orchestrator) around a given generation client."""

    def _build(
        client: GenerationClient,
        cache: ResponseCache | None = None,
        **config_overrides,
    ) -> tuple[ChatHandler, GenerationOrchestrator]:
        cache = cache if cache is not None else memory_cache
        config = ai_config.model_copy(update=config_overrides)
        orchestrator = GenerationOrchestrator(client, tool_registry, resolver, cache, config)
        return ChatHandler(resolver, orchestrator, cache), orchestrator

    return _build
