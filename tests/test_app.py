"""Tests for application wiring."""

from __future__ import annotations

import pytest

from chat_orchestrator.app import ChatOrchestratorApp, create_cache_backend
from chat_orchestrator.config import AppConfig, CacheConfig, StorageConfig, ToolsConfig
from chat_orchestrator.core.ids import new_id
from chat_orchestrator.storage.cache import MemoryCacheBackend, NullCacheBackend, RedisCacheBackend
from tests.helpers import OWNER, ScriptedClient, make_turn, text_step, user_message


@pytest.fixture
def app_config(tmp_path, reference_file):
    return AppConfig(
        storage=StorageConfig(db_path=str(tmp_path / "app.db")),
        tools=ToolsConfig(sandbox_dir=str(tmp_path / "sandbox"), reference_path=str(reference_file)),
        cache=CacheConfig(backend="memory"),
    )


class TestCacheBackendSelection:
    @pytest.mark.parametrize(
        "config, expected",
        [
            (CacheConfig(backend="none"), NullCacheBackend),
            (CacheConfig(backend="memory"), MemoryCacheBackend),
            (CacheConfig(backend="redis"), NullCacheBackend),
            (CacheConfig(backend="redis", url="redis://localhost:6379/0"), RedisCacheBackend),
        ],
    )
    def test_backend(self, config, expected):
        assert isinstance(create_cache_backend(config), expected)


class TestApp:
    def test_generation_backend_required(self, app_config):
        with pytest.raises(ValueError, match="anthropic"):
            ChatOrchestratorApp(app_config)

    @pytest.mark.asyncio
    async def test_chat_round_trip(self, app_config):
        client = ScriptedClient(text_step("The Thames."))
        session_id = new_id()

        async with ChatOrchestratorApp(app_config, client=client) as app:
            stream = await app.handler.submit_turn(make_turn(session_id, user_message("What river?")), OWNER)
            assert await stream.read_text() == "The Thames."
            await stream.wait_closed()

            assert await app.handler.list_sessions_for_user("alice", OWNER) == [session_id]

        assert client.closed is True

    @pytest.mark.asyncio
    async def test_configured_tools_only(self, app_config):
        app_config.ai.tools = ["referenceQA"]

        app = ChatOrchestratorApp(app_config, client=ScriptedClient())

        assert [t["name"] for t in app.tool_registry.api_definitions()] == ["referenceQA"]
