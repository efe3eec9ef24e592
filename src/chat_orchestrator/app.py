"""Application composition root - wires all components and manages lifecycle."""

from __future__ import annotations

from chat_orchestrator.ai.client import AnthropicClient, GenerationClient
from chat_orchestrator.ai.handler import ChatHandler
from chat_orchestrator.ai.tool_runner import GenerationOrchestrator
from chat_orchestrator.ai.tools.filesystem import SandboxFileSystem
from chat_orchestrator.ai.tools.reference import DEFAULT_KEYWORD_RULES, ReferenceLibrary
from chat_orchestrator.ai.tools.registry import ToolRegistry
from chat_orchestrator.config import AppConfig, CacheConfig
from chat_orchestrator.core.session import SessionResolver
from chat_orchestrator.log import get_logger
from chat_orchestrator.storage.cache import (
    CacheBackend,
    MemoryCacheBackend,
    NullCacheBackend,
    RedisCacheBackend,
    ResponseCache,
)
from chat_orchestrator.storage.database import Database
from chat_orchestrator.storage.session_repo import SqliteSessionStore

logger = get_logger(__name__)


class ChatOrchestratorApp:
    """Top-level application object.

    The generation client and cache backend can be injected; otherwise
    they are built from the configuration.
    """

    def __init__(
        self,
        config: AppConfig,
        client: GenerationClient | None = None,
        cache_backend: CacheBackend | None = None,
    ):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.store = SqliteSessionStore(self.db)
        self.resolver = SessionResolver(self.store)
        self.cache = ResponseCache(
            cache_backend if cache_backend is not None else create_cache_backend(config.cache),
            ttl_seconds=config.cache.ttl_seconds,
            key_prefix=config.cache.key_prefix,
        )
        self.client = client if client is not None else self._create_client()

        rules = [(r.triggers, r.keywords) for r in config.tools.keyword_rules] or DEFAULT_KEYWORD_RULES
        self.tool_registry = ToolRegistry(
            SandboxFileSystem(config.tools.sandbox_dir),
            ReferenceLibrary(
                config.tools.reference_path,
                title=config.tools.reference_title,
                rules=rules,
            ),
            enabled=config.ai.tools,
        )
        self.orchestrator = GenerationOrchestrator(
            client=self.client,
            tools=self.tool_registry,
            resolver=self.resolver,
            cache=self.cache,
            config=config.ai,
        )
        self.handler = ChatHandler(self.resolver, self.orchestrator, self.cache)

    async def start(self) -> None:
        """Initialize storage."""
        await self.db.initialize()
        logger.info(
            "chat_orchestrator_started",
            model=self.config.ai.model,
            cache=self.config.cache.backend,
            tools=len(self.tool_registry.all_tools()),
        )

    async def stop(self) -> None:
        """Release the client, cache and database."""
        try:
            await self.client.close()
        except Exception as e:
            logger.error("client_close_error", error=str(e))
        try:
            await self.cache.close()
        except Exception as e:
            logger.error("cache_close_error", error=str(e))
        await self.db.close()
        logger.info("chat_orchestrator_stopped")

    async def __aenter__(self) -> ChatOrchestratorApp:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def _create_client(self) -> GenerationClient:
        if not self.config.anthropic:
            raise ValueError("No 'anthropic' section in config; a generation backend is required")
        return AnthropicClient(self.config.anthropic)


def create_cache_backend(config: CacheConfig) -> CacheBackend:
    """Build the response cache backend selected in the configuration."""
    match config.backend:
        case "none":
            return NullCacheBackend()
        case "memory":
            return MemoryCacheBackend()
        case "redis":
            if not config.url:
                logger.warning("cache_disabled", reason="redis backend without url")
                return NullCacheBackend()
            return RedisCacheBackend(config.url)
        case _:
            raise ValueError(f"Unknown cache backend: {config.backend}")
