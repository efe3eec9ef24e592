"""Session resolver: create-vs-continue decisions and ordered appends."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass

from chat_orchestrator.core.types import Identity
from chat_orchestrator.core.validation import Turn
from chat_orchestrator.errors import (
    ForbiddenError,
    NotFoundError,
    UnauthenticatedError,
    VersionConflictError,
)
from chat_orchestrator.log import get_logger
from chat_orchestrator.storage.models import Message, Session
from chat_orchestrator.storage.session_repo import SessionStore

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ResolvedTurn:
    session: Session  # state after the delta was persisted
    delta: tuple[Message, ...]
    created: bool


class SessionResolver:
    """Maps an inbound turn onto a persisted session.

    Appends to one session id are serialized by an in-process lock and
    guarded in the store by a version compare-and-swap; a lost race is
    retried once after re-reading.
    """

    def __init__(self, store: SessionStore):
        self._store = store
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @property
    def store(self) -> SessionStore:
        return self._store

    async def resolve(self, turn: Turn, identity: Identity) -> ResolvedTurn:
        """Persist the turn's new messages and return the updated session."""
        if not identity.is_authenticated:
            raise UnauthenticatedError("User not authenticated")

        async with self._session_lock(turn.session_id):
            try:
                return await self._resolve_once(turn, identity)
            except VersionConflictError:
                logger.info("append_conflict_retry", session_id=turn.session_id)
                return await self._resolve_once(turn, identity)

    async def append_reply(self, session_id: str, messages: Sequence[Message]) -> Session:
        """Append generated messages at the current tail of the session."""
        async with self._session_lock(session_id):
            try:
                session = await self._store.get_session(session_id)
                return await self._store.append_messages(session_id, session.version, messages)
            except VersionConflictError:
                logger.info("append_conflict_retry", session_id=session_id)
                session = await self._store.get_session(session_id)
                return await self._store.append_messages(session_id, session.version, messages)

    async def _resolve_once(self, turn: Turn, identity: Identity) -> ResolvedTurn:
        try:
            session = await self._store.get_session(turn.session_id)
        except NotFoundError:
            logger.info("session_new", session_id=turn.session_id, owner_id=identity.user_id)
            session = await self._store.create_session(
                turn.session_id, identity.user_id, turn.messages
            )
            return ResolvedTurn(session=session, delta=turn.messages, created=True)

        if session.owner_id != identity.user_id:
            logger.warning(
                "session_write_denied",
                session_id=session.id,
                requester_id=identity.user_id,
                owner_id=session.owner_id,
            )
            raise ForbiddenError("Only the owner of a chat may continue it")

        known = session.message_ids
        delta = tuple(m for m in turn.messages if m.id not in known)
        if not delta:
            logger.info("turn_already_persisted", session_id=session.id)
            return ResolvedTurn(session=session, delta=(), created=False)

        session = await self._store.append_messages(session.id, session.version, delta)
        logger.info("session_continued", session_id=session.id, appended=len(delta))
        return ResolvedTurn(session=session, delta=delta, created=False)

    @asynccontextmanager
    async def _session_lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._waiters[session_id] = self._waiters.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[session_id] -= 1
            if self._waiters[session_id] == 0:
                del self._waiters[session_id]
                del self._locks[session_id]
