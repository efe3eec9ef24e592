"""Chat handler: the operations exposed to the transport layer."""

from __future__ import annotations

from typing import Any

import structlog

from chat_orchestrator.ai.stream import TurnStream
from chat_orchestrator.ai.tool_runner import GenerationOrchestrator
from chat_orchestrator.core.authorization import require_access
from chat_orchestrator.core.ids import new_id
from chat_orchestrator.core.session import SessionResolver
from chat_orchestrator.core.types import Identity, Role, TextState, TurnState
from chat_orchestrator.core.validation import Turn, validate_turn
from chat_orchestrator.errors import ChatError, InternalError, NotFoundError
from chat_orchestrator.log import get_logger
from chat_orchestrator.storage.cache import ResponseCache
from chat_orchestrator.storage.models import Message, Session, TextPart

logger = get_logger(__name__)


def _is_complete_reply(message: Message) -> bool:
    texts = [p for p in message.parts if isinstance(p, TextPart)]
    return bool(texts) and all(p.state == TextState.DONE for p in texts)


def _find_reply(session: Session, user_message_id: str) -> Message | None:
    """The completed assistant reply that follows *user_message_id*, if any."""
    ids = [m.id for m in session.messages]
    try:
        start = ids.index(user_message_id) + 1
    except ValueError:
        return None
    for message in session.messages[start:]:
        if message.role == Role.USER:
            break
        if message.role == Role.ASSISTANT and _is_complete_reply(message):
            return message
    return None


class ChatHandler:
    """Handles the full flow: turn -> session -> cache -> generation -> stream."""

    def __init__(
        self,
        resolver: SessionResolver,
        orchestrator: GenerationOrchestrator,
        cache: ResponseCache,
    ):
        self._resolver = resolver
        self._orchestrator = orchestrator
        self._cache = cache

    async def submit_turn(self, raw_turn: Any, identity: Identity) -> TurnStream:
        """Accept one chat turn and return the stream of the assistant reply.

        Raises a ChatError subclass when the turn is rejected or the reply
        cannot be started.
        """
        with structlog.contextvars.bound_contextvars(user_id=identity.user_id):
            try:
                _transition(TurnState.VALIDATING)
                turn = validate_turn(raw_turn)
                with structlog.contextvars.bound_contextvars(session_id=turn.session_id):
                    return await self._handle_turn(turn, identity)
            except ChatError as e:
                _transition(TurnState.FAILED, kind=e.kind, code=e.code)
                raise
            except Exception as e:
                logger.exception("turn_internal_error")
                _transition(TurnState.FAILED, kind=InternalError.kind)
                raise InternalError("The request could not be processed") from e

    async def _handle_turn(self, turn: Turn, identity: Identity) -> TurnStream:
        _transition(TurnState.RESOLVING)
        resolved = await self._resolver.resolve(turn, identity)
        session = resolved.session

        if not resolved.delta:
            answered = _find_reply(session, turn.last_message.id)
            if answered is not None:
                logger.info("turn_replayed", message_id=answered.id)
                _transition(TurnState.DONE, replayed=True)
                return TurnStream.completed(session.id, answered.text, answered.id, replayed=True)
            # The earlier attempt never got a reply; generate it now

        _transition(TurnState.CACHE_CHECK)
        question = turn.last_message.text
        cached = await self._cache.get(session.id, question)

        if cached is not None:
            _transition(TurnState.CACHE_HIT)
            message = Message(id=new_id(), role=Role.ASSISTANT, parts=(TextPart(cached),))
            _transition(TurnState.PERSISTING)
            await self._resolver.append_reply(session.id, [message])
            _transition(TurnState.DONE, cached=True)
            return TurnStream.completed(session.id, cached, message.id, cached=True)

        _transition(TurnState.CACHE_MISS)
        _transition(TurnState.GENERATING)
        stream = await self._orchestrator.start(session, question)
        return stream

    async def list_sessions_for_user(self, target_user_id: str, identity: Identity) -> list[str]:
        """Ids of the sessions owned by *target_user_id*, most recent first."""
        require_access(identity, target_user_id)
        session_ids = await self._resolver.store.list_session_ids_by_owner(target_user_id)
        logger.debug("sessions_listed", owner_id=target_user_id, count=len(session_ids))
        return session_ids

    async def get_session_content(
        self, session_id: str, target_user_id: str, identity: Identity
    ) -> Session:
        """Full content of one of *target_user_id*'s sessions."""
        require_access(identity, target_user_id)
        session = await self._resolver.store.get_session(session_id)
        if session.owner_id != target_user_id:
            raise NotFoundError(f"No chat data for {session_id}")
        return session


def _transition(state: TurnState, **fields: Any) -> None:
    logger.debug("turn_state", state=state.value, **fields)
