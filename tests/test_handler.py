"""Tests for the chat turn flow: validation, replay, cache and generation."""

from __future__ import annotations

import asyncio

import pytest

from chat_orchestrator.ai.stream import Done, TextDelta
from chat_orchestrator.core.ids import new_id
from chat_orchestrator.core.types import Role, TextState
from chat_orchestrator.errors import (
    ForbiddenError,
    InternalError,
    InvalidSessionIdError,
    LastMessageNotUserError,
    MissingFieldsError,
    UnauthenticatedError,
    UpstreamGenerationError,
)
from chat_orchestrator.storage.cache import NullCacheBackend, ResponseCache
from chat_orchestrator.storage.models import TextPart
from tests.helpers import (
    ANONYMOUS,
    OTHER_USER,
    OWNER,
    FailingCacheBackend,
    Pause,
    ScriptedClient,
    assistant_message,
    make_turn,
    text_step,
    user_message,
)


async def _text(stream) -> str:
    text = await stream.read_text()
    await stream.wait_closed()
    return text


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raw, error",
        [
            ("not a turn", MissingFieldsError),
            ({"trigger": "submit-message", "messages": []}, MissingFieldsError),
            ({"id": "not-a-uuid", "trigger": "submit-message", "messages": []}, InvalidSessionIdError),
        ],
    )
    async def test_rejected_before_generation(self, build_chat, raw, error):
        client = ScriptedClient()
        handler, _ = build_chat(client)

        with pytest.raises(error):
            await handler.submit_turn(raw, OWNER)

        assert client.calls == 0

    @pytest.mark.asyncio
    async def test_last_message_must_be_user(self, build_chat, store):
        handler, _ = build_chat(ScriptedClient())
        session_id = new_id()

        with pytest.raises(LastMessageNotUserError):
            await handler.submit_turn(make_turn(session_id, assistant_message("hi")), OWNER)

        assert await store.list_session_ids_by_owner("alice") == []

    @pytest.mark.asyncio
    async def test_anonymous_rejected(self, build_chat):
        client = ScriptedClient()
        handler, _ = build_chat(client)

        with pytest.raises(UnauthenticatedError):
            await handler.submit_turn(make_turn(new_id(), user_message("hi")), ANONYMOUS)

        assert client.calls == 0

    @pytest.mark.asyncio
    async def test_non_owner_cannot_continue(self, build_chat):
        client = ScriptedClient(text_step("Hello."))
        handler, _ = build_chat(client)
        session_id = new_id()
        await _text(await handler.submit_turn(make_turn(session_id, user_message("hi")), OWNER))

        with pytest.raises(ForbiddenError):
            await handler.submit_turn(make_turn(session_id, user_message("mine now")), OTHER_USER)

        assert client.calls == 1

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_internal_error(self, build_chat, resolver, monkeypatch):
        async def broken(turn, identity):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(resolver, "resolve", broken)
        handler, _ = build_chat(ScriptedClient())

        with pytest.raises(InternalError) as exc_info:
            await handler.submit_turn(make_turn(new_id(), user_message("hi")), OWNER)

        assert "disk on fire" not in exc_info.value.message


class TestCache:
    @pytest.mark.asyncio
    async def test_repeat_question_served_from_cache(self, build_chat, store):
        client = ScriptedClient(text_step("The Thames."))
        handler, _ = build_chat(client)
        session_id = new_id()
        first = user_message("What river?")
        await _text(await handler.submit_turn(make_turn(session_id, first), OWNER))

        stream = await handler.submit_turn(
            make_turn(session_id, first, user_message("  what RIVER? ")), OWNER
        )
        chunks = [c async for c in stream]

        assert stream.cached is True
        assert stream.streaming is False
        assert chunks[0] == TextDelta("The Thames.")
        assert isinstance(chunks[1], Done)
        assert chunks[1].finish_reason == "cached"
        assert client.calls == 1

        session = await store.get_session(session_id)
        assert [m.role for m in session.messages] == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]
        cached_reply = session.messages[-1]
        assert cached_reply.id == chunks[1].message_id
        assert cached_reply.parts == (TextPart("The Thames."),)

    @pytest.mark.asyncio
    async def test_same_text_without_cache(self, build_chat):
        """Disabling the cache changes how often the model runs, never what the user reads."""
        client = ScriptedClient(text_step("The Thames."), text_step("The Thames."))
        handler, _ = build_chat(client, cache=ResponseCache(NullCacheBackend()))
        session_id = new_id()
        first = user_message("What river?")

        one = await _text(await handler.submit_turn(make_turn(session_id, first), OWNER))
        two = await _text(
            await handler.submit_turn(make_turn(session_id, first, user_message("What river?")), OWNER)
        )

        assert one == two == "The Thames."
        assert client.calls == 2

    @pytest.mark.asyncio
    async def test_unreachable_cache_is_a_miss(self, build_chat):
        backend = FailingCacheBackend()
        client = ScriptedClient(text_step("The Thames."))
        handler, _ = build_chat(client, cache=ResponseCache(backend))

        text = await _text(await handler.submit_turn(make_turn(new_id(), user_message("What river?")), OWNER))

        assert text == "The Thames."
        assert backend.get_calls == 1
        assert backend.set_calls == 1

    @pytest.mark.asyncio
    async def test_sessions_do_not_share_answers(self, build_chat):
        client = ScriptedClient(text_step("The Thames."), text_step("The Congo."))
        handler, _ = build_chat(client)

        await _text(await handler.submit_turn(make_turn(new_id(), user_message("What river?")), OWNER))
        stream = await handler.submit_turn(make_turn(new_id(), user_message("What river?")), OWNER)

        assert stream.cached is False
        assert await _text(stream) == "The Congo."


class TestReplay:
    @pytest.mark.asyncio
    async def test_resubmitted_turn_replays_reply(self, build_chat, store):
        client = ScriptedClient(text_step("The ", "Thames."))
        handler, _ = build_chat(client)
        session_id = new_id()
        turn = make_turn(session_id, user_message("What river?", new_id()))
        await _text(await handler.submit_turn(turn, OWNER))

        stream = await handler.submit_turn(turn, OWNER)
        chunks = [c async for c in stream]

        assert stream.replayed is True
        assert chunks[0] == TextDelta("The Thames.")
        assert chunks[1].finish_reason == "replayed"
        assert client.calls == 1
        assert len((await store.get_session(session_id)).messages) == 2

    @pytest.mark.asyncio
    async def test_failed_turn_is_regenerated(self, build_chat, store):
        client = ScriptedClient([UpstreamGenerationError("down")], text_step("Back again."))
        handler, _ = build_chat(client)
        session_id = new_id()
        turn = make_turn(session_id, user_message("hello", new_id()))

        with pytest.raises(UpstreamGenerationError):
            await handler.submit_turn(turn, OWNER)
        text = await _text(await handler.submit_turn(turn, OWNER))

        assert text == "Back again."
        session = await store.get_session(session_id)
        assert [m.role for m in session.messages] == [Role.USER, Role.ASSISTANT]

    @pytest.mark.asyncio
    async def test_interrupted_reply_is_regenerated(self, build_chat, store, memory_cache):
        client = ScriptedClient([TextDelta("Half "), Pause(asyncio.Event())], text_step("Whole."))
        handler, _ = build_chat(client)
        session_id = new_id()
        turn = make_turn(session_id, user_message("q", new_id()))

        stream = await handler.submit_turn(turn, OWNER)
        await anext(stream)
        await stream.aclose()

        retry = await handler.submit_turn(turn, OWNER)

        assert retry.replayed is False
        assert await _text(retry) == "Whole."
        # the retry answers the user, not the interrupted text
        assert client.requests[1] == [{"role": "user", "content": [{"type": "text", "text": "q"}]}]
        assert await memory_cache.get(session_id, "q") == "Whole."
        assert await memory_cache.get(session_id, "Half ") is None
        session = await store.get_session(session_id)
        assert session.messages[1].parts == (TextPart("Half ", TextState.STREAMING),)
        assert session.messages[2].parts == (TextPart("Whole."),)
