"""Tests for the session registry and the per-turn pipeline."""

import asyncio

import httpx
import pytest
from sqlalchemy import select

from barback.core.avatar import DIDAvatarProvider
from barback.core.catalog import CatalogLoader
from barback.core.catalog_cache import CatalogCache
from barback.core.context import ContextBuilder
from barback.core.conversations import ConversationStore
from barback.core.errors import NotFoundError, ProviderUnavailableError
from barback.core.sessions import SessionRegistry
from barback.models.enums import StreamStatus
from barback.models.stream_session import StreamSession

ANSWER = {"type": "answer", "sdp": "v=0"}


@pytest.fixture
def conversations(session_factory, clock):
    return ConversationStore(session_factory, clock=clock)


@pytest.fixture
def registry(avatar, generator, session_factory, conversations, clock, catalog):
    builder = ContextBuilder(CatalogCache(CatalogLoader(session_factory), clock=clock))
    return SessionRegistry(
        avatar,
        generator,
        builder,
        session_factory,
        conversations=conversations,
        clock=clock,
    )


async def load_record(session_factory, session_id) -> StreamSession:
    async with session_factory() as db:
        return (
            await db.execute(select(StreamSession).where(StreamSession.id == session_id))
        ).scalar_one()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_create_registers_and_persists(self, registry, avatar, session_factory, clock):
        session = await registry.create("https://cdn.example.org/bartender.png")

        assert registry.get(session.id) is session
        assert session.status == StreamStatus.CREATED
        assert session.offer.offer["type"] == "offer"
        assert avatar.opened == [session.handle]

        record = await load_record(session_factory, session.id)
        assert record.provider_stream_id == "strm_1"
        assert record.status == "created"
        assert record.created_at == clock()

    @pytest.mark.asyncio
    async def test_start_completes_negotiation(self, registry, avatar, session_factory, clock):
        session = await registry.create()
        started_at = clock.advance(seconds=3)

        await registry.start(session.id, ANSWER)

        assert avatar.negotiated == [(session.handle, ANSWER)]
        assert session.status == StreamStatus.STARTED
        assert session.started_at == started_at
        record = await load_record(session_factory, session.id)
        assert record.status == "started"
        assert record.started_at == started_at

    @pytest.mark.asyncio
    async def test_rejected_negotiation_keeps_session_created(self, registry, avatar):
        session = await registry.create()
        avatar.reject_negotiation = True

        with pytest.raises(ProviderUnavailableError):
            await registry.start(session.id, ANSWER)

        assert session.status == StreamStatus.CREATED
        assert registry.get(session.id) is session

    @pytest.mark.asyncio
    async def test_unknown_session(self, registry):
        with pytest.raises(NotFoundError):
            await registry.start("nope", ANSWER)
        with pytest.raises(NotFoundError):
            await registry.handle_message("nope", "hello")
        with pytest.raises(NotFoundError):
            await registry.submit_transport_candidate("nope", {"candidate": "c"})

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, registry, avatar, session_factory):
        session = await registry.create()

        assert await registry.close(session.id) is True
        assert await registry.close(session.id) is False
        assert avatar.closed == [session.handle]
        with pytest.raises(NotFoundError):
            registry.get(session.id)

        record = await load_record(session_factory, session.id)
        assert record.status == "closed"
        assert record.close_reason == "client"

    @pytest.mark.asyncio
    async def test_close_survives_provider_failure(self, registry, avatar):
        session = await registry.create()
        avatar.fail_close = True

        assert await registry.close(session.id) is True
        assert len(registry) == 0


class TestTransportCandidates:
    @pytest.mark.asyncio
    async def test_candidate_forwarded(self, registry, avatar):
        session = await registry.create()
        candidate = {"candidate": "candidate:1 1 udp", "sdpMid": "0", "sdpMLineIndex": 0}

        assert await registry.submit_transport_candidate(session.id, candidate) is True
        assert avatar.candidates == [(session.handle, candidate)]

    @pytest.mark.asyncio
    async def test_candidate_failure_returns_false(self, registry, avatar):
        session = await registry.create()
        avatar.fail_candidates = True

        assert await registry.submit_transport_candidate(session.id, {"candidate": "c"}) is False
        assert registry.get(session.id) is session


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_turn_is_generated_persisted_and_spoken(
        self, registry, avatar, generator, conversations
    ):
        session = await registry.create()
        await registry.start(session.id, ANSWER)

        result = await registry.handle_message(session.id, "Any good bourbon tonight?", "guest-7")

        assert result.reply == generator.text
        assert result.model == "fake-low"
        assert result.usage["total_tokens"] == 132
        assert result.dispatched is True
        assert result.talk == {"id": "tlk_1", "status": "started"}
        assert result.segments == ("spirits",)
        assert avatar.spoken == [(session.handle, generator.text)]

        prompt = generator.calls[0]["prompt"]
        assert "Any good bourbon tonight?" in prompt
        assert "Pappy Van Winkle 23 Year" in prompt

        history = await conversations.history(session.id)
        assert [(m.role, m.content) for m in history] == [
            ("user", "Any good bourbon tonight?"),
            ("assistant", generator.text),
        ]
        assert history[1].message_metadata["model"] == "fake-low"

    @pytest.mark.asyncio
    async def test_second_turn_sees_first_in_history(self, registry, generator):
        session = await registry.create()
        first = await registry.handle_message(session.id, "Hello there")
        second = await registry.handle_message(session.id, "What would you recommend?")

        assert first.conversation_id == second.conversation_id
        assert generator.calls[0]["history"] == []
        assert generator.calls[1]["history"] == [
            ("user", "Hello there"),
            ("assistant", generator.text),
        ]
        assert generator.calls[1]["complexity"] == "medium"

    @pytest.mark.asyncio
    async def test_dispatch_failure_still_returns_reply(self, registry, avatar, conversations):
        session = await registry.create()
        avatar.fail_speak = True

        result = await registry.handle_message(session.id, "A beer please")

        assert result.dispatched is False
        assert result.talk is None
        assert result.segments == ("beers",)
        assert len(await conversations.history(session.id)) == 2

    @pytest.mark.asyncio
    async def test_unreadable_talk_reply_still_returns_reply(
        self, generator, session_factory, conversations, clock, catalog
    ):
        def gateway(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/talks/streams":
                return httpx.Response(201, json={"id": "strm_1", "session_id": "sess_1"})
            return httpx.Response(200, text="<html>502 Bad Gateway</html>")

        client = httpx.AsyncClient(
            transport=httpx.MockTransport(gateway), base_url="https://avatar.test"
        )
        registry = SessionRegistry(
            DIDAvatarProvider(client=client, default_source_url="https://cdn.example.org/b.png"),
            generator,
            ContextBuilder(CatalogCache(CatalogLoader(session_factory), clock=clock)),
            session_factory,
            conversations=conversations,
            clock=clock,
        )
        session = await registry.create()

        result = await registry.handle_message(session.id, "A beer please")

        assert result.reply == generator.text
        assert result.dispatched is False
        assert len(await conversations.history(session.id)) == 2

    @pytest.mark.asyncio
    async def test_generation_failure_persists_nothing(self, registry, generator, conversations):
        session = await registry.create()
        generator.fail = True

        with pytest.raises(ProviderUnavailableError):
            await registry.handle_message(session.id, "A beer please")

        assert await conversations.history(session.id) == []

    @pytest.mark.asyncio
    async def test_message_updates_last_activity(self, registry, clock):
        session = await registry.create()
        later = clock.advance(minutes=10)

        await registry.handle_message(session.id, "Hello")

        assert session.last_activity == later

    @pytest.mark.asyncio
    async def test_close_during_turn_skips_dispatch(
        self, registry, avatar, generator, conversations
    ):
        session = await registry.create()
        generator.gate = asyncio.Event()

        turn = asyncio.create_task(registry.handle_message(session.id, "Negroni please"))
        await generator.started.wait()
        assert await registry.close(session.id) is True
        generator.gate.set()
        result = await turn

        assert result.dispatched is False
        assert avatar.spoken == []
        assert len(await conversations.history(session.id)) == 2

    @pytest.mark.asyncio
    async def test_turns_in_one_session_are_serialized(self, registry, generator):
        session = await registry.create()
        generator.gate = asyncio.Event()

        first = asyncio.create_task(registry.handle_message(session.id, "Hello"))
        second = asyncio.create_task(registry.handle_message(session.id, "Another round"))
        await generator.started.wait()
        for _ in range(5):
            await asyncio.sleep(0)
        assert len(generator.calls) == 1

        generator.gate.set()
        await asyncio.gather(first, second)
        assert len(generator.calls) == 2
        assert len(generator.calls[1]["history"]) == 2


class TestSweeps:
    @pytest.mark.asyncio
    async def test_sweep_closes_only_idle_sessions(self, registry, avatar, clock, session_factory):
        idle = await registry.create()
        active = await registry.create()
        clock.advance(minutes=20)
        await registry.submit_transport_candidate(active.id, {"candidate": "c"})
        clock.advance(minutes=15)

        assert await registry.sweep_idle(max_age_minutes=30) == 1
        assert [s.id for s in registry.list_active()] == [active.id]
        assert avatar.closed == [idle.handle]

        record = await load_record(session_factory, idle.id)
        assert record.close_reason == "idle"

    @pytest.mark.asyncio
    async def test_sweep_with_nothing_idle(self, registry):
        await registry.create()
        assert await registry.sweep_idle() == 0
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_close_all(self, registry, avatar, clock):
        first = await registry.create()
        clock.advance(seconds=1)
        second = await registry.create()

        assert [s.id for s in registry.list_active()] == [first.id, second.id]
        assert await registry.close_all() == 2
        assert len(registry) == 0
        assert len(avatar.closed) == 2
