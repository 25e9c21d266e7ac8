"""Pytest configuration and fixtures."""

import asyncio
import itertools
from datetime import datetime, timedelta
from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from barback.core.avatar import TransportHandle, TransportOffer
from barback.core.db import Base, create_session_factory
from barback.core.errors import ProviderUnavailableError
from barback.core.generation import GenerationResult
from barback.main import create_app

# Import all models
import barback.models  # noqa: F401
from tests.factories import seed_catalog


class FakeClock:
    """Injectable clock; time only moves when a test says so."""

    def __init__(self, start: datetime = datetime(2026, 3, 14, 20, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeAvatarProvider:
    """In-process avatar provider that records every call."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.opened: list[TransportHandle] = []
        self.negotiated: list[tuple[TransportHandle, dict]] = []
        self.candidates: list[tuple[TransportHandle, dict]] = []
        self.spoken: list[tuple[TransportHandle, str]] = []
        self.closed: list[TransportHandle] = []
        self.reject_negotiation = False
        self.fail_candidates = False
        self.fail_speak = False
        self.fail_close = False

    async def open_session(self, avatar_source: Optional[str] = None):
        n = next(self._ids)
        handle = TransportHandle(stream_id=f"strm_{n}", session_token=f"sess_{n}")
        self.opened.append(handle)
        offer = TransportOffer(
            offer={"type": "offer", "sdp": "v=0"},
            ice_servers=[{"urls": "stun:stun.example.org"}],
        )
        return handle, offer

    async def complete_negotiation(self, handle: TransportHandle, answer: dict[str, Any]) -> None:
        if self.reject_negotiation:
            raise ProviderUnavailableError("avatar", "stream start failed: rejected")
        self.negotiated.append((handle, answer))

    async def submit_candidate(self, handle: TransportHandle, candidate: dict[str, Any]) -> None:
        if self.fail_candidates:
            raise ProviderUnavailableError("avatar", "ice candidate failed: gone")
        self.candidates.append((handle, candidate))

    async def speak(self, handle: TransportHandle, text: str) -> dict[str, Any]:
        if self.fail_speak:
            raise ProviderUnavailableError("avatar", "talk creation failed: busy")
        self.spoken.append((handle, text))
        return {"id": f"tlk_{len(self.spoken)}", "status": "started"}

    async def close_session(self, handle: TransportHandle) -> None:
        if self.fail_close:
            raise ProviderUnavailableError("avatar", "stream close failed: gone")
        self.closed.append(handle)


class FakeGenerator:
    """Generation pipeline stand-in. Set ``gate`` to hold a turn mid-generation."""

    def __init__(self, text: str = "May I suggest an Old Fashioned?"):
        self.text = text
        self.calls: list[dict[str, Any]] = []
        self.fail = False
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()

    async def generate(self, prompt: str, history=(), complexity: str = "low") -> GenerationResult:
        self.calls.append({"prompt": prompt, "history": list(history), "complexity": complexity})
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ProviderUnavailableError("generation", "model fake returned 500")
        return GenerationResult(
            text=self.text,
            model=f"fake-{complexity}",
            usage={"input_tokens": 120, "output_tokens": 12, "total_tokens": 132},
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def avatar() -> FakeAvatarProvider:
    return FakeAvatarProvider()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database file per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'barback_test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def catalog(db_session: AsyncSession):
    """Demo catalog: restricted and unrestricted spirits plus a few other segments."""
    return await seed_catalog(db_session)


@pytest_asyncio.fixture
async def app(engine, catalog, avatar, generator):
    """App with its lifespan running against the test database and fake providers."""
    app = create_app(engine=engine, avatar=avatar, generator=generator)
    async with app.router.lifespan_context(app):
        yield app


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac
