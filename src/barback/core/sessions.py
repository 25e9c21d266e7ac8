"""Registry of realtime avatar sessions and the per-turn message pipeline.

A registered session owns provider-side transport resources. Closing it
removes it from the registry first, so it stops being addressable before
the provider round-trip, then releases the provider stream. A turn that is
in flight while its session closes still finishes: the reply is persisted
and returned, only the speak dispatch is skipped.
"""

import asyncio
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from barback.core.avatar import AvatarProvider, TransportHandle, TransportOffer
from barback.core.context import (
    ContextBuilder,
    build_prompt,
    estimate_complexity,
    format_context,
    recent_history,
)
from barback.core.conversations import ConversationStore
from barback.core.db import store_errors
from barback.core.errors import NotFoundError, ProviderUnavailableError, StoreUnavailableError
from barback.core.generation import Generator
from barback.core.logging import bound_log_context, get_logger
from barback.models.enums import MessageRole, StreamStatus
from barback.models.stream_session import StreamSession
from barback.utils.datetime import Clock, now_utc

logger = get_logger(__name__)

SESSION_IDLE_MAX_MINUTES = int(os.getenv("SESSION_IDLE_MAX_MINUTES", "30"))


@dataclass
class LiveSession:
    id: str
    handle: TransportHandle
    offer: TransportOffer
    status: StreamStatus
    created_at: datetime
    last_activity: datetime
    avatar_source: Optional[str] = None
    started_at: Optional[datetime] = None
    # Serializes turns within one session
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)


@dataclass(frozen=True)
class TurnResult:
    session_id: str
    conversation_id: int
    reply: str
    model: str
    usage: dict[str, int]
    dispatched: bool
    talk: Optional[dict[str, Any]] = None
    segments: tuple[str, ...] = ()


class SessionRegistry:
    """Owns every live session in the process."""

    def __init__(
        self,
        provider: AvatarProvider,
        generator: Generator,
        context_builder: ContextBuilder,
        session_factory: async_sessionmaker[AsyncSession],
        conversations: Optional[ConversationStore] = None,
        clock: Clock = now_utc,
    ):
        self._provider = provider
        self._generator = generator
        self._context_builder = context_builder
        self._session_factory = session_factory
        self._conversations = conversations or ConversationStore(session_factory, clock=clock)
        self._clock = clock
        self._sessions: dict[str, LiveSession] = {}

    def get(self, session_id: str) -> LiveSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    def list_active(self) -> list[LiveSession]:
        return sorted(self._sessions.values(), key=lambda s: s.created_at)

    def __len__(self) -> int:
        return len(self._sessions)

    async def create(self, avatar_source: Optional[str] = None) -> LiveSession:
        """Open a provider stream and register it under a new session id."""
        handle, offer = await self._provider.open_session(avatar_source)
        now = self._clock()
        session = LiveSession(
            id=str(uuid.uuid4()),
            handle=handle,
            offer=offer,
            status=StreamStatus.CREATED,
            created_at=now,
            last_activity=now,
            avatar_source=avatar_source,
        )

        try:
            async with store_errors("session create"):
                async with self._session_factory() as db:
                    db.add(
                        StreamSession(
                            id=session.id,
                            provider_stream_id=handle.stream_id,
                            avatar_source=avatar_source,
                            status=StreamStatus.CREATED.value,
                            created_at=now,
                            last_activity_at=now,
                        )
                    )
                    await db.commit()
        except StoreUnavailableError:
            # Never registered, so nothing else would ever release the stream
            await self._release(session)
            raise

        self._sessions[session.id] = session
        logger.info("sessions.created", session_id=session.id, stream_id=handle.stream_id)
        return session

    async def start(self, session_id: str, answer: dict[str, Any]) -> LiveSession:
        """Complete transport negotiation with the client's answer."""
        session = self.get(session_id)
        await self._provider.complete_negotiation(session.handle, answer)
        if self._sessions.get(session_id) is not session:
            # Closed while negotiating
            raise NotFoundError("Session", session_id)

        now = self._clock()
        session.status = StreamStatus.STARTED
        session.started_at = now
        session.last_activity = now
        await self._persist(
            session_id,
            status=StreamStatus.STARTED.value,
            started_at=now,
            last_activity_at=now,
        )
        logger.info("sessions.started", session_id=session_id)
        return session

    async def submit_transport_candidate(self, session_id: str, candidate: dict[str, Any]) -> bool:
        """Forward an ICE candidate. Provider failures are logged, not raised."""
        session = self.get(session_id)
        session.last_activity = self._clock()
        try:
            await self._provider.submit_candidate(session.handle, candidate)
        except ProviderUnavailableError as exc:
            logger.warning("sessions.candidate_failed", session_id=session_id, error=exc.message)
            return False
        return True

    async def handle_message(
        self, session_id: str, text: str, requester_id: Optional[str] = None
    ) -> TurnResult:
        """Run one conversational turn: context, generation, persistence, dispatch.

        The turn is persisted before dispatch, so an avatar failure never
        loses it; the reply comes back either way with ``dispatched`` set.
        """
        session = self.get(session_id)
        session.last_activity = self._clock()

        with bound_log_context(session_id=session_id):
            return await self._run_turn(session, text, requester_id)

    async def _run_turn(
        self, session: LiveSession, text: str, requester_id: Optional[str]
    ) -> TurnResult:
        session_id = session.id
        async with session.lock:
            conversation = await self._conversations.get_or_create(session_id, requester_id)
            turns = [(message.role, message.content) for message in conversation.messages]

            context = await self._context_builder.build(text)
            prompt = build_prompt(
                text,
                format_context(context),
                session_id,
                message_count=len(turns),
            )
            complexity = estimate_complexity(text)
            result = await self._generator.generate(
                prompt, recent_history(turns), complexity=complexity
            )

            await self._conversations.append_turns(
                conversation.id,
                [
                    (
                        MessageRole.USER.value,
                        text,
                        {"input_mode": "voice", "stream_id": session.handle.stream_id},
                    ),
                    (
                        MessageRole.ASSISTANT.value,
                        result.text,
                        {"model": result.model, "usage": dict(result.usage)},
                    ),
                ],
            )

            talk = await self._dispatch(session, result.text)
            session.last_activity = self._clock()

        segments = tuple(self._context_builder.segments_for(context.keywords))
        logger.info(
            "sessions.turn_completed",
            model=result.model,
            dispatched=talk is not None,
            segments=list(segments),
        )
        return TurnResult(
            session_id=session_id,
            conversation_id=conversation.id,
            reply=result.text,
            model=result.model,
            usage=dict(result.usage),
            dispatched=talk is not None,
            talk=talk,
            segments=segments,
        )

    async def close(self, session_id: str, reason: str = "client") -> bool:
        """Release provider resources and forget the session. False if already gone."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False

        session.status = StreamStatus.CLOSED
        await self._release(session)
        await self._persist(
            session_id,
            status=StreamStatus.CLOSED.value,
            closed_at=self._clock(),
            last_activity_at=session.last_activity,
            close_reason=reason,
        )
        logger.info("sessions.closed", session_id=session_id, reason=reason)
        return True

    async def sweep_idle(self, max_age_minutes: int = SESSION_IDLE_MAX_MINUTES) -> int:
        """Close every session with no activity for ``max_age_minutes``."""
        cutoff = self._clock() - timedelta(minutes=max_age_minutes)
        idle = [s.id for s in list(self._sessions.values()) if s.last_activity < cutoff]

        closed = 0
        for session_id in idle:
            try:
                if await self.close(session_id, reason="idle"):
                    closed += 1
            except StoreUnavailableError as exc:
                # Provider side is already released; only the record lags behind
                logger.error("sessions.sweep_persist_failed", session_id=session_id, error=exc.message)
                closed += 1
        if closed:
            logger.info("sessions.swept", closed=closed, remaining=len(self._sessions))
        return closed

    async def close_all(self) -> int:
        closed = 0
        for session_id in list(self._sessions):
            try:
                if await self.close(session_id, reason="shutdown"):
                    closed += 1
            except StoreUnavailableError as exc:
                logger.error("sessions.shutdown_persist_failed", session_id=session_id, error=exc.message)
        return closed

    async def _dispatch(self, session: LiveSession, text: str) -> Optional[dict[str, Any]]:
        if self._sessions.get(session.id) is not session:
            logger.warning("sessions.dispatch_skipped", session_id=session.id, reason="closed")
            return None
        try:
            return await self._provider.speak(session.handle, text)
        except ProviderUnavailableError as exc:
            logger.error("sessions.dispatch_failed", session_id=session.id, error=exc.message)
            return None

    async def _release(self, session: LiveSession) -> None:
        try:
            await self._provider.close_session(session.handle)
        except ProviderUnavailableError as exc:
            logger.warning("sessions.release_failed", session_id=session.id, error=exc.message)

    async def _persist(self, session_id: str, **values: Any) -> None:
        async with store_errors("session update"):
            async with self._session_factory() as db:
                await db.execute(
                    update(StreamSession)
                    .where(StreamSession.id == session_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
