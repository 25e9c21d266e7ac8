"""Conversation persistence for avatar sessions."""

from typing import Any, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from barback.core.db import store_errors
from barback.models.conversation import Conversation, ConversationMessage
from barback.utils.datetime import Clock, now_utc

Turn = tuple[str, str, Optional[dict[str, Any]]]


class ConversationStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = now_utc,
    ):
        self._session_factory = session_factory
        self._clock = clock

    async def get_or_create(
        self,
        session_id: str,
        requester_id: Optional[str] = None,
        platform: str = "avatar_stream",
    ) -> Conversation:
        """Conversation for a session, with its messages loaded."""
        stmt = select(Conversation).where(Conversation.session_id == session_id)
        async with store_errors("conversation lookup"):
            async with self._session_factory() as db:
                conversation = (await db.execute(stmt)).scalar_one_or_none()
                if conversation is not None:
                    return conversation

                now = self._clock()
                conversation = Conversation(
                    session_id=session_id,
                    requester_id=requester_id,
                    platform=platform,
                    created_at=now,
                    updated_at=now,
                    messages=[],
                )
                db.add(conversation)
                try:
                    await db.commit()
                except IntegrityError:
                    # created concurrently under the unique session_id
                    await db.rollback()
                    return (await db.execute(stmt)).scalar_one()
                return conversation

    async def append_turns(self, conversation_id: int, turns: Sequence[Turn]) -> None:
        """Persist turns in order, in one transaction."""
        now = self._clock()
        async with store_errors("conversation write"):
            async with self._session_factory() as db:
                for role, content, metadata in turns:
                    db.add(
                        ConversationMessage(
                            conversation_id=conversation_id,
                            role=role,
                            content=content,
                            created_at=now,
                            message_metadata=metadata,
                        )
                    )
                await db.execute(
                    update(Conversation)
                    .where(Conversation.id == conversation_id)
                    .values(updated_at=now)
                )
                await db.commit()

    async def history(self, session_id: str) -> list[ConversationMessage]:
        stmt = (
            select(ConversationMessage)
            .join(Conversation)
            .where(Conversation.session_id == session_id)
            .order_by(ConversationMessage.id)
        )
        async with store_errors("conversation history"):
            async with self._session_factory() as db:
                return list((await db.execute(stmt)).scalars().all())
