"""Realtime avatar stream endpoints."""

from fastapi import APIRouter, Depends, Query, status

from barback.api.deps import get_session_registry
from barback.core.logging import get_logger
from barback.core.sessions import SESSION_IDLE_MAX_MINUTES, LiveSession, SessionRegistry
from barback.models.stream_schemas import (
    CloseResult,
    IceCandidate,
    IceResult,
    StreamCreate,
    StreamCreated,
    StreamMessage,
    StreamRead,
    StreamReply,
    StreamStart,
    SweepResult,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/streams", tags=["streams"])


def _to_read(session: LiveSession) -> StreamRead:
    return StreamRead(
        id=session.id,
        status=session.status.value,
        created_at=session.created_at,
        started_at=session.started_at,
        last_activity=session.last_activity,
        avatar_source=session.avatar_source,
    )


@router.post("", response_model=StreamCreated, status_code=status.HTTP_201_CREATED)
async def create_stream(
    body: StreamCreate | None = None,
    sessions: SessionRegistry = Depends(get_session_registry),
):
    """Open a provider stream; the client answers the returned offer via /start."""
    session = await sessions.create(body.avatar_source if body else None)
    return StreamCreated(
        session_id=session.id,
        stream_id=session.handle.stream_id,
        offer=session.offer.offer,
        ice_servers=session.offer.ice_servers,
    )


@router.get("", response_model=list[StreamRead])
async def list_streams(sessions: SessionRegistry = Depends(get_session_registry)):
    return [_to_read(session) for session in sessions.list_active()]


@router.post("/cleanup", response_model=SweepResult)
async def cleanup_streams(
    max_age_minutes: int = Query(SESSION_IDLE_MAX_MINUTES, ge=1),
    sessions: SessionRegistry = Depends(get_session_registry),
):
    """Close sessions idle for longer than ``max_age_minutes``."""
    closed = await sessions.sweep_idle(max_age_minutes)
    return SweepResult(closed=closed, remaining=len(sessions))


@router.get("/{session_id}", response_model=StreamRead)
async def get_stream(session_id: str, sessions: SessionRegistry = Depends(get_session_registry)):
    return _to_read(sessions.get(session_id))


@router.post("/{session_id}/start", response_model=StreamRead)
async def start_stream(
    session_id: str,
    body: StreamStart,
    sessions: SessionRegistry = Depends(get_session_registry),
):
    return _to_read(await sessions.start(session_id, body.answer))


@router.post("/{session_id}/ice", response_model=IceResult)
async def submit_ice_candidate(
    session_id: str,
    body: IceCandidate,
    sessions: SessionRegistry = Depends(get_session_registry),
):
    forwarded = await sessions.submit_transport_candidate(session_id, body.model_dump())
    return IceResult(forwarded=forwarded)


@router.post("/{session_id}/message", response_model=StreamReply)
async def send_message(
    session_id: str,
    body: StreamMessage,
    sessions: SessionRegistry = Depends(get_session_registry),
):
    """Run one conversational turn and have the avatar speak the reply."""
    result = await sessions.handle_message(session_id, body.text, body.requester_id)
    return StreamReply(
        session_id=result.session_id,
        conversation_id=result.conversation_id,
        reply=result.reply,
        model=result.model,
        usage=result.usage,
        dispatched=result.dispatched,
        segments=list(result.segments),
    )


@router.delete("/{session_id}", response_model=CloseResult)
async def close_stream(session_id: str, sessions: SessionRegistry = Depends(get_session_registry)):
    """Close a stream. Closing an already closed stream is not an error."""
    closed = await sessions.close(session_id)
    return CloseResult(session_id=session_id, closed=closed)
