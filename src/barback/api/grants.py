"""Access grant API endpoints for ultra shelf items."""

from fastapi import APIRouter, Depends, status

from barback.api.deps import get_grant_workflow
from barback.core.grants import GrantWorkflow
from barback.core.logging import get_logger
from barback.models.grant_schemas import (
    AuthorizationCheck,
    GrantRead,
    GrantRequestCreate,
    GrantResolve,
    GrantStats,
    RevokeResult,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/grants", tags=["grants"])


@router.post("", response_model=GrantRead, status_code=status.HTTP_201_CREATED)
async def request_grant(
    body: GrantRequestCreate,
    grants: GrantWorkflow = Depends(get_grant_workflow),
):
    """Ask the owner for access to an ultra shelf item.

    409 DUPLICATE_REQUEST when the pair already has a pending request or an
    active grant; ``details.state`` tells which.
    """
    return await grants.request(body.session_id, body.item_id, body.requester_name)


@router.get("/pending", response_model=list[GrantRead])
async def list_pending(grants: GrantWorkflow = Depends(get_grant_workflow)):
    """Requests waiting on the owner, newest first."""
    return await grants.list_pending()


@router.get("/stats", response_model=GrantStats)
async def grant_stats(grants: GrantWorkflow = Depends(get_grant_workflow)):
    return await grants.stats()


@router.get("/check", response_model=AuthorizationCheck)
async def check_authorization(
    session_id: str,
    item_id: str,
    grants: GrantWorkflow = Depends(get_grant_workflow),
):
    authorized = await grants.is_authorized(session_id, item_id)
    return AuthorizationCheck(session_id=session_id, item_id=item_id, authorized=authorized)


@router.get("/sessions/{session_id}", response_model=list[GrantRead])
async def list_session_grants(
    session_id: str,
    grants: GrantWorkflow = Depends(get_grant_workflow),
):
    """Active grants held by one session."""
    return await grants.list_for_session(session_id)


@router.post("/revoke", response_model=RevokeResult)
async def revoke_grant(
    session_id: str,
    item_id: str,
    grants: GrantWorkflow = Depends(get_grant_workflow),
):
    revoked = await grants.revoke(session_id, item_id)
    return RevokeResult(session_id=session_id, item_id=item_id, revoked=revoked)


@router.get("/{request_id}", response_model=GrantRead)
async def get_grant(request_id: str, grants: GrantWorkflow = Depends(get_grant_workflow)):
    return await grants.get(request_id)


@router.post("/{request_id}/resolve", response_model=GrantRead)
async def resolve_grant(
    request_id: str,
    body: GrantResolve,
    grants: GrantWorkflow = Depends(get_grant_workflow),
):
    """Approve or deny a pending request.

    409 ALREADY_RESOLVED if it was decided before, 409 REQUEST_EXPIRED if its
    window closed while it was still pending.
    """
    grant = await grants.resolve(request_id, body.approved, body.note)
    logger.info("grants.resolved_via_api", request_id=request_id, approved=body.approved)
    return grant
