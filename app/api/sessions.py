"""Account security endpoints.

Provides:
- GET /account/sessions - live device sessions, current first
- POST /account/sessions/{id}/revoke - revoke another session
"""

from fastapi import APIRouter, BackgroundTasks, Request, Response

from app.api.dependencies import PrincipalDep, SessionDep, schedule_outbox_drain, set_session_cookie
from app.api.fingerprint import fingerprint_from_request
from app.api.schemas import (
    ErrorResponse,
    SessionRevokeResponse,
    SessionSchema,
    SessionsListResponse,
)
from app.application.session_service import SessionRegistry
from app.domain.entities import DeviceSession

router = APIRouter(prefix="/account/sessions", tags=["Sessions"])


def session_to_schema(device_session: DeviceSession, current_id: int | None) -> SessionSchema:
    return SessionSchema(
        id=device_session.id,
        created_at=device_session.created_at,
        last_seen_at=device_session.last_seen_at,
        device=device_session.fingerprint.device,
        os=device_session.fingerprint.os,
        ip=device_session.fingerprint.ip,
        city=device_session.geo.city,
        country=device_session.geo.country,
        is_primary=device_session.is_primary,
        is_current=device_session.id == current_id,
    )


@router.get("", response_model=SessionsListResponse, summary="List sessions")
async def list_sessions(
    request: Request,
    response: Response,
    identity: PrincipalDep,
    session: SessionDep,
    background_tasks: BackgroundTasks,
) -> SessionsListResponse:
    """List live sessions with the caller's session first.

    Sessions sharing a fingerprint are collapsed before listing.
    """
    fingerprint, geo = fingerprint_from_request(request)
    listing = await SessionRegistry(session).list_sessions(
        identity.principal_id, identity.session_token, fingerprint, geo
    )
    if listing.issued_token:
        set_session_cookie(response, listing.issued_token)
        schedule_outbox_drain(background_tasks)

    return SessionsListResponse(
        sessions=[session_to_schema(s, listing.current_id) for s in listing.sessions],
        can_revoke_others=listing.can_revoke_others,
        cooldown_hours_left=listing.cooldown_hours_left,
    )


@router.post(
    "/{session_id}/revoke",
    response_model=SessionRevokeResponse,
    responses={
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Revoke session",
)
async def revoke_session(
    session_id: int,
    identity: PrincipalDep,
    session: SessionDep,
) -> SessionRevokeResponse:
    """Revoke another session of the caller's account."""
    revoked = await SessionRegistry(session).revoke_other(
        identity.principal_id, identity.session_token, session_id
    )
    return SessionRevokeResponse(session_id=revoked.id, revoked_at=revoked.revoked_at)
