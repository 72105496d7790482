"""
api/routes/v1/admin.py -- Administrative session and lockdown endpoints.

Routes (all require_admin):
  GET    /api/v1/admin/sessions                        -- users with live refresh sessions
  DELETE /api/v1/admin/sessions/{refresh_token}        -- revoke one session
  DELETE /api/v1/admin/users/{user_id}/sessions        -- revoke every session of a user
  POST   /api/v1/admin/users/{user_id}/lock            -- security lockdown
  POST   /api/v1/admin/users/{user_id}/unlock          -- clear lockdown
  GET    /api/v1/admin/users/{user_id}/security-events -- audit trail, newest first

Session listings show token prefixes only; full refresh tokens never leave
the store through this API.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import (
    LockRequest,
    LockResponse,
    MessageResponse,
    SecurityEventResponse,
    SessionListResponse,
    SessionSummary,
)
from auth.dependencies import require_admin
from auth.lockdown import LockdownManager
from auth.models import User
from auth.tokens import SessionTokenManager
from core.errors import NotFoundError, ValidationError, token_hint

logger = logging.getLogger("permitauth.api.admin")

router = APIRouter()


def _require_known_user(request: Request, user_id: str) -> User:
    user = request.app.state.user_store.get_by_id(user_id)
    if user is None:
        raise NotFoundError(f"admin action on unknown user {user_id}", "User not found.")
    return user


@router.get("/admin/sessions", response_model=SessionListResponse)
def list_sessions(request: Request, admin: User = Depends(require_admin)) -> SessionListResponse:
    sessions: SessionTokenManager = request.app.state.sessions
    user_store = request.app.state.user_store
    summaries = []
    for user_id, tokens in sorted(sessions.active_sessions().items()):
        user = user_store.get_by_id(user_id)
        summaries.append(
            SessionSummary(
                user_id=user_id,
                email=user.email if user else None,
                session_count=len(tokens),
                refresh_token_hints=[token_hint(t) for t in tokens],
            )
        )
    logger.info("Admin %s listed active sessions (%d users)", admin.id, len(summaries))
    return SessionListResponse(total_sessions=sum(s.session_count for s in summaries), users=summaries)


@router.delete("/admin/sessions/{refresh_token}", response_model=MessageResponse)
def revoke_session(request: Request, refresh_token: str, admin: User = Depends(require_admin)) -> MessageResponse:
    sessions: SessionTokenManager = request.app.state.sessions
    if not sessions.revoke(refresh_token):
        raise NotFoundError(f"session {token_hint(refresh_token)} not found", "Session not found.")
    logger.info("Admin %s revoked session %s", admin.id, token_hint(refresh_token))
    return MessageResponse(message="Session revoked.")


@router.delete("/admin/users/{user_id}/sessions", response_model=MessageResponse)
def revoke_user_sessions(request: Request, user_id: str, admin: User = Depends(require_admin)) -> MessageResponse:
    _require_known_user(request, user_id)
    sessions: SessionTokenManager = request.app.state.sessions
    count = sessions.revoke_all_for_user(user_id)
    if count == 0:
        raise NotFoundError(f"no sessions for {user_id}", "No active sessions found for this user.")
    request.app.state.audit.record(user_id, "sessions_revoked", {"count": count, "admin_id": admin.id})
    return MessageResponse(message=f"Revoked {count} session(s).")


@router.post("/admin/users/{user_id}/lock", response_model=LockResponse)
def lock_user(
    request: Request,
    user_id: str,
    body: LockRequest,
    admin: User = Depends(require_admin),
) -> LockResponse:
    """Freeze an account: lockdown flag, all devices removed, all sessions revoked."""
    _require_known_user(request, user_id)
    if user_id == admin.id:
        raise ValidationError("admin attempted self-lockdown", "You cannot lock your own account.")
    lockdown: LockdownManager = request.app.state.lockdown
    flag = lockdown.lock(
        user_id,
        body.reason,
        actor_id=admin.id,
        ip_address=request.client.host if request.client else "",
        user_agent=request.headers.get("User-Agent", ""),
    )
    return LockResponse(user_id=user_id, locked=True, reason=flag.reason, locked_at=flag.locked_at)


@router.post("/admin/users/{user_id}/unlock", response_model=LockResponse)
def unlock_user(request: Request, user_id: str, admin: User = Depends(require_admin)) -> LockResponse:
    _require_known_user(request, user_id)
    lockdown: LockdownManager = request.app.state.lockdown
    if not lockdown.unlock(user_id, admin.id):
        raise NotFoundError(f"user {user_id} is not locked", "Account is not locked.")
    return LockResponse(user_id=user_id, locked=False)


@router.get("/admin/users/{user_id}/security-events", response_model=list[SecurityEventResponse])
def security_events(
    request: Request,
    user_id: str,
    admin: User = Depends(require_admin),
) -> list[SecurityEventResponse]:
    _require_known_user(request, user_id)
    return [SecurityEventResponse.from_event(e) for e in request.app.state.audit.list(user_id)]
