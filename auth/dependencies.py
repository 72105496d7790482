"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Credentials are checked in priority order:
  1. "access_token" cookie -- set by the browser login flows.
  2. Authorization: Bearer <token> header -- API clients.
  3. "refresh_token" cookie -- only when no valid access token was found.
     The refresh token is rotated (single use) and the fresh pair is written
     back as cookies on the outgoing response, so an expired access cookie
     renews itself transparently. The pair is also kept on
     request.state.rotated_pair: when the route then fails, the exception
     handlers in api/main.py build a fresh response and re-apply it.

All paths converge on a User. A user under security lockdown is rejected
with AccountLockedError even when their access token is still valid.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_user() and raises HTTP 403 if not admin.

Layer rule: auth/dependencies.py may import from fastapi (for Request,
Response, HTTPException) because this module is part of the FastAPI
dependency injection system. No imports from api/.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request, Response

from auth.models import User
from auth.tokens import ACCESS, ACCESS_COOKIE, REFRESH_COOKIE, SessionTokenManager, set_session_cookies
from core.errors import (
    AccountLockedError,
    AlreadyUsedError,
    ExpiredError,
    MismatchError,
    UnauthorizedError,
)

logger = logging.getLogger("permitauth.auth.dependencies")

_REJECTED = (UnauthorizedError, ExpiredError, AlreadyUsedError, MismatchError)


def _access_token(request: Request) -> str | None:
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


def try_get_current_user(request: Request, response: Response) -> User | None:
    """Authenticate the request. Returns None on any credential failure.

    Raises AccountLockedError for a locked account and DependencyError when
    the store is unreachable; neither is a credential problem.
    """
    state = request.app.state
    sessions: SessionTokenManager = state.sessions
    user_id: str | None = None

    token = _access_token(request)
    if token:
        try:
            user_id = str(sessions.decode(token, ACCESS)["sub"])
        except _REJECTED:
            user_id = None

    if user_id is None:
        refresh = request.cookies.get(REFRESH_COOKIE)
        if refresh:
            try:
                user_id, pair = sessions.rotate(refresh)
            except _REJECTED as exc:
                logger.info("Silent refresh failed: %s", exc)
                return None
            set_session_cookies(response, pair)
            # The old refresh token is gone; error responses must carry the new pair too.
            request.state.rotated_pair = pair

    if user_id is None:
        return None

    user = state.user_store.get_by_id(user_id)
    if user is None or not user.is_active:
        return None
    if state.devices.is_locked(user.id):
        raise AccountLockedError(f"request from locked user {user.id}")
    return user


def get_current_user(request: Request, response: Response) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request, response)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Session invalid. Please log in again."},
        )
    return user


def require_admin(request: Request, response: Response) -> User:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    user = get_current_user(request, response)
    if user.role != "admin":
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user
