"""
api/routes/v1/auth.py -- Login, second factor, session and preference endpoints.

Routes:
  POST /api/v1/auth/login                      -- start a login (method chosen from the user's preference)
  POST /api/v1/auth/magiclink/verify           -- redeem a magic link; sets session cookies
  POST /api/v1/auth/verify-otp                 -- complete an email-OTP challenge
  POST /api/v1/auth/verify-totp                -- complete a TOTP challenge
  POST /api/v1/auth/refresh                    -- single-use refresh-token rotation
  POST /api/v1/auth/logout                     -- revoke the refresh token, clear cookies
  POST /api/v1/auth/forgot-password-request    -- email a reset code + link (generic reply)
  POST /api/v1/auth/forgot-password-reset      -- set a new password with code + pre-token
  POST /api/v1/auth/totp/setup|enable|disable  -- authenticator enrollment (self or admin)
  GET  /api/v1/auth/totp/status/{user_id}      -- enrollment state (self or admin)
  GET  /api/v1/auth/me                         -- current user
  POST /api/v1/auth/preferences/method         -- change preferred login method (self or admin)
  GET  /api/v1/auth/preferences/methods/{id}   -- current + available methods (self or admin)

Security:
  [C1] Unknown accounts cost one password-hash verification, same as known ones.
  [M5] Cache-Control: no-store on every response that carries tokens or codes.
  Login rejections are generic and never reveal whether the email exists.
  Errors raised by the auth services are core.errors.AuthError subclasses;
  the handler in api/main.py renders them with their public message only.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import (
    AuthMethodEnum,
    AuthMethodsResponse,
    ForgotPasswordRequest,
    ForgotPasswordResetRequest,
    LoginRequest,
    LoginResponse,
    MagicLinkVerifyRequest,
    MessageResponse,
    RefreshRequest,
    SetAuthMethodRequest,
    TokenResponse,
    TotpDisableRequest,
    TotpEnableRequest,
    TotpSetupRequest,
    TotpSetupResponse,
    TotpStatusResponse,
    UserResponse,
    VerifyOtpRequest,
    VerifyTotpRequest,
)
from auth.dependencies import get_current_user
from auth.login import LoginOrchestrator, LoginOutcome, LoginState
from auth.models import AuthMethod, User
from auth.tokens import REFRESH_COOKIE, SessionTokenManager, clear_session_cookies, set_session_cookies
from core.errors import UnauthorizedError

# Auth policy:
# - login, magiclink/verify, verify-otp, verify-totp, refresh, logout,
#   forgot-password-*:                      public -- they ARE the authentication step
# - me:                                     requires auth (get_current_user)
# - totp/*, preferences/*:                  requires auth; target user must be the caller or caller is admin
router = APIRouter()


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else ""


def _require_self_or_admin(current_user: User, user_id: str) -> None:
    """IDOR guard for endpoints that name a user id in the request."""
    if current_user.id != user_id and current_user.role != "admin":
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You may only manage your own account."},
        )


def _outcome_response(outcome: LoginOutcome) -> JSONResponse:
    """Render a LoginOutcome; session outcomes also get cookies."""
    body = LoginResponse(
        message=outcome.message,
        state=outcome.state.value,
        user_id=outcome.user.id if outcome.user and outcome.state is not LoginState.REJECTED else None,
        auth_method=AuthMethodEnum(outcome.auth_method.value) if outcome.auth_method else None,
        requires_otp=outcome.requires_otp,
        requires_totp=outcome.requires_totp,
        trusted_device=outcome.trusted_device,
        pre_token=outcome.pre_token,
        expires_at=outcome.expires_at,
        redirect_url=outcome.redirect_url,
    )
    if outcome.state is LoginState.MAGIC_LINK_SENT:
        # Same body as an unknown email apart from the expiry.
        body.user_id = None
    if outcome.state is LoginState.SESSION_ISSUED and outcome.tokens is not None:
        body.access_token = outcome.tokens.access_token
        body.refresh_token = outcome.tokens.refresh_token
        body.expires_in = outcome.tokens.access_expires_in
        body.user = UserResponse.from_user(outcome.user)

    resp = JSONResponse(status_code=200, content=body.model_dump(mode="json"))
    if outcome.tokens is not None:
        set_session_cookies(resp, outcome.tokens)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public login endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Start a login. The next step depends on the user's preferred method:

    password       -> session, or a second-factor challenge (requires_otp / requires_totp)
    magic_link     -> link emailed; completion via /auth/magiclink/verify
    authenticator  -> TOTP challenge (requires_totp)
    """
    orchestrator: LoginOrchestrator = request.app.state.login
    fingerprint = body.device_fingerprint.to_domain(_client_ip(request))
    outcome = orchestrator.initiate(body.email, body.password, fingerprint)
    return _outcome_response(outcome)


@router.post("/auth/magiclink/verify", response_model=LoginResponse)
def verify_magic_link(request: Request, body: MagicLinkVerifyRequest) -> JSONResponse:
    orchestrator: LoginOrchestrator = request.app.state.login
    fingerprint = body.device_fingerprint.to_domain(_client_ip(request))
    outcome = orchestrator.complete_magic_link(body.token, fingerprint, trust_device=body.trust_device)
    return _outcome_response(outcome)


@router.post("/auth/verify-otp", response_model=LoginResponse)
def verify_otp(request: Request, body: VerifyOtpRequest) -> JSONResponse:
    orchestrator: LoginOrchestrator = request.app.state.login
    fingerprint = body.device_fingerprint.to_domain(_client_ip(request)) if body.device_fingerprint else None
    outcome = orchestrator.verify_otp(
        body.user_id, body.otp, body.pre_token, trust_device=body.trust_device, fingerprint=fingerprint
    )
    return _outcome_response(outcome)


@router.post("/auth/verify-totp", response_model=LoginResponse)
def verify_totp(request: Request, body: VerifyTotpRequest) -> JSONResponse:
    orchestrator: LoginOrchestrator = request.app.state.login
    fingerprint = body.device_fingerprint.to_domain(_client_ip(request)) if body.device_fingerprint else None
    outcome = orchestrator.verify_totp(
        body.user_id, body.totp_code, trust_device=body.trust_device, fingerprint=fingerprint
    )
    return _outcome_response(outcome)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest | None = None) -> JSONResponse:
    """Rotate the refresh token from the body or the refresh_token cookie.

    The presented token is dead after this call whether or not the client
    receives the response.
    """
    sessions: SessionTokenManager = request.app.state.sessions
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise UnauthorizedError("refresh called without a token", "Session invalid. Please log in again.")
    _user_id, pair = sessions.rotate(token)
    resp = JSONResponse(
        content=TokenResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.access_expires_in,
        ).model_dump()
    )
    set_session_cookies(resp, pair)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: RefreshRequest | None = None) -> JSONResponse:
    """Revoke the refresh token (body or cookie) and clear both cookies."""
    orchestrator: LoginOrchestrator = request.app.state.login
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    orchestrator.logout(token)
    resp = JSONResponse(content={"message": "Logged out."})
    clear_session_cookies(resp)
    return resp


# ---------------------------------------------------------------------------
# Password reset (public)
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password-request", response_model=MessageResponse)
def forgot_password_request(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    orchestrator: LoginOrchestrator = request.app.state.login
    return MessageResponse(message=orchestrator.request_password_reset(body.email))


@router.post("/auth/forgot-password-reset", response_model=MessageResponse)
def forgot_password_reset(request: Request, body: ForgotPasswordResetRequest) -> MessageResponse:
    orchestrator: LoginOrchestrator = request.app.state.login
    orchestrator.reset_password(body.user_id, body.otp, body.pre_token, body.new_password)
    return MessageResponse(message="Password reset successfully. Please log in with your new password.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    return UserResponse.from_user(current_user)


@router.post("/auth/totp/setup", response_model=TotpSetupResponse)
def totp_setup(
    request: Request,
    body: TotpSetupRequest,
    current_user: User = Depends(get_current_user),
) -> TotpSetupResponse:
    """Start authenticator enrollment. The secret is shown once; confirm within 10 minutes."""
    _require_self_or_admin(current_user, body.user_id)
    setup = request.app.state.login.begin_totp_setup(body.user_id)
    return TotpSetupResponse(secret=setup.secret, qr_code_url=setup.provisioning_uri, manual_key=setup.manual_key)


@router.post("/auth/totp/enable", response_model=MessageResponse)
def totp_enable(
    request: Request,
    body: TotpEnableRequest,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    _require_self_or_admin(current_user, body.user_id)
    request.app.state.login.enable_totp(body.user_id, body.totp_code)
    return MessageResponse(message="TOTP enabled successfully.")


@router.post("/auth/totp/disable", response_model=MessageResponse)
def totp_disable(
    request: Request,
    body: TotpDisableRequest,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    """Disable TOTP. Requires the target account's password even for admins."""
    _require_self_or_admin(current_user, body.user_id)
    request.app.state.login.disable_totp(body.user_id, body.password)
    return MessageResponse(message="TOTP disabled successfully.")


@router.get("/auth/totp/status/{user_id}", response_model=TotpStatusResponse)
def totp_status(
    request: Request,
    user_id: str,
    current_user: User = Depends(get_current_user),
) -> TotpStatusResponse:
    _require_self_or_admin(current_user, user_id)
    status = request.app.state.login.totp_status(user_id)
    return TotpStatusResponse(user_id=user_id, **status)


@router.post("/auth/preferences/method", response_model=AuthMethodsResponse)
def set_auth_method(
    request: Request,
    body: SetAuthMethodRequest,
    current_user: User = Depends(get_current_user),
) -> AuthMethodsResponse:
    """Change the preferred login method. All of the user's sessions are revoked."""
    _require_self_or_admin(current_user, body.user_id)
    orchestrator: LoginOrchestrator = request.app.state.login
    orchestrator.set_auth_method(body.user_id, AuthMethod(body.method.value))
    return AuthMethodsResponse(user_id=body.user_id, **orchestrator.auth_methods(body.user_id))


@router.get("/auth/preferences/methods/{user_id}", response_model=AuthMethodsResponse)
def get_auth_methods(
    request: Request,
    user_id: str,
    current_user: User = Depends(get_current_user),
) -> AuthMethodsResponse:
    _require_self_or_admin(current_user, user_id)
    return AuthMethodsResponse(user_id=user_id, **request.app.state.login.auth_methods(user_id))
