"""
api/routes/auth.py -- Registration, login and password recovery endpoints.

Routes (mounted under /api/auth):
  POST /register                -- create an account; mails a verification link when mail is configured
  GET  /verify-email            -- consume a verification token, redirect to the login page
  POST /login                   -- password login; sets the session cookie
  POST /logout                  -- destroy the server-held session; clear the cookie
  GET  /me                      -- the caller's session snapshot (requires session)
  POST /forgot-password         -- issue a reset token; uniform answer whether the account exists
  GET  /reset-password/verify   -- check a reset token without consuming it
  POST /reset-password          -- consume a reset token and set a new password
  GET  /config                  -- public flags for the login page

Security:
  POST /login, /register and /forgot-password share the login rate limit.
  Login issues a fresh session id and drops the previous one (fixation guard).
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter, login_limit
from api.models import (
    AuthConfigResponse,
    ErrorDetail,
    ErrorResponse,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    ResetPasswordRequest,
    ResetTokenCheckResponse,
    SessionUserResponse,
    SuccessResponse,
)
from auth.dependencies import get_current_user
from auth.errors import AuthServiceError, InvalidOrExpiredTokenError
from auth.models import SessionUser
from auth.service import AccountService
from auth.sessions import SESSION_COOKIE, SessionStore, clear_session_cookie, set_session_cookie

logger = logging.getLogger("summarizer.api.auth")

# Auth policy:
# - POST /register, /verify-email, /login, /logout:      public
# - POST /forgot-password, /reset-password[/verify]:     public
# - GET  /config:                                        public
# - GET  /me:                                            requires session (get_current_user)
router = APIRouter()


def _login_page(request: Request, **params: str) -> str:
    base = request.app.state.settings.app_url.rstrip("/")
    return f"{base}/login?{urlencode(params)}"


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post("/register", response_model=SuccessResponse)
@limiter.limit(login_limit)
def register(request: Request, body: RegisterRequest) -> SuccessResponse:
    """Create an account.

    With mail configured the account starts unverified and a 24-hour
    verification link is mailed; if that send fails the account is rolled
    back and the caller gets 500. Without mail the account is usable at once.
    """
    accounts: AccountService = request.app.state.accounts
    accounts.register(body.email, body.password, body.first_name, body.last_name)
    if accounts.email_verification_required:
        message = "Registration successful! Please check your email to verify your account."
    else:
        message = "Registration successful! You can now log in."
    return SuccessResponse(message=message)


@router.get("/verify-email")
def verify_email(request: Request, token: str = "") -> RedirectResponse:
    """Consume a verification token and send the browser to the login page."""
    accounts: AccountService = request.app.state.accounts
    try:
        if not token:
            raise InvalidOrExpiredTokenError("Invalid verification token.")
        accounts.verify_email_token(token)
    except AuthServiceError as exc:
        logger.info("Email verification failed: %s", exc.message)
        return RedirectResponse(_login_page(request, verified="false", error=exc.message), status_code=302)
    return RedirectResponse(_login_page(request, verified="true"), status_code=302)


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.post("/login", response_model=LoginResponse)
@limiter.limit(login_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Wrong password, unknown email and SSO-only accounts all answer the same
    401 bad_credentials. A correct password on an unverified account answers
    401 email_not_verified.
    """
    accounts: AccountService = request.app.state.accounts
    sessions: SessionStore = request.app.state.session_store
    settings = request.app.state.settings

    snapshot = accounts.login(body.email, body.password)

    previous = getattr(request.state, "session_id", None)
    if previous:
        sessions.destroy(previous)
    session_id = sessions.create(snapshot)

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(user=SessionUserResponse.from_session(snapshot)).model_dump(by_alias=True),
    )
    set_session_cookie(resp, session_id, settings.session_ttl_seconds, settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    logger.info("Login succeeded for user id=%d", snapshot.id)
    return resp


@router.post("/logout", response_model=SuccessResponse)
def logout(request: Request) -> JSONResponse:
    """Destroy the server-held session and clear the cookie.

    Anonymous callers also get 200. A store failure answers 500 and leaves
    the cookie in place so the client can retry.
    """
    sessions: SessionStore = request.app.state.session_store
    session_id = getattr(request.state, "session_id", None) or request.cookies.get(SESSION_COOKIE)
    if session_id:
        try:
            sessions.destroy(session_id)
        except SQLAlchemyError:
            logger.exception("Failed to destroy session")
            return JSONResponse(
                status_code=500,
                content=ErrorResponse(
                    error=ErrorDetail(code="logout_failed", message="Failed to logout.")
                ).model_dump(exclude_none=True),
            )
    resp = JSONResponse(content=SuccessResponse().model_dump(by_alias=True, exclude_none=True))
    clear_session_cookie(resp)
    return resp


@router.get("/me", response_model=SessionUserResponse)
def me(current_user: SessionUser = Depends(get_current_user)) -> SessionUserResponse:
    """Return the snapshot cached in the caller's session."""
    return SessionUserResponse.from_session(current_user)


# ---------------------------------------------------------------------------
# Password recovery
# ---------------------------------------------------------------------------


@router.post("/forgot-password", response_model=SuccessResponse)
@limiter.limit(login_limit)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> SuccessResponse:
    """Start a password reset.

    The message depends only on whether mail is configured, never on whether
    the account exists.
    """
    accounts: AccountService = request.app.state.accounts
    if accounts.request_password_reset(body.email):
        message = "If an account exists with that email, a password reset link has been sent."
    else:
        message = "Password reset email service is not configured. Please contact an administrator."
    return SuccessResponse(message=message)


@router.get("/reset-password/verify", response_model=ResetTokenCheckResponse)
def verify_reset_token(request: Request, token: str = "") -> ResetTokenCheckResponse:
    """Report the email a live reset token belongs to. Does not consume it."""
    accounts: AccountService = request.app.state.accounts
    email = accounts.verify_password_reset_token(token) if token else None
    if email is None:
        raise InvalidOrExpiredTokenError("Invalid or expired reset token.")
    return ResetTokenCheckResponse(email=email)


@router.post("/reset-password", response_model=SuccessResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> SuccessResponse:
    accounts: AccountService = request.app.state.accounts
    accounts.reset_password_with_token(body.token, body.new_password)
    return SuccessResponse(message="Password has been reset successfully. You can now log in with your new password.")


# ---------------------------------------------------------------------------
# Public configuration
# ---------------------------------------------------------------------------


@router.get("/config", response_model=AuthConfigResponse)
def auth_config(request: Request) -> AuthConfigResponse:
    """Tell the login page whether to expect verification mail and an SSO button."""
    accounts: AccountService = request.app.state.accounts
    return AuthConfigResponse(
        email_verification_required=accounts.email_verification_required,
        sso_enabled=request.app.state.settings.sso_configured,
    )
