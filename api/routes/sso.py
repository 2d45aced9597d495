"""
api/routes/sso.py -- Microsoft SSO sign-in and the allowed-domain whitelist.

Routes (mounted under /api/auth):
  GET    /microsoft/login      -- redirect to Microsoft (404 when SSO is not configured)
  GET    /microsoft/callback   -- code exchange, provisioning, session cookie, redirect to the app
  GET    /domains              -- list allowed domains (admin)
  POST   /domains              -- add a domain (admin)
  DELETE /domains/{id}         -- remove a domain (admin)

Callback failures never render an error body; the browser is sent back to
{APP_URL}/login?error=<code> with one of:
  sso_failed          token exchange failed or the claims were unusable
  domain_not_allowed  new identity whose email domain is not whitelisted
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.models import DomainCreateRequest, DomainResponse, SuccessResponse
from auth.dependencies import require_admin
from auth.errors import DomainNotAllowedError
from auth.models import SessionUser
from auth.oauth import PROVIDER, id_token_claims_options, profile_from_userinfo
from auth.sessions import SessionStore, set_session_cookie
from auth.sso import SsoProvisioningService

logger = logging.getLogger("summarizer.api.sso")

# Auth policy:
# - GET /microsoft/login, /microsoft/callback:  public
# - /domains, /domains/{id}:                    requires admin (require_admin)
router = APIRouter()


def _app_url(request: Request) -> str:
    return request.app.state.settings.app_url.rstrip("/")


def _login_error(request: Request, code: str) -> RedirectResponse:
    return RedirectResponse(f"{_app_url(request)}/login?{urlencode({'error': code})}", status_code=302)


def _client(request: Request):
    """Return the registered Microsoft client, or raise 404 when SSO is off."""
    if not request.app.state.settings.sso_configured:
        raise HTTPException(
            status_code=404,
            detail={"code": "sso_not_configured", "message": "Microsoft SSO is not configured."},
        )
    return request.app.state.oauth.create_client(PROVIDER)


# ---------------------------------------------------------------------------
# Sign-in flow
# ---------------------------------------------------------------------------


@router.get("/microsoft/login")
async def microsoft_login(request: Request):
    """Redirect the browser to the Microsoft authorization page.

    The OAuth state is stored in the signed SessionMiddleware cookie and
    checked by authlib in the callback.
    """
    client = _client(request)
    redirect_uri = request.app.state.settings.microsoft_redirect_uri or str(request.url_for("microsoft_callback"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/microsoft/callback", name="microsoft_callback")
async def microsoft_callback(request: Request) -> RedirectResponse:
    """Exchange the code, provision or link the local user, start a session.

    Flow:
      1. Exchange the authorization code (authlib verifies state and id_token).
      2. Map the id_token claims to an ExternalProfile.
      3. SsoProvisioningService.get_or_create_user(): returning, linked or new.
      4. Issue a fresh session, set the cookie, redirect to the dashboard.
    """
    client = _client(request)
    settings = request.app.state.settings
    sso: SsoProvisioningService = request.app.state.sso
    sessions: SessionStore = request.app.state.session_store

    try:
        token = await client.authorize_access_token(request, claims_options=id_token_claims_options(settings))
    except OAuthError:
        logger.exception("Microsoft token exchange failed")
        return _login_error(request, "sso_failed")

    try:
        userinfo = token.get("userinfo") or await client.userinfo(token=token)
        profile = profile_from_userinfo(dict(userinfo))
    except (OAuthError, ValueError):
        logger.warning("Microsoft SSO rejected: unusable claims")
        return _login_error(request, "sso_failed")

    try:
        user, outcome = await run_in_threadpool(sso.get_or_create_user, profile)
    except DomainNotAllowedError:
        return _login_error(request, "domain_not_allowed")

    previous = getattr(request.state, "session_id", None)
    if previous:
        await run_in_threadpool(sessions.destroy, previous)
    session_id = await run_in_threadpool(sessions.create, SessionUser.from_user(user))

    logger.info("Microsoft SSO login for user id=%d (%s)", user.id, outcome)
    resp = RedirectResponse(f"{_app_url(request)}/", status_code=302)
    set_session_cookie(resp, session_id, settings.session_ttl_seconds, settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Allowed domains (admin only)
# ---------------------------------------------------------------------------


@router.get("/domains", response_model=list[DomainResponse])
def list_domains(
    request: Request,
    current_user: SessionUser = Depends(require_admin),
) -> list[DomainResponse]:
    sso: SsoProvisioningService = request.app.state.sso
    return [DomainResponse.from_domain(d) for d in sso.list_domains()]


@router.post("/domains", response_model=DomainResponse, status_code=201)
def add_domain(
    request: Request,
    body: DomainCreateRequest,
    current_user: SessionUser = Depends(require_admin),
) -> DomainResponse:
    """Whitelist a domain for first-time SSO sign-ups. Stored lowercase."""
    sso: SsoProvisioningService = request.app.state.sso
    return DomainResponse.from_domain(sso.add_domain(body.domain, added_by=current_user.id))


@router.delete("/domains/{domain_id}", response_model=SuccessResponse)
def remove_domain(
    request: Request,
    domain_id: int,
    current_user: SessionUser = Depends(require_admin),
) -> SuccessResponse:
    """Remove a domain. Accounts already provisioned from it are unaffected."""
    sso: SsoProvisioningService = request.app.state.sso
    sso.remove_domain(domain_id)
    return SuccessResponse()
