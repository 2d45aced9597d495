"""
auth/oauth.py -- Authlib OAuth/OIDC registry for Microsoft SSO.

build_oauth() is called from the API lifespan with the explicit Settings
object. The "microsoft" client is registered only when both client id and
secret are configured; routes check settings.sso_configured before using it.

OAuth state parameter (CSRF protection) is handled by authlib automatically
via Starlette SessionMiddleware. The signed session cookie stores the state
between the authorization redirect and the callback.

Microsoft identity platform specifics:
  - Discovery: https://login.microsoftonline.com/{tenant}/v2.0/.well-known/openid-configuration
  - Stable user id: the "oid" claim (object id within the tenant). "sub" is
    pairwise per application and is only used when "oid" is absent.
  - Email: "email" is optional in Entra ID tokens; work accounts reliably
    carry "preferred_username" (the UPN) instead.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.sso import ExternalProfile
from core.config import Settings

logger = logging.getLogger("summarizer.auth.oauth")

PROVIDER = "microsoft"

_DISCOVERY_URL = "https://login.microsoftonline.com/{tenant}/v2.0/.well-known/openid-configuration"


def build_oauth(settings: Settings) -> OAuth:
    """Return an authlib registry with the Microsoft client registered if configured."""
    oauth = OAuth()
    if settings.sso_configured:
        oauth.register(
            name=PROVIDER,
            client_id=settings.microsoft_client_id,
            client_secret=settings.microsoft_client_secret,
            server_metadata_url=_DISCOVERY_URL.format(tenant=settings.microsoft_tenant_id),
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Microsoft SSO provider registered (tenant=%s)", settings.microsoft_tenant_id)
    return oauth


def profile_from_userinfo(userinfo: dict) -> ExternalProfile:
    """Map Microsoft id_token claims to an ExternalProfile.

    Raises ValueError if the claims carry no stable id or no email-like
    identifier -- the caller treats that as a failed sign-in.
    """
    external_id = userinfo.get("oid") or userinfo.get("sub")
    email = userinfo.get("email") or userinfo.get("preferred_username") or ""
    if not external_id:
        raise ValueError("Microsoft SSO: missing oid/sub claim in userinfo")
    if not email:
        raise ValueError("Microsoft SSO: missing email and preferred_username claims")

    first = userinfo.get("given_name") or ""
    last = userinfo.get("family_name") or ""
    if not first and not last:
        name = (userinfo.get("name") or "").strip()
        first, _, last = name.partition(" ")
    return ExternalProfile(external_id=str(external_id), email=email, first_name=first, last_name=last)


# Tenant aliases whose discovery document publishes a templated issuer
# ("https://login.microsoftonline.com/{tenantid}/v2.0").
_MULTI_TENANT = {"common", "organizations", "consumers"}


def id_token_claims_options(settings: Settings) -> dict | None:
    """Claims options for id_token validation, or None for authlib's default.

    A single-tenant app keeps the default exact issuer match. The multi-tenant
    aliases never match the templated issuer, so only presence is required.
    """
    if settings.microsoft_tenant_id.lower() in _MULTI_TENANT:
        return {"iss": {"essential": True}}
    return None
