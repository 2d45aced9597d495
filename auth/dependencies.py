"""
auth/dependencies.py -- Session identity loading and FastAPI route guards.

attach_session_user() runs once per request from the HTTP middleware in
api/main.py. It reads the session cookie, loads the server-held snapshot and
stores it on request.state:

  request.state.session_id  -- cookie value, or None
  request.state.user        -- SessionUser, or None (anonymous)

Guards (use with Depends()):
  get_current_user()  Anonymous -> 401; otherwise the SessionUser.
  require_admin()     Anything but a session whose cached role is "admin" -> 403.

require_admin() deliberately trusts the session-cached role and does not read
the users table: an admin demoted by another admin keeps admin access until
their session ends (see auth/sessions.py).

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import SessionUser
from auth.sessions import SESSION_COOKIE, SessionStore


def attach_session_user(request: Request) -> SessionUser | None:
    """Resolve the request's session cookie to a snapshot and cache it on request.state."""
    session_store: SessionStore = request.app.state.session_store
    session_id = request.cookies.get(SESSION_COOKIE) or None
    user = session_store.get(session_id) if session_id else None
    request.state.session_id = session_id if user is not None else None
    request.state.user = user
    return user


def try_get_current_user(request: Request) -> SessionUser | None:
    """Return the attached snapshot, loading it if the middleware did not run."""
    if not hasattr(request.state, "user"):
        return attach_session_user(request)
    return request.state.user


def get_current_user(request: Request) -> SessionUser:
    """Require an authenticated session. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/me")
        async def me(user: SessionUser = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Unauthorized"},
        )
    return user


def require_admin(request: Request) -> SessionUser:
    """Require a session whose cached role is admin. Raises HTTP 403 otherwise."""
    user = try_get_current_user(request)
    if user is None or not user.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Forbidden: Admin access required"},
        )
    return user
