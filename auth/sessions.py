"""
auth/sessions.py -- Server-held session store.

A session is a row keyed by an opaque random id. The browser only ever holds
that id (httpOnly cookie); the SessionUser snapshot stays on the server, so
logout is a real revocation and an admin deleting a user drops the user's
sessions with the row (ON DELETE CASCADE plus the explicit delete in
UserStore.delete_user()).

Staleness contract:
  The snapshot is a cache of the user's public fields taken at login. It is
  NOT re-read from the users table on each request. refresh() is the one
  operation that rewrites it; the profile name route calls it for the
  caller's own session. Role changes made by an admin do not touch the
  target's sessions -- the target keeps the old role, including for
  require_admin, until they log out and back in.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.engine import Engine

from auth.models import SessionUser
from auth.schema import iso, sessions, utc_now

SESSION_COOKIE = "summarizer_session"


class SessionStore:
    """Repository for server-held sessions.

    Usage:
        sessions = SessionStore(user_store.engine, ttl_seconds=3600)
        sid = sessions.create(snapshot)
        user = sessions.get(sid)
        sessions.destroy(sid)
    """

    def __init__(
        self,
        engine: Engine,
        ttl_seconds: int,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.engine = engine
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def create(self, user: SessionUser) -> str:
        """Persist a new session for user and return its id.

        secrets.token_urlsafe(32) gives 256 bits of entropy; the id is the
        only credential the browser holds.
        """
        session_id = secrets.token_urlsafe(32)
        now = self._clock()
        with self.engine.begin() as conn:
            conn.execute(
                sessions.insert().values(
                    id=session_id,
                    user_id=user.id,
                    data=json.dumps(user.to_dict()),
                    created_at=iso(now),
                    expires_at=iso(now + self.ttl),
                )
            )
        return session_id

    def get(self, session_id: str) -> SessionUser | None:
        """Return the snapshot for a live session, or None.

        Expired sessions and snapshots from another schema version read as
        None; expired rows are left for purge_expired().
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                sessions.select().where((sessions.c.id == session_id) & (sessions.c.expires_at > iso(self._clock())))
            ).fetchone()
        if row is None:
            return None
        try:
            data = json.loads(row.data)
        except ValueError:
            return None
        return SessionUser.from_dict(data)

    def refresh(self, session_id: str, user: SessionUser) -> bool:
        """Replace the cached snapshot of one session. Expiry is unchanged."""
        with self.engine.begin() as conn:
            result = conn.execute(
                sessions.update().where(sessions.c.id == session_id).values(data=json.dumps(user.to_dict()))
            )
        return result.rowcount > 0

    def destroy(self, session_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(sessions.delete().where(sessions.c.id == session_id))
        return result.rowcount > 0

    def purge_expired(self) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(sessions.delete().where(sessions.c.expires_at <= iso(self._clock())))
        return result.rowcount


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, session_id: str, max_age: int, secure: bool) -> None:
    """Write the session id as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation for the
        state-changing JSON endpoints.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the server-side session lifetime.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=session_id,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
        path="/",
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/")
