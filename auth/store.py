"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore is the repository for users,
verification tokens, password reset tokens and allowed SSO domains;
_row_to_user / _row_to_token / _row_to_domain are the mappers. Services never
touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Token consumption (verification and reset) reads the token row, deletes it
  by primary key and applies the user update inside ONE transaction. The
  DELETE must report rowcount == 1; if a concurrent request already consumed
  the token the delete affects nothing and the whole transaction is rolled
  back. Two concurrent uses of the same token can therefore never both
  succeed.

  create_user() lets sqlalchemy.exc.IntegrityError propagate on a duplicate
  email. The service layer turns that into DuplicateEmailError, which is how
  two concurrent registrations for the same address are resolved.

DB path default: auth/summarizer_auth.db (see core.config).

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, text
from sqlalchemy.engine import Engine

from auth.models import AllowedDomain, User, UserToken
from auth.schema import (
    allowed_domains,
    iso,
    make_engine,
    password_reset_tokens,
    sessions,
    users,
    utc_now,
    verification_tokens,
)


class _TokenAlreadyConsumed(Exception):
    """Internal signal used to roll back a consume transaction."""


class UserStore:
    """Repository for User, token and AllowedDomain entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id = store.create_user(User(email="a@example.com", first_name="A", last_name="B", display_name="A B"))
        user = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the email (or microsoft_id)
        is already taken.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                users.insert().values(
                    email=user.email,
                    password_hash=user.password_hash,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    display_name=user.display_name,
                    role=user.role,
                    email_verified=user.email_verified,
                    microsoft_id=user.microsoft_id,
                    created_at=user.created_at or iso(utc_now()),
                )
            )
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email. Callers pass the lowercased address."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_microsoft_id(self, microsoft_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.microsoft_id == microsoft_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by id."""
        with self.engine.connect() as conn:
            rows = conn.execute(users.select().order_by(users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update columns on an existing user.

        Accepted fields: password_hash, first_name, last_name, display_name,
        role, email_verified, microsoft_id, last_login_at.

        Returns True if a row was updated, False if user_id was not found.
        """
        with self.engine.begin() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def update_last_login(self, user_id: int, when: datetime | None = None) -> None:
        self.update_user(user_id, last_login_at=iso(when or utc_now()))

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user together with their tokens and sessions.

        The explicit child deletes mirror the ON DELETE CASCADE foreign keys
        so the behavior does not depend on the backend enforcing them.
        Returns True if the user existed.
        """
        with self.engine.begin() as conn:
            conn.execute(verification_tokens.delete().where(verification_tokens.c.user_id == user_id))
            conn.execute(password_reset_tokens.delete().where(password_reset_tokens.c.user_id == user_id))
            conn.execute(sessions.delete().where(sessions.c.user_id == user_id))
            conn.execute(allowed_domains.update().where(allowed_domains.c.added_by == user_id).values(added_by=None))
            result = conn.execute(users.delete().where(users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Verification tokens
    # ------------------------------------------------------------------

    def create_verification_token(self, token: UserToken) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                verification_tokens.insert().values(
                    user_id=token.user_id,
                    token=token.token,
                    expires_at=token.expires_at,
                    created_at=token.created_at or iso(utc_now()),
                )
            )
            return result.inserted_primary_key[0]

    def consume_verification_token(self, token: str, now: datetime) -> int | None:
        """Atomically delete a live verification token and mark its owner verified.

        Returns the owning user id, or None if the token does not exist, has
        expired, or was consumed concurrently.
        """
        try:
            with self.engine.begin() as conn:
                row = conn.execute(
                    verification_tokens.select().where(
                        (verification_tokens.c.token == token) & (verification_tokens.c.expires_at > iso(now))
                    )
                ).fetchone()
                if row is None:
                    return None
                deleted = conn.execute(verification_tokens.delete().where(verification_tokens.c.id == row.id))
                if deleted.rowcount != 1:
                    raise _TokenAlreadyConsumed()
                conn.execute(users.update().where(users.c.id == row.user_id).values(email_verified=True))
                return row.user_id
        except _TokenAlreadyConsumed:
            return None

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def replace_reset_token(self, token: UserToken) -> int:
        """Delete every reset token the user holds, then insert this one.

        Both statements run in one transaction so a user never has more than
        one live reset token.
        """
        with self.engine.begin() as conn:
            conn.execute(password_reset_tokens.delete().where(password_reset_tokens.c.user_id == token.user_id))
            result = conn.execute(
                password_reset_tokens.insert().values(
                    user_id=token.user_id,
                    token=token.token,
                    expires_at=token.expires_at,
                    created_at=token.created_at or iso(utc_now()),
                )
            )
            return result.inserted_primary_key[0]

    def get_reset_token(self, token: str, now: datetime) -> UserToken | None:
        """Return the live reset token matching token, or None. Read-only."""
        with self.engine.connect() as conn:
            row = conn.execute(
                password_reset_tokens.select().where(
                    (password_reset_tokens.c.token == token) & (password_reset_tokens.c.expires_at > iso(now))
                )
            ).fetchone()
        return _row_to_token(row) if row is not None else None

    def consume_reset_token(self, token: str, now: datetime, password_hash: str) -> int | None:
        """Atomically delete a live reset token and store the new password hash.

        Returns the owning user id, or None if the token is unknown, expired
        or was consumed concurrently.
        """
        try:
            with self.engine.begin() as conn:
                row = conn.execute(
                    password_reset_tokens.select().where(
                        (password_reset_tokens.c.token == token) & (password_reset_tokens.c.expires_at > iso(now))
                    )
                ).fetchone()
                if row is None:
                    return None
                deleted = conn.execute(password_reset_tokens.delete().where(password_reset_tokens.c.id == row.id))
                if deleted.rowcount != 1:
                    raise _TokenAlreadyConsumed()
                conn.execute(users.update().where(users.c.id == row.user_id).values(password_hash=password_hash))
                return row.user_id
        except _TokenAlreadyConsumed:
            return None

    # ------------------------------------------------------------------
    # Allowed SSO domains
    # ------------------------------------------------------------------

    def add_domain(self, domain: AllowedDomain) -> int:
        """Insert an allowed domain. Raises IntegrityError on duplicates."""
        with self.engine.begin() as conn:
            result = conn.execute(
                allowed_domains.insert().values(
                    domain=domain.domain,
                    added_by=domain.added_by,
                    created_at=domain.created_at or iso(utc_now()),
                )
            )
            return result.inserted_primary_key[0]

    def get_domain(self, domain: str) -> AllowedDomain | None:
        with self.engine.connect() as conn:
            row = conn.execute(allowed_domains.select().where(allowed_domains.c.domain == domain)).fetchone()
        return _row_to_domain(row) if row is not None else None

    def list_domains(self) -> list[AllowedDomain]:
        with self.engine.connect() as conn:
            rows = conn.execute(allowed_domains.select().order_by(allowed_domains.c.domain)).fetchall()
        return [_row_to_domain(r) for r in rows]

    def delete_domain(self, domain_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(allowed_domains.delete().where(allowed_domains.c.id == domain_id))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        display_name=row.display_name,
        role=row.role,
        email_verified=bool(row.email_verified),
        microsoft_id=row.microsoft_id,
        created_at=row.created_at,
        last_login_at=row.last_login_at,
    )


def _row_to_token(row) -> UserToken:
    return UserToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


def _row_to_domain(row) -> AllowedDomain:
    return AllowedDomain(
        id=row.id,
        domain=row.domain,
        added_by=row.added_by,
        created_at=row.created_at,
    )
