"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, minimal logic). Dataclasses own the
domain shape; stores and services do the work.

SessionUser is the one value that leaves the service layer and lives inside a
server-held session. It is frozen and versioned: a snapshot serialized by an
older build with a different field set is rejected by from_dict() and the
request is treated as anonymous, forcing a fresh login.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)

SESSION_SNAPSHOT_VERSION = 1


@dataclass
class User:
    """A registered identity.

    password_hash is None for identities provisioned purely through Microsoft
    SSO. microsoft_id is None until the first SSO login links the account.
    display_name is derived from the name parts at creation and on name
    updates only.
    """

    email: str
    first_name: str
    last_name: str
    display_name: str
    id: int | None = None
    password_hash: str | None = None
    role: str = ROLE_USER
    email_verified: bool = False
    microsoft_id: str | None = None
    created_at: str | None = None
    last_login_at: str | None = None


@dataclass
class UserToken:
    """A single-use, expiring token bound to one user.

    Used for both email verification and password reset; the table it lives
    in decides which.
    """

    user_id: int
    token: str
    expires_at: str
    id: int | None = None
    created_at: str | None = None


@dataclass
class AllowedDomain:
    """An email domain admitted to automatic SSO provisioning."""

    domain: str
    id: int | None = None
    added_by: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class SessionUser:
    """Immutable snapshot of a user's public fields, cached in the session."""

    id: int
    email: str
    first_name: str
    last_name: str
    display_name: str
    role: str
    email_verified: bool
    version: int = SESSION_SNAPSHOT_VERSION

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def from_user(cls, user: User) -> SessionUser:
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            display_name=user.display_name,
            role=user.role,
            email_verified=user.email_verified,
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> SessionUser | None:
        """Rebuild a snapshot, or return None if it was written by another schema version."""
        if data.get("version") != SESSION_SNAPSHOT_VERSION:
            return None
        try:
            return cls(
                id=int(data["id"]),
                email=data["email"],
                first_name=data["first_name"],
                last_name=data["last_name"],
                display_name=data["display_name"],
                role=data["role"],
                email_verified=bool(data["email_verified"]),
            )
        except (KeyError, TypeError, ValueError):
            return None
