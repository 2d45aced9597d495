"""
auth/service.py -- Registration, login, password and admin user operations.

AccountService orchestrates UserStore, the password hasher and an optional
mailer. It is constructed once in the API lifespan with the explicit Settings
object; nothing here reads environment variables.

Degraded mode:
  mailer=None means no outbound mail is configured. Registration then creates
  accounts already verified and never issues verification tokens.

Registration with mail is all-or-nothing: if issuing the token or sending the
verification email fails for any reason, the freshly created user (and its
token, via delete_user) is removed and EmailDeliveryFailedError is raised.

Self-protection:
  set_role() and delete_user() take the acting admin's id and refuse to act
  on that same id. Routes inherit the guard rather than re-implementing it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    DuplicateEmailError,
    EmailDeliveryFailedError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidCurrentPasswordError,
    InvalidEmailError,
    InvalidNameError,
    InvalidOrExpiredTokenError,
    InvalidRoleError,
    SelfModificationError,
    UserNotFoundError,
    WeakPasswordError,
)
from auth.models import ROLE_ADMIN, ROLE_USER, ROLES, SessionUser, User, UserToken
from auth.passwords import burn_verify, generate_token, hash_password, is_strong_enough, verify_password
from auth.schema import iso, utc_now
from auth.store import UserStore
from core.config import Settings

logger = logging.getLogger("summarizer.auth")

VERIFICATION_TOKEN_TTL = timedelta(hours=24)
RESET_TOKEN_TTL = timedelta(hours=1)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_email(email: str) -> str:
    """Return the normalized email, or raise InvalidEmailError."""
    normalized = normalize_email(email)
    if not EMAIL_PATTERN.match(normalized):
        raise InvalidEmailError()
    return normalized


def clean_names(first_name: str, last_name: str) -> tuple[str, str]:
    """Trim both name parts; raise InvalidNameError if either ends up empty."""
    first, last = first_name.strip(), last_name.strip()
    if not first or not last:
        raise InvalidNameError()
    return first, last


class AccountService:
    """Account lifecycle: unverified -> verified -> (admin) -> deleted.

    Usage:
        service = AccountService(store, settings, mailer=build_mailer(settings))
        service.register("a@example.com", "password123", "Ada", "Lovelace")
        snapshot = service.login("a@example.com", "password123")
    """

    def __init__(
        self,
        store: UserStore,
        settings: Settings,
        mailer=None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.settings = settings
        self.mailer = mailer
        self._clock = clock

    @property
    def email_verification_required(self) -> bool:
        return self.mailer is not None

    def initial_role(self, email: str) -> str:
        bootstrap = self.settings.normalized_bootstrap_admin_email
        return ROLE_ADMIN if bootstrap and email == bootstrap else ROLE_USER

    # ------------------------------------------------------------------
    # Registration and verification
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, first_name: str, last_name: str) -> User:
        normalized = validate_email(email)
        if self.store.get_by_email(normalized) is not None:
            raise DuplicateEmailError()
        if not is_strong_enough(password):
            raise WeakPasswordError()
        first, last = clean_names(first_name, last_name)

        user = User(
            email=normalized,
            password_hash=hash_password(password),
            first_name=first,
            last_name=last,
            display_name=f"{first} {last}",
            role=self.initial_role(normalized),
            email_verified=not self.email_verification_required,
            created_at=iso(self._clock()),
        )
        try:
            user.id = self.store.create_user(user)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same address.
            raise DuplicateEmailError() from exc

        if self.mailer is None:
            logger.warning("Email not configured -- user %s auto-verified", normalized)
            return user

        try:
            token = self._issue_verification_token(user.id)
            self.mailer.send_verification_email(normalized, token)
        except Exception as exc:
            self.store.delete_user(user.id)
            logger.error("Verification step for %s failed -- registration rolled back", normalized)
            if isinstance(exc, EmailDeliveryFailedError):
                raise
            raise EmailDeliveryFailedError() from exc
        logger.info("Registered %s (verification pending)", normalized)
        return user

    def _issue_verification_token(self, user_id: int) -> str:
        now = self._clock()
        token = generate_token()
        self.store.create_verification_token(
            UserToken(
                user_id=user_id,
                token=token,
                expires_at=iso(now + VERIFICATION_TOKEN_TTL),
                created_at=iso(now),
            )
        )
        return token

    def verify_email_token(self, token: str) -> None:
        user_id = self.store.consume_verification_token(token, self._clock())
        if user_id is None:
            raise InvalidOrExpiredTokenError("Invalid or expired verification token.")
        logger.info("Email verified for user id=%d", user_id)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> SessionUser:
        """Authenticate and return the snapshot to store in the session.

        Unknown account, SSO-only account and wrong password all raise the
        same InvalidCredentialsError after the same bcrypt work.
        """
        normalized = normalize_email(email)
        user = self.store.get_by_email(normalized)
        if user is None or user.password_hash is None:
            burn_verify(password)
            logger.info("Failed login for %s", normalized)
            raise InvalidCredentialsError()
        if not verify_password(password, user.password_hash):
            logger.info("Failed login for %s", normalized)
            raise InvalidCredentialsError()
        if not user.email_verified:
            raise EmailNotVerifiedError()

        now = self._clock()
        self.store.update_last_login(user.id, now)
        user.last_login_at = iso(now)
        return SessionUser.from_user(user)

    def snapshot(self, user_id: int) -> SessionUser:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError()
        return SessionUser.from_user(user)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def create_password_reset_token(self, email: str) -> str | None:
        """Issue a fresh 1-hour reset token, revoking any earlier one.

        Returns None (not an error) when no account matches. Callers must
        still report generic success to avoid leaking account existence.
        """
        user = self.store.get_by_email(normalize_email(email))
        if user is None:
            return None
        now = self._clock()
        token = generate_token()
        self.store.replace_reset_token(
            UserToken(
                user_id=user.id,
                token=token,
                expires_at=iso(now + RESET_TOKEN_TTL),
                created_at=iso(now),
            )
        )
        return token

    def request_password_reset(self, email: str) -> bool:
        """Create a reset token and mail it when mail is configured.

        Returns whether mail is configured, so the route can choose its
        (account-independent) message. Raises EmailDeliveryFailedError if the
        send itself fails.
        """
        normalized = validate_email(email)
        token = self.create_password_reset_token(normalized)
        if token is None:
            logger.info("Password reset requested for unknown address")
            return self.mailer is not None
        if self.mailer is None:
            logger.warning("Password reset requested for %s but email is not configured", normalized)
            return False
        self.mailer.send_password_reset_email(normalized, token)
        logger.info("Password reset email sent to %s", normalized)
        return True

    def verify_password_reset_token(self, token: str) -> str | None:
        """Return the email bound to a live reset token, else None. Read-only."""
        reset = self.store.get_reset_token(token, self._clock())
        if reset is None:
            return None
        user = self.store.get_by_id(reset.user_id)
        return user.email if user is not None else None

    def reset_password_with_token(self, token: str, new_password: str) -> None:
        if self.store.get_reset_token(token, self._clock()) is None:
            raise InvalidOrExpiredTokenError("Invalid or expired reset token.")
        if not is_strong_enough(new_password):
            raise WeakPasswordError()
        user_id = self.store.consume_reset_token(token, self._clock(), hash_password(new_password))
        if user_id is None:
            raise InvalidOrExpiredTokenError("Invalid or expired reset token.")
        logger.info("Password reset completed for user id=%d", user_id)

    # ------------------------------------------------------------------
    # Profile self-service
    # ------------------------------------------------------------------

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        """Replace a password after checking the current one.

        Other sessions of the same user stay valid.
        """
        user = self.store.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError()
        if not verify_password(current_password, user.password_hash):
            raise InvalidCurrentPasswordError()
        if not is_strong_enough(new_password):
            raise WeakPasswordError("New password must be at least 8 characters long.")
        self.store.update_user(user_id, password_hash=hash_password(new_password))
        logger.info("Password changed for user id=%d", user_id)

    def update_name(self, user_id: int, first_name: str, last_name: str) -> User:
        """Update both name parts and the derived display name.

        The caller refreshes the user's own session snapshot.
        """
        first, last = clean_names(first_name, last_name)
        updated = self.store.update_user(
            user_id,
            first_name=first,
            last_name=last,
            display_name=f"{first} {last}",
        )
        if not updated:
            raise UserNotFoundError()
        return self.store.get_by_id(user_id)

    # ------------------------------------------------------------------
    # Admin user management
    # ------------------------------------------------------------------

    def list_users(self) -> list[User]:
        return self.store.list_users()

    def set_role(self, acting_user_id: int, target_user_id: int, role: str) -> None:
        """Change another user's role.

        The target's existing sessions keep their cached role until re-login.
        """
        if role not in ROLES:
            raise InvalidRoleError()
        if acting_user_id == target_user_id:
            raise SelfModificationError("You cannot change your own role.")
        if not self.store.update_user(target_user_id, role=role):
            raise UserNotFoundError()
        logger.info("User id=%d set role of user id=%d to %s", acting_user_id, target_user_id, role)

    def delete_user(self, acting_user_id: int, target_user_id: int) -> None:
        if acting_user_id == target_user_id:
            raise SelfModificationError("Cannot delete your own account.")
        if not self.store.delete_user(target_user_id):
            raise UserNotFoundError()
        logger.info("User id=%d deleted user id=%d", acting_user_id, target_user_id)

    # ------------------------------------------------------------------
    # Operator helpers (manage.py)
    # ------------------------------------------------------------------

    def create_verified_user(
        self, email: str, password: str, first_name: str, last_name: str, role: str | None = None
    ) -> User:
        """Create an account that can log in immediately, bypassing email verification."""
        normalized = validate_email(email)
        if not is_strong_enough(password):
            raise WeakPasswordError()
        first, last = clean_names(first_name, last_name)
        resolved_role = role or self.initial_role(normalized)
        if resolved_role not in ROLES:
            raise InvalidRoleError()
        user = User(
            email=normalized,
            password_hash=hash_password(password),
            first_name=first,
            last_name=last,
            display_name=f"{first} {last}",
            role=resolved_role,
            email_verified=True,
            created_at=iso(self._clock()),
        )
        try:
            user.id = self.store.create_user(user)
        except IntegrityError as exc:
            raise DuplicateEmailError() from exc
        return user

    def promote_to_admin(self, email: str) -> User:
        """Grant admin and mark verified. Used to recover admin access from the shell."""
        user = self.store.get_by_email(normalize_email(email))
        if user is None:
            raise UserNotFoundError()
        self.store.update_user(user.id, role=ROLE_ADMIN, email_verified=True)
        return self.store.get_by_id(user.id)
