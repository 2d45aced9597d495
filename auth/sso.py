"""
auth/sso.py -- Microsoft SSO provisioning and the allowed-domain whitelist.

get_or_create_user() resolves an external identity to a local User:

  1. microsoft_id already linked        -> stamp login, outcome "returning"
  2. same email exists (password user)  -> link microsoft_id, stamp login,
                                           outcome "linked"
  3. admission check: email domain on the whitelist, or the email is the
     bootstrap admin address; otherwise DomainNotAllowedError
  4. create the user verified, no password -> outcome "new"

Step 2 merges an SSO login into a pre-existing account that shares the
address. The identity provider has already asserted ownership of the email;
the whitelist does not apply to accounts that already exist.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    DomainNotAllowedError,
    DuplicateDomainError,
    InvalidDomainError,
    NotFoundError,
)
from auth.models import ROLE_ADMIN, ROLE_USER, AllowedDomain, User
from auth.schema import iso, utc_now
from auth.service import normalize_email
from auth.store import UserStore
from core.config import Settings

logger = logging.getLogger("summarizer.auth.sso")

OUTCOME_RETURNING = "returning"
OUTCOME_LINKED = "linked"
OUTCOME_NEW = "new"

# Letters/digits/hyphens per label, at least one dot, 2+ letter TLD.
DOMAIN_PATTERN = re.compile(r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,}$")


@dataclass(frozen=True)
class ExternalProfile:
    """The identity fields the provider hands back after the code exchange."""

    external_id: str
    email: str
    first_name: str = ""
    last_name: str = ""


def extract_domain(email: str) -> str | None:
    """Return the lowercased part after the last '@', or None when there is no domain."""
    if "@" not in email:
        return None
    domain = email.rsplit("@", 1)[1].strip().lower()
    return domain or None


def normalize_domain(domain: str) -> str:
    """Lowercase a domain and strip an accidental leading '@' or trailing dot."""
    return domain.strip().lower().lstrip("@").rstrip(".")


class SsoProvisioningService:
    def __init__(
        self,
        store: UserStore,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.settings = settings
        self._clock = clock

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def is_bootstrap_admin(self, email: str) -> bool:
        bootstrap = self.settings.normalized_bootstrap_admin_email
        return bool(bootstrap) and normalize_email(email) == bootstrap

    def is_domain_allowed(self, email: str) -> bool:
        domain = extract_domain(email)
        if domain is None:
            return False
        return self.store.get_domain(domain) is not None

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def get_or_create_user(self, profile: ExternalProfile) -> tuple[User, str]:
        """Resolve profile to a local user. Returns (user, outcome)."""
        now = self._clock()

        user = self.store.get_by_microsoft_id(profile.external_id)
        if user is not None:
            self.store.update_last_login(user.id, now)
            user.last_login_at = iso(now)
            return user, OUTCOME_RETURNING

        email = normalize_email(profile.email)
        user = self.store.get_by_email(email) if email else None
        if user is not None:
            # The provider vouches for the address, which completes a pending verification.
            self.store.update_user(
                user.id, microsoft_id=profile.external_id, email_verified=True, last_login_at=iso(now)
            )
            user.microsoft_id = profile.external_id
            user.email_verified = True
            user.last_login_at = iso(now)
            logger.info("Linked Microsoft identity to existing account %s", email)
            return user, OUTCOME_LINKED

        bootstrap = self.is_bootstrap_admin(email)
        if not bootstrap and not self.is_domain_allowed(email):
            logger.warning("SSO sign-in refused for %s: domain not allowed", email)
            raise DomainNotAllowedError()

        first = profile.first_name.strip() or email.split("@", 1)[0]
        last = profile.last_name.strip()
        user = User(
            email=email,
            first_name=first,
            last_name=last,
            display_name=f"{first} {last}".strip(),
            role=ROLE_ADMIN if bootstrap else ROLE_USER,
            email_verified=True,
            microsoft_id=profile.external_id,
            created_at=iso(now),
            last_login_at=iso(now),
        )
        try:
            user.id = self.store.create_user(user)
        except IntegrityError:
            # A concurrent callback for the same identity won the insert.
            existing = self.store.get_by_microsoft_id(profile.external_id) or self.store.get_by_email(email)
            if existing is None:
                raise
            return existing, OUTCOME_RETURNING
        self.store.update_last_login(user.id, now)
        logger.info("Provisioned %s via Microsoft SSO (role=%s)", email, user.role)
        return user, OUTCOME_NEW

    # ------------------------------------------------------------------
    # Whitelist management (admin)
    # ------------------------------------------------------------------

    def list_domains(self) -> list[AllowedDomain]:
        return self.store.list_domains()

    def add_domain(self, domain: str, added_by: int | None) -> AllowedDomain:
        normalized = normalize_domain(domain)
        if not DOMAIN_PATTERN.match(normalized):
            raise InvalidDomainError()
        entry = AllowedDomain(domain=normalized, added_by=added_by, created_at=iso(self._clock()))
        try:
            entry.id = self.store.add_domain(entry)
        except IntegrityError as exc:
            raise DuplicateDomainError() from exc
        logger.info("Allowed SSO domain %s (added by user id=%s)", normalized, added_by)
        return entry

    def remove_domain(self, domain_id: int) -> None:
        if not self.store.delete_domain(domain_id):
            raise NotFoundError("Domain not found.")
        logger.info("Removed allowed SSO domain id=%d", domain_id)
