"""
auth/passwords.py -- Password hashing and opaque token generation.

Security design decisions:
  Passwords: bcrypt with a fixed cost factor of 10. Bcrypt's cost factor
       makes brute-force of low-entropy secrets expensive. verify_password()
       never raises: a malformed or missing hash is simply a failed match.
       The _DUMMY_HASH constant enables timing equalization in
       AccountService.login() so response time does not reveal whether an
       account exists.

  Tokens: secrets.token_hex(32) gives 256 bits of entropy for verification
       and reset tokens. They are single-use and short-lived, so they are
       stored as-is and looked up through a UNIQUE index.

Plaintext passwords are never logged.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import secrets

import bcrypt

BCRYPT_ROUNDS = 10
MIN_PASSWORD_LENGTH = 8

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
#
# Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
# wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
# rejects with an explicit error.
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt before hashing
    (a known bcrypt limitation). The API layer caps password fields at 128
    characters.
    """
    password = plain.encode("utf-8")[:72]
    return bcrypt.hashpw(password, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Returns False (never raises) for None or malformed hashes.
    """
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except ValueError:
        return False


def is_strong_enough(plain: str) -> bool:
    return len(plain) >= MIN_PASSWORD_LENGTH


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Always call verify_password() even when the
# account does not exist.
_DUMMY_HASH: str = hash_password("summarizer_timing_dummy")


def burn_verify(plain: str) -> None:
    """Run a bcrypt check against the dummy hash and discard the result."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Opaque tokens
# ---------------------------------------------------------------------------


def generate_token() -> str:
    """Return a new 64-hex-character token (256 bits of entropy)."""
    return secrets.token_hex(32)
