"""
auth/errors.py -- Error taxonomy for the account and session services.

Every service failure is an AuthServiceError subclass carrying the HTTP status
it maps to and a stable machine-readable code. The API layer registers one
exception handler for the base class and emits the standard error envelope,
so route handlers never translate these by hand.

Families:
  ValidationError      400  malformed input or business-rule rejection
  AuthenticationError  401  bad credentials, unverified email
  AuthorizationError   403  admission policy refused
  NotFoundError        404  (400 for tokens: the reset/verify flows are form posts)
  ConflictError        400  duplicate email / domain
  DependencyError      500  outbound mail failed

Layer rule: no imports from api/.
"""

from __future__ import annotations


class AuthServiceError(Exception):
    status_code: int = 400
    code: str = "error"
    default_message: str = "Request failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Families
# ---------------------------------------------------------------------------


class ValidationError(AuthServiceError):
    status_code = 400
    code = "validation_error"


class AuthenticationError(AuthServiceError):
    status_code = 401
    code = "unauthenticated"


class AuthorizationError(AuthServiceError):
    status_code = 403
    code = "forbidden"


class NotFoundError(AuthServiceError):
    status_code = 404
    code = "not_found"
    default_message = "Not found."


class ConflictError(AuthServiceError):
    status_code = 400
    code = "conflict"


class DependencyError(AuthServiceError):
    status_code = 500
    code = "dependency_failed"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class InvalidEmailError(ValidationError):
    code = "invalid_email"
    default_message = "Invalid email format."


class WeakPasswordError(ValidationError):
    code = "weak_password"
    default_message = "Password must be at least 8 characters long."


class InvalidNameError(ValidationError):
    code = "invalid_name"
    default_message = "First name and last name cannot be empty."


class InvalidRoleError(ValidationError):
    code = "invalid_role"
    default_message = "Invalid role."


class InvalidDomainError(ValidationError):
    code = "invalid_domain"
    default_message = "Invalid domain format."


class InvalidCurrentPasswordError(ValidationError):
    code = "invalid_current_password"
    default_message = "Current password is incorrect."


class SelfModificationError(ValidationError):
    code = "self_modification"
    default_message = "You cannot modify your own account this way."


# ---------------------------------------------------------------------------
# Authentication / authorization
# ---------------------------------------------------------------------------


class InvalidCredentialsError(AuthenticationError):
    # Same code and message for unknown account and wrong password.
    code = "bad_credentials"
    default_message = "Invalid email or password."


class EmailNotVerifiedError(AuthenticationError):
    code = "email_not_verified"
    default_message = "Please verify your email before logging in."


class DomainNotAllowedError(AuthorizationError):
    code = "domain_not_allowed"
    default_message = "Your email domain is not allowed to sign in."


# ---------------------------------------------------------------------------
# Not found / conflict / dependency
# ---------------------------------------------------------------------------


class UserNotFoundError(NotFoundError):
    code = "user_not_found"
    default_message = "User not found."


class InvalidOrExpiredTokenError(NotFoundError):
    status_code = 400
    code = "invalid_token"
    default_message = "Invalid or expired token."


class DuplicateEmailError(ConflictError):
    code = "duplicate_email"
    default_message = "User with this email already exists."


class DuplicateDomainError(ConflictError):
    code = "duplicate_domain"
    default_message = "Domain is already allowed."


class EmailDeliveryFailedError(DependencyError):
    code = "email_delivery_failed"
    default_message = "Failed to send email. Please check the email configuration."
