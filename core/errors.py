"""
core/errors.py -- Error taxonomy for the admin auth facility.

Every public operation either returns a well-typed result or raises exactly
one AdminAuthError subclass. Hosting applications match on ``code`` (stable,
machine-readable) and may show ``message`` to the caller.

Families:
  ValidationError        -- malformed input shape or type; a caller bug.
  UserError              -- domain rule violated; surfaced verbatim.
  NotFoundOrInactive     -- lookup miss.
  AuthenticationFailure  -- bad credentials, bad token, provider rejection.
                            Deliberately generic at the login boundary.
  StoreFailure           -- persistence could not complete the write.

Layer rule: core/ is the kernel. No imports from admins/ or auth/.
"""

from __future__ import annotations

from typing import Any


class AdminAuthError(Exception):
    """Root of every error raised by this package.

    Attributes:
        message: Human-readable description.
        code:    Machine-readable code; defaults to the class name.
        details: Extra context (offending field, value, ...).
    """

    code: str = "ADMIN_AUTH_ERROR"

    def __init__(self, message: str | None = None, code: str | None = None, details: dict[str, Any] | None = None):
        self.code = code or self.code
        self.message = message or self.code
        self.details = details or {}
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Families
# ---------------------------------------------------------------------------


class ValidationError(AdminAuthError):
    code = "VALIDATION_ERROR"


class UserError(AdminAuthError):
    code = "USER_ERROR"


class NotFoundOrInactive(AdminAuthError):
    code = "NOT_FOUND_OR_INACTIVE"


class AuthenticationFailure(AdminAuthError):
    code = "AUTHENTICATION_FAILURE"


class StoreFailure(AdminAuthError):
    code = "STORE_FAILURE"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class LoginKeysMissing(ValidationError):
    code = "AUTH_FAC_LOGIN_KEYS_MISSING"


# ---------------------------------------------------------------------------
# Domain rules
# ---------------------------------------------------------------------------


class AdminAccountExists(UserError):
    code = "ADMIN_ACCOUNT_EXISTS"


class InvalidPassword(UserError):
    code = "INVALID_PASSWORD"


class InvalidResetToken(UserError):
    code = "INVALID_PASSWORD_RESET_TOKEN"


class ResetLinkExpired(UserError):
    code = "RESET_LINK_EXPIRED"


class DirectoryReadOnly(UserError):
    """Mutation attempted while admins are served from static configuration."""

    code = "ADMIN_DB_NOT_AVAILABLE"


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


class AccountNotFoundOrInactive(NotFoundOrInactive):
    code = "ADMIN_ACCOUNT_DOES_NOT_EXIST_OR_IS_NOT_ACTIVE"


class AdminNotFound(NotFoundOrInactive):
    code = "ADMIN_NOT_FOUND"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class IncorrectUsernameOrPassword(AuthenticationFailure):
    code = "AUTH_FAC_LOGIN_INCORRECT_USERNAME_PASSWORD"


class AccountNotValid(AuthenticationFailure):
    code = "AUTH_FAC_ACCOUNT_NOT_ALLOWED"


class IncorrectToken(AuthenticationFailure):
    """Raised by the identity resolver; login translates it to IncorrectGoogleToken."""

    code = "AUTH_FAC_INCORRECT_TOKEN"


class IncorrectGoogleToken(AuthenticationFailure):
    code = "AUTH_FAC_INCORRECT_GOOGLE_TOKEN"


class AdminTokenCreateError(AuthenticationFailure):
    code = "AUTH_FAC_ADMIN_TOKEN_CREATE_ERROR"


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TokenCreateError(StoreFailure):
    code = "TOKEN_CREATE_ERROR"
