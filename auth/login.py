"""
auth/login.py -- Admin login: credentials in, session token out.

One pass, no retries (retries belong to the caller):

  1. Exactly one of "user" ({username, password}) or "google" (an ID token
     {credential} or an access token {access_token, token_type, expiry_date})
     must be present and complete, with string username and password, and
     the client "ip" must be given, else LoginKeysMissing.
  2. Password path: directory.verify_credentials(), else
     IncorrectUsernameOrPassword. Unknown user and wrong password are
     indistinguishable by error and by timing.
  3. Google path: resolver.resolve_email(). Any resolver failure becomes
     IncorrectGoogleToken with no provider detail. The email must belong to
     an active admin, else AccountNotValid.
  4. sessions.issue_token() is the last step. If it fails the login fails
     with AdminTokenCreateError and nothing was issued.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from admins.directory import AdminDirectory, public_profile
from admins.models import AdminUser
from auth.google import GoogleIdentityResolver
from auth.sessions import SessionManager
from core.errors import (
    AccountNotValid,
    AdminTokenCreateError,
    IncorrectGoogleToken,
    IncorrectUsernameOrPassword,
    LoginKeysMissing,
    TokenCreateError,
)

logger = logging.getLogger("adminauth.login")

_USER_KEYS = ("username", "password")
_ACCESS_TOKEN_KEYS = ("access_token", "token_type", "expiry_date")
_CREDENTIAL_KEYS = ("credential",)


def _has_keys(data: Any, keys: tuple[str, ...]) -> bool:
    return isinstance(data, dict) and all(k in data for k in keys)


def _has_string_keys(data: Any, keys: tuple[str, ...]) -> bool:
    return _has_keys(data, keys) and all(isinstance(data[k], str) for k in keys)


def _privilege_snapshot(admin: AdminUser) -> dict[str, Any]:
    """Everything public about the admin except the fields the token carries itself."""
    profile = public_profile(admin)
    profile.pop("email")
    profile.pop("level")
    return profile


class LoginService:
    """Authenticates a login attempt and mints a session token."""

    def __init__(
        self,
        directory: AdminDirectory,
        sessions: SessionManager,
        resolver: Optional[GoogleIdentityResolver] = None,
    ) -> None:
        self.directory = directory
        self.sessions = sessions
        self.resolver = resolver

    async def login(self, args: dict[str, Any]) -> dict[str, Any]:
        """Log an admin in. args = {"user": {...}} or {"google": {...}}, plus "ip".

        Returns the admin's public fields plus username, token, level and
        expires_at.
        """
        if not isinstance(args, dict):
            raise LoginKeysMissing()
        user, google, ip = args.get("user"), args.get("google"), args.get("ip")

        if not isinstance(ip, str) or not ip:
            raise LoginKeysMissing("Client ip is required", details={"fields": ["ip"]})
        if bool(user) == bool(google):
            raise LoginKeysMissing()
        if user:
            if not _has_string_keys(user, _USER_KEYS):
                raise LoginKeysMissing()
            return await self._login_with_password(user["username"], user["password"], ip)
        if not (_has_keys(google, _ACCESS_TOKEN_KEYS) or _has_keys(google, _CREDENTIAL_KEYS)):
            raise LoginKeysMissing()
        return await self._login_with_google(google, ip)

    async def _login_with_password(self, username: str, password: str, ip: Any) -> dict[str, Any]:
        admin = await self.directory.verify_credentials(username, password)
        if admin is None:
            logger.info("Password login rejected")
            raise IncorrectUsernameOrPassword()
        return await self._issue(admin, username, ip)

    async def _login_with_google(self, payload: dict[str, Any], ip: Any) -> dict[str, Any]:
        if self.resolver is None:
            raise IncorrectGoogleToken()
        try:
            email = await self.resolver.resolve_email(payload, payload.get("client"))
        except Exception:
            logger.info("Google login rejected: token not accepted")
            raise IncorrectGoogleToken() from None

        admin = await self.directory.get_admin(email)
        if admin is None:
            logger.info("Google login rejected: %s is not an active admin", email)
            raise AccountNotValid()
        return await self._issue(admin, email, ip)

    async def _issue(self, admin: AdminUser, username: str, ip: Any) -> dict[str, Any]:
        try:
            issued = await self.sessions.issue_token(username, ip, admin.level, _privilege_snapshot(admin))
        except TokenCreateError:
            raise AdminTokenCreateError() from None
        logger.info("Admin %s logged in", admin.email)
        return {**public_profile(admin), **issued}
