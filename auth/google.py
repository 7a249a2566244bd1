"""
auth/google.py -- Google identity resolution for admin login.

Turns what a client got from Google into a verified email address:

  exchange_code_for_tokens() -- authorization code -> token dict, using the
      redirect URI registered for the caller's context ("web", "admin", ...).
  resolve_email() -- two payload shapes:
      {"credential": "<id token>"}           signed ID token, verified here
                                              against Google's published keys
      {"access_token": ..., "token_type": ...} access token, exchanged for the
                                              profile at the userinfo endpoint

Security notes:
  Client selection for ID tokens. Several OAuth clients may be registered
  (web plus mobile apps). The token's own audience claim is the only trust
  anchor: it picks the client whose id it names. A caller-supplied client
  hint is then checked against that choice and a mismatch is a hard failure,
  so a token minted for one app cannot be replayed as another. With no
  audience match the web client is used, and signature verification then
  rejects the token unless it really was issued to the web client.

  Email verification. A profile that explicitly marks the email as not
  verified is rejected: an unverified address could belong to anyone.

  Every failure (bad signature, expired token, HTTP error, timeout, missing
  email) surfaces as IncorrectToken. Provider error detail is logged at debug
  level only and never returned to the caller.

Layer rule: no imports from admins/.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from jose import JWTError, jwt

from core.config import Settings
from core.errors import IncorrectToken

logger = logging.getLogger("adminauth.google")

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_CERTS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")

WEB_CLIENT = "web"
_JWKS_TTL_SECONDS = 3600

# Failures that mean "the provider did not vouch for this payload".
_PROVIDER_ERRORS = (httpx.HTTPError, AuthlibBaseError, JWTError, KeyError, TypeError, ValueError)


@dataclass(frozen=True)
class GoogleClient:
    """One registered OAuth client: the web app or a named mobile app."""

    name: str
    client_id: str


class GoogleIdentityResolver:
    """Verifies Google credentials and returns the email they vouch for.

    transport is an optional httpx transport; tests pass httpx.MockTransport
    so no request leaves the process.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        redirect_uris: Optional[dict[str, str]] = None,
        mobile_clients: Optional[dict[str, str]] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.web_client = GoogleClient(WEB_CLIENT, client_id)
        self.clients = [self.web_client] + [
            GoogleClient(name, cid) for name, cid in (mobile_clients or {}).items() if cid
        ]
        self._client_secret = client_secret
        self._redirect_uris = dict(redirect_uris or {})
        self._timeout = timeout
        self._transport = transport
        self._jwks: Optional[dict[str, Any]] = None
        self._jwks_fetched_at = 0.0

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        return cls(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uris=settings.google_redirect_uris,
            mobile_clients=settings.google_mobile_clients,
            timeout=settings.google_http_timeout,
            transport=transport,
        )

    def _oauth_client(self, **kwargs) -> AsyncOAuth2Client:
        return AsyncOAuth2Client(
            client_id=self.web_client.client_id,
            client_secret=self._client_secret,
            timeout=self._timeout,
            transport=self._transport,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Authorization code flow
    # ------------------------------------------------------------------

    async def exchange_code_for_tokens(self, code: str, redirect_context: str) -> dict[str, Any]:
        """Exchange an authorization code for Google tokens.

        redirect_context selects the redirect URI the code was issued for.
        An unknown context fails before any network call.
        """
        redirect_uri = self._redirect_uris.get(redirect_context)
        if not redirect_uri:
            raise IncorrectToken(f"Unknown redirect context: {redirect_context!r}")
        if not code:
            raise IncorrectToken("Authorization code is required")
        try:
            async with self._oauth_client(redirect_uri=redirect_uri) as client:
                token = await client.fetch_token(GOOGLE_TOKEN_URL, code=code)
        except _PROVIDER_ERRORS as exc:
            logger.debug("Google code exchange failed: %s", exc)
            raise IncorrectToken() from None
        return dict(token)

    # ------------------------------------------------------------------
    # Email resolution
    # ------------------------------------------------------------------

    async def resolve_email(self, payload: dict[str, Any], client_hint: Optional[str] = None) -> str:
        """Return the verified email behind a Google ID token or access token payload."""
        if not isinstance(payload, dict):
            raise IncorrectToken("Unsupported token payload")
        if payload.get("credential"):
            return await self._email_from_credential(payload["credential"], client_hint)
        if payload.get("access_token"):
            return await self._email_from_access_token(payload)
        raise IncorrectToken("Unsupported token payload")

    def select_client(self, audience: Any, client_hint: Optional[str] = None) -> GoogleClient:
        """Pick the registered client an ID token was issued to.

        Order: audience claim match, then the hint must agree with that
        match, then the web client as the fallback. The hint alone never
        selects a client.
        """
        audiences = [audience] if isinstance(audience, str) else list(audience or [])
        client = next((c for c in self.clients if c.client_id and c.client_id in audiences), None)
        if client is None:
            client = self.web_client
        if client_hint is not None and client_hint != client.name:
            raise IncorrectToken("Client hint does not match token audience")
        return client

    async def _email_from_credential(self, credential: str, client_hint: Optional[str]) -> str:
        try:
            unverified = jwt.get_unverified_claims(credential)
            client = self.select_client(unverified.get("aud"), client_hint)
            if not client.client_id:
                raise IncorrectToken("Google client is not configured")
            claims = jwt.decode(
                credential,
                await self._get_jwks(),
                algorithms=["RS256"],
                audience=client.client_id,
                issuer=GOOGLE_ISSUERS,
                options={"verify_at_hash": False},
            )
        except _PROVIDER_ERRORS as exc:
            logger.debug("Google ID token rejected: %s", exc)
            raise IncorrectToken() from None
        if claims.get("email_verified") is False:
            raise IncorrectToken("Google email is not verified")
        return _require_email(claims.get("email"))

    async def _email_from_access_token(self, token: dict[str, Any]) -> str:
        try:
            async with self._oauth_client(token=token) as client:
                resp = await client.get(GOOGLE_USERINFO_URL)
                resp.raise_for_status()
                profile = resp.json()
        except _PROVIDER_ERRORS as exc:
            logger.debug("Google userinfo call failed: %s", exc)
            raise IncorrectToken() from None
        if profile.get("verified_email") is False:
            raise IncorrectToken("Google email is not verified")
        return _require_email(profile.get("email"))

    async def _get_jwks(self) -> dict[str, Any]:
        """Google's signing keys, cached for an hour."""
        if self._jwks is not None and time.monotonic() - self._jwks_fetched_at < _JWKS_TTL_SECONDS:
            return self._jwks
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            resp = await client.get(GOOGLE_CERTS_URL)
            resp.raise_for_status()
            self._jwks = resp.json()
        self._jwks_fetched_at = time.monotonic()
        return self._jwks


def _require_email(email: Any) -> str:
    if not isinstance(email, str) or not email:
        raise IncorrectToken("No email in Google response")
    return email
