"""
auth/dependencies.py -- FastAPI Depends() helpers for hosting applications.

The facility itself has no HTTP surface. A hosting FastAPI app stores the
started facility on app.state.admin_auth and guards its admin routes with
require_admin(level):

    @router.get("/admin/users", dependencies=[Depends(require_admin(1))])
    async def list_users(...): ...

Token sources, checked in order:
  1. Authorization: Bearer <token>
  2. X-Admin-Token: <token>

The client IP comes from the ASGI connection (request.client.host). Tokens
are bound to the issuing IP, so a token replayed from another address fails.

Layer rule: this module may import from fastapi because it is part of the
FastAPI dependency injection surface. Nothing else in the package does.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Optional

from fastapi import HTTPException, Request

from auth.sessions import SessionToken


def _token_from_request(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return request.headers.get("X-Admin-Token") or None


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else ""


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": "Admin authentication required."},
    )


def require_admin(level: int = 0) -> Callable[[Request], Awaitable[SessionToken]]:
    """Build a dependency that admits admins whose level is <= level.

    The dependency resolves to the stored SessionToken so routes can read
    the username and privilege snapshot. Raises HTTP 401 on any failure
    (missing, foreign, expired or IP-mismatched token, or insufficient level);
    the reason is not disclosed.
    """

    async def dependency(request: Request) -> SessionToken:
        token = _token_from_request(request)
        if not token:
            raise _unauthorized()
        sessions = request.app.state.admin_auth.sessions
        token_pair = [token, {"ip": _client_ip(request)}]
        if not await sessions.validate_token(token_pair, level):
            raise _unauthorized()
        session = await sessions.get_session(token_pair)
        if session is None:
            raise _unauthorized()
        return session

    return dependency
