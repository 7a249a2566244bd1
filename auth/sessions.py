"""
auth/sessions.py -- Admin session tokens: issue, store, validate.

Token format: "ADM-" + uuid4. The prefix lets validate_token() reject foreign
tokens without a store round trip. Each token is bound to the IP it was
issued to: the storage key is (token, ip), so the same token presented from
another address simply does not exist.

Tokens live for 8 hours and are never updated after creation. Validation
re-checks the owner's current access level on every call, so a demoted,
deactivated or deleted admin loses access on their next request.

Storage is pluggable behind TokenStore:
  SqlTokenStore   -- admin_tokens table, expiry checked on read.
  RedisTokenStore -- one key per (token, ip) with a native TTL.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Optional, Protocol, Sequence

import redis.asyncio as redis
from sqlalchemy.exc import SQLAlchemyError

from admins.store import AdminDatabase, admin_tokens
from core.constants import ADMIN_TOKEN_KEY_NAMESPACE, ADMIN_TOKEN_PREFIX, DEFAULT_SESSION_TTL
from core.errors import TokenCreateError

if TYPE_CHECKING:
    from admins.directory import AdminDirectory

logger = logging.getLogger("adminauth.sessions")


@dataclass
class SessionToken:
    """A stored admin session. extra is the privilege snapshot taken at login."""

    username: str
    token: str
    ip: str
    level: int
    expires_at: datetime
    extra: dict[str, Any] = field(default_factory=dict)


def token_key(token: str, ip: str) -> str:
    """Deterministic storage key for a (token, ip) pair."""
    return f"{ADMIN_TOKEN_KEY_NAMESPACE}:{token}:{ip}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ip_of(credentials: Any) -> Optional[str]:
    if isinstance(credentials, dict):
        ip = credentials.get("ip")
        return str(ip) if ip is not None else None
    return None


class TokenStore(Protocol):
    """Persistence for session tokens."""

    async def create(self, session: SessionToken) -> None:
        """Persist a new session. Must fail if (token, ip) already exists."""
        ...

    async def get(self, token: str, ip: str) -> Optional[SessionToken]:
        """Return the live session for (token, ip), or None if missing or expired."""
        ...


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------


class SqlTokenStore:
    """TokenStore over the admin_tokens table (composite primary key token + ip)."""

    def __init__(self, db: AdminDatabase, clock: Callable[[], datetime] = _utcnow) -> None:
        self.engine = db.engine
        self._clock = clock

    async def create(self, session: SessionToken) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(
                admin_tokens.insert().values(
                    token=session.token,
                    ip=session.ip,
                    username=session.username,
                    level=session.level,
                    extra=json.dumps(session.extra, default=str),
                    expires_at=session.expires_at.isoformat(),
                )
            )
            await conn.commit()

    async def get(self, token: str, ip: str) -> Optional[SessionToken]:
        async with self.engine.connect() as conn:
            row = (
                await conn.execute(
                    admin_tokens.select().where((admin_tokens.c.token == token) & (admin_tokens.c.ip == ip))
                )
            ).fetchone()
        if row is None:
            return None
        expires_at = datetime.fromisoformat(row.expires_at)
        if self._clock() >= expires_at:
            return None
        return SessionToken(
            username=row.username,
            token=row.token,
            ip=row.ip,
            level=row.level,
            expires_at=expires_at,
            extra=json.loads(row.extra) if row.extra else {},
        )

    async def purge_expired(self) -> int:
        """Delete sessions past their expiry. Returns the number removed."""
        async with self.engine.connect() as conn:
            result = await conn.execute(
                admin_tokens.delete().where(admin_tokens.c.expires_at <= self._clock().isoformat())
            )
            await conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisTokenStore:
    """TokenStore over Redis. The key TTL does the expiring."""

    def __init__(self, client: redis.Redis, clock: Callable[[], datetime] = _utcnow) -> None:
        self.redis = client
        self._clock = clock

    @classmethod
    def from_url(cls, url: str) -> "RedisTokenStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    async def create(self, session: SessionToken) -> None:
        ttl = int((session.expires_at - self._clock()).total_seconds())
        record = {
            "username": session.username,
            "token": session.token,
            "ip": session.ip,
            "level": session.level,
            "extra": session.extra,
            "expires_at": session.expires_at.isoformat(),
        }
        created = await self.redis.set(
            token_key(session.token, session.ip), json.dumps(record, default=str), ex=max(ttl, 1), nx=True
        )
        if not created:
            raise TokenCreateError("Session token already exists")

    async def get(self, token: str, ip: str) -> Optional[SessionToken]:
        raw = await self.redis.get(token_key(token, ip))
        if raw is None:
            return None
        data = json.loads(raw)
        return SessionToken(
            username=data["username"],
            token=data["token"],
            ip=data["ip"],
            level=data["level"],
            expires_at=datetime.fromisoformat(data["expires_at"]),
            extra=data.get("extra") or {},
        )

    async def close(self) -> None:
        await self.redis.aclose()


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class SessionManager:
    """Issues and validates admin session tokens over any TokenStore."""

    def __init__(
        self,
        store: TokenStore,
        directory: AdminDirectory,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.directory = directory
        self.ttl = ttl
        self._clock = clock

    @staticmethod
    def new_token() -> str:
        return f"{ADMIN_TOKEN_PREFIX}{uuid.uuid4()}"

    async def issue_token(self, email: str, ip: str, level: int, extra: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Create and persist a session for email bound to ip.

        Returns {username, token, level, **extra, expires_at}. Raises
        TokenCreateError if the store rejects the write; the caller may
        retry, which generates a fresh token.
        """
        extra = dict(extra or {})
        session = SessionToken(
            username=email,
            token=self.new_token(),
            ip=str(ip),
            level=level,
            expires_at=self._clock() + self.ttl,
            extra=extra,
        )
        try:
            await self.store.create(session)
        except TokenCreateError:
            raise
        except (SQLAlchemyError, redis.RedisError) as exc:
            logger.warning("Session token store write failed: %s", type(exc).__name__)
            raise TokenCreateError() from exc
        logger.info("Session issued for admin %s", email)
        return {**extra, "username": email, "token": session.token, "level": level, "expires_at": session.expires_at}

    @staticmethod
    def pre_check(token_pair: Any) -> bool:
        """Cheap shape check: [token, {ip, ...}] with an admin-prefixed token."""
        if not isinstance(token_pair, Sequence) or isinstance(token_pair, str) or len(token_pair) != 2:
            return False
        token = token_pair[0]
        return isinstance(token, str) and bool(token) and token.startswith(ADMIN_TOKEN_PREFIX)

    async def validate_token(self, token_pair: Sequence[Any], required_level: int = 0) -> bool:
        """True iff the token exists for this IP, has not expired and its owner still has access.

        token_pair is [token, {"ip": ...}]. Malformed or foreign tokens are
        rejected without a store lookup.
        """
        if not self.pre_check(token_pair):
            return False
        token, credentials = token_pair
        ip = _ip_of(credentials)
        if ip is None:
            return False
        session = await self.store.get(token, ip)
        if session is None or self._clock() >= session.expires_at:
            return False
        if not await self.directory.check_access_level(session.username, required_level):
            logger.info("Session for %s rejected: access level no longer sufficient", session.username)
            return False
        return True

    async def get_session(self, token_pair: Sequence[Any]) -> Optional[SessionToken]:
        """Return the stored session behind a token pair without the access re-check."""
        if not self.pre_check(token_pair):
            return None
        ip = _ip_of(token_pair[1])
        if ip is None:
            return None
        session = await self.store.get(token_pair[0], ip)
        if session is None or self._clock() >= session.expires_at:
            return None
        return session
