"""
admins/directory.py -- Admin Directory: CRUD, lookups and privilege checks.

The directory owns the rules; the AdminRepository it is given owns storage.
Guard clauses run before any write: the read-only check, then input
validation, then existence checks. A rejected call never touches the row.

Privilege rules (lower level number = more privileged, 0 = super-admin):
  read_only                    -- direct flag only
  block / analytics / fetch_motivations
                               -- level 0 OR flag
  manage_admins                -- level 0 AND flag

Outstanding session tokens re-check check_access_level() on every use, so
demoting, deactivating or removing an admin here takes effect on the next
request without any explicit revocation.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from admins.limits import validate_daily_limit_config_shape
from admins.models import AdminUser
from admins.repository import AdminIdentifier, AdminRepository
from admins.schemas import AdminCreate, AdminUpdate, parse_input
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from core.constants import DEFAULT_PASSWORD_RESET_TTL, SUPER_ADMIN_LEVEL
from core.errors import (
    AccountNotFoundOrInactive,
    AdminAccountExists,
    AdminNotFound,
    DirectoryReadOnly,
    InvalidPassword,
    InvalidResetToken,
    ResetLinkExpired,
    UserError,
    ValidationError,
)

logger = logging.getLogger("adminauth.directory")

# Fields exposed outside the directory. password_hash and the reset-flow
# state never leave it.
PUBLIC_FIELDS = (
    "id",
    "email",
    "level",
    "active",
    "read_only",
    "block_privilege",
    "analytics_privilege",
    "manage_admins_privilege",
    "fetch_motivations_privilege",
    "company",
    "forms",
    "daily_limit_config",
    "timestamp",
)


def public_profile(admin: AdminUser) -> dict[str, Any]:
    """Return the display projection of an admin as plain Python values."""
    data = asdict(admin)
    return {key: data[key] for key in PUBLIC_FIELDS}


def _require_email(email: Any) -> str:
    if not isinstance(email, str) or not email:
        raise ValidationError("Email is required", details={"fields": ["email"]})
    return email


def _check_daily_limit_override(data: dict[str, Any]) -> None:
    config = data.get("daily_limit_config")
    if config is not None and not validate_daily_limit_config_shape(config):
        raise ValidationError("Invalid daily limit config", details={"fields": ["daily_limit_config"]})


def _require_password(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{field} is required", details={"fields": [field]})
    return value


class AdminDirectory:
    """Lookup and management of admin accounts.

    Usage:
        directory = AdminDirectory(SqlAdminRepository(db), password_salt=settings.password_hash_salt)
        created = await directory.add_admin({"email": "a@b.com", "level": 1, "password": "..."})
        admin = await directory.get_admin("A@B.com")
    """

    def __init__(
        self,
        repository: AdminRepository,
        password_salt: Optional[str] = None,
        reset_ttl: timedelta = DEFAULT_PASSWORD_RESET_TTL,
    ) -> None:
        self.repository = repository
        self._salt = password_salt or None
        self._reset_ttl = reset_ttl

    def _require_writable(self, action: str) -> None:
        if not self.repository.writable:
            raise DirectoryReadOnly(f"Cannot {action} admins if DB is not available")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_admin(self, identifier: AdminIdentifier, active: bool = True) -> Optional[AdminUser]:
        """Find an admin by email (case-insensitive) or id. Inactive rows are skipped unless active=False."""
        if not identifier:
            return None
        return await self.repository.get(identifier, active)

    async def get_admin_or_throw(self, identifier: AdminIdentifier, active: bool = True) -> AdminUser:
        admin = await self.get_admin(identifier, active)
        if admin is None:
            raise AccountNotFoundOrInactive(details={"identifier": identifier})
        return admin

    async def list_admin_emails(self, active: bool = True, company: Optional[str] = None) -> list[str]:
        return await self.repository.list_emails(active, company)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_admin(self, data: dict[str, Any]) -> dict[str, Any]:
        """Create an admin and return its public projection (including the new id).

        Raises ValidationError for malformed input, AdminAccountExists when
        any row (active or not) already uses the email.
        """
        self._require_writable("add")
        payload = parse_input(AdminCreate, data)
        _check_daily_limit_override(data)

        if await self.repository.get(payload.email, active=False) is not None:
            raise AdminAccountExists(details={"email": payload.email})

        fields = payload.model_dump(exclude={"password"})
        admin = AdminUser(
            **fields,
            password_hash=hash_password(payload.password, self._salt) if payload.password else None,
        )
        admin.forms = fields["forms"] or []
        admin.id = await self.repository.insert(admin)
        logger.info("Admin added: %s (level %d)", admin.email, admin.level)
        created = await self.repository.get(admin.id, active=False)
        return public_profile(created or admin)

    async def update_admin(self, email: str, data: dict[str, Any]) -> dict[str, Any]:
        """Apply a partial update and echo the accepted input back.

        email and password cannot be changed here (UserError). The target is
        looked up including inactive rows when the update sets "active", so a
        deactivated admin can be reactivated. Callers re-fetch for full state.
        """
        self._require_writable("update")
        _require_email(email)
        if not isinstance(data, dict):
            raise ValidationError("Update must be an object", details={"fields": []})
        if "email" in data:
            raise UserError("Email cannot be updated")
        if "password" in data:
            raise UserError("Use Change Password endpoint to update user password")

        payload = parse_input(AdminUpdate, data)
        _check_daily_limit_override(data)
        fields = payload.model_dump(exclude_unset=True)

        admin = await self.repository.get(email, active="active" not in fields)
        if admin is None:
            raise AccountNotFoundOrInactive(details={"identifier": email})

        await self.repository.update(admin.id, fields)
        logger.info("Admin updated: %s (%s)", admin.email, ", ".join(sorted(fields)) or "no fields")
        return data

    async def remove_admin(self, id_or_email: AdminIdentifier) -> bool:
        """Hard-delete by id or email. A miss is not an error; returns whether a row was removed."""
        self._require_writable("remove")
        removed = await self.repository.delete(id_or_email)
        if removed:
            logger.info("Admin removed: %s", id_or_email)
        return removed

    async def update_admin_password(self, email: str, new_password: str, old_password: str) -> bool:
        self._require_writable("update")
        _require_email(email)
        _require_password(new_password, "new_password")
        _require_password(old_password, "old_password")

        admin = await self.get_admin_or_throw(email)
        if not verify_password(old_password, admin.password_hash):
            raise InvalidPassword()

        await self.repository.update(admin.id, {"password_hash": hash_password(new_password, self._salt)})
        logger.info("Password changed for admin %s", admin.email)
        return True

    async def create_password_reset(self, email: str) -> str:
        """Start the reset flow: store and return a fresh single-use reset token."""
        self._require_writable("update")
        admin = await self.get_admin_or_throw(_require_email(email))
        token = secrets.token_urlsafe(32)
        await self.repository.update(
            admin.id,
            {"password_reset_token": token, "password_reset_sent_at": datetime.now(timezone.utc).isoformat()},
        )
        logger.info("Password reset issued for admin %s", admin.email)
        return token

    async def reset_admin_password(self, email: str, new_password: str, reset_token: str) -> bool:
        """Set a new password using a reset token issued within the reset window.

        The token must match exactly and now must not be later than
        password_reset_sent_at + 24h. The token is cleared on success.
        """
        self._require_writable("update")
        _require_email(email)
        _require_password(new_password, "new_password")

        admin = await self.get_admin_or_throw(email)
        if not admin.password_reset_token or admin.password_reset_token != reset_token:
            raise InvalidResetToken()
        sent_at = _parse_iso(admin.password_reset_sent_at)
        if sent_at is None or datetime.now(timezone.utc) > sent_at + self._reset_ttl:
            raise ResetLinkExpired()

        await self.repository.update(
            admin.id,
            {
                "password_hash": hash_password(new_password, self._salt),
                "password_reset_token": None,
                "password_reset_sent_at": None,
            },
        )
        logger.info("Password reset completed for admin %s", admin.email)
        return True

    # ------------------------------------------------------------------
    # Authentication and authorization
    # ------------------------------------------------------------------

    async def verify_credentials(self, email: str, password: str) -> Optional[AdminUser]:
        """Return the active admin if password matches, else None.

        The slow hash always runs, against DUMMY_HASH for unknown or
        password-less admins, so timing does not reveal which check failed.
        """
        admin = await self.get_admin(email) if isinstance(email, str) else None
        if admin is None or not admin.password_hash:
            # A non-empty stand-in so the slow hash runs for empty or non-string input too.
            verify_password(password if isinstance(password, str) and password else "-", DUMMY_HASH)
            return None
        if not self.repository.password_matches(admin, password):
            return None
        return admin

    async def check_access_level(self, email: str, required_level: int) -> bool:
        """True iff an active admin exists with level <= required_level."""
        admin = await self.get_admin(email)
        return admin is not None and admin.level <= required_level

    async def _resolve(self, email: str) -> AdminUser:
        admin = await self.get_admin(email)
        if admin is None:
            raise AdminNotFound("Searched admin was not found", details={"identifier": email})
        return admin

    async def is_read_only(self, email: str) -> bool:
        return (await self._resolve(email)).read_only

    async def has_block_privilege(self, email: str) -> bool:
        admin = await self._resolve(email)
        return admin.level == SUPER_ADMIN_LEVEL or admin.block_privilege

    async def has_analytics_privilege(self, email: str) -> bool:
        admin = await self._resolve(email)
        return admin.level == SUPER_ADMIN_LEVEL or admin.analytics_privilege

    async def has_fetch_motivations_privilege(self, email: str) -> bool:
        admin = await self._resolve(email)
        return admin.level == SUPER_ADMIN_LEVEL or admin.fetch_motivations_privilege

    async def has_manage_admins_privilege(self, email: str) -> bool:
        admin = await self._resolve(email)
        return admin.level == SUPER_ADMIN_LEVEL and admin.manage_admins_privilege

    async def has_password(self, email: str) -> bool:
        return bool((await self._resolve(email)).password_hash)

    # ------------------------------------------------------------------
    # Startup seeding
    # ------------------------------------------------------------------

    async def seed_from_config(self, entries: list[dict[str, Any]]) -> int:
        """Add every configured admin whose email is not stored yet. Returns the number added."""
        added = 0
        for entry in entries:
            email = entry.get("email")
            if await self.get_admin(email, active=False) is not None:
                continue
            await self.add_admin(entry)
            added += 1
        if added:
            logger.info("Seeded %d admins from configuration", added)
        return added


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
