"""
admins/limits.py -- Two-tier daily-limit configuration.

Tier 1: a level-wide default per (level, category) in admin_level_daily_limits.
Tier 2: an admin's own override map in admin_users.daily_limit_config.

Effective config for an admin = their own override map when it is non-empty,
else the level-wide map for their level, else None (no limit configured).

set_level_daily_limit() is an update-if-exists-else-insert. It is not atomic
against a concurrent identical upsert: the loser either overwrites (lost
update) or hits the primary key and the IntegrityError propagates to the
caller.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import select

from admins.models import DailyLimitConfig
from admins.schemas import DailyLimitPatch, parse_input
from admins.store import AdminDatabase, admin_level_daily_limits, row_to_daily_limit
from core.constants import MAX_ADMIN_LEVEL, MIN_ADMIN_LEVEL, VALID_DAILY_LIMIT_CATEGORIES
from core.errors import UserError

if TYPE_CHECKING:
    from admins.directory import AdminDirectory

logger = logging.getLogger("adminauth.limits")

_limits = admin_level_daily_limits


def _is_level(level: Any) -> bool:
    return isinstance(level, int) and not isinstance(level, bool) and MIN_ADMIN_LEVEL <= level <= MAX_ADMIN_LEVEL


def _is_threshold(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _check_level(level: Any) -> int:
    if not _is_level(level):
        raise UserError(f"Invalid admin level: {level!r}", details={"level": level})
    return level


def _check_category(category: Any) -> str:
    if category not in VALID_DAILY_LIMIT_CATEGORIES:
        raise UserError(f"Invalid daily limit category: {category!r}", details={"category": category})
    return category


def validate_daily_limit_config_shape(config: Any) -> bool:
    """Return True if config is a map of valid categories to {alert, block} non-negative ints."""
    if not isinstance(config, dict):
        return False
    for category, limits in config.items():
        if category not in VALID_DAILY_LIMIT_CATEGORIES:
            return False
        if isinstance(limits, DailyLimitConfig):
            limits = {"alert": limits.alert, "block": limits.block}
        if not isinstance(limits, dict) or set(limits) != {"alert", "block"}:
            return False
        if not (_is_threshold(limits["alert"]) and _is_threshold(limits["block"])):
            return False
    return True


class DailyLimitStore:
    """Level defaults plus per-admin override resolution.

    Requires the relational store; level defaults have no config-only form.
    """

    def __init__(self, db: AdminDatabase, directory: AdminDirectory) -> None:
        self.engine = db.engine
        self.directory = directory

    # ------------------------------------------------------------------
    # Level defaults
    # ------------------------------------------------------------------

    async def set_level_daily_limit(self, level: int, category: str, limits: dict[str, Any]) -> bool:
        """Create or partially update the default for (level, category).

        Creating requires both alert and block. Updating may give either;
        the other keeps its stored value.
        """
        _check_level(level)
        _check_category(category)
        patch = parse_input(DailyLimitPatch, limits)
        values = patch.model_dump(exclude_none=True)
        if not values:
            raise UserError("Daily limit alert or block is required")

        key = (_limits.c.level == level) & (_limits.c.category == category)
        async with self.engine.connect() as conn:
            existing = (await conn.execute(select(_limits.c.level).where(key))).fetchone()
            if existing is None:
                if set(values) != {"alert", "block"}:
                    raise UserError("Daily limit alert and block are both required on create")
                await conn.execute(_limits.insert().values(level=level, category=category, **values))
            else:
                await conn.execute(_limits.update().where(key).values(**values))
            await conn.commit()
        logger.info("Daily limit set: level=%d category=%s %s", level, category, values)
        return True

    async def get_level_daily_limit(self, level: int, category: str) -> Optional[DailyLimitConfig]:
        _check_level(level)
        _check_category(category)
        async with self.engine.connect() as conn:
            row = (
                await conn.execute(_limits.select().where((_limits.c.level == level) & (_limits.c.category == category)))
            ).fetchone()
        return row_to_daily_limit(row) if row is not None else None

    async def get_level_daily_limits_by_level(self, level: int) -> Optional[dict[str, DailyLimitConfig]]:
        """All category defaults for one level, or None when the level has none."""
        _check_level(level)
        async with self.engine.connect() as conn:
            rows = (
                await conn.execute(_limits.select().where(_limits.c.level == level).order_by(_limits.c.category))
            ).fetchall()
        if not rows:
            return None
        return {row.category: row_to_daily_limit(row) for row in rows}

    async def get_level_daily_limits_by_category(self, category: str) -> dict[int, DailyLimitConfig]:
        _check_category(category)
        async with self.engine.connect() as conn:
            rows = (
                await conn.execute(_limits.select().where(_limits.c.category == category).order_by(_limits.c.level))
            ).fetchall()
        return {row.level: row_to_daily_limit(row) for row in rows}

    async def remove_level_daily_limits(self, level: int) -> int:
        """Delete every category default for level. Returns the number of rows removed."""
        _check_level(level)
        async with self.engine.connect() as conn:
            result = await conn.execute(_limits.delete().where(_limits.c.level == level))
            await conn.commit()
        logger.info("Daily limits removed for level %d (%d rows)", level, result.rowcount)
        return result.rowcount

    # ------------------------------------------------------------------
    # Per-admin resolution
    # ------------------------------------------------------------------

    async def get_effective_admin_daily_limit_config(self, email: str) -> Optional[dict[str, DailyLimitConfig]]:
        """Whole-map resolution: a non-empty override replaces the level map entirely.

        Unlike get_effective_admin_daily_limit(), level defaults for
        categories the override leaves out are not merged in.
        """
        admin = await self.directory.get_admin_or_throw(email)
        if admin.daily_limit_config:
            return admin.daily_limit_config
        return await self.get_level_daily_limits_by_level(admin.level)

    async def get_effective_admin_daily_limit(self, email: str, category: str) -> Optional[DailyLimitConfig]:
        """Resolve one category: the admin's override, else the level default, else None."""
        _check_category(category)
        admin = await self.directory.get_admin_or_throw(email)
        override = (admin.daily_limit_config or {}).get(category)
        if override is not None:
            return override
        return await self.get_level_daily_limit(admin.level, category)

    async def clear_admin_daily_limit_override(self, email: str) -> bool:
        admin = await self.directory.get_admin_or_throw(email)
        await self.directory.repository.update(admin.id, {"daily_limit_config": None})
        logger.info("Daily limit override cleared for admin %s", admin.email)
        return True
