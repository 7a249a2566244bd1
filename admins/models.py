"""
admins/models.py -- Domain dataclasses for admin accounts and daily limits.

Pure data containers with zero logic. Privilege derivation lives in
admins/directory.py, limit resolution in admins/limits.py, and the storage
encoding of list/map fields in admins/store.py. Domain code only ever sees
the decoded Python values defined here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class DailyLimitConfig:
    """Alert and block thresholds for one category. Both are non-negative."""

    alert: int
    block: int


@dataclass
class AdminUser:
    """An admin account.

    password_hash is None for federated-only admins. Store-backed admins keep
    "salt:derivedKeyHex" here; config-backed admins keep the configured
    password, which the config repository compares directly.

    daily_limit_config maps a category value ("opened", "displayed") to that
    admin's own thresholds and overrides the level-wide default.

    id and timestamp are None before the record is written to the database.
    """

    email: str
    level: int
    id: Optional[int] = None
    password_hash: Optional[str] = None
    active: bool = True
    read_only: bool = False
    block_privilege: bool = False
    analytics_privilege: bool = False
    manage_admins_privilege: bool = False
    fetch_motivations_privilege: bool = False
    password_reset_token: Optional[str] = None
    password_reset_sent_at: Optional[str] = None  # ISO 8601
    company: Optional[str] = None
    forms: list[str] = field(default_factory=list)
    daily_limit_config: Optional[dict[str, DailyLimitConfig]] = None
    timestamp: Optional[str] = None  # ISO 8601, set by store on insert
