"""
core/constants.py -- Fixed values shared by every layer.

Kept separate from core/config.py on purpose: these are not deployment knobs.
Changing one of them changes the wire contract with hosting applications
(token prefix) or the stored data model (levels, categories, table names).
"""

from datetime import timedelta

ADMIN_USERS_TABLE = "admin_users"
ADMIN_LEVEL_DAILY_LIMITS_TABLE = "admin_level_daily_limits"
ADMIN_TOKENS_TABLE = "admin_tokens"

# 0 is the super-admin; higher numbers carry fewer rights.
MIN_ADMIN_LEVEL = 0
MAX_ADMIN_LEVEL = 4
SUPER_ADMIN_LEVEL = MIN_ADMIN_LEVEL

VALID_DAILY_LIMIT_CATEGORIES = ("opened", "displayed")

# Every admin session token starts with this marker. validate_token() rejects
# anything else before touching the store.
ADMIN_TOKEN_PREFIX = "ADM-"
ADMIN_TOKEN_KEY_NAMESPACE = "adminTokens"

DEFAULT_SESSION_TTL = timedelta(hours=8)
DEFAULT_PASSWORD_RESET_TTL = timedelta(hours=24)
