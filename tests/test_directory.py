"""
tests/test_directory.py -- AdminDirectory against a real SQLite store.

Coverage:
  - add_admin: validation, case-insensitive uniqueness, public projection
  - get_admin / list_admin_emails: case folding, active filter, company filter
  - update_admin: partial updates, reactivation, forbidden fields
  - remove_admin: by id or email, idempotent miss, email reusable afterwards
  - Password change and reset flows, including reset-window expiry
  - verify_credentials and check_access_level
  - Privilege rules (level 0 OR flag, manage_admins = level 0 AND flag)
  - Config-only mode: lookups work, every mutation raises DirectoryReadOnly
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from admins.directory import AdminDirectory, public_profile
from admins.repository import ConfigAdminRepository, SqlAdminRepository
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


class TestAddAdmin:
    @pytest.mark.asyncio
    async def test_add_returns_public_projection(self, add_admin) -> None:
        created = await add_admin("Alice@Example.com", level=1, password="pw", company="acme", forms=["f1", "f2"])
        assert isinstance(created["id"], int)
        assert created["email"] == "Alice@Example.com"
        assert created["level"] == 1
        assert created["active"] is True
        assert created["forms"] == ["f1", "f2"]
        assert created["company"] == "acme"
        assert created["timestamp"]
        assert "password_hash" not in created
        assert "password_reset_token" not in created

    @pytest.mark.asyncio
    async def test_forms_default_to_empty_list(self, directory, add_admin) -> None:
        await add_admin("a@example.com")
        admin = await directory.get_admin("a@example.com")
        assert admin.forms == []

    @pytest.mark.asyncio
    async def test_daily_limit_override_is_stored(self, directory, add_admin) -> None:
        await add_admin("a@example.com", daily_limit_config={"opened": {"alert": 5, "block": 10}})
        admin = await directory.get_admin("a@example.com")
        assert admin.daily_limit_config["opened"].alert == 5
        assert admin.daily_limit_config["opened"].block == 10

    @pytest.mark.asyncio
    async def test_duplicate_email_is_case_insensitive(self, add_admin) -> None:
        await add_admin("dup@example.com")
        with pytest.raises(AdminAccountExists):
            await add_admin("DUP@example.com")

    @pytest.mark.asyncio
    async def test_duplicate_of_inactive_admin_is_rejected(self, add_admin) -> None:
        await add_admin("gone@example.com", active=False)
        with pytest.raises(AdminAccountExists):
            await add_admin("gone@example.com")

    @pytest.mark.parametrize(
        "fields",
        [
            {"level": "1"},
            {"level": True},
            {"level": 5},
            {"level": -1},
            {"read_only": "yes"},
            {"forms": "f1"},
            {"unknown_field": 1},
            {"daily_limit_config": {"clicked": {"alert": 1, "block": 2}}},
            {"daily_limit_config": {"opened": {"alert": 1}}},
            {"daily_limit_config": {"opened": {"alert": -1, "block": 2}}},
        ],
    )
    @pytest.mark.asyncio
    async def test_malformed_input_is_rejected(self, directory, fields) -> None:
        data = {"email": "bad@example.com", "level": 1, **fields}
        with pytest.raises(ValidationError):
            await directory.add_admin(data)
        assert await directory.get_admin("bad@example.com", active=False) is None

    @pytest.mark.asyncio
    async def test_missing_email_is_rejected(self, directory) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await directory.add_admin({"level": 1})
        assert "email" in exc_info.value.details["fields"]

    @pytest.mark.asyncio
    async def test_configured_salt_is_used(self, db) -> None:
        directory = AdminDirectory(SqlAdminRepository(db), password_salt="site-salt")
        await directory.add_admin({"email": "s@example.com", "level": 1, "password": "pw"})
        admin = await directory.get_admin("s@example.com")
        assert admin.password_hash.startswith("site-salt:")


class TestLookups:
    @pytest.mark.asyncio
    async def test_get_by_email_any_case_and_by_id(self, directory, add_admin) -> None:
        created = await add_admin("Mixed@Example.com")
        assert (await directory.get_admin("mixed@example.com")).id == created["id"]
        assert (await directory.get_admin(created["id"])).email == "Mixed@Example.com"

    @pytest.mark.asyncio
    async def test_inactive_admin_is_hidden_by_default(self, directory, add_admin) -> None:
        created = await add_admin("off@example.com", active=False)
        assert await directory.get_admin("off@example.com") is None
        assert await directory.get_admin(created["id"]) is None
        assert (await directory.get_admin("off@example.com", active=False)).active is False

    @pytest.mark.asyncio
    async def test_empty_identifier_returns_none(self, directory) -> None:
        assert await directory.get_admin("") is None

    @pytest.mark.asyncio
    async def test_get_admin_or_throw(self, directory) -> None:
        with pytest.raises(AccountNotFoundOrInactive):
            await directory.get_admin_or_throw("nobody@example.com")

    @pytest.mark.asyncio
    async def test_list_emails_lowercased_and_sorted(self, directory, add_admin) -> None:
        await add_admin("Zed@example.com", company="acme")
        await add_admin("amy@example.com", company="other")
        await add_admin("Bob@example.com", company="acme")
        await add_admin("off@example.com", company="acme", active=False)

        assert await directory.list_admin_emails() == ["amy@example.com", "bob@example.com", "zed@example.com"]
        assert await directory.list_admin_emails(company="acme") == ["bob@example.com", "zed@example.com"]
        assert "off@example.com" in await directory.list_admin_emails(active=False)


class TestUpdateAdmin:
    @pytest.mark.asyncio
    async def test_partial_update(self, directory, add_admin) -> None:
        await add_admin("u@example.com", level=2, company="acme")
        echoed = await directory.update_admin("U@example.com", {"level": 1, "block_privilege": True})
        assert echoed == {"level": 1, "block_privilege": True}

        admin = await directory.get_admin("u@example.com")
        assert admin.level == 1
        assert admin.block_privilege is True
        assert admin.company == "acme"

    @pytest.mark.asyncio
    async def test_deactivate_then_reactivate(self, directory, add_admin) -> None:
        await add_admin("u@example.com")
        await directory.update_admin("u@example.com", {"active": False})
        assert await directory.get_admin("u@example.com") is None

        await directory.update_admin("u@example.com", {"active": True})
        assert (await directory.get_admin("u@example.com")).active is True

    @pytest.mark.asyncio
    async def test_update_of_inactive_admin_without_active_fails(self, directory, add_admin) -> None:
        await add_admin("u@example.com", active=False)
        with pytest.raises(AccountNotFoundOrInactive):
            await directory.update_admin("u@example.com", {"level": 0})

    @pytest.mark.parametrize("field", ["email", "password"])
    @pytest.mark.asyncio
    async def test_email_and_password_cannot_be_updated(self, directory, add_admin, field) -> None:
        await add_admin("u@example.com", password="pw")
        before = await directory.get_admin("u@example.com")
        with pytest.raises(UserError):
            await directory.update_admin("u@example.com", {field: "changed", "level": 0})
        after = await directory.get_admin("u@example.com")
        assert after == before

    @pytest.mark.asyncio
    async def test_explicit_null_flag_is_rejected(self, directory, add_admin) -> None:
        await add_admin("u@example.com")
        with pytest.raises(ValidationError):
            await directory.update_admin("u@example.com", {"read_only": None})

    @pytest.mark.asyncio
    async def test_unknown_admin(self, directory) -> None:
        with pytest.raises(AccountNotFoundOrInactive):
            await directory.update_admin("nobody@example.com", {"level": 1})


class TestRemoveAdmin:
    @pytest.mark.asyncio
    async def test_remove_by_email_then_re_add(self, directory, add_admin) -> None:
        await add_admin("r@example.com")
        assert await directory.remove_admin("R@example.com") is True
        assert await directory.get_admin("r@example.com", active=False) is None
        await add_admin("r@example.com")

    @pytest.mark.asyncio
    async def test_remove_by_id(self, directory, add_admin) -> None:
        created = await add_admin("r@example.com")
        assert await directory.remove_admin(created["id"]) is True
        assert await directory.get_admin("r@example.com", active=False) is None

    @pytest.mark.asyncio
    async def test_remove_missing_is_not_an_error(self, directory) -> None:
        assert await directory.remove_admin("nobody@example.com") is False


class TestPasswords:
    @pytest.mark.asyncio
    async def test_verify_credentials(self, directory, add_admin) -> None:
        await add_admin("p@example.com", password="hunter2")
        admin = await directory.verify_credentials("P@example.com", "hunter2")
        assert admin is not None and admin.email == "p@example.com"
        assert await directory.verify_credentials("p@example.com", "hunter2x") is None
        assert await directory.verify_credentials("nobody@example.com", "hunter2") is None

    @pytest.mark.asyncio
    async def test_federated_admin_cannot_use_password_login(self, directory, add_admin) -> None:
        await add_admin("g@example.com")
        assert await directory.verify_credentials("g@example.com", "anything") is None
        assert await directory.has_password("g@example.com") is False

    @pytest.mark.asyncio
    async def test_inactive_admin_cannot_log_in(self, directory, add_admin) -> None:
        await add_admin("p@example.com", password="pw", active=False)
        assert await directory.verify_credentials("p@example.com", "pw") is None

    @pytest.mark.asyncio
    async def test_update_password(self, directory, add_admin) -> None:
        await add_admin("p@example.com", password="old")
        assert await directory.update_admin_password("p@example.com", "new", "old") is True
        assert await directory.verify_credentials("p@example.com", "new") is not None
        assert await directory.verify_credentials("p@example.com", "old") is None

    @pytest.mark.asyncio
    async def test_update_password_wrong_old_password(self, directory, add_admin) -> None:
        await add_admin("p@example.com", password="old")
        with pytest.raises(InvalidPassword):
            await directory.update_admin_password("p@example.com", "new", "wrong")
        assert await directory.verify_credentials("p@example.com", "old") is not None

    @pytest.mark.asyncio
    async def test_update_password_requires_values(self, directory, add_admin) -> None:
        await add_admin("p@example.com", password="old")
        with pytest.raises(ValidationError):
            await directory.update_admin_password("p@example.com", "", "old")


class TestPasswordReset:
    @pytest.mark.asyncio
    async def test_reset_flow(self, directory, add_admin) -> None:
        await add_admin("r@example.com", password="old")
        token = await directory.create_password_reset("r@example.com")

        assert await directory.reset_admin_password("r@example.com", "fresh", token) is True
        assert await directory.verify_credentials("r@example.com", "fresh") is not None

        admin = await directory.get_admin("r@example.com")
        assert admin.password_reset_token is None
        # Single use: the same token no longer works.
        with pytest.raises(InvalidResetToken):
            await directory.reset_admin_password("r@example.com", "again", token)

    @pytest.mark.asyncio
    async def test_wrong_token(self, directory, add_admin) -> None:
        await add_admin("r@example.com", password="old")
        await directory.create_password_reset("r@example.com")
        with pytest.raises(InvalidResetToken):
            await directory.reset_admin_password("r@example.com", "fresh", "not-the-token")

    @pytest.mark.asyncio
    async def test_no_reset_requested(self, directory, add_admin) -> None:
        await add_admin("r@example.com", password="old")
        with pytest.raises(InvalidResetToken):
            await directory.reset_admin_password("r@example.com", "fresh", "")

    @pytest.mark.asyncio
    async def test_expired_reset_link(self, directory, add_admin) -> None:
        await add_admin("r@example.com", password="old")
        token = await directory.create_password_reset("r@example.com")
        admin = await directory.get_admin("r@example.com")
        stale = (datetime.now(timezone.utc) - timedelta(hours=24, minutes=1)).isoformat()
        await directory.repository.update(admin.id, {"password_reset_sent_at": stale})

        with pytest.raises(ResetLinkExpired):
            await directory.reset_admin_password("r@example.com", "fresh", token)
        assert await directory.verify_credentials("r@example.com", "old") is not None

    @pytest.mark.asyncio
    async def test_reset_for_unknown_admin(self, directory) -> None:
        with pytest.raises(AccountNotFoundOrInactive):
            await directory.create_password_reset("nobody@example.com")


class TestAccessAndPrivileges:
    @pytest.mark.asyncio
    async def test_check_access_level(self, directory, add_admin) -> None:
        await add_admin("l2@example.com", level=2)
        assert await directory.check_access_level("l2@example.com", 2) is True
        assert await directory.check_access_level("l2@example.com", 4) is True
        assert await directory.check_access_level("l2@example.com", 1) is False
        assert await directory.check_access_level("nobody@example.com", 4) is False

    @pytest.mark.asyncio
    async def test_check_access_level_inactive(self, directory, add_admin) -> None:
        await add_admin("off@example.com", level=0, active=False)
        assert await directory.check_access_level("off@example.com", 4) is False

    @pytest.mark.asyncio
    async def test_super_admin_has_or_privileges(self, directory, add_admin) -> None:
        await add_admin("root@example.com", level=0)
        assert await directory.has_block_privilege("root@example.com") is True
        assert await directory.has_analytics_privilege("root@example.com") is True
        assert await directory.has_fetch_motivations_privilege("root@example.com") is True
        assert await directory.is_read_only("root@example.com") is False

    @pytest.mark.asyncio
    async def test_manage_admins_requires_level_zero_and_flag(self, directory, add_admin) -> None:
        await add_admin("root@example.com", level=0)
        await add_admin("root2@example.com", level=0, manage_admins_privilege=True)
        await add_admin("l1@example.com", level=1, manage_admins_privilege=True)
        assert await directory.has_manage_admins_privilege("root@example.com") is False
        assert await directory.has_manage_admins_privilege("root2@example.com") is True
        assert await directory.has_manage_admins_privilege("l1@example.com") is False

    @pytest.mark.asyncio
    async def test_flags_grant_privileges_below_level_zero(self, directory, add_admin) -> None:
        await add_admin("l3@example.com", level=3, block_privilege=True, read_only=True)
        assert await directory.has_block_privilege("l3@example.com") is True
        assert await directory.has_analytics_privilege("l3@example.com") is False
        assert await directory.has_fetch_motivations_privilege("l3@example.com") is False
        assert await directory.is_read_only("l3@example.com") is True

    @pytest.mark.asyncio
    async def test_unknown_admin_raises(self, directory) -> None:
        with pytest.raises(AdminNotFound):
            await directory.has_block_privilege("nobody@example.com")


class TestSeeding:
    @pytest.mark.asyncio
    async def test_seed_adds_missing_admins_once(self, directory) -> None:
        entries = [
            {"email": "root@example.com", "level": 0, "password": "pw"},
            {"email": "ops@example.com", "level": 2},
        ]
        assert await directory.seed_from_config(entries) == 2
        assert await directory.seed_from_config(entries) == 0
        assert await directory.verify_credentials("root@example.com", "pw") is not None


class TestConfigOnlyMode:
    @pytest.fixture
    def config_directory(self) -> AdminDirectory:
        return AdminDirectory(
            ConfigAdminRepository(
                [
                    {"email": "Root@Example.com", "level": 0, "password": "plain", "company": "acme"},
                    {"email": "viewer@example.com", "level": 3, "read_only": True},
                ]
            )
        )

    @pytest.mark.asyncio
    async def test_lookup_is_case_insensitive(self, config_directory) -> None:
        admin = await config_directory.get_admin("root@example.com")
        assert admin is not None and admin.level == 0
        assert await config_directory.get_admin(1) is None

    @pytest.mark.asyncio
    async def test_plaintext_credentials(self, config_directory) -> None:
        assert await config_directory.verify_credentials("root@example.com", "plain") is not None
        assert await config_directory.verify_credentials("root@example.com", "plainx") is None
        assert await config_directory.verify_credentials("viewer@example.com", "") is None

    @pytest.mark.asyncio
    async def test_list_and_privileges(self, config_directory) -> None:
        assert await config_directory.list_admin_emails() == ["root@example.com", "viewer@example.com"]
        assert await config_directory.list_admin_emails(company="acme") == ["root@example.com"]
        assert await config_directory.is_read_only("viewer@example.com") is True
        assert await config_directory.has_block_privilege("root@example.com") is True

    @pytest.mark.asyncio
    async def test_every_mutation_is_read_only(self, config_directory) -> None:
        with pytest.raises(DirectoryReadOnly):
            await config_directory.add_admin({"email": "new@example.com", "level": 1})
        with pytest.raises(DirectoryReadOnly):
            await config_directory.add_admin({"not": "even valid"})
        with pytest.raises(DirectoryReadOnly):
            await config_directory.update_admin("root@example.com", {"level": 1})
        with pytest.raises(DirectoryReadOnly):
            await config_directory.remove_admin("root@example.com")
        with pytest.raises(DirectoryReadOnly):
            await config_directory.update_admin_password("root@example.com", "new", "plain")
        with pytest.raises(DirectoryReadOnly):
            await config_directory.reset_admin_password("root@example.com", "new", "token")

    @pytest.mark.parametrize(
        "entry",
        [
            {"email": "nolevel@example.com", "password": "pw"},
            {"email": "flag@example.com", "level": 2, "read_only": "false"},
            {"email": "text@example.com", "level": "3"},
            {"email": "range@example.com", "level": 9},
            {"email": "limits@example.com", "level": 2, "daily_limit_config": {"nope": {"alert": 1, "block": 2}}},
        ],
    )
    def test_malformed_entries_rejected_at_construction(self, entry) -> None:
        with pytest.raises(ValidationError):
            ConfigAdminRepository([entry])

    @pytest.mark.asyncio
    async def test_non_string_password_is_no_match(self, config_directory) -> None:
        assert await config_directory.verify_credentials("root@example.com", 12345) is None
        assert await config_directory.verify_credentials("nobody@example.com", 12345) is None
        assert await config_directory.verify_credentials(None, "plain") is None

    @pytest.mark.asyncio
    async def test_inactive_entry_hidden_by_default(self) -> None:
        directory = AdminDirectory(ConfigAdminRepository([{"email": "off@example.com", "level": 1, "active": False}]))
        assert await directory.get_admin("off@example.com") is None
        assert await directory.list_admin_emails() == []
        assert await directory.list_admin_emails(active=False) == ["off@example.com"]


class TestPublicProfile:
    @pytest.mark.asyncio
    async def test_profile_hides_secrets(self, directory, add_admin) -> None:
        await add_admin("p@example.com", password="pw")
        await directory.create_password_reset("p@example.com")
        profile = public_profile(await directory.get_admin("p@example.com"))
        assert "password_hash" not in profile
        assert "password_reset_token" not in profile
        assert "password_reset_sent_at" not in profile
