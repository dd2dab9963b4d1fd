"""
Tests for access rules (AccessGuard) and platform roles (RoleManager).
"""

from datetime import datetime, timedelta, timezone

import pytest

from momfit.shared.security import (
    COMMUNITY_ADMIN,
    COMMUNITY_MEMBER,
    PLATFORM_OWNER,
    AccessGuard,
    Permission,
    RoleManager,
)


async def _member(store, user_id, community_id="c1", role="member"):
    await store.insert("community_members", {"user_id": user_id, "community_id": community_id, "role": role})


@pytest.mark.asyncio
class TestAccessGuard:
    async def test_require_member(self, store):
        await _member(store, "u1")
        guard = AccessGuard(store)
        assert (await guard.require_member("u1", "c1")).user_id == "u1"
        with pytest.raises(PermissionError):
            await guard.require_member("stranger", "c1")

    async def test_require_admin_allows_co_admin(self, store):
        await _member(store, "co", role="co-admin")
        guard = AccessGuard(store)
        assert await guard.require_admin("co", "c1")
        with pytest.raises(PermissionError):
            await guard.require_owner_admin("co", "c1")

    async def test_plain_member_is_not_admin(self, store):
        await _member(store, "u1")
        with pytest.raises(PermissionError):
            await AccessGuard(store).require_admin("u1", "c1")

    async def test_blocking_is_symmetric(self, store):
        await store.insert("user_blocks", {"blocker_id": "a", "blocked_id": "b"})
        guard = AccessGuard(store)
        assert await guard.is_blocked("a", "b")
        assert await guard.is_blocked("b", "a")
        assert not await guard.is_blocked("a", "c")


class TestVisibilityRules:
    def test_message_visibility(self, store):
        guard = AccessGuard(store)
        message = {"sender_id": "a", "recipient_id": "b"}
        assert guard.can_read_messages("a", message)
        assert guard.can_read_messages("b", message)
        assert not guard.can_read_messages("c", message)

    def test_inactive_community_hidden(self, store):
        guard = AccessGuard(store)
        assert guard.can_view_community({"is_active": True})
        assert not guard.can_view_community({"is_active": False})
        assert not guard.can_view_community({"is_active": True, "deleted_at": "2024-01-01"})


@pytest.mark.asyncio
class TestRoleManager:
    async def test_platform_owner_grants_everything(self, store):
        roles = RoleManager(store)
        await roles.assign_role("boss", PLATFORM_OWNER.id)
        assert await roles.has_permission("boss", Permission("community", "delete", "posts"), "c1")

    async def test_community_role_scoped_to_its_community(self, store):
        roles = RoleManager(store)
        await roles.assign_role("admin", COMMUNITY_ADMIN.id, community_id="c1")
        wanted = Permission("community", "update", "members")
        assert await roles.has_permission("admin", wanted, "c1")
        assert not await roles.has_permission("admin", wanted, "c2")
        assert not await roles.has_permission("admin", wanted)

    async def test_member_cannot_manage(self, store):
        roles = RoleManager(store)
        await roles.assign_role("m", COMMUNITY_MEMBER.id, community_id="c1")
        assert await roles.has_permission("m", Permission("community", "create", "posts"), "c1")
        assert not await roles.has_permission("m", Permission("community", "delete", "posts"), "c1")

    async def test_expired_assignment_ignored(self, store):
        roles = RoleManager(store)
        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        await roles.assign_role("boss", PLATFORM_OWNER.id, expires_at=(now - timedelta(days=1)).isoformat())
        assert not await roles.has_permission("boss", Permission("global", "read", "x"), now=now)

    async def test_assign_clears_user_cache(self, store):
        roles = RoleManager(store)
        assert await roles.get_user_roles("u") == []
        await roles.assign_role("u", COMMUNITY_MEMBER.id, community_id="c1")
        assignments = await roles.get_user_roles("u")
        assert len(assignments) == 1
        assert assignments[0]["role"].name == "Community Member"

    async def test_custom_role(self, store):
        roles = RoleManager(store)
        role = await roles.create_role("Event Host", "MEMBER", [Permission("community", "create", "events", "host")])
        roles.clear_cache()
        loaded = await roles.get_role(role.id)
        assert loaded.name == "Event Host"
        assert loaded.permissions[0].resource == "events"
