"""
Security module for MomFit - access rules keyed on caller identity.
Handles community membership checks, direct-message visibility, user
blocking and platform role permissions.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .interfaces import IDataStore
from .models import CommunityMember, CommunityRole, parse_timestamp, utc_now_iso

logger = logging.getLogger(__name__)


class AccessGuard:
    """Central enforcement of per-row access rules for the service layer."""

    def __init__(self, store: IDataStore):
        self._store = store

    async def get_membership(self, user_id: str, community_id: str) -> Optional[CommunityMember]:
        row = await self._store.get(
            "community_members", {"user_id": user_id, "community_id": community_id}
        )
        return CommunityMember.from_dict(row) if row else None

    async def require_member(self, user_id: str, community_id: str) -> CommunityMember:
        """Return the caller's membership or raise PermissionError."""
        member = await self.get_membership(user_id, community_id)
        if member is None:
            logger.warning(f"Access denied: {user_id} is not a member of {community_id}")
            raise PermissionError("You must be a member of this community")
        return member

    async def require_admin(
        self, user_id: str, community_id: str, allow_co_admin: bool = True
    ) -> CommunityMember:
        """Require admin rights; co-admins pass unless allow_co_admin is False."""
        member = await self.get_membership(user_id, community_id)
        allowed = member is not None and (
            member.can_moderate if allow_co_admin else member.is_admin
        )
        if not allowed:
            logger.warning(f"Access denied: {user_id} is not an admin of {community_id}")
            raise PermissionError("Community admin rights required")
        return member

    async def require_owner_admin(self, user_id: str, community_id: str) -> CommunityMember:
        return await self.require_admin(user_id, community_id, allow_co_admin=False)

    def can_view_community(self, community: dict) -> bool:
        """Active communities are publicly visible."""
        return community.get("is_active", True) is not False and not community.get("deleted_at")

    def can_read_messages(self, user_id: str, message: dict) -> bool:
        return user_id in (message.get("sender_id"), message.get("recipient_id"))

    async def is_blocked(self, user_a: str, user_b: str) -> bool:
        """True when either user has blocked the other."""
        for blocker, blocked in ((user_a, user_b), (user_b, user_a)):
            row = await self._store.get(
                "user_blocks", {"blocker_id": blocker, "blocked_id": blocked}
            )
            if row:
                return True
        return False


# ── Platform roles ────────────────────────────────────────────


@dataclass(frozen=True)
class Permission:
    """scope: global | community | content; action: create | read | update | delete | manage."""
    scope: str
    action: str
    resource: str
    name: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "scope": self.scope,
            "action": self.action,
            "resource": self.resource,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Permission":
        return cls(
            scope=data.get("scope", ""),
            action=data.get("action", ""),
            resource=data.get("resource", ""),
            name=data.get("name", ""),
        )


@dataclass
class Role:
    id: str
    name: str
    access_level: str
    permissions: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "access_level": self.access_level,
            "permissions": [p.to_dict() for p in self.permissions],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Role":
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            access_level=data.get("access_level", "USER"),
            permissions=[Permission.from_dict(p) for p in data.get("permissions") or []],
        )


PLATFORM_OWNER = Role(
    id="platform-owner",
    name="Platform Owner",
    access_level="SUPREME_ADMIN",
    permissions=[Permission("global", "manage", "*", "all")],
)

PLATFORM_USER = Role(
    id="platform-user",
    name="Platform User",
    access_level="USER",
    permissions=[
        Permission("content", "read", "public", "view_public"),
        Permission("content", "manage", "profile", "manage_profile"),
    ],
)

COMMUNITY_ADMIN = Role(
    id="community-admin",
    name="Community Admin",
    access_level="ADMIN",
    permissions=[
        Permission("community", "manage", "community", "manage_community"),
        Permission("community", "manage", "members", "manage_members"),
    ],
)

COMMUNITY_CO_ADMIN = Role(
    id="community-co-admin",
    name="Community Co-Admin",
    access_level="SECONDARY_ADMIN",
    permissions=[
        Permission("community", "manage", "content", "manage_content"),
        Permission("community", "update", "members", "moderate_members"),
    ],
)

COMMUNITY_MEMBER = Role(
    id="community-member",
    name="Community Member",
    access_level="MEMBER",
    permissions=[
        Permission("community", "read", "content", "view_content"),
        Permission("community", "create", "posts", "create_posts"),
    ],
)

BUILTIN_ROLES = {
    role.id: role
    for role in (PLATFORM_OWNER, PLATFORM_USER, COMMUNITY_ADMIN, COMMUNITY_CO_ADMIN, COMMUNITY_MEMBER)
}

_COMMUNITY_ROLE_IDS = {
    CommunityRole.ADMIN: COMMUNITY_ADMIN.id,
    CommunityRole.CO_ADMIN: COMMUNITY_CO_ADMIN.id,
    CommunityRole.MEMBER: COMMUNITY_MEMBER.id,
}


def role_id_for(community_role: CommunityRole) -> str:
    """Platform role matching a community membership role."""
    return _COMMUNITY_ROLE_IDS[community_role]


class RoleManager:
    """
    Role assignments stored in ``user_roles`` with role definitions in
    ``roles`` (built-in roles need no row). Lookups are cached per user
    and per role; store errors propagate to the caller.
    """

    def __init__(self, store: IDataStore):
        self._store = store
        self._role_cache: dict[str, Role] = {}
        self._user_role_cache: dict[str, list[dict]] = {}

    async def assign_role(
        self,
        user_id: str,
        role_id: str,
        community_id: Optional[str] = None,
        assigned_by: Optional[str] = None,
        expires_at: Optional[str] = None,
    ) -> dict:
        row = await self._store.insert("user_roles", {
            "user_id": user_id,
            "role_id": role_id,
            "community_id": community_id,
            "assigned_by": assigned_by or user_id,
            "assigned_at": utc_now_iso(),
            "expires_at": expires_at,
        })
        self._user_role_cache.pop(user_id, None)
        logger.info(f"Role {role_id} assigned to {user_id} (community={community_id})")
        return row

    async def get_user_roles(self, user_id: str) -> list[dict]:
        """Assignments for the user, each with its resolved ``role``."""
        if user_id in self._user_role_cache:
            return self._user_role_cache[user_id]

        rows = await self._store.select("user_roles", {"user_id": user_id})
        assignments = []
        for row in rows:
            assignments.append({**row, "role": await self.get_role(row.get("role_id", ""))})
        self._user_role_cache[user_id] = assignments
        return assignments

    async def has_permission(
        self,
        user_id: str,
        permission: Permission,
        community_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        now = now or datetime.now(timezone.utc)
        assignments = [a for a in await self.get_user_roles(user_id) if not _expired(a, now)]

        for assignment in assignments:
            role = assignment["role"]
            if assignment.get("community_id") is not None or role is None:
                continue
            if role.name == PLATFORM_OWNER.name:
                return True
            if any(
                p.scope in ("global", permission.scope) and _action_and_resource_match(p, permission)
                for p in role.permissions
            ):
                return True

        if not community_id:
            return False

        for assignment in assignments:
            role = assignment["role"]
            if assignment.get("community_id") != community_id or role is None:
                continue
            if any(
                p.scope == permission.scope and _action_and_resource_match(p, permission)
                for p in role.permissions
            ):
                return True
        return False

    async def get_role(self, role_id: str) -> Optional[Role]:
        if role_id in self._role_cache:
            return self._role_cache[role_id]
        role = BUILTIN_ROLES.get(role_id)
        if role is None:
            row = await self._store.get("roles", {"id": role_id})
            role = Role.from_dict(row) if row else None
        if role is not None:
            self._role_cache[role_id] = role
        return role

    async def create_role(self, name: str, access_level: str, permissions: list) -> Role:
        row = await self._store.insert("roles", {
            "name": name,
            "access_level": access_level,
            "permissions": [p.to_dict() for p in permissions],
            "updated_at": utc_now_iso(),
        })
        role = Role.from_dict(row)
        self._role_cache[role.id] = role
        return role

    def clear_cache(self) -> None:
        self._role_cache.clear()
        self._user_role_cache.clear()


def _expired(assignment: dict, now: datetime) -> bool:
    expires_at = parse_timestamp(assignment.get("expires_at"))
    return expires_at is not None and expires_at < now


def _action_and_resource_match(granted: Permission, wanted: Permission) -> bool:
    return (
        granted.action in ("manage", wanted.action)
        and granted.resource in ("*", wanted.resource)
    )
