"""
Community lifecycle: creation, discovery, membership and join requests.

Access checks go through AccessGuard; membership changes are mirrored into
platform role assignments via RoleManager.
"""

import asyncio
import logging
from typing import Optional

from momfit.shared.constants import COMMUNITY_PAGE_SIZE
from momfit.shared.interfaces import IDataStore
from momfit.shared.models import (
    Community,
    CommunityMember,
    CommunityRole,
    JoinRequest,
    JoinStatus,
    generate_slug,
    utc_now_iso,
)
from momfit.shared.security import AccessGuard, RoleManager, role_id_for

logger = logging.getLogger(__name__)

JOIN_REQUEST_TABLE = "community_join_requests"


class CommunityService:
    def __init__(self, store: IDataStore, guard: AccessGuard, roles: RoleManager):
        self._store = store
        self._guard = guard
        self._roles = roles
        # slug lookup and insert must not interleave
        self._slug_lock = asyncio.Lock()

    async def create(
        self,
        user_id: str,
        name: str,
        description: str,
        tags: Optional[list] = None,
        requires_approval: bool = False,
        image_url: Optional[str] = None,
    ) -> Community:
        """Create a community; the creator becomes its admin."""
        name = (name or "").strip()
        description = (description or "").strip()
        if not name or not description:
            raise ValueError("Community name and description are required")

        async with self._slug_lock:
            row = await self._store.insert("communities", {
                "name": name,
                "description": description,
                "created_by": user_id,
                "slug": await self._unique_slug(name),
                "tags": [t.strip() for t in tags or [] if t and t.strip()],
                "image_url": image_url,
                "requires_approval": requires_approval,
                "is_active": True,
                "deleted_at": None,
            })
        await self._add_member(user_id, row["id"], CommunityRole.ADMIN, assigned_by=user_id)
        logger.info(f"Community created: {row['id']} ({row['slug']}) by {user_id}")
        return Community.from_dict(row)

    async def _unique_slug(self, name: str) -> str:
        base = generate_slug(name) or "community"
        slug, suffix = base, 1
        while await self._store.get("communities", {"slug": slug}):
            suffix += 1
            slug = f"{base}-{suffix}"
        return slug

    async def _add_member(
        self, user_id: str, community_id: str, role: CommunityRole, assigned_by: Optional[str] = None
    ) -> CommunityMember:
        row = await self._store.insert("community_members", {
            "user_id": user_id,
            "community_id": community_id,
            "role": role.value,
            "joined_at": utc_now_iso(),
        })
        await self._roles.assign_role(user_id, role_id_for(role), community_id, assigned_by=assigned_by)
        return CommunityMember.from_dict(row)

    async def get(self, community_id: str) -> Community:
        row = await self._store.get("communities", {"id": community_id})
        if not row or not self._guard.can_view_community(row):
            raise LookupError("Community not found")
        return Community.from_dict(row)

    async def get_by_slug(self, slug: str) -> Community:
        row = await self._store.get("communities", {"slug": slug})
        if not row or not self._guard.can_view_community(row):
            raise LookupError("Community not found")
        return Community.from_dict(row)

    async def list_active(
        self, user_id: Optional[str] = None, tag: Optional[str] = None, page: int = 0
    ) -> list[dict]:
        """Active communities, newest first, with member counts and the caller's membership."""
        rows = await self._store.select(
            "communities", {"is_active": True, "deleted_at": None}, order_by="created_at", descending=True
        )
        if tag:
            wanted = tag.lower()
            rows = [r for r in rows if wanted in [t.lower() for t in r.get("tags") or []]]

        start = max(page, 0) * COMMUNITY_PAGE_SIZE
        results = []
        for row in rows[start:start + COMMUNITY_PAGE_SIZE]:
            members = await self._store.select("community_members", {"community_id": row["id"]})
            data = Community.from_dict(row).to_dict()
            data["member_count"] = len(members)
            data["is_member"] = bool(user_id) and any(m.get("user_id") == user_id for m in members)
            results.append(data)
        return results

    async def join(self, user_id: str, community_id: str, message: str = "") -> dict:
        """
        Join directly, or file a join request when the community requires approval.

        Returns {"status": "member" | "pending", "membership" | "request": ...}.
        """
        community = await self.get(community_id)

        existing = await self._guard.get_membership(user_id, community_id)
        if existing:
            return {"status": "member", "membership": existing.to_dict()}

        if community.requires_approval:
            pending = await self._store.get(JOIN_REQUEST_TABLE, {
                "community_id": community_id, "user_id": user_id, "status": JoinStatus.PENDING.value,
            })
            if not pending:
                pending = await self._store.insert(JOIN_REQUEST_TABLE, {
                    "community_id": community_id,
                    "user_id": user_id,
                    "status": JoinStatus.PENDING.value,
                    "message": message,
                    "reviewed_by": None,
                })
                logger.info(f"Join request {pending['id']} filed by {user_id} for {community_id}")
            return {"status": "pending", "request": JoinRequest.from_dict(pending).to_dict()}

        member = await self._add_member(user_id, community_id, CommunityRole.MEMBER)
        logger.info(f"{user_id} joined community {community_id}")
        return {"status": "member", "membership": member.to_dict()}

    async def list_join_requests(self, reviewer_id: str, community_id: str) -> list[JoinRequest]:
        await self._guard.require_admin(reviewer_id, community_id)
        rows = await self._store.select(
            JOIN_REQUEST_TABLE, {"community_id": community_id, "status": JoinStatus.PENDING.value},
            order_by="created_at",
        )
        return [JoinRequest.from_dict(r) for r in rows]

    async def review_join_request(self, request_id: str, reviewer_id: str, approve: bool) -> JoinRequest:
        row = await self._store.get(JOIN_REQUEST_TABLE, {"id": request_id})
        if not row:
            raise LookupError("Join request not found")
        community_id = row["community_id"]
        await self._guard.require_admin(reviewer_id, community_id)
        if row.get("status") != JoinStatus.PENDING.value:
            raise ValueError("Join request has already been reviewed")

        status = JoinStatus.APPROVED if approve else JoinStatus.REJECTED
        updated = await self._store.update(JOIN_REQUEST_TABLE, {"id": request_id}, {
            "status": status.value,
            "reviewed_by": reviewer_id,
            "reviewed_at": utc_now_iso(),
        })
        if approve and not await self._guard.get_membership(row["user_id"], community_id):
            await self._add_member(row["user_id"], community_id, CommunityRole.MEMBER, assigned_by=reviewer_id)
        logger.info(f"Join request {request_id} {status.value} by {reviewer_id}")
        return JoinRequest.from_dict(updated[0] if updated else {**row, "status": status.value})

    async def _admin_count(self, community_id: str) -> int:
        admins = await self._store.select(
            "community_members", {"community_id": community_id, "role": CommunityRole.ADMIN.value}
        )
        return len(admins)

    async def leave(self, user_id: str, community_id: str) -> None:
        member = await self._guard.require_member(user_id, community_id)
        if member.is_admin and await self._admin_count(community_id) <= 1:
            raise ValueError("The last admin cannot leave the community")
        await self._store.delete("community_members", {"user_id": user_id, "community_id": community_id})
        await self._store.delete("user_roles", {"user_id": user_id, "community_id": community_id})
        self._roles.clear_cache()
        logger.info(f"{user_id} left community {community_id}")

    async def update_member_role(
        self, actor_id: str, community_id: str, target_user_id: str, role: CommunityRole
    ) -> CommunityMember:
        await self._guard.require_owner_admin(actor_id, community_id)
        target = await self._guard.get_membership(target_user_id, community_id)
        if target is None:
            raise LookupError("Member not found")
        if target.is_admin and role != CommunityRole.ADMIN and await self._admin_count(community_id) <= 1:
            raise ValueError("A community needs at least one admin")

        await self._store.update(
            "community_members", {"user_id": target_user_id, "community_id": community_id}, {"role": role.value}
        )
        await self._store.delete("user_roles", {"user_id": target_user_id, "community_id": community_id})
        await self._roles.assign_role(target_user_id, role_id_for(role), community_id, assigned_by=actor_id)
        logger.info(f"{actor_id} set {target_user_id} to {role.value} in {community_id}")
        target.role = role
        return target

    async def list_members(self, user_id: str, community_id: str) -> list[CommunityMember]:
        await self._guard.require_admin(user_id, community_id)
        rows = await self._store.select("community_members", {"community_id": community_id}, order_by="joined_at")
        return [CommunityMember.from_dict(r) for r in rows]

    async def deactivate(self, user_id: str, community_id: str) -> Community:
        await self.get(community_id)
        await self._guard.require_owner_admin(user_id, community_id)
        updated = await self._store.update(
            "communities", {"id": community_id}, {"is_active": False, "deleted_at": utc_now_iso()}
        )
        logger.info(f"Community {community_id} deactivated by {user_id}")
        return Community.from_dict(updated[0])
