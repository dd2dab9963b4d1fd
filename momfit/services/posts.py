"""Community posts, moderated before they are stored."""

import logging

from momfit.shared.ai_gateway import ContentGateway
from momfit.shared.interfaces import IDataStore
from momfit.shared.models import Post
from momfit.shared.security import AccessGuard

logger = logging.getLogger(__name__)


class PostService:
    def __init__(self, store: IDataStore, guard: AccessGuard, gateway: ContentGateway):
        self._store = store
        self._guard = guard
        self._gateway = gateway

    async def create_post(self, user_id: str, community_id: str, content: str) -> Post:
        content = (content or "").strip()
        if not content:
            raise ValueError("Post content cannot be empty")
        await self._guard.require_member(user_id, community_id)

        moderation = self._gateway.moderate(content)
        if not moderation["is_safe"]:
            logger.warning(f"Post by {user_id} in {community_id} rejected: {moderation['issues']}")
            raise ValueError(f"Post rejected by moderation: {', '.join(moderation['issues'])}")

        row = await self._store.insert("community_posts", {
            "community_id": community_id,
            "user_id": user_id,
            "content": content,
        })
        return Post.from_dict(row)

    async def list_posts(self, community_id: str, limit: int = 50) -> list[Post]:
        community = await self._store.get("communities", {"id": community_id})
        if not community or not self._guard.can_view_community(community):
            raise LookupError("Community not found")
        rows = await self._store.select(
            "community_posts", {"community_id": community_id},
            order_by="created_at", descending=True, limit=limit,
        )
        return [Post.from_dict(r) for r in rows]

    async def delete_post(self, user_id: str, post_id: str) -> None:
        """Authors delete their own posts; admins and co-admins delete any."""
        row = await self._store.get("community_posts", {"id": post_id})
        if not row:
            raise LookupError("Post not found")
        if row.get("user_id") != user_id:
            await self._guard.require_admin(user_id, row["community_id"])
        await self._store.delete("community_posts", {"id": post_id})
        logger.info(f"Post {post_id} deleted by {user_id}")
