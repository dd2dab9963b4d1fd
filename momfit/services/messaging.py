"""Direct messages between members, and user blocking."""

import logging

from momfit.shared.interfaces import IDataStore
from momfit.shared.models import DirectMessage
from momfit.shared.security import AccessGuard

logger = logging.getLogger(__name__)


class MessagingService:
    def __init__(self, store: IDataStore, guard: AccessGuard):
        self._store = store
        self._guard = guard

    async def send_direct_message(self, sender_id: str, recipient_id: str, content: str) -> DirectMessage:
        content = (content or "").strip()
        if sender_id == recipient_id:
            raise ValueError("You cannot message yourself")
        if not content:
            raise ValueError("Message content cannot be empty")
        if await self._guard.is_blocked(sender_id, recipient_id):
            logger.warning(f"Direct message from {sender_id} to {recipient_id} refused: blocked")
            raise PermissionError("Messaging is not allowed between these users")

        row = await self._store.insert("direct_messages", {
            "sender_id": sender_id,
            "recipient_id": recipient_id,
            "content": content,
            "read_at": None,
        })
        return DirectMessage.from_dict(row)

    async def list_conversation(self, user_id: str, other_id: str, limit: int = 100) -> list[DirectMessage]:
        """Messages between the two users, oldest first."""
        sent = await self._store.select("direct_messages", {"sender_id": user_id, "recipient_id": other_id})
        received = await self._store.select("direct_messages", {"sender_id": other_id, "recipient_id": user_id})
        rows = [r for r in sent + received if self._guard.can_read_messages(user_id, r)]
        rows.sort(key=lambda r: r.get("created_at") or "")
        return [DirectMessage.from_dict(r) for r in rows[-limit:]]

    async def block_user(self, blocker_id: str, blocked_id: str) -> dict:
        if blocker_id == blocked_id:
            raise ValueError("You cannot block yourself")
        existing = await self._store.get("user_blocks", {"blocker_id": blocker_id, "blocked_id": blocked_id})
        if existing:
            return existing
        row = await self._store.insert("user_blocks", {"blocker_id": blocker_id, "blocked_id": blocked_id})
        logger.info(f"{blocker_id} blocked {blocked_id}")
        return row

    async def unblock_user(self, blocker_id: str, blocked_id: str) -> bool:
        removed = await self._store.delete("user_blocks", {"blocker_id": blocker_id, "blocked_id": blocked_id})
        return removed > 0
