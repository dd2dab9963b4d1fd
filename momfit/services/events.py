"""Member-created community events and RSVPs."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from momfit.ai.events import generate_tags
from momfit.shared.constants import DEFAULT_EVENT_DURATION_MINUTES
from momfit.shared.interfaces import IDataStore
from momfit.shared.models import CommunityEvent, EventRSVP, RSVPStatus, parse_timestamp, utc_now_iso
from momfit.shared.security import AccessGuard

logger = logging.getLogger(__name__)


class EventService:
    def __init__(self, store: IDataStore, guard: AccessGuard):
        self._store = store
        self._guard = guard
        # capacity check and RSVP write must not interleave
        self._rsvp_lock = asyncio.Lock()

    async def create_event(
        self,
        user_id: str,
        community_id: str,
        title: str,
        start_time: str,
        end_time: Optional[str] = None,
        description: str = "",
        location: Optional[str] = None,
        capacity: Optional[int] = None,
        is_online: bool = False,
        meeting_url: Optional[str] = None,
        tags: Optional[list] = None,
    ) -> CommunityEvent:
        """
        Create an event in a community the caller belongs to.

        Without explicit tags the event is tagged from its title, description
        and the community profile's event types.
        """
        title = (title or "").strip()
        if not title:
            raise ValueError("Event title is required")
        await self._guard.require_member(user_id, community_id)

        start = parse_timestamp(start_time)
        if start is None:
            raise ValueError("Invalid event start time")
        if end_time:
            end = parse_timestamp(end_time)
            if end is None:
                raise ValueError("Invalid event end time")
        else:
            end = start + timedelta(minutes=DEFAULT_EVENT_DURATION_MINUTES)
        if end <= start:
            raise ValueError("Event must end after it starts")
        if capacity is not None and capacity <= 0:
            raise ValueError("Capacity must be positive")

        if tags is None:
            profile = await self._store.get("ai_community_profiles", {"community_id": community_id})
            tags = generate_tags(title, description, (profile or {}).get("event_types") or [])

        row = await self._store.insert("community_events", {
            "community_id": community_id,
            "created_by": user_id,
            "title": title,
            "description": description,
            "start_time": start.isoformat(),
            "end_time": end.isoformat(),
            "location": location,
            "capacity": capacity,
            "tags": list(tags),
            "is_online": is_online,
            "meeting_url": meeting_url,
            "ai_generated": False,
        })
        logger.info(f"Event {row['id']} created in {community_id} by {user_id}")
        return CommunityEvent.from_dict(row)

    async def get_event(self, event_id: str) -> CommunityEvent:
        row = await self._store.get("community_events", {"id": event_id})
        if not row:
            raise LookupError("Event not found")
        return CommunityEvent.from_dict(row)

    async def list_upcoming(self, community_id: str, now: Optional[datetime] = None) -> list[CommunityEvent]:
        now = now or datetime.now(timezone.utc)
        upcoming = []
        for row in await self._store.select("community_events", {"community_id": community_id}):
            start = parse_timestamp(row.get("start_time"))
            if start is not None and start >= now:
                upcoming.append((start, row))
        upcoming.sort(key=lambda item: item[0])
        return [CommunityEvent.from_dict(row) for _, row in upcoming]

    async def rsvp(self, user_id: str, event_id: str, status: str) -> EventRSVP:
        try:
            rsvp_status = RSVPStatus(status)
        except ValueError:
            raise ValueError(f"Invalid RSVP status: {status}")

        event = await self.get_event(event_id)
        await self._guard.require_member(user_id, event.community_id)

        async with self._rsvp_lock:
            if rsvp_status == RSVPStatus.GOING and event.capacity:
                going = await self._store.select("event_rsvps", {"event_id": event_id, "status": RSVPStatus.GOING.value})
                if len([r for r in going if r.get("user_id") != user_id]) >= event.capacity:
                    raise ValueError("This event is full")

            row = await self._store.upsert("event_rsvps", {
                "event_id": event_id,
                "user_id": user_id,
                "status": rsvp_status.value,
                "updated_at": utc_now_iso(),
            }, on_conflict=("event_id", "user_id"))
        return EventRSVP.from_dict(row)
