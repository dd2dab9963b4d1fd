"""
Event planning from detected intents, plus keyword event tagging.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from momfit.ai.intent import IntentDetector
from momfit.shared.audit_log import GenerationAuditLog
from momfit.shared.constants import (
    DEFAULT_EVENT_DURATION_MINUTES,
    DEFAULT_EVENT_TIME,
    INTENT_CONFIDENCE_THRESHOLD,
    MAX_EVENT_TAGS,
)
from momfit.shared.interfaces import IDataStore
from momfit.shared.models import DetectedIntent, Intent

logger = logging.getLogger(__name__)

EVENT_TAG_VOCABULARY = [
    "workshop", "meetup", "webinar", "conference", "training",
    "yoga", "fitness", "workout", "exercise", "running",
    "nutrition", "diet", "cooking", "recipe", "food",
    "meditation", "mindfulness", "wellness", "health", "self-care",
    "parenting", "children", "family", "kids", "baby",
    "postpartum", "pregnancy", "prenatal", "birth", "breastfeeding",
]


def extract_tag_keywords(text: str) -> list[str]:
    lowered = (text or "").lower()
    return [keyword for keyword in EVENT_TAG_VOCABULARY if keyword in lowered]


def generate_tags(title: str, description: str, community_event_types: Optional[list] = None) -> list[str]:
    """Vocabulary keywords from title then description, then matching community event types."""
    text = f"{title} {description}".lower()
    candidates = extract_tag_keywords(title) + extract_tag_keywords(description)
    candidates += [t for t in community_event_types or [] if t and t.lower() in text]

    tags: list[str] = []
    for tag in candidates:
        if tag not in tags:
            tags.append(tag)
    return tags[:MAX_EVENT_TAGS]


def resolve_event_window(
    date: Optional[str],
    time: Optional[str],
    duration_minutes: Optional[int],
    now: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """Start from date+time (UTC), date at the default hour, or now; end after the duration."""
    start = now or datetime.now(timezone.utc)
    if date:
        try:
            start = datetime.fromisoformat(f"{date}T{time or DEFAULT_EVENT_TIME}:00").replace(tzinfo=timezone.utc)
        except ValueError:
            logger.warning(f"Unparseable event date/time {date!r} {time!r}; starting now")
    minutes = duration_minutes if duration_minutes and duration_minutes > 0 else DEFAULT_EVENT_DURATION_MINUTES
    return start, start + timedelta(minutes=minutes)


class EventPlanner:
    """Turns create_event intents into community events."""

    def __init__(
        self,
        store: IDataStore,
        detector: IntentDetector,
        audit: Optional[GenerationAuditLog] = None,
    ):
        self._store = store
        self._detector = detector
        self._audit = audit

    async def create_event_from_intent(
        self,
        intent: DetectedIntent,
        community_id: str,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[dict]:
        """Insert the event and its announcement post; None when not applicable or on failure."""
        if intent.intent != Intent.CREATE_EVENT or intent.confidence < INTENT_CONFIDENCE_THRESHOLD:
            return None

        entities = intent.entities
        start, end = resolve_event_window(entities.date, entities.time, entities.suggested_duration, now)
        try:
            event = await self._store.insert("community_events", {
                "community_id": community_id,
                "created_by": user_id,
                "title": entities.title or "Untitled Event",
                "description": entities.description or "Community event",
                "start_time": start.isoformat(),
                "end_time": end.isoformat(),
                "location": entities.location,
                "capacity": entities.suggested_capacity,
                "tags": list(entities.tags),
                "is_online": entities.is_online,
                "meeting_url": entities.meeting_url,
                "ai_generated": True,
            })
        except Exception as e:
            logger.error(f"Error creating event in {community_id}: {e}")
            return None

        await self._announce(event, start, community_id, user_id)
        logger.info(f"AI event created: {event['id']} ({event['title']})")
        return event

    async def create_event_from_message(self, text: str, community_id: str, user_id: str) -> Optional[dict]:
        intent = await self._detector.detect(text, community_id, user_id)
        return await self.create_event_from_intent(intent, community_id, user_id)

    async def _announce(self, event: dict, start: datetime, community_id: str, user_id: str) -> None:
        content = (
            f"📅 New event created: \"{event['title']}\" on {start.strftime('%Y-%m-%d')} "
            f"at {start.strftime('%H:%M')}. Check the Events tab for details!"
        )
        try:
            await self._store.insert("community_posts", {
                "community_id": community_id,
                "user_id": user_id,
                "content": content,
            })
        except Exception as e:
            logger.error(f"Error creating event announcement: {e}")

    async def auto_tag(self, title: str, description: str, community_id: str) -> list[str]:
        """Tags for an event, using the community profile's event types."""
        if not title or not description or not community_id:
            raise ValueError("Missing required fields: title, description, or community_id")

        try:
            profile = await self._store.get("ai_community_profiles", {"community_id": community_id})
            tags = generate_tags(title, description, (profile or {}).get("event_types") or [])
        except Exception as e:
            logger.error(f"Event tag generation failed for {community_id}: {e}")
            if self._audit:
                await self._audit.log(
                    "event_tag_generation", "error", community_id=community_id, error_message=str(e)
                )
            raise

        if self._audit:
            await self._audit.log(
                "event_tag_generation", "success", community_id=community_id,
                input_data={"title": title}, output_data={"tags": tags},
            )
        return tags
