"""
Intent detection for community chat messages.

A rule-based keyword pass runs first and short-circuits when it is
confident. Otherwise the primary LLM classifies the message, with an
optional secondary provider consulted for low-confidence answers.
"""

import json
import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from momfit.ai.schemas import IntentSchema
from momfit.shared.ai_gateway import ContentGateway
from momfit.shared.audit_log import GenerationAuditLog
from momfit.shared.constants import (
    INTENT_CONFIDENCE_THRESHOLD,
    KEYWORD_SHORTCUT_CONFIDENCE,
    MAX_LOG_DETAIL_LENGTH,
)
from momfit.shared.interfaces import IDataStore, ILLMClient
from momfit.shared.models import DetectedIntent, EventEntities, Intent
from momfit.shared.prompts import INTENT_SYSTEM_PROMPT, build_intent_prompt

logger = logging.getLogger(__name__)

POLL_PATTERNS = [
    r"\bpolls?\b", r"\bvote\b", r"\bvoting\b", r"\bsurvey\b",
    r"\bwhich (day|time|date)s? works?\b", r"\bwhat time works\b",
]

ADMIN_PATTERNS = [
    r"\badmins?\b", r"\bmoderators?\b", r"\breport(ed|ing)?\b", r"\babus(e|ive)\b",
    r"\bspam(ming)?\b", r"\bharass(ed|ing|ment)?\b", r"\binappropriate\b", r"\bunsafe\b",
]

EVENT_PATTERNS = [
    r"\bmeet(s|ing)?\b", r"\bmeetups?\b", r"\bschedul(e|ing)\b", r"\borgani[sz]e\b",
    r"\bevents?\b", r"\bclass(es)?\b", r"\bsessions?\b", r"\bjoin me\b", r"\bwho'?s in\b",
]

LETS_PATTERN = r"\blet'?s\b"

# keyword -> (title, tag)
ACTIVITIES = {
    "walk": ("Group Walk", "walking"),
    "stroller": ("Stroller Walk", "stroller"),
    "run": ("Group Run", "running"),
    "jog": ("Group Jog", "running"),
    "yoga": ("Yoga Session", "yoga"),
    "pilates": ("Pilates Class", "pilates"),
    "hiit": ("HIIT Workout", "hiit"),
    "bootcamp": ("Bootcamp", "strength"),
    "workout": ("Group Workout", "fitness"),
    "swim": ("Swim Session", "swimming"),
    "hike": ("Hike", "hiking"),
    "bike": ("Bike Ride", "cycling"),
    "dance": ("Dance Class", "dance"),
    "stretch": ("Stretching Session", "stretching"),
    "meditation": ("Meditation Session", "mindfulness"),
    "playdate": ("Playdate", "kids"),
    "coffee": ("Coffee Meetup", "social"),
    "picnic": ("Picnic", "social"),
}

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

_INTENT_LLM_SYSTEM = "You are an intent detection assistant. Return a JSON object with intent_type, confidence, and details."


def _count(patterns: list[str], text: str) -> int:
    return sum(1 for p in patterns if re.search(p, text))


def _confidence(cues: int) -> float:
    return round(min(0.5 + 0.15 * cues, 0.95), 2)


def _find_activity(text: str) -> Optional[str]:
    for keyword in ACTIVITIES:
        if re.search(rf"\b{keyword}(s|es|ing|ning|ging|ed)?\b", text):
            return keyword
    return None


def extract_time(text: str) -> Optional[str]:
    """'7pm', '7:30 am', '19:30', 'at 7', 'noon' -> 'HH:MM'."""
    if re.search(r"\bnoon\b", text):
        return "12:00"
    match = re.search(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b", text)
    if match:
        hour = int(match.group(1)) % 12
        minute = int(match.group(2) or 0)
        if match.group(3) == "pm":
            hour += 12
        if hour < 24 and minute < 60:
            return f"{hour:02d}:{minute:02d}"
    match = re.search(r"\b([01]?\d|2[0-3]):([0-5]\d)\b", text)
    if match:
        return f"{int(match.group(1)):02d}:{match.group(2)}"
    match = re.search(r"\bat\s+(\d{1,2})\b(?!\s*(?:people|persons|moms|mums|kids|of us))", text)
    if match and int(match.group(1)) < 24:
        return f"{int(match.group(1)):02d}:00"
    return None


def extract_date(text: str, today: date) -> Optional[str]:
    """'today', 'tomorrow', weekday names, 'this weekend', ISO dates -> 'YYYY-MM-DD'."""
    match = re.search(r"\b(\d{4}-\d{2}-\d{2})\b", text)
    if match:
        try:
            return date.fromisoformat(match.group(1)).isoformat()
        except ValueError:
            pass
    if re.search(r"\btomorrow\b", text):
        return (today + timedelta(days=1)).isoformat()
    if re.search(r"\b(today|tonight)\b", text):
        return today.isoformat()
    if re.search(r"\b(this )?weekend\b", text):
        days = (5 - today.weekday()) % 7
        return (today + timedelta(days=days)).isoformat()
    for index, name in enumerate(WEEKDAYS):
        if re.search(rf"\b(next |this |on )?{name}s?\b", text):
            # Next occurrence, 1-7 days ahead
            days = (index - today.weekday()) % 7 or 7
            return (today + timedelta(days=days)).isoformat()
    return None


def extract_capacity(text: str) -> Optional[int]:
    match = re.search(
        r"\b(?:for|max|maximum|up to|limit(?: of)?)\s+(\d+)\b(?!\s*(?:min|mins|minutes|h|hr|hrs|hours?|am|pm|:))",
        text,
    )
    return int(match.group(1)) if match else None


def extract_duration(text: str) -> Optional[int]:
    match = re.search(r"\b(\d+)\s*(?:min|mins|minutes)\b", text)
    if match:
        return int(match.group(1))
    match = re.search(r"\b(\d+(?:\.\d+)?)\s*(?:h|hr|hrs|hour|hours)\b", text)
    if match:
        return int(float(match.group(1)) * 60)
    return None


def extract_location(original: str) -> Optional[str]:
    match = re.search(r"\b(?:at|in)\s+(?:the\s+)?((?:[A-Z][\w']+)(?:\s+[A-Z][\w']+)*)", original)
    if match and match.group(1).lower() not in WEEKDAYS:
        return match.group(1)
    return None


class IntentDetector:
    """Classifies chat messages into create_event / schedule_poll / admin_alert / general_chat."""

    def __init__(
        self,
        llm: ILLMClient,
        store: IDataStore,
        secondary_llm: Optional[ILLMClient] = None,
        audit: Optional[GenerationAuditLog] = None,
        gateway: Optional[ContentGateway] = None,
    ):
        self._llm = llm
        self._store = store
        self._secondary = secondary_llm
        self._audit = audit
        self._gateway = gateway or ContentGateway()

    def classify_keywords(self, text: str, now: Optional[datetime] = None) -> DetectedIntent:
        """Rule-based classification with simple entity extraction."""
        lowered = (text or "").lower()
        today = (now or datetime.now(timezone.utc)).date()

        poll_cues = _count(POLL_PATTERNS, lowered)
        if poll_cues:
            return DetectedIntent(Intent.SCHEDULE_POLL, _confidence(poll_cues), source="keywords")

        admin_cues = _count(ADMIN_PATTERNS, lowered)
        if admin_cues:
            return DetectedIntent(Intent.ADMIN_ALERT, _confidence(admin_cues), source="keywords")

        activity = _find_activity(lowered)
        event_cues = _count(EVENT_PATTERNS, lowered)
        if activity and re.search(LETS_PATTERN, lowered):
            event_cues += 1
        if not event_cues:
            return DetectedIntent(Intent.GENERAL_CHAT, _confidence(0), source="keywords")

        entities = EventEntities(
            date=extract_date(lowered, today),
            time=extract_time(lowered),
            location=extract_location(text),
            suggested_duration=extract_duration(lowered),
            suggested_capacity=extract_capacity(lowered),
            description=text.strip()[:200],
        )
        if activity:
            entities.title, tag = ACTIVITIES[activity]
            entities.tags.append(tag)
            event_cues += 1
        else:
            entities.title = "Community Meetup"
        url = re.search(r"https?://\S+", text)
        if url:
            entities.meeting_url = url.group(0)
        if url or re.search(r"\b(online|zoom|virtual|google meet|video call)\b", lowered):
            entities.is_online = True
            entities.tags.append("online")
        event_cues += sum(1 for v in (entities.date, entities.time) if v)

        return DetectedIntent(Intent.CREATE_EVENT, _confidence(event_cues), entities=entities, source="keywords")

    async def detect(
        self,
        text: str,
        community_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> DetectedIntent:
        keyword_result = self.classify_keywords(text)
        keyword_result.community_id = community_id
        keyword_result.user_id = user_id

        if (
            keyword_result.intent != Intent.GENERAL_CHAT
            and keyword_result.confidence >= KEYWORD_SHORTCUT_CONFIDENCE
        ):
            result = keyword_result
        else:
            result = await self._detect_with_llm(text, community_id, user_id)
            if result is None:
                if keyword_result.intent != Intent.GENERAL_CHAT:
                    result = keyword_result
                else:
                    result = DetectedIntent(
                        Intent.GENERAL_CHAT, 0.0,
                        community_id=community_id, user_id=user_id, source="fallback",
                    )

        await self._log_interaction(text, result)
        return result

    async def _detect_with_llm(
        self, text: str, community_id: Optional[str], user_id: Optional[str]
    ) -> Optional[DetectedIntent]:
        scan = self._gateway.scan_input(text)
        if not scan.is_safe:
            logger.warning(f"Skipping LLM intent detection: {scan.details}")
            return None

        community = await self._community_context(community_id)
        prompt = build_intent_prompt(text, community)
        system = INTENT_SYSTEM_PROMPT.replace("{today}", date.today().isoformat())

        result = await self._ask(self._llm, prompt, system, community_id, user_id, "llm")
        needs_second_opinion = (
            result is None
            or result.confidence < INTENT_CONFIDENCE_THRESHOLD
            or result.intent == Intent.GENERAL_CHAT
        )
        if self._secondary is not None and needs_second_opinion:
            second = await self._ask(self._secondary, prompt, system, community_id, user_id, "secondary_llm")
            if second is not None and (result is None or second.confidence > result.confidence):
                result = second
        if result is None and self._audit is not None:
            await self._audit.log(
                "intent_detection", "error",
                community_id=community_id, user_id=user_id,
                error_message="No LLM produced a usable intent",
                input_data={"message": text[:MAX_LOG_DETAIL_LENGTH]},
            )
        return result

    async def _ask(
        self,
        llm: ILLMClient,
        prompt: str,
        system: str,
        community_id: Optional[str],
        user_id: Optional[str],
        source: str,
    ) -> Optional[DetectedIntent]:
        response = await llm.complete(prompt, system=system, json_mode=True)
        if response.get("error"):
            logger.warning(f"Intent detection via {source} failed: {response['error']}")
            return None
        try:
            parsed = IntentSchema.parse_from_text(response.get("text", ""))
        except ValueError as e:
            logger.warning(f"Could not parse {source} intent response: {e}")
            return None
        return parsed.to_detected_intent(community_id, user_id, source=source)

    async def _community_context(self, community_id: Optional[str]) -> Optional[dict]:
        if not community_id:
            return None
        try:
            return await self._store.get("communities", {"id": community_id})
        except Exception as e:
            logger.warning(f"Could not load community context for {community_id}: {e}")
            return None

    async def _log_interaction(self, text: str, result: DetectedIntent) -> None:
        try:
            await self._store.insert("ai_interactions", {
                "user_id": result.user_id or "unknown",
                "community_id": result.community_id,
                "interaction_type": "intent_detection",
                "input_content": text[:MAX_LOG_DETAIL_LENGTH],
                "output_content": json.dumps(result.to_dict()),
                "model_used": result.source,
                "confidence_score": result.confidence,
            })
        except Exception as e:
            logger.error(f"Failed to log intent detection: {e}")

    async def save_intent(
        self,
        intent: DetectedIntent,
        message_id: Optional[str],
        community_id: str,
        user_id: str,
    ) -> Optional[dict]:
        """Persist a detected intent against the message that produced it."""
        try:
            return await self._store.insert("message_intents", {
                "message_id": message_id,
                "community_id": community_id,
                "user_id": user_id,
                "intent": intent.intent.value,
                "confidence": intent.confidence,
                "entities": intent.entities.to_dict(),
            })
        except Exception as e:
            logger.error(f"Failed to save message intent: {e}")
            return None

    async def extract_event_details(self, text: str, community_id: Optional[str] = None) -> EventEntities:
        try:
            return (await self.detect(text, community_id)).entities
        except Exception as e:
            logger.error(f"Failed to extract event details: {e}")
            return EventEntities()

    async def describe_intent(self, prompt: str) -> str:
        """Raw LLM intent description; raises RuntimeError when the provider fails."""
        response = await self._llm.complete(prompt, system=_INTENT_LLM_SYSTEM)
        if response.get("error") == "no_api_key":
            raise RuntimeError("No OpenAI API key set")
        if response.get("error"):
            raise RuntimeError(response["error"])
        return response.get("text", "")
