"""
Domain models for MomFit.
Pure data classes with no external dependencies (Clean Architecture inner layer).
Rows coming back from the data store are plain dicts; ``from_dict`` tolerates
missing columns so partially-selected rows still load.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp; naive values are treated as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_slug(text: str) -> str:
    """Generate a URL-friendly slug from a string."""
    slug = text.lower()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip().strip("-")


class CommunityRole(Enum):
    """Member roles inside a community."""
    ADMIN = "admin"
    CO_ADMIN = "co-admin"
    MEMBER = "member"


class JoinStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RSVPStatus(Enum):
    GOING = "going"
    MAYBE = "maybe"
    NOT_GOING = "not_going"


class Intent(Enum):
    """Categories a chat message can be classified into."""
    CREATE_EVENT = "create_event"
    SCHEDULE_POLL = "schedule_poll"
    ADMIN_ALERT = "admin_alert"
    GENERAL_CHAT = "general_chat"


class Tone(Enum):
    """Allowed tones of a community AI profile."""
    CASUAL = "casual"
    SUPPORTIVE = "supportive"
    PROFESSIONAL = "professional"
    MOTIVATIONAL = "motivational"


class RecommendationSource(Enum):
    AI = "ai"
    HISTORY = "history"
    CONTEXT = "context"
    COMMUNITY = "community"


class OrchestratorResultType(Enum):
    EVENT_CREATED = "event_created"
    ADMIN_ALERT_SENT = "admin_alert_sent"
    AI_REPLY = "ai_reply"
    INTENT_DETECTED = "intent_detected"
    NOOP = "noop"


@dataclass
class Profile:
    """A user's public profile."""
    id: str
    display_name: str = ""
    bio: str = ""
    avatar_url: Optional[str] = None
    interests: list = field(default_factory=list)
    custom_interests: list = field(default_factory=list)
    fitness_goals: list = field(default_factory=list)
    experience_level: str = ""
    age_range: str = ""
    location: str = ""
    updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "bio": self.bio,
            "avatar_url": self.avatar_url,
            "interests": list(self.interests),
            "custom_interests": list(self.custom_interests),
            "fitness_goals": list(self.fitness_goals),
            "experience_level": self.experience_level,
            "age_range": self.age_range,
            "location": self.location,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Profile":
        return cls(
            id=data.get("id", ""),
            display_name=data.get("display_name") or "",
            bio=data.get("bio") or "",
            avatar_url=data.get("avatar_url"),
            interests=data.get("interests") or [],
            custom_interests=data.get("custom_interests") or [],
            fitness_goals=data.get("fitness_goals") or [],
            experience_level=data.get("experience_level") or "",
            age_range=data.get("age_range") or "",
            location=data.get("location") or "",
            updated_at=data.get("updated_at"),
        )


@dataclass
class Community:
    """A named group that users join; owns posts, members and events."""
    id: str
    name: str
    description: str
    created_by: str
    slug: str = ""
    tags: list = field(default_factory=list)
    image_url: Optional[str] = None
    requires_approval: bool = False
    is_active: bool = True
    created_at: Optional[str] = None
    deleted_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_by": self.created_by,
            "slug": self.slug,
            "tags": list(self.tags),
            "image_url": self.image_url,
            "requires_approval": self.requires_approval,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "deleted_at": self.deleted_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Community":
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            description=data.get("description") or "",
            created_by=data.get("created_by", ""),
            slug=data.get("slug") or "",
            tags=data.get("tags") or [],
            image_url=data.get("image_url"),
            requires_approval=bool(data.get("requires_approval", False)),
            is_active=data.get("is_active", True) is not False,
            created_at=data.get("created_at"),
            deleted_at=data.get("deleted_at"),
        )


@dataclass
class CommunityMember:
    user_id: str
    community_id: str
    role: CommunityRole = CommunityRole.MEMBER
    joined_at: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == CommunityRole.ADMIN

    @property
    def can_moderate(self) -> bool:
        return self.role in (CommunityRole.ADMIN, CommunityRole.CO_ADMIN)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "community_id": self.community_id,
            "role": self.role.value,
            "joined_at": self.joined_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CommunityMember":
        try:
            role = CommunityRole(data.get("role", "member"))
        except ValueError:
            role = CommunityRole.MEMBER
        return cls(
            user_id=data.get("user_id", ""),
            community_id=data.get("community_id", ""),
            role=role,
            joined_at=data.get("joined_at") or data.get("created_at"),
        )


@dataclass
class JoinRequest:
    id: str
    community_id: str
    user_id: str
    status: JoinStatus = JoinStatus.PENDING
    message: str = ""
    reviewed_by: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "community_id": self.community_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "message": self.message,
            "reviewed_by": self.reviewed_by,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "JoinRequest":
        return cls(
            id=data.get("id", ""),
            community_id=data.get("community_id", ""),
            user_id=data.get("user_id", ""),
            status=JoinStatus(data.get("status", "pending")),
            message=data.get("message") or "",
            reviewed_by=data.get("reviewed_by"),
            created_at=data.get("created_at"),
        )


@dataclass
class Post:
    id: str
    community_id: str
    user_id: str
    content: str
    created_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "community_id": self.community_id,
            "user_id": self.user_id,
            "content": self.content,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Post":
        return cls(
            id=data.get("id", ""),
            community_id=data.get("community_id", ""),
            user_id=data.get("user_id", ""),
            content=data.get("content") or "",
            created_at=data.get("created_at"),
        )


@dataclass
class DirectMessage:
    id: str
    sender_id: str
    recipient_id: str
    content: str
    created_at: Optional[str] = None
    read_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sender_id": self.sender_id,
            "recipient_id": self.recipient_id,
            "content": self.content,
            "created_at": self.created_at,
            "read_at": self.read_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DirectMessage":
        return cls(
            id=data.get("id", ""),
            sender_id=data.get("sender_id", ""),
            recipient_id=data.get("recipient_id", ""),
            content=data.get("content") or "",
            created_at=data.get("created_at"),
            read_at=data.get("read_at"),
        )


@dataclass
class CommunityEvent:
    """An event scheduled inside a community."""
    id: str
    community_id: str
    created_by: str
    title: str
    description: str = ""
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    location: Optional[str] = None
    capacity: Optional[int] = None
    tags: list = field(default_factory=list)
    is_online: bool = False
    meeting_url: Optional[str] = None
    ai_generated: bool = False
    created_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "community_id": self.community_id,
            "created_by": self.created_by,
            "title": self.title,
            "description": self.description,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "location": self.location,
            "capacity": self.capacity,
            "tags": list(self.tags),
            "is_online": self.is_online,
            "meeting_url": self.meeting_url,
            "ai_generated": self.ai_generated,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CommunityEvent":
        return cls(
            id=data.get("id", ""),
            community_id=data.get("community_id", ""),
            created_by=data.get("created_by", ""),
            title=data.get("title") or "Untitled Event",
            description=data.get("description") or "",
            start_time=data.get("start_time"),
            end_time=data.get("end_time"),
            location=data.get("location"),
            capacity=data.get("capacity"),
            tags=data.get("tags") or [],
            is_online=bool(data.get("is_online", False)),
            meeting_url=data.get("meeting_url"),
            ai_generated=bool(data.get("ai_generated", False)),
            created_at=data.get("created_at"),
        )


@dataclass
class EventRSVP:
    event_id: str
    user_id: str
    status: RSVPStatus = RSVPStatus.GOING
    created_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EventRSVP":
        return cls(
            event_id=data.get("event_id", ""),
            user_id=data.get("user_id", ""),
            status=RSVPStatus(data.get("status", "going")),
            created_at=data.get("created_at"),
        )


@dataclass
class CommunityAIProfile:
    """LLM-generated description of a community, used to steer AI features."""
    community_id: str
    purpose: str
    tone: Tone = Tone.SUPPORTIVE
    target_audience: list = field(default_factory=list)
    common_topics: list = field(default_factory=list)
    event_types: list = field(default_factory=list)
    knowledge_transfer_enabled: bool = False
    anonymized_insights: Optional[dict] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "community_id": self.community_id,
            "purpose": self.purpose,
            "tone": self.tone.value,
            "target_audience": list(self.target_audience),
            "common_topics": list(self.common_topics),
            "event_types": list(self.event_types),
            "knowledge_transfer_enabled": self.knowledge_transfer_enabled,
            "anonymized_insights": self.anonymized_insights,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CommunityAIProfile":
        try:
            tone = Tone(data.get("tone", "supportive"))
        except ValueError:
            tone = Tone.SUPPORTIVE
        return cls(
            community_id=data.get("community_id", ""),
            purpose=data.get("purpose") or "",
            tone=tone,
            target_audience=data.get("target_audience") or [],
            common_topics=data.get("common_topics") or [],
            event_types=data.get("event_types") or [],
            knowledge_transfer_enabled=bool(data.get("knowledge_transfer_enabled", False)),
            anonymized_insights=data.get("anonymized_insights"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class Recommendation:
    """A conversation recommendation shown to a member."""
    id: str
    text: str
    confidence: float
    category: str
    source: RecommendationSource

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "confidence": self.confidence,
            "category": self.category,
            "source": self.source.value,
        }


@dataclass
class ChatSuggestion:
    id: str
    text: str
    confidence: float
    category: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "confidence": self.confidence,
            "category": self.category,
        }


@dataclass
class EventEntities:
    """Event details extracted from a chat message."""
    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None          # YYYY-MM-DD
    time: Optional[str] = None          # HH:MM, 24h
    location: Optional[str] = None
    suggested_duration: Optional[int] = None  # minutes
    suggested_capacity: Optional[int] = None
    tags: list = field(default_factory=list)
    is_online: bool = False
    meeting_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "description": self.description,
            "date": self.date,
            "time": self.time,
            "location": self.location,
            "suggestedDuration": self.suggested_duration,
            "suggestedCapacity": self.suggested_capacity,
            "tags": list(self.tags),
            "isOnline": self.is_online,
            "meetingUrl": self.meeting_url,
        }


@dataclass
class DetectedIntent:
    intent: Intent = Intent.GENERAL_CHAT
    confidence: float = 0.0
    entities: EventEntities = field(default_factory=EventEntities)
    community_id: Optional[str] = None
    user_id: Optional[str] = None
    source: str = "fallback"  # keywords | llm | secondary_llm | fallback

    def to_dict(self) -> dict:
        return {
            "intent": self.intent.value,
            "confidence": self.confidence,
            "entities": self.entities.to_dict(),
            "context": {
                "communityId": self.community_id,
                "userId": self.user_id,
            },
            "source": self.source,
        }


@dataclass
class OrchestratorResult:
    """Outcome of piping a new chat message through the orchestrator."""
    type: OrchestratorResultType
    event: Optional[dict] = None
    follow_up: Optional[str] = None
    reply: Optional[str] = None
    message: Optional[str] = None
    intent: Optional[DetectedIntent] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"type": self.type.value}
        if self.event is not None:
            data["event"] = self.event
        if self.follow_up is not None:
            data["followUp"] = self.follow_up
        if self.reply is not None:
            data["reply"] = self.reply
        if self.message is not None:
            data["message"] = self.message
        if self.intent is not None:
            data["intent"] = self.intent.to_dict()
        return data
