"""
Pydantic schemas for structured LLM output parsing.
LLM replies are scanned for an embedded JSON object which is then
validated and normalised into typed results.
"""

import json
import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from momfit.shared.models import DetectedIntent, EventEntities, Intent, Tone

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def extract_json(text: str, allow_array: bool = False):
    """
    Pull the first JSON object (or array, if allowed) out of LLM text.
    Handles ```json fences and surrounding prose. Raises ValueError.
    """
    if not text or not text.strip():
        raise ValueError("Empty LLM response")

    fenced = _FENCE_RE.search(text)
    candidate = fenced.group(1) if fenced else text

    spans = [("{", "}")]
    if allow_array:
        spans.append(("[", "]"))

    best = None
    for opener, closer in spans:
        start = candidate.find(opener)
        end = candidate.rfind(closer)
        if start != -1 and end > start and (best is None or start < best[0]):
            best = (start, end)
    if best is None:
        raise ValueError("No JSON found in LLM response")

    try:
        return json.loads(candidate[best[0]:best[1] + 1])
    except json.JSONDecodeError as e:
        raise ValueError(f"Malformed JSON in LLM response: {e}") from e


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None and str(v).strip()]
    return []


class EntitiesSchema(BaseModel):
    """Event entities as the LLM returns them (camelCase keys accepted)."""
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    location: Optional[str] = None
    suggested_duration: Optional[int] = Field(default=None, alias="suggestedDuration")
    suggested_capacity: Optional[int] = Field(default=None, alias="suggestedCapacity")
    tags: list[str] = Field(default_factory=list)
    is_online: bool = Field(default=False, alias="isOnline")
    meeting_url: Optional[str] = Field(default=None, alias="meetingUrl")

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_list(cls, v):
        return _as_list(v)

    @field_validator("is_online", mode="before")
    @classmethod
    def _coerce_bool(cls, v):
        if isinstance(v, str):
            return v.strip().lower() in ("true", "yes", "1", "online")
        return bool(v)

    @field_validator("suggested_duration", "suggested_capacity", mode="before")
    @classmethod
    def _coerce_int(cls, v):
        if v is None or v == "":
            return None
        try:
            return int(float(v))
        except (TypeError, ValueError):
            return None

    @field_validator("title", "description", "date", "time", "location", "meeting_url", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    def to_entities(self) -> EventEntities:
        return EventEntities(
            title=self.title,
            description=self.description,
            date=self.date,
            time=self.time,
            location=self.location,
            suggested_duration=self.suggested_duration,
            suggested_capacity=self.suggested_capacity,
            tags=list(self.tags),
            is_online=self.is_online,
            meeting_url=self.meeting_url,
        )

    @classmethod
    def parse_from_text(cls, text: str) -> "EntitiesSchema":
        data = extract_json(text)
        if isinstance(data.get("entities"), dict):
            data = data["entities"]
        return cls.model_validate(data)


class IntentSchema(BaseModel):
    """Structured output of intent classification."""
    intent: str = Intent.GENERAL_CHAT.value
    confidence: float = 0.0
    entities: EntitiesSchema = Field(default_factory=EntitiesSchema)

    @field_validator("intent", mode="before")
    @classmethod
    def _normalise_intent(cls, v):
        value = str(v or "").strip().lower().replace("-", "_").replace(" ", "_")
        known = {i.value for i in Intent}
        return value if value in known else Intent.GENERAL_CHAT.value

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.0
        return max(0.0, min(1.0, value))

    @field_validator("entities", mode="before")
    @classmethod
    def _entities_dict(cls, v):
        return v if isinstance(v, (dict, EntitiesSchema)) else {}

    @classmethod
    def parse_from_text(cls, text: str) -> "IntentSchema":
        """Parse the LLM's JSON reply; raises ValueError when none can be found."""
        data = extract_json(text)
        if not isinstance(data, dict):
            raise ValueError("Intent response is not a JSON object")
        return cls.model_validate(data)

    def to_detected_intent(
        self,
        community_id: Optional[str] = None,
        user_id: Optional[str] = None,
        source: str = "llm",
    ) -> DetectedIntent:
        return DetectedIntent(
            intent=Intent(self.intent),
            confidence=self.confidence,
            entities=self.entities.to_entities(),
            community_id=community_id,
            user_id=user_id,
            source=source,
        )


class CommunityProfileSchema(BaseModel):
    """Structured output of community profile generation."""
    model_config = ConfigDict(populate_by_name=True)

    purpose: str = ""
    tone: str = Tone.SUPPORTIVE.value
    target_audience: list[str] = Field(default_factory=list, alias="targetAudience")
    common_topics: list[str] = Field(default_factory=list, alias="commonTopics")
    event_types: list[str] = Field(default_factory=list, alias="eventTypes")

    @field_validator("tone", mode="before")
    @classmethod
    def _valid_tone(cls, v):
        value = str(v or "").strip().lower()
        return value if value in {t.value for t in Tone} else Tone.SUPPORTIVE.value

    @field_validator("target_audience", "common_topics", "event_types", mode="before")
    @classmethod
    def _lists(cls, v):
        return _as_list(v)

    @classmethod
    def parse_from_text(cls, text: str) -> "CommunityProfileSchema":
        data = extract_json(text)
        if not isinstance(data, dict):
            raise ValueError("Profile response is not a JSON object")
        profile = cls.model_validate(data)
        if not profile.purpose:
            raise ValueError("Profile response has no purpose")
        return profile


class RecommendationItem(BaseModel):
    type: str = "general"
    title: Optional[str] = None
    confidence: float = 0.7
    description: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, v):
        try:
            return max(0.0, min(1.0, float(v)))
        except (TypeError, ValueError):
            return 0.7


class PersonalizedRecommendationsSchema(BaseModel):
    """Recommendation bundle stored in ``user_recommendations``."""
    model_config = ConfigDict(populate_by_name=True)

    event_recommendations: list[RecommendationItem] = Field(default_factory=list, alias="eventRecommendations")
    content_recommendations: list[RecommendationItem] = Field(default_factory=list, alias="contentRecommendations")
    connection_recommendations: list[RecommendationItem] = Field(
        default_factory=list, alias="connectionRecommendations"
    )
    engagement_recommendations: list[RecommendationItem] = Field(
        default_factory=list, alias="engagementRecommendations"
    )
    suggested_tags: list[str] = Field(default_factory=list, alias="suggestedTags")

    @field_validator(
        "event_recommendations",
        "content_recommendations",
        "connection_recommendations",
        "engagement_recommendations",
        mode="before",
    )
    @classmethod
    def _item_list(cls, v):
        return [item for item in v if isinstance(item, dict)] if isinstance(v, list) else []

    @field_validator("suggested_tags", mode="before")
    @classmethod
    def _tags(cls, v):
        return _as_list(v)

    @classmethod
    def parse_from_text(cls, text: str) -> "PersonalizedRecommendationsSchema":
        data = extract_json(text)
        if not isinstance(data, dict):
            raise ValueError("Recommendations response is not a JSON object")
        return cls.model_validate(data)

    def to_payload(self) -> dict:
        """camelCase dict matching the stored/returned format."""
        return self.model_dump(by_alias=True, exclude_none=True)


class CommunicationStyle(BaseModel):
    tone: str = "neutral"
    formality: str = "casual"
    verbosity: str = "moderate"


class EngagementPatterns(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    active_time_of_day: str = Field("varies", alias="activeTimeOfDay")
    response_rate: str = Field("medium", alias="responseRate")
    preferred_content_types: list[str] = Field(default_factory=list, alias="preferredContentTypes")

    @field_validator("preferred_content_types", mode="before")
    @classmethod
    def _lists(cls, v):
        return _as_list(v)


class ContentPreferences(BaseModel):
    topics: list[str] = Field(default_factory=list)
    formats: list[str] = Field(default_factory=list)

    @field_validator("topics", "formats", mode="before")
    @classmethod
    def _lists(cls, v):
        return _as_list(v)


class UserInsightsSchema(BaseModel):
    """Per-member insights stored in ``user_ai_insights``."""
    model_config = ConfigDict(populate_by_name=True)

    communication_style: CommunicationStyle = Field(default_factory=CommunicationStyle, alias="communicationStyle")
    interests: list[str] = Field(default_factory=list)
    engagement_patterns: EngagementPatterns = Field(default_factory=EngagementPatterns, alias="engagementPatterns")
    content_preferences: ContentPreferences = Field(default_factory=ContentPreferences, alias="contentPreferences")
    personalization_recommendations: list[str] = Field(
        default_factory=list, alias="personalizationRecommendations"
    )

    @field_validator("communication_style", "engagement_patterns", "content_preferences", mode="before")
    @classmethod
    def _objects(cls, v):
        return v if isinstance(v, dict) else {}

    @field_validator("interests", "personalization_recommendations", mode="before")
    @classmethod
    def _lists(cls, v):
        return _as_list(v)

    @classmethod
    def parse_from_text(cls, text: str) -> "UserInsightsSchema":
        data = extract_json(text)
        if not isinstance(data, dict):
            raise ValueError("Insights response is not a JSON object")
        return cls.model_validate(data)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)
