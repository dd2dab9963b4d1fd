"""
Conversation recommendations and per-user personalization.

RecommendationEngine merges rule-based suggestions from four sources.
PersonalizedRecommender backs the personalized-recommendations function,
using the member's interest vector and the LLM when both are available.
InterestVectorBuilder and EventEmbeddingBuilder keep the member and event
embeddings current.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from momfit.ai.chat_assistant import ChatAssistant
from momfit.ai.schemas import PersonalizedRecommendationsSchema
from momfit.shared.audit_log import GenerationAuditLog
from momfit.shared.config import RecommendationConfig
from momfit.shared.constants import (
    DUPLICATE_SIMILARITY_THRESHOLD,
    EMBEDDING_DIMENSIONS,
    MAX_HISTORY_RECOMMENDATIONS,
    MAX_PERSONALISED_TAGS,
    MAX_RECOMMENDATIONS,
)
from momfit.shared.interfaces import IDataStore, ILLMClient
from momfit.shared.models import Recommendation, RecommendationSource, parse_timestamp, utc_now_iso
from momfit.shared.prompts import RECOMMENDATIONS_SYSTEM_PROMPT, build_recommendations_prompt

logger = logging.getLogger(__name__)

TOPIC_QUESTIONS = [
    (("yoga",), [
        "What's your favorite yoga pose?",
        "How often do you practice yoga?",
        "Have you tried any online yoga classes?",
    ]),
    (("run", "running"), [
        "What's your favorite running route?",
        "Do you use any apps to track your runs?",
        "What running shoes do you recommend?",
    ]),
    (("food", "nutrition", "diet"), [
        "What's your go-to healthy snack?",
        "How do you meal prep for the week?",
        "Any favorite protein-rich recipes to share?",
    ]),
    (("workout", "exercise"), [
        "What's your current workout routine?",
        "How many days a week do you exercise?",
        "What's your favorite muscle group to train?",
    ]),
]

TONE_RESPONSES = {
    "questioning": [
        "That's a great question!",
        "I've been wondering about that too.",
        "I'd love to hear what others think about this.",
    ],
    "enthusiastic": [
        "I'm excited about this too!",
        "That's awesome to hear!",
        "I love your enthusiasm!",
    ],
    "concerned": [
        "I understand your concern.",
        "That sounds challenging. How can I help?",
        "I've faced similar challenges before.",
    ],
}

SOURCE_BASE_CONFIDENCE = {
    RecommendationSource.AI: 0.8,
    RecommendationSource.HISTORY: 0.9,
    RecommendationSource.CONTEXT: 0.85,
    RecommendationSource.COMMUNITY: 0.75,
}


@dataclass
class RecommendationContext:
    community_id: str
    user_id: Optional[str] = None
    recent_messages: list = field(default_factory=list)  # oldest first
    user_profile: Optional[dict] = None
    community_profile: Optional[dict] = None
    current_message: Optional[str] = None


def calculate_confidence(text: str, category: str, source: RecommendationSource) -> float:
    confidence = SOURCE_BASE_CONFIDENCE.get(source, 0.7)
    if category == "question":
        confidence += 0.05
    length = len(text)
    if 20 < length < 100:
        confidence += 0.05
    elif length > 100:
        confidence -= 0.05
    return round(min(max(confidence, 0.0), 1.0), 4)


def category_for(text: str) -> str:
    lowered = text.lower()
    if "?" in lowered:
        return "question"
    if any(w in lowered for w in ("recommend", "suggestion", "advice")):
        return "advice"
    if "looking for" in lowered or "need" in lowered:
        return "request"
    if any(w in lowered for w in ("completed", "did", "finished")):
        return "achievement"
    return "general"


def word_similarity(a: str, b: str) -> float:
    """Jaccard similarity of whitespace-separated words."""
    words_a, words_b = set(a.split()), set(b.split())
    union = words_a | words_b
    if not union:
        return 1.0
    return len(words_a & words_b) / len(union)


def deduplicate(recommendations: list[Recommendation]) -> list[Recommendation]:
    """Keep the first of any group of near-identical texts."""
    kept: list[Recommendation] = []
    seen: list[str] = []
    for rec in recommendations:
        normalized = rec.text.lower().strip()
        if any(word_similarity(normalized, s) > DUPLICATE_SIMILARITY_THRESHOLD for s in seen):
            continue
        kept.append(rec)
        seen.append(normalized)
    return kept


def make_recommendation(text: str, category: str, source: RecommendationSource) -> Recommendation:
    return Recommendation(
        id=f"recommendation-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}",
        text=text,
        confidence=calculate_confidence(text, category, source),
        category=category,
        source=source,
    )


def fallback_recommendations() -> list[Recommendation]:
    ai = RecommendationSource.AI
    return [
        make_recommendation("How's everyone doing today?", "question", ai),
        make_recommendation("What's your favorite workout routine?", "question", ai),
        make_recommendation("Any fitness goals you're working towards?", "question", ai),
        make_recommendation("I just completed a 30-minute HIIT session!", "achievement", ai),
    ]


class RecommendationEngine:
    """Rule-based conversation starters drawn from topics, history, tone and community insights."""

    def __init__(self, store: IDataStore, assistant: ChatAssistant):
        self._store = store
        self._assistant = assistant

    async def get_recommendations(self, context: RecommendationContext) -> list[Recommendation]:
        try:
            merged = (
                self._ai_recommendations(context)
                + await self._history_recommendations(context)
                + self._contextual_recommendations(context)
                + await self._community_recommendations(context)
            )
            unique = deduplicate(merged)
            # sorted() is stable, so equal confidences keep source order
            ranked = sorted(unique, key=lambda r: r.confidence, reverse=True)
            return ranked[:MAX_RECOMMENDATIONS]
        except Exception as e:
            logger.error(f"Error generating recommendations: {e}")
            return fallback_recommendations()

    def _ai_recommendations(self, context: RecommendationContext) -> list[Recommendation]:
        if not context.recent_messages:
            return []
        latest = str(context.recent_messages[-1].get("content", "")).lower()
        for keywords, questions in TOPIC_QUESTIONS:
            if any(k in latest for k in keywords):
                return [make_recommendation(q, "question", RecommendationSource.AI) for q in questions]
        return []

    async def _history_recommendations(self, context: RecommendationContext) -> list[Recommendation]:
        if not context.user_id:
            return []
        try:
            rows = await self._store.select(
                "ai_suggestion_history",
                {"user_id": context.user_id, "was_used": True},
                order_by="created_at",
                descending=True,
                limit=MAX_HISTORY_RECOMMENDATIONS,
            )
        except Exception as e:
            logger.error(f"Error getting history recommendations: {e}")
            return []
        return [
            make_recommendation(row["suggestion"], category_for(row["suggestion"]), RecommendationSource.HISTORY)
            for row in rows
            if row.get("suggestion")
        ]

    def _contextual_recommendations(self, context: RecommendationContext) -> list[Recommendation]:
        if not context.current_message:
            return []
        tone = self._assistant.analyze_message_tone(context.current_message)["tone"]
        return [
            make_recommendation(text, "response", RecommendationSource.CONTEXT)
            for text in TONE_RESPONSES.get(tone, [])
        ]

    async def _community_recommendations(self, context: RecommendationContext) -> list[Recommendation]:
        profile = context.community_profile
        if profile is None:
            try:
                profile = await self._store.get("ai_community_profiles", {"community_id": context.community_id})
            except Exception as e:
                logger.error(f"Error loading community profile: {e}")
                return []
            if not profile:
                return []

        community = RecommendationSource.COMMUNITY
        recommendations: list[Recommendation] = []
        insights = profile.get("anonymized_insights") or {}
        if profile.get("knowledge_transfer_enabled") and insights:
            for topic in insights.get("popularTopics") or []:
                recommendations.append(make_recommendation(
                    f"Have you tried discussing {topic}? It's popular in similar communities.",
                    "suggestion", community,
                ))
            for event in insights.get("successfulEvents") or []:
                recommendations.append(make_recommendation(
                    f"Would anyone be interested in a {event} event? These have been successful in similar communities.",
                    "event", community,
                ))
            for tip in insights.get("engagementTips") or []:
                recommendations.append(make_recommendation(tip, "tip", community))

        if len(recommendations) < 3:
            for topic in profile.get("common_topics") or []:
                recommendations.append(
                    make_recommendation(f"What's your experience with {topic}?", "question", community)
                )
                recommendations.append(
                    make_recommendation(f"Any tips for someone new to {topic}?", "question", community)
                )
        return recommendations


# ── Interest vectors ─────────────────────────────────────────


class InterestVectorBuilder:
    """Embeds a member's interests per community into ``user_interest_vectors``."""

    def __init__(self, store: IDataStore, llm: ILLMClient, audit: GenerationAuditLog):
        self._store = store
        self._llm = llm
        self._audit = audit

    async def generate(self, user_id: str, community_id: str) -> list[float]:
        """Returns the stored embedding; a zero vector when embedding failed."""
        if not user_id or not community_id:
            raise ValueError("Missing user_id or community_id")
        input_data = {"user_id": user_id, "community_id": community_id}

        profile = await self._store.get("profiles", {"id": user_id})
        if not profile:
            await self._audit.log("user_vector_generation", "error", community_id, user_id,
                                  error_message="Profile not found", input_data=input_data)
            raise LookupError("Profile not found")
        community = await self._store.get("communities", {"id": community_id})
        if not community:
            await self._audit.log("user_vector_generation", "error", community_id, user_id,
                                  error_message="Community not found", input_data=input_data)
            raise LookupError("Community not found")

        text = " ".join(
            str(part) for part in [
                *(profile.get("interests") or []),
                *(profile.get("custom_interests") or []),
                *(profile.get("fitness_goals") or []),
                profile.get("experience_level") or "",
                profile.get("age_range") or "",
                profile.get("location") or "",
                *(community.get("tags") or []),
            ]
        )

        embedding = [0.0] * EMBEDDING_DIMENSIONS
        result = await self._llm.embed(text)
        if result.get("error"):
            message = "No OpenAI API key" if result["error"] == "no_api_key" else result["error"]
            logger.warning(f"Interest vector for {user_id}/{community_id} falls back to zeros: {message}")
            await self._audit.log("user_vector_generation", "error", community_id, user_id,
                                  error_message=message, input_data=input_data)
        else:
            embedding = result["embedding"]

        try:
            await self._store.upsert("user_interest_vectors", {
                "user_id": user_id,
                "community_id": community_id,
                "embedding": embedding,
                "updated_at": utc_now_iso(),
            }, on_conflict=("user_id", "community_id"))
        except Exception as e:
            await self._audit.log("user_vector_generation", "error", community_id, user_id,
                                  error_message=str(e), input_data=input_data)
            raise RuntimeError("Failed to save embedding") from e

        await self._audit.log("user_vector_generation", "success", community_id, user_id,
                              input_data=input_data, output_data={"embedding": embedding[:10]})
        return embedding

    async def generate_all(self, user_id: str) -> int:
        """Regenerate vectors for every community the user belongs to; returns how many succeeded."""
        memberships = await self._store.select("community_members", {"user_id": user_id})
        done = 0
        for membership in memberships:
            try:
                await self.generate(user_id, membership["community_id"])
                done += 1
            except Exception as e:
                logger.error(f"Interest vector for {user_id}/{membership.get('community_id')} failed: {e}")
        return done


class EventEmbeddingBuilder:
    """Embeds an event with its community's profile into ``event_embeddings``."""

    def __init__(self, store: IDataStore, llm: ILLMClient, audit: GenerationAuditLog):
        self._store = store
        self._llm = llm
        self._audit = audit

    async def generate(self, event_id: str, title: str, description: str, community_id: str) -> list[float]:
        if not event_id or not title or not community_id:
            raise ValueError("Missing required fields: event_id, title, or community_id")
        input_data = {"event_id": event_id, "community_id": community_id}

        profile = await self._store.get("ai_community_profiles", {"community_id": community_id}) or {}
        text = " ".join([
            title,
            description or "",
            " ".join(profile.get("event_types") or []),
            " ".join(profile.get("common_topics") or []),
        ])

        embedding = [0.0] * EMBEDDING_DIMENSIONS
        result = await self._llm.embed(text)
        if result.get("error"):
            message = "No OpenAI API key" if result["error"] == "no_api_key" else result["error"]
            logger.warning(f"Event embedding for {event_id} falls back to zeros: {message}")
            await self._audit.log("event_embedding_generation", "error", community_id,
                                  error_message=message, input_data=input_data)
        else:
            embedding = result["embedding"]

        try:
            await self._store.upsert("event_embeddings", {
                "event_id": event_id,
                "embedding": embedding,
                "updated_at": utc_now_iso(),
            }, on_conflict=("event_id",))
        except Exception as e:
            await self._audit.log("event_embedding_generation", "error", community_id,
                                  error_message=str(e), input_data=input_data)
            raise RuntimeError("Failed to save event embedding") from e

        await self._audit.log("event_embedding_generation", "success", community_id,
                              input_data=input_data, output_data={"embedding": embedding[:10]})
        return embedding


# ── Personalized recommendations ─────────────────────────────


def simple_recommendations() -> dict:
    """Default bundle used whenever the LLM path is unavailable."""
    return {
        "eventRecommendations": [{
            "type": "meetup",
            "title": "Community meetup",
            "confidence": 0.7,
            "description": "Join the next community gathering to meet other members",
        }],
        "contentRecommendations": [{
            "type": "discussion",
            "title": "Share your experience",
            "confidence": 0.7,
            "description": "Share your thoughts or experiences related to the community's main topics",
        }],
        "connectionRecommendations": [{
            "type": "active members",
            "confidence": 0.7,
            "description": "Connect with active members who share your interests",
        }],
        "engagementRecommendations": [{
            "type": "regular participation",
            "confidence": 0.7,
            "description": "Try to participate in discussions at least once a week",
        }],
    }


class PersonalizedRecommender:
    """Generates, caches and learns from per-member recommendation bundles."""

    def __init__(
        self,
        store: IDataStore,
        llm: ILLMClient,
        audit: GenerationAuditLog,
        config: Optional[RecommendationConfig] = None,
        vectors: Optional[InterestVectorBuilder] = None,
    ):
        self._store = store
        self._llm = llm
        self._audit = audit
        self._config = config or RecommendationConfig()
        self._vectors = vectors or InterestVectorBuilder(store, llm, audit)

    async def generate(self, user_id: str, community_id: str, recommendation_type: str = "all") -> dict:
        if not user_id or not community_id:
            raise ValueError("Missing userId or communityId")
        input_data = {"userId": user_id, "communityId": community_id, "recommendationType": recommendation_type}

        if not self._llm.is_configured:
            recommendations = simple_recommendations()
            await self._audit.log("personalized_recommendations", "error", community_id, user_id,
                                  error_message="No OpenAI API key", input_data=input_data)
        else:
            recommendations = await self._generate_with_llm(user_id, community_id, recommendation_type, input_data)

        try:
            await self._store.upsert("user_recommendations", {
                "user_id": user_id,
                "community_id": community_id,
                "recommendations": recommendations,
                "updated_at": utc_now_iso(),
            }, on_conflict=("user_id", "community_id"))
        except Exception as e:
            logger.error(f"Failed to save recommendations for {user_id}/{community_id}: {e}")
            await self._audit.log("personalized_recommendations", "error", community_id, user_id,
                                  error_message=str(e), input_data=input_data)
            raise RuntimeError("Failed to save recommendations") from e

        await self._audit.log("personalized_recommendations", "success", community_id, user_id,
                              input_data=input_data, output_data=recommendations)
        return recommendations

    async def _generate_with_llm(
        self, user_id: str, community_id: str, recommendation_type: str, input_data: dict
    ) -> dict:
        try:
            vector = await self._store.get("user_interest_vectors", {"user_id": user_id, "community_id": community_id})
            if not vector or not vector.get("embedding"):
                logger.info(f"No interest vector for {user_id}/{community_id}; using default recommendations")
                return simple_recommendations()

            response = await self._llm.complete(
                build_recommendations_prompt(vector["embedding"], recommendation_type),
                system=RECOMMENDATIONS_SYSTEM_PROMPT,
                json_mode=True,
            )
            if response.get("error"):
                raise RuntimeError(response["error"])
            return PersonalizedRecommendationsSchema.parse_from_text(response["text"]).to_payload()
        except Exception as e:
            logger.warning(f"Personalized recommendations fell back to defaults: {e}")
            await self._audit.log("personalized_recommendations", "error", community_id, user_id,
                                  error_message=str(e), input_data=input_data)
            return simple_recommendations()

    async def get_cached_or_generate(
        self,
        user_id: str,
        community_id: str,
        recommendation_type: str = "all",
        now: Optional[datetime] = None,
    ) -> dict:
        """Stored bundle when fresher than the freshness window, else a new one."""
        now = now or datetime.now(timezone.utc)
        row = await self._store.get("user_recommendations", {"user_id": user_id, "community_id": community_id})
        if row and row.get("recommendations"):
            updated = parse_timestamp(row.get("updated_at") or row.get("created_at"))
            if updated and now - updated < timedelta(hours=self._config.freshness_hours):
                return row["recommendations"]
        return await self.generate(user_id, community_id, recommendation_type)

    async def record_feedback(
        self,
        user_id: str,
        content_type: str,
        content_id: str,
        is_positive: bool,
        details: Optional[str] = None,
    ) -> bool:
        try:
            await self._store.insert("ai_interactions", {
                "user_id": user_id,
                "interaction_type": "feedback",
                "content": content_type,
                "result": {"contentId": content_id, "isPositive": is_positive, "details": details},
                "feedback": "positive" if is_positive else "negative",
            })
            if is_positive and details and len(details) > 10:
                await self._vectors.generate_all(user_id)
            return True
        except Exception as e:
            logger.error(f"Error recording feedback: {e}")
            return False


# ── Tags for the event browser ───────────────────────────────


def _unique(values) -> list[str]:
    result: list[str] = []
    for value in values:
        if value and value not in result:
            result.append(value)
    return result


async def get_personalised_tags(
    store: IDataStore,
    recommender: Optional[PersonalizedRecommender],
    user_id: Optional[str],
    community_id: Optional[str],
    upcoming: list,
    past: list,
) -> list[str]:
    """Up to 10 tags for the event filter bar; most common event tags when nothing personal is known."""
    try:
        if user_id:
            tags: list[str] = []
            if recommender is not None and community_id:
                try:
                    bundle = await recommender.get_cached_or_generate(user_id, community_id)
                    tags += bundle.get("suggestedTags") or bundle.get("suggested_tags") or []
                except Exception as e:
                    logger.warning(f"Recommendation tags unavailable for {user_id}: {e}")

            rsvps = await store.select("event_rsvps", {"user_id": user_id, "status": "going"})
            event_ids = [r["event_id"] for r in rsvps if r.get("event_id")]
            if event_ids:
                for event in await store.select("community_events", {"id": event_ids}):
                    tags += event.get("tags") or []

            memberships = await store.select("community_members", {"user_id": user_id})
            community_ids = [m["community_id"] for m in memberships if m.get("community_id")]
            if community_ids:
                for community in await store.select("communities", {"id": community_ids}):
                    tags += community.get("tags") or []

            personal = _unique(tags)[:MAX_PERSONALISED_TAGS]
            if personal:
                return personal

        frequency: dict[str, int] = {}
        for event in list(upcoming or []) + list(past or []):
            for tag in event.get("tags") or []:
                frequency[tag] = frequency.get(tag, 0) + 1
        ranked = sorted(frequency.items(), key=lambda item: item[1], reverse=True)
        return [tag for tag, _ in ranked[:MAX_PERSONALISED_TAGS]]
    except Exception as e:
        logger.error(f"Error fetching personalised tags: {e}")
        return []
