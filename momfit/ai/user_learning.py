"""
Per-member learning: turns a member's posts, reactions, RSVPs and AI
interactions into stored insights used for personalization.
"""

import logging
from collections import Counter
from typing import Optional

from momfit.ai.schemas import UserInsightsSchema
from momfit.shared.ai_gateway import ContentGateway
from momfit.shared.audit_log import GenerationAuditLog
from momfit.shared.constants import (
    USER_LEARNING_POST_LIMIT,
    USER_LEARNING_RSVP_LIMIT,
    USER_LEARNING_SAMPLE_SIZE,
)
from momfit.shared.interfaces import IDataStore, ILLMClient
from momfit.shared.models import utc_now_iso
from momfit.shared.prompts import USER_INSIGHTS_SYSTEM_PROMPT, build_user_insights_prompt

logger = logging.getLogger(__name__)

INSIGHTS_TABLE = "user_ai_insights"
SAMPLE_CHARS = 100


def default_insights(profile: Optional[dict] = None) -> dict:
    interests = list((profile or {}).get("interests") or []) or ["general"]
    return {
        "communicationStyle": {"tone": "neutral", "formality": "casual", "verbosity": "moderate"},
        "interests": interests,
        "engagementPatterns": {
            "activeTimeOfDay": "varies",
            "responseRate": "medium",
            "preferredContentTypes": ["text"],
        },
        "contentPreferences": {"topics": list(interests), "formats": ["posts", "events"]},
        "personalizationRecommendations": [
            "Provide general content based on profile interests",
            "Monitor engagement to refine recommendations",
        ],
    }


def most_common_emoji(reactions: list[dict]) -> str:
    counts = Counter(r.get("emoji") for r in reactions if r.get("emoji"))
    return counts.most_common(1)[0][0] if counts else ""


def summarize_activity(posts: list, reactions: list, rsvps: list, interactions: list) -> dict:
    """Counts behind the activity summary; stored with the insights."""
    return {
        "posts": len(posts),
        "reactions": len(reactions),
        "topEmoji": most_common_emoji(reactions),
        "rsvps": len(rsvps),
        "attending": sum(1 for r in rsvps if r.get("status") == "going"),
        "aiInteractions": len(interactions),
        "positiveFeedback": sum(1 for i in interactions if i.get("feedback") == "positive"),
    }


def _summary_lines(stats: dict, latest_post: str) -> list[str]:
    lines = []
    if stats["posts"]:
        lines.append(f'{stats["posts"]} messages, most recent: "{latest_post[:SAMPLE_CHARS]}"')
    else:
        lines.append("No messages")
    if stats["reactions"]:
        lines.append(f'{stats["reactions"]} reactions, most common emoji: {stats["topEmoji"]}')
    else:
        lines.append("No reactions")
    if stats["rsvps"]:
        lines.append(f'{stats["rsvps"]} event RSVPs, {stats["attending"]} attending')
    else:
        lines.append("No event RSVPs")
    if stats["aiInteractions"]:
        lines.append(f'{stats["aiInteractions"]} AI interactions, {stats["positiveFeedback"]} positive feedback')
    else:
        lines.append("No AI interactions")
    return lines


class UserLearningProcessor:
    """Backs the user-learning-processor function."""

    def __init__(
        self,
        store: IDataStore,
        llm: ILLMClient,
        audit: GenerationAuditLog,
        gateway: Optional[ContentGateway] = None,
    ):
        self._store = store
        self._llm = llm
        self._audit = audit
        self._gateway = gateway or ContentGateway()

    async def process(self, user_id: str, community_id: Optional[str] = None) -> dict:
        """
        Analyse a member's activity and save the insights.

        Returns {"insights": <camelCase insights>, "activity": <counts>, "was_default": bool}.
        Raises ValueError for a missing id and RuntimeError when the insights cannot be saved.
        """
        if not user_id:
            raise ValueError("User ID is required")
        input_data = {"userId": user_id, "communityId": community_id}
        await self._audit.log("user_learning", "started", community_id, user_id, input_data=input_data)

        profile = await self._store.get("profiles", {"id": user_id})
        post_filters = {"user_id": user_id}
        if community_id:
            post_filters["community_id"] = community_id
        posts = await self._store.select(
            "community_posts", post_filters,
            order_by="created_at", descending=True, limit=USER_LEARNING_POST_LIMIT,
        )
        reactions = await self._store.select(
            "message_reactions", {"user_id": user_id},
            order_by="created_at", descending=True, limit=USER_LEARNING_POST_LIMIT,
        )
        rsvps = await self._store.select(
            "event_rsvps", {"user_id": user_id},
            order_by="created_at", descending=True, limit=USER_LEARNING_RSVP_LIMIT,
        )
        interactions = await self._store.select(
            "ai_interactions", {"user_id": user_id},
            order_by="created_at", descending=True, limit=USER_LEARNING_RSVP_LIMIT,
        )

        stats = summarize_activity(posts, reactions, rsvps, interactions)
        insights, was_default = await self._analyse(user_id, profile, posts, rsvps, stats)

        try:
            await self._store.upsert(INSIGHTS_TABLE, {
                "user_id": user_id,
                "insights": insights,
                "activity": stats,
                "updated_at": utc_now_iso(),
            }, on_conflict=("user_id",))
        except Exception as e:
            await self._audit.log("user_learning", "error", community_id, user_id,
                                  error_message=str(e), input_data=input_data)
            raise RuntimeError("Failed to save user insights") from e

        await self._audit.log("user_learning", "success", community_id, user_id,
                              input_data=input_data, output_data=insights)
        logger.info(f"User insights updated for {user_id}")
        return {"insights": insights, "activity": stats, "was_default": was_default}

    async def _analyse(
        self, user_id: str, profile: Optional[dict], posts: list, rsvps: list, stats: dict
    ) -> tuple[dict, bool]:
        # injected posts never reach the prompt
        samples = [
            p.get("content", "")[:SAMPLE_CHARS] for p in posts
            if p.get("content") and self._gateway.scan_input(p["content"]).is_safe
        ][:USER_LEARNING_SAMPLE_SIZE]
        rsvp_lines = []
        for rsvp in rsvps[:USER_LEARNING_SAMPLE_SIZE]:
            event = await self._store.get("community_events", {"id": rsvp.get("event_id")})
            rsvp_lines.append(f'{rsvp.get("status")} to "{(event or {}).get("title") or "Unknown event"}"')

        latest = samples[0] if samples else ""
        prompt = build_user_insights_prompt(profile, _summary_lines(stats, latest), samples, rsvp_lines)
        if not self._gateway.scan_input(prompt).is_safe:
            logger.warning(f"Insights prompt for {user_id} failed the input scan; using defaults")
            return default_insights(profile), True

        response = await self._llm.complete(prompt, system=USER_INSIGHTS_SYSTEM_PROMPT, json_mode=True)
        try:
            if response.get("error"):
                raise RuntimeError(response["error"])
            return UserInsightsSchema.parse_from_text(response["text"]).to_payload(), False
        except (RuntimeError, ValueError) as e:
            logger.warning(f"User insight analysis for {user_id} failed, using defaults: {e}")
            return default_insights(profile), True
