"""
Community profiling: LLM-generated community descriptions, their
scheduled refresh, and anonymized insight sharing between similar
communities.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from momfit.ai.schemas import CommunityProfileSchema
from momfit.shared.audit_log import GenerationAuditLog
from momfit.shared.constants import (
    PROFILE_CONTEXT_POSTS,
    PROFILE_MAX_AGE_DAYS,
    PROFILE_REFRESH_BATCH,
    PROFILE_REFRESH_LIMIT,
)
from momfit.shared.interfaces import IDataStore, ILLMClient
from momfit.shared.models import CommunityAIProfile, Tone, parse_timestamp, utc_now_iso
from momfit.shared.prompts import COMMUNITY_PROFILE_SYSTEM_PROMPT, build_community_profile_prompt

logger = logging.getLogger(__name__)

PROFILE_TABLE = "ai_community_profiles"

ENGAGEMENT_TIPS = {
    Tone.CASUAL.value: [
        "Start a light-hearted weekly check-in thread",
        "Invite members to share a photo from their latest workout",
    ],
    Tone.SUPPORTIVE.value: [
        "Welcome each new member by name",
        "Run a weekly thread where members share one small win",
    ],
    Tone.PROFESSIONAL.value: [
        "Share a vetted resource each week",
        "Host a monthly Q&A with a qualified coach",
    ],
    Tone.MOTIVATIONAL.value: [
        "Launch a 30-day community challenge",
        "Celebrate member milestones publicly",
    ],
}


def default_profile(community_id: str, name: str, tags: list) -> CommunityAIProfile:
    """Profile used whenever generation fails."""
    return CommunityAIProfile(
        community_id=community_id,
        purpose=f"A community for people interested in {name.lower()}",
        tone=Tone.SUPPORTIVE,
        target_audience=["Community members", "Enthusiasts"],
        common_topics=list(tags) if tags else ["General discussion"],
        event_types=["Meetups", "Discussions", "Workshops"],
    )


def profile_payload(profile: CommunityAIProfile) -> dict:
    """camelCase shape returned by the generate-ai-profile function."""
    return {
        "purpose": profile.purpose,
        "tone": profile.tone.value,
        "targetAudience": list(profile.target_audience),
        "commonTopics": list(profile.common_topics),
        "eventTypes": list(profile.event_types),
        "createdAt": profile.created_at or utc_now_iso(),
    }


class CommunityProfiler:
    """Generates and stores ``ai_community_profiles`` rows."""

    def __init__(self, store: IDataStore, llm: ILLMClient, audit: GenerationAuditLog):
        self._store = store
        self._llm = llm
        self._audit = audit

    async def generate(self, community_id: str) -> dict:
        """
        Generate and save a profile.

        Returns {"profile": <camelCase profile>, "was_default": bool}.
        Raises ValueError for a missing id and LookupError for an unknown community.
        """
        if not community_id:
            raise ValueError("Community ID is required")

        await self._audit.log("generate_profile", "started", community_id, input_data={"communityId": community_id})

        community = await self._store.get("communities", {"id": community_id})
        if not community:
            await self._audit.log("generate_profile", "error", community_id, error_message="Community not found")
            raise LookupError("Community not found")

        name = community.get("name", "")
        tags = community.get("tags") or []
        input_data = {"communityId": community_id, "name": name}

        try:
            posts = await self._store.select(
                "community_posts", {"community_id": community_id},
                order_by="created_at", descending=True, limit=PROFILE_CONTEXT_POSTS,
            )
            prompt = build_community_profile_prompt(
                name, community.get("description", ""), tags,
                "\n".join(p.get("content", "") for p in posts),
            )
            response = await self._llm.complete(prompt, system=COMMUNITY_PROFILE_SYSTEM_PROMPT, json_mode=True)
            if response.get("error"):
                raise RuntimeError(response["error"])
            parsed = CommunityProfileSchema.parse_from_text(response["text"])
        except (RuntimeError, ValueError) as e:
            logger.warning(f"Profile generation for {community_id} failed, using default: {e}")
            await self._audit.log("generate_profile", "error", community_id,
                                  error_message=str(e), input_data=input_data)
            profile = default_profile(community_id, name, tags)
            await self._save(profile)
            payload = profile_payload(profile)
            await self._audit.log("create_default_profile", "success", community_id,
                                  input_data=input_data, output_data=payload)
            return {"profile": payload, "was_default": True}

        profile = CommunityAIProfile(
            community_id=community_id,
            purpose=parsed.purpose,
            tone=Tone(parsed.tone),
            target_audience=parsed.target_audience,
            common_topics=parsed.common_topics,
            event_types=parsed.event_types,
        )
        await self._save(profile)
        payload = profile_payload(profile)
        await self._audit.log("generate_profile", "success", community_id, input_data=input_data, output_data=payload)
        logger.info(f"AI profile generated for community {community_id}")
        return {"profile": payload, "was_default": False}

    async def _save(self, profile: CommunityAIProfile) -> None:
        """Update the existing row for the community, or insert a new one."""
        values = {
            "purpose": profile.purpose,
            "tone": profile.tone.value,
            "target_audience": profile.target_audience,
            "common_topics": profile.common_topics,
            "event_types": profile.event_types,
            "updated_at": utc_now_iso(),
        }
        existing = await self._store.get(PROFILE_TABLE, {"community_id": profile.community_id})
        if existing:
            await self._store.update(PROFILE_TABLE, {"community_id": profile.community_id}, values)
        else:
            await self._store.insert(PROFILE_TABLE, {"community_id": profile.community_id, **values})

    async def get_profile(self, community_id: str) -> Optional[CommunityAIProfile]:
        row = await self._store.get(PROFILE_TABLE, {"community_id": community_id})
        return CommunityAIProfile.from_dict(row) if row else None

    async def refresh_profiles(
        self,
        now: Optional[datetime] = None,
        max_age_days: int = PROFILE_MAX_AGE_DAYS,
        limit: int = PROFILE_REFRESH_LIMIT,
    ) -> list[str]:
        """Regenerate missing and stale profiles of active communities; returns processed ids."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=max_age_days)

        communities = await self._store.select("communities", {"is_active": True, "deleted_at": None})
        active_ids = [c["id"] for c in communities]
        profiles = {p["community_id"]: p for p in await self._store.select(PROFILE_TABLE)}

        missing = [cid for cid in active_ids if cid not in profiles][:PROFILE_REFRESH_BATCH]

        def age_key(row: dict) -> datetime:
            return parse_timestamp(row.get("updated_at") or row.get("created_at")) or datetime.min.replace(tzinfo=timezone.utc)

        stale_rows = sorted(
            (p for cid, p in profiles.items() if cid in active_ids and age_key(p) < cutoff),
            key=age_key,
        )
        outdated = [p["community_id"] for p in stale_rows][:PROFILE_REFRESH_BATCH]

        processed = []
        for community_id in (missing + outdated)[:limit]:
            try:
                await self.generate(community_id)
                processed.append(community_id)
            except Exception as e:
                logger.error(f"Scheduled profile update failed for {community_id}: {e}")
        logger.info(f"Scheduled profile update processed {len(processed)} communities")
        return processed


class CrossCommunityLearner:
    """Shares anonymized topic and event insights between similar communities."""

    def __init__(self, store: IDataStore):
        self._store = store

    @staticmethod
    def find_clusters(profiles: list[dict]) -> list[dict]:
        """Group communities by shared topic, tone and audience, largest first."""
        groups: dict[tuple, list[str]] = {}
        for profile in profiles:
            cid = profile["community_id"]
            keys = [("topic", t) for t in profile.get("common_topics") or []]
            if profile.get("tone"):
                keys.append(("tone", profile["tone"]))
            keys += [("audience", a) for a in profile.get("target_audience") or []]
            for key in keys:
                members = groups.setdefault(key, [])
                if cid not in members:
                    members.append(cid)

        clusters = [
            {"type": kind, "name": name, "communities": members, "size": len(members)}
            for (kind, name), members in groups.items()
        ]
        return sorted(clusters, key=lambda c: c["size"], reverse=True)

    async def run(self) -> dict:
        communities = await self._store.select("communities", {"is_active": True, "deleted_at": None})
        active_ids = {c["id"] for c in communities}
        profiles = [p for p in await self._store.select(PROFILE_TABLE) if p.get("community_id") in active_ids]
        if not profiles:
            return {"success": True, "message": "No communities with AI profiles found",
                    "communitiesAnalyzed": 0, "clusters": 0, "updated": []}

        clusters = self.find_clusters(profiles)
        by_id = {p["community_id"]: p for p in profiles}

        updated = []
        for profile in profiles:
            if not profile.get("knowledge_transfer_enabled"):
                continue
            cid = profile["community_id"]
            insights = self._insights_for(cid, by_id, clusters)
            await self._store.update(PROFILE_TABLE, {"community_id": cid}, {
                "anonymized_insights": insights,
                "insights_updated_at": utc_now_iso(),
            })
            updated.append(cid)

        logger.info(f"Cross-community learning: {len(profiles)} profiles, {len(clusters)} clusters, {len(updated)} updated")
        return {"success": True, "communitiesAnalyzed": len(profiles), "clusters": len(clusters), "updated": updated}

    @staticmethod
    def _insights_for(community_id: str, by_id: dict, clusters: list[dict]) -> dict:
        own = by_id[community_id]
        peers: list[str] = []
        for cluster in clusters:
            if community_id in cluster["communities"]:
                peers += [c for c in cluster["communities"] if c != community_id and c not in peers]

        own_topics = {t.lower() for t in own.get("common_topics") or []}
        own_events = {e.lower() for e in own.get("event_types") or []}
        topic_counts: dict[str, int] = {}
        events: list[str] = []
        for peer in peers:
            for topic in by_id[peer].get("common_topics") or []:
                if topic.lower() not in own_topics:
                    topic_counts[topic] = topic_counts.get(topic, 0) + 1
            for event in by_id[peer].get("event_types") or []:
                if event.lower() not in own_events and event not in events:
                    events.append(event)

        popular = [t for t, _ in sorted(topic_counts.items(), key=lambda item: item[1], reverse=True)]
        tone = own.get("tone") or Tone.SUPPORTIVE.value
        return {
            "popularTopics": popular[:5],
            "successfulEvents": events[:3],
            "engagementTips": list(ENGAGEMENT_TIPS.get(tone, ENGAGEMENT_TIPS[Tone.SUPPORTIVE.value])),
        }
