"""
Tests for conversation recommendations, interest vectors, personalized
recommendation bundles and personalised event tags.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_llm
from momfit.ai.chat_assistant import ChatAssistant
from momfit.ai.recommendations import (
    EventEmbeddingBuilder,
    InterestVectorBuilder,
    PersonalizedRecommender,
    RecommendationContext,
    RecommendationEngine,
    calculate_confidence,
    category_for,
    deduplicate,
    get_personalised_tags,
    make_recommendation,
    simple_recommendations,
)
from momfit.shared.constants import EMBEDDING_DIMENSIONS
from momfit.shared.models import RecommendationSource

NOW = datetime(2024, 6, 5, 8, 0, tzinfo=timezone.utc)


class TestScoring:
    def test_confidence(self):
        assert calculate_confidence("What's your favorite yoga pose?", "question", RecommendationSource.AI) == 0.9
        assert calculate_confidence("x" * 150, "general", RecommendationSource.HISTORY) == 0.85
        assert calculate_confidence("short", "tip", RecommendationSource.COMMUNITY) == 0.75

    def test_category(self):
        assert category_for("Anyone around?") == "question"
        assert category_for("I recommend this stroller") == "advice"
        assert category_for("Looking for a running buddy") == "request"
        assert category_for("Finished my first 5k") == "achievement"
        assert category_for("Sunny out") == "general"

    def test_deduplicate_keeps_first(self):
        first = make_recommendation("Great job everyone", "general", RecommendationSource.AI)
        dup = make_recommendation("great job everyone ", "general", RecommendationSource.HISTORY)
        other = make_recommendation("See you at yoga", "general", RecommendationSource.AI)
        assert deduplicate([first, dup, other]) == [first, other]


@pytest.mark.asyncio
class TestRecommendationEngine:
    async def test_merges_sources_by_confidence(self, store):
        engine = RecommendationEngine(store, ChatAssistant(store))
        context = RecommendationContext(
            community_id="c1",
            recent_messages=[{"content": "Yoga at 7?"}],
            current_message="Wow amazing!",
            community_profile={"common_topics": ["sleep"]},
        )
        recommendations = await engine.get_recommendations(context)

        assert len(recommendations) == 8
        assert recommendations[0].source == RecommendationSource.AI
        assert recommendations[-1].source == RecommendationSource.COMMUNITY
        confidences = [r.confidence for r in recommendations]
        assert confidences == sorted(confidences, reverse=True)

    async def test_history_and_insights(self, store):
        await store.insert("ai_suggestion_history", {
            "user_id": "u1", "community_id": "c1", "suggestion": "Who's up for a walk?", "was_used": True,
        })
        await store.insert("ai_community_profiles", {
            "community_id": "c1",
            "knowledge_transfer_enabled": True,
            "anonymized_insights": {"popularTopics": ["sleep"], "successfulEvents": ["yoga"], "engagementTips": []},
        })
        engine = RecommendationEngine(store, ChatAssistant(store))

        recommendations = await engine.get_recommendations(RecommendationContext("c1", user_id="u1"))

        sources = {r.source for r in recommendations}
        assert sources == {RecommendationSource.HISTORY, RecommendationSource.COMMUNITY}
        texts = [r.text for r in recommendations]
        assert "Have you tried discussing sleep? It's popular in similar communities." in texts

    async def test_error_returns_fallback(self, store):
        assistant = MagicMock()
        assistant.analyze_message_tone.side_effect = RuntimeError("boom")
        engine = RecommendationEngine(store, assistant)
        recommendations = await engine.get_recommendations(
            RecommendationContext("c1", current_message="hi", community_profile={})
        )
        assert len(recommendations) == 4
        assert recommendations[0].text == "How's everyone doing today?"


async def _seed_profile(store):
    await store.insert("profiles", {"id": "u1", "display_name": "Ana", "interests": ["yoga"], "experience_level": "beginner"})
    await store.insert("communities", {"id": "c1", "name": "Stroller Fit", "tags": ["postpartum"]})
    await store.insert("community_members", {"user_id": "u1", "community_id": "c1", "role": "member"})


@pytest.mark.asyncio
class TestInterestVectorBuilder:
    async def test_missing_ids(self, store, audit):
        with pytest.raises(ValueError):
            await InterestVectorBuilder(store, make_llm(), audit).generate("", "c1")

    async def test_missing_profile(self, store, audit):
        with pytest.raises(LookupError, match="Profile not found"):
            await InterestVectorBuilder(store, make_llm(), audit).generate("u1", "c1")

    async def test_embeds_profile_and_community(self, store, audit):
        await _seed_profile(store)
        llm = make_llm(embedding=[0.5, 0.25])
        embedding = await InterestVectorBuilder(store, llm, audit).generate("u1", "c1")

        assert embedding == [0.5, 0.25]
        embedded_text = llm.embed.call_args.args[0]
        assert "yoga" in embedded_text and "postpartum" in embedded_text
        row = await store.get("user_interest_vectors", {"user_id": "u1", "community_id": "c1"})
        assert row["embedding"] == [0.5, 0.25]

    async def test_embedding_error_stores_zero_vector(self, store, audit, unconfigured_llm):
        await _seed_profile(store)
        unconfigured_llm.embed = AsyncMock(return_value={"embedding": [], "error": "no_api_key"})
        embedding = await InterestVectorBuilder(store, unconfigured_llm, audit).generate("u1", "c1")

        assert len(embedding) == EMBEDDING_DIMENSIONS
        assert not any(embedding)
        errors = [e for e in await audit.read_all("user_vector_generation") if e["status"] == "error"]
        assert errors[0]["error_message"] == "No OpenAI API key"

    async def test_generate_all(self, store, audit):
        await _seed_profile(store)
        await store.insert("community_members", {"user_id": "u1", "community_id": "gone", "role": "member"})
        assert await InterestVectorBuilder(store, make_llm(), audit).generate_all("u1") == 1


@pytest.mark.asyncio
class TestEventEmbeddingBuilder:
    async def test_missing_fields(self, store, audit):
        with pytest.raises(ValueError, match="Missing required fields"):
            await EventEmbeddingBuilder(store, make_llm(), audit).generate("e1", "", "", "c1")

    async def test_embeds_event_with_community_profile(self, store, audit):
        await store.insert("ai_community_profiles", {
            "community_id": "c1", "event_types": ["stroller walk"], "common_topics": ["sleep"],
        })
        llm = make_llm(embedding=[0.3, 0.6])
        embedding = await EventEmbeddingBuilder(store, llm, audit).generate("e1", "Park Walk", "Bring the kids", "c1")

        assert embedding == [0.3, 0.6]
        embedded_text = llm.embed.call_args.args[0]
        assert "Park Walk" in embedded_text and "stroller walk" in embedded_text and "sleep" in embedded_text
        assert (await store.get("event_embeddings", {"event_id": "e1"}))["embedding"] == [0.3, 0.6]
        statuses = [e["status"] for e in await audit.read_all("event_embedding_generation")]
        assert statuses == ["success"]

    async def test_embedding_error_stores_zero_vector(self, store, audit, unconfigured_llm):
        unconfigured_llm.embed = AsyncMock(return_value={"embedding": [], "error": "no_api_key"})
        builder = EventEmbeddingBuilder(store, unconfigured_llm, audit)
        embedding = await builder.generate("e1", "Park Walk", "", "c1")

        assert len(embedding) == EMBEDDING_DIMENSIONS
        assert not any(embedding)
        assert len(await store.select("event_embeddings")) == 1
        await builder.generate("e1", "Park Walk", "", "c1")
        assert len(await store.select("event_embeddings")) == 1

    async def test_store_failure_raises(self, audit):
        broken = MagicMock()
        broken.get = AsyncMock(return_value=None)
        broken.upsert = AsyncMock(side_effect=RuntimeError("db down"))
        with pytest.raises(RuntimeError, match="Failed to save event embedding"):
            await EventEmbeddingBuilder(broken, make_llm(), audit).generate("e1", "Walk", "", "c1")
        errors = await audit.read_all("event_embedding_generation")
        assert errors[0]["error_message"] == "db down"


@pytest.mark.asyncio
class TestPersonalizedRecommender:
    async def test_unconfigured_llm_uses_simple_bundle(self, store, audit, unconfigured_llm):
        bundle = await PersonalizedRecommender(store, unconfigured_llm, audit).generate("u1", "c1")
        assert bundle == simple_recommendations()
        assert await store.get("user_recommendations", {"user_id": "u1"}) is not None

    async def test_llm_bundle_with_vector(self, store, audit):
        await store.insert("user_interest_vectors", {"user_id": "u1", "community_id": "c1", "embedding": [0.1, 0.2]})
        llm = make_llm('{"eventRecommendations": [{"type": "yoga", "description": "Morning flow"}], "suggestedTags": ["yoga"]}')
        bundle = await PersonalizedRecommender(store, llm, audit).generate("u1", "c1")
        assert bundle["suggestedTags"] == ["yoga"]
        assert bundle["eventRecommendations"][0]["type"] == "yoga"

    async def test_without_vector_skips_llm(self, store, audit):
        llm = make_llm("{}")
        bundle = await PersonalizedRecommender(store, llm, audit).generate("u1", "c1")
        assert bundle == simple_recommendations()
        llm.complete.assert_not_awaited()

    async def test_unparseable_reply_falls_back(self, store, audit):
        await store.insert("user_interest_vectors", {"user_id": "u1", "community_id": "c1", "embedding": [0.1]})
        bundle = await PersonalizedRecommender(store, make_llm("sorry, no"), audit).generate("u1", "c1")
        assert bundle == simple_recommendations()

    async def test_cache_freshness(self, store, audit):
        await store.insert("user_recommendations", {
            "user_id": "u1", "community_id": "c1",
            "recommendations": {"suggestedTags": ["cached"]},
            "updated_at": (NOW - timedelta(hours=2)).isoformat(),
        })
        recommender = PersonalizedRecommender(store, make_llm(configured=False), audit)

        fresh = await recommender.get_cached_or_generate("u1", "c1", now=NOW)
        assert fresh == {"suggestedTags": ["cached"]}

        stale = await recommender.get_cached_or_generate("u1", "c1", now=NOW + timedelta(days=2))
        assert stale == simple_recommendations()

    async def test_positive_feedback_refreshes_vectors(self, store, audit):
        recommender = PersonalizedRecommender(store, make_llm(), audit)
        recommender._vectors = MagicMock()
        recommender._vectors.generate_all = AsyncMock(return_value=1)

        assert await recommender.record_feedback("u1", "event", "e1", True, "Loved this recommendation")
        recommender._vectors.generate_all.assert_awaited_once_with("u1")
        assert (await store.select("ai_interactions"))[0]["feedback"] == "positive"

        assert await recommender.record_feedback("u1", "event", "e1", False, "Not for me at all")
        assert recommender._vectors.generate_all.await_count == 1


@pytest.mark.asyncio
class TestPersonalisedTags:
    async def test_popular_tags_for_anonymous(self, store):
        upcoming = [{"tags": ["yoga", "outdoor"]}, {"tags": ["yoga"]}]
        past = [{"tags": ["running"]}]
        tags = await get_personalised_tags(store, None, None, None, upcoming, past)
        assert tags[0] == "yoga"
        assert set(tags) == {"yoga", "outdoor", "running"}

    async def test_personal_tags_from_rsvps_and_memberships(self, store):
        await store.insert("community_events", {"id": "e1", "tags": ["hiking"]})
        await store.insert("event_rsvps", {"event_id": "e1", "user_id": "u1", "status": "going"})
        await store.insert("communities", {"id": "c1", "tags": ["postpartum", "hiking"]})
        await store.insert("community_members", {"user_id": "u1", "community_id": "c1", "role": "member"})

        tags = await get_personalised_tags(store, None, "u1", None, [], [])

        assert tags == ["hiking", "postpartum"]
