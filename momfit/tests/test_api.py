"""
Tests for the FastAPI endpoints.
The module-level registry is patched with one built around a temporary
JSON store and a mocked LLM client.
"""

import random
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from httpx import AsyncClient, ASGITransport

from conftest import make_llm, seed_community
from momfit.api.app import app
from momfit.services.registry import ServiceRegistry


def _client():
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _as(user_id):
    return {"X-User-Id": user_id}


@pytest.mark.asyncio
class TestHealthAndConfig:
    async def test_health(self):
        async with _client() as client:
            resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert "X-Request-ID" in resp.headers

    async def test_config_not_ready(self):
        with patch("momfit.api.app._config", None):
            async with _client() as client:
                resp = await client.get("/api/config")
        assert resp.status_code == 503

    async def test_config_has_no_secrets(self, app_config):
        with patch("momfit.api.app._config", app_config):
            async with _client() as client:
                data = (await client.get("/api/config")).json()
        assert data["llm_provider"] == "openai"
        assert data["environment"] == "test"
        assert not any("key" in k for k in data)

    async def test_config_reports_llm_usage(self, app_config, registry):
        registry.llm.get_usage.return_value = {"total_input_tokens": 12, "total_output_tokens": 5}
        with patch("momfit.api.app._config", app_config), patch("momfit.api.app._registry", registry):
            async with _client() as client:
                data = (await client.get("/api/config")).json()
        assert data["llm_usage"] == {"total_input_tokens": 12, "total_output_tokens": 5}

    async def test_services_not_ready(self):
        with patch("momfit.api.app._registry", None):
            async with _client() as client:
                resp = await client.get("/api/communities")
        assert resp.status_code == 503


@pytest.mark.asyncio
class TestProfilesApi:
    async def test_missing_identity(self, registry):
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                resp = await client.put("/api/profiles/u1", json={"display_name": "Ana"})
        assert resp.status_code == 401

    async def test_update_and_read(self, registry):
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                put = await client.put("/api/profiles/u1", json={"display_name": "Ana", "interests": ["yoga"]},
                                       headers=_as("u1"))
                get = await client.get("/api/profiles/u1", headers=_as("u2"))
                forbidden = await client.put("/api/profiles/u1", json={"display_name": "X"}, headers=_as("u2"))
                missing = await client.get("/api/profiles/nobody", headers=_as("u1"))
        assert put.status_code == 200
        assert get.json()["interests"] == ["yoga"]
        assert forbidden.status_code == 403
        assert missing.status_code == 404
        assert missing.json() == {"error": "Profile not found"}


@pytest.mark.asyncio
class TestCommunitiesApi:
    async def test_create_list_and_slug(self, registry):
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                created = await client.post("/api/communities", json={
                    "name": "Stroller Fit Moms", "description": "Walks", "tags": ["walking"],
                }, headers=_as("owner"))
                listed = await client.get("/api/communities", headers=_as("owner"))
                by_slug = await client.get("/api/communities/slug/stroller-fit-moms")
                blank = await client.post("/api/communities", json={"name": " ", "description": "x"},
                                          headers=_as("owner"))
        assert created.status_code == 200
        assert listed.json()["communities"][0]["is_member"] is True
        assert by_slug.json()["id"] == created.json()["id"]
        assert blank.status_code == 400

    async def test_membership_routes(self, registry):
        community = await seed_community(registry)
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                joined = await client.post(f"/api/communities/{community.id}/join", headers=_as("newbie"))
                members_denied = await client.get(f"/api/communities/{community.id}/members", headers=_as("newbie"))
                members = await client.get(f"/api/communities/{community.id}/members", headers=_as("owner"))
                bad_role = await client.put(f"/api/communities/{community.id}/members/newbie/role",
                                            json={"role": "owner"}, headers=_as("owner"))
                promoted = await client.put(f"/api/communities/{community.id}/members/newbie/role",
                                            json={"role": "co-admin"}, headers=_as("owner"))
                left = await client.post(f"/api/communities/{community.id}/leave", headers=_as("member"))
                last_admin = await client.post(f"/api/communities/{community.id}/leave", headers=_as("owner"))
        assert joined.json()["status"] == "member"
        assert members_denied.status_code == 403
        assert len(members.json()["members"]) == 3
        assert bad_role.status_code == 400
        assert promoted.json()["role"] == "co-admin"
        assert left.json() == {"status": "left"}
        assert last_admin.status_code == 400

    async def test_join_request_review(self, registry):
        community = await registry.communities.create("owner", "Private", "Invite only", requires_approval=True)
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                pending = await client.post(f"/api/communities/{community.id}/join",
                                            json={"message": "Hi!"}, headers=_as("newbie"))
                listed = await client.get(f"/api/communities/{community.id}/join-requests", headers=_as("owner"))
                request_id = pending.json()["request"]["id"]
                reviewed = await client.post(f"/api/join-requests/{request_id}/review",
                                             json={"approve": True}, headers=_as("owner"))
                missing = await client.post("/api/join-requests/nope/review",
                                            json={"approve": True}, headers=_as("owner"))
        assert pending.json()["status"] == "pending"
        assert len(listed.json()["requests"]) == 1
        assert reviewed.json()["status"] == "approved"
        assert missing.status_code == 404

    async def test_deactivate(self, registry):
        community = await seed_community(registry)
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                denied = await client.delete(f"/api/communities/{community.id}", headers=_as("member"))
                ok = await client.delete(f"/api/communities/{community.id}", headers=_as("owner"))
                gone = await client.get(f"/api/communities/{community.id}")
        assert denied.status_code == 403
        assert ok.json()["is_active"] is False
        assert gone.status_code == 404


@pytest.mark.asyncio
class TestPostsEventsMessagesApi:
    async def test_posts(self, registry):
        community = await seed_community(registry)
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                created = await client.post(f"/api/communities/{community.id}/posts",
                                            json={"content": "Walked 5k today!"}, headers=_as("member"))
                unsafe = await client.post(f"/api/communities/{community.id}/posts",
                                           json={"content": "I will hurt you"}, headers=_as("member"))
                empty = await client.post(f"/api/communities/{community.id}/posts",
                                          json={"content": ""}, headers=_as("member"))
                listed = await client.get(f"/api/communities/{community.id}/posts")
                deleted = await client.delete(f"/api/posts/{created.json()['id']}", headers=_as("member"))
        assert created.status_code == 200
        assert unsafe.status_code == 400
        assert empty.status_code == 422
        assert len(listed.json()["posts"]) == 1
        assert deleted.json() == {"status": "deleted"}

    async def test_events_and_rsvp(self, registry):
        community = await seed_community(registry)
        start = (datetime.now(timezone.utc) + timedelta(days=2)).isoformat()
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                created = await client.post(f"/api/communities/{community.id}/events",
                                            json={"title": "Park Yoga", "start_time": start}, headers=_as("member"))
                listed = await client.get(f"/api/communities/{community.id}/events")
                rsvp = await client.post(f"/api/events/{created.json()['id']}/rsvp",
                                         json={"status": "going"}, headers=_as("owner"))
                bad = await client.post(f"/api/events/{created.json()['id']}/rsvp",
                                        json={"status": "sure"}, headers=_as("owner"))
        assert created.json()["tags"] == ["yoga"]
        assert len(listed.json()["events"]) == 1
        assert rsvp.json()["status"] == "going"
        assert bad.status_code == 400

    async def test_messages_and_blocks(self, registry):
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                sent = await client.post("/api/messages", json={"recipient_id": "b", "content": "Hi"},
                                         headers=_as("a"))
                thread = await client.get("/api/messages/a", headers=_as("b"))
                blocked = await client.post("/api/blocks", json={"user_id": "a"}, headers=_as("b"))
                refused = await client.post("/api/messages", json={"recipient_id": "b", "content": "Hi"},
                                            headers=_as("a"))
                unblocked = await client.delete("/api/blocks/a", headers=_as("b"))
        assert sent.status_code == 200
        assert [m["content"] for m in thread.json()["messages"]] == ["Hi"]
        assert blocked.json() == {"status": "blocked"}
        assert refused.status_code == 403
        assert unblocked.json() == {"status": "unblocked"}


@pytest.mark.asyncio
class TestChatApi:
    async def test_chat_creates_event(self, registry):
        community = await seed_community(registry)
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                resp = await client.post(f"/api/communities/{community.id}/chat",
                                         json={"text": "Let's go for a walk tomorrow at 7pm"}, headers=_as("member"))
                outsider = await client.post(f"/api/communities/{community.id}/chat",
                                             json={"text": "hi"}, headers=_as("stranger"))
        assert resp.json()["type"] == "event_created"
        assert resp.json()["event"]["title"] == "Group Walk"
        assert outsider.status_code == 403

    async def test_suggestions_and_recommendations(self, registry):
        community = await seed_community(registry)
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                suggestions = await client.get(f"/api/communities/{community.id}/suggestions", headers=_as("member"))
                recommendations = await client.post(f"/api/communities/{community.id}/recommendations",
                                                    json={"current_message": "How do I start?"}, headers=_as("member"))
                usage = await client.post("/api/suggestions/usage", json={
                    "suggestion_id": suggestions.json()["suggestions"][0]["id"],
                    "community_id": community.id,
                    "text": suggestions.json()["suggestions"][0]["text"],
                }, headers=_as("member"))
                feedback = await client.post("/api/recommendations/feedback", json={
                    "content_type": "event", "content_id": "e1", "is_positive": False,
                }, headers=_as("member"))
        assert 1 <= len(suggestions.json()["suggestions"]) <= 4
        assert recommendations.json()["recommendations"][0]["source"] == "context"
        assert usage.json() == {"status": "recorded"}
        assert feedback.json() == {"recorded": True}

    async def test_analyze(self, registry):
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                data = (await client.post("/api/analyze", json={"text": "I love this group!"})).json()
        assert data["sentiment"]["sentiment"] == "positive"
        assert data["tone"]["tone"] == "enthusiastic"
        assert data["moderation"]["is_safe"] is True

    async def test_personalised_tags(self, registry):
        community = await seed_community(registry)
        await registry.store.insert("community_events", {"community_id": community.id, "tags": ["yoga"]})
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                anonymous = await client.get(f"/api/tags/personalised?community_id={community.id}")
        assert anonymous.json() == {"tags": ["yoga"]}


@pytest.mark.asyncio
class TestFunctionEndpoints:
    async def test_personalized_recommendations(self, registry):
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                missing = await client.post("/functions/personalized-recommendations", json={"userId": "u1"})
                ok = await client.post("/functions/personalized-recommendations",
                                       json={"userId": "u1", "communityId": "c1"})
        assert missing.status_code == 400
        assert missing.json() == {"error": "Missing userId or communityId"}
        assert ok.json()["success"] is True
        assert "eventRecommendations" in ok.json()["recommendations"]

    async def test_openai_intent(self, app_config, store):
        registry = ServiceRegistry(app_config, store, make_llm("create_event"), rng=random.Random(1))
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                missing = await client.post("/functions/openai-intent", json={})
                ok = await client.post("/functions/openai-intent", json={"prompt": "walk at 7"})
        assert missing.status_code == 400
        assert ok.json() == {"result": "create_event"}

    async def test_openai_intent_without_key(self, app_config, store, unconfigured_llm):
        registry = ServiceRegistry(app_config, store, unconfigured_llm)
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                resp = await client.post("/functions/openai-intent", json={"prompt": "walk at 7"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "No OpenAI API key set"}

    async def test_generate_ai_profile(self, registry):
        community = await seed_community(registry)
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                missing = await client.post("/functions/generate-ai-profile", json={})
                unknown = await client.post("/functions/generate-ai-profile", json={"communityId": "nope"})
                ok = await client.post("/functions/generate-ai-profile", json={"communityId": community.id})
        assert missing.json() == {"error": "Community ID is required"}
        assert unknown.status_code == 404
        body = ok.json()
        assert body["wasDefault"] is True
        assert body["message"] == "Default AI profile created due to error"
        assert body["profile"]["commonTopics"] == ["fitness", "postpartum"]

    async def test_auto_tag_events(self, registry):
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                missing = await client.post("/functions/auto-tag-events", json={"title": "Yoga"})
                ok = await client.post("/functions/auto-tag-events", json={
                    "title": "Prenatal Yoga", "description": "Gentle flow", "community_id": "c1",
                })
        assert missing.status_code == 400
        assert ok.json() == {"tags": ["yoga", "prenatal"]}

    async def test_generate_user_interest_vector(self, registry):
        community = await seed_community(registry)
        await registry.profiles.upsert("member", "member", {"display_name": "Ana", "interests": ["running"]})
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                missing = await client.post("/functions/generate-user-interest-vector", json={"user_id": "member"})
                no_profile = await client.post("/functions/generate-user-interest-vector",
                                               json={"user_id": "owner", "community_id": community.id})
                ok = await client.post("/functions/generate-user-interest-vector",
                                       json={"user_id": "member", "community_id": community.id})
        assert missing.status_code == 400
        assert no_profile.status_code == 404
        assert ok.json() == {"success": True, "embedding": [0.1] * 8}

    async def test_generate_event_embedding(self, registry):
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                missing = await client.post("/functions/generate-event-embedding", json={"event_id": "e1"})
                ok = await client.post("/functions/generate-event-embedding", json={
                    "event_id": "e1", "title": "Park Walk", "community_id": "c1",
                })
        assert missing.status_code == 400
        assert "Missing required fields" in missing.json()["error"]
        assert ok.json() == {"event_id": "e1", "success": True}
        assert (await registry.store.get("event_embeddings", {"event_id": "e1"}))["embedding"] == [0.1] * 8

    async def test_user_learning_processor(self, registry):
        await registry.profiles.upsert("member", "member", {"display_name": "Ana", "interests": ["running"]})
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                missing = await client.post("/functions/user-learning-processor", json={})
                ok = await client.post("/functions/user-learning-processor", json={"userId": "member"})
        assert missing.status_code == 400
        assert missing.json() == {"error": "User ID is required"}
        data = ok.json()
        assert data["success"] is True
        assert data["wasDefault"] is True
        assert data["insights"]["interests"] == ["running"]

    async def test_cross_community_learning_and_scheduled_updates(self, registry):
        with patch("momfit.api.app._registry", registry):
            async with _client() as client:
                empty = await client.post("/functions/cross-community-learning")
                await seed_community(registry)
                scheduled = await client.post("/functions/scheduled-profile-updates")
                learned = await client.post("/functions/cross-community-learning")
        assert empty.json()["communitiesAnalyzed"] == 0
        assert scheduled.json()["processed"] == 1
        assert learned.json()["communitiesAnalyzed"] == 1
