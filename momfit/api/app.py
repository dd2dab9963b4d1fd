"""
FastAPI application - HTTP surface for the MomFit community backend.
Serves the serverless-function equivalents under /functions and the
application REST API under /api.
"""

import contextvars
import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware

from momfit.ai.chat_assistant import ChatContext
from momfit.ai.llm_client import create_llm_client, create_secondary_llm_client
from momfit.ai.recommendations import RecommendationContext, get_personalised_tags
from momfit.services.registry import ServiceRegistry
from momfit.shared.config import load_config
from momfit.shared.models import CommunityRole, parse_timestamp
from momfit.store.factory import create_data_store

logger = logging.getLogger(__name__)

# ── Request ID tracking via ContextVar ────────────────────────────────────────
_request_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


class RequestIDFilter(logging.Filter):
    """Injects the current request ID into every log record."""
    def filter(self, record):
        record.request_id = _request_id_ctx.get("-")
        return True


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Generates a unique request ID, stores it in ContextVar, adds to response header."""
    async def dispatch(self, request: Request, call_next):
        request_id = uuid.uuid4().hex[:12]
        _request_id_ctx.set(request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# Global references set during lifespan
_registry: ServiceRegistry = None
_config = None


def _configure_logging(config) -> None:  # pragma: no cover
    log_level = getattr(logging, config.log_level, logging.INFO)
    rid_filter = RequestIDFilter()
    formatter = logging.Formatter("%(asctime)s %(levelname)s [%(request_id)s] %(name)s:%(message)s")

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addFilter(rid_filter)
    if not root_logger.handlers:
        console = logging.StreamHandler()
        console.setLevel(log_level)
        root_logger.addHandler(console)
    for handler in root_logger.handlers:
        handler.setFormatter(formatter)
        handler.addFilter(rid_filter)

    # uvicorn loggers don't propagate to root
    uvicorn_loggers = [logging.getLogger(name) for name in ("uvicorn", "uvicorn.access", "uvicorn.error")]
    for uv_log in uvicorn_loggers:
        uv_log.addFilter(rid_filter)
        for handler in uv_log.handlers:
            handler.setFormatter(formatter)
            handler.addFilter(rid_filter)

    if config.log_file_dir:
        os.makedirs(config.log_file_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        log_file = os.path.join(config.log_file_dir, f"momfit_{timestamp}.log")
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(rid_filter)
        root_logger.addHandler(file_handler)
        for uv_log in uvicorn_loggers:
            uv_log.addHandler(file_handler)
        logger.info(f"Logging to file: {log_file}")


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover
    """Application startup and shutdown."""
    global _registry, _config

    _config = load_config()
    _configure_logging(_config)

    store = create_data_store(_config.store)
    llm = create_llm_client(_config)
    secondary = create_secondary_llm_client(_config)
    _registry = ServiceRegistry(_config, store, llm, secondary)

    logger.info(f"MomFit backend started ({_config.environment}, LLM provider {_config.llm_provider.value})")
    yield
    logger.info("MomFit backend shutdown")


app = FastAPI(
    title="MomFit",
    description="Community backend with AI-assisted chat, events and recommendations",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(load_config().cors_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*", "X-Request-ID", "X-User-Id"],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(RequestIDMiddleware)


# --- Error mapping ---

@app.exception_handler(ValueError)
async def _value_error(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(PermissionError)
async def _permission_error(request: Request, exc: PermissionError):
    return JSONResponse(status_code=403, content={"error": str(exc)})


@app.exception_handler(LookupError)
async def _lookup_error(request: Request, exc: LookupError):
    if isinstance(exc, (KeyError, IndexError)):
        logger.error(f"Unhandled {type(exc).__name__} on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
    return JSONResponse(status_code=404, content={"error": str(exc)})


# --- Dependencies ---

def _services() -> ServiceRegistry:
    if not _registry:
        raise HTTPException(503, "Not ready")
    return _registry


def _caller(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity; required on user-scoped routes."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(401, "Missing X-User-Id header")
    return x_user_id.strip()


def _optional_caller(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    return x_user_id.strip() if x_user_id and x_user_id.strip() else None


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


# --- Pydantic models for request validation ---

class PersonalizedRecommendationsRequest(BaseModel):
    userId: Optional[str] = None
    communityId: Optional[str] = None
    recommendationType: str = "all"


class IntentPromptRequest(BaseModel):
    prompt: Optional[str] = None


class GenerateProfileRequest(BaseModel):
    communityId: Optional[str] = None


class AutoTagRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    community_id: Optional[str] = None


class InterestVectorRequest(BaseModel):
    user_id: Optional[str] = None
    community_id: Optional[str] = None


class EventEmbeddingRequest(BaseModel):
    event_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    community_id: Optional[str] = None


class UserLearningRequest(BaseModel):
    userId: Optional[str] = None
    communityId: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    display_name: str = Field(min_length=1)
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    interests: Optional[list[str]] = None
    custom_interests: Optional[list[str]] = None
    fitness_goals: Optional[list[str]] = None
    experience_level: Optional[str] = None
    age_range: Optional[str] = None
    location: Optional[str] = None


class CreateCommunityRequest(BaseModel):
    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    tags: list[str] = Field(default_factory=list)
    requires_approval: bool = False
    image_url: Optional[str] = None


class JoinRequestBody(BaseModel):
    message: str = ""


class ReviewJoinRequest(BaseModel):
    approve: bool


class MemberRoleRequest(BaseModel):
    role: str


class CreatePostRequest(BaseModel):
    content: str = Field(min_length=1)


class CreateEventRequest(BaseModel):
    title: str = Field(min_length=1)
    start_time: str = Field(min_length=1)
    end_time: Optional[str] = None
    description: str = ""
    location: Optional[str] = None
    capacity: Optional[int] = None
    is_online: bool = False
    meeting_url: Optional[str] = None
    tags: Optional[list[str]] = None


class RSVPRequest(BaseModel):
    status: str = "going"


class DirectMessageRequest(BaseModel):
    recipient_id: str = Field(min_length=1)
    content: str = Field(min_length=1)


class BlockRequest(BaseModel):
    user_id: str = Field(min_length=1)


class ChatMessageRequest(BaseModel):
    text: str = Field(min_length=1)
    message_id: Optional[str] = None
    enable_event_creation: bool = True
    enable_admin_alerts: bool = True
    enable_ai_reply: bool = True


class RecommendationsRequest(BaseModel):
    current_message: Optional[str] = None


class SuggestionUsageRequest(BaseModel):
    suggestion_id: str = Field(min_length=1)
    community_id: str = Field(min_length=1)
    text: str = ""


class FeedbackRequest(BaseModel):
    content_type: str = Field(min_length=1)
    content_id: str = Field(min_length=1)
    is_positive: bool
    details: Optional[str] = None


class TextRequest(BaseModel):
    text: str


# --- Health & config ---

@app.get("/api/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/api/config")
async def get_config():
    """Return safe configuration values (no API keys)."""
    if not _config:
        raise HTTPException(503, "Not ready")
    return {
        "llm_provider": _config.llm_provider.value,
        "secondary_llm_provider": _config.secondary_llm_provider or None,
        "store_backend": _config.store.backend.value,
        "recommendation_freshness_hours": _config.recommendations.freshness_hours,
        "log_level": _config.log_level,
        "environment": _config.environment,
        "llm_usage": await _registry.llm.get_usage() if _registry else None,
    }


# --- Serverless-function equivalents ---

@app.post("/functions/personalized-recommendations")
async def personalized_recommendations(req: PersonalizedRecommendationsRequest):
    services = _services()
    if not req.userId or not req.communityId:
        return _error(400, "Missing userId or communityId")
    try:
        recommendations = await services.recommender.generate(req.userId, req.communityId, req.recommendationType)
    except Exception as e:
        logger.error(f"Error in personalized-recommendations: {e}")
        return _error(500, str(e))
    return {"success": True, "recommendations": recommendations}


@app.post("/functions/openai-intent")
async def openai_intent(req: IntentPromptRequest):
    services = _services()
    if not req.prompt:
        return _error(400, "Missing prompt")
    try:
        result = await services.detector.describe_intent(req.prompt)
    except RuntimeError as e:
        return _error(500, str(e))
    return {"result": result}


@app.post("/functions/generate-ai-profile")
async def generate_ai_profile(req: GenerateProfileRequest):
    services = _services()
    if not req.communityId:
        return _error(400, "Community ID is required")
    result = await services.profiler.generate(req.communityId)
    message = "Default AI profile created due to error" if result["was_default"] else "AI profile generated successfully"
    return {
        "success": True,
        "message": message,
        "profile": result["profile"],
        "wasDefault": result["was_default"],
    }


@app.post("/functions/auto-tag-events")
async def auto_tag_events(req: AutoTagRequest):
    services = _services()
    tags = await services.planner.auto_tag(req.title or "", req.description or "", req.community_id or "")
    return {"tags": tags}


@app.post("/functions/generate-user-interest-vector")
async def generate_user_interest_vector(req: InterestVectorRequest):
    services = _services()
    if not req.user_id or not req.community_id:
        return _error(400, "Missing user_id or community_id")
    try:
        embedding = await services.interest_vectors.generate(req.user_id, req.community_id)
    except RuntimeError as e:
        return _error(500, str(e))
    return {"success": True, "embedding": embedding[:10]}


@app.post("/functions/generate-event-embedding")
async def generate_event_embedding(req: EventEmbeddingRequest):
    services = _services()
    try:
        await services.event_embeddings.generate(
            req.event_id or "", req.title or "", req.description or "", req.community_id or ""
        )
    except RuntimeError as e:
        return _error(500, str(e))
    return {"event_id": req.event_id, "success": True}


@app.post("/functions/user-learning-processor")
async def user_learning_processor(req: UserLearningRequest):
    services = _services()
    if not req.userId:
        return _error(400, "User ID is required")
    try:
        result = await services.user_learning.process(req.userId, req.communityId)
    except RuntimeError as e:
        logger.error(f"User learning failed for {req.userId}: {e}")
        return JSONResponse(status_code=500, content={
            "error": "Failed to process user learning", "details": str(e),
        })
    return {
        "success": True,
        "message": "User learning processed successfully",
        "insights": result["insights"],
        "wasDefault": result["was_default"],
    }


@app.post("/functions/cross-community-learning")
async def cross_community_learning():
    services = _services()
    try:
        return await services.learner.run()
    except Exception as e:
        logger.error(f"Cross-community learning failed: {e}")
        return JSONResponse(status_code=500, content={
            "error": "Failed to process cross-community learning", "details": str(e),
        })


@app.post("/functions/scheduled-profile-updates")
async def scheduled_profile_updates():
    services = _services()
    try:
        processed = await services.profiler.refresh_profiles()
    except Exception as e:
        logger.error(f"Scheduled profile updates failed: {e}")
        return JSONResponse(status_code=500, content={
            "error": "Failed to process scheduled updates", "details": str(e),
        })
    return {"success": True, "processed": len(processed), "results": processed}


# --- Profiles ---

@app.get("/api/profiles/{user_id}")
async def get_profile(user_id: str, caller: str = Depends(_caller)):
    return (await _services().profiles.get(user_id)).to_dict()


@app.put("/api/profiles/{user_id}")
async def update_profile(user_id: str, req: ProfileUpdateRequest, caller: str = Depends(_caller)):
    profile = await _services().profiles.upsert(caller, user_id, req.model_dump(exclude_unset=True))
    return profile.to_dict()


# --- Communities ---

@app.post("/api/communities")
async def create_community(req: CreateCommunityRequest, caller: str = Depends(_caller)):
    community = await _services().communities.create(
        caller, req.name, req.description, req.tags, req.requires_approval, req.image_url
    )
    return community.to_dict()


@app.get("/api/communities")
async def list_communities(
    tag: Optional[str] = None, page: int = 0, caller: Optional[str] = Depends(_optional_caller)
):
    return {"communities": await _services().communities.list_active(caller, tag, page)}


@app.get("/api/communities/slug/{slug}")
async def get_community_by_slug(slug: str):
    return (await _services().communities.get_by_slug(slug)).to_dict()


@app.get("/api/communities/{community_id}")
async def get_community(community_id: str):
    return (await _services().communities.get(community_id)).to_dict()


@app.delete("/api/communities/{community_id}")
async def deactivate_community(community_id: str, caller: str = Depends(_caller)):
    return (await _services().communities.deactivate(caller, community_id)).to_dict()


@app.post("/api/communities/{community_id}/join")
async def join_community(community_id: str, req: Optional[JoinRequestBody] = None, caller: str = Depends(_caller)):
    return await _services().communities.join(caller, community_id, req.message if req else "")


@app.post("/api/communities/{community_id}/leave")
async def leave_community(community_id: str, caller: str = Depends(_caller)):
    await _services().communities.leave(caller, community_id)
    return {"status": "left"}


@app.get("/api/communities/{community_id}/members")
async def list_members(community_id: str, caller: str = Depends(_caller)):
    members = await _services().communities.list_members(caller, community_id)
    return {"members": [m.to_dict() for m in members]}


@app.put("/api/communities/{community_id}/members/{user_id}/role")
async def update_member_role(
    community_id: str, user_id: str, req: MemberRoleRequest, caller: str = Depends(_caller)
):
    try:
        role = CommunityRole(req.role)
    except ValueError:
        raise ValueError(f"Invalid role: {req.role}")
    member = await _services().communities.update_member_role(caller, community_id, user_id, role)
    return member.to_dict()


@app.get("/api/communities/{community_id}/join-requests")
async def list_join_requests(community_id: str, caller: str = Depends(_caller)):
    requests = await _services().communities.list_join_requests(caller, community_id)
    return {"requests": [r.to_dict() for r in requests]}


@app.post("/api/join-requests/{request_id}/review")
async def review_join_request(request_id: str, req: ReviewJoinRequest, caller: str = Depends(_caller)):
    reviewed = await _services().communities.review_join_request(request_id, caller, req.approve)
    return reviewed.to_dict()


# --- Posts ---

@app.post("/api/communities/{community_id}/posts")
async def create_post(community_id: str, req: CreatePostRequest, caller: str = Depends(_caller)):
    return (await _services().posts.create_post(caller, community_id, req.content)).to_dict()


@app.get("/api/communities/{community_id}/posts")
async def list_posts(community_id: str, limit: int = 50):
    posts = await _services().posts.list_posts(community_id, limit)
    return {"posts": [p.to_dict() for p in posts]}


@app.delete("/api/posts/{post_id}")
async def delete_post(post_id: str, caller: str = Depends(_caller)):
    await _services().posts.delete_post(caller, post_id)
    return {"status": "deleted"}


# --- Events ---

@app.post("/api/communities/{community_id}/events")
async def create_event(community_id: str, req: CreateEventRequest, caller: str = Depends(_caller)):
    event = await _services().events.create_event(
        caller, community_id, req.title, req.start_time,
        end_time=req.end_time, description=req.description, location=req.location,
        capacity=req.capacity, is_online=req.is_online, meeting_url=req.meeting_url, tags=req.tags,
    )
    return event.to_dict()


@app.get("/api/communities/{community_id}/events")
async def list_upcoming_events(community_id: str):
    events = await _services().events.list_upcoming(community_id)
    return {"events": [e.to_dict() for e in events]}


@app.post("/api/events/{event_id}/rsvp")
async def rsvp_event(event_id: str, req: RSVPRequest, caller: str = Depends(_caller)):
    return (await _services().events.rsvp(caller, event_id, req.status)).to_dict()


# --- Direct messages ---

@app.post("/api/messages")
async def send_message(req: DirectMessageRequest, caller: str = Depends(_caller)):
    message = await _services().messaging.send_direct_message(caller, req.recipient_id, req.content)
    return message.to_dict()


@app.get("/api/messages/{other_id}")
async def get_conversation(other_id: str, caller: str = Depends(_caller)):
    messages = await _services().messaging.list_conversation(caller, other_id)
    return {"messages": [m.to_dict() for m in messages]}


@app.post("/api/blocks")
async def block_user(req: BlockRequest, caller: str = Depends(_caller)):
    await _services().messaging.block_user(caller, req.user_id)
    return {"status": "blocked"}


@app.delete("/api/blocks/{user_id}")
async def unblock_user(user_id: str, caller: str = Depends(_caller)):
    removed = await _services().messaging.unblock_user(caller, user_id)
    return {"status": "unblocked" if removed else "not_blocked"}


# --- Chat & AI assistance ---

async def _chat_context(services: ServiceRegistry, caller: str, community_id: str) -> tuple[list, Optional[dict]]:
    posts = await services.store.select(
        "community_posts", {"community_id": community_id}, order_by="created_at", descending=True, limit=20
    )
    profile = await services.store.get("profiles", {"id": caller})
    return list(reversed(posts)), profile


@app.post("/api/communities/{community_id}/chat")
async def chat_message(community_id: str, req: ChatMessageRequest, caller: str = Depends(_caller)):
    services = _services()
    await services.guard.require_member(caller, community_id)
    result = await services.orchestrator.handle_new_message(
        req.text, community_id, caller,
        enable_event_creation=req.enable_event_creation,
        enable_admin_alerts=req.enable_admin_alerts,
        enable_ai_reply=req.enable_ai_reply,
        message_id=req.message_id,
    )
    return result.to_dict()


@app.get("/api/communities/{community_id}/suggestions")
async def get_suggestions(community_id: str, caller: str = Depends(_caller)):
    services = _services()
    await services.guard.require_member(caller, community_id)
    recent, profile = await _chat_context(services, caller, community_id)
    suggestions = await services.assistant.get_suggestions(ChatContext(caller, community_id, recent, profile))
    return {"suggestions": [s.to_dict() for s in suggestions]}


@app.post("/api/communities/{community_id}/recommendations")
async def get_recommendations(community_id: str, req: RecommendationsRequest, caller: str = Depends(_caller)):
    services = _services()
    await services.guard.require_member(caller, community_id)
    recent, profile = await _chat_context(services, caller, community_id)
    recommendations = await services.recommendation_engine.get_recommendations(RecommendationContext(
        community_id=community_id,
        user_id=caller,
        recent_messages=recent,
        user_profile=profile,
        current_message=req.current_message,
    ))
    return {"recommendations": [r.to_dict() for r in recommendations]}


@app.post("/api/suggestions/usage")
async def record_suggestion_usage(req: SuggestionUsageRequest, caller: str = Depends(_caller)):
    await _services().assistant.save_suggestion_usage(req.suggestion_id, caller, req.community_id, req.text)
    return {"status": "recorded"}


@app.post("/api/recommendations/feedback")
async def recommendation_feedback(req: FeedbackRequest, caller: str = Depends(_caller)):
    recorded = await _services().recommender.record_feedback(
        caller, req.content_type, req.content_id, req.is_positive, req.details
    )
    return {"recorded": recorded}


@app.post("/api/analyze")
async def analyze_text(req: TextRequest):
    """Sentiment, tone and moderation verdict for a draft message."""
    services = _services()
    return {
        "sentiment": services.orchestrator.analyze_sentiment(req.text),
        "tone": services.assistant.analyze_message_tone(req.text),
        "moderation": services.orchestrator.moderate_message(req.text),
    }


@app.get("/api/tags/personalised")
async def personalised_tags(
    community_id: Optional[str] = None, caller: Optional[str] = Depends(_optional_caller)
):
    services = _services()
    now = datetime.now(timezone.utc)
    filters = {"community_id": community_id} if community_id else None
    upcoming, past = [], []
    for event in await services.store.select("community_events", filters):
        start = parse_timestamp(event.get("start_time"))
        (upcoming if start is not None and start >= now else past).append(event)
    tags = await get_personalised_tags(
        services.store, services.recommender, caller, community_id, upcoming, past
    )
    return {"tags": tags}
