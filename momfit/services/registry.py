"""
Service Registry: wires the data store and LLM clients into every service
and AI component. The API builds one at startup; tests build their own
around a temporary store and mocked LLM clients.
"""

import logging
import random
from typing import Optional

from momfit.ai.chat_assistant import ChatAssistant
from momfit.ai.community_profile import CommunityProfiler, CrossCommunityLearner
from momfit.ai.events import EventPlanner
from momfit.ai.intent import IntentDetector
from momfit.ai.orchestrator import ChatOrchestrator
from momfit.ai.recommendations import (
    EventEmbeddingBuilder,
    InterestVectorBuilder,
    PersonalizedRecommender,
    RecommendationEngine,
)
from momfit.ai.user_learning import UserLearningProcessor
from momfit.services.communities import CommunityService
from momfit.services.events import EventService
from momfit.services.messaging import MessagingService
from momfit.services.posts import PostService
from momfit.services.profiles import ProfileService
from momfit.shared.ai_gateway import ContentGateway
from momfit.shared.audit_log import GenerationAuditLog
from momfit.shared.config import AppConfig
from momfit.shared.interfaces import IDataStore, ILLMClient
from momfit.shared.security import AccessGuard, RoleManager

logger = logging.getLogger(__name__)


class ServiceRegistry:
    """Owns one instance of every service, sharing the store, audit log and gateway."""

    def __init__(
        self,
        config: AppConfig,
        store: IDataStore,
        llm: ILLMClient,
        secondary_llm: Optional[ILLMClient] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.store = store
        self.llm = llm
        self.secondary_llm = secondary_llm

        self.audit = GenerationAuditLog(store)
        self.gateway = ContentGateway()
        self.guard = AccessGuard(store)
        self.roles = RoleManager(store)

        self.profiles = ProfileService(store)
        self.communities = CommunityService(store, self.guard, self.roles)
        self.posts = PostService(store, self.guard, self.gateway)
        self.events = EventService(store, self.guard)
        self.messaging = MessagingService(store, self.guard)

        self.detector = IntentDetector(llm, store, secondary_llm, self.audit, self.gateway)
        self.planner = EventPlanner(store, self.detector, self.audit)
        self.assistant = ChatAssistant(store, rng)
        self.orchestrator = ChatOrchestrator(self.detector, self.planner, llm, store, self.assistant, self.gateway)
        self.recommendation_engine = RecommendationEngine(store, self.assistant)
        self.interest_vectors = InterestVectorBuilder(store, llm, self.audit)
        self.event_embeddings = EventEmbeddingBuilder(store, llm, self.audit)
        self.user_learning = UserLearningProcessor(store, llm, self.audit, self.gateway)
        self.recommender = PersonalizedRecommender(
            store, llm, self.audit, config.recommendations, self.interest_vectors
        )
        self.profiler = CommunityProfiler(store, llm, self.audit)
        self.learner = CrossCommunityLearner(store)

        if not llm.is_configured:
            logger.warning("Primary LLM provider has no API key; AI features will use rule-based fallbacks")
        if secondary_llm is not None:
            logger.info("Secondary LLM provider enabled for intent detection")
