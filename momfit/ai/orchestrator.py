"""
Chat orchestrator: routes each new community message by detected intent.

create_event → EventPlanner, admin_alert → admin_notifications rows,
schedule_poll → acknowledgement, anything else → assistant reply.
"""

import logging
from typing import Optional

from momfit.ai.chat_assistant import ChatAssistant, ChatContext
from momfit.ai.events import EventPlanner
from momfit.ai.intent import IntentDetector
from momfit.shared.ai_gateway import ContentGateway
from momfit.shared.constants import INTENT_CONFIDENCE_THRESHOLD
from momfit.shared.interfaces import IDataStore, ILLMClient
from momfit.shared.models import (
    CommunityRole,
    DetectedIntent,
    Intent,
    OrchestratorResult,
    OrchestratorResultType,
)
from momfit.shared.prompts import build_assistant_system_prompt

logger = logging.getLogger(__name__)

DEFAULT_REPLY = "Thanks for sharing with the community! Keep up the great work. 💪"
ADMIN_SUGGESTED_ACTIONS = [
    "Review the message",
    "Take appropriate action",
    "Respond to user if needed",
]
FALLBACK_MESSAGE_SUGGESTIONS = [
    "How's everyone doing today?",
    "Anyone up for a workout session?",
    "Great job everyone! Keep up the motivation! 💪",
]


class ChatOrchestrator:
    """Single entry point for the chat pipeline."""

    def __init__(
        self,
        detector: IntentDetector,
        planner: EventPlanner,
        llm: ILLMClient,
        store: IDataStore,
        assistant: ChatAssistant,
        gateway: Optional[ContentGateway] = None,
    ):
        self._detector = detector
        self._planner = planner
        self._llm = llm
        self._store = store
        self._assistant = assistant
        self._gateway = gateway or ContentGateway()

    async def handle_new_message(
        self,
        text: str,
        community_id: str,
        user_id: str,
        enable_event_creation: bool = True,
        enable_admin_alerts: bool = True,
        enable_ai_reply: bool = True,
        message_id: Optional[str] = None,
    ) -> OrchestratorResult:
        try:
            intent = await self._detector.detect(text, community_id, user_id)
            await self._detector.save_intent(intent, message_id, community_id, user_id)

            if intent.intent == Intent.CREATE_EVENT:
                if enable_event_creation and intent.confidence >= INTENT_CONFIDENCE_THRESHOLD:
                    event = await self._planner.create_event_from_intent(intent, community_id, user_id)
                    if event:
                        return OrchestratorResult(
                            OrchestratorResultType.EVENT_CREATED,
                            event=event,
                            follow_up=f"📅 Event *{event['title']}* created! Should I invite everyone?",
                        )
                return OrchestratorResult(
                    OrchestratorResultType.INTENT_DETECTED,
                    intent=intent,
                    message="Event creation intent detected. An admin will review and create the event.",
                )

            if intent.intent == Intent.ADMIN_ALERT:
                if enable_admin_alerts:
                    notified = await self.send_admin_alert(text, community_id, user_id, intent)
                    logger.info(f"Admin alert from {user_id} in {community_id} sent to {notified} admins")
                    return OrchestratorResult(
                        OrchestratorResultType.ADMIN_ALERT_SENT, message="Admin alert sent successfully."
                    )
                return OrchestratorResult(OrchestratorResultType.NOOP)

            if intent.intent == Intent.SCHEDULE_POLL:
                return OrchestratorResult(
                    OrchestratorResultType.INTENT_DETECTED,
                    intent=intent,
                    message="Poll scheduling feature coming soon!",
                )

            if enable_ai_reply:
                reply = await self.generate_reply(text, community_id, user_id)
                return OrchestratorResult(OrchestratorResultType.AI_REPLY, reply=reply)
            return OrchestratorResult(OrchestratorResultType.NOOP)
        except Exception as e:
            logger.error(f"Error in chat orchestrator: {e}")
            if enable_ai_reply:
                try:
                    reply = await self.generate_reply(text)
                    return OrchestratorResult(OrchestratorResultType.AI_REPLY, reply=reply)
                except Exception as fallback_error:
                    logger.error(f"Fallback AI reply failed: {fallback_error}")
            return OrchestratorResult(OrchestratorResultType.NOOP)

    async def send_admin_alert(
        self, text: str, community_id: str, user_id: str, intent: DetectedIntent
    ) -> int:
        """One admin_notifications row per admin other than the sender; returns the count."""
        try:
            admins = await self._store.select(
                "community_members",
                {"community_id": community_id, "role": CommunityRole.ADMIN.value},
            )
            summary = f"Admin alert: {intent.intent.value} intent detected"
            details = {
                "type": "admin_alert",
                "priority": "medium",
                "summary": summary,
                "category": "admin_alert",
                "details": {
                    "originalMessage": text,
                    "detectedIntent": intent.to_dict(),
                    "suggestedActions": ADMIN_SUGGESTED_ACTIONS,
                },
            }
            count = 0
            for admin in admins:
                if admin["user_id"] == user_id:
                    continue
                await self._store.insert("admin_notifications", {
                    "user_id": admin["user_id"],
                    "community_id": community_id,
                    "message_id": None,
                    "intent_type": intent.intent.value,
                    "intent_details": details,
                    "category": "admin_alert",
                    "summary": summary,
                    "suggested_actions": list(ADMIN_SUGGESTED_ACTIONS),
                    "created_by": user_id,
                    "is_read": False,
                })
                count += 1
            return count
        except Exception as e:
            logger.error(f"Error sending admin alert: {e}")
            return 0

    async def generate_reply(
        self, text: str, community_id: Optional[str] = None, user_id: Optional[str] = None
    ) -> str:
        """
        LLM reply in the community's voice; rule-based reply when the provider fails
        or the text carries a prompt injection.
        """
        community = profile = user_profile = None
        if user_id:
            user_profile = await self._store.get("profiles", {"id": user_id})

        scan = self._gateway.scan_input(text)
        if not scan.is_safe:
            logger.warning(f"Skipping LLM reply: {', '.join(scan.threats)}")
            return self._assistant.get_personalized_response(text, user_profile) or DEFAULT_REPLY

        if community_id:
            community = await self._store.get("communities", {"id": community_id})
            profile = await self._store.get("ai_community_profiles", {"community_id": community_id})

        response = await self._llm.complete(text, system=build_assistant_system_prompt(community, profile))
        if not response.get("error") and response.get("text", "").strip():
            return self._gateway.redact_output(response["text"].strip())

        logger.warning(f"AI reply unavailable ({response.get('error')}); using rule-based reply")
        return self._assistant.get_personalized_response(text, user_profile) or DEFAULT_REPLY

    async def get_message_suggestions(
        self,
        user_id: str,
        community_id: str,
        user_profile: Optional[dict] = None,
        recent_messages: Optional[list] = None,
    ) -> list[str]:
        try:
            suggestions = await self._assistant.get_suggestions(
                ChatContext(user_id, community_id, recent_messages or [], user_profile)
            )
            return [s.text for s in suggestions]
        except Exception as e:
            logger.error(f"Error getting message suggestions: {e}")
            return list(FALLBACK_MESSAGE_SUGGESTIONS)

    def analyze_sentiment(self, text: str) -> dict:
        try:
            return self._assistant.analyze_sentiment(text)
        except Exception as e:
            logger.error(f"Error analyzing sentiment: {e}")
            return {"sentiment": "neutral", "score": 0.0, "emotions": []}

    def moderate_message(self, text: str) -> dict:
        try:
            return self._gateway.moderate(text)
        except Exception as e:
            logger.error(f"Error moderating message: {e}")
            return {"is_safe": True, "issues": [], "score": 0.0}
