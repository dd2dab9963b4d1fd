"""
Rule-based chat assistant: message suggestions, tone and sentiment analysis.
No LLM calls; everything here is deterministic apart from the injected RNG.
"""

import logging
import random
import re
import time
from dataclasses import dataclass, field
from typing import Optional

from momfit.shared.constants import MAX_CHAT_SUGGESTIONS
from momfit.shared.interfaces import IDataStore
from momfit.shared.models import ChatSuggestion

logger = logging.getLogger(__name__)

SUGGESTION_TABLE = "ai_suggestion_history"
HISTORY_PREFIX = "history-"

GENERAL_SUGGESTIONS = {
    "engagement": [
        "How's everyone doing today?",
        "What's been your biggest fitness win this week?",
        "Anyone trying a new workout routine they'd like to share?",
        "What motivates you to stay consistent with your fitness goals?",
        "How do you balance fitness with other responsibilities?",
    ],
    "questions": [
        "I'm looking for recommendations for a good home workout. Any suggestions?",
        "What's your favorite post-workout meal?",
        "How do you stay motivated when you don't feel like exercising?",
        "Any tips for reducing muscle soreness after a tough workout?",
        "What's your favorite way to track your fitness progress?",
    ],
    "support": [
        "I'm struggling to find time for workouts. Any advice?",
        "Having a hard time staying consistent. How do you all manage?",
        "Need some encouragement today - feeling unmotivated.",
        "Looking for accountability partners for my fitness journey!",
        "How do you get back on track after missing workouts?",
    ],
}

INTEREST_SUGGESTIONS = {
    "yoga": [
        "What's your favorite yoga pose for stress relief?",
        "Has anyone tried online yoga classes? Any recommendations?",
        "How often do you practice yoga in your weekly routine?",
        "What benefits have you noticed from regular yoga practice?",
    ],
    "running": [
        "Favorite running routes in the area?",
        "What running shoes are you all using these days?",
        "Training for any races coming up?",
        "Best tips for new runners?",
    ],
    "strength": [
        "What's your current strength training split?",
        "Favorite exercises for building upper body strength?",
        "Home vs. gym strength training - what works better for you?",
        "How do you track your strength progress?",
    ],
    "nutrition": [
        "Favorite healthy meal prep ideas?",
        "How do you handle nutrition on busy days?",
        "Best protein sources for vegetarians?",
        "How do you balance treats while staying on track?",
    ],
    "postpartum": [
        "Best exercises for diastasis recti recovery?",
        "How long did it take you to return to your regular fitness routine?",
        "Favorite resources for postpartum fitness?",
        "How do you find time to exercise with a newborn?",
    ],
}

TOPIC_KEYWORDS = {
    "workout": ["workout", "exercise", "training", "gym", "fitness", "routine"],
    "nutrition": ["food", "diet", "nutrition", "meal", "protein", "carbs", "eating"],
    "motivation": ["motivation", "inspired", "goals", "progress", "achieve", "success"],
    "challenge": ["challenge", "difficult", "struggling", "hard", "tough", "problem"],
    "recovery": ["recovery", "rest", "sleep", "injury", "sore", "pain", "healing"],
}

CONTEXT_PROMPTS = {
    "workout": "What's your favorite workout that was mentioned recently?",
    "nutrition": "Any healthy recipes you'd recommend based on the nutrition discussion?",
    "motivation": "What motivational quotes or tips help you stay consistent?",
    "challenge": "Would anyone be interested in a weekly challenge related to this topic?",
}

FALLBACK_SUGGESTIONS = [
    ("fallback-1", "How is everyone doing today?", "engagement"),
    ("fallback-2", "What's your favorite workout routine?", "questions"),
    ("fallback-3", "Any fitness goals for this week?", "engagement"),
    ("fallback-4", "Looking for some motivation today!", "support"),
]

TONE_PATTERNS = {
    "enthusiastic": ["!", "wow", "amazing", "great", "love", "awesome", "excited"],
    "questioning": ["?", "how", "what", "when", "where", "why", "who", "which"],
    "concerned": ["worried", "concerned", "problem", "issue", "help", "struggling"],
}

POSITIVE_WORDS = {"great", "happy", "excited", "love", "awesome", "amazing", "good", "excellent", "wonderful", "fantastic"}
NEGATIVE_WORDS = {"bad", "sad", "angry", "upset", "terrible", "horrible", "awful", "disappointed", "frustrated", "hate"}
EMOTIONS = {
    "happy": "joy", "excited": "joy", "love": "love", "awesome": "joy",
    "sad": "sadness", "upset": "sadness", "frustrated": "anger",
    "angry": "anger", "hate": "anger", "worried": "fear",
    "scared": "fear", "anxious": "fear", "proud": "pride",
    "grateful": "gratitude", "thankful": "gratitude",
}


@dataclass
class ChatContext:
    """What the assistant knows about the member composing a message."""
    user_id: str
    community_id: str
    recent_messages: list = field(default_factory=list)  # [{content, created_at, user_id}]
    user_profile: Optional[dict] = None  # interests, custom_interests, experience_level


def fallback_suggestions() -> list[ChatSuggestion]:
    return [ChatSuggestion(id=i, text=t, confidence=0.7, category=c) for i, t, c in FALLBACK_SUGGESTIONS]


class ChatAssistant:
    """Suggestions above the chat input plus lightweight text analysis."""

    def __init__(self, store: IDataStore, rng: Optional[random.Random] = None):
        self._store = store
        self._rng = rng or random.Random()

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}-{int(time.time() * 1000)}-{self._rng.random():.6f}"

    async def get_suggestions(self, context: ChatContext) -> list[ChatSuggestion]:
        try:
            suggestions = await self._history_suggestions(context)
            suggestions += self._interest_suggestions(context.user_profile)
            suggestions += self._general_suggestions()

            topics = self.analyze_recent_messages(context.recent_messages)
            if topics:
                top = topics[0]
                text = CONTEXT_PROMPTS.get(top, f"What are your thoughts on the {top} discussion?")
                suggestions.append(ChatSuggestion(self._new_id("context"), text, 0.95, "context"))

            self._rng.shuffle(suggestions)
            return suggestions[:MAX_CHAT_SUGGESTIONS]
        except Exception as e:
            logger.error(f"Error generating suggestions: {e}")
            return fallback_suggestions()

    async def _history_suggestions(self, context: ChatContext) -> list[ChatSuggestion]:
        rows = await self._store.select(
            SUGGESTION_TABLE,
            {"user_id": context.user_id, "community_id": context.community_id, "was_used": False},
            order_by="created_at",
            descending=True,
            limit=2,
        )
        return [
            ChatSuggestion(f"{HISTORY_PREFIX}{row['id']}", row.get("suggestion", ""), 0.9, "history")
            for row in rows
        ]

    def _interest_suggestions(self, profile: Optional[dict]) -> list[ChatSuggestion]:
        suggestions: list[ChatSuggestion] = []
        for interest in (profile or {}).get("interests") or []:
            lowered = str(interest).lower()
            for category, options in INTEREST_SUGGESTIONS.items():
                if category in lowered or lowered in category:
                    suggestions.append(
                        ChatSuggestion(self._new_id("interest"), self._rng.choice(options), 0.85, "interest")
                    )
                    break
            if len(suggestions) >= 2:
                break
        return suggestions

    def _general_suggestions(self) -> list[ChatSuggestion]:
        categories = self._rng.sample(list(GENERAL_SUGGESTIONS), 2)
        return [
            ChatSuggestion(self._new_id("general"), self._rng.choice(GENERAL_SUGGESTIONS[c]), 0.7, c)
            for c in categories
        ]

    def analyze_recent_messages(self, messages: list) -> list[str]:
        """Topics ordered by how many messages mention them."""
        counts: dict[str, int] = {}
        for message in messages or []:
            content = str(message.get("content", "")).lower()
            for topic, keywords in TOPIC_KEYWORDS.items():
                if any(keyword in content for keyword in keywords):
                    counts[topic] = counts.get(topic, 0) + 1
        return [topic for topic, _ in sorted(counts.items(), key=lambda item: item[1], reverse=True)]

    def analyze_message_tone(self, text: str) -> dict:
        lowered = text.lower()
        scores = {}
        for tone, patterns in TONE_PATTERNS.items():
            score = sum(1 for p in patterns if p in lowered)
            if "!" in patterns:
                score += text.count("!")
            if "?" in patterns:
                score += text.count("?")
            scores[tone] = score

        highest = max(scores.values())
        if highest == 0:
            return {"tone": "neutral", "intensity": 0.0}
        dominant = next(tone for tone, score in scores.items() if score == highest)
        return {"tone": dominant, "intensity": min(highest / 5, 1.0)}

    def analyze_sentiment(self, text: str) -> dict:
        words = text.lower().split()
        positive = negative = 0
        emotions: list[str] = []
        for word in words:
            word = re.sub(r"[^\w'-]", "", word)
            if word in POSITIVE_WORDS:
                positive += 1
            elif word in NEGATIVE_WORDS:
                negative += 1
            else:
                continue
            emotion = EMOTIONS.get(word)
            if emotion and emotion not in emotions:
                emotions.append(emotion)

        total = positive - negative
        if total > 0:
            return {"sentiment": "positive", "score": total / len(words), "emotions": emotions}
        if total < 0:
            return {"sentiment": "negative", "score": abs(total) / len(words), "emotions": emotions}
        return {"sentiment": "neutral", "score": 0.0, "emotions": emotions}

    def get_personalized_response(self, text: str, profile: Optional[dict] = None) -> str:
        """Canned supportive reply, or "" when nothing applies."""
        sentiment = self.analyze_sentiment(text)
        lowered = text.lower()
        if sentiment["sentiment"] == "negative" and sentiment["score"] > 0.1:
            return (
                "I notice you might be feeling frustrated. Remember that everyone's fitness "
                "journey has ups and downs. The community is here to support you!"
            )
        if "help" in lowered or "advice" in lowered:
            return (
                "It looks like you're seeking advice. While I can offer general suggestions, "
                "remember that our community members have diverse experiences that might be "
                "helpful for your specific situation."
            )
        if (profile or {}).get("experience_level") == "beginner" and ("workout" in lowered or "exercise" in lowered):
            return (
                "As someone new to fitness, remember that consistency matters more than intensity. "
                "Start small, celebrate progress, and don't hesitate to ask specific questions!"
            )
        return ""

    async def save_suggestion_usage(self, suggestion_id: str, user_id: str, community_id: str, text: str) -> None:
        """Mark a stored suggestion as used, or record a freshly generated one."""
        try:
            if suggestion_id.startswith(HISTORY_PREFIX):
                await self._store.update(
                    SUGGESTION_TABLE,
                    {"id": suggestion_id[len(HISTORY_PREFIX):], "user_id": user_id},
                    {"was_used": True},
                )
            else:
                await self._store.insert(SUGGESTION_TABLE, {
                    "user_id": user_id,
                    "community_id": community_id,
                    "query": "",
                    "suggestion": text,
                    "was_used": True,
                })
        except Exception as e:
            logger.error(f"Error saving suggestion usage: {e}")
