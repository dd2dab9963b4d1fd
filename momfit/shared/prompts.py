"""
Prompt templates shared by the AI modules.

The AI helpers (intent detection, community profiling, personalized
recommendations, chat replies) import their base templates from here and
compose them with community-specific context at call time.
"""

# ─── Intent Detection ─────────────────────────────────────────

INTENT_SYSTEM_PROMPT = """You classify messages posted in a fitness community chat for mothers.

Return ONLY a JSON object with this shape:
{
  "intent": "create_event" | "schedule_poll" | "admin_alert" | "general_chat",
  "confidence": <number between 0 and 1>,
  "entities": {
    "title": <short event title or null>,
    "description": <one sentence or null>,
    "date": <YYYY-MM-DD or null>,
    "time": <HH:MM 24h or null>,
    "location": <place or null>,
    "suggestedDuration": <minutes or null>,
    "suggestedCapacity": <number or null>,
    "tags": [<short lowercase tags>],
    "isOnline": <true|false>,
    "meetingUrl": <url or null>
  }
}

Rules:
- create_event: the author proposes a concrete activity at a time or place
- schedule_poll: the author wants the group to vote on options or a time
- admin_alert: the author reports abuse, spam, safety problems or asks for an admin
- general_chat: anything else
Resolve relative dates ("tomorrow", "next Monday") against today's date: {today}."""


def build_intent_prompt(message: str, community: dict | None = None) -> str:
    """Compose the user prompt with optional community context."""
    lines = []
    if community:
        lines.append(f"Community: {community.get('name', '')}")
        if community.get("description"):
            lines.append(f"Description: {community['description']}")
        tags = community.get("tags") or []
        if tags:
            lines.append(f"Tags: {', '.join(tags)}")
        lines.append("")
    lines.append(f"Message: {message}")
    return "\n".join(lines)


# ─── Event Details ────────────────────────────────────────────

EVENT_DETAILS_SYSTEM_PROMPT = """Extract event details from a community chat message.
Return ONLY the "entities" JSON object described below, nothing else:
{"title", "description", "date" (YYYY-MM-DD), "time" (HH:MM), "location",
 "suggestedDuration", "suggestedCapacity", "tags", "isOnline", "meetingUrl"}
Use null for anything the message does not say. Today's date is {today}."""


# ─── Community Profile ────────────────────────────────────────

COMMUNITY_PROFILE_SYSTEM_PROMPT = """You analyse online communities and describe them for an AI assistant.

Return ONLY a JSON object:
{
  "purpose": <one or two sentences>,
  "tone": "casual" | "supportive" | "professional" | "motivational",
  "targetAudience": [<audience segments>],
  "commonTopics": [<topics members discuss>],
  "eventTypes": [<kinds of events this community would enjoy>]
}"""


def build_community_profile_prompt(
    name: str, description: str, tags: list, recent_posts: str
) -> str:
    return (
        f"Community name: {name}\n"
        f"Description: {description}\n"
        f"Tags: {', '.join(tags) if tags else 'none'}\n\n"
        f"Recent posts:\n{recent_posts or '(no posts yet)'}"
    )


# ─── Personalized Recommendations ─────────────────────────────

RECOMMENDATIONS_SYSTEM_PROMPT = """Generate personalized community recommendations based on user interests.

Return ONLY a JSON object with these keys, each a list of
{"type", "title" (optional), "confidence" (0-1), "description"}:
"eventRecommendations", "contentRecommendations",
"connectionRecommendations", "engagementRecommendations".
Optionally add "suggestedTags": [<short lowercase tags>]."""


def build_recommendations_prompt(embedding: list, recommendation_type: str) -> str:
    # Only a short prefix of the embedding is sent.
    return (
        f"User embedding: {embedding[:10]}\n"
        f"Recommendation type: {recommendation_type or 'all'}"
    )


# ─── User Learning ────────────────────────────────────────────

USER_INSIGHTS_SYSTEM_PROMPT = """You analyse a community member's activity to personalise their experience.

Return ONLY a JSON object:
{
  "communicationStyle": {"tone": <word>, "formality": "casual" | "formal", "verbosity": "concise" | "moderate" | "verbose"},
  "interests": [<interests>],
  "engagementPatterns": {"activeTimeOfDay": "morning" | "afternoon" | "evening", "responseRate": "low" | "medium" | "high", "preferredContentTypes": [<types>]},
  "contentPreferences": {"topics": [<topics>], "formats": [<formats>]},
  "personalizationRecommendations": [<short recommendations>]
}"""


def build_user_insights_prompt(profile: dict | None, summary: list, posts: list, rsvps: list) -> str:
    profile = profile or {}
    lines = [
        f"Interests: {', '.join(profile.get('interests') or []) or 'none'}",
        f"Fitness goals: {', '.join(profile.get('fitness_goals') or []) or 'none'}",
        f"Experience level: {profile.get('experience_level') or 'unknown'}",
        "",
        "Activity summary:",
        *(f"- {line}" for line in summary),
        "",
        "Post sample:",
        *(f'- "{p}"' for p in posts),
        "",
        "RSVP sample:",
        *(f"- {r}" for r in rsvps),
    ]
    return "\n".join(lines)


# ─── Chat Assistant ───────────────────────────────────────────

ASSISTANT_SYSTEM_PROMPT = """You are the friendly MomFit community assistant.
Reply in two or three short sentences. Be warm and encouraging, keep to
fitness, wellbeing and parenting topics, and never give medical diagnoses.
Match the community's tone when one is given."""


def build_assistant_system_prompt(community: dict | None = None, profile: dict | None = None) -> str:
    """Assistant prompt enriched with community context when available."""
    prompt = ASSISTANT_SYSTEM_PROMPT
    if community:
        prompt += f"\n\nCommunity: {community.get('name', '')}"
        if community.get("description"):
            prompt += f"\nAbout: {community['description']}"
    if profile:
        prompt += f"\nTone: {profile.get('tone', 'supportive')}"
        topics = profile.get("common_topics") or []
        if topics:
            prompt += f"\nCommon topics: {', '.join(topics)}"
    return prompt
