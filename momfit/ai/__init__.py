"""AI features: LLM clients, intent detection, event planning, suggestions, profiling."""

__all__ = [
    "llm_client",
    "schemas",
    "intent",
    "events",
    "chat_assistant",
    "recommendations",
    "community_profile",
    "orchestrator",
]
