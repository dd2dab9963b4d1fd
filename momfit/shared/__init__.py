"""Shared cross-cutting concerns: config, interfaces, models, security, content gateway."""

__all__ = [
    "config",
    "constants",
    "interfaces",
    "models",
    "prompts",
    "security",
    "ai_gateway",
    "audit_log",
]
