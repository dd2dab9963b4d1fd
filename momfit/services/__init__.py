"""
Service layer for MomFit community features.

Each service enforces access rules through AccessGuard and raises
ValueError, PermissionError or LookupError for the API to map to
400, 403 and 404.
"""

from momfit.services.registry import ServiceRegistry

__all__ = [
    "ServiceRegistry",
]
