"""
Named constants for thresholds, limits and defaults used across the service.

All tunable limits and thresholds are defined here as named constants
with descriptive names, so the AI helpers and services agree on them.
"""

# ── Intent Detection ─────────────────────────────────────────

INTENT_CONFIDENCE_THRESHOLD = 0.6
"""Minimum confidence before an intent triggers an action (e.g. event creation)."""

KEYWORD_SHORTCUT_CONFIDENCE = 0.8
"""Keyword classifications at or above this confidence skip the LLM call."""

# ── Events ───────────────────────────────────────────────────

DEFAULT_EVENT_DURATION_MINUTES = 60
"""Event length used when the message does not mention a duration."""

DEFAULT_EVENT_TIME = "09:00"
"""Start time used when only a date was extracted."""

MAX_EVENT_TAGS = 5
"""Maximum number of auto-generated tags per event."""

# ── Suggestions & Recommendations ────────────────────────────

MAX_CHAT_SUGGESTIONS = 4
"""Suggestions shown above the chat input."""

MAX_RECOMMENDATIONS = 8
"""Cap on merged recommendation list."""

MAX_HISTORY_RECOMMENDATIONS = 5
"""Previously used suggestions pulled into recommendations."""

DUPLICATE_SIMILARITY_THRESHOLD = 0.8
"""Jaccard word similarity above which two recommendations are duplicates."""

MAX_PERSONALISED_TAGS = 10
"""Tags returned to the event browser."""

RECOMMENDATION_FRESHNESS_HOURS = 24
"""Stored personalized recommendations younger than this are reused."""

# ── Community Profiling ──────────────────────────────────────

PROFILE_CONTEXT_POSTS = 20
"""Recent posts fed to the LLM when generating a community profile."""

PROFILE_MAX_AGE_DAYS = 7
"""Profiles older than this are regenerated by the scheduled refresh."""

PROFILE_REFRESH_BATCH = 5
"""Communities picked per category (missing / outdated) in one refresh run."""

PROFILE_REFRESH_LIMIT = 10
"""Total communities processed per refresh run."""

# ── Interest Vectors ─────────────────────────────────────────

EMBEDDING_DIMENSIONS = 1536
"""Size of the zero vector used when no embedding could be produced."""

# ── User Learning ────────────────────────────────────────────

USER_LEARNING_POST_LIMIT = 100
"""Most recent posts and reactions read per member."""

USER_LEARNING_RSVP_LIMIT = 50
"""Most recent RSVPs and AI interactions read per member."""

USER_LEARNING_SAMPLE_SIZE = 5
"""Posts and RSVPs quoted in the analysis prompt."""

# ── Listing ──────────────────────────────────────────────────

COMMUNITY_PAGE_SIZE = 20
"""Communities returned per page."""

MAX_LOG_DETAIL_LENGTH = 500
"""Maximum characters of user content copied into log/audit rows."""
