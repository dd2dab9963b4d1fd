"""
Centralized configuration management for MomFit.
Uses environment variables with safe defaults following 12-factor app principles.
"""

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv
from enum import Enum


class LLMProvider(Enum):
    """LLM provider selection."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GROQ = "groq"
    XAI = "xai"


class StoreBackend(Enum):
    """Where community data lives."""
    JSON = "json"            # Local JSON file (development, tests)
    POSTGREST = "postgrest"  # Hosted Postgres behind a PostgREST/Supabase REST API


@dataclass(frozen=True)
class OpenAIConfig:
    """OpenAI API configuration."""
    api_key: str = ""
    model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-ada-002"
    max_tokens: int = 1000


@dataclass(frozen=True)
class AnthropicConfig:
    """Anthropic API configuration."""
    api_key: str = ""
    model: str = "claude-3-5-haiku-latest"
    max_tokens: int = 1000


@dataclass(frozen=True)
class CompatibleConfig:
    """OpenAI-compatible endpoint (Groq, xAI)."""
    api_key: str = ""
    base_url: str = ""
    model: str = ""
    max_tokens: int = 1000


GROQ_BASE_URL = "https://api.groq.com/openai/v1"
XAI_BASE_URL = "https://api.x.ai/v1"


@dataclass(frozen=True)
class StoreConfig:
    """Data store configuration."""
    backend: StoreBackend = StoreBackend.JSON
    file_path: str = "/app/data/momfit.json"
    backup_on_write: bool = True
    postgrest_url: str = ""   # e.g. https://<project>.supabase.co
    service_key: str = ""
    request_timeout_seconds: float = 10.0


@dataclass(frozen=True)
class RecommendationConfig:
    """Tuning for personalized recommendations."""
    freshness_hours: int = 24
    max_recommendations: int = 8


@dataclass(frozen=True)
class AppConfig:
    """Root application configuration - assembled from environment."""
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    anthropic: AnthropicConfig = field(default_factory=AnthropicConfig)
    groq: CompatibleConfig = field(default_factory=lambda: CompatibleConfig(
        base_url=GROQ_BASE_URL, model="llama-3.1-8b-instant"))
    xai: CompatibleConfig = field(default_factory=lambda: CompatibleConfig(
        base_url=XAI_BASE_URL, model="grok-3"))
    llm_provider: LLMProvider = LLMProvider.OPENAI
    secondary_llm_provider: str = ""  # empty = no fallback provider
    store: StoreConfig = field(default_factory=StoreConfig)
    recommendations: RecommendationConfig = field(default_factory=RecommendationConfig)
    log_file_dir: str = ""  # Directory for timestamped log files; empty = no file logging
    cors_origins: tuple = ("http://localhost:3000", "http://localhost:5173")
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"
    environment: str = "production"


def _parse_provider(value: str, default: LLMProvider) -> LLMProvider:
    try:
        return LLMProvider(value.strip().lower())
    except ValueError:
        return default


def load_config() -> AppConfig:
    """
    Load configuration from environment variables.
    Safe defaults are used when env vars are not set.
    """
    load_dotenv()  # Load .env file if present

    openai = OpenAIConfig(
        api_key=os.environ.get("OPENAI_API_KEY", ""),
        model=os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
        embedding_model=os.environ.get("OPENAI_EMBEDDING_MODEL", "text-embedding-ada-002"),
        max_tokens=int(os.environ.get("OPENAI_MAX_TOKENS", "1000")),
    )

    anthropic = AnthropicConfig(
        api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
        model=os.environ.get("ANTHROPIC_MODEL", "claude-3-5-haiku-latest"),
        max_tokens=int(os.environ.get("ANTHROPIC_MAX_TOKENS", "1000")),
    )

    groq = CompatibleConfig(
        api_key=os.environ.get("GROQ_API_KEY", ""),
        base_url=os.environ.get("GROQ_BASE_URL", GROQ_BASE_URL),
        model=os.environ.get("GROQ_MODEL", "llama-3.1-8b-instant"),
    )

    xai = CompatibleConfig(
        api_key=os.environ.get("XAI_API_KEY", ""),
        base_url=os.environ.get("XAI_BASE_URL", XAI_BASE_URL),
        model=os.environ.get("XAI_MODEL", "grok-3"),
    )

    backend_str = os.environ.get("STORE_BACKEND", "json").lower()
    try:
        backend = StoreBackend(backend_str)
    except ValueError:
        backend = StoreBackend.JSON  # Fail safe

    store = StoreConfig(
        backend=backend,
        file_path=os.environ.get("STORE_FILE_PATH", "/app/data/momfit.json"),
        backup_on_write=os.environ.get("STORE_BACKUP_ON_WRITE", "true").lower() == "true",
        postgrest_url=os.environ.get("SUPABASE_URL", ""),
        service_key=os.environ.get("SUPABASE_SERVICE_ROLE_KEY", ""),
        request_timeout_seconds=float(os.environ.get("STORE_TIMEOUT", "10")),
    )

    recommendations = RecommendationConfig(
        freshness_hours=int(os.environ.get("RECOMMENDATION_FRESHNESS_HOURS", "24")),
        max_recommendations=int(os.environ.get("MAX_RECOMMENDATIONS", "8")),
    )

    secondary = os.environ.get("SECONDARY_LLM_PROVIDER", "").strip().lower()
    if secondary and secondary not in {p.value for p in LLMProvider}:
        secondary = ""

    origins = os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")

    return AppConfig(
        openai=openai,
        anthropic=anthropic,
        groq=groq,
        xai=xai,
        llm_provider=_parse_provider(os.environ.get("LLM_PROVIDER", "openai"), LLMProvider.OPENAI),
        secondary_llm_provider=secondary,
        store=store,
        recommendations=recommendations,
        log_file_dir=os.environ.get("LOG_FILE_DIR", ""),
        cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        api_host=os.environ.get("API_HOST", "0.0.0.0"),
        api_port=int(os.environ.get("API_PORT", "8000")),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        environment=os.environ.get("ENVIRONMENT", "production"),
    )
