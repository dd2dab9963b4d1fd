"""
LLM client implementations for MomFit.
Supports OpenAI, OpenAI-compatible endpoints (Groq, xAI) and Anthropic.
Implements ILLMClient with JSON-mode completions and embeddings.

Production hardening:
- All LLM calls wrapped in asyncio.wait_for() with a timeout
- Exponential backoff retry (3 attempts) on transient failures
- Failures come back as result dicts with an ``error`` key, never as exceptions
"""

import asyncio
import logging
from typing import Optional

import anthropic
from openai import AsyncOpenAI

from momfit.shared.config import (
    AnthropicConfig,
    AppConfig,
    CompatibleConfig,
    LLMProvider,
    OpenAIConfig,
)
from momfit.shared.interfaces import ILLMClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Retry / timeout constants
# ---------------------------------------------------------------------------

LLM_CALL_TIMEOUT_SECONDS = 30       # Chat features must answer quickly
LLM_MAX_RETRIES = 3                 # Total attempts (1 initial + 2 retries)
LLM_BACKOFF_BASE_SECONDS = 1.0      # Exponential backoff base: 1s, 2s

_TRANSIENT_ERROR_KEYWORDS = (
    "timeout", "timed out", "rate_limit", "rate limit", "429",
    "overloaded", "capacity", "529", "503", "502", "500",
    "connection", "reset", "eof", "broken pipe",
)


def _is_transient_error(error: Exception) -> bool:
    """Determine if an error is transient and worth retrying."""
    error_str = str(error).lower()
    return any(keyword in error_str for keyword in _TRANSIENT_ERROR_KEYWORDS)


def _error_result(error: str) -> dict:
    return {"text": "", "error": error, "input_tokens": 0, "output_tokens": 0}


def _no_api_key_response() -> dict:
    """Standard response when no API key is configured."""
    return _error_result("no_api_key")


async def _retry_with_backoff(coro_factory, operation_name: str, error_result=_error_result) -> dict:
    """
    Execute an async operation with timeout + exponential backoff retry.

    Args:
        coro_factory: A callable that returns a new coroutine on each call.
        operation_name: For logging (e.g., "OpenAI completion").
        error_result: Builds the result dict returned on failure.
    """
    last_error = None
    for attempt in range(1, LLM_MAX_RETRIES + 1):
        try:
            return await asyncio.wait_for(coro_factory(), timeout=LLM_CALL_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            last_error = TimeoutError(f"{operation_name} timed out after {LLM_CALL_TIMEOUT_SECONDS}s")
            logger.warning(f"{operation_name} timeout (attempt {attempt}/{LLM_MAX_RETRIES})")
        except Exception as e:
            last_error = e
            if not _is_transient_error(e):
                logger.error(f"{operation_name} permanent error: {e}")
                return error_result(str(e))
            logger.warning(f"{operation_name} transient error (attempt {attempt}/{LLM_MAX_RETRIES}): {e}")

        if attempt < LLM_MAX_RETRIES:
            backoff = LLM_BACKOFF_BASE_SECONDS * (2 ** (attempt - 1))
            logger.info(f"{operation_name} retrying in {backoff:.1f}s...")
            await asyncio.sleep(backoff)

    logger.error(f"{operation_name} failed after {LLM_MAX_RETRIES} attempts: {last_error}")
    return error_result(f"All {LLM_MAX_RETRIES} attempts failed: {last_error}")


def _embedding_error(error: str) -> dict:
    return {"embedding": [], "error": error}


# ---------------------------------------------------------------------------
# OpenAI (and OpenAI-compatible) clients
# ---------------------------------------------------------------------------

class OpenAILLMClient(ILLMClient):
    """Chat completions and embeddings through the openai SDK."""

    provider_name = "openai"

    def __init__(self, config: OpenAIConfig, base_url: Optional[str] = None):
        self._config = config
        self._base_url = base_url
        self._client = None  # Created lazily on first API call
        self._total_input = 0
        self._total_output = 0

    @property
    def is_configured(self) -> bool:
        return bool(self._config.api_key) and not self._config.api_key.startswith("sk-your")

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            kwargs = {"api_key": self._config.api_key}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def complete(self, prompt: str, system: str = "", json_mode: bool = False) -> dict:
        if not self.is_configured:
            logger.warning(f"{self.provider_name}: no API key configured")
            return _no_api_key_response()

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict = {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens,
            "messages": messages,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        return await _retry_with_backoff(
            lambda: self._raw_call(kwargs),
            f"{self.provider_name} completion",
        )

    async def _raw_call(self, kwargs: dict) -> dict:
        response = await self._get_client().chat.completions.create(**kwargs)
        choice = response.choices[0] if response.choices else None
        if not choice:
            return _error_result("empty_response")

        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0
        self._total_input += input_tokens
        self._total_output += output_tokens
        return {
            "text": choice.message.content or "",
            "error": None,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
        }

    async def embed(self, text: str) -> dict:
        if not self.is_configured:
            return _embedding_error("no_api_key")
        return await _retry_with_backoff(
            lambda: self._raw_embed(text),
            f"{self.provider_name} embedding",
            error_result=_embedding_error,
        )

    async def _raw_embed(self, text: str) -> dict:
        response = await self._get_client().embeddings.create(
            model=self._config.embedding_model,
            input=text,
        )
        return {"embedding": list(response.data[0].embedding), "error": None}

    async def get_usage(self) -> dict:
        return {"total_input_tokens": self._total_input, "total_output_tokens": self._total_output}


class OpenAICompatibleLLMClient(OpenAILLMClient):
    """
    Groq / xAI through their OpenAI-compatible endpoints.
    Neither offers the embedding model, so ``embed`` always reports an error.
    """

    def __init__(self, config: CompatibleConfig, provider_name: str):
        super().__init__(
            OpenAIConfig(api_key=config.api_key, model=config.model, max_tokens=config.max_tokens),
            base_url=config.base_url,
        )
        self.provider_name = provider_name

    async def embed(self, text: str) -> dict:
        return _embedding_error("embeddings_not_supported")


# ---------------------------------------------------------------------------
# Anthropic client
# ---------------------------------------------------------------------------

class AnthropicLLMClient(ILLMClient):
    """Claude via the anthropic SDK. JSON mode is requested in the system prompt."""

    provider_name = "anthropic"

    def __init__(self, config: AnthropicConfig):
        self._config = config
        self._client = anthropic.AsyncAnthropic(api_key=config.api_key)
        self._total_input = 0
        self._total_output = 0

    @property
    def is_configured(self) -> bool:
        return bool(self._config.api_key) and not self._config.api_key.startswith("sk-ant-your")

    async def complete(self, prompt: str, system: str = "", json_mode: bool = False) -> dict:
        if not self.is_configured:
            logger.warning("anthropic: no API key configured")
            return _no_api_key_response()

        if json_mode:
            system = (system + "\n\nRespond with a single JSON object and nothing else.").strip()
        kwargs: dict = {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        return await _retry_with_backoff(
            lambda: self._raw_call(kwargs),
            "anthropic completion",
        )

    async def _raw_call(self, kwargs: dict) -> dict:
        response = await self._client.messages.create(**kwargs)
        usage = response.usage
        self._total_input += usage.input_tokens
        self._total_output += usage.output_tokens
        text = "\n".join(block.text for block in response.content if block.type == "text")
        return {
            "text": text,
            "error": None,
            "input_tokens": usage.input_tokens,
            "output_tokens": usage.output_tokens,
        }

    async def embed(self, text: str) -> dict:
        return _embedding_error("embeddings_not_supported")

    async def get_usage(self) -> dict:
        return {"total_input_tokens": self._total_input, "total_output_tokens": self._total_output}


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------

def _client_for(provider: LLMProvider, config: AppConfig) -> ILLMClient:
    if provider == LLMProvider.ANTHROPIC:
        return AnthropicLLMClient(config.anthropic)
    if provider == LLMProvider.GROQ:
        return OpenAICompatibleLLMClient(config.groq, "groq")
    if provider == LLMProvider.XAI:
        return OpenAICompatibleLLMClient(config.xai, "xai")
    return OpenAILLMClient(config.openai)


def create_llm_client(config: AppConfig) -> ILLMClient:
    """
    Factory: create the primary LLM client.

    Supports LLM_PROVIDER=openai (default), anthropic, groq, xai.
    """
    client = _client_for(config.llm_provider, config)
    logger.info(f"Primary LLM provider: {client.provider_name}")
    return client


def create_secondary_llm_client(config: AppConfig) -> Optional[ILLMClient]:
    """Optional fallback provider for low-confidence intent detection."""
    if not config.secondary_llm_provider:
        return None
    try:
        provider = LLMProvider(config.secondary_llm_provider.strip().lower())
    except ValueError:
        logger.warning(f"Unknown SECONDARY_LLM_PROVIDER {config.secondary_llm_provider!r}; secondary disabled")
        return None
    if provider == config.llm_provider:
        logger.warning("SECONDARY_LLM_PROVIDER equals LLM_PROVIDER; secondary disabled")
        return None
    client = _client_for(provider, config)
    if not client.is_configured:
        logger.warning(f"Secondary LLM provider {provider.value} has no API key; secondary disabled")
        return None
    logger.info(f"Secondary LLM provider: {provider.value}")
    return client
