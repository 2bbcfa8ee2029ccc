# backend/src/notewise/llm/client.py
"""LiteLLM-based completion client."""

import json
import logging
import time
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from litellm import acompletion
from litellm.exceptions import (
    APIConnectionError,
    APIError,
    AuthenticationError,
    BadRequestError,
    BudgetExceededError,
    InternalServerError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
    UnprocessableEntityError,
)

from notewise.config import settings_or_defaults

logger = logging.getLogger(__name__)

QUOTA_MARKERS = ("insufficient_quota", "quota exceeded", "exceeded your current quota")

RELEVANT_HEADERS = frozenset(
    {
        "x-ratelimit-limit-requests",
        "x-ratelimit-limit-tokens",
        "x-ratelimit-remaining-requests",
        "x-ratelimit-remaining-tokens",
        "x-ratelimit-reset-requests",
        "x-ratelimit-reset-tokens",
        "retry-after",
        "x-request-id",
    }
)


class LLMError(Exception):
    """Base exception for LLM client errors."""

    pass


class LLMConnectionError(LLMError):
    """Raised when the provider cannot be reached or times out."""

    pass


class LLMAuthenticationError(LLMError):
    """Raised when authentication with the LLM provider fails."""

    pass


class LLMRateLimitError(LLMError):
    """Raised when rate limited by the LLM provider."""

    pass


class LLMQuotaExceededError(LLMRateLimitError):
    """Raised when the provider account has run out of quota."""

    pass


def model_string(provider: str, model: str) -> str:
    """Get LiteLLM model string.

    Returns:
        Model string in provider/model format.
    """
    if provider == "openai" or "/" in model:
        return model  # OpenAI is default, and prefixed names pass through
    if provider == "ollama":
        return f"ollama/{model}"
    if provider == "google":
        return f"gemini/{model}"
    return f"{provider}/{model}"


def extract_error_details(e: Exception) -> dict | None:
    """Extract HTTP details from LiteLLM exceptions.

    Args:
        e: The exception to extract details from.

    Returns:
        Dict with status_code, headers, and provider if available.
    """
    details: dict = {}

    if hasattr(e, "status_code"):
        details["status_code"] = e.status_code

    response = getattr(e, "response", None)
    if response is not None:
        if hasattr(response, "status_code"):
            details["status_code"] = response.status_code
        try:
            headers = {
                k: v for k, v in dict(response.headers).items() if k.lower() in RELEVANT_HEADERS
            }
        except (AttributeError, TypeError, ValueError):
            headers = {}
        if headers:
            details["response_headers"] = headers

    if hasattr(e, "llm_provider"):
        details["llm_provider"] = e.llm_provider

    if hasattr(e, "message"):
        details["message"] = str(e.message)

    return details if details else None


def translate_error(e: Exception) -> LLMError:
    """Map a LiteLLM exception onto the client's error hierarchy."""
    if isinstance(e, AuthenticationError):
        return LLMAuthenticationError(f"Authentication failed: {e}")
    if isinstance(e, RateLimitError):
        text = str(e).lower()
        if any(marker in text for marker in QUOTA_MARKERS):
            return LLMQuotaExceededError(f"Quota exceeded: {e}")
        return LLMRateLimitError(f"Rate limit exceeded: {e}")
    if isinstance(e, (APIConnectionError, Timeout, ServiceUnavailableError, InternalServerError)):
        return LLMConnectionError(f"Connection failed: {e}")
    return LLMError(f"LLM API error: {e}")


# Several litellm errors share no base class short of openai.OpenAIError
PROVIDER_ERRORS = (
    AuthenticationError,
    PermissionDeniedError,
    RateLimitError,
    APIConnectionError,
    Timeout,
    ServiceUnavailableError,
    InternalServerError,
    NotFoundError,
    BadRequestError,
    UnprocessableEntityError,
    BudgetExceededError,
    APIError,
)


class LLMClient:
    """Unified completion client supporting multiple providers via LiteLLM."""

    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str | None = None,
        endpoint: str | None = None,
        log_path: Path | None = None,
    ):
        """Initialize LLM client.

        Args:
            provider: LLM provider (openai, anthropic, google, ollama).
            model: Model name.
            api_key: Optional API key (uses env var if not provided).
            endpoint: Optional custom endpoint (for Ollama).
            log_path: Optional path to JSONL log file for query logging.
        """
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint
        self.log_path = log_path

    def _log_query(
        self,
        system_prompt: str | None,
        prompt: str,
        temperature: float,
        max_tokens: int,
        response: str | None,
        duration_ms: int,
        error: str | None,
        error_details: dict | None = None,
    ) -> None:
        """Append a query to the JSONL log file."""
        if not self.log_path:
            return

        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "provider": self.provider,
            "model": self.model,
            "request": {
                "system_prompt": system_prompt,
                "prompt": prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
            "response": response,
            "duration_ms": duration_ms,
            "error": error,
        }
        if error_details:
            entry["error_details"] = error_details

        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=str) + "\n")
        except OSError as e:
            # Query logging is best effort
            logger.warning(f"Could not write LLM query log: {e}")

    def _build_kwargs(
        self,
        prompt: str,
        system_prompt: str | None,
        temperature: float,
        max_tokens: int,
    ) -> dict[str, Any]:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict[str, Any] = {
            "model": model_string(self.provider, self.model),
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.endpoint and self.provider == "ollama":
            kwargs["api_base"] = self.endpoint
        return kwargs

    @staticmethod
    def _defaults(temperature: float | None, max_tokens: int | None) -> tuple[float, int]:
        llm = settings_or_defaults().llm
        return (
            llm.default_temperature if temperature is None else temperature,
            llm.max_tokens if max_tokens is None else max_tokens,
        )

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Generate completion from prompt.

        Args:
            prompt: User prompt.
            system_prompt: Optional system prompt.
            temperature: Sampling temperature.
            max_tokens: Maximum response tokens.

        Returns:
            Generated text response.

        Raises:
            LLMError: Or one of its subclasses when the provider call fails.
        """
        temperature, max_tokens = self._defaults(temperature, max_tokens)
        kwargs = self._build_kwargs(prompt, system_prompt, temperature, max_tokens)

        start_time = time.perf_counter()
        try:
            response = await acompletion(**kwargs)
        except PROVIDER_ERRORS as e:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            self._log_query(
                system_prompt,
                prompt,
                temperature,
                max_tokens,
                response=None,
                duration_ms=duration_ms,
                error=str(e),
                error_details=extract_error_details(e),
            )
            raise translate_error(e) from e

        result: str = str(response.choices[0].message.content or "")
        duration_ms = int((time.perf_counter() - start_time) * 1000)
        self._log_query(
            system_prompt,
            prompt,
            temperature,
            max_tokens,
            response=result,
            duration_ms=duration_ms,
            error=None,
        )
        return result

    async def generate_stream(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncGenerator[str, None]:
        """Generate completion with streaming tokens.

        Args:
            prompt: User prompt.
            system_prompt: Optional system prompt.
            temperature: Sampling temperature.
            max_tokens: Maximum response tokens.

        Yields:
            Text increments as they are generated.
        """
        temperature, max_tokens = self._defaults(temperature, max_tokens)
        kwargs = self._build_kwargs(prompt, system_prompt, temperature, max_tokens)
        kwargs["stream"] = True

        start_time = time.perf_counter()
        accumulated: list[str] = []
        error_msg: str | None = None
        error_details: dict | None = None

        try:
            response = await acompletion(**kwargs)
            async for chunk in response:
                content = chunk.choices[0].delta.content
                if content:
                    accumulated.append(content)
                    yield content
        except PROVIDER_ERRORS as e:
            error_msg = str(e)
            error_details = extract_error_details(e)
            raise translate_error(e) from e
        finally:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            self._log_query(
                system_prompt,
                prompt,
                temperature,
                max_tokens,
                response="".join(accumulated) if accumulated else None,
                duration_ms=duration_ms,
                error=error_msg,
                error_details=error_details,
            )
