"""
Claude API Client

Thin async wrapper over the Anthropic Messages API used by the LLM message
parser. Calls run through a DependencyGuard like every other external
dependency: a parser outage opens its own breaker and callers fall back to
the rule parser straight away instead of waiting on timeouts.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic, RateLimitError

from app.config import settings
from app.core.resilience import BreakerConfig, CircuitBreaker, DependencyGuard, RetryPolicy

logger = logging.getLogger(__name__)


class ClaudeClientError(Exception):
    """Raised when Claude API call fails."""
    pass


@dataclass
class ClaudeResponse:
    """Response from Claude API."""
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    stop_reason: str
    latency_ms: float


def is_retryable_api_error(error: BaseException) -> bool:
    """Throttling, connection drops and 5xx are worth another attempt."""
    if isinstance(error, (RateLimitError, APIConnectionError)):
        return True
    if isinstance(error, APIStatusError):
        return error.status_code >= 500
    return False


class ClaudeClient:
    """
    Async Claude API client.

    The SDK's own retries are disabled; retry, timeout and the breaker all
    come from the guard.
    """

    _instance: Optional["ClaudeClient"] = None

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        guard: Optional[DependencyGuard] = None,
    ):
        """Initialize Claude client.

        Args:
            api_key: Anthropic API key (defaults to settings)
            model: Default model (defaults to settings)
            guard: Breaker/retry/timeout wrapper (defaults built from settings)
        """
        self.api_key = api_key or settings.anthropic_api_key
        if not self.api_key:
            raise ValueError("Anthropic API key is required")

        self._client = AsyncAnthropic(api_key=self.api_key, max_retries=0)
        self._default_model = model or settings.claude_parser_model
        self.guard = guard or DependencyGuard(
            "claude",
            breaker=CircuitBreaker(
                "claude",
                BreakerConfig(failure_threshold=settings.claude_failure_threshold),
            ),
            retry=RetryPolicy(
                attempts=settings.claude_retry_attempts,
                delay=0.5,
                retryable=is_retryable_api_error,
            ),
            timeout=settings.claude_timeout_seconds,
        )

        logger.info(f"ClaudeClient initialized with model={self._default_model}")

    @classmethod
    def get_instance(cls) -> "ClaudeClient":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)."""
        cls._instance = None

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
    ) -> ClaudeResponse:
        """
        Generate a response from Claude.

        Args:
            prompt: User message
            system_prompt: System prompt (optional)
            model: Model to use (defaults to parser model)
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature (0.0 for deterministic)

        Returns:
            ClaudeResponse with generated content

        Raises:
            ClaudeClientError: Breaker open, or every attempt failed
        """
        model = model or self._default_model
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        start_time = time.time()
        try:
            response = await self.guard.call(
                lambda: self._client.messages.create(**kwargs), "messages.create"
            )
        except Exception as e:
            raise ClaudeClientError(f"Claude API call failed: {e}") from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        return ClaudeResponse(
            content=text,
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
            latency_ms=(time.time() - start_time) * 1000,
        )

    def stats(self) -> dict:
        return self.guard.stats()

    async def close(self) -> None:
        """Close the client."""
        await self._client.close()


# Singleton accessor
async def get_claude_client() -> ClaudeClient:
    """Get Claude client singleton instance."""
    return ClaudeClient.get_instance()
