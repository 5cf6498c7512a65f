"""
Provider client abstraction and factory for the visibility scanner.

Provides a provider-agnostic interface for asking one question to one AI
answer engine through a Protocol-based design.

Key components:
- ProviderResponse: Raw answer text plus latency and provider metadata
- ProviderClient: Protocol with a single async complete(prompt) method
- build_client: Factory creating the right client for a provider type

Clients make exactly one HTTP attempt per call and raise typed
ProviderError subclasses. Retrying, timeouts and circuit breaking are owned
by the batch engine, so a client never sleeps or retries on its own.

Example:
    >>> from visibility_scanner.llm_runner.models import build_client
    >>> client = build_client("openai", "gpt-4o-mini", api_key)
    >>> response = await client.complete("What is the best CRM for startups?")
    >>> response.text[:40], response.latency_ms
"""

from dataclasses import dataclass
from typing import Protocol

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer the user's question with concrete "
    "recommendations, naming specific products and companies where relevant."
)


@dataclass
class ProviderResponse:
    """
    Structured response from one provider call.

    Attributes:
        text: Complete answer text
        latency_ms: Wall-clock latency of the call in milliseconds
        provider: Provider type (e.g. "openai", "gemini")
        model_name: Model identifier
        timestamp_utc: ISO 8601 timestamp with 'Z' suffix when received

    Example:
        >>> response = ProviderResponse(
        ...     text="1. Acme\\n2. Globex",
        ...     latency_ms=850,
        ...     provider="openai",
        ...     model_name="gpt-4o-mini",
        ...     timestamp_utc="2025-11-02T08:30:45Z",
        ... )
    """

    text: str
    latency_ms: int
    provider: str
    model_name: str
    timestamp_utc: str


class ProviderClient(Protocol):
    """
    Provider-agnostic interface for AI answer engines.

    Implementations MUST:
    - Use httpx.AsyncClient for HTTP requests
    - Make a single attempt (no internal retry)
    - Raise ProviderError subclasses mapped from HTTP status codes
    - Never log API keys
    """

    async def complete(self, prompt: str) -> ProviderResponse:
        """
        Ask the provider one question and return the raw answer.

        Args:
            prompt: Natural-language question

        Returns:
            ProviderResponse with answer text and latency

        Raises:
            ProviderError: Typed subclass describing the failure
        """
        ...


def build_client(
    provider: str,
    model_name: str,
    api_key: str,
    system_prompt: str = DEFAULT_SYSTEM_PROMPT,
) -> ProviderClient:
    """
    Create the client implementation for a provider type.

    Args:
        provider: Provider type ("openai" or "gemini")
        model_name: Model identifier
        api_key: API key (NEVER logged or persisted)
        system_prompt: System instruction sent with every request

    Returns:
        ProviderClient implementation

    Raises:
        ValueError: If provider is not supported
    """
    if provider == "openai":
        # Import here to keep imports lazy
        from visibility_scanner.llm_runner.openai_client import OpenAIClient

        return OpenAIClient(
            model_name=model_name, api_key=api_key, system_prompt=system_prompt
        )

    if provider == "gemini":
        from visibility_scanner.llm_runner.gemini_client import GeminiClient

        return GeminiClient(
            model_name=model_name, api_key=api_key, system_prompt=system_prompt
        )

    raise ValueError(
        f"Unsupported provider: '{provider}'. Supported providers: gemini, openai"
    )
