"""
OpenAI Chat Completions client for the visibility scanner.

Key features:
- Async HTTP client (httpx.AsyncClient)
- Single attempt per call; failures raised as typed ProviderError subclasses
- Latency measured around the HTTP round trip
- Security: NEVER logs API keys

Example:
    >>> client = OpenAIClient("gpt-4o-mini", api_key="sk-...",
    ...     system_prompt="You are a helpful assistant.")
    >>> response = await client.complete("What are the best CRM tools?")
    >>> response.text[:100]
"""

import logging
import time
from typing import Any

import httpx

from visibility_scanner.config.constants import MAX_QUESTION_LENGTH
from visibility_scanner.exceptions import ProviderResponseError
from visibility_scanner.llm_runner.http_errors import (
    REQUEST_TIMEOUT,
    error_for_status,
    error_for_transport,
)
from visibility_scanner.llm_runner.models import ProviderResponse
from visibility_scanner.utils.time import elapsed_ms, utc_timestamp

# Suppress HTTPX request logging (URLs may carry keys for other providers)
logging.getLogger("httpx").setLevel(logging.WARNING)

OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_TEMPERATURE = 0.7

logger = logging.getLogger(__name__)


class OpenAIClient:
    """
    OpenAI Chat Completions client implementing the ProviderClient protocol.

    Attributes:
        model_name: OpenAI model identifier (e.g. "gpt-4o-mini")
        api_key: OpenAI API key (NEVER logged)
        system_prompt: System message sent with every request
        temperature: Sampling temperature
    """

    def __init__(
        self,
        model_name: str,
        api_key: str,
        system_prompt: str,
        temperature: float = DEFAULT_TEMPERATURE,
    ):
        if not model_name or model_name.isspace():
            raise ValueError("model_name cannot be empty")
        if not api_key or api_key.isspace():
            raise ValueError("api_key cannot be empty")
        if not system_prompt or system_prompt.isspace():
            raise ValueError("system_prompt cannot be empty")

        self.model_name = model_name
        self.api_key = api_key
        self.system_prompt = system_prompt
        self.temperature = temperature

    async def complete(self, prompt: str) -> ProviderResponse:
        """
        Send one question to OpenAI and return the answer text.

        Args:
            prompt: Question to ask

        Returns:
            ProviderResponse with text and latency

        Raises:
            ValueError: If prompt is empty or too long
            ProviderAuthenticationError: On 401/403
            ProviderRateLimitError: On 429
            ProviderServerError: On 5xx
            ProviderTimeoutError: On transport timeout
            ProviderNetworkError: On connection failure
            ProviderResponseError: On other HTTP errors or malformed payloads
        """
        if not prompt or prompt.isspace():
            raise ValueError("Prompt cannot be empty")

        if len(prompt) > MAX_QUESTION_LENGTH:
            raise ValueError(
                f"Prompt exceeds maximum length of {MAX_QUESTION_LENGTH:,} characters "
                f"(received {len(prompt):,} characters)"
            )

        payload = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
        }

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        logger.debug(f"Sending request to OpenAI: model={self.model_name}")

        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                response = await client.post(
                    OPENAI_API_URL, json=payload, headers=headers
                )
        except httpx.TransportError as e:
            logger.error(f"OpenAI transport error: model={self.model_name}, error={e}")
            raise error_for_transport(e, "openai", self.model_name) from e
        latency_ms = elapsed_ms(started, time.perf_counter())

        if response.status_code >= 400:
            error_detail = self._extract_error_detail(response)
            logger.error(
                f"OpenAI API HTTP error: status={response.status_code}, "
                f"model={self.model_name}, detail={error_detail}"
            )
            raise error_for_status(
                response.status_code, "openai", self.model_name, error_detail
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderResponseError(
                f"Failed to parse OpenAI response JSON: {e}", provider="openai"
            ) from e

        return ProviderResponse(
            text=self._extract_answer_text(data),
            latency_ms=latency_ms,
            provider="openai",
            model_name=self.model_name,
            timestamp_utc=utc_timestamp(),
        )

    def _extract_answer_text(self, data: dict[str, Any]) -> str:
        """
        Pull the assistant message out of a Chat Completions payload.

        Raises:
            ProviderResponseError: If the payload has no usable message
        """
        try:
            choices = data["choices"]
            if not choices:
                raise ProviderResponseError(
                    "OpenAI response has empty 'choices' array", provider="openai"
                )
            content = choices[0]["message"]["content"]
        except (KeyError, TypeError, IndexError) as e:
            raise ProviderResponseError(
                f"Invalid OpenAI response structure: missing {e}", provider="openai"
            ) from e

        if not isinstance(content, str):
            raise ProviderResponseError(
                "OpenAI response message content is not text", provider="openai"
            )

        return content

    def _extract_error_detail(self, response: httpx.Response) -> str:
        """
        Extract the error message from an OpenAI error response.

        Note:
            Only the response body is read; headers (and keys) are never included.
        """
        try:
            error = response.json().get("error", {})
            return str(error.get("message", "Unknown error"))
        except (ValueError, AttributeError):
            return f"HTTP {response.status_code}"
