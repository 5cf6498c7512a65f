"""
Google Gemini generateContent client for the visibility scanner.

Sends a single question with a system instruction and returns the first
candidate's text. Non-STOP finish reasons (safety blocks, token limits) are
reported as ProviderResponseError so the engine skips the iteration.

Example:
    >>> client = GeminiClient("gemini-2.0-flash", api_key="AIza...",
    ...     system_prompt="You are a helpful assistant.")
    >>> response = await client.complete("Which cloud storage is best?")
"""

import logging
import time
from typing import Any

import httpx

from visibility_scanner.exceptions import ProviderResponseError
from visibility_scanner.llm_runner.http_errors import (
    REQUEST_TIMEOUT,
    error_for_status,
    error_for_transport,
)
from visibility_scanner.llm_runner.models import ProviderResponse
from visibility_scanner.utils.time import elapsed_ms, utc_timestamp

logging.getLogger("httpx").setLevel(logging.WARNING)

GEMINI_API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

logger = logging.getLogger(__name__)


class GeminiClient:
    """
    Gemini API client implementing the ProviderClient protocol.

    Attributes:
        model_name: Gemini model identifier (e.g. "gemini-2.0-flash")
        api_key: Google API key, sent as a query parameter (NEVER logged)
        system_prompt: System instruction sent with every request
    """

    def __init__(self, model_name: str, api_key: str, system_prompt: str):
        if not model_name or model_name.isspace():
            raise ValueError("model_name cannot be empty")
        if not api_key or api_key.isspace():
            raise ValueError("api_key cannot be empty")
        if not system_prompt or system_prompt.isspace():
            raise ValueError("system_prompt cannot be empty")

        self.model_name = model_name
        self.api_key = api_key
        self.system_prompt = system_prompt

    async def complete(self, prompt: str) -> ProviderResponse:
        """
        Send one question to Gemini and return the answer text.

        Raises:
            ValueError: If prompt is empty
            ProviderError: Typed subclass for HTTP, transport or payload failures
        """
        if not prompt or prompt.isspace():
            raise ValueError("Prompt cannot be empty")

        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "systemInstruction": {"parts": [{"text": self.system_prompt}]},
        }
        api_url = f"{GEMINI_API_BASE_URL}/models/{self.model_name}:generateContent"

        logger.debug(f"Sending request to Gemini: model={self.model_name}")

        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                response = await client.post(
                    api_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    params={"key": self.api_key},
                )
        except httpx.TransportError as e:
            # The exception text may include the request URL with the key
            logger.error(f"Gemini transport error: model={self.model_name}")
            raise error_for_transport(e, "gemini", self.model_name) from e
        latency_ms = elapsed_ms(started, time.perf_counter())

        if response.status_code >= 400:
            error_detail = self._extract_error_detail(response)
            logger.error(
                f"Gemini API HTTP error: status={response.status_code}, "
                f"model={self.model_name}, detail={error_detail}"
            )
            raise error_for_status(
                response.status_code, "gemini", self.model_name, error_detail
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderResponseError(
                f"Failed to parse Gemini response JSON: {e}", provider="gemini"
            ) from e

        return ProviderResponse(
            text=self._extract_answer_text(data),
            latency_ms=latency_ms,
            provider="gemini",
            model_name=self.model_name,
            timestamp_utc=utc_timestamp(),
        )

    def _extract_answer_text(self, data: dict[str, Any]) -> str:
        """
        Concatenate the text parts of the first candidate.

        Raises:
            ProviderResponseError: On missing candidates, blocked content or
                missing text parts
        """
        candidates = data.get("candidates")
        if not candidates or not isinstance(candidates, list):
            raise ProviderResponseError(
                "Gemini response missing 'candidates' array", provider="gemini"
            )

        candidate = candidates[0]
        finish_reason = candidate.get("finishReason")
        if finish_reason and finish_reason != "STOP":
            raise ProviderResponseError(
                f"Gemini response not completed: finishReason={finish_reason}",
                provider="gemini",
            )

        parts = (candidate.get("content") or {}).get("parts") or []
        texts = [part["text"] for part in parts if isinstance(part, dict) and "text" in part]
        if not texts:
            raise ProviderResponseError(
                "Gemini candidate has no text parts", provider="gemini"
            )

        return "".join(texts)

    def _extract_error_detail(self, response: httpx.Response) -> str:
        try:
            error = response.json().get("error", {})
            return str(error.get("message", "Unknown error"))
        except (ValueError, AttributeError):
            return f"HTTP {response.status_code}"
