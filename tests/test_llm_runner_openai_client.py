"""
Tests for llm_runner.openai_client module.

Tests cover:
- OpenAIClient initialization and validation
- Successful API calls with proper response parsing
- Status code mapping to typed provider errors (single attempt, no retry)
- Transport errors mapped to timeout and network errors
- Malformed payloads
- API keys never appear in logs or error messages
"""

import json
import logging

import httpx
import pytest

from visibility_scanner.exceptions import (
    InsufficientCreditsError,
    ProviderAuthenticationError,
    ProviderNetworkError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderServerError,
    ProviderTimeoutError,
)
from visibility_scanner.llm_runner.models import DEFAULT_SYSTEM_PROMPT, build_client
from visibility_scanner.llm_runner.openai_client import OPENAI_API_URL, OpenAIClient

API_KEY = "sk-secret-test-key"


def _client() -> OpenAIClient:
    return OpenAIClient("gpt-4o-mini", API_KEY, system_prompt=DEFAULT_SYSTEM_PROMPT)


def _completion(content="Acme is a solid choice.") -> dict:
    return {
        "id": "chatcmpl-1",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5},
    }


class TestOpenAIClientInit:
    """Test suite for OpenAIClient initialization."""

    def test_init_success(self):
        client = _client()
        assert client.model_name == "gpt-4o-mini"
        assert client.api_key == API_KEY

    @pytest.mark.parametrize(
        "model,key,prompt,message",
        [
            ("", API_KEY, "sys", "model_name cannot be empty"),
            ("gpt-4o-mini", "   ", "sys", "api_key cannot be empty"),
            ("gpt-4o-mini", API_KEY, "", "system_prompt cannot be empty"),
        ],
    )
    def test_init_validation(self, model, key, prompt, message):
        with pytest.raises(ValueError, match=message):
            OpenAIClient(model, key, system_prompt=prompt)

    def test_build_client_factory(self):
        assert isinstance(build_client("openai", "gpt-4o-mini", API_KEY), OpenAIClient)
        with pytest.raises(ValueError, match="Unsupported provider"):
            build_client("anthropic", "claude", API_KEY)


class TestCompleteSuccess:
    """Test suite for successful OpenAI API calls."""

    @pytest.mark.asyncio
    async def test_complete_returns_answer(self, httpx_mock, monkeypatch):
        monkeypatch.setattr(
            "visibility_scanner.llm_runner.openai_client.utc_timestamp",
            lambda: "2025-11-02T08:30:45Z",
        )
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json=_completion())

        response = await _client().complete("Best cloud host?")

        assert response.text == "Acme is a solid choice."
        assert response.provider == "openai"
        assert response.model_name == "gpt-4o-mini"
        assert response.timestamp_utc == "2025-11-02T08:30:45Z"
        assert response.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_request_payload_and_headers(self, httpx_mock):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json=_completion())

        await _client().complete("Best cloud host?")

        request = httpx_mock.get_request()
        body = json.loads(request.content)
        assert body["model"] == "gpt-4o-mini"
        assert body["messages"][0] == {"role": "system", "content": DEFAULT_SYSTEM_PROMPT}
        assert body["messages"][1] == {"role": "user", "content": "Best cloud host?"}
        assert request.headers["Authorization"] == f"Bearer {API_KEY}"

    @pytest.mark.asyncio
    async def test_empty_prompt_rejected(self):
        with pytest.raises(ValueError, match="Prompt cannot be empty"):
            await _client().complete("   ")


class TestCompleteErrors:
    """Test suite for error mapping. Every failure is a single HTTP attempt."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,error_cls",
        [
            (401, ProviderAuthenticationError),
            (403, ProviderAuthenticationError),
            (402, InsufficientCreditsError),
            (429, ProviderRateLimitError),
            (500, ProviderServerError),
            (503, ProviderServerError),
            (400, ProviderResponseError),
            (404, ProviderResponseError),
        ],
    )
    async def test_status_mapping(self, httpx_mock, status, error_cls):
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            status_code=status,
            json={"error": {"message": f"failure {status}"}},
        )

        with pytest.raises(error_cls) as exc_info:
            await _client().complete("Best cloud host?")

        assert exc_info.value.status_code == status
        assert f"failure {status}" in str(exc_info.value)
        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_error_without_json_body(self, httpx_mock):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, status_code=502, text="bad gateway")

        with pytest.raises(ProviderServerError, match="HTTP 502"):
            await _client().complete("Best cloud host?")

    @pytest.mark.asyncio
    async def test_transport_timeout(self, httpx_mock):
        httpx_mock.add_exception(httpx.ReadTimeout("read timed out"))

        with pytest.raises(ProviderTimeoutError):
            await _client().complete("Best cloud host?")

    @pytest.mark.asyncio
    async def test_connection_error(self, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))

        with pytest.raises(ProviderNetworkError):
            await _client().complete("Best cloud host?")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [{"choices": []}, {"nothing": True}, {"choices": [{"message": {"content": None}}]}],
    )
    async def test_malformed_payload(self, httpx_mock, payload):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json=payload)

        with pytest.raises(ProviderResponseError):
            await _client().complete("Best cloud host?")

    @pytest.mark.asyncio
    async def test_invalid_json(self, httpx_mock):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, text="not json")

        with pytest.raises(ProviderResponseError, match="Failed to parse"):
            await _client().complete("Best cloud host?")

    @pytest.mark.asyncio
    async def test_api_key_never_logged(self, httpx_mock, caplog):
        caplog.set_level(logging.DEBUG)
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            status_code=401,
            json={"error": {"message": "Incorrect API key provided"}},
        )

        with pytest.raises(ProviderAuthenticationError) as exc_info:
            await _client().complete("Best cloud host?")

        assert API_KEY not in caplog.text
        assert API_KEY not in str(exc_info.value)
