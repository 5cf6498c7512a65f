"""
Tests for llm_runner.gemini_client module.

The API key travels as a query parameter, so tests match URLs by pattern and
check the key never reaches logs.
"""

import json
import logging
import re

import httpx
import pytest

from visibility_scanner.exceptions import (
    ProviderAuthenticationError,
    ProviderNetworkError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderServerError,
)
from visibility_scanner.llm_runner.gemini_client import GeminiClient
from visibility_scanner.llm_runner.models import build_client

API_KEY = "AIza-secret-test-key"
GEMINI_URL = re.compile(
    r"https://generativelanguage\.googleapis\.com/v1beta/models/gemini-2\.0-flash:generateContent.*"
)


def _client() -> GeminiClient:
    return GeminiClient("gemini-2.0-flash", API_KEY, system_prompt="Be helpful.")


def _candidate(*texts, finish_reason="STOP") -> dict:
    return {
        "candidates": [
            {
                "content": {"role": "model", "parts": [{"text": t} for t in texts]},
                "finishReason": finish_reason,
            }
        ]
    }


def test_build_client_factory():
    assert isinstance(build_client("gemini", "gemini-2.0-flash", API_KEY), GeminiClient)


def test_init_validation():
    with pytest.raises(ValueError, match="api_key cannot be empty"):
        GeminiClient("gemini-2.0-flash", "", system_prompt="Be helpful.")


@pytest.mark.asyncio
async def test_complete_joins_text_parts(httpx_mock):
    httpx_mock.add_response(method="POST", url=GEMINI_URL, json=_candidate("Acme ", "wins."))

    response = await _client().complete("Best host?")

    assert response.text == "Acme wins."
    assert response.provider == "gemini"

    request = httpx_mock.get_request()
    assert request.url.params["key"] == API_KEY
    body = json.loads(request.content)
    assert body["contents"][0]["parts"][0]["text"] == "Best host?"
    assert body["systemInstruction"]["parts"][0]["text"] == "Be helpful."


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,error_cls",
    [
        (400, ProviderResponseError),
        (403, ProviderAuthenticationError),
        (429, ProviderRateLimitError),
        (500, ProviderServerError),
    ],
)
async def test_status_mapping(httpx_mock, status, error_cls):
    httpx_mock.add_response(
        method="POST",
        url=GEMINI_URL,
        status_code=status,
        json={"error": {"message": "nope"}},
    )

    with pytest.raises(error_cls):
        await _client().complete("Best host?")


@pytest.mark.asyncio
async def test_blocked_response(httpx_mock):
    httpx_mock.add_response(
        method="POST", url=GEMINI_URL, json=_candidate("partial", finish_reason="SAFETY")
    )

    with pytest.raises(ProviderResponseError, match="finishReason=SAFETY"):
        await _client().complete("Best host?")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [{}, {"candidates": []}, {"candidates": [{"content": {"parts": [{"inline": 1}]}}]}],
)
async def test_malformed_payload(httpx_mock, payload):
    httpx_mock.add_response(method="POST", url=GEMINI_URL, json=payload)

    with pytest.raises(ProviderResponseError):
        await _client().complete("Best host?")


@pytest.mark.asyncio
async def test_transport_error_hides_key(httpx_mock, caplog):
    caplog.set_level(logging.DEBUG, logger="visibility_scanner")
    httpx_mock.add_exception(httpx.ConnectError("connection refused"))

    with pytest.raises(ProviderNetworkError):
        await _client().complete("Best host?")

    assert API_KEY not in caplog.text
