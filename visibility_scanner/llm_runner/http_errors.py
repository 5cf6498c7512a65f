"""
HTTP status mapping shared by provider clients.

Translates provider HTTP failures and httpx transport errors into the typed
ProviderError hierarchy so the batch error classifier can decide between
retry, skip, pause and fail without parsing provider-specific payloads.

Status mapping:
    401, 403          -> ProviderAuthenticationError
    402               -> InsufficientCreditsError
    429               -> ProviderRateLimitError
    500, 502-504      -> ProviderServerError
    other 4xx/5xx     -> ProviderResponseError
    httpx.TimeoutException -> ProviderTimeoutError
    httpx.TransportError   -> ProviderNetworkError
"""

import httpx

from visibility_scanner.exceptions import (
    InsufficientCreditsError,
    ProviderAuthenticationError,
    ProviderError,
    ProviderNetworkError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderServerError,
    ProviderTimeoutError,
)

AUTH_STATUS_CODES = frozenset([401, 403])
CREDIT_STATUS_CODES = frozenset([402])
RATE_LIMIT_STATUS_CODES = frozenset([429])
SERVER_STATUS_CODES = frozenset([500, 502, 503, 504])

# Transport-level timeout for one request. The engine applies its own
# per-call wall-clock timeout on top of this.
REQUEST_TIMEOUT = 120.0


def error_for_status(
    status_code: int, provider: str, model_name: str, detail: str
) -> ProviderError:
    """
    Build the typed error for a failed HTTP response.

    Args:
        status_code: HTTP status returned by the provider
        provider: Provider type
        model_name: Model identifier
        detail: Error message extracted from the response body

    Returns:
        ProviderError subclass instance (not raised)
    """
    message = (
        f"{provider} API error: status={status_code}, "
        f"model={model_name}, detail={detail}"
    )

    if status_code in AUTH_STATUS_CODES:
        error_cls = ProviderAuthenticationError
    elif status_code in CREDIT_STATUS_CODES:
        error_cls = InsufficientCreditsError
    elif status_code in RATE_LIMIT_STATUS_CODES:
        error_cls = ProviderRateLimitError
    elif status_code in SERVER_STATUS_CODES:
        error_cls = ProviderServerError
    else:
        error_cls = ProviderResponseError

    return error_cls(message, provider=provider, status_code=status_code)


def error_for_transport(
    exc: httpx.TransportError, provider: str, model_name: str
) -> ProviderError:
    """
    Build the typed error for an httpx transport failure.

    Args:
        exc: Exception raised by httpx before a response was received
        provider: Provider type
        model_name: Model identifier

    Returns:
        ProviderTimeoutError for timeouts, ProviderNetworkError otherwise
    """
    if isinstance(exc, httpx.TimeoutException):
        return ProviderTimeoutError(
            f"{provider} request timed out: model={model_name}, error={exc}",
            provider=provider,
        )
    return ProviderNetworkError(
        f"{provider} network connection error: model={model_name}, error={exc}",
        provider=provider,
    )
