"""
Single provider query with a hard wall-clock timeout.

query_provider() is the only place the batch engine talks to a provider. It
bounds the call with asyncio.wait_for so a hung connection surfaces as
ProviderTimeoutError (classified as skip) rather than stalling the batch.
"""

import asyncio
import logging

from visibility_scanner.exceptions import ProviderTimeoutError
from visibility_scanner.llm_runner.models import ProviderClient, ProviderResponse

logger = logging.getLogger(__name__)


async def query_provider(
    client: ProviderClient,
    question: str,
    timeout_ms: int,
    provider_name: str = "provider",
) -> ProviderResponse:
    """
    Ask one question with a bounded timeout.

    Args:
        client: Provider client
        question: Question text
        timeout_ms: Hard timeout in milliseconds
        provider_name: Name used in the timeout message

    Returns:
        ProviderResponse from the client

    Raises:
        ProviderTimeoutError: If the call does not finish within timeout_ms
        ProviderError: Whatever the client raises
    """
    try:
        return await asyncio.wait_for(
            client.complete(question), timeout=timeout_ms / 1000
        )
    except asyncio.TimeoutError as e:
        logger.warning(f"Provider call timed out: provider={provider_name}, timeout_ms={timeout_ms}")
        raise ProviderTimeoutError(
            f"Request to {provider_name} timed out after {timeout_ms}ms",
            provider=provider_name,
        ) from e
