"""
Provider runner module for the visibility scanner.

Public API:
    - ProviderClient: Protocol implemented by every AI answer engine client
    - ProviderResponse: Raw answer text plus latency
    - build_client: Factory for OpenAI and Gemini clients
    - MockProviderClient: Scripted client for tests and dry runs
    - query_provider: One call with a hard wall-clock timeout
"""

from .mock_client import MockProviderClient
from .models import ProviderClient, ProviderResponse, build_client
from .query import query_provider

__all__ = [
    "MockProviderClient",
    "ProviderClient",
    "ProviderResponse",
    "build_client",
    "query_provider",
]
