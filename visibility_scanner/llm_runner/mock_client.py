"""
Mock provider client for testing and dry runs.

MockProviderClient implements the ProviderClient protocol without network
access. Outcomes can be scripted per call (answer text or an exception to
raise), which makes fault sequences such as "succeed, time out, succeed"
reproducible in engine tests.

Example:
    >>> from visibility_scanner.exceptions import ProviderTimeoutError
    >>> client = MockProviderClient(
    ...     script=["Acme is great.", ProviderTimeoutError("timed out"), "Try Globex."]
    ... )
    >>> (await client.complete("q")).text
    'Acme is great.'
    >>> await client.complete("q")
    Traceback (most recent call last):
    ...
    ProviderTimeoutError: timed out
"""

import asyncio
import logging
from dataclasses import dataclass, field

from visibility_scanner.llm_runner.models import ProviderResponse
from visibility_scanner.utils.time import utc_timestamp

logger = logging.getLogger(__name__)


@dataclass
class MockProviderClient:
    """
    Deterministic provider client.

    Resolution order per call: next scripted outcome, then the prompt's entry
    in ``responses``, then ``default_response``.

    Attributes:
        script: Outcomes consumed one per call. A string is returned as the
            answer text; an exception instance is raised.
        responses: Mapping of prompt to answer text
        default_response: Answer when nothing else matches
        provider: Provider name reported in responses
        model_name: Model name reported in responses
        latency_ms: Latency reported in responses
        delay_s: Real delay before answering (for timeout tests)
        calls: Prompts received, in order
    """

    script: list[str | BaseException] = field(default_factory=list)
    responses: dict[str, str] = field(default_factory=dict)
    default_response: str = "Mock provider response."
    provider: str = "mock"
    model_name: str = "mock-model"
    latency_ms: int = 5
    delay_s: float = 0.0
    calls: list[str] = field(default_factory=list)

    async def complete(self, prompt: str) -> ProviderResponse:
        """Return (or raise) the next outcome for ``prompt``."""
        self.calls.append(prompt)

        if self.delay_s:
            await asyncio.sleep(self.delay_s)

        if self.script:
            outcome = self.script.pop(0)
            if isinstance(outcome, BaseException):
                logger.debug(f"Mock client raising scripted {type(outcome).__name__}")
                raise outcome
            text = outcome
        else:
            text = self.responses.get(prompt, self.default_response)

        return ProviderResponse(
            text=text,
            latency_ms=self.latency_ms,
            provider=self.provider,
            model_name=self.model_name,
            timestamp_utc=utc_timestamp(),
        )

    @property
    def call_count(self) -> int:
        return len(self.calls)
