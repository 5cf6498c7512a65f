"""
Workflow events and an in-process runner.

The engine is driven by a workflow runner: a start event calls
BatchScanEngine.start, a resume event calls BatchScanEngine.resume, and the
engine emits BatchCompleted when a batch finishes. Any durable runner can sit
behind the EventSink protocol; InProcessWorkflowRunner is the local stand-in
used by the CLI and tests.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from visibility_scanner.utils.time import utc_timestamp

if TYPE_CHECKING:
    from visibility_scanner.batch.engine import BatchScanEngine
    from visibility_scanner.batch.models import BatchRunResult

logger = logging.getLogger(__name__)


@dataclass
class StartRequested:
    batch_scan_id: str
    timestamp: str = field(default_factory=utc_timestamp)


@dataclass
class ResumeRequested:
    batch_scan_id: str
    owner: str | None = None
    timestamp: str = field(default_factory=utc_timestamp)


@dataclass
class BatchCompleted:
    """Emitted once per batch when it reaches status completed."""

    batch_scan_id: str
    owner: str
    overall_exposure_rate: float
    total_questions: int
    timestamp: str = field(default_factory=utc_timestamp)


class EventSink(Protocol):
    """Receives workflow events."""

    def emit(self, event: object) -> None: ...


class NullEventSink:
    """Discards events."""

    def emit(self, event: object) -> None:
        logger.debug(f"Dropping event {type(event).__name__}")


@dataclass
class RecordingEventSink:
    """Keeps emitted events in memory."""

    events: list[object] = field(default_factory=list)

    def emit(self, event: object) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list:
        return [e for e in self.events if isinstance(e, event_type)]


class InProcessWorkflowRunner:
    """
    Minimal runner that queues start/resume events and drives the engine.

    Events emitted while draining (including BatchCompleted) are recorded in
    ``events`` so callers can inspect what happened.
    """

    def __init__(self, engine: "BatchScanEngine | None" = None):
        self.engine = engine
        self.events: list[object] = []
        self._pending: list[StartRequested | ResumeRequested] = []

    def emit(self, event: object) -> None:
        self.events.append(event)
        if isinstance(event, StartRequested | ResumeRequested):
            self._pending.append(event)
        elif isinstance(event, BatchCompleted):
            logger.info(
                f"Batch {event.batch_scan_id} completed: "
                f"exposure={event.overall_exposure_rate}%"
            )

    async def drain(self) -> list["BatchRunResult"]:
        """Run queued start/resume events in order."""
        if self.engine is None:
            raise RuntimeError("InProcessWorkflowRunner has no engine attached")

        results = []
        while self._pending:
            event = self._pending.pop(0)
            if isinstance(event, StartRequested):
                results.append(await self.engine.start(event.batch_scan_id))
            else:
                results.append(await self.engine.resume(event.batch_scan_id))
        return results
