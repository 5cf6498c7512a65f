"""
User commands on existing batches.

Commands only flip stored state or emit workflow events; execution always
happens in BatchScanEngine. A pause is observed by a running engine at its
next status check, and a resume is delivered as a ResumeRequested event.
"""

import logging
from typing import Literal

from visibility_scanner.batch.events import EventSink, ResumeRequested, StartRequested
from visibility_scanner.batch.models import BatchScan
from visibility_scanner.exceptions import InvalidTransitionError
from visibility_scanner.storage.store import ScanStore

logger = logging.getLogger(__name__)

BatchAction = Literal["pause", "resume"]
BATCH_ACTIONS = ("pause", "resume")


def pause_batch(store: ScanStore, batch_scan_id: str) -> BatchScan:
    """
    Pause a running batch (pause_reason "user_paused").

    Raises:
        BatchScanNotFoundError: If the batch does not exist
        InvalidTransitionError: If the batch is not running
    """
    if not store.transition_status(
        batch_scan_id,
        ("running",),
        "paused",
        pause_reason="user_paused",
        timestamp_column="paused_at",
    ):
        current = store.get_batch_status(batch_scan_id)
        raise InvalidTransitionError(
            f"Only running batches can be paused (batch {batch_scan_id} is '{current}')",
            current_status=current,
            requested="pause",
        )
    return store.get_batch(batch_scan_id)


def request_resume(store: ScanStore, batch_scan_id: str, sink: EventSink) -> BatchScan:
    """
    Validate that a batch is paused and ask the workflow runner to resume it.

    The status stays "paused" until the engine picks the event up.

    Raises:
        InvalidTransitionError: If the batch is not paused
    """
    batch = store.get_batch(batch_scan_id)
    if batch.status != "paused":
        raise InvalidTransitionError(
            f"Only paused batches can be resumed (batch {batch_scan_id} is '{batch.status}')",
            current_status=batch.status,
            requested="resume",
        )

    sink.emit(ResumeRequested(batch_scan_id=batch_scan_id, owner=batch.owner))
    logger.info(f"Resume requested for batch {batch_scan_id}")
    return batch


def request_start(store: ScanStore, batch_scan_id: str, sink: EventSink) -> BatchScan:
    """Validate that a batch is pending and emit StartRequested."""
    batch = store.get_batch(batch_scan_id)
    if batch.status != "pending":
        raise InvalidTransitionError(
            f"Only pending batches can be started (batch {batch_scan_id} is '{batch.status}')",
            current_status=batch.status,
            requested="start",
        )

    sink.emit(StartRequested(batch_scan_id=batch_scan_id))
    return batch


def apply_batch_action(
    store: ScanStore, batch_scan_id: str, action: str, sink: EventSink
) -> BatchScan:
    """
    Apply a user action to a batch.

    Args:
        store: Backing store
        batch_scan_id: Target batch
        action: "pause" or "resume"
        sink: Workflow event sink (used by resume)

    Returns:
        The batch after the action

    Raises:
        ValueError: For an unknown action
        InvalidTransitionError: If the batch is in the wrong status
    """
    if action == "pause":
        return pause_batch(store, batch_scan_id)
    if action == "resume":
        return request_resume(store, batch_scan_id, sink)
    raise ValueError(f"Unknown batch action '{action}'. Expected one of {BATCH_ACTIONS}")


def delete_batch(store: ScanStore, batch_scan_id: str) -> None:
    """
    Delete a batch with its questions and iterations.

    Raises:
        InvalidTransitionError: If the batch is running
    """
    batch = store.get_batch(batch_scan_id)
    if batch.status == "running" or not store.delete_batch(batch_scan_id):
        raise InvalidTransitionError(
            f"Running batch {batch_scan_id} cannot be deleted; pause it first",
            current_status="running",
            requested="delete",
        )
    logger.info(f"Deleted batch {batch_scan_id}")
