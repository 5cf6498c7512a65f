"""
Tests for batch/commands.py and the in-process workflow runner.

User commands only change stored status or emit events; the runner turns
start/resume events into engine calls.
"""

import random

import pytest

from visibility_scanner.batch.commands import (
    apply_batch_action,
    delete_batch,
    pause_batch,
    request_resume,
    request_start,
)
from visibility_scanner.batch.engine import BatchScanEngine
from visibility_scanner.batch.events import (
    BatchCompleted,
    InProcessWorkflowRunner,
    NullEventSink,
    RecordingEventSink,
    ResumeRequested,
    StartRequested,
)
from visibility_scanner.exceptions import BatchScanNotFoundError, InvalidTransitionError
from visibility_scanner.llm_runner.mock_client import MockProviderClient


def _start_running(store, batch_id):
    assert store.transition_status(
        batch_id, ("pending",), "running", timestamp_column="started_at"
    )


# ============================================================================
# pause / resume
# ============================================================================


def test_pause_running_batch(store, make_batch):
    batch = make_batch()
    _start_running(store, batch.id)

    paused = pause_batch(store, batch.id)

    assert paused.status == "paused"
    assert paused.pause_reason == "user_paused"
    assert paused.paused_at is not None


def test_pause_pending_batch_rejected(store, make_batch):
    batch = make_batch()
    with pytest.raises(InvalidTransitionError) as exc_info:
        pause_batch(store, batch.id)
    assert exc_info.value.current_status == "pending"
    assert store.get_batch_status(batch.id) == "pending"


def test_request_resume_emits_event_without_changing_status(store, make_batch):
    batch = make_batch()
    _start_running(store, batch.id)
    pause_batch(store, batch.id)
    sink = RecordingEventSink()

    request_resume(store, batch.id, sink)

    events = sink.of_type(ResumeRequested)
    assert len(events) == 1
    assert events[0].batch_scan_id == batch.id
    assert events[0].owner == "tester"
    assert store.get_batch_status(batch.id) == "paused"


def test_request_resume_requires_paused(store, make_batch):
    batch = make_batch()
    sink = RecordingEventSink()
    with pytest.raises(InvalidTransitionError):
        request_resume(store, batch.id, sink)
    assert sink.events == []


def test_request_start_requires_pending(store, make_batch):
    batch = make_batch()
    _start_running(store, batch.id)
    with pytest.raises(InvalidTransitionError):
        request_start(store, batch.id, NullEventSink())


def test_apply_batch_action_dispatches(store, make_batch):
    batch = make_batch()
    _start_running(store, batch.id)
    sink = RecordingEventSink()

    assert apply_batch_action(store, batch.id, "pause", sink).status == "paused"
    apply_batch_action(store, batch.id, "resume", sink)
    assert len(sink.of_type(ResumeRequested)) == 1


def test_apply_batch_action_unknown(store, make_batch):
    batch = make_batch()
    with pytest.raises(ValueError, match="Unknown batch action"):
        apply_batch_action(store, batch.id, "cancel", NullEventSink())


def test_commands_on_missing_batch(store):
    with pytest.raises(BatchScanNotFoundError):
        request_resume(store, "nope", NullEventSink())


# ============================================================================
# delete
# ============================================================================


def test_delete_pending_batch(store, make_batch):
    batch = make_batch()
    delete_batch(store, batch.id)
    with pytest.raises(BatchScanNotFoundError):
        store.get_batch(batch.id)
    assert store.get_questions(batch.id) == []


def test_delete_running_batch_rejected(store, make_batch):
    batch = make_batch()
    _start_running(store, batch.id)
    with pytest.raises(InvalidTransitionError):
        delete_batch(store, batch.id)
    assert store.get_batch_status(batch.id) == "running"


# ============================================================================
# Workflow runner
# ============================================================================


@pytest.mark.asyncio
async def test_runner_drives_start_and_records_completion(
    store, make_batch, breaker, fake_sleep
):
    batch = make_batch(providers=[("openai", 2)])
    runner = InProcessWorkflowRunner()
    runner.engine = BatchScanEngine(
        store,
        {"openai": MockProviderClient(default_response="Acme wins")},
        event_sink=runner,
        circuit_breaker=breaker,
        sleep=fake_sleep,
        rng=random.Random(1),
    )

    request_start(store, batch.id, runner)
    results = await runner.drain()

    assert [r.status for r in results] == ["completed"]
    assert isinstance(runner.events[0], StartRequested)
    completed = [e for e in runner.events if isinstance(e, BatchCompleted)]
    assert len(completed) == 1
    assert completed[0].overall_exposure_rate == 100.0
    assert completed[0].total_questions == 1


@pytest.mark.asyncio
async def test_runner_without_engine_raises():
    runner = InProcessWorkflowRunner()
    runner.emit(StartRequested(batch_scan_id="b-1"))
    with pytest.raises(RuntimeError, match="no engine"):
        await runner.drain()
