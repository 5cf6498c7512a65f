"""
Resumable batch scan execution engine.

BatchScanEngine drives a batch through its lifecycle:

    pending -> running <-> paused -> completed | failed

For every question (concurrently, bounded by max_concurrent_questions), for
every provider (in order), for every iteration index from the persisted
cursor up to the provider's total (strictly sequential), the engine:

1. Stops if the batch was halted in memory, or if the store reports a status
   other than running (checked at question start and every
   pause_check_interval iterations).
2. Queries the provider through its circuit breaker with a hard timeout,
   retrying retry-classified faults with exponential backoff (tenacity) up
   to the classification cap. An open breaker skips the iteration without a
   provider call.
3. Persists the outcome as exactly one iteration row. Successes also bump
   the question's provider counters and the batch's iteration and credit
   counters in the same transaction. A failed write is classified like any
   other fault and leaves the index unwritten.
4. Escalates pause/fail classifications to the batch and stops.

Faults that escape a question task (storage faults outside an iteration
write included) pause or fail the batch; they are never raised to the caller.

A question is finalized (exposure rates, status completed) once all its
providers are exhausted; the batch is aggregated and completed once all
questions are finalized, and a BatchCompleted event is emitted.

Resume is idempotent: the cursor for each (question, provider) pair is one
past the highest persisted iteration index, so no written iteration is ever
executed again.

Example:
    >>> engine = BatchScanEngine(store, clients={"openai": client})
    >>> result = await engine.start(batch_id)
    >>> result.status
    'completed'
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception

from visibility_scanner.batch.aggregator import (
    aggregate_batch_metrics,
    question_exposure_rates,
)
from visibility_scanner.batch.circuit_breaker import CircuitBreaker, get_circuit_breaker
from visibility_scanner.batch.errors import (
    ACTION_FAIL,
    ACTION_PAUSE,
    ACTION_RETRY,
    ErrorClassification,
    calculate_backoff_delay,
    classify_error,
    policy_for,
    should_retry,
)
from visibility_scanner.batch.events import BatchCompleted, EventSink, NullEventSink
from visibility_scanner.batch.models import (
    BatchRunResult,
    BatchScan,
    ProviderSnapshot,
    Question,
    ResumePoint,
)
from visibility_scanner.exceptions import DatabaseError, InvalidTransitionError
from visibility_scanner.extractor.response_analyzer import analyze_response
from visibility_scanner.extractor.sentiment import SentimentClassifier
from visibility_scanner.llm_runner.models import ProviderClient, ProviderResponse
from visibility_scanner.llm_runner.query import query_provider
from visibility_scanner.storage.store import ScanStore
from visibility_scanner.utils.logging import log_with_context

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class IterationOutcome:
    """What happened to one iteration index."""

    action: str
    classification: ErrorClassification | None = None
    # False when no iteration row could be written for the index
    persisted: bool = True


@dataclass
class _RunContext:
    """In-memory state shared by the question tasks of one engine run."""

    batch: BatchScan
    used_credits: int
    halted: bool = False
    resume_point: ResumePoint | None = None
    overage_logged: bool = False

    def halt(self, resume_point: ResumePoint | None) -> None:
        if not self.halted:
            self.halted = True
            self.resume_point = resume_point


class BatchScanEngine:
    """
    Execution state machine for batch scans.

    Args:
        store: Backing store
        clients: Provider clients keyed by provider name (as in the batch's
            settings snapshot)
        sentiment_classifier: Optional sentiment enrichment
        event_sink: Receives BatchCompleted events
        circuit_breaker: Breaker shared across runs (process default if None)
        sleep: Coroutine used for retry backoff sleeps
        rng: Random source for backoff jitter
    """

    def __init__(
        self,
        store: ScanStore,
        clients: Mapping[str, ProviderClient],
        sentiment_classifier: SentimentClassifier | None = None,
        event_sink: EventSink | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        sleep: SleepFunc = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.clients = dict(clients)
        self.sentiment_classifier = sentiment_classifier
        self.event_sink = event_sink or NullEventSink()
        self.circuit_breaker = circuit_breaker or get_circuit_breaker()
        self._sleep = sleep
        self._rng = rng or random.Random()

    # ========================================================================
    # Lifecycle transitions
    # ========================================================================

    async def start(self, batch_scan_id: str) -> BatchRunResult:
        """
        Start a pending batch and run it until it completes or stops.

        A start for a batch that is already running re-drives it from the
        persisted cursors (the workflow runner may deliver a start twice).

        Raises:
            BatchScanNotFoundError: If the batch does not exist
            InvalidTransitionError: If the batch is paused, completed or failed
            DatabaseError: On storage failures before the batch is running
        """
        batch = self.store.get_batch(batch_scan_id)
        self._check_clients(batch)

        if batch.status == "running":
            logger.warning(f"Batch {batch_scan_id} already running, re-driving from cursors")
        elif batch.status != "pending" or not self.store.transition_status(
            batch_scan_id, ("pending",), "running", timestamp_column="started_at"
        ):
            current = self.store.get_batch_status(batch_scan_id)
            raise InvalidTransitionError(
                f"Cannot start batch {batch_scan_id} in status '{current}'",
                current_status=current,
                requested="start",
            )

        return await self._run(batch_scan_id)

    async def resume(self, batch_scan_id: str) -> BatchRunResult:
        """
        Resume a paused batch from its persisted cursors.

        Clears the pause reason and moves the batch back to running.

        Raises:
            InvalidTransitionError: If the batch is not paused
        """
        batch = self.store.get_batch(batch_scan_id)
        self._check_clients(batch)

        if batch.status != "paused" or not self.store.transition_status(
            batch_scan_id,
            ("paused",),
            "running",
            pause_reason=None,
            timestamp_column="resumed_at",
        ):
            raise InvalidTransitionError(
                f"Cannot resume batch {batch_scan_id} in status '{batch.status}'",
                current_status=batch.status,
                requested="resume",
            )

        log_with_context(
            logger,
            logging.INFO,
            "Resuming batch",
            context={
                "previous_pause_reason": batch.pause_reason,
                "completed_iterations": batch.completed_iterations,
            },
            batch_scan_id=batch_scan_id,
        )
        return await self._run(batch_scan_id)

    def _check_clients(self, batch: BatchScan) -> None:
        missing = [n for n in batch.settings.provider_names if n not in self.clients]
        if missing:
            raise ValueError(
                f"No provider client configured for: {', '.join(missing)}"
            )

    # ========================================================================
    # Run loop
    # ========================================================================

    async def _run(self, batch_scan_id: str) -> BatchRunResult:
        batch = self.store.get_batch(batch_scan_id)
        questions = self.store.get_questions(batch_scan_id)
        ctx = _RunContext(batch=batch, used_credits=batch.used_credits)

        pending = [q for q in questions if q.status != "completed"]
        log_with_context(
            logger,
            logging.INFO,
            "Running batch",
            context={
                "questions_remaining": len(pending),
                "total_questions": len(questions),
                "providers": batch.settings.provider_names,
            },
            batch_scan_id=batch_scan_id,
        )

        semaphore = asyncio.Semaphore(batch.settings.max_concurrent_questions)

        async def _process_with_semaphore(question: Question) -> None:
            async with semaphore:
                if ctx.halted:
                    return
                try:
                    await self._process_question(ctx, question)
                except Exception:
                    ctx.halt(None)
                    raise

        results = await asyncio.gather(
            *(_process_with_semaphore(q) for q in pending), return_exceptions=True
        )
        for result in results:
            if isinstance(result, Exception):
                return self._stop_on_fault(ctx, result)
            if isinstance(result, BaseException):
                raise result

        if ctx.halted:
            try:
                stopped = self.store.get_batch(batch_scan_id)
            except DatabaseError as e:
                return self._stop_on_fault(ctx, e)
            log_with_context(
                logger,
                logging.INFO,
                "Batch stopped before completion",
                context={
                    "status": stopped.status,
                    "pause_reason": stopped.pause_reason,
                    "completed_iterations": stopped.completed_iterations,
                },
                batch_scan_id=batch_scan_id,
            )
            return BatchRunResult(
                batch_scan_id=batch_scan_id,
                status=stopped.status,
                pause_reason=stopped.pause_reason,
                resume_point=ctx.resume_point,
            )

        try:
            return self._complete_batch(batch_scan_id)
        except DatabaseError as e:
            return self._stop_on_fault(ctx, e)

    def _stop_on_fault(self, ctx: _RunContext, error: Exception) -> BatchRunResult:
        """
        Turn a fault that escaped the iteration boundary into a batch status.

        Storage faults classify as NETWORK and pause with ``network_error``;
        fail-classified faults fail the batch; anything else pauses without a
        reason. If the status change itself cannot be written the batch stays
        running and a re-delivered start re-drives it from its cursors.
        """
        classification = classify_error(error).exhausted()
        log_with_context(
            logger,
            logging.ERROR,
            f"Question task failed: {classification.kind}",
            context={"error": classification.message},
            batch_scan_id=ctx.batch.id,
        )

        if classification.action == ACTION_FAIL:
            to_status, timestamp_column = "failed", None
        else:
            to_status, timestamp_column = "paused", "paused_at"

        try:
            self.store.transition_status(
                ctx.batch.id,
                ("running",),
                to_status,
                pause_reason=classification.pause_reason,
                timestamp_column=timestamp_column,
            )
            stopped = self.store.get_batch(ctx.batch.id)
        except DatabaseError as e:
            logger.error(f"Batch {ctx.batch.id} status could not be updated: {e}")
            return BatchRunResult(
                batch_scan_id=ctx.batch.id,
                status="running",
                resume_point=ctx.resume_point,
            )

        return BatchRunResult(
            batch_scan_id=ctx.batch.id,
            status=stopped.status,
            pause_reason=stopped.pause_reason,
            resume_point=ctx.resume_point,
        )

    async def _process_question(self, ctx: _RunContext, question: Question) -> None:
        settings = ctx.batch.settings
        interval = settings.pause_check_interval

        if not self._still_running(ctx, question, settings.providers[0].name, None):
            return

        self.store.mark_question_running(question.id)

        for provider in settings.providers:
            progress = question.progress.get(provider.name)
            total = progress.total if progress else provider.iterations
            cursor = self.store.next_iteration_index(question.id, provider.name)

            for index in range(cursor, total):
                if ctx.halted:
                    return
                if index > cursor and index % interval == 0:
                    if not self._still_running(ctx, question, provider.name, index):
                        return

                outcome = await self._run_iteration(ctx, question, provider, index)

                if outcome.action in (ACTION_PAUSE, ACTION_FAIL):
                    next_index = index + 1 if outcome.persisted else index
                    self._escalate(
                        ctx,
                        outcome.classification,
                        ResumePoint(question.id, provider.name, next_index),
                    )
                    return

        self._finalize_question(ctx, question.id)

    def _still_running(
        self,
        ctx: _RunContext,
        question: Question,
        provider_name: str,
        index: int | None,
    ) -> bool:
        """Re-read batch status; halt the run if it is no longer running."""
        if ctx.halted:
            return False

        status = self.store.get_batch_status(ctx.batch.id)
        if status == "running":
            return True

        if index is None:
            index = self.store.next_iteration_index(question.id, provider_name)
        logger.info(
            f"Batch {ctx.batch.id} is '{status}', stopping at "
            f"question={question.id}, provider={provider_name}, index={index}"
        )
        ctx.halt(ResumePoint(question.id, provider_name, index))
        return False

    def _escalate(
        self,
        ctx: _RunContext,
        classification: ErrorClassification,
        resume_point: ResumePoint,
    ) -> None:
        """Apply a pause or fail classification to the batch and halt the run."""
        if classification.action == ACTION_PAUSE:
            transitioned = self.store.transition_status(
                ctx.batch.id,
                ("running",),
                "paused",
                pause_reason=classification.pause_reason,
                timestamp_column="paused_at",
            )
        else:
            transitioned = self.store.transition_status(
                ctx.batch.id,
                ("running",),
                "failed",
                pause_reason=classification.pause_reason,
            )

        log_with_context(
            logger,
            logging.WARNING,
            f"Batch {classification.action} on {classification.kind}",
            context={
                "pause_reason": classification.pause_reason,
                "error": classification.message,
                "transitioned": transitioned,
                "resume_question_id": resume_point.question_id,
                "resume_provider": resume_point.provider,
                "resume_index": resume_point.iteration_index,
            },
            batch_scan_id=ctx.batch.id,
        )
        ctx.halt(resume_point)

    # ========================================================================
    # Single iteration
    # ========================================================================

    async def _run_iteration(
        self,
        ctx: _RunContext,
        question: Question,
        provider: ProviderSnapshot,
        index: int,
    ) -> IterationOutcome:
        key = provider.name

        try:
            response = await self._query_with_retry(ctx, question, provider)
        except Exception as e:
            classification = classify_error(e).exhausted()
            try:
                self.store.record_question_error(
                    question.id, classification.message, increment_retry=False
                )
                self.store.record_failure(
                    question.id, key, index, classification.message, classification.kind
                )
            except DatabaseError as db_error:
                return self._storage_fault(ctx, question, key, index, db_error)

            log_with_context(
                logger,
                logging.WARNING,
                f"Iteration failed: {classification.kind} -> {classification.action}",
                context={
                    "question_id": question.id,
                    "provider": key,
                    "iteration_index": index,
                    "error": classification.message,
                },
                batch_scan_id=ctx.batch.id,
            )
            return IterationOutcome(classification.action, classification)

        result = await analyze_response(
            response, ctx.batch.settings, self.sentiment_classifier
        )
        try:
            recorded = self.store.record_success(
                ctx.batch.id,
                question.id,
                key,
                index,
                result,
                credit_cost=provider.credit_cost,
            )
        except DatabaseError as e:
            return self._storage_fault(ctx, question, key, index, e)

        if recorded:
            self._track_credits(ctx, provider.credit_cost)

        logger.debug(
            f"Iteration ok: question={question.id}, provider={key}, index={index}, "
            f"mentioned={result.brand_mentioned}, latency_ms={result.latency_ms}"
        )
        return IterationOutcome("success")

    def _storage_fault(
        self,
        ctx: _RunContext,
        question: Question,
        provider_name: str,
        index: int,
        error: DatabaseError,
    ) -> IterationOutcome:
        """Classify a failed iteration write; the index is left unwritten."""
        classification = classify_error(error).exhausted()
        log_with_context(
            logger,
            logging.ERROR,
            f"Iteration not recorded: {classification.kind} -> {classification.action}",
            context={
                "question_id": question.id,
                "provider": provider_name,
                "iteration_index": index,
                "error": classification.message,
            },
            batch_scan_id=ctx.batch.id,
        )
        return IterationOutcome(classification.action, classification, persisted=False)

    async def _query_with_retry(
        self,
        ctx: _RunContext,
        question: Question,
        provider: ProviderSnapshot,
    ) -> ProviderResponse:
        """
        Query the provider, retrying retry-classified faults.

        Every attempt goes through the circuit breaker: an open breaker raises
        CircuitOpenError without calling the provider, and no retry is
        scheduled once a failure has opened it. Scheduled retries update the
        question's last_error and retry_count. The final fault is re-raised
        for classification by the caller.
        """
        client = self.clients[provider.name]
        timeout_ms = ctx.batch.settings.timeout_per_call_ms

        def _stop(retry_state: RetryCallState) -> bool:
            classification = classify_error(retry_state.outcome.exception())
            return not should_retry(retry_state.attempt_number - 1, classification)

        def _wait(retry_state: RetryCallState) -> float:
            classification = classify_error(retry_state.outcome.exception())
            delay_ms = calculate_backoff_delay(
                retry_state.attempt_number - 1, policy_for(classification), self._rng
            )
            return delay_ms / 1000

        def _before_sleep(retry_state: RetryCallState) -> None:
            classification = classify_error(retry_state.outcome.exception())
            self.store.record_question_error(
                question.id, classification.message, increment_retry=True
            )
            logger.info(
                f"Retrying {provider.name} after {classification.kind} "
                f"(retry {retry_state.attempt_number}/{classification.max_retries}, "
                f"wait {retry_state.upcoming_sleep:.1f}s)"
            )

        def _retryable(error: BaseException) -> bool:
            if classify_error(error).action != ACTION_RETRY:
                return False
            return not self.circuit_breaker.is_open(provider.name)

        retrying = AsyncRetrying(
            retry=retry_if_exception(_retryable),
            stop=_stop,
            wait=_wait,
            sleep=self._sleep,
            before_sleep=_before_sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                return await self.circuit_breaker.call(
                    provider.name,
                    query_provider,
                    client,
                    question.question_text,
                    timeout_ms,
                    provider.name,
                )

        raise AssertionError("unreachable: AsyncRetrying exits by return or reraise")

    def _track_credits(self, ctx: _RunContext, cost: int) -> None:
        ctx.used_credits += cost
        if ctx.used_credits > ctx.batch.estimated_credits and not ctx.overage_logged:
            ctx.overage_logged = True
            log_with_context(
                logger,
                logging.WARNING,
                "Used credits exceed estimate",
                context={
                    "used_credits": ctx.used_credits,
                    "estimated_credits": ctx.batch.estimated_credits,
                },
                batch_scan_id=ctx.batch.id,
            )

    # ========================================================================
    # Finalization
    # ========================================================================

    def _finalize_question(self, ctx: _RunContext, question_id: str) -> None:
        question = self.store.get_question(question_id)
        provider_rates, avg_rate = question_exposure_rates(question)
        if self.store.finalize_question(
            ctx.batch.id, question_id, provider_rates, avg_rate
        ):
            logger.info(
                f"Question {question_id} completed: exposure={avg_rate}% "
                f"per provider={provider_rates}"
            )

    def _complete_batch(self, batch_scan_id: str) -> BatchRunResult:
        batch = self.store.get_batch(batch_scan_id)
        questions = self.store.get_questions(batch_scan_id)

        unfinished = [q.id for q in questions if q.status != "completed"]
        if unfinished:
            logger.warning(
                f"Batch {batch_scan_id} has {len(unfinished)} unfinished questions"
            )
            return BatchRunResult(batch_scan_id, batch.status, batch.pause_reason)

        iterations = self.store.get_iterations(batch_scan_id)
        metrics = aggregate_batch_metrics(batch, questions, iterations)
        overall = metrics["overall_exposure_rate"]

        if not self.store.complete_batch(batch_scan_id, overall, metrics):
            current = self.store.get_batch(batch_scan_id)
            logger.info(
                f"Batch {batch_scan_id} finished its work but is '{current.status}'; "
                f"it completes on the next resume"
            )
            return BatchRunResult(batch_scan_id, current.status, current.pause_reason)

        self.event_sink.emit(
            BatchCompleted(
                batch_scan_id=batch_scan_id,
                owner=batch.owner,
                overall_exposure_rate=overall,
                total_questions=len(questions),
            )
        )
        log_with_context(
            logger,
            logging.INFO,
            "Batch completed",
            context={"overall_exposure_rate": overall, "questions": len(questions)},
            batch_scan_id=batch_scan_id,
        )
        return BatchRunResult(
            batch_scan_id=batch_scan_id,
            status="completed",
            overall_exposure_rate=overall,
        )
