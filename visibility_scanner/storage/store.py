"""
Backing store for batch scans.

ScanStore is the interface the engine, planner and commands depend on;
SQLiteScanStore implements it on top of storage.db. Every method opens its
own connection and runs as a single transaction, so each durable mutation
(iteration insert plus counter increments, status transition, question
finalization) is atomic. sqlite3 errors are re-raised as DatabaseQueryError.

Example:
    >>> store = SQLiteScanStore("./output/visibility_scans.db")
    >>> batch = store.get_batch("b-123")
    >>> batch.status, batch.progress_percent
    ('running', 42.5)
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import closing, contextmanager
from typing import Protocol

from visibility_scanner.batch.models import (
    BatchScan,
    Iteration,
    ProviderProgress,
    ProviderResult,
    Question,
    SettingsSnapshot,
)
from visibility_scanner.exceptions import (
    BatchScanNotFoundError,
    DatabaseInitError,
    DatabaseQueryError,
)
from visibility_scanner.storage import db
from visibility_scanner.utils.time import utc_timestamp

logger = logging.getLogger(__name__)


class ScanStore(Protocol):
    """Persistence operations used by the batch engine."""

    def create_batch(self, batch: BatchScan, questions: list[Question]) -> None: ...

    def get_batch(self, batch_scan_id: str) -> BatchScan: ...

    def get_batch_status(self, batch_scan_id: str) -> str: ...

    def transition_status(
        self,
        batch_scan_id: str,
        from_statuses: tuple[str, ...],
        to_status: str,
        pause_reason: str | None = None,
        timestamp_column: str | None = None,
    ) -> bool: ...

    def get_questions(self, batch_scan_id: str) -> list[Question]: ...

    def get_question(self, question_id: str) -> Question: ...

    def mark_question_running(self, question_id: str) -> None: ...

    def next_iteration_index(self, question_id: str, provider: str) -> int: ...

    def record_success(
        self,
        batch_scan_id: str,
        question_id: str,
        provider: str,
        iteration_index: int,
        result: ProviderResult,
        credit_cost: int,
    ) -> bool: ...

    def record_failure(
        self,
        question_id: str,
        provider: str,
        iteration_index: int,
        error_message: str,
        error_kind: str,
        response_time_ms: int | None = None,
    ) -> bool: ...

    def record_question_error(
        self, question_id: str, error_message: str, increment_retry: bool
    ) -> None: ...

    def finalize_question(
        self,
        batch_scan_id: str,
        question_id: str,
        provider_rates: dict[str, float],
        avg_exposure_rate: float,
    ) -> bool: ...

    def get_iterations(self, batch_scan_id: str) -> list[Iteration]: ...

    def complete_batch(
        self, batch_scan_id: str, overall_exposure_rate: float, metrics: dict
    ) -> bool: ...

    def delete_batch(self, batch_scan_id: str) -> bool: ...


class SQLiteScanStore:
    """
    SQLite implementation of ScanStore.

    Args:
        db_path: Database file; created and migrated on construction
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        try:
            db.init_db_if_needed(db_path)
        except (sqlite3.Error, OSError, ValueError) as e:
            raise DatabaseInitError(f"Failed to initialize database {db_path}: {e}") from e

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Connection committed on success and rolled back on error."""
        try:
            with closing(db.connect(self.db_path)) as conn:
                with conn:
                    yield conn
        except sqlite3.Error as e:
            logger.error(f"Database operation failed: {e}")
            raise DatabaseQueryError(f"Database operation failed: {e}") from e

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def create_batch(self, batch: BatchScan, questions: list[Question]) -> None:
        """Insert a pending batch and its ordered questions in one transaction."""
        with self._transaction() as conn:
            db.insert_batch_scan(
                conn,
                batch_scan_id=batch.id,
                owner=batch.owner,
                brand_name=batch.brand_name,
                total_questions=batch.total_questions,
                total_iterations=batch.total_iterations,
                estimated_credits=batch.estimated_credits,
                settings_snapshot=batch.settings.to_dict(),
                created_at=batch.created_at or utc_timestamp(),
            )
            for question in questions:
                db.insert_question(
                    conn,
                    question_id=question.id,
                    batch_scan_id=batch.id,
                    question_text=question.question_text,
                    question_order=question.question_order,
                    provider_totals={
                        name: progress.total
                        for name, progress in question.progress.items()
                    },
                    created_at=question.created_at or utc_timestamp(),
                )
        logger.info(f"Created batch {batch.id} with {len(questions)} questions")

    def get_batch(self, batch_scan_id: str) -> BatchScan:
        """
        Load a batch.

        Raises:
            BatchScanNotFoundError: If no batch has this id
        """
        with self._transaction() as conn:
            row = db.get_batch_scan_row(conn, batch_scan_id)
        if row is None:
            raise BatchScanNotFoundError(f"Batch scan not found: {batch_scan_id}")
        return _batch_from_row(row)

    def get_batch_status(self, batch_scan_id: str) -> str:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT status FROM batch_scans WHERE id = ?", (batch_scan_id,)
            ).fetchone()
        if row is None:
            raise BatchScanNotFoundError(f"Batch scan not found: {batch_scan_id}")
        return row["status"]

    def list_batches(self, owner: str | None = None, limit: int = 20) -> list[BatchScan]:
        with self._transaction() as conn:
            rows = db.list_batch_scan_rows(conn, owner=owner, limit=limit)
        return [_batch_from_row(row) for row in rows]

    def transition_status(
        self,
        batch_scan_id: str,
        from_statuses: tuple[str, ...],
        to_status: str,
        pause_reason: str | None = None,
        timestamp_column: str | None = None,
    ) -> bool:
        """
        Conditionally change batch status.

        Returns:
            True if the batch was in one of from_statuses and was updated
        """
        with self._transaction() as conn:
            updated = db.update_batch_status(
                conn,
                batch_scan_id,
                from_statuses=from_statuses,
                to_status=to_status,
                pause_reason=pause_reason,
                timestamp_column=timestamp_column,
            )
        if updated:
            logger.info(
                f"Batch {batch_scan_id} -> {to_status}"
                + (f" ({pause_reason})" if pause_reason else "")
            )
        return updated

    def complete_batch(
        self, batch_scan_id: str, overall_exposure_rate: float, metrics: dict
    ) -> bool:
        with self._transaction() as conn:
            return db.complete_batch_scan(
                conn,
                batch_scan_id,
                overall_exposure_rate=overall_exposure_rate,
                metrics=metrics,
                completed_at=utc_timestamp(),
            )

    def delete_batch(self, batch_scan_id: str) -> bool:
        """Delete a batch unless it is running. Returns True if deleted."""
        with self._transaction() as conn:
            return db.delete_batch_scan(conn, batch_scan_id)

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    def get_questions(self, batch_scan_id: str) -> list[Question]:
        """Questions in order, with per-provider progress attached."""
        with self._transaction() as conn:
            question_rows = db.get_question_rows(conn, batch_scan_id)
            progress_rows = db.get_progress_rows(conn, batch_scan_id)

        progress_by_question: dict[str, dict[str, ProviderProgress]] = {}
        for row in progress_rows:
            progress_by_question.setdefault(row["question_id"], {})[row["provider"]] = (
                _progress_from_row(row)
            )

        return [
            _question_from_row(row, progress_by_question.get(row["id"], {}))
            for row in question_rows
        ]

    def get_question(self, question_id: str) -> Question:
        """
        Load one question with fresh progress counters.

        Raises:
            DatabaseQueryError: If the question does not exist
        """
        with self._transaction() as conn:
            row = db.get_question_row(conn, question_id)
            progress_rows = db.get_question_progress_rows(conn, question_id)
        if row is None:
            raise DatabaseQueryError(f"Question not found: {question_id}")
        progress = {r["provider"]: _progress_from_row(r) for r in progress_rows}
        return _question_from_row(row, progress)

    def mark_question_running(self, question_id: str) -> None:
        with self._transaction() as conn:
            db.mark_question_running(conn, question_id)

    def record_question_error(
        self, question_id: str, error_message: str, increment_retry: bool
    ) -> None:
        with self._transaction() as conn:
            db.record_question_error(conn, question_id, error_message, increment_retry)

    def finalize_question(
        self,
        batch_scan_id: str,
        question_id: str,
        provider_rates: dict[str, float],
        avg_exposure_rate: float,
    ) -> bool:
        """
        Complete a question and count it on the batch, once.

        Returns:
            False if the question had already been finalized
        """
        with self._transaction() as conn:
            finalized = db.finalize_question(
                conn,
                question_id,
                provider_rates=provider_rates,
                avg_exposure_rate=avg_exposure_rate,
                completed_at=utc_timestamp(),
            )
            if finalized:
                db.increment_batch_progress(conn, batch_scan_id, completed_questions=1)
        return finalized

    # ------------------------------------------------------------------
    # Iterations
    # ------------------------------------------------------------------

    def next_iteration_index(self, question_id: str, provider: str) -> int:
        with self._transaction() as conn:
            return db.get_next_iteration_index(conn, question_id, provider)

    def record_success(
        self,
        batch_scan_id: str,
        question_id: str,
        provider: str,
        iteration_index: int,
        result: ProviderResult,
        credit_cost: int,
    ) -> bool:
        """
        Persist a successful iteration with all counter increments.

        The iteration insert, the provider progress increment and the batch
        iteration/credit increments commit together. If the iteration row
        already exists (a concurrent resume wrote it first) nothing is
        counted twice.

        Returns:
            True if this call recorded the iteration
        """
        with self._transaction() as conn:
            inserted = db.insert_iteration(
                conn,
                question_id=question_id,
                provider=provider,
                iteration_index=iteration_index,
                status="success",
                created_at=utc_timestamp(),
                response_text=result.text,
                brand_mentioned=result.analysis.brand_mentioned,
                mention_position=result.analysis.mention_position,
                sentiment=result.sentiment,
                competitors_mentioned=result.analysis.competitors_mentioned,
                response_time_ms=result.latency_ms,
            )
            if not inserted:
                logger.warning(
                    f"Iteration already recorded: question={question_id}, "
                    f"provider={provider}, index={iteration_index}"
                )
                return False

            db.increment_provider_progress(
                conn,
                question_id,
                provider,
                mentioned=result.analysis.brand_mentioned,
                sentiment=result.sentiment,
            )
            db.increment_batch_progress(
                conn, batch_scan_id, completed_iterations=1, used_credits=credit_cost
            )
        return True

    def record_failure(
        self,
        question_id: str,
        provider: str,
        iteration_index: int,
        error_message: str,
        error_kind: str,
        response_time_ms: int | None = None,
    ) -> bool:
        """Persist a failed iteration. Returns True if inserted."""
        with self._transaction() as conn:
            return db.insert_iteration(
                conn,
                question_id=question_id,
                provider=provider,
                iteration_index=iteration_index,
                status="failed",
                created_at=utc_timestamp(),
                response_time_ms=response_time_ms,
                error_message=error_message,
                error_kind=error_kind,
            )

    def get_iterations(self, batch_scan_id: str) -> list[Iteration]:
        with self._transaction() as conn:
            rows = db.get_iteration_rows(conn, batch_scan_id)
        return [_iteration_from_row(row) for row in rows]

    def get_iteration_export_rows(self, batch_scan_id: str) -> list[dict]:
        """Iteration rows joined with question text, as plain dicts."""
        with self._transaction() as conn:
            rows = db.get_iteration_rows(conn, batch_scan_id)
        return [dict(row) for row in rows]


def _batch_from_row(row: sqlite3.Row) -> BatchScan:
    metrics_json = row["aggregated_metrics_json"]
    return BatchScan(
        id=row["id"],
        owner=row["owner"],
        brand_name=row["brand_name"],
        status=row["status"],
        settings=SettingsSnapshot.from_dict(json.loads(row["settings_snapshot_json"])),
        total_questions=row["total_questions"],
        total_iterations=row["total_iterations"],
        estimated_credits=row["estimated_credits"],
        completed_questions=row["completed_questions"],
        completed_iterations=row["completed_iterations"],
        used_credits=row["used_credits"],
        pause_reason=row["pause_reason"],
        overall_exposure_rate=row["overall_exposure_rate"],
        metrics=json.loads(metrics_json) if metrics_json else None,
        created_at=row["created_at"],
        started_at=row["started_at"],
        paused_at=row["paused_at"],
        resumed_at=row["resumed_at"],
        completed_at=row["completed_at"],
    )


def _progress_from_row(row: sqlite3.Row) -> ProviderProgress:
    return ProviderProgress(
        provider=row["provider"],
        total=row["total"],
        completed=row["completed"],
        mention_count=row["mention_count"],
        sentiment_positive=row["sentiment_positive"],
        sentiment_neutral=row["sentiment_neutral"],
        sentiment_negative=row["sentiment_negative"],
        exposure_rate=row["exposure_rate"],
    )


def _question_from_row(
    row: sqlite3.Row, progress: dict[str, ProviderProgress]
) -> Question:
    return Question(
        id=row["id"],
        batch_scan_id=row["batch_scan_id"],
        question_text=row["question_text"],
        question_order=row["question_order"],
        status=row["status"],
        progress=progress,
        last_error=row["last_error"],
        retry_count=row["retry_count"],
        avg_exposure_rate=row["avg_exposure_rate"],
        created_at=row["created_at"],
        completed_at=row["completed_at"],
    )


def _iteration_from_row(row: sqlite3.Row) -> Iteration:
    return Iteration(
        question_id=row["question_id"],
        provider=row["provider"],
        iteration_index=row["iteration_index"],
        status=row["status"],
        response_text=row["response_text"],
        brand_mentioned=bool(row["brand_mentioned"]),
        mention_position=row["mention_position"],
        sentiment=row["sentiment"],
        competitors_mentioned=json.loads(row["competitors_json"] or "{}"),
        response_time_ms=row["response_time_ms"],
        error_message=row["error_message"],
        error_kind=row["error_kind"],
        created_at=row["created_at"],
    )
