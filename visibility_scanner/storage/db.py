"""
SQLite database initialization and schema management for the visibility scanner.

The database tracks:
- batch_scans: one row per batch with status, counters, credits and results
- batch_scan_questions: ordered questions with retry bookkeeping
- question_provider_progress: per (question, provider) counters
- batch_scan_iterations: append-only log of provider calls

Schema versioning ensures safe upgrades as features evolve. All timestamps
are ISO 8601 strings with a 'Z' suffix (UTC).

Counter updates use ``SET x = x + ?`` so concurrent resume attempts never
lose increments; status changes are conditional (``WHERE status = ?``).

Example usage:
    >>> from visibility_scanner.storage.db import init_db_if_needed
    >>> init_db_if_needed("./output/visibility_scans.db")

Security:
    - ALL queries use parameterized statements to prevent SQL injection
    - NO API keys are ever stored in the database
"""

import json
import logging
import sqlite3
from pathlib import Path

from visibility_scanner.utils.time import utc_timestamp

logger = logging.getLogger(__name__)

# Current schema version - increment when migrations are added
CURRENT_SCHEMA_VERSION = 2


def connect(db_path: str) -> sqlite3.Connection:
    """
    Open a connection with the settings every caller needs.

    Foreign keys are enabled and rows are returned as sqlite3.Row.
    """
    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db_if_needed(db_path: str) -> None:
    """
    Initialize SQLite database with schema versioning.

    Creates the database file (and parent directory) if needed and applies
    pending migrations. Idempotent: a database at the current version is
    left untouched.

    Args:
        db_path: Filesystem path to the SQLite database file

    Raises:
        sqlite3.Error: If database creation or migration fails
        ValueError: If the database schema is newer than this code
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
        """)
        conn.commit()

        current_version = get_schema_version(conn)

        if current_version < CURRENT_SCHEMA_VERSION:
            logger.info(
                f"Database schema upgrade needed: "
                f"v{current_version} -> v{CURRENT_SCHEMA_VERSION}"
            )
            apply_migrations(conn, current_version, CURRENT_SCHEMA_VERSION)
        elif current_version > CURRENT_SCHEMA_VERSION:
            raise ValueError(
                f"Database schema version {current_version} is newer than "
                f"expected {CURRENT_SCHEMA_VERSION}. Update your software or "
                f"use a different database file."
            )
        else:
            logger.debug(f"Database schema is current (v{CURRENT_SCHEMA_VERSION})")


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Current schema version, 0 for a fresh database."""
    result = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    return result if result is not None else 0


def apply_migrations(
    conn: sqlite3.Connection, from_version: int, to_version: int
) -> None:
    """
    Apply schema migrations sequentially, one transaction per version.

    Args:
        conn: Active SQLite database connection
        from_version: Starting schema version (0 for fresh database)
        to_version: Target schema version

    Raises:
        sqlite3.Error: If any migration fails (that version is rolled back)
        ValueError: If from_version > to_version
    """
    if from_version > to_version:
        raise ValueError(
            f"Cannot downgrade schema from v{from_version} to v{to_version}. "
            f"Downgrades are not supported. Use a database backup instead."
        )

    migrations = {1: _migrate_to_v1, 2: _migrate_to_v2}

    for target_version in range(from_version + 1, to_version + 1):
        logger.info(f"Applying migration to schema version {target_version}")
        try:
            conn.execute("BEGIN")
            migration = migrations.get(target_version)
            if migration is None:
                raise ValueError(f"No migration defined for version {target_version}")
            migration(conn)

            timestamp = utc_timestamp()
            conn.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (target_version, timestamp),
            )
            conn.commit()
            logger.info(f"Migrated to schema version {target_version} at {timestamp}")

        except Exception as e:
            conn.rollback()
            logger.error(
                f"Migration to version {target_version} failed: {e}", exc_info=True
            )
            raise sqlite3.Error(
                f"Failed to migrate database to version {target_version}: {e}"
            ) from e


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    """
    Create the batch scan tables.

    Note:
        Called by apply_migrations(); do not call directly.
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS batch_scans (
            id TEXT PRIMARY KEY,
            owner TEXT NOT NULL,
            brand_name TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'running', 'paused', 'completed', 'failed')),
            pause_reason TEXT
                CHECK (pause_reason IS NULL OR pause_reason IN (
                    'rate_limit', 'network_error', 'auth_error',
                    'insufficient_credits', 'user_paused'
                )),
            total_questions INTEGER NOT NULL DEFAULT 0,
            completed_questions INTEGER NOT NULL DEFAULT 0,
            total_iterations INTEGER NOT NULL DEFAULT 0,
            completed_iterations INTEGER NOT NULL DEFAULT 0,
            estimated_credits INTEGER NOT NULL DEFAULT 0,
            used_credits INTEGER NOT NULL DEFAULT 0,
            overall_exposure_rate REAL,
            settings_snapshot_json TEXT NOT NULL,
            created_at TEXT NOT NULL,
            started_at TEXT,
            paused_at TEXT,
            resumed_at TEXT,
            completed_at TEXT,
            CHECK (completed_iterations <= total_iterations)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS batch_scan_questions (
            id TEXT PRIMARY KEY,
            batch_scan_id TEXT NOT NULL,
            question_text TEXT NOT NULL,
            question_order INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'running', 'completed')),
            last_error TEXT,
            retry_count INTEGER NOT NULL DEFAULT 0,
            avg_exposure_rate REAL,
            created_at TEXT NOT NULL,
            completed_at TEXT,
            FOREIGN KEY (batch_scan_id) REFERENCES batch_scans(id) ON DELETE CASCADE,
            UNIQUE (batch_scan_id, question_order)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS question_provider_progress (
            question_id TEXT NOT NULL,
            provider TEXT NOT NULL,
            total INTEGER NOT NULL,
            completed INTEGER NOT NULL DEFAULT 0,
            mention_count INTEGER NOT NULL DEFAULT 0,
            sentiment_positive INTEGER NOT NULL DEFAULT 0,
            sentiment_neutral INTEGER NOT NULL DEFAULT 0,
            sentiment_negative INTEGER NOT NULL DEFAULT 0,
            exposure_rate REAL,
            PRIMARY KEY (question_id, provider),
            FOREIGN KEY (question_id) REFERENCES batch_scan_questions(id) ON DELETE CASCADE,
            CHECK (completed <= total)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS batch_scan_iterations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            question_id TEXT NOT NULL,
            provider TEXT NOT NULL,
            iteration_index INTEGER NOT NULL,
            status TEXT NOT NULL CHECK (status IN ('success', 'failed')),
            response_text TEXT,
            brand_mentioned INTEGER NOT NULL DEFAULT 0,
            mention_position INTEGER,
            sentiment TEXT,
            competitors_json TEXT,
            response_time_ms INTEGER,
            error_message TEXT,
            error_kind TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY (question_id) REFERENCES batch_scan_questions(id) ON DELETE CASCADE,
            UNIQUE (question_id, provider, iteration_index)
        )
    """)

    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_batch_scans_owner ON batch_scans(owner)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_batch_scans_status ON batch_scans(status)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_questions_batch "
        "ON batch_scan_questions(batch_scan_id, question_order)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_iterations_question "
        "ON batch_scan_iterations(question_id, provider)"
    )


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    """Add the aggregated metrics payload written when a batch completes."""
    conn.execute("ALTER TABLE batch_scans ADD COLUMN aggregated_metrics_json TEXT")


# ============================================================================
# Batch rows
# ============================================================================


def insert_batch_scan(
    conn: sqlite3.Connection,
    batch_scan_id: str,
    owner: str,
    brand_name: str,
    total_questions: int,
    total_iterations: int,
    estimated_credits: int,
    settings_snapshot: dict,
    created_at: str,
) -> None:
    """
    Insert a pending batch row.

    Note:
        Caller commits. Uses INSERT OR IGNORE so a repeated create is a no-op.
    """
    conn.execute(
        """
        INSERT OR IGNORE INTO batch_scans (
            id, owner, brand_name, status, total_questions, total_iterations,
            estimated_credits, settings_snapshot_json, created_at
        ) VALUES (?, ?, ?, 'pending', ?, ?, ?, ?, ?)
        """,
        (
            batch_scan_id,
            owner,
            brand_name,
            total_questions,
            total_iterations,
            estimated_credits,
            json.dumps(settings_snapshot),
            created_at,
        ),
    )
    logger.debug(
        f"Inserted batch {batch_scan_id}: {total_questions} questions, "
        f"{total_iterations} iterations"
    )


def insert_question(
    conn: sqlite3.Connection,
    question_id: str,
    batch_scan_id: str,
    question_text: str,
    question_order: int,
    provider_totals: dict[str, int],
    created_at: str,
) -> None:
    """Insert a question with one progress row per provider."""
    conn.execute(
        """
        INSERT OR IGNORE INTO batch_scan_questions (
            id, batch_scan_id, question_text, question_order, created_at
        ) VALUES (?, ?, ?, ?, ?)
        """,
        (question_id, batch_scan_id, question_text, question_order, created_at),
    )
    conn.executemany(
        """
        INSERT OR IGNORE INTO question_provider_progress (question_id, provider, total)
        VALUES (?, ?, ?)
        """,
        [(question_id, provider, total) for provider, total in provider_totals.items()],
    )


def update_batch_status(
    conn: sqlite3.Connection,
    batch_scan_id: str,
    from_statuses: tuple[str, ...],
    to_status: str,
    pause_reason: str | None = None,
    timestamp_column: str | None = None,
    timestamp: str | None = None,
) -> bool:
    """
    Conditionally move a batch between statuses.

    Args:
        conn: Active connection
        batch_scan_id: Batch to update
        from_statuses: Statuses the batch must currently be in
        to_status: New status
        pause_reason: New pause reason (None clears it)
        timestamp_column: Optional lifecycle column to stamp
            (started_at, paused_at, resumed_at, completed_at)
        timestamp: Value for timestamp_column

    Returns:
        True if the row was updated, False if the batch was in another status
    """
    allowed_columns = {"started_at", "paused_at", "resumed_at", "completed_at"}
    if timestamp_column is not None and timestamp_column not in allowed_columns:
        raise ValueError(f"Invalid timestamp column: {timestamp_column}")

    placeholders = ", ".join("?" for _ in from_statuses)
    assignments = "status = ?, pause_reason = ?"
    params: list = [to_status, pause_reason]
    if timestamp_column is not None:
        assignments += f", {timestamp_column} = ?"
        params.append(timestamp or utc_timestamp())

    cursor = conn.execute(
        f"UPDATE batch_scans SET {assignments} "
        f"WHERE id = ? AND status IN ({placeholders})",
        (*params, batch_scan_id, *from_statuses),
    )
    return cursor.rowcount == 1


def increment_batch_progress(
    conn: sqlite3.Connection,
    batch_scan_id: str,
    completed_iterations: int = 0,
    used_credits: int = 0,
    completed_questions: int = 0,
) -> None:
    """Atomically add to batch counters."""
    conn.execute(
        """
        UPDATE batch_scans
        SET completed_iterations = completed_iterations + ?,
            used_credits = used_credits + ?,
            completed_questions = completed_questions + ?
        WHERE id = ?
        """,
        (completed_iterations, used_credits, completed_questions, batch_scan_id),
    )


def complete_batch_scan(
    conn: sqlite3.Connection,
    batch_scan_id: str,
    overall_exposure_rate: float,
    metrics: dict,
    completed_at: str,
) -> bool:
    """
    Store aggregated results and mark a running batch completed.

    Returns:
        True if the batch transitioned, False if it was not running
    """
    cursor = conn.execute(
        """
        UPDATE batch_scans
        SET status = 'completed',
            pause_reason = NULL,
            overall_exposure_rate = ?,
            aggregated_metrics_json = ?,
            completed_at = ?
        WHERE id = ? AND status = 'running'
        """,
        (overall_exposure_rate, json.dumps(metrics), completed_at, batch_scan_id),
    )
    return cursor.rowcount == 1


def get_batch_scan_row(conn: sqlite3.Connection, batch_scan_id: str) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT * FROM batch_scans WHERE id = ?", (batch_scan_id,)
    ).fetchone()


def list_batch_scan_rows(
    conn: sqlite3.Connection, owner: str | None = None, limit: int = 20
) -> list[sqlite3.Row]:
    if owner is None:
        return conn.execute(
            "SELECT * FROM batch_scans ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (limit,),
        ).fetchall()
    return conn.execute(
        "SELECT * FROM batch_scans WHERE owner = ? "
        "ORDER BY created_at DESC, rowid DESC LIMIT ?",
        (owner, limit),
    ).fetchall()


def delete_batch_scan(conn: sqlite3.Connection, batch_scan_id: str) -> bool:
    """
    Delete a batch and, via cascade, its questions and iterations.

    Returns:
        True if a non-running batch was deleted
    """
    cursor = conn.execute(
        "DELETE FROM batch_scans WHERE id = ? AND status != 'running'",
        (batch_scan_id,),
    )
    return cursor.rowcount == 1


# ============================================================================
# Question rows
# ============================================================================


def get_question_rows(conn: sqlite3.Connection, batch_scan_id: str) -> list[sqlite3.Row]:
    return conn.execute(
        "SELECT * FROM batch_scan_questions WHERE batch_scan_id = ? "
        "ORDER BY question_order",
        (batch_scan_id,),
    ).fetchall()


def get_progress_rows(conn: sqlite3.Connection, batch_scan_id: str) -> list[sqlite3.Row]:
    return conn.execute(
        """
        SELECT p.* FROM question_provider_progress p
        JOIN batch_scan_questions q ON q.id = p.question_id
        WHERE q.batch_scan_id = ?
        ORDER BY q.question_order, p.rowid
        """,
        (batch_scan_id,),
    ).fetchall()


def get_question_row(conn: sqlite3.Connection, question_id: str) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT * FROM batch_scan_questions WHERE id = ?", (question_id,)
    ).fetchone()


def get_question_progress_rows(
    conn: sqlite3.Connection, question_id: str
) -> list[sqlite3.Row]:
    return conn.execute(
        "SELECT * FROM question_provider_progress WHERE question_id = ? ORDER BY rowid",
        (question_id,),
    ).fetchall()


def mark_question_running(conn: sqlite3.Connection, question_id: str) -> None:
    conn.execute(
        "UPDATE batch_scan_questions SET status = 'running' "
        "WHERE id = ? AND status = 'pending'",
        (question_id,),
    )


def record_question_error(
    conn: sqlite3.Connection,
    question_id: str,
    error_message: str,
    increment_retry: bool,
) -> None:
    """Store the latest error and optionally add one to retry_count."""
    conn.execute(
        """
        UPDATE batch_scan_questions
        SET last_error = ?, retry_count = retry_count + ?
        WHERE id = ?
        """,
        (error_message, 1 if increment_retry else 0, question_id),
    )


def increment_provider_progress(
    conn: sqlite3.Connection,
    question_id: str,
    provider: str,
    mentioned: bool,
    sentiment: str | None,
) -> None:
    """Atomically count one successful iteration for a (question, provider) pair."""
    conn.execute(
        """
        UPDATE question_provider_progress
        SET completed = completed + 1,
            mention_count = mention_count + ?,
            sentiment_positive = sentiment_positive + ?,
            sentiment_neutral = sentiment_neutral + ?,
            sentiment_negative = sentiment_negative + ?
        WHERE question_id = ? AND provider = ?
        """,
        (
            1 if mentioned else 0,
            1 if sentiment == "positive" else 0,
            1 if sentiment == "neutral" else 0,
            1 if sentiment == "negative" else 0,
            question_id,
            provider,
        ),
    )


def finalize_question(
    conn: sqlite3.Connection,
    question_id: str,
    provider_rates: dict[str, float],
    avg_exposure_rate: float,
    completed_at: str,
) -> bool:
    """
    Mark a question completed with its exposure rates.

    Returns:
        True if this call finalized the question, False if it already was
    """
    cursor = conn.execute(
        """
        UPDATE batch_scan_questions
        SET status = 'completed', avg_exposure_rate = ?, completed_at = ?
        WHERE id = ? AND status != 'completed'
        """,
        (avg_exposure_rate, completed_at, question_id),
    )
    if cursor.rowcount == 0:
        return False

    conn.executemany(
        "UPDATE question_provider_progress SET exposure_rate = ? "
        "WHERE question_id = ? AND provider = ?",
        [(rate, question_id, provider) for provider, rate in provider_rates.items()],
    )
    return True


# ============================================================================
# Iteration rows
# ============================================================================


def insert_iteration(
    conn: sqlite3.Connection,
    question_id: str,
    provider: str,
    iteration_index: int,
    status: str,
    created_at: str,
    response_text: str | None = None,
    brand_mentioned: bool = False,
    mention_position: int | None = None,
    sentiment: str | None = None,
    competitors_mentioned: dict[str, bool] | None = None,
    response_time_ms: int | None = None,
    error_message: str | None = None,
    error_kind: str | None = None,
) -> bool:
    """
    Append one iteration row.

    Returns:
        True if inserted, False if (question, provider, index) already existed
    """
    cursor = conn.execute(
        """
        INSERT OR IGNORE INTO batch_scan_iterations (
            question_id, provider, iteration_index, status, response_text,
            brand_mentioned, mention_position, sentiment, competitors_json,
            response_time_ms, error_message, error_kind, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            question_id,
            provider,
            iteration_index,
            status,
            response_text,
            1 if brand_mentioned else 0,
            mention_position,
            sentiment,
            json.dumps(competitors_mentioned or {}),
            response_time_ms,
            error_message,
            error_kind,
            created_at,
        ),
    )
    return cursor.rowcount == 1


def get_next_iteration_index(
    conn: sqlite3.Connection, question_id: str, provider: str
) -> int:
    """Next unwritten index: one past the highest persisted iteration."""
    result = conn.execute(
        "SELECT MAX(iteration_index) FROM batch_scan_iterations "
        "WHERE question_id = ? AND provider = ?",
        (question_id, provider),
    ).fetchone()[0]
    return 0 if result is None else result + 1


def get_iteration_rows(conn: sqlite3.Connection, batch_scan_id: str) -> list[sqlite3.Row]:
    return conn.execute(
        """
        SELECT i.*, q.question_text, q.question_order
        FROM batch_scan_iterations i
        JOIN batch_scan_questions q ON q.id = i.question_id
        WHERE q.batch_scan_id = ?
        ORDER BY q.question_order, i.provider, i.iteration_index
        """,
        (batch_scan_id,),
    ).fetchall()
