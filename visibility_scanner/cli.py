"""
CLI entrypoint for the visibility scanner.

Provides a dual-mode command-line interface:
- Human-friendly output: Rich spinners, tables and panels
- Agent-friendly output (--format json): one JSON document per command

Commands:
    init-db: Create or migrate the SQLite database
    validate: Validate a scan configuration without calling providers
    create: Plan a batch (estimate credits/duration) and store it as pending
    run: Create a batch and run it to completion or pause
    start: Start a pending batch
    resume: Resume a paused batch from where it stopped
    pause: Pause a running batch
    status: List batches or show one batch with per-question progress
    report: Write the HTML report of a batch
    export: Export a batch's iterations to CSV or JSON
    delete: Delete a batch that is not running

Exit codes:
    0: Success (batch completed, or command succeeded)
    1: Configuration or usage error (invalid YAML, missing API keys,
       unknown batch, invalid status transition)
    2: Database error
    3: Batch paused (rate limit, network, credits or user pause)
    4: Batch failed (e.g. provider rejected credentials)

Examples:
    visibility-scanner run --config scan.config.yaml
    visibility-scanner status --db ./output/visibility_scans.db
    visibility-scanner resume 6f1c... --config scan.config.yaml --format json

Security:
    - API keys are loaded from environment variables only
    - Batches store a settings snapshot without API keys; start and resume
      re-read keys from the configuration's environment variables
"""

import asyncio
import traceback
from pathlib import Path

import typer
from rich.traceback import install as install_rich_traceback

from visibility_scanner.batch.circuit_breaker import CircuitBreaker
from visibility_scanner.batch.commands import (
    delete_batch,
    pause_batch,
    request_resume,
    request_start,
)
from visibility_scanner.batch.engine import BatchScanEngine
from visibility_scanner.batch.events import InProcessWorkflowRunner
from visibility_scanner.batch.models import BatchRunResult, BatchScan
from visibility_scanner.batch.planner import (
    build_settings_snapshot,
    create_batch_scan,
    estimate_credits,
    estimate_duration,
)
from visibility_scanner.config.loader import load_config, load_scan_config
from visibility_scanner.config.schema import RuntimeScanConfig
from visibility_scanner.exceptions import (
    APIKeyMissingError,
    BatchScanError,
    ConfigurationError,
    DatabaseError,
)
from visibility_scanner.extractor.sentiment import build_sentiment_classifier
from visibility_scanner.llm_runner.models import ProviderClient, build_client
from visibility_scanner.report.generator import write_report
from visibility_scanner.storage.db import init_db_if_needed
from visibility_scanner.storage.store import SQLiteScanStore
from visibility_scanner.utils.console import (
    error,
    info,
    output_mode,
    print_batch_status,
    print_batch_table,
    print_estimate,
    print_run_result,
    spinner,
    success,
    warning,
)
from visibility_scanner.utils.logging import setup_logging

install_rich_traceback(show_locals=False)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_DB_ERROR = 2
EXIT_PAUSED = 3
EXIT_FAILED = 4

DEFAULT_DB_PATH = "./output/visibility_scans.db"

app = typer.Typer(
    name="visibility-scanner",
    help="Measure how often AI assistants mention your brand across many questions",
    add_completion=False,
)


# ============================================================================
# Shared options and helpers
# ============================================================================

ConfigOption = typer.Option(
    ...,
    "--config",
    "-c",
    help="Path to YAML scan configuration",
    exists=True,
    file_okay=True,
    dir_okay=False,
)
DbOption = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to SQLite database")
FormatOption = typer.Option(
    "text",
    "--format",
    "-f",
    help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
)
VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable debug logging")


def _setup(format: str, verbose: bool) -> None:
    if format not in ("text", "json"):
        error(f"Invalid format: {format}. Must be 'text' or 'json'")
        raise typer.Exit(EXIT_CONFIG_ERROR)
    output_mode.format = format
    setup_logging(verbose=verbose, quiet_logs=output_mode.is_human())


def _exit(code: int) -> None:
    output_mode.flush_json()
    raise typer.Exit(code)


def _fail(message: str, code: int, verbose: bool = False) -> None:
    error(message)
    if verbose:
        traceback.print_exc()
    _exit(code)


def _load_runtime_config(config: Path, verbose: bool) -> RuntimeScanConfig:
    try:
        with spinner("Loading configuration..."):
            return load_config(config)
    except APIKeyMissingError as e:
        _fail(f"API key missing: {e}", EXIT_CONFIG_ERROR, verbose)
    except ConfigurationError as e:
        _fail(f"Configuration error: {e}", EXIT_CONFIG_ERROR, verbose)


def _open_store(db_path: str, verbose: bool) -> SQLiteScanStore:
    try:
        return SQLiteScanStore(db_path)
    except DatabaseError as e:
        _fail(f"Failed to open database: {e}", EXIT_DB_ERROR, verbose)


def build_clients(
    batch: BatchScan, config: RuntimeScanConfig
) -> dict[str, ProviderClient]:
    """
    Build provider clients for the providers a batch was created with.

    API keys come from the current configuration, matched by provider name.

    Raises:
        ConfigurationError: If a batch provider is missing from the configuration
    """
    clients = {}
    for snapshot in batch.settings.providers:
        try:
            runtime = config.get_provider(snapshot.name)
        except KeyError:
            raise ConfigurationError(
                f"Batch provider '{snapshot.name}' is not in the configuration; "
                f"cannot resolve its API key"
            ) from None
        clients[snapshot.name] = build_client(
            snapshot.provider, snapshot.model_name, runtime.api_key
        )
    return clients


def build_engine(
    store: SQLiteScanStore,
    batch: BatchScan,
    config: RuntimeScanConfig,
    runner: InProcessWorkflowRunner,
) -> BatchScanEngine:
    """Wire an engine for a batch: clients, sentiment classifier and breaker."""
    clients = build_clients(batch, config)
    settings = batch.settings

    sentiment_client = None
    if settings.sentiment_method == "llm":
        sentiment_provider = settings.sentiment_provider or settings.providers[0].name
        sentiment_client = clients.get(sentiment_provider)
    classifier = build_sentiment_classifier(settings.sentiment_method, sentiment_client)

    breaker_settings = config.settings.circuit_breaker
    engine = BatchScanEngine(
        store,
        clients,
        sentiment_classifier=classifier,
        event_sink=runner,
        circuit_breaker=CircuitBreaker(
            failure_threshold=breaker_settings.failure_threshold,
            reset_timeout_s=breaker_settings.reset_timeout_s,
        ),
    )
    runner.engine = engine
    return engine


def _drive(
    store: SQLiteScanStore,
    batch_id: str,
    config: RuntimeScanConfig,
    action: str,
    verbose: bool,
) -> BatchRunResult:
    """Emit a start/resume event and drain it through the in-process runner."""
    try:
        batch = store.get_batch(batch_id)
        runner = InProcessWorkflowRunner()
        build_engine(store, batch, config, runner)
        if action == "start":
            request_start(store, batch_id, runner)
        else:
            request_resume(store, batch_id, runner)

        info(f"Running batch {batch_id} ({batch.total_iterations} iterations)")
        results = asyncio.run(runner.drain())
    except ConfigurationError as e:
        _fail(f"Configuration error: {e}", EXIT_CONFIG_ERROR, verbose)
    except BatchScanError as e:
        _fail(str(e), EXIT_CONFIG_ERROR, verbose)
    except DatabaseError as e:
        _fail(f"Database error: {e}", EXIT_DB_ERROR, verbose)

    return results[-1]


def _finish_run(result: BatchRunResult) -> None:
    print_run_result(result)
    if result.status == "completed":
        _exit(EXIT_SUCCESS)
    if result.status == "paused":
        _exit(EXIT_PAUSED)
    _exit(EXIT_FAILED)


# ============================================================================
# Commands
# ============================================================================


@app.command("init-db")
def init_db(
    db: str = DbOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Create the database (or migrate it to the current schema)."""
    _setup(format, verbose)
    try:
        with spinner("Initializing database..."):
            Path(db).parent.mkdir(parents=True, exist_ok=True)
            init_db_if_needed(db)
    except Exception as e:
        _fail(f"Failed to initialize database: {e}", EXIT_DB_ERROR, verbose)

    success(f"Database ready: {db}")
    _exit(EXIT_SUCCESS)


@app.command()
def validate(
    config: Path = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """
    Validate a configuration file without calling any provider.

    Checks YAML syntax, schema rules and that every provider's API key
    environment variable is set.
    """
    _setup(format, verbose)
    try:
        scan_config = load_scan_config(config)
    except ConfigurationError as e:
        _fail(f"Configuration validation failed: {e}", EXIT_CONFIG_ERROR, verbose)

    runtime = _load_runtime_config(config, verbose)
    snapshot = build_settings_snapshot(runtime)
    credits = estimate_credits(len(scan_config.questions), snapshot.providers)

    success(
        f"Configuration valid: {len(scan_config.questions)} questions, "
        f"{len(scan_config.providers)} providers, brand '{scan_config.brand.name}'"
    )
    print_estimate(
        credits,
        estimate_duration(credits.total_iterations),
        len(scan_config.questions),
    )
    _exit(EXIT_SUCCESS)


@app.command()
def create(
    config: Path = ConfigOption,
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Skip the confirmation prompt (for automation)"
    ),
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Plan a batch from a configuration and store it as pending."""
    _setup(format, verbose)
    runtime = _load_runtime_config(config, verbose)
    batch = _create_batch(runtime, yes, verbose)
    success(f"Created batch {batch.id}")
    output_mode.add_json("batch_scan_id", batch.id)
    _exit(EXIT_SUCCESS)


def _create_batch(runtime: RuntimeScanConfig, yes: bool, verbose: bool) -> BatchScan:
    snapshot = build_settings_snapshot(runtime)
    credits = estimate_credits(len(runtime.questions), snapshot.providers)
    print_estimate(
        credits,
        estimate_duration(
            credits.total_iterations,
            parallelism=runtime.settings.max_concurrent_questions,
        ),
        len(runtime.questions),
    )

    if not yes and output_mode.is_human():
        if not typer.confirm(f"Create batch using ~{credits.total_credits} credits?"):
            warning("Cancelled")
            _exit(EXIT_SUCCESS)

    store = _open_store(runtime.settings.sqlite_db_path, verbose)
    try:
        return create_batch_scan(store, runtime)
    except DatabaseError as e:
        _fail(f"Failed to create batch: {e}", EXIT_DB_ERROR, verbose)


@app.command()
def run(
    config: Path = ConfigOption,
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Skip the confirmation prompt (for automation)"
    ),
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """
    Create a batch and run it.

    Exit code 3 means the batch paused; fix the cause and run
    ``visibility-scanner resume <id>`` to continue where it stopped.
    """
    _setup(format, verbose)
    runtime = _load_runtime_config(config, verbose)
    batch = _create_batch(runtime, yes, verbose)
    store = _open_store(runtime.settings.sqlite_db_path, verbose)
    _finish_run(_drive(store, batch.id, runtime, "start", verbose))


@app.command()
def start(
    batch_id: str = typer.Argument(..., help="Batch scan id"),
    config: Path = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Start a pending batch."""
    _setup(format, verbose)
    runtime = _load_runtime_config(config, verbose)
    store = _open_store(runtime.settings.sqlite_db_path, verbose)
    _finish_run(_drive(store, batch_id, runtime, "start", verbose))


@app.command()
def resume(
    batch_id: str = typer.Argument(..., help="Batch scan id"),
    config: Path = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Resume a paused batch; iterations already recorded are never re-run."""
    _setup(format, verbose)
    runtime = _load_runtime_config(config, verbose)
    store = _open_store(runtime.settings.sqlite_db_path, verbose)
    _finish_run(_drive(store, batch_id, runtime, "resume", verbose))


@app.command()
def pause(
    batch_id: str = typer.Argument(..., help="Batch scan id"),
    db: str = DbOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Pause a running batch (takes effect at the engine's next status check)."""
    _setup(format, verbose)
    store = _open_store(db, verbose)
    try:
        batch = pause_batch(store, batch_id)
    except BatchScanError as e:
        _fail(str(e), EXIT_CONFIG_ERROR, verbose)
    except DatabaseError as e:
        _fail(f"Database error: {e}", EXIT_DB_ERROR, verbose)

    success(f"Batch {batch.id} paused")
    output_mode.add_json("batch_status", batch.status)
    _exit(EXIT_SUCCESS)


@app.command()
def status(
    batch_id: str = typer.Argument(None, help="Batch scan id (omit to list batches)"),
    db: str = DbOption,
    owner: str = typer.Option(None, "--owner", help="Only list this owner's batches"),
    limit: int = typer.Option(20, "--limit", help="Maximum batches to list"),
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Show one batch's progress, or list recent batches."""
    _setup(format, verbose)
    store = _open_store(db, verbose)
    try:
        if batch_id is None:
            print_batch_table(store.list_batches(owner=owner, limit=limit))
        else:
            print_batch_status(store.get_batch(batch_id), store.get_questions(batch_id))
    except BatchScanError as e:
        _fail(str(e), EXIT_CONFIG_ERROR, verbose)
    except DatabaseError as e:
        _fail(f"Database error: {e}", EXIT_DB_ERROR, verbose)
    _exit(EXIT_SUCCESS)


@app.command()
def report(
    batch_id: str = typer.Argument(..., help="Batch scan id"),
    output: Path = typer.Option(
        None, "--output", "-o", help="HTML file to write (default: ./output/<id>.html)"
    ),
    db: str = DbOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Write the HTML report of a batch."""
    _setup(format, verbose)
    store = _open_store(db, verbose)
    target = output or Path("./output") / f"{batch_id}.html"
    try:
        with spinner("Generating report..."):
            path = write_report(store, batch_id, target)
    except BatchScanError as e:
        _fail(str(e), EXIT_CONFIG_ERROR, verbose)
    except (DatabaseError, ValueError, OSError) as e:
        _fail(f"Report generation failed: {e}", EXIT_DB_ERROR, verbose)

    success(f"Report written to {path}")
    output_mode.add_json("report_path", str(path))
    _exit(EXIT_SUCCESS)


@app.command()
def export(
    batch_id: str = typer.Argument(..., help="Batch scan id"),
    output: Path = typer.Option(
        ...,
        "--output",
        "-o",
        help="Output file (extension determines format: .csv or .json)",
    ),
    summary: bool = typer.Option(
        False, "--summary", help="Export the batch summary (JSON) instead of iterations"
    ),
    db: str = DbOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Export a batch's iterations (or its summary) to CSV or JSON."""
    from visibility_scanner.storage.exporter import (
        export_batch_summary_json,
        export_iterations_csv,
        export_iterations_json,
    )

    _setup(format, verbose)

    file_ext = output.suffix.lower()
    if file_ext not in (".csv", ".json") or (summary and file_ext != ".json"):
        _fail(
            "Output file must have .csv or .json extension (.json for --summary)",
            EXIT_CONFIG_ERROR,
        )

    store = _open_store(db, verbose)
    try:
        with spinner(f"Exporting batch {batch_id} to {output}..."):
            if summary:
                export_batch_summary_json(output, store, batch_id)
                count = 1
            elif file_ext == ".csv":
                count = export_iterations_csv(output, store, batch_id)
            else:
                count = export_iterations_json(output, store, batch_id)
    except BatchScanError as e:
        _fail(str(e), EXIT_CONFIG_ERROR, verbose)
    except (DatabaseError, OSError) as e:
        _fail(f"Export failed: {e}", EXIT_DB_ERROR, verbose)

    success(f"Exported {count} records to {output}")
    output_mode.add_json("records", count)
    _exit(EXIT_SUCCESS)


@app.command()
def delete(
    batch_id: str = typer.Argument(..., help="Batch scan id"),
    db: str = DbOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Delete a batch that is not running, with its questions and iterations."""
    _setup(format, verbose)
    store = _open_store(db, verbose)
    try:
        delete_batch(store, batch_id)
    except BatchScanError as e:
        _fail(str(e), EXIT_CONFIG_ERROR, verbose)
    except DatabaseError as e:
        _fail(f"Database error: {e}", EXIT_DB_ERROR, verbose)

    success(f"Deleted batch {batch_id}")
    _exit(EXIT_SUCCESS)


if __name__ == "__main__":
    app()
