"""
Rich console utilities for dual-mode CLI output.

Human mode (--format text) prints colored messages, tables and panels with
Rich. Agent mode (--format json) buffers structured data and writes a single
JSON document to stdout when the command finishes.

Examples:
    >>> output_mode.format = "text"
    >>> with spinner("Creating batch..."):
    ...     batch = create_batch_scan(store, config)
    >>> success("Batch created")

    >>> output_mode.format = "json"
    >>> success("Batch created")   # buffered
    >>> output_mode.flush_json()   # {"status": "success", "message": "Batch created"}
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from visibility_scanner.batch.models import BatchRunResult, BatchScan, Question
    from visibility_scanner.batch.planner import CreditEstimate, DurationEstimate


class OutputMode:
    """
    Output mode configuration for dual-mode CLI.

    Attributes:
        format: "text" (human) or "json" (agent)
        quiet: If True, suppress info messages in human mode
    """

    def __init__(self, format_type: str = "text", quiet: bool = False):
        if format_type not in ["text", "json"]:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")

        self.format = format_type
        self.quiet = quiet
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        """Add a key to the JSON document written by flush_json()."""
        self._json_buffer[key] = value

    def flush_json(self) -> None:
        """Write buffered JSON to stdout and clear the buffer (agent mode only)."""
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2, default=str)
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._json_buffer.clear()


# Global output mode instance (set by CLI flags)
output_mode = OutputMode()

console = Console()
console_err = Console(stderr=True)

STATUS_STYLES = {
    "pending": "blue",
    "running": "cyan",
    "paused": "yellow",
    "completed": "green",
    "failed": "red",
}


def _styled_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


@contextmanager
def spinner(message: str):
    """Show a spinner in human mode; silent in agent mode."""
    if output_mode.is_human():
        with console.status(f"[bold blue]{message}", spinner="dots") as status:
            yield status
    else:
        yield None


def success(message: str) -> None:
    if output_mode.is_human():
        console.print(f"[green]✓[/green] {message}")
    elif output_mode.is_agent():
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    """Print an error to stderr (human) or buffer it (agent)."""
    if output_mode.is_human():
        console_err.print(f"[red]✗[/red] {message}", style="red")
    elif output_mode.is_agent():
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)


def warning(message: str) -> None:
    if output_mode.is_human():
        console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")
    elif output_mode.is_agent():
        output_mode.add_json("warning", message)


def info(message: str) -> None:
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def print_estimate(
    credits: CreditEstimate, duration: DurationEstimate, question_count: int
) -> None:
    """Show the credit and duration estimate of a planned batch."""
    if output_mode.is_agent():
        output_mode.add_json(
            "estimate",
            {
                "questions": question_count,
                "total_iterations": credits.total_iterations,
                "total_credits": credits.total_credits,
                "by_provider": credits.by_provider,
                "duration_ms": {
                    "min": duration.min_ms,
                    "avg": duration.avg_ms,
                    "max": duration.max_ms,
                },
            },
        )
        return

    table = Table(title="Batch Estimate", box=box.ROUNDED)
    table.add_column("Provider", style="cyan")
    table.add_column("Iterations", justify="right")
    table.add_column("Credits", justify="right", style="green")
    for name, entry in credits.by_provider.items():
        table.add_row(name, str(entry["iterations"]), str(entry["credits"]))
    table.add_row(
        "[bold]total[/bold]",
        f"[bold]{credits.total_iterations}[/bold]",
        f"[bold]{credits.total_credits}[/bold]",
    )
    console.print(table)
    console.print(
        f"Questions: {question_count}   Estimated duration: ~{duration.avg_minutes} min "
        f"({duration.min_ms // 1000}s to {duration.max_ms // 1000}s)"
    )


def print_batch_table(batches: list[BatchScan]) -> None:
    """List batches with status and progress."""
    if output_mode.is_agent():
        output_mode.add_json(
            "batches",
            [
                {
                    "id": b.id,
                    "owner": b.owner,
                    "brand_name": b.brand_name,
                    "status": b.status,
                    "pause_reason": b.pause_reason,
                    "progress_percent": b.progress_percent,
                    "overall_exposure_rate": b.overall_exposure_rate,
                    "created_at": b.created_at,
                }
                for b in batches
            ],
        )
        return

    table = Table(title="Batch Scans", box=box.ROUNDED)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Brand", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Progress", justify="right")
    table.add_column("Exposure", justify="right", style="green")
    table.add_column("Created")

    for b in batches:
        status = _styled_status(b.status)
        if b.pause_reason:
            status += f" ({b.pause_reason})"
        exposure = "-" if b.overall_exposure_rate is None else f"{b.overall_exposure_rate:.1f}%"
        table.add_row(
            b.id,
            b.brand_name,
            status,
            f"{b.progress_percent:.1f}%",
            exposure,
            b.created_at or "",
        )

    console.print(table)


def print_batch_status(batch: BatchScan, questions: list[Question]) -> None:
    """Show one batch with per-question progress."""
    if output_mode.is_agent():
        output_mode.add_json(
            "batch",
            {
                "id": batch.id,
                "owner": batch.owner,
                "brand_name": batch.brand_name,
                "status": batch.status,
                "pause_reason": batch.pause_reason,
                "completed_questions": batch.completed_questions,
                "total_questions": batch.total_questions,
                "completed_iterations": batch.completed_iterations,
                "total_iterations": batch.total_iterations,
                "progress_percent": batch.progress_percent,
                "used_credits": batch.used_credits,
                "estimated_credits": batch.estimated_credits,
                "overall_exposure_rate": batch.overall_exposure_rate,
            },
        )
        output_mode.add_json(
            "questions",
            [
                {
                    "id": q.id,
                    "order": q.question_order,
                    "status": q.status,
                    "avg_exposure_rate": q.avg_exposure_rate,
                    "retry_count": q.retry_count,
                    "last_error": q.last_error,
                    "progress": {
                        name: {"completed": p.completed, "total": p.total}
                        for name, p in q.progress.items()
                    },
                }
                for q in questions
            ],
        )
        return

    summary = (
        f"[bold]Brand:[/bold] {batch.brand_name}   [bold]Owner:[/bold] {batch.owner}\n"
        f"[bold]Status:[/bold] {_styled_status(batch.status)}"
        + (f" ({batch.pause_reason})" if batch.pause_reason else "")
        + f"\n[bold]Questions:[/bold] {batch.completed_questions}/{batch.total_questions}"
        f"   [bold]Iterations:[/bold] {batch.completed_iterations}/{batch.total_iterations}"
        f" ({batch.progress_percent:.1f}%)"
        f"\n[bold]Credits:[/bold] {batch.used_credits}/{batch.estimated_credits}"
    )
    if batch.overall_exposure_rate is not None:
        summary += f"\n[bold]Overall exposure:[/bold] {batch.overall_exposure_rate:.1f}%"
    console.print(Panel(summary, title=f"Batch {batch.id}", box=box.ROUNDED))

    table = Table(box=box.SIMPLE)
    table.add_column("#", justify="right")
    table.add_column("Question", style="cyan", max_width=60)
    table.add_column("Status", justify="center")
    table.add_column("Providers")
    table.add_column("Exposure", justify="right", style="green")
    table.add_column("Last error", style="red", max_width=40)

    for q in questions:
        providers = ", ".join(
            f"{name} {p.completed}/{p.total}" for name, p in q.progress.items()
        )
        exposure = "-" if q.avg_exposure_rate is None else f"{q.avg_exposure_rate:.1f}%"
        table.add_row(
            str(q.question_order + 1),
            q.question_text,
            _styled_status(q.status),
            providers,
            exposure,
            q.last_error or "",
        )
    console.print(table)


def print_run_result(result: BatchRunResult) -> None:
    """Show what an engine run ended with."""
    if output_mode.is_agent():
        output_mode.add_json("batch_scan_id", result.batch_scan_id)
        output_mode.add_json("batch_status", result.status)
        output_mode.add_json("pause_reason", result.pause_reason)
        output_mode.add_json("overall_exposure_rate", result.overall_exposure_rate)
        if result.resume_point is not None:
            output_mode.add_json(
                "resume_point",
                {
                    "question_id": result.resume_point.question_id,
                    "provider": result.resume_point.provider,
                    "iteration_index": result.resume_point.iteration_index,
                },
            )
        return

    if result.status == "completed":
        border_style = "green"
        title = "[bold green]✓ Batch Completed[/bold green]"
        body = f"[bold]Overall exposure:[/bold] {result.overall_exposure_rate:.1f}%"
    elif result.status == "paused":
        border_style = "yellow"
        title = "[bold yellow]⚠ Batch Paused[/bold yellow]"
        body = f"[bold]Reason:[/bold] {result.pause_reason}"
    else:
        border_style = "red"
        title = f"[bold red]✗ Batch {result.status.title()}[/bold red]"
        body = f"[bold]Reason:[/bold] {result.pause_reason or 'unknown'}"

    if result.resume_point is not None:
        rp = result.resume_point
        body += (
            f"\n[bold]Resumes at:[/bold] question {rp.question_id}, "
            f"provider {rp.provider}, iteration {rp.iteration_index}"
        )

    console.print(
        Panel(
            f"[bold]Batch:[/bold] {result.batch_scan_id}\n{body}",
            title=title,
            border_style=border_style,
            box=box.ROUNDED,
        )
    )
