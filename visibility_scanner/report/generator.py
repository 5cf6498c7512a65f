"""
HTML report generation for batch scans.

Renders a self-contained HTML report (inline CSS, no external assets) from a
batch's stored state: status and progress, overall exposure, per-provider
scores, sentiment distribution, share of voice and a per-question table.

Security:
- Jinja2 autoescaping is enabled; brand names, questions and provider
  answers are user or model supplied and always escaped

Example:
    >>> store = SQLiteScanStore("./output/visibility_scans.db")
    >>> html = generate_report(store, batch_id)
    >>> write_report(store, batch_id, "./output/report.html")
"""

import logging
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from visibility_scanner.batch.aggregator import aggregate_batch_metrics
from visibility_scanner.batch.errors import classify_error, summarize_errors
from visibility_scanner.storage.store import SQLiteScanStore
from visibility_scanner.utils.time import utc_timestamp

logger = logging.getLogger(__name__)

TEMPLATE_NAME = "report.html.j2"


def _environment() -> Environment:
    template_dir = Path(__file__).parent / "templates"
    return Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=select_autoescape(["html", "xml", "j2"]),
    )


def generate_report(store: SQLiteScanStore, batch_scan_id: str) -> str:
    """
    Generate the HTML report for a batch.

    Completed batches use the metrics stored at completion; for batches that
    are still in progress the metrics are computed from the current rows and
    the report is marked as partial.

    Args:
        store: Store holding the batch
        batch_scan_id: Batch to report on

    Returns:
        HTML string

    Raises:
        BatchScanNotFoundError: If the batch does not exist
        ValueError: If the template cannot be loaded or rendered
    """
    batch = store.get_batch(batch_scan_id)
    questions = store.get_questions(batch_scan_id)

    if batch.metrics is not None:
        metrics = batch.metrics
        partial = False
    else:
        metrics = aggregate_batch_metrics(
            batch, questions, store.get_iterations(batch_scan_id)
        )
        partial = True

    logger.info(f"Generating HTML report for batch: {batch_scan_id}")

    try:
        template = _environment().get_template(TEMPLATE_NAME)
    except Exception as e:
        logger.error(f"Failed to load template: {e}", exc_info=True)
        raise ValueError(f"Cannot load report template: {e}") from e

    question_rows = [
        {
            "order": q.question_order + 1,
            "text": q.question_text,
            "status": q.status,
            "exposure_rate": q.avg_exposure_rate,
            "retry_count": q.retry_count,
            "last_error": q.last_error,
            "providers": [
                {
                    "name": name,
                    "completed": p.completed,
                    "total": p.total,
                    "mentions": p.mention_count,
                    "exposure_rate": p.exposure_rate,
                }
                for name, p in q.progress.items()
            ],
        }
        for q in questions
    ]

    last_errors = [q.last_error for q in questions if q.last_error]
    try:
        return template.render(
            batch=batch,
            metrics=metrics,
            partial=partial,
            questions=question_rows,
            error_overview=summarize_errors([classify_error(e) for e in last_errors]),
            generated_at=utc_timestamp(),
        )
    except Exception as e:
        logger.error(f"Failed to render template: {e}", exc_info=True)
        raise ValueError(f"Cannot render report template: {e}") from e


def write_report(
    store: SQLiteScanStore, batch_scan_id: str, output_path: str | Path
) -> Path:
    """Generate the report and write it to output_path (parents created)."""
    html = generate_report(store, batch_scan_id)
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(html, encoding="utf-8")
    logger.info(f"HTML report written to: {path}")
    return path
