"""
Data export utilities for the visibility scanner.

Exports batch data from the SQLite store for external analysis:

- Iterations (one row per provider call, joined with question text) as CSV
  or JSON
- Batch summaries (status, progress, exposure and aggregated metrics) as JSON

Example:
    >>> store = SQLiteScanStore("./output/visibility_scans.db")
    >>> export_iterations_csv("./iterations.csv", store, batch_id)
    12

Files are written as UTF-8; CSV files always carry a header row, even when
there is nothing to export.
"""

import csv
import json
import logging
from dataclasses import asdict
from pathlib import Path

from visibility_scanner.storage.store import SQLiteScanStore

logger = logging.getLogger(__name__)

ITERATION_FIELDS = [
    "question_order",
    "question_id",
    "question_text",
    "provider",
    "iteration_index",
    "status",
    "brand_mentioned",
    "mention_position",
    "sentiment",
    "competitors_mentioned",
    "response_time_ms",
    "error_kind",
    "error_message",
    "created_at",
    "response_text",
]


def _export_record(row: dict) -> dict:
    """Shape a raw iteration row for export (decoded JSON, real booleans)."""
    competitors = json.loads(row["competitors_json"]) if row.get("competitors_json") else {}
    record = {name: row.get(name) for name in ITERATION_FIELDS if name in row}
    record["brand_mentioned"] = bool(row.get("brand_mentioned"))
    record["competitors_mentioned"] = competitors
    return record


def export_iterations_csv(
    output_path: str | Path, store: SQLiteScanStore, batch_scan_id: str
) -> int:
    """
    Export a batch's iterations to a CSV file.

    Competitor flags are flattened to a ``;``-separated list of competitors
    that were mentioned.

    Args:
        output_path: Path to output CSV file
        store: Store holding the batch
        batch_scan_id: Batch to export

    Returns:
        Number of rows exported

    Raises:
        BatchScanNotFoundError: If the batch does not exist
        DatabaseError: If the query fails
        OSError: If the file cannot be written
    """
    store.get_batch(batch_scan_id)
    rows = [_export_record(r) for r in store.get_iteration_export_rows(batch_scan_id)]

    logger.info(f"Exporting {len(rows)} iterations to CSV: {output_path}")
    if not rows:
        logger.warning(f"No iterations recorded for batch {batch_scan_id}")

    try:
        with open(output_path, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=ITERATION_FIELDS)
            writer.writeheader()
            for row in rows:
                row["competitors_mentioned"] = ";".join(
                    name for name, hit in row["competitors_mentioned"].items() if hit
                )
                writer.writerow(row)
    except OSError as e:
        logger.error(f"File write error: {e}", exc_info=True)
        raise

    return len(rows)


def export_iterations_json(
    output_path: str | Path, store: SQLiteScanStore, batch_scan_id: str
) -> int:
    """Export a batch's iterations as a JSON array. Returns the record count."""
    store.get_batch(batch_scan_id)
    records = [_export_record(r) for r in store.get_iteration_export_rows(batch_scan_id)]

    logger.info(f"Exporting {len(records)} iterations to JSON: {output_path}")

    try:
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2, ensure_ascii=False)
            f.write("\n")
    except OSError as e:
        logger.error(f"File write error: {e}", exc_info=True)
        raise

    return len(records)


def export_batch_summary_json(
    output_path: str | Path, store: SQLiteScanStore, batch_scan_id: str
) -> dict:
    """
    Export a batch summary: batch fields, per-question progress and metrics.

    Returns:
        The exported summary dict
    """
    batch = store.get_batch(batch_scan_id)
    questions = store.get_questions(batch_scan_id)

    summary = asdict(batch)
    summary["progress_percent"] = batch.progress_percent
    summary["questions"] = [asdict(q) for q in questions]

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(summary, f, indent=2, ensure_ascii=False)
        f.write("\n")

    logger.info(f"Exported summary of batch {batch_scan_id} to {output_path}")
    return summary
