"""
Structured JSON logging for the visibility scanner.

Provides:
- JSON formatted output to stderr
- UTC timestamps
- Structured context fields and batch_scan_id correlation
- Secret redaction (API keys are never logged in full)

All modules log through the standard logging module with
``logger = logging.getLogger(__name__)``; this module only configures the
root handler. Use setup_logging(verbose=True) for DEBUG output.

Examples:
    >>> from visibility_scanner.utils.logging import setup_logging, log_with_context
    >>> setup_logging(verbose=True)
    >>> log_with_context(
    ...     logging.getLogger("batch.engine"),
    ...     logging.INFO,
    ...     "Iteration recorded",
    ...     context={"provider": "openai", "iteration_index": 3},
    ...     batch_scan_id="b-123",
    ... )

Security:
    - NEVER log full API keys
    - Only stderr is used (stdout reserved for user output)
"""

import json
import logging
import re
import sys
from typing import Any

from visibility_scanner.utils.time import utc_timestamp


class JSONFormatter(logging.Formatter):
    """
    Formatter that renders each record as a single JSON object.

    Fields: timestamp, level, component, message, plus optional context,
    batch_scan_id and exception.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": utc_timestamp(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if hasattr(record, "batch_scan_id"):
            log_entry["batch_scan_id"] = record.batch_scan_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class SecretRedactingFilter(logging.Filter):
    """
    Logging filter that redacts likely secrets from log records.

    Keeps only the last 4 characters:
    "sk-proj-abcdef123456..." -> "sk-...3456"
    "AIzaSy..." (Google API keys) -> "AIza...wxyz"
    "Bearer abc123xyz789..." -> "Bearer ***z789"
    """

    SECRET_PATTERNS = [
        (re.compile(r"\bsk-[a-zA-Z0-9_-]{20,}\b"), "sk-...{last4}"),
        (re.compile(r"\bAIza[a-zA-Z0-9_-]{20,}\b"), "AIza...{last4}"),
        (re.compile(r"\bBearer\s+[a-zA-Z0-9_-]{20,}\b"), "Bearer ***{last4}"),
        (re.compile(r"\b[a-zA-Z0-9_-]{40,}\b"), "***{last4}"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._redact_secrets(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self._redact_secrets(str(v)) for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self._redact_secrets(str(arg)) for arg in record.args
                )

        if hasattr(record, "context") and isinstance(record.context, dict):
            record.context = self._redact_dict(record.context)

        return True

    def _redact_secrets(self, text: str) -> str:
        for pattern, template in self.SECRET_PATTERNS:

            def redact_match(match: re.Match, template: str = template) -> str:
                return template.format(last4=match.group(0)[-4:])

            text = pattern.sub(redact_match, text)

        return text

    def _redact_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in data.items():
            if isinstance(value, str):
                result[key] = self._redact_secrets(value)
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    self._redact_secrets(v) if isinstance(v, str) else v for v in value
                ]
            else:
                result[key] = value
        return result


def setup_logging(verbose: bool = False, quiet_logs: bool = False) -> None:
    """
    Configure structured JSON logging on the root logger.

    Args:
        verbose: If True, set log level to DEBUG. Otherwise, use INFO.
        quiet_logs: If True (and not verbose), only log warnings and above.
            Used in human CLI mode so Rich output is not interleaved with
            JSON log lines.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet_logs:
        level = logging.WARNING
    else:
        level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(SecretRedactingFilter())

    root_logger.addHandler(handler)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    batch_scan_id: str | None = None,
) -> None:
    """
    Log a message with structured context and optional batch_scan_id.

    Equivalent to
    ``logger.log(level, message, extra={"context": ..., "batch_scan_id": ...})``.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, logging.WARNING, etc.)
        message: Human-readable log message
        context: Optional dict with additional structured data
        batch_scan_id: Optional batch identifier for correlation
    """
    extra = {}

    if context is not None:
        extra["context"] = context

    if batch_scan_id is not None:
        extra["batch_scan_id"] = batch_scan_id

    logger.log(level, message, extra=extra if extra else None)
