"""Tests for utils/logging.py: JSON formatting, levels and secret redaction."""

import json
import logging

import pytest

from visibility_scanner.utils.logging import (
    JSONFormatter,
    SecretRedactingFilter,
    log_with_context,
    setup_logging,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(msg, args=None, **extra):
    record = logging.LogRecord("visibility_scanner.test", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.parametrize(
    "verbose,quiet,expected",
    [(True, True, logging.DEBUG), (False, False, logging.INFO), (False, True, logging.WARNING)],
)
def test_setup_logging_levels(restore_root_logger, verbose, quiet, expected):
    setup_logging(verbose=verbose, quiet_logs=quiet)

    assert restore_root_logger.level == expected
    assert len(restore_root_logger.handlers) == 1
    assert isinstance(restore_root_logger.handlers[0].formatter, JSONFormatter)


def test_json_formatter_fields():
    record = _record(
        "Iteration recorded",
        context={"provider": "openai"},
        batch_scan_id="b-1",
    )

    entry = json.loads(JSONFormatter().format(record))

    assert entry["level"] == "INFO"
    assert entry["component"] == "visibility_scanner.test"
    assert entry["message"] == "Iteration recorded"
    assert entry["context"] == {"provider": "openai"}
    assert entry["batch_scan_id"] == "b-1"
    assert entry["timestamp"].endswith("Z")


@pytest.mark.parametrize(
    "secret,expected",
    [
        ("sk-proj-abcdefghijklmnopqrstuvwx1234", "sk-...1234"),
        ("AIzaSyabcdefghijklmnopqrstuvwxyz", "AIza...wxyz"),
    ],
)
def test_redacts_api_keys(secret, expected):
    record = _record(f"Using key {secret}")

    SecretRedactingFilter().filter(record)

    assert secret not in record.getMessage()
    assert expected in record.getMessage()


def test_redacts_args_and_context():
    secret = "sk-abcdefghijklmnopqrstuvwxyz9876"
    record = _record("key=%s", (secret,), context={"headers": {"auth": f"Bearer {secret}"}})

    SecretRedactingFilter().filter(record)

    assert secret not in record.getMessage()
    assert secret not in json.dumps(record.context)


def test_log_with_context(caplog):
    logger = logging.getLogger("visibility_scanner.test")
    with caplog.at_level(logging.INFO, logger="visibility_scanner.test"):
        log_with_context(logger, logging.INFO, "hello", context={"a": 1}, batch_scan_id="b-9")

    record = caplog.records[0]
    assert record.context == {"a": 1}
    assert record.batch_scan_id == "b-9"
