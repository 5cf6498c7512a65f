"""
Tests for utils.console module - dual-mode CLI output utilities.

- OutputMode validates its format and buffers JSON in agent mode
- Message helpers print in human mode and buffer in agent mode
- Batch display helpers emit structured keys in agent mode
"""

import json

import pytest

from visibility_scanner.batch.models import BatchRunResult, ResumePoint
from visibility_scanner.utils.console import (
    OutputMode,
    error,
    info,
    output_mode,
    print_run_result,
    spinner,
    success,
    warning,
)

# ========================================================================
# Fixtures
# ========================================================================


@pytest.fixture
def reset_output_mode():
    """Reset global output_mode to default state after each test."""
    original_format = output_mode.format
    original_quiet = output_mode.quiet
    output_mode._json_buffer.clear()

    yield output_mode

    output_mode.format = original_format
    output_mode.quiet = original_quiet
    output_mode._json_buffer.clear()


# ========================================================================
# OutputMode
# ========================================================================


class TestOutputMode:
    """Test OutputMode state and JSON buffering."""

    def test_defaults(self):
        mode = OutputMode()
        assert mode.is_human()
        assert not mode.is_agent()

    def test_invalid_format(self):
        with pytest.raises(ValueError, match="Invalid format"):
            OutputMode("xml")

    def test_flush_writes_once(self, capsys):
        mode = OutputMode("json")
        mode.add_json("records", 3)

        mode.flush_json()
        mode.flush_json()

        assert json.loads(capsys.readouterr().out) == {"records": 3}

    def test_flush_is_noop_in_text_mode(self, capsys):
        mode = OutputMode("text")
        mode.add_json("records", 3)

        mode.flush_json()

        assert capsys.readouterr().out == ""


# ========================================================================
# Message helpers
# ========================================================================


def test_agent_mode_buffers_messages(reset_output_mode, capsys):
    reset_output_mode.format = "json"

    with spinner("Working..."):
        info("not buffered")
    warning("slow provider")
    error("boom")

    assert capsys.readouterr().out == ""
    reset_output_mode.flush_json()
    payload = json.loads(capsys.readouterr().out)
    assert payload == {"warning": "slow provider", "status": "error", "error": "boom"}


def test_human_mode_prints(reset_output_mode, capsys):
    reset_output_mode.format = "text"

    success("Batch created")

    assert "Batch created" in capsys.readouterr().out


def test_quiet_suppresses_info(reset_output_mode, capsys):
    reset_output_mode.format = "text"
    reset_output_mode.quiet = True

    info("hidden")

    assert "hidden" not in capsys.readouterr().out


def test_run_result_json(reset_output_mode, capsys):
    reset_output_mode.format = "json"

    print_run_result(
        BatchRunResult(
            batch_scan_id="b-1",
            status="paused",
            pause_reason="rate_limit",
            resume_point=ResumePoint("q-1", "openai", 4),
        )
    )
    reset_output_mode.flush_json()

    payload = json.loads(capsys.readouterr().out)
    assert payload["batch_status"] == "paused"
    assert payload["pause_reason"] == "rate_limit"
    assert payload["resume_point"] == {
        "question_id": "q-1",
        "provider": "openai",
        "iteration_index": 4,
    }
