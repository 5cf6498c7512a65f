"""
Tests for the CLI: commands, output modes and exit codes.

Provider clients are replaced by MockProviderClient through
``visibility_scanner.cli.build_client``; API keys come from monkeypatched
environment variables.

Exit codes:
    - 0: Success / batch completed
    - 1: Configuration or usage error
    - 3: Batch paused
    - 4: Batch failed
"""

import json

import pytest
import yaml
from typer.testing import CliRunner

from visibility_scanner.cli import (
    EXIT_CONFIG_ERROR,
    EXIT_FAILED,
    EXIT_PAUSED,
    EXIT_SUCCESS,
    app,
)
from visibility_scanner.exceptions import (
    InsufficientCreditsError,
    ProviderAuthenticationError,
)
from visibility_scanner.llm_runner.mock_client import MockProviderClient
from visibility_scanner.storage.store import SQLiteScanStore

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def cli_runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def no_log_handlers(monkeypatch):
    """Keep JSON log lines out of captured CLI output."""
    monkeypatch.setattr("visibility_scanner.cli.setup_logging", lambda **kwargs: None)


@pytest.fixture
def env_keys(monkeypatch):
    monkeypatch.setenv("TEST_OPENAI_KEY", "sk-test-openai")


@pytest.fixture
def config_file(tmp_path, db_path):
    data = {
        "owner": "cli-tester",
        "brand": {"name": "Acme", "competitors": ["Globex"]},
        "providers": [
            {
                "provider": "openai",
                "model_name": "gpt-4o-mini",
                "env_api_key": "TEST_OPENAI_KEY",
                "iterations": 2,
            }
        ],
        "questions": ["Best cloud host?", "Cheapest cloud host?"],
        "sentiment": {"method": "lexical"},
        "settings": {"sqlite_db_path": db_path, "timeout_per_call_ms": 5000},
    }
    path = tmp_path / "scan.config.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


@pytest.fixture
def mock_clients(monkeypatch):
    """Route every provider to one scripted mock client."""
    client = MockProviderClient(default_response="Acme is the best choice.")

    def _build(provider, model_name, api_key, **kwargs):
        return client

    monkeypatch.setattr("visibility_scanner.cli.build_client", _build)
    return client


def _json(result) -> dict:
    return json.loads(result.stdout)


def _create(cli_runner, config_file) -> str:
    result = cli_runner.invoke(
        app, ["create", "--config", config_file, "--yes", "--format", "json"]
    )
    assert result.exit_code == EXIT_SUCCESS, result.output
    return _json(result)["batch_scan_id"]


# ============================================================================
# validate / create
# ============================================================================


def test_validate_ok(cli_runner, config_file, env_keys):
    result = cli_runner.invoke(app, ["validate", "--config", config_file, "--format", "json"])

    assert result.exit_code == EXIT_SUCCESS
    payload = _json(result)
    assert payload["status"] == "success"
    assert payload["estimate"]["total_iterations"] == 4
    assert payload["estimate"]["total_credits"] == 8


def test_validate_missing_key(cli_runner, config_file, monkeypatch):
    monkeypatch.delenv("TEST_OPENAI_KEY", raising=False)

    result = cli_runner.invoke(app, ["validate", "--config", config_file, "--format", "json"])

    assert result.exit_code == EXIT_CONFIG_ERROR
    assert "TEST_OPENAI_KEY" in _json(result)["error"]


def test_validate_invalid_config(cli_runner, tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text(yaml.safe_dump({"brand": {"name": "Acme"}, "providers": []}))

    result = cli_runner.invoke(app, ["validate", "--config", str(path)])

    assert result.exit_code == EXIT_CONFIG_ERROR


def test_invalid_format(cli_runner, config_file, env_keys):
    result = cli_runner.invoke(app, ["validate", "--config", config_file, "--format", "xml"])
    assert result.exit_code == EXIT_CONFIG_ERROR


def test_create_stores_pending_batch(cli_runner, config_file, env_keys, db_path):
    batch_id = _create(cli_runner, config_file)

    batch = SQLiteScanStore(db_path).get_batch(batch_id)
    assert batch.status == "pending"
    assert batch.owner == "cli-tester"
    assert batch.total_iterations == 4


# ============================================================================
# run / start / resume
# ============================================================================


def test_run_completes(cli_runner, config_file, env_keys, mock_clients, db_path):
    result = cli_runner.invoke(
        app, ["run", "--config", config_file, "--yes", "--format", "json"]
    )

    assert result.exit_code == EXIT_SUCCESS, result.output
    payload = _json(result)
    assert payload["batch_status"] == "completed"
    assert payload["overall_exposure_rate"] == 100.0
    assert mock_clients.call_count == 4

    batch = SQLiteScanStore(db_path).get_batch(payload["batch_scan_id"])
    assert batch.metrics["sentiment_distribution"]["positive"]["count"] == 4


def test_run_human_mode(cli_runner, config_file, env_keys, mock_clients):
    result = cli_runner.invoke(app, ["run", "--config", config_file, "--yes"])

    assert result.exit_code == EXIT_SUCCESS
    assert "Batch Completed" in result.stdout


def test_start_pauses_then_resume_completes(
    cli_runner, config_file, env_keys, mock_clients, db_path
):
    batch_id = _create(cli_runner, config_file)
    mock_clients.script = [InsufficientCreditsError("balance too low")]

    result = cli_runner.invoke(
        app, ["start", batch_id, "--config", config_file, "--format", "json"]
    )

    assert result.exit_code == EXIT_PAUSED, result.output
    payload = _json(result)
    assert payload["batch_status"] == "paused"
    assert payload["pause_reason"] == "insufficient_credits"
    assert payload["resume_point"]["iteration_index"] == 1

    result = cli_runner.invoke(
        app, ["resume", batch_id, "--config", config_file, "--format", "json"]
    )

    assert result.exit_code == EXIT_SUCCESS, result.output
    assert _json(result)["batch_status"] == "completed"
    iterations = SQLiteScanStore(db_path).get_iterations(batch_id)
    assert len(iterations) == 4
    assert sum(1 for i in iterations if i.status == "success") == 3


def test_start_auth_failure_exits_failed(cli_runner, config_file, env_keys, mock_clients):
    batch_id = _create(cli_runner, config_file)
    mock_clients.script = [ProviderAuthenticationError("401 Unauthorized")]

    result = cli_runner.invoke(
        app, ["start", batch_id, "--config", config_file, "--format", "json"]
    )

    assert result.exit_code == EXIT_FAILED
    assert _json(result)["batch_status"] == "failed"


def test_resume_pending_batch_rejected(cli_runner, config_file, env_keys, mock_clients):
    batch_id = _create(cli_runner, config_file)

    result = cli_runner.invoke(
        app, ["resume", batch_id, "--config", config_file, "--format", "json"]
    )

    assert result.exit_code == EXIT_CONFIG_ERROR
    assert "paused" in _json(result)["error"]


def test_start_unknown_batch(cli_runner, config_file, env_keys, mock_clients):
    result = cli_runner.invoke(
        app, ["start", "missing", "--config", config_file, "--format", "json"]
    )
    assert result.exit_code == EXIT_CONFIG_ERROR


# ============================================================================
# pause / status / report / export / delete
# ============================================================================


def test_pause_requires_running(cli_runner, config_file, env_keys, db_path):
    batch_id = _create(cli_runner, config_file)

    result = cli_runner.invoke(app, ["pause", batch_id, "--db", db_path, "--format", "json"])

    assert result.exit_code == EXIT_CONFIG_ERROR


def test_pause_running_batch(cli_runner, config_file, env_keys, db_path):
    batch_id = _create(cli_runner, config_file)
    SQLiteScanStore(db_path).transition_status(batch_id, ("pending",), "running")

    result = cli_runner.invoke(app, ["pause", batch_id, "--db", db_path, "--format", "json"])

    assert result.exit_code == EXIT_SUCCESS
    assert _json(result)["batch_status"] == "paused"


def test_status_lists_and_shows(cli_runner, config_file, env_keys, db_path):
    batch_id = _create(cli_runner, config_file)

    listing = cli_runner.invoke(app, ["status", "--db", db_path, "--format", "json"])
    detail = cli_runner.invoke(app, ["status", batch_id, "--db", db_path, "--format", "json"])

    assert listing.exit_code == detail.exit_code == EXIT_SUCCESS
    assert [b["id"] for b in _json(listing)["batches"]] == [batch_id]
    payload = _json(detail)
    assert payload["batch"]["status"] == "pending"
    assert len(payload["questions"]) == 2
    assert payload["questions"][0]["progress"]["openai"] == {"completed": 0, "total": 2}


def test_status_human_mode(cli_runner, config_file, env_keys, db_path):
    batch_id = _create(cli_runner, config_file)

    result = cli_runner.invoke(app, ["status", batch_id, "--db", db_path])

    assert result.exit_code == EXIT_SUCCESS
    assert "Best cloud host?" in result.stdout


def test_report_and_export(cli_runner, config_file, env_keys, mock_clients, db_path, tmp_path):
    run = cli_runner.invoke(app, ["run", "--config", config_file, "--yes", "--format", "json"])
    batch_id = _json(run)["batch_scan_id"]
    report_path = tmp_path / "out" / "report.html"
    csv_path = tmp_path / "iterations.csv"

    report = cli_runner.invoke(
        app, ["report", batch_id, "--db", db_path, "--output", str(report_path)]
    )
    export = cli_runner.invoke(
        app,
        ["export", batch_id, "--db", db_path, "--output", str(csv_path), "--format", "json"],
    )

    assert report.exit_code == EXIT_SUCCESS
    assert "Visibility Report: Acme" in report_path.read_text(encoding="utf-8")
    assert export.exit_code == EXIT_SUCCESS
    assert _json(export)["records"] == 4


def test_export_rejects_unknown_extension(cli_runner, db_path, tmp_path):
    result = cli_runner.invoke(
        app, ["export", "any", "--db", db_path, "--output", str(tmp_path / "x.xlsx")]
    )
    assert result.exit_code == EXIT_CONFIG_ERROR


def test_delete(cli_runner, config_file, env_keys, db_path):
    batch_id = _create(cli_runner, config_file)

    result = cli_runner.invoke(app, ["delete", batch_id, "--db", db_path])

    assert result.exit_code == EXIT_SUCCESS
    assert SQLiteScanStore(db_path).list_batches() == []
