"""CLI tests running commands against a temporary SQLite database."""

import re

import pytest
from typer.testing import CliRunner

from tunebridge.config import settings
from tunebridge.infrastructure.cli import app as cli_module
from tunebridge.infrastructure.cli.app import app

JOB_ID = re.compile(r"[0-9a-f]{32}")


@pytest.fixture
def runner(tmp_path, monkeypatch):
    """CLI runner bound to a throwaway database and log file."""
    monkeypatch.setattr(
        settings.database, "url", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    )
    monkeypatch.setattr(settings.logging, "log_file", tmp_path / "logs" / "cli.log")
    monkeypatch.setattr(cli_module, "setup_loguru_logger", lambda verbose=False: None)
    return CliRunner()


def _submit(runner, *extra: str):
    return runner.invoke(
        app,
        [
            "submit",
            "--user", "user-1",
            "--from", "spotify",
            "--playlist", "37i9dQZF1DX",
            "--to", "apple_music",
            *extra,
        ],
    )


class TestSystemCommands:
    def test_help_lists_commands(self, runner):
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for command in ("submit", "status", "cancel", "worker", "cleanup", "credentials"):
            assert command in result.stdout

    def test_version(self, runner):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert "TuneBridge" in result.stdout

    def test_init_db(self, runner):
        result = runner.invoke(app, ["init-db"])

        assert result.exit_code == 0
        assert "Database ready" in result.stdout


class TestCredentials:
    def test_store_credential(self, runner):
        result = runner.invoke(
            app,
            ["credentials", "set", "-u", "user-1", "-p", "spotify", "--token", "abc"],
        )

        assert result.exit_code == 0
        assert "Stored spotify credential" in result.stdout

    def test_unknown_provider(self, runner):
        result = runner.invoke(
            app,
            ["credentials", "set", "-u", "user-1", "-p", "napster", "--token", "abc"],
        )

        assert result.exit_code == 1
        assert "Unknown provider" in result.stdout


class TestTransferCommands:
    """Submit, inspect and cancel jobs end to end through the CLI."""

    def test_submit_then_status(self, runner):
        # Arrange
        submitted = _submit(runner, "--name", "Copied Mix")
        job_id = JOB_ID.search(submitted.stdout).group(0)

        # Act
        result = runner.invoke(app, ["status", job_id, "--format", "json"])

        # Assert
        assert submitted.exit_code == 0
        assert result.exit_code == 0
        assert '"status": "queued"' in result.stdout
        assert '"transferredTracks": 0' in result.stdout

    def test_status_table(self, runner):
        job_id = JOB_ID.search(_submit(runner).stdout).group(0)

        result = runner.invoke(app, ["status", job_id])

        assert result.exit_code == 0
        assert "queued" in result.stdout

    def test_status_of_unknown_job(self, runner):
        result = runner.invoke(app, ["status", "0" * 32])

        assert result.exit_code == 1
        assert "No job" in result.stdout

    def test_submit_rejects_unknown_provider(self, runner):
        result = runner.invoke(
            app,
            ["submit", "-u", "user-1", "--from", "tidal", "--playlist", "p", "--to", "spotify"],
        )

        assert result.exit_code == 1
        assert "tidal" in result.stdout

    def test_submit_requires_target_when_not_creating(self, runner):
        result = _submit(runner, "--no-create")

        assert result.exit_code == 1

    def test_cancel(self, runner):
        job_id = JOB_ID.search(_submit(runner).stdout).group(0)

        result = runner.invoke(app, ["cancel", job_id])

        assert result.exit_code == 0
        assert "canceled" in result.stdout

    def test_cancel_unknown_job(self, runner):
        result = runner.invoke(app, ["cancel", "missing"])

        assert result.exit_code == 1


class TestWorkerCommands:
    def test_worker_once_with_empty_queue(self, runner):
        result = runner.invoke(app, ["worker", "--once", "-c", "2"])

        assert result.exit_code == 0
        assert "Processed 0 job(s)" in result.stdout

    def test_cleanup(self, runner):
        result = runner.invoke(app, ["cleanup"])

        assert result.exit_code == 0
        assert "Requeued" in result.stdout
        assert "Pruned" in result.stdout
