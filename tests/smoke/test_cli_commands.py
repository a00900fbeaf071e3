"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
Commands run in-process against an in-memory scheduler context; the help
checks run the module in a subprocess like a user would.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import subprocess
import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

from src.cli import main as cli_main

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent

runner = CliRunner()


def run_cli_command(command: str, timeout: int = 30) -> tuple[int, str, str]:
    """
    Run a CLI command in a subprocess and return exit code, stdout, stderr.

    Args:
        command: The command to run (after 'python -m src.cli.main')
        timeout: Maximum time to wait
    """
    full_command = f"{sys.executable} -m src.cli.main {command}"

    result = subprocess.run(
        full_command,
        shell=True,
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
    )

    return result.returncode, result.stdout, result.stderr


@pytest.fixture
def cli(scheduler_context, monkeypatch):
    """Route every command to the shared in-memory context."""
    monkeypatch.setattr(cli_main, "_build_context", lambda: scheduler_context)
    monkeypatch.setattr(cli_main, "configure_logging", lambda *args, **kwargs: None)

    def invoke(*args: str):
        return runner.invoke(cli_main.app, list(args))

    return invoke


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self):
        code, stdout, stderr = run_cli_command("--help")

        assert code == 0, f"Help failed: {stderr}"
        assert "review" in stdout
        assert "queue" in stdout

    def test_review_help(self):
        code, stdout, stderr = run_cli_command("review --help")

        assert code == 0, f"Review help failed: {stderr}"


class TestEnrollAndReview:
    def test_enroll(self, cli, store):
        result = cli("enroll", "alice", "card-1", "--subject", "math")

        assert result.exit_code == 0, result.output
        assert "Enrolled alice in card-1" in result.output
        assert store.get_state("alice", "card-1").subject_id == "math"

    def test_review_passes(self, cli):
        cli("enroll", "alice", "card-1")

        result = cli("review", "alice", "card-1", "4")

        assert result.exit_code == 0, result.output
        assert "passed" in result.output
        assert "Interval: 1 day(s)" in result.output

    def test_review_invalid_grade(self, cli):
        cli("enroll", "alice", "card-1")

        result = cli("review", "alice", "card-1", "9")

        assert result.exit_code == 1
        assert "InvalidGrade" in result.output

    def test_review_not_enrolled(self, cli):
        result = cli("review", "alice", "ghost", "3")

        assert result.exit_code == 1
        assert "NotEnrolled" in result.output

    def test_unenroll(self, cli, store):
        cli("enroll", "alice", "card-1")

        result = cli("unenroll", "alice", "card-1")

        assert result.exit_code == 0
        assert store.get_enrollment("alice", "card-1") is None
        assert cli("unenroll", "alice", "card-1").exit_code == 1


class TestQueueAndStats:
    def test_queue_lists_due_cards(self, cli):
        cli("enroll", "alice", "card-1", "--subject", "math")
        cli("enroll", "alice", "card-2", "--subject", "bio")

        result = cli("queue", "alice")

        assert result.exit_code == 0, result.output
        assert "card-1" in result.output
        assert "card-2" in result.output

    def test_empty_queue(self, cli):
        result = cli("queue", "nobody")

        assert result.exit_code == 0
        assert "Nothing due" in result.output

    def test_negative_limit(self, cli):
        result = cli("queue", "alice", "--limit=-1")

        assert result.exit_code == 1

    def test_stats(self, cli):
        cli("enroll", "alice", "card-1")
        cli("review", "alice", "card-1", "5")

        result = cli("stats", "alice")

        assert result.exit_code == 0, result.output
        assert "Streak" in result.output
        assert "Learning" in result.output


class TestDatabaseCommands:
    def test_db_init(self, cli, monkeypatch):
        calls = []
        monkeypatch.setattr("src.db.database.init_db", lambda: calls.append(True))

        result = cli("db", "init")

        assert result.exit_code == 0
        assert calls == [True]
        assert "Database initialized" in result.output
