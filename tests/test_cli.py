"""
Tests for the command line interface.
"""

import pytest
from typer.testing import CliRunner

from ledger_engine.cli import app


runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0, result.output


def test_health(cli_env):
    result = runner.invoke(app, ["health"])
    assert result.exit_code == 0
    assert "healthy" in result.output


def test_wallet_commands(cli_env):
    result = runner.invoke(app, ["wallets", "add", "0xcli", "--network", "BEP20", "--currency", "USDT"])
    assert result.exit_code == 0, result.output
    assert "added" in result.output

    listed = runner.invoke(app, ["wallets", "list"])
    assert "0xcli" in listed.output

    health = runner.invoke(app, ["wallets", "health"])
    assert "LOW_AVAILABLE_WALLETS" in health.output

    duplicate = runner.invoke(app, ["wallets", "add", "0xcli", "--network", "BEP20", "--currency", "USDT"])
    assert duplicate.exit_code == 1
    assert "VALIDATION_ERROR" in duplicate.output


def test_run_accrual_then_history(cli_env):
    first = runner.invoke(app, ["run-accrual"])
    assert first.exit_code == 0, first.output
    assert "completed" in first.output

    second = runner.invoke(app, ["run-accrual"])
    assert second.exit_code == 0
    assert "skipped" in second.output

    runs = runner.invoke(app, ["runs", "daily_benefits"])
    assert runs.exit_code == 0
    assert "completed" in runs.output


def test_invalid_date_is_rejected(cli_env):
    result = runner.invoke(app, ["run-unlock", "--date", "10/03/2024"])
    assert result.exit_code != 0


def test_force_restart_unknown_run_fails(cli_env):
    result = runner.invoke(app, ["force-restart", "commission_unlock", "2024-03-01"])
    assert result.exit_code == 1
    assert "NOT_FOUND" in result.output
