"""Tests for the leadflow command line."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from leadflow.cli.main import cli
from leadflow.storage.database import LeadflowDatabase


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def db_path(temp_dir):
    return str(temp_dir / "cli.db")


@pytest.fixture
def config_path(temp_dir):
    return str(temp_dir / "config.json")


class TestCoreCommands:
    """init and migrate."""

    def test_init(self, runner, db_path):
        result = runner.invoke(cli, ["init", "--db", db_path])

        assert result.exit_code == 0
        assert "Database initialized" in result.output

    def test_migrate_is_idempotent(self, runner, db_path):
        runner.invoke(cli, ["init", "--db", db_path])

        result = runner.invoke(cli, ["migrate", "--db", db_path])

        assert result.exit_code == 0
        assert "No pending migrations" in result.output


class TestRealtorAndQueueCommands:
    """Realtor registration and queue display."""

    def test_add_and_join(self, runner, db_path):
        result = runner.invoke(cli, ["realtor", "add", "Ana", "--email", "ana@example.com", "--join-queue", "--db", db_path])

        assert result.exit_code == 0
        assert "Joined queue at position 1" in result.output

        shown = runner.invoke(cli, ["queue", "show", "--db", db_path])
        assert "Ana" in shown.output

    def test_queue_init(self, runner, db_path):
        runner.invoke(cli, ["realtor", "add", "Ana", "--db", db_path])
        runner.invoke(cli, ["realtor", "add", "Bruno", "--db", db_path])

        result = runner.invoke(cli, ["queue", "init", "--db", db_path])

        assert "2 realtor(s) added" in result.output
        assert len(LeadflowDatabase(Path(db_path)).list_realtors()) == 2

    def test_empty_queue(self, runner, db_path):
        result = runner.invoke(cli, ["queue", "show", "--db", db_path])
        assert "Queue is empty" in result.output


class TestLeadCommands:
    """Lead creation and distribution."""

    def test_create_and_distribute(self, runner, db_path):
        runner.invoke(cli, ["realtor", "add", "Ana", "--join-queue", "--db", db_path])

        result = runner.invoke(cli, ["lead", "create", "--name", "Maria", "--distribute", "--db", db_path])

        assert result.exit_code == 0
        assert "Reserved for" in result.output

    def test_no_realtor_available(self, runner, db_path):
        result = runner.invoke(cli, ["lead", "create", "--distribute", "--db", db_path])

        assert result.exit_code == 0
        assert "No realtor available" in result.output

    def test_unknown_property(self, runner, db_path):
        result = runner.invoke(cli, ["lead", "create", "--property", "missing", "--db", db_path])

        assert result.exit_code != 0
        assert "Property not found" in result.output


class TestConfigCommands:
    """Distribution config commands."""

    def test_timings(self, runner, config_path):
        result = runner.invoke(
            cli, ["config", "timings", "--reservation", "15", "--fast-response", "3", "--config", config_path]
        )

        assert result.exit_code == 0
        with open(config_path) as f:
            assert json.load(f)["reservation_minutes"] == 15

    def test_invalid_timings(self, runner, config_path):
        result = runner.invoke(
            cli, ["config", "timings", "--reservation", "0", "--fast-response", "3", "--config", config_path]
        )
        assert result.exit_code != 0

    def test_points(self, runner, config_path):
        result = runner.invoke(cli, ["config", "points", "COMPLETE_LEAD", "20", "--config", config_path])

        assert result.exit_code == 0
        with open(config_path) as f:
            assert json.load(f)["points"]["COMPLETE_LEAD"] == 20

    def test_show(self, runner, config_path):
        result = runner.invoke(cli, ["config", "show", "--config", config_path])

        assert result.exit_code == 0
        assert "Reservation window" in result.output


class TestJobCommands:
    """Manual job runs."""

    def test_run_once(self, runner, db_path, config_path):
        result = runner.invoke(cli, ["jobs", "run-once", "--db", db_path, "--config", config_path])

        assert result.exit_code == 0
        assert "release_expired" in result.output
        assert "failed" not in result.output
