"""
Tests for the command line.
"""
import json
import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from click.testing import CliRunner

from rental_maker import cli as cli_module
from rental_maker.cli import cli, format_duration
from rental_maker.runner import PassReport

from conftest import NFT


@pytest.fixture
def env_file(tmp_path, monkeypatch):
    monkeypatch.delenv("PRIVATE_KEY", raising=False)
    monkeypatch.delenv("RENTAL_MAKER_PRIVATE_KEY", raising=False)
    store_path = tmp_path / "rental_prices.json"
    path = tmp_path / "test.env"
    path.write_text(f"RENTAL_MAKER_STORE_PATH={store_path}\n")
    return path


@pytest.fixture
def store_path(env_file):
    return env_file.parent / "rental_prices.json"


class TestFormatDuration:
    def test_formats_days_hours_minutes(self):
        assert format_duration(86400 + 2 * 3600 + 5 * 60 + 59) == "1d 2h 5m"

    def test_negative_is_zero(self):
        assert format_duration(-10) == "0d 0h 0m"


class TestStatus:
    """status command."""

    def test_lists_tracked_records(self, env_file, store_path):
        store_path.write_text(json.dumps({
            "42": {"price": 6, "nftAddress": NFT, "loanId": 100, "timestamp": int(time.time()) - 3600},
            "9": 4,
        }))

        result = CliRunner().invoke(cli, ["--env-file", str(env_file), "status"])

        assert result.exit_code == 0, result.output
        assert "42" in result.output
        assert "100" in result.output

    def test_empty_store(self, env_file):
        result = CliRunner().invoke(cli, ["--env-file", str(env_file), "status"])

        assert result.exit_code == 0
        assert "No tracked records" in result.output

    def test_corrupt_store_fails(self, env_file, store_path):
        store_path.write_text("{oops")

        result = CliRunner().invoke(cli, ["--env-file", str(env_file), "status"])

        assert result.exit_code == 1


class TestRun:
    """run command."""

    def test_missing_private_key(self, env_file):
        result = CliRunner().invoke(cli, ["--env-file", str(env_file), "run"])

        assert result.exit_code == 1
        assert "PRIVATE_KEY" in result.output

    def test_prints_report(self, env_file, monkeypatch):
        runner = MagicMock()
        runner.run_pass = AsyncMock(return_value=PassReport(pass_id="pass_abc", started_at=1.0, finished_at=2.0))
        monkeypatch.setattr(cli_module, "build_runner", lambda settings: runner)

        result = CliRunner().invoke(cli, ["--env-file", str(env_file), "run"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["pass_id"] == "pass_abc"

    def test_skipped_pass_exits_nonzero(self, env_file, monkeypatch):
        report = PassReport(pass_id="pass_abc", started_at=1.0).skip("unhealthy")
        runner = MagicMock()
        runner.run_pass = AsyncMock(return_value=report)
        monkeypatch.setattr(cli_module, "build_runner", lambda settings: runner)

        result = CliRunner().invoke(cli, ["--env-file", str(env_file), "run"])

        assert result.exit_code == 1
        assert json.loads(result.output)["skip_reason"] == "unhealthy"
