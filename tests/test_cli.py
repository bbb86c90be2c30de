"""Tests for CLI commands."""

import json
import xml.etree.ElementTree as ET
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from conftest import FakeSession
from wutcli import __version__
from wutcli.cli import app
from wutcli.core.session import SessionError

runner = CliRunner()

SCRIPT = """
objective: Log in
base_url: https://ex.com
steps:
  - id: open
    navigate: /login
  - id: submit
    click: "#submit"
"""


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """No user/project config files or WUT_* variables leak into tests."""
    for name in ("WUT_BROWSER", "WUT_HEADLESS", "WUT_PARALLEL", "WUT_VERBOSE", "WUT_ARTIFACTS"):
        monkeypatch.delenv(name, raising=False)
    with patch("wutcli.core.config.GLOBAL_CONFIG", tmp_path / "missing-global.yaml"):
        with patch("wutcli.core.config.PROJECT_CONFIG", tmp_path / "missing-project.yaml"):
            yield


@pytest.fixture
def script_file(tmp_path: Path) -> Path:
    path = tmp_path / "login.yaml"
    path.write_text(SCRIPT)
    return path


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "wut.yaml"
    path.write_text("retry_policy:\n  max_step_retries: 0\n  retry_wait_ms: 0\n")
    return path


class TestVersion:
    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output


class TestValidateCommand:
    """Tests for the validate command."""

    def test_valid_script(self, script_file):
        result = runner.invoke(app, ["validate", str(script_file)])

        assert result.exit_code == 0
        assert "2 steps" in result.output

    def test_invalid_script(self, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text("steps:\n  - action: click\n")

        result = runner.invoke(app, ["validate", str(bad)])

        assert result.exit_code == 2
        assert "'target'" in result.output

    def test_invalid_config(self, script_file, tmp_path):
        config = tmp_path / "bad-config.yaml"
        config.write_text("exploration:\n  time_budget_sec: 5\n")

        result = runner.invoke(app, ["validate", str(script_file), "--config", str(config)])

        assert result.exit_code == 2
        assert "time_budget_sec" in result.output


class TestRunCommand:
    """Tests for the run command with an in-memory browser session."""

    def _run(self, args, session_factory):
        with patch("wutcli.core.playwright_session.launch_session", side_effect=session_factory):
            return runner.invoke(app, ["run", *args])

    def test_passing_run(self, script_file, config_file, tmp_path):
        """All steps pass: exit 0 and a JSON report per run."""
        def factory(config):
            session = FakeSession()
            session.add("css=#submit")
            return session

        output = tmp_path / "artifacts"
        result = self._run(
            [str(script_file), "--config", str(config_file), "--output", str(output)], factory
        )

        assert result.exit_code == 0, result.output
        [report_path] = output.glob("*/report.json")
        data = json.loads(report_path.read_text())
        assert data["status"] == "passed"
        assert data["results"][0]["step_id"] == "open"
        assert "Run Summary" in result.output

    def test_failing_run_writes_junit(self, script_file, config_file, tmp_path):
        """A failed step exits 1; JUnit lists the failure."""
        junit = tmp_path / "junit.xml"
        result = self._run(
            [
                str(script_file),
                "--config", str(config_file),
                "--output", str(tmp_path / "artifacts"),
                "--junit", str(junit),
            ],
            lambda config: FakeSession(),
        )

        assert result.exit_code == 1
        root = ET.parse(junit).getroot()
        assert root.get("failures") == "1"
        assert "Locator Health" in result.output
        assert "css=#submit" in result.output

    def test_multiple_scripts(self, script_file, config_file, tmp_path):
        second = tmp_path / "second.yaml"
        second.write_text("steps:\n  - navigate: https://ex.com/about\n")

        result = self._run(
            [
                str(script_file), str(second),
                "--config", str(config_file),
                "--output", str(tmp_path / "artifacts"),
            ],
            lambda config: FakeSession(),
        )

        assert result.exit_code == 1
        assert len(list((tmp_path / "artifacts").glob("*/report.json"))) == 2
        assert "PASSED" in result.output

    def test_browser_launch_failure(self, script_file, config_file, tmp_path):
        def factory(config):
            raise SessionError("Executable doesn't exist")

        result = self._run(
            [str(script_file), "--config", str(config_file), "--output", str(tmp_path / "a")],
            factory,
        )

        assert result.exit_code == 1
        assert "Executable doesn't exist" in result.output

    def test_cli_flags_override_config(self, script_file, config_file, tmp_path):
        seen = []

        def factory(config):
            seen.append(config)
            session = FakeSession()
            session.add("css=#submit")
            return session

        self._run(
            [
                str(script_file),
                "--config", str(config_file),
                "--output", str(tmp_path / "artifacts"),
                "--browser", "Firefox",
                "--headed",
            ],
            factory,
        )

        assert seen[0].browser == "firefox"
        assert seen[0].headless is False

    def test_missing_script_file(self, tmp_path):
        result = runner.invoke(app, ["run", str(tmp_path / "nope.yaml")])

        assert result.exit_code == 2
        assert "not found" in result.output

    def test_missing_config_file(self, script_file, tmp_path):
        result = runner.invoke(
            app, ["run", str(script_file), "--config", str(tmp_path / "nope.yaml")]
        )

        assert result.exit_code == 2

    def test_invalid_parallel(self, script_file):
        result = runner.invoke(app, ["run", str(script_file), "--parallel", "0"])

        assert result.exit_code == 2
        assert "parallel" in result.output

    def test_parse_error_exits_2(self, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text("steps: [unclosed")

        result = runner.invoke(app, ["run", str(bad)])

        assert result.exit_code == 2
        assert "Parse error" in result.output
