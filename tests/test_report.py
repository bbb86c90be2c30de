"""Tests for ReportWriter."""

import json
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone

import pytest

from wutcli.core.analytics import aggregate, summarize
from wutcli.core.report import ReportWriter
from wutcli.models.result import (
    FailureKind,
    RunReport,
    RunStatus,
    StepError,
    StepResult,
    StepStatus,
)
from wutcli.models.script import Locator

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def step(step_id, status, error=None, attempts=1, notes=None, failures=()):
    return StepResult(
        step_id=step_id,
        action="click",
        status=status,
        started_at=T0,
        finished_at=T0 + timedelta(seconds=0.5),
        attempts=attempts,
        error=error,
        notes=notes,
        locator_failures=failures,
    )


def sealed(run_id, results, status, error=None, objective="Log in"):
    report = RunReport(run_id=run_id, objective=objective)
    for result in results:
        report.append(result)
    report.status = status
    report.error = error
    report.summary = summarize(report.results)
    report.analytics = aggregate(report.results)
    report.seal()
    return report


@pytest.fixture
def failed_report():
    error = StepError(
        FailureKind.RESOLUTION,
        "Element not found with any locator: css=#submit",
        locator=Locator("css", "#submit"),
        attempted=(Locator("css", "#submit"),),
    )
    return sealed("run-1", [
        step("open", StepStatus.PASSED),
        step("submit", StepStatus.FAILED, error=error, attempts=2,
             failures=(Locator("css", "#submit"),) * 2),
        step("done", StepStatus.SKIPPED, attempts=0, notes="Skipped: step submit failed"),
    ], RunStatus.FAILED)


class TestJsonReport:
    def test_generates_json_report(self, failed_report, tmp_path):
        """Generates valid JSON with summary, results and analytics."""
        writer = ReportWriter(tmp_path / "report")

        path = writer.generate_json(failed_report)

        assert path == tmp_path / "report" / "report.json"
        data = json.loads(path.read_text())
        assert data["run_id"] == "run-1"
        assert data["status"] == "failed"
        assert data["summary"]["total"] == 3
        assert data["summary"]["failed"] == 1
        assert "generated_at" in data

    def test_failed_step_details(self, failed_report, tmp_path):
        data = json.loads(ReportWriter(tmp_path).generate_json(failed_report).read_text())

        submit = data["results"][1]
        assert submit["status"] == "failed"
        assert submit["error"]["kind"] == "resolution"
        assert submit["error"]["attempted"] == ["css=#submit"]
        assert submit["attempts"] == 2
        assert data["results"][2]["notes"] == "Skipped: step submit failed"

    def test_analytics_included(self, failed_report, tmp_path):
        data = json.loads(ReportWriter(tmp_path).generate_json(failed_report).read_text())

        assert data["analytics"]["flake_rate"] == 0.0
        assert data["analytics"]["locator_health"] == [
            {"selector": "css=#submit", "failures": 2, "suggest": "", "confidence": None}
        ]

    def test_creates_output_dir(self, tmp_path):
        writer = ReportWriter(tmp_path / "a" / "b")

        assert writer.output_dir.is_dir()


class TestJunitReport:
    def test_one_suite_per_run(self, failed_report, tmp_path):
        passed = sealed("run-2", [step("open", StepStatus.PASSED)], RunStatus.PASSED,
                        objective="")

        path = ReportWriter.generate_junit([failed_report, passed], tmp_path / "junit.xml")

        root = ET.parse(path).getroot()
        assert root.tag == "testsuites"
        assert root.get("tests") == "4"
        assert root.get("failures") == "1"
        assert root.get("skipped") == "1"
        suites = root.findall("testsuite")
        assert [s.get("name") for s in suites] == ["Log in", "run-2"]

    def test_testcase_outcomes(self, failed_report, tmp_path):
        path = ReportWriter.generate_junit([failed_report], tmp_path / "junit.xml")

        cases = ET.parse(path).getroot().findall("testsuite/testcase")
        assert [c.get("name") for c in cases] == ["open: click", "submit: click", "done: click"]
        assert cases[0].find("failure") is None
        failure = cases[1].find("failure")
        assert failure.get("type") == "resolution"
        assert "css=#submit" in failure.get("message")
        assert cases[2].find("skipped").get("message") == "Skipped: step submit failed"

    def test_retried_step_noted(self, tmp_path):
        report = sealed("run-3", [step("a", StepStatus.RETRIED, attempts=3)], RunStatus.PASSED)

        path = ReportWriter.generate_junit([report], tmp_path / "junit.xml")

        case = ET.parse(path).getroot().find("testsuite/testcase")
        assert case.find("system-out").text == "Passed after 3 attempts"

    def test_run_error_property(self, tmp_path):
        error = StepError(FailureKind.TIMEOUT, "Run exceeded time budget of 1s", fatal=True)
        report = sealed("run-4", [step("a", StepStatus.FAILED, error=error)],
                        RunStatus.FAILED, error=error)

        path = ReportWriter.generate_junit([report], tmp_path / "out" / "junit.xml")

        prop = ET.parse(path).getroot().find("testsuite/properties/property")
        assert prop.get("name") == "run_error"
        assert prop.get("value") == "[timeout] Run exceeded time budget of 1s"
