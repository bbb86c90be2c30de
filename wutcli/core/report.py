"""Run report generation."""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from xml.etree.ElementTree import Element, SubElement, tostring

from wutcli.models.result import RunReport, StepStatus


class ReportWriter:
    """Write sealed run reports as JSON and JUnit XML."""

    def __init__(self, output_dir: Path):
        """Initialize writer.

        Args:
            output_dir: Directory to write reports
        """
        self._output_dir = Path(output_dir)
        self._output_dir.mkdir(parents=True, exist_ok=True)

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def generate_json(self, report: RunReport, name: str = "report.json") -> Path:
        """Generate JSON report.

        Args:
            report: Sealed run report
            name: File name inside the output directory

        Returns:
            Path to generated file
        """
        data = report.to_dict()
        data["generated_at"] = datetime.now(timezone.utc).isoformat()

        path = self._output_dir / name
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

        return path

    @staticmethod
    def generate_junit(reports: Sequence[RunReport], path: Path) -> Path:
        """Generate JUnit XML with one testsuite per run, one testcase per step.

        Args:
            reports: Sealed run reports
            path: Output path for JUnit XML

        Returns:
            Path to generated file
        """
        testsuites = Element("testsuites", {
            "tests": str(sum(r.summary.total for r in reports)),
            "failures": str(sum(r.summary.failed for r in reports)),
            "skipped": str(sum(r.summary.skipped for r in reports)),
            "time": f"{sum(r.summary.duration for r in reports):.3f}",
        })

        for report in reports:
            testsuite = SubElement(testsuites, "testsuite", {
                "name": report.objective or report.run_id,
                "id": report.run_id,
                "tests": str(report.summary.total),
                "failures": str(report.summary.failed),
                "skipped": str(report.summary.skipped),
                "time": f"{report.summary.duration:.3f}",
            })

            if report.error is not None:
                properties = SubElement(testsuite, "properties")
                SubElement(properties, "property", {
                    "name": "run_error", "value": f"[{report.error.kind.value}] {report.error.message}",
                })

            for result in report.results:
                testcase = SubElement(testsuite, "testcase", {
                    "classname": report.run_id,
                    "name": f"{result.step_id}: {result.action}",
                    "time": f"{result.duration:.3f}",
                })

                if result.status == StepStatus.FAILED:
                    message = result.error.message if result.error else "Failed"
                    failure = SubElement(testcase, "failure", {
                        "message": message,
                        "type": result.error.kind.value if result.error else "failure",
                    })
                    failure.text = result.notes or message
                elif result.status == StepStatus.SKIPPED:
                    SubElement(testcase, "skipped", {"message": result.notes or "Skipped"})
                elif result.status == StepStatus.RETRIED:
                    system_out = SubElement(testcase, "system-out")
                    system_out.text = f"Passed after {result.attempts} attempts"

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(b'<?xml version="1.0" encoding="UTF-8"?>\n')
            f.write(tostring(testsuites))

        return path
