"""Tests for ConsoleReporter."""

import io

import pytest
from rich.console import Console

from wutcli.core.console_reporter import ConsoleReporter


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def reporter(output):
    console = Console(file=output, force_terminal=False, width=100)
    return ConsoleReporter("login", total_steps=3, console=console)


class TestConsoleReporter:
    """Step display state and final output."""

    def test_tracks_step_status(self, reporter):
        reporter.step_started("open", "navigate", "https://ex.com")
        reporter.step_completed("open", "passed")

        [step] = reporter.steps
        assert step.status == "passed"
        assert step.target == "https://ex.com"

    def test_error_kept_only_for_failures(self, reporter):
        reporter.step_started("a", "click", "css=#a")
        reporter.step_completed("a", "retried", "ignored")
        reporter.step_started("b", "click", "css=#b")
        reporter.step_completed("b", "failed", "Element not found")

        assert reporter.steps[0].error is None
        assert reporter.steps[1].error == "Element not found"

    def test_skipped_steps_listed(self, reporter):
        reporter.step_skipped("c", "click")

        assert reporter.steps[0].status == "skipped"

    def test_finish_prints_summary(self, reporter, output):
        reporter.start()
        reporter.step_started("open", "navigate", "https://ex.com")
        reporter.step_completed("open", "passed")
        reporter.step_started("submit", "click", "css=#submit")
        reporter.step_completed("submit", "failed", "Element not found with any locator")
        reporter.step_skipped("done", "click")
        reporter.finish("failed", 3.21)

        text = output.getvalue()
        assert "login (3/3)" in text
        assert "Element not found" in text
        assert "(skipped)" in text
        assert "FAILED" in text
        assert "3.2s" in text

    def test_finish_passed_and_cancelled(self, output):
        console = Console(file=output, force_terminal=False, width=100)

        ConsoleReporter("a", 0, console=console).finish("passed", 1.0)
        ConsoleReporter("b", 0, console=console).finish("cancelled", 1.0)

        text = output.getvalue()
        assert "PASSED" in text
        assert "CANCELLED" in text

    def test_markup_in_names_is_escaped(self, reporter, output):
        """Selectors like [name=q] are shown literally."""
        reporter.step_started("q", "type", "css=input[name=q]")
        reporter.finish("passed", 0.5)

        assert "input[name=q]" in output.getvalue()

    def test_long_target_truncated(self, reporter, output):
        reporter.step_started("x", "click", "css=" + "a" * 50)
        reporter.finish("passed", 0.1)

        assert "..." in output.getvalue()
