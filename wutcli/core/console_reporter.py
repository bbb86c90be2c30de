"""Live console output for a run."""

from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.text import Text


@dataclass
class StepDisplay:
    """Display state for a single step."""

    step_id: str
    action: str
    target: str | None
    status: str  # running, passed, retried, failed, skipped
    error: str | None = None


# Status icons
ICONS = {
    "pending": "🔲",
    "running": "⏳",
    "passed": "✅",
    "retried": "🔁",
    "failed": "❌",
    "skipped": "⏭️",
}


class ConsoleReporter:
    """Live console output for a run.

    Shows real-time step status while a script executes, using Rich's Live
    display for in-place terminal updates.

    Usage:
        reporter = ConsoleReporter("login", total_steps=5)
        reporter.start()
        reporter.step_started("open", "navigate", "/login")
        reporter.step_completed("open", "passed")
        reporter.finish("passed", 2.3)
    """

    def __init__(self, run_name: str, total_steps: int, console: Console | None = None):
        """Initialize reporter.

        Args:
            run_name: Name of the script (shown in header)
            total_steps: Total number of steps
            console: Optional Rich console (uses default if not provided)
        """
        self._run_name = run_name
        self._total_steps = total_steps
        self._console = console or Console()
        self._steps: list[StepDisplay] = []
        self._live: Live | None = None
        self._final_status: str | None = None
        self._final_duration: float | None = None

    @property
    def steps(self) -> list[StepDisplay]:
        return self._steps

    def start(self) -> None:
        """Start live display."""
        self._live = Live(
            self._render(),
            console=self._console,
            refresh_per_second=10,
            transient=True,  # Cleared on finish, final state is printed
        )
        self._live.start()

    def step_started(self, step_id: str, action: str, target: str | None) -> None:
        """Called when a step begins executing.

        Args:
            step_id: Step identifier
            action: Action type (navigate, click, type, ...)
            target: Primary locator or URL
        """
        self._steps.append(StepDisplay(
            step_id=step_id,
            action=action,
            target=target,
            status="running",
        ))
        self._refresh()

    def step_completed(self, step_id: str, status: str, error: str | None = None) -> None:
        """Called when a step finishes.

        Args:
            step_id: Step identifier
            status: Terminal status (passed, retried, failed)
            error: Error message if failed
        """
        for step in self._steps:
            if step.step_id == step_id:
                step.status = status
                step.error = error if status == "failed" else None
                break

        self._refresh()

    def step_skipped(self, step_id: str, action: str) -> None:
        """Called for each step the run did not execute."""
        self._steps.append(StepDisplay(
            step_id=step_id, action=action, target=None, status="skipped"
        ))
        self._refresh()

    def finish(self, status: str, duration: float) -> None:
        """Called when the run completes.

        Args:
            status: Final run status (passed, failed, cancelled)
            duration: Total run duration in seconds
        """
        self._final_status = status
        self._final_duration = duration

        if self._live:
            self._live.stop()
            self._live = None

        self._console.print(self._render())

    def _refresh(self) -> None:
        if self._live:
            self._live.update(self._render())

    def _render(self) -> Text:
        """Build the current display."""
        lines: list[str] = []

        header = f"┌─ {escape(self._run_name)} ({len(self._steps)}/{self._total_steps}) "
        header += "─" * max(0, 40 - len(header))
        lines.append(header)

        for step in self._steps:
            icon = ICONS.get(step.status, "🔲")
            line = f"│ {icon} {escape(step.step_id)} [dim]{step.action}[/dim]"
            if step.target:
                target = step.target
                if len(target) > 30:
                    target = target[:27] + "..."
                line += f' "{escape(target)}"'

            if step.status == "skipped":
                line += "  [dim](skipped)[/dim]"
            elif step.status == "retried":
                line += "  [yellow](retried)[/yellow]"

            lines.append(line)

            if step.error:
                error = step.error
                if len(error) > 60:
                    error = error[:57] + "..."
                lines.append(f"│    [red]{escape(error)}[/red]")

        if self._final_status is not None and self._final_duration is not None:
            if self._final_status == "passed":
                status_text = f"[green]✓ PASSED[/green] ({self._final_duration:.1f}s)"
            elif self._final_status == "cancelled":
                status_text = f"[yellow]■ CANCELLED[/yellow] ({self._final_duration:.1f}s)"
            else:
                status_text = f"[red]✗ FAILED[/red] ({self._final_duration:.1f}s)"

            footer = f"└─ {status_text} "
            lines.append(footer + "─" * max(0, 40 - len(footer) + 20))  # +20 for markup
        else:
            lines.append("└" + "─" * 39)

        return Text.from_markup("\n".join(lines))
