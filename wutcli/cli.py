"""CLI commands for wutcli."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from wutcli import __version__

if TYPE_CHECKING:
    from wutcli.core.config import AgentConfig
    from wutcli.models.result import RunReport
    from wutcli.models.script import TestScript

# Load .env file from current directory or parent directories
load_dotenv()

app = typer.Typer(
    name="wut",
    help="Web UI Testing CLI - Run YAML-based browser tests with retries and self-healing locators",
    no_args_is_help=True,
)
console = Console()

STATUS_STYLES = {
    "passed": "green",
    "failed": "red",
    "cancelled": "yellow",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"wut version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """wut - Web UI Testing CLI."""
    pass


def _load_config(config_file: Path | None) -> AgentConfig:
    """Load layered config, exiting with code 2 on problems."""
    from wutcli.core.config import ConfigLoader

    if config_file is not None and not config_file.exists():
        console.print(f"[red]Error:[/red] Config file not found: {config_file}")
        raise typer.Exit(2)
    return ConfigLoader.load(config_file)


def _parse_scripts(script_files: list[Path]) -> list[TestScript]:
    """Parse every script, exiting with code 2 on the first invalid one."""
    from wutcli.core.parser import ParseError, ScriptParser

    scripts = []
    for script_file in script_files:
        if not script_file.exists():
            console.print(f"[red]Error:[/red] Script file not found: {script_file}")
            raise typer.Exit(2)
        try:
            scripts.append(ScriptParser.parse(script_file))
        except ParseError as e:
            console.print(f"[red]Parse error:[/red] {escape(str(script_file))}: {escape(str(e))}")
            raise typer.Exit(2)
    return scripts


@app.command()
def run(
    script_files: list[Path] = typer.Argument(..., help="YAML/JSON script file(s) to execute"),
    browser: str | None = typer.Option(
        None, "--browser", "-b", help="chromium, chrome, msedge, firefox or webkit"
    ),
    headless: bool | None = typer.Option(
        None, "--headless/--headed", help="Run the browser without a window"
    ),
    parallel: int | None = typer.Option(
        None, "--parallel", "-p", help="Maximum concurrent runs"
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Artifacts directory (reports, evidence, logs)"
    ),
    junit: Path | None = typer.Option(None, "--junit", help="JUnit XML output path"),
    stop_on_error: bool = typer.Option(
        False, "--stop-on-error", help="Skip remaining steps after a failed step"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", help="Write debug.log and capture evidence for every step"
    ),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Config file"),
) -> None:
    """Execute one or more test scripts."""
    from wutcli.core.config import setup_logging, validate_config
    from wutcli.core.console_reporter import ConsoleReporter
    from wutcli.core.orchestrator import RunJob, RunPool
    from wutcli.core.playwright_session import launch_session
    from wutcli.core.report import ReportWriter

    config = _load_config(config_file)

    # CLI flags override every config layer
    overrides: dict = {}
    if browser is not None:
        overrides["browser"] = browser.lower()
    if headless is not None:
        overrides["headless"] = headless
    if parallel is not None:
        overrides["parallel"] = parallel
    if output is not None:
        overrides["artifacts_path"] = output
    if stop_on_error:
        overrides["stop_on_error"] = True
    if verbose:
        overrides["verbose"] = True
        overrides["evidence"] = dataclasses.replace(config.evidence, verbose=True)
    config = dataclasses.replace(config, **overrides)

    errors = validate_config(config)
    if errors:
        for error in errors:
            console.print(f"[red]Config error:[/red] {escape(str(error))}")
        raise typer.Exit(2)

    scripts = _parse_scripts(script_files)

    if config.verbose:
        log_file = setup_logging(verbose=True, log_dir=config.artifacts_path)
        if log_file:
            console.print(f"[dim]Verbose logging → {log_file}[/dim]")

    total_steps = sum(len(s.steps) for s in scripts)
    panel_content = f"[dim]Scripts:[/dim]  {len(scripts)} ({total_steps} steps)\n"
    panel_content += f"[dim]Browser:[/dim]  {config.browser}"
    panel_content += " (headless)" if config.headless else " (headed)"
    panel_content += f"\n[dim]Retries:[/dim]  {config.retry_policy.max_step_retries}"
    if len(scripts) > 1:
        panel_content += f"\n[dim]Parallel:[/dim] {min(config.parallel, len(scripts))}"
    console.print(Panel(panel_content, border_style="blue", padding=(0, 1)))
    console.print()

    jobs = [RunJob(script) for script in scripts]

    def reporter_factory(job: RunJob) -> ConsoleReporter:
        return ConsoleReporter(job.script.name, len(job.script.steps), console=console)

    def on_complete(report: RunReport) -> None:
        if len(jobs) > 1:
            style = STATUS_STYLES.get(report.status.value, "white")
            console.print(
                f"[{style}]{report.status.value.upper()}[/{style}] {report.run_id} "
                f"[dim]({report.summary.duration:.1f}s)[/dim]"
            )

    # Live step output only for a single run
    pool = RunPool(
        config, launch_session, reporter_factory=reporter_factory if len(jobs) == 1 else None
    )
    reports = pool.run_all(jobs, on_complete=on_complete)

    console.print()
    for report in reports:
        writer = ReportWriter(config.artifacts_path / report.run_id)
        path = writer.generate_json(report)
        console.print(f"[dim]Report: {path}[/dim]")

    if junit:
        ReportWriter.generate_junit(reports, junit)
        console.print(f"[dim]JUnit: {junit}[/dim]")

    _print_summary(reports)

    if all(r.status.value == "passed" for r in reports):
        raise typer.Exit(0)
    raise typer.Exit(1)


def _print_summary(reports: list[RunReport]) -> None:
    """Print per-run tallies and locator health."""
    console.print()
    table = Table(title="Run Summary")
    table.add_column("Run", style="cyan")
    table.add_column("Status")
    table.add_column("Passed", justify="right", style="green")
    table.add_column("Retried", justify="right", style="yellow")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Skipped", justify="right", style="dim")
    table.add_column("Flake", justify="right")
    table.add_column("Duration", justify="right")

    for report in reports:
        style = STATUS_STYLES.get(report.status.value, "white")
        table.add_row(
            escape(report.objective or report.run_id),
            f"[{style}]{report.status.value}[/{style}]",
            str(report.summary.passed),
            str(report.summary.retried),
            str(report.summary.failed),
            str(report.summary.skipped),
            f"{report.analytics.flake_rate:.0%}",
            f"{report.summary.duration:.1f}s",
        )
    console.print(table)

    for report in reports:
        if report.error is not None:
            console.print(f"[red]✗ {escape(report.run_id)}[/red]")
            console.print(f"  {report.error.kind.value}: {escape(report.error.message)}")

    health = [(r, entry) for r in reports for entry in r.analytics.locator_health]
    if not health:
        return

    table = Table(title="Locator Health")
    table.add_column("Selector", style="cyan")
    table.add_column("Failures", justify="right", style="red")
    table.add_column("Suggestion", style="green")
    table.add_column("Confidence", justify="right")
    for _report, entry in health:
        table.add_row(
            escape(entry.selector),
            str(entry.failures),
            escape(entry.suggest) or "-",
            f"{entry.confidence:.2f}" if entry.confidence is not None else "-",
        )
    console.print(table)


@app.command()
def validate(
    script_files: list[Path] = typer.Argument(..., help="YAML/JSON script file(s) to check"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Config file"),
) -> None:
    """Check scripts and configuration without launching a browser."""
    from wutcli.core.config import validate_config
    from wutcli.core.parser import ParseError, ScriptParser

    config = _load_config(config_file)
    problems = 0

    for error in validate_config(config):
        console.print(f"[red]Config error:[/red] {escape(str(error))}")
        problems += 1

    for script_file in script_files:
        try:
            script = ScriptParser.parse(script_file)
        except ParseError as e:
            console.print(f"[red]✗[/red] {escape(str(script_file))}: {escape(str(e))}")
            problems += 1
            continue
        console.print(f"[green]✓[/green] {script_file} ({len(script.steps)} steps)")

    if problems:
        raise typer.Exit(2)


if __name__ == "__main__":
    app()
