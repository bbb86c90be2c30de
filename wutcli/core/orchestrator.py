"""Run orchestration: ordered step execution, run budget, concurrent runs."""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from wutcli.core.analytics import aggregate, summarize
from wutcli.core.config import AgentConfig
from wutcli.core.evidence import EvidenceCollector, EvidenceStore
from wutcli.core.executor import StepExecutor
from wutcli.core.run_context import RunContext
from wutcli.core.session import BrowserSession, SessionError
from wutcli.models.result import (
    FailureKind,
    RunEnvironment,
    RunReport,
    RunStatus,
    StepError,
    StepResult,
    StepStatus,
)
from wutcli.models.script import TestScript

if TYPE_CHECKING:
    from wutcli.core.console_reporter import ConsoleReporter

logger = logging.getLogger("wut.orchestrator")

SessionFactory = Callable[[AgentConfig], BrowserSession]


def new_run_id(name: str) -> str:
    """Build a unique, filesystem-safe run id."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    sanitized = "-".join(name.split()) or "run"
    return f"{timestamp}_{sanitized}_{uuid.uuid4().hex[:8]}"


class RunOrchestrator:
    """Execute one script's steps in order and assemble its RunReport.

    An instance owns the report under construction until it is sealed.
    """

    def __init__(
        self,
        config: AgentConfig | None = None,
        executor: StepExecutor | None = None,
        reporter: ConsoleReporter | None = None,
        run_id: str | None = None,
    ):
        """Initialize orchestrator.

        Args:
            config: Immutable run configuration
            executor: Step executor (built from config if not provided)
            reporter: Optional ConsoleReporter for live CLI output
            run_id: Explicit run id (generated per run if not provided)
        """
        self._config = config or AgentConfig()
        self._executor = executor
        self._reporter = reporter
        self._run_id = run_id
        self._context: RunContext | None = None
        self._lock = threading.Lock()
        self._cancel_requested = False

    def cancel(self) -> None:
        """Stop the run: abort the in-flight step, skip the rest."""
        with self._lock:
            self._cancel_requested = True
            if self._context is not None:
                self._context.cancel()
        logger.info("Cancellation requested for run %s", self._run_id or "(pending)")

    def run_script(self, script: TestScript, session: BrowserSession) -> RunReport:
        """Execute all steps of a script on one session.

        Args:
            script: Parsed script, steps in required order
            session: Browser session exclusively owned by this run

        Returns:
            Sealed RunReport with one result per step, in step order
        """
        run_id = self._run_id or new_run_id(script.name)
        context = RunContext(self._config.exploration.time_budget_sec)
        with self._lock:
            self._context = context
            if self._cancel_requested:
                context.cancel()

        executor = self._executor or self._build_executor(run_id)
        report = self._new_report(run_id, script)

        logger.info("Starting run %s (%d steps)", run_id, len(script.steps))
        if self._reporter:
            self._reporter.start()

        stop_error: StepError | None = None
        stopped_at: str | None = None
        for index, step in enumerate(script.steps):
            if stop_error is not None:
                report.append(self._skipped(step.id, step.action, stop_error, stopped_at))
                continue

            interruption = context.interruption()
            if interruption is not None:
                stop_error = interruption
                report.append(self._skipped(step.id, step.action, stop_error, None))
                continue

            result = executor.execute(
                step,
                session,
                retry_policy=self._config.retry_policy,
                context=context,
                base_url=script.base_url,
            )
            report.append(result)

            if result.status != StepStatus.FAILED:
                continue

            if result.error is not None and result.error.fatal:
                stop_error, stopped_at = result.error, step.id
                logger.error(
                    "Run %s stopped at step %s: [%s] %s",
                    run_id, step.id, result.error.kind.value, result.error.message,
                )
            elif self._config.stop_on_error and not step.optional:
                stop_error, stopped_at = result.error, step.id
                logger.info("stop_on_error: skipping %d remaining step(s)", len(script.steps) - index - 1)
            elif step.optional:
                logger.info("Optional step %s failed, continuing", step.id)

        # Budget may run out during the final step without a fatal step error
        run_error = stop_error if stop_error is not None and stop_error.fatal else None
        if run_error is None:
            interruption = context.interruption()
            if interruption is not None and interruption.kind == FailureKind.TIMEOUT:
                run_error = interruption

        with self._lock:
            self._context = None

        return self._finish(report, run_error)

    def abort(self, script: TestScript, error: StepError) -> RunReport:
        """Report for a run that could not start; every step is skipped.

        Args:
            script: Script that was to be executed
            error: Fatal error that prevented the run (e.g. browser launch failure)

        Returns:
            Sealed, failed RunReport
        """
        report = self._new_report(self._run_id or new_run_id(script.name), script)
        for step in script.steps:
            report.append(self._skipped(step.id, step.action, error, None))
        return self._finish(report, error)

    def _new_report(self, run_id: str, script: TestScript) -> RunReport:
        return RunReport(
            run_id=run_id,
            objective=script.objective,
            environment=RunEnvironment(
                browser=self._config.browser,
                headless=self._config.headless,
                base_url=script.base_url,
            ),
        )

    def _finish(self, report: RunReport, run_error: StepError | None) -> RunReport:
        """Derive summary and analytics, then seal the report."""
        report.status = self._run_status(report.results, run_error)
        report.error = run_error
        report.summary = summarize(report.results)
        report.analytics = aggregate(report.results)
        report.seal()

        logger.info(
            "Run %s finished: status=%s passed=%d retried=%d failed=%d skipped=%d flake=%.2f",
            report.run_id,
            report.status.value,
            report.summary.passed,
            report.summary.retried,
            report.summary.failed,
            report.summary.skipped,
            report.analytics.flake_rate,
        )
        if self._reporter:
            self._reporter.finish(report.status.value, report.summary.duration)
        return report

    def _build_executor(self, run_id: str) -> StepExecutor:
        store = EvidenceStore(self._config.artifacts_path, run_id)
        collector = EvidenceCollector(
            self._config.evidence, store, self._config.security.mask_selectors
        )
        return StepExecutor(self._config, evidence=collector, reporter=self._reporter)

    def _skipped(
        self, step_id: str, action: str, cause: StepError | None, cause_step: str | None
    ) -> StepResult:
        now = datetime.now(timezone.utc)
        if cause is not None and cause.fatal:
            note = f"Skipped: {cause.message}"
        elif cause_step:
            note = f"Skipped: step {cause_step} failed"
        else:
            note = "Skipped"
        if self._reporter:
            self._reporter.step_skipped(step_id, action)
        return StepResult(
            step_id=step_id,
            action=action,
            status=StepStatus.SKIPPED,
            started_at=now,
            finished_at=now,
            notes=note,
        )

    @staticmethod
    def _run_status(results: list[StepResult], run_error: StepError | None) -> RunStatus:
        if run_error is not None and run_error.kind == FailureKind.CANCELLED:
            return RunStatus.CANCELLED
        if run_error is not None:
            return RunStatus.FAILED
        if any(r.status == StepStatus.FAILED for r in results):
            return RunStatus.FAILED
        return RunStatus.PASSED


@dataclass(frozen=True)
class RunJob:
    """One independent run: a script plus an optional fixed run id."""

    script: TestScript
    run_id: str | None = None


class RunPool:
    """Execute independent runs concurrently, bounded by ``config.parallel``.

    Each run gets its own session from ``session_factory``, closed when the
    run ends. Concurrency is per run only; steps of a script never overlap.
    """

    def __init__(
        self,
        config: AgentConfig,
        session_factory: SessionFactory,
        reporter_factory: Callable[[RunJob], ConsoleReporter | None] | None = None,
    ):
        """Initialize pool.

        Args:
            config: Configuration shared (read-only) by all runs
            session_factory: Creates a fresh browser session per run
            reporter_factory: Optional live reporter per job
        """
        self._config = config
        self._session_factory = session_factory
        self._reporter_factory = reporter_factory
        self._lock = threading.Lock()
        self._active: dict[int, RunOrchestrator] = {}
        self._stopped = False

    def cancel_all(self) -> None:
        """Cancel every in-flight and queued run."""
        with self._lock:
            self._stopped = True
            active = list(self._active.values())
        for orchestrator in active:
            orchestrator.cancel()

    def run_all(
        self,
        jobs: list[RunJob],
        on_complete: Callable[[RunReport], None] | None = None,
    ) -> list[RunReport]:
        """Run all jobs and return their sealed reports in job order.

        Args:
            jobs: Independent scripts to execute
            on_complete: Called with each report as its run finishes

        Returns:
            RunReports, same order as ``jobs``
        """
        if not jobs:
            return []

        max_workers = max(1, min(self._config.parallel, len(jobs)))
        logger.info("Running %d script(s) with %d worker(s)", len(jobs), max_workers)

        reports: list[RunReport | None] = [None] * len(jobs)
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="wut-run") as pool:
            future_to_index = {
                pool.submit(self._run_one, i, job): i for i, job in enumerate(jobs)
            }
            pending = set(future_to_index)
            try:
                for future in as_completed(future_to_index):
                    pending.discard(future)
                    reports[future_to_index[future]] = self._collect(future, on_complete)
            except KeyboardInterrupt:
                logger.warning("Interrupted, cancelling %d run(s)", len(pending))
                self.cancel_all()
                for future in as_completed(pending):
                    reports[future_to_index[future]] = self._collect(future, on_complete)

        return [r for r in reports if r is not None]

    @staticmethod
    def _collect(future, on_complete: Callable[[RunReport], None] | None) -> RunReport:
        report = future.result()
        if on_complete:
            on_complete(report)
        return report

    def _run_one(self, index: int, job: RunJob) -> RunReport:
        reporter = self._reporter_factory(job) if self._reporter_factory else None
        orchestrator = RunOrchestrator(self._config, reporter=reporter, run_id=job.run_id)
        with self._lock:
            self._active[index] = orchestrator
            if self._stopped:
                orchestrator.cancel()

        try:
            try:
                session = self._session_factory(self._config)
            except SessionError as e:
                logger.error("Could not start browser session for job %d: %s", index, e)
                return orchestrator.abort(
                    job.script, StepError(FailureKind.SESSION, str(e), fatal=True)
                )
            except Exception as e:
                logger.exception("Unexpected error starting browser session for job %d", index)
                return orchestrator.abort(
                    job.script,
                    StepError(
                        FailureKind.SESSION, f"Failed to start browser session: {e}", fatal=True
                    ),
                )
            try:
                return orchestrator.run_script(job.script, session)
            except Exception as e:
                # A crash fails this run only
                logger.exception("Run for job %d crashed", index)
                return orchestrator.abort(
                    job.script,
                    StepError(FailureKind.SESSION, f"Run crashed: {e}", fatal=True),
                )
            finally:
                try:
                    session.close()
                except Exception as e:
                    logger.warning("Failed to close session for job %d: %s", index, e)
        finally:
            with self._lock:
                self._active.pop(index, None)
