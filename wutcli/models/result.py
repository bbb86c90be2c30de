"""Execution result data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from wutcli.models.script import Locator


class StepStatus(str, Enum):
    """Terminal status of a step."""

    PASSED = "passed"
    FAILED = "failed"
    RETRIED = "retried"  # failed at least once, then passed
    SKIPPED = "skipped"


class FailureKind(str, Enum):
    """Failure taxonomy recorded on StepError."""

    RESOLUTION = "resolution"
    ACTION = "action"
    ASSERTION = "assertion"
    TIMEOUT = "timeout"
    SESSION = "session"
    CANCELLED = "cancelled"


class RunStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StepError:
    """Structured failure value returned up the call chain.

    ``fatal`` errors end the run and are never retried: run-level timeouts,
    session loss and cancellation.
    """

    kind: FailureKind
    message: str
    locator: Locator | None = None
    attempted: tuple[Locator, ...] = ()
    fatal: bool = False

    @property
    def retryable(self) -> bool:
        return not self.fatal and self.kind in (
            FailureKind.RESOLUTION,
            FailureKind.ACTION,
            FailureKind.ASSERTION,
            FailureKind.TIMEOUT,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "locator": str(self.locator) if self.locator else None,
            "attempted": [str(loc) for loc in self.attempted],
            "fatal": self.fatal,
        }


@dataclass(frozen=True)
class NetworkRequest:
    url: str
    status: int
    method: str = "GET"

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "status": self.status, "method": self.method}


@dataclass(frozen=True)
class Evidence:
    """Diagnostics captured once, at the step's terminal outcome."""

    screenshot_path: str | None = None
    dom_snapshot_path: str | None = None
    console: tuple[str, ...] = ()
    network: tuple[NetworkRequest, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "screenshot": self.screenshot_path,
            "dom_snapshot": self.dom_snapshot_path,
            "console": list(self.console),
            "network": [req.to_dict() for req in self.network],
        }


@dataclass(frozen=True)
class HealingSuggestion:
    """Candidate replacement locator proposed from a fingerprint match."""

    locator: Locator
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {"locator": self.locator.to_dict(), "confidence": round(self.confidence, 3)}


@dataclass(frozen=True)
class StepResult:
    """Outcome of executing one step, including all retries."""

    step_id: str
    action: str
    status: StepStatus
    started_at: datetime
    finished_at: datetime
    attempts: int = 0
    error: StepError | None = None
    healing: HealingSuggestion | None = None
    evidence: Evidence = field(default_factory=Evidence)
    # One entry per failed locator attempt during resolution
    locator_failures: tuple[Locator, ...] = ()
    resolved_by: Locator | None = None
    notes: str | None = None

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "action": self.action,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration": round(self.duration, 3),
            "attempts": self.attempts,
            "error": self.error.to_dict() if self.error else None,
            "healing": self.healing.to_dict() if self.healing else None,
            "evidence": self.evidence.to_dict(),
            "locator_failures": [str(loc) for loc in self.locator_failures],
            "resolved_by": str(self.resolved_by) if self.resolved_by else None,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class RunSummary:
    passed: int = 0
    failed: int = 0
    retried: int = 0
    skipped: int = 0
    duration: float = 0.0

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.retried + self.skipped

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "retried": self.retried,
            "skipped": self.skipped,
            "duration": round(self.duration, 3),
        }


@dataclass(frozen=True)
class LocatorHealth:
    """Failure statistics for one selector across a run."""

    selector: str
    failures: int
    suggest: str = ""
    confidence: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "selector": self.selector,
            "failures": self.failures,
            "suggest": self.suggest,
            "confidence": round(self.confidence, 3) if self.confidence is not None else None,
        }


@dataclass(frozen=True)
class RunAnalytics:
    flake_rate: float = 0.0
    locator_health: tuple[LocatorHealth, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "flake_rate": round(self.flake_rate, 4),
            "locator_health": [entry.to_dict() for entry in self.locator_health],
        }


@dataclass(frozen=True)
class RunEnvironment:
    browser: str = "chromium"
    headless: bool = True
    base_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"browser": self.browser, "headless": self.headless, "base_url": self.base_url}


class ReportSealedError(RuntimeError):
    """Raised when a sealed RunReport is modified."""


@dataclass
class RunReport:
    """Full outcome of one run.

    Append-only while the orchestrator builds it, read-only after ``seal()``.
    """

    run_id: str
    objective: str = ""
    environment: RunEnvironment = field(default_factory=RunEnvironment)
    status: RunStatus = RunStatus.PASSED
    error: StepError | None = None
    summary: RunSummary = field(default_factory=RunSummary)
    results: list[StepResult] = field(default_factory=list)
    analytics: RunAnalytics = field(default_factory=RunAnalytics)
    sealed: bool = False

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "sealed", False):
            raise ReportSealedError(f"RunReport {self.run_id} is sealed")
        super().__setattr__(name, value)

    def append(self, result: StepResult) -> None:
        if self.sealed:
            raise ReportSealedError(f"RunReport {self.run_id} is sealed")
        self.results.append(result)

    def seal(self) -> None:
        """Freeze the report; results are already immutable."""
        if self.sealed:
            return
        self.results = tuple(self.results)  # type: ignore[assignment]
        self.sealed = True

    def result_for(self, step_id: str) -> StepResult | None:
        return next((r for r in self.results if r.step_id == step_id), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "objective": self.objective,
            "environment": self.environment.to_dict(),
            "status": self.status.value,
            "error": self.error.to_dict() if self.error else None,
            "summary": self.summary.to_dict(),
            "results": [r.to_dict() for r in self.results],
            "analytics": self.analytics.to_dict(),
        }
