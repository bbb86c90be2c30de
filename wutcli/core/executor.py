"""Step execution engine.

Each step runs through a small state machine::

    Pending -> Resolving -> Resolved -> Acting -> Asserting -> Passed
                         \\-> ResolutionFailed -> Healing -> Failed
    (any failure with retries left) -> RetryWait -> Resolving

Action handlers return a ``StepError`` value instead of raising; session
exceptions are converted at this boundary.

Assertion failures share the retry budget with resolution and action
failures. Assertions often fail while the page is still updating after the
action, and retrying them is what makes those steps pass.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING
from urllib.parse import urljoin

from wutcli.core.config import AgentConfig, RetryPolicy
from wutcli.core.evidence import EvidenceCollector
from wutcli.core.healing import HealingEngine
from wutcli.core.resolver import LocatorResolver, split_index
from wutcli.core.run_context import RunContext
from wutcli.core.session import (
    ActionTimeoutError,
    BrowserSession,
    ElementHandle,
    SessionError,
    SessionLostError,
)
from wutcli.models.result import (
    Evidence,
    FailureKind,
    HealingSuggestion,
    StepError,
    StepResult,
    StepStatus,
)
from wutcli.models.script import (
    AssertStep,
    Assertion,
    ClickStep,
    Locator,
    NavigateStep,
    SelectStep,
    TestStep,
    TypeStep,
    WaitStep,
)

if TYPE_CHECKING:
    from wutcli.core.console_reporter import ConsoleReporter

logger = logging.getLogger("wut.executor")

REDACTED = "***"


class StepState(str, Enum):
    PENDING = "pending"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    ACTING = "acting"
    ASSERTING = "asserting"
    RESOLUTION_FAILED = "resolution_failed"
    HEALING = "healing"
    RETRY_WAIT = "retry_wait"
    PASSED = "passed"
    RETRIED = "retried"
    FAILED = "failed"


@dataclass
class _Attempt:
    """Working state of one attempt at a step."""

    session: BrowserSession
    timeout_ms: int
    context: RunContext
    base_url: str
    element: ElementHandle | None = None
    resolved_by: Locator | None = None
    failed: list[Locator] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)


class StepExecutor:
    """Execute single steps against a browser session."""

    def __init__(
        self,
        config: AgentConfig | None = None,
        resolver: LocatorResolver | None = None,
        healing: HealingEngine | None = None,
        evidence: EvidenceCollector | None = None,
        reporter: ConsoleReporter | None = None,
    ):
        """Initialize executor.

        Args:
            config: Run configuration (defaults when not provided)
            resolver: Locator resolver (built from config if not provided)
            healing: Healing engine, None when healing is disabled in config
            evidence: Evidence collector; no page artifacts when not provided
            reporter: Optional ConsoleReporter for live CLI output
        """
        self._config = config or AgentConfig()
        self._resolver = resolver or LocatorResolver(self._config.resolver.multi_match)
        if healing is None and self._config.healing.enabled:
            healing = HealingEngine(self._config.healing.min_confidence)
        self._healing = healing
        self._evidence = evidence or EvidenceCollector(
            self._config.evidence, None, self._config.security.mask_selectors
        )
        self._reporter = reporter
        self.transitions: list[tuple[str, StepState]] = []

    def execute(
        self,
        step: TestStep,
        session: BrowserSession,
        retry_policy: RetryPolicy | None = None,
        context: RunContext | None = None,
        base_url: str = "",
    ) -> StepResult:
        """Execute one step end to end, retrying per policy.

        Args:
            step: Step to execute
            session: Browser session owned by the run
            retry_policy: Retry budget (config's policy if not provided)
            context: Run deadline and cancellation (unbounded if not provided)
            base_url: Base for relative navigate URLs

        Returns:
            StepResult in a terminal status (never skipped)
        """
        policy = retry_policy or self._config.retry_policy
        context = context or RunContext()
        timeout_ms = step.timeout_ms or self._config.explicit_timeout_ms
        max_attempts = max(0, policy.max_step_retries) + 1
        started = datetime.now(timezone.utc)

        self.transitions = []
        self._transition(step, StepState.PENDING)
        logger.debug("Step %s: Starting %s", step.id, self._describe(step))
        if self._reporter:
            self._reporter.step_started(step.id, step.action, self._target_label(step))

        self._evidence.discard_pending(session)

        locator_failures: list[Locator] = []
        notes: list[str] = []
        resolved_by: Locator | None = None
        error: StepError | None = None
        had_failure = False
        attempts = 0

        while True:
            interruption = context.interruption()
            if interruption is not None:
                error = interruption
                break

            attempts += 1
            attempt = _Attempt(session, timeout_ms, context, base_url)
            error = self._run_attempt(step, attempt)
            locator_failures.extend(attempt.failed)
            notes.extend(attempt.notes)

            if error is None:
                resolved_by = attempt.resolved_by
                break

            had_failure = True
            if not error.retryable or attempts >= max_attempts:
                break

            logger.debug(
                "Step %s: Attempt %d/%d failed, retrying in %dms: %s",
                step.id, attempts, max_attempts, policy.retry_wait_ms, error.message,
            )
            self._transition(step, StepState.RETRY_WAIT)
            if not context.sleep(policy.retry_wait_ms / 1000):
                error = context.interruption() or error
                break

        healing: HealingSuggestion | None = None
        if error is not None and error.kind == FailureKind.RESOLUTION:
            healing = self._heal(step, session)

        if error is None:
            status = StepStatus.RETRIED if had_failure else StepStatus.PASSED
            self._transition(
                step, StepState.RETRIED if had_failure else StepState.PASSED
            )
        else:
            status = StepStatus.FAILED
            self._transition(step, StepState.FAILED)

        evidence = self._capture(step, session, error)
        finished = datetime.now(timezone.utc)

        result = StepResult(
            step_id=step.id,
            action=step.action,
            status=status,
            started_at=started,
            finished_at=finished,
            attempts=attempts,
            error=error,
            healing=healing,
            evidence=evidence,
            locator_failures=tuple(locator_failures),
            resolved_by=resolved_by,
            notes="; ".join(notes) or None,
        )

        if error is None:
            logger.debug(
                "Step %s: %s %s in %.2fs after %d attempt(s)",
                step.id, status.value, step.action, result.duration, attempts,
            )
        else:
            logger.warning(
                "Step %s: Failed %s after %d attempt(s): [%s] %s",
                step.id, step.action, attempts, error.kind.value, error.message,
            )

        if self._reporter:
            self._reporter.step_completed(
                step.id, status.value, error.message if error else None
            )

        return result

    # ------------------------------------------------------------------
    # State machine helpers

    def _transition(self, step: TestStep, state: StepState) -> None:
        self.transitions.append((step.id, state))
        logger.debug("Step %s -> %s", step.id, state.value)

    def _run_attempt(self, step: TestStep, attempt: _Attempt) -> StepError | None:
        """One pass of resolve -> act -> assert."""
        handler: Callable[[TestStep, _Attempt], StepError | None] | None = getattr(
            self, f"_action_{step.action}", None
        )
        if handler is None:
            return StepError(FailureKind.ACTION, f"Unknown action: {step.action}")

        try:
            error = handler(step, attempt)
            if error is not None:
                return error
            if step.assertions:
                self._transition(step, StepState.ASSERTING)
                return self._check_assertions(step, attempt)
            return None
        except SessionLostError as e:
            return StepError(
                FailureKind.SESSION, str(e), locator=attempt.resolved_by, fatal=True
            )
        except SessionError as e:
            return self._classify(e, attempt.resolved_by)
        except Exception as e:
            logger.exception("Step %s: Unexpected error in %s", step.id, step.action)
            return StepError(
                FailureKind.SESSION,
                f"Unexpected session error: {e}",
                locator=attempt.resolved_by,
                fatal=True,
            )

    @staticmethod
    def _classify(exc: SessionError, locator: Locator | None) -> StepError:
        """Map a session exception to a typed step failure."""
        if isinstance(exc, SessionLostError):
            return StepError(FailureKind.SESSION, str(exc), locator=locator, fatal=True)
        if isinstance(exc, ActionTimeoutError):
            return StepError(FailureKind.TIMEOUT, str(exc) or "Action timed out", locator=locator)
        return StepError(FailureKind.ACTION, str(exc), locator=locator)

    def _resolve(self, step: TestStep, attempt: _Attempt) -> StepError | None:
        target = step.target
        if target is None:
            return StepError(FailureKind.ACTION, f"{step.action} step '{step.id}' has no target")

        self._transition(step, StepState.RESOLVING)
        resolution = self._resolver.resolve(
            target, attempt.session, attempt.timeout_ms, attempt.context
        )
        attempt.failed.extend(resolution.failed)
        if not resolution.ok:
            if resolution.error is not None and resolution.error.kind == FailureKind.RESOLUTION:
                self._transition(step, StepState.RESOLUTION_FAILED)
            return resolution.error

        self._transition(step, StepState.RESOLVED)
        attempt.element = resolution.element
        attempt.resolved_by = resolution.locator
        return None

    def _begin_action(self, step: TestStep, attempt: _Attempt) -> StepError | None:
        """Enter Acting, unless the run was cancelled or its budget ran out."""
        interruption = attempt.context.interruption()
        if interruption is not None:
            logger.debug("Step %s: Not acting: %s", step.id, interruption.message)
            return interruption
        self._transition(step, StepState.ACTING)
        return None

    def _heal(self, step: TestStep, session: BrowserSession) -> HealingSuggestion | None:
        if self._healing is None or step.target is None:
            return None
        self._transition(step, StepState.HEALING)
        return self._healing.suggest(step.target.fingerprint, session)

    def _capture(
        self, step: TestStep, session: BrowserSession, error: StepError | None
    ) -> Evidence:
        return self._evidence.capture(
            session,
            step.id,
            failed=error is not None,
            force_screenshot="@screenshot" in step.tags,
            session_alive=error is None or error.kind != FailureKind.SESSION,
        )

    def _is_masked(self, step: TestStep, attempt: _Attempt) -> bool:
        mask = self._config.security.mask_selectors
        if not mask or step.target is None:
            return False
        candidates = {loc.value for loc in step.target.locators}
        if attempt.resolved_by is not None:
            candidates.add(attempt.resolved_by.value)
        for loc in step.target.locators:
            if loc.by == "id":
                candidates.add(f"#{loc.value}")
            elif loc.by == "name":
                candidates.add(f"[name='{loc.value}']")
                candidates.add(f'[name="{loc.value}"]')
        return any(selector in candidates for selector in mask)

    # ------------------------------------------------------------------
    # Action handlers

    def _action_navigate(self, step: NavigateStep, attempt: _Attempt) -> StepError | None:
        """Load the step URL, resolving relative URLs against the base URL."""
        target = step.url.strip()
        if not target:
            return StepError(FailureKind.ACTION, "navigate step has an empty url")
        if target.startswith(("http://", "https://")) or not attempt.base_url:
            url = target
        else:
            url = urljoin(attempt.base_url.rstrip("/") + "/", target.lstrip("/"))

        error = self._begin_action(step, attempt)
        if error is not None:
            return error
        logger.debug("Navigating to %s", url)
        attempt.session.navigate(url, attempt.context.clamp_ms(attempt.timeout_ms))
        return None

    def _action_click(self, step: ClickStep, attempt: _Attempt) -> StepError | None:
        error = self._resolve(step, attempt)
        if error is not None:
            return error
        error = self._begin_action(step, attempt)
        if error is not None:
            return error
        attempt.session.click(attempt.element, attempt.context.clamp_ms(attempt.timeout_ms))
        return None

    def _action_type(self, step: TypeStep, attempt: _Attempt) -> StepError | None:
        error = self._resolve(step, attempt)
        if error is not None:
            return error
        error = self._begin_action(step, attempt)
        if error is not None:
            return error
        shown = REDACTED if self._is_masked(step, attempt) else repr(step.value)
        logger.debug("Typing %s into %s", shown, attempt.resolved_by)
        attempt.session.type_text(
            attempt.element, step.value, attempt.context.clamp_ms(attempt.timeout_ms)
        )
        attempt.notes.append(f"typed {shown}")
        return None

    def _action_select(self, step: SelectStep, attempt: _Attempt) -> StepError | None:
        error = self._resolve(step, attempt)
        if error is not None:
            return error
        error = self._begin_action(step, attempt)
        if error is not None:
            return error
        attempt.session.select(
            attempt.element, step.value, attempt.context.clamp_ms(attempt.timeout_ms)
        )
        return None

    def _action_wait(self, step: WaitStep, attempt: _Attempt) -> StepError | None:
        """Wait for the target to appear, or sleep for a fixed duration."""
        if step.target is not None:
            return self._resolve(step, attempt)

        self._transition(step, StepState.ACTING)
        duration = (step.duration_ms or 0) / 1000
        if not attempt.context.sleep(duration):
            return attempt.context.interruption()
        return None

    def _action_assert(self, step: AssertStep, attempt: _Attempt) -> StepError | None:
        """Resolve the optional target; assertions run in the common path."""
        if step.target is not None:
            return self._resolve(step, attempt)
        return None

    # ------------------------------------------------------------------
    # Assertions

    def _check_assertions(self, step: TestStep, attempt: _Attempt) -> StepError | None:
        for assertion in step.assertions:
            message = self._evaluate(assertion, attempt)
            if message is not None:
                # A lookup cut short by cancel or budget is not an assertion verdict
                return attempt.context.interruption() or StepError(
                    FailureKind.ASSERTION, message, locator=attempt.resolved_by
                )
        return None

    def _evaluate(self, assertion: Assertion, attempt: _Attempt) -> str | None:
        """Evaluate one assertion.

        Returns:
            None when it holds, otherwise a failure message
        """
        session = attempt.session
        kind = assertion.type
        expected = assertion.value

        if kind == "url_contains":
            url = session.current_url()
            return None if expected in url else f"Expected URL to contain '{expected}', got '{url}'"

        if kind == "title_contains":
            title = session.title()
            if expected in title:
                return None
            return f"Expected title to contain '{expected}', got '{title}'"

        if kind == "visible":
            element = attempt.element
            if element is None:
                if not expected:
                    return "visible assertion needs a target or a CSS selector value"
                matches = session.find_elements(
                    Locator("css", expected),
                    attempt.context.clamp_ms(attempt.timeout_ms),
                    attempt.context.should_stop,
                )
                element = matches[0] if matches else None
            if element is not None and session.is_visible(element):
                return None
            return f"Expected element {attempt.resolved_by or expected} to be visible"

        if kind in ("text_contains", "text_equals"):
            element = attempt.element
            if element is None:
                matches = session.find_elements(
                    Locator("css", "body"),
                    attempt.context.clamp_ms(attempt.timeout_ms),
                    attempt.context.should_stop,
                )
                element = matches[0] if matches else None
            text = session.read_text(element).strip() if element is not None else ""
            if kind == "text_contains":
                if expected.lower() in text.lower():
                    return None
                return f"Expected '{expected}' to be contained in '{text[:200]}'"
            if text == expected.strip():
                return None
            return f"Expected '{expected}' but got '{text[:200]}'"

        if kind in ("count_equals", "count_at_least"):
            if attempt.resolved_by is None:
                return f"{kind} assertion needs a resolved target"
            value, _ = split_index(attempt.resolved_by.value)
            actual = len(session.find_elements(
                Locator(attempt.resolved_by.by, value),
                attempt.context.clamp_ms(attempt.timeout_ms),
                attempt.context.should_stop,
            ))
            try:
                wanted = int(expected)
            except ValueError:
                return f"{kind} assertion needs an integer value, got '{expected}'"
            if kind == "count_equals" and actual != wanted:
                return f"Expected {wanted} elements but found {actual} for {attempt.resolved_by}"
            if kind == "count_at_least" and actual < wanted:
                return (
                    f"Expected at least {wanted} elements but found {actual} "
                    f"for {attempt.resolved_by}"
                )
            return None

        return f"Unsupported assertion type: {kind}"

    # ------------------------------------------------------------------
    # Descriptions

    @staticmethod
    def _target_label(step: TestStep) -> str | None:
        if isinstance(step, NavigateStep):
            return step.url
        if step.target is not None:
            return str(step.target.primary)
        return None

    def _describe(self, step: TestStep) -> str:
        if step.description:
            return step.description
        label = self._target_label(step)
        return f"{step.action} {label}" if label else step.action
