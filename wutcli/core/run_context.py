"""Per-run deadline and cancellation state shared by engine components."""

from __future__ import annotations

import threading
import time

from wutcli.models.result import FailureKind, StepError


class RunContext:
    """Wall-clock budget plus explicit stop signal for one run.

    Every suspension point (element lookup, retry wait, fixed wait) asks this
    object how long it may block and sleeps on the cancel event, so a stop or
    an expired budget interrupts it promptly.
    """

    def __init__(self, time_budget_sec: float | None = None):
        self._start = time.monotonic()
        self._deadline = (
            self._start + time_budget_sec if time_budget_sec is not None else None
        )
        self._budget = time_budget_sec
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining_ms(self) -> int | None:
        """Milliseconds left in the budget, or None when unbounded."""
        if self._deadline is None:
            return None
        return max(0, int((self._deadline - time.monotonic()) * 1000))

    def clamp_ms(self, timeout_ms: int) -> int:
        """Shorten ``timeout_ms`` so it never outlives the run budget.

        Never returns less than 1: browser drivers read a 0 ms timeout as
        "wait forever".
        """
        remaining = self.remaining_ms()
        if remaining is not None:
            timeout_ms = min(timeout_ms, remaining)
        return max(1, timeout_ms)

    def should_stop(self) -> bool:
        """Poll hook for blocking lookups: True once cancelled or expired."""
        return self.cancelled or self.expired

    def sleep(self, seconds: float) -> bool:
        """Block up to ``seconds``, waking early on cancel or budget expiry.

        Returns:
            True when the full wait elapsed, False when interrupted.
        """
        remaining = self.remaining_ms()
        wait = seconds if remaining is None else min(seconds, remaining / 1000)
        if self._cancelled.wait(max(0.0, wait)):
            return False
        return not self.expired or wait >= seconds

    def interruption(self) -> StepError | None:
        """Fatal error describing why the run must stop, if it must."""
        if self.cancelled:
            return StepError(FailureKind.CANCELLED, "Run cancelled", fatal=True)
        if self.expired:
            return StepError(
                FailureKind.TIMEOUT,
                f"Run exceeded time budget of {self._budget:g}s",
                fatal=True,
            )
        return None
