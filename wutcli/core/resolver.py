"""Multi-locator element resolution.

Primary locator first, then fallbacks in declared order. Each locator gets
the full per-attempt timeout, so a slow primary never starves the fallbacks.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass

from wutcli.core.run_context import RunContext
from wutcli.core.session import BrowserSession, ElementHandle, SessionError, SessionLostError
from wutcli.models.result import FailureKind, StepError
from wutcli.models.script import Locator, Target

logger = logging.getLogger("wut.resolver")

# "css=.row >> nth=2" style index qualifier; negative values count from the end
_NTH_RE = re.compile(r"\s*>>\s*nth\s*=\s*(-?\d+)\s*$")


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving a Target.

    Exactly one of ``element`` / ``error`` is meaningful: ``error`` is None on
    success. ``failed`` lists every locator that did not match, in order.
    """

    element: ElementHandle | None = None
    locator: Locator | None = None
    failed: tuple[Locator, ...] = ()
    error: StepError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def split_index(value: str) -> tuple[str, int | None]:
    """Strip a trailing ``>> nth=N`` qualifier from a locator value.

    Args:
        value: Raw locator value

    Returns:
        (value without qualifier, index or None)
    """
    match = _NTH_RE.search(value)
    if not match:
        return value, None
    return value[: match.start()], int(match.group(1))


class LocatorResolver:
    """Find a live element for a Target."""

    def __init__(self, multi_match: str = "first"):
        """Initialize resolver.

        Args:
            multi_match: "first" picks the first document-order match when a
                locator matches several elements; "strict" treats that as a
                failure for the locator.
        """
        self._multi_match = multi_match

    def resolve(
        self,
        target: Target,
        session: BrowserSession,
        timeout_ms: int,
        context: RunContext | None = None,
    ) -> Resolution:
        """Resolve a target against the live page.

        Args:
            target: Target with primary and fallback locators
            session: Browser session owned by the current run
            timeout_ms: Timeout for each locator attempt
            context: Run deadline/cancellation, clamps each attempt

        Returns:
            Resolution with the element, or a resolution/fatal error
        """
        failed: list[Locator] = []

        for position, locator in enumerate(target.locators):
            stop = None
            if context is not None:
                interruption = context.interruption()
                if interruption is not None:
                    return Resolution(failed=tuple(failed), error=interruption)
                attempt_timeout = context.clamp_ms(timeout_ms)
                stop = context.should_stop
            else:
                attempt_timeout = timeout_ms

            role = "primary" if position == 0 else f"fallback {position}"
            try:
                element = self._attempt(locator, session, attempt_timeout, stop)
            except SessionLostError as e:
                logger.error("Session lost while resolving %s: %s", locator, e)
                return Resolution(
                    failed=tuple(failed),
                    error=StepError(FailureKind.SESSION, str(e), locator=locator, fatal=True),
                )
            except SessionError as e:
                logger.debug("Locator %s (%s) raised %s", locator, role, e)
                element = None

            if element is not None:
                if position > 0:
                    logger.info("Resolved via %s %s after %d failure(s)", role, locator, len(failed))
                else:
                    logger.debug("Resolved via primary %s", locator)
                return Resolution(element=element, locator=locator, failed=tuple(failed))

            logger.debug("Locator %s (%s) did not match within %dms", locator, role, attempt_timeout)
            failed.append(locator)

        # A budget that ran out mid-attempt is a run timeout, not a resolution failure
        if context is not None:
            interruption = context.interruption()
            if interruption is not None:
                return Resolution(failed=tuple(failed), error=interruption)

        attempted = ", ".join(str(loc) for loc in target.locators)
        return Resolution(
            failed=tuple(failed),
            error=StepError(
                FailureKind.RESOLUTION,
                f"Element not found with any locator: {attempted}",
                locator=target.primary,
                attempted=target.locators,
            ),
        )

    def _attempt(
        self,
        locator: Locator,
        session: BrowserSession,
        timeout_ms: int,
        stop: Callable[[], bool] | None = None,
    ) -> ElementHandle | None:
        """Try one locator, applying index qualifier and multi-match policy."""
        value, index = split_index(locator.value)
        query = Locator(locator.by, value) if index is not None else locator
        matches = session.find_elements(query, timeout_ms, stop)
        if not matches:
            return None

        if index is not None:
            try:
                return matches[index]
            except IndexError:
                logger.debug(
                    "Locator %s matched %d element(s), index %d out of range",
                    locator, len(matches), index,
                )
                return None

        if len(matches) > 1:
            if self._multi_match == "strict":
                logger.debug("Locator %s ambiguous: %d matches", locator, len(matches))
                return None
            logger.debug("Locator %s matched %d elements, using first", locator, len(matches))
        return matches[0]
