"""Run-level statistics derived from step results."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence

from wutcli.models.result import (
    HealingSuggestion,
    LocatorHealth,
    RunAnalytics,
    RunSummary,
    StepResult,
    StepStatus,
)


def summarize(results: Sequence[StepResult]) -> RunSummary:
    """Tally terminal statuses and the run's elapsed time.

    Duration spans from the earliest step start to the latest step end.
    ``passed`` does not include ``retried`` steps.
    """
    counts = Counter(r.status for r in results)
    duration = 0.0
    if results:
        start = min(r.started_at for r in results)
        end = max(r.finished_at for r in results)
        duration = max(0.0, (end - start).total_seconds())

    return RunSummary(
        passed=counts[StepStatus.PASSED],
        failed=counts[StepStatus.FAILED],
        retried=counts[StepStatus.RETRIED],
        skipped=counts[StepStatus.SKIPPED],
        duration=duration,
    )


def flake_rate(results: Sequence[StepResult]) -> float:
    """Fraction of executed (non-skipped) steps that passed only after retrying."""
    executed = [r for r in results if r.status != StepStatus.SKIPPED]
    if not executed:
        return 0.0
    retried = sum(1 for r in executed if r.status == StepStatus.RETRIED)
    return retried / len(executed)


def locator_health(results: Sequence[StepResult]) -> tuple[LocatorHealth, ...]:
    """Group failed locator attempts by selector.

    Each entry counts every failed attempt against that selector across the
    run and carries the highest-confidence healing suggestion recorded on a
    step whose failures include it.
    """
    failures: Counter[str] = Counter()
    best: dict[str, HealingSuggestion] = {}

    for result in results:
        selectors = [str(loc) for loc in result.locator_failures]
        failures.update(selectors)
        if result.healing is None:
            continue
        for selector in set(selectors):
            current = best.get(selector)
            if current is None or result.healing.confidence > current.confidence:
                best[selector] = result.healing

    entries = []
    for selector, count in failures.items():
        suggestion = best.get(selector)
        entries.append(LocatorHealth(
            selector=selector,
            failures=count,
            suggest=str(suggestion.locator) if suggestion else "",
            confidence=suggestion.confidence if suggestion else None,
        ))

    # Counter preserves first-seen order, so ties stay in run order
    entries.sort(key=lambda e: e.failures, reverse=True)
    return tuple(entries)


def aggregate(results: Sequence[StepResult]) -> RunAnalytics:
    """Derive flake rate and per-selector locator health."""
    return RunAnalytics(flake_rate=flake_rate(results), locator_health=locator_health(results))
