"""Test script data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

LOCATOR_STRATEGIES = frozenset(
    {"id", "css", "xpath", "name", "text", "linktext", "partiallinktext", "url"}
)

ASSERTION_TYPES = frozenset(
    {
        "visible",
        "text_contains",
        "text_equals",
        "url_contains",
        "title_contains",
        "count_equals",
        "count_at_least",
    }
)


@dataclass(frozen=True)
class Locator:
    """One way to find an element."""

    by: str
    value: str

    def __str__(self) -> str:
        return f"{self.by}={self.value}"

    def to_dict(self) -> dict[str, str]:
        return {"by": self.by, "value": self.value}


@dataclass(frozen=True)
class Fingerprint:
    """Locator-independent description of an element, used for healing."""

    tag: str = ""
    text: str = ""
    attrs: dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.tag or self.text.strip() or self.attrs)


@dataclass(frozen=True)
class Target:
    """Primary locator plus ordered fallbacks and an optional fingerprint."""

    primary: Locator
    fallbacks: tuple[Locator, ...] = ()
    fingerprint: Fingerprint | None = None

    @property
    def locators(self) -> tuple[Locator, ...]:
        """All locators in resolution order."""
        return (self.primary, *self.fallbacks)


@dataclass(frozen=True)
class Assertion:
    """Expected condition checked after the step's action."""

    type: str
    value: str = ""


@dataclass(frozen=True)
class TestStep:
    """Base for all step variants.

    Subclasses set ``action`` to one word of the action vocabulary; the
    executor dispatches on it.
    """

    # Tell pytest not to collect this as a test class
    __test__ = False

    action: ClassVar[str] = ""

    id: str
    assertions: tuple[Assertion, ...] = ()
    timeout_ms: int | None = None
    tags: tuple[str, ...] = ()
    description: str | None = None

    @property
    def target(self) -> Target | None:
        return None

    @property
    def optional(self) -> bool:
        return "@optional" in self.tags


@dataclass(frozen=True)
class NavigateStep(TestStep):
    """Load a URL (absolute, or relative to the script's base URL)."""

    action: ClassVar[str] = "navigate"

    url: str = ""


@dataclass(frozen=True)
class ClickStep(TestStep):
    action: ClassVar[str] = "click"

    element: Target | None = None

    @property
    def target(self) -> Target | None:
        return self.element


@dataclass(frozen=True)
class TypeStep(TestStep):
    action: ClassVar[str] = "type"

    element: Target | None = None
    value: str = ""

    @property
    def target(self) -> Target | None:
        return self.element


@dataclass(frozen=True)
class SelectStep(TestStep):
    action: ClassVar[str] = "select"

    element: Target | None = None
    value: str = ""

    @property
    def target(self) -> Target | None:
        return self.element


@dataclass(frozen=True)
class WaitStep(TestStep):
    """Wait for an element to appear, or for a fixed duration."""

    action: ClassVar[str] = "wait"

    element: Target | None = None
    duration_ms: int | None = None

    @property
    def target(self) -> Target | None:
        return self.element


@dataclass(frozen=True)
class AssertStep(TestStep):
    """Evaluate assertions, optionally against a resolved element."""

    action: ClassVar[str] = "assert"

    element: Target | None = None

    @property
    def target(self) -> Target | None:
        return self.element


STEP_TYPES: dict[str, type[TestStep]] = {
    cls.action: cls
    for cls in (NavigateStep, ClickStep, TypeStep, SelectStep, WaitStep, AssertStep)
}


@dataclass(frozen=True)
class TestScript:
    """Parsed test script."""

    # Tell pytest not to collect this as a test class
    __test__ = False

    steps: tuple[TestStep, ...]
    objective: str = ""
    base_url: str = ""
    path: str | None = None

    @property
    def name(self) -> str:
        if self.path:
            return Path(self.path).stem
        return self.objective or "script"
