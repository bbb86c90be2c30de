"""Shared fixtures: a scripted in-memory browser session."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from wutcli.core.config import AgentConfig, ExplorationConfig, RetryPolicy
from wutcli.core.session import BrowserSession, ElementDescriptor
from wutcli.models.result import NetworkRequest
from wutcli.models.script import Locator


@dataclass
class FakeElement:
    """Element handle returned by FakeSession."""

    text: str = ""
    visible: bool = True
    value: str = ""


class FakeSession(BrowserSession):
    """BrowserSession driven entirely by test setup.

    - ``elements["css=#a"]`` is what a locator matches on every lookup.
    - ``lookups["css=#a"]`` is a queue of per-call outcomes (a list of
      elements, or an exception to raise) consumed before ``elements``.
    - ``slow["css=#a"]`` makes the lookup block for that many seconds,
      bounded by its timeout (plus a small overshoot, like a real browser).
      A slow lookup polls ``stop`` and returns no matches once it is set.
    - ``on_find`` runs on every lookup, after any slow wait.
    - ``action_errors`` is a queue of exceptions raised by click/type/select.
    """

    def __init__(self):
        self.elements: dict[str, list[FakeElement]] = {}
        self.lookups: dict[str, list] = {}
        self.slow: dict[str, float] = {}
        self.action_errors: list[Exception] = []
        self.navigate_errors: list[Exception] = []
        self.url = "about:blank"
        self.page_title = ""
        self.candidates: list[ElementDescriptor] = []
        self.console: list[str] = []
        self.network: list[NetworkRequest] = []
        self.calls: list[tuple] = []
        self.on_action: Callable[[str], None] | None = None
        self.on_find: Callable[[str], None] | None = None
        self.closed = False

    def add(self, selector: str, *elements: FakeElement) -> list[FakeElement]:
        found = list(elements) or [FakeElement()]
        self.elements[selector] = found
        return found

    def lookups_for(self, selector: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == "find" and c[1] == selector]

    def _act(self, name: str) -> None:
        if self.on_action:
            self.on_action(name)
        if self.action_errors:
            raise self.action_errors.pop(0)

    # BrowserSession

    def navigate(self, url, timeout_ms):
        self.calls.append(("navigate", url, timeout_ms))
        if self.navigate_errors:
            raise self.navigate_errors.pop(0)
        self.url = url

    def find_elements(self, locator: Locator, timeout_ms, stop=None):
        key = str(locator)
        self.calls.append(("find", key, timeout_ms))
        if key in self.slow:
            end = time.monotonic() + min(self.slow[key], timeout_ms / 1000 + 0.05)
            while time.monotonic() < end:
                if stop is not None and stop():
                    return []
                time.sleep(0.01)
        if self.on_find:
            self.on_find(key)
        queue = self.lookups.get(key)
        if queue:
            outcome = queue.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return list(outcome)
        return list(self.elements.get(key, []))

    def click(self, element, timeout_ms):
        self.calls.append(("click", element, timeout_ms))
        self._act("click")

    def type_text(self, element, text, timeout_ms):
        self.calls.append(("type", element, text))
        self._act("type")
        element.value = text

    def select(self, element, value, timeout_ms):
        self.calls.append(("select", element, value))
        self._act("select")
        element.value = value

    def read_text(self, element):
        return element.text

    def is_visible(self, element):
        return element.visible

    def current_url(self):
        return self.url

    def title(self):
        return self.page_title

    def screenshot(self, mask=()):
        self.calls.append(("screenshot", tuple(mask)))
        return b"\x89PNG fake"

    def dom_snapshot(self, mask=()):
        self.calls.append(("dom", tuple(mask)))
        return "<html><body></body></html>"

    def describe_elements(self):
        return list(self.candidates)

    def drain_console(self):
        lines, self.console = self.console, []
        return lines

    def drain_network(self):
        requests, self.network = self.network, []
        return requests

    def close(self):
        self.closed = True


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def make_config(tmp_path: Path):
    """Build an AgentConfig writing artifacts under tmp_path, with no retry wait."""

    def _make(
        max_step_retries: int = 1,
        time_budget_sec: float = 600,
        **kwargs,
    ) -> AgentConfig:
        kwargs.setdefault("artifacts_path", tmp_path / "artifacts")
        return AgentConfig(
            retry_policy=RetryPolicy(max_step_retries=max_step_retries, retry_wait_ms=0),
            exploration=ExplorationConfig(time_budget_sec=time_budget_sec),
            **kwargs,
        )

    return _make
