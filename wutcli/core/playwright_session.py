"""Playwright-backed browser session."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Locator as PlaywrightLocator
from playwright.sync_api import Page
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from wutcli.core.config import AgentConfig
from wutcli.core.session import (
    ActionTimeoutError,
    BrowserSession,
    ElementDescriptor,
    ElementNotInteractableError,
    NavigationError,
    SessionError,
    SessionLostError,
    StaleElementError,
)
from wutcli.models.result import NetworkRequest
from wutcli.models.script import Locator

logger = logging.getLogger("wut.session")

# Browsers that are a Chromium build selected by channel
CHANNELS = {"chrome": "chrome", "msedge": "msedge"}

_CLOSED_MARKERS = ("has been closed", "target closed", "browser closed", "crashed")
_STALE_MARKERS = ("not attached", "detached", "element is not attached")

# Longest single wait while a lookup polls its stop hook
LOOKUP_SLICE_MS = 250

# Interactive and text-bearing elements considered as healing candidates
_DESCRIBE_JS = """
(limit) => {
  const sel = 'a, button, input, select, textarea, label, option, [role], [data-testid],'
    + ' h1, h2, h3, h4, h5, h6, li, td, span, p';
  const keep = ['id', 'name', 'class', 'type', 'placeholder', 'aria-label',
                'data-testid', 'href', 'role', 'title', 'alt'];
  const out = [];
  for (const el of document.querySelectorAll(sel)) {
    if (out.length >= limit) break;
    const attrs = {};
    for (const name of keep) {
      const v = el.getAttribute(name);
      if (v !== null && v !== '') attrs[name] = v;
    }
    const text = (el.innerText || el.textContent || '').trim().slice(0, 200);
    out.push({tag: el.tagName.toLowerCase(), text: text, attrs: attrs});
  }
  return out;
}
"""

_SNAPSHOT_JS = """
(selectors) => {
  const root = document.documentElement.cloneNode(true);
  for (const sel of selectors) {
    let nodes = [];
    try { nodes = root.querySelectorAll(sel); } catch (e) { continue; }
    for (const node of nodes) {
      if (node.hasAttribute('value')) node.setAttribute('value', '***');
      node.textContent = '***';
    }
  }
  return '<!DOCTYPE html>\\n' + root.outerHTML;
}
"""


def _timeout(timeout_ms: int) -> int:
    """Playwright reads 0 as "no timeout"; keep every wait bounded."""
    return max(1, timeout_ms)


def _quote(value: str) -> str:
    return json.dumps(value)


def to_selector(locator: Locator) -> str:
    """Translate a locator into a Playwright selector string.

    Raises:
        SessionError: For strategies that do not address elements
    """
    by, value = locator.by, locator.value
    if by == "id":
        return f"[id={_quote(value)}]"
    if by == "css":
        return value
    if by == "xpath":
        return f"xpath={value}"
    if by == "name":
        return f"[name={_quote(value)}]"
    if by == "linktext":
        return f"a:text-is({_quote(value)})"
    if by == "partiallinktext":
        return f"a:has-text({_quote(value)})"
    if by == "text":
        return f"text={_quote(value)}"
    raise SessionError(f"Locator strategy '{by}' does not address page elements")


class PlaywrightSession(BrowserSession):
    """One Playwright page in its own browser context.

    The sync API is bound to the thread that started it, so a session must
    be created and used on the same worker thread.
    """

    def __init__(self, playwright, browser, context, page: Page):
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self._page = page
        self._console: list[str] = []
        self._network: list[NetworkRequest] = []
        self._lost: str | None = None

        page.on("console", self._on_console)
        page.on("response", self._on_response)
        page.on("crash", lambda _page: self._mark_lost("Page crashed"))
        page.on("close", lambda _page: self._mark_lost("Page was closed"))

    @classmethod
    def launch(cls, browser: str = "chromium", headless: bool = True) -> PlaywrightSession:
        """Start Playwright, launch a browser and open a fresh page.

        Args:
            browser: chromium, chrome, msedge, firefox or webkit
            headless: Run without a visible window

        Raises:
            SessionError: If the browser cannot be started
        """
        playwright = None
        try:
            playwright = sync_playwright().start()
            if browser in ("firefox", "webkit"):
                instance = getattr(playwright, browser).launch(headless=headless)
            else:
                instance = playwright.chromium.launch(
                    headless=headless,
                    channel=CHANNELS.get(browser),
                    args=["--disable-dev-shm-usage"],
                )
            context = instance.new_context()
            page = context.new_page()
        except PlaywrightError as e:
            if playwright is not None:
                playwright.stop()
            raise SessionError(f"Failed to launch {browser}: {e}") from e

        logger.info("Launched %s (headless=%s)", browser, headless)
        return cls(playwright, instance, context, page)

    # ------------------------------------------------------------------
    # Event listeners

    def _on_console(self, message) -> None:
        self._console.append(f"[{message.type}] {message.text}")

    def _on_response(self, response) -> None:
        self._network.append(NetworkRequest(
            url=response.url, status=response.status, method=response.request.method
        ))

    def _mark_lost(self, reason: str) -> None:
        if self._lost is None:
            logger.warning("Browser session lost: %s", reason)
            self._lost = reason

    @contextmanager
    def _errors(self, default: type[SessionError] = ElementNotInteractableError) -> Iterator[None]:
        """Translate Playwright exceptions into typed session errors."""
        if self._lost is not None:
            raise SessionLostError(self._lost)
        try:
            yield
        except PlaywrightTimeoutError as e:
            raise ActionTimeoutError(str(e).splitlines()[0]) from e
        except PlaywrightError as e:
            message = str(e).splitlines()[0] if str(e) else type(e).__name__
            lowered = message.lower()
            if self._lost is not None or any(m in lowered for m in _CLOSED_MARKERS):
                self._mark_lost(message)
                raise SessionLostError(message) from e
            if any(m in lowered for m in _STALE_MARKERS):
                raise StaleElementError(message) from e
            raise default(message) from e

    # ------------------------------------------------------------------
    # BrowserSession

    def navigate(self, url: str, timeout_ms: int) -> None:
        with self._errors(NavigationError):
            self._page.goto(url, timeout=_timeout(timeout_ms), wait_until="load")

    def find_elements(
        self,
        locator: Locator,
        timeout_ms: int,
        stop: Callable[[], bool] | None = None,
    ) -> list[PlaywrightLocator]:
        selector = to_selector(locator)
        matches = self._page.locator(selector)
        with self._errors(SessionError):
            if not self._wait_attached(matches, timeout_ms, stop):
                return []
            count = matches.count()
        return [matches.nth(i) for i in range(count)]

    @staticmethod
    def _wait_attached(
        matches: PlaywrightLocator, timeout_ms: int, stop: Callable[[], bool] | None
    ) -> bool:
        """Wait for a first match. With a stop hook, wait in slices and poll it."""
        deadline = time.monotonic() + timeout_ms / 1000
        wait_ms = timeout_ms if stop is None else min(timeout_ms, LOOKUP_SLICE_MS)
        while True:
            try:
                matches.first.wait_for(state="attached", timeout=_timeout(wait_ms))
                return True
            except PlaywrightTimeoutError:
                remaining = int((deadline - time.monotonic()) * 1000)
                if stop is None or remaining <= 0 or stop():
                    return False
                wait_ms = min(remaining, LOOKUP_SLICE_MS)

    def click(self, element: PlaywrightLocator, timeout_ms: int) -> None:
        with self._errors():
            element.click(timeout=_timeout(timeout_ms))

    def type_text(self, element: PlaywrightLocator, text: str, timeout_ms: int) -> None:
        with self._errors():
            element.fill(text, timeout=_timeout(timeout_ms))

    def select(self, element: PlaywrightLocator, value: str, timeout_ms: int) -> None:
        with self._errors():
            element.select_option(value, timeout=_timeout(timeout_ms))

    def read_text(self, element: PlaywrightLocator) -> str:
        with self._errors(StaleElementError):
            tag = element.evaluate("el => el.tagName.toLowerCase()")
            if tag in ("input", "textarea", "select"):
                return element.input_value()
            return element.inner_text()

    def is_visible(self, element: PlaywrightLocator) -> bool:
        with self._errors(StaleElementError):
            return element.is_visible()

    def current_url(self) -> str:
        if self._lost is not None:
            raise SessionLostError(self._lost)
        return self._page.url

    def title(self) -> str:
        with self._errors(SessionError):
            return self._page.title()

    def screenshot(self, mask: tuple[str, ...] = ()) -> bytes:
        with self._errors(SessionError):
            return self._page.screenshot(
                full_page=True, mask=[self._page.locator(s) for s in mask]
            )

    def dom_snapshot(self, mask: tuple[str, ...] = ()) -> str:
        with self._errors(SessionError):
            return self._page.evaluate(_SNAPSHOT_JS, list(mask))

    def describe_elements(self) -> list[ElementDescriptor]:
        with self._errors(SessionError):
            raw = self._page.evaluate(_DESCRIBE_JS, 2000)
        return [
            ElementDescriptor(tag=item["tag"], text=item["text"], attrs=dict(item["attrs"]))
            for item in raw
        ]

    def drain_console(self) -> list[str]:
        lines, self._console = self._console, []
        return lines

    def drain_network(self) -> list[NetworkRequest]:
        requests, self._network = self._network, []
        return requests

    def close(self) -> None:
        try:
            self._context.close()
            self._browser.close()
        except PlaywrightError as e:
            raise SessionError(f"Failed to close browser: {e}") from e
        finally:
            self._playwright.stop()


def launch_session(config: AgentConfig) -> PlaywrightSession:
    """Session factory used by the CLI and RunPool."""
    return PlaywrightSession.launch(config.browser, config.headless)
