"""Browser session boundary.

The engine never drives a browser itself. It talks to a ``BrowserSession``,
and every failure coming back across this boundary is one of the typed
``SessionError`` subclasses below.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from wutcli.models.result import NetworkRequest
from wutcli.models.script import Locator

# Opaque handle owned by the session implementation
ElementHandle = Any


class SessionError(Exception):
    """Base class for browser session failures."""


class ElementNotInteractableError(SessionError):
    """Element exists but cannot receive the action (hidden, disabled, covered)."""


class StaleElementError(SessionError):
    """Element handle no longer attached to the document."""


class ActionTimeoutError(SessionError):
    """Action or navigation did not settle within its timeout."""


class NavigationError(SessionError):
    """Page could not be loaded."""


class SessionLostError(SessionError):
    """The browser session itself is unusable (crash, disconnect)."""


@dataclass(frozen=True)
class ElementDescriptor:
    """Locator-independent view of a live element, used for healing."""

    tag: str
    text: str = ""
    attrs: dict[str, str] = field(default_factory=dict)


class BrowserSession(ABC):
    """One logical browser page, exclusively owned by a single run."""

    @abstractmethod
    def navigate(self, url: str, timeout_ms: int) -> None: ...

    @abstractmethod
    def find_elements(
        self,
        locator: Locator,
        timeout_ms: int,
        stop: Callable[[], bool] | None = None,
    ) -> list[ElementHandle]:
        """Wait up to ``timeout_ms`` for ``locator`` to match.

        ``stop`` is polled while waiting; once it returns True the lookup
        gives up early with no matches.

        Returns:
            Matches in document order; empty list when nothing matched.
        """

    @abstractmethod
    def click(self, element: ElementHandle, timeout_ms: int) -> None: ...

    @abstractmethod
    def type_text(self, element: ElementHandle, text: str, timeout_ms: int) -> None: ...

    @abstractmethod
    def select(self, element: ElementHandle, value: str, timeout_ms: int) -> None: ...

    @abstractmethod
    def read_text(self, element: ElementHandle) -> str: ...

    @abstractmethod
    def is_visible(self, element: ElementHandle) -> bool: ...

    @abstractmethod
    def current_url(self) -> str: ...

    @abstractmethod
    def title(self) -> str: ...

    @abstractmethod
    def screenshot(self, mask: tuple[str, ...] = ()) -> bytes:
        """PNG of the page with elements matching ``mask`` CSS selectors blacked out."""

    @abstractmethod
    def dom_snapshot(self, mask: tuple[str, ...] = ()) -> str:
        """Serialized DOM with values of ``mask`` elements redacted."""

    @abstractmethod
    def describe_elements(self) -> list[ElementDescriptor]:
        """Candidate elements on the current page, in document order."""

    @abstractmethod
    def drain_console(self) -> list[str]:
        """Console lines captured since the last drain."""

    @abstractmethod
    def drain_network(self) -> list[NetworkRequest]:
        """Network responses captured since the last drain."""

    def close(self) -> None:
        """Release browser resources."""
