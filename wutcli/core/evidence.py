"""Step evidence capture and storage."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from wutcli.core.config import EvidenceConfig
from wutcli.core.session import BrowserSession, SessionError
from wutcli.models.result import Evidence, NetworkRequest

logger = logging.getLogger("wut.evidence")

_UNSAFE_RE = re.compile(r"[^\w.-]+")


class EvidenceStore:
    """Write evidence blobs under ``<root>/<run_id>/<step_id>/``.

    Blobs are write-once; the returned paths are the references stored on
    the step result.
    """

    def __init__(self, root: Path, run_id: str):
        """Initialize store.

        Args:
            root: Artifacts root directory
            run_id: Run identifier, used as the run folder name
        """
        self._run_dir = Path(root) / _UNSAFE_RE.sub("_", run_id)

    @property
    def run_dir(self) -> Path:
        return self._run_dir

    def step_dir(self, step_id: str) -> Path:
        return self._run_dir / _UNSAFE_RE.sub("_", step_id)

    def save(self, step_id: str, name: str, data: bytes | str) -> Path:
        """Save one blob.

        Args:
            step_id: Step the evidence belongs to
            name: File name (e.g. "screenshot.png")
            data: Bytes or text

        Returns:
            Path of the written file
        """
        directory = self.step_dir(step_id)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        else:
            path.write_bytes(data)
        return path


class EvidenceCollector:
    """Capture diagnostics for a step at its terminal transition."""

    def __init__(
        self,
        config: EvidenceConfig,
        store: EvidenceStore | None,
        mask_selectors: tuple[str, ...] = (),
    ):
        """Initialize collector.

        Args:
            config: Evidence flags
            store: Blob store; screenshots/DOM are skipped when None
            mask_selectors: CSS selectors redacted in screenshots and DOM
        """
        self._config = config
        self._store = store
        self._mask = mask_selectors

    def discard_pending(self, session: BrowserSession) -> None:
        """Drop console/network entries produced before the step started."""
        try:
            session.drain_console()
            session.drain_network()
        except SessionError as e:
            logger.debug("Could not drain capture buffers: %s", e)

    def capture(
        self,
        session: BrowserSession,
        step_id: str,
        *,
        failed: bool,
        force_screenshot: bool = False,
        session_alive: bool = True,
    ) -> Evidence:
        """Collect evidence once for a finished step.

        Args:
            session: Session to capture from
            step_id: Step identifier
            failed: Whether the step's terminal status is failed
            force_screenshot: Capture page artifacts even on success
            session_alive: False after session loss; only logs are attempted

        Returns:
            Evidence with file references and drained logs
        """
        notes: list[str] = []
        screenshot_path: str | None = None
        dom_path: str | None = None
        console: list[str] = []
        network: list[NetworkRequest] = []

        try:
            console = session.drain_console()
            network = session.drain_network()
        except SessionError as e:
            logger.warning("Step %s: log capture failed: %s", step_id, e)
            notes.append(f"Log capture failed: {e}")
        if not self._config.capture_console:
            console = []
        if not self._config.capture_network:
            network = []

        wants_page = failed or force_screenshot or self._config.verbose
        if wants_page and session_alive and self._store is not None:
            try:
                png = session.screenshot(mask=self._mask)
                screenshot_path = str(self._store.save(step_id, "screenshot.png", png))
            except (SessionError, OSError) as e:
                logger.warning("Step %s: screenshot capture failed: %s", step_id, e)
                notes.append(f"Screenshot capture failed: {e}")
            try:
                dom = session.dom_snapshot(mask=self._mask)
                dom_path = str(self._store.save(step_id, "dom.html", dom))
            except (SessionError, OSError) as e:
                logger.warning("Step %s: DOM snapshot failed: %s", step_id, e)
                notes.append(f"DOM snapshot failed: {e}")

        return Evidence(
            screenshot_path=screenshot_path,
            dom_snapshot_path=dom_path,
            console=tuple(console + notes),
            network=tuple(network),
        )
