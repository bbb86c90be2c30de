"""Tests for LocatorResolver."""

import threading
import time

import pytest

from conftest import FakeElement
from wutcli.core.resolver import LocatorResolver, split_index
from wutcli.core.run_context import RunContext
from wutcli.core.session import SessionError, SessionLostError
from wutcli.models.result import FailureKind
from wutcli.models.script import Locator, Target

PRIMARY = Locator("css", "#submit")
FALLBACK_1 = Locator("id", "submit")
FALLBACK_2 = Locator("text", "Submit")


@pytest.fixture
def target():
    return Target(primary=PRIMARY, fallbacks=(FALLBACK_1, FALLBACK_2))


class TestSplitIndex:
    """Tests for the '>> nth=N' qualifier."""

    def test_no_qualifier(self):
        assert split_index(".row") == (".row", None)

    def test_positive_and_negative(self):
        assert split_index(".row >> nth=2") == (".row", 2)
        assert split_index(".row>>nth=-1") == (".row", -1)


class TestLocatorResolver:
    """Test resolution order and failure reporting."""

    def test_primary_wins(self, session, target):
        """Primary match means fallbacks are never tried."""
        element = session.add("css=#submit")[0]
        session.add("id=submit")

        resolution = LocatorResolver().resolve(target, session, 1000)

        assert resolution.ok
        assert resolution.element is element
        assert resolution.locator == PRIMARY
        assert resolution.failed == ()
        assert session.lookups_for("id=submit") == []

    def test_fallbacks_in_declared_order(self, session, target):
        """First fallback that matches wins; earlier failures are recorded."""
        element = session.add("text=Submit")[0]

        resolution = LocatorResolver().resolve(target, session, 1000)

        assert resolution.element is element
        assert resolution.locator == FALLBACK_2
        assert resolution.failed == (PRIMARY, FALLBACK_1)
        assert [c[1] for c in session.calls] == ["css=#submit", "id=submit", "text=Submit"]

    def test_each_locator_gets_full_timeout(self, session, target):
        """The timeout applies per locator attempt, not shared."""
        LocatorResolver().resolve(target, session, 750)

        assert [c[2] for c in session.calls] == [750, 750, 750]

    def test_all_fail(self, session, target):
        """Exhausted locators produce a resolution error listing every attempt."""
        resolution = LocatorResolver().resolve(target, session, 100)

        assert not resolution.ok
        assert resolution.error.kind == FailureKind.RESOLUTION
        assert not resolution.error.fatal
        assert resolution.error.locator == PRIMARY
        assert resolution.error.attempted == (PRIMARY, FALLBACK_1, FALLBACK_2)
        assert resolution.failed == (PRIMARY, FALLBACK_1, FALLBACK_2)
        assert "css=#submit, id=submit, text=Submit" in resolution.error.message

    def test_multiple_matches_first_in_document_order(self, session):
        first, second = session.add("css=.item", FakeElement("a"), FakeElement("b"))

        resolution = LocatorResolver().resolve(Target(Locator("css", ".item")), session, 100)

        assert resolution.element is first

    def test_multiple_matches_strict_mode_fails(self, session):
        session.add("css=.item", FakeElement("a"), FakeElement("b"))

        resolution = LocatorResolver("strict").resolve(Target(Locator("css", ".item")), session, 100)

        assert resolution.error.kind == FailureKind.RESOLUTION

    def test_strict_mode_accepts_single_match(self, session):
        only = session.add("css=.item")[0]

        resolution = LocatorResolver("strict").resolve(Target(Locator("css", ".item")), session, 100)

        assert resolution.element is only

    def test_index_qualifier_selects_match(self, session):
        """'>> nth=N' picks one match; the session sees the bare selector."""
        rows = session.add("css=.row", FakeElement("a"), FakeElement("b"), FakeElement("c"))

        second = LocatorResolver("strict").resolve(
            Target(Locator("css", ".row >> nth=1")), session, 100
        )
        last = LocatorResolver().resolve(Target(Locator("css", ".row >> nth=-1")), session, 100)

        assert second.element is rows[1]
        assert second.locator == Locator("css", ".row >> nth=1")
        assert last.element is rows[2]
        assert all(c[1] == "css=.row" for c in session.calls)

    def test_index_out_of_range_is_locator_failure(self, session):
        """Out-of-range index fails that locator and moves to the next."""
        session.add("css=.row", FakeElement("a"))
        fallback = session.add("id=row")[0]
        target = Target(Locator("css", ".row >> nth=4"), fallbacks=(Locator("id", "row"),))

        resolution = LocatorResolver().resolve(target, session, 100)

        assert resolution.element is fallback
        assert resolution.failed == (Locator("css", ".row >> nth=4"),)

    def test_session_error_counts_as_no_match(self, session, target):
        """An invalid selector error fails that locator only."""
        session.lookups["css=#submit"] = [SessionError("bad selector")]
        element = session.add("id=submit")[0]

        resolution = LocatorResolver().resolve(target, session, 100)

        assert resolution.element is element
        assert resolution.failed == (PRIMARY,)

    def test_session_loss_is_fatal_not_resolution(self, session, target):
        session.lookups["id=submit"] = [SessionLostError("browser crashed")]

        resolution = LocatorResolver().resolve(target, session, 100)

        assert resolution.error.kind == FailureKind.SESSION
        assert resolution.error.fatal
        assert resolution.failed == (PRIMARY,)
        assert session.lookups_for("text=Submit") == []

    def test_cancelled_context_stops_before_lookup(self, session, target):
        context = RunContext()
        context.cancel()

        resolution = LocatorResolver().resolve(target, session, 100, context)

        assert resolution.error.kind == FailureKind.CANCELLED
        assert session.calls == []

    def test_budget_clamps_attempt_timeout(self, session, target):
        """Each attempt is clamped to the remaining run budget."""
        context = RunContext(time_budget_sec=0.5)

        LocatorResolver().resolve(target, session, 10_000, context)

        assert all(c[2] <= 500 for c in session.calls)

    def test_expired_budget_is_run_timeout(self, session, target):
        """Running out of budget mid-resolution is a fatal timeout."""
        session.slow["css=#submit"] = 2.0
        context = RunContext(time_budget_sec=0.2)

        resolution = LocatorResolver().resolve(target, session, 10_000, context)

        assert resolution.error.kind == FailureKind.TIMEOUT
        assert resolution.error.fatal
        assert "time budget" in resolution.error.message
        assert session.lookups_for("id=submit") == []

    def test_cancel_interrupts_in_flight_lookup(self, session, target):
        """A cancel from another thread ends a long lookup promptly."""
        session.slow["css=#submit"] = 5.0
        session.add("css=#submit")
        context = RunContext()
        timer = threading.Timer(0.2, context.cancel)
        timer.start()

        started = time.monotonic()
        try:
            resolution = LocatorResolver().resolve(target, session, 5_000, context)
        finally:
            timer.cancel()

        assert time.monotonic() - started < 2.0
        assert resolution.error.kind == FailureKind.CANCELLED
        assert session.lookups_for("id=submit") == []
