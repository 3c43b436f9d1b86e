from doc_harvest.errors import FetchFailure
from doc_harvest.models import CompletionStatus, CrawlLimits, CrawlSession
from doc_harvest.recovery import ErrorHandler, TransitionWatchdog

from conftest import COURSE, ORIGIN


def make_session(clock, max_retries=3, timeout=15.0):
    return CrawlSession.new(
        root_id="1",
        origin=ORIGIN,
        limits=CrawlLimits(max_retries=max_retries, navigation_timeout_s=timeout),
        now=clock(),
    )


class TestErrorHandler:
    def test_failures_are_recorded(self, clock):
        session = make_session(clock)
        handler = ErrorHandler(session, clock=clock)
        clock.advance(2)
        assert handler.handle_failure(f"{COURSE}/pages/a", FetchFailure("x", "reset")) is False
        (record,) = session.failed_targets
        assert record.target == f"{COURSE}/pages/a"
        assert record.message == "reset"
        assert record.attempt == 1
        assert record.timestamp == clock()
        assert session.last_error == record
        assert session.is_active

    def test_budget_is_bounded(self, clock):
        session = make_session(clock, max_retries=3)
        handler = ErrorHandler(session, clock=clock)
        results = [handler.handle_failure(f"{COURSE}/pages/{i}", "boom") for i in range(3)]
        assert results == [False, False, True]
        assert handler.budget_exhausted
        assert session.is_active is False
        assert session.completion_status == CompletionStatus.FAILED
        assert session.stop_reason == "retry_budget_exhausted"
        assert session.ended_at == clock()
        assert len(session.failed_targets) == 3
        assert session.last_error.message == "Retry budget exhausted after 3/3 failures"
        assert session.last_error.target == f"{COURSE}/pages/2"
        assert [f.message for f in session.failed_targets] == ["boom"] * 3

    def test_timeout_message(self, clock):
        session = make_session(clock, timeout=4.0)
        ErrorHandler(session, clock=clock).handle_timeout(f"{COURSE}/files")
        assert session.last_error.message == (
            f"Navigation to {COURSE}/files timed out after 4.0s"
        )

    def test_exhaustion_clears_pending_transition(self, clock):
        session = make_session(clock, max_retries=1)
        TransitionWatchdog(session, clock=clock).arm(f"{COURSE}/files")
        assert ErrorHandler(session, clock=clock).handle_timeout(f"{COURSE}/files")
        assert session.pending is None


class TestTransitionWatchdog:
    def test_deadline(self, clock):
        session = make_session(clock, timeout=15.0)
        watchdog = TransitionWatchdog(session, clock=clock)
        assert watchdog.expired() is False
        pending = watchdog.arm(f"{COURSE}/files")
        assert pending.deadline == clock() + 15.0
        assert session.pending == pending
        clock.advance(14)
        assert watchdog.expired() is False
        assert watchdog.expired(now=clock() + 1) is True
        clock.advance(1)
        assert watchdog.expired() is True

    def test_disarm(self, clock):
        session = make_session(clock)
        watchdog = TransitionWatchdog(session, clock=clock)
        pending = watchdog.arm(f"{COURSE}/files")
        assert watchdog.disarm() == pending
        assert session.pending is None
        assert watchdog.disarm() is None
