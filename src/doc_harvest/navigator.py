"""Resumable crawl state machine.

Every page transition may tear down the process that requested it, so the
navigator keeps nothing between calls: each command loads the session from
the store, acts, and persists before anything that could lose control.

    idle -> initializing -> navigating <-> scanning -> complete | stopped | failed
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol, Union

from .classify import classify_page
from .dedupe import ArtifactDeduplicator
from .extract import ContentExtractor, HtmlExtractor, PageHandle
from .models import CompletionStatus, CrawlLimits, CrawlSession, StopReason
from .nav_queue import NavigationQueue
from .profile import SiteProfile
from .recovery import ErrorHandler, TransitionWatchdog
from .resolver import IndirectionResolver
from .sinks import NullSink, ReportEvent, ReportSink
from .state import SessionStore
from .urls import TargetScope, normalize_target, targets_match

logger = logging.getLogger(__name__)


class NavigatorState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    NAVIGATING = "navigating"
    SCANNING = "scanning"
    COMPLETE = "complete"
    STOPPED = "stopped"
    FAILED = "failed"


_TERMINAL = {
    CompletionStatus.COMPLETED: NavigatorState.COMPLETE,
    CompletionStatus.STOPPED: NavigatorState.STOPPED,
    CompletionStatus.FAILED: NavigatorState.FAILED,
}


@dataclass(frozen=True)
class StartCrawl:
    page: PageHandle | None = None


@dataclass(frozen=True)
class PageLoaded:
    page: PageHandle


@dataclass(frozen=True)
class TransitionFailed:
    target: str
    message: str


@dataclass(frozen=True)
class CheckTimeout:
    now: float | None = None


@dataclass(frozen=True)
class Continue:
    pass


@dataclass(frozen=True)
class StopCrawl:
    reason: str = StopReason.MANUAL_STOP.value


Command = Union[StartCrawl, PageLoaded, TransitionFailed, CheckTimeout, Continue, StopCrawl]


@dataclass(frozen=True)
class TickResult:
    state: NavigatorState
    transition: str | None = None
    report: dict[str, Any] | None = None

    @property
    def finished(self) -> bool:
        return self.report is not None


class PageTransitions(Protocol):
    """Moves the host to another page.

    Implementations may never return control (a real page load tears down
    the caller); everything the crawl needs is persisted before the call.
    """

    def request_transition(self, target: str) -> None: ...


class Navigator:
    def __init__(
        self,
        store: SessionStore,
        transitions: PageTransitions,
        *,
        scope: TargetScope,
        profile: SiteProfile | None = None,
        extractor: ContentExtractor | None = None,
        resolver: IndirectionResolver | None = None,
        sink: ReportSink | None = None,
        limits: CrawlLimits | None = None,
        clock: Callable[[], float] = time.time,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.store = store
        self.transitions = transitions
        self.scope = scope
        self.profile = profile or scope.profile
        self.extractor = extractor or HtmlExtractor(self.profile)
        self.resolver = resolver
        self.sink = sink or NullSink()
        self.limits = limits or CrawlLimits()
        self.clock = clock
        self.cancel_event = cancel_event or threading.Event()
        self.state = NavigatorState.IDLE
        self.session: CrawlSession | None = None

    def _bind(self, session: CrawlSession) -> None:
        self.session = session
        self.queue = NavigationQueue(session, self.scope, clock=self.clock)
        self.errors = ErrorHandler(session, clock=self.clock)
        self.watchdog = TransitionWatchdog(session, clock=self.clock)
        self.dedupe = ArtifactDeduplicator(session, self.profile)

    def _save(self) -> None:
        assert self.session is not None
        self.session.last_activity_at = self.clock()
        self.store.save(self.session)

    def _emit(self, event: ReportEvent, payload: dict[str, Any]) -> None:
        try:
            self.sink.emit(event, payload)
        except Exception:
            logger.exception("Failed to emit %s", event.value)

    def handle(self, command: Command) -> TickResult:
        if isinstance(command, StartCrawl):
            return self._start(command.page)

        session = self.store.load()
        if session is None:
            if self.store.discard_stale():
                logger.info("Discarded a session that belongs to another root")
            self.state = NavigatorState.IDLE
            return TickResult(self.state)
        self._bind(session)

        if not session.is_active:
            self.state = _TERMINAL.get(session.completion_status, NavigatorState.IDLE)
            return TickResult(self.state)

        if isinstance(command, StopCrawl):
            self.cancel_event.set()
            return self._finish(CompletionStatus.STOPPED, command.reason)
        if isinstance(command, PageLoaded):
            return self._resume(command.page)
        if isinstance(command, TransitionFailed):
            return self._transition_failed(command.target, command.message)
        if isinstance(command, CheckTimeout):
            return self._check_timeout(command.now)
        if isinstance(command, Continue):
            if session.pending is not None:
                # The deadline restarts with the re-issued request.
                pending = self.watchdog.arm(session.pending.target)
                self._save()
                self.state = NavigatorState.NAVIGATING
                return TickResult(self.state, transition=pending.target)
            return self._advance(None)
        raise TypeError(f"Unsupported command: {command!r}")

    def _start(self, page: PageHandle | None) -> TickResult:
        self.state = NavigatorState.INITIALIZING
        self.cancel_event.clear()
        self.store.discard_stale()
        previous = self.store.load()
        if previous is not None and previous.is_active:
            logger.info("Superseding active session %s", previous.session_id)

        session = CrawlSession.new(
            root_id=self.scope.root_id,
            origin=self.scope.origin,
            limits=self.limits,
            now=self.clock(),
        )
        self._bind(session)
        added = self.queue.add_entry_points(self.profile)
        logger.info(
            "Started crawl %s for %s with %d entry points",
            session.session_id,
            self.scope.root_url,
            added,
        )
        self._save()

        if page is not None and self.scope.is_in_root(page.url):
            self._scan(page, normalize_target(page.url) or page.url)
        return self._advance(None)

    def _resume(self, page: PageHandle) -> TickResult:
        session = self.session
        assert session is not None
        pending = session.pending
        now = self.clock()

        if pending is None:
            logger.debug("Page %s loaded without a pending transition", page.url)
        elif now > pending.deadline:
            self.watchdog.disarm()
            if self.errors.handle_timeout(pending.target):
                return self._finish(CompletionStatus.FAILED, session.stop_reason)
            self.queue.skip(pending.target)
            self._save()
        elif targets_match(page.url, pending.target):
            self.watchdog.disarm()
            if page.status >= 400:
                if self.errors.handle_failure(pending.target, f"HTTP {page.status}"):
                    return self._finish(CompletionStatus.FAILED, session.stop_reason)
                self.queue.skip(pending.target)
                self._save()
            else:
                self._scan(page, pending.target)
            page = None
        else:
            self.watchdog.disarm()
            message = f"Landed on {page.url} instead of {pending.target}"
            if self.errors.handle_failure(pending.target, message):
                return self._finish(CompletionStatus.FAILED, session.stop_reason)
            self.queue.skip(pending.target)
            self._save()

        if page is not None and not self.scope.is_in_root(page.url):
            page = None
        return self._advance(page)

    def _transition_failed(self, target: str, message: str) -> TickResult:
        session = self.session
        assert session is not None
        self.watchdog.disarm()
        if self.errors.handle_failure(target, message):
            return self._finish(CompletionStatus.FAILED, session.stop_reason)
        self.queue.skip(target)
        self._save()
        return self._advance(None)

    def _check_timeout(self, now: float | None) -> TickResult:
        session = self.session
        assert session is not None
        if session.pending is None:
            return self._advance(None)
        if not self.watchdog.expired(now):
            self.state = NavigatorState.NAVIGATING
            return TickResult(self.state, transition=session.pending.target)
        pending = self.watchdog.disarm()
        assert pending is not None
        if self.errors.handle_timeout(pending.target):
            return self._finish(CompletionStatus.FAILED, session.stop_reason)
        self.queue.skip(pending.target)
        self._save()
        return self._advance(None)

    def _advance(self, current: PageHandle | None) -> TickResult:
        session = self.session
        assert session is not None

        while True:
            if self.cancel_event.is_set():
                return self._finish(CompletionStatus.STOPPED, StopReason.MANUAL_STOP.value)
            if session.counters.navigation_attempts >= session.limits.max_navigation_attempts:
                return self._finish(
                    CompletionStatus.STOPPED, StopReason.MAX_ATTEMPTS_REACHED.value
                )
            item = self.queue.next_unvisited()
            if item is None:
                return self._finish(CompletionStatus.COMPLETED, StopReason.QUEUE_COMPLETE.value)

            session.counters.navigation_attempts += 1
            session.phase = item.phase

            if current is not None and targets_match(current.url, item.target):
                self._scan(current, item.target)
                current = None
                continue

            self.state = NavigatorState.NAVIGATING
            self.watchdog.arm(item.target)
            self._save()
            try:
                self.transitions.request_transition(item.target)
            except Exception as e:
                self.watchdog.disarm()
                if self.errors.handle_failure(item.target, e):
                    return self._finish(CompletionStatus.FAILED, session.stop_reason)
                self.queue.skip(item.target)
                self._save()
                continue
            return TickResult(self.state, transition=item.target)

    def _scan(self, page: PageHandle, target: str) -> None:
        session = self.session
        assert session is not None
        self.state = NavigatorState.SCANNING

        elements = self.extractor.extract_elements(page)
        result = classify_page(elements, self.scope, self.profile)

        enqueued = 0
        for req in result.to_queue:
            if self.queue.enqueue(req.target, req.priority, req.phase, req.metadata):
                enqueued += 1
        self.queue.mark_visited(target)
        visited_as = normalize_target(target) or target

        artifacts = list(result.artifacts)
        unresolved = 0
        to_resolve = [r for r in result.to_resolve if r.target not in session.seen_locations]
        if len(to_resolve) < len(result.to_resolve):
            logger.debug(
                "Skipping %d indirections handled on earlier pages",
                len(result.to_resolve) - len(to_resolve),
            )
        if to_resolve:
            if self.resolver is None:
                unresolved = len(to_resolve)
                logger.debug("No resolver; skipping %d indirections", unresolved)
            else:
                outcome = self.resolver.resolve(to_resolve, visited_as)
                artifacts.extend(outcome.artifacts)
                unresolved = len(outcome.failures)
                # Cancelled fetches are neither resolved nor failed and stay eligible.
                session.seen_locations.update(a.metadata["via"] for a in outcome.artifacts)
                session.seen_locations.update(f.target for f in outcome.failures)
        for artifact in artifacts:
            artifact.discovered_on = visited_as

        merged = self.dedupe.merge_all(artifacts)
        self._save()

        logger.info(
            "Scanned %s: %d artifacts (%d new), %d queued, %d unresolved",
            visited_as,
            len(artifacts),
            merged.get("inserted", 0),
            enqueued,
            unresolved,
        )
        self._emit(
            ReportEvent.PAGE_SCANNED,
            {
                "sessionId": session.session_id,
                "target": visited_as,
                "artifacts": len(artifacts),
                "queued": enqueued,
                "rejected": len(result.rejected),
                "unresolved": unresolved,
            },
        )

    def _finish(self, status: CompletionStatus, reason: str | None) -> TickResult:
        session = self.session
        assert session is not None
        session.is_active = False
        session.completion_status = status
        session.stop_reason = reason
        session.pending = None
        if session.ended_at is None:
            session.ended_at = self.clock()
        self._save()

        self.state = _TERMINAL[status]
        report = self.build_report()
        logger.info(
            "Crawl %s %s (%s): %d pages, %d artifacts",
            session.session_id,
            status.value,
            reason,
            session.counters.pages_visited,
            len(report["artifacts"]),
        )
        if report["artifacts"]:
            self._emit(
                ReportEvent.ARTIFACTS_FOUND,
                {
                    "sessionId": session.session_id,
                    "rootId": session.root_id,
                    "artifacts": report["artifacts"],
                },
            )
        self._emit(ReportEvent.CRAWL_COMPLETE, report)
        return TickResult(self.state, report=report)

    def build_report(self) -> dict[str, Any]:
        session = self.session
        assert session is not None
        return {
            "sessionId": session.session_id,
            "rootId": session.root_id,
            "pagesVisited": session.counters.pages_visited,
            "artifacts": [a.to_dict() for a in self.dedupe.final_list()],
            "durationMs": session.duration_ms(self.clock()),
            "completionStatus": session.completion_status.value,
            "stopReason": session.stop_reason,
            "failedTargets": [f.to_dict() for f in session.failed_targets],
            "queueStats": self.queue.stats().to_dict(),
        }

    def progress(self) -> dict[str, Any]:
        session = self.store.load()
        if session is None:
            return {"isActive": False, "state": NavigatorState.IDLE.value}
        self._bind(session)
        return {
            "isActive": session.is_active,
            "sessionId": session.session_id,
            "rootId": session.root_id,
            "phase": session.phase,
            "pagesVisited": session.counters.pages_visited,
            "navigationAttempts": session.counters.navigation_attempts,
            "artifactsFound": len(session.artifacts),
            "queueStats": self.queue.stats().to_dict(),
            "durationMs": session.duration_ms(self.clock()),
            "lastError": session.last_error.to_dict() if session.last_error else None,
            "completionStatus": session.completion_status.value,
            "pending": session.pending.target if session.pending else None,
        }
