from __future__ import annotations

import logging
import time
from typing import Callable

from .errors import RetryBudgetExhausted, TransitionTimeout
from .models import (
    CompletionStatus,
    CrawlSession,
    FailureRecord,
    PendingTransition,
    StopReason,
)

logger = logging.getLogger(__name__)


class ErrorHandler:
    """Records per-target failures against the session's retry budget.

    The budget is global to the session: every failure counts, and once
    ``max_retries`` failures have been recorded the session is failed.
    """

    def __init__(
        self,
        session: CrawlSession,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.session = session
        self.clock = clock

    @property
    def budget_exhausted(self) -> bool:
        return self.session.counters.retries >= self.session.limits.max_retries

    def handle_failure(self, target: str, error: BaseException | str) -> bool:
        """Record a failure; True when the crawl must stop."""

        session = self.session
        now = self.clock()
        session.counters.retries += 1
        record = FailureRecord(
            target=target,
            message=str(error),
            timestamp=now,
            attempt=session.counters.retries,
        )
        session.failed_targets.append(record)
        session.last_error = record
        session.last_activity_at = now
        logger.warning(
            "Failure %d/%d on %s: %s",
            session.counters.retries,
            session.limits.max_retries,
            target,
            record.message,
        )

        if not self.budget_exhausted:
            return False

        exhausted = RetryBudgetExhausted(session.counters.retries, session.limits.max_retries)
        session.last_error = FailureRecord(
            target=target,
            message=str(exhausted),
            timestamp=now,
            attempt=session.counters.retries,
        )
        session.is_active = False
        session.completion_status = CompletionStatus.FAILED
        session.stop_reason = StopReason.RETRY_BUDGET_EXHAUSTED.value
        session.ended_at = now
        session.pending = None
        logger.error("%s; crawl %s failed", exhausted, session.session_id)
        return True

    def handle_timeout(self, target: str) -> bool:
        timeout = TransitionTimeout(target, self.session.limits.navigation_timeout_s)
        return self.handle_failure(target, timeout)


class TransitionWatchdog:
    """Deadline for the page transition currently in flight."""

    def __init__(
        self,
        session: CrawlSession,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.session = session
        self.clock = clock

    def arm(self, target: str) -> PendingTransition:
        now = self.clock()
        pending = PendingTransition(
            target=target,
            requested_at=now,
            deadline=now + self.session.limits.navigation_timeout_s,
        )
        self.session.pending = pending
        return pending

    def disarm(self) -> PendingTransition | None:
        pending, self.session.pending = self.session.pending, None
        return pending

    def expired(self, now: float | None = None) -> bool:
        pending = self.session.pending
        if pending is None:
            return False
        now = self.clock() if now is None else now
        return now >= pending.deadline
