from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from .errors import InvalidTarget
from .models import CrawlSession, QueueItem
from .profile import SiteProfile
from .urls import TargetScope, is_template_target, normalize_target

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueStats:
    total: int
    visited: int
    remaining: int
    progress_pct: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "visited": self.visited,
            "remaining": self.remaining,
            "progressPct": self.progress_pct,
        }


class NavigationQueue:
    """Priority-ordered, de-duplicated list of pages still to visit.

    Operates directly on the session record; the caller persists it.
    """

    def __init__(
        self,
        session: CrawlSession,
        scope: TargetScope,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.session = session
        self.scope = scope
        self.clock = clock

    def _find(self, target: str) -> QueueItem | None:
        for item in self.session.queue:
            if item.target == target:
                return item
        return None

    def contains(self, target: str) -> bool:
        normalized = normalize_target(target)
        return normalized is not None and self._find(normalized) is not None

    def is_visited(self, target: str) -> bool:
        return normalize_target(target) in self.session.visited

    def check_target(self, target: str) -> str:
        """Normalized form of a target the queue may hold."""

        if is_template_target(target):
            raise InvalidTarget(target, "Unrendered template")
        normalized = normalize_target(target, self.scope.origin)
        if normalized is None:
            raise InvalidTarget(target, "Not an http(s) target")
        if not self.scope.is_navigable(normalized):
            raise InvalidTarget(target, "Outside the crawl scope")
        return normalized

    def enqueue(
        self,
        target: str,
        priority: int = 5,
        phase: str = "general",
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        try:
            normalized = self.check_target(target)
        except InvalidTarget as e:
            logger.debug("Not queueing %s", e)
            return False
        if normalized in self.session.visited or self._find(normalized) is not None:
            return False

        self.session.queue.append(
            QueueItem(
                target=normalized,
                priority=int(priority),
                phase=phase,
                metadata=dict(metadata or {}),
                seq=self.session.next_seq,
                added_at=self.clock(),
            )
        )
        self.session.next_seq += 1
        self.session.queue.sort(key=lambda item: (item.priority, item.seq))
        return True

    def add_entry_points(self, profile: SiteProfile) -> int:
        added = 0
        for target, ep in profile.entry_targets(self.scope.origin, self.scope.root_id):
            if self.enqueue(
                target, ep.priority, ep.phase, {"isInitialPage": True}
            ):
                added += 1
        return added

    def next_unvisited(self) -> QueueItem | None:
        for item in self.session.queue:
            if not item.visited:
                return item
        return None

    def _close(self, target: str) -> str | None:
        normalized = normalize_target(target)
        if normalized is None:
            return None
        item = self._find(normalized)
        if item is not None and not item.visited:
            item.visited = True
            item.visited_at = self.clock()
        return normalized

    def mark_visited(self, target: str) -> None:
        normalized = self._close(target)
        if normalized is None or normalized in self.session.visited:
            return
        self.session.visited.add(normalized)
        self.session.counters.pages_visited += 1

    def skip(self, target: str) -> None:
        """Close a target that could not be visited without counting a page."""

        normalized = self._close(target)
        if normalized is not None:
            self.session.visited.add(normalized)

    def stats(self) -> QueueStats:
        total = len(self.session.queue)
        visited = sum(1 for item in self.session.queue if item.visited)
        remaining = total - visited
        pct = round(100.0 * visited / total, 1) if total else 0.0
        return QueueStats(total, visited, remaining, pct)
