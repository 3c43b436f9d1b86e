from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Confidence scale used by classification and dedupe.
HIGH = 90
MEDIUM = 60
LOW = 30


class CompletionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


class SourceType(str, Enum):
    DIRECT_LINK = "direct_link"
    RESOLVED_INDIRECT = "resolved_indirect"
    EMBEDDED = "embedded"
    ATTACHMENT = "attachment"
    PATTERN_DETECTED = "pattern_detected"


class StopReason(str, Enum):
    QUEUE_COMPLETE = "queue_complete"
    MAX_ATTEMPTS_REACHED = "max_attempts_reached"
    MANUAL_STOP = "manual_stop"
    RETRY_BUDGET_EXHAUSTED = "retry_budget_exhausted"
    SUPERSEDED = "superseded"


@dataclass
class QueueItem:
    target: str
    priority: int
    phase: str
    visited: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    seq: int = 0
    added_at: float = 0.0
    visited_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "priority": self.priority,
            "phase": self.phase,
            "visited": self.visited,
            "metadata": dict(self.metadata),
            "seq": self.seq,
            "addedAt": self.added_at,
            "visitedAt": self.visited_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueItem:
        return cls(
            target=str(data["target"]),
            priority=int(data.get("priority", 5)),
            phase=str(data.get("phase") or "general"),
            visited=bool(data.get("visited", False)),
            metadata=dict(data.get("metadata") or {}),
            seq=int(data.get("seq", 0)),
            added_at=float(data.get("addedAt") or 0.0),
            visited_at=data.get("visitedAt"),
        )


@dataclass
class Artifact:
    canonical_key: str
    location: str
    title: str
    source_type: SourceType
    confidence: int
    discovered_on: str = ""
    filename: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "canonicalKey": self.canonical_key,
            "location": self.location,
            "title": self.title,
            "sourceType": self.source_type.value,
            "confidence": self.confidence,
            "discoveredOn": self.discovered_on,
            "filename": self.filename,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Artifact:
        return cls(
            canonical_key=str(data["canonicalKey"]),
            location=str(data["location"]),
            title=str(data.get("title") or ""),
            source_type=SourceType(data.get("sourceType", SourceType.DIRECT_LINK.value)),
            confidence=int(data.get("confidence", LOW)),
            discovered_on=str(data.get("discoveredOn") or ""),
            filename=str(data.get("filename") or ""),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class FailureRecord:
    target: str
    message: str
    timestamp: float
    attempt: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "message": self.message,
            "timestamp": self.timestamp,
            "attempt": self.attempt,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FailureRecord:
        return cls(
            target=str(data["target"]),
            message=str(data.get("message") or ""),
            timestamp=float(data.get("timestamp") or 0.0),
            attempt=int(data.get("attempt", 0)),
        )


@dataclass(frozen=True)
class CrawlLimits:
    max_navigation_attempts: int = 50
    max_retries: int = 3
    navigation_timeout_s: float = 15.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "maxNavigationAttempts": self.max_navigation_attempts,
            "maxRetries": self.max_retries,
            "navigationTimeoutS": self.navigation_timeout_s,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CrawlLimits:
        return cls(
            max_navigation_attempts=int(data.get("maxNavigationAttempts", 50)),
            max_retries=int(data.get("maxRetries", 3)),
            navigation_timeout_s=float(data.get("navigationTimeoutS", 15.0)),
        )


@dataclass
class CrawlCounters:
    pages_visited: int = 0
    navigation_attempts: int = 0
    retries: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "pagesVisited": self.pages_visited,
            "navigationAttempts": self.navigation_attempts,
            "retries": self.retries,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CrawlCounters:
        return cls(
            pages_visited=int(data.get("pagesVisited", 0)),
            navigation_attempts=int(data.get("navigationAttempts", 0)),
            retries=int(data.get("retries", 0)),
        )


@dataclass(frozen=True)
class PendingTransition:
    target: str
    requested_at: float
    deadline: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "requestedAt": self.requested_at,
            "deadline": self.deadline,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingTransition:
        return cls(
            target=str(data["target"]),
            requested_at=float(data["requestedAt"]),
            deadline=float(data["deadline"]),
        )


def new_session_id(now: float | None = None) -> str:
    ms = int((time.time() if now is None else now) * 1000)
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(9))
    return f"crawl_{ms}_{suffix}"


@dataclass
class CrawlSession:
    """The single source of truth for one crawl.

    Everything the crawler knows between page transitions lives here, so a
    freshly constructed navigator can pick up exactly where the previous
    one stopped.
    """

    session_id: str
    root_id: str
    origin: str
    is_active: bool = True
    phase: str = "initializing"
    queue: list[QueueItem] = field(default_factory=list)
    visited: set[str] = field(default_factory=set)
    artifacts: dict[str, Artifact] = field(default_factory=dict)
    seen_locations: set[str] = field(default_factory=set)
    counters: CrawlCounters = field(default_factory=CrawlCounters)
    limits: CrawlLimits = field(default_factory=CrawlLimits)
    completion_status: CompletionStatus = CompletionStatus.IN_PROGRESS
    stop_reason: str | None = None
    last_error: FailureRecord | None = None
    failed_targets: list[FailureRecord] = field(default_factory=list)
    pending: PendingTransition | None = None
    started_at: float = 0.0
    ended_at: float | None = None
    last_activity_at: float = 0.0
    next_seq: int = 0

    @classmethod
    def new(
        cls,
        *,
        root_id: str,
        origin: str,
        limits: CrawlLimits | None = None,
        now: float | None = None,
    ) -> CrawlSession:
        now = time.time() if now is None else now
        return cls(
            session_id=new_session_id(now),
            root_id=str(root_id),
            origin=origin,
            limits=limits or CrawlLimits(),
            started_at=now,
            last_activity_at=now,
        )

    def duration_ms(self, now: float | None = None) -> int:
        end = self.ended_at
        if end is None:
            end = time.time() if now is None else now
        return max(0, int((end - self.started_at) * 1000))

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "rootId": self.root_id,
            "origin": self.origin,
            "isActive": self.is_active,
            "phase": self.phase,
            "queue": [item.to_dict() for item in self.queue],
            "visited": sorted(self.visited),
            "artifacts": [
                self.artifacts[key].to_dict() for key in sorted(self.artifacts)
            ],
            "seenLocations": sorted(self.seen_locations),
            "counters": self.counters.to_dict(),
            "limits": self.limits.to_dict(),
            "completionStatus": self.completion_status.value,
            "stopReason": self.stop_reason,
            "lastError": self.last_error.to_dict() if self.last_error else None,
            "failedTargets": [f.to_dict() for f in self.failed_targets],
            "pending": self.pending.to_dict() if self.pending else None,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "lastActivityAt": self.last_activity_at,
            "nextSeq": self.next_seq,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CrawlSession:
        artifacts = [Artifact.from_dict(a) for a in data.get("artifacts") or []]
        last_error = data.get("lastError")
        pending = data.get("pending")
        return cls(
            session_id=str(data["sessionId"]),
            root_id=str(data["rootId"]),
            origin=str(data.get("origin") or ""),
            is_active=bool(data.get("isActive", False)),
            phase=str(data.get("phase") or "general"),
            queue=[QueueItem.from_dict(q) for q in data.get("queue") or []],
            visited=set(data.get("visited") or []),
            artifacts={a.canonical_key: a for a in artifacts},
            seen_locations=set(data.get("seenLocations") or []),
            counters=CrawlCounters.from_dict(data.get("counters") or {}),
            limits=CrawlLimits.from_dict(data.get("limits") or {}),
            completion_status=CompletionStatus(
                data.get("completionStatus", CompletionStatus.IN_PROGRESS.value)
            ),
            stop_reason=data.get("stopReason"),
            last_error=FailureRecord.from_dict(last_error) if last_error else None,
            failed_targets=[
                FailureRecord.from_dict(f) for f in data.get("failedTargets") or []
            ],
            pending=PendingTransition.from_dict(pending) if pending else None,
            started_at=float(data.get("startedAt") or 0.0),
            ended_at=data.get("endedAt"),
            last_activity_at=float(data.get("lastActivityAt") or 0.0),
            next_seq=int(data.get("nextSeq", 0)),
        )
