from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Protocol

import requests

from .manifest import ManifestWriter

logger = logging.getLogger(__name__)


class ReportEvent(str, Enum):
    ARTIFACTS_FOUND = "artifactsFound"
    CRAWL_COMPLETE = "crawlComplete"
    PAGE_SCANNED = "pageScanned"


class ReportSink(Protocol):
    """Receives crawl results. Delivery is best-effort."""

    def emit(self, event: ReportEvent, payload: dict[str, Any]) -> None: ...


class ManifestSink:
    def __init__(self, out_dir: Path) -> None:
        self.writer = ManifestWriter(out_dir)

    def emit(self, event: ReportEvent, payload: dict[str, Any]) -> None:
        self.writer.append({"kind": event.value, **payload})
        if event == ReportEvent.ARTIFACTS_FOUND:
            self.writer.write_artifacts(list(payload.get("artifacts") or []))
        elif event == ReportEvent.CRAWL_COMPLETE:
            self.writer.write_summary(payload)


class HttpReportSink:
    """POSTs events as JSON to a collector endpoint."""

    def __init__(
        self,
        url: str,
        *,
        session: requests.Session | None = None,
        timeout_s: float = 30,
        events: Iterable[ReportEvent] = (
            ReportEvent.ARTIFACTS_FOUND,
            ReportEvent.CRAWL_COMPLETE,
        ),
    ) -> None:
        self.url = url
        self.session = session or requests.Session()
        self.timeout_s = timeout_s
        self.events = frozenset(events)

    def emit(self, event: ReportEvent, payload: dict[str, Any]) -> None:
        if event not in self.events:
            return
        try:
            resp = self.session.post(
                self.url,
                json={"type": event.value, "data": payload},
                timeout=self.timeout_s,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Report delivery to %s failed: %s", self.url, e)


class FanoutSink:
    def __init__(self, *sinks: ReportSink) -> None:
        self.sinks = sinks

    def emit(self, event: ReportEvent, payload: dict[str, Any]) -> None:
        for sink in self.sinks:
            try:
                sink.emit(event, payload)
            except Exception:
                logger.exception("Report sink %r failed on %s", sink, event.value)


class NullSink:
    def emit(self, event: ReportEvent, payload: dict[str, Any]) -> None:
        return None
