from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

import requests
from tqdm import tqdm

from . import __version__
from .config import HarvestConfig
from .errors import FetchFailure
from .extract import HtmlExtractor, PageHandle
from .fetch_pool import AuxiliaryFetchPool, Fetcher, HttpFetcher, PolitenessGate
from .http_client import HttpClient
from .navigator import (
    Continue,
    Navigator,
    PageLoaded,
    StartCrawl,
    StopCrawl,
    TickResult,
    TransitionFailed,
)
from .profile import CANVAS_PROFILE, SiteProfile
from .resolver import IndirectionResolver
from .sinks import ReportSink
from .state import JsonFileBackend, SessionStore
from .urls import TargetScope

logger = logging.getLogger(__name__)


class RecordingTransitions:
    """Page transitions that only remember where the crawl wants to go."""

    def __init__(self) -> None:
        self.requested: list[str] = []

    def request_transition(self, target: str) -> None:
        self.requested.append(target)


def build_http_session(config: HarvestConfig) -> requests.Session:
    session = requests.Session()
    session.headers.update(
        {"User-Agent": f"doc-harvest/{__version__}"}
    )
    session.headers.update(config.headers)
    for name, value in config.cookies.items():
        session.cookies.set(name, value)
    return session


class HttpCrawlRunner:
    """Drives a crawl over plain HTTP.

    Each page hop builds a brand-new navigator, so nothing but the session
    store carries state from one page to the next.
    """

    def __init__(
        self,
        config: HarvestConfig,
        *,
        store: SessionStore | None = None,
        fetcher: Fetcher | None = None,
        sink: ReportSink | None = None,
        profile: SiteProfile = CANVAS_PROFILE,
        show_progress: bool = True,
        clock: Callable[[], float] = time.time,
        gate: PolitenessGate | None = None,
    ) -> None:
        self.config = config
        self.profile = profile
        self.scope = TargetScope(config.origin, config.root_id, profile)
        self.store = store or SessionStore(
            JsonFileBackend(config.state_dir), config.root_id, key=config.session_key
        )
        if fetcher is None:
            client = HttpClient(
                build_http_session(config), timeout_s=config.request_timeout_s
            )
            fetcher = HttpFetcher(client)
        self.fetcher = fetcher
        self.sink = sink
        self.show_progress = show_progress
        self.clock = clock
        self.gate = gate or PolitenessGate(
            config.min_request_interval_s, config.max_request_interval_s
        )
        self.cancel_event = threading.Event()

    def _navigator(self, pool: AuxiliaryFetchPool) -> Navigator:
        extractor = HtmlExtractor(self.profile)
        return Navigator(
            self.store,
            RecordingTransitions(),
            scope=self.scope,
            profile=self.profile,
            extractor=extractor,
            resolver=IndirectionResolver(pool, extractor, self.scope, self.profile),
            sink=self.sink,
            limits=self.config.limits,
            clock=self.clock,
            cancel_event=self.cancel_event,
        )

    def load_page(self, target: str) -> PageHandle:
        self.gate.wait()
        response = self.fetcher.fetch(target)
        if response.status == 429:
            self.gate.penalize()
        return PageHandle(url=response.final_url, html=response.text(), status=response.status)

    def _hop(self, pool: AuxiliaryFetchPool, target: str) -> TickResult:
        navigator = self._navigator(pool)
        try:
            page = self.load_page(target)
        except FetchFailure as e:
            return navigator.handle(TransitionFailed(target, str(e)))
        return navigator.handle(PageLoaded(page))

    def run(self, *, resume: bool = False, start_page: PageHandle | None = None) -> dict[str, Any]:
        pool = AuxiliaryFetchPool(
            self.fetcher,
            max_workers=self.config.max_workers,
            timeout_s=self.config.request_timeout_s,
            gate=self.gate,
            should_continue=lambda: not self.cancel_event.is_set(),
        )
        bar = tqdm(
            total=self.config.limits.max_navigation_attempts,
            desc="Crawl",
            unit="page",
            disable=not self.show_progress,
        )
        try:
            with pool:
                existing = self.store.load() if resume else None
                if existing is not None and existing.is_active:
                    logger.info("Resuming crawl %s", existing.session_id)
                    bar.update(existing.counters.navigation_attempts)
                    result = self._navigator(pool).handle(Continue())
                else:
                    result = self._navigator(pool).handle(StartCrawl(start_page))

                while result.transition is not None:
                    target = result.transition
                    bar.set_postfix_str(target[-40:], refresh=False)
                    result = self._hop(pool, target)
                    bar.update(1)
        except KeyboardInterrupt:
            logger.warning("Interrupted; stopping crawl")
            self.cancel_event.set()
            result = self._navigator(pool).handle(StopCrawl())
        finally:
            bar.close()

        if result.report is not None:
            return result.report
        return self._navigator(pool).progress()
