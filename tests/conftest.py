"""Shared fixtures: a fake course on https://lms.test and in-process fakes
for every collaborator that would otherwise touch the network."""

from __future__ import annotations

import threading

import pytest

from doc_harvest.errors import FetchFailure
from doc_harvest.extract import HtmlExtractor
from doc_harvest.fetch_pool import AuxiliaryFetchPool, FetchResponse, PolitenessGate
from doc_harvest.profile import CANVAS_PROFILE
from doc_harvest.resolver import IndirectionResolver
from doc_harvest.sinks import ReportEvent
from doc_harvest.state import MemoryBackend, SessionStore
from doc_harvest.urls import TargetScope

ORIGIN = "https://lms.test"
COURSE = f"{ORIGIN}/courses/1"

MODULES_HTML = """<!doctype html>
<html><head><title>Modules</title></head><body>
<div class="context_module" id="context_module_10">
  <div class="header"><span class="name">Week 1</span></div>
  <ul class="context_module_items">
    <li class="context_module_item wiki_page" id="context_module_item_101">
      <span class="type">wiki_page</span>
      <a class="ig-title title item_link" href="/courses/1/modules/items/101">Lecture 1</a>
    </li>
    <li class="context_module_item wiki_page" id="context_module_item_102">
      <span class="type">wiki_page</span>
      <a class="ig-title title item_link" href="/courses/1/modules/items/102">Lecture 2</a>
    </li>
    <li class="context_module_item attachment" id="context_module_item_103">
      <span class="type">attachment</span>
      <a class="ig-title title item_link" href="/courses/1/modules/items/103">Course handbook</a>
    </li>
    <li class="context_module_item attachment" id="context_module_item_104">
      <span class="type">attachment</span>
      <a class="ig-title title item_link" href="/courses/1/modules/items/{{ id }}">Placeholder</a>
    </li>
  </ul>
</div>
<a href="/courses/1/files/42/download?download_frd=1">Download</a>
<a href="/courses/1/assignments/7">Assignment 1</a>
<a href="/courses/1/quizzes/3">Quiz 1</a>
<a href="/courses/2/modules">Another course</a>
<a href="https://example.org/papers/survey.pdf">Survey paper</a>
</body></html>
"""

LECTURE_1_PAGE = """<html><body>
<h1>Lecture 1</h1>
<p class="instructure_file_link_holder">
  <a class="inline_disabled" data-id="501" href="/courses/1/files/501?wrap=1">Lecture 1 slides.pdf</a>
</p>
</body></html>
"""

ITEM_102_PAGE = """<html><body>
<p>This item moved. See <a href="/courses/1/pages/week-2-notes">the notes page</a>.</p>
</body></html>
"""

WEEK_2_NOTES_PAGE = """<html><body>
<a href="/courses/1/files/502/download?download_frd=1">Download</a>
</body></html>
"""

FILES_HTML = """<html><body>
<table>
  <tr><td><a class="ef-name-col__link" href="/courses/1/files/42?wrap=1">
    <span class="name">Lecture 3 Slides.pdf</span></a></td></tr>
</table>
<a href="/courses/1/files/folder/week-1">Week 1 folder</a>
</body></html>
"""

EMPTY_HTML = "<html><body><p>Nothing here.</p></body></html>"


def html_response(target: str, body: str, *, final_url: str | None = None, status: int = 200) -> FetchResponse:
    return FetchResponse(
        target=target,
        status=status,
        content_type="text/html; charset=utf-8",
        final_url=final_url or target,
        body=body.encode("utf-8"),
    )


class FakeFetcher:
    """Serves canned responses; unknown targets get an empty HTML page."""

    def __init__(self, responses: dict[str, FetchResponse | Exception] | None = None) -> None:
        self.responses = dict(responses or {})
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def add_html(self, target: str, body: str, **kwargs) -> None:
        self.responses[target] = html_response(target, body, **kwargs)

    def fetch(self, target: str) -> FetchResponse:
        with self._lock:
            self.calls.append(target)
        found = self.responses.get(target)
        if isinstance(found, Exception):
            raise found
        if found is None:
            return html_response(target, EMPTY_HTML)
        return found


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CollectingSink:
    def __init__(self) -> None:
        self.events: list[tuple[ReportEvent, dict]] = []

    def emit(self, event: ReportEvent, payload: dict) -> None:
        self.events.append((event, payload))

    def of(self, event: ReportEvent) -> list[dict]:
        return [payload for kind, payload in self.events if kind == event]


class BrokenSink:
    def emit(self, event: ReportEvent, payload: dict) -> None:
        raise RuntimeError("collector unavailable")


class FailingTransitions:
    def __init__(self) -> None:
        self.requested: list[str] = []

    def request_transition(self, target: str) -> None:
        self.requested.append(target)
        raise FetchFailure(target, "connection reset")


def course_fetcher() -> FakeFetcher:
    fetcher = FakeFetcher()
    fetcher.add_html(
        f"{COURSE}/modules/items/101",
        LECTURE_1_PAGE,
        final_url=f"{COURSE}/pages/lecture-1?module_item_id=101",
    )
    fetcher.add_html(f"{COURSE}/modules/items/102", ITEM_102_PAGE)
    fetcher.add_html(f"{COURSE}/pages/week-2-notes", WEEK_2_NOTES_PAGE)
    fetcher.add_html(
        f"{COURSE}/modules/items/103",
        "<html><body>File preview</body></html>",
        final_url=f"{COURSE}/files/503?module_item_id=103",
    )
    fetcher.add_html(f"{COURSE}/modules", MODULES_HTML)
    fetcher.add_html(f"{COURSE}/files", FILES_HTML)
    return fetcher


@pytest.fixture
def profile():
    return CANVAS_PROFILE


@pytest.fixture
def scope(profile):
    return TargetScope(ORIGIN, "1", profile)


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def store(backend):
    return SessionStore(backend, "1")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return CollectingSink()


@pytest.fixture
def gate():
    return PolitenessGate(0.0, 0.0)


@pytest.fixture
def fetcher():
    return course_fetcher()


@pytest.fixture
def pool(fetcher, gate):
    with AuxiliaryFetchPool(fetcher, max_workers=3, timeout_s=5.0, gate=gate) as p:
        yield p


@pytest.fixture
def extractor(profile):
    return HtmlExtractor(profile)


@pytest.fixture
def resolver(pool, extractor, scope, profile):
    return IndirectionResolver(pool, extractor, scope, profile)
