import pytest
import requests

from doc_harvest.errors import FetchFailure
from doc_harvest.fetch_pool import HttpFetcher
from doc_harvest.http_client import HttpClient

from conftest import COURSE


class FakeResponse:
    def __init__(self, url, status_code=200, content=b"", headers=None):
        self.url = url
        self.status_code = status_code
        self.content = content
        self.headers = headers or {"Content-Type": "text/html"}


class FakeSession:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def get(self, url, timeout=None, headers=None):
        self.calls.append((url, timeout))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_client(outcomes, **kwargs):
    session = FakeSession(outcomes)
    sleeps = []
    client = HttpClient(session, sleep=sleeps.append, **kwargs)
    return client, session, sleeps


class TestHttpClient:
    def test_normalizes_and_returns_result(self):
        client, session, sleeps = make_client(
            [FakeResponse(f"{COURSE}/pages/a", content=b"<html></html>")], timeout_s=7
        )
        result = client.get(f"{COURSE}/pages/a/#top")
        assert session.calls == [(f"{COURSE}/pages/a", 7)]
        assert result.status_code == 200
        assert result.content_type == "text/html"
        assert result.text() == "<html></html>"
        assert sleeps == []

    def test_retries_transient_status_with_backoff(self):
        client, session, sleeps = make_client(
            [
                FakeResponse(f"{COURSE}/pages/a", status_code=503),
                FakeResponse(f"{COURSE}/pages/a", status_code=502),
                FakeResponse(f"{COURSE}/pages/a"),
            ],
            backoff_base_s=0.5,
        )
        assert client.get(f"{COURSE}/pages/a").status_code == 200
        assert sleeps == [0.5, 1.0]

    def test_honours_retry_after(self):
        client, _, sleeps = make_client(
            [
                FakeResponse(f"{COURSE}/pages/a", status_code=429, headers={"Retry-After": "3"}),
                FakeResponse(f"{COURSE}/pages/a"),
            ]
        )
        client.get(f"{COURSE}/pages/a")
        assert sleeps == [3.0]

    def test_last_transient_status_is_returned(self):
        client, _, _ = make_client(
            [FakeResponse(f"{COURSE}/pages/a", status_code=503)], max_retries=0
        )
        assert client.get(f"{COURSE}/pages/a").status_code == 503

    def test_connection_errors_raise_fetch_failure(self):
        client, session, sleeps = make_client(
            [requests.ConnectionError("refused")] * 3, max_retries=2
        )
        with pytest.raises(FetchFailure) as excinfo:
            client.get(f"{COURSE}/pages/a")
        assert excinfo.value.target == f"{COURSE}/pages/a"
        assert len(session.calls) == 3
        assert sleeps == [1.0, 2.0]

    def test_redirect_target_is_reported(self):
        client, _, _ = make_client(
            [FakeResponse(f"{COURSE}/files/9/download?download_frd=1", content=b"%PDF-1.7")]
        )
        result = HttpFetcher(client).fetch(f"{COURSE}/modules/items/5")
        assert result.target == f"{COURSE}/modules/items/5"
        assert result.final_url == f"{COURSE}/files/9/download?download_frd=1"
        assert result.body.startswith(b"%PDF")
