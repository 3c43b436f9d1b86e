"""Page and indirection fetches for a crawl that runs outside a browser.

Both the runner's page hops and the resolver's worker threads go through
one ``HttpClient`` sharing the course cookies and headers. Transient statuses
are retried here, so the politeness gate in ``fetch_pool`` only sees the
final answer. A login redirect is not an error at this layer: it surfaces as
a ``final_url`` outside the course and the navigator records the mismatch.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import requests
from requests import exceptions as req_exc

from .errors import FetchFailure
from .urls import normalize_target

logger = logging.getLogger(__name__)

TRANSIENT_HTTP_STATUSES = {429, 500, 502, 503, 504}


def _retry_after_seconds(headers: dict[str, str]) -> float | None:
    retry_after = headers.get("Retry-After")
    if not retry_after:
        return None
    try:
        return float(retry_after)
    except ValueError:
        return None


@dataclass(frozen=True)
class FetchResult:
    url: str
    final_url: str
    status_code: int
    headers: dict[str, str]
    fetched_at: float
    body: bytes

    @property
    def content_type(self) -> str | None:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return None

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class HttpClient:
    """Retrying GET client over an authenticated ``requests.Session``.

    Non-2xx answers are returned, not raised; only exhausted connection
    errors become a ``FetchFailure`` carrying the normalized target.
    """

    def __init__(
        self,
        session: requests.Session,
        *,
        timeout_s: float = 30,
        max_retries: int = 2,
        backoff_base_s: float = 1.0,
        sleep=time.sleep,
    ) -> None:
        self._session = session
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._backoff_base_s = backoff_base_s
        self._sleep = sleep

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
    ) -> FetchResult:
        normalized = normalize_target(url) or url
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                resp = self._session.get(
                    normalized, timeout=self._timeout_s, headers=headers
                )

                if (
                    resp.status_code in TRANSIENT_HTTP_STATUSES
                    and attempt < self._max_retries
                ):
                    retry_after = _retry_after_seconds(dict(resp.headers))
                    wait_s = (
                        retry_after
                        if retry_after is not None
                        else self._backoff_base_s * (2**attempt)
                    )
                    logger.info(
                        "HTTP %s for %s; retrying in %.1fs",
                        resp.status_code,
                        normalized,
                        wait_s,
                    )
                    self._sleep(wait_s)
                    continue

                # Callers decide what a non-2xx status means.
                return FetchResult(
                    url=normalized,
                    final_url=str(resp.url),
                    status_code=int(resp.status_code),
                    headers={k: str(v) for k, v in resp.headers.items()},
                    fetched_at=time.time(),
                    body=resp.content,
                )
            except req_exc.RequestException as e:
                last_error = e
                if attempt >= self._max_retries:
                    break
                self._sleep(self._backoff_base_s * (2**attempt))

        raise FetchFailure(normalized, f"Failed to fetch {normalized}: {last_error}")
