from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Iterable, Protocol

from .errors import FetchFailure
from .http_client import FetchResult, HttpClient

logger = logging.getLogger(__name__)

_POLL_S = 0.05


@dataclass(frozen=True)
class FetchResponse:
    target: str
    status: int
    content_type: str | None
    final_url: str
    body: bytes

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    @classmethod
    def from_result(cls, target: str, res: FetchResult) -> FetchResponse:
        return cls(
            target=target,
            status=res.status_code,
            content_type=res.content_type,
            final_url=res.final_url,
            body=res.body,
        )


class Fetcher(Protocol):
    def fetch(self, target: str) -> FetchResponse: ...


class HttpFetcher:
    def __init__(self, client: HttpClient) -> None:
        self.client = client

    def fetch(self, target: str) -> FetchResponse:
        return FetchResponse.from_result(target, self.client.get(target))


class PolitenessGate:
    """Spaces requests out; backs off when the server says 429."""

    def __init__(
        self,
        min_interval_s: float = 1.0,
        max_interval_s: float = 5.0,
        factor: float = 2.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval_s = min_interval_s
        self.max_interval_s = max(max_interval_s, min_interval_s)
        self.factor = factor
        self._interval = min_interval_s
        self._next_slot = 0.0
        self._lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep

    @property
    def interval_s(self) -> float:
        with self._lock:
            return self._interval

    def wait(self) -> None:
        with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self._interval
        delay = slot - now
        if delay > 0:
            self._sleep(delay)

    def penalize(self) -> None:
        with self._lock:
            self._interval = min(
                max(self._interval, 0.001) * self.factor, self.max_interval_s
            )
            interval = self._interval
        logger.warning("Rate limited; request spacing now %.1fs", interval)

    def relax(self) -> None:
        with self._lock:
            self._interval = max(self._interval / self.factor, self.min_interval_s)


class AuxiliaryFetchPool:
    """Bounded worker pool for background fetches outside page navigation.

    Each task has its own deadline measured from when it starts running.
    Results are discarded once ``should_continue`` turns false.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        max_workers: int = 3,
        timeout_s: float = 30.0,
        gate: PolitenessGate | None = None,
        should_continue: Callable[[], bool] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.fetcher = fetcher
        self.timeout_s = timeout_s
        self.gate = gate or PolitenessGate()
        self.should_continue = should_continue or (lambda: True)
        self._clock = clock
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="aux-fetch"
        )
        self._started: dict[Future, float] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> AuxiliaryFetchPool:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _run(self, target: str, holder: list[Future]) -> FetchResponse:
        if not self.should_continue():
            raise FetchFailure(target, "Cancelled")
        self.gate.wait()
        with self._lock:
            self._started[holder[0]] = self._clock()
        response = self.fetcher.fetch(target)
        if response.status == 429:
            self.gate.penalize()
        else:
            self.gate.relax()
        if response.status >= 400:
            raise FetchFailure(
                target, f"HTTP {response.status} for {target}", status=response.status
            )
        return response

    def _submit(self, target: str) -> Future:
        holder: list[Future] = []
        with self._lock:
            future = self._executor.submit(self._run, target, holder)
            holder.append(future)
        return future

    def _overdue(self, future: Future, now: float) -> bool:
        with self._lock:
            started = self._started.get(future)
        return started is not None and now - started > self.timeout_s

    def fetch_all(
        self, targets: Iterable[str]
    ) -> dict[str, FetchResponse | FetchFailure]:
        unique = list(dict.fromkeys(targets))
        if not unique:
            return {}

        by_future = {self._submit(t): t for t in unique}
        pending: set[Future] = set(by_future)
        results: dict[str, FetchResponse | FetchFailure] = {}

        while pending:
            done, pending = wait(pending, timeout=_POLL_S, return_when=FIRST_COMPLETED)
            for future in done:
                target = by_future[future]
                try:
                    results[target] = future.result()
                except FetchFailure as e:
                    results[target] = e
                except Exception as e:
                    logger.exception("Fetch of %s raised", target)
                    results[target] = FetchFailure(target, str(e))

            if not self.should_continue():
                for future in pending:
                    future.cancel()
                logger.info("Auxiliary fetches cancelled; discarding %d results", len(results))
                return {}

            now = self._clock()
            for future in list(pending):
                if self._overdue(future, now):
                    target = by_future[future]
                    future.cancel()
                    pending.discard(future)
                    results[target] = FetchFailure(
                        target, f"Timed out after {self.timeout_s:.1f}s"
                    )
                    logger.warning("Auxiliary fetch timed out: %s", target)

        with self._lock:
            for future in by_future:
                self._started.pop(future, None)
        return results
