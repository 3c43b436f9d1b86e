from __future__ import annotations


class HarvestError(Exception):
    """Base class for crawl errors."""


class InvalidTarget(HarvestError):
    """Target the queue refuses to hold."""

    def __init__(self, target: str, reason: str) -> None:
        super().__init__(f"{reason}: {target}")
        self.target = target
        self.reason = reason


class TransitionTimeout(HarvestError):
    def __init__(self, target: str, timeout_s: float) -> None:
        super().__init__(f"Navigation to {target} timed out after {timeout_s:.1f}s")
        self.target = target
        self.timeout_s = timeout_s


class FetchFailure(HarvestError):
    def __init__(self, target: str, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.target = target
        self.status = status


class ResolutionFailure(HarvestError):
    def __init__(self, target: str, message: str) -> None:
        super().__init__(message)
        self.target = target


class RetryBudgetExhausted(HarvestError):
    def __init__(self, retries: int, max_retries: int) -> None:
        super().__init__(f"Retry budget exhausted after {retries}/{max_retries} failures")
        self.retries = retries
        self.max_retries = max_retries


class StaleSession(HarvestError):
    """Stored session belongs to a different root container."""
