from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from pathlib import Path

from .models import CrawlLimits
from .urls import origin_of


@dataclass
class HarvestConfig:
    base_url: str
    root_id: str
    state_dir: Path = Path(".doc_harvest")
    out_dir: Path | None = None
    limits: CrawlLimits = field(default_factory=CrawlLimits)
    max_workers: int = 3
    request_timeout_s: float = 30.0
    min_request_interval_s: float = 1.0
    max_request_interval_s: float = 5.0
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    report_url: str | None = None
    session_key: str = "crawl_session"

    @property
    def origin(self) -> str:
        return origin_of(self.base_url)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> HarvestConfig:
        return cls(
            base_url=str(args.base_url),
            root_id=str(args.root_id),
            state_dir=Path(args.state_dir),
            out_dir=Path(args.out) if getattr(args, "out", None) else None,
            limits=CrawlLimits(
                max_navigation_attempts=int(getattr(args, "max_attempts", 50)),
                max_retries=int(getattr(args, "max_retries", 3)),
                navigation_timeout_s=float(getattr(args, "nav_timeout", 15.0)),
            ),
            max_workers=int(getattr(args, "workers", 3)),
            request_timeout_s=float(getattr(args, "timeout", 30.0)),
            min_request_interval_s=float(getattr(args, "delay", 1.0)),
            max_request_interval_s=float(getattr(args, "max_delay", 5.0)),
            headers=_pairs(getattr(args, "header", None) or [], sep=":"),
            cookies=_pairs(getattr(args, "cookie", None) or [], sep="="),
            report_url=getattr(args, "report_url", None),
        )


def _pairs(items: list[str], *, sep: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for item in items:
        if sep not in item:
            raise ValueError(f"Expected NAME{sep}VALUE, got {item!r}")
        name, value = item.split(sep, 1)
        out[name.strip()] = value.strip()
    return out
