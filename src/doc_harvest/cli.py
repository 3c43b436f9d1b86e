from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from .classify import classify_page
from .config import HarvestConfig
from .extract import HtmlExtractor, PageHandle
from .log import setup_logging
from .profile import CANVAS_PROFILE
from .runner import HttpCrawlRunner
from .sinks import FanoutSink, HttpReportSink, ManifestSink, ReportSink
from .state import JsonFileBackend, SessionStore
from .urls import TargetScope, normalize_target, origin_of


def _add_target_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--base-url", required=True, help="e.g. https://canvas.example.edu")
    p.add_argument("--root-id", required=True, help="Course id to crawl")
    p.add_argument("--state-dir", type=Path, default=Path(".doc_harvest"))


def _build_sink(config: HarvestConfig) -> ReportSink | None:
    sinks: list[ReportSink] = []
    if config.out_dir is not None:
        sinks.append(ManifestSink(config.out_dir))
    if config.report_url:
        sinks.append(HttpReportSink(config.report_url, timeout_s=config.request_timeout_s))
    if not sinks:
        return None
    return FanoutSink(*sinks)


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="doc-harvest")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--log-file", type=Path, default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    crawl_p = sub.add_parser("crawl", help="Crawl one course for PDF documents")
    _add_target_args(crawl_p)
    crawl_p.add_argument("--out", type=Path, default=None, help="Manifest output dir")
    crawl_p.add_argument("--resume", action="store_true", help="Continue a stored crawl")
    crawl_p.add_argument("--max-attempts", type=int, default=50)
    crawl_p.add_argument("--max-retries", type=int, default=3)
    crawl_p.add_argument("--nav-timeout", type=float, default=15.0)
    crawl_p.add_argument("--workers", type=int, default=3)
    crawl_p.add_argument("--timeout", type=float, default=30.0)
    crawl_p.add_argument("--delay", type=float, default=1.0)
    crawl_p.add_argument("--max-delay", type=float, default=5.0)
    crawl_p.add_argument(
        "--header",
        action="append",
        default=[],
        help="Repeatable; e.g. --header 'Authorization: Bearer ...'",
    )
    crawl_p.add_argument(
        "--cookie",
        action="append",
        default=[],
        help="Repeatable; e.g. --cookie canvas_session=...",
    )
    crawl_p.add_argument("--report-url", default=None, help="POST results here")
    crawl_p.add_argument("--no-progress", action="store_true")

    status_p = sub.add_parser("status", help="Show the stored crawl session")
    _add_target_args(status_p)

    reset_p = sub.add_parser("reset", help="Discard the stored crawl session")
    _add_target_args(reset_p)

    scan_p = sub.add_parser(
        "scan", help="Classify a saved HTML page offline and print the result"
    )
    scan_p.add_argument("html", type=Path, help="Browser-saved HTML file")
    scan_p.add_argument("--url", required=True, help="URL the page was saved from")
    scan_p.add_argument("--root-id", required=True)

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)

    if args.cmd == "crawl":
        try:
            config = HarvestConfig.from_args(args)
        except ValueError as e:
            print(str(e), file=sys.stderr)
            return 2
        runner = HttpCrawlRunner(
            config,
            sink=_build_sink(config),
            show_progress=not bool(args.no_progress),
        )
        try:
            report = runner.run(resume=bool(args.resume))
        except OSError as e:
            print(str(e), file=sys.stderr)
            return 2
        _print_json(report)
        return 0 if report.get("completionStatus") != "failed" else 1

    if args.cmd in {"status", "reset"}:
        store = SessionStore(JsonFileBackend(args.state_dir), str(args.root_id))
        if args.cmd == "reset":
            store.clear()
            print("Cleared stored session.")
            return 0
        session = store.peek()
        if session is None:
            print("No stored session.")
            return 0
        _print_json(
            {
                "sessionId": session.session_id,
                "rootId": session.root_id,
                "matchesRoot": session.root_id == str(args.root_id),
                "isActive": session.is_active,
                "completionStatus": session.completion_status.value,
                "stopReason": session.stop_reason,
                "phase": session.phase,
                "pagesVisited": session.counters.pages_visited,
                "navigationAttempts": session.counters.navigation_attempts,
                "retries": session.counters.retries,
                "queued": sum(1 for item in session.queue if not item.visited),
                "artifacts": len(session.artifacts),
                "pending": session.pending.target if session.pending else None,
            }
        )
        return 0

    if args.cmd == "scan":
        try:
            html = args.html.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            print(str(e), file=sys.stderr)
            return 2
        url = normalize_target(args.url)
        if url is None:
            print(f"Not an http(s) URL: {args.url}", file=sys.stderr)
            return 2
        scope = TargetScope(origin_of(url), str(args.root_id), CANVAS_PROFILE)
        elements = HtmlExtractor(CANVAS_PROFILE).extract_elements(PageHandle(url, html))
        result = classify_page(elements, scope, CANVAS_PROFILE)
        _print_json(
            {
                "page": url,
                "artifacts": [a.to_dict() for a in result.artifacts],
                "toQueue": [
                    {"target": q.target, "priority": q.priority, "phase": q.phase}
                    for q in result.to_queue
                ],
                "toResolve": [
                    {
                        "target": r.target,
                        "title": r.title,
                        "sourceType": r.source_type.value,
                        "confidence": r.confidence,
                    }
                    for r in result.to_resolve
                ],
                "patterns": [
                    {
                        "container": g.container_id,
                        "confidence": g.confidence,
                        "items": len(g.items),
                    }
                    for g in result.patterns
                ],
                "rejected": result.rejected,
            }
        )
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main())
