from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any


def utc_iso(ts: float | None = None) -> str:
    return time.strftime(
        "%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time() if ts is None else ts)
    )


@dataclass
class ManifestWriter:
    """Append-only crawl event log plus a summary document."""

    out_dir: Path

    def __post_init__(self) -> None:
        self.jsonl_path = self.out_dir / "manifest.jsonl"
        self.json_path = self.out_dir / "manifest.json"
        self.artifacts_path = self.out_dir / "artifacts.json"

    def append(self, event: dict[str, Any]) -> None:
        event = dict(event)
        event.setdefault("at", utc_iso())
        self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
        with self.jsonl_path.open("a", encoding="utf-8", newline="\n") as f:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")

    def write_summary(self, summary: dict[str, Any]) -> None:
        self.out_dir.mkdir(parents=True, exist_ok=True)
        self.json_path.write_text(
            json.dumps(summary, indent=2, ensure_ascii=False), encoding="utf-8"
        )

    def write_artifacts(self, artifacts: list[dict[str, Any]]) -> None:
        self.out_dir.mkdir(parents=True, exist_ok=True)
        self.artifacts_path.write_text(
            json.dumps(artifacts, indent=2, ensure_ascii=False), encoding="utf-8"
        )
