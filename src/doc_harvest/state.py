from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from .errors import StaleSession
from .models import CrawlSession

logger = logging.getLogger(__name__)

DEFAULT_SESSION_KEY = "crawl_session"


class KeyValueBackend(Protocol):
    """Persistent key-value storage for JSON-serializable blobs."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


@dataclass
class MemoryBackend:
    """In-process backend. Stores JSON text so reads never alias writes."""

    data: dict[str, str] = field(default_factory=dict)

    def get(self, key: str) -> Any | None:
        raw = self.data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = json.dumps(value, ensure_ascii=False)

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass
class JsonFileBackend:
    state_dir: Path

    def __post_init__(self) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.state_dir / f"{_KEY_RE.sub('_', key)}.json"

    def get(self, key: str) -> Any | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Unreadable state file %s: %s", path, e)
            return None

    def set(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(
            json.dumps(value, indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
            newline="\n",
        )
        os.replace(tmp, path)

    def delete(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)


class SessionStore:
    """Loads and saves the crawl session for one root container."""

    def __init__(
        self,
        backend: KeyValueBackend,
        root_id: str,
        *,
        key: str = DEFAULT_SESSION_KEY,
    ) -> None:
        self.backend = backend
        self.root_id = str(root_id)
        self.key = key

    def _read(self) -> CrawlSession | None:
        data = self.backend.get(self.key)
        if data is None:
            return None
        try:
            session = CrawlSession.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding corrupt session record: %s", e)
            return None
        if session.root_id != self.root_id:
            raise StaleSession(
                f"Stored session {session.session_id} belongs to root "
                f"{session.root_id}, not {self.root_id}"
            )
        return session

    def load(self) -> CrawlSession | None:
        try:
            return self._read()
        except StaleSession as e:
            logger.info("%s", e)
            return None

    def peek(self) -> CrawlSession | None:
        """The stored session regardless of which root it belongs to."""

        data = self.backend.get(self.key)
        if data is None:
            return None
        try:
            return CrawlSession.from_dict(data)
        except (KeyError, TypeError, ValueError):
            return None

    def save(self, session: CrawlSession) -> None:
        self.backend.set(self.key, session.to_dict())

    def clear(self) -> None:
        self.backend.delete(self.key)

    def discard_stale(self) -> bool:
        """Remove a stored session for another root or a corrupt record."""

        data = self.backend.get(self.key)
        if data is None:
            return False
        try:
            self._read()
        except StaleSession as e:
            logger.info("Clearing stale session: %s", e)
            self.clear()
            return True
        if self.peek() is None:
            self.clear()
            return True
        return False
