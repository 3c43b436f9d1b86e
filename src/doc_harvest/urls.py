from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import (
    ParseResult,
    parse_qsl,
    unquote,
    urlencode,
    urljoin,
    urlparse,
    urlunparse,
)

from .profile import SiteProfile

# Query params that only carry navigation context and create duplicates.
_CONTEXT_QUERY_PARAMS = {"module_item_id", "wrap"}

_TEMPLATE_MARKERS = ("{{", "}}", "%7b%7b", "%7d%7d")

_SCHEMES = {"http", "https"}


def is_template_target(raw: str | None) -> bool:
    """True for unrendered client-side templates like ``/files/{{ id }}``."""

    if not raw:
        return False
    lowered = raw.lower()
    return any(marker in lowered for marker in _TEMPLATE_MARKERS)


def normalize_target(raw: str | None, base: str | None = None) -> str | None:
    """Normalize a link target for queueing and de-duplication.

    - Resolves relative targets against ``base``.
    - Rejects non-HTTP schemes, bare fragments and template markers.
    - Lowercases scheme + hostname.
    - Strips fragments, context query params and trailing slashes.
    """

    if raw is None:
        return None
    raw = raw.strip()
    if not raw or raw.startswith("#") or is_template_target(raw):
        return None

    absolute = urljoin(base, raw) if base else raw
    parsed: ParseResult = urlparse(absolute)
    scheme = (parsed.scheme or "").lower()
    if scheme not in _SCHEMES or not parsed.netloc:
        return None

    query = parsed.query
    if query:
        pairs = [
            (k, v)
            for k, v in parse_qsl(query, keep_blank_values=True)
            if k not in _CONTEXT_QUERY_PARAMS
        ]
        query = urlencode(pairs)

    path = parsed.path or "/"
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    parsed = parsed._replace(
        scheme=scheme,
        netloc=parsed.netloc.lower(),
        path=path,
        params="",
        fragment="",
        query=query,
    )
    return urlunparse(parsed)


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{(parsed.scheme or 'https').lower()}://{parsed.netloc.lower()}"


_ASSET_EXTS = {
    ".css",
    ".js",
    ".mjs",
    ".map",
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".webp",
    ".svg",
    ".ico",
    ".woff",
    ".woff2",
    ".ttf",
    ".otf",
    ".eot",
    ".zip",
    ".gz",
    ".tgz",
    ".mp4",
    ".mp3",
}


def is_static_asset(url: str) -> bool:
    path = urlparse(url).path.lower()
    return any(path.endswith(ext) for ext in _ASSET_EXTS)


def has_extension(url: str, ext: str) -> bool:
    return urlparse(url).path.lower().endswith(ext.lower())


def file_id(url: str, profile: SiteProfile) -> str | None:
    m = profile.file_id_pattern.search(urlparse(url).path)
    return m.group(1) if m else None


def indirection_id(url: str, profile: SiteProfile) -> str | None:
    m = profile.indirection_pattern.search(urlparse(url).path)
    return m.group(1) if m else None


def is_download_form(url: str, profile: SiteProfile) -> bool:
    parsed = urlparse(url)
    return parsed.path.rstrip("/").endswith(profile.download_suffix) and (
        profile.download_query in parsed.query
    )


def to_download_location(url: str, profile: SiteProfile) -> str:
    """Rewrite a file reference to its explicit download address.

    ``.../files/42`` and ``.../files/42/preview`` both become
    ``.../files/42/download?download_frd=1``. Other URLs pass through.
    """

    parsed = urlparse(url)
    m = profile.file_id_pattern.search(parsed.path)
    if not m:
        return url
    if is_download_form(url, profile):
        return url
    path = parsed.path[: m.end()] + profile.download_suffix
    return urlunparse(
        parsed._replace(path=path, query=profile.download_query, fragment="")
    )


def canonical_key(url: str, profile: SiteProfile) -> str:
    """Identity of an artifact: its file id when it has one, else the URL."""

    fid = file_id(url, profile)
    if fid:
        return f"file:{fid}"
    return url


def download_name_param(url: str) -> str | None:
    for key, value in parse_qsl(urlparse(url).query, keep_blank_values=True):
        if key == "download_frd" and value and value != "1":
            return value
    return None


def last_path_segment(url: str) -> str:
    path = urlparse(url).path.rstrip("/")
    return unquote(path.rsplit("/", 1)[-1]) if path else ""


def safe_filename_piece(text: str, *, max_len: int = 80) -> str:
    text = text.strip()
    text = re.sub(r"\s+", "-", text)
    text = re.sub(r"[^\w.-]+", "-", text)
    text = re.sub(r"-+", "-", text).strip("-")
    if not text:
        return "untitled"
    return text[:max_len]


def targets_match(current: str | None, target: str | None) -> bool:
    """Whether the page at ``current`` is the page ``target`` asked for.

    Exact match, or the same path with a different query.
    """

    if not current or not target:
        return False
    cur = normalize_target(current)
    tgt = normalize_target(target)
    if cur is None or tgt is None:
        return False
    if cur == tgt:
        return True
    a, b = urlparse(cur), urlparse(tgt)
    return a.netloc == b.netloc and a.path == b.path


@dataclass(frozen=True)
class TargetScope:
    """The root container a crawl is confined to."""

    origin: str
    root_id: str
    profile: SiteProfile

    @property
    def root_url(self) -> str:
        return self.origin.rstrip("/") + self.profile.root_prefix(self.root_id)

    def is_in_root(self, url: str) -> bool:
        parsed = urlparse(url)
        if origin_of(url) != origin_of(self.origin):
            return False
        prefix = self.profile.root_prefix(self.root_id)
        path = parsed.path.rstrip("/")
        return path == prefix or path.startswith(prefix + "/")

    def is_navigable(self, url: str) -> bool:
        """In-root pages the navigator may visit (never files or assets)."""

        if not self.is_in_root(url):
            return False
        path = urlparse(url).path.lower()
        if path.endswith(self.profile.artifact_extension) or is_static_asset(url):
            return False
        return not any(frag in path for frag in self.profile.skip_fragments)
