"""Title selection for discovered artifacts.

LMS file links are frequently labelled with an action ("Download",
"Ladda ner") instead of a name. These helpers pick the most specific label
available for a link and recognize placeholder titles so the deduplicator
can prefer a better sighting of the same file.
"""

from __future__ import annotations

import re
from typing import Final, Iterable
from urllib.parse import unquote

from .extract import LinkElement
from .urls import download_name_param, is_template_target, last_path_segment, safe_filename_piece

MAX_TITLE_LEN: Final = 100

GENERIC_TITLES: Final[frozenset[str]] = frozenset(
    {
        "ladda ner",
        "ladda ned",
        "download",
        "förhandsvisning",
        "preview",
        "canvas file",
        "canvas pdf",
        "untitled pdf",
        "untitled",
        "file",
        "pdf",
    }
)

ACTION_WORDS: Final[frozenset[str]] = frozenset(
    {
        "ladda ner",
        "ladda ned",
        "download",
        "förhandsvisning",
        "preview",
        "visa",
        "view",
        "öppna",
        "open",
    }
)

_ACTION_SUFFIX_RE = re.compile(
    r"\s*(ladda\s*ner|ladda\s*ned|download|förhandsvisning|preview)\s*$",
    re.IGNORECASE,
)
_ACTION_PREFIX_RE = re.compile(
    r"^\s*(ladda\s*ner|ladda\s*ned|download|förhandsvisning|preview|visa|view|öppna|open)\s*[:\-]\s*",
    re.IGNORECASE,
)
_PDF_SUFFIX_RE = re.compile(r"\.pdf$", re.IGNORECASE)


def _squash(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def is_action_text(text: str | None) -> bool:
    return _squash(text or "").lower() in ACTION_WORDS


def is_generic_title(title: str | None) -> bool:
    """Placeholder titles that carry no information about the file."""

    lowered = _squash(title or "").lower()
    if not lowered:
        return True
    if lowered in GENERIC_TITLES or lowered in ACTION_WORDS:
        return True
    # "Download file.pdf" style labels are fine; bare digits are not.
    return lowered.isdigit()


def strip_action_words(text: str) -> str:
    text = _squash(text)
    text = _ACTION_SUFFIX_RE.sub("", text)
    text = _ACTION_PREFIX_RE.sub("", text)
    return text.strip()


def clean_title(text: str | None) -> str | None:
    if not text or is_template_target(text):
        return None
    cleaned = strip_action_words(text)
    cleaned = _PDF_SUFFIX_RE.sub("", cleaned).strip()
    if not cleaned or is_action_text(cleaned):
        return None
    return cleaned[:MAX_TITLE_LEN]


def title_from_location(location: str) -> str | None:
    name = download_name_param(location)
    if name:
        return clean_title(unquote(name))
    segment = last_path_segment(location)
    if not segment or segment.isdigit() or segment.lower() in {"download", "preview"}:
        return None
    return clean_title(segment)


def first_title(candidates: Iterable[str | None]) -> str | None:
    for candidate in candidates:
        cleaned = clean_title(candidate)
        if cleaned and not is_generic_title(cleaned):
            return cleaned
    return None


def pick_title(link: LinkElement, location: str | None = None) -> str:
    """Best title for a link, falling back to the location and attributes."""

    title = first_title(
        [
            link.name_text,
            link.text,
            title_from_location(location or link.target or link.href),
            link.sibling_name,
            link.attr("data-filename"),
            link.attr("data-name"),
            link.attr("data-title"),
            link.attr("title"),
            link.attr("aria-label"),
            link.attr("download"),
        ]
    )
    if title:
        return title
    fallback = _squash(link.text)
    if fallback and not is_action_text(fallback) and not is_template_target(fallback):
        return fallback[:MAX_TITLE_LEN]
    return "Untitled PDF"


def filename_for(title: str, canonical_key: str = "") -> str:
    stem = safe_filename_piece(_PDF_SUFFIX_RE.sub("", title or ""))
    if stem == "untitled" and canonical_key:
        stem = safe_filename_piece(canonical_key.replace(":", "-"))
    return f"{stem}.pdf"
