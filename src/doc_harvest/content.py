from __future__ import annotations

from enum import Enum
from urllib.parse import urlparse

from .urls import is_static_asset


class ContentKind(str, Enum):
    HTML = "html"
    JSON = "json"
    PDF = "pdf"
    TEXT = "text"
    BYTES = "bytes"


def looks_like_html(data: bytes) -> bool:
    head = data[:2048].lstrip()
    return head.startswith(b"<") and (
        b"<html" in head.lower()
        or b"<!doctype" in head.lower()
        or b"<head" in head.lower()
        or b"<body" in head.lower()
        or b"<div" in head.lower()
    )


def _mime(content_type: str | None) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def sniff_kind(
    url: str,
    *,
    content_type: str | None,
    body: bytes,
) -> ContentKind:
    """Classify a fetched body conservatively.

    Rules:
    - Trust magic bytes for PDF.
    - A PDF content type is trusted even for truncated bodies.
    - Treat HTML only when headers or the body say so and the URL isn't an asset.
    """

    if body.startswith(b"%PDF-"):
        return ContentKind.PDF

    ct = _mime(content_type)
    if ct in {"application/pdf", "application/x-pdf"}:
        return ContentKind.PDF
    if ct in {"application/json", "text/json"}:
        return ContentKind.JSON

    if is_static_asset(url):
        return ContentKind.BYTES

    if ct in {"text/html", "application/xhtml+xml"} or looks_like_html(body):
        return ContentKind.HTML
    if ct == "text/plain":
        return ContentKind.TEXT

    if urlparse(url).path.lower().endswith(".json"):
        return ContentKind.JSON
    return ContentKind.BYTES
