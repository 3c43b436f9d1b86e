"""Decide what every element on a page is.

Each link, embed and module-like container item is run through a fixed
ladder of heuristics (first match wins):

1. direct artifact (file extension or explicit download link)
2. attachment marker (file holder, data marker, file-id address,
   attachment item); module-item indirections are sent to resolution
3. structural pattern (a group of same-shaped siblings scored as a whole)
4. lexical keyword hit
5. default: in-scope pages are queued as exploratory

The classifier is pure: it only reads the extracted elements.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Iterable
from urllib.parse import urlparse

from .extract import ContainerGroup, ContainerItem, ElementSet, LinkElement
from .models import HIGH, MEDIUM, Artifact, SourceType
from .profile import SiteProfile
from .titles import clean_title, filename_for, is_generic_title, pick_title, title_from_location
from .urls import (
    TargetScope,
    canonical_key,
    file_id,
    has_extension,
    indirection_id,
    is_download_form,
    is_static_asset,
    is_template_target,
    normalize_target,
    origin_of,
    to_download_location,
)

# Pattern score weights.
WEIGHT_CONTENT_PAGE = 30
WEIGHT_LINK = 20
WEIGHT_TYPE_MARKER = 10
WEIGHT_PER_ITEM = 5
MAX_SIZE_BONUS = 25
WEIGHT_SERIES_NAMES = 25
WEIGHT_SEQUENTIAL = 20
MIN_GROUP_SIZE = 2
SEQUENTIAL_GAP = 3
SEQUENTIAL_RATIO = 0.7


@dataclass(frozen=True)
class QueueRequest:
    target: str
    priority: int
    phase: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolutionRequest:
    target: str
    title: str
    source_type: SourceType
    confidence: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PatternGroup:
    container_id: str | None
    shape: tuple[str, bool, bool, bool]
    items: tuple[ContainerItem, ...]
    confidence: int

    @property
    def targets(self) -> list[str]:
        return [
            item.link.target
            for item in self.items
            if item.link is not None and item.link.target
        ]


@dataclass
class ClassificationResult:
    artifacts: list[Artifact] = field(default_factory=list)
    to_queue: list[QueueRequest] = field(default_factory=list)
    to_resolve: list[ResolutionRequest] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    patterns: list[PatternGroup] = field(default_factory=list)


def _keyword_re(words: Iterable[str], *, whole: bool) -> re.Pattern[str] | None:
    words = sorted({w.lower() for w in words if w}, key=len, reverse=True)
    if not words:
        return None
    body = "|".join(re.escape(w) for w in words)
    tail = r"(?:s|es)?(?!\w)" if whole else ""
    return re.compile(rf"(?<!\w)(?:{body}){tail}", re.IGNORECASE)


class _Matchers:
    def __init__(self, profile: SiteProfile) -> None:
        self.artifact = _keyword_re(profile.artifact_keywords, whole=True)
        self.series = _keyword_re(profile.series_keywords, whole=False)


@lru_cache(maxsize=8)
def _matchers(profile: SiteProfile) -> _Matchers:
    return _Matchers(profile)


def _valid_link(item: ContainerItem) -> bool:
    link = item.link
    return link is not None and link.target is not None and not is_template_target(link.href)


def _sequence_id(item: ContainerItem, profile: SiteProfile) -> int | None:
    if item.link is not None and item.link.target:
        ind = indirection_id(item.link.target, profile)
        if ind:
            return int(ind)
    if item.item_id and item.item_id.isdigit():
        return int(item.item_id)
    return None


def has_sequential_ids(items: Iterable[ContainerItem], profile: SiteProfile) -> bool:
    ids = sorted(i for i in (_sequence_id(item, profile) for item in items) if i is not None)
    if len(ids) < MIN_GROUP_SIZE:
        return False
    close = sum(1 for a, b in zip(ids, ids[1:]) if b - a <= SEQUENTIAL_GAP)
    return close / (len(ids) - 1) >= SEQUENTIAL_RATIO


def has_series_names(items: Iterable[ContainerItem], profile: SiteProfile) -> bool:
    series = _matchers(profile).series
    if series is None:
        return False
    hits = sum(1 for item in items if _valid_link(item) and series.search(item.title or ""))
    return hits >= MIN_GROUP_SIZE


def _shape(item: ContainerItem, profile: SiteProfile) -> tuple[str, bool, bool, bool]:
    return (
        item.item_type or "unknown",
        _valid_link(item),
        item.has_type_marker,
        bool(profile.content_page_class) and profile.content_page_class in item.classes,
    )


def score_pattern_group(
    items: list[ContainerItem],
    shape: tuple[str, bool, bool, bool],
    profile: SiteProfile,
) -> int:
    _, has_link, has_marker, is_content_page = shape
    score = 0
    if is_content_page:
        score += WEIGHT_CONTENT_PAGE
    if has_link:
        score += WEIGHT_LINK
    if has_marker:
        score += WEIGHT_TYPE_MARKER
    score += min(len(items) * WEIGHT_PER_ITEM, MAX_SIZE_BONUS)
    if has_series_names(items, profile):
        score += WEIGHT_SERIES_NAMES
    if has_sequential_ids(items, profile):
        score += WEIGHT_SEQUENTIAL
    return min(score, 100)


def detect_pattern_groups(
    containers: Iterable[ContainerGroup], profile: SiteProfile
) -> list[PatternGroup]:
    """Same-shaped sibling groups that score above the lexical threshold."""

    found: list[PatternGroup] = []
    for container in containers:
        by_shape: dict[tuple[str, bool, bool, bool], list[ContainerItem]] = {}
        for item in container.items:
            by_shape.setdefault(_shape(item, profile), []).append(item)
        for shape, items in by_shape.items():
            if not shape[1] or len(items) < MIN_GROUP_SIZE:
                continue
            confidence = score_pattern_group(items, shape, profile)
            if confidence > MEDIUM:
                found.append(
                    PatternGroup(container.container_id, shape, tuple(items), confidence)
                )
    found.sort(key=lambda g: -g.confidence)
    return found


def _artifact(
    location: str,
    title: str,
    source_type: SourceType,
    confidence: int,
    *,
    discovered_on: str,
    profile: SiteProfile,
    metadata: dict[str, Any] | None = None,
) -> Artifact:
    key = canonical_key(location, profile)
    return Artifact(
        canonical_key=key,
        location=location,
        title=title,
        source_type=source_type,
        confidence=confidence,
        discovered_on=discovered_on,
        filename=filename_for(title, key),
        metadata=dict(metadata or {}),
    )


def _is_direct(link: LinkElement, target: str, profile: SiteProfile) -> bool:
    if has_extension(target, profile.artifact_extension):
        return True
    if is_download_form(target, profile):
        return True
    download = link.attr("download")
    return bool(download) and download.lower().endswith(profile.artifact_extension)


def _has_attachment_marker(link: LinkElement, profile: SiteProfile) -> bool:
    if link.in_holder:
        return True
    if profile.inline_file_class and profile.inline_file_class in link.classes:
        return True
    if link.attr("data-id") or link.attr("data-api-endpoint"):
        return True
    return bool(profile.attachment_class) and profile.attachment_class in link.item_classes


def _same_origin(target: str, scope: TargetScope) -> bool:
    return origin_of(target) == origin_of(scope.origin)


class PageClassifier:
    """Runs the heuristic ladder over one page's elements."""

    def __init__(self, scope: TargetScope, profile: SiteProfile) -> None:
        self.scope = scope
        self.profile = profile
        self.matchers = _matchers(profile)

    def classify(self, elements: ElementSet) -> ClassificationResult:
        result = ClassificationResult()
        page_id = normalize_target(elements.page_url) or elements.page_url

        result.patterns = detect_pattern_groups(elements.containers, self.profile)
        pattern_membership: dict[str, PatternGroup] = {}
        for group in result.patterns:
            for target in group.targets:
                pattern_membership.setdefault(target, group)

        queued: dict[str, QueueRequest] = {}
        resolving: dict[str, ResolutionRequest] = {}

        def queue(req: QueueRequest) -> None:
            if req.target == page_id:
                return
            existing = queued.get(req.target)
            if existing is None or req.priority < existing.priority:
                queued[req.target] = req

        def resolve(req: ResolutionRequest) -> None:
            existing = resolving.get(req.target)
            if existing is None or req.confidence > existing.confidence:
                resolving[req.target] = req

        for link in elements.links:
            self._classify_link(
                link, page_id, pattern_membership, result, queue, resolve
            )

        for embed in elements.embeds:
            if is_template_target(embed.src):
                result.rejected.append(embed.src)
                continue
            target = embed.target
            if target is None:
                continue
            if has_extension(target, self.profile.artifact_extension):
                location = target
            elif file_id(target, self.profile) and _same_origin(target, self.scope):
                location = to_download_location(target, self.profile)
            else:
                continue
            title = (
                clean_title(embed.title)
                or title_from_location(target)
                or "Embedded PDF"
            )
            result.artifacts.append(
                _artifact(
                    location,
                    title,
                    SourceType.EMBEDDED,
                    HIGH,
                    discovered_on=page_id,
                    profile=self.profile,
                )
            )

        result.to_queue = sorted(queued.values(), key=lambda r: r.priority)
        result.to_resolve = list(resolving.values())
        return result

    def _classify_link(
        self,
        link: LinkElement,
        page_id: str,
        pattern_membership: dict[str, PatternGroup],
        result: ClassificationResult,
        queue: Callable[[QueueRequest], None],
        resolve: Callable[[ResolutionRequest], None],
    ) -> None:
        profile = self.profile
        if is_template_target(link.href):
            result.rejected.append(link.href)
            return
        target = link.target
        if target is None or is_static_asset(target):
            return

        # 1. Direct artifact.
        if _is_direct(link, target, profile):
            location = target
            if file_id(target, profile) and _same_origin(target, self.scope):
                location = to_download_location(target, profile)
            result.artifacts.append(
                _artifact(
                    location,
                    pick_title(link, target),
                    SourceType.DIRECT_LINK,
                    HIGH,
                    discovered_on=page_id,
                    profile=profile,
                )
            )
            return

        # 2. Attachment markers and file ids.
        same_origin = _same_origin(target, self.scope)
        if same_origin and file_id(target, profile):
            source = (
                SourceType.ATTACHMENT
                if _has_attachment_marker(link, profile)
                else SourceType.DIRECT_LINK
            )
            result.artifacts.append(
                _artifact(
                    to_download_location(target, profile),
                    pick_title(link, target),
                    source,
                    HIGH,
                    discovered_on=page_id,
                    profile=profile,
                )
            )
            return
        is_indirect = same_origin and indirection_id(target, profile) is not None
        if is_indirect and _has_attachment_marker(link, profile):
            resolve(
                ResolutionRequest(
                    target=target,
                    title=pick_title(link),
                    source_type=SourceType.ATTACHMENT,
                    confidence=HIGH,
                    metadata={"itemType": link.item_type} if link.item_type else {},
                )
            )
            return

        # 3. Structural pattern.
        group = pattern_membership.get(target)
        if group is not None:
            meta = {"patternConfidence": group.confidence}
            if group.container_id:
                meta["container"] = group.container_id
            if is_indirect:
                resolve(
                    ResolutionRequest(
                        target=target,
                        title=pick_title(link),
                        source_type=SourceType.PATTERN_DETECTED,
                        confidence=group.confidence,
                        metadata=meta,
                    )
                )
                return
            if self.scope.is_navigable(target):
                queue(QueueRequest(target, 1, "pattern", meta))
                return

        # 4. Lexical keywords.
        in_scope = self.scope.is_navigable(target)
        if self._lexical_hit(link, target):
            if in_scope:
                queue(QueueRequest(target, 2, "lexical", {"confidence": MEDIUM}))
            return

        # 5. Exploratory.
        if in_scope:
            priority, phase = profile.rule_for(urlparse(target).path)
            queue(QueueRequest(target, priority, phase))

    def _lexical_hit(self, link: LinkElement, target: str) -> bool:
        matcher = self.matchers.artifact
        if matcher is None:
            return False
        text = " ".join(
            t for t in (link.text, link.name_text, link.attr("title")) if t
        )
        if text and not is_generic_title(text) and matcher.search(text):
            return True
        path = re.sub(r"[/_\-.]+", " ", urlparse(target).path)
        return bool(matcher.search(path))


def classify_page(
    elements: ElementSet, scope: TargetScope, profile: SiteProfile
) -> ClassificationResult:
    return PageClassifier(scope, profile).classify(elements)
