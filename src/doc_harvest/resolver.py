from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

from .classify import ResolutionRequest
from .content import ContentKind, sniff_kind
from .errors import FetchFailure, ResolutionFailure
from .extract import ContentExtractor, ElementSet, PageHandle
from .fetch_pool import AuxiliaryFetchPool, FetchResponse
from .models import Artifact, SourceType
from .profile import SiteProfile
from .titles import filename_for, is_generic_title, pick_title, title_from_location
from .urls import (
    TargetScope,
    canonical_key,
    file_id,
    has_extension,
    is_template_target,
    normalize_target,
    origin_of,
    to_download_location,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileRef:
    location: str
    title: str | None


@dataclass
class ResolveOutcome:
    artifacts: list[Artifact] = field(default_factory=list)
    failures: list[ResolutionFailure] = field(default_factory=list)


@dataclass(frozen=True)
class SecondaryRefs:
    files: tuple[FileRef, ...] = ()
    content_page: str | None = None


class IndirectionResolver:
    """Turns module-item style indirections into artifact locations.

    The first hop fetches each indirect target. A content page found there
    gets exactly one more hop; anything still unresolved is dropped.
    """

    def __init__(
        self,
        pool: AuxiliaryFetchPool,
        extractor: ContentExtractor,
        scope: TargetScope,
        profile: SiteProfile,
    ) -> None:
        self.pool = pool
        self.extractor = extractor
        self.scope = scope
        self.profile = profile
        prefix = re.escape(profile.root_prefix(scope.root_id))
        self._raw_file_re = re.compile(
            rf"(?:https?://[^\s\"'<>]+?)?{prefix}{profile.file_id_pattern.pattern}"
        )
        self._raw_page_re = re.compile(
            rf"(?:https?://[^\s\"'<>]+?)?{prefix}{re.escape(profile.content_page_fragment)}[\w%.-]+"
        )

    def _is_file_location(self, target: str) -> bool:
        if has_extension(target, self.profile.artifact_extension):
            return True
        return bool(file_id(target, self.profile)) and origin_of(target) == origin_of(
            self.scope.origin
        )

    def _location(self, target: str) -> str:
        if file_id(target, self.profile) and origin_of(target) == origin_of(self.scope.origin):
            return to_download_location(target, self.profile)
        return target

    def _is_content_page(self, target: str) -> bool:
        return self.profile.content_page_fragment in target and self.scope.is_in_root(target)

    def direct_refs(self, elements: ElementSet) -> list[FileRef]:
        refs: dict[str, FileRef] = {}
        for link in elements.links:
            if link.target is None or is_template_target(link.href):
                continue
            if self._is_file_location(link.target):
                location = self._location(link.target)
                refs.setdefault(location, FileRef(location, pick_title(link, link.target)))
        for m in self._raw_file_re.finditer(elements.html):
            raw = m.group(0)
            target = normalize_target(raw, elements.page_url)
            if target is None:
                continue
            location = self._location(target)
            refs.setdefault(location, FileRef(location, None))
        return list(refs.values())

    def find_secondary_references(self, elements: ElementSet) -> SecondaryRefs:
        """File references, else a content page or redirect to follow."""

        files = self.direct_refs(elements)
        redirect_files = [
            FileRef(self._location(r), None)
            for r in elements.redirects
            if self._is_file_location(r)
        ]
        if files or redirect_files:
            seen = {f.location for f in files}
            files.extend(f for f in redirect_files if f.location not in seen)
            return SecondaryRefs(files=tuple(files))

        page_id = normalize_target(elements.page_url)
        candidates: list[str] = [
            link.target
            for link in elements.links
            if link.target is not None and self._is_content_page(link.target)
        ]
        for m in self._raw_page_re.finditer(elements.html):
            target = normalize_target(m.group(0), elements.page_url)
            if target:
                candidates.append(target)
        candidates.extend(r for r in elements.redirects if self._is_content_page(r))
        for candidate in candidates:
            if candidate != page_id and not is_template_target(candidate):
                return SecondaryRefs(content_page=candidate)
        return SecondaryRefs()

    def _artifact(
        self,
        ref: FileRef,
        req: ResolutionRequest,
        discovered_on: str,
        *,
        single: bool,
    ) -> Artifact:
        title = req.title
        if not single or is_generic_title(title):
            title = ref.title or title
        if is_generic_title(title):
            title = title_from_location(ref.location) or title
        key = canonical_key(ref.location, self.profile)
        return Artifact(
            canonical_key=key,
            location=ref.location,
            title=title,
            source_type=SourceType.RESOLVED_INDIRECT,
            confidence=req.confidence,
            discovered_on=discovered_on,
            filename=filename_for(title, key),
            metadata={**req.metadata, "via": req.target, "detectedAs": req.source_type.value},
        )

    def _elements(self, response: FetchResponse) -> ElementSet | None:
        kind = sniff_kind(
            response.final_url, content_type=response.content_type, body=response.body
        )
        if kind != ContentKind.HTML:
            return None
        return self.extractor.extract_elements(
            PageHandle(url=response.final_url, html=response.text(), status=response.status)
        )

    def resolve(
        self, requests: Iterable[ResolutionRequest], discovered_on: str
    ) -> ResolveOutcome:
        outcome = ResolveOutcome()
        pending: dict[str, ResolutionRequest] = {}
        for req in requests:
            if is_template_target(req.target):
                logger.debug("Refusing to resolve template target %s", req.target)
                continue
            pending.setdefault(req.target, req)
        if not pending:
            return outcome

        first = self.pool.fetch_all(pending)
        second_hop: dict[str, list[ResolutionRequest]] = {}

        for target, req in pending.items():
            response = first.get(target)
            if response is None:
                continue
            if isinstance(response, FetchFailure):
                outcome.failures.append(ResolutionFailure(target, str(response)))
                continue

            final = normalize_target(response.final_url) or target
            kind = sniff_kind(final, content_type=response.content_type, body=response.body)
            if kind == ContentKind.PDF or self._is_file_location(final):
                ref = FileRef(self._location(final), None)
                outcome.artifacts.append(self._artifact(ref, req, discovered_on, single=True))
                continue

            elements = self._elements(response)
            if elements is None:
                outcome.failures.append(
                    ResolutionFailure(target, f"Unusable {kind.value} response")
                )
                continue

            refs = self.find_secondary_references(elements)
            if refs.files:
                single = len(refs.files) == 1
                outcome.artifacts.extend(
                    self._artifact(ref, req, discovered_on, single=single)
                    for ref in refs.files
                )
            elif refs.content_page:
                second_hop.setdefault(refs.content_page, []).append(req)
            else:
                outcome.failures.append(ResolutionFailure(target, "No file reference found"))

        if second_hop:
            pages = self.pool.fetch_all(second_hop)
            for page, reqs in second_hop.items():
                response = pages.get(page)
                page_refs: list[FileRef] = []
                if isinstance(response, FetchResponse):
                    elements = self._elements(response)
                    if elements is not None:
                        page_refs = self.direct_refs(elements)
                if not page_refs:
                    for req in reqs:
                        outcome.failures.append(
                            ResolutionFailure(req.target, f"No file reference on {page}")
                        )
                    continue
                for req in reqs:
                    outcome.artifacts.extend(
                        self._artifact(ref, req, discovered_on, single=len(page_refs) == 1)
                        for ref in page_refs
                    )

        for failure in outcome.failures:
            logger.info("Dropped unresolvable %s: %s", failure.target, failure)
        return outcome
