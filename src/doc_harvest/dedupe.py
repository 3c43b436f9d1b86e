from __future__ import annotations

import logging
from collections import Counter
from enum import Enum
from typing import Iterable

from .models import Artifact, CrawlSession
from .profile import SiteProfile
from .titles import filename_for, is_generic_title
from .urls import is_download_form, is_template_target

logger = logging.getLogger(__name__)


class MergeOutcome(str, Enum):
    INSERTED = "inserted"
    REPLACED = "replaced"
    UPGRADED = "upgraded"
    KEPT = "kept"
    REJECTED = "rejected"


class ArtifactDeduplicator:
    """Merges artifact sightings into the session's canonical set."""

    def __init__(self, session: CrawlSession, profile: SiteProfile) -> None:
        self.session = session
        self.profile = profile

    def _should_replace(self, existing: Artifact, incoming: Artifact) -> bool:
        if is_generic_title(existing.title) and not is_generic_title(incoming.title):
            return True
        return is_download_form(incoming.location, self.profile) and not is_download_form(
            existing.location, self.profile
        )

    def merge(self, incoming: Artifact) -> MergeOutcome:
        if is_template_target(incoming.location) or is_template_target(incoming.title):
            logger.debug("Rejected template artifact %s", incoming.location)
            return MergeOutcome.REJECTED

        artifacts = self.session.artifacts
        self.session.seen_locations.add(incoming.location)
        existing = artifacts.get(incoming.canonical_key)
        if existing is None:
            artifacts[incoming.canonical_key] = incoming
            return MergeOutcome.INSERTED

        if self._should_replace(existing, incoming):
            replacement = incoming
            # A better address must not throw away a specific title we already have.
            if is_generic_title(incoming.title) and not is_generic_title(existing.title):
                replacement = Artifact(
                    canonical_key=incoming.canonical_key,
                    location=incoming.location,
                    title=existing.title,
                    source_type=incoming.source_type,
                    confidence=max(existing.confidence, incoming.confidence),
                    discovered_on=incoming.discovered_on,
                    filename=filename_for(existing.title, incoming.canonical_key),
                    metadata={**existing.metadata, **incoming.metadata},
                )
            artifacts[incoming.canonical_key] = replacement
            return MergeOutcome.REPLACED

        if incoming.confidence > existing.confidence:
            existing.confidence = incoming.confidence
            existing.source_type = incoming.source_type
            return MergeOutcome.UPGRADED
        return MergeOutcome.KEPT

    def merge_all(self, artifacts: Iterable[Artifact]) -> Counter[str]:
        stats: Counter[str] = Counter()
        for artifact in artifacts:
            stats[self.merge(artifact).value] += 1
        return stats

    def final_list(self) -> list[Artifact]:
        """Canonical artifacts with duplicate locations removed."""

        out: list[Artifact] = []
        locations: set[str] = set()
        for key in sorted(self.session.artifacts):
            artifact = self.session.artifacts[key]
            if artifact.location in locations:
                logger.warning(
                    "Dropping %s: location already reported (%s)", key, artifact.location
                )
                continue
            if is_template_target(artifact.location):
                continue
            locations.add(artifact.location)
            out.append(artifact)
        return out
