import pytest

from doc_harvest.dedupe import ArtifactDeduplicator, MergeOutcome
from doc_harvest.models import HIGH, LOW, MEDIUM, Artifact, CrawlSession, SourceType

from conftest import COURSE, ORIGIN

DOWNLOAD_42 = f"{COURSE}/files/42/download?download_frd=1"


def artifact(
    location=DOWNLOAD_42,
    title="Lecture 3 Slides",
    key="file:42",
    source_type=SourceType.DIRECT_LINK,
    confidence=HIGH,
):
    return Artifact(
        canonical_key=key,
        location=location,
        title=title,
        source_type=source_type,
        confidence=confidence,
        discovered_on=f"{COURSE}/modules",
        filename=f"{title.replace(' ', '-')}.pdf",
    )


@pytest.fixture
def dedupe(profile):
    session = CrawlSession.new(root_id="1", origin=ORIGIN, now=0.0)
    return ArtifactDeduplicator(session, profile)


class TestMerge:
    def test_insert_then_keep(self, dedupe):
        assert dedupe.merge(artifact()) == MergeOutcome.INSERTED
        assert dedupe.merge(artifact()) == MergeOutcome.KEPT
        assert list(dedupe.session.artifacts) == ["file:42"]
        assert dedupe.session.seen_locations == {DOWNLOAD_42}

    def test_specific_title_replaces_generic(self, dedupe):
        dedupe.merge(artifact(title="Download"))
        assert dedupe.merge(artifact(title="Lecture 3 Slides")) == MergeOutcome.REPLACED
        stored = dedupe.session.artifacts["file:42"]
        assert stored.title == "Lecture 3 Slides"
        assert stored.filename == "Lecture-3-Slides.pdf"

    def test_generic_title_never_replaces_specific(self, dedupe):
        dedupe.merge(artifact(title="Lecture 3 Slides"))
        assert dedupe.merge(artifact(title="Download")) == MergeOutcome.KEPT
        assert dedupe.session.artifacts["file:42"].title == "Lecture 3 Slides"

    def test_download_form_replaces_plain_location_but_keeps_title(self, dedupe):
        dedupe.merge(artifact(location=f"{COURSE}/files/42", title="Slides", confidence=MEDIUM))
        incoming = artifact(title="Download", source_type=SourceType.ATTACHMENT)
        assert dedupe.merge(incoming) == MergeOutcome.REPLACED
        stored = dedupe.session.artifacts["file:42"]
        assert stored.location == DOWNLOAD_42
        assert stored.title == "Slides"
        assert stored.filename == "Slides.pdf"
        assert stored.confidence == HIGH
        assert stored.source_type == SourceType.ATTACHMENT

    def test_higher_confidence_upgrades_in_place(self, dedupe):
        dedupe.merge(artifact(confidence=LOW, source_type=SourceType.PATTERN_DETECTED))
        incoming = artifact(confidence=HIGH, source_type=SourceType.ATTACHMENT)
        assert dedupe.merge(incoming) == MergeOutcome.UPGRADED
        stored = dedupe.session.artifacts["file:42"]
        assert stored.confidence == HIGH
        assert stored.source_type == SourceType.ATTACHMENT

    def test_lower_confidence_is_kept_out(self, dedupe):
        dedupe.merge(artifact(confidence=HIGH))
        assert dedupe.merge(artifact(confidence=LOW)) == MergeOutcome.KEPT
        assert dedupe.session.artifacts["file:42"].confidence == HIGH

    def test_template_is_rejected(self, dedupe):
        template = artifact(location=f"{COURSE}/files/{{{{ id }}}}", key="x")
        assert dedupe.merge(template) == MergeOutcome.REJECTED
        assert dedupe.session.artifacts == {}
        assert dedupe.session.seen_locations == set()

    def test_merge_all_counts(self, dedupe):
        stats = dedupe.merge_all(
            [
                artifact(title="Download"),
                artifact(title="Lecture 3 Slides"),
                artifact(),
                artifact(location="https://example.org/a.pdf", key="https://example.org/a.pdf"),
            ]
        )
        assert stats == {"inserted": 2, "replaced": 1, "kept": 1}


class TestFinalList:
    def test_sorted_and_unique_by_location(self, dedupe):
        dedupe.merge(artifact(key="file:7", location=f"{COURSE}/files/7/download?download_frd=1"))
        dedupe.merge(artifact(key="file:42"))
        dedupe.merge(artifact(key="https://mirror.test/42", location=DOWNLOAD_42))
        final = dedupe.final_list()
        assert [a.canonical_key for a in final] == ["file:42", "file:7"]
        assert len({a.location for a in final}) == len(final)

    def test_empty(self, dedupe):
        assert dedupe.final_list() == []
