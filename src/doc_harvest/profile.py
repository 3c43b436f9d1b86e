from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Final


@dataclass(frozen=True)
class EntryPoint:
    """A high-value page below the root, visited first."""

    path: str
    priority: int
    phase: str


@dataclass(frozen=True)
class PhaseRule:
    fragment: str
    priority: int
    phase: str


@dataclass(frozen=True)
class SiteProfile:
    """Everything site specific the crawler knows about one LMS layout.

    Paths are matched against the URL path (lowercased). Keyword sets are
    matched case-insensitively against link text and URLs.
    """

    name: str
    root_path: str
    entry_points: tuple[EntryPoint, ...]
    skip_fragments: tuple[str, ...]
    phase_rules: tuple[PhaseRule, ...]
    default_priority: int = 6
    default_phase: str = "exploratory"
    artifact_extension: str = ".pdf"
    file_id_pattern: re.Pattern[str] = re.compile(r"/files/(\d+)")
    indirection_pattern: re.Pattern[str] = re.compile(r"/modules/items/(\d+)")
    content_page_fragment: str = "/pages/"
    download_suffix: str = "/download"
    download_query: str = "download_frd=1"
    holder_classes: tuple[str, ...] = ()
    inline_file_class: str = ""
    container_class: str = ""
    item_class: str = ""
    attachment_class: str = ""
    content_page_class: str = ""
    type_marker_class: str = "type"
    name_classes: tuple[str, ...] = ("name", "filename", "file-name", "title", "item_name")
    artifact_keywords: frozenset[str] = field(default_factory=frozenset)
    series_keywords: frozenset[str] = field(default_factory=frozenset)

    def root_prefix(self, root_id: str) -> str:
        return self.root_path.format(root_id=root_id).rstrip("/")

    def entry_targets(self, origin: str, root_id: str) -> list[tuple[str, EntryPoint]]:
        prefix = origin.rstrip("/") + self.root_prefix(root_id)
        return [(f"{prefix}/{ep.path}", ep) for ep in self.entry_points]

    def rule_for(self, path: str) -> tuple[int, str]:
        path = path.lower()
        for rule in self.phase_rules:
            if rule.fragment in path:
                return rule.priority, rule.phase
        return self.default_priority, self.default_phase


_ARTIFACT_KEYWORDS: Final[frozenset[str]] = frozenset(
    {
        "pdf",
        "slides",
        "lecture",
        "handout",
        "notes",
        "manual",
        "guide",
        "worksheet",
        "reading",
        "document",
        "instructions",
        "lab",
        "föreläsning",
        "anteckningar",
        "kompendium",
    }
)

_SERIES_KEYWORDS: Final[frozenset[str]] = frozenset(
    {
        "lecture",
        "föreläsning",
        "optfö",
        "simfö",
        "week",
        "vecka",
        "lab",
        "chapter",
        "kapitel",
        "session",
    }
)


CANVAS_PROFILE: Final[SiteProfile] = SiteProfile(
    name="canvas",
    root_path="/courses/{root_id}",
    entry_points=(
        EntryPoint("modules", 1, "modules"),
        EntryPoint("files", 2, "files"),
        EntryPoint("assignments", 3, "assignments"),
        EntryPoint("pages", 4, "pages"),
        EntryPoint("syllabus", 5, "syllabus"),
    ),
    skip_fragments=(
        "/quizzes/",
        "/discussion_topics/",
        "/announcements/",
        "/gradebook",
        "/grades",
        "/users/",
        "/calendar",
        "/download",
        "/preview",
    ),
    phase_rules=(
        PhaseRule("/modules/items/", 2, "module_items"),
        PhaseRule("/modules", 2, "modules_index"),
        PhaseRule("/assignments/", 3, "assignments"),
        PhaseRule("/pages/", 4, "pages"),
        PhaseRule("/files/folder", 5, "file_folders"),
        PhaseRule("/files", 2, "file_browser"),
    ),
    holder_classes=("instructure_file_link_holder", "instructure_file_holder"),
    inline_file_class="inline_disabled",
    container_class="context_module",
    item_class="context_module_item",
    attachment_class="attachment",
    content_page_class="wiki_page",
    artifact_keywords=_ARTIFACT_KEYWORDS,
    series_keywords=_SERIES_KEYWORDS,
)
