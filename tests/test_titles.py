import pytest

from doc_harvest.extract import LinkElement
from doc_harvest.titles import (
    clean_title,
    filename_for,
    first_title,
    is_generic_title,
    pick_title,
    strip_action_words,
    title_from_location,
)

from conftest import COURSE


@pytest.mark.parametrize(
    "title,expected",
    [
        ("Download", True),
        ("  ladda   ner ", True),
        ("Förhandsvisning", True),
        ("Untitled PDF", True),
        ("", True),
        (None, True),
        ("12", True),
        ("Lecture 3", False),
        ("Download Lecture 3", False),
    ],
)
def test_is_generic_title(title, expected):
    assert is_generic_title(title) is expected


class TestCleaning:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Lecture 3 Download", "Lecture 3"),
            ("Download: Lecture 3", "Lecture 3"),
            ("Föreläsning 2 Ladda ner", "Föreläsning 2"),
            ("Lecture 3", "Lecture 3"),
        ],
    )
    def test_strip_action_words(self, raw, expected):
        assert strip_action_words(raw) == expected

    def test_clean_title(self):
        assert clean_title("Slides.PDF") == "Slides"
        assert clean_title("Preview") is None
        assert clean_title("{{ name }}") is None
        assert clean_title(None) is None
        assert len(clean_title("x" * 150)) == 100

    def test_first_title_skips_generic(self):
        assert first_title([None, "Download", "  ", "Week 1 notes.pdf"]) == "Week 1 notes"
        assert first_title(["Download", "PDF"]) is None


class TestTitleFromLocation:
    def test_download_name_param(self):
        url = f"{COURSE}/files/42/download?download_frd=Week%201%20notes.pdf"
        assert title_from_location(url) == "Week 1 notes"

    def test_last_segment(self):
        assert title_from_location("https://example.org/papers/survey.pdf") == "survey"

    @pytest.mark.parametrize(
        "url",
        [
            f"{COURSE}/files/42/download?download_frd=1",
            f"{COURSE}/files/42",
            f"{COURSE}/files/42/preview",
        ],
    )
    def test_uninformative_locations(self, url):
        assert title_from_location(url) is None


class TestPickTitle:
    def test_prefers_name_span(self):
        link = LinkElement(
            href="/courses/1/files/42",
            target=f"{COURSE}/files/42",
            text="Lecture 3 Slides.pdf (2 MB)",
            name_text="Lecture 3 Slides.pdf",
        )
        assert pick_title(link) == "Lecture 3 Slides"

    def test_action_text_falls_back_to_sibling(self):
        link = LinkElement(
            href="/courses/1/files/42/download?download_frd=1",
            target=f"{COURSE}/files/42/download?download_frd=1",
            text="Download",
            sibling_name="Week 4 handout",
        )
        assert pick_title(link) == "Week 4 handout"

    def test_attribute_fallback(self):
        link = LinkElement(
            href="/courses/1/files/42",
            target=f"{COURSE}/files/42",
            text="",
            attrs={"data-filename": "Syllabus.pdf"},
        )
        assert pick_title(link) == "Syllabus"

    def test_action_text_is_never_a_title(self):
        link = LinkElement(
            href="/courses/1/files/42/download?download_frd=1",
            target=f"{COURSE}/files/42/download?download_frd=1",
            text="Download",
        )
        assert pick_title(link) == "Untitled PDF"

    def test_raw_generic_text_as_last_resort(self):
        link = LinkElement(href="/courses/1/files/42", target=f"{COURSE}/files/42", text="PDF")
        assert pick_title(link) == "PDF"

    def test_untitled(self):
        link = LinkElement(href="/courses/1/files/42", target=f"{COURSE}/files/42")
        assert pick_title(link) == "Untitled PDF"


def test_filename_for():
    assert filename_for("Lecture 3: Intro.pdf") == "Lecture-3-Intro.pdf"
    assert filename_for("", "file:42") == "file-42.pdf"
