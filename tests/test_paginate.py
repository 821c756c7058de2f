"""Tests for the pagination driver.

WHY: The driver is what turns per-chapter layouts into one book: pages
must be numbered across chapters, each chapter's requests must go
through its own resource handler, and a chapter whose critical resources
failed must never contribute pages silently.

HOW: conftest.FakeLayoutOracle returns canned pages and replays
configured requests through whatever handler the driver installed.
"""

import asyncio

import pytest

from cadence_sync.core.package import MemoryBookPackage
from cadence_sync.layout.oracle import NormalizedContent
from cadence_sync.core.ir import Span
from cadence_sync.layout.paginate import (
    assign_spans_to_pages,
    paginate_chapters,
    prepare_content,
    sanitize_inline_css,
    untime_chapter_spans,
)
from cadence_sync.layout.resources import ResourcePolicyError, RoutingDiagnostics

from conftest import FakeLayoutOracle, make_page

HTML = "<html><head><title>t</title></head><body><p>text</p></body></html>"


def _content(chapter_id):
    return NormalizedContent(chapter_id=chapter_id, xhtml_path=f"OEBPS/text/{chapter_id}.xhtml", html=HTML)


@pytest.fixture
def pages_by_chapter():
    return {
        "ch1": [
            make_page("ch1", 0, [("ch1-sentence0", "It was a bright cold day")]),
            make_page("ch1", 1, [("ch1-sentence0", "in April."), ("ch1-sentence1", "The clocks")]),
        ],
        "ch2": [make_page("ch2", 0, [("ch2-sentence0", "Winston Smith")])],
    }


@pytest.fixture
def package():
    return MemoryBookPackage({"OEBPS/styles/book.css": b"p { margin: 0; }"})


class TestPaginateChapters:
    """Tests for paginate_chapters()."""

    def test_global_page_indices(self, pages_by_chapter, package, small_profile):
        """Pages are renumbered across chapters in spine order."""
        oracle = FakeLayoutOracle(pages_by_chapter)
        result = asyncio.run(paginate_chapters(
            oracle, [_content("ch1"), _content("ch2")], small_profile, package,
        ))

        assert [p.page_index for p in result.pages] == [0, 1, 2]
        assert [p.chapter_id for p in result.pages] == ["ch1", "ch1", "ch2"]
        assert result.pages[2].page_id == "ch2_p0001"
        assert result.failed_chapters == []

    def test_base_href_injected(self, pages_by_chapter, package, small_profile):
        oracle = FakeLayoutOracle(pages_by_chapter)
        asyncio.run(paginate_chapters(oracle, [_content("ch1")], small_profile, package))
        assert '<base href="https://epub.local/OEBPS/text/">' in oracle.rendered[0].html

    def test_handler_installed_per_chapter_and_removed(self, pages_by_chapter, package, small_profile):
        """Each chapter gets its own handler; none is left installed afterwards."""
        oracle = FakeLayoutOracle(pages_by_chapter)
        asyncio.run(paginate_chapters(
            oracle, [_content("ch1"), _content("ch2")], small_profile, package,
        ))

        first, cleared, second, cleared_again = oracle.handler_history
        assert first is not None and second is not None
        assert first is not second
        assert cleared is None and cleared_again is None
        assert oracle.handler is None

    def test_requests_served_from_package(self, pages_by_chapter, package, small_profile):
        oracle = FakeLayoutOracle(
            pages_by_chapter,
            {"ch1": [("https://epub.local/OEBPS/styles/book.css", "stylesheet")]},
        )
        result = asyncio.run(paginate_chapters(oracle, [_content("ch1")], small_profile, package))

        assert oracle.routes[0].status == 200
        assert not result.diagnostics["ch1"].has_fatal

    def test_strict_raises(self, pages_by_chapter, package, small_profile):
        """A blocked request fails the chapter in strict mode."""
        oracle = FakeLayoutOracle(
            pages_by_chapter,
            {"ch1": [("https://fonts.example.com/body.woff2", "font")]},
        )
        with pytest.raises(ResourcePolicyError) as exc_info:
            asyncio.run(paginate_chapters(
                oracle, [_content("ch1"), _content("ch2")], small_profile, package, strict=True,
            ))

        assert exc_info.value.chapter_id == "ch1"
        assert oracle.handler is None
        assert [c.chapter_id for c in oracle.rendered] == ["ch1"]

    def test_non_strict_drops_chapter(self, pages_by_chapter, package, small_profile):
        """Outside strict mode the failing chapter's pages are dropped."""
        oracle = FakeLayoutOracle(
            pages_by_chapter,
            {"ch1": [("https://epub.local/OEBPS/fonts/missing.ttf", "font")]},
        )
        result = asyncio.run(paginate_chapters(
            oracle, [_content("ch1"), _content("ch2")], small_profile, package, strict=False,
        ))

        assert result.failed_chapters == ["ch1"]
        assert [p.chapter_id for p in result.pages] == ["ch2"]
        assert result.pages[0].page_index == 0
        assert result.diagnostics["ch1"].fatal_issues

    def test_warnings_do_not_fail(self, pages_by_chapter, package, small_profile):
        oracle = FakeLayoutOracle(
            pages_by_chapter,
            {"ch2": [("https://epub.local/OEBPS/images/missing.png", "image")]},
        )
        result = asyncio.run(paginate_chapters(
            oracle, [_content("ch1"), _content("ch2")], small_profile, package, strict=True,
        ))

        assert len(result.pages) == 3
        assert len(result.warnings) == 1
        assert "missing EPUB resource" in result.warnings[0]


class TestPrepareContent:
    """Tests for prepare_content()."""

    def test_original_untouched(self):
        content = _content("ch1")
        prepared = prepare_content(content)
        assert "<base" in prepared.html
        assert content.html == HTML

    def test_inline_css_sanitized_with_warning(self):
        """Remote urls in style blocks and attributes are neutralized and reported."""
        html = (
            "<html><head><style>@import url(https://fonts.example.com/a.css);\np { color: red; }</style>"
            "</head><body><p style=\"background: url('//cdn.example.com/x.png')\">text</p></body></html>"
        )
        content = NormalizedContent(chapter_id="ch1", xhtml_path="OEBPS/text/ch1.xhtml", html=html)
        diagnostics = RoutingDiagnostics()

        prepared = prepare_content(content, diagnostics)

        assert "fonts.example.com" not in prepared.html
        assert "cdn.example.com" not in prepared.html
        assert "p { color: red; }" in prepared.html
        assert 'style="background: url(&quot;&quot;)"' in prepared.html
        assert len(diagnostics.warning_issues) == 2
        assert not diagnostics.fatal_issues
        assert all("chapter=ch1" in w for w in diagnostics.warning_issues)


class TestSanitizeInlineCss:
    """Tests for sanitize_inline_css()."""

    def test_clean_html_unchanged(self):
        html = '<p style="margin: 0; background: url(../img/bg.png)">x</p>'
        assert sanitize_inline_css(html) == (html, [])

    def test_escaped_attribute_value_checked(self):
        """Entity-encoded quotes cannot hide a remote url."""
        html = '<p style="background: url(&quot;https://example.com/x.png&quot;)">x</p>'
        sanitized, changes = sanitize_inline_css(html)
        assert "example.com" not in sanitized
        assert changes == ["style attribute: removed 0 import(s), rewrote 1 url(s), removed 0 declaration(s)"]


class TestAssignSpansToPages:
    """Tests for assign_spans_to_pages()."""

    def test_first_page_wins(self, pages_by_chapter):
        pages = pages_by_chapter["ch1"]
        assert assign_spans_to_pages(pages) == {"ch1-sentence0": 0, "ch1-sentence1": 1}


class TestUntimeChapterSpans:
    """Tests for untime_chapter_spans()."""

    def _span(self, span_id, chapter_id, begin=0, end=1000):
        return Span(
            id=span_id, chapter_id=chapter_id, text_ref=f"{chapter_id}.xhtml#{span_id}",
            audio_src="book.mp3", clip_begin_ms=begin, clip_end_ms=end,
        )

    def test_only_dropped_chapters_untimed(self):
        spans = [self._span("a", "ch1"), self._span("b", "ch2", 1000, 2000)]
        result = untime_chapter_spans(spans, ["ch1"])

        assert not result[0].is_timed
        assert (result[0].clip_begin_ms, result[0].clip_end_ms) == (-1, -1)
        assert result[1] is spans[1]
        assert spans[0].is_timed

    def test_no_dropped_chapters(self):
        spans = [self._span("a", "ch1")]
        assert untime_chapter_spans(spans, []) == spans
