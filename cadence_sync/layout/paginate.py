"""Pagination driver: lays chapters out through a LayoutOracle.

WHY: The oracle only knows how to lay out one chapter. The book needs a
single page sequence with global page indices, every sub-resource fetch
policed by the resource policy, and a chapter failure whenever a critical
resource was missing, even though the oracle rendered something anyway.

HOW: For each chapter, in order:
  1. Sanitize inline CSS and inject <base href> pointing at the chapter's
     virtual-origin directory
  2. Install a fresh ResourceRouteHandler on the oracle
  3. Await oracle.paginate() (one chapter at a time)
  4. Remove the handler and check the chapter's routing diagnostics
  5. Renumber the chapter's pages after the pages already collected

RULES:
- Chapters are laid out strictly sequentially
- Strict mode raises ResourcePolicyError for the first failing chapter
- Non-strict mode drops the failing chapter's pages and logs loudly
- Warnings never fail a chapter
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from html import escape, unescape

from cadence_sync.config import STRICT_VALIDATION
from cadence_sync.core.ir import UNTIMED, DeviceProfile, Page, Span
from cadence_sync.core.package import BookPackage
from cadence_sync.layout.css import sanitize_css, sanitize_css_declarations
from cadence_sync.layout.oracle import LayoutOracle, NormalizedContent
from cadence_sync.layout.resources import (
    ResourcePolicyError,
    ResourceRouteHandler,
    RoutingDiagnostics,
    chapter_base_href,
    inject_base_href,
    raise_on_routing_failures,
)

logger = logging.getLogger(__name__)

_STYLE_BLOCK_RE = re.compile(r"(<style\b[^>]*>)(.*?)(</style\s*>)", re.IGNORECASE | re.DOTALL)
_STYLE_ATTR_RE = re.compile(r"(\sstyle\s*=\s*)([\"'])(.*?)\2", re.IGNORECASE | re.DOTALL)


@dataclass
class PaginationResult:
    """Pages for the whole book plus per-chapter routing diagnostics."""

    pages: list[Page] = field(default_factory=list)
    diagnostics: dict[str, RoutingDiagnostics] = field(default_factory=dict)
    failed_chapters: list[str] = field(default_factory=list)

    @property
    def warnings(self) -> list[str]:
        return [w for d in self.diagnostics.values() for w in d.warning_issues]


def sanitize_inline_css(html: str) -> tuple[str, list[str]]:
    """Sanitize <style> blocks and style="" attributes in chapter HTML.

    Returns the new HTML and one description per block or attribute that
    changed. Attribute values are unescaped before sanitizing and escaped
    again afterwards.
    """
    changes: list[str] = []

    def _block(match: re.Match) -> str:
        result = sanitize_css(match.group(2))
        if not result.summary.changed:
            return match.group(0)
        changes.append(f"<style> block: {result.summary.describe()}")
        return match.group(1) + result.css + match.group(3)

    def _attribute(match: re.Match) -> str:
        result = sanitize_css_declarations(unescape(match.group(3)))
        if not result.summary.changed:
            return match.group(0)
        changes.append(f"style attribute: {result.summary.describe()}")
        quote = match.group(2)
        return match.group(1) + quote + escape(result.css, quote=True) + quote

    html = _STYLE_BLOCK_RE.sub(_block, html)
    html = _STYLE_ATTR_RE.sub(_attribute, html)
    return html, changes


def prepare_content(
    content: NormalizedContent,
    diagnostics: RoutingDiagnostics | None = None,
) -> NormalizedContent:
    """Return content whose relative URLs resolve under the virtual origin.

    Inline CSS is sanitized like package stylesheets; each change is
    recorded as a warning on diagnostics when given.
    """
    html, changes = sanitize_inline_css(content.html)
    if diagnostics is not None:
        for change in changes:
            diagnostics.add_warning(f"sanitized inline CSS ({change}; chapter={content.chapter_id})")
    html = inject_base_href(html, chapter_base_href(content.xhtml_path))
    return replace(content, html=html)


async def paginate_chapters(
    oracle: LayoutOracle,
    contents: list[NormalizedContent],
    profile: DeviceProfile,
    package: BookPackage,
    strict: bool = STRICT_VALIDATION,
) -> PaginationResult:
    """Lay out every chapter and collect globally indexed pages.

    Args:
        oracle: The layout engine.
        contents: Normalized chapters in spine order.
        profile: Target device profile.
        package: Book package that answers sub-resource requests.
        strict: Fail on the first chapter with fatal routing issues.

    Returns:
        PaginationResult with pages renumbered 0..N-1 across the book.

    Raises:
        ResourcePolicyError: In strict mode, when a chapter recorded a
            blocked request or a missing critical resource.
    """
    result = PaginationResult()

    for content in contents:
        diagnostics = RoutingDiagnostics()
        result.diagnostics[content.chapter_id] = diagnostics
        prepared = prepare_content(content, diagnostics)

        await oracle.intercept_requests(ResourceRouteHandler(package, prepared, diagnostics))
        try:
            pages = await oracle.paginate(prepared, profile)
        finally:
            await oracle.intercept_requests(None)

        try:
            raise_on_routing_failures(content.chapter_id, diagnostics)
        except ResourcePolicyError as exc:
            if strict:
                raise
            result.failed_chapters.append(content.chapter_id)
            logger.warning("NON-STRICT: dropping %d page(s) of chapter %s: %s", len(pages), content.chapter_id, exc)
            continue

        for page in sorted(pages, key=lambda p: p.page_index):
            result.pages.append(replace(page, page_index=len(result.pages)))

        logger.info("Chapter %s: %d page(s)", content.chapter_id, len(pages))

    return result


def assign_spans_to_pages(pages: list[Page]) -> dict[str, int]:
    """Map each span id to the index of the first page it appears on."""
    assignment: dict[str, int] = {}
    for page in sorted(pages, key=lambda p: p.page_index):
        for span_rect in page.span_rects:
            assignment.setdefault(span_rect.span_id, page.page_index)
        for run in page.text_runs:
            if run.span_id is not None:
                assignment.setdefault(run.span_id, page.page_index)
    return assignment


def untime_chapter_spans(spans: list[Span], chapter_ids: list[str]) -> list[Span]:
    """Clear the clips of spans whose chapter has no pages.

    A chapter dropped in non-strict mode leaves spans that can never be
    highlighted. They stay in the bundle as untimed text instead of as
    timed spans without geometry.
    """
    dropped = set(chapter_ids)
    if not dropped:
        return list(spans)
    result = []
    for span in spans:
        if span.chapter_id in dropped and span.is_timed:
            span = replace(span, clip_begin_ms=UNTIMED, clip_end_ms=UNTIMED)
        result.append(span)
    cleared = sum(1 for old, new in zip(spans, result) if old is not new)
    if cleared:
        logger.warning("Untimed %d span(s) of dropped chapter(s) %s", cleared, ", ".join(chapter_ids))
    return result
