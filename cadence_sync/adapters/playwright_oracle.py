"""Chromium layout oracle driven by Playwright.

WHY: Only a real browser engine reproduces the reader's line breaks,
hyphenation and font metrics closely enough for highlight rectangles to
land on the right words. Playwright gives async control over a headless
Chromium from Python.

HOW: Each chapter is rendered into one very wide viewport using CSS
multi-column layout, one column per device page. Headings that start a
chapter mid-document are forced onto a fresh column. For every column,
a page.evaluate() pass collects span rectangles (tight Range client
rects of [data-span-id] elements) and text runs (caret-probed line text
per text node rect), converted to page-local coordinates. Every request
the page makes is routed through the installed handler.

RULES:
- Use as an async context manager (async with PlaywrightLayoutOracle())
- One browser page per chapter, closed after extraction
- Page ids are "<chapterId>_p0001"..., page indices chapter-local
- Requires the optional "browser" extra and `playwright install chromium`
"""

from __future__ import annotations

import logging
import re

from playwright.async_api import Browser, Playwright, async_playwright

from cadence_sync.core.ir import DeviceProfile, Page, PageSpanRect, Rect, TextRun, TextStyle
from cadence_sync.layout.oracle import LayoutOracle, NormalizedContent, RouteHandler, profile_css

logger = logging.getLogger(__name__)

# Viewport starts wide enough for ~50 pages and grows if needed.
_INITIAL_VIEWPORT_PAGES = 50

_HEAD_CLOSE_RE = re.compile(r"</head>", re.IGNORECASE)

# ---------------------------------------------------------------------------
# In-page scripts
# ---------------------------------------------------------------------------

_MARK_CHAPTER_BREAKS_JS = """
() => {
  const root = document.querySelector('.cadence-content');
  if (!root) return 0;
  const headingPattern = /^(chapter|book|part)\\b/i;
  const tokenPattern = /\\bchapter\\b/i;
  let inserted = 0;
  for (const heading of root.querySelectorAll('h1, h2, h3, h4, h5, h6')) {
    const isChapter =
      headingPattern.test((heading.textContent || '').trim()) ||
      tokenPattern.test(heading.id || '') ||
      tokenPattern.test(heading.className || '') ||
      tokenPattern.test(heading.getAttribute('epub:type') || '');
    if (!isChapter) continue;
    const before = document.createRange();
    before.setStart(root, 0);
    before.setEndBefore(heading);
    if (!before.toString().trim()) continue;
    heading.classList.add('cadence-chapter-break');
    inserted++;
  }
  return inserted;
}
"""

_COUNT_COLUMNS_JS = """
({ columnWidth, columnGap }) => {
  const el = document.querySelector('.cadence-content');
  if (!el) return 1;
  return Math.max(1, Math.ceil(el.scrollWidth / (columnWidth + columnGap)));
}
"""

_EXTRACT_COLUMN_JS = """
({ colLeft, columnWidth, marginTop, marginLeft }) => {
  const inColumn = (r) => {
    const mid = r.left + r.width / 2;
    return mid >= colLeft + marginLeft && mid < colLeft + marginLeft + columnWidth;
  };
  const toPage = (r) => ({
    x: Math.round(r.left - colLeft - marginLeft),
    y: Math.round(r.top - marginTop),
    width: Math.round(r.width),
    height: Math.round(r.height),
  });

  const spanRects = [];
  for (const el of document.querySelectorAll('[data-span-id]')) {
    const spanId = el.getAttribute('data-span-id');
    if (!spanId) continue;
    const range = document.createRange();
    range.selectNodeContents(el);
    const rects = [];
    for (const r of range.getClientRects()) {
      if (r.width === 0 || r.height === 0 || !inColumn(r)) continue;
      rects.push(toPage(r));
    }
    if (rects.length) spanRects.push({ spanId, rects });
  }

  const textRuns = [];
  const seen = new Set();
  const walker = document.createTreeWalker(
    document.querySelector('.cadence-content') || document.body,
    NodeFilter.SHOW_TEXT,
    { acceptNode: (n) => (n.textContent || '').trim() ? NodeFilter.FILTER_ACCEPT : NodeFilter.FILTER_REJECT },
  );
  let node;
  while ((node = walker.nextNode())) {
    const parent = node.parentElement;
    if (!parent) continue;
    const owner = parent.closest('[data-span-id]');
    const cs = window.getComputedStyle(parent);
    const style = {
      fontFamily: cs.fontFamily,
      fontSize: parseFloat(cs.fontSize),
      fontWeight: String(parseInt(cs.fontWeight, 10) || 400),
      fontStyle: cs.fontStyle === 'italic' ? 'italic' : 'normal',
      color: cs.color,
    };
    const nodeRange = document.createRange();
    nodeRange.selectNodeContents(node);
    for (const r of nodeRange.getClientRects()) {
      if (r.width === 0 || r.height === 0 || !inColumn(r)) continue;
      const midY = r.top + r.height / 2;
      let text = '';
      if (document.caretRangeFromPoint) {
        const a = document.caretRangeFromPoint(r.left + 1, midY);
        const b = document.caretRangeFromPoint(r.right - 1, midY);
        if (a && b) {
          try {
            const line = document.createRange();
            line.setStart(a.startContainer, a.startOffset);
            line.setEnd(b.startContainer, b.startOffset);
            text = line.toString().replace(/\\s+/g, ' ');
          } catch (e) {}
        }
      }
      if (!text) continue;
      const coords = toPage(r);
      const key = `${coords.x},${coords.y},${text}`;
      if (seen.has(key)) continue;
      seen.add(key);
      textRuns.push({ text, ...coords, spanId: owner ? owner.getAttribute('data-span-id') : null, style });
    }
  }
  return { textRuns, spanRects };
}
"""


def _column_css(profile: DeviceProfile) -> str:
    column_width, column_height = profile.content_area()
    column_gap = profile.margin_left + profile.margin_right
    return (
        ".cadence-content {\n"
        f"  column-width: {column_width}px;\n"
        f"  column-gap: {column_gap}px;\n"
        "  column-fill: auto;\n"
        f"  height: {column_height}px;\n"
        "  overflow: visible;\n"
        "}\n"
        ".cadence-chapter-break { break-before: column; }\n"
        "[data-span-id] { break-inside: avoid; }\n"
        "p { orphans: 2; widows: 2; }\n"
    )


def inject_layout_css(html: str, css: str) -> str:
    """Add a <style> block before </head>, or at the top without a head."""
    style = f"<style>\n{css}</style>\n"
    if _HEAD_CLOSE_RE.search(html):
        return _HEAD_CLOSE_RE.sub(lambda m: style + m.group(0), html, count=1)
    return style + html


class PlaywrightLayoutOracle(LayoutOracle):
    """LayoutOracle backed by headless Chromium.

    RULES:
    - styles accumulates every distinct TextStyle seen; TextRun.style_index
      indexes into it
    """

    def __init__(self, headless: bool = True) -> None:
        self.headless = headless
        self.styles: list[TextStyle] = []
        self._style_index: dict[TextStyle, int] = {}
        self._handler: RouteHandler | None = None
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None

    async def __aenter__(self) -> PlaywrightLayoutOracle:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def intercept_requests(self, handler: RouteHandler | None) -> None:
        self._handler = handler

    def _style_ref(self, data: dict) -> int:
        style = TextStyle(
            font_family=data["fontFamily"],
            font_size=float(data["fontSize"]),
            font_weight=data["fontWeight"],
            font_style=data["fontStyle"],
            color=data["color"],
        )
        if style not in self._style_index:
            self._style_index[style] = len(self.styles)
            self.styles.append(style)
        return self._style_index[style]

    async def paginate(self, content: NormalizedContent, profile: DeviceProfile) -> list[Page]:
        if self._browser is None:
            raise RuntimeError(
                "PlaywrightLayoutOracle must be used as an async context manager: "
                "async with PlaywrightLayoutOracle() as oracle: ..."
            )

        column_width, column_height = profile.content_area()
        column_gap = profile.margin_left + profile.margin_right
        stride = column_width + column_gap

        page = await self._browser.new_page()
        try:
            await page.set_viewport_size({
                "width": profile.width * _INITIAL_VIEWPORT_PAGES,
                "height": profile.height,
            })
            if self._handler is not None:
                await page.route("**/*", self._handler)

            html = inject_layout_css(content.html, profile_css(profile) + _column_css(profile))
            await page.set_content(html, wait_until="domcontentloaded")
            await page.evaluate("() => document.fonts.ready.then(() => true)")

            breaks = await page.evaluate(_MARK_CHAPTER_BREAKS_JS)
            if breaks:
                logger.debug("Chapter %s: inserted %d chapter page break(s)", content.chapter_id, breaks)

            column_count = await page.evaluate(
                _COUNT_COLUMNS_JS, {"columnWidth": column_width, "columnGap": column_gap},
            )
            needed_width = column_count * stride
            viewport = page.viewport_size
            if viewport and needed_width > viewport["width"]:
                await page.set_viewport_size({"width": needed_width, "height": profile.height})

            pages: list[Page] = []
            for column in range(column_count):
                data = await page.evaluate(_EXTRACT_COLUMN_JS, {
                    "colLeft": column * stride,
                    "columnWidth": column_width,
                    "marginTop": profile.margin_top,
                    "marginLeft": profile.margin_left,
                })
                pages.append(self._build_page(content.chapter_id, column, column_width, column_height, data))

            logger.info("Chapter %s: %d column(s)", content.chapter_id, column_count)
            return pages
        finally:
            await page.close()

    def _build_page(self, chapter_id: str, column: int, width: int, height: int, data: dict) -> Page:
        span_rects = tuple(
            PageSpanRect(
                span_id=sr["spanId"],
                rects=tuple(Rect(r["x"], r["y"], r["width"], r["height"]) for r in sr["rects"]),
            )
            for sr in data["spanRects"]
        )
        text_runs = tuple(
            TextRun(
                text=run["text"],
                x=run["x"],
                y=run["y"],
                width=run["width"],
                height=run["height"],
                baseline=run["y"] + run["height"],
                span_id=run.get("spanId"),
                style_index=self._style_ref(run["style"]),
            )
            for run in data["textRuns"]
        )
        return Page(
            page_id=f"{chapter_id}_p{column + 1:04d}",
            chapter_id=chapter_id,
            page_index=column,
            width=width,
            height=height,
            text_runs=text_runs,
            span_rects=span_rects,
            first_span_id=span_rects[0].span_id if span_rects else "",
            last_span_id=span_rects[-1].span_id if span_rects else "",
        )
