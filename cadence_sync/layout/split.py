"""Splits timed spans that render across several pages.

WHY: The reader highlights one page at a time. A sentence that starts at
the bottom of one page and ends at the top of the next needs a separate
clip per page, otherwise the highlight stays on the old page while the
audio has already moved on.

HOW: For each timed span present on more than one page, weigh each page
by the span's rendered characters there (else rect area, else 1 per
page), cut [clip_begin_ms, clip_end_ms) at the cumulative weight shares,
and rewrite every page reference to the page-specific derived id.

RULES:
- Sub-ranges follow ascending page index and are contiguous
- The last sub-range ends exactly at the original clip_end_ms
- Derived ids are "<id>__p<pageIndex>", suffixed _1, _2... on collision,
  unique against every span id in the book
- Untimed spans and single-page spans pass through unchanged
- Every derived span lasts at least 1 ms; a span shorter than its page
  count in ms is kept whole
- Inputs are never mutated; new Span and Page values are returned
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace

from cadence_sync.core.ir import Page, Span

logger = logging.getLogger(__name__)


@dataclass
class SplitResult:
    spans: list[Span] = field(default_factory=list)
    pages: list[Page] = field(default_factory=list)
    split_span_count: int = 0
    created_span_count: int = 0


@dataclass
class _Presence:
    chars: int = 0
    area: float = 0.0


def _presence_by_span(pages: list[Page]) -> dict[str, dict[int, _Presence]]:
    presence: dict[str, dict[int, _Presence]] = {}
    for page in pages:
        for span_rect in page.span_rects:
            entry = presence.setdefault(span_rect.span_id, {}).setdefault(page.page_index, _Presence())
            entry.area += sum(max(rect.area, 0.0) for rect in span_rect.rects)
        for run in page.text_runs:
            if run.span_id is None:
                continue
            entry = presence.setdefault(run.span_id, {}).setdefault(page.page_index, _Presence())
            entry.chars += len(run.text)
    return presence


def _page_weights(by_page: dict[int, _Presence], page_indices: list[int]) -> list[float]:
    # Every page the span appears on keeps a non-zero share.
    chars = [by_page[i].chars for i in page_indices]
    if sum(chars) > 0:
        return [float(max(c, 1)) for c in chars]
    areas = [by_page[i].area for i in page_indices]
    if sum(areas) > 0:
        return [max(a, 1.0) for a in areas]
    return [1.0] * len(page_indices)


def _boundaries(begin_ms: int, end_ms: int, weights: list[float]) -> list[int]:
    """Return len(weights) + 1 cut points from begin_ms to end_ms.

    Every sub-range is at least 1 ms long, so the caller must ensure
    end_ms - begin_ms >= len(weights).
    """
    total_weight = sum(weights)
    duration = end_ms - begin_ms
    cuts = [begin_ms]
    cumulative = 0.0
    for position, weight in enumerate(weights[:-1]):
        cumulative += weight
        cut = begin_ms + int(math.floor(duration * cumulative / total_weight + 0.5))
        remaining = len(weights) - 1 - position
        cuts.append(min(max(cut, cuts[-1] + 1), end_ms - remaining))
    cuts.append(end_ms)
    return cuts


def _unique_id(base: str, used: set[str]) -> str:
    candidate = base
    suffix = 1
    while candidate in used:
        candidate = f"{base}_{suffix}"
        suffix += 1
    used.add(candidate)
    return candidate


def _remap_page(page: Page, mapping: dict[tuple[int, str], str]) -> Page:
    def _mapped(span_id: str | None) -> str | None:
        if span_id is None:
            return None
        return mapping.get((page.page_index, span_id), span_id)

    span_rects = tuple(replace(sr, span_id=_mapped(sr.span_id)) for sr in page.span_rects)
    text_runs = tuple(
        replace(run, span_id=_mapped(run.span_id)) if run.span_id is not None else run
        for run in page.text_runs
    )
    return replace(
        page,
        span_rects=span_rects,
        text_runs=text_runs,
        first_span_id=span_rects[0].span_id if span_rects else _mapped(page.first_span_id) or "",
        last_span_id=span_rects[-1].span_id if span_rects else _mapped(page.last_span_id) or "",
    )


def split_spans_across_pages(spans: list[Span], pages: list[Page]) -> SplitResult:
    """Split every timed multi-page span into one span per page.

    Args:
        spans: Finalized spans in reading order.
        pages: Pages with global page indices.

    Returns:
        SplitResult with the new spans (derived spans in place of their
        originals), the rewritten pages and split counters.
    """
    ordered_pages = sorted(pages, key=lambda p: p.page_index)
    presence = _presence_by_span(ordered_pages)
    used = {span.id for span in spans}
    mapping: dict[tuple[int, str], str] = {}
    result = SplitResult()

    for span in spans:
        by_page = presence.get(span.id, {})
        if not span.is_timed or len(by_page) < 2:
            result.spans.append(span)
            continue

        page_indices = sorted(by_page)
        if span.clip_end_ms - span.clip_begin_ms < len(page_indices):
            logger.debug(
                "Span %s is too short to split across %d pages; kept whole",
                span.id, len(page_indices),
            )
            result.spans.append(span)
            continue

        weights = _page_weights(by_page, page_indices)
        cuts = _boundaries(span.clip_begin_ms, span.clip_end_ms, weights)

        for position, page_index in enumerate(page_indices):
            derived_id = _unique_id(f"{span.id}__p{page_index}", used)
            mapping[(page_index, span.id)] = derived_id
            result.spans.append(replace(
                span,
                id=derived_id,
                clip_begin_ms=cuts[position],
                clip_end_ms=cuts[position + 1],
            ))

        result.split_span_count += 1
        logger.debug("Split span %s across pages %s", span.id, page_indices)

    result.created_span_count = len(result.spans) - len(spans)
    touched = {page_index for page_index, _ in mapping}
    result.pages = [
        _remap_page(page, mapping) if page.page_index in touched else page
        for page in ordered_pages
    ]
    if result.split_span_count:
        logger.info(
            "Split %d span(s) across pages, %d span(s) added",
            result.split_span_count, result.created_span_count,
        )
    return result
