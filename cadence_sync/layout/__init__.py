"""Page layout through a rendering oracle, and span splitting across pages.

WHY: Highlight rectangles and page turns come from a real layout engine,
but the book content driving it is untrusted. This package owns the
boundary: what the oracle may fetch, how chapters become a single page
sequence, and how timed spans are cut at page breaks.

HOW: oracle.py defines the LayoutOracle interface and device profiles,
resources.py polices sub-resource requests, css.py sanitizes
stylesheets, paginate.py drives the oracle chapter by chapter, and
split.py splits multi-page spans.

RULES:
- The oracle is awaited one chapter at a time
- Missing critical resources fail the chapter
"""

from cadence_sync.layout.oracle import LayoutOracle, NormalizedContent, get_profile
from cadence_sync.layout.paginate import PaginationResult, assign_spans_to_pages, paginate_chapters
from cadence_sync.layout.resources import ResourcePolicyError, classify_request_url
from cadence_sync.layout.split import SplitResult, split_spans_across_pages

__all__ = [
    "LayoutOracle",
    "NormalizedContent",
    "PaginationResult",
    "ResourcePolicyError",
    "SplitResult",
    "assign_spans_to_pages",
    "classify_request_url",
    "get_profile",
    "paginate_chapters",
    "split_spans_across_pages",
]
