"""Consistency checks on the final spans and pages before hand-off.

WHY: The bundle writer trusts what it receives. A timed span with no
geometry, a duplicated id or an empty page set produces a bundle that
plays audio with nothing highlighted, so those conditions are reported as
errors here rather than discovered on the device.

HOW: validate_compilation_result walks spans and pages once and collects
errors and warnings into a ValidationReport. validate_sync_payload checks
the serialized document against the bundled JSON Schema with jsonschema.
ensure_valid turns a report with errors into CompilationValidationError.

RULES:
- Errors: no spans, no pages, duplicate span ids, no text runs, a timed
  span without geometry on any page
- Warnings: spans never placed on a page, rects or runs outside the page
- Validation never mutates its inputs
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema

from cadence_sync.core.ir import Page, Rect, Span
from cadence_sync.layout.paginate import assign_spans_to_pages

logger = logging.getLogger(__name__)

_SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "sync_output.schema.json"

# Tolerance in CSS pixels for subpixel rounding at page edges
_BOUNDS_EPSILON = 0.5


def _load_schema() -> dict[str, Any]:
    """Load the sync output JSON schema from disk.

    Cached at module level after first call to avoid repeated I/O.
    """
    with open(_SCHEMA_PATH, encoding="utf-8") as f:
        return json.load(f)


_CACHED_SCHEMA: dict[str, Any] | None = None


def _get_schema() -> dict[str, Any]:
    global _CACHED_SCHEMA
    if _CACHED_SCHEMA is None:
        _CACHED_SCHEMA = _load_schema()
    return _CACHED_SCHEMA


class CompilationValidationError(ValueError):
    """Raised when the compiled spans and pages are inconsistent."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("Compilation validation failed: " + "; ".join(self.errors))


@dataclass
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _outside(page: Page, x: float, y: float, width: float, height: float) -> bool:
    return (
        x < -_BOUNDS_EPSILON
        or y < -_BOUNDS_EPSILON
        or x + width > page.width + _BOUNDS_EPSILON
        or y + height > page.height + _BOUNDS_EPSILON
    )


def _rect_outside(page: Page, rect: Rect) -> bool:
    return _outside(page, rect.x, rect.y, rect.width, rect.height)


def validate_compilation_result(spans: list[Span], pages: list[Page]) -> ValidationReport:
    """Check spans and pages for internal consistency.

    Args:
        spans: Final spans (after splitting).
        pages: Final pages with global indices.

    Returns:
        ValidationReport with errors and warnings; never raises.
    """
    report = ValidationReport()

    if not spans:
        report.errors.append("no spans were produced")
    if not pages:
        report.errors.append("no pages were produced")

    seen: set[str] = set()
    for span in spans:
        if span.id in seen:
            report.errors.append(f"duplicate span id {span.id}")
        seen.add(span.id)

    if pages and not any(page.text_runs for page in pages):
        report.errors.append("pages contain no text runs")

    placed = assign_spans_to_pages(pages)
    with_geometry = {
        span_rect.span_id
        for page in pages
        for span_rect in page.span_rects
        if span_rect.rects
    }
    for span in spans:
        if span.is_timed and span.id not in with_geometry:
            report.errors.append(f"timed span {span.id} has no geometry on any page")
        elif span.id not in placed:
            report.warnings.append(f"span {span.id} is not placed on any page")

    for page in pages:
        for span_rect in page.span_rects:
            if any(_rect_outside(page, rect) for rect in span_rect.rects):
                report.warnings.append(f"page {page.page_id}: rect of span {span_rect.span_id} is outside the page")
        for run in page.text_runs:
            if _outside(page, run.x, run.y, run.width, run.height):
                report.warnings.append(f"page {page.page_id}: text run {run.text!r} is outside the page")

    for warning in report.warnings:
        logger.warning("Validation: %s", warning)
    for error in report.errors:
        logger.error("Validation: %s", error)
    return report


def build_sync_payload(spans: list[Span], pages: list[Page]) -> dict[str, Any]:
    """Serialize spans and pages to the camelCase hand-off document."""
    return {
        "spans": [span.to_dict() for span in spans],
        "pages": [page.to_dict() for page in pages],
    }


def validate_sync_payload(payload: dict[str, Any]) -> None:
    """Validate a serialized hand-off document against the bundled schema.

    Raises:
        jsonschema.ValidationError: If the document does not conform.
    """
    jsonschema.validate(instance=payload, schema=_get_schema())


def ensure_valid(report: ValidationReport) -> ValidationReport:
    """Return the report unchanged, or raise if it has errors.

    Raises:
        CompilationValidationError: If report.errors is non-empty.
    """
    if report.errors:
        raise CompilationValidationError(report.errors)
    return report
