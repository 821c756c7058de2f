"""Resource policy for sub-resources requested while laying out a chapter.

WHY: Chapter HTML comes from the book, and the book is untrusted. While
the rendering oracle lays a chapter out, every stylesheet, font and image
it asks for must come from the book package itself, never from the
network or the host filesystem. A missing stylesheet or font also changes
line breaks, which silently shifts every highlight rectangle, so those
failures must stop the chapter even though the oracle happily renders
something anyway.

HOW: Chapters are loaded under a synthetic origin (EPUB_VIRTUAL_ORIGIN)
with a <base href> pointing at the chapter's directory, so every relative
reference becomes a request to that origin. ResourceRouteHandler answers
each intercepted request:
  - classify_request_url decides epub-resource(path) or blocked(reason)
  - blocked requests get 403 and a fatal issue
  - package paths are read from the book; CSS is re-sanitized on the way
    out and sanitization is recorded as a warning
  - missing critical resources (stylesheets, fonts) are fatal, other
    missing assets are warnings, and both get 404
After the oracle finishes, raise_on_routing_failures turns any fatal
issue into a ResourcePolicyError naming the chapter and the paths.

RULES:
- Only EPUB_VIRTUAL_ORIGIN is allowed; every other origin is blocked
- Percent-decoding is strict UTF-8 per segment; malformed is blocked
- Paths may not escape the package root ("..")
- Issues are deduplicated per chapter
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass, field
from urllib.parse import quote, unquote, urlsplit

from cadence_sync.config import (
    CRITICAL_EXTENSIONS,
    CRITICAL_RESOURCE_TYPES,
    DEFAULT_CONTENT_TYPE,
    EPUB_VIRTUAL_ORIGIN,
    RESOURCE_CONTENT_TYPES,
)
from cadence_sync.core.package import BookPackage
from cadence_sync.layout.css import sanitize_css
from cadence_sync.layout.oracle import NormalizedContent, Route

logger = logging.getLogger(__name__)

_MALFORMED_PERCENT_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_BASE_TAG_RE = re.compile(r"<base\s", re.IGNORECASE)
_HEAD_TAG_RE = re.compile(r"<head([^>]*)>", re.IGNORECASE)


class ResourcePolicyError(RuntimeError):
    """Raised when a chapter's layout pass recorded fatal routing issues.

    RULES:
    - chapter_id names the chapter; issues lists every fatal issue
    """

    def __init__(self, chapter_id: str, issues: list[str]) -> None:
        self.chapter_id = chapter_id
        self.issues = list(issues)
        details = "; ".join(self.issues)
        super().__init__(
            f"Pagination resource policy violations in chapter {chapter_id}: {details}"
        )


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EpubResource:
    path: str
    kind: str = "epub-resource"


@dataclass(frozen=True)
class BlockedRequest:
    reason: str
    kind: str = "blocked"


def normalize_package_path(path: str) -> str:
    return path.replace("\\", "/").lstrip("/")


def decode_virtual_path(pathname: str) -> str | None:
    """Decode a URL path under the virtual origin into a package path.

    Returns:
        The package-relative path ("" for the root), or None when the
        encoding is malformed or the path escapes the package.
    """
    raw = pathname.lstrip("/")
    if not raw:
        return ""

    segments: list[str] = []
    for segment in raw.split("/"):
        if _MALFORMED_PERCENT_RE.search(segment):
            return None
        try:
            segments.append(unquote(segment, encoding="utf-8", errors="strict"))
        except UnicodeDecodeError:
            return None

    normalized = posixpath.normpath("/".join(segments))
    if normalized == ".." or normalized.startswith("../"):
        return None
    if normalized in (".", "/"):
        return ""
    return normalize_package_path(normalized)


def classify_request_url(url: str) -> EpubResource | BlockedRequest:
    """Classify a request made during layout.

    Args:
        url: Absolute request URL as reported by the oracle.

    Returns:
        EpubResource with the decoded package path, or BlockedRequest
        with a human-readable reason.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return BlockedRequest(reason=f"malformed request URL {url!r} is not allowed")

    origin = f"{parts.scheme}://{parts.netloc}".lower()
    if origin != EPUB_VIRTUAL_ORIGIN.lower():
        return BlockedRequest(
            reason=f"origin {origin} is not allowed (only {EPUB_VIRTUAL_ORIGIN} may be fetched)"
        )

    path = decode_virtual_path(parts.path)
    if path is None:
        return BlockedRequest(reason=f"invalid EPUB resource path in {url}")
    return EpubResource(path=path)


def is_critical_resource(path: str, resource_type: str | None = None) -> bool:
    """True when a missing resource can change layout geometry."""
    if resource_type and resource_type.lower() in CRITICAL_RESOURCE_TYPES:
        return True
    return posixpath.splitext(path)[1].lower() in CRITICAL_EXTENSIONS


def content_type_for(path: str) -> str:
    return RESOURCE_CONTENT_TYPES.get(posixpath.splitext(path)[1].lower(), DEFAULT_CONTENT_TYPE)


# ---------------------------------------------------------------------------
# Base href
# ---------------------------------------------------------------------------


def encode_path_for_url(path: str) -> str:
    normalized = normalize_package_path(path)
    return "/".join(quote(segment, safe="!*'()") for segment in normalized.split("/")) if normalized else ""


def chapter_base_href(xhtml_path: str) -> str:
    """Virtual-origin URL of the directory containing a chapter."""
    normalized = normalize_package_path(xhtml_path)
    directory = normalized[: normalized.rfind("/") + 1] if "/" in normalized else ""
    encoded = encode_path_for_url(directory)
    return f"{EPUB_VIRTUAL_ORIGIN}/{encoded}"


def inject_base_href(html: str, base_href: str) -> str:
    """Insert <base href> after <head> unless the document already has one."""
    if _BASE_TAG_RE.search(html):
        return html
    return _HEAD_TAG_RE.sub(
        lambda m: f'<head{m.group(1)}>\n  <base href="{base_href}">', html, count=1
    )


# ---------------------------------------------------------------------------
# Diagnostics and route handling
# ---------------------------------------------------------------------------


@dataclass
class RoutingDiagnostics:
    """Issues recorded while one chapter was being laid out."""

    fatal_issues: list[str] = field(default_factory=list)
    warning_issues: list[str] = field(default_factory=list)

    def add_fatal(self, issue: str) -> None:
        if issue not in self.fatal_issues:
            self.fatal_issues.append(issue)
            logger.error("Resource policy: %s", issue)

    def add_warning(self, issue: str) -> None:
        if issue not in self.warning_issues:
            self.warning_issues.append(issue)
            logger.warning("Resource policy: %s", issue)

    @property
    def has_fatal(self) -> bool:
        return bool(self.fatal_issues)


class ResourceRouteHandler:
    """Answers intercepted oracle requests from the book package.

    WHY: The oracle must never reach outside the book, and the pipeline
    must know whenever a layout-relevant resource was unavailable.

    HOW: Callable with a Route; classifies the URL, reads the package,
    sanitizes CSS, fulfills the route and records issues.

    RULES:
    - 403 for blocked requests (fatal)
    - 404 for missing paths (fatal if critical, else warning)
    - 200 with the package bytes otherwise; CSS is served sanitized
    """

    def __init__(
        self,
        package: BookPackage,
        content: NormalizedContent,
        diagnostics: RoutingDiagnostics | None = None,
    ) -> None:
        self.package = package
        self.content = content
        self.diagnostics = diagnostics if diagnostics is not None else RoutingDiagnostics()

    def _source_of(self, route: Route) -> str:
        referer = (route.request.headers or {}).get("referer")
        if referer:
            classified = classify_request_url(referer)
            if isinstance(classified, EpubResource):
                return classified.path
            return referer
        return self.content.xhtml_path

    async def __call__(self, route: Route) -> None:
        url = route.request.url
        resource_type = route.request.resource_type
        chapter_id = self.content.chapter_id

        classified = classify_request_url(url)
        if isinstance(classified, BlockedRequest):
            self.diagnostics.add_fatal(
                f"blocked non-EPUB request {url} ({classified.reason}; chapter={chapter_id})"
            )
            await route.fulfill(
                status=403,
                content_type="text/plain; charset=utf-8",
                body=f"Blocked request: {url}",
            )
            return

        path = classified.path
        try:
            body = self.package.read_bytes(path)
        except (FileNotFoundError, KeyError, OSError):
            critical = is_critical_resource(path, resource_type)
            issue = (
                f'missing EPUB resource "{path}" (chapter={chapter_id}, '
                f"source={self._source_of(route)}, critical={'yes' if critical else 'no'})"
            )
            if critical:
                self.diagnostics.add_fatal(issue)
            else:
                self.diagnostics.add_warning(issue)
            await route.fulfill(
                status=404,
                content_type="text/plain; charset=utf-8",
                body=f"Missing EPUB resource: {path}",
            )
            return

        if path.lower().endswith(".css") or resource_type == "stylesheet":
            result = sanitize_css(body.decode("utf-8", errors="replace"))
            if result.summary.changed:
                self.diagnostics.add_warning(
                    f'sanitized stylesheet "{path}" ({result.summary.describe()}; chapter={chapter_id})'
                )
            body = result.css.encode("utf-8")

        await route.fulfill(status=200, content_type=content_type_for(path), body=body)


def raise_on_routing_failures(chapter_id: str, diagnostics: RoutingDiagnostics) -> None:
    """Raise ResourcePolicyError if the chapter recorded any fatal issue."""
    if diagnostics.has_fatal:
        raise ResourcePolicyError(chapter_id, diagnostics.fatal_issues)
