"""Rendering oracle interface and device profiles.

WHY: Precise text layout (fonts, line breaking, column pagination) is
delegated to a browser-class engine. The rest of the pipeline must not
depend on which engine that is: the splitting and validation logic is
tested with canned geometry, and production runs drive a real browser.

HOW: LayoutOracle is an ABC with two requirements, mirroring what the
pipeline needs from any layout engine: paginate() turns normalized
chapter HTML into Pages for a device profile, and intercept_requests()
installs the handler that answers every sub-resource fetch. Route and
RouteRequest are Protocols shaped like Playwright's async Route, so the
same handler serves the browser adapter and test doubles.

RULES:
- paginate() is awaited one chapter at a time; oracles need not be
  reentrant
- Page indices returned by paginate() are chapter-local (0-based); the
  pagination driver renumbers them globally
- All sub-resource requests go through the installed handler
- Profiles are looked up by name; unknown names raise ValueError
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from cadence_sync.core.ir import DeviceProfile, Page


# ---------------------------------------------------------------------------
# Request interception protocols
# ---------------------------------------------------------------------------


class RouteRequest(Protocol):
    @property
    def url(self) -> str: ...

    @property
    def resource_type(self) -> str: ...

    @property
    def headers(self) -> dict[str, str]: ...


class Route(Protocol):
    @property
    def request(self) -> RouteRequest: ...

    async def fulfill(
        self,
        *,
        status: int | None = None,
        content_type: str | None = None,
        body: str | bytes | None = None,
    ) -> None: ...


RouteHandler = Callable[[Route], Awaitable[None]]


# ---------------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NormalizedContent:
    """Chapter HTML ready for layout.

    RULES:
    - xhtml_path is the chapter's path inside the package; relative
      resource URLs resolve against its directory
    - span_ids lists the tagged spans present in html, in document order
    """

    chapter_id: str
    xhtml_path: str
    html: str
    span_ids: tuple[str, ...] = field(default_factory=tuple)


class LayoutOracle(ABC):
    """Abstract browser-class layout engine.

    To add a new engine:
    1. Subclass LayoutOracle
    2. Implement paginate() and intercept_requests()
    3. Route every sub-resource fetch through the installed handler
    """

    @abstractmethod
    async def paginate(self, content: NormalizedContent, profile: DeviceProfile) -> list[Page]:
        """Lay out one chapter and return its pages with text runs and span rects.

        Args:
            content: Normalized chapter HTML.
            profile: Target device viewport and typography.

        Returns:
            Pages in reading order with chapter-local page indices.
        """

    @abstractmethod
    async def intercept_requests(self, handler: RouteHandler | None) -> None:
        """Install (or with None, remove) the sub-resource request handler."""


# ---------------------------------------------------------------------------
# Device profiles
# ---------------------------------------------------------------------------

MANTA_PROFILE = DeviceProfile(
    name="supernote-manta-a5x2",
    width=1920,
    height=2560,
    margin_top=100,
    margin_right=80,
    margin_bottom=200,  # player toolbar
    margin_left=80,
    font_size=48,
    line_height=1.5,
    font_family="'Noto Serif', serif",
)

PROFILES: dict[str, DeviceProfile] = {
    MANTA_PROFILE.name: MANTA_PROFILE,
}

DEFAULT_PROFILE = MANTA_PROFILE


def get_profile(name: str | None = None) -> DeviceProfile:
    """Look up a device profile by name; None returns the default."""
    if not name:
        return DEFAULT_PROFILE
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(
            f"Unknown profile: {name}. Available: {', '.join(sorted(PROFILES))}"
        ) from None


def profile_css(profile: DeviceProfile) -> str:
    """Stylesheet that pins the viewport, margins and base typography."""
    content_width, content_height = profile.content_area()
    return (
        "html, body {\n"
        f"  width: {profile.width}px !important;\n"
        f"  height: {profile.height}px !important;\n"
        "  overflow: hidden !important;\n"
        "}\n"
        "body {\n"
        "  margin: 0 !important;\n"
        f"  padding: {profile.margin_top}px {profile.margin_right}px "
        f"{profile.margin_bottom}px {profile.margin_left}px !important;\n"
        f"  font-family: {profile.font_family} !important;\n"
        f"  font-size: {profile.font_size}px !important;\n"
        f"  line-height: {profile.line_height} !important;\n"
        "}\n"
        ".cadence-content {\n"
        f"  width: {content_width}px !important;\n"
        f"  height: {content_height}px !important;\n"
        "}\n"
    )
