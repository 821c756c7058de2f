"""CSS sanitization for stylesheets rendered during pagination.

WHY: Chapter stylesheets come from the book, which is untrusted input.
Most of a stylesheet is needed to get the same line breaks the reader
will see, but a few constructs can reach outside the package (remote
@import, url() to other origins) or execute code in old engines
(behavior, -moz-binding, expression()).

HOW: Regex passes over the stylesheet text, in order: drop @import rules
whose target is not a package-relative URL, strip dangerous
declarations, then rewrite unsafe url() values to url(""). Each pass
counts what it changed so callers can report sanitization as a warning.

RULES:
- Safe URLs: fragment-only ("#x"), data: URIs, and relative paths
- Unsafe URLs: protocol-relative ("//host/x") and any other scheme
- An empty url() is already inert and is left as is
- Sanitizing never raises; it only removes or rewrites
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_IMPORT_RULE_RE = re.compile(r"@import\s+([^;]+);", re.IGNORECASE)
_URL_FUNCTION_RE = re.compile(r"url\(\s*([^)]*?)\s*\)", re.IGNORECASE)
_QUOTED_RE = re.compile(r"([\"'])(.*?)\1")
_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*:", re.IGNORECASE)

_DANGEROUS_DECLARATION_RES = (
    re.compile(r"\bbehavior\s*:[^;{}]*;?", re.IGNORECASE),
    re.compile(r"(?<![\w-])-moz-binding\s*:[^;{}]*;?", re.IGNORECASE),
    re.compile(r"[a-z-]+\s*:[^;{}]*expression\s*\([^;{}]*\)[^;{}]*;?", re.IGNORECASE),
)


@dataclass
class CssSanitizeSummary:
    removed_imports: int = 0
    rewritten_urls: int = 0
    removed_declarations: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.removed_imports or self.rewritten_urls or self.removed_declarations)

    def describe(self) -> str:
        return (
            f"removed {self.removed_imports} import(s), rewrote {self.rewritten_urls} url(s), "
            f"removed {self.removed_declarations} declaration(s)"
        )


@dataclass
class CssSanitizeResult:
    css: str
    summary: CssSanitizeSummary


def _unwrap_url(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1].strip()
    return value


def is_safe_css_url(url: str) -> bool:
    candidate = url.strip()
    if not candidate:
        return False
    if candidate.startswith("#"):
        return True
    if candidate.lower().startswith("data:"):
        return True
    if candidate.startswith("//"):
        return False
    return not _SCHEME_RE.match(candidate)


def _import_target(rule_body: str) -> str | None:
    from_url = _URL_FUNCTION_RE.search(rule_body)
    if from_url and from_url.group(1):
        return _unwrap_url(from_url.group(1))
    from_string = _QUOTED_RE.search(rule_body)
    if from_string and from_string.group(2):
        return from_string.group(2).strip()
    return None


def _sanitize_imports(css: str, summary: CssSanitizeSummary) -> str:
    def _replace(match: re.Match) -> str:
        target = _import_target(match.group(1))
        if target is None or not is_safe_css_url(target):
            summary.removed_imports += 1
            return ""
        return match.group(0)

    return _IMPORT_RULE_RE.sub(_replace, css)


def _strip_declarations(css: str, summary: CssSanitizeSummary) -> str:
    def _replace(match: re.Match) -> str:
        summary.removed_declarations += 1
        return ";" if match.group(0).lstrip().startswith(";") else ""

    for pattern in _DANGEROUS_DECLARATION_RES:
        css = pattern.sub(_replace, css)
    return css


def _rewrite_urls(css: str, summary: CssSanitizeSummary) -> str:
    def _replace(match: re.Match) -> str:
        candidate = _unwrap_url(match.group(1))
        if not candidate or is_safe_css_url(candidate):
            return match.group(0)
        summary.rewritten_urls += 1
        return 'url("")'

    return _URL_FUNCTION_RE.sub(_replace, css)


def sanitize_css(css: str) -> CssSanitizeResult:
    """Sanitize a full stylesheet."""
    summary = CssSanitizeSummary()
    sanitized = _sanitize_imports(css, summary)
    sanitized = _strip_declarations(sanitized, summary)
    sanitized = _rewrite_urls(sanitized, summary)
    return CssSanitizeResult(css=sanitized, summary=summary)


def sanitize_css_declarations(declarations: str) -> CssSanitizeResult:
    """Sanitize an inline style attribute's declaration list."""
    summary = CssSanitizeSummary()
    sanitized = _strip_declarations(declarations, summary)
    sanitized = _rewrite_urls(sanitized, summary)
    return CssSanitizeResult(css=sanitized, summary=summary)
