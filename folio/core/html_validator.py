"""
HTML content-integrity gate for rendered article versions.

Structural checks are hard failures; untrusted external scripts are either
blocked (strict), reported as warnings (warning) or ignored (permissive).
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from html.parser import HTMLParser
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

from bs4 import BeautifulSoup


class ValidationMode(str, Enum):
    STRICT = "strict"
    WARNING = "warning"
    PERMISSIVE = "permissive"


class HtmlValidationStatus(str, Enum):
    VALID = "valid"
    WARNING = "warning"
    INVALID = "invalid"


@dataclass
class HtmlValidationResult:
    is_valid: bool
    error_message: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def status(self) -> HtmlValidationStatus:
        if not self.is_valid:
            return HtmlValidationStatus.INVALID
        if self.warnings:
            return HtmlValidationStatus.WARNING
        return HtmlValidationStatus.VALID

    @property
    def detail(self) -> Optional[str]:
        """Text stored on the version alongside its status."""
        if not self.is_valid:
            return self.error_message
        if self.warnings:
            return "\n".join(self.warnings)
        return None


# Elements that never have an end tag.
VOID_ELEMENTS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input", "link",
    "meta", "param", "source", "track", "wbr",
})

# Elements whose end tag may be omitted in valid HTML.
OPTIONAL_END_ELEMENTS = frozenset({
    "html", "head", "body", "p", "li", "dt", "dd", "option", "optgroup",
    "tr", "td", "th", "thead", "tbody", "tfoot", "colgroup", "caption",
    "rb", "rp", "rt", "rtc",
})

_DOCTYPE_RE = re.compile(r"<!doctype\s+html", re.IGNORECASE)


class _TagBalanceChecker(HTMLParser):
    """Lenient streaming parser that records unclosed and unopened tags."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.stack: List[Tuple[str, int]] = []
        self.errors: List[Tuple[int, str]] = []

    def handle_starttag(self, tag, attrs):
        if tag not in VOID_ELEMENTS:
            self.stack.append((tag, self.getpos()[0]))

    def handle_endtag(self, tag):
        if tag in VOID_ELEMENTS:
            return

        line = self.getpos()[0]
        if not any(open_tag == tag for open_tag, _ in self.stack):
            self.errors.append((line, f"end tag </{tag}> has no matching start tag"))
            return

        while self.stack:
            open_tag, open_line = self.stack.pop()
            if open_tag == tag:
                break
            if open_tag not in OPTIONAL_END_ELEMENTS:
                self.errors.append((open_line, f"<{open_tag}> is not closed before </{tag}>"))

    def finish(self) -> List[Tuple[int, str]]:
        self.close()
        for open_tag, open_line in self.stack:
            if open_tag not in OPTIONAL_END_ELEMENTS:
                self.errors.append((open_line, f"<{open_tag}> is never closed"))
        self.stack.clear()
        return sorted(self.errors)


def _contains_pair(html_lower: str, tag: str) -> bool:
    return f"<{tag}" in html_lower and f"</{tag}>" in html_lower


def _is_relative(src: str) -> bool:
    lowered = src.lower()
    return not lowered.startswith(("http://", "https://", "//"))


def _is_localhost(src: str) -> bool:
    return src.lower().startswith((
        "http://localhost", "https://localhost",
        "http://127.0.0.1", "https://127.0.0.1",
    ))


def is_trusted_domain(src: str, trusted_domains: Iterable[str]) -> bool:
    host = (urlsplit(src).hostname or "").lower()
    if not host:
        return False
    for domain in trusted_domains:
        domain = domain.strip().lower()
        if domain and (host == domain or host.endswith(f".{domain}")):
            return True
    return False


def find_untrusted_scripts(soup: BeautifulSoup, trusted_domains: Iterable[str]) -> List[str]:
    trusted = list(trusted_domains)
    untrusted = []
    for script in soup.find_all("script", src=True):
        src = script.get("src", "").strip()
        if not src or _is_relative(src) or _is_localhost(src):
            continue
        if not is_trusted_domain(src, trusted):
            untrusted.append(src)
    return untrusted


def validate_html(
    html: str,
    mode: ValidationMode = ValidationMode.WARNING,
    trusted_domains: Optional[Iterable[str]] = None,
) -> HtmlValidationResult:
    if not html or not html.strip():
        return HtmlValidationResult(False, "HTML content is empty")

    html_lower = html.lower()
    if not _DOCTYPE_RE.search(html):
        return HtmlValidationResult(False, "Missing DOCTYPE declaration")
    if not _contains_pair(html_lower, "html"):
        return HtmlValidationResult(False, "Missing complete <html> tag")
    if not _contains_pair(html_lower, "head"):
        return HtmlValidationResult(False, "Missing <head> tag")
    if not _contains_pair(html_lower, "body"):
        return HtmlValidationResult(False, "Missing <body> tag")

    checker = _TagBalanceChecker()
    checker.feed(html)
    parse_errors = checker.finish()
    if parse_errors:
        line, reason = parse_errors[0]
        return HtmlValidationResult(False, f"HTML parse error: {reason} (line {line})")

    soup = BeautifulSoup(html, "html.parser")
    for tag in ("html", "head", "body"):
        if soup.find(tag) is None:
            return HtmlValidationResult(False, f"Could not find a valid <{tag}> node")

    warnings: List[str] = []
    if mode != ValidationMode.PERMISSIVE:
        untrusted = find_untrusted_scripts(soup, trusted_domains or [])
        if untrusted and mode == ValidationMode.STRICT:
            return HtmlValidationResult(False, f"Blocked external script from untrusted domain: {untrusted[0]}")
        warnings.extend(f"External script from untrusted domain: {src}" for src in untrusted)

    return HtmlValidationResult(True, None, warnings)


def clean_ai_generated_html(raw_html: str) -> str:
    """Strip the Markdown code fence models like to wrap around HTML output."""
    if not raw_html or not raw_html.strip():
        return raw_html

    cleaned = raw_html.strip()
    if cleaned.lower().startswith("```html"):
        cleaned = cleaned[7:].lstrip()
    elif cleaned.startswith("```"):
        first_line_end = cleaned.find("\n")
        if first_line_end > 0:
            cleaned = cleaned[first_line_end + 1:].lstrip()

    if cleaned.endswith("```"):
        cleaned = cleaned[:-3].rstrip()

    return cleaned.strip()
