"""
Strip the obvious waste out of a resume page before it is stored.
"""

import re
from dataclasses import dataclass

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style\b[^<]*(?:(?!</style>)<[^<]*)*</style>", re.IGNORECASE)
_COMMENT_RE = re.compile(r"<!--[\s\S]*?-->")
_VOID_JUNK_RE = re.compile(r"<(meta|link|noscript)\b[^>]*>", re.IGNORECASE)
_EVENT_ATTR_RE = re.compile(r"\s+on\w+\s*=\s*[\"'][^\"']*[\"']", re.IGNORECASE)
_STYLE_ATTR_RE = re.compile(r"\s+style\s*=\s*[\"'][^\"']*[\"']", re.IGNORECASE)
_TRACKING_ATTR_RE = re.compile(r"\s+data-(?:gtm|analytics)-\w+\s*=\s*[\"'][^\"']*[\"']", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")
_BETWEEN_TAGS_RE = re.compile(r">\s+<")


@dataclass
class CleanedHtml:
    html: str
    original_size: int
    cleaned_size: int

    @property
    def reduction_percent(self) -> int:
        if not self.original_size:
            return 0
        return round((1 - self.cleaned_size / self.original_size) * 100)


def clean_html(html: str) -> CleanedHtml:
    """Remove scripts, styles, comments, inline handlers and tracking attributes."""
    original_size = len(html)

    html = _SCRIPT_RE.sub("", html)
    html = _STYLE_RE.sub("", html)
    html = _COMMENT_RE.sub("", html)
    html = _VOID_JUNK_RE.sub("", html)
    html = _EVENT_ATTR_RE.sub("", html)
    html = _STYLE_ATTR_RE.sub("", html)
    html = _TRACKING_ATTR_RE.sub("", html)
    html = _WHITESPACE_RE.sub(" ", html)
    html = _BETWEEN_TAGS_RE.sub("><", html).strip()

    return CleanedHtml(html=html, original_size=original_size, cleaned_size=len(html))
