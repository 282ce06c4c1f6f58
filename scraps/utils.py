"""
Utility Functions
URL normalization for link discovery and text/markup clean-up helpers used by
the DOM query providers.
"""

import logging
import re
from typing import Any, List, Optional, Union
from urllib.parse import urlparse, urlunparse, urljoin, parse_qs, urlencode

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


class URLNormalizer:
    """
    Handles URL normalization to prevent duplicate crawling.
    Removes fragments, normalizes trailing slashes, drops tracking params.
    """

    # Common tracking parameters to remove
    TRACKING_PARAMS = {
        'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
        'fbclid', 'gclid', 'mc_cid', 'mc_eid', '_ga', '_gid', 'dclid',
    }

    # Non-HTML resources that are never worth opening in a page
    SKIP_EXTENSIONS = {
        '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp', '.ico',
        '.pdf', '.zip', '.rar', '.tar', '.gz', '.7z',
        '.mp3', '.mp4', '.avi', '.mov', '.webm',
        '.css', '.js', '.woff', '.woff2', '.ttf', '.eot', '.otf',
    }

    def __init__(
        self,
        remove_tracking_params: bool = True,
        remove_fragments: bool = True,
        strip_trailing_slash: bool = True,
    ):
        self.remove_tracking_params = remove_tracking_params
        self.remove_fragments = remove_fragments
        self.strip_trailing_slash = strip_trailing_slash

    def normalize(self, url: str, base_url: str = None) -> Optional[str]:
        """
        Normalize a URL for consistent comparison.

        Args:
            url: The URL (or href) to normalize
            base_url: Optional base URL for resolving relative URLs

        Returns:
            Normalized absolute URL string or None if it is not crawlable
        """
        if not url:
            return None

        url = url.strip()

        # Skip javascript:, mailto:, tel:, data: and same-page anchors
        if url.lower().startswith(('javascript:', 'mailto:', 'tel:', 'data:', '#')):
            return None

        if base_url:
            url = urljoin(base_url, url)

        try:
            parsed = urlparse(url)
        except ValueError:
            return None

        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            return None

        netloc = parsed.netloc.lower()

        path = parsed.path or '/'
        path = re.sub(r'/+', '/', path)
        if self.strip_trailing_slash and path != '/' and path.endswith('/'):
            path = path.rstrip('/')

        lower_path = path.lower()
        if any(lower_path.endswith(ext) for ext in self.SKIP_EXTENSIONS):
            return None

        query = parsed.query
        if query and self.remove_tracking_params:
            params = parse_qs(query, keep_blank_values=True)
            filtered_params = {
                k: v for k, v in params.items()
                if k.lower() not in self.TRACKING_PARAMS
            }
            query = urlencode(filtered_params, doseq=True)

        fragment = '' if self.remove_fragments else parsed.fragment

        return urlunparse((
            parsed.scheme.lower(),
            netloc,
            path,
            parsed.params,
            query,
            fragment,
        ))


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

_INDENT_RE = re.compile(r'^[ \t]+|[ \t]+$', re.MULTILINE)
_BLANK_LINES_RE = re.compile(r'(\r?\n){2,}')
_BREAKS_RE = re.compile(r'[\r\n]+')


def strip_indentation(text: str) -> str:
    """Remove source indentation and trailing blanks from every line, drop empty lines."""
    if not text:
        return ""
    text = _INDENT_RE.sub('', text)
    return _BLANK_LINES_RE.sub('\n', text).strip()


def remove_breaks(text: str) -> str:
    """Collapse line breaks into single spaces."""
    return _BREAKS_RE.sub(' ', text).strip()


def clean_text(text: str, collapse_breaks: bool = True) -> str:
    """Clean text content the way every ``text`` extraction does."""
    text = strip_indentation(text)
    if collapse_breaks:
        text = remove_breaks(text)
    return text


def minify_html(markup: str) -> str:
    """
    Collapse insignificant whitespace in an HTML fragment.

    Whitespace between tags is dropped, runs of whitespace elsewhere become
    a single space. Content of <pre> and <textarea> is left alone.
    """
    if not markup:
        return ""
    preserved: List[str] = []

    def _keep(match):
        preserved.append(match.group(0))
        return f"<\x00{len(preserved) - 1}\x00>"

    out = re.sub(r'<(pre|textarea)\b.*?</\1>', _keep, markup, flags=re.S | re.I)
    out = re.sub(r'>\s+<', '><', out)
    out = re.sub(r'\s+', ' ', out).strip()
    return re.sub(r'<\x00(\d+)\x00>', lambda m: preserved[int(m.group(1))], out)


def beautify_html(markup: str) -> str:
    """Pretty-print a full page for the markup cache."""
    return BeautifulSoup(markup, "lxml").prettify()


def array_or_item_if_single(values: List[Any]) -> Union[None, Any, List[Any]]:
    """``[]`` → None, ``[x]`` → x, otherwise the list itself."""
    if not values:
        return None
    if len(values) == 1:
        return values[0]
    return values
