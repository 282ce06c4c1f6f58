"""
DOM Query Providers
===================
The only interface the extraction engine needs from the browser layer.

``DomQuery`` turns three raw primitives (element texts, inner markups and
attribute values for a selector) into the shaped results extraction uses:
a single match gives a scalar, several give a list, none gives ``None``.

Two implementations:

- ``PlaywrightDom`` queries a live Playwright page (``eval_on_selector_all``)
- ``SoupDom`` queries a BeautifulSoup/lxml tree (soupsieve selectors); used
  by the static backend, for offline extraction of cached markup and in tests

Marker classes added through ``add_marker_class`` mutate the document being
queried, so a later selector using ``:not(.marker)`` no longer sees them.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Sequence, Union

from bs4 import BeautifulSoup
from bs4.element import Tag

from .utils import array_or_item_if_single, clean_text, minify_html

logger = logging.getLogger(__name__)

Shaped = Union[None, str, List[str]]

# Strips the same whitespace characters as String.prototype.trim
_TRIM_CHARS = " \t\n\r\f\v\ufeff\xa0"


class DomQuery(ABC):
    """Selector-based access to one page's document."""

    url: str = ""

    # ---- Primitives --------------------------------------------------------

    @abstractmethod
    async def count(self, selector: str) -> int:
        """Number of elements matching ``selector``."""

    @abstractmethod
    async def texts(self, selector: str) -> List[str]:
        """Raw text content of every match."""

    @abstractmethod
    async def markups(self, selector: str) -> List[str]:
        """Inner HTML of every match."""

    @abstractmethod
    async def attributes(self, selector: str, name: str) -> List[Optional[str]]:
        """Attribute ``name`` of every match (``None`` where absent)."""

    @abstractmethod
    async def evaluate(self, selector: str, callback: Any, *args: Any) -> Any:
        """Run ``callback`` over all matches and return its result."""

    @abstractmethod
    async def add_marker_class(self, selector: str, cls: str) -> int:
        """Add ``cls`` to every match; returns the number of elements affected."""

    @abstractmethod
    async def add_classes_by_index(self, selector: str, classes: Sequence[str]) -> int:
        """Add ``classes[i]`` to the i-th match (empty entries are skipped)."""

    @abstractmethod
    async def content(self) -> str:
        """Full document markup."""

    # ---- Shaped queries ----------------------------------------------------

    async def exists(self, selector: str) -> bool:
        if not selector:
            return False
        return await self.count(selector) > 0

    async def text_list(self, selector: str, remove_breaks: bool = True) -> List[str]:
        return [clean_text(t or "", remove_breaks) for t in await self.texts(selector)]

    async def query_text(self, selector: str, remove_breaks: bool = True) -> Shaped:
        return array_or_item_if_single(await self.text_list(selector, remove_breaks))

    async def query_text_single(
        self, selector: str, remove_breaks: bool = True, separator: str = " "
    ) -> Optional[str]:
        matches = await self.text_list(selector, remove_breaks)
        if not matches:
            return None
        return separator.join(matches)

    async def markup_list(self, selector: str, minify: bool = True) -> List[str]:
        result = []
        for html in await self.markups(selector):
            html = (html or "").strip(_TRIM_CHARS)
            result.append(minify_html(html) if minify else html)
        return result

    async def query_markup(self, selector: str, minify: bool = True) -> Shaped:
        return array_or_item_if_single(await self.markup_list(selector, minify))

    async def query_attribute(self, selector: str, name: str) -> List[Optional[str]]:
        return await self.attributes(selector, name)


# ---------------------------------------------------------------------------
# BeautifulSoup
# ---------------------------------------------------------------------------

class SoupDom(DomQuery):
    """
    DOM queries over a parsed HTML string.

    ``evaluate`` callbacks are plain Python callables receiving the list of
    matched ``bs4.Tag`` objects followed by ``*args``.
    """

    def __init__(self, html: str, url: str = "", parser: str = "lxml"):
        self.soup = BeautifulSoup(html or "", parser)
        self.url = url

    def select(self, selector: str) -> List[Tag]:
        if not selector:
            return []
        return self.soup.select(selector)

    async def count(self, selector: str) -> int:
        return len(self.select(selector))

    async def texts(self, selector: str) -> List[str]:
        return [el.get_text() for el in self.select(selector)]

    async def markups(self, selector: str) -> List[str]:
        return [el.decode_contents() for el in self.select(selector)]

    async def attributes(self, selector: str, name: str) -> List[Optional[str]]:
        values = []
        for el in self.select(selector):
            value = el.get(name)
            if isinstance(value, list):
                # multi-valued attributes (class, rel) come back as lists
                value = " ".join(value)
            values.append(value)
        return values

    async def evaluate(self, selector: str, callback: Callable, *args: Any) -> Any:
        return callback(self.select(selector), *args)

    async def add_marker_class(self, selector: str, cls: str) -> int:
        matches = self.select(selector)
        for el in matches:
            _add_class(el, cls)
        return len(matches)

    async def add_classes_by_index(self, selector: str, classes: Sequence[str]) -> int:
        matches = self.select(selector)
        affected = 0
        for el, cls in zip(matches, classes):
            if cls:
                _add_class(el, cls)
                affected += 1
        return affected

    async def content(self) -> str:
        return str(self.soup)


def _add_class(el: Tag, cls: str) -> None:
    existing = el.get("class") or []
    if isinstance(existing, str):
        existing = existing.split()
    if cls not in existing:
        el["class"] = list(existing) + [cls]


# ---------------------------------------------------------------------------
# Playwright
# ---------------------------------------------------------------------------

_JS_COUNT = "items => items.length"
_JS_TEXTS = "items => items.map(i => i.textContent)"
_JS_MARKUPS = "items => items.map(i => i.innerHTML)"
_JS_ATTRIBUTES = "(items, name) => items.map(i => i.getAttribute(name))"
_JS_ADD_CLASS = "(items, cls) => { items.forEach(i => i.classList.add(cls)); return items.length }"
_JS_ADD_CLASSES = """(items, classes) => {
    let n = 0
    items.forEach((item, i) => { if (i < classes.length && classes[i]) { item.classList.add(classes[i]); n++ } })
    return n
}"""


class PlaywrightDom(DomQuery):
    """
    DOM queries against a live Playwright page.

    ``evaluate`` callbacks are JavaScript function strings run through
    ``page.eval_on_selector_all`` (several ``*args`` are passed as one array).
    """

    def __init__(self, page):
        self.page = page

    @property
    def url(self) -> str:
        return self.page.url

    async def _all(self, selector: str, expression: str, arg: Any = None) -> Any:
        if arg is None:
            return await self.page.eval_on_selector_all(selector, expression)
        return await self.page.eval_on_selector_all(selector, expression, arg)

    async def count(self, selector: str) -> int:
        return await self._all(selector, _JS_COUNT)

    async def texts(self, selector: str) -> List[str]:
        return await self._all(selector, _JS_TEXTS)

    async def markups(self, selector: str) -> List[str]:
        return await self._all(selector, _JS_MARKUPS)

    async def attributes(self, selector: str, name: str) -> List[Optional[str]]:
        return await self._all(selector, _JS_ATTRIBUTES, name)

    async def evaluate(self, selector: str, callback: str, *args: Any) -> Any:
        if not args:
            return await self._all(selector, callback)
        return await self._all(selector, callback, args[0] if len(args) == 1 else list(args))

    async def add_marker_class(self, selector: str, cls: str) -> int:
        return await self._all(selector, _JS_ADD_CLASS, cls)

    async def add_classes_by_index(self, selector: str, classes: Sequence[str]) -> int:
        return await self._all(selector, _JS_ADD_CLASSES, list(classes))

    async def content(self) -> str:
        return await self.page.content()
