"""
Extension points injected into ``Scraps``.

Subclass ``CrawlHooks`` (or pass callables) to veto extraction of
discovered URLs, alter entities before they are stored, and provide the
custom extractors used by ``"extract": "element"`` configs::

    async def teaser_links(dom, step):
        return await dom.evaluate(step.selector, "items => items.map(i => i.href)")

    hooks = CrawlHooks(custom_extractors={"teaser_links": teaser_links})
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

logger = logging.getLogger(__name__)

CustomExtractor = Callable[..., Union[Any, Awaitable[Any]]]


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class CrawlHooks:
    """Default hooks: extract everything, leave entities untouched."""

    def __init__(
        self,
        custom_extractors: Optional[Dict[str, CustomExtractor]] = None,
        should_extract: Optional[Callable] = None,
        alter_entity: Optional[Callable] = None,
    ):
        self.custom_extractors: Dict[str, CustomExtractor] = dict(custom_extractors or {})
        self._should_extract = should_extract
        self._alter_entity = alter_entity

    def register_extractor(self, emit: str, extractor: CustomExtractor) -> None:
        self.custom_extractors[emit] = extractor

    def get_extractor(self, emit: str) -> Optional[CustomExtractor]:
        return self.custom_extractors.get(emit)

    async def should_extract(self, url: str, op) -> bool:
        """Pre-enqueue veto for a discovered URL. Return False to skip it."""
        if self._should_extract is None:
            return True
        return bool(await maybe_await(self._should_extract(url, op)))

    async def alter_entity(self, entity: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
        """Post-extraction alteration. ``context`` has url, entity_type, bundle."""
        if self._alter_entity is None:
            return entity
        altered = await maybe_await(self._alter_entity(entity, context))
        return entity if altered is None else altered
