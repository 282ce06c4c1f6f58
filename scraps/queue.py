"""
Operation Queue
===============
Pending work keyed by URL.

Each key holds an ordered list of ``Operation`` objects that are drained
strictly FIFO by whichever page slot picks the key up. Keys whose list has
been fully drained are pruned lazily, the next time the key set is read.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Generic, List, Optional, Tuple, TypeVar

from .config import CrawlRule, EntryPoint, ExtractionConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

CRAWL = "crawl"
EXTRACT = "extract"


@dataclass
class Operation:
    """One unit of work to run once the page for its URL is open."""
    kind: str                                   # "crawl" | "extract"
    rule: Optional[CrawlRule] = None
    destination: Optional[str] = None           # e.g. "content/blog"
    extract: Tuple[ExtractionConfig, ...] = ()  # inline configs from an entry point
    cache: bool = False
    entry: Optional[EntryPoint] = None

    @property
    def is_crawl(self) -> bool:
        return self.kind == CRAWL

    @property
    def is_extract(self) -> bool:
        return self.kind == EXTRACT

    def describe(self) -> str:
        if self.is_crawl and self.rule:
            return f"crawl '{self.rule.selector}' -> {self.rule.to}"
        return f"extract -> {self.destination}"


class OperationQueue(Generic[T]):
    """
    Items keyed by string, FIFO per key.

    Popping an empty (or unknown) key returns ``None``; it is never an error.
    """

    def __init__(self):
        self._items: Dict[str, Deque[T]] = {}

    def add_item(self, key: str, item: T) -> None:
        self._items.setdefault(key, deque()).append(item)

    def get_item(self, key: str) -> Optional[T]:
        if not self.get_items_count(key):
            return None
        return self._items[key].popleft()

    def get_items_count(self, key: str) -> int:
        items = self._items.get(key)
        return len(items) if items is not None else 0

    def _flush_empty_keys(self) -> None:
        for key in [k for k, items in self._items.items() if not items]:
            del self._items[key]

    def get_keys(self) -> List[str]:
        self._flush_empty_keys()
        return list(self._items)

    def get_keys_count(self) -> int:
        return len(self.get_keys())

    def get_next_key(self, offset: int = 0) -> Optional[str]:
        """First key at insertion index >= ``offset`` that still has items."""
        for i, key in enumerate(self.get_keys()):
            if i < offset:
                continue
            if self.get_items_count(key):
                return key
        return None

    def __len__(self) -> int:
        return sum(len(items) for items in self._items.values())

    def __contains__(self, key: str) -> bool:
        return self.get_items_count(key) > 0
