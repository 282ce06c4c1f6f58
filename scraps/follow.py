"""
Link Follower
=============
Turns a crawl operation into new queue entries.

For every link matched by the rule's selector:

1. resolve + normalize it (fragments dropped, http(s) only)
2. skip it if it was already seen this session, else mark it seen
3. count it against the rule's limit (``to::selector``) and drop it once
   the count exceeds ``maxPagesToCrawl`` (the URL stays seen)
4. ``to == "start"`` re-runs entry point setup on the URL (pagers);
   anything else enqueues an extract operation under ``to``

Seen URLs and limit counters live in ``CrawlState``, shared by every
concurrent follower and guarded by one ``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Set

from .config import CrawlRule, EntryPoint
from .dom import DomQuery
from .hooks import CrawlHooks
from .monitor import CrawlMonitor
from .queue import CRAWL, EXTRACT, Operation, OperationQueue
from .utils import URLNormalizer

logger = logging.getLogger(__name__)


class CrawlState:
    """Session-wide seen set and crawl-limit counters."""

    def __init__(self):
        self.seen: Set[str] = set()
        self.limits: Dict[str, int] = defaultdict(int)
        self.lock = asyncio.Lock()

    async def mark_seen(self, url: str) -> bool:
        """Mark ``url`` seen; False if it already was."""
        async with self.lock:
            if url in self.seen:
                return False
            self.seen.add(url)
            return True

    async def count(self, url: str, rule: CrawlRule) -> Optional[int]:
        """
        Atomically mark ``url`` seen and count it against ``rule``'s limit.

        Returns the new counter value, or None when the URL was already seen.
        """
        async with self.lock:
            if url in self.seen:
                return None
            self.seen.add(url)
            self.limits[rule.limit_id] += 1
            return self.limits[rule.limit_id]


def create_initial_ops(entry: EntryPoint, queue: OperationQueue) -> int:
    """Queue an entry point's operations under its URL; returns how many."""
    added = 0
    for rule in entry.follow:
        queue.add_item(entry.url, Operation(
            kind=CRAWL,
            rule=rule,
            destination=rule.to,
            cache=rule.cache,
            entry=entry,
        ))
        added += 1
    if entry.extract:
        queue.add_item(entry.url, Operation(
            kind=EXTRACT,
            destination=entry.destination,
            extract=entry.extract,
            cache=entry.cache,
            entry=entry,
        ))
        added += 1
    logger.debug(f"[QUEUE] {added} op(s) for entry point {entry.url}")
    return added


class LinkFollower:
    """Runs crawl operations against an open page."""

    def __init__(
        self,
        queue: OperationQueue,
        state: CrawlState,
        hooks: Optional[CrawlHooks] = None,
        monitor: Optional[CrawlMonitor] = None,
        normalizer: Optional[URLNormalizer] = None,
    ):
        self.queue = queue
        self.state = state
        self.hooks = hooks or CrawlHooks()
        self.monitor = monitor
        self.normalizer = normalizer or URLNormalizer(strip_trailing_slash=False)

    async def links(self, dom: DomQuery, selector: str) -> List[str]:
        """Absolute, normalized, de-duplicated hrefs matching ``selector``."""
        urls: List[str] = []
        for href in await dom.query_attribute(selector, "href"):
            url = self.normalizer.normalize(href, base_url=dom.url)
            if url and url not in urls:
                urls.append(url)
        return urls

    async def crawl(self, dom: DomQuery, op: Operation) -> int:
        """Follow ``op.rule`` on the page; returns the number of URLs queued."""
        rule = op.rule
        urls = await self.links(dom, rule.selector)
        if self.monitor:
            await self.monitor.record_links(len(urls))
        if not urls:
            logger.debug(f"[FOLLOW] No links for '{rule.selector}' on {dom.url}")
            return 0

        queued = 0
        for url in urls:
            counter = await self.state.count(url, rule)
            if counter is None:
                continue

            if rule.max_pages_to_crawl and counter > rule.max_pages_to_crawl:
                logger.info(
                    f"[LIMIT] Crawl limit exceeded for {rule.limit_id} "
                    f"({counter} > {rule.max_pages_to_crawl}), skipping {url}"
                )
                if self.monitor:
                    await self.monitor.record_limit_skip()
                continue

            logger.debug(f"[FOLLOW] {counter} x {rule.limit_id} for {url}")

            if rule.is_recursive:
                # Pager-style recursion: same entry point, new URL
                queued += create_initial_ops(op.entry.with_url(url), self.queue)
                continue

            extract_op = Operation(
                kind=EXTRACT,
                rule=rule,
                destination=rule.to,
                cache=rule.cache,
                entry=op.entry,
            )
            if not await self.hooks.should_extract(url, extract_op):
                logger.info(f"[QUEUE] Extraction vetoed for {url}")
                continue
            self.queue.add_item(url, extract_op)
            queued += 1
            logger.debug(f"[QUEUE] extract -> {rule.to} for {url}")

        return queued
