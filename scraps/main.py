"""
Crawl Loop
==========
Orchestrates one scraps run.

Architecture:
- ``OperationQueue`` keyed by URL (FIFO per URL)
- ``PagePool`` of ``maxParallelPages`` page slots (sticky + round robin)
- Each tick takes up to ``maxParallelPages`` ready URLs and processes them
  concurrently with ``asyncio.gather``:
    politeness delay → open page → drain every queued op in order
    (crawl → ``LinkFollower``; extract → cache capture → ``Extractor`` →
    ``alter_entity`` hook → ``Storage``)
- The loop ends when no URL has pending operations (or ``stop()`` was
  requested); the pool is always closed in ``finally``

Failures:
- ``ConfigError`` is raised while building ``Scraps``, before any page opens
- ``ContractViolation`` aborts the run
- Navigation / DOM failures are fatal for that URL only: logged, recorded
  in ``CrawlResult.errors``, remaining ops for the URL dropped
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from playwright.async_api import Error as PlaywrightError
from soupsieve import SelectorSyntaxError

from .config import ScrapsConfig, split_destination
from .errors import ContractViolation, NavigationError
from .extractor import Extractor
from .follow import CrawlState, LinkFollower, create_initial_ops
from .hooks import CrawlHooks
from .monitor import CrawlMonitor
from .pool import PageBackend, PagePool, PageWorker, create_backend
from .queue import Operation, OperationQueue
from .storage import FileStorage, Storage

logger = logging.getLogger(__name__)


@dataclass
class CrawlResult:
    """Everything one run produced."""
    entities: List[Dict[str, Any]] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)


class Scraps:
    """
    Configuration-driven crawler and extractor.

    Usage::

        scraps = Scraps(load_config("site.json"))
        result = await scraps.start()

        # Or from sync code:
        result = scraps.run()
    """

    def __init__(
        self,
        config: Union[ScrapsConfig, Dict[str, Any], List[Dict[str, Any]]],
        hooks: Optional[CrawlHooks] = None,
        storage: Optional[Storage] = None,
        backend: Optional[PageBackend] = None,
    ):
        if not isinstance(config, ScrapsConfig):
            config = ScrapsConfig.from_dict(config)
        self.config = config
        self.settings = config.settings
        self.hooks = hooks or CrawlHooks()
        self.storage = storage or FileStorage(self.settings)
        self.backend = backend or create_backend(self.settings)

        self.operations: OperationQueue[Operation] = OperationQueue()
        self.state = CrawlState()
        self.monitor = CrawlMonitor()
        self.pool = PagePool(self.backend, self.settings.max_parallel_pages)
        self.follower = LinkFollower(self.operations, self.state, self.hooks, self.monitor)

        self._result = CrawlResult()
        self._results_lock = asyncio.Lock()
        self._stop_requested = False

    def stop(self) -> None:
        """Request graceful stop: no new tick is dispatched."""
        self._stop_requested = True
        logger.info("Stop requested")

    # ------------------------------------------------------------------
    # Sync entry point
    # ------------------------------------------------------------------

    def run(self) -> CrawlResult:
        """Run the async crawl from synchronous code."""
        return asyncio.run(self.start())

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def start(self) -> CrawlResult:
        """Queue the entry points, then process ticks until the queue drains."""
        self._result = CrawlResult()
        self._stop_requested = False

        logger.info("=" * 65)
        logger.info("SCRAPS RUN STARTED")
        for entry in self.config.entry_points:
            logger.info(f"Entry point: {entry.url}")
        logger.info(f"Parallel pages: {self.settings.max_parallel_pages}")
        logger.info("=" * 65)
        self.settings.log_summary()

        for entry in self.config.entry_points:
            await self.state.mark_seen(entry.url)
            create_initial_ops(entry, self.operations)

        self.monitor.start()
        stop_reason = "completed"
        try:
            await self.pool.start()
            while self.operations.get_keys_count():
                if self._stop_requested:
                    stop_reason = "stop requested"
                    break
                await self.tick()
        except ContractViolation:
            stop_reason = "contract violation"
            raise
        finally:
            await self.pool.close()
            self.monitor.stop(stop_reason)
            metrics = await self.monitor.snapshot()
            self._result.stats = metrics.to_dict()
            logger.info("\n" + self.monitor.format_summary(metrics))

        return self._result

    async def tick(self) -> None:
        """Process up to ``maxParallelPages`` distinct URLs concurrently."""
        urls = []
        for j in range(self.settings.max_parallel_pages):
            url = self.operations.get_next_key(j)
            if url and url not in urls:
                urls.append(url)
        if not urls:
            return
        logger.debug(f"[QUEUE] Tick: {len(urls)} URL(s), {len(self.operations)} op(s) pending")
        tasks = [asyncio.ensure_future(self.process(url)) for url in urls]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # siblings must be done before the pool closes
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def process(self, url: str) -> None:
        """Open ``url`` and drain every operation queued for it."""
        await self._delay()
        start = time.monotonic()
        try:
            async with self.pool.acquire(url) as worker:
                await self.monitor.record_page((time.monotonic() - start) * 1000)
                while self.operations.get_items_count(url):
                    op = self.operations.get_item(url)
                    if op is None:
                        return
                    await self.monitor.record_op(op.kind)
                    if op.is_crawl:
                        await self.follower.crawl(worker.dom(), op)
                    elif op.is_extract:
                        if op.cache:
                            await self.cache(url, worker)
                        await self.extract(url, worker, op)
        except (NavigationError, PlaywrightError, SelectorSyntaxError, OSError) as e:
            await self._fail(url, e)

    async def _delay(self) -> None:
        bounds = self.settings.crawl_delay
        if bounds:
            await asyncio.sleep(random.uniform(bounds[0], bounds[1]) / 1000)

    async def _fail(self, url: str, error: Exception) -> None:
        dropped = 0
        while self.operations.get_item(url) is not None:
            dropped += 1
        logger.error(f"[FAILED] {url}: {error} ({dropped} pending op(s) dropped)")
        await self.monitor.record_failure()
        async with self._results_lock:
            self._result.errors.append({
                'url': url,
                'error': str(error),
                'dropped_ops': dropped,
            })

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def cache(self, url: str, worker: PageWorker) -> None:
        """Save the page markup (and a screenshot) before extraction."""
        html = await worker.content()
        await self.storage.persist_page_markup(url, html)
        if self.settings.cache_with_screenshot:
            await self.storage.persist_screenshot(url, worker)

    async def extract(self, url: str, worker: PageWorker, op: Operation) -> Dict[str, Any]:
        started = time.monotonic()
        extractor = Extractor.for_destination(
            worker.dom(), op.destination, self.config, self.hooks, op.extract
        )
        entity = await extractor.run()

        entity_type, bundle = split_destination(op.destination)
        context = {'url': url, 'entity_type': entity_type, 'bundle': bundle, 'op': op}
        entity = await self.hooks.alter_entity(entity, context)

        stored = await self.storage.persist_entity(entity, entity_type, bundle, url)
        await self.monitor.record_entity((time.monotonic() - started) * 1000, stored is not None)
        logger.info(f"[EXTRACT] {op.destination} entity from {url} ({len(entity)} field(s))")

        async with self._results_lock:
            self._result.entities.append({
                'url': url,
                'entity_type': entity_type,
                'bundle': bundle,
                'entity': entity,
            })
        return entity

    # ------------------------------------------------------------------
    # Export helpers
    # ------------------------------------------------------------------

    def export_json(self, result: CrawlResult, filepath: str) -> str:
        """Export a run's entities, stats and errors to one JSON file."""
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            'stats': result.stats,
            'entities': result.entities,
            'errors': result.errors,
        }
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        return str(path.absolute())
