"""
Crawl Monitor
=============
Counters for one scraps run.

Tracks:
- Pages opened / failed
- Operations run (crawl, extract)
- Links discovered and links dropped by crawl limits
- Entities extracted and stored
- Per-page timing (navigate, extract)

Async-safe: all mutators use one asyncio.Lock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Dict

logger = logging.getLogger(__name__)


@dataclass
class CrawlMetrics:
    """Snapshot of all run metrics at a point in time."""
    pages_opened: int = 0
    pages_failed: int = 0
    crawl_ops: int = 0
    extract_ops: int = 0
    links_discovered: int = 0
    limit_skips: int = 0
    entities_extracted: int = 0
    entities_stored: int = 0
    avg_navigate_ms: float = 0.0
    avg_extract_ms: float = 0.0
    elapsed_sec: float = 0.0
    stop_reason: str = ""

    def to_dict(self) -> Dict:
        return asdict(self)


class CrawlMonitor:
    """
    Usage::

        monitor = CrawlMonitor()
        monitor.start()
        await monitor.record_page(navigate_ms=120.0)
        ...
        metrics = await monitor.snapshot()
        logger.info(monitor.format_summary(metrics))
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._start_time = 0.0
        self._pages_opened = 0
        self._pages_failed = 0
        self._crawl_ops = 0
        self._extract_ops = 0
        self._links = 0
        self._limit_skips = 0
        self._entities = 0
        self._stored = 0
        self._navigate_ms = 0.0
        self._extract_ms = 0.0
        self._stop_reason = ""

    def start(self) -> None:
        self._start_time = time.monotonic()

    def stop(self, reason: str = "completed") -> None:
        self._stop_reason = reason

    async def record_page(self, navigate_ms: float) -> None:
        async with self._lock:
            self._pages_opened += 1
            self._navigate_ms += navigate_ms

    async def record_failure(self) -> None:
        async with self._lock:
            self._pages_failed += 1

    async def record_op(self, kind: str) -> None:
        async with self._lock:
            if kind == "crawl":
                self._crawl_ops += 1
            else:
                self._extract_ops += 1

    async def record_links(self, count: int) -> None:
        async with self._lock:
            self._links += count

    async def record_limit_skip(self) -> None:
        async with self._lock:
            self._limit_skips += 1

    async def record_entity(self, extract_ms: float, stored: bool) -> None:
        async with self._lock:
            self._entities += 1
            self._extract_ms += extract_ms
            if stored:
                self._stored += 1

    async def snapshot(self) -> CrawlMetrics:
        """Take a consistent snapshot of all metrics."""
        async with self._lock:
            elapsed = time.monotonic() - self._start_time if self._start_time else 0.0
            avg_nav = self._navigate_ms / self._pages_opened if self._pages_opened else 0.0
            avg_ext = self._extract_ms / self._entities if self._entities else 0.0
            return CrawlMetrics(
                pages_opened=self._pages_opened,
                pages_failed=self._pages_failed,
                crawl_ops=self._crawl_ops,
                extract_ops=self._extract_ops,
                links_discovered=self._links,
                limit_skips=self._limit_skips,
                entities_extracted=self._entities,
                entities_stored=self._stored,
                avg_navigate_ms=round(avg_nav, 1),
                avg_extract_ms=round(avg_ext, 1),
                elapsed_sec=round(elapsed, 2),
                stop_reason=self._stop_reason,
            )

    def format_summary(self, metrics: CrawlMetrics) -> str:
        """Format a human-readable summary string."""
        lines = [
            "=" * 65,
            "  SCRAPS RUN SUMMARY",
            "=" * 65,
            f"  Pages opened:        {metrics.pages_opened}",
            f"  Pages failed:        {metrics.pages_failed}",
            f"  Crawl operations:    {metrics.crawl_ops}",
            f"  Extract operations:  {metrics.extract_ops}",
            "-" * 65,
            f"  Links discovered:    {metrics.links_discovered}",
            f"  Limit skips:         {metrics.limit_skips}",
            f"  Entities extracted:  {metrics.entities_extracted}",
            f"  Entities stored:     {metrics.entities_stored}",
            "-" * 65,
            f"  Avg navigate time:   {metrics.avg_navigate_ms:.0f} ms",
            f"  Avg extract time:    {metrics.avg_extract_ms:.0f} ms",
            f"  Elapsed time:        {metrics.elapsed_sec:.1f} s",
            f"  Stop reason:         {metrics.stop_reason}",
            "=" * 65,
        ]
        return "\n".join(lines)
