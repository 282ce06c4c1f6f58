"""
Run Settings
============
Single source of truth for every scraps setting and its default.

The JSON config's ``settings`` object uses camelCase keys (``maxParallelPages``,
``crawlDelay`` ...). ``ScrapsSettings.from_dict()`` maps them onto the
snake_case fields below; unknown keys are logged and ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple

from .errors import ConfigError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical defaults: the ONLY place these numbers live
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "max_parallel_pages": 4,
    "crawl_delay": (500, 2500),          # [min, max] politeness jitter (ms)
    "max_extraction_nesting_depth": 9,
    "plain_text_remove_breaks": True,
    "plain_text_separator": " ",
    "minify_extracted_html": True,
    "beautify_html": True,               # cached page markup only
    "cache_with_screenshot": True,
    "cache_skip_existing": True,
    "output_skip_existing": True,
    "page_width": 1280,
    "page_height": 800,
    "page_timeout": 30000,               # navigation timeout (ms)
    "headless": True,
    "backend": "playwright",             # "playwright" | "static"
    "cache_dir": "data/cache",
    "output_dir": "data/output",
    "user_agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    ),
}

# camelCase config key -> dataclass field. The misspelled "Exisiting" keys are
# the historical names; the correctly spelled ones are accepted too.
_KEY_MAP = {
    "maxParallelPages": "max_parallel_pages",
    "crawlDelay": "crawl_delay",
    "maxExtractionNestingDepth": "max_extraction_nesting_depth",
    "plainTextRemoveBreaks": "plain_text_remove_breaks",
    "plainTextSeparator": "plain_text_separator",
    "minifyExtractedHtml": "minify_extracted_html",
    "beautifyHtml": "beautify_html",
    "cacheWithScreenshot": "cache_with_screenshot",
    "cacheSkipExisiting": "cache_skip_existing",
    "cacheSkipExisting": "cache_skip_existing",
    "outputSkipExisiting": "output_skip_existing",
    "outputSkipExisting": "output_skip_existing",
    "extractionContainerTypes": "extraction_container_types",
    "pageW": "page_width",
    "pageH": "page_height",
    "pageTimeout": "page_timeout",
    "headless": "headless",
    "backend": "backend",
    "cacheDir": "cache_dir",
    "outputDir": "output_dir",
    "userAgent": "user_agent",
}

_BACKENDS = ("playwright", "static")


@dataclass
class ScrapsSettings:
    """
    Settings consumed by the crawl loop, the page pool and the extractor.

    Populate via:
      - ``ScrapsSettings()``                      → all defaults
      - ``ScrapsSettings(max_parallel_pages=2)``  → override one value
      - ``ScrapsSettings.from_dict(cfg["settings"])`` → from the JSON config
    """

    # ---- Scheduling ----
    max_parallel_pages: int = _DEFAULTS["max_parallel_pages"]
    crawl_delay: Tuple[int, int] = _DEFAULTS["crawl_delay"]

    # ---- Extraction ----
    max_extraction_nesting_depth: int = _DEFAULTS["max_extraction_nesting_depth"]
    plain_text_remove_breaks: bool = _DEFAULTS["plain_text_remove_breaks"]
    plain_text_separator: str = _DEFAULTS["plain_text_separator"]
    minify_extracted_html: bool = _DEFAULTS["minify_extracted_html"]
    extraction_container_types: List[str] = field(default_factory=lambda: ["components"])

    # ---- Cache / output ----
    beautify_html: bool = _DEFAULTS["beautify_html"]
    cache_with_screenshot: bool = _DEFAULTS["cache_with_screenshot"]
    cache_skip_existing: bool = _DEFAULTS["cache_skip_existing"]
    output_skip_existing: bool = _DEFAULTS["output_skip_existing"]
    cache_dir: str = _DEFAULTS["cache_dir"]
    output_dir: str = _DEFAULTS["output_dir"]

    # ---- Browser ----
    page_width: int = _DEFAULTS["page_width"]
    page_height: int = _DEFAULTS["page_height"]
    page_timeout: int = _DEFAULTS["page_timeout"]
    headless: bool = _DEFAULTS["headless"]
    backend: str = _DEFAULTS["backend"]
    user_agent: str = _DEFAULTS["user_agent"]

    def __post_init__(self):
        if self.max_parallel_pages < 1:
            raise ConfigError(
                f"maxParallelPages must be at least 1 (got {self.max_parallel_pages})"
            )
        if self.crawl_delay:
            if len(self.crawl_delay) != 2 or self.crawl_delay[0] > self.crawl_delay[1]:
                raise ConfigError(f"crawlDelay must be [min, max] (got {self.crawl_delay!r})")
            self.crawl_delay = (self.crawl_delay[0], self.crawl_delay[1])
        if self.backend not in _BACKENDS:
            raise ConfigError(f"Unknown backend {self.backend!r} (expected one of {_BACKENDS})")

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ScrapsSettings":
        """Build settings from the config's camelCase ``settings`` object."""
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            name = _KEY_MAP.get(key, key)
            if name not in known:
                logger.warning(f"[SETTINGS] Ignoring unknown setting '{key}'")
                continue
            if name == "crawl_delay" and value:
                value = tuple(value)
            kwargs[name] = value
        return cls(**kwargs)

    def is_container_type(self, kind: Any) -> bool:
        return isinstance(kind, str) and kind in self.extraction_container_types

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 60)
        logger.info("SCRAPS SETTINGS")
        logger.info("=" * 60)
        logger.info(f"  Backend:          {self.backend} (headless={self.headless})")
        logger.info(f"  Parallel Pages:   {self.max_parallel_pages}")
        if self.crawl_delay:
            logger.info(f"  Crawl Delay:      {self.crawl_delay[0]}-{self.crawl_delay[1]} ms")
        logger.info(f"  Page Timeout:     {self.page_timeout} ms")
        logger.info(f"  Nesting Depth:    {self.max_extraction_nesting_depth}")
        logger.info(f"  Container Types:  {', '.join(self.extraction_container_types)}")
        logger.info(f"  Cache Dir:        {self.cache_dir}")
        logger.info(f"  Output Dir:       {self.output_dir}")
        logger.info("=" * 60)
