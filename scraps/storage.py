"""
Storage
=======
Where cached pages and extracted entities go.

``Storage`` is the interface injected into ``Scraps``; ``FileStorage`` is
the default implementation writing under ``cacheDir`` / ``outputDir``:

    data/cache/<host>/<slugified/path>[.<query-slug>][.<fragment>].html
    data/cache/<host>/<slugified/path>.screenshot-1280x800.png
    data/output/<host>/<entity-type>/<bundle>/<slugified/path>.json

The site root maps to ``/index``.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

from slugify import slugify

from .settings import ScrapsSettings
from .utils import beautify_html

logger = logging.getLogger(__name__)


def url_to_file_path(
    directory: Union[str, Path],
    url: str,
    suffix: str = ".json",
    no_hostname: bool = False,
) -> Path:
    """
    Convert a crawled URL to a file path.

    ``url_to_file_path("data/cache", "https://www.domain.com/test/Page.html", ".html")``
    gives ``data/cache/www.domain.com/test/page-html.html``.
    """
    parsed = urlparse(url)
    path = parsed.path
    if not path or path == "/":
        path = "/index"

    parts = [slugify(part) for part in path.strip("/").split("/")]
    file_path = "/".join(p for p in parts if p) or "index"

    extras = ""
    if parsed.query:
        extras += "." + slugify(parsed.query)
    if parsed.fragment:
        extras += "." + parsed.fragment

    if no_hostname:
        return Path(directory) / f"{file_path}{extras}{suffix}"
    return Path(directory) / (parsed.hostname or "unknown-host") / f"{file_path}{extras}{suffix}"


def entity_to_file_path(
    directory: Union[str, Path],
    entity_type: str,
    bundle: Optional[str] = None,
    url: Optional[str] = None,
    domain: Optional[str] = None,
    title: Optional[str] = None,
) -> Path:
    """
    Convert an entity type (+ bundle) to a file path.

    With a URL the path mirrors it (``page/deeper/page-slug.json``); without
    one, ``domain`` and ``title`` are required (``menu/main.json``).
    """
    if not domain and not url:
        raise ValueError("entity_to_file_path() requires a domain when no URL is provided")
    if not domain:
        domain = urlparse(url).hostname

    prefix = Path(directory) / domain / slugify(entity_type)
    if bundle:
        prefix = prefix / slugify(bundle)

    if not url:
        if not title:
            raise ValueError("entity_to_file_path() requires a title when no URL is provided")
        return prefix / f"{slugify(title)}.json"

    return prefix / url_to_file_path("", url, ".json", no_hostname=True)


class Storage(ABC):
    """Persistence for page caches and extracted entities."""

    @abstractmethod
    async def persist_page_markup(self, url: str, html: str) -> Optional[Path]: ...

    @abstractmethod
    async def persist_screenshot(self, url: str, page_worker) -> Optional[Path]: ...

    @abstractmethod
    async def persist_entity(
        self, entity: Dict[str, Any], entity_type: str, bundle: Optional[str], url: str
    ) -> Optional[Path]: ...


class FileStorage(Storage):
    """Local file storage. Returns the written path, or None when skipped."""

    def __init__(self, settings: Optional[ScrapsSettings] = None):
        self.settings = settings or ScrapsSettings()
        self.cache_dir = Path(self.settings.cache_dir)
        self.output_dir = Path(self.settings.output_dir)

    @property
    def screenshot_suffix(self) -> str:
        return f".screenshot-{self.settings.page_width}x{self.settings.page_height}.png"

    async def persist_page_markup(self, url: str, html: str) -> Optional[Path]:
        path = url_to_file_path(self.cache_dir, url, ".html")
        if self.settings.cache_skip_existing and path.exists():
            logger.debug(f"[CACHE] Skipping existing {path}")
            return None
        if self.settings.beautify_html:
            html = beautify_html(html)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(html)
        logger.info(f"[CACHE] Markup saved: {path}")
        return path

    async def persist_screenshot(self, url: str, page_worker) -> Optional[Path]:
        path = url_to_file_path(self.cache_dir, url, self.screenshot_suffix)
        if self.settings.cache_skip_existing and path.exists():
            logger.debug(f"[CACHE] Skipping existing {path}")
            return None
        path.parent.mkdir(parents=True, exist_ok=True)
        if not await page_worker.screenshot(path):
            logger.debug(f"[CACHE] Backend cannot take screenshots, skipping {url}")
            return None
        logger.info(f"[CACHE] Screenshot saved: {path}")
        return path

    async def persist_entity(
        self, entity: Dict[str, Any], entity_type: str, bundle: Optional[str], url: str
    ) -> Optional[Path]:
        path = entity_to_file_path(self.output_dir, entity_type, bundle, url=url)
        if self.settings.output_skip_existing and path.exists():
            logger.debug(f"[OUTPUT] Skipping existing {path}")
            return None
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(entity, f, indent=2, ensure_ascii=False)
        logger.info(f"[OUTPUT] Entity saved: {path}")
        return path


class MemoryStorage(Storage):
    """Keeps everything in memory (tests, library use without disk output)."""

    def __init__(self):
        self.pages: Dict[str, str] = {}
        self.screenshots: List[str] = []
        self.entities: Dict[str, Dict[str, Any]] = {}

    async def persist_page_markup(self, url: str, html: str) -> Optional[Path]:
        self.pages[url] = html
        return None

    async def persist_screenshot(self, url: str, page_worker) -> Optional[Path]:
        self.screenshots.append(url)
        return None

    async def persist_entity(
        self, entity: Dict[str, Any], entity_type: str, bundle: Optional[str], url: str
    ) -> Optional[Path]:
        self.entities[url] = {"entity_type": entity_type, "bundle": bundle, "entity": entity}
        return None
