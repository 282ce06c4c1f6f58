"""
Shared fixtures: HTML fixture loading and an in-memory page backend.

``FakeBackend`` serves pages from a ``{url: html}`` dict through ``SoupDom``,
so the whole crawl loop runs without a browser or network.
"""

from pathlib import Path

import pytest

from scraps.config import ScrapsConfig
from scraps.dom import SoupDom
from scraps.errors import NavigationError
from scraps.pool import PageBackend, PageWorker

FIXTURES = Path(__file__).parent / "fixtures"


def read_fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


class FakePageWorker(PageWorker):
    def __init__(self, slot, backend):
        super().__init__(slot)
        self.backend = backend
        self._dom = None

    async def open(self, url):
        html = self.backend.site.get(url)
        if html is None:
            raise NavigationError(url, "HTTP 404")
        self._dom = SoupDom(html, url=url)
        self.url = url
        self.backend.opened.append(url)

    def dom(self):
        return self._dom


class FakeBackend(PageBackend):
    def __init__(self, site):
        self.site = dict(site)
        self.opened = []
        self.pages_created = 0
        self.started = False
        self.closed = False

    async def start(self):
        self.started = True

    async def new_page(self, slot):
        self.pages_created += 1
        return FakePageWorker(slot, self)

    async def close(self):
        self.closed = True


@pytest.fixture
def fixture_html():
    return read_fixture


@pytest.fixture
def soup_dom():
    def _make(name, url="https://example.com/"):
        return SoupDom(read_fixture(name), url=url)
    return _make


@pytest.fixture
def fake_backend():
    return FakeBackend


@pytest.fixture
def make_config():
    """ScrapsConfig from a dict, with politeness delays disabled."""
    def _make(data):
        data = dict(data)
        settings = dict(data.get("settings") or {})
        settings.setdefault("crawlDelay", [])
        data["settings"] = settings
        return ScrapsConfig.from_dict(data)
    return _make
