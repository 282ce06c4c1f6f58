"""
Tests for follow.py: link discovery, crawl limits, recursion and the seen set.
"""

import logging

from scraps.config import CrawlRule, EntryPoint, ExtractionConfig
from scraps.dom import SoupDom
from scraps.follow import CrawlState, LinkFollower, create_initial_ops
from scraps.hooks import CrawlHooks
from scraps.monitor import CrawlMonitor
from scraps.queue import CRAWL, EXTRACT, Operation, OperationQueue

LISTING = """
<html><body>
  <ul class="articles">
    <li><a href="/blog/one">One</a></li>
    <li><a href="/blog/two">Two</a></li>
    <li><a href="/blog/three#comments">Three</a></li>
    <li><a href="https://example.com/blog/four">Four</a></li>
    <li><a href="/blog/five/">Five</a></li>
  </ul>
  <div class="pager">
    <a href="/blog?page=2">Next</a>
    <a href="mailto:editor@example.com">Contact</a>
  </div>
</body></html>
"""

BASE = "https://example.com/blog"


def _listing():
    return SoupDom(LISTING, url=BASE)


def _crawl_op(rule, entry=None):
    entry = entry or EntryPoint(url=BASE, follow=(rule,))
    return Operation(kind=CRAWL, rule=rule, destination=rule.to, entry=entry)


# ====================================================================
# Link discovery
# ====================================================================

class TestLinks:

    async def test_links_are_absolute_and_normalized(self):
        follower = LinkFollower(OperationQueue(), CrawlState())
        urls = await follower.links(_listing(), ".articles a")
        assert urls == [
            "https://example.com/blog/one",
            "https://example.com/blog/two",
            "https://example.com/blog/three",
            "https://example.com/blog/four",
            "https://example.com/blog/five/",
        ]

    async def test_non_http_links_are_dropped(self):
        follower = LinkFollower(OperationQueue(), CrawlState())
        assert await follower.links(_listing(), ".pager a") == ["https://example.com/blog?page=2"]

    async def test_trailing_slash_is_kept(self):
        follower = LinkFollower(OperationQueue(), CrawlState())
        dom = SoupDom('<a href="/docs/">Docs</a><a href="/docs">Docs page</a>', url=BASE)
        assert await follower.links(dom, "a") == [
            "https://example.com/docs/",
            "https://example.com/docs",
        ]


# ====================================================================
# Crawl operations
# ====================================================================

class TestCrawl:

    async def test_each_link_gets_an_extract_operation(self):
        queue = OperationQueue()
        follower = LinkFollower(queue, CrawlState())
        rule = CrawlRule(selector=".articles a", to="content/blog")
        assert await follower.crawl(_listing(), _crawl_op(rule)) == 5
        assert queue.get_keys_count() == 5
        op = queue.get_item("https://example.com/blog/one")
        assert op.kind == EXTRACT
        assert op.destination == "content/blog"

    async def test_zero_limit_means_unlimited(self):
        queue = OperationQueue()
        follower = LinkFollower(queue, CrawlState())
        rule = CrawlRule.from_dict({"selector": ".articles a", "to": "content/blog", "maxPagesToCrawl": 0})
        assert await follower.crawl(_listing(), _crawl_op(rule)) == 5

    async def test_crawl_limit(self, caplog):
        """maxPagesToCrawl=2 over 5 links queues 2 and logs 3 limit skips."""
        queue = OperationQueue()
        monitor = CrawlMonitor()
        follower = LinkFollower(queue, CrawlState(), monitor=monitor)
        rule = CrawlRule(selector=".articles a", to="content/blog", max_pages_to_crawl=2)

        with caplog.at_level(logging.INFO, logger="scraps.follow"):
            queued = await follower.crawl(_listing(), _crawl_op(rule))

        assert queued == 2
        assert queue.get_keys() == ["https://example.com/blog/one", "https://example.com/blog/two"]
        limit_lines = [r for r in caplog.records if "[LIMIT]" in r.getMessage()]
        assert len(limit_lines) == 3
        assert "content/blog::.articles a" in limit_lines[0].getMessage()
        assert (await monitor.snapshot()).limit_skips == 3

    async def test_limit_is_shared_across_pages(self):
        """The counter is per rule for the whole run, not per page."""
        queue = OperationQueue()
        follower = LinkFollower(queue, CrawlState())
        rule = CrawlRule(selector="a", to="content/blog", max_pages_to_crawl=3)
        first = SoupDom('<a href="/p/1">1</a><a href="/p/2">2</a>', url=BASE)
        second = SoupDom('<a href="/p/3">3</a><a href="/p/4">4</a>', url=BASE)
        assert await follower.crawl(first, _crawl_op(rule)) == 2
        assert await follower.crawl(second, _crawl_op(rule)) == 1

    async def test_seen_urls_are_not_queued_twice(self):
        queue = OperationQueue()
        state = CrawlState()
        await state.mark_seen("https://example.com/blog/two")
        follower = LinkFollower(queue, state)
        rule = CrawlRule(selector=".articles a", to="content/blog")
        assert await follower.crawl(_listing(), _crawl_op(rule)) == 4
        assert await follower.crawl(_listing(), _crawl_op(rule)) == 0
        assert "https://example.com/blog/two" not in queue

    async def test_seen_urls_do_not_count_against_limit(self):
        state = CrawlState()
        rule = CrawlRule(to="content/blog", max_pages_to_crawl=1)
        assert await state.count("https://example.com/x", rule) == 1
        assert await state.count("https://example.com/x", rule) is None
        assert state.limits[rule.limit_id] == 1

    async def test_recursion_recreates_entry_point_ops(self):
        """A rule pointing at 'start' re-runs the entry point on the new URL."""
        queue = OperationQueue()
        articles = CrawlRule(selector=".articles a", to="content/blog")
        pager = CrawlRule(selector=".pager a", to="start")
        entry = EntryPoint(url=BASE, follow=(articles, pager))
        follower = LinkFollower(queue, CrawlState())

        assert await follower.crawl(_listing(), _crawl_op(pager, entry)) == 2
        next_page = "https://example.com/blog?page=2"
        ops = [queue.get_item(next_page), queue.get_item(next_page)]
        assert [op.rule for op in ops] == [articles, pager]
        assert all(op.is_crawl for op in ops)
        assert ops[0].entry.url == next_page

    async def test_should_extract_veto(self, caplog):
        queue = OperationQueue()
        hooks = CrawlHooks(should_extract=lambda url, op: not url.endswith("/two"))
        follower = LinkFollower(queue, CrawlState(), hooks=hooks)
        rule = CrawlRule(selector=".articles a", to="content/blog")
        with caplog.at_level(logging.INFO, logger="scraps.follow"):
            assert await follower.crawl(_listing(), _crawl_op(rule)) == 4
        assert "https://example.com/blog/two" not in queue
        assert any("vetoed" in r.getMessage() for r in caplog.records)

    async def test_no_links(self):
        follower = LinkFollower(OperationQueue(), CrawlState())
        rule = CrawlRule(selector=".nothing a", to="content/blog")
        assert await follower.crawl(_listing(), _crawl_op(rule)) == 0


# ====================================================================
# Entry points
# ====================================================================

class TestInitialOps:

    def test_follow_rules_and_inline_extract(self):
        title = ExtractionConfig.from_dict({"selector": "h1", "extract": "text", "as": "entity.title"})
        entry = EntryPoint(
            url=BASE,
            follow=(CrawlRule(selector="a", to="content/page"),),
            extract=(title,),
            destination="content/home",
        )
        queue = OperationQueue()
        assert create_initial_ops(entry, queue) == 2
        crawl_op, extract_op = queue.get_item(BASE), queue.get_item(BASE)
        assert crawl_op.is_crawl and crawl_op.destination == "content/page"
        assert extract_op.is_extract and extract_op.extract == (title,)
        assert extract_op.destination == "content/home"
