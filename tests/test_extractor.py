"""
Tests for extractor.py: building entities from pages.

Covers:
  1. Field extraction kinds (text, text_single, markup, attribute, element)
  2. Components inside container fields, nesting and the depth limit
  3. Multi-field groups and per-item fallbacks
  4. Processing order, marker-class deduplication and idempotence
"""

import json

import pytest

from scraps.config import ExtractKind, ExtractionConfig
from scraps.css import specificity
from scraps.dom import SoupDom
from scraps.errors import ContractViolation
from scraps.extractor import Extractor, extract_entity
from scraps.hooks import CrawlHooks

START = [{"url": "https://example.com/", "follow": [{"to": "content/page"}]}]


def _data(page_configs, components=None, settings=None):
    data = {"start": START, "content/page": page_configs}
    if components is not None:
        data["components"] = components
    if settings:
        data["settings"] = settings
    return data


# ====================================================================
# 1. Field extraction
# ====================================================================

class TestFieldExtraction:
    """Page-level fields written straight into the entity."""

    async def test_text_and_markup(self, soup_dom, make_config):
        config = make_config(_data([
            {"selector": "head title", "extract": "text", "as": "entity.test_string"},
            {"selector": ".blog-footer", "extract": "markup", "as": "entity.test_markup"},
        ]))
        entity = await extract_entity(soup_dom("blog.html"), "content/page", config)
        assert entity["test_string"] == "Blog Template · Bootstrap"
        assert entity["test_markup"] == (
            '<p>Blog template built for <a href="https://getbootstrap.com/">Bootstrap</a> '
            'by <a href="https://twitter.com/mdo">@mdo</a>.</p>'
            '<p><a href="#">Back to top</a></p>'
        )

    async def test_text_strips_indentation_and_breaks(self, soup_dom, make_config):
        config = make_config(_data([
            {"selector": ".blog-footer", "extract": "text", "as": "entity.footer"},
        ]))
        entity = await extract_entity(soup_dom("blog.html"), "content/page", config)
        assert entity["footer"] == "Blog template built for Bootstrap by @mdo. Back to top"

    async def test_text_keeps_breaks_when_configured(self, soup_dom, make_config):
        config = make_config(_data(
            [{"selector": ".blog-footer", "extract": "text", "as": "entity.footer"}],
            settings={"plainTextRemoveBreaks": False},
        ))
        entity = await extract_entity(soup_dom("blog.html"), "content/page", config)
        assert entity["footer"] == "Blog template built for Bootstrap by @mdo.\nBack to top"

    async def test_several_matches_give_a_list(self, soup_dom, make_config):
        config = make_config(_data([
            {"selector": ".nav a", "extract": "text", "as": "entity.sections"},
        ]))
        entity = await extract_entity(soup_dom("blog.html"), "content/page", config)
        assert entity["sections"] == ["World", "Technology"]

    async def test_text_single_joins_matches(self, soup_dom, make_config):
        config = make_config(_data(
            [{"selector": ".nav a", "extract": "text_single", "as": "entity.sections"}],
            settings={"plainTextSeparator": " | "},
        ))
        entity = await extract_entity(soup_dom("blog.html"), "content/page", config)
        assert entity["sections"] == "World | Technology"

    async def test_attribute(self, soup_dom, make_config):
        config = make_config(_data([
            {"selector": ".nav a", "extract": "attribute", "attribute": "href", "as": "entity.links"},
            {"selector": ".blog-header-logo", "extract": "attribute", "attribute": "href", "as": "entity.home"},
        ]))
        entity = await extract_entity(soup_dom("blog.html"), "content/page", config)
        assert entity["links"] == ["/world", "/technology"]
        assert entity["home"] == "/"

    async def test_missing_selector_leaves_field_out(self, soup_dom, make_config):
        config = make_config(_data([
            {"selector": ".does-not-exist", "extract": "text", "as": "entity.nothing"},
        ]))
        entity = await extract_entity(soup_dom("blog.html"), "content/page", config)
        assert entity == {}

    async def test_fallback_when_selector_missing(self, soup_dom, make_config):
        config = make_config(_data([
            {
                "selector": "h1.page-title",
                "extract": "text",
                "as": "entity.title",
                "fallback": {"selector": ".blog-post-title"},
            },
        ]))
        entity = await extract_entity(soup_dom("blog.html"), "content/page", config)
        assert entity["title"] == "Sample blog post"

    async def test_markup_without_minify(self, soup_dom, make_config):
        config = make_config(_data(
            [{"selector": ".blog-post-meta", "extract": "markup", "as": "entity.meta"}],
            settings={"minifyExtractedHtml": False},
        ))
        entity = await extract_entity(soup_dom("blog.html"), "content/page", config)
        assert entity["meta"] == 'January 1, 2014 by <a href="#">Mark</a>'

    async def test_inline_configs_take_precedence(self, soup_dom, make_config):
        config = make_config(_data([
            {"selector": "head title", "extract": "text", "as": "entity.title"},
        ]))
        inline = (ExtractionConfig.from_dict({"selector": "h2", "extract": "text", "as": "entity.heading"}),)
        entity = await extract_entity(soup_dom("blog.html"), "content/page", config, extract=inline)
        assert entity == {"heading": "Sample blog post"}


class TestCustomExtractors:
    """'element' configs delegate to the registered custom extractor."""

    async def test_custom_extractor(self, soup_dom, make_config):
        seen = []

        async def upper(dom, step):
            seen.append(step.selector)
            return await dom.evaluate(step.selector, lambda els: [e.get_text().upper() for e in els])

        config = make_config(_data([
            {"selector": ".btn", "extract": "element", "emit": "upper", "as": "entity.label"},
        ]))
        hooks = CrawlHooks(custom_extractors={"upper": upper})
        entity = await extract_entity(soup_dom("components.html"), "content/page", config, hooks)
        assert entity["label"] == "LARGE BUTTON"
        assert ":not(.scraps-x-" in seen[0]

    async def test_sync_custom_extractor(self, soup_dom, make_config):
        config = make_config(_data([
            {"selector": ".btn", "extract": "element", "emit": "count", "as": "entity.buttons"},
        ]))
        hooks = CrawlHooks()
        hooks.register_extractor("count", lambda dom, step: len(dom.select(step.selector)))
        entity = await extract_entity(soup_dom("components.html"), "content/page", config, hooks)
        assert entity["buttons"] == 1

    async def test_unregistered_extractor_is_a_contract_violation(self, soup_dom, make_config):
        config = make_config(_data([
            {"selector": ".btn", "extract": "element", "emit": "missing", "as": "entity.label"},
        ]))
        with pytest.raises(ContractViolation) as exc_info:
            await extract_entity(soup_dom("components.html"), "content/page", config)
        assert exc_info.value.emit == "missing"
        assert "No custom extractor registered for 'missing'" in str(exc_info.value)


# ====================================================================
# 2. Components
# ====================================================================

CARD = {
    "selector": ".card",
    "extract": [{"selector": "h3", "extract": "text", "as": "component.Card.title"}],
    "as": "component.Card",
}
TABS = {
    "selector": ".tabs",
    "extract": [{"selector": ".pane", "extract": "components", "as": "component.Tabs.items[].content"}],
    "as": "component.Tabs",
}
MAIN_CONTENT = {"selector": "main", "extract": "components", "as": "entity.content"}


class TestComponents:

    async def test_single_component(self, soup_dom, make_config):
        config = make_config(_data(
            [{"selector": "body > .container", "extract": "components", "as": "entity.content"}],
            components=[
                {"selector": ".bs-component > .btn-lg", "extract": "text", "as": "component.Button.text"},
            ],
        ))
        entity = await extract_entity(soup_dom("components.html"), "content/page", config)
        assert entity == {"content": [{"c": "Button", "props": {"text": "Large button"}}]}

    async def test_each_match_becomes_a_component(self, make_config):
        dom = SoupDom(
            '<main><button class="btn">One</button><button class="btn">Two</button></main>'
        )
        config = make_config(_data(
            [MAIN_CONTENT],
            components=[{"selector": ".btn", "extract": "text", "as": "component.Button.text"}],
        ))
        entity = await extract_entity(dom, "content/page", config)
        assert entity["content"] == [
            {"c": "Button", "props": {"text": "One"}},
            {"c": "Button", "props": {"text": "Two"}},
        ]

    async def test_nested_components(self, soup_dom, make_config):
        """A card inside the tabs belongs to the tabs only."""
        config = make_config(_data([MAIN_CONTENT], components=[CARD, TABS]))
        entity = await extract_entity(soup_dom("nested.html"), "content/page", config)
        assert entity["content"] == [
            {"c": "Card", "props": {"title": "Card A"}},
            {"c": "Tabs", "props": {"items": [
                {"content": [{"c": "Card", "props": {"title": "Card B"}}]},
            ]}},
        ]

    async def test_nesting_depth_limit(self, soup_dom, make_config):
        """Past the depth limit nested cards are extracted by the outer level."""
        config = make_config(_data(
            [MAIN_CONTENT],
            components=[CARD, TABS],
            settings={"maxExtractionNestingDepth": 1},
        ))
        entity = await extract_entity(soup_dom("nested.html"), "content/page", config)
        assert entity["content"] == [
            {"c": "Card", "props": {"title": "Card A"}},
            {"c": "Card", "props": {"title": "Card B"}},
        ]

    async def test_empty_components_are_not_exported(self, make_config):
        dom = SoupDom('<main><div class="card"><p>no heading</p></div></main>')
        config = make_config(_data([MAIN_CONTENT], components=[CARD]))
        assert await extract_entity(dom, "content/page", config) == {}


# ====================================================================
# 3. Multi-field groups
# ====================================================================

class TestMultiFields:

    async def test_index_aligned_items(self, soup_dom, make_config):
        grid = {
            "selector": ".grid",
            "extract": [
                {"selector": "h3", "extract": "text", "as": "component.Grid.items[].title"},
                {"selector": "img", "extract": "attribute", "attribute": "src",
                 "as": "component.Grid.items[].image"},
            ],
            "as": "component.Grid",
        }
        config = make_config(_data([MAIN_CONTENT], components=[grid]))
        entity = await extract_entity(soup_dom("grid.html"), "content/page", config)
        assert entity["content"] == [{"c": "Grid", "props": {"items": [
            {"title": "First", "image": "/img/first.png"},
            {"title": "Second", "image": "/img/second.png"},
            {"title": "Third"},
        ]}}]

    async def test_fallback_inside_item_scope(self, soup_dom, make_config):
        gallery = {
            "selector": ".gallery",
            "multiFieldScopes": {"items": "figure"},
            "extract": [
                {"selector": "img", "extract": "attribute", "attribute": "src",
                 "as": "component.Gallery.items[].image"},
                {"selector": "figcaption", "extract": "text", "as": "component.Gallery.items[].caption",
                 "fallback": {"selector": ".credit"}},
            ],
            "as": "component.Gallery",
        }
        config = make_config(_data([MAIN_CONTENT], components=[gallery]))
        entity = await extract_entity(soup_dom("gallery.html"), "content/page", config)
        assert entity["content"][0]["props"]["items"] == [
            {"image": "a.jpg", "caption": "Alpha"},
            {"image": "b.jpg", "caption": "Beta"},
            {"image": "c.jpg", "caption": "Gamma credit"},
        ]

    async def test_fallback_by_match_index(self, soup_dom, make_config):
        prices = {
            "selector": ".prices",
            "extract": [
                {"selector": ".name", "extract": "text", "as": "component.Prices.plans[].name"},
                {"selector": ".price", "extract": "text", "as": "component.Prices.plans[].price",
                 "fallback": {"selector": ".old-price"}},
            ],
            "as": "component.Prices",
        }
        config = make_config(_data([MAIN_CONTENT], components=[prices]))
        entity = await extract_entity(soup_dom("gallery.html"), "content/page", config)
        assert entity["content"][0]["props"]["plans"] == [
            {"name": "Basic", "price": "10"},
            {"name": "Pro", "price": "20"},
            {"name": "Team", "price": "40"},
        ]

    async def test_fallback_when_primary_matches_nothing(self, make_config):
        """Every item comes from the fallback when the primary selector is absent."""
        dom = SoupDom('<ul><li class="t">A</li><li class="t">B</li></ul>')
        config = make_config(_data([
            {"selector": ".nope", "extract": "text", "as": "entity.items[].title",
             "fallback": {"selector": ".t"}},
        ]))
        entity = await extract_entity(dom, "content/page", config)
        assert entity == {"items": [{"title": "A"}, {"title": "B"}]}


# ====================================================================
# 4. Ordering, deduplication, idempotence
# ====================================================================

class TestProcessing:

    async def _run_nested(self, soup_dom, make_config):
        config = make_config(_data([MAIN_CONTENT], components=[CARD, TABS]))
        extractor = Extractor.for_destination(soup_dom("nested.html"), "content/page", config)
        entity = await extractor.run()
        return extractor, entity

    async def test_deepest_then_most_specific_first(self, soup_dom, make_config):
        extractor, _ = await self._run_nested(soup_dom, make_config)
        ordered = extractor.ordered_steps()
        assert ordered[0].depth == 2
        assert ordered[-1].kind is ExtractKind.COMPONENTS and ordered[-1].depth == 0
        for a, b in zip(ordered, ordered[1:]):
            assert a.depth >= b.depth
            if a.depth == b.depth:
                assert specificity(a.selector) >= specificity(b.selector)

    async def test_each_element_is_captured_once(self, soup_dom, make_config):
        _, entity = await self._run_nested(soup_dom, make_config)
        dumped = json.dumps(entity)
        assert dumped.count("Card B") == 1
        assert dumped.count("Card A") == 1

    async def test_processed_elements_carry_the_marker(self, soup_dom, make_config):
        extractor, _ = await self._run_nested(soup_dom, make_config)
        marked = extractor.dom.select(f".{extractor.marker}")
        assert {el.name for el in marked} >= {"h3", "main"}
        generated = [
            cls for el in extractor.dom.soup.find_all(class_=True)
            for cls in el["class"] if cls.startswith("scraps-d-")
        ]
        assert len(generated) == len(set(generated)) > 0

    async def test_processing_twice_changes_nothing(self, soup_dom, make_config):
        extractor, entity = await self._run_nested(soup_dom, make_config)
        before = [dict(c.fields) for c in extractor.arena]
        for step in extractor.steps:
            await extractor.process(step)
        assert [dict(c.fields) for c in extractor.arena] == before
        assert all(step.processed for step in extractor.steps)

    async def test_separate_runs_use_separate_markers(self, soup_dom, make_config):
        config = make_config(_data([{"selector": "h3", "extract": "text", "as": "entity.titles"}]))
        dom = soup_dom("nested.html")
        first = await extract_entity(dom, "content/page", config)
        second = await extract_entity(dom, "content/page", config)
        assert first == second == {"titles": ["Card A", "Card B"]}
