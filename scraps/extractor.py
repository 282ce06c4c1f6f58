"""
Extraction Engine
=================
Builds one structured entity from one open page.

A run has three phases:

1. ``init``: walk the extraction configs depth-first and build the
   Component/Step tree. Every selector is scoped under its parent's selector
   and checked against the page; misses fall back or are dropped. Components
   matching several elements are differentiated (one Component per element,
   each re-targeted with a generated class). Container-type Steps (default
   ``components``) recursively ``init`` the container configs one level
   deeper, up to ``maxExtractionNestingDepth``.
2. ``process``: run Steps deepest first, then most specific selector first.
   Each Step ignores elements already carrying the run's marker class and
   marks what it matched, so a shallow selector never re-captures what a
   nested Step consumed.
3. Export the tree through ``ExportVisitor``.

Usage::

    extractor = Extractor.for_destination(SoupDom(html), "content/blog", config)
    entity = await extractor.run()
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence

from .composite import Arena, Component, Container, ExportVisitor, Leaf, Slot, Step
from .config import ExtractKind, ExtractionConfig, ScrapsConfig, split_destination
from .css import exclude_class, scope_selector, specificity
from .dom import DomQuery
from .errors import ConfigError, ContractViolation
from .hooks import CrawlHooks, maybe_await
from .utils import array_or_item_if_single

logger = logging.getLogger(__name__)


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, list) and not value)


class Extractor:
    """One extraction pass over one page."""

    def __init__(
        self,
        dom: DomQuery,
        configs: Sequence[ExtractionConfig],
        config: ScrapsConfig,
        hooks: Optional[CrawlHooks] = None,
        token: Optional[str] = None,
    ):
        self.dom = dom
        self.configs = list(configs)
        self.config = config
        self.settings = config.settings
        self.hooks = hooks or CrawlHooks()

        self.arena = Arena()
        self.steps: List[Step] = []
        self.root: Optional[Container] = None

        # Generated classes must not collide with the page's own classes nor
        # with another run over the same document.
        self._token = token or secrets.token_hex(3)
        self.marker = f"scraps-x-{self._token}"
        self._class_counter = 0

    @classmethod
    def for_destination(
        cls,
        dom: DomQuery,
        destination: str,
        config: ScrapsConfig,
        hooks: Optional[CrawlHooks] = None,
        extract: Sequence[ExtractionConfig] = (),
    ) -> "Extractor":
        """
        Extractor for a destination like ``content/blog``.

        Inline ``extract`` configs (entry points) take precedence over the
        configs mapped from the destination key.
        """
        if not destination:
            raise ConfigError(f"Missing extraction destination for {dom.url}")
        entity_type, bundle = split_destination(destination)
        configs = list(extract) if extract else config.map_config(entity_type, bundle)
        return cls(dom, configs, config, hooks)

    async def run(self) -> Dict[str, Any]:
        self.root = self.arena.add(Container(name="", selector="", depth=0))
        await self.init(self.configs, self.root, depth=0, scope="", slot=None)
        logger.debug(
            f"[EXTRACT] {len(self.steps)} steps over {len(self.arena)} components "
            f"for {self.dom.url or 'document'}"
        )

        for step in self.ordered_steps():
            await self.process(step)
        await self.fill_missing_items()

        return ExportVisitor(self.arena).export(self.root)

    # -----------------------------------------------------------------------
    # Tree construction
    # -----------------------------------------------------------------------

    async def init(
        self,
        configs: Sequence[ExtractionConfig],
        owner: Component,
        depth: int,
        scope: str,
        slot: Optional[Slot],
    ) -> None:
        for conf in configs:
            if conf.implies_component:
                await self._init_component(conf, owner, depth, scope, slot)
            else:
                await self._init_field(conf, owner, depth, scope)

    async def _init_component(
        self,
        conf: ExtractionConfig,
        owner: Component,
        depth: int,
        scope: str,
        slot: Optional[Slot],
    ) -> None:
        if slot is None:
            raise ConfigError(
                f"{conf.destination}: components can only be extracted inside a container field"
            )

        selector = scope_selector(scope, conf.selector)
        if not await self.dom.exists(selector):
            if conf.fallback is None:
                logger.debug(f"[EXTRACT] No match for {conf.destination} ('{selector}')")
                return
            conf = conf.fallback
            selector = scope_selector(scope, conf.selector)
            if not await self.dom.exists(selector):
                logger.debug(f"[EXTRACT] No match for {conf.destination} or its fallback ('{selector}')")
                return

        count = await self.dom.count(selector)
        if count > 1:
            # One Component per matched element
            classes = [self._generate_class() for _ in range(count)]
            await self.dom.add_classes_by_index(selector, classes)
            for cls in classes:
                await self._build_component(conf, owner, depth, f".{cls}", slot)
        else:
            await self._build_component(conf, owner, depth, selector, slot)

    async def _build_component(
        self,
        conf: ExtractionConfig,
        owner: Component,
        depth: int,
        selector: str,
        slot: Slot,
    ) -> Component:
        kind = Container if conf.has_container_kind(self.settings) else Leaf
        component = self.arena.add(kind(
            name=conf.component_name,
            selector=selector,
            depth=depth,
            parent=owner.index,
            slot=slot,
        ))
        if conf.is_group:
            for sub in conf.extract:
                await self._init_field(sub, component, depth, selector, group_config=conf)
        else:
            await self._add_step(conf, component, selector, depth, scope=selector, group_config=conf)
        return component

    async def _init_field(
        self,
        conf: ExtractionConfig,
        owner: Component,
        depth: int,
        scope: str,
        group_config: Optional[ExtractionConfig] = None,
    ) -> Optional[Step]:
        selector = scope_selector(scope, conf.selector)
        if not await self.dom.exists(selector):
            if conf.fallback is None:
                logger.debug(f"[EXTRACT] No match for {conf.destination} ('{selector}')")
                return None
            fallback_selector = scope_selector(scope, conf.fallback.selector)
            if not await self.dom.exists(fallback_selector):
                logger.debug(f"[EXTRACT] No match for {conf.destination} or its fallback")
                return None
            conf, selector = conf.fallback, fallback_selector
        return await self._add_step(conf, owner, selector, depth, scope, group_config)

    async def _add_step(
        self,
        conf: ExtractionConfig,
        owner: Component,
        selector: str,
        depth: int,
        scope: str,
        group_config: Optional[ExtractionConfig] = None,
    ) -> Step:
        group = conf.multi_field_group
        item_scope = None
        if group:
            declared = group_config.group_scope(group) if group_config else None
            declared = declared or conf.group_scope(group)
            if declared:
                item_scope = scope_selector(owner.selector, declared)

        step = Step(
            config=conf,
            component=owner.index,
            selector=selector,
            kind=conf.kind(self.settings),
            field=conf.field_name,
            depth=depth,
            order=len(self.steps),
            scope=scope,
            group=group,
            item_scope=item_scope,
        )
        self.steps.append(step)

        if step.is_container:
            await self._expand(step, owner)
        return step

    async def _expand(self, step: Step, owner: Component) -> None:
        """Look up nested components under a container Step, one level deeper."""
        if step.depth + 1 > self.settings.max_extraction_nesting_depth:
            logger.debug(f"[EXTRACT] Nesting depth limit reached, not expanding {step.describe()}")
            return
        nested = self.config.lookup(step.config.extract)
        if not nested:
            return

        if step.is_multi_field:
            count = await self.dom.count(step.selector)
            classes = [self._generate_class() for _ in range(count)]
            await self.dom.add_classes_by_index(step.selector, classes)
            for i, cls in enumerate(classes):
                await self.init(nested, owner, step.depth + 1, f".{cls}", Slot(step.field, step.group, i))
        else:
            await self.init(nested, owner, step.depth + 1, step.selector, Slot(step.field))

    def _generate_class(self) -> str:
        self._class_counter += 1
        return f"scraps-d-{self._token}-{self._class_counter}"

    # -----------------------------------------------------------------------
    # Processing
    # -----------------------------------------------------------------------

    def ordered_steps(self) -> List[Step]:
        """Deepest first, then most specific selector, then declaration order."""
        return sorted(
            self.steps,
            key=lambda s: (-s.depth, tuple(-n for n in specificity(s.selector)), s.order),
        )

    async def process(self, step: Step) -> None:
        if step.processed:
            return
        step.processed = True

        component = self.arena[step.component]
        selector = exclude_class(step.selector, self.marker)
        logger.debug(f"[EXTRACT] {component.name or 'entity'}: {step.describe()}")

        if step.is_container:
            # Children were processed first (they are deeper); export collects them
            component.declare_container_field(step.field)
        elif step.is_multi_field:
            values = await self._values(step.kind, step.config, selector, step)
            if values:
                component.set_multi_field_values(step.group, step.field, values)
        else:
            value = await self._value(step.kind, step.config, selector, step)
            if _is_empty(value) and step.fallback is not None:
                value = await self._fallback_value(step)
            if not _is_empty(value):
                component.set_field(step.field, value)

        await self.dom.add_marker_class(selector, self.marker)

    async def _fallback_value(self, step: Step) -> Any:
        fallback = step.fallback
        selector = exclude_class(scope_selector(step.scope, fallback.selector), self.marker)
        value = await self._value(fallback.kind(self.settings), fallback, selector, step)
        if not _is_empty(value):
            await self.dom.add_marker_class(selector, self.marker)
        return value

    async def fill_missing_items(self) -> None:
        """Retry multi-field fallbacks for items still missing their property."""
        for step in self.ordered_steps():
            if not step.is_multi_field or step.is_container or step.fallback is None:
                continue
            component = self.arena[step.component]
            items = component.get_multi_field_items(step.group)
            missing = [i for i, item in enumerate(items) if step.field not in item]
            if not missing:
                continue

            fallback = step.fallback
            kind = fallback.kind(self.settings)
            if step.item_scope:
                # Fallback looked up inside the i-th item scope element
                scopes = [self._generate_class() for _ in range(await self.dom.count(step.item_scope))]
                await self.dom.add_classes_by_index(step.item_scope, scopes)
                for i in missing:
                    if i >= len(scopes):
                        break
                    selector = exclude_class(scope_selector(f".{scopes[i]}", fallback.selector), self.marker)
                    values = await self._values(kind, fallback, selector, step)
                    if values and values[0] is not None:
                        component.set_multi_field_value(step.group, i, step.field, values[0])
                        await self.dom.add_marker_class(selector, self.marker)
            else:
                # Fallback's i-th match fills item i
                selector = exclude_class(scope_selector(step.scope, fallback.selector), self.marker)
                values = await self._values(kind, fallback, selector, step)
                used = []
                for i in missing:
                    if i < len(values) and values[i] is not None:
                        component.set_multi_field_value(step.group, i, step.field, values[i])
                        used.append(i)
                if used:
                    marks = [self.marker if j in used else "" for j in range(max(used) + 1)]
                    await self.dom.add_classes_by_index(selector, marks)

            logger.debug(f"[EXTRACT] Fallback retried for {len(missing)} item(s) of {step.describe()}")

    async def _value(self, kind: ExtractKind, conf: ExtractionConfig, selector: str, step: Step) -> Any:
        """Shaped value: scalar for one match, list for several, None for none."""
        settings = self.settings
        if kind is ExtractKind.TEXT:
            return await self.dom.query_text(selector, settings.plain_text_remove_breaks)
        if kind is ExtractKind.TEXT_SINGLE:
            return await self.dom.query_text_single(
                selector, settings.plain_text_remove_breaks, settings.plain_text_separator
            )
        if kind is ExtractKind.MARKUP:
            return await self.dom.query_markup(selector, settings.minify_extracted_html)
        if kind is ExtractKind.ATTRIBUTE:
            values = await self.dom.query_attribute(selector, conf.attribute)
            return array_or_item_if_single([v for v in values if v is not None])
        if kind is ExtractKind.CUSTOM:
            result = await self._custom(conf, selector, step)
            return array_or_item_if_single(result) if isinstance(result, list) else result
        return None

    async def _values(self, kind: ExtractKind, conf: ExtractionConfig, selector: str, step: Step) -> List[Any]:
        """One value per match, for index-aligned multi-field groups."""
        settings = self.settings
        if kind in (ExtractKind.TEXT, ExtractKind.TEXT_SINGLE):
            return await self.dom.text_list(selector, settings.plain_text_remove_breaks)
        if kind is ExtractKind.MARKUP:
            return await self.dom.markup_list(selector, settings.minify_extracted_html)
        if kind is ExtractKind.ATTRIBUTE:
            return await self.dom.query_attribute(selector, conf.attribute)
        if kind is ExtractKind.CUSTOM:
            result = await self._custom(conf, selector, step)
            if result is None:
                return []
            return list(result) if isinstance(result, (list, tuple)) else [result]
        return []

    async def _custom(self, conf: ExtractionConfig, selector: str, step: Step) -> Any:
        extractor = self.hooks.get_extractor(conf.emit)
        if extractor is None:
            raise ContractViolation(
                f"No custom extractor registered for '{conf.emit}' "
                f"({conf.destination}, selector : {selector})",
                emit=conf.emit,
                selector=selector,
            )
        return await maybe_await(extractor(self.dom, replace(step, config=conf, selector=selector)))


async def extract_entity(
    dom: DomQuery,
    destination: str,
    config: ScrapsConfig,
    hooks: Optional[CrawlHooks] = None,
    extract: Sequence[ExtractionConfig] = (),
) -> Dict[str, Any]:
    """Run a single extraction pass and return the entity."""
    extractor = Extractor.for_destination(dom, destination, config, hooks, extract)
    return await extractor.run()
