"""
Extraction Result Tree
======================
Composite nodes built by one ``Extractor`` run.

- ``Component`` (``Container`` | ``Leaf``): a structured node with its own
  field map. Components live in a per-run ``Arena``; the parent link is an
  index into it, never an object reference.
- ``Step``: one scoped-selector extraction bound to exactly one Component.
  Only Steps write Component fields.
- ``ExportVisitor``: turns the finished tree into the plain entity dict.

Export shape for a container field::

    {"content": [{"c": "Button", "props": {"text": "Large button"}}]}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import ExtractKind, ExtractionConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Slot:
    """Where a nested Component goes in its parent's export."""
    field: str
    group: Optional[str] = None     # multi-field group for items[].content
    item_index: Optional[int] = None


@dataclass
class Component:
    name: str
    selector: str
    depth: int
    parent: Optional[int] = None
    slot: Optional[Slot] = None
    index: int = -1
    fields: Dict[str, Any] = field(default_factory=dict)
    multi_field_groups: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    container_fields: List[str] = field(default_factory=list)

    def set_field(self, name: str, value: Any) -> None:
        self.fields[name] = value

    def _items(self, group: str, length: int) -> List[Dict[str, Any]]:
        items = self.multi_field_groups.setdefault(group, [])
        while len(items) < length:
            items.append({})
        return items

    def set_multi_field_values(self, group: str, sub_field: str, values: List[Any]) -> None:
        """Index-aligned write: ``values[i]`` belongs to item ``i``."""
        items = self._items(group, len(values))
        for i, value in enumerate(values):
            if value is not None:
                items[i][sub_field] = value

    def set_multi_field_value(self, group: str, index: int, sub_field: str, value: Any) -> None:
        self._items(group, index + 1)[index][sub_field] = value

    def get_multi_field_items(self, group: str) -> List[Dict[str, Any]]:
        return self.multi_field_groups.get(group, [])

    def declare_container_field(self, name: str) -> None:
        if name not in self.container_fields:
            self.container_fields.append(name)

    def accept(self, visitor: "ExportVisitor") -> Dict[str, Any]:
        raise NotImplementedError


@dataclass
class Container(Component):
    """A Component that can hold nested Components."""
    children: List[int] = field(default_factory=list)

    def add(self, child: Component) -> None:
        self.children.append(child.index)

    def accept(self, visitor: "ExportVisitor") -> Dict[str, Any]:
        return visitor.visit_container(self)


@dataclass
class Leaf(Component):
    """A Component without nested Components."""

    def accept(self, visitor: "ExportVisitor") -> Dict[str, Any]:
        return visitor.visit_leaf(self)


class Arena:
    """Owns every Component of one extraction run."""

    def __init__(self):
        self._components: List[Component] = []

    def add(self, component: Component) -> Component:
        component.index = len(self._components)
        self._components.append(component)
        if component.parent is not None:
            parent = self[component.parent]
            if isinstance(parent, Container):
                parent.add(component)
        return component

    def __getitem__(self, index: int) -> Component:
        return self._components[index]

    def __len__(self) -> int:
        return len(self._components)

    def __iter__(self):
        return iter(self._components)


@dataclass
class Step:
    """One pending extraction for one Component field."""
    config: ExtractionConfig
    component: int
    selector: str
    kind: ExtractKind
    field: str
    depth: int
    order: int
    scope: str = ""                     # selector the config was scoped under
    group: Optional[str] = None
    item_scope: Optional[str] = None
    processed: bool = False

    @property
    def fallback(self) -> Optional[ExtractionConfig]:
        return self.config.fallback

    @property
    def is_multi_field(self) -> bool:
        return self.group is not None

    @property
    def is_container(self) -> bool:
        return self.kind is ExtractKind.COMPONENTS

    def describe(self) -> str:
        target = f"{self.group}[].{self.field}" if self.group else self.field
        return f"lv.{self.depth} {target} <- '{self.selector}' ({self.kind.value})"


class ExportVisitor:
    """Exports the composite tree to the structured entity dict."""

    def __init__(self, arena: Arena):
        self.arena = arena

    def export(self, component: Component) -> Dict[str, Any]:
        return component.accept(self)

    def _own_fields(self, component: Component) -> Dict[str, Any]:
        result = dict(component.fields)
        for group, items in component.multi_field_groups.items():
            result[group] = [dict(item) for item in items]
        return result

    def visit_leaf(self, leaf: Leaf) -> Dict[str, Any]:
        return self._own_fields(leaf)

    def visit_container(self, container: Container) -> Dict[str, Any]:
        result = self._own_fields(container)
        for child_index in container.children:
            child = self.arena[child_index]
            props = child.accept(self)
            if not props:
                continue
            entry = {"c": child.name, "props": props}
            slot = child.slot
            if slot is None:
                continue
            if slot.group is not None:
                items = result.setdefault(slot.group, [])
                while len(items) <= slot.item_index:
                    items.append({})
                items[slot.item_index].setdefault(slot.field, []).append(entry)
            else:
                result.setdefault(slot.field, []).append(entry)
        return result
