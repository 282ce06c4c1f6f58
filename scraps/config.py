"""
Configuration Model
===================
Typed, read-only view of the declarative JSON configuration.

Example::

    {
      "start": [
        {
          "url": "https://example.com/blog",
          "follow": [
            {"selector": ".articles h2 > a", "to": "content/blog", "maxPagesToCrawl": 10},
            {"selector": ".pager a", "to": "start"}
          ]
        }
      ],
      "content/*": [
        {"selector": "header h1", "extract": "text", "as": "entity.title"}
      ],
      "content/blog": [
        {"selector": "article .body", "extract": "components", "as": "entity.content"}
      ],
      "components": [
        {"selector": ".lede", "extract": "markup", "as": "component.Lede.text"}
      ],
      "settings": {"maxParallelPages": 2}
    }

Everything is parsed once, up front, so configuration mistakes raise
``ConfigError`` before a single page is opened.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import ConfigError
from .settings import ScrapsSettings

logger = logging.getLogger(__name__)

# Rule destination that re-runs entry point setup (pager-style recursion).
RECURSION_MARKER = "start"

_RESERVED_KEYS = frozenset(["start", "settings"])


class ExtractKind(str, Enum):
    """What a single Step pulls out of its matched elements."""
    TEXT = "text"
    TEXT_SINGLE = "text_single"
    MARKUP = "markup"
    ATTRIBUTE = "attribute"
    CUSTOM = "element"
    COMPONENTS = "components"   # any declared container type


# ---------------------------------------------------------------------------
# Extraction configs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExtractionConfig:
    """
    One field mapping: where to look (``selector``), what to pull out
    (``extract``) and where it goes in the entity (``as``).

    ``extract`` is either a kind string or a tuple of sub-configs that all
    fill the same component.
    """
    selector: str
    extract: Union[str, Tuple["ExtractionConfig", ...]]
    destination: str
    fallback: Optional["ExtractionConfig"] = None
    multi_field_scopes: Dict[str, str] = field(default_factory=dict)
    delimiter: Optional[str] = None
    attribute: Optional[str] = None
    emit: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], where: str = "") -> "ExtractionConfig":
        if not isinstance(data, dict):
            raise ConfigError(f"Extraction config must be an object{where} (got {data!r})")
        if not data.get("as"):
            raise ConfigError(
                f"Missing extraction destination (as){where} for selector {data.get('selector')!r}"
            )
        if "extract" not in data:
            raise ConfigError(f"Missing 'extract' for {data['as']}{where}")

        extract = data["extract"]
        if isinstance(extract, list):
            if not extract:
                raise ConfigError(f"Empty 'extract' list for {data['as']}{where}")
            extract = tuple(cls.from_dict(sub, where) for sub in extract)
            for sub in extract:
                if sub.is_group:
                    raise ConfigError(
                        f"{sub.destination}: nested extraction groups are not supported, "
                        f"use a container type (e.g. 'components') instead"
                    )
        elif not isinstance(extract, str):
            raise ConfigError(f"Invalid 'extract' value for {data['as']}{where}: {extract!r}")

        fallback = None
        if data.get("fallback"):
            fb = dict(data["fallback"])
            fb.setdefault("as", data["as"])
            fb.setdefault("extract", data["extract"])
            fallback = cls.from_dict(fb, where)

        return cls(
            selector=(data.get("selector") or "").strip(),
            extract=extract,
            destination=data["as"],
            fallback=fallback,
            multi_field_scopes=dict(data.get("multiFieldScopes") or {}),
            delimiter=data.get("delimiter"),
            attribute=data.get("attribute"),
            emit=data.get("emit"),
        )

    # ---- Destination helpers ----------------------------------------------

    @property
    def parts(self) -> List[str]:
        return self.destination.split(".")

    @property
    def is_group(self) -> bool:
        return isinstance(self.extract, tuple)

    @property
    def implies_component(self) -> bool:
        """``component.*`` destinations create a component of their own."""
        return self.parts[0] == "component"

    @property
    def component_name(self) -> str:
        parts = self.parts
        return parts[1] if len(parts) > 1 else self.destination

    @property
    def field_name(self) -> str:
        parts = self.parts
        name = parts[-1] if len(parts) > 2 else parts[min(1, len(parts) - 1)]
        return name.replace("[]", "")

    @property
    def multi_field_group(self) -> Optional[str]:
        """Array group name for destinations like ``component.X.items[].title``."""
        for part in self.parts[:-1]:
            if part.endswith("[]"):
                return part[:-2]
        return None

    def kind(self, settings: ScrapsSettings) -> Optional[ExtractKind]:
        """Resolve the ``extract`` string to a kind (``None`` for groups)."""
        if self.is_group:
            return None
        if settings.is_container_type(self.extract):
            return ExtractKind.COMPONENTS
        try:
            kind = ExtractKind(self.extract)
        except ValueError:
            raise ConfigError(f"Unknown extraction kind {self.extract!r} for {self.destination}")
        if kind is ExtractKind.COMPONENTS:
            # 'components' itself was removed from the container types
            raise ConfigError(f"'{self.extract}' is not a declared container type ({self.destination})")
        return kind

    def has_container_kind(self, settings: ScrapsSettings) -> bool:
        if self.is_group:
            return any(sub.has_container_kind(settings) for sub in self.extract)
        return settings.is_container_type(self.extract)

    def group_scope(self, group: str) -> Optional[str]:
        """Item scope selector declared for a multi-field group, if any."""
        if group in self.multi_field_scopes:
            return self.multi_field_scopes[group]
        candidates = self.extract if self.is_group else (self,)
        for sub in candidates:
            if sub.multi_field_group == group and sub.delimiter:
                return sub.delimiter
        return None

    def validate(self, settings: ScrapsSettings) -> None:
        """Check kinds and kind-specific keys (recursively)."""
        if self.is_group:
            for sub in self.extract:
                sub.validate(settings)
            return
        kind = self.kind(settings)
        if kind is ExtractKind.ATTRIBUTE and not self.attribute:
            raise ConfigError(f"{self.destination}: 'attribute' extraction requires an 'attribute' key")
        if kind is ExtractKind.CUSTOM and not self.emit:
            raise ConfigError(
                f"Missing 'emit' config for processing {self.destination}, selector : {self.selector}"
            )
        if self.fallback:
            self.fallback.validate(settings)


# ---------------------------------------------------------------------------
# Crawl rules and entry points
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CrawlRule:
    """A ``follow`` item: which links to follow and where they lead."""
    selector: str = "a[href]"
    to: str = ""
    cache: bool = False
    max_pages_to_crawl: int = 0     # 0 = no limit, not "follow nothing"

    @classmethod
    def from_dict(cls, data: Dict[str, Any], where: str = "") -> "CrawlRule":
        if not isinstance(data, dict) or not data.get("to"):
            raise ConfigError(f"Missing link destination (to){where}")
        limit = data.get("maxPagesToCrawl", 0) or 0
        if not isinstance(limit, int) or limit < 0:
            raise ConfigError(f"maxPagesToCrawl must be a positive integer{where} (got {limit!r})")
        return cls(
            selector=data.get("selector") or "a[href]",
            to=data["to"],
            cache=bool(data.get("cache", False)),
            max_pages_to_crawl=limit,
        )

    @property
    def limit_id(self) -> str:
        return f"{self.to}::{self.selector}"

    @property
    def is_recursive(self) -> bool:
        return self.to == RECURSION_MARKER


@dataclass(frozen=True)
class EntryPoint:
    """A ``start`` item: a URL plus either links to follow or inline extraction."""
    url: str
    follow: Tuple[CrawlRule, ...] = ()
    extract: Tuple[ExtractionConfig, ...] = ()
    destination: Optional[str] = None   # the "is" key
    cache: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int = 0) -> "EntryPoint":
        where = f" in start[{index}]"
        if not isinstance(data, dict) or not data.get("url"):
            raise ConfigError(f"Missing start url{where}")
        if not data.get("follow") and not data.get("extract"):
            raise ConfigError(f"Missing start links to follow{where}")
        if data.get("extract") and not data.get("is"):
            raise ConfigError(f"Missing extraction destination (is){where}")
        return cls(
            url=data["url"],
            follow=tuple(CrawlRule.from_dict(r, where) for r in data.get("follow") or []),
            extract=tuple(ExtractionConfig.from_dict(c, where) for c in data.get("extract") or []),
            destination=data.get("is"),
            cache=bool(data.get("cache", False)),
        )

    def with_url(self, url: str) -> "EntryPoint":
        return replace(self, url=url)


# ---------------------------------------------------------------------------
# Whole config
# ---------------------------------------------------------------------------

@dataclass
class ScrapsConfig:
    """Parsed configuration: entry points, extraction configs by key, settings."""
    entry_points: List[EntryPoint] = field(default_factory=list)
    extractors: Dict[str, List[ExtractionConfig]] = field(default_factory=dict)
    settings: ScrapsSettings = field(default_factory=ScrapsSettings)

    @classmethod
    def from_dict(cls, data: Union[Dict[str, Any], List[Dict[str, Any]]]) -> "ScrapsConfig":
        if isinstance(data, list):
            data = {"start": data}
        if not isinstance(data, dict):
            raise ConfigError("Config must be an object or a list of entry points")
        if not data.get("start"):
            raise ConfigError("Missing start config")

        settings = ScrapsSettings.from_dict(data.get("settings"))
        entry_points = [EntryPoint.from_dict(e, i) for i, e in enumerate(data["start"])]

        extractors: Dict[str, List[ExtractionConfig]] = {}
        for key, items in data.items():
            if key in _RESERVED_KEYS:
                continue
            if not isinstance(items, list):
                raise ConfigError(f"Config key '{key}' must contain a list of extraction configs")
            extractors[key] = [ExtractionConfig.from_dict(c, f" in '{key}'") for c in items]

        config = cls(entry_points=entry_points, extractors=extractors, settings=settings)
        config.validate()
        return config

    def validate(self) -> None:
        all_configs = [c for e in self.entry_points for c in e.extract]
        for configs in self.extractors.values():
            all_configs.extend(configs)
        for conf in all_configs:
            conf.validate(self.settings)

        # Components only exist inside a container field
        page_level = [c for e in self.entry_points for c in e.extract]
        for key, configs in self.extractors.items():
            if not self.settings.is_container_type(key):
                page_level.extend(configs)
        for conf in page_level:
            if conf.implies_component:
                raise ConfigError(
                    f"{conf.destination}: component destinations are only allowed in "
                    f"container type configs ({', '.join(self.settings.extraction_container_types)})"
                )

        used = set()
        for conf in all_configs:
            subs = conf.extract if conf.is_group else (conf,)
            used.update(s.extract for s in subs if self.settings.is_container_type(s.extract))
        for lookup in sorted(used):
            if lookup not in self.extractors:
                logger.warning(f"[CONFIG] Container type '{lookup}' is used but has no configs")

    def map_config(self, entity_type: str, bundle: Optional[str] = None) -> List[ExtractionConfig]:
        """
        Return the extraction configs matching a destination.

        ``map_config("content", "blog")`` concatenates ``content/*`` and
        ``content/blog`` configs (in declaration order); keys without a bundle
        match only themselves.
        """
        configs: List[ExtractionConfig] = []
        for key, items in self.extractors.items():
            key_parts = key.split("/")
            if key_parts[0] != entity_type:
                continue
            key_bundle = key_parts[1] if len(key_parts) > 1 else None
            if key_bundle == bundle or key_bundle == "*":
                configs.extend(items)
        return configs

    def lookup(self, key: str) -> List[ExtractionConfig]:
        """Return the configs stored under a plain key (e.g. ``components``)."""
        if key in _RESERVED_KEYS:
            raise ConfigError(f"Cannot map '{key}' config as extraction configs")
        return list(self.extractors.get(key, []))


def split_destination(destination: str) -> Tuple[str, Optional[str]]:
    """``"content/blog"`` → ``("content", "blog")``."""
    entity_type, _, bundle = destination.partition("/")
    return entity_type, bundle or None


def load_config(path: Union[str, Path]) -> ScrapsConfig:
    """Read and parse a JSON config file."""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}")
    logger.info(f"[CONFIG] Loaded {path}")
    return ScrapsConfig.from_dict(data)
