"""
CSS selector helpers for scoping, ordering and deduplication.

Selector lists (``a, b``) are handled per alternative: scoping a list under
another list yields every combination, and exclusion is appended to each
alternative.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Tuple

import cssselect

logger = logging.getLogger(__name__)

Specificity = Tuple[int, int, int]


def split_selector_list(selector: str) -> List[str]:
    """Split on top-level commas only (not inside ``:is(a, b)`` or ``[x="a,b"]``)."""
    parts: List[str] = []
    depth = 0
    quote = ""
    current = []
    for ch in selector or "":
        if quote:
            if ch == quote:
                quote = ""
        elif ch in ("'", '"'):
            quote = ch
        elif ch in "([":
            depth += 1
        elif ch in ")]":
            depth = max(0, depth - 1)
        elif ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    parts.append("".join(current).strip())
    return [p for p in parts if p]


def scope_selector(scope: str, selector: str) -> str:
    """
    Prefix ``selector`` with the already-scoped ``scope``.

    An empty scope (document root) contributes nothing; an empty selector
    targets the scope element itself.
    """
    if not scope:
        return (selector or "").strip()
    if not selector:
        return scope
    return ", ".join(
        f"{outer} {inner}"
        for outer in split_selector_list(scope)
        for inner in split_selector_list(selector)
    )


def exclude_class(selector: str, cls: str) -> str:
    """Append ``:not(.cls)`` to every alternative of ``selector``."""
    return ", ".join(f"{alt}:not(.{cls})" for alt in split_selector_list(selector))


@lru_cache(maxsize=2048)
def specificity(selector: str) -> Specificity:
    """
    Highest (ids, classes, types) specificity among the selector alternatives.

    Selectors cssselect cannot parse (engine-specific pseudo classes) rank
    as (0, 0, 0).
    """
    try:
        parsed = cssselect.parse(selector)
    except cssselect.SelectorError as e:
        logger.debug(f"[ORDER] No specificity for '{selector}': {e}")
        return (0, 0, 0)
    if not parsed:
        return (0, 0, 0)
    return max(tuple(s.specificity()) for s in parsed)
