"""Small helpers on sequences of ints and strings."""

from __future__ import annotations

import re
from typing import Iterable, TypeVar

T = TypeVar("T", int, str)

_INT = re.compile(r"[+-]?[0-9]+")
_INT_MIN = -(2**63)
_INT_MAX = 2**63 - 1


def unique(items: Iterable[T]) -> list[T]:
    """Return the distinct items, sorted."""
    return sorted(set(items))


def has_intersection(list1: Iterable[int], list2: Iterable[int]) -> bool:
    """True if the two collections share an element."""
    return not set(list1).isdisjoint(list2)


def is_int(s: str) -> bool:
    """True if *s* is a plain decimal integer that fits in 64 bits."""
    return _INT.fullmatch(s) is not None and _INT_MIN <= int(s) <= _INT_MAX


def merge(a: Iterable[str], b: Iterable[str]) -> list[str]:
    """Union of both collections, each value once, in first-seen order."""
    return list(dict.fromkeys([*a, *b]))