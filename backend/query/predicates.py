"""
Storage-neutral query predicates.

A predicate is a small tree of immutable nodes describing which records a
query should return. Access scoping and user-supplied filters are both
expressed as predicates and combined with `and_`/`or_`; storage adapters
(see `query.lowering`) translate the tree into their own query language.
`matches` evaluates a predicate against a plain mapping and is the
reference semantics every adapter must agree with.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional, Tuple, Union

from time_utils import as_utc


@dataclass(frozen=True)
class MatchAll:
    """Matches every record (no restriction)."""


@dataclass(frozen=True)
class Eq:
    field: str
    value: Any


@dataclass(frozen=True)
class NotIn:
    field: str
    values: Tuple[Any, ...]


@dataclass(frozen=True)
class Range:
    """Bounds on an ordered field; unset bounds are ignored."""

    field: str
    gt: Any = None
    gte: Any = None
    lt: Any = None
    lte: Any = None


@dataclass(frozen=True)
class TextMatch:
    """Case-insensitive substring match on a text field."""

    field: str
    text: str


@dataclass(frozen=True)
class AnyMatch:
    """Case-insensitive substring match against any element of a collection field."""

    field: str
    text: str


@dataclass(frozen=True)
class And:
    items: Tuple["Predicate", ...]


@dataclass(frozen=True)
class Or:
    items: Tuple["Predicate", ...]


Predicate = Union[MatchAll, Eq, NotIn, Range, TextMatch, AnyMatch, And, Or]

MATCH_ALL = MatchAll()


def and_(*predicates: Predicate) -> Predicate:
    """Conjunction of `predicates`, flattened; MatchAll terms are dropped."""
    items = []
    for p in predicates:
        if isinstance(p, MatchAll):
            continue
        if isinstance(p, And):
            items.extend(p.items)
        else:
            items.append(p)
    if not items:
        return MATCH_ALL
    if len(items) == 1:
        return items[0]
    return And(tuple(items))


def or_(*predicates: Predicate) -> Predicate:
    """Disjunction of `predicates`, flattened; any MatchAll term makes it MatchAll."""
    items = []
    for p in predicates:
        if isinstance(p, MatchAll):
            return MATCH_ALL
        if isinstance(p, Or):
            items.extend(p.items)
        else:
            items.append(p)
    if not items:
        raise ValueError("or_() needs at least one predicate")
    if len(items) == 1:
        return items[0]
    return Or(tuple(items))


def _comparable(value: Any) -> Any:
    if isinstance(value, datetime):
        return as_utc(value)
    return value


def _contains(haystack: Optional[Any], needle: str) -> bool:
    if haystack is None:
        return False
    return needle.lower() in str(haystack).lower()


def matches(predicate: Predicate, record: Mapping[str, Any]) -> bool:
    """Evaluate `predicate` against a mapping of field name to value."""
    if isinstance(predicate, MatchAll):
        return True
    if isinstance(predicate, Eq):
        return record.get(predicate.field) == predicate.value
    if isinstance(predicate, NotIn):
        return record.get(predicate.field) not in predicate.values
    if isinstance(predicate, Range):
        value = record.get(predicate.field)
        if value is None:
            return False
        value = _comparable(value)
        if predicate.gt is not None and not value > _comparable(predicate.gt):
            return False
        if predicate.gte is not None and not value >= _comparable(predicate.gte):
            return False
        if predicate.lt is not None and not value < _comparable(predicate.lt):
            return False
        if predicate.lte is not None and not value <= _comparable(predicate.lte):
            return False
        return True
    if isinstance(predicate, TextMatch):
        return _contains(record.get(predicate.field), predicate.text)
    if isinstance(predicate, AnyMatch):
        return any(_contains(item, predicate.text) for item in record.get(predicate.field) or ())
    if isinstance(predicate, And):
        return all(matches(p, record) for p in predicate.items)
    if isinstance(predicate, Or):
        return any(matches(p, record) for p in predicate.items)
    raise TypeError(f"Unknown predicate node: {predicate!r}")
