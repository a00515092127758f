"""
Lower predicates into SQLAlchemy clauses.
"""

from typing import Any, Mapping, Optional, Tuple

from sqlalchemy import and_, false, or_, true

from query.predicates import And, AnyMatch, Eq, MatchAll, NotIn, Or, Predicate, Range, TextMatch

LIKE_ESCAPE = "\\"


def like_pattern(text: str) -> str:
    """Substring LIKE pattern with the user's text taken literally."""
    escaped = (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"


def to_sqlalchemy(
    predicate: Predicate,
    columns: Mapping[str, Any],
    collections: Optional[Mapping[str, Tuple[Any, Any]]] = None,
):
    """
    Translate `predicate` into a SQLAlchemy boolean clause.

    Args:
        predicate: Predicate tree to lower
        columns: Field name -> mapped column
        collections: Field name -> (relationship, element column) for AnyMatch

    Raises:
        KeyError: if the predicate names a field missing from the maps
    """
    collections = collections or {}

    def lower(p):
        if isinstance(p, MatchAll):
            return true()
        if isinstance(p, Eq):
            return columns[p.field] == p.value
        if isinstance(p, NotIn):
            return columns[p.field].notin_(p.values)
        if isinstance(p, Range):
            column = columns[p.field]
            bounds = []
            if p.gt is not None:
                bounds.append(column > p.gt)
            if p.gte is not None:
                bounds.append(column >= p.gte)
            if p.lt is not None:
                bounds.append(column < p.lt)
            if p.lte is not None:
                bounds.append(column <= p.lte)
            return and_(column.isnot(None), *bounds)
        if isinstance(p, TextMatch):
            return columns[p.field].ilike(like_pattern(p.text), escape=LIKE_ESCAPE)
        if isinstance(p, AnyMatch):
            relationship, element = collections[p.field]
            return relationship.any(element.ilike(like_pattern(p.text), escape=LIKE_ESCAPE))
        if isinstance(p, And):
            return and_(*(lower(item) for item in p.items))
        if isinstance(p, Or):
            if not p.items:
                return false()
            return or_(*(lower(item) for item in p.items))
        raise TypeError(f"Unknown predicate node: {p!r}")

    return lower(predicate)
