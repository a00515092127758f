"""
Task list query construction.

`FilterSpec` is the normalized form of the list endpoint's query string.
`build_task_predicate` merges it with the access scope from
`auth.permissions.task_scope` into one predicate. Field constraints are kept
in a dict keyed by field, so a later filter replaces an earlier one on the
same field: `overdue` is applied last and therefore overrides any explicit
status or due-date filters the caller also sent.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import asc, desc

import models
from errors import ValidationError
from query.lowering import to_sqlalchemy
from query.pagination import Pagination, page_offset
from query.predicates import AnyMatch, Eq, NotIn, Predicate, Range, TextMatch, and_, or_
from time_utils import parse_datetime, utc_now

logger = logging.getLogger(__name__)

# Accepted sort keys (API spelling) -> logical field
SORT_FIELDS = {
    "createdAt": "created_at",
    "created_at": "created_at",
    "updatedAt": "updated_at",
    "updated_at": "updated_at",
    "dueDate": "due_date",
    "due_date": "due_date",
    "priority": "priority",
    "status": "status",
    "title": "title",
}

TASK_COLUMNS = {
    "id": models.Task.id,
    "title": models.Task.title,
    "description": models.Task.description,
    "status": models.Task.status,
    "priority": models.Task.priority,
    "due_date": models.Task.due_date,
    "assigned_to": models.Task.assigned_to_id,
    "created_by": models.Task.created_by_id,
    "created_at": models.Task.created_at,
    "updated_at": models.Task.updated_at,
}

TASK_COLLECTIONS = {
    "tags": (models.Task.tag_entries, models.TaskTag.name),
}


@dataclass(frozen=True)
class SortSpec:
    field: str = "created_at"
    direction: str = "desc"

    @classmethod
    def parse(cls, raw: Optional[str], fields: Dict[str, str] = SORT_FIELDS) -> "SortSpec":
        """
        Parse `field[:direction]`. No value means newest first; a field
        without a direction sorts ascending.
        """
        if raw is None or not raw.strip():
            return cls()
        name, _, direction = raw.strip().partition(":")
        if name not in fields:
            raise ValidationError(f"Cannot sort by '{name}'. Allowed fields: {', '.join(sorted(set(fields)))}")
        direction = direction.strip().lower() or "asc"
        if direction not in ("asc", "desc"):
            raise ValidationError("Sort direction must be 'asc' or 'desc'")
        return cls(field=fields[name], direction=direction)


def _parse_enum(enum_cls, raw: Optional[str], name: str):
    if raw is None or raw == "":
        return None
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {name} '{raw}'. Allowed values: {allowed}")


def _parse_id(raw: Optional[str], name: str) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Invalid {name} '{raw}': expected a user id")


def _parse_date(raw: Optional[str], name: str) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    try:
        return parse_datetime(raw)
    except ValueError as e:
        raise ValidationError(f"Invalid {name}: {e}")


@dataclass(frozen=True)
class FilterSpec:
    status: Optional[models.TaskStatus] = None
    priority: Optional[models.TaskPriority] = None
    assigned_to: Optional[int] = None
    created_by: Optional[int] = None
    due_before: Optional[datetime] = None
    due_after: Optional[datetime] = None
    search: Optional[str] = None
    overdue: bool = False
    sort: SortSpec = SortSpec()

    @classmethod
    def from_params(
        cls,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        assigned_to: Optional[str] = None,
        created_by: Optional[str] = None,
        due_before: Optional[str] = None,
        due_after: Optional[str] = None,
        search: Optional[str] = None,
        overdue: Optional[str] = None,
        sort: Optional[str] = None,
    ) -> "FilterSpec":
        """Build a FilterSpec from raw query-string values."""
        search = search.strip() if search else None
        return cls(
            status=_parse_enum(models.TaskStatus, status, "status"),
            priority=_parse_enum(models.TaskPriority, priority, "priority"),
            assigned_to=_parse_id(assigned_to, "assignedTo"),
            created_by=_parse_id(created_by, "createdBy"),
            due_before=_parse_date(due_before, "dueBefore"),
            due_after=_parse_date(due_after, "dueAfter"),
            search=search or None,
            overdue=(overdue or "").strip().lower() == "true",
            sort=SortSpec.parse(sort),
        )


def search_predicate(text: str) -> Predicate:
    return or_(
        TextMatch("title", text),
        TextMatch("description", text),
        AnyMatch("tags", text),
    )


def build_task_predicate(scope: Predicate, spec: FilterSpec, now: Optional[datetime] = None) -> Predicate:
    """
    Combine the access scope with the caller's filters.

    Args:
        scope: Scoping predicate for the principal (see auth.permissions.task_scope)
        spec: Normalized filters
        now: Reference time for the overdue filter (defaults to utc_now())

    Returns:
        A single predicate: scope AND field filters AND (search group)
    """
    constraints: Dict[str, Predicate] = {}

    if spec.status is not None:
        constraints["status"] = Eq("status", spec.status)
    if spec.priority is not None:
        constraints["priority"] = Eq("priority", spec.priority)
    if spec.assigned_to is not None:
        constraints["assigned_to"] = Eq("assigned_to", spec.assigned_to)
    if spec.created_by is not None:
        constraints["created_by"] = Eq("created_by", spec.created_by)

    if spec.due_before is not None or spec.due_after is not None:
        constraints["due_date"] = Range("due_date", gte=spec.due_after, lte=spec.due_before)

    search = search_predicate(spec.search) if spec.search else None

    # Applied last: replaces any explicit status/due-date constraint
    if spec.overdue:
        constraints["due_date"] = Range("due_date", lt=now or utc_now())
        constraints["status"] = NotIn("status", models.CLOSED_STATUSES)

    predicate = and_(scope, *constraints.values(), *([search] if search else []))
    logger.debug(f"Built task predicate: {predicate}")
    return predicate


def apply_sort(query, sort: SortSpec, columns=TASK_COLUMNS, tiebreaker=None):
    """Order `query` by `sort`, with the primary key as a deterministic tie-breaker."""
    order = desc if sort.direction == "desc" else asc
    tiebreaker = tiebreaker if tiebreaker is not None else columns["id"]
    return query.order_by(order(columns[sort.field]), order(tiebreaker))


def paginate(query, page: int, limit: int):
    """
    Count the full result set, then fetch one page of it.

    Returns:
        tuple: (items, Pagination)
    """
    total = query.order_by(None).count()
    items = query.offset(page_offset(page, limit)).limit(limit).all()
    return items, Pagination.build(page, limit, total)


def filter_tasks(query, predicate: Predicate):
    """Restrict a Task query to rows matching `predicate`."""
    return query.filter(to_sqlalchemy(predicate, TASK_COLUMNS, TASK_COLLECTIONS))
