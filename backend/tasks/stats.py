"""
Task statistics.

Status and priority counts for a regular user cover the tasks assigned to
them; the monthly creation histogram covers every task they can see.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

import models
from auth.permissions import Principal, task_scope
from query.predicates import MATCH_ALL, Eq, NotIn, Predicate, Range, and_
from query.task_filters import filter_tasks
from time_utils import as_utc, months_ago, utc_now

logger = logging.getLogger(__name__)

STATS_MONTHS = 6


def assigned_scope(principal: Principal) -> Predicate:
    return MATCH_ALL if principal.is_admin else Eq("assigned_to", principal.id)


def overdue_predicate(now: Optional[datetime] = None) -> Predicate:
    return and_(
        Range("due_date", lt=now or utc_now()),
        NotIn("status", models.CLOSED_STATUSES),
    )


def status_counts(db: Session, scope: Predicate, now: Optional[datetime] = None) -> Dict[str, int]:
    """Per-status totals plus the number of overdue tasks within `scope`."""
    rows = (
        filter_tasks(db.query(models.Task.status, func.count(models.Task.id)), scope)
        .group_by(models.Task.status)
        .all()
    )
    counts = {"total": 0, "pending": 0, "in_progress": 0, "completed": 0, "cancelled": 0}
    for status, count in rows:
        counts[models.TaskStatus(status).name] = count
        counts["total"] += count

    counts["overdue"] = filter_tasks(db.query(models.Task), and_(scope, overdue_predicate(now))).count()
    return counts


def priority_distribution(db: Session, scope: Predicate) -> List[Dict]:
    rows = (
        filter_tasks(db.query(models.Task.priority, func.count(models.Task.id)), scope)
        .group_by(models.Task.priority)
        .order_by(models.Task.priority)
        .all()
    )
    return [{"priority": priority, "count": count} for priority, count in rows]


def monthly_creation_counts(db: Session, scope: Predicate, now: Optional[datetime] = None) -> List[Dict]:
    """Tasks created per calendar month over the last six months, oldest first."""
    since = months_ago(STATS_MONTHS, now)
    created = filter_tasks(
        db.query(models.Task.created_at),
        and_(scope, Range("created_at", gte=since)),
    ).all()
    months = Counter()
    for (created_at,) in created:
        created_at = as_utc(created_at)
        months[(created_at.year, created_at.month)] += 1
    return [
        {"year": year, "month": month, "count": count}
        for (year, month), count in sorted(months.items())
    ]


def task_stats(db: Session, principal: Principal, now: Optional[datetime] = None) -> Dict:
    now = now or utc_now()
    logger.debug(f"Computing task stats for user {principal.id} (admin={principal.is_admin})")
    return {
        "task_stats": status_counts(db, assigned_scope(principal), now),
        "priority_stats": priority_distribution(db, assigned_scope(principal)),
        "monthly_stats": monthly_creation_counts(db, task_scope(principal), now),
    }
