"""
Task-level permission checking utilities.

This module decides whether a principal may read, update, delete or comment on
a task, and builds the scoping predicate that restricts task listings to what
the principal may see.

Decision order (first match wins):
1. Global admin role (bypasses all checks)
2. Task creator (every operation)
3. Task assignee (every operation except delete)
4. Everyone else is denied
"""

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from errors import Forbidden, NotFound
from models import Role, Task, User
from query.predicates import MATCH_ALL, Eq, Predicate, or_

logger = logging.getLogger(__name__)


class Operation(str, enum.Enum):
    read = "read"
    update = "update"
    delete = "delete"
    comment = "comment"


# Operations an assignee may perform on a task they did not create
ASSIGNEE_OPERATIONS = frozenset({Operation.read, Operation.update, Operation.comment})


@dataclass(frozen=True)
class Principal:
    """The authenticated actor of a request."""

    id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin

    @classmethod
    def of(cls, user: User) -> "Principal":
        return cls(id=user.id, role=Role(user.role))


def can_perform(principal: Principal, operation: Operation, task: Task) -> bool:
    """
    Check whether `principal` may perform `operation` on `task`.

    Args:
        principal: Acting principal
        operation: Requested operation
        task: Target task (must exist)

    Returns:
        True if allowed, False otherwise

    Example:
        >>> if not can_perform(principal, Operation.delete, task):
        ...     raise Forbidden("Not authorized to delete this task")
    """
    if principal.is_admin:
        logger.debug(f"User {principal.id} is admin, granting {operation.value} on task {task.id}")
        return True

    if task.created_by_id == principal.id:
        logger.debug(f"User {principal.id} created task {task.id}, granting {operation.value}")
        return True

    if task.assigned_to_id == principal.id:
        allowed = operation in ASSIGNEE_OPERATIONS
        if allowed:
            logger.debug(f"User {principal.id} is assigned task {task.id}, granting {operation.value}")
        else:
            logger.info(f"User {principal.id} is only the assignee of task {task.id}, denying {operation.value}")
        return allowed

    logger.info(f"User {principal.id} has no relation to task {task.id}, denying {operation.value}")
    return False


def can_read(principal: Principal, task: Task) -> bool:
    return can_perform(principal, Operation.read, task)


def can_update(principal: Principal, task: Task) -> bool:
    return can_perform(principal, Operation.update, task)


def can_delete(principal: Principal, task: Task) -> bool:
    return can_perform(principal, Operation.delete, task)


def can_comment(principal: Principal, task: Task) -> bool:
    return can_perform(principal, Operation.comment, task)


def authorize(principal: Principal, operation: Operation, task: Task) -> None:
    """
    Raise Forbidden unless `principal` may perform `operation` on `task`.

    Raises:
        Forbidden: if the policy denies the operation
    """
    if not can_perform(principal, operation, task):
        raise Forbidden(f"Not authorized to {operation.value} this task")


def require_task_access(task: Optional[Task], principal: Principal, operation: Operation) -> Task:
    """
    Resolve a looked-up task for `operation`.

    A missing task is reported before any permission check, so callers see
    404 for absent tasks and 403 only for tasks that exist.

    Raises:
        NotFound: if `task` is None
        Forbidden: if the policy denies the operation
    """
    if task is None:
        raise NotFound("Task not found")
    authorize(principal, operation, task)
    return task


def task_scope(principal: Principal) -> Predicate:
    """
    Predicate selecting the tasks `principal` may list.

    Admins see everything; other users see tasks they created or are assigned.
    """
    if principal.is_admin:
        return MATCH_ALL
    return or_(Eq("created_by", principal.id), Eq("assigned_to", principal.id))


def require_self_or_admin(principal: Principal, user_id: int) -> None:
    """Raise Forbidden unless `principal` is `user_id` or an admin."""
    if principal.is_admin or principal.id == user_id:
        return
    logger.info(f"User {principal.id} attempted to access profile of user {user_id}")
    raise Forbidden("Not authorized to access this user")
