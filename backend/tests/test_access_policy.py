"""
Tests for the task access policy (auth.permissions).

Tests cover:
- Decision matrix for admin, creator, assignee and unrelated users
- 404-before-403 ordering of require_task_access
- Listing scope agreeing with the read decision
"""

import pytest

import models
from auth.permissions import (
    Operation,
    Principal,
    authorize,
    can_comment,
    can_delete,
    can_perform,
    can_read,
    can_update,
    require_self_or_admin,
    require_task_access,
    task_scope,
)
from errors import Forbidden, NotFound
from query.predicates import MATCH_ALL, matches

CREATOR_ID = 1
ASSIGNEE_ID = 2
STRANGER_ID = 3
ADMIN_ID = 99


@pytest.fixture
def task() -> models.Task:
    return models.Task(id=10, title="Policy", description="x", created_by_id=CREATOR_ID, assigned_to_id=ASSIGNEE_ID)


def user(user_id: int) -> Principal:
    return Principal(id=user_id, role=models.Role.user)


ADMIN = Principal(id=ADMIN_ID, role=models.Role.admin)


@pytest.mark.parametrize("operation", list(Operation))
def test_admin_may_do_everything(task, operation):
    assert can_perform(ADMIN, operation, task)


@pytest.mark.parametrize("operation", list(Operation))
def test_creator_may_do_everything(task, operation):
    assert can_perform(user(CREATOR_ID), operation, task)


@pytest.mark.parametrize(
    "operation,expected",
    [
        (Operation.read, True),
        (Operation.update, True),
        (Operation.comment, True),
        (Operation.delete, False),
    ],
)
def test_assignee_may_not_delete(task, operation, expected):
    assert can_perform(user(ASSIGNEE_ID), operation, task) is expected


@pytest.mark.parametrize("operation", list(Operation))
def test_unrelated_user_is_denied(task, operation):
    assert not can_perform(user(STRANGER_ID), operation, task)


def test_creator_who_is_also_assignee_may_delete():
    own = models.Task(id=11, created_by_id=CREATOR_ID, assigned_to_id=CREATOR_ID)
    assert can_delete(user(CREATOR_ID), own)


def test_convenience_wrappers_match_can_perform(task):
    assignee = user(ASSIGNEE_ID)
    assert can_read(assignee, task)
    assert can_update(assignee, task)
    assert can_comment(assignee, task)
    assert not can_delete(assignee, task)


def test_authorize_raises_forbidden(task):
    with pytest.raises(Forbidden):
        authorize(user(ASSIGNEE_ID), Operation.delete, task)
    authorize(user(CREATOR_ID), Operation.delete, task)


def test_require_task_access_reports_missing_task_before_permission():
    # Even a principal with no rights at all gets NotFound for an absent task
    with pytest.raises(NotFound):
        require_task_access(None, user(STRANGER_ID), Operation.delete)


def test_require_task_access_returns_task_when_allowed(task):
    assert require_task_access(task, user(ASSIGNEE_ID), Operation.update) is task
    with pytest.raises(Forbidden):
        require_task_access(task, user(STRANGER_ID), Operation.read)


def test_admin_scope_is_match_all():
    assert task_scope(ADMIN) == MATCH_ALL


@pytest.mark.parametrize("principal_id", [CREATOR_ID, ASSIGNEE_ID, STRANGER_ID])
def test_scope_membership_agrees_with_read_permission(task, principal_id):
    principal = user(principal_id)
    record = {"created_by": task.created_by_id, "assigned_to": task.assigned_to_id}
    assert matches(task_scope(principal), record) == can_read(principal, task)


def test_require_self_or_admin():
    require_self_or_admin(user(5), 5)
    require_self_or_admin(ADMIN, 5)
    with pytest.raises(Forbidden):
        require_self_or_admin(user(6), 5)
