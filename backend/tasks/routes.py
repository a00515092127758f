"""
Task API endpoints.

Create and update accept multipart form fields plus up to three PDF files
under the `attachments` field. Every endpoint resolves the task first and
checks the access policy second, so an absent task is always a 404.
"""

import dataclasses
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session, selectinload

import models
import schemas
from auth.dependencies import get_principal
from auth.permissions import Operation, Principal, require_task_access, task_scope
from database import get_db
from errors import NotFound, ValidationError
from query.pagination import parse_limit, parse_page
from query.task_filters import FilterSpec, apply_sort, build_task_predicate, filter_tasks, paginate
from storage import LocalFileStore, get_file_store
from tasks.attachments import (
    Compensation,
    ensure_attachment_capacity,
    delete_task_and_files,
    present_uploads,
    remove_attachment,
    stage_uploads,
)
from tasks.stats import task_stats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])

TASK_LOAD_OPTIONS = (
    selectinload(models.Task.assigned_to),
    selectinload(models.Task.created_by),
    selectinload(models.Task.tag_entries),
    selectinload(models.Task.attachments),
    selectinload(models.Task.comments).selectinload(models.Comment.user),
)


def _build_form_model(model_cls, fields: Dict[str, Optional[str]]):
    """Validate raw form values with a pydantic model; empty fields count as absent."""
    data = {name: value for name, value in fields.items() if value is not None and value != ""}
    try:
        return model_cls(**data)
    except PydanticValidationError as e:
        raise RequestValidationError(e.errors(include_url=False, include_context=False))


def task_create_form(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    priority: Optional[str] = Form(None),
    due_date: Optional[str] = Form(None),
    assigned_to: Optional[str] = Form(None),
    estimated_hours: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
) -> schemas.TaskCreate:
    return _build_form_model(schemas.TaskCreate, {
        "title": title,
        "description": description,
        "status": status,
        "priority": priority,
        "due_date": due_date,
        "assigned_to": assigned_to,
        "estimated_hours": estimated_hours,
        "tags": tags,
    })


def task_update_form(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    priority: Optional[str] = Form(None),
    due_date: Optional[str] = Form(None),
    assigned_to: Optional[str] = Form(None),
    estimated_hours: Optional[str] = Form(None),
    actual_hours: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
) -> schemas.TaskUpdate:
    return _build_form_model(schemas.TaskUpdate, {
        "title": title,
        "description": description,
        "status": status,
        "priority": priority,
        "due_date": due_date,
        "assigned_to": assigned_to,
        "estimated_hours": estimated_hours,
        "actual_hours": actual_hours,
        "tags": tags,
    })


def task_query(db: Session, task_id: int, lock: bool = False):
    """
    Query for one task with its relations eagerly loaded. `lock` takes a row
    lock on the task so attachment-count checks and the writes that follow
    them are serialized per task.
    """
    query = db.query(models.Task).options(*TASK_LOAD_OPTIONS).filter(models.Task.id == task_id)
    if lock:
        query = query.with_for_update(of=models.Task).populate_existing()
    return query


def _get_task(db: Session, task_id: int, lock: bool = False) -> Optional[models.Task]:
    return task_query(db, task_id, lock).first()


def _get_attachment(task: models.Task, attachment_id: int) -> models.TaskAttachment:
    for attachment in task.attachments:
        if attachment.id == attachment_id:
            return attachment
    raise NotFound("Attachment not found")


def _resolve_assignee(db: Session, user_id: int) -> models.User:
    """The assignee must exist and be active."""
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if user is None:
        logger.info(f"Rejected assignment to unknown user {user_id}")
        raise ValidationError("Assigned user not found")
    if not user.is_active:
        logger.info(f"Rejected assignment to inactive user {user_id}")
        raise ValidationError("Cannot assign task to inactive user")
    return user


@router.get("", response_model=schemas.TaskPage)
def list_tasks(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = None,
    assigned_to: Optional[str] = Query(None, alias="assignedTo"),
    created_by: Optional[str] = Query(None, alias="createdBy"),
    due_before: Optional[str] = Query(None, alias="dueBefore"),
    due_after: Optional[str] = Query(None, alias="dueAfter"),
    search: Optional[str] = None,
    overdue: Optional[str] = None,
    sort: Optional[str] = None,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """List the tasks visible to the caller, filtered, sorted and paginated."""
    spec = FilterSpec.from_params(
        status=status_filter,
        priority=priority,
        assigned_to=assigned_to,
        created_by=created_by,
        due_before=due_before,
        due_after=due_after,
        search=search,
        overdue=overdue,
        sort=sort,
    )
    predicate = build_task_predicate(task_scope(principal), spec)
    query = filter_tasks(db.query(models.Task).options(*TASK_LOAD_OPTIONS), predicate)
    query = apply_sort(query, spec.sort)
    tasks, pagination = paginate(query, parse_page(page), parse_limit(limit))

    logger.debug(f"User {principal.id} listed {len(tasks)} of {pagination.total_items} task(s)")
    return {"count": len(tasks), "pagination": dataclasses.asdict(pagination), "data": tasks}


@router.get("/stats", response_model=schemas.TaskStats)
def get_task_stats(
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return task_stats(db, principal)


@router.post("", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_in: schemas.TaskCreate = Depends(task_create_form),
    attachments: Optional[List[UploadFile]] = File(None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    store: LocalFileStore = Depends(get_file_store),
):
    """Create a task owned by the caller, optionally with PDF attachments."""
    logger.info(f"User {principal.id} creating task '{task_in.title}'")
    uploads = present_uploads(attachments)

    with Compensation() as undo:
        undo.add(db.rollback)
        ensure_attachment_capacity(0, len(uploads))
        _resolve_assignee(db, task_in.assigned_to)
        staged = await stage_uploads(store, uploads, principal.id, undo)

        task = models.Task(
            title=task_in.title,
            description=task_in.description,
            status=task_in.status,
            priority=task_in.priority,
            due_date=task_in.due_date,
            assigned_to_id=task_in.assigned_to,
            created_by_id=principal.id,
            estimated_hours=task_in.estimated_hours,
        )
        task.tags = task_in.tags
        task.attachments.extend(staged)
        db.add(task)
        db.commit()

    logger.info(f"Task {task.id} created by user {principal.id} with {len(staged)} attachment(s)")
    return _get_task(db, task.id)


@router.get("/{task_id}", response_model=schemas.Task)
def get_task(
    task_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return require_task_access(_get_task(db, task_id), principal, Operation.read)


@router.put("/{task_id}", response_model=schemas.Task)
async def update_task(
    task_id: int,
    changes: schemas.TaskUpdate = Depends(task_update_form),
    attachments: Optional[List[UploadFile]] = File(None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    store: LocalFileStore = Depends(get_file_store),
):
    """
    Update a task. Only fields present in the form change; new files are
    appended to the existing attachments subject to the per-task cap.
    """
    task = require_task_access(_get_task(db, task_id, lock=True), principal, Operation.update)
    update_data = changes.model_dump(exclude_unset=True)
    uploads = present_uploads(attachments)
    logger.info(f"User {principal.id} updating task {task_id}: fields={sorted(update_data)}, files={len(uploads)}")

    with Compensation() as undo:
        undo.add(db.rollback)
        ensure_attachment_capacity(len(task.attachments), len(uploads))

        assignee = update_data.pop("assigned_to", None)
        if assignee is not None and assignee != task.assigned_to_id:
            _resolve_assignee(db, assignee)
            task.assigned_to_id = assignee

        staged = await stage_uploads(store, uploads, principal.id, undo)

        for field, value in update_data.items():
            setattr(task, field, value)
        task.attachments.extend(staged)
        db.commit()

    return _get_task(db, task_id)


@router.delete("/{task_id}", response_model=schemas.Message)
def delete_task(
    task_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    store: LocalFileStore = Depends(get_file_store),
):
    """Delete a task together with its attachment files."""
    task = require_task_access(_get_task(db, task_id, lock=True), principal, Operation.delete)
    delete_task_and_files(db, store, task)

    logger.info(f"Task {task_id} deleted by user {principal.id}")
    return {"message": "Task deleted successfully"}


@router.post("/{task_id}/comments", response_model=schemas.Comment, status_code=status.HTTP_201_CREATED)
def add_comment(
    task_id: int,
    comment_in: schemas.CommentCreate,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    task = require_task_access(_get_task(db, task_id), principal, Operation.comment)

    comment = models.Comment(task_id=task.id, user_id=principal.id, text=comment_in.text)
    db.add(comment)
    db.commit()
    db.refresh(comment)

    logger.debug(f"User {principal.id} commented on task {task_id}")
    return comment


@router.post("/{task_id}/attachments", response_model=schemas.Task)
async def add_attachments(
    task_id: int,
    attachments: List[UploadFile] = File(...),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    store: LocalFileStore = Depends(get_file_store),
):
    """Append PDF files to an existing task."""
    task = require_task_access(_get_task(db, task_id, lock=True), principal, Operation.update)
    uploads = present_uploads(attachments)
    if not uploads:
        raise ValidationError("No files uploaded")

    with Compensation() as undo:
        undo.add(db.rollback)
        ensure_attachment_capacity(len(task.attachments), len(uploads))
        staged = await stage_uploads(store, uploads, principal.id, undo)
        task.attachments.extend(staged)
        db.commit()

    logger.info(f"User {principal.id} attached {len(staged)} file(s) to task {task_id}")
    return _get_task(db, task_id)


@router.delete("/{task_id}/attachments/{attachment_id}", response_model=schemas.Message)
def delete_attachment(
    task_id: int,
    attachment_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    store: LocalFileStore = Depends(get_file_store),
):
    task = require_task_access(_get_task(db, task_id, lock=True), principal, Operation.update)
    attachment = _get_attachment(task, attachment_id)
    remove_attachment(db, store, task, attachment)

    logger.info(f"Attachment {attachment_id} removed from task {task_id} by user {principal.id}")
    return {"message": "Attachment removed successfully"}


@router.get("/{task_id}/attachments/{attachment_id}/download")
def download_attachment(
    task_id: int,
    attachment_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    store: LocalFileStore = Depends(get_file_store),
):
    task = require_task_access(_get_task(db, task_id), principal, Operation.read)
    attachment = _get_attachment(task, attachment_id)
    if not store.exists(attachment.path):
        logger.warning(f"Attachment {attachment_id} of task {task_id} is missing on disk: {attachment.path}")
        raise NotFound("File not found on server")

    return FileResponse(
        store.resolve(attachment.path),
        media_type=attachment.mime_type,
        filename=attachment.original_name,
    )
